"""
SecureVault exceptions.

``DecryptionError`` is recovered by the record adapter into a sentinel and
never reaches the UI; the rest are surfaced to the caller.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


class DerivationError(VaultError):
    """Key derivation primitive unavailable or inputs malformed."""


class DecryptionError(VaultError):
    """Authenticated decryption failed (wrong key or corrupted data)."""


class MalformedEnvelopeError(VaultError, ValueError):
    """A value does not unpack into an ``{iv, ct}`` envelope."""


class AuthenticationError(VaultError):
    """An unlock credential was rejected.

    The message is always the same so callers cannot tell a wrong
    passphrase from a missing or malformed key.
    """

    def __init__(self, message: str = "Incorrect passphrase"):
        super().__init__(message)


class RecordStoreError(VaultError):
    """The remote record store rejected or failed a request."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
