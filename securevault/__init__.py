"""SecureVault.

Client-side vault key management and envelope encryption.
"""
from .version import (
    __title__, __description__, __version__, __author__, __author_email__
)
from .exceptions import (
    VaultError,
    DerivationError,
    DecryptionError,
    MalformedEnvelopeError,
    AuthenticationError,
    RecordStoreError,
)

__all__ = (
    "VaultError",
    "DerivationError",
    "DecryptionError",
    "MalformedEnvelopeError",
    "AuthenticationError",
    "RecordStoreError",
)
