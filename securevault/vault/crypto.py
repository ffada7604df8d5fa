"""
Vault Crypto Core — Key derivation and the ``{iv, ct}`` envelope codec.

Keys: PBKDF2-HMAC-SHA256(token, salt_prefix + scope_label) → AES-256-GCM.
Envelope: base64( JSON {"iv": b64(nonce), "ct": b64(ciphertext + tag)} ).

Security Note:
    Never log plaintext, ciphertext, tokens or key material.
    Nonces are random 96-bit, drawn fresh for every encryption call.
"""
import os
import base64
import asyncio
import logging

import orjson
from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import DecryptionError, DerivationError, MalformedEnvelopeError
from .config import MIN_KDF_ITERATIONS, KdfParameters, VAULT_KDF_PARAMETERS

logger = logging.getLogger("securevault.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag appended to ciphertext
KEY_LENGTH = 32  # AES-256


class DerivedKey:
    """Opaque AES-GCM key handle.

    The raw key bytes are handed to the cipher and never kept on this
    object, so they cannot be read back, copied or serialized.
    """

    __slots__ = ("_cipher", "purpose", "version")

    def __init__(self, key_bytes: bytes, purpose: str, version: int):
        if len(key_bytes) != KEY_LENGTH:
            raise DerivationError(
                f"Derived key must be {KEY_LENGTH} bytes, got {len(key_bytes)}"
            )
        self._cipher = AESGCM(key_bytes)
        self.purpose = purpose
        self.version = version

    def __repr__(self) -> str:
        return f'<DerivedKey purpose={self.purpose} v{self.version}>'

    def __reduce_ex__(self, protocol):
        raise TypeError("DerivedKey cannot be serialized or copied")

    def _seal(self, nonce: bytes, data: bytes) -> bytes:
        return self._cipher.encrypt(nonce, data, None)

    def _open(self, nonce: bytes, data: bytes) -> bytes:
        return self._cipher.decrypt(nonce, data, None)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def _pbkdf2(token: bytes, salt: bytes, params: KdfParameters) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=params.key_length,
        salt=salt,
        iterations=params.iterations,
    )
    return kdf.derive(token)


async def derive_key_from_salt(
    token: str,
    salt: bytes,
    params: KdfParameters,
    purpose: str,
) -> DerivedKey:
    """Derive a key from a token and raw salt bytes.

    The iterated hash runs in a worker thread so the event loop keeps
    serving other tasks.

    Raises:
        DerivationError: If inputs are malformed or the primitive is unavailable.
    """
    if not isinstance(token, str) or not token:
        raise DerivationError("Key material must be a non-empty string")
    if not isinstance(salt, (bytes, bytearray)) or not salt:
        raise DerivationError("Salt must be non-empty bytes")
    if params.iterations < MIN_KDF_ITERATIONS:
        raise DerivationError(
            f"KDF iterations must be >= {MIN_KDF_ITERATIONS}, got {params.iterations}"
        )
    try:
        key_bytes = await asyncio.to_thread(
            _pbkdf2, token.encode("utf-8"), bytes(salt), params,
        )
    except (UnsupportedAlgorithm, ValueError, TypeError) as err:
        raise DerivationError(f"Key derivation failed: {err}") from err
    logger.debug(
        "Derived %s key (kdf v%d, %d iterations)",
        purpose, params.version, params.iterations,
    )
    return DerivedKey(key_bytes, purpose, params.version)


async def derive_key(
    token: str,
    salt_label: str,
    params: KdfParameters = VAULT_KDF_PARAMETERS[1],
    purpose: str = "vault",
) -> DerivedKey:
    """Derive a 256-bit AES-GCM key from a token and a scope label.

    Deterministic: the same ``(token, salt_label, params)`` always
    produce interchangeable keys.

    Args:
        token: Passphrase or identifier used as key material.
        salt_label: Domain-separation label appended to the salt prefix.
        params: Versioned KDF parameter set.
        purpose: Short tag recorded on the key (``cloud``, ``local``...).

    Returns:
        Opaque DerivedKey.
    """
    if not isinstance(salt_label, str):
        raise DerivationError("Salt label must be a string")
    salt = (params.salt_prefix + salt_label).encode("utf-8")
    return await derive_key_from_salt(token, salt, params, purpose)


# ---------------------------------------------------------------------------
# Envelope packing
# ---------------------------------------------------------------------------

def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


def pack_envelope(iv: bytes, ct: bytes) -> str:
    """Pack nonce and ciphertext into an envelope string."""
    packed = orjson.dumps({"iv": _b64(iv), "ct": _b64(ct)})
    return _b64(packed)


def unpack_envelope(value: str) -> tuple[bytes, bytes]:
    """Unpack an envelope string into ``(iv, ct)``.

    Raises:
        MalformedEnvelopeError: If the value is not a well-formed envelope.
    """
    if not isinstance(value, str):
        raise MalformedEnvelopeError("Envelope must be a string")
    try:
        packed = orjson.loads(_unb64(value))
    except (ValueError, TypeError) as err:
        raise MalformedEnvelopeError("Value is not a base64 JSON envelope") from err
    if not isinstance(packed, dict):
        raise MalformedEnvelopeError("Envelope must be a JSON object")
    iv, ct = packed.get("iv"), packed.get("ct")
    if not isinstance(iv, str) or not isinstance(ct, str):
        raise MalformedEnvelopeError("Envelope requires string 'iv' and 'ct'")
    try:
        iv_bytes = _unb64(iv)
        ct_bytes = _unb64(ct)
    except ValueError as err:
        raise MalformedEnvelopeError("Envelope fields are not base64") from err
    if len(iv_bytes) != NONCE_SIZE:
        raise MalformedEnvelopeError(
            f"Envelope iv must be {NONCE_SIZE} bytes, got {len(iv_bytes)}"
        )
    if len(ct_bytes) < TAG_SIZE:
        raise MalformedEnvelopeError("Envelope ciphertext is shorter than the tag")
    return iv_bytes, ct_bytes


def is_envelope(value: str) -> bool:
    """Return True if value is an encrypted envelope, False for legacy plaintext."""
    try:
        unpack_envelope(value)
    except MalformedEnvelopeError:
        return False
    return True


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

async def encrypt(plaintext: str, key: DerivedKey) -> str:
    """Encrypt a string into a fresh envelope.

    Every call draws a new random nonce, so encrypting the same
    plaintext twice yields different envelopes.
    """
    nonce = os.urandom(NONCE_SIZE)
    ct = key._seal(nonce, plaintext.encode("utf-8"))
    return pack_envelope(nonce, ct)


async def decrypt(envelope: str, key: DerivedKey) -> str:
    """Decrypt an envelope string.

    Raises:
        MalformedEnvelopeError: If the envelope does not unpack.
        DecryptionError: On wrong key, tampered data or tag mismatch.
    """
    iv, ct = unpack_envelope(envelope)
    try:
        plaintext = key._open(iv, ct)
    except InvalidTag as err:
        raise DecryptionError("Envelope authentication failed") from err
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecryptionError("Decrypted payload is not UTF-8 text") from err
