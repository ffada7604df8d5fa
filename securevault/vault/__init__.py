"""Vault — key derivation, session keys, lock state and field encryption.

Security Note (Threat Model):
    Derived keys and decrypted fields live in process memory while the
    vault is unlocked. A memory dump of the process can expose them.
    Keys are never written to storage; only non-secret markers and
    key-check envelopes are.
"""

from .config import VaultConfig, KdfParameters
from .crypto import DerivedKey, derive_key, encrypt, decrypt, is_envelope
from .derivation import KeyDerivationService, ANONYMOUS_SCOPE
from .keystore import SessionKeyStore, KeyState, StorageScope
from .records import (
    RecordEncryptionAdapter,
    Plaintext,
    Locked,
    WrongKey,
    SecretField,
    LOCKED,
    WRONG_KEY,
)
from .models import PasswordEntry, SecureNote, SharedPassword
from .repository import PasswordRepository, NoteRepository
from .lock import VaultLockStateMachine, LockState, LockStatus, passphrase_verifier
from .sharing import generate_share_token, seal_share, open_share
from .rotation import rekey_records, rotate_local_passphrase

__all__ = [
    "VaultConfig",
    "KdfParameters",
    "DerivedKey",
    "derive_key",
    "encrypt",
    "decrypt",
    "is_envelope",
    "KeyDerivationService",
    "ANONYMOUS_SCOPE",
    "SessionKeyStore",
    "KeyState",
    "StorageScope",
    "RecordEncryptionAdapter",
    "Plaintext",
    "Locked",
    "WrongKey",
    "SecretField",
    "LOCKED",
    "WRONG_KEY",
    "PasswordEntry",
    "SecureNote",
    "SharedPassword",
    "PasswordRepository",
    "NoteRepository",
    "VaultLockStateMachine",
    "LockState",
    "LockStatus",
    "passphrase_verifier",
    "generate_share_token",
    "seal_share",
    "open_share",
    "rekey_records",
    "rotate_local_passphrase",
]
