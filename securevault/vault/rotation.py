"""
Vault Re-keying — re-encrypt stored records when the local passphrase changes.

Each sensitive field is decrypted with the old key and encrypted with the
new one. Legacy plaintext is upgraded on the way. A record with any field
that the old key cannot open is kept exactly as stored and counted as an
error, so nothing is lost.

Security Note:
    Plaintext exists in memory only while a record is re-encrypted.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..exceptions import AuthenticationError, DecryptionError, MalformedEnvelopeError
from .crypto import DerivedKey, decrypt, encrypt, is_envelope
from .derivation import ANONYMOUS_SCOPE
from .keystore import SessionKeyStore
from .records import is_sentinel
from .repository import PasswordRepository

logger = logging.getLogger("securevault.vault")


async def rekey_records(
    records: Iterable[Mapping[str, Any]],
    fields: Sequence[str],
    old_key: Optional[DerivedKey],
    new_key: DerivedKey,
) -> tuple[list[dict[str, Any]], dict]:
    """Re-encrypt sensitive fields of records from old_key to new_key.

    Args:
        records: Persisted records (fields hold envelopes or legacy plaintext).
        fields: Names of the sensitive fields.
        old_key: Key the envelopes were made with; None if only legacy data.
        new_key: Key to encrypt with.

    Returns:
        Tuple of (records to persist, stats dict with keys: total,
        rotated, errors, skipped).
    """
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
    result: list[dict[str, Any]] = []

    for record in records:
        stats["total"] += 1
        updated = dict(record)
        changed = False
        failed = False
        for name in fields:
            value = record.get(name)
            if not isinstance(value, str) or not value or is_sentinel(value):
                continue
            if is_envelope(value):
                if old_key is None:
                    failed = True
                    break
                try:
                    plaintext = await decrypt(value, old_key)
                except (DecryptionError, MalformedEnvelopeError) as err:
                    logger.error(
                        "Error re-keying record id=%s field=%s: %s",
                        record.get("id"), name, err,
                    )
                    failed = True
                    break
            else:
                plaintext = value
            updated[name] = await encrypt(plaintext, new_key)
            changed = True

        if failed:
            stats["errors"] += 1
            result.append(dict(record))
        elif changed:
            stats["rotated"] += 1
            result.append(updated)
        else:
            stats["skipped"] += 1
            result.append(updated)

    logger.info("Re-keying complete: %s", stats)
    return result, stats


async def rotate_local_passphrase(
    key_store: SessionKeyStore,
    repository: PasswordRepository,
    old_passphrase: str,
    new_passphrase: str,
    scope_id: str = ANONYMOUS_SCOPE,
) -> dict:
    """Change the local vault passphrase and re-encrypt local entries.

    The old passphrase is verified first. Local entries are re-encrypted
    and saved, then the new key replaces the old one in the key store and
    the repository is reloaded.

    Raises:
        AuthenticationError: If old_passphrase is wrong.

    Returns:
        Re-keying stats dict.
    """
    if not await key_store.set_local_key(old_passphrase, scope_id):
        raise AuthenticationError()
    old_key = key_store.local_key
    new_key = await key_store.derivation.derive_local_key(new_passphrase, scope_id)

    records, stats = await rekey_records(
        repository.raw_local_records(), ("password",), old_key, new_key,
    )
    repository.replace_raw_local_records(records)
    await key_store.install_local_key(new_key, scope_id)
    await repository.load_local()
    logger.info("Local passphrase rotated for scope=%s", scope_id)
    return stats
