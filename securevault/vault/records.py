"""
Record Encryption Adapter — per-field encryption for vault entries.

Reads never raise: a field that cannot be decrypted comes back as the
``LOCKED`` or ``WRONG_KEY`` sentinel so the rest of the vault stays usable.
Writes never persist a sentinel, never encrypt twice, and never downgrade
an envelope to plaintext. Legacy plaintext is upgraded on the next write
made while a key is published.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

from ..exceptions import DecryptionError, MalformedEnvelopeError
from .crypto import decrypt, encrypt, is_envelope
from .keystore import SessionKeyStore, StorageScope

logger = logging.getLogger("securevault.vault")

LOCKED_DISPLAY = "🔒 (locked)"
WRONG_KEY_DISPLAY = "🔒 (wrong key)"


@dataclass(frozen=True)
class Plaintext:
    """A readable field value.

    ``envelope`` is the stored envelope this value was decrypted from; it
    lets an unchanged value be written back to the same field without
    re-encryption.
    """
    value: str
    envelope: Optional[str] = field(default=None, repr=False, compare=False)

    def display(self) -> str:
        return self.value


@dataclass(frozen=True)
class Locked:
    """Encrypted field with no key published for its scope."""

    def display(self) -> str:
        return LOCKED_DISPLAY


@dataclass(frozen=True)
class WrongKey:
    """Encrypted field that the published key cannot open."""

    def display(self) -> str:
        return WRONG_KEY_DISPLAY


LOCKED = Locked()
WRONG_KEY = WrongKey()

SecretField = Union[Plaintext, Locked, WrongKey]


def is_sentinel(value: Any) -> bool:
    """True for tagged sentinels and for their rendered display strings."""
    if isinstance(value, (Locked, WrongKey)):
        return True
    return value in (LOCKED_DISPLAY, WRONG_KEY_DISPLAY)


def as_secret(value: Union[SecretField, str]) -> SecretField:
    """Coerce a raw string from the UI into a tagged field value."""
    if isinstance(value, (Plaintext, Locked, WrongKey)):
        return value
    if value == LOCKED_DISPLAY:
        return LOCKED
    if value == WRONG_KEY_DISPLAY:
        return WRONG_KEY
    return Plaintext(value)


class RecordEncryptionAdapter:
    """Stateless field codec bound to a SessionKeyStore.

    The key is looked up on every call, so a key published or cleared
    between two calls is observed by the second one.
    """

    def __init__(self, key_store: SessionKeyStore):
        self._keys = key_store

    def has_key(self, scope: StorageScope) -> bool:
        return self._keys.key_for(scope) is not None

    async def read_field(self, stored: Optional[str], scope: StorageScope) -> SecretField:
        """Turn a persisted value into a tagged field value."""
        if stored is None:
            return Plaintext("")
        if not is_envelope(stored):
            # legacy plaintext, upgraded on the next write
            return Plaintext(stored)
        key = self._keys.key_for(scope)
        if key is None:
            return LOCKED
        try:
            value = await decrypt(stored, key)
        except (DecryptionError, MalformedEnvelopeError):
            logger.debug("Field could not be decrypted with the %s key", scope.value)
            return WRONG_KEY
        return Plaintext(value, envelope=stored)

    async def write_field(
        self,
        value: Union[SecretField, str],
        scope: StorageScope,
        stored: Optional[str] = None,
    ) -> Optional[str]:
        """Return the representation to persist for ``value``.

        Args:
            value: In-memory value (tagged or a raw UI string).
            scope: Storage scope selecting the key.
            stored: Currently persisted representation, if any.

        Returns:
            Envelope or plaintext string to persist. For a sentinel the
            current ``stored`` value is returned unchanged (``None`` when
            nothing is stored, meaning "do not write this field").
        """
        secret = as_secret(value)
        if is_sentinel(secret) or is_sentinel(getattr(secret, "value", None)):
            logger.warning(
                "Refusing to persist a %s sentinel over stored data", scope.value,
            )
            return stored
        if secret.envelope is not None and secret.envelope == stored:
            return secret.envelope
        if is_envelope(secret.value):
            return secret.value
        key = self._keys.key_for(scope)
        if key is None:
            return secret.value
        return await encrypt(secret.value, key)

    async def read_record(
        self,
        record: Mapping[str, Any],
        fields: Iterable[str],
        scope: StorageScope,
    ) -> dict[str, Any]:
        """Return a copy of ``record`` with sensitive ``fields`` read."""
        result = dict(record)
        for name in fields:
            if result.get(name) is not None:
                result[name] = await self.read_field(result[name], scope)
        return result

    async def write_record(
        self,
        record: Mapping[str, Any],
        fields: Iterable[str],
        scope: StorageScope,
        stored: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        """Return a copy of ``record`` ready to persist.

        Sensitive fields whose write is refused and that have nothing
        stored are dropped from the result.
        """
        result = dict(record)
        stored = stored or {}
        for name in fields:
            if result.get(name) is None:
                continue
            persisted = await self.write_field(result[name], scope, stored.get(name))
            if persisted is None:
                result.pop(name)
            else:
                result[name] = persisted
        return result
