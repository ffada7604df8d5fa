"""
SessionKeyStore — the single holder of the session's vault keys.

Provides:
- ``set_cloud_key(user_id)`` / ``set_local_key(passphrase, scope_id)`` —
  derive, publish, notify observers
- ``clear()`` — drop both keys (lock, sign-out, panic)
- ``subscribe(observer)`` — receive a ``KeyState`` snapshot on every change
- ``has_local_vault_been_set_up()`` — setup query for the unlock prompt

Security Note:
    Only derived key handles are kept. Passphrases and user ids are
    used for derivation and then dropped. Never log either.
"""
import enum
import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

from ..exceptions import AuthenticationError, DecryptionError, MalformedEnvelopeError
from ..interfaces import KeyValueStorage
from ..storage import MemoryStorage
from .config import VaultConfig
from .crypto import DerivedKey, decrypt, encrypt
from .derivation import ANONYMOUS_SCOPE, KeyDerivationService

logger = logging.getLogger("securevault.vault")

# Constant encrypted under the local key to verify a passphrase on unlock.
KEY_CHECK_PLAINTEXT = "securevault-key-check"


class StorageScope(str, enum.Enum):
    """Where an entry lives, and therefore which key protects it."""
    LOCAL = "local"
    CLOUD = "cloud"


@dataclass(frozen=True)
class KeyState:
    """Immutable snapshot of the session keys."""
    cloud_key: Optional[DerivedKey] = None
    local_key: Optional[DerivedKey] = None


KeyObserver = Callable[[KeyState], None]


class SessionKeyStore:
    """Process-wide key state with many observers and one source of truth.

    ``session_storage`` holds the non-secret "local vault unlocked this
    session" marker. ``local_storage``, when given, holds one key-check
    envelope per local scope so a wrong passphrase is rejected instead of
    publishing a key that decrypts nothing.
    """

    def __init__(
        self,
        derivation: Optional[KeyDerivationService] = None,
        session_storage: Optional[KeyValueStorage] = None,
        local_storage: Optional[KeyValueStorage] = None,
        config: Optional[VaultConfig] = None,
    ):
        if config is None:
            config = derivation.config if derivation is not None else VaultConfig()
        self._config = config
        self._derivation = derivation or KeyDerivationService(config)
        self._session = session_storage if session_storage is not None else MemoryStorage()
        self._local = local_storage
        self._state = KeyState()
        self._observers: list[KeyObserver] = []
        # bumped by clear(); derivations started before a clear are discarded
        self._generation = 0

    def __repr__(self) -> str:
        return (
            f'<SessionKeyStore cloud={self.cloud_key is not None} '
            f'local={self.local_key is not None} observers={len(self._observers)}>'
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def derivation(self) -> KeyDerivationService:
        return self._derivation

    @property
    def state(self) -> KeyState:
        return self._state

    @property
    def cloud_key(self) -> Optional[DerivedKey]:
        return self._state.cloud_key

    @property
    def local_key(self) -> Optional[DerivedKey]:
        return self._state.local_key

    def key_for(self, scope: StorageScope) -> Optional[DerivedKey]:
        """Return the key protecting the given storage scope, if published."""
        if StorageScope(scope) is StorageScope.CLOUD:
            return self._state.cloud_key
        return self._state.local_key

    @property
    def is_local_unlocked(self) -> bool:
        return self._state.local_key is not None

    def has_local_vault_been_set_up(self, scope_id: Optional[str] = None) -> bool:
        """Return True if a local passphrase was already chosen.

        True when the local vault was unlocked earlier in this session, or
        when a key check exists for ``scope_id``. The UI asks for a *new*
        passphrase only when this is False.
        """
        if self._session.get(self._config.unlock_marker_key) == "1":
            return True
        if scope_id is not None and self._local is not None:
            return self._local.get(self._key_check_name(scope_id)) is not None
        return False

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: KeyObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that deregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, state: KeyState) -> None:
        self._state = state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception as err:
                logger.error("Key store observer %r failed: %s", observer, err)

    # ------------------------------------------------------------------
    # Key check
    # ------------------------------------------------------------------

    def _key_check_name(self, scope_id: str) -> str:
        return f"{self._config.key_check_prefix}{scope_id}"

    async def _verify_key_check(self, key: DerivedKey, scope_id: str) -> Optional[str]:
        """Verify key against the stored check; return a new check to store.

        Raises:
            AuthenticationError: If a stored check does not decrypt.
        """
        if self._local is None:
            return None
        stored = self._local.get(self._key_check_name(scope_id))
        if stored is None:
            return await encrypt(KEY_CHECK_PLAINTEXT, key)
        try:
            value = await decrypt(stored, key)
        except (DecryptionError, MalformedEnvelopeError):
            value = None
        if value != KEY_CHECK_PLAINTEXT:
            logger.info("Local vault passphrase rejected for scope=%s", scope_id)
            raise AuthenticationError()
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set_cloud_key(self, user_id: str) -> bool:
        """Derive and publish the cloud key.

        Returns:
            False if the store was cleared while deriving (nothing published).
        """
        generation = self._generation
        key = await self._derivation.derive_cloud_key(user_id)
        if generation != self._generation:
            logger.info("Discarding cloud key: store cleared during derivation")
            return False
        self._publish(replace(self._state, cloud_key=key))
        logger.debug("Cloud key published")
        return True

    async def set_local_key(
        self, passphrase: str, scope_id: str = ANONYMOUS_SCOPE,
    ) -> bool:
        """Derive, verify and publish the local key.

        Raises:
            AuthenticationError: If the passphrase does not match the
                vault previously set up for ``scope_id``.
            DerivationError: If derivation fails.

        Returns:
            False if the store was cleared while deriving (nothing published).
        """
        generation = self._generation
        key = await self._derivation.derive_local_key(passphrase, scope_id)
        new_check = await self._verify_key_check(key, scope_id)
        if generation != self._generation:
            logger.info("Discarding local key: store cleared during derivation")
            return False
        if new_check is not None:
            self._local.set(self._key_check_name(scope_id), new_check)
            logger.info("Local vault set up for scope=%s", scope_id)
        self._session.set(self._config.unlock_marker_key, "1")
        self._publish(replace(self._state, local_key=key))
        logger.debug("Local key published for scope=%s", scope_id)
        return True

    async def install_local_key(
        self, key: DerivedKey, scope_id: str = ANONYMOUS_SCOPE,
    ) -> None:
        """Replace the local key after a passphrase change.

        Overwrites the key check for ``scope_id`` with one made under
        ``key`` and publishes it. Callers re-encrypt stored data first.
        """
        if self._local is not None:
            check = await encrypt(KEY_CHECK_PLAINTEXT, key)
            self._local.set(self._key_check_name(scope_id), check)
        self._session.set(self._config.unlock_marker_key, "1")
        self._publish(replace(self._state, local_key=key))
        logger.info("Local key replaced for scope=%s", scope_id)

    def clear(self) -> None:
        """Drop both keys and the unlock marker, then notify observers."""
        self._generation += 1
        self._session.remove(self._config.unlock_marker_key)
        self._publish(KeyState())
        logger.debug("Session keys cleared")
