"""
Vault Lock State Machine — idle auto-lock, manual lock, unlock and panic.

States are ``UNLOCKED`` and ``LOCKED``. Idle checks, manual locks and
unlocks run under one ``asyncio.Lock``, so a periodic idle check can never
interleave with an unlock. Panic takes effect immediately and does not wait
for that lock.

Security Note:
    ``unlock`` failures always raise the same ``AuthenticationError`` so
    callers cannot distinguish a wrong passphrase from any other failure.
"""
import enum
import time
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..exceptions import AuthenticationError
from ..interfaces import AuthSession, Clipboard, KeyValueStorage, PreferencesStore
from .config import VaultConfig
from .derivation import ANONYMOUS_SCOPE
from .keystore import SessionKeyStore

logger = logging.getLogger("securevault.vault")

Verifier = Callable[[Any], Awaitable[bool]]


class LockStatus(str, enum.Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


@dataclass(frozen=True)
class LockState:
    """Snapshot of the lock state machine."""
    locked: bool
    auto_lock_enabled: bool
    auto_lock_timeout: int  # minutes
    last_activity: float  # clock seconds

    @property
    def status(self) -> LockStatus:
        return LockStatus.LOCKED if self.locked else LockStatus.UNLOCKED


LockObserver = Callable[[LockState], None]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def passphrase_verifier(
    key_store: SessionKeyStore, scope_id: str = ANONYMOUS_SCOPE,
) -> Verifier:
    """Build an unlock verifier that re-derives the local key.

    The key store checks the passphrase against the stored key check and
    publishes the key on success.
    """
    async def verify(passphrase: str) -> bool:
        return await key_store.set_local_key(passphrase, scope_id)

    return verify


class VaultLockStateMachine:
    """Tracks locked/unlocked status for one session.

    Collaborators are optional; a missing one makes the matching panic
    step a no-op. ``clipboard.clear``, ``auth.sign_out`` and ``reload``
    may be plain or async callables.
    """

    def __init__(
        self,
        key_store: SessionKeyStore,
        config: Optional[VaultConfig] = None,
        *,
        verifier: Optional[Verifier] = None,
        clipboard: Optional[Clipboard] = None,
        local_storage: Optional[KeyValueStorage] = None,
        auth: Optional[AuthSession] = None,
        reload: Optional[Callable[[], Any]] = None,
        preferences: Optional[PreferencesStore] = None,
        clock: Callable[[], float] = time.time,
        locked: Optional[bool] = None,
        scope_id: Optional[str] = None,
    ):
        self._config = config or VaultConfig()
        self._keys = key_store
        self._verifier = verifier
        self._clipboard = clipboard
        self._local = local_storage
        self._auth = auth
        self._reload = reload
        self._preferences = preferences
        self._clock = clock
        self._auto_lock_enabled = self._config.auto_lock_enabled
        self._timeout = self._config.auto_lock_timeout
        self._last_activity = clock()
        if locked is None:
            # a set-up local vault without a published key needs its passphrase again
            locked = (
                key_store.has_local_vault_been_set_up(scope_id)
                and not key_store.is_local_unlocked
            )
        self._locked = locked
        self._panicked = False
        self._user_id: Optional[str] = None
        self._observers: list[LockObserver] = []
        self._transition = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return (
            f'<VaultLockStateMachine status={self.status.value} '
            f'auto_lock={self._auto_lock_enabled} timeout={self._timeout}m>'
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def status(self) -> LockStatus:
        return LockStatus.LOCKED if self._locked else LockStatus.UNLOCKED

    @property
    def panicked(self) -> bool:
        return self._panicked

    @property
    def state(self) -> LockState:
        return LockState(
            locked=self._locked,
            auto_lock_enabled=self._auto_lock_enabled,
            auto_lock_timeout=self._timeout,
            last_activity=self._last_activity,
        )

    def subscribe(self, observer: LockObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that deregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        state = self.state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception as err:
                logger.error("Lock observer %r failed: %s", observer, err)

    def _set_locked(self, locked: bool) -> None:
        changed = self._locked != locked
        self._locked = locked
        if changed:
            self._notify()

    # ------------------------------------------------------------------
    # Activity and idle check
    # ------------------------------------------------------------------

    def activity(self) -> None:
        """Record user activity. Ignored while locked."""
        if self._locked or self._panicked:
            return
        try:
            self._last_activity = self._clock()
        except Exception as err:
            logger.warning("Activity not recorded, clock unavailable: %s", err)

    async def check_idle(self) -> bool:
        """Lock the vault if idle for the configured timeout.

        Returns:
            True if this check locked the vault. Never raises.
        """
        async with self._transition:
            if self._locked or self._panicked or not self._auto_lock_enabled:
                return False
            try:
                now = self._clock()
            except Exception as err:
                logger.warning("Idle check skipped, clock unavailable: %s", err)
                return False
            idle = now - self._last_activity
            if idle < self._timeout * 60:
                return False
            self._set_locked(True)
        logger.info("Vault auto-locked after %d seconds idle", int(idle))
        return True

    async def _idle_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.idle_check_interval)
            await self.check_idle()

    def start(self) -> asyncio.Task:
        """Start the periodic idle check on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self._idle_loop(), name="securevault-idle-check",
            )
        return self._task

    async def stop(self) -> None:
        """Cancel the periodic idle check."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "VaultLockStateMachine":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _clear_clipboard(self) -> None:
        if self._clipboard is not None:
            await _maybe_await(self._clipboard.clear())

    async def lock(self) -> None:
        """Lock manually and clear the clipboard. Session keys are kept."""
        async with self._transition:
            self._set_locked(True)
        try:
            await self._clear_clipboard()
        except Exception as err:
            logger.warning("Clipboard could not be cleared on lock: %s", err)
        logger.info("Vault locked")

    async def unlock(self, credential: Any = None) -> None:
        """Unlock the vault, verifying ``credential`` when a verifier is set.

        Raises:
            AuthenticationError: On any verification failure.
        """
        async with self._transition:
            if self._panicked:
                raise AuthenticationError()
            if self._verifier is not None:
                try:
                    verified = await self._verifier(credential)
                except Exception as err:
                    logger.debug("Unlock verifier failed: %s", type(err).__name__)
                    verified = False
                if not verified:
                    logger.info("Vault unlock rejected")
                    raise AuthenticationError()
            if self._panicked:
                # panic ran while the verifier was pending
                raise AuthenticationError()
            try:
                self._last_activity = self._clock()
            except Exception as err:
                logger.warning("Clock unavailable on unlock: %s", err)
            self._set_locked(False)
        logger.info("Vault unlocked")

    async def panic(self) -> dict:
        """Lock, wipe and sign out. Irreversible for this session.

        Every step is attempted even if an earlier one fails. Panic does not
        wait for a pending unlock; that unlock fails once its verifier returns.

        Returns:
            Report dict with keys: completed, failed, skipped.
        """
        report: dict[str, list[str]] = {"completed": [], "failed": [], "skipped": []}

        def force_lock() -> None:
            self._set_locked(True)

        def erase_local() -> None:
            for key in self._config.sensitive_storage_keys:
                self._local.remove(key)

        async def sign_out() -> None:
            await _maybe_await(self._auth.sign_out())

        async def reload() -> None:
            await _maybe_await(self._reload())

        steps = [
            ("lock", force_lock, True),
            ("clipboard", self._clear_clipboard, self._clipboard is not None),
            ("local_storage", erase_local, self._local is not None),
            ("keys", self._keys.clear, True),
            ("sign_out", sign_out, self._auth is not None),
            ("reload", reload, self._reload is not None),
        ]

        self._panicked = True
        for name, step, available in steps:
            if not available:
                report["skipped"].append(name)
                continue
            try:
                await _maybe_await(step())
                report["completed"].append(name)
            except Exception as err:
                logger.error("Panic step %s failed: %s", name, err)
                report["failed"].append(name)

        await self.stop()
        logger.warning("Panic executed: %s", report)
        return report

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def load_preferences(self, user_id: str) -> None:
        """Load auto-lock settings for user_id from the preferences store."""
        self._user_id = user_id
        if self._preferences is None:
            return
        data = await self._preferences.get(user_id)
        if not data:
            return
        if "auto_lock_enabled" in data:
            self._auto_lock_enabled = bool(data["auto_lock_enabled"])
        if data.get("auto_lock_timeout"):
            self._timeout = int(data["auto_lock_timeout"])
        self._notify()
        logger.debug(
            "Auto-lock preferences loaded for user=%s: enabled=%s timeout=%d",
            user_id, self._auto_lock_enabled, self._timeout,
        )

    async def _save_preferences(self, fields: dict) -> None:
        if self._preferences is not None and self._user_id is not None:
            await self._preferences.update(self._user_id, fields)

    async def set_auto_lock_enabled(self, enabled: bool) -> None:
        self._auto_lock_enabled = enabled
        self._notify()
        await self._save_preferences({"auto_lock_enabled": enabled})

    async def set_auto_lock_timeout(self, minutes: int) -> None:
        """Set the idle timeout in minutes.

        Raises:
            ValueError: If minutes is not a positive integer.
        """
        if not isinstance(minutes, int) or minutes < 1:
            raise ValueError(f"Auto-lock timeout must be >= 1 minute, got {minutes!r}")
        self._timeout = minutes
        self._notify()
        await self._save_preferences({"auto_lock_timeout": minutes})
