"""
Tests for VaultLockStateMachine.

Tests cover:
- Idle auto-lock timing and activity tracking
- Manual lock and clipboard clearing
- Unlock verification with a uniform failure
- Panic: every step attempted, failures reported
- Periodic idle-check task lifecycle
- Auto-lock preferences
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from securevault.exceptions import AuthenticationError
from securevault.vault.config import VaultConfig
from securevault.vault.lock import LockStatus, VaultLockStateMachine, passphrase_verifier


def _machine(key_store, clock, **kwargs):
    kwargs.setdefault("locked", False)
    return VaultLockStateMachine(key_store, clock=clock, **kwargs)


# --- Idle auto-lock ---

class TestAutoLock:
    """Tests for check_idle and activity."""

    @pytest.mark.asyncio
    async def test_locks_after_timeout(self, key_store, clock):
        machine = _machine(key_store, clock)
        assert machine.status is LockStatus.UNLOCKED
        clock.advance(5 * 60)
        assert await machine.check_idle() is True
        assert machine.locked
        assert machine.status is LockStatus.LOCKED

    @pytest.mark.asyncio
    async def test_stays_unlocked_before_timeout(self, key_store, clock):
        machine = _machine(key_store, clock)
        clock.advance(5 * 60 - 1)
        assert await machine.check_idle() is False
        assert not machine.locked

    @pytest.mark.asyncio
    async def test_activity_resets_idle_timer(self, key_store, clock):
        machine = _machine(key_store, clock)
        clock.advance(4 * 60 + 59)
        machine.activity()
        clock.advance(2)
        assert await machine.check_idle() is False
        clock.advance(5 * 60)
        assert await machine.check_idle() is True

    @pytest.mark.asyncio
    async def test_disabled_never_locks(self, key_store, clock):
        machine = _machine(key_store, clock, config=VaultConfig(auto_lock_enabled=False))
        clock.advance(24 * 60 * 60)
        assert await machine.check_idle() is False
        assert not machine.locked

    @pytest.mark.asyncio
    async def test_activity_ignored_while_locked(self, key_store, clock):
        machine = _machine(key_store, clock)
        await machine.lock()
        before = machine.state.last_activity
        clock.advance(60)
        machine.activity()
        assert machine.state.last_activity == before

    @pytest.mark.asyncio
    async def test_clock_failure_skips_check(self, key_store, clock):
        machine = _machine(key_store, clock)

        def broken_clock():
            raise OSError("clock unavailable")

        machine._clock = broken_clock
        assert await machine.check_idle() is False
        machine.activity()
        assert not machine.locked

    @pytest.mark.asyncio
    async def test_auto_lock_keeps_keys(self, key_store, clock):
        await key_store.set_local_key("passphrase")
        machine = _machine(key_store, clock)
        clock.advance(10 * 60)
        await machine.check_idle()
        assert key_store.local_key is not None

    @pytest.mark.asyncio
    async def test_observers_notified_once_per_change(self, key_store, clock):
        machine = _machine(key_store, clock)
        seen = []
        machine.subscribe(seen.append)
        clock.advance(5 * 60)
        await machine.check_idle()
        await machine.check_idle()
        assert [s.locked for s in seen] == [True]


# --- Manual lock / unlock ---

class TestLockUnlock:
    """Tests for lock and unlock."""

    @pytest.mark.asyncio
    async def test_lock_clears_clipboard(self, key_store, clock):
        clipboard = MagicMock()
        machine = _machine(key_store, clock, clipboard=clipboard)
        await machine.lock()
        assert machine.locked
        clipboard.clear.assert_called_once()

    @pytest.mark.asyncio
    async def test_lock_survives_clipboard_failure(self, key_store, clock):
        clipboard = MagicMock()
        clipboard.clear.side_effect = RuntimeError("no clipboard access")
        machine = _machine(key_store, clock, clipboard=clipboard)
        await machine.lock()
        assert machine.locked

    @pytest.mark.asyncio
    async def test_async_clipboard(self, key_store, clock):
        clipboard = MagicMock()
        clipboard.clear = AsyncMock()
        machine = _machine(key_store, clock, clipboard=clipboard)
        await machine.lock()
        clipboard.clear.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unlock_without_verifier(self, key_store, clock):
        machine = _machine(key_store, clock)
        await machine.lock()
        clock.advance(60)
        await machine.unlock()
        assert not machine.locked
        assert machine.state.last_activity == clock.now

    @pytest.mark.asyncio
    async def test_unlock_rejected(self, key_store, clock):
        verifier = AsyncMock(return_value=False)
        machine = _machine(key_store, clock, verifier=verifier)
        await machine.lock()
        with pytest.raises(AuthenticationError):
            await machine.unlock("wrong")
        assert machine.locked
        verifier.assert_awaited_once_with("wrong")

    @pytest.mark.asyncio
    async def test_verifier_errors_look_like_rejection(self, key_store, clock):
        rejecting = _machine(key_store, clock, verifier=AsyncMock(return_value=False))
        failing = _machine(
            key_store, clock, verifier=AsyncMock(side_effect=ValueError("internal")),
        )
        with pytest.raises(AuthenticationError) as rejected:
            await rejecting.unlock("x")
        with pytest.raises(AuthenticationError) as failed:
            await failing.unlock("x")
        assert str(rejected.value) == str(failed.value)
        assert failed.value.__cause__ is None

    @pytest.mark.asyncio
    async def test_passphrase_verifier(self, key_store, clock):
        await key_store.set_local_key("correct-horse-battery", "user42")
        key_store.clear()
        machine = VaultLockStateMachine(
            key_store,
            verifier=passphrase_verifier(key_store, "user42"),
            clock=clock,
            scope_id="user42",
        )
        assert machine.locked
        with pytest.raises(AuthenticationError):
            await machine.unlock("wrong")
        assert key_store.local_key is None
        await machine.unlock("correct-horse-battery")
        assert not machine.locked
        assert key_store.local_key is not None

    def test_initially_unlocked_without_local_vault(self, key_store, clock):
        machine = VaultLockStateMachine(key_store, clock=clock)
        assert not machine.locked


# --- Panic ---

class TestPanic:
    """Tests for the panic transition."""

    @pytest.mark.asyncio
    async def test_panic_completes_all_steps(self, key_store, local_storage, config, clock):
        await key_store.set_cloud_key("user-1")
        await key_store.set_local_key("passphrase")
        local_storage.set(config.passwords_storage_key, "[]")
        clipboard = MagicMock()
        auth = MagicMock()
        auth.sign_out = AsyncMock()
        reload = MagicMock()
        machine = _machine(
            key_store, clock,
            clipboard=clipboard, local_storage=local_storage, auth=auth, reload=reload,
        )

        report = await machine.panic()

        assert report == {
            "completed": ["lock", "clipboard", "local_storage", "keys", "sign_out", "reload"],
            "failed": [],
            "skipped": [],
        }
        assert machine.locked
        assert machine.panicked
        assert key_store.cloud_key is None and key_store.local_key is None
        assert config.passwords_storage_key not in local_storage
        clipboard.clear.assert_called_once()
        auth.sign_out.assert_awaited_once()
        reload.assert_called_once()

    @pytest.mark.asyncio
    async def test_panic_continues_after_failure(self, key_store, local_storage, config, clock):
        await key_store.set_local_key("passphrase")
        local_storage.set(config.passwords_storage_key, "[]")
        clipboard = MagicMock()
        clipboard.clear.side_effect = RuntimeError("clipboard denied")
        auth = MagicMock()
        auth.sign_out = AsyncMock(side_effect=ConnectionError("offline"))
        reload = MagicMock()
        machine = _machine(
            key_store, clock,
            clipboard=clipboard, local_storage=local_storage, auth=auth, reload=reload,
        )

        report = await machine.panic()

        assert report["failed"] == ["clipboard", "sign_out"]
        assert report["completed"] == ["lock", "local_storage", "keys", "reload"]
        assert key_store.local_key is None
        assert config.passwords_storage_key not in local_storage
        reload.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_collaborators_skipped(self, key_store, clock):
        await key_store.set_cloud_key("user-1")
        report = await _machine(key_store, clock).panic()
        assert report["completed"] == ["lock", "keys"]
        assert report["skipped"] == ["clipboard", "local_storage", "sign_out", "reload"]
        assert key_store.cloud_key is None

    @pytest.mark.asyncio
    async def test_unlock_after_panic_fails(self, key_store, clock):
        machine = _machine(key_store, clock)
        await machine.panic()
        with pytest.raises(AuthenticationError):
            await machine.unlock()
        assert machine.locked

    @pytest.mark.asyncio
    async def test_panic_stops_idle_task(self, key_store, clock):
        """The idle task is cancelled and collected before panic returns."""
        machine = _machine(key_store, clock)
        task = machine.start()
        await asyncio.sleep(0)
        await machine.panic()
        assert task.cancelled()
        assert machine._task is None

    @pytest.mark.asyncio
    async def test_panic_preempts_pending_unlock(self, key_store, local_storage, config, clock):
        """Panic runs at once and a pending unlock never reports unlocked."""
        release = asyncio.Event()

        async def slow_verifier(credential):
            await release.wait()
            return True

        local_storage.set(config.passwords_storage_key, "[]")
        machine = _machine(
            key_store, clock,
            locked=True, verifier=slow_verifier, local_storage=local_storage,
        )
        seen = []
        machine.subscribe(seen.append)

        pending = asyncio.create_task(machine.unlock("passphrase"))
        await asyncio.sleep(0)
        report = await asyncio.wait_for(machine.panic(), timeout=1)

        assert report["completed"] == ["lock", "local_storage", "keys"]
        assert config.passwords_storage_key not in local_storage
        release.set()
        with pytest.raises(AuthenticationError):
            await pending
        assert machine.locked
        assert all(state.locked for state in seen)


# --- Periodic idle check ---

class TestIdleTask:
    """Tests for start/stop of the idle loop."""

    @pytest.mark.asyncio
    async def test_idle_loop_locks(self, key_store, clock):
        machine = _machine(key_store, clock, config=VaultConfig(idle_check_interval=0.01))
        machine.start()
        clock.advance(6 * 60)
        for _ in range(100):
            if machine.locked:
                break
            await asyncio.sleep(0.01)
        await machine.stop()
        assert machine.locked

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, key_store, clock):
        machine = _machine(key_store, clock)
        assert machine.start() is machine.start()
        await machine.stop()
        await machine.stop()

    @pytest.mark.asyncio
    async def test_context_manager(self, key_store, clock):
        async with _machine(key_store, clock) as machine:
            task = machine._task
            assert task is not None and not task.done()
        assert machine._task is None
        assert task.cancelled()


# --- Preferences ---

class TestPreferences:
    """Tests for auto-lock preferences."""

    @pytest.mark.asyncio
    async def test_load_preferences(self, key_store, clock):
        preferences = MagicMock()
        preferences.get = AsyncMock(
            return_value={"auto_lock_enabled": False, "auto_lock_timeout": 15},
        )
        machine = _machine(key_store, clock, preferences=preferences)
        await machine.load_preferences("user-1")
        assert machine.state.auto_lock_enabled is False
        assert machine.state.auto_lock_timeout == 15
        preferences.get.assert_awaited_once_with("user-1")

    @pytest.mark.asyncio
    async def test_missing_preferences_keep_defaults(self, key_store, clock):
        preferences = MagicMock()
        preferences.get = AsyncMock(return_value=None)
        machine = _machine(key_store, clock, preferences=preferences)
        await machine.load_preferences("user-1")
        assert machine.state.auto_lock_enabled is True
        assert machine.state.auto_lock_timeout == 5

    @pytest.mark.asyncio
    async def test_changes_are_persisted(self, key_store, clock):
        preferences = MagicMock()
        preferences.get = AsyncMock(return_value={})
        preferences.update = AsyncMock()
        machine = _machine(key_store, clock, preferences=preferences)
        await machine.load_preferences("user-1")
        await machine.set_auto_lock_timeout(10)
        await machine.set_auto_lock_enabled(False)
        preferences.update.assert_any_await("user-1", {"auto_lock_timeout": 10})
        preferences.update.assert_any_await("user-1", {"auto_lock_enabled": False})

    @pytest.mark.asyncio
    async def test_new_timeout_applies(self, key_store, clock):
        machine = _machine(key_store, clock)
        await machine.set_auto_lock_timeout(1)
        clock.advance(61)
        assert await machine.check_idle() is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [0, -5, 2.5, "10"])
    async def test_invalid_timeout(self, key_store, clock, minutes):
        machine = _machine(key_store, clock)
        with pytest.raises(ValueError):
            await machine.set_auto_lock_timeout(minutes)
