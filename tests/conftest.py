"""Shared fixtures for the vault tests."""
import pytest

from securevault.storage import MemoryStorage
from securevault.vault.config import VaultConfig
from securevault.vault.derivation import KeyDerivationService
from securevault.vault.keystore import SessionKeyStore
from securevault.vault.records import RecordEncryptionAdapter


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def config():
    return VaultConfig()


@pytest.fixture
def session_storage():
    return MemoryStorage()


@pytest.fixture
def local_storage():
    return MemoryStorage()


@pytest.fixture
def key_store(config, session_storage, local_storage):
    return SessionKeyStore(
        KeyDerivationService(config),
        session_storage=session_storage,
        local_storage=local_storage,
        config=config,
    )


@pytest.fixture
def adapter(key_store):
    return RecordEncryptionAdapter(key_store)


@pytest.fixture
def clock():
    return FakeClock()
