"""
Collaborator contracts consumed by the vault core.

Implementations live outside the core (browser storage, a hosted record
store, the platform clipboard). ``securevault.storage`` and
``securevault.remote`` ship concrete versions for tests and services.
"""
from typing import Any, Awaitable, Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class KeyValueStorage(Protocol):
    """Raw get/set of opaque strings."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class RecordStore(Protocol):
    """Remote table of records owned by a user, newest first."""

    async def list(self, owner_id: str) -> list[dict[str, Any]]:
        ...

    async def insert(self, fields: dict[str, Any]) -> dict[str, Any]:
        ...

    async def update(self, record_id: str, fields: dict[str, Any]) -> None:
        ...

    async def delete(self, record_id: str) -> None:
        ...


class PreferencesStore(Protocol):
    """Per-user settings such as ``auto_lock_enabled``."""

    async def get(self, user_id: str) -> Optional[dict[str, Any]]:
        ...

    async def update(self, user_id: str, fields: dict[str, Any]) -> None:
        ...


class Clipboard(Protocol):
    def clear(self) -> Union[None, Awaitable[None]]:
        ...


class AuthSession(Protocol):
    def sign_out(self) -> Union[None, Awaitable[None]]:
        ...
