"""
Entry repositories — password and note CRUD through the record adapter.

Local password entries are kept as one JSON list in local storage (camelCase
keys). Cloud entries and notes live in a remote record store with
snake_case columns. Sensitive fields are encrypted by the adapter before
every write; remote write failures propagate to the caller.

Security Note:
    Never log field values. Only log ids, counts and scopes.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import orjson
from pydantic import ValidationError

from ..interfaces import KeyValueStorage, RecordStore
from .config import VaultConfig
from .keystore import StorageScope
from .models import PasswordEntry, SecureNote
from .records import Plaintext, RecordEncryptionAdapter, as_secret

logger = logging.getLogger("securevault.vault")

PASSWORD_CLOUD_COLUMNS = (
    "title", "username", "password", "url", "category", "tags",
    "strength", "notes", "is_favorite", "last_used",
)

NOTE_COLUMNS = ("title", "content", "category", "is_favorite")


def _column_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _remember_envelope(secret: Any, persisted: Optional[str]) -> Any:
    """Attach the persisted envelope to an unchanged plaintext value."""
    if (
        isinstance(secret, Plaintext)
        and secret.envelope is None
        and persisted is not None
        and persisted != secret.value
    ):
        return Plaintext(secret.value, envelope=persisted)
    return secret


class PasswordRepository:
    """Password entries split across local storage and a remote store."""

    def __init__(
        self,
        adapter: RecordEncryptionAdapter,
        local_storage: KeyValueStorage,
        remote: Optional[RecordStore] = None,
        config: Optional[VaultConfig] = None,
    ):
        self._adapter = adapter
        self._local = local_storage
        self._remote = remote
        self._config = config or VaultConfig()
        self._local_entries: list[PasswordEntry] = []
        self._cloud_entries: list[PasswordEntry] = []
        # entry id -> password as currently persisted
        self._stored: dict[str, Optional[str]] = {}
        self._owner_id: Optional[str] = None

    @property
    def entries(self) -> list[PasswordEntry]:
        """Cloud entries first, then local ones."""
        return [*self._cloud_entries, *self._local_entries]

    def _find(self, entry_id: str) -> tuple[Optional[PasswordEntry], Optional[StorageScope]]:
        for entry in self._cloud_entries:
            if entry.id == entry_id:
                return entry, StorageScope.CLOUD
        for entry in self._local_entries:
            if entry.id == entry_id:
                return entry, StorageScope.LOCAL
        return None, None

    def get(self, entry_id: str) -> Optional[PasswordEntry]:
        return self._find(entry_id)[0]

    # ------------------------------------------------------------------
    # Local storage
    # ------------------------------------------------------------------

    def raw_local_records(self) -> list[dict[str, Any]]:
        """Return the persisted local list exactly as stored."""
        raw = self._local.get(self._config.passwords_storage_key)
        if not raw:
            return []
        try:
            records = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            logger.error("Failed to parse local passwords: %s", err)
            return []
        if not isinstance(records, list):
            logger.error("Local passwords are not a JSON list")
            return []
        return records

    def replace_raw_local_records(self, records: list[dict[str, Any]]) -> None:
        self._local.set(
            self._config.passwords_storage_key, orjson.dumps(records).decode("utf-8"),
        )

    async def load_local(self) -> list[PasswordEntry]:
        """Read and decrypt local entries with the current local key."""
        entries: list[PasswordEntry] = []
        stored: dict[str, Optional[str]] = {}
        for item in self.raw_local_records():
            if not isinstance(item, dict):
                continue
            persisted = item.get("password")
            data = dict(item)
            data["password"] = await self._adapter.read_field(persisted, StorageScope.LOCAL)
            data["storageType"] = StorageScope.LOCAL.value
            try:
                entry = PasswordEntry.model_validate(data)
            except ValidationError as err:
                logger.error("Skipping invalid local entry id=%s: %s", item.get("id"), err)
                continue
            stored[entry.id] = persisted
            entries.append(entry)
        self._local_entries = entries
        self._stored.update(stored)
        logger.debug("Loaded %d local password(s)", len(entries))
        return list(entries)

    async def save_local(self) -> None:
        """Encrypt and persist every local entry.

        Unchanged encrypted fields keep their envelope; legacy plaintext is
        upgraded when a local key is published.
        """
        records: list[dict[str, Any]] = []
        saved: list[PasswordEntry] = []
        for entry in self._local_entries:
            data = entry.model_dump(mode="json", by_alias=True, exclude={"password"})
            persisted = await self._adapter.write_field(
                entry.password, StorageScope.LOCAL, self._stored.get(entry.id),
            )
            if persisted is not None:
                data["password"] = persisted
            self._stored[entry.id] = persisted
            records.append(data)
            saved.append(
                entry.model_copy(
                    update={"password": _remember_envelope(entry.password, persisted)}
                )
            )
        self.replace_raw_local_records(records)
        self._local_entries = saved
        logger.debug("Saved %d local password(s)", len(records))

    # ------------------------------------------------------------------
    # Cloud storage
    # ------------------------------------------------------------------

    async def load_cloud(self, owner_id: str) -> list[PasswordEntry]:
        """Fetch and decrypt cloud entries for owner_id."""
        self._owner_id = owner_id
        if self._remote is None:
            self._cloud_entries = []
            return []
        rows = await self._remote.list(owner_id)
        entries: list[PasswordEntry] = []
        for row in rows:
            persisted = row.get("password")
            data = {name: row.get(name) for name in PASSWORD_CLOUD_COLUMNS}
            data.update(
                id=row["id"],
                password=await self._adapter.read_field(persisted, StorageScope.CLOUD),
                storage_type=StorageScope.CLOUD,
                created_at=row.get("created_at") or datetime.now(timezone.utc),
            )
            try:
                entry = PasswordEntry.model_validate(
                    {k: v for k, v in data.items() if v is not None}
                )
            except ValidationError as err:
                logger.error("Skipping invalid cloud entry id=%s: %s", row.get("id"), err)
                continue
            self._stored[entry.id] = persisted
            entries.append(entry)
        self._cloud_entries = entries
        logger.debug("Loaded %d cloud password(s) for user=%s", len(entries), owner_id)
        return list(entries)

    def _can_use_cloud(self, owner_id: Optional[str]) -> bool:
        return (
            self._remote is not None
            and owner_id is not None
            and self._adapter.has_key(StorageScope.CLOUD)
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add(
        self, entry: PasswordEntry, owner_id: Optional[str] = None,
    ) -> PasswordEntry:
        """Add an entry; cloud entries fall back to local without a cloud key.

        Raises:
            RecordStoreError: If the remote store rejects the insert.
        """
        owner_id = owner_id or self._owner_id
        if entry.storage_type is StorageScope.CLOUD and self._can_use_cloud(owner_id):
            fields = {
                name: _column_value(getattr(entry, name))
                for name in PASSWORD_CLOUD_COLUMNS
            }
            fields = await self._adapter.write_record(
                fields, ("password",), StorageScope.CLOUD,
            )
            fields["user_id"] = owner_id
            record = await self._remote.insert(fields)
            await self.load_cloud(owner_id)
            logger.info("Added cloud password id=%s", record.get("id"))
            return self.get(record["id"]) or entry.model_copy(update={"id": record["id"]})
        entry = entry.model_copy(update={"storage_type": StorageScope.LOCAL})
        self._local_entries.insert(0, entry)
        await self.save_local()
        logger.info("Added local password id=%s", entry.id)
        return self.get(entry.id)

    async def update(self, entry_id: str, **updates: Any) -> Optional[PasswordEntry]:
        """Apply updates to an entry.

        A sentinel password in ``updates`` never overwrites stored data.

        Raises:
            RecordStoreError: If the remote store rejects the update.
        """
        entry, scope = self._find(entry_id)
        if entry is None:
            return None
        if "password" in updates:
            updates["password"] = as_secret(updates["password"])
        if scope is StorageScope.CLOUD and self._remote is not None:
            fields = {
                name: _column_value(value)
                for name, value in updates.items()
                if name in PASSWORD_CLOUD_COLUMNS
            }
            if "password" in fields:
                persisted = await self._adapter.write_field(
                    fields["password"], StorageScope.CLOUD, self._stored.get(entry_id),
                )
                if persisted is None or persisted == self._stored.get(entry_id):
                    fields.pop("password")
                else:
                    fields["password"] = persisted
            if fields:
                await self._remote.update(entry_id, fields)
            if self._owner_id is not None:
                await self.load_cloud(self._owner_id)
            return self.get(entry_id)
        updated = entry.model_copy(
            update={k: v for k, v in updates.items() if k in PasswordEntry.model_fields}
        )
        self._local_entries = [
            updated if e.id == entry_id else e for e in self._local_entries
        ]
        await self.save_local()
        return self.get(entry_id)

    async def delete(self, entry_id: str) -> bool:
        entry, scope = self._find(entry_id)
        if entry is None:
            return False
        if scope is StorageScope.CLOUD and self._remote is not None:
            await self._remote.delete(entry_id)
            if self._owner_id is not None:
                await self.load_cloud(self._owner_id)
        else:
            self._local_entries = [e for e in self._local_entries if e.id != entry_id]
            await self.save_local()
        self._stored.pop(entry_id, None)
        logger.info("Deleted %s password id=%s", scope.value, entry_id)
        return True

    async def mark_as_used(self, entry_id: str) -> Optional[PasswordEntry]:
        return await self.update(entry_id, last_used=datetime.now(timezone.utc))

    async def toggle_favorite(self, entry_id: str) -> Optional[PasswordEntry]:
        entry = self.get(entry_id)
        if entry is None:
            return None
        return await self.update(entry_id, is_favorite=not entry.is_favorite)


class NoteRepository:
    """Secure notes in the remote store, content encrypted with the cloud key."""

    def __init__(self, adapter: RecordEncryptionAdapter, remote: RecordStore):
        self._adapter = adapter
        self._remote = remote
        self._notes: list[SecureNote] = []
        self._stored: dict[str, Optional[str]] = {}
        self._owner_id: Optional[str] = None

    @property
    def notes(self) -> list[SecureNote]:
        return list(self._notes)

    def get(self, note_id: str) -> Optional[SecureNote]:
        for note in self._notes:
            if note.id == note_id:
                return note
        return None

    async def load(self, owner_id: str) -> list[SecureNote]:
        self._owner_id = owner_id
        rows = await self._remote.list(owner_id)
        notes: list[SecureNote] = []
        for row in rows:
            persisted = row.get("content")
            data = {k: v for k, v in row.items() if v is not None}
            data["content"] = await self._adapter.read_field(persisted, StorageScope.CLOUD)
            try:
                note = SecureNote.model_validate(data)
            except ValidationError as err:
                logger.error("Skipping invalid note id=%s: %s", row.get("id"), err)
                continue
            self._stored[note.id] = persisted
            notes.append(note)
        self._notes = notes
        logger.debug("Loaded %d note(s) for user=%s", len(notes), owner_id)
        return list(notes)

    async def add(self, note: SecureNote, owner_id: Optional[str] = None) -> SecureNote:
        """Insert a note.

        Raises:
            RecordStoreError: If the remote store rejects the insert.
        """
        owner_id = owner_id or self._owner_id
        if owner_id is None:
            raise ValueError("Notes require an owner id")
        fields = {name: getattr(note, name) for name in NOTE_COLUMNS}
        fields = await self._adapter.write_record(fields, ("content",), StorageScope.CLOUD)
        fields["user_id"] = owner_id
        record = await self._remote.insert(fields)
        await self.load(owner_id)
        return self.get(record["id"]) or note.model_copy(update={"id": record["id"]})

    async def update(self, note_id: str, **updates: Any) -> Optional[SecureNote]:
        if self.get(note_id) is None:
            return None
        fields = {k: v for k, v in updates.items() if k in NOTE_COLUMNS}
        if "content" in fields:
            persisted = await self._adapter.write_field(
                fields["content"], StorageScope.CLOUD, self._stored.get(note_id),
            )
            if persisted is None or persisted == self._stored.get(note_id):
                fields.pop("content")
            else:
                fields["content"] = persisted
        if fields:
            await self._remote.update(note_id, fields)
        if self._owner_id is not None:
            await self.load(self._owner_id)
        return self.get(note_id)

    async def delete(self, note_id: str) -> bool:
        if self.get(note_id) is None:
            return False
        await self._remote.delete(note_id)
        self._stored.pop(note_id, None)
        if self._owner_id is not None:
            await self.load(self._owner_id)
        return True
