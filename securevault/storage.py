"""
Key-value storage backends.

``MemoryStorage`` stands in for session-scoped storage (cleared when the
process ends). ``JsonFileStorage`` is the persistent local store: one JSON
object of string values, rewritten on every change.
"""
import os
import logging
from pathlib import Path
from typing import Optional, Union
from collections.abc import Iterator, Mapping, MutableMapping

import orjson

logger = logging.getLogger("securevault.storage")


class MemoryStorage(MutableMapping[str, str]):
    """Dict-like in-memory storage with the ``get/set/remove`` contract."""

    def __init__(self, data: Optional[Mapping[str, str]] = None) -> None:
        self._data: dict[str, str] = {}
        if data is not None:
            self._data.update(data)

    def __repr__(self) -> str:
        return f'<MemoryStorage keys={list(self._data.keys())}>'

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(
                f"Storage values must be strings, got {type(value).__name__}"
            )
        self._data[key] = value

    def remove(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data = {}

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        self.set(key, value)

    def __delitem__(self, key: str) -> None:
        del self._data[key]


class JsonFileStorage(MemoryStorage):
    """Persistent storage backed by a single JSON file.

    The file is created with owner-only permissions on first write.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def __repr__(self) -> str:
        return f'<JsonFileStorage path={str(self.path)!r} keys={len(self)}>'

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = orjson.loads(self.path.read_bytes())
        except orjson.JSONDecodeError as err:
            raise RuntimeError(
                f"Storage file {self.path} is not valid JSON: {err}"
            ) from err
        if not isinstance(data, dict):
            raise RuntimeError(f"Storage file {self.path} must hold a JSON object")
        self._data = {str(k): str(v) for k, v in data.items()}
        logger.debug("Loaded %d key(s) from %s", len(self._data), self.path)

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(orjson.dumps(self._data))
        os.chmod(self.path, 0o600)

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._save()

    def remove(self, key: str) -> None:
        if key in self._data:
            super().remove(key)
            self._save()

    def clear(self) -> None:
        super().clear()
        self._save()

    def __delitem__(self, key: str) -> None:
        super().__delitem__(key)
        self._save()
