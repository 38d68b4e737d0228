"""Persistent string key/value stores used by the client toolkit.

The stores mirror the small surface browsers expose for local storage:
``get_item``, ``set_item``, ``remove_item`` and ``keys``.  Values are always
strings; callers encrypt before writing.  Each operation takes a lock so a
single process sees consistent reads, but nothing coordinates separate
processes that share the same file.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_STORAGE_FILENAME = "local_storage.json"


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...


class MemoryStorage:
    """In-process storage, useful for tests and short-lived tools."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("storage values must be strings")
        with self._lock:
            self._data[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStorage:
    """Storage backed by a single JSON document on disk.

    An unreadable file is treated as empty; the next write replaces it.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @classmethod
    def default(cls) -> "JsonFileStorage":
        from mentalspace.config import get_settings

        return cls(get_settings().data_dir / DEFAULT_STORAGE_FILENAME)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("local_storage_unreadable", path=str(self.path))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): value for key, value in data.items() if isinstance(value, str)}

    def _save(self, data: Dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("storage values must be strings")
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._load())


__all__ = ["DEFAULT_STORAGE_FILENAME", "JsonFileStorage", "KeyValueStorage", "MemoryStorage"]
