"""Key/value persistence namespaced per user.

Every failure is logged and reported as ``False``/``None`` so callers can
treat storage as best-effort without guarding each call.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable

from liftsync.storage.keys import StorageKey, user_key

logger = logging.getLogger(__name__)


def _default_store_path() -> Path:
    return Path.home() / ".liftsync" / "state.json"


class KeyValueStore:
    """Async key/value store. Subclasses implement the raw document access."""

    async def save(self, key: StorageKey | str, value: Any, user_id: str | None = None) -> bool:
        storage_key = user_key(key, user_id)
        try:
            encoded = json.dumps(value, ensure_ascii=True)
            self._write(storage_key, encoded)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Error saving %s: %s", storage_key, exc)
            return False

    async def load(
        self, key: StorageKey | str, user_id: str | None = None, default: Any = None
    ) -> Any:
        storage_key = user_key(key, user_id)
        try:
            raw = self._read(storage_key)
            if raw is None:
                return default
            return json.loads(raw)
        except (OSError, ValueError) as exc:
            logger.error("Error loading %s: %s", storage_key, exc)
            return default

    async def remove(self, key: StorageKey | str, user_id: str | None = None) -> bool:
        return await self.remove_many((key,), user_id)

    async def remove_many(
        self, keys: Iterable[StorageKey | str], user_id: str | None = None
    ) -> bool:
        storage_keys = [user_key(key, user_id) for key in keys]
        try:
            self._delete(storage_keys)
            return True
        except (OSError, ValueError) as exc:
            logger.error("Error removing %s: %s", storage_keys, exc)
            return False

    def _read(self, storage_key: str) -> str | None:
        raise NotImplementedError

    def _write(self, storage_key: str, encoded: str) -> None:
        raise NotImplementedError

    def _delete(self, storage_keys: list[str]) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def keys(self) -> list[str]:
        return sorted(self._items)

    def _read(self, storage_key: str) -> str | None:
        return self._items.get(storage_key)

    def _write(self, storage_key: str, encoded: str) -> None:
        self._items[storage_key] = encoded

    def _delete(self, storage_keys: list[str]) -> None:
        for storage_key in storage_keys:
            self._items.pop(storage_key, None)


class JsonFileStore(KeyValueStore):
    """All keys kept in one JSON document, rewritten atomically on change."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or _default_store_path()

    def _load_document(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Store document must be an object: {self.path}")
        return data

    def _dump_document(self, document: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(document, ensure_ascii=True, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def _read(self, storage_key: str) -> str | None:
        return self._load_document().get(storage_key)

    def _write(self, storage_key: str, encoded: str) -> None:
        document = self._load_document()
        document[storage_key] = encoded
        self._dump_document(document)

    def _delete(self, storage_keys: list[str]) -> None:
        document = self._load_document()
        changed = False
        for storage_key in storage_keys:
            if storage_key in document:
                del document[storage_key]
                changed = True
        if changed:
            self._dump_document(document)
