"""Key-value cache for the serialized event collection.

The whole event collection lives under one key and is read and written as a
single JSON blob. Two backends:

- ``JsonFileCache``: one JSON object on disk mapping keys to blobs, rewritten
  atomically on every ``set``/``remove``.
- ``MemoryCache``: a dict, for tests and ephemeral sessions.

Storage failures surface as :class:`CacheError`; the engine logs them and
carries on as if nothing were cached.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_CACHE_KEY = "events"


class CacheError(Exception):
    """Raised when the underlying storage medium cannot be read or written."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Cache operation on {key!r} failed: {reason}")


class LocalCache(Protocol):
    """Protocol for local cache backends."""

    async def get(self, key: str) -> str | None:
        """Return the blob stored under *key*, or ``None`` if absent.

        Raises:
            CacheError: If the storage medium cannot be read
        """
        ...

    async def set(self, key: str, blob: str) -> None:
        """Store *blob* under *key*, replacing any previous value.

        Raises:
            CacheError: If the storage medium cannot be written
        """
        ...

    async def remove(self, key: str) -> None:
        """Delete *key*. No-op if absent.

        Raises:
            CacheError: If the storage medium cannot be written
        """
        ...


class MemoryCache:
    """Dict-backed cache."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.entries: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.entries.get(key)

    async def set(self, key: str, blob: str) -> None:
        self.entries[key] = blob

    async def remove(self, key: str) -> None:
        self.entries.pop(key, None)


class JsonFileCache:
    """File-backed cache.

    All keys share one JSON document at *path*. Writes go to a sibling
    temporary file and are moved into place with ``os.replace`` so a crash
    mid-write never leaves a truncated document behind.

    Args:
        path: Location of the JSON document
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).resolve()
        self._io_lock = asyncio.Lock()

    def _read_document(self, key: str) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CacheError(key, f"cannot read {self.path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CacheError(key, f"{self.path} is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise CacheError(key, f"{self.path} must hold a JSON object")
        return document

    def _write_document(self, key: str, document: dict[str, str]) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise CacheError(key, f"cannot write {self.path}: {exc}") from exc

    async def get(self, key: str) -> str | None:
        async with self._io_lock:
            document = await asyncio.to_thread(self._read_document, key)
        value = document.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise CacheError(key, "stored value is not a string blob")
        return value

    async def set(self, key: str, blob: str) -> None:
        async with self._io_lock:
            document = await asyncio.to_thread(self._read_document, key)
            document[key] = blob
            await asyncio.to_thread(self._write_document, key, document)

    async def remove(self, key: str) -> None:
        async with self._io_lock:
            document = await asyncio.to_thread(self._read_document, key)
            if key not in document:
                return
            del document[key]
            await asyncio.to_thread(self._write_document, key, document)
