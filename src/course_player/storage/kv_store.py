"""Async key-value store for small client state (tokens, preferences)."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Protocol

import anyio
import structlog

logger = structlog.get_logger()


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, used in tests and when no storage dir exists."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any | None:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)


class JsonFileStore:
    """Whole-file JSON store.

    Every write rewrites the file through a temp file and a rename.
    Values must be JSON-serializable. A corrupt file is logged and
    treated as empty.
    """

    def __init__(self, path: Path) -> None:
        self._path = anyio.Path(path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return Path(self._path)

    async def get(self, key: str) -> Any | None:
        data = await self._load()
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = dict(await self._load())
            data[key] = value
            await self._write(data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = dict(await self._load())
            if key not in data:
                return
            del data[key]
            await self._write(data)

    async def _load(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache
        if not await self._path.exists():
            self._cache = {}
            return self._cache
        raw = await self._path.read_text(encoding="utf-8")
        try:
            loaded = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            logger.warning("kv_store_corrupt", path=str(self._path), error=str(exc))
            loaded = {}
        if not isinstance(loaded, dict):
            logger.warning(
                "kv_store_corrupt", path=str(self._path), error="not an object"
            )
            loaded = {}
        self._cache = loaded
        return self._cache

    async def _write(self, data: dict[str, Any]) -> None:
        await self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        await tmp.write_text(
            json.dumps(data, ensure_ascii=False, sort_keys=True),
            encoding="utf-8",
        )
        await tmp.replace(self._path)
        self._cache = data
        logger.debug("kv_store_written", path=str(self._path), keys=len(data))
