"""Key/value backends with per-key TTL for crawl checkpoints."""
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Protocol
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os
import aiosqlite
import orjson

from afisha_crawler.config import STATE_DB, STATE_FILES_DIR

logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    """Anything with get/put(ttl)/delete can hold a checkpoint."""

    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...


def _expires_at(now: float, ttl: Optional[int]) -> Optional[float]:
    return now + ttl if ttl else None


class MemoryKV:
    """In-process backend for tests and dry runs."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self._data[key] = (value, _expires_at(self._clock(), ttl))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key for key in self._data if key.startswith(prefix)]
        for key in keys:
            del self._data[key]
        return len(keys)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqliteKV:
    """SQLite-backed store; one row per key."""

    def __init__(self, db_path: Path = STATE_DB, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        if self._initialized:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """
            )
            await db.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at)
                """
            )
            await db.commit()
        self._initialized = True
        logger.debug(f"Checkpoint database initialized at {self.db_path}")

    async def get(self, key: str) -> Optional[str]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT value FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                (key, self._clock()),
            )
            row = await cursor.fetchone()
            return row[0] if row else None

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self.initialize()
        now = self._clock()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (now,),
            )
            await db.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, _expires_at(now, ttl)),
            )
            await db.commit()

    async def delete(self, key: str) -> None:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()

    async def delete_prefix(self, prefix: str) -> int:
        await self.initialize()
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM kv WHERE key LIKE ? ESCAPE '\\'",
                (escaped + "%",),
            )
            await db.commit()
            return cursor.rowcount


class FileKV:
    """One JSON envelope file per key under a directory."""

    def __init__(self, directory: Path = STATE_FILES_DIR, clock: Callable[[], float] = time.time):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        async with aiofiles.open(path, "rb") as f:
            envelope = orjson.loads(await f.read())
        expires_at = envelope.get("expires_at")
        if expires_at is not None and expires_at <= self._clock():
            await self.delete(key)
            return None
        return envelope["value"]

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        envelope = {"value": value, "expires_at": _expires_at(self._clock(), ttl)}
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(orjson.dumps(envelope))
        await aiofiles.os.replace(tmp_path, path)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            await aiofiles.os.remove(path)

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        for path in self.directory.glob("*.json"):
            if unquote(path.stem).startswith(prefix):
                await aiofiles.os.remove(path)
                removed += 1
        return removed


def create_backend(kind: str) -> KeyValueBackend:
    """Backend named by STORAGE_BACKEND."""
    if kind == "sqlite":
        return SqliteKV()
    if kind == "file":
        return FileKV()
    if kind == "memory":
        return MemoryKV()
    raise ValueError(f"Unknown storage backend: {kind}")
