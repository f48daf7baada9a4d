"""Asynchronous key/value backends for conversation logs.

Two variants share one contract (:class:`StorageBackend`):

- :class:`DirectStore` keeps every entry in an indexed SQLite table.
- :class:`BridgedStore` forwards to a native per-account file store through a
  callback-style bridge handle (see :mod:`message_store.native`).

Both normalize "not found" to ``None`` and report underlying failures as
:class:`~message_store.errors.BackendError`.
"""
from __future__ import annotations

import asyncio
import functools
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiosqlite

from .errors import BackendError

logger = logging.getLogger(__name__)

# visitor(value, key, ordinal) -> result, or None to keep going
Visitor = Callable[[Any, str, int], Any]


class StorageBackend(ABC):
    """Capability set every backend provides."""

    kind: str = ""

    @abstractmethod
    async def get(self, key: str) -> Any:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> Any:
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    async def keys(self) -> Optional[List[str]]:
        ...

    async def iterate(self, visitor: Visitor) -> Any:
        """Apply ``visitor`` to every entry, stopping at the first non-None result."""
        keys = await self.keys()
        if not keys:
            return None
        for ordinal, key in enumerate(keys, 1):
            value = await self.get(key)
            if value is None:
                continue
            result = visitor(value, key, ordinal)
            if result is not None:
                return result
        return None

    async def drop_instance(self) -> None:
        await self.clear()

    def close(self) -> None:
        return None


# -----------------------------
# Direct store (SQLite)
# -----------------------------
_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    store TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (store, key)
);
"""


def _store_name(account: Optional[str]) -> str:
    # Bound as a query parameter, so the account is used verbatim.
    return f"messages_{account or 'default'}"


class DirectStore(StorageBackend):
    """Indexed key/value store on top of a single SQLite database.

    Every account gets its own logical store (``messages_<account>``) inside
    the same database file. Each call opens a short-lived ``aiosqlite``
    connection; the schema is created on first use.
    """

    kind = "direct"

    def __init__(self, path: str | Path, account: Optional[str] = None) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.store_name = _store_name(account)
        self._schema_ready = False
        self._closed = False

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        if self._closed:
            raise BackendError(f"Message database {self.path} is closed")
        try:
            async with aiosqlite.connect(self.path, timeout=30) as conn:
                if not self._schema_ready:
                    await conn.execute("PRAGMA journal_mode=WAL")
                    await conn.executescript(_SCHEMA)
                    await conn.commit()
                    self._schema_ready = True
                yield conn
        except aiosqlite.Error as e:
            raise BackendError(f"SQLite error on {self.store_name}: {e}") from e

    async def get(self, key: str) -> Any:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT value FROM kv WHERE store = ? AND key = ?", (self.store_name, key)
            ) as cursor:
                row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def set(self, key: str, value: Any) -> Any:
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise BackendError(f"Value for {key!r} is not JSON serializable: {e}") from e
        async with self._connection() as conn:
            await conn.execute(
                "INSERT INTO kv (store, key, value) VALUES (?, ?, ?) "
                "ON CONFLICT (store, key) DO UPDATE SET value = excluded.value",
                (self.store_name, key, text),
            )
            await conn.commit()
        return value

    async def remove(self, key: str) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM kv WHERE store = ? AND key = ?", (self.store_name, key))
            await conn.commit()

    async def clear(self) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM kv WHERE store = ?", (self.store_name,))
            await conn.commit()

    async def keys(self) -> List[str]:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT key FROM kv WHERE store = ? ORDER BY key", (self.store_name,)
            ) as cursor:
                rows = await cursor.fetchall()
        return [r[0] for r in rows]

    async def drop_instance(self) -> None:
        logger.debug("Dropping store %s", self.store_name)
        await self.clear()

    def close(self) -> None:
        self._closed = True


# -----------------------------
# Bridged store (native file store)
# -----------------------------
class BridgedStore(StorageBackend):
    """Adapter over the native file store reached through the host bridge.

    ``init(account)`` points the bridge at ``<dataPath>/messages/<account>/``.
    Every call first awaits :meth:`ready`; when ``init`` was never called the
    store configures itself on first use.
    """

    kind = "bridged"

    def __init__(self, native_store: Any, account: Optional[str] = None) -> None:
        self._store = native_store
        self._account = account
        self._initializing: Optional[asyncio.Future] = None
        self._configured = False
        self.options: Dict[str, Any] = {}

    def init(self, account: Optional[str] = None) -> None:
        """Start configuring the per-account data path."""
        logger.debug("Initialize bridged storage for messages")
        if account is not None:
            self._account = account
        self._configured = False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: ready() configures on first use.
            self._initializing = None
            return
        self._initializing = loop.create_task(self._configure())

    async def _configure(self) -> None:
        storage = await asyncio.to_thread(self._store.get_data_path)
        account = self._account or "default"
        self.options["dataPath"] = f"{str(storage).rstrip('/')}/messages/{account}/"
        self._configured = True

    async def ready(self) -> None:
        if self._configured:
            return
        if self._initializing is None:
            logger.debug("Store is not being initialized, init was never called, calling it now")
            self._initializing = asyncio.ensure_future(self._configure())
        try:
            await self._initializing
        except Exception as e:
            self._initializing = None
            raise BackendError(f"Failed to initialize bridged storage: {e}") from e

    async def _call(self, method_name: str, *args: Any) -> Any:
        """Invoke a callback-style bridge method and await its callback."""
        await self.ready()
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def settle(error: Any, data: Any) -> None:
            if future.done():
                return
            if error:
                future.set_exception(BackendError(f"Bridge {method_name} failed: {error}"))
            else:
                future.set_result(data)

        def callback(error: Any = None, data: Any = None) -> None:
            loop.call_soon_threadsafe(settle, error, data)

        method = getattr(self._store, method_name)
        try:
            await loop.run_in_executor(None, functools.partial(method, *args, self.options, callback))
        except Exception as e:
            raise BackendError(f"Bridge {method_name} raised: {e}") from e
        return await future

    async def get(self, key: str) -> Any:
        data = await self._call("get", key)
        if data is None or data == {}:
            return None
        return data

    async def set(self, key: str, value: Any) -> Any:
        await self._call("set", key, value)
        return value

    async def remove(self, key: str) -> None:
        await self._call("remove", key)

    async def clear(self) -> None:
        await self._call("clear")

    async def keys(self) -> Optional[List[str]]:
        data = await self._call("keys")
        if not data:
            return None
        return list(data)
