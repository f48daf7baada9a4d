"""Message repository: domain operations over the storage backend.

Every operation is a single task on the :class:`OperationQueue`, so
read-modify-write cycles (fetch the whole conversation log, change it, write
it back) never interleave. The :class:`IdStateIndex` lets ``add`` and
``update`` skip work they can prove is already done; when it has no answer
they fall back to scanning storage.

When no backend is active (never initialized, or closed) operations resolve
at once with an empty result instead of failing.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .backends import StorageBackend
from .cursors import PaginationCursors
from .errors import InvalidMessageError
from .index import IdStateIndex
from .queue import OperationQueue
from .serialization import deserialize_log, deserialize_message, serialize_message
from .service import StorageService
from .typing import ConversationLog, Message, StateUpdate

logger = logging.getLogger(__name__)

PAGE_SIZE = 30
DISPLAYED = "displayed"
_MISSING = object()


def conversation_key(message: Message | Dict[str, Any]) -> str:
    """Key of the conversation a message belongs to: the other participant."""
    incoming = message.get("direction") == "incoming" or message.get("state") == "received"
    party = message.get("sender") if incoming else message.get("receiver")
    if isinstance(party, dict):
        party = party.get("uri")
    if not party:
        raise InvalidMessageError(f"Message {message.get('id')!r} has no conversation party")
    return str(party)


class MessageRepository:
    """Queued message persistence on top of a :class:`StorageService`."""

    def __init__(
        self,
        service: Optional[StorageService] = None,
        *,
        queue: Optional[OperationQueue] = None,
        page_size: int = PAGE_SIZE,
        task_timeout: Optional[float] = None,
    ) -> None:
        self.service = service or StorageService()
        self.queue = queue or OperationQueue(task_timeout=task_timeout)
        self.index = IdStateIndex()
        self.cursors = PaginationCursors()
        self.page_size = max(1, int(page_size))

    # ----------------- lifecycle -----------------
    def initialize(self, account: str, native_store: Any = None, use_bridged: bool = False) -> StorageBackend:
        return self.service.initialize(account, native_store, use_bridged)

    def close(self) -> None:
        self.service.close()

    @property
    def store(self) -> Optional[StorageBackend]:
        return self.service.backend

    # ----------------- raw passthroughs (not queued) -----------------
    async def get(self, key: str) -> Any:
        store = self.store
        if store is None:
            return None
        return await store.get(key)

    async def set(self, key: str, value: Any) -> Any:
        store = self.store
        if store is None:
            return None
        return await store.set(key, value)

    # ----------------- writes -----------------
    async def add(self, message: Message) -> Optional[ConversationLog]:
        """Append ``message`` to its conversation unless its id is already stored.

        Returns the updated log, or None when the message was skipped.
        """
        if self.store is None:
            return []
        message_id = message.get("id")
        if message_id is None:
            raise InvalidMessageError("Cannot store a message without an id")
        contact = conversation_key(message)
        entry = serialize_message(message)

        async def task() -> Optional[ConversationLog]:
            store = self.store
            if store is None:
                return []
            if message_id in self.index:
                logger.debug("NOT saving message %s in storage, already indexed", message_id)
                return None
            messages = list(await store.get(contact) or [])
            for raw in messages:
                if deserialize_message(raw).get("id") == message_id:
                    logger.debug("NOT saving message %s in storage, already in %s", message_id, contact)
                    return None
            messages.append(entry)
            logger.debug("Saving message %s in storage for %s", message_id, contact)
            await store.set(contact, messages)
            self.index.record(message_id, message.get("state"))
            return messages

        return await self.queue.enqueue(task, name="add")

    async def remove_message(self, message: Message) -> ConversationLog:
        """Delete ``message`` from its conversation log."""
        if self.store is None:
            return []
        message_id = message.get("id")
        contact = conversation_key(message)

        async def task() -> ConversationLog:
            store = self.store
            if store is None:
                return []
            stored = await store.get(contact)
            if not stored:
                return []
            kept: ConversationLog = []
            removed_at: Optional[int] = None
            for raw in stored:
                if deserialize_message(raw).get("id") == message_id:
                    self.index.discard(message_id)
                    removed_at = len(kept)
                    continue
                kept.append(raw)
            await store.set(contact, kept)
            if removed_at is not None and self.cursors.get(contact) == message_id:
                self._move_cursor(contact, kept, removed_at)
            return kept

        return await self.queue.enqueue(task, name="remove_message")

    remove = remove_message

    def _move_cursor(self, key: str, kept: ConversationLog, removed_at: int) -> None:
        """Point the cursor of ``key`` at the next newer entry after its own was removed.

        With no newer entry left nothing loaded survives, so the cursor is dropped
        and the next ``load_last_messages`` seeds it again.
        """
        if removed_at < len(kept):
            new_id = deserialize_message(kept[removed_at]).get("id")
            logger.debug("Moving cursor of %s to %s after removal", key, new_id)
            self.cursors.set(key, new_id)
        else:
            self.cursors.discard(key)

    async def remove_conversation(self, key: str) -> None:
        """Delete a whole conversation log, then rebuild the index."""
        if self.store is None:
            return None

        async def task() -> None:
            store = self.store
            if store is not None:
                await store.remove(key)
                self.cursors.discard(key)

        await self.queue.enqueue(task, name="remove_conversation")
        await self.update_id_map()
        return None

    async def update(self, message: StateUpdate | Dict[str, Any]) -> Optional[ConversationLog]:
        """Move a stored message to ``message["state"]``.

        A message already in the terminal ``displayed`` state is left alone.
        Returns the rewritten log of the owning conversation, or None when
        nothing changed.
        """
        if self.store is None:
            return []
        message_id = message.get("messageId")
        if message_id is None:
            return None
        state = message.get("state")

        def visit(value: ConversationLog, key: str, ordinal: int) -> Any:
            found: Any = _MISSING
            changed = False
            out: ConversationLog = []
            for raw in value:
                entry = deserialize_message(raw)
                if entry.get("id") == message_id:
                    found = entry.get("state")
                    if found != state and found != DISPLAYED:
                        logger.debug("Updating state for stored message with id: %s", message_id)
                        entry["state"] = state
                        raw = serialize_message(entry)
                        changed = True
                out.append(raw)
            if changed:
                return key, out, state
            if found is not _MISSING:
                return key, None, found
            return None

        async def task() -> Optional[ConversationLog]:
            store = self.store
            if store is None:
                return []
            if self.index.has_state(message_id, state):
                return None
            result = await store.iterate(visit)
            if result is None:
                return None
            key, messages, stored_state = result
            if messages is not None:
                logger.debug("Saving state stored messages for: %s", key)
                await store.set(key, messages)
            self.index.record(message_id, stored_state)
            return messages

        return await self.queue.enqueue(task, name="update")

    async def update_disposition(self, message_id: Any, state: str) -> Optional[ConversationLog]:
        """Set ``dispositionState`` of a stored message."""
        if self.store is None:
            return []

        def visit(value: ConversationLog, key: str, ordinal: int) -> Any:
            found = False
            changed = False
            out: ConversationLog = []
            for raw in value:
                entry = deserialize_message(raw)
                if entry.get("id") == message_id:
                    found = True
                    if entry.get("dispositionState") != state:
                        logger.debug("Updating dispositionState for stored message with id: %s", message_id)
                        entry["dispositionState"] = state
                        raw = serialize_message(entry)
                        changed = True
                out.append(raw)
            if found:
                return key, out if changed else None
            return None

        async def task() -> Optional[ConversationLog]:
            store = self.store
            if store is None:
                return []
            result = await store.iterate(visit)
            if result is None:
                return None
            key, messages = result
            if messages is None:
                return None
            logger.debug("Saving stored messages for: %s", key)
            await store.set(key, messages)
            return messages

        return await self.queue.enqueue(task, name="update_disposition")

    # ----------------- history loading -----------------
    async def load_last_messages(self) -> Dict[str, List[Message]]:
        """Most recent ``page_size`` messages of every conversation.

        Seeds each conversation's pagination cursor with the oldest returned
        message.
        """
        if self.store is None:
            return {}

        async def task() -> Dict[str, List[Message]]:
            store = self.store
            if store is None:
                return {}
            last: Dict[str, List[Message]] = {}
            for key in await store.keys() or []:
                stored = await store.get(key)
                if not stored:
                    continue
                recent = deserialize_log(stored[-self.page_size:])
                last[key] = recent
                self.cursors.set(key, recent[0].get("id"))
            return last

        return await self.queue.enqueue(task, name="load_last_messages")

    async def load_more_messages(self, key: str) -> Optional[List[Message]]:
        """Up to ``page_size`` messages older than the cursor, oldest first.

        Returns None when the cursor already sits on the oldest message (or
        the conversation was never loaded).
        """
        if self.store is None:
            return []

        async def task() -> Optional[List[Message]]:
            store = self.store
            if store is None:
                return []
            stored = await store.get(key)
            if not stored:
                return None
            entries = deserialize_log(stored)
            logger.debug("Chat has %s stored messages", len(entries))
            position = self.cursors.position(key, entries)
            if not position:
                return None
            start = max(0, position - self.page_size)
            window = entries[start:position]
            self.cursors.set(key, window[0].get("id"))
            return window

        return await self.queue.enqueue(task, name="load_more_messages")

    async def has_more(self, key: str) -> bool:
        """True if older messages remain behind the cursor of ``key``."""
        if self.store is None:
            return False

        async def task() -> bool:
            store = self.store
            if store is None or key not in self.cursors:
                return False
            stored = await store.get(key)
            if not stored:
                return False
            position = self.cursors.position(key, deserialize_log(stored))
            if not position:
                logger.debug("%s has no more messages to load", key)
                return False
            logger.debug("%s has more messages to load", key)
            return True

        return await self.queue.enqueue(task, name="has_more")

    # ----------------- maintenance -----------------
    async def update_id_map(self) -> Dict[Any, Optional[str]]:
        """Rebuild the id/state index from a full scan of storage."""
        if self.store is None:
            return {}

        def visit(value: ConversationLog, key: str, ordinal: int) -> None:
            for raw in value:
                entry = deserialize_message(raw)
                self.index.record(entry.get("id"), entry.get("state"))
            return None

        async def task() -> Dict[Any, Optional[str]]:
            store = self.store
            self.index.clear()
            if store is not None:
                await store.iterate(visit)
            return self.index.snapshot()

        return await self.queue.enqueue(task, name="update_id_map")

    async def drop_instance(self) -> None:
        """Delete everything stored for the active account."""
        if self.store is None:
            return None

        async def task() -> None:
            store = self.store
            if store is not None:
                await store.drop_instance()
            self.index.clear()
            self.cursors.clear()

        await self.queue.enqueue(task, name="drop_instance")
        return None
