"""Offline message persistence for the chat client.

Conversation logs live in one of two backends (a SQLite-backed direct store,
or the native per-account file store behind the host bridge). All mutations
go through a single serialized operation queue.

Typical usage
-------------
from message_store import MessageRepository

repo = MessageRepository()
repo.initialize("alice@example.com")
await repo.add(message)
history = await repo.load_last_messages()

or, over HTTP, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .backends import BridgedStore, DirectStore, StorageBackend
from .errors import BackendError, InvalidMessageError, MessageStoreError, OperationTimeoutError
from .native import FileStore
from .queue import OperationQueue
from .repository import MessageRepository, conversation_key
from .service import StorageService

__all__ = [
    "BackendError",
    "BridgedStore",
    "DirectStore",
    "FileStore",
    "InvalidMessageError",
    "MessageRepository",
    "MessageStoreError",
    "OperationQueue",
    "OperationTimeoutError",
    "StorageBackend",
    "StorageService",
    "conversation_key",
    "__version__",
    "get_version",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
