"""Per-conversation pagination bookmarks."""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from .typing import Message


class PaginationCursors:
    """Maps a conversation key to the id of the oldest message handed out.

    The cursor only moves backward in history: ``load_last_messages`` seeds it
    and every ``load_more_messages`` call moves it to an older entry.
    """

    def __init__(self) -> None:
        self._cursors: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._cursors.get(key)

    def set(self, key: str, message_id: Any) -> None:
        self._cursors[key] = message_id

    def discard(self, key: str) -> None:
        self._cursors.pop(key, None)

    def clear(self) -> None:
        self._cursors.clear()

    def position(self, key: str, entries: Sequence[Message]) -> Optional[int]:
        """Index of the cursor entry within ``entries``, or None if unknown."""
        if key not in self._cursors:
            return None
        cursor = self._cursors[key]
        for i, entry in enumerate(entries):
            if entry.get("id") == cursor:
                return i
        return None

    def __contains__(self, key: str) -> bool:
        return key in self._cursors

    def __len__(self) -> int:
        return len(self._cursors)
