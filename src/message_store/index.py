"""In-memory index from message id to last known state."""
from __future__ import annotations

from typing import Any, Dict, Iterator, Optional


class IdStateIndex:
    """Derived cache of ``id -> state`` for every stored message.

    Rebuilt wholesale from storage (see ``MessageRepository.update_id_map``)
    and used only to skip work: a miss always falls back to reading storage.
    """

    def __init__(self) -> None:
        self._states: Dict[Any, Optional[str]] = {}

    def get(self, message_id: Any) -> Optional[str]:
        return self._states.get(message_id)

    def record(self, message_id: Any, state: Optional[str]) -> None:
        self._states[message_id] = state

    def discard(self, message_id: Any) -> None:
        self._states.pop(message_id, None)

    def clear(self) -> None:
        self._states.clear()

    def has_state(self, message_id: Any, state: Optional[str]) -> bool:
        """True when the index already shows ``message_id`` at ``state``."""
        return message_id in self._states and self._states[message_id] == state

    def snapshot(self) -> Dict[Any, Optional[str]]:
        return dict(self._states)

    def __contains__(self, message_id: Any) -> bool:
        return message_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._states)
