from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, NotRequired, TypedDict, Union


class Message(TypedDict):
    """A single chat message as produced by the transport layer."""

    id: Union[str, int]
    receiver: str
    sender: Union[str, Dict[str, Any]]  # plain uri or {"uri": ...}
    state: str                          # "pending" | "sent" | "delivered" | "displayed" | "received" | ...

    # Optional metadata fields
    dispositionState: NotRequired[str]
    timestamp: NotRequired[datetime]
    direction: NotRequired[str]         # "incoming" | "outgoing"
    content: NotRequired[str]
    contentType: NotRequired[str]


class StateUpdate(TypedDict):
    """Payload for a state change of an already stored message."""

    messageId: Union[str, int]
    state: str


# A conversation log as persisted: one serialized message per entry.
ConversationLog = List[str]
