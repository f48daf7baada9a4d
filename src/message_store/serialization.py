"""Serialization of messages to the persisted record format.

Each entry of a conversation log is a JSON string. Timestamps are written as
``YYYY-MM-DDTHH:MM:SS.sssZ`` (UTC, millisecond precision) and any string value
matching that pattern is revived to a timezone-aware ``datetime`` on read.
"""
from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from .typing import Message

DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def format_timestamp(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with milliseconds."""
    if value.tzinfo is None:
        # naive values are taken as UTC
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(text: str) -> datetime:
    return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def _default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return format_timestamp(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _revive(value: Any) -> Any:
    if isinstance(value, str) and DATE_FORMAT.match(value):
        return parse_timestamp(value)
    if isinstance(value, list):
        return [_revive(v) for v in value]
    return value


def _revive_dates(obj: Dict[str, Any]) -> Dict[str, Any]:
    # json calls this bottom-up, so nested dicts are already revived
    return {k: _revive(v) for k, v in obj.items()}


def serialize_message(message: Message | Dict[str, Any]) -> str:
    """Encode a message as one conversation log entry."""
    try:
        return json.dumps(message, default=_default, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize message to JSON: {e}") from e


def deserialize_message(raw: str) -> Message:
    """Decode one conversation log entry, reviving timestamps."""
    return json.loads(raw, object_hook=_revive_dates)


def deserialize_log(entries: Iterable[str]) -> List[Message]:
    return [deserialize_message(raw) for raw in entries]
