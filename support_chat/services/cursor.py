"""Opaque history cursor: ``"<ISO-8601 timestamp>|<message UUID>"``.

A timestamp-only cursor is still accepted from older clients; it compares on
timestamp alone.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from support_chat.core.exceptions import InvalidCursorError
from support_chat.models.conversation import MessageRead, as_utc

_SEPARATOR = "|"


@dataclass(frozen=True)
class Cursor:
    """Position of a message in the canonical (created_at, id) order."""

    created_at: datetime
    message_id: Optional[uuid.UUID] = None

    @classmethod
    def from_message(cls, message: MessageRead) -> "Cursor":
        return cls(created_at=as_utc(message.created_at), message_id=message.id)


def encode_cursor(cursor: Cursor) -> str:
    # "Z" rather than "+00:00": a bare "+" in a query string decodes to a space
    timestamp = as_utc(cursor.created_at).isoformat().replace("+00:00", "Z")
    if cursor.message_id is None:
        return timestamp
    return f"{timestamp}{_SEPARATOR}{cursor.message_id}"


def _parse_timestamp(raw: str) -> Optional[datetime]:
    value = raw.strip()
    if not value:
        return None
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def decode_cursor(raw: str) -> Cursor:
    """
    Parse a cursor string.

    Raises:
        InvalidCursorError: If the timestamp or id segment is malformed, or
            there are more than two segments
    """
    parts = raw.split(_SEPARATOR)
    if len(parts) > 2:
        raise InvalidCursorError(raw)

    created_at = _parse_timestamp(parts[0])
    if created_at is None:
        raise InvalidCursorError(raw)

    if len(parts) == 1:
        return Cursor(created_at=created_at)

    try:
        message_id = uuid.UUID(parts[1].strip())
    except ValueError as exc:
        raise InvalidCursorError(raw) from exc

    return Cursor(created_at=created_at, message_id=message_id)
