"""Cursor-based, newest-first paging over a conversation's messages."""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from support_chat.models.conversation import MessageRead
from support_chat.services.cursor import Cursor, decode_cursor, encode_cursor
from support_chat.services.message_store import MessageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryPage:
    """One page of messages (oldest first) and the cursor for the next older page."""

    messages: list[MessageRead]
    next_cursor: Optional[str]


class HistoryPaginator:
    """Walks backwards through a conversation one page at a time."""

    def __init__(self, store: MessageStore):
        self.store = store

    def page(self, conversation_id: uuid.UUID, cursor: Optional[str], limit: int) -> HistoryPage:
        """
        Fetch a page of history.

        Without a cursor this is the most recent ``limit`` messages; with one,
        the ``limit`` messages immediately older than it. ``next_cursor``
        points at the oldest message returned, or is None for an empty page.

        Raises:
            InvalidCursorError: If ``cursor`` cannot be decoded
        """
        if cursor is None:
            messages = self.store.get_recent_messages(conversation_id, limit)
        else:
            position = decode_cursor(cursor)
            if position.message_id is None:
                logger.warning(f"chat.history.cursor_legacy conversation={conversation_id}")
            messages = self.store.get_older_messages(
                conversation_id,
                position.created_at,
                position.message_id,
                limit,
            )

        next_cursor = encode_cursor(Cursor.from_message(messages[0])) if messages else None
        return HistoryPage(messages=messages, next_cursor=next_cursor)
