"""Durable, ordered message log grouped by conversation.

Every call round-trips to the database and commits on its own; there is no
caching layer and no retry. SQLAlchemy errors propagate to the caller, except
a foreign-key violation on insert which becomes ``ConversationMissingError``.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, insert, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from support_chat.core.exceptions import ConversationMissingError
from support_chat.models.conversation import (
    Conversation,
    Message,
    MessageRead,
    Sender,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    return "foreign key" in str(exc.orig).lower()


def _is_duplicate_key(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return any(marker in message for marker in ("unique", "duplicate", "primary key"))


class MessageStore:
    """Message persistence bound to one database session."""

    def __init__(self, session: Session):
        self.session = session

    def _newest_first(self, conversation_id: uuid.UUID):
        return (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(col(Message.created_at).desc(), col(Message.id).desc())
        )

    def ensure_conversation(self, conversation_id: uuid.UUID) -> None:
        """
        Create the conversation if it does not exist yet.

        Uses a single conflict-tolerant INSERT so concurrent first messages for
        the same id neither fail nor create duplicates.
        """
        values = {"id": conversation_id, "created_at": utcnow()}
        dialect = self.session.get_bind().dialect.name
        dialect_insert = _UPSERT_INSERTS.get(dialect)

        if dialect_insert is not None:
            statement = dialect_insert(Conversation).values(**values).on_conflict_do_nothing(
                index_elements=["id"]
            )
            self.session.exec(statement)
            self.session.commit()
            return

        # No ON CONFLICT support: the primary key still rejects the duplicate
        try:
            self.session.exec(insert(Conversation).values(**values))
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if not _is_duplicate_key(exc):
                raise
            logger.debug(f"conversation.exists conversation={conversation_id}")

    def insert_message(
        self,
        conversation_id: uuid.UUID,
        sender: Sender,
        text: str,
        created_at: Optional[datetime] = None,
    ) -> MessageRead:
        """
        Append a message to a conversation.

        Args:
            conversation_id: Conversation the message belongs to
            sender: ``Sender.USER`` or ``Sender.AI``
            text: Message body
            created_at: Explicit timestamp; defaults to the current UTC time

        Returns:
            The stored message, including its generated id and timestamp

        Raises:
            ConversationMissingError: If ``ensure_conversation`` was not called first
        """
        message = Message(
            id=uuid.uuid4(),
            conversation_id=conversation_id,
            sender=Sender(sender),
            text=text,
            created_at=as_utc(created_at) if created_at is not None else utcnow(),
        )
        stored = MessageRead.from_row(message)

        self.session.add(message)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if _is_foreign_key_violation(exc):
                raise ConversationMissingError(conversation_id) from exc
            raise

        return stored

    def get_recent_messages(self, conversation_id: uuid.UUID, limit: int) -> list[MessageRead]:
        """Return up to ``limit`` newest messages, oldest first."""
        statement = self._newest_first(conversation_id).limit(limit)
        rows = self.session.exec(statement).all()
        return [MessageRead.from_row(row) for row in reversed(rows)]

    def get_older_messages(
        self,
        conversation_id: uuid.UUID,
        cursor_created_at: datetime,
        cursor_id: Optional[uuid.UUID],
        limit: int,
    ) -> list[MessageRead]:
        """
        Return up to ``limit`` messages strictly before the cursor, oldest first.

        With ``cursor_id`` the comparison is on (created_at, id); without it,
        on created_at alone.
        """
        created_at = as_utc(cursor_created_at)
        if cursor_id is None:
            before_cursor = col(Message.created_at) < created_at
        else:
            before_cursor = or_(
                col(Message.created_at) < created_at,
                and_(col(Message.created_at) == created_at, col(Message.id) < cursor_id),
            )

        statement = self._newest_first(conversation_id).where(before_cursor).limit(limit)
        rows = self.session.exec(statement).all()
        return [MessageRead.from_row(row) for row in reversed(rows)]
