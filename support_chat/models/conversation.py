"""Conversation and Message models for the support chat.

Models:
- Conversation: a client-identified grouping of messages
- Message: one immutable user or AI turn within a conversation
- MessageRead: detached, UTC-normalised projection returned to callers
- ChatTurn: ``{role, content}`` view of a message used for the model call
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Index, Text
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Sender(str, Enum):
    """Author of a message. Exactly two parties take part in a conversation."""

    USER = "user"
    AI = "ai"


class Conversation(SQLModel, table=True):
    """
    Conversation entity.

    The id is chosen by the client (its chat session id) and the row is created
    lazily on the first message. Rows are never updated.
    """
    __tablename__ = "conversations"

    id: uuid.UUID = Field(primary_key=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Message(SQLModel, table=True):
    """
    Message entity.

    Within a conversation messages are totally ordered by (created_at, id);
    the id breaks ties between messages written in the same instant.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_conversation_created_at_id", "conversation_id", "created_at", "id"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    conversation_id: uuid.UUID = Field(
        foreign_key="conversations.id",
        ondelete="CASCADE",
        nullable=False,
    )
    sender: Sender = Field(
        sa_column=Column(
            SAEnum(
                Sender,
                name="message_sender",
                native_enum=False,
                create_constraint=True,
                length=8,
                values_callable=lambda enum: [member.value for member in enum],
            ),
            nullable=False,
        )
    )
    text: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class MessageRead(SQLModel):
    """Message as returned by the store and the history endpoint."""

    id: uuid.UUID
    conversation_id: uuid.UUID
    sender: Sender
    text: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: Message) -> "MessageRead":
        return cls(
            id=row.id,
            conversation_id=row.conversation_id,
            sender=row.sender,
            text=row.text,
            created_at=as_utc(row.created_at),
        )


@dataclass(frozen=True)
class ChatTurn:
    """A message reduced to what the language model needs."""

    role: Sender
    content: str

    @classmethod
    def from_message(cls, message: MessageRead) -> "ChatTurn":
        return cls(role=message.sender, content=message.text)
