"""Reply orchestration for the support chat.

Handles one send attempt end to end:
- Conversation creation (idempotent)
- User message storage
- Recent history retrieval and context budgeting
- Model call and AI reply storage

Each persistence step commits on its own. Once the user message is stored it
stays stored, whatever happens to the model call afterwards.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from support_chat.core.exceptions import CompletionFailure, ConversationMissingError, StorageFailure
from support_chat.models.conversation import ChatTurn, MessageRead, Sender, utcnow
from support_chat.services.context_budget import (
    DEFAULT_ESTIMATOR,
    CostEstimator,
    select_within_budget,
)
from support_chat.services.llm import CompletionClient
from support_chat.services.message_store import MessageStore
from support_chat.services.prompts import APOLOGY_MESSAGE, FALLBACK_REPLY, build_system_prompt

logger = logging.getLogger(__name__)


class ReplyState(str, Enum):
    """Progress of a single send attempt."""

    RECEIVED = "received"
    USER_PERSISTED = "user_persisted"
    HISTORY_FETCHED = "history_fetched"
    CONTEXT_BUDGETED = "context_budgeted"
    REPLIED = "replied"
    AI_PERSISTED = "ai_persisted"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class SendOutcome:
    """
    Result of a send attempt.

    ``state`` is ``AI_PERSISTED`` on success (``reply`` set) or ``DEGRADED``
    when the model call failed (``error`` holds the apology). The user message
    is durable in both cases.
    """

    state: ReplyState
    conversation_id: uuid.UUID
    user_message: MessageRead
    reply: Optional[str] = None
    ai_message: Optional[MessageRead] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is ReplyState.AI_PERSISTED


def _ms_since(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class ReplyOrchestrator:
    """Runs the user message → model reply sequence for one conversation."""

    def __init__(
        self,
        store: MessageStore,
        completion: CompletionClient,
        *,
        history_size: int = 10,
        max_context_units: int = 2000,
        completion_timeout: float = 20.0,
        estimator: CostEstimator = DEFAULT_ESTIMATOR,
        system_prompt: Optional[str] = None,
    ):
        """Initialize orchestrator."""
        self.store = store
        self.completion = completion
        self.history_size = history_size
        self.max_context_units = max(1, max_context_units)
        self.completion_timeout = completion_timeout
        self.estimator = estimator
        self.system_prompt = system_prompt or build_system_prompt()

    def handle(self, conversation_id: uuid.UUID, text: str) -> SendOutcome:
        """
        Process a validated, already-throttled user message.

        Flow:
        1. Ensure the conversation exists and store the user message
        2. Load the messages preceding it (at most ``history_size``)
        3. Budget the turns, newest first, with the live message at the head
        4. Call the model in chronological order
        5. Store the reply as an ``ai`` message

        Returns:
            SendOutcome in state ``AI_PERSISTED`` or ``DEGRADED``

        Raises:
            StorageFailure: If any database step fails
        """
        state = ReplyState.RECEIVED
        started = time.perf_counter()
        logger.info(
            f"chat.message.start conversation={conversation_id} "
            f"message_length={len(text)}"
        )

        try:
            user_message = self._persist_user_message(conversation_id, text)
            state = ReplyState.USER_PERSISTED

            history = self._fetch_history(user_message)
            state = ReplyState.HISTORY_FETCHED

            turns = self._budget_turns(user_message, history)
            state = ReplyState.CONTEXT_BUDGETED
        except (SQLAlchemyError, ConversationMissingError) as exc:
            logger.error(
                f"chat.message.failed conversation={conversation_id} state={state.value} "
                f"duration_ms={_ms_since(started)} error={exc!r}"
            )
            raise StorageFailure("Something went wrong. Please try again.") from exc

        try:
            reply = self._complete(conversation_id, turns)
            state = ReplyState.REPLIED
        except CompletionFailure as exc:
            logger.error(
                f"chat.message.llm_failed conversation={conversation_id} "
                f"user_message={user_message.id} duration_ms={_ms_since(started)} error={exc.message}",
                exc_info=exc.__cause__ is not None,
            )
            return SendOutcome(
                state=ReplyState.DEGRADED,
                conversation_id=conversation_id,
                user_message=user_message,
                error=APOLOGY_MESSAGE,
            )

        try:
            # Never sort ahead of the question it answers
            created_at = max(utcnow(), user_message.created_at + timedelta(microseconds=1))
            ai_message = self.store.insert_message(conversation_id, Sender.AI, reply, created_at)
            state = ReplyState.AI_PERSISTED
        except (SQLAlchemyError, ConversationMissingError) as exc:
            logger.error(
                f"chat.message.failed conversation={conversation_id} state={state.value} "
                f"duration_ms={_ms_since(started)} error={exc!r}"
            )
            raise StorageFailure("Something went wrong. Please try again.") from exc

        logger.info(
            f"chat.message.finish conversation={conversation_id} "
            f"user_message={user_message.id} ai_message={ai_message.id} "
            f"duration_ms={_ms_since(started)}"
        )
        return SendOutcome(
            state=state,
            conversation_id=conversation_id,
            user_message=user_message,
            reply=reply,
            ai_message=ai_message,
        )

    def _persist_user_message(self, conversation_id: uuid.UUID, text: str) -> MessageRead:
        step = time.perf_counter()
        self.store.ensure_conversation(conversation_id)
        user_message = self.store.insert_message(conversation_id, Sender.USER, text)
        logger.info(
            f"chat.message.insert_user.ok conversation={conversation_id} "
            f"message={user_message.id} duration_ms={_ms_since(step)}"
        )
        return user_message

    def _fetch_history(self, user_message: MessageRead) -> list[MessageRead]:
        """Messages strictly older than the one just stored, oldest first."""
        step = time.perf_counter()
        history = self.store.get_older_messages(
            user_message.conversation_id,
            user_message.created_at,
            user_message.id,
            self.history_size,
        )
        logger.info(
            f"chat.message.get_recent.ok conversation={user_message.conversation_id} "
            f"limit={self.history_size} returned={len(history)} duration_ms={_ms_since(step)}"
        )
        return history

    def _budget_turns(self, user_message: MessageRead, history: list[MessageRead]) -> list[ChatTurn]:
        newest_to_oldest = [ChatTurn(role=Sender.USER, content=user_message.text)]
        newest_to_oldest.extend(ChatTurn.from_message(m) for m in reversed(history))

        selection = select_within_budget(newest_to_oldest, self.max_context_units, self.estimator)
        logger.debug(
            f"chat.message.budget conversation={user_message.conversation_id} "
            f"candidates={len(newest_to_oldest)} selected={len(selection.selected_newest_to_oldest)} "
            f"used_units={selection.used_units} max_units={self.max_context_units}"
        )
        return selection.oldest_to_newest()

    def _complete(self, conversation_id: uuid.UUID, turns: list[ChatTurn]) -> str:
        step = time.perf_counter()
        try:
            text = self.completion.complete(self.system_prompt, turns, self.completion_timeout)
        except CompletionFailure:
            raise
        except Exception as exc:
            # Clients that leak their own errors still take the degraded path
            raise CompletionFailure(f"Completion call failed: {exc!r}") from exc
        reply = (text or "").strip()
        if not reply:
            logger.warning(f"chat.message.llm_blank conversation={conversation_id}")
            reply = FALLBACK_REPLY
        logger.info(
            f"chat.message.llm.ok conversation={conversation_id} "
            f"duration_ms={_ms_since(step)} reply_length={len(reply)}"
        )
        return reply
