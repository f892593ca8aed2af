"""Chat endpoint routes.

Provides:
- POST /api/v1/chat/message - Send a message to the support agent
- GET /api/v1/chat/history - Page backwards through a conversation
"""
import logging
import re
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from support_chat.config import Settings
from support_chat.core.deps import (
    get_app_settings,
    get_orchestrator,
    get_paginator,
    get_rate_limiter,
)
from support_chat.core.exceptions import ThrottledError
from support_chat.models.conversation import MessageRead
from support_chat.services.chat_service import ReplyOrchestrator
from support_chat.services.history import HistoryPaginator
from support_chat.services.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])

# Zero-width spaces/joiners, directional marks and BOM
_INVISIBLE_CHARS = re.compile("[\u200b-\u200f\ufeff]")

SEND_THROTTLED_MESSAGE = "The system is overloaded. Please wait a moment before sending more messages."
HISTORY_THROTTLED_MESSAGE = "The system is overloaded. Please try again shortly."


class SendMessageRequest(BaseModel):
    """Request model for sending a chat message."""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    session_id: uuid.UUID = Field(alias="sessionId")


class SendMessageResponse(BaseModel):
    """Response model for a chat reply."""
    model_config = ConfigDict(populate_by_name=True)

    reply: str
    session_id: uuid.UUID = Field(alias="sessionId")


class HistoryResponse(BaseModel):
    """Response model for a page of history."""
    model_config = ConfigDict(populate_by_name=True)

    messages: list[MessageRead]
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")


def clean_message(text: str) -> str:
    return _INVISIBLE_CHARS.sub("", text).strip()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/message", response_model=SendMessageResponse)
def send_message(
    request: SendMessageRequest,
    orchestrator: ReplyOrchestrator = Depends(get_orchestrator),
    rate_limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_app_settings),
) -> SendMessageResponse:
    """
    Send a message to the support agent.

    Flow:
    1. Check the per-session rate limit
    2. Clean and validate the message
    3. Store it, ask the model, store the reply
    4. Return the reply

    Raises:
        ThrottledError: 429 if the session is sending too fast
        HTTPException: 400 if the message is empty, 413 if too long,
            502 if the model failed (the user message is still stored)
    """
    decision = rate_limiter.allow(
        f"msg:sess:{request.session_id}",
        settings.SEND_RATE_LIMIT_WINDOW_MS,
        settings.SEND_RATE_LIMIT_MAX,
    )
    if not decision.allowed:
        logger.warning(
            f"rate_limit.blocked route=POST /message scope=session "
            f"session={request.session_id} retry_after_ms={decision.retry_after_ms}"
        )
        raise ThrottledError(SEND_THROTTLED_MESSAGE, decision.retry_after_ms or 0)

    message = clean_message(request.message)
    if not message:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message is empty",
        )

    if len(message) > settings.MAX_MESSAGE_CHARS:
        logger.warning(
            f"chat.message.too_long session={request.session_id} "
            f"message_length={len(message)} max_message_chars={settings.MAX_MESSAGE_CHARS}"
        )
        raise HTTPException(
            status_code=413,
            detail="Message is too long",
        )

    outcome = orchestrator.handle(request.session_id, message)

    if not outcome.ok:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=outcome.error,
        )

    return SendMessageResponse(reply=outcome.reply, session_id=outcome.conversation_id)


@router.get("/history", response_model=HistoryResponse)
def get_history(
    request: Request,
    session_id: uuid.UUID = Query(alias="sessionId"),
    cursor: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, gt=0),
    paginator: HistoryPaginator = Depends(get_paginator),
    rate_limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_app_settings),
) -> HistoryResponse:
    """
    Get a page of conversation history.

    Messages come back oldest first. ``nextCursor`` points at the oldest
    message in the page; pass it back to get the page before it.

    Raises:
        ThrottledError: 429 if the client IP is polling too fast
        InvalidCursorError: 400 if the cursor is malformed
        HTTPException: 400 if ``limit`` is above the configured cap
    """
    ip = _client_ip(request)
    decision = rate_limiter.allow(
        f"hist:ip:{ip}",
        settings.HISTORY_RATE_LIMIT_WINDOW_MS,
        settings.HISTORY_RATE_LIMIT_MAX,
    )
    if not decision.allowed:
        logger.warning(
            f"rate_limit.blocked route=GET /history scope=ip ip={ip} "
            f"retry_after_ms={decision.retry_after_ms}"
        )
        raise ThrottledError(HISTORY_THROTTLED_MESSAGE, decision.retry_after_ms or 0)

    if limit is not None and limit > settings.HISTORY_MAX_LIMIT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid request",
        )

    # An empty ?cursor= is the same as no cursor
    if cursor is not None and not cursor.strip():
        cursor = None

    page = paginator.page(session_id, cursor, limit or settings.CHAT_PAGE_SIZE)

    logger.info(
        f"chat.history.finish session={session_id} fetched={len(page.messages)} "
        f"next_cursor={'present' if page.next_cursor else None}"
    )
    return HistoryResponse(messages=page.messages, next_cursor=page.next_cursor)
