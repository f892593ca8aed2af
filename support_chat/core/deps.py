"""FastAPI dependencies.

Long-lived collaborators (settings, engine, rate limiter, completion client)
live on ``app.state`` so each app instance, and each test, gets its own.
"""
from collections.abc import Iterator

from fastapi import Depends, Request
from sqlmodel import Session

from support_chat.config import Settings
from support_chat.database import get_session
from support_chat.services.chat_service import ReplyOrchestrator
from support_chat.services.history import HistoryPaginator
from support_chat.services.llm import CompletionClient
from support_chat.services.message_store import MessageStore
from support_chat.services.rate_limiter import FixedWindowRateLimiter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    """Database session for one request."""
    yield from get_session(request.app.state.engine)


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.rate_limiter


def get_completion_client(request: Request) -> CompletionClient:
    return request.app.state.completion_client


def get_message_store(session: Session = Depends(get_db)) -> MessageStore:
    return MessageStore(session)


def get_orchestrator(
    store: MessageStore = Depends(get_message_store),
    completion: CompletionClient = Depends(get_completion_client),
    settings: Settings = Depends(get_app_settings),
) -> ReplyOrchestrator:
    return ReplyOrchestrator(
        store,
        completion,
        history_size=settings.CHAT_PAGE_SIZE,
        max_context_units=settings.LLM_MAX_CONTEXT_TOKENS,
        completion_timeout=settings.OPENAI_TIMEOUT,
    )


def get_paginator(store: MessageStore = Depends(get_message_store)) -> HistoryPaginator:
    return HistoryPaginator(store)
