"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from support_chat.config import Settings
from support_chat.database import create_db_engine, init_db
from support_chat.main import create_app
from support_chat.models.conversation import ChatTurn, MessageRead, Sender
from support_chat.services.message_store import MessageStore
from support_chat.services.rate_limiter import FixedWindowRateLimiter

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeCompletionClient:
    """Completion client that records its calls and returns a canned reply."""

    def __init__(self, reply: str = "Happy to help!", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    def complete(self, system_prompt: str, turns: Sequence[ChatTurn], timeout: float) -> str:
        self.calls.append({"system_prompt": system_prompt, "turns": list(turns), "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.reply

    @property
    def last_turns(self) -> list[ChatTurn]:
        return self.calls[-1]["turns"]


class ManualClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = 1_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'chat.db'}",
        LOG_FILE="",
        OPENAI_API_KEY=None,
        CHAT_PAGE_SIZE=10,
        SEND_RATE_LIMIT_WINDOW_MS=10_000,
        SEND_RATE_LIMIT_MAX=5,
        HISTORY_RATE_LIMIT_WINDOW_MS=60_000,
        HISTORY_RATE_LIMIT_MAX=120,
    )


@pytest.fixture
def engine(settings: Settings):
    engine = create_db_engine(settings.DATABASE_URL)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(session: Session) -> MessageStore:
    return MessageStore(session)


@pytest.fixture
def conversation_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def add_messages(store: MessageStore) -> Callable[..., list[MessageRead]]:
    """Insert ``count`` alternating user/ai messages one second apart."""

    def _add(conversation_id: uuid.UUID, count: int, start: datetime = BASE_TIME) -> list[MessageRead]:
        store.ensure_conversation(conversation_id)
        messages = []
        for i in range(count):
            sender = Sender.USER if i % 2 == 0 else Sender.AI
            messages.append(
                store.insert_message(
                    conversation_id,
                    sender,
                    f"m{i + 1}",
                    created_at=start + timedelta(seconds=i),
                )
            )
        return messages

    return _add


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def rate_limiter(clock: ManualClock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(clock=clock)


@pytest.fixture
def completion() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def client(settings, engine, completion, rate_limiter):
    app = create_app(
        settings=settings,
        engine=engine,
        completion_client=completion,
        rate_limiter=rate_limiter,
    )
    with TestClient(app) as test_client:
        yield test_client
