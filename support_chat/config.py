"""Application settings for the support chat backend.

Values come from environment variables (or a local ``.env`` file) and are
validated by pydantic-settings at startup.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server
    CORS_ORIGIN: str = "http://localhost:5173"
    LOG_FILE: str = "logs/backend.log"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./support_chat.db"

    # Chat
    CHAT_PAGE_SIZE: int = Field(default=10, gt=0, le=100)
    HISTORY_MAX_LIMIT: int = Field(default=100, gt=0)
    MAX_MESSAGE_CHARS: int = Field(default=2000, gt=0, le=10000)

    # LLM
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4.1-mini"
    OPENAI_TIMEOUT: float = Field(default=20.0, gt=0)
    LLM_MAX_CONTEXT_TOKENS: int = Field(default=2000, gt=0)
    LLM_MAX_COMPLETION_TOKENS: int = Field(default=400, gt=0)
    LLM_TEMPERATURE: float = Field(default=0.1, ge=0.0, le=2.0)

    # Rate limiting (per session for sends, per client IP for history)
    SEND_RATE_LIMIT_WINDOW_MS: int = Field(default=10_000, gt=0)
    SEND_RATE_LIMIT_MAX: int = Field(default=5, gt=0)
    HISTORY_RATE_LIMIT_WINDOW_MS: int = Field(default=60_000, gt=0)
    HISTORY_RATE_LIMIT_MAX: int = Field(default=120, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
