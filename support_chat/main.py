"""FastAPI application entry point for the store support chat API."""
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from support_chat.api.routes.chat import router as chat_router
from support_chat.config import Settings, get_settings
from support_chat.core.exceptions import ChatError, ThrottledError
from support_chat.database import create_db_engine, init_db
from support_chat.logging_config import setup_logging
from support_chat.services.llm import CompletionClient, OpenAICompletionClient
from support_chat.services.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    completion_client: Optional[CompletionClient] = None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators not passed in are created from ``settings``; tests pass
    their own engine, fake model client and limiter.
    """
    if settings is None:
        settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Handlers (and the log directory) only exist once the app is served
        setup_logging(app.state.settings)
        init_db(app.state.engine)
        logger.info("server.started")
        yield

    app = FastAPI(
        title="Store Support Chat API",
        description="Customer support chat backed by a language model",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine if engine is not None else create_db_engine(settings.DATABASE_URL)
    app.state.completion_client = (
        completion_client if completion_client is not None else OpenAICompletionClient.from_settings(settings)
    )
    app.state.rate_limiter = rate_limiter if rate_limiter is not None else FixedWindowRateLimiter()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CORS_ORIGIN],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        started = time.perf_counter()
        request_id = str(uuid.uuid4())
        client_ip = request.client.host if request.client else None
        logger.info(
            f"request.start request_id={request_id} method={request.method} "
            f"path={request.url.path} ip={client_ip}"
        )
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        logger.info(
            f"request.finish request_id={request_id} method={request.method} "
            f"path={request.url.path} status={response.status_code} "
            f"duration_ms={int((time.perf_counter() - started) * 1000)}"
        )
        return response

    @app.get("/api/v1/health")
    def health_check():
        """Health check endpoint."""
        return {"ok": True}

    app.include_router(chat_router)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        headers = {}
        if isinstance(exc, ThrottledError):
            headers["Retry-After"] = str(exc.retry_after_seconds)
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": exc.message},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"request.validation_failed path={request.url.path} issues={exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request"},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Hide internal error details from clients."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
