"""Logging setup: plain ``timestamp LEVEL logger message`` lines to stderr and a file."""
import logging
from pathlib import Path

from support_chat.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_HANDLER_MARKER = "_support_chat_handler"


def setup_logging(settings: Settings) -> logging.Logger:
    """
    Configure the ``support_chat`` logger.

    Safe to call more than once (e.g. one app per test): handlers installed by
    a previous call are replaced, not duplicated.
    """
    logger = logging.getLogger("support_chat")
    logger.setLevel(settings.LOG_LEVEL.upper())

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8", delay=True))

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        logger.addHandler(handler)

    return logger
