"""Database engine, schema initialisation and session helpers."""
import logging
from collections.abc import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the SQLModel engine for ``database_url``.

    SQLite connections get foreign keys switched on so a message can never
    reference a missing conversation, matching PostgreSQL behaviour.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, echo=echo, connect_args=connect_args, pool_pre_ping=True)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    return engine


def init_db(engine: Engine) -> None:
    """Create tables and indexes if they don't already exist."""
    # Register table metadata before create_all
    from support_chat.models.conversation import Conversation, Message  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info(f"db.init.ok dialect={engine.dialect.name}")


def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a session bound to ``engine``, closing it afterwards."""
    with Session(engine) as session:
        yield session
