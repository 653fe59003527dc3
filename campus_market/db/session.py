from __future__ import annotations

from collections.abc import Generator
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from campus_market.core.settings import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    # Message context references rely on ON DELETE SET NULL, which SQLite ignores by default.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_engine(database_url: str, *, echo: bool = False) -> Engine:
    global engine, SessionLocal
    sqlite = _is_sqlite(database_url)
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if sqlite else {},
        echo=echo,
    )
    if sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)
    logger.info("Database engine configured backend=%s", engine.dialect.name)
    return engine


configure_engine(get_settings().database_url, echo=get_settings().sql_echo)


def init_db() -> None:
    import campus_market.models  # noqa: F401

    if engine is None:
        raise RuntimeError("Database engine is not configured")
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready tables=%s", len(Base.metadata.tables))


def open_session() -> Session:
    """Session for code outside the request cycle (realtime dispatcher, websocket auth)."""
    if SessionLocal is None:
        raise RuntimeError("Database session factory is not configured")
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    db = open_session()
    try:
        yield db
    finally:
        db.close()
