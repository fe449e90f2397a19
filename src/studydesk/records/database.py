"""SQLAlchemy engine and session management for file and job records."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by every record model."""


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""

    kwargs: dict = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in {"sqlite://", "sqlite+pysqlite://"}:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    engine = create_engine(url, **kwargs)
    LOGGER.info("Database engine created (%s)", engine.dialect.name)
    return engine


class Database:
    """Owns the engine and the session factory for one database URL."""

    def __init__(self, url: str, *, engine: Optional[Engine] = None) -> None:
        self.url = url
        self.engine = engine or create_db_engine(url)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False, autoflush=False)

    def create_all(self) -> None:
        from . import models  # noqa: F401 - registers tables on Base.metadata

        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
