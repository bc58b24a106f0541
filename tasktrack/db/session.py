"""
TaskTrack Database Session Management.

Provides the single entry point for database initialisation plus a context
manager for unit-of-work access. One session per unit of work: commit on
success, rollback on any exception.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

import sqlalchemy
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tasktrack.db.base import Base


class Database:
    """
    Owns the SQLAlchemy engine and session factory for the task store.

    Usage:
        db = Database("sqlite:///tasktrack.db", create_tables=True)
        with db.session_scope() as session:
            session.query(TaskRow).count()
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        timeout_seconds: int = 30,
        create_tables: bool = False,
    ):
        self._url = url
        self._engine = create_engine(url, echo=echo, **self._engine_options(url, timeout_seconds))

        if self._engine.dialect.name == "sqlite":
            # Enforce FK cascades on every new SQLite connection
            @sqlalchemy.event.listens_for(self._engine, "connect")
            def set_sqlite_pragma(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        if create_tables:
            Base.metadata.create_all(self._engine)

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @staticmethod
    def _engine_options(url: str, timeout_seconds: int) -> Dict[str, Any]:
        """Bound every store operation by the configured timeout."""
        if url.startswith("sqlite"):
            options: Dict[str, Any] = {
                "connect_args": {"timeout": timeout_seconds, "check_same_thread": False},
            }
            if url in ("sqlite://", "sqlite:///:memory:"):
                # A single shared connection keeps the in-memory DB alive
                options["poolclass"] = StaticPool
            return options
        return {
            "pool_timeout": timeout_seconds,
            "pool_pre_ping": True,
        }

    @classmethod
    def from_config(cls, config: Any) -> "Database":
        """Build from a ``TaskTrackConfig`` (or its ``database`` section)."""
        db_cfg = getattr(config, "database", config)
        return cls(
            db_cfg.url,
            echo=db_cfg.echo,
            timeout_seconds=db_cfg.timeout_seconds,
            create_tables=db_cfg.create_tables,
        )

    @property
    def engine(self) -> Any:
        return self._engine

    @property
    def url(self) -> str:
        return self._url

    def create_tables(self) -> None:
        Base.metadata.create_all(self._engine)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for DB sessions with auto-commit/rollback.

        Usage:
            with db.session_scope() as session:
                task = session.get(TaskRow, task_id)
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        """Check if the engine can connect."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except sqlalchemy.exc.SQLAlchemyError:
            return False

    def dispose(self) -> None:
        """Close the connection pool."""
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"<Database url='{self._engine.url.render_as_string(hide_password=True)}'>"


_default_database: Optional[Database] = None


def init_database(config: Any) -> Database:
    """Create the process-wide Database from config."""
    global _default_database
    _default_database = Database.from_config(config)
    return _default_database


def get_database() -> Database:
    if _default_database is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _default_database


def close_database() -> None:
    """Dispose the process-wide Database. Used during shutdown."""
    global _default_database
    if _default_database is not None:
        _default_database.dispose()
        _default_database = None
