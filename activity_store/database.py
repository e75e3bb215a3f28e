"""
Engine and transaction management for the activity store.

The replication, zone and token workers share one ``DatabaseManager``. SQLite
has a single writer, so transactions opened through ``session_scope`` are
serialised per manager: a worker never sees another worker's uncommitted
changes and never commits them by accident. File databases get a fresh
connection per checkout; in-memory databases keep their one connection.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Any, Dict, Generator, Optional
from urllib.parse import urlparse

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool, StaticPool

from .config import DatabaseConfig
from .models import Base

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT = 30


class DatabaseError(Exception):
    """Base database error class."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseConnectionError(DatabaseError):
    """Engine could not be created."""
    pass


class PersistenceError(DatabaseError):
    """A single write failed; the caller skips that record."""
    pass


def is_memory_url(url: str) -> bool:
    """True for SQLite URLs that name an in-memory database."""
    if not url.startswith("sqlite:"):
        return False
    database = url.split("://", 1)[-1].lstrip("/")
    return database in ("", ":memory:") or "mode=memory" in url


def engine_options(config: DatabaseConfig) -> Dict[str, Any]:
    """Pool settings for ``create_engine`` by kind of database."""
    options: Dict[str, Any] = {"echo": config.echo_sql}

    if is_memory_url(config.url):
        # The schema lives in the connection, so every checkout must share it
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    elif config.is_sqlite:
        options["poolclass"] = NullPool
        options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT}
    else:
        options.update({
            "poolclass": QueuePool,
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_timeout": config.pool_timeout,
            "pool_recycle": config.pool_recycle,
            "pool_pre_ping": True,
        })
    return options


def masked_url(url: str) -> str:
    password = urlparse(url).password
    return url.replace(password, "***") if password else url


class DatabaseManager:
    """Lazily built engine plus serialised transactions for worker threads."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._transaction_lock = threading.RLock() if self.config.is_sqlite else None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._build_engine()
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def _build_engine(self) -> Engine:
        try:
            engine = create_engine(self.config.url, **engine_options(self.config))
        except Exception as e:
            logger.error(f"Failed to create database engine: {e}")
            raise DatabaseConnectionError(f"Failed to create database engine: {e}", e)

        if self.config.is_sqlite:
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)

        logger.info(f"Database engine created: {masked_url(self.config.url)}")
        return engine

    def create_all_tables(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError(f"Failed to create database tables: {e}", e)
        logger.info("Database schema ready")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """One transaction: committed on success, rolled back on any error.

        On SQLite, scopes from different threads run one at a time. Nested
        scopes in the same thread are allowed.
        """
        with self._transaction_lock or nullcontext():
            session = self.session_factory()
            try:
                yield session
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(f"Database session error: {e}")
                raise
            finally:
                session.close()

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
        return True

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def initialize_database(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """Create a manager and make sure the schema exists."""
    manager = DatabaseManager(config)
    manager.create_all_tables()
    return manager
