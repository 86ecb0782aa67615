"""
Database session management for the library circulation system.

Sessions are short-lived: one per request or per sweep record. Every
repository operation commits or rolls back its own unit of work, so a failed
operation never leaves partial state behind.

SQLite is the default backend. File databases get a real connection pool so
concurrent terminals each hold their own connection; in-memory databases share
a single connection through StaticPool.
"""

import functools
import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import (
    ConcurrencyError,
    ConflictError,
    DuplicateError,
    LibraryError,
    NotFoundError,
    ValidationError,
)
from .schema import Base

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits on a locked database before giving up
SQLITE_BUSY_TIMEOUT = 15


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine configured for circulation workloads.

    SQLite engines enforce foreign keys on every connection. Other backends
    get a pre-pinged connection pool.
    """
    if database_url.startswith("sqlite"):
        in_memory = ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///")
        kwargs = {
            "connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
            "echo": echo,
        }
        if in_memory:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=echo,
    )


class DatabaseManager:
    """
    Manages the engine and session factory.

    The engine is created lazily so configuration can be adjusted before the
    first connection is made.
    """

    def __init__(self, database_url: str | None = None):
        if database_url is None:
            config = get_config()
            database_url = config.get_database_url()
            if config.database_url is None:
                config.database_path.parent.mkdir(exist_ok=True, parents=True)
                logger.info("Using SQLite database at: %s", config.database_path)

        self.database_url = database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_database_engine(self.database_url)
            logger.info("Database engine created: %s", self._engine.url)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """
        Create a new database session.

        Sessions should be used as context managers or closed explicitly.
        """
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            copy = session.get(BookCopy, copy_id)
        # Session is committed or rolled back here
        ```
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except Exception:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create all tables and indexes.

        Args:
            drop_existing: If True, drop all tables before creating
        """
        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=self.engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Get the global database manager instance.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def reset_db_manager() -> None:
    """Dispose of the global manager so the next call builds a fresh one."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


def get_session() -> Session:
    """
    Get a new database session.

    Prefer session_scope() when the caller owns the transaction.
    """
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Convenience context manager for database sessions."""
    with get_db_manager().session_scope() as session:
        yield session


# Error translation


def _is_lock_error(error: OperationalError) -> bool:
    message = str(error.orig).lower()
    return "locked" in message or "deadlock" in message or "could not serialize" in message


def translate_db_error(
    error: SQLAlchemyError,
    operation: str,
    unique_violation: type[LibraryError] = DuplicateError,
) -> LibraryError:
    """
    Map a SQLAlchemy error to the library error taxonomy.

    Args:
        error: The database error
        operation: Description of the operation, used in the message
        unique_violation: Error class for uniqueness violations; the
            circulation engine passes ConcurrencyError because a duplicate
            open loan or claim means another writer got there first
    """
    if isinstance(error, StaleDataError):
        return ConcurrencyError(f"'{operation}' lost a concurrent update: {error}")
    if isinstance(error, OperationalError) and _is_lock_error(error):
        return ConcurrencyError(f"'{operation}' could not lock its rows: {error.orig}")
    if isinstance(error, IntegrityError):
        message = str(error.orig)
        lowered = message.lower()
        if "check constraint" in lowered:
            return ValidationError(f"'{operation}' violates a constraint: {message}")
        if "unique" in lowered or "duplicate" in lowered:
            return unique_violation(f"'{operation}' conflicts with an existing row: {message}")
        if "foreign key" in lowered:
            return NotFoundError(f"'{operation}' references a missing row: {message}")
        return ConflictError(f"'{operation}' failed an integrity check: {message}")
    return LibraryError(f"Database operation '{operation}' failed: {error!s}")


def safe_commit(
    session: Session,
    operation: str,
    unique_violation: type[LibraryError] = DuplicateError,
) -> None:
    """
    Commit a session, rolling back and translating any database error.

    Raises:
        LibraryError: A subclass describing why the commit failed
    """
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise translate_db_error(e, operation, unique_violation) from e
    except LibraryError:
        session.rollback()
        raise


T = TypeVar("T")


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Execute a query, translating database errors.

    Raises:
        LibraryError: If the query fails
    """
    try:
        return query_func(session)
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise translate_db_error(e, error_msg) from e


def safe_flush(
    session: Session,
    operation: str,
    unique_violation: type[LibraryError] = DuplicateError,
) -> None:
    """Flush pending changes so generated keys are available, translating errors."""
    try:
        session.flush()
    except SQLAlchemyError as e:
        session.rollback()
        raise translate_db_error(e, operation, unique_violation) from e
    except LibraryError:
        session.rollback()
        raise


def retry_on_concurrency(func: Callable) -> Callable:
    """
    Run a repository method again, once, if it lost a race.

    The second attempt starts from a rolled-back session and re-reads every
    row, so it sees the winner's changes and fails with the proper business
    error (e.g. CopyUnavailable) if the operation no longer applies.

    Any library error rolls the session back before it propagates, so a
    refused operation leaves nothing staged.
    """

    def attempt(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except LibraryError:
            self.session.rollback()
            raise

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return attempt(self, *args, **kwargs)
        except ConcurrencyError as e:
            logger.info("Retrying %s after concurrent update: %s", func.__name__, e)
            return attempt(self, *args, **kwargs)

    return wrapper
