"""
Standardized database session management for the insights pipeline.

This module provides a consistent, thread-safe approach to database session
management. Services accept an optional session factory so tests and batch
jobs can bind them to a specific engine; otherwise the lazily created
PostgreSQL engine is used.
"""

import logging
import os
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from src.core.config import get_config
from src.core.database.db_config import get_connection_string

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

# Module-level globals for lazy initialization
_engine = None
_session_factory = None
_scoped_session = None


def get_engine():
    """Get or create the database engine (lazy initialization)."""
    global _engine, _session_factory, _scoped_session

    if _engine is None:
        # Unit tests bind services to their own engine; never reach for a real database
        if os.environ.get("INSIGHTS_TESTING") and not os.environ.get("DATABASE_URL"):
            raise RuntimeError(
                "Unit tests should not create real database connections. "
                "Pass a session_factory or set DATABASE_URL for integration tests. "
                "Use @pytest.mark.requires_db for integration tests."
            )

        db_settings = get_config().database
        connection_string = get_connection_string(db_settings)

        if "postgresql" not in connection_string:
            raise ValueError("Only PostgreSQL is supported. Use DATABASE_URL=postgresql://...")

        query_timeout = db_settings.query_timeout
        connect_timeout = db_settings.connect_timeout
        pool_timeout = db_settings.pool_timeout

        logger.info("Creating PostgreSQL engine for insights storage")
        _engine = create_engine(
            connection_string,
            pool_size=5,
            max_overflow=10,
            pool_timeout=pool_timeout,
            pool_recycle=3600,
            pool_pre_ping=True,
            echo=False,
            connect_args={"connect_timeout": connect_timeout},
        )

        @event.listens_for(_engine, "connect")
        def set_statement_timeout(dbapi_conn, connection_record):
            """Set statement_timeout on new connections."""
            cursor = dbapi_conn.cursor()
            cursor.execute(f"SET statement_timeout = '{query_timeout * 1000}'")
            cursor.close()

        _session_factory = sessionmaker(bind=_engine)
        _scoped_session = scoped_session(_session_factory)

    return _engine


def reset_engine():
    """Reset engine for testing - closes existing connections and clears global state."""
    global _engine, _session_factory, _scoped_session

    if _scoped_session is not None:
        _scoped_session.remove()
        _scoped_session = None

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _session_factory = None


def get_session_factory() -> SessionFactory:
    """Get the default (scoped) session factory, creating the engine if needed."""
    get_engine()
    assert _scoped_session is not None
    return _scoped_session


@contextmanager
def get_db_session(session_factory: SessionFactory | None = None) -> Generator[Session, None, None]:
    """Session scope bound to ``session_factory`` (or the global engine).

    Usage:
        with get_db_session(self.session_factory) as session:
            rows = fetch_dimension_rows(session, REGIONAL, client_id, period)
            session.commit()  # writes need an explicit commit

    Rolls back on any exception and always closes the session.
    """
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
    except (OperationalError, DisconnectionError) as e:
        logger.error(f"Database connection error: {e}")
        session.rollback()
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
        if isinstance(factory, scoped_session):
            factory.remove()


def execute_with_retry(
    func: Callable[[Session], Any],
    session_factory: SessionFactory | None = None,
    max_retries: int = 3,
    retry_on: tuple = (OperationalError, DisconnectionError),
) -> Any:
    """
    Execute a database operation with retry logic for connection issues.

    Args:
        func: Function that takes a session as its first argument
        session_factory: Optional factory; defaults to the global engine
        max_retries: Maximum number of retry attempts
        retry_on: Tuple of exception types to retry on (defaults to connection errors)

    Returns:
        The result of the function
    """
    for attempt in range(max_retries):
        try:
            with get_db_session(session_factory) as session:
                result = func(session)
                session.commit()
                return result
        except retry_on as e:
            logger.warning(f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}")
            if attempt < max_retries - 1:
                # Exponential backoff: 0.5s, 1s, 2s
                wait_time = 0.5 * (2**attempt)
                logger.info(f"Waiting {wait_time}s before retry...")
                time.sleep(wait_time)
                continue
            raise
        except SQLAlchemyError as e:
            logger.error(f"Non-retryable database error: {e}")
            raise
