"""
Database engine, session factory and transaction helpers.

Every mutating operation in the services runs inside ``transaction()`` so the
write and its activity log entry are committed (or rolled back) together.
``retry_on_pool_exhaustion`` is the only place allowed to retry database work,
and only for connection pool exhaustion.
"""

import functools
import logging
import os
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from errors import TransientDatabaseError

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./taskhub.db")


def _int_from_env(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read a bounded integer setting, falling back to the default with a warning."""
    raw = os.environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name} value '{raw}' in environment. Using default of {default}.")
        return default
    if value < minimum or value > maximum:
        logger.warning(
            f"{name}={value} is outside safe range ({minimum}-{maximum}). Using default of {default}."
        )
        return default
    return value


DB_POOL_SIZE = _int_from_env("DB_POOL_SIZE", 5, 1, 100)
DB_RETRY_ATTEMPTS = _int_from_env("DB_RETRY_ATTEMPTS", 3, 1, 10)
DB_RETRY_DELAY_MS = _int_from_env("DB_RETRY_DELAY_MS", 1000, 0, 60000)

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(DATABASE_URL, pool_size=DB_POOL_SIZE, pool_pre_ping=True, pool_recycle=3600)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a block of writes as one unit of work.

    Commits when the block exits normally. Any exception rolls the whole
    session back and is re-raised unchanged.

    Example:
        >>> with transaction(db):
        ...     db.add(project)
        ...     record_activity(db, ActivityAction.PROJECT_CREATED, ...)
    """
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back transaction")
        db.rollback()
        raise


def is_pool_exhaustion_error(exc: Exception) -> bool:
    """True for 'pool exhausted' / 'too many connections' failures only."""
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, OperationalError):
        message = str(exc).lower()
        return "too many connections" in message or "connection pool" in message
    return False


def retry_on_pool_exhaustion(func):
    """
    Retry a service operation when the connection pool is exhausted.

    The wrapped function must take the session as its first argument. Between
    attempts the session is rolled back and the caller sleeps for
    ``attempt * DB_RETRY_DELAY_MS`` milliseconds. Any other error propagates on
    first occurrence. When the retry budget runs out a
    ``TransientDatabaseError`` is raised.
    """

    @functools.wraps(func)
    def wrapper(db: Session, *args, **kwargs):
        last_error = None
        for attempt in range(1, DB_RETRY_ATTEMPTS + 1):
            try:
                return func(db, *args, **kwargs)
            except (PoolTimeoutError, OperationalError) as e:
                if not is_pool_exhaustion_error(e):
                    raise
                last_error = e
                db.rollback()
                if attempt < DB_RETRY_ATTEMPTS:
                    delay_ms = attempt * DB_RETRY_DELAY_MS
                    logger.warning(
                        f"Connection pool error in {func.__name__} "
                        f"(attempt {attempt}/{DB_RETRY_ATTEMPTS}), retrying in {delay_ms}ms"
                    )
                    time.sleep(delay_ms / 1000)

        logger.error(f"{func.__name__} failed after {DB_RETRY_ATTEMPTS} attempts: {last_error}")
        raise TransientDatabaseError("Database is temporarily unavailable") from last_error

    return wrapper
