"""
Database Utilities

Provides retry logic, connection management, and error translation
for SQLite event store operations under concurrent readers and writers.
"""

import contextlib
import functools
import logging
import sqlite3
import time
from typing import Any, Callable, Iterator

from .exceptions import StoreUnavailable

log = logging.getLogger("NazarGateway.DbUtils")

_RETRYABLE_MESSAGES = ("locked", "busy")


def retry_on_db_lock(max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 5.0):
    """
    Decorator to retry database operations on lock/busy errors with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            delay = base_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    error_msg = str(e).lower()
                    if not any(err in error_msg for err in _RETRYABLE_MESSAGES):
                        raise
                    if attempt >= max_attempts:
                        log.error(f"Database operation failed after {max_attempts} attempts: {e}")
                        raise
                    log.warning(
                        f"Database operation failed (attempt {attempt}/{max_attempts}): {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)
                    # Exponential backoff with jitter
                    delay = min(delay * 2 + (time.time() % 0.1), max_delay)

        return wrapper

    return decorator


def translate_db_errors(func: Callable) -> Callable:
    """Re-raise any sqlite3.Error escaping ``func`` as StoreUnavailable."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            log.error(f"Event store call {func.__name__} failed: {e}")
            raise StoreUnavailable(f"Event store unavailable: {e}") from e

    return wrapper


def get_optimized_connection(db_path: str, timeout: float = 30.0) -> sqlite3.Connection:
    """
    Create an SQLite connection with settings suited to an append-mostly
    workload read by many concurrent aggregate queries.
    """
    conn = sqlite3.connect(db_path, timeout=timeout, detect_types=0)
    cursor = conn.cursor()

    # WAL mode lets readers proceed while a writer appends (persistent setting)
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA cache_size=-64000;")  # 64MB cache
    cursor.execute("PRAGMA temp_store=MEMORY;")
    cursor.execute(f"PRAGMA busy_timeout={int(timeout * 1000)};")

    log.debug(f"Created optimized SQLite connection (timeout={timeout}s)")
    return conn


@contextlib.contextmanager
def db_connection(db_path: str, timeout: float = 30.0) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success, roll back on error, always close."""
    conn = get_optimized_connection(db_path, timeout)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
