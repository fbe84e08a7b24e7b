import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import (DATABASE_FILE, DB_CONNECTION_TIMEOUT, DB_MAX_RETRIES, DB_RETRY_BASE_DELAY,
                     DB_RETRY_MAX_DELAY)
from .db_utils import db_connection, retry_on_db_lock, translate_db_errors
from .event_store import (ALL_EVENTS, NUMERIC_FIELDS, EventFilter, EventStore, GroupRow,
                          validate_group_request)
from .models import CREATED_KINDS, DELETED_KINDS, MODIFIED_KINDS, ClassifiedRecord

log = logging.getLogger("NazarGateway.Database")

_EPOCH = "timestamp / 1000.0, 'unixepoch'"

_KEY_SQL = {
    'category': 'category',
    'extension': 'extension',
    'file_type': 'file_type',
    'directory': 'directory',
    'client_id': 'client_id',
    'change_kind': 'change_kind',
    'hour': f"strftime('%H', {_EPOCH})",
    'date': f"strftime('%Y-%m-%d', {_EPOCH})",
    'day_of_week': f"strftime('%w', {_EPOCH})",
}


def _kind_counter(kinds) -> str:
    quoted = ", ".join(f"'{k}'" for k in sorted(kinds))
    return f"SUM(CASE WHEN change_kind IN ({quoted}) THEN 1 ELSE 0 END)"


_AGGREGATE_SQL = {
    'count': 'COUNT(*)',
    'total_size': 'COALESCE(SUM(size), 0)',
    'first_seen': 'MIN(timestamp)',
    'last_seen': 'MAX(timestamp)',
    'created': _kind_counter(CREATED_KINDS),
    'modified': _kind_counter(MODIFIED_KINDS),
    'deleted': _kind_counter(DELETED_KINDS),
}

_INSERT_SQL = '''
    INSERT INTO events
    (path, file_name, extension, directory, file_type, category, change_kind, timestamp, size,
     is_directory, client_id)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
'''


@translate_db_errors
def init_db(db_path: str = DATABASE_FILE):
    log.info(f"Connecting to database '{db_path}' and checking schema...")
    with db_connection(db_path, timeout=DB_CONNECTION_TIMEOUT) as conn:
        cursor = conn.cursor()
        cursor.execute('PRAGMA journal_mode;')
        mode = cursor.fetchone()
        if mode and mode[0].lower() == 'wal':
            log.info("Database journal mode is set to WAL.")
        else:
            log.warning(f"Failed to set database journal mode to WAL. Current mode: {mode[0] if mode else 'unknown'}")

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                path TEXT NOT NULL,
                file_name TEXT NOT NULL,
                extension TEXT NOT NULL,
                directory TEXT NOT NULL,
                file_type TEXT NOT NULL,
                category TEXT NOT NULL,
                change_kind TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                is_directory INTEGER NOT NULL DEFAULT 0,
                client_id TEXT NOT NULL
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events (timestamp);')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_client_timestamp ON events (client_id, timestamp);')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_directory ON events (directory);')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_extension ON events (extension);')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_is_directory ON events (is_directory, timestamp);')
    log.info("Database schema is valid and ready.")


def _where(filt: EventFilter) -> Tuple[str, List[Any]]:
    clauses, params = [], []
    if filt.client_id is not None:
        clauses.append("client_id = ?")
        params.append(filt.client_id)
    if filt.since is not None:
        clauses.append("timestamp >= ?")
        params.append(filt.since)
    if filt.change_kinds is not None:
        kinds = sorted(filt.change_kinds)
        clauses.append(f"change_kind IN ({', '.join('?' for _ in kinds)})" if kinds else "0")
        params.extend(kinds)
    if filt.is_directory is not None:
        clauses.append("is_directory = ?")
        params.append(1 if filt.is_directory else 0)
    if filt.exclude_extension is not None:
        clauses.append("extension != ?")
        params.append(filt.exclude_extension)
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _numeric_column(field_name: str) -> str:
    if field_name not in NUMERIC_FIELDS:
        raise ValueError(f"Unsupported numeric field: {field_name}")
    return field_name


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_append_event(db_path: str, record: ClassifiedRecord):
    with db_connection(db_path, timeout=DB_CONNECTION_TIMEOUT) as conn:
        conn.execute(_INSERT_SQL, (
            record.path, record.file_name, record.extension, record.directory, record.file_type,
            record.category, record.change_kind, record.timestamp, record.size,
            1 if record.is_directory else 0, record.client_id,
        ))
    log.debug(f"Stored {record.change_kind} event for '{record.path}' from {record.client_id}.")


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_scalar_query(db_path: str, expression: str, filt: EventFilter):
    where, params = _where(filt)
    with db_connection(db_path, timeout=DB_CONNECTION_TIMEOUT) as conn:
        row = conn.execute(f"SELECT {expression} FROM events{where}", params).fetchone()
    return row[0] if row else None


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_group_query(db_path: str, keys: Sequence[str], filt: EventFilter,
                         aggregates: Sequence[str]) -> List[GroupRow]:
    """Grouped aggregation; groups come back in order of their first stored row."""
    validate_group_request(keys, aggregates)
    key_sql = [_KEY_SQL[k] for k in keys]
    select = key_sql + [_AGGREGATE_SQL[a] for a in aggregates]
    where, params = _where(filt)
    query = (f"SELECT {', '.join(select)} FROM events{where} "
             f"GROUP BY {', '.join(key_sql)} ORDER BY MIN(id)")

    with db_connection(db_path, timeout=DB_CONNECTION_TIMEOUT) as conn:
        rows = conn.execute(query, params).fetchall()

    n_keys = len(keys)
    return [(tuple(row[:n_keys]), dict(zip(aggregates, row[n_keys:]))) for row in rows]


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_db_clear(db_path: str) -> int:
    with db_connection(db_path, timeout=DB_CONNECTION_TIMEOUT) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM events")
        count = cursor.fetchone()[0]
        if count > 0:
            log.warning(f"Deleting all {count} event(s) from the database.")
            cursor.execute("DELETE FROM events")
        else:
            log.info("Event table already empty, nothing to reset.")
    return count


class SqliteEventStore(EventStore):
    """EventStore backed by the ``events`` table of an SQLite database file."""

    def __init__(self, db_path: str = DATABASE_FILE):
        self.db_path = db_path

    @translate_db_errors
    def append(self, record: ClassifiedRecord) -> None:
        blocking_append_event(self.db_path, record)

    @translate_db_errors
    def count(self, filt: EventFilter = ALL_EVENTS) -> int:
        return blocking_scalar_query(self.db_path, "COUNT(*)", filt) or 0

    @translate_db_errors
    def sum(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> int:
        column = _numeric_column(field_name)
        return blocking_scalar_query(self.db_path, f"COALESCE(SUM({column}), 0)", filt)

    @translate_db_errors
    def min(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> Optional[int]:
        return blocking_scalar_query(self.db_path, f"MIN({_numeric_column(field_name)})", filt)

    @translate_db_errors
    def max(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> Optional[int]:
        return blocking_scalar_query(self.db_path, f"MAX({_numeric_column(field_name)})", filt)

    @translate_db_errors
    def group_by(self, keys: Sequence[str], filt: EventFilter = ALL_EVENTS,
                 aggregates: Sequence[str] = ('count',)) -> List[GroupRow]:
        return blocking_group_query(self.db_path, keys, filt, aggregates)

    @translate_db_errors
    def clear(self) -> int:
        return blocking_db_clear(self.db_path)

    @translate_db_errors
    def ping(self) -> Dict[str, Any]:
        records = blocking_scalar_query(self.db_path, "COUNT(*)", ALL_EVENTS)
        return {'backend': 'sqlite', 'path': self.db_path, 'records': records}
