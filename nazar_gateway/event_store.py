"""
Event store interface and the in-memory backend.

The analytics engine and the ingestion gateway only talk to an EventStore;
the SQLite backend lives in database.py. All methods are blocking and are
expected to be dispatched to the database thread pool by async callers.
"""

import abc
import datetime
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from .models import CREATED_KINDS, DELETED_KINDS, MODIFIED_KINDS, ClassifiedRecord, datetime_from_ms

log = logging.getLogger("NazarGateway.EventStore")

GROUP_KEYS = ('category', 'extension', 'file_type', 'directory', 'client_id', 'change_kind',
              'hour', 'date', 'day_of_week')
AGGREGATES = ('count', 'total_size', 'first_seen', 'last_seen', 'created', 'modified', 'deleted')
NUMERIC_FIELDS = ('size', 'timestamp')

GroupRow = Tuple[Tuple[Any, ...], Dict[str, Any]]


@dataclass(frozen=True)
class EventFilter:
    """Conjunction of predicates over classified records. ``None`` means unconstrained."""
    client_id: Optional[str] = None
    since: Optional[int] = None  # inclusive lower bound on timestamp (ms)
    change_kinds: Optional[FrozenSet[str]] = None
    is_directory: Optional[bool] = None
    exclude_extension: Optional[str] = None

    def matches(self, record: ClassifiedRecord) -> bool:
        if self.client_id is not None and record.client_id != self.client_id:
            return False
        if self.since is not None and record.timestamp < self.since:
            return False
        if self.change_kinds is not None and record.change_kind not in self.change_kinds:
            return False
        if self.is_directory is not None and record.is_directory != self.is_directory:
            return False
        if self.exclude_extension is not None and record.extension == self.exclude_extension:
            return False
        return True

    def scoped(self, **changes) -> "EventFilter":
        values = {
            'client_id': self.client_id,
            'since': self.since,
            'change_kinds': self.change_kinds,
            'is_directory': self.is_directory,
            'exclude_extension': self.exclude_extension,
        }
        values.update(changes)
        return EventFilter(**values)


ALL_EVENTS = EventFilter()


def validate_group_request(keys: Sequence[str], aggregates: Sequence[str]):
    unknown_keys = [k for k in keys if k not in GROUP_KEYS]
    unknown_aggs = [a for a in aggregates if a not in AGGREGATES]
    if unknown_keys or unknown_aggs:
        raise ValueError(f"Unsupported group keys {unknown_keys} or aggregates {unknown_aggs}")


class EventStore(abc.ABC):
    """Append-only store of classified records with filtered aggregation.

    ``group_by`` returns groups in the order their first record was appended;
    callers rely on this for stable tie-breaking. ``clear`` is not atomic
    with respect to concurrent readers.
    """

    @abc.abstractmethod
    def append(self, record: ClassifiedRecord) -> None:
        ...

    @abc.abstractmethod
    def count(self, filt: EventFilter = ALL_EVENTS) -> int:
        ...

    @abc.abstractmethod
    def sum(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> int:
        ...

    @abc.abstractmethod
    def min(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> Optional[int]:
        ...

    @abc.abstractmethod
    def max(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> Optional[int]:
        ...

    @abc.abstractmethod
    def group_by(self, keys: Sequence[str], filt: EventFilter = ALL_EVENTS,
                 aggregates: Sequence[str] = ('count',)) -> List[GroupRow]:
        ...

    @abc.abstractmethod
    def clear(self) -> int:
        """Delete every record. Returns the number of records removed."""

    @abc.abstractmethod
    def ping(self) -> Dict[str, Any]:
        """Raise StoreUnavailable if the store cannot answer, else return details."""


# --- In-memory backend ---

def _utc(record: ClassifiedRecord) -> datetime.datetime:
    return datetime_from_ms(record.timestamp)


_KEY_FUNCS: Dict[str, Callable[[ClassifiedRecord], Any]] = {
    'category': lambda r: r.category,
    'extension': lambda r: r.extension,
    'file_type': lambda r: r.file_type,
    'directory': lambda r: r.directory,
    'client_id': lambda r: r.client_id,
    'change_kind': lambda r: r.change_kind,
    'hour': lambda r: _utc(r).strftime('%H'),
    'date': lambda r: _utc(r).strftime('%Y-%m-%d'),
    'day_of_week': lambda r: _utc(r).strftime('%w'),
}


def _new_accumulator() -> Dict[str, Any]:
    return {'count': 0, 'total_size': 0, 'first_seen': None, 'last_seen': None,
            'created': 0, 'modified': 0, 'deleted': 0}


def _accumulate(acc: Dict[str, Any], record: ClassifiedRecord):
    acc['count'] += 1
    acc['total_size'] += record.size
    if acc['first_seen'] is None or record.timestamp < acc['first_seen']:
        acc['first_seen'] = record.timestamp
    if acc['last_seen'] is None or record.timestamp > acc['last_seen']:
        acc['last_seen'] = record.timestamp
    if record.change_kind in CREATED_KINDS:
        acc['created'] += 1
    elif record.change_kind in MODIFIED_KINDS:
        acc['modified'] += 1
    elif record.change_kind in DELETED_KINDS:
        acc['deleted'] += 1


class InMemoryEventStore(EventStore):
    """Process-local store. Appends are serialized by a lock; reads work on a snapshot."""

    def __init__(self):
        self._records: List[ClassifiedRecord] = []
        self._lock = threading.Lock()

    def _snapshot(self, filt: EventFilter) -> List[ClassifiedRecord]:
        with self._lock:
            records = list(self._records)
        return [r for r in records if filt.matches(r)]

    def append(self, record: ClassifiedRecord) -> None:
        with self._lock:
            self._records.append(record)

    def count(self, filt: EventFilter = ALL_EVENTS) -> int:
        return len(self._snapshot(filt))

    def _values(self, field_name: str, filt: EventFilter) -> List[int]:
        if field_name not in NUMERIC_FIELDS:
            raise ValueError(f"Unsupported numeric field: {field_name}")
        return [getattr(r, field_name) for r in self._snapshot(filt)]

    def sum(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> int:
        return sum(self._values(field_name, filt))

    def min(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> Optional[int]:
        values = self._values(field_name, filt)
        return min(values) if values else None

    def max(self, field_name: str, filt: EventFilter = ALL_EVENTS) -> Optional[int]:
        values = self._values(field_name, filt)
        return max(values) if values else None

    def group_by(self, keys: Sequence[str], filt: EventFilter = ALL_EVENTS,
                 aggregates: Sequence[str] = ('count',)) -> List[GroupRow]:
        validate_group_request(keys, aggregates)
        groups: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        for record in self._snapshot(filt):
            key = tuple(_KEY_FUNCS[k](record) for k in keys)
            acc = groups.get(key)
            if acc is None:
                acc = groups[key] = _new_accumulator()
            _accumulate(acc, record)
        # dicts keep insertion order, i.e. the order each group was first seen
        return [(key, {a: acc[a] for a in aggregates}) for key, acc in groups.items()]

    def clear(self) -> int:
        with self._lock:
            removed = len(self._records)
            self._records = []
        log.warning(f"In-memory event store cleared ({removed} records removed).")
        return removed

    def ping(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._records)
        return {'backend': 'memory', 'records': size}
