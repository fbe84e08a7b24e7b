"""
Data model for change events and the dashboard views derived from them.

Raw events arrive from producers with redundant declared metadata;
classified records carry only values re-derived by the classifier.
Every aggregate view is a plain dataclass whose ``to_dict`` renders the
JSON wire shape (camelCase client keys, ISO-8601 UTC timestamps).
"""

import datetime
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

FILE_TYPES = ('document', 'image', 'video', 'audio', 'code', 'archive', 'other')
CATEGORIES = ('document', 'media', 'code', 'archive', 'other')
CHANGE_KINDS = ('add', 'change', 'remove', 'add-dir', 'remove-dir')

# Change-kind partition shared by every created/modified/deleted counter
CREATED_KINDS = frozenset({'add', 'add-dir'})
MODIFIED_KINDS = frozenset({'change'})
DELETED_KINDS = frozenset({'remove', 'remove-dir'})
DIRECTORY_KINDS = frozenset({'add-dir', 'remove-dir'})

NO_EXTENSION = 'none'

# Last millisecond of 9999-12-31 UTC; later timestamps cannot be rendered as dates
MAX_TIMESTAMP_MS = 253402300799999


_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def datetime_from_ms(timestamp_ms: int) -> datetime.datetime:
    """UTC datetime for a millisecond epoch timestamp, computed without float rounding."""
    return _EPOCH + datetime.timedelta(milliseconds=timestamp_ms)


def iso_from_ms(timestamp_ms: Optional[int]) -> Optional[str]:
    """Render a millisecond epoch timestamp as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if timestamp_ms is None:
        return None
    dt = datetime_from_ms(timestamp_ms)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def now_ms() -> int:
    return int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)


@dataclass
class RawChangeEvent:
    """A change event as reported by a producer. Declared fields are untrusted."""
    path: str
    change_kind: str
    client_id: str
    timestamp: int = 0
    size: Optional[float] = None
    file_name: Optional[str] = None
    extension: Optional[str] = None
    directory: Optional[str] = None
    file_type: Optional[str] = None
    category: Optional[str] = None
    is_directory: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filePath': self.path,
            'fileName': self.file_name,
            'fileExtension': self.extension,
            'directory': self.directory,
            'fileType': self.file_type,
            'category': self.category,
            'changeType': self.change_kind,
            'timestamp': self.timestamp,
            'size': self.size,
            'isDirectory': self.is_directory,
            'clientMacAddress': self.client_id,
        }


@dataclass(frozen=True)
class ClassifiedRecord:
    path: str
    file_name: str
    extension: str
    directory: str
    file_type: str
    category: str
    change_kind: str
    timestamp: int
    size: int
    is_directory: bool
    client_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filePath': self.path,
            'fileName': self.file_name,
            'fileExtension': self.extension,
            'directory': self.directory,
            'fileType': self.file_type,
            'category': self.category,
            'changeType': self.change_kind,
            'timestamp': self.timestamp,
            'size': self.size,
            'isDirectory': self.is_directory,
            'clientMacAddress': self.client_id,
        }


# --- Aggregate views ---

@dataclass
class BasicStats:
    total_events: int = 0
    directories: int = 0
    files: int = 0
    total_size: int = 0
    files_created: int = 0
    files_modified: int = 0
    files_deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CategoryStat:
    category: str
    count: int
    total_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtensionStat:
    extension: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HourlyBucket:
    hour: str
    event_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DailyBucket:
    date: str
    event_count: int
    created: int
    modified: int
    deleted: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DirectoryStat:
    directory: str
    event_count: int
    last_activity: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'directory': self.directory,
            'event_count': self.event_count,
            'last_activity': iso_from_ms(self.last_activity),
        }


@dataclass
class FileTypeStat:
    file_type: str
    count: int
    total_size: int
    avg_size: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WeeklyTrendRow:
    date: str
    day_of_week: str
    total_events: int
    created_count: int
    modified_count: int
    deleted_count: int
    total_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClientSummary:
    client_id: str
    event_count: int
    last_activity: int
    files_created: int
    files_modified: int
    files_deleted: int
    total_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'clientMacAddress': self.client_id,
            'event_count': self.event_count,
            'last_activity': iso_from_ms(self.last_activity),
            'files_created': self.files_created,
            'files_modified': self.files_modified,
            'files_deleted': self.files_deleted,
            'total_size': self.total_size,
        }


@dataclass
class ClientIdentity:
    client_id: str
    first_seen: int
    last_seen: int
    total_events: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'clientMacAddress': self.client_id,
            'first_seen': iso_from_ms(self.first_seen),
            'last_seen': iso_from_ms(self.last_seen),
            'total_events': self.total_events,
        }


@dataclass
class DashboardReport:
    basic: BasicStats
    categories: List[CategoryStat] = field(default_factory=list)
    top_extensions: List[ExtensionStat] = field(default_factory=list)
    hourly: List[HourlyBucket] = field(default_factory=list)
    daily: List[DailyBucket] = field(default_factory=list)
    top_directories: List[DirectoryStat] = field(default_factory=list)
    top_clients: List[ClientSummary] = field(default_factory=list)
    file_types: List[FileTypeStat] = field(default_factory=list)
    weekly_trends: List[WeeklyTrendRow] = field(default_factory=list)
    clients: List[ClientIdentity] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dashboard': {
                'stats': {
                    'basic': self.basic.to_dict(),
                    'categories': [c.to_dict() for c in self.categories],
                    'topExtensions': [e.to_dict() for e in self.top_extensions],
                },
                'analytics': {
                    'hourly': [h.to_dict() for h in self.hourly],
                    'daily': [d.to_dict() for d in self.daily],
                    'topDirectories': [d.to_dict() for d in self.top_directories],
                    'topClients': [c.to_dict() for c in self.top_clients],
                },
                'fileTypes': [f.to_dict() for f in self.file_types],
                'weeklyTrends': [w.to_dict() for w in self.weekly_trends],
                'clients': [c.to_dict() for c in self.clients],
            }
        }
