"""
Ingestion gateway: validation of producer payloads, classification, the
durable append and the broker hand-off.
"""

import asyncio
import logging
import math
from typing import Any, Callable, Dict, List, Optional

from .broker import BrokerPublisher
from .classifier import classify
from .event_store import EventStore
from .exceptions import ValidationError
from .models import (CATEGORIES, CHANGE_KINDS, FILE_TYPES, MAX_TIMESTAMP_MS, ClassifiedRecord,
                     RawChangeEvent, now_ms)

log = logging.getLogger("NazarGateway.Ingestion")

REQUIRED_FIELDS = ['filePath', 'changeType', 'clientMacAddress']

# Largest size an SQLite INTEGER column holds
MAX_SIZE_BYTES = 2 ** 63 - 1

# chokidar-style watcher names accepted on the wire
CHANGE_KIND_ALIASES = {
    'unlink': 'remove',
    'addDir': 'add-dir',
    'unlinkDir': 'remove-dir',
}


def _is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _non_empty_str(value) -> bool:
    return isinstance(value, str) and value.strip() != ''


def parse_raw_event(payload: Any, clock: Callable[[], int] = now_ms) -> RawChangeEvent:
    """
    Validate a producer payload and build a RawChangeEvent.

    Only the fields the classifier cannot derive are required. Declared
    metadata is optional but, when present, must be structurally valid.
    A zero or missing timestamp is replaced with the current time.

    Raises:
        ValidationError: listing every offending wire field
    """
    if not isinstance(payload, dict):
        raise ValidationError(['body'], "Message body must be a JSON object")

    bad: List[str] = []

    path = payload.get('filePath')
    if not _non_empty_str(path):
        bad.append('filePath')

    change_kind = payload.get('changeType')
    if isinstance(change_kind, str):
        change_kind = CHANGE_KIND_ALIASES.get(change_kind, change_kind)
    if change_kind not in CHANGE_KINDS:
        bad.append('changeType')

    client_id = payload.get('clientMacAddress')
    if not _non_empty_str(client_id):
        bad.append('clientMacAddress')

    timestamp = payload.get('timestamp')
    if timestamp is not None and (not _is_number(timestamp) or not 0 <= timestamp <= MAX_TIMESTAMP_MS):
        bad.append('timestamp')

    size = payload.get('size')
    if size is not None and (not _is_number(size) or size > MAX_SIZE_BYTES):
        bad.append('size')

    is_directory = payload.get('isDirectory')
    if is_directory is not None and not isinstance(is_directory, bool):
        bad.append('isDirectory')

    file_type = payload.get('fileType')
    if file_type is not None and file_type not in FILE_TYPES:
        bad.append('fileType')

    category = payload.get('category')
    if category is not None and category not in CATEGORIES:
        bad.append('category')

    for name in ('fileName', 'fileExtension', 'directory'):
        value = payload.get(name)
        if value is not None and not isinstance(value, str):
            bad.append(name)

    if bad:
        raise ValidationError(bad)

    return RawChangeEvent(
        path=path,
        change_kind=change_kind,
        client_id=client_id.strip(),
        timestamp=int(timestamp) if timestamp else clock(),
        size=size,
        file_name=payload.get('fileName'),
        extension=payload.get('fileExtension'),
        directory=payload.get('directory'),
        file_type=file_type,
        category=category,
        is_directory=is_directory,
    )


class IngestionGateway:
    """
    Accepts producer payloads and records them.

    The broker publish is scheduled before the store append and runs in
    the background, so neither outcome depends on the other. Store
    failures (StoreUnavailable) propagate to the caller.
    """

    def __init__(self, store: EventStore, publisher: Optional[BrokerPublisher] = None,
                 executor=None, clock: Callable[[], int] = now_ms):
        self.store = store
        self.publisher = publisher
        self.executor = executor
        self.clock = clock
        self.accepted = 0
        self.rejected = 0
        self._pending_publishes = set()

    async def ingest(self, payload: Dict[str, Any]) -> ClassifiedRecord:
        try:
            raw = parse_raw_event(payload, self.clock)
        except ValidationError as e:
            self.rejected += 1
            log.warning(f"Rejected change event: invalid fields {e.fields}")
            raise

        record = classify(raw)
        self._schedule_publish(record)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self.executor, self.store.append, record)
        self.accepted += 1
        log.debug(f"Ingested {record.change_kind} '{record.path}' ({record.file_type}/{record.category}) "
                  f"from {record.client_id}")
        return record

    def _schedule_publish(self, record: ClassifiedRecord):
        if self.publisher is None or not self.publisher.enabled:
            return
        task = asyncio.create_task(self.publisher.publish(record))
        self._pending_publishes.add(task)
        task.add_done_callback(self._pending_publishes.discard)

    @property
    def pending_publishes(self) -> int:
        return len(self._pending_publishes)

    async def drain(self):
        """Wait for in-flight broker publishes to finish."""
        if self._pending_publishes:
            log.info(f"Waiting for {len(self._pending_publishes)} pending broker publish(es)...")
            await asyncio.gather(*self._pending_publishes, return_exceptions=True)
