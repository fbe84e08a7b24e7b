"""
Analytics Engine for Nazar Gateway
Computes the dashboard views from the event store.

Every view is a pure projection of the store contents at call time. The
sub-aggregates of a dashboard request run concurrently in the database
thread pool and are joined before the report is assembled; the first
failure cancels the remaining branches and no partial report is returned.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, Optional

from .config import DAILY_WINDOW_DAYS, HOURLY_WINDOW_HOURS, TOP_N_LIMIT
from .event_store import ALL_EVENTS, EventFilter, EventStore
from .exceptions import StoreUnavailable
from .models import (NO_EXTENSION, BasicStats, CategoryStat, ClientIdentity, ClientSummary,
                     DailyBucket, DashboardReport, DirectoryStat, ExtensionStat, FileTypeStat,
                     HourlyBucket, WeeklyTrendRow, now_ms)

log = logging.getLogger("NazarGateway.Analytics")

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

_PARTITION = ('created', 'modified', 'deleted')
_CLIENT_AGGREGATES = ('count', 'last_seen', 'total_size') + _PARTITION


def _by_count(rows, attr: str = 'count'):
    # sorted() is stable, so equal counts keep the store's first-seen order
    return sorted(rows, key=lambda r: getattr(r, attr), reverse=True)


# --- Sub-aggregates (blocking, run in the database executor) ---

def basic_stats(store: EventStore, scope: EventFilter = ALL_EVENTS) -> BasicStats:
    files_scope = scope.scoped(is_directory=False)
    partition = {'created': 0, 'modified': 0, 'deleted': 0}
    total_events = 0
    for _, aggs in store.group_by(['change_kind'], scope, ('count',) + _PARTITION):
        total_events += aggs['count']
        for bucket in _PARTITION:
            partition[bucket] += aggs[bucket] or 0

    return BasicStats(
        total_events=total_events,
        directories=store.count(scope.scoped(is_directory=True)),
        files=store.count(files_scope),
        total_size=store.sum('size', files_scope) or 0,
        files_created=partition['created'],
        files_modified=partition['modified'],
        files_deleted=partition['deleted'],
    )


def category_stats(store: EventStore, scope: EventFilter = ALL_EVENTS) -> List[CategoryStat]:
    rows = store.group_by(['category'], scope.scoped(is_directory=False), ('count', 'total_size'))
    return _by_count(CategoryStat(category=key[0], count=aggs['count'], total_size=aggs['total_size'])
                     for key, aggs in rows)


def top_extensions(store: EventStore, scope: EventFilter = ALL_EVENTS,
                   limit: int = TOP_N_LIMIT) -> List[ExtensionStat]:
    rows = store.group_by(['extension'],
                          scope.scoped(is_directory=False, exclude_extension=NO_EXTENSION))
    stats = _by_count(ExtensionStat(extension=key[0], count=aggs['count']) for key, aggs in rows)
    return stats[:limit]


def hourly_activity(store: EventStore, scope: EventFilter, since: int) -> List[HourlyBucket]:
    """Events since ``since`` bucketed by their own UTC hour-of-day.

    The same hour on two different days lands in one bucket.
    """
    rows = store.group_by(['hour'], scope.scoped(since=since))
    buckets = [HourlyBucket(hour=key[0], event_count=aggs['count']) for key, aggs in rows]
    return sorted(buckets, key=lambda b: b.hour)


def daily_activity(store: EventStore, scope: EventFilter, since: int) -> List[DailyBucket]:
    rows = store.group_by(['date'], scope.scoped(since=since), ('count',) + _PARTITION)
    buckets = [
        DailyBucket(date=key[0], event_count=aggs['count'], created=aggs['created'] or 0,
                    modified=aggs['modified'] or 0, deleted=aggs['deleted'] or 0)
        for key, aggs in rows
    ]
    return sorted(buckets, key=lambda b: b.date)


def top_directories(store: EventStore, scope: EventFilter = ALL_EVENTS,
                    limit: int = TOP_N_LIMIT) -> List[DirectoryStat]:
    rows = store.group_by(['directory'], scope, ('count', 'last_seen'))
    stats = _by_count(
        (DirectoryStat(directory=key[0] or '', event_count=aggs['count'],
                       last_activity=aggs['last_seen'])
         for key, aggs in rows),
        attr='event_count',
    )
    return stats[:limit]


def file_type_stats(store: EventStore, scope: EventFilter = ALL_EVENTS) -> List[FileTypeStat]:
    rows = store.group_by(['file_type'], scope.scoped(is_directory=False), ('count', 'total_size'))
    return _by_count(
        FileTypeStat(file_type=key[0], count=aggs['count'], total_size=aggs['total_size'],
                     avg_size=round(aggs['total_size'] / aggs['count'], 2))
        for key, aggs in rows
    )


def weekly_trends(store: EventStore, scope: EventFilter, since: int) -> List[WeeklyTrendRow]:
    rows = store.group_by(['date', 'day_of_week'], scope.scoped(since=since),
                          ('count', 'total_size') + _PARTITION)
    trend = [
        WeeklyTrendRow(date=key[0], day_of_week=key[1], total_events=aggs['count'],
                       created_count=aggs['created'] or 0, modified_count=aggs['modified'] or 0,
                       deleted_count=aggs['deleted'] or 0, total_size=aggs['total_size'])
        for key, aggs in rows
    ]
    return sorted(trend, key=lambda r: r.date)


def _client_summary(client_id: str, aggs: Dict[str, Any]) -> ClientSummary:
    return ClientSummary(
        client_id=client_id,
        event_count=aggs['count'],
        last_activity=aggs['last_seen'],
        files_created=aggs['created'] or 0,
        files_modified=aggs['modified'] or 0,
        files_deleted=aggs['deleted'] or 0,
        total_size=aggs['total_size'],
    )


def top_clients(store: EventStore, limit: int = TOP_N_LIMIT) -> List[ClientSummary]:
    """Busiest clients across the whole store; never scoped to a client."""
    rows = store.group_by(['client_id'], ALL_EVENTS, _CLIENT_AGGREGATES)
    summaries = _by_count((_client_summary(key[0], aggs) for key, aggs in rows), attr='event_count')
    return summaries[:limit]


def client_summary(store: EventStore, client_id: str) -> Optional[ClientSummary]:
    rows = store.group_by(['client_id'], EventFilter(client_id=client_id), _CLIENT_AGGREGATES)
    if not rows:
        return None
    key, aggs = rows[0]
    return _client_summary(key[0], aggs)


def client_identities(store: EventStore) -> List[ClientIdentity]:
    rows = store.group_by(['client_id'], ALL_EVENTS, ('first_seen', 'last_seen', 'count'))
    identities = [
        ClientIdentity(client_id=key[0], first_seen=aggs['first_seen'],
                       last_seen=aggs['last_seen'], total_events=aggs['count'])
        for key, aggs in rows
    ]
    return sorted(identities, key=lambda c: c.last_seen, reverse=True)


class AnalyticsEngine:
    """
    Dashboard query service over an explicitly supplied event store.

    Args:
        store: EventStore to read from
        executor: Thread pool for blocking store calls (None uses the loop default)
        clock: Returns the current time in epoch milliseconds
    """

    def __init__(self, store: EventStore, executor=None, clock: Callable[[], int] = now_ms):
        self.store = store
        self.executor = executor
        self.clock = clock

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, functools.partial(func, self.store, *args))

    async def _gather_all(self, calls: Dict[str, tuple]) -> Dict[str, Any]:
        """Run every call concurrently; on the first failure cancel the rest and raise."""
        tasks = {name: asyncio.ensure_future(self._run(*call)) for name, call in calls.items()}
        try:
            done, pending = await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_EXCEPTION)
            failed = next((t for t in tasks.values() if t.done() and not t.cancelled()
                           and t.exception() is not None), None)
            if failed is not None:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                raise failed.exception()
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()
        return {name: task.result() for name, task in tasks.items()}

    async def compute_dashboard(self, client_id: Optional[str] = None) -> DashboardReport:
        now = self.clock()
        scope = EventFilter(client_id=client_id) if client_id else ALL_EVENTS
        hourly_since = now - HOURLY_WINDOW_HOURS * HOUR_MS
        weekly_since = now - DAILY_WINDOW_DAYS * DAY_MS

        try:
            results = await self._gather_all({
                'basic': (basic_stats, scope),
                'categories': (category_stats, scope),
                'top_extensions': (top_extensions, scope),
                'hourly': (hourly_activity, scope, hourly_since),
                'daily': (daily_activity, scope, weekly_since),
                'top_directories': (top_directories, scope),
                'file_types': (file_type_stats, scope),
                'weekly_trends': (weekly_trends, scope, weekly_since),
                'top_clients': (top_clients,),
                'clients': (client_identities,),
            })
        except StoreUnavailable:
            log.error(f"Dashboard computation aborted (client={client_id or 'all'}): store unavailable")
            raise

        log.debug(f"Dashboard computed for client={client_id or 'all'}: "
                  f"{results['basic'].total_events} events")
        return DashboardReport(**results)

    async def get_client_analytics(self, client_id: str) -> Optional[ClientSummary]:
        """Summary for one client, or None if the identifier was never seen."""
        return await self._run(client_summary, client_id)

    async def get_clients(self) -> List[ClientIdentity]:
        return await self._run(client_identities)

    async def reset(self) -> int:
        removed = await self._run(lambda store: store.clear())
        log.warning(f"Analytics data reset: {removed} record(s) removed.")
        return removed
