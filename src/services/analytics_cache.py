"""
Analytics cache.

Keeps one precomputed AnalyticsSnapshot per client in ``analytics_cache``.
A snapshot younger than the TTL is served as is; an older one triggers a
recomputation from the normalized tables. When recomputation fails the old
snapshot is still served, flagged as stale.

Recomputation is serialized per client: while one caller refreshes, other
callers get the existing snapshot, or wait for the refresh when there is none.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, select

from src.core.database.database_session import SessionFactory, get_db_session
from src.core.database.models import AnalyticsCacheEntry
from src.core.errors import PipelineError, PipelineErrorType
from src.core.logging_config import pipeline_logger
from src.core.schemas import CacheResponse
from src.services.analytics_engine import RoiThresholds, generate_full_analytics
from src.services.normalized_store import NormalizedStore, as_utc

logger = logging.getLogger(__name__)

NO_DATA_ERROR = "No analytics data available for this client. Run a collection first."

DATA_SOURCE = "separated_tables"


@dataclass
class CachedSnapshot:
    data: dict[str, Any]
    month_year: str | None
    last_updated: datetime


class AnalyticsCache:
    """TTL cache of analytics snapshots backed by the database."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        store: NormalizedStore | None = None,
        ttl_seconds: int = 3600,
        thresholds: RoiThresholds | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.session_factory = session_factory
        self.store = store or NormalizedStore(session_factory, clock=clock)
        self.ttl = timedelta(seconds=ttl_seconds)
        self.thresholds = thresholds or RoiThresholds()
        self.clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, client_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(client_id, threading.Lock())

    def is_fresh(self, snapshot: CachedSnapshot) -> bool:
        return self.clock() - as_utc(snapshot.last_updated) < self.ttl

    # Lookups

    def get(self, client_id: str) -> CacheResponse:
        """Return the client's analytics, recomputing when the snapshot is missing or expired."""
        from src.core.metrics import analytics_cache_lookups_total

        snapshot = self.load(client_id)
        if snapshot and self.is_fresh(snapshot):
            response = self._response(snapshot, source="cache", cached=True)
        else:
            lock = self._lock_for(client_id)
            if snapshot and not lock.acquire(blocking=False):
                logger.info(f"[AnalyticsCache] Refresh in progress for {client_id}; serving existing snapshot")
                response = self._response(
                    snapshot,
                    source="stale_cache",
                    cached=True,
                    stale=True,
                    warning="Analytics refresh in progress; serving the previous snapshot",
                )
            else:
                if not snapshot:
                    lock.acquire()
                try:
                    response = self._refresh_locked(client_id, fallback=snapshot)
                finally:
                    lock.release()

        analytics_cache_lookups_total.labels(source=response.source or "none").inc()
        pipeline_logger.log_cache(client_id, response.source or "none", response.success, response.error or "")
        return response

    def refresh(self, client_id: str) -> CacheResponse:
        """Recompute regardless of TTL. Falls back to the stored snapshot on failure."""
        with self._lock_for(client_id):
            return self._refresh_locked(client_id, fallback=self.load(client_id), force=True)

    def refresh_all(self, client_ids: list[str]) -> dict[str, CacheResponse]:
        """Force-refresh several clients; one failure does not stop the rest."""
        results = {}
        for client_id in client_ids:
            results[client_id] = self.refresh(client_id)
        refreshed = sum(1 for response in results.values() if response.source == "fresh")
        logger.info(f"[AnalyticsCache] Refreshed {refreshed}/{len(client_ids)} client snapshot(s)")
        return results

    def invalidate(self, client_id: str) -> bool:
        """Drop the stored snapshot. Returns True if one existed."""
        with get_db_session(self.session_factory) as session:
            result = session.execute(delete(AnalyticsCacheEntry).where(AnalyticsCacheEntry.client_id == client_id))
            session.commit()
        removed = bool(result.rowcount)
        if removed:
            logger.info(f"[AnalyticsCache] Invalidated snapshot for {client_id}")
        return removed

    # Internals

    def _refresh_locked(
        self, client_id: str, fallback: CachedSnapshot | None, force: bool = False
    ) -> CacheResponse:
        if not force:
            # Another caller may have refreshed while we waited for the lock
            current = self.load(client_id)
            if current and self.is_fresh(current):
                return self._response(current, source="cache", cached=True)
            fallback = current or fallback

        try:
            snapshot = self.recompute(client_id)
        except Exception as e:
            logger.warning(f"[AnalyticsCache] Refresh failed for {client_id}: {e}")
            if fallback:
                return self._response(
                    fallback,
                    source="stale_cache",
                    cached=True,
                    stale=True,
                    warning=f"Serving stale analytics; refresh failed: {e}",
                )
            return CacheResponse(success=False, error=NO_DATA_ERROR)

        return self._response(snapshot, source="fresh", cached=False)

    def recompute(self, client_id: str) -> CachedSnapshot:
        """Build a snapshot from the latest stored period and persist it.

        Raises:
            PipelineError: If the client has no stored insights
        """
        from src.core.metrics import analytics_refresh_duration

        start_time = time.time()
        period = self.store.latest_period(client_id)
        data = self.store.fetch(client_id, period) if period else None
        if not data:
            raise PipelineError(
                f"No stored insights for client {client_id}",
                PipelineErrorType.STORAGE,
                details={"client_id": client_id},
            )

        now = self.clock()
        analytics = generate_full_analytics(data, thresholds=self.thresholds, period=period, now=now)
        snapshot = CachedSnapshot(data=analytics.to_storage(), month_year=period, last_updated=now)
        self.save(client_id, snapshot)

        analytics_refresh_duration.observe(time.time() - start_time)
        logger.info(f"[AnalyticsCache] Recomputed analytics for {client_id} {period}")
        return snapshot

    def load(self, client_id: str) -> CachedSnapshot | None:
        with get_db_session(self.session_factory) as session:
            entry = session.scalars(select(AnalyticsCacheEntry).filter_by(client_id=client_id)).first()
            if entry is None:
                return None
            return CachedSnapshot(
                data=dict(entry.analytics_data), month_year=entry.month_year, last_updated=as_utc(entry.last_updated)
            )

    def save(self, client_id: str, snapshot: CachedSnapshot) -> None:
        with get_db_session(self.session_factory) as session:
            entry = session.scalars(select(AnalyticsCacheEntry).filter_by(client_id=client_id)).first()
            if entry is None:
                entry = AnalyticsCacheEntry(client_id=client_id)
                session.add(entry)
            entry.analytics_data = snapshot.data
            entry.month_year = snapshot.month_year
            entry.data_source = DATA_SOURCE
            entry.last_updated = snapshot.last_updated
            session.commit()

    @staticmethod
    def _response(snapshot: CachedSnapshot, source: str, cached: bool, stale: bool = False, warning=None):
        return CacheResponse(
            success=True,
            data=snapshot.data,
            cached=cached,
            stale=stale,
            source=source,
            month_year=snapshot.month_year,
            last_updated=snapshot.last_updated,
            warning=warning,
        )
