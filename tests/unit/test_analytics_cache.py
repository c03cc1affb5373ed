"""Tests for the analytics cache: TTL, stale fallback and per-client locking."""

import threading
from datetime import timedelta
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from src.services.analytics_cache import NO_DATA_ERROR, AnalyticsCache
from src.services.data_transformer import transform
from src.services.normalized_store import NormalizedStore
from tests.fixtures import CollectionFactory, ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(session_factory, clock):
    store = NormalizedStore(session_factory, clock=clock)
    store.store("client_a", "2024-03", transform(CollectionFactory.create()).data)
    return store


@pytest.fixture
def cache(session_factory, store, clock):
    return AnalyticsCache(session_factory, store, ttl_seconds=3600, clock=clock)


class TestGet:
    def test_no_data(self, cache):
        response = cache.get("client_b")

        assert not response.success
        assert response.error == NO_DATA_ERROR
        assert response.data is None

    def test_first_lookup_computes(self, cache):
        response = cache.get("client_a")

        assert response.success
        assert response.source == "fresh"
        assert not response.cached
        assert response.month_year == "2024-03"
        assert response.data["overview"]["totalSpend"] == 150.0

    def test_second_lookup_is_cached(self, cache, clock):
        cache.get("client_a")
        clock.advance(minutes=59)

        response = cache.get("client_a")

        assert response.source == "cache"
        assert response.cached
        assert not response.stale

    def test_expired_snapshot_is_recomputed(self, cache, clock):
        first = cache.get("client_a")
        clock.advance(hours=2)

        response = cache.get("client_a")

        assert response.source == "fresh"
        assert response.last_updated > first.last_updated

    def test_expired_snapshot_served_stale_when_refresh_fails(self, cache, store, clock):
        cache.get("client_a")
        clock.advance(hours=2)

        with patch.object(store, "fetch", side_effect=RuntimeError("database unavailable")):
            response = cache.get("client_a")

        assert response.success
        assert response.stale
        assert response.source == "stale_cache"
        assert "database unavailable" in response.warning
        assert response.data["overview"]["totalSpend"] == 150.0

    def test_expired_snapshot_served_stale_when_raw_data_removed(self, cache, store, clock):
        cache.get("client_a")
        store.delete_period("client_a", "2024-03")
        clock.advance(hours=2)

        response = cache.get("client_a")

        assert response.success
        assert response.stale
        assert response.source == "stale_cache"
        assert response.month_year == "2024-03"

    def test_refresh_in_progress_serves_existing_snapshot(self, cache, clock):
        cache.get("client_a")
        clock.advance(hours=2)

        lock = cache._lock_for("client_a")
        lock.acquire()
        try:
            response = cache.get("client_a")
        finally:
            lock.release()

        assert response.success
        assert response.stale
        assert response.source == "stale_cache"
        assert "in progress" in response.warning

    def test_ttl_with_frozen_time(self, session_factory, store):
        with freeze_time("2024-04-01 12:00:00") as frozen:
            cache = AnalyticsCache(session_factory, store, ttl_seconds=3600)
            assert cache.get("client_a").source == "fresh"

            frozen.tick(timedelta(minutes=30))
            assert cache.get("client_a").source == "cache"

            frozen.tick(timedelta(hours=2))
            assert cache.get("client_a").source == "fresh"


class TestRefresh:
    def test_refresh_bypasses_ttl(self, cache):
        cache.get("client_a")
        response = cache.refresh("client_a")

        assert response.source == "fresh"
        assert not response.cached

    def test_refresh_picks_up_new_data(self, cache, store, clock):
        cache.get("client_a")
        clock.advance(minutes=5)
        newer = transform(CollectionFactory.create(since="2024-04-01", until="2024-04-30")).data
        newer["scraped_at"] = clock().isoformat()
        store.store("client_a", "2024-04", newer)

        response = cache.refresh("client_a")

        assert response.month_year == "2024-04"
        assert response.data["period"] == "2024-04"

    def test_refresh_failure_without_snapshot(self, cache):
        response = cache.refresh("client_c")

        assert not response.success
        assert response.error == NO_DATA_ERROR

    def test_refresh_all(self, cache):
        results = cache.refresh_all(["client_a", "client_b"])

        assert results["client_a"].source == "fresh"
        assert not results["client_b"].success


class TestInvalidate:
    def test_invalidate(self, cache):
        cache.get("client_a")

        assert cache.invalidate("client_a")
        assert cache.load("client_a") is None
        assert not cache.invalidate("client_a")

    def test_lookup_after_invalidate_recomputes(self, cache):
        cache.get("client_a")
        cache.invalidate("client_a")

        assert cache.get("client_a").source == "fresh"


class TrackingLock:
    """Lock that signals once a second caller tries to take it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._attempts = 0
        self._guard = threading.Lock()
        self.contended = threading.Event()

    def acquire(self, blocking=True):
        with self._guard:
            self._attempts += 1
            if self._attempts >= 2:
                self.contended.set()
        return self._lock.acquire(blocking)

    def release(self):
        self._lock.release()


class TestConcurrentGet:
    def test_one_recompute_when_callers_race_on_empty_cache(self, cache, store):
        lock = TrackingLock()
        cache._locks["client_a"] = lock
        fetching = threading.Event()
        real_fetch = store.fetch

        def slow_fetch(client_id, period):
            fetching.set()
            # Hold the refresh until the second caller is waiting on the lock
            assert lock.contended.wait(timeout=5)
            return real_fetch(client_id, period)

        responses = []
        with (
            patch.object(store, "fetch", side_effect=slow_fetch),
            patch.object(cache, "recompute", wraps=cache.recompute) as recompute,
        ):
            first = threading.Thread(target=lambda: responses.append(cache.get("client_a")))
            first.start()
            assert fetching.wait(timeout=5)
            second = threading.Thread(target=lambda: responses.append(cache.get("client_a")))
            second.start()
            first.join(timeout=10)
            second.join(timeout=10)

        assert recompute.call_count == 1
        assert len(responses) == 2
        assert all(response.success for response in responses)
        assert sorted(response.source for response in responses) == ["cache", "fresh"]
