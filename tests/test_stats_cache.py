"""
Tests for core/stats_cache.py

Covers:
- Durable cache TTL boundary and lazy expiry
- Malformed entries (fail-open, removed on read)
- Storage and quota failures on write
- Series namespace isolation and clear operations
- get_cache_info() diagnostics
"""

import json

import pytest

from core.stats_cache import (
    CACHE_TTL_SECONDS,
    OPTIMISTIC_KEY,
    CacheErrorKind,
    ImageStats,
    StatsCacheService,
    cache_key,
    decode_entry,
    encode_entry,
)
from core.storage import MemoryStore, StorageQuotaError

from conftest import FailingStore

EPSILON = 0.5


# ============================================================================
# Durable cache read/write
# ============================================================================

class TestGetSetCachedStats:

    def test_round_trip(self, service, sample_snapshot):
        assert service.set_cached_stats("desktop", sample_snapshot) is True
        assert service.get_cached_stats("desktop") == sample_snapshot

    def test_missing_series_returns_none(self, service):
        assert service.get_cached_stats("desktop") is None

    def test_persisted_layout(self, service, durable_store, clock):
        service.set_cached_stats("desktop", {"a": {"views": 10, "downloads": 2}})

        raw = json.loads(durable_store.get_item("stats_desktop"))
        assert raw["data"] == [["a", {"views": 10, "downloads": 2}]]
        assert raw["timestamp"] == int(clock.now * 1000)

    def test_set_overwrites_previous_entry(self, service):
        service.set_cached_stats("desktop", {"a": {"views": 1, "downloads": 1}})
        service.set_cached_stats("desktop", {"b": {"views": 2, "downloads": 0}})

        assert service.get_cached_stats("desktop") == {"b": {"views": 2, "downloads": 0}}

    def test_missing_counters_default_to_zero(self, service):
        service.set_cached_stats("desktop", {"a": {"views": 5}})
        assert service.get_cached_stats("desktop") == {"a": {"views": 5, "downloads": 0}}

    def test_returned_snapshot_is_independent_of_input(self, service):
        snapshot = {"a": {"views": 1, "downloads": 0}}
        service.set_cached_stats("desktop", snapshot)
        snapshot["a"]["views"] = 99

        assert service.get_cached_stats("desktop")["a"]["views"] == 1

    def test_accepts_image_stats_values(self, service):
        service.set_cached_stats("avatar", {"a": ImageStats(views=3, downloads=1)})
        assert service.get_cached_stats("avatar") == {"a": {"views": 3, "downloads": 1}}


class TestTTL:

    def test_entry_valid_just_before_ttl(self, service, clock, sample_snapshot):
        service.set_cached_stats("desktop", sample_snapshot)
        clock.advance(CACHE_TTL_SECONDS - EPSILON)

        assert service.get_cached_stats("desktop") == sample_snapshot

    def test_entry_valid_exactly_at_ttl(self, service, clock, sample_snapshot):
        service.set_cached_stats("desktop", sample_snapshot)
        clock.advance(CACHE_TTL_SECONDS)

        assert service.get_cached_stats("desktop") == sample_snapshot

    def test_entry_absent_after_ttl(self, service, clock, sample_snapshot):
        service.set_cached_stats("desktop", sample_snapshot)
        clock.advance(CACHE_TTL_SECONDS + EPSILON)

        assert service.get_cached_stats("desktop") is None

    def test_stale_entry_is_purged_on_read(self, service, durable_store, clock, sample_snapshot):
        service.set_cached_stats("desktop", sample_snapshot)
        clock.advance(CACHE_TTL_SECONDS + EPSILON)

        service.get_cached_stats("desktop")

        assert "stats_desktop" not in durable_store

    def test_expiry_does_not_touch_optimistic_queue(self, service, clock, sample_snapshot):
        service.set_cached_stats("desktop", sample_snapshot)
        service.increment_optimistic("sunset.jpg", "view")
        clock.advance(CACHE_TTL_SECONDS + EPSILON)

        service.get_cached_stats("desktop")

        assert service.get_optimistic_queue()["views"] == {"sunset.jpg": 1}

    def test_custom_ttl(self, durable_store, session_store, clock):
        svc = StatsCacheService(durable_store, session_store, ttl_seconds=60, clock=clock)
        svc.set_cached_stats("mobile", {"a": {"views": 1, "downloads": 0}})
        clock.advance(61)

        assert svc.get_cached_stats("mobile") is None


# ============================================================================
# Malformed entries
# ============================================================================

class TestMalformedEntries:

    @pytest.mark.parametrize("raw", [
        "not json at all {",
        "[]",
        '{"data": "nope", "timestamp": 1}',
        '{"data": [], "timestamp": "yesterday"}',
        '{"data": [["a"]], "timestamp": 1}',
        '{"data": [["a", {"views": -1, "downloads": 0}]], "timestamp": 1}',
        '{"data": [["a", {"views": true, "downloads": 0}]], "timestamp": 1}',
        '{"data": [], "timestamp": 1' + "0" * 400 + "}",
    ])
    def test_malformed_entry_returns_none(self, service, durable_store, raw):
        durable_store.set_item("stats_desktop", raw)

        assert service.get_cached_stats("desktop") is None

    def test_malformed_entry_is_removed(self, service, durable_store):
        durable_store.set_item("stats_desktop", "garbage")

        service.get_cached_stats("desktop")

        assert "stats_desktop" not in durable_store

    def test_malformed_entry_logs_warning(self, service, durable_store, caplog):
        durable_store.set_item("stats_desktop", "garbage")

        with caplog.at_level("WARNING"):
            service.get_cached_stats("desktop")

        assert "[StatsCache]" in caplog.text
        assert "malformed" in caplog.text

    def test_oversized_timestamp_is_purged(self, service, durable_store):
        durable_store.set_item("stats_desktop", json.dumps({"data": [], "timestamp": 10 ** 400}))

        assert service.purge_expired() == 1
        assert "stats_desktop" not in durable_store

    def test_decode_entry_reports_kind(self):
        result = decode_entry("{")
        assert result.error is CacheErrorKind.MALFORMED
        assert not result.ok


# ============================================================================
# Write failures
# ============================================================================

class TestWriteFailures:

    def test_quota_error_is_swallowed(self, session_store, clock, quota_error, caplog):
        svc = StatsCacheService(FailingStore(fail_writes=quota_error), session_store, clock=clock)

        with caplog.at_level("WARNING"):
            assert svc.set_cached_stats("desktop", {"a": {"views": 1, "downloads": 0}}) is False

        assert "quota" in caplog.text
        assert svc.get_cached_stats("desktop") is None

    def test_real_quota_keeps_previous_entry(self, session_store, clock):
        store = MemoryStore(quota_bytes=200)
        svc = StatsCacheService(store, session_store, clock=clock)
        svc.set_cached_stats("desktop", {"a": {"views": 1, "downloads": 0}})

        big = {f"image_{i}.jpg": {"views": i, "downloads": i} for i in range(50)}
        assert svc.set_cached_stats("desktop", big) is False

        assert svc.get_cached_stats("desktop") == {"a": {"views": 1, "downloads": 0}}

    def test_unserializable_snapshot_is_rejected(self, service):
        assert service.set_cached_stats("desktop", {"a": "lots"}) is False
        assert service.set_cached_stats("desktop", ["not", "a", "mapping"]) is False
        assert service.get_cached_stats("desktop") is None

    def test_unreadable_store_returns_none(self, session_store, clock):
        svc = StatsCacheService(FailingStore(fail_reads=True), session_store, clock=clock)
        assert svc.get_cached_stats("desktop") is None

    def test_encode_entry_rejects_negative_counts(self):
        result = encode_entry({"a": {"views": -3, "downloads": 0}}, 0)
        assert result.error is CacheErrorKind.MALFORMED


# ============================================================================
# Clearing
# ============================================================================

class TestClearing:

    def test_clear_series_isolated(self, service):
        service.set_cached_stats("desktop", {"a": {"views": 1, "downloads": 0}})
        service.set_cached_stats("mobile", {"b": {"views": 2, "downloads": 0}})

        assert service.clear_series_cache("mobile") is True

        assert service.get_cached_stats("mobile") is None
        assert service.get_cached_stats("desktop") == {"a": {"views": 1, "downloads": 0}}

    def test_clear_missing_series(self, service):
        assert service.clear_series_cache("avatar") is False

    def test_clear_all_removes_series_and_queue(self, service, durable_store):
        durable_store.set_item("unrelated", "keep me")
        service.set_cached_stats("desktop", {"a": {"views": 1, "downloads": 0}})
        service.set_cached_stats("avatar", {"b": {"views": 1, "downloads": 0}})
        service.increment_optimistic("a", "download")

        removed = service.clear_all_cache()

        assert removed == 2
        assert durable_store.keys() == ["unrelated"]
        assert service.get_optimistic_queue() == {"views": {}, "downloads": {}}

    def test_clear_all_with_failing_store_does_not_raise(self, session_store, clock, quota_error):
        store = FailingStore()
        store.set_item(cache_key("desktop"), "x")
        store.fail_writes = quota_error
        svc = StatsCacheService(store, session_store, clock=clock)

        assert svc.clear_all_cache() == 0

    def test_purge_expired(self, service, durable_store, clock):
        service.set_cached_stats("desktop", {"a": {"views": 1, "downloads": 0}})
        clock.advance(CACHE_TTL_SECONDS + 10)
        service.set_cached_stats("mobile", {"b": {"views": 1, "downloads": 0}})
        durable_store.set_item("stats_avatar", "broken")

        assert service.purge_expired() == 2

        assert sorted(durable_store.keys()) == ["stats_mobile"]


# ============================================================================
# get_cache_info()
# ============================================================================

class TestCacheInfo:

    def test_reports_each_series(self, service, clock, sample_snapshot):
        service.set_cached_stats("desktop", sample_snapshot)
        clock.advance(30 * 60)
        service.set_cached_stats("mobile", {"x": {"views": 1, "downloads": 0}})
        clock.advance(45 * 60)
        service.increment_optimistic("x", "view")

        info = service.get_cache_info()

        by_series = {s["series"]: s for s in info["series"]}
        assert by_series["desktop"]["count"] == 3
        assert by_series["desktop"]["age_minutes"] == 75
        assert by_series["desktop"]["expired"] is True
        assert by_series["mobile"]["count"] == 1
        assert by_series["mobile"]["age_minutes"] == 45
        assert by_series["mobile"]["expired"] is False
        assert info["optimistic_queue"] == {"views": {"x": 1}, "downloads": {}}

    def test_is_read_only(self, service, durable_store, clock):
        service.set_cached_stats("desktop", {"a": {"views": 1, "downloads": 0}})
        durable_store.set_item("stats_avatar", "broken")
        clock.advance(CACHE_TTL_SECONDS * 2)
        before = {k: durable_store.get_item(k) for k in durable_store.keys()}

        info = service.get_cache_info()

        after = {k: durable_store.get_item(k) for k in durable_store.keys()}
        assert before == after
        malformed = [s for s in info["series"] if s["malformed"]]
        assert [s["series"] for s in malformed] == ["avatar"]

    def test_reports_oversized_timestamp_as_malformed(self, service, durable_store):
        durable_store.set_item("stats_desktop", json.dumps({"data": [], "timestamp": 10 ** 400}))

        info = service.get_cache_info()

        assert info["series"][0]["series"] == "desktop"
        assert info["series"][0]["malformed"] is True

    def test_skips_optimistic_key(self, session_store, clock):
        shared = MemoryStore()
        svc = StatsCacheService(shared, shared, clock=clock)
        svc.increment_optimistic("a", "view")

        info = svc.get_cache_info()

        assert OPTIMISTIC_KEY in shared
        assert info["series"] == []


# ============================================================================
# Reserved series name
# ============================================================================

class TestReservedSeries:

    def test_cannot_cache_under_queue_name(self, service, durable_store):
        assert service.set_cached_stats("optimistic", {"a": {"views": 1, "downloads": 0}}) is False
        assert OPTIMISTIC_KEY not in durable_store

    def test_shared_store_queue_is_untouched(self, clock):
        shared = MemoryStore()
        svc = StatsCacheService(shared, shared, clock=clock)
        svc.increment_optimistic("a", "view")

        assert svc.get_cached_stats("optimistic") is None
        assert svc.clear_series_cache("optimistic") is False
        assert svc.purge_expired() == 0
        assert svc.get_optimistic_queue()["views"] == {"a": 1}
