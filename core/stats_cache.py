"""
Local statistics cache with optimistic-update merging.

Two storage tiers back the service:

- durable tier: one canonical snapshot per series under ``stats_<series>``,
  valid for ``CACHE_TTL_SECONDS`` after it was fetched
- session tier: the optimistic queue under ``stats_optimistic``, holding
  view/download increments that the canonical data does not reflect yet

Storage problems never reach the caller. The internal ``_read_entry`` /
``_write`` / ``_remove`` helpers return a ``CacheResult`` describing what went
wrong; the public methods log that and degrade to "absent" or a no-op.
"""

import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from core.storage import KeyValueStore, StorageError, StorageQuotaError

CACHE_PREFIX = "stats_"
# The optimistic queue key shares the prefix, so no series may use this name
OPTIMISTIC_SERIES = "optimistic"
OPTIMISTIC_KEY = f"{CACHE_PREFIX}{OPTIMISTIC_SERIES}"
CACHE_TTL_SECONDS = 60 * 60

LOG_TAG = "[StatsCache]"


class StatKind(str, Enum):
    """A user action that bumps an image counter."""
    VIEW = "view"
    DOWNLOAD = "download"

    @property
    def queue_field(self) -> str:
        return "views" if self is StatKind.VIEW else "downloads"


class CacheErrorKind(Enum):
    MISSING = "missing"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    STORAGE = "storage"
    QUOTA = "quota"


@dataclass
class CacheResult:
    """Outcome of an internal storage operation."""
    value: Any = None
    error: Optional[CacheErrorKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImageStats:
    views: int = 0
    downloads: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"views": self.views, "downloads": self.downloads}


@dataclass
class CacheEntry:
    """A canonical snapshot and the epoch time (seconds) it was fetched."""
    snapshot: Dict[str, Dict[str, int]]
    fetched_at: float

    def age_seconds(self, now: float) -> float:
        return now - self.fetched_at

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        return self.age_seconds(now) > ttl_seconds

    def fetched_at_iso(self) -> Optional[str]:
        try:
            return datetime.fromtimestamp(self.fetched_at).isoformat()
        except (OverflowError, OSError, ValueError):
            return None


class StatsProvider(Protocol):
    """Source of canonical per-image statistics for a series."""

    def fetch(self, series: str) -> Mapping[str, Mapping[str, int]]:
        ...


def empty_queue() -> Dict[str, Dict[str, int]]:
    return {"views": {}, "downloads": {}}


def cache_key(series: str) -> str:
    return f"{CACHE_PREFIX}{series}"


def _is_count(value) -> bool:
    # bool is an int subclass; a stored `true` is not a count
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _normalize_stats(value) -> Optional[Dict[str, int]]:
    """Coerce one snapshot value into ``{views, downloads}``.

    Missing counters default to 0. Returns None when the value is not a
    mapping or a counter is not a non-negative integer.
    """
    if isinstance(value, ImageStats):
        value = value.to_dict()
    if not isinstance(value, Mapping):
        return None
    views = value.get("views", 0)
    downloads = value.get("downloads", 0)
    if not _is_count(views) or not _is_count(downloads):
        return None
    return {"views": views, "downloads": downloads}


def decode_entry(raw: str) -> CacheResult:
    """Parse a stored ``{"data": [[id, stats], ...], "timestamp": ms}`` string."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        return CacheResult(error=CacheErrorKind.MALFORMED, detail=f"invalid JSON: {e}")

    if not isinstance(payload, dict):
        return CacheResult(error=CacheErrorKind.MALFORMED, detail="entry is not an object")

    data = payload.get("data")
    timestamp = payload.get("timestamp")
    if not isinstance(data, list):
        return CacheResult(error=CacheErrorKind.MALFORMED, detail="'data' is not a list")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        return CacheResult(error=CacheErrorKind.MALFORMED, detail="'timestamp' is not a number")
    try:
        fetched_at = timestamp / 1000.0
    except OverflowError:
        return CacheResult(error=CacheErrorKind.MALFORMED, detail="'timestamp' is out of range")
    if not math.isfinite(fetched_at):
        return CacheResult(error=CacheErrorKind.MALFORMED, detail="'timestamp' is not a number")

    snapshot: Dict[str, Dict[str, int]] = {}
    for item in data:
        if not isinstance(item, list) or len(item) != 2 or not isinstance(item[0], str):
            return CacheResult(error=CacheErrorKind.MALFORMED, detail=f"bad pair: {item!r}")
        stats = _normalize_stats(item[1])
        if stats is None:
            return CacheResult(error=CacheErrorKind.MALFORMED, detail=f"bad stats for '{item[0]}'")
        snapshot[item[0]] = stats

    return CacheResult(value=CacheEntry(snapshot=snapshot, fetched_at=fetched_at))


def encode_entry(snapshot: Mapping[str, Any], fetched_at: float) -> CacheResult:
    """Serialize a snapshot for the durable tier. Returns the JSON string."""
    if not isinstance(snapshot, Mapping):
        return CacheResult(error=CacheErrorKind.MALFORMED, detail="snapshot is not a mapping")

    pairs = []
    for image_id, value in snapshot.items():
        stats = _normalize_stats(value)
        if not isinstance(image_id, str) or stats is None:
            return CacheResult(error=CacheErrorKind.MALFORMED, detail=f"bad stats for {image_id!r}")
        pairs.append([image_id, stats])

    payload = {"data": pairs, "timestamp": int(fetched_at * 1000)}
    return CacheResult(value=json.dumps(payload, ensure_ascii=False))


def decode_queue(raw: str) -> CacheResult:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        return CacheResult(error=CacheErrorKind.MALFORMED, detail=f"invalid JSON: {e}")

    if not isinstance(payload, dict):
        return CacheResult(error=CacheErrorKind.MALFORMED, detail="queue is not an object")

    queue = empty_queue()
    for field in ("views", "downloads"):
        counts = payload.get(field, {})
        if not isinstance(counts, dict):
            return CacheResult(error=CacheErrorKind.MALFORMED, detail=f"'{field}' is not an object")
        for image_id, count in counts.items():
            if not _is_count(count):
                return CacheResult(
                    error=CacheErrorKind.MALFORMED,
                    detail=f"bad {field} count for '{image_id}': {count!r}",
                )
            queue[field][image_id] = count
    return CacheResult(value=queue)


def merge_snapshot(
    static_stats: Mapping[str, Mapping[str, int]],
    queue: Mapping[str, Mapping[str, int]],
) -> Dict[str, Dict[str, int]]:
    """Add optimistic deltas onto a canonical snapshot.

    Neither argument is modified. Views and downloads are folded in two
    separate passes since an id may only appear in one of the sub-maps; ids
    the snapshot has never seen start from zero. Snapshot values may be
    plain mappings or ``ImageStats``.
    """
    merged: Dict[str, Dict[str, int]] = {
        image_id: stats.to_dict() if isinstance(stats, ImageStats) else dict(stats)
        for image_id, stats in static_stats.items()
    }

    for field, other in (("views", "downloads"), ("downloads", "views")):
        for image_id, delta in queue.get(field, {}).items():
            current = merged.get(image_id)
            if current is None:
                merged[image_id] = {field: delta, other: 0}
            else:
                current[field] = (current.get(field) or 0) + delta

    return merged


class StatsCacheService:
    """Durable snapshot cache plus session-scoped optimistic queue.

    Both stores are injected so tests (and the web app) decide where the
    data actually lives. ``clock`` returns epoch seconds.

    Increments are serialized by a per-instance lock. Two processes sharing
    the same session store can still lose an increment to a
    read-modify-write race.
    """

    def __init__(
        self,
        durable_store: KeyValueStore,
        session_store: KeyValueStore,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.durable_store = durable_store
        self.session_store = session_store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._queue_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal result layer
    # ------------------------------------------------------------------

    def _read_entry(self, series: str) -> CacheResult:
        if series == OPTIMISTIC_SERIES:
            return CacheResult(error=CacheErrorKind.MISSING)
        key = cache_key(series)
        try:
            raw = self.durable_store.get_item(key)
        except StorageError as e:
            return CacheResult(error=CacheErrorKind.STORAGE, detail=str(e))

        if raw is None:
            return CacheResult(error=CacheErrorKind.MISSING)

        result = decode_entry(raw)
        if not result.ok:
            return result

        entry: CacheEntry = result.value
        now = self._clock()
        if entry.is_expired(self.ttl_seconds, now):
            age_minutes = entry.age_seconds(now) / 60
            return CacheResult(
                value=entry,
                error=CacheErrorKind.EXPIRED,
                detail=f"entry is {age_minutes:.1f} minutes old",
            )
        return result

    def _write(self, store: KeyValueStore, key: str, value: str) -> CacheResult:
        try:
            store.set_item(key, value)
        except StorageQuotaError as e:
            return CacheResult(error=CacheErrorKind.QUOTA, detail=str(e))
        except StorageError as e:
            return CacheResult(error=CacheErrorKind.STORAGE, detail=str(e))
        return CacheResult()

    def _remove(self, store: KeyValueStore, key: str) -> CacheResult:
        try:
            store.remove_item(key)
        except StorageError as e:
            return CacheResult(error=CacheErrorKind.STORAGE, detail=str(e))
        return CacheResult()

    def _series_keys(self) -> List[str]:
        """Snapshot of the durable keys that belong to this cache."""
        keys = self.durable_store.keys()
        return [k for k in keys if k.startswith(CACHE_PREFIX) and k != OPTIMISTIC_KEY]

    @staticmethod
    def _warn(action: str, result: CacheResult) -> None:
        logging.warning(f"{LOG_TAG} {action} failed ({result.error.value}): {result.detail}")

    # ------------------------------------------------------------------
    # Durable cache
    # ------------------------------------------------------------------

    def get_cached_stats(self, series: str) -> Optional[Dict[str, Dict[str, int]]]:
        """Return the cached snapshot for a series, or None on a miss.

        Stale and malformed entries are removed from the durable store.
        """
        result = self._read_entry(series)
        if result.ok:
            return result.value.snapshot

        if result.error is CacheErrorKind.MISSING:
            logging.debug(f"{LOG_TAG} No cached stats for '{series}'")
            return None

        self._warn(f"Reading cached stats for '{series}'", result)
        if result.error in (CacheErrorKind.EXPIRED, CacheErrorKind.MALFORMED):
            removed = self._remove(self.durable_store, cache_key(series))
            if not removed.ok:
                self._warn(f"Removing cached stats for '{series}'", removed)
        return None

    def set_cached_stats(self, series: str, snapshot: Mapping[str, Any]) -> bool:
        """Store a canonical snapshot stamped with the current time.

        Returns False (after logging) when the snapshot could not be stored.
        """
        if series == OPTIMISTIC_SERIES:
            self._warn(
                f"Caching stats for '{series}'",
                CacheResult(error=CacheErrorKind.MALFORMED, detail="series name is reserved"),
            )
            return False

        encoded = encode_entry(snapshot, self._clock())
        if not encoded.ok:
            self._warn(f"Serializing stats for '{series}'", encoded)
            return False

        result = self._write(self.durable_store, cache_key(series), encoded.value)
        if not result.ok:
            self._warn(f"Writing cached stats for '{series}'", result)
            return False

        logging.debug(f"{LOG_TAG} Cached {len(snapshot)} stats entries for '{series}'")
        return True

    def clear_series_cache(self, series: str) -> bool:
        """Remove one series entry. Returns True if an entry was removed."""
        if series == OPTIMISTIC_SERIES:
            return False
        key = cache_key(series)
        try:
            existed = self.durable_store.get_item(key) is not None
        except StorageError:
            existed = False

        result = self._remove(self.durable_store, key)
        if not result.ok:
            self._warn(f"Clearing cached stats for '{series}'", result)
            return False
        return existed

    def clear_all_cache(self) -> int:
        """Remove every cached series and reset the optimistic queue.

        Returns the number of series entries removed.
        """
        removed = 0
        try:
            keys = self._series_keys()
        except StorageError as e:
            self._warn("Listing cached stats", CacheResult(error=CacheErrorKind.STORAGE, detail=str(e)))
            keys = []

        for key in keys:
            result = self._remove(self.durable_store, key)
            if result.ok:
                removed += 1
            else:
                self._warn(f"Removing '{key}'", result)

        self.clear_optimistic_queue()
        logging.info(f"{LOG_TAG} Cleared {removed} cached series and the optimistic queue")
        return removed

    def purge_expired(self) -> int:
        """Remove stale or malformed durable entries. Returns how many went."""
        purged = 0
        try:
            keys = self._series_keys()
        except StorageError as e:
            self._warn("Listing cached stats", CacheResult(error=CacheErrorKind.STORAGE, detail=str(e)))
            return 0

        for key in keys:
            result = self._read_entry(key[len(CACHE_PREFIX):])
            if result.error not in (CacheErrorKind.EXPIRED, CacheErrorKind.MALFORMED):
                continue
            if self._remove(self.durable_store, key).ok:
                purged += 1

        if purged:
            logging.info(f"{LOG_TAG} Purged {purged} stale cache entries")
        return purged

    def get_cache_info(self) -> Dict[str, Any]:
        """Describe every cached series and the optimistic queue. Read-only."""
        info: Dict[str, Any] = {
            "series": [],
            "optimistic_queue": self.get_optimistic_queue(),
        }

        try:
            keys = self._series_keys()
        except StorageError as e:
            self._warn("Listing cached stats", CacheResult(error=CacheErrorKind.STORAGE, detail=str(e)))
            return info

        now = self._clock()
        for key in sorted(keys):
            series = key[len(CACHE_PREFIX):]
            try:
                raw = self.durable_store.get_item(key)
            except StorageError as e:
                logging.warning(f"{LOG_TAG} Could not read '{key}': {e}")
                continue
            if raw is None:
                # removed between listing and reading
                continue

            decoded = decode_entry(raw)
            if not decoded.ok:
                info["series"].append({"series": series, "malformed": True, "detail": decoded.detail})
                continue

            entry: CacheEntry = decoded.value
            age = entry.age_seconds(now)
            info["series"].append({
                "series": series,
                "count": len(entry.snapshot),
                "age_minutes": round(age / 60),
                "fetched_at": entry.fetched_at_iso(),
                "expired": entry.is_expired(self.ttl_seconds, now),
                "malformed": False,
            })

        return info

    # ------------------------------------------------------------------
    # Optimistic queue
    # ------------------------------------------------------------------

    def get_optimistic_queue(self) -> Dict[str, Dict[str, int]]:
        try:
            raw = self.session_store.get_item(OPTIMISTIC_KEY)
        except StorageError as e:
            self._warn("Reading optimistic queue", CacheResult(error=CacheErrorKind.STORAGE, detail=str(e)))
            return empty_queue()

        if raw is None:
            return empty_queue()

        result = decode_queue(raw)
        if not result.ok:
            self._warn("Reading optimistic queue", result)
            return empty_queue()
        return result.value

    def increment_optimistic(self, image_id: str, kind) -> Optional[int]:
        """Record one view or download for an image.

        Returns the new pending count, or None if the queue could not be
        written. Raises ValueError for an unknown kind.
        """
        field = StatKind(kind).queue_field

        with self._queue_lock:
            queue = self.get_optimistic_queue()
            count = queue[field].get(image_id, 0) + 1
            queue[field][image_id] = count
            result = self._write(self.session_store, OPTIMISTIC_KEY, json.dumps(queue, ensure_ascii=False))

        if not result.ok:
            self._warn(f"Recording {field} for '{image_id}'", result)
            return None
        return count

    def clear_optimistic_queue(self) -> None:
        with self._queue_lock:
            result = self._remove(self.session_store, OPTIMISTIC_KEY)
        if not result.ok:
            self._warn("Clearing optimistic queue", result)

    # ------------------------------------------------------------------
    # Merge / read-through
    # ------------------------------------------------------------------

    def merge_with_optimistic(
        self, static_stats: Mapping[str, Mapping[str, int]]
    ) -> Dict[str, Dict[str, int]]:
        return merge_snapshot(static_stats, self.get_optimistic_queue())

    def get_stats(self, series: str, provider: StatsProvider) -> Dict[str, Dict[str, int]]:
        """Cached snapshot (fetched through ``provider`` on a miss) plus pending deltas.

        Errors raised by the provider propagate.
        """
        snapshot = self.get_cached_stats(series)
        if snapshot is None:
            logging.info(f"{LOG_TAG} Fetching canonical stats for '{series}'")
            snapshot = provider.fetch(series)
            self.set_cached_stats(series, snapshot)
        return self.merge_with_optimistic(snapshot)

    def reconcile(self, series: str, snapshot: Mapping[str, Any]) -> bool:
        """Store a fresh canonical snapshot and drop the pending deltas.

        The queue is cleared even if caching the snapshot fails, since the
        snapshot is assumed to already include them. Returns whether the
        snapshot was cached.
        """
        stored = self.set_cached_stats(series, snapshot)
        self.clear_optimistic_queue()
        return stored
