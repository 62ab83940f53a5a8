"""JSON API routes for the stats cache"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from core.config import is_valid_series
from core.stats_cache import StatKind, StatsCacheService
from web.dependencies import get_stats_cache
from web.models.stats import (
    CacheInfoModel,
    ClearResultModel,
    IncrementResultModel,
    OptimisticQueueModel,
    SeriesStatsModel,
    SnapshotRequestModel,
)

router = APIRouter()


def _invalid_series(series: str) -> JSONResponse:
    return JSONResponse(
        {"error": f"Invalid series name: {series!r}"},
        status_code=400
    )


@router.get("/health")
def health():
    """Liveness check"""
    return {"status": "ok"}


@router.get("/stats/{series}", response_model=SeriesStatsModel)
def get_series_stats(series: str, stats_cache: StatsCacheService = Depends(get_stats_cache)):
    """Cached canonical stats with pending local increments added"""
    if not is_valid_series(series):
        return _invalid_series(series)

    snapshot = stats_cache.get_cached_stats(series)
    merged = stats_cache.merge_with_optimistic(snapshot or {})
    return SeriesStatsModel(series=series, cached=snapshot is not None, stats=merged)


@router.put("/stats/{series}")
def put_series_stats(
    series: str,
    body: SnapshotRequestModel,
    stats_cache: StatsCacheService = Depends(get_stats_cache)
):
    """Store a canonical snapshot for a series"""
    if not is_valid_series(series):
        return _invalid_series(series)

    snapshot = {image_id: stats.model_dump() for image_id, stats in body.stats.items()}
    stored = stats_cache.set_cached_stats(series, snapshot)
    return {"ok": stored, "count": len(snapshot)}


@router.post("/stats/{series}/reconcile")
def reconcile_series(
    series: str,
    body: SnapshotRequestModel,
    stats_cache: StatsCacheService = Depends(get_stats_cache)
):
    """Store a fresh canonical snapshot and drop pending increments"""
    if not is_valid_series(series):
        return _invalid_series(series)

    snapshot = {image_id: stats.model_dump() for image_id, stats in body.stats.items()}
    stored = stats_cache.reconcile(series, snapshot)
    return {"ok": stored, "count": len(snapshot)}


@router.delete("/stats/{series}", response_model=ClearResultModel)
def clear_series(series: str, stats_cache: StatsCacheService = Depends(get_stats_cache)):
    if not is_valid_series(series):
        return _invalid_series(series)

    removed = stats_cache.clear_series_cache(series)
    return ClearResultModel(ok=True, removed=int(removed))


@router.delete("/stats", response_model=ClearResultModel)
def clear_all(stats_cache: StatsCacheService = Depends(get_stats_cache)):
    """Clear every cached series and the optimistic queue"""
    removed = stats_cache.clear_all_cache()
    return ClearResultModel(ok=True, removed=removed)


@router.get("/optimistic", response_model=OptimisticQueueModel)
def get_optimistic(stats_cache: StatsCacheService = Depends(get_stats_cache)):
    return OptimisticQueueModel(**stats_cache.get_optimistic_queue())


@router.post("/optimistic/{kind}/{image_id:path}", response_model=IncrementResultModel)
def increment_optimistic(
    kind: str,
    image_id: str,
    stats_cache: StatsCacheService = Depends(get_stats_cache)
):
    """Record a view or download for an image"""
    try:
        stat_kind = StatKind(kind)
    except ValueError:
        return JSONResponse(
            {"error": f"Unknown kind {kind!r}, expected 'view' or 'download'"},
            status_code=400
        )

    if not image_id:
        return JSONResponse({"error": "Image id is required"}, status_code=400)

    pending = stats_cache.increment_optimistic(image_id, stat_kind)
    return IncrementResultModel(
        image_id=image_id,
        kind=stat_kind.value,
        pending=pending,
        recorded=pending is not None,
    )


@router.delete("/optimistic", response_model=ClearResultModel)
def clear_optimistic(stats_cache: StatsCacheService = Depends(get_stats_cache)):
    stats_cache.clear_optimistic_queue()
    return ClearResultModel(ok=True)


@router.get("/cache-info", response_model=CacheInfoModel)
def cache_info(stats_cache: StatsCacheService = Depends(get_stats_cache)):
    """Diagnostic view of every cached series and the optimistic queue"""
    return CacheInfoModel(**stats_cache.get_cache_info())


@router.post("/maintenance/purge", response_model=ClearResultModel)
def purge_expired(stats_cache: StatsCacheService = Depends(get_stats_cache)):
    """Remove stale and malformed cache entries"""
    removed = stats_cache.purge_expired()
    return ClearResultModel(ok=True, removed=removed)
