"""Pydantic models for stats cache requests and responses"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ImageStatsModel(BaseModel):
    """View and download counters for one image"""
    views: int = Field(0, ge=0)
    downloads: int = Field(0, ge=0)


class SnapshotRequestModel(BaseModel):
    """Canonical snapshot pushed by the stats provider"""
    stats: Dict[str, ImageStatsModel]


class SeriesStatsModel(BaseModel):
    """Merged stats for a series"""
    series: str
    cached: bool
    stats: Dict[str, ImageStatsModel] = {}


class OptimisticQueueModel(BaseModel):
    """Pending local increments"""
    views: Dict[str, int] = {}
    downloads: Dict[str, int] = {}


class IncrementResultModel(BaseModel):
    image_id: str
    kind: str
    pending: Optional[int] = None
    recorded: bool = False


class SeriesCacheInfoModel(BaseModel):
    """Diagnostics for one cached series"""
    series: str
    malformed: bool = False
    count: Optional[int] = None
    age_minutes: Optional[int] = None
    fetched_at: Optional[str] = None
    expired: Optional[bool] = None
    detail: Optional[str] = None


class CacheInfoModel(BaseModel):
    series: List[SeriesCacheInfoModel] = []
    optimistic_queue: OptimisticQueueModel


class ClearResultModel(BaseModel):
    ok: bool = True
    removed: int = 0
