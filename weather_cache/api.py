"""HTTP routes for querying and ingesting weather snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from weather_cache.cancellation import CancelToken
from weather_cache.domain import Alert, CurrentSummary, RiskSummary, WeatherSnapshot
from weather_cache.region_stats import RegionStats
from weather_cache.service import WeatherCacheService
from weather_cache.sweeper import ExpirySweeper
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="api")

router = APIRouter()


class RegionStatsRequest(BaseModel):
    """Boundary as GeoJSON Polygon/MultiPolygon or a ring of [longitude, latitude] pairs."""
    boundary: Dict[str, Any] | List[List[float]]
    time_range_hours: Optional[float] = Field(default=None, gt=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class SweepResponse(BaseModel):
    """Outcome of a manually triggered expiry sweep."""
    removed: int
    skipped: bool = False
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


class FreshnessResponse(BaseModel):
    """Age of a snapshot's observation relative to the freshness window."""
    snapshot_id: str
    data_age_hours: float | None = None
    is_fresh: bool
    expires_at: datetime | None = None


def get_service(request: Request) -> WeatherCacheService:
    """The service built at startup."""
    return request.app.state.service


def _cancel_token(timeout_seconds: float | None) -> CancelToken | None:
    return CancelToken.with_timeout(timeout_seconds) if timeout_seconds else None


@router.get("/snapshots/nearby", response_model=list[WeatherSnapshot])
def nearby_snapshots(
    longitude: float = Query(..., ge=-180.0, le=180.0),
    latitude: float = Query(..., ge=-90.0, le=90.0),
    radius_km: Optional[float] = Query(None, gt=0),
    max_age_hours: Optional[float] = Query(None, gt=0),
    timeout_seconds: Optional[float] = Query(None, gt=0),
    service: WeatherCacheService = Depends(get_service),
):
    """Recent, non-expired snapshots within a radius, newest observation first."""
    return service.find_nearby(
        longitude,
        latitude,
        radius_km,
        max_age_hours,
        cancel=_cancel_token(timeout_seconds),
    )


@router.get("/snapshots/search", response_model=list[WeatherSnapshot])
def search_snapshots(
    name: str = Query(..., min_length=1),
    max_age_hours: Optional[float] = Query(None, gt=0),
    timeout_seconds: Optional[float] = Query(None, gt=0),
    service: WeatherCacheService = Depends(get_service),
):
    """Snapshots whose location name or city contains ``name`` (case-insensitive)."""
    return service.find_by_location(name, max_age_hours, cancel=_cancel_token(timeout_seconds))


@router.get("/snapshots/cache/{cache_key}", response_model=WeatherSnapshot)
def snapshot_by_cache_key(cache_key: str, service: WeatherCacheService = Depends(get_service)):
    """Exact cache-key lookup; 404 when absent or expired."""
    return service.find_by_cache_key(cache_key)


@router.get("/snapshots/high-risk", response_model=list[WeatherSnapshot])
def high_risk_snapshots(
    hazard: str = Query("overall"),
    min_level: str = Query("high"),
    service: WeatherCacheService = Depends(get_service),
):
    """Snapshots at or above ``min_level`` for ``hazard``, most confident first."""
    return service.high_risk_areas(hazard, min_level)


@router.post("/snapshots", response_model=WeatherSnapshot, status_code=status.HTTP_201_CREATED)
def put_snapshot(
    snapshot: WeatherSnapshot,
    replace_on_conflict: bool = Query(False),
    service: WeatherCacheService = Depends(get_service),
):
    """Insert or replace a snapshot; 409 on a live cache-key collision."""
    stored = service.put(snapshot, replace_on_conflict=replace_on_conflict)
    logger.info(f"Stored snapshot {stored.id} via API", extra={"cache_key": stored.cache_key})
    return stored


@router.get("/snapshots/{snapshot_id}", response_model=WeatherSnapshot)
def get_snapshot(snapshot_id: str, service: WeatherCacheService = Depends(get_service)):
    return service.get(snapshot_id)


@router.get("/snapshots/{snapshot_id}/alerts", response_model=list[Alert])
def snapshot_alerts(snapshot_id: str, service: WeatherCacheService = Depends(get_service)):
    """Currently active alerts, most severe first."""
    return service.active_alerts(snapshot_id)


@router.get("/snapshots/{snapshot_id}/risks", response_model=RiskSummary)
def snapshot_risks(snapshot_id: str, service: WeatherCacheService = Depends(get_service)):
    return service.summarize(snapshot_id)


@router.get("/snapshots/{snapshot_id}/summary", response_model=CurrentSummary)
def snapshot_summary(snapshot_id: str, service: WeatherCacheService = Depends(get_service)):
    return service.current_summary(snapshot_id)


@router.get("/snapshots/{snapshot_id}/freshness", response_model=FreshnessResponse)
def snapshot_freshness(snapshot_id: str, service: WeatherCacheService = Depends(get_service)):
    age, fresh, expires_at = service.freshness(snapshot_id)
    return FreshnessResponse(snapshot_id=snapshot_id, data_age_hours=age, is_fresh=fresh, expires_at=expires_at)


@router.post("/regions/stats", response_model=RegionStats)
def region_stats(req: RegionStatsRequest, service: WeatherCacheService = Depends(get_service)):
    """Aggregate current conditions over snapshots inside a boundary."""
    return service.region_stats(
        req.boundary,
        req.time_range_hours,
        cancel=_cancel_token(req.timeout_seconds),
    )


@router.post("/maintenance/sweep", response_model=SweepResponse)
def trigger_sweep(request: Request):
    """Run one expiry sweep now (skipped if one is already running)."""
    sweeper: ExpirySweeper = request.app.state.sweeper
    result = sweeper.sweep_once()
    return SweepResponse(
        removed=result.removed,
        skipped=result.skipped,
        error=result.error,
        started_at=result.started_at,
        finished_at=result.finished_at,
    )
