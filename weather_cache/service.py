"""Service facade: the one entry point the ingestion and query layers call."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, List, Mapping, Tuple

import pydantic

from weather_cache import config
from weather_cache.alerts import active_alerts
from weather_cache.cancellation import CancelToken
from weather_cache.domain import Alert, CurrentSummary, RiskSummary, WeatherSnapshot
from weather_cache.errors import ConflictError, ValidationError
from weather_cache.freshness import data_age_hours, ensure_utc, is_fresh, utcnow
from weather_cache.region_stats import RegionStats, compute_region_stats
from weather_cache.risk_engine import current_summary, normalize_analysis, summarize
from weather_cache.snapshot_store import SnapshotStore, build_snapshot_store
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="service")


def coerce_snapshot(snapshot: WeatherSnapshot | Mapping[str, Any]) -> WeatherSnapshot:
    """Validate a raw mapping into a WeatherSnapshot; models pass through."""
    if isinstance(snapshot, WeatherSnapshot):
        return snapshot
    try:
        return WeatherSnapshot.model_validate(snapshot)
    except pydantic.ValidationError as exc:
        raise ValidationError("invalid snapshot", errors=exc.errors(include_url=False, include_context=False)) from exc


class WeatherCacheService:
    """Applies configured defaults and risk normalization around a SnapshotStore."""

    def __init__(self, store: SnapshotStore, settings: config.Settings | None = None) -> None:
        self.store = store
        self.settings = settings or config.settings

    # -- writes ---------------------------------------------------------------

    def put(
        self,
        snapshot: WeatherSnapshot | Mapping[str, Any],
        *,
        now: datetime | None = None,
        replace_on_conflict: bool = False,
    ) -> WeatherSnapshot:
        """
        Validate, assess and persist a snapshot.

        With ``replace_on_conflict`` a cache-key collision becomes an update
        of the snapshot already holding the key.
        """
        snap = coerce_snapshot(snapshot)
        now = ensure_utc(now) if now else utcnow()
        if self.settings.assess_on_put:
            snap = normalize_analysis(snap, now=now)
        try:
            stored = self.store.put(snap, now=now)
        except ConflictError as exc:
            if not replace_on_conflict:
                raise
            existing_id = exc.details.get("existing_id")
            logger.info("Cache key collision; replacing existing snapshot",
                        extra={"cache_key": exc.details.get("cache_key"), "existing_id": existing_id})
            stored = self.store.put(snap.model_copy(update={"id": existing_id}), now=now)
        logger.debug(f"Stored snapshot {stored.id} for {stored.location.name} (version {stored.version})")
        return stored

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete expired snapshots now; returns how many were removed."""
        return self.store.delete_expired(now)

    # -- reads ----------------------------------------------------------------

    def get(self, snapshot_id: str) -> WeatherSnapshot:
        return self.store.get(snapshot_id)

    def find_nearby(
        self,
        longitude: float,
        latitude: float,
        radius_km: float | None = None,
        max_age_hours: float | None = None,
        *,
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        """Nearby snapshots using the configured radius/age defaults."""
        if not (-180.0 <= longitude <= 180.0) or not (-90.0 <= latitude <= 90.0):
            raise ValidationError("query coordinates out of range", longitude=longitude, latitude=latitude)
        radius = self.settings.default_radius_km if radius_km is None else radius_km
        if radius <= 0:
            raise ValidationError("radius_km must be greater than zero", radius_km=radius)
        return self.store.find_nearby(
            longitude,
            latitude,
            radius,
            self.settings.default_max_age_hours if max_age_hours is None else max_age_hours,
            now=now,
            cancel=cancel,
        )

    def find_by_location(
        self,
        name_pattern: str,
        max_age_hours: float | None = None,
        *,
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        if not name_pattern or not name_pattern.strip():
            raise ValidationError("name pattern must not be empty")
        return self.store.find_by_location(
            name_pattern,
            self.settings.default_max_age_hours if max_age_hours is None else max_age_hours,
            now=now,
            cancel=cancel,
        )

    def find_by_cache_key(self, cache_key: str, *, now: datetime | None = None) -> WeatherSnapshot:
        return self.store.find_by_cache_key(cache_key, now=now)

    def high_risk_areas(
        self,
        hazard: str = "overall",
        min_level: str = "high",
        *,
        now: datetime | None = None,
    ) -> List[WeatherSnapshot]:
        return self.store.high_risk_areas(hazard, min_level, now=now)

    def region_stats(
        self,
        boundary: Any,
        time_range_hours: float | None = None,
        *,
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> RegionStats:
        """Aggregate current conditions over snapshots observed inside ``boundary``."""
        hours = self.settings.region_time_range_hours if time_range_hours is None else time_range_hours
        if hours <= 0:
            raise ValidationError("time_range_hours must be greater than zero", time_range_hours=hours)
        now = ensure_utc(now) if now else utcnow()
        matches = self.store.find_within(boundary, now - timedelta(hours=hours), cancel=cancel)
        return compute_region_stats(matches)

    def active_alerts(self, snapshot_id: str, now: datetime | None = None) -> List[Alert]:
        return active_alerts(self.store.get(snapshot_id), now)

    def summarize(self, snapshot_id: str) -> RiskSummary:
        return summarize(self.store.get(snapshot_id))

    def current_summary(self, snapshot_id: str) -> CurrentSummary:
        return current_summary(self.store.get(snapshot_id))

    def freshness(self, snapshot_id: str, *, now: datetime | None = None) -> Tuple[float | None, bool, datetime | None]:
        """(data age in hours, fresh within the configured window, hard expiry) for a snapshot."""
        snap = self.store.get(snapshot_id)
        now = ensure_utc(now) if now else utcnow()
        return (
            data_age_hours(snap, now=now),
            is_fresh(snap, self.settings.fresh_max_age_hours, now=now),
            snap.expires_at,
        )


def build_service(settings: config.Settings | None = None) -> WeatherCacheService:
    """Construct the store and service from settings."""
    settings = settings or config.settings
    return WeatherCacheService(build_snapshot_store(settings), settings)
