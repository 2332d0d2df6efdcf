"""Shared protocol and write-path normalization for snapshot storage backends."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Protocol

from weather_cache.cancellation import CancelToken
from weather_cache.domain import Hazard, RiskLevel, WeatherSnapshot
from weather_cache.errors import ValidationError
from weather_cache.freshness import (
    DEFAULT_EXPIRY_HOURS,
    default_expiry,
    derive_cache_key,
    ensure_utc,
)
from weather_cache.risk_engine import coerce_risk_level, parse_hazard, parse_risk_level


class SnapshotStore(Protocol):
    """Protocol for snapshot storage backends."""

    def put(self, snapshot: WeatherSnapshot, *, now: datetime | None = None) -> WeatherSnapshot:
        """Insert or replace a snapshot by id and return the persisted copy."""

    def get(self, snapshot_id: str) -> WeatherSnapshot:
        """Fetch a snapshot by id, raising NotFoundError if absent."""

    def find_nearby(
        self,
        longitude: float,
        latitude: float,
        radius_km: float = 50.0,
        max_age_hours: float = 3.0,
        *,
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        """Non-expired, recent snapshots within a radius, newest observation first."""

    def find_by_location(
        self,
        name_pattern: str,
        max_age_hours: float = 3.0,
        *,
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        """Case-insensitive substring match on location name or city."""

    def find_by_cache_key(self, cache_key: str, *, now: datetime | None = None) -> WeatherSnapshot:
        """Exact cache-key lookup, raising NotFoundError if absent or expired."""

    def find_within(
        self,
        boundary: Any,
        since: datetime,
        *,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        """Snapshots inside a boundary polygon observed at or after ``since``."""

    def high_risk_areas(
        self,
        hazard: str = "overall",
        min_level: str = "high",
        *,
        now: datetime | None = None,
    ) -> List[WeatherSnapshot]:
        """Non-expired snapshots at or above a risk level, most confident first."""

    def delete_expired(self, now: datetime | None = None) -> int:
        """Remove every snapshot whose expiry has passed; return how many."""

    def count(self) -> int:
        """Number of stored snapshots, expired or not."""

    def clear(self) -> None:
        """Remove all snapshots."""


def _generate_id() -> str:
    """Generate a new snapshot id."""
    return uuid.uuid4().hex


def prepare_snapshot(
    incoming: WeatherSnapshot,
    existing: Optional[WeatherSnapshot],
    *,
    now: datetime,
    cache_key_interval_seconds: int = 0,
    expiry_hours: float = DEFAULT_EXPIRY_HOURS,
) -> WeatherSnapshot:
    """
    Validate and fill write-time defaults on a copy of ``incoming``.

    ``existing`` is the record currently stored under the same id, if any;
    a replacement keeps its ``created_at`` and bumps ``version``.
    """
    snap = incoming.model_copy(deep=True)
    now = ensure_utc(now)

    if snap.latitude is None or snap.longitude is None:
        raise ValidationError("snapshot location needs longitude and latitude", location=snap.location.name)
    if not (-90.0 <= snap.latitude <= 90.0) or not (-180.0 <= snap.longitude <= 180.0):
        raise ValidationError("snapshot coordinates out of range",
                              latitude=snap.latitude, longitude=snap.longitude)
    if snap.observation_time is None:
        raise ValidationError("snapshot needs current.observation_time", location=snap.location.name)

    if not snap.id:
        snap.id = _generate_id()

    if existing is not None:
        snap.created_at = existing.created_at or now
        snap.version = existing.version + 1
    else:
        snap.created_at = now
        snap.version = 1
    snap.updated_at = max(now, snap.created_at)

    if snap.expires_at is None:
        snap.expires_at = default_expiry(snap.updated_at, expiry_hours)
    elif snap.expires_at <= snap.created_at:
        raise ValidationError("expires_at must be after created_at",
                              expires_at=snap.expires_at.isoformat(), created_at=snap.created_at.isoformat())

    if not snap.cache_key:
        snap.cache_key = derive_cache_key(
            snap.latitude, snap.longitude, snap.created_at, interval_seconds=cache_key_interval_seconds
        )
    return snap


def is_expired(snapshot: WeatherSnapshot, now: datetime) -> bool:
    """Expired once ``expires_at`` is not after ``now``; never-expiring when unset."""
    return snapshot.expires_at is not None and snapshot.expires_at <= now


def is_recent(snapshot: WeatherSnapshot, now: datetime, max_age_hours: float) -> bool:
    """Observed no earlier than ``max_age_hours`` before ``now``."""
    observed = snapshot.observation_time
    return observed is not None and observed >= now - timedelta(hours=max_age_hours)


def risk_filter(hazard: str | Hazard, min_level: str | RiskLevel) -> tuple[Hazard | None, RiskLevel]:
    """Validate high-risk query arguments; hazard None means the overall rating."""
    return parse_hazard(hazard), parse_risk_level(min_level)


def risk_of(snapshot: WeatherSnapshot, hazard: Hazard | None) -> RiskLevel | None:
    """The snapshot's level for ``hazard`` (or its overall level)."""
    analysis = snapshot.ai_analysis
    if analysis is None:
        return None
    block = analysis.risk_assessment
    if hazard is None:
        return coerce_risk_level(block.overall)
    entry = block.hazards.get(hazard)
    return entry.risk if entry else None


def qualifies(level: RiskLevel | None, min_level: RiskLevel) -> bool:
    """True when ``level`` is at or above ``min_level``; extreme always qualifies."""
    if level is None:
        return False
    return level == RiskLevel.EXTREME or level.rank >= min_level.rank


def confidence_of(snapshot: WeatherSnapshot) -> float | None:
    """``ai_analysis.confidence.overall`` or None."""
    analysis = snapshot.ai_analysis
    if analysis is None or analysis.confidence is None:
        return None
    return analysis.confidence.overall


def newest_first(snapshots: Iterable[WeatherSnapshot]) -> List[WeatherSnapshot]:
    """Order by observation time, most recent first."""
    return sorted(snapshots, key=lambda s: s.observation_time, reverse=True)


def most_confident_first(snapshots: Iterable[WeatherSnapshot]) -> List[WeatherSnapshot]:
    """Order by analysis confidence descending; missing confidence sorts last.

    Ties fall back to newest observation, then id.
    """
    def key(snap: WeatherSnapshot):
        conf = confidence_of(snap)
        observed = snap.observation_time
        return (conf is None, -(conf or 0.0), -(observed.timestamp() if observed else 0.0), snap.id or "")

    return sorted(snapshots, key=key)
