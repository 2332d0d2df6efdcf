"""Pure freshness, expiry and cache-key policy for weather snapshots.

Freshness is measured from ``current.observation_time`` and is independent of
the hard ``expires_at`` deadline the store enforces. Nothing here touches the
store or the clock unless ``now`` is omitted.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from weather_cache.domain import WeatherSnapshot, ensure_utc

DEFAULT_EXPIRY_HOURS = 6.0
DEFAULT_FRESH_MAX_AGE_HOURS = 2.0
CACHE_KEY_PREFIX = "weather"

__all__ = [
    "CACHE_KEY_PREFIX",
    "DEFAULT_EXPIRY_HOURS",
    "DEFAULT_FRESH_MAX_AGE_HOURS",
    "data_age_hours",
    "default_expiry",
    "derive_cache_key",
    "ensure_utc",
    "is_fresh",
    "observation_time_of",
    "utcnow",
]


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def observation_time_of(snapshot: WeatherSnapshot | Mapping[str, Any] | None) -> datetime | None:
    """Return the observation time of a snapshot model or raw mapping."""
    if snapshot is None:
        return None
    if isinstance(snapshot, Mapping):
        current = snapshot.get("current") or {}
        value = current.get("observation_time") if isinstance(current, Mapping) else None
    else:
        value = snapshot.observation_time
    if not isinstance(value, datetime):
        return None
    return ensure_utc(value)


def is_fresh(
    snapshot: WeatherSnapshot | Mapping[str, Any],
    max_age_hours: float = DEFAULT_FRESH_MAX_AGE_HOURS,
    *,
    now: datetime | None = None,
) -> bool:
    """Return True if the observation is younger than ``max_age_hours``."""
    observed = observation_time_of(snapshot)
    if observed is None:
        return False
    now = ensure_utc(now) if now else utcnow()
    return now - observed < timedelta(hours=max_age_hours)


def data_age_hours(snapshot: WeatherSnapshot | Mapping[str, Any], *, now: datetime | None = None) -> float | None:
    """Hours since observation, rounded to one decimal; None without an observation time."""
    observed = observation_time_of(snapshot)
    if observed is None:
        return None
    now = ensure_utc(now) if now else utcnow()
    return round((now - observed).total_seconds() / 3600.0, 1)


def default_expiry(created_at: datetime, hours: float = DEFAULT_EXPIRY_HOURS) -> datetime:
    """Hard expiry for a snapshot stamped at ``created_at``."""
    return ensure_utc(created_at) + timedelta(hours=hours)


def _format_coordinate(value: float) -> str:
    """Round to 3 decimals and drop the sign of negative zero."""
    return f"{round(value, 3) + 0.0:.3f}"


def _tick_millis(created_at: datetime, interval_seconds: int) -> int:
    """Epoch milliseconds of ``created_at`` truncated to the dedup interval."""
    millis = int(ensure_utc(created_at).timestamp() * 1000)
    if interval_seconds <= 0:
        return millis
    interval_ms = int(interval_seconds) * 1000
    return millis - (millis % interval_ms)


def derive_cache_key(
    latitude: float,
    longitude: float,
    created_at: datetime,
    *,
    interval_seconds: int = 0,
) -> str:
    """
    Build the deduplication key for a location and creation time.

    Coordinates are rounded to 3 decimals (about 110 m). The time component is
    the creation instant in epoch milliseconds, truncated to
    ``interval_seconds`` when positive, so every write for the same rounded
    point inside one polling interval maps to the same key.
    """
    lat = _format_coordinate(latitude)
    lng = _format_coordinate(longitude)
    return f"{CACHE_KEY_PREFIX}_{lat}_{lng}_{_tick_millis(created_at, interval_seconds)}"
