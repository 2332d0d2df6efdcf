"""Aggregate statistics over the snapshots inside a region."""

from __future__ import annotations

from typing import Iterable, List

from pydantic import BaseModel

from weather_cache.domain import WeatherSnapshot


class RegionStats(BaseModel):
    """Averages/extremes of current conditions; None where no snapshot had a value."""
    avg_temperature: float | None = None
    max_temperature: float | None = None
    min_temperature: float | None = None
    avg_humidity: float | None = None
    avg_wind_speed: float | None = None
    total_precipitation: float | None = None
    count: int = 0


def _mean(values: List[float]) -> float | None:
    return sum(values) / len(values) if values else None


def compute_region_stats(snapshots: Iterable[WeatherSnapshot]) -> RegionStats:
    """
    Pure aggregation over an already-filtered snapshot set.

    Missing measurements are skipped rather than counted as zero; the
    precipitation total sums last-hour rain and is None if no snapshot
    reported any.
    """
    snapshots = list(snapshots)
    if not snapshots:
        return RegionStats(count=0)

    temps: List[float] = []
    humidity: List[float] = []
    wind: List[float] = []
    rain: List[float] = []
    for snap in snapshots:
        current = snap.current
        if current is None:
            continue
        if current.temperature.value is not None:
            temps.append(current.temperature.value)
        if current.humidity is not None:
            humidity.append(current.humidity)
        if current.wind.speed is not None:
            wind.append(current.wind.speed)
        if current.precipitation and current.precipitation.rain and current.precipitation.rain.one_hour is not None:
            rain.append(current.precipitation.rain.one_hour)

    return RegionStats(
        avg_temperature=_mean(temps),
        max_temperature=max(temps) if temps else None,
        min_temperature=min(temps) if temps else None,
        avg_humidity=_mean(humidity),
        avg_wind_speed=_mean(wind),
        total_precipitation=sum(rain) if rain else None,
        count=len(snapshots),
    )
