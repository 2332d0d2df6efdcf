"""Active-alert filtering and severity ranking."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping

from weather_cache.domain import ALERT_SEVERITY_WEIGHTS, Alert, AlertSeverity, WeatherSnapshot
from weather_cache.freshness import ensure_utc, utcnow


def severity_weight(severity: AlertSeverity | str | None) -> int:
    """Weight of an alert severity; unknown or missing severities weigh 0."""
    if severity is None:
        return 0
    try:
        return ALERT_SEVERITY_WEIGHTS[AlertSeverity(severity)]
    except ValueError:
        return 0


def _alerts_of(source: WeatherSnapshot | Mapping[str, Any] | Iterable[Alert]) -> List[Alert]:
    """Accept a snapshot, a raw snapshot mapping or a plain alert sequence."""
    if isinstance(source, WeatherSnapshot):
        return list(source.alerts)
    if isinstance(source, Mapping):
        raw = source.get("alerts") or []
    else:
        raw = list(source)
    return [a if isinstance(a, Alert) else Alert.model_validate(a) for a in raw]


def is_active(alert: Alert, now: datetime) -> bool:
    """Active when ``start <= now < end``; alerts missing a bound never are."""
    if alert.start is None or alert.end is None:
        return False
    return alert.start <= now < alert.end


def active_alerts(
    source: WeatherSnapshot | Mapping[str, Any] | Iterable[Alert],
    now: datetime | None = None,
) -> List[Alert]:
    """
    Alerts active at ``now``, most severe first.

    The sort is stable, so alerts of equal severity keep their original order.
    Returned alerts are copies.
    """
    now = ensure_utc(now) if now else utcnow()
    active = [a for a in _alerts_of(source) if is_active(a, now)]
    active.sort(key=lambda a: -severity_weight(a.severity))
    return [a.model_copy(deep=True) for a in active]
