"""Deterministic multi-hazard risk assessment for weather snapshots.

This module converts a snapshot's current conditions, daily forecast and
hourly series into one RiskAssessment per hazard, derives trends and
recommendations, and merges the result with any analysis the ingestion
collaborator already attached. It also provides the read-side projections
(risk and current-condition summaries). Units: Celsius, km/h, mm, hPa.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

from weather_cache.domain import (
    AIAnalysis,
    AnalysisConfidence,
    CurrentSummary,
    Hazard,
    HazardRiskBlock,
    PrecipitationTrend,
    PressureTrend,
    Recommendation,
    RecommendationPriority,
    RecommendationType,
    RiskAssessment,
    RiskLevel,
    RiskSummary,
    TemperatureTrend,
    TrendDirection,
    Trends,
    WeatherSnapshot,
)
from weather_cache.errors import NotReadyError, ValidationError
from weather_cache.freshness import utcnow
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="risk_engine")

ENGINE_VERSION = "hazard-rules-1"
DEFAULT_CONFIDENCE = 75.0
UNKNOWN = "unknown"

# days of forecast considered "near term" for flood/storm/cold judgments
NEAR_TERM_DAYS = 3

Thresholds = Sequence[Tuple[float, RiskLevel]]

FLOOD_RAIN_1H_MM: Thresholds = ((50.0, RiskLevel.EXTREME), (30.0, RiskLevel.HIGH),
                                (15.0, RiskLevel.MODERATE), (5.0, RiskLevel.LOW))
FLOOD_RAIN_3H_MM: Thresholds = ((100.0, RiskLevel.EXTREME), (60.0, RiskLevel.HIGH),
                                (30.0, RiskLevel.MODERATE), (10.0, RiskLevel.LOW))
FLOOD_FORECAST_MM: Thresholds = ((200.0, RiskLevel.EXTREME), (120.0, RiskLevel.HIGH),
                                 (60.0, RiskLevel.MODERATE), (25.0, RiskLevel.LOW))
STORM_WIND_KMH: Thresholds = ((118.0, RiskLevel.EXTREME), (89.0, RiskLevel.HIGH),
                              (62.0, RiskLevel.MODERATE), (39.0, RiskLevel.LOW))
STORM_GUST_KMH: Thresholds = ((150.0, RiskLevel.EXTREME), (110.0, RiskLevel.HIGH),
                              (80.0, RiskLevel.MODERATE), (50.0, RiskLevel.LOW))
HEAT_C: Thresholds = ((45.0, RiskLevel.EXTREME), (40.0, RiskLevel.HIGH),
                      (35.0, RiskLevel.MODERATE), (30.0, RiskLevel.LOW))
COLD_C: Thresholds = ((-30.0, RiskLevel.EXTREME), (-20.0, RiskLevel.HIGH),
                      (-10.0, RiskLevel.MODERATE), (0.0, RiskLevel.LOW))
DRY_HUMIDITY_PCT: Thresholds = ((10.0, RiskLevel.HIGH), (20.0, RiskLevel.MODERATE), (30.0, RiskLevel.LOW))
PRECIP_ANOMALY: Thresholds = ((-75.0, RiskLevel.HIGH), (-50.0, RiskLevel.MODERATE), (-25.0, RiskLevel.LOW))

HOT_DAY_C = 35.0
STORM_CONDITIONS = {"thunderstorm": RiskLevel.MODERATE, "squall": RiskLevel.HIGH, "tornado": RiskLevel.EXTREME}

TEMPERATURE_TREND_DEADBAND = 0.5  # degrees per day
PRECIPITATION_TREND_DEADBAND = 10.0  # percentage points
PRESSURE_TREND_DEADBAND = 0.1  # hPa per hour


# ---------------------------------------------------------------------------
# Level helpers
# ---------------------------------------------------------------------------

def _get_field(obj: Any, key: str, default=None):
    """Support attribute, dict, or Mapping access for snapshot fragments."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def coerce_risk_level(value: Any) -> RiskLevel | None:
    """Best-effort parse of a risk level; None for anything unrecognized."""
    if isinstance(value, RiskLevel):
        return value
    if not isinstance(value, str):
        return None
    try:
        return RiskLevel(value.strip().lower().replace("_", "-").replace(" ", "-"))
    except ValueError:
        return None


def parse_risk_level(value: Any) -> RiskLevel:
    """Strict parse of a risk level for query arguments."""
    level = coerce_risk_level(value)
    if level is None:
        raise ValidationError(f"unknown risk level '{value}'", allowed=[lvl.value for lvl in RiskLevel])
    return level


def parse_hazard(value: Any) -> Hazard | None:
    """Parse a hazard name; the literal 'overall' maps to None."""
    if isinstance(value, Hazard):
        return value
    name = str(value).strip().lower()
    if name == "overall":
        return None
    try:
        return Hazard(name)
    except ValueError:
        raise ValidationError(f"unknown hazard '{value}'", allowed=["overall"] + [h.value for h in Hazard])


def max_level(levels: Iterable[RiskLevel | None]) -> RiskLevel | None:
    """Most severe of the given levels, ignoring None."""
    best: RiskLevel | None = None
    for level in levels:
        if level is None:
            continue
        if best is None or level.rank > best.rank:
            best = level
    return best


def _threshold_level(value: float, thresholds: Thresholds, *, below: bool = False) -> RiskLevel:
    """Walk a most-severe-first ladder and return the first level reached."""
    for limit, level in thresholds:
        if (value <= limit) if below else (value >= limit):
            return level
    return RiskLevel.VERY_LOW


class _Evidence:
    """Accumulates the judgments that make up one hazard assessment."""

    def __init__(self) -> None:
        self.level: RiskLevel | None = None
        self.factors: list[str] = []
        self.inputs = 0

    def consider(self, value: float | None, thresholds: Thresholds, describe: str, *, below: bool = False) -> None:
        """Judge one measurement against a ladder; None means the input is missing."""
        if value is None:
            return
        self.inputs += 1
        level = _threshold_level(value, thresholds, below=below)
        self.level = max_level([self.level, level])
        if level != RiskLevel.VERY_LOW:
            self.factors.append(describe.format(value))

    def raise_to(self, level: RiskLevel, factor: str) -> None:
        """Lift the level to at least ``level`` with a supporting factor."""
        self.level = max_level([self.level, level])
        self.factors.append(factor)

    def result(self, quality: float) -> RiskAssessment | None:
        """Build the assessment, or None when no input was available."""
        if self.level is None:
            return None
        confidence = min(95.0, 40.0 + 15.0 * self.inputs) * quality
        return RiskAssessment(risk=self.level, confidence=round(confidence, 1), factors=self.factors)


def _near_term(snapshot: WeatherSnapshot):
    return snapshot.forecast[:NEAR_TERM_DAYS]


def _present(values: Iterable[float | None]) -> list[float]:
    return [v for v in values if v is not None]


# ---------------------------------------------------------------------------
# Per-hazard judgments
# ---------------------------------------------------------------------------

def _judge_flood(snapshot: WeatherSnapshot) -> _Evidence:
    """Recent rain accumulation and near-term forecast totals."""
    ev = _Evidence()
    precip = snapshot.current.precipitation if snapshot.current else None
    rain = precip.rain if precip else None
    ev.consider(_get_field(rain, "one_hour"), FLOOD_RAIN_1H_MM, "Rain {:.1f} mm in the last hour")
    ev.consider(_get_field(rain, "three_hour"), FLOOD_RAIN_3H_MM, "Rain {:.1f} mm in the last three hours")

    amounts = _present(_get_field(day.precipitation, "amount") for day in _near_term(snapshot))
    if amounts:
        ev.consider(sum(amounts), FLOOD_FORECAST_MM, "Forecast precipitation {:.0f} mm over the next days")
    return ev


def _judge_storm(snapshot: WeatherSnapshot) -> _Evidence:
    """Sustained wind, gusts and convective conditions."""
    ev = _Evidence()
    current = snapshot.current
    if current:
        ev.consider(current.wind.speed, STORM_WIND_KMH, "Sustained wind {:.0f} km/h")
        ev.consider(current.wind.gust, STORM_GUST_KMH, "Wind gusts {:.0f} km/h")
        main = (current.condition.main or "").strip().lower()
        if main in STORM_CONDITIONS:
            ev.raise_to(STORM_CONDITIONS[main], f"{current.condition.main} reported")

    speeds = _present(_get_field(day.wind, "speed") for day in _near_term(snapshot))
    if speeds:
        ev.consider(max(speeds), STORM_WIND_KMH, "Forecast wind up to {:.0f} km/h")
    return ev


def _judge_heatwave(snapshot: WeatherSnapshot) -> _Evidence:
    """Apparent temperature now and runs of hot forecast days."""
    ev = _Evidence()
    temp = snapshot.current.temperature if snapshot.current else None
    readings = _present([_get_field(temp, "value"), _get_field(temp, "feels_like")])
    if readings:
        ev.consider(max(readings), HEAT_C, "Temperature {:.1f}°C")

    highs = [day.temperature.max for day in snapshot.forecast]
    if any(h is not None for h in highs):
        ev.inputs += 1
        # leading run of hot days
        run = 0
        for high in highs:
            if high is None or high < HOT_DAY_C:
                break
            run += 1
        if run >= 5:
            ev.raise_to(RiskLevel.EXTREME, f"{run} consecutive forecast days at or above {HOT_DAY_C:.0f}°C")
        elif run >= 3:
            ev.raise_to(RiskLevel.HIGH, f"{run} consecutive forecast days at or above {HOT_DAY_C:.0f}°C")
    return ev


def _judge_coldwave(snapshot: WeatherSnapshot) -> _Evidence:
    """Wind-chilled temperature now and near-term forecast lows."""
    ev = _Evidence()
    temp = snapshot.current.temperature if snapshot.current else None
    readings = _present([_get_field(temp, "value"), _get_field(temp, "feels_like")])
    if readings:
        ev.consider(min(readings), COLD_C, "Temperature {:.1f}°C", below=True)

    lows = _present(day.temperature.min for day in _near_term(snapshot))
    if lows:
        ev.consider(min(lows), COLD_C, "Forecast low {:.1f}°C", below=True)
    return ev


def _judge_drought(snapshot: WeatherSnapshot) -> _Evidence:
    """Dry air, a dry forecast and below-normal precipitation."""
    ev = _Evidence()
    humidity = snapshot.current.humidity if snapshot.current else None
    ev.consider(humidity, DRY_HUMIDITY_PCT, "Relative humidity {:.0f}%", below=True)

    amounts = _present(_get_field(day.precipitation, "amount") for day in snapshot.forecast)
    if len(amounts) >= NEAR_TERM_DAYS:
        ev.inputs += 1
        total = sum(amounts)
        if total < 1.0:
            level = RiskLevel.HIGH if humidity is not None and humidity <= 20.0 else RiskLevel.MODERATE
            ev.raise_to(level, f"Only {total:.1f} mm of precipitation forecast over {len(amounts)} days")
        else:
            ev.level = max_level([ev.level, RiskLevel.VERY_LOW])

    anomaly = _get_field(snapshot.historical, "precipitation_anomaly")
    ev.consider(anomaly, PRECIP_ANOMALY, "Precipitation anomaly {:.0f}", below=True)
    return ev


def _judge_wildfire(snapshot: WeatherSnapshot) -> _Evidence:
    """Points for heat, dryness, wind and no recent rain."""
    ev = _Evidence()
    current = snapshot.current
    if current is None:
        return ev
    temp = current.temperature.value
    humidity = current.humidity
    wind = current.wind.speed
    if temp is None and humidity is None:
        return ev

    points = 0
    if temp is not None:
        ev.inputs += 1
        if temp >= 35.0:
            points += 2
            ev.factors.append(f"Very hot: {temp:.1f}°C")
        elif temp >= 30.0:
            points += 1
            ev.factors.append(f"Hot: {temp:.1f}°C")
    if humidity is not None:
        ev.inputs += 1
        if humidity <= 15.0:
            points += 2
            ev.factors.append(f"Very dry air: {humidity:.0f}% humidity")
        elif humidity <= 30.0:
            points += 1
            ev.factors.append(f"Dry air: {humidity:.0f}% humidity")
    if wind is not None:
        ev.inputs += 1
        if wind >= 40.0:
            points += 2
            ev.factors.append(f"Strong wind: {wind:.0f} km/h")
        elif wind >= 25.0:
            points += 1
            ev.factors.append(f"Breezy: {wind:.0f} km/h")

    precip = current.precipitation
    recent_rain = _get_field(_get_field(precip, "rain"), "one_hour")
    probability = _get_field(precip, "probability")
    if not recent_rain and (probability is None or probability < 20.0) and points > 0:
        points += 1
        ev.factors.append("No recent rain")

    if points >= 6:
        ev.level = RiskLevel.EXTREME
    elif points >= 5:
        ev.level = RiskLevel.HIGH
    elif points >= 3:
        ev.level = RiskLevel.MODERATE
    elif points >= 1:
        ev.level = RiskLevel.LOW
    else:
        ev.level = RiskLevel.VERY_LOW
    return ev


HAZARD_JUDGES: Dict[Hazard, Callable[[WeatherSnapshot], _Evidence]] = {
    Hazard.FLOOD: _judge_flood,
    Hazard.STORM: _judge_storm,
    Hazard.HEATWAVE: _judge_heatwave,
    Hazard.COLDWAVE: _judge_coldwave,
    Hazard.DROUGHT: _judge_drought,
    Hazard.WILDFIRE: _judge_wildfire,
}


def _quality_score(snapshot: WeatherSnapshot) -> float | None:
    """Mean provider quality score (0-100), or None when no provider reported one."""
    scores = [ds.quality.score for ds in snapshot.data_sources if ds.quality and ds.quality.score is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def _quality_factor(snapshot: WeatherSnapshot) -> float:
    """Quality score as a 0-1 confidence multiplier (1.0 when unreported)."""
    score = _quality_score(snapshot)
    return 1.0 if score is None else score / 100.0


def assess_hazards(snapshot: WeatherSnapshot) -> Dict[Hazard, RiskAssessment]:
    """Pure function: judge every hazard that has inputs; omit the rest."""
    quality = _quality_factor(snapshot)
    out: Dict[Hazard, RiskAssessment] = {}
    for hazard, judge in HAZARD_JUDGES.items():
        assessment = judge(snapshot).result(quality)
        if assessment is not None:
            out[hazard] = assessment
    return out


def overall_level(assessments: Iterable[RiskAssessment], provided: RiskLevel | None = None) -> RiskLevel:
    """Most severe hazard level (or provided overall); LOW when nothing is known."""
    level = max_level([provided, *(a.risk for a in assessments)])
    return level or RiskLevel.LOW


def ranked_hazards(
    snapshot: WeatherSnapshot,
    min_level: RiskLevel | None = None,
) -> List[Tuple[Hazard, RiskAssessment]]:
    """Assessed hazards, most severe first, then by confidence."""
    analysis = snapshot.ai_analysis
    if analysis is None:
        return []
    items = [
        (hazard, assessment)
        for hazard, assessment in analysis.risk_assessment.hazards.items()
        if assessment.risk is not None and (min_level is None or assessment.risk.rank >= min_level.rank)
    ]
    items.sort(key=lambda item: (-item[1].risk.rank, -(item[1].confidence or 0.0)))
    return items


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

def _trend_direction(delta: float, deadband: float) -> TrendDirection:
    """Direction of a change; deltas inside the deadband are stable."""
    if abs(delta) <= deadband:
        return TrendDirection.STABLE
    return TrendDirection.RISING if delta > 0 else TrendDirection.FALLING


def _temperature_trend(snapshot: WeatherSnapshot) -> TemperatureTrend | None:
    """Degrees per day across the daily forecast, falling back to hourly data."""
    daily = [
        (day.date, day.temperature.day if day.temperature.day is not None else day.temperature.max)
        for day in snapshot.forecast
    ]
    daily = [(when, temp) for when, temp in daily if temp is not None]
    if len(daily) >= 2:
        rate = (daily[-1][1] - daily[0][1]) / (len(daily) - 1)
        return TemperatureTrend(trend=_trend_direction(rate, TEMPERATURE_TREND_DEADBAND),
                                rate=round(rate, 2), duration=float(len(daily) - 1))

    hourly = [(h.time, h.temperature) for h in snapshot.hourly if h.temperature is not None]
    if len(hourly) >= 2:
        hours = (hourly[-1][0] - hourly[0][0]).total_seconds() / 3600.0
        if hours <= 0:
            return None
        rate = (hourly[-1][1] - hourly[0][1]) / hours * 24.0
        return TemperatureTrend(trend=_trend_direction(rate, TEMPERATURE_TREND_DEADBAND),
                                rate=round(rate, 2), duration=round(hours / 24.0, 2))
    return None


def _precipitation_trend(snapshot: WeatherSnapshot) -> PrecipitationTrend | None:
    """Likelihood and amount over the forecast; direction compares halves."""
    probabilities = _present(_get_field(day.precipitation, "probability") for day in snapshot.forecast)
    amounts = _present(_get_field(day.precipitation, "amount") for day in snapshot.forecast)
    if not probabilities and not amounts:
        return None

    trend = None
    if len(probabilities) >= 2:
        half = len(probabilities) // 2
        first = sum(probabilities[:half]) / half
        second = sum(probabilities[half:]) / (len(probabilities) - half)
        trend = _trend_direction(second - first, PRECIPITATION_TREND_DEADBAND)

    return PrecipitationTrend(
        trend=trend,
        likelihood=max(probabilities) if probabilities else None,
        amount=round(sum(amounts), 1) if amounts else None,
    )


def _pressure_trend(snapshot: WeatherSnapshot) -> PressureTrend | None:
    """hPa per hour across the hourly series."""
    series = [(h.time, h.pressure) for h in snapshot.hourly if h.pressure is not None]
    if len(series) < 2:
        return None
    hours = (series[-1][0] - series[0][0]).total_seconds() / 3600.0
    if hours <= 0:
        return None
    rate = (series[-1][1] - series[0][1]) / hours
    return PressureTrend(trend=_trend_direction(rate, PRESSURE_TREND_DEADBAND), rate=round(rate, 3))


def compute_trends(snapshot: WeatherSnapshot) -> Trends | None:
    """Directional summaries; None when the snapshot has no series data."""
    temperature = _temperature_trend(snapshot)
    precipitation = _precipitation_trend(snapshot)
    pressure = _pressure_trend(snapshot)
    if temperature is None and precipitation is None and pressure is None:
        return None
    return Trends(temperature=temperature, precipitation=precipitation, pressure=pressure)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

_HAZARD_GUIDANCE: Dict[Hazard, Tuple[str, List[str]]] = {
    Hazard.FLOOD: ("Flooding possible; keep people and supplies out of low-lying areas.",
                   ["residents of flood plains", "travelers"]),
    Hazard.STORM: ("Damaging winds possible; secure loose objects and avoid exposed travel.",
                   ["outdoor workers", "travelers"]),
    Hazard.HEATWAVE: ("Dangerous heat; open cooling centers and check on vulnerable people.",
                      ["elderly", "outdoor workers", "children"]),
    Hazard.COLDWAVE: ("Dangerous cold; open warming shelters and protect exposed pipes.",
                      ["elderly", "homeless", "outdoor workers"]),
    Hazard.DROUGHT: ("Drought conditions; conserve water and monitor supplies.",
                     ["farmers", "water utilities"]),
    Hazard.WILDFIRE: ("Elevated fire danger; restrict burning and stage suppression crews.",
                      ["residents near wildland", "firefighters"]),
}

# level -> (type, priority, timeframe)
_ESCALATION: Dict[RiskLevel, Tuple[RecommendationType, RecommendationPriority, str]] = {
    RiskLevel.EXTREME: (RecommendationType.ACTION, RecommendationPriority.CRITICAL, "immediate"),
    RiskLevel.HIGH: (RecommendationType.WARNING, RecommendationPriority.HIGH, "next 6 hours"),
    RiskLevel.MODERATE: (RecommendationType.PREPARATION, RecommendationPriority.MEDIUM, "next 24 hours"),
}

_PRIORITY_ORDER = [
    RecommendationPriority.LOW,
    RecommendationPriority.MEDIUM,
    RecommendationPriority.HIGH,
    RecommendationPriority.CRITICAL,
]


def build_recommendations(assessments: Mapping[Hazard, RiskAssessment]) -> List[Recommendation]:
    """Guidance for every hazard at moderate or above, most urgent first."""
    recs: List[Recommendation] = []
    for hazard, assessment in assessments.items():
        if assessment.risk not in _ESCALATION:
            continue
        rec_type, priority, timeframe = _ESCALATION[assessment.risk]
        message, groups = _HAZARD_GUIDANCE[hazard]
        recs.append(Recommendation(type=rec_type, priority=priority, message=message,
                                   timeframe=timeframe, affected_groups=list(groups)))

    if not recs:
        return [Recommendation(type=RecommendationType.INFORMATION, priority=RecommendationPriority.LOW,
                               message="No elevated weather hazards detected.", timeframe="next 24 hours")]

    recs.sort(key=lambda r: -_PRIORITY_ORDER.index(r.priority))
    return recs


# ---------------------------------------------------------------------------
# Normalization (write side)
# ---------------------------------------------------------------------------

def _aggregate_confidence(assessments: Iterable[RiskAssessment]) -> float:
    """Mean hazard confidence, or the default when none were scored."""
    scored = [a.confidence for a in assessments if a.confidence is not None]
    if not scored:
        return DEFAULT_CONFIDENCE
    return round(sum(scored) / len(scored), 1)


def normalize_analysis(snapshot: WeatherSnapshot, *, now: datetime | None = None) -> WeatherSnapshot:
    """
    Return a copy of ``snapshot`` with a complete, consistent ai_analysis.

    Hazard entries supplied by the caller win; computed entries fill the gaps.
    The overall level is the most severe of the supplied overall and every
    hazard level. Trends, recommendations and confidence are only computed
    when absent.
    """
    result = snapshot.model_copy(deep=True)
    analysis = result.ai_analysis or AIAnalysis()
    provided = analysis.risk_assessment.hazards
    computed = assess_hazards(result)

    merged: Dict[Hazard, RiskAssessment] = {}
    for hazard in Hazard:
        given = provided.get(hazard)
        if given is not None and given.risk is not None:
            merged[hazard] = given
        elif hazard in computed:
            merged[hazard] = computed[hazard]
        elif given is not None:
            merged[hazard] = given

    analysis.risk_assessment = HazardRiskBlock(
        overall=overall_level(merged.values(), provided=analysis.risk_assessment.overall),
        hazards=merged,
    )
    if analysis.trends is None:
        analysis.trends = compute_trends(result)
    if not analysis.recommendations:
        analysis.recommendations = build_recommendations(merged)
    if analysis.confidence is None:
        quality = _quality_score(result)
        analysis.confidence = AnalysisConfidence(
            overall=_aggregate_confidence(merged.values()),
            data_quality=round(quality, 1) if quality is not None else None,
            model_version=ENGINE_VERSION,
        )
    if analysis.analyzed_at is None:
        analysis.analyzed_at = now or utcnow()

    result.ai_analysis = analysis
    logger.debug(
        f"Normalized analysis for {result.location.name}: overall={analysis.risk_assessment.overall.value}",
        extra={"hazards": {h.value: a.risk.value if a.risk else None for h, a in merged.items()}},
    )
    return result


# ---------------------------------------------------------------------------
# Read-side projections
# ---------------------------------------------------------------------------

def _risk_block(snapshot: WeatherSnapshot | Mapping[str, Any]) -> Tuple[Any, Mapping[str, Any]]:
    """Extract (overall, hazard entries) from a model or a raw mapping.

    Raw mappings may carry the legacy flat layout where each hazard is a
    direct key of the risk block.
    """
    if isinstance(snapshot, WeatherSnapshot):
        if snapshot.ai_analysis is None:
            return None, {}
        block = snapshot.ai_analysis.risk_assessment
        return block.overall, {h.value: a for h, a in block.hazards.items()}

    analysis = _get_field(snapshot, "ai_analysis")
    block = _get_field(analysis, "risk_assessment")
    if not isinstance(block, Mapping):
        return None, {}
    hazards = block.get("hazards")
    if not isinstance(hazards, Mapping):
        hazards = {h.value: block.get(h.value) for h in Hazard if h.value in block}
    return block.get("overall"), hazards


def _entry_level(entry: Any) -> str:
    """Level string for a hazard entry, or 'unknown' when absent/malformed."""
    raw = entry if isinstance(entry, (str, RiskLevel)) else _get_field(entry, "risk")
    level = coerce_risk_level(raw)
    return level.value if level else UNKNOWN


def hazard_levels(snapshot: WeatherSnapshot | Mapping[str, Any]) -> Dict[str, str]:
    """Level for 'overall' and every hazard; never raises."""
    overall, hazards = _risk_block(snapshot)
    levels = {"overall": _entry_level(overall)}
    for hazard in Hazard:
        levels[hazard.value] = _entry_level(hazards.get(hazard.value))
    return levels


def summarize(snapshot: WeatherSnapshot | Mapping[str, Any]) -> RiskSummary:
    """Overall plus flood/storm/wildfire/heatwave levels, 'unknown' where missing."""
    levels = hazard_levels(snapshot)
    return RiskSummary(
        overall=levels["overall"],
        flood=levels[Hazard.FLOOD.value],
        storm=levels[Hazard.STORM.value],
        wildfire=levels[Hazard.WILDFIRE.value],
        heatwave=levels[Hazard.HEATWAVE.value],
    )


def current_summary(snapshot: WeatherSnapshot) -> CurrentSummary:
    """Flat projection of current conditions for quick display."""
    current = snapshot.current
    if current is None:
        raise NotReadyError("snapshot has no current conditions", snapshot_id=snapshot.id)
    return CurrentSummary(
        temperature=current.temperature.value,
        condition=current.condition.description,
        humidity=current.humidity,
        wind_speed=current.wind.speed,
        location=snapshot.location.name,
    )
