"""Domain vocabulary and strict schemas for cached weather snapshots.

This module defines the record the store persists and every query returns:
enums for risk and alert levels, the hazard mapping, and Pydantic models for
location, conditions, forecasts, the embedded risk analysis and alerts. No
scoring or query logic lives here; computed accessors (coordinates) are the
only behaviour.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Tuple

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator


def ensure_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime, treating naive input as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class RiskLevel(str, Enum):
    """Ordered disaster-risk level used by every hazard and the overall rating."""
    VERY_LOW = "very-low"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    EXTREME = "extreme"

    @property
    def rank(self) -> int:
        """Position on the ascending severity scale (very-low == 0)."""
        return RISK_LEVEL_ORDER.index(self)


RISK_LEVEL_ORDER: Tuple[RiskLevel, ...] = (
    RiskLevel.VERY_LOW,
    RiskLevel.LOW,
    RiskLevel.MODERATE,
    RiskLevel.HIGH,
    RiskLevel.EXTREME,
)


class Hazard(str, Enum):
    """Disaster categories carrying their own risk assessment."""
    FLOOD = "flood"
    STORM = "storm"
    HEATWAVE = "heatwave"
    COLDWAVE = "coldwave"
    DROUGHT = "drought"
    WILDFIRE = "wildfire"


class AlertSeverity(str, Enum):
    """Four-level alert severity. Not interchangeable with RiskLevel."""
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"
    EXTREME = "extreme"


ALERT_SEVERITY_WEIGHTS: Dict[AlertSeverity, int] = {
    AlertSeverity.EXTREME: 4,
    AlertSeverity.SEVERE: 3,
    AlertSeverity.MODERATE: 2,
    AlertSeverity.MINOR: 1,
}


class AlertUrgency(str, Enum):
    """How soon an alert's conditions are expected."""
    PAST = "past"
    FUTURE = "future"
    EXPECTED = "expected"
    IMMEDIATE = "immediate"


class AlertCertainty(str, Enum):
    """Issuer's confidence that an alert's conditions will occur."""
    UNKNOWN = "unknown"
    UNLIKELY = "unlikely"
    POSSIBLE = "possible"
    LIKELY = "likely"
    OBSERVED = "observed"


class TrendDirection(str, Enum):
    """Direction of a measured trend."""
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class RecommendationType(str, Enum):
    """Kind of guidance attached to an analysis."""
    PREPARATION = "preparation"
    WARNING = "warning"
    ACTION = "action"
    INFORMATION = "information"


class RecommendationPriority(str, Enum):
    """Priority level for surfacing recommendations."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PrecipitationType(str, Enum):
    """Dominant precipitation type in a daily forecast."""
    RAIN = "rain"
    SNOW = "snow"
    SLEET = "sleet"
    NONE = "none"


# ---------------------------------------------------------------------------
# Location and current conditions
# ---------------------------------------------------------------------------

class Location(_StrictBaseModel):
    """Named point; longitude and latitude are always set together."""
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    name: str
    country: str
    state: str | None = None
    city: str | None = None
    region: str | None = None
    country_code: str | None = None
    timezone: str | None = None

    @model_validator(mode="after")
    def _coordinates_together(self) -> "Location":
        if (self.longitude is None) != (self.latitude is None):
            raise ValueError("longitude and latitude must be provided together")
        return self


class Temperature(_StrictBaseModel):
    """Temperature readings in Celsius."""
    value: float | None = None
    feels_like: float | None = None
    min: float | None = None
    max: float | None = None


class Pressure(_StrictBaseModel):
    """Pressure readings in hPa."""
    value: float | None = None
    sea_level: float | None = None
    ground_level: float | None = None


class Wind(_StrictBaseModel):
    """Wind speed/gust in km/h and direction in degrees."""
    speed: float | None = Field(default=None, ge=0.0)
    direction: float | None = None
    gust: float | None = Field(default=None, ge=0.0)


class PrecipitationAmount(_StrictBaseModel):
    """Accumulation in mm over the last one and three hours."""
    one_hour: float | None = Field(default=None, ge=0.0)
    three_hour: float | None = Field(default=None, ge=0.0)


class Precipitation(_StrictBaseModel):
    """Current rain/snow accumulation and probability (percent)."""
    rain: PrecipitationAmount | None = None
    snow: PrecipitationAmount | None = None
    probability: float | None = Field(default=None, ge=0.0, le=100.0)


class Condition(_StrictBaseModel):
    """Provider condition label, e.g. main='Rain', description='light rain'."""
    main: str | None = None
    description: str | None = None
    icon: str | None = None


class CurrentConditions(_StrictBaseModel):
    """Observed conditions; observation_time anchors freshness."""
    temperature: Temperature = Field(default_factory=Temperature)
    humidity: float | None = Field(default=None, ge=0.0, le=100.0)
    pressure: Pressure | None = None
    wind: Wind = Field(default_factory=Wind)
    visibility: float | None = 10.0
    precipitation: Precipitation | None = None
    cloud_cover: float | None = Field(default=None, ge=0.0, le=100.0)
    condition: Condition = Field(default_factory=Condition)
    uv_index: float | None = Field(default=None, ge=0.0, le=15.0)
    sunrise: UtcDatetime | None = None
    sunset: UtcDatetime | None = None
    observation_time: UtcDatetime | None = None


# ---------------------------------------------------------------------------
# Forecasts
# ---------------------------------------------------------------------------

class DailyTemperature(_StrictBaseModel):
    """Daily temperature envelope in Celsius."""
    min: float | None = None
    max: float | None = None
    morning: float | None = None
    day: float | None = None
    evening: float | None = None
    night: float | None = None


class DailyPrecipitation(_StrictBaseModel):
    """Forecast precipitation for a day."""
    probability: float | None = Field(default=None, ge=0.0, le=100.0)
    amount: float | None = Field(default=None, ge=0.0)
    type: PrecipitationType | None = None


class ForecastDay(_StrictBaseModel):
    """One daily forecast entry."""
    date: UtcDatetime
    temperature: DailyTemperature = Field(default_factory=DailyTemperature)
    condition: Condition | None = None
    precipitation: DailyPrecipitation | None = None
    wind: Wind | None = None
    humidity: float | None = Field(default=None, ge=0.0, le=100.0)
    pressure: float | None = None
    cloud_cover: float | None = Field(default=None, ge=0.0, le=100.0)
    uv_index: float | None = Field(default=None, ge=0.0, le=15.0)


class HourlyPrecipitation(_StrictBaseModel):
    """Forecast precipitation for an hour."""
    probability: float | None = Field(default=None, ge=0.0, le=100.0)
    amount: float | None = Field(default=None, ge=0.0)


class HourlyEntry(_StrictBaseModel):
    """One hourly forecast entry."""
    time: UtcDatetime
    temperature: float | None = None
    feels_like: float | None = None
    humidity: float | None = Field(default=None, ge=0.0, le=100.0)
    pressure: float | None = None
    wind: Wind | None = None
    precipitation: HourlyPrecipitation | None = None
    condition: Condition | None = None
    cloud_cover: float | None = Field(default=None, ge=0.0, le=100.0)
    visibility: float | None = None


# ---------------------------------------------------------------------------
# Embedded risk analysis
# ---------------------------------------------------------------------------

class RiskAssessment(_StrictBaseModel):
    """Risk judgment for a single hazard."""
    risk: RiskLevel | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=100.0)
    factors: List[str] = Field(default_factory=list)

    @field_validator("factors", mode="after")
    @classmethod
    def _unique_factors(cls, v: List[str]) -> List[str]:
        """Factors behave as a set; keep first-seen order."""
        return list(dict.fromkeys(v))


class HazardRiskBlock(_StrictBaseModel):
    """Overall rating plus one RiskAssessment per known hazard."""
    overall: RiskLevel | None = None
    hazards: Dict[Hazard, RiskAssessment] = Field(default_factory=dict)


class TemperatureTrend(_StrictBaseModel):
    """Temperature direction with rate in degrees per day."""
    trend: TrendDirection | None = None
    rate: float | None = None
    duration: float | None = None


class PrecipitationTrend(_StrictBaseModel):
    """Precipitation direction, likelihood (percent) and expected amount (mm)."""
    trend: TrendDirection | None = None
    likelihood: float | None = Field(default=None, ge=0.0, le=100.0)
    amount: float | None = None


class PressureTrend(_StrictBaseModel):
    """Pressure direction with rate in hPa per hour."""
    trend: TrendDirection | None = None
    rate: float | None = None


class Trends(_StrictBaseModel):
    """Directional summaries derived from forecast and hourly data."""
    temperature: TemperatureTrend | None = None
    precipitation: PrecipitationTrend | None = None
    pressure: PressureTrend | None = None


class Recommendation(_StrictBaseModel):
    """Actionable guidance for responders."""
    type: RecommendationType
    priority: RecommendationPriority
    message: str
    timeframe: str | None = None
    affected_groups: List[str] = Field(default_factory=list)


class AnalysisConfidence(_StrictBaseModel):
    """Model confidence metadata."""
    overall: float = Field(default=75.0, ge=0.0, le=100.0)
    data_quality: float | None = Field(default=None, ge=0.0, le=100.0)
    model_version: str | None = None


class AIAnalysis(_StrictBaseModel):
    """Risk assessment, trends and recommendations embedded in a snapshot."""
    risk_assessment: HazardRiskBlock = Field(default_factory=HazardRiskBlock)
    trends: Trends | None = None
    recommendations: List[Recommendation] = Field(default_factory=list)
    confidence: AnalysisConfidence | None = None
    analyzed_at: UtcDatetime | None = None


# ---------------------------------------------------------------------------
# Provenance, alerts, history
# ---------------------------------------------------------------------------

class DataQuality(_StrictBaseModel):
    """Provider-reported data quality."""
    score: float | None = Field(default=None, ge=0.0, le=100.0)
    issues: List[str] = Field(default_factory=list)


class DataSource(_StrictBaseModel):
    """Provenance of the data; not authoritative for correctness."""
    provider: str
    api_version: str | None = None
    last_updated: UtcDatetime | None = None
    quality: DataQuality | None = None
    requests_used: int = 0
    requests_limit: int | None = None


class Alert(_StrictBaseModel):
    """Issued weather alert with an optional active window."""
    id: str | None = None
    title: str | None = None
    description: str | None = None
    severity: AlertSeverity | None = None
    urgency: AlertUrgency | None = None
    certainty: AlertCertainty | None = None
    areas: List[str] = Field(default_factory=list)
    start: UtcDatetime | None = None
    end: UtcDatetime | None = None
    source: str | None = None

    @model_validator(mode="after")
    def _window_ordered(self) -> "Alert":
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("alert start must not be after end")
        return self


class RecordValue(_StrictBaseModel):
    """A record measurement and when it happened."""
    value: float | None = None
    date: UtcDatetime | None = None


class HistoricalComparison(_StrictBaseModel):
    """Informational comparison against climatology."""
    average_temperature: float | None = None
    average_precipitation: float | None = None
    normal_high: float | None = None
    normal_low: float | None = None
    temperature_anomaly: float | None = None
    precipitation_anomaly: float | None = None
    record_high: RecordValue | None = None
    record_low: RecordValue | None = None


# ---------------------------------------------------------------------------
# The snapshot
# ---------------------------------------------------------------------------

class WeatherSnapshot(_StrictBaseModel):
    """One stored observation + forecast + risk bundle for a location and time."""
    id: str | None = None
    location: Location
    current: CurrentConditions | None = None
    forecast: List[ForecastDay] = Field(default_factory=list)
    hourly: List[HourlyEntry] = Field(default_factory=list)
    ai_analysis: AIAnalysis | None = None
    data_sources: List[DataSource] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list)
    historical: HistoricalComparison | None = None

    requested_by: str | None = None
    request_id: str | None = None

    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None
    expires_at: UtcDatetime | None = None
    cache_key: str | None = None
    version: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _ordered_series(self) -> "WeatherSnapshot":
        for prev, curr in zip(self.forecast, self.forecast[1:]):
            if curr.date <= prev.date:
                raise ValueError("forecast dates must be strictly increasing")
        for prev, curr in zip(self.hourly, self.hourly[1:]):
            if curr.time <= prev.time:
                raise ValueError("hourly times must be strictly increasing")
        if self.created_at and self.updated_at and self.updated_at < self.created_at:
            raise ValueError("updated_at must not precede created_at")
        return self

    @property
    def longitude(self) -> float | None:
        return self.location.longitude

    @property
    def latitude(self) -> float | None:
        return self.location.latitude

    @property
    def coordinates(self) -> Tuple[float, float] | None:
        """(longitude, latitude) in GeoJSON order, or None if unset."""
        if self.location.longitude is None or self.location.latitude is None:
            return None
        return self.location.longitude, self.location.latitude

    @property
    def observation_time(self) -> datetime | None:
        return self.current.observation_time if self.current else None


# ---------------------------------------------------------------------------
# Read-side projections
# ---------------------------------------------------------------------------

class RiskSummary(_StrictBaseModel):
    """Hazard levels for quick display; "unknown" where no assessment exists."""
    overall: str = "unknown"
    flood: str = "unknown"
    storm: str = "unknown"
    wildfire: str = "unknown"
    heatwave: str = "unknown"


class CurrentSummary(_StrictBaseModel):
    """Flat projection of current conditions."""
    temperature: float | None = None
    condition: str | None = None
    humidity: float | None = None
    wind_speed: float | None = None
    location: str | None = None
