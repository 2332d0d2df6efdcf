"""SQLAlchemy-backed snapshot store.

Each snapshot is persisted as a JSON payload alongside the handful of
columns queries filter on: coordinates, location name/city/country,
observation/created/expiry timestamps, the cache key and one integer risk
rank per hazard. Spatial queries prefilter on the ``(latitude, longitude)``
index with a degree bounding box, then apply the exact haversine or polygon
test in Python.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    and_,
    create_engine,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from weather_cache.cancellation import CancelToken, check
from weather_cache.domain import Hazard, RiskLevel, WeatherSnapshot
from weather_cache.errors import ConflictError, NotFoundError, StorageUnavailableError
from weather_cache.freshness import DEFAULT_EXPIRY_HOURS, ensure_utc, utcnow
from weather_cache.geo import covers, haversine_km, parse_boundary, radius_bounds
from weather_cache.snapshot_store.base import (
    SnapshotStore,
    confidence_of,
    prepare_snapshot,
    risk_filter,
    risk_of,
)
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="snapshot_store/sql_snapshot_store")


class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """Store naive UTC; hand back timezone-aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class SnapshotRow(Base):
    __tablename__ = "weather_snapshots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_city: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location_country: Mapped[str] = mapped_column(String(255), nullable=False)

    observation_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # unique among non-null keys
    cache_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)

    # RiskLevel.rank values; NULL when unassessed
    overall_risk: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    flood_risk: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    storm_risk: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    heatwave_risk: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    coldwave_risk: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    drought_risk: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    wildfire_risk: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("ix_weather_snapshots_coords", "latitude", "longitude"),
        Index("ix_weather_snapshots_name_created", "location_name", "created_at"),
        Index("ix_weather_snapshots_country_city_created", "location_country", "location_city", "created_at"),
        Index("ix_weather_snapshots_expires_at", "expires_at"),
        Index("ix_weather_snapshots_overall_risk_created", "overall_risk", "created_at"),
        *(Index(f"ix_weather_snapshots_{h.value}_risk_created", f"{h.value}_risk", "created_at") for h in Hazard),
    )


def _risk_column(hazard: Hazard | None):
    """Column holding the rank for ``hazard`` (None for the overall rating)."""
    if hazard is None:
        return SnapshotRow.overall_risk
    return getattr(SnapshotRow, f"{hazard.value}_risk")


def _row_values(snap: WeatherSnapshot) -> Dict[str, Any]:
    """Column values for a prepared snapshot."""
    values: Dict[str, Any] = {
        "id": snap.id,
        "latitude": snap.latitude,
        "longitude": snap.longitude,
        "location_name": snap.location.name,
        "location_city": snap.location.city,
        "location_country": snap.location.country,
        "observation_time": snap.observation_time,
        "created_at": snap.created_at,
        "updated_at": snap.updated_at,
        "expires_at": snap.expires_at,
        "cache_key": snap.cache_key,
        "confidence": confidence_of(snap),
        "version": snap.version,
        "payload": snap.model_dump_json(),
    }
    for hazard in (None, *Hazard):
        level = risk_of(snap, hazard)
        values[_risk_column(hazard).key] = level.rank if level else None
    return values


def _to_model(row: SnapshotRow) -> WeatherSnapshot:
    return WeatherSnapshot.model_validate_json(row.payload)


def _is_memory_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


class SqlSnapshotStore(SnapshotStore):
    """Snapshot store on any SQLAlchemy-supported database (SQLite, Postgres, ...)."""

    def __init__(
        self,
        engine: Engine,
        *,
        cache_key_interval_seconds: int = 0,
        expiry_hours: float = DEFAULT_EXPIRY_HOURS,
        create_schema: bool = True,
    ) -> None:
        """Bind to an engine and create the table/indexes if missing."""
        self.engine = engine
        self.cache_key_interval_seconds = cache_key_interval_seconds
        self.expiry_hours = expiry_hours
        self.session_factory = sessionmaker(engine, expire_on_commit=False)
        if create_schema:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlSnapshotStore":
        """Create an engine from a URL and build the store."""
        engine_kwargs: Dict[str, Any] = {"future": True}
        if _is_memory_sqlite(database_url):
            # one shared connection so every session sees the same database
            engine_kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        elif database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        logger.debug("Creating engine", extra={"db_url": mask_db_url(database_url)})
        engine = create_engine(database_url, **engine_kwargs)
        return cls(engine, **kwargs)

    @contextmanager
    def _session(self, *, write: bool = False) -> Iterator[Session]:
        """Yield a session (in a transaction when ``write``), translating driver errors."""
        try:
            if write:
                with self.session_factory.begin() as session:
                    yield session
            else:
                with self.session_factory() as session:
                    yield session
        except IntegrityError as exc:
            raise ConflictError("snapshot violates a uniqueness constraint", detail=str(exc.orig)) from exc
        except DBAPIError as exc:
            logger.error("Database error", extra={"error": str(exc.orig)})
            raise StorageUnavailableError("snapshot database unavailable", detail=str(exc.orig)) from exc

    # -- writes ---------------------------------------------------------------

    def put(self, snapshot: WeatherSnapshot, *, now: datetime | None = None) -> WeatherSnapshot:
        """Insert or replace a snapshot by id inside one transaction."""
        now = ensure_utc(now) if now else utcnow()
        with self._session(write=True) as session:
            row = session.get(SnapshotRow, snapshot.id) if snapshot.id else None
            existing = _to_model(row) if row is not None else None
            snap = prepare_snapshot(
                snapshot,
                existing,
                now=now,
                cache_key_interval_seconds=self.cache_key_interval_seconds,
                expiry_hours=self.expiry_hours,
            )

            holder = session.scalars(
                select(SnapshotRow).where(SnapshotRow.cache_key == snap.cache_key)
            ).first()
            if holder is not None and holder.id != snap.id:
                if holder.expires_at > now:
                    raise ConflictError(
                        f"cache key '{snap.cache_key}' already belongs to snapshot {holder.id}",
                        cache_key=snap.cache_key,
                        existing_id=holder.id,
                    )
                logger.debug("Evicting expired snapshot holding cache key",
                             extra={"cache_key": snap.cache_key, "evicted_id": holder.id})
                session.delete(holder)
                session.flush()

            values = _row_values(snap)
            if row is None:
                session.add(SnapshotRow(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            session.flush()
        return snap.model_copy(deep=True)

    def delete_expired(self, now: datetime | None = None) -> int:
        """Remove every snapshot with ``expires_at < now`` in a single statement."""
        now = ensure_utc(now) if now else utcnow()
        with self._session(write=True) as session:
            result = session.execute(delete(SnapshotRow).where(SnapshotRow.expires_at < now))
            removed = result.rowcount or 0
        if removed:
            logger.info(f"Deleted {removed} expired snapshots")
        return removed

    def clear(self) -> None:
        with self._session(write=True) as session:
            session.execute(delete(SnapshotRow))

    # -- reads ----------------------------------------------------------------

    def get(self, snapshot_id: str) -> WeatherSnapshot:
        """Return a snapshot by id."""
        with self._session() as session:
            row = session.get(SnapshotRow, snapshot_id)
            if row is None:
                raise NotFoundError(f"snapshot {snapshot_id} not found", snapshot_id=snapshot_id)
            return _to_model(row)

    def count(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(SnapshotRow)) or 0

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
        """Bounding-box prefilter on the coordinate index, then exact haversine."""
        now = ensure_utc(now) if now else utcnow()
        boxes = radius_bounds(latitude, longitude, radius_km)
        in_boxes = or_(*(
            and_(
                SnapshotRow.longitude.between(min_lon, max_lon),
                SnapshotRow.latitude.between(min_lat, max_lat),
            )
            for min_lon, min_lat, max_lon, max_lat in boxes
        ))
        stmt = (
            select(SnapshotRow)
            .where(
                in_boxes,
                SnapshotRow.expires_at > now,
                SnapshotRow.observation_time >= now - timedelta(hours=max_age_hours),
            )
            .order_by(SnapshotRow.observation_time.desc())
        )
        out: List[WeatherSnapshot] = []
        with self._session() as session:
            for row in session.scalars(stmt):
                check(cancel)
                if haversine_km(latitude, longitude, row.latitude, row.longitude) <= radius_km:
                    out.append(_to_model(row))
        return out

    def find_by_location(
        self,
        name_pattern: str,
        max_age_hours: float = 3.0,
        *,
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        """Case-insensitive substring match on location name or city."""
        now = ensure_utc(now) if now else utcnow()
        needle = name_pattern.strip().lower()
        stmt = (
            select(SnapshotRow)
            .where(
                or_(
                    func.lower(SnapshotRow.location_name).contains(needle, autoescape=True),
                    func.lower(SnapshotRow.location_city).contains(needle, autoescape=True),
                ),
                SnapshotRow.expires_at > now,
                SnapshotRow.observation_time >= now - timedelta(hours=max_age_hours),
            )
            .order_by(SnapshotRow.observation_time.desc())
        )
        out: List[WeatherSnapshot] = []
        with self._session() as session:
            for row in session.scalars(stmt):
                check(cancel)
                out.append(_to_model(row))
        return out

    def find_by_cache_key(self, cache_key: str, *, now: datetime | None = None) -> WeatherSnapshot:
        """Exact cache-key lookup; expired records count as absent."""
        now = ensure_utc(now) if now else utcnow()
        stmt = select(SnapshotRow).where(SnapshotRow.cache_key == cache_key, SnapshotRow.expires_at > now)
        with self._session() as session:
            row = session.scalars(stmt).first()
            if row is None:
                raise NotFoundError(f"no live snapshot for cache key '{cache_key}'", cache_key=cache_key)
            return _to_model(row)

    def find_within(
        self,
        boundary: Any,
        since: datetime,
        *,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        """Boundary envelope prefilter in SQL, exact coverage test in Shapely."""
        geometry = parse_boundary(boundary)
        min_lon, min_lat, max_lon, max_lat = geometry.bounds
        stmt = select(SnapshotRow).where(
            SnapshotRow.longitude.between(min_lon, max_lon),
            SnapshotRow.latitude.between(min_lat, max_lat),
            SnapshotRow.observation_time >= ensure_utc(since),
        )
        out: List[WeatherSnapshot] = []
        with self._session() as session:
            for row in session.scalars(stmt):
                check(cancel)
                if covers(geometry, row.longitude, row.latitude):
                    out.append(_to_model(row))
        return out

    def high_risk_areas(
        self,
        hazard: str = "overall",
        min_level: str = "high",
        *,
        now: datetime | None = None,
    ) -> List[WeatherSnapshot]:
        """Non-expired snapshots at or above ``min_level``, most confident first."""
        hazard_key, level = risk_filter(hazard, min_level)
        now = ensure_utc(now) if now else utcnow()
        column = _risk_column(hazard_key)
        stmt = (
            select(SnapshotRow)
            .where(
                or_(column >= level.rank, column == RiskLevel.EXTREME.rank),
                SnapshotRow.expires_at > now,
            )
            .order_by(
                SnapshotRow.confidence.is_(None),
                SnapshotRow.confidence.desc(),
                SnapshotRow.observation_time.desc(),
                SnapshotRow.id,
            )
        )
        with self._session() as session:
            return [_to_model(row) for row in session.scalars(stmt)]
