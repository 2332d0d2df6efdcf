"""In-memory snapshot store with geospatial and expiry indexes, intended for development and tests."""

from __future__ import annotations

import bisect
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from shapely.strtree import STRtree

from weather_cache.cancellation import CancelToken, check
from weather_cache.domain import Hazard, RiskLevel, RISK_LEVEL_ORDER, WeatherSnapshot
from weather_cache.errors import ConflictError, NotFoundError
from weather_cache.freshness import DEFAULT_EXPIRY_HOURS, ensure_utc, utcnow
from weather_cache.geo import bounds_geometry, covers, haversine_km, parse_boundary, point, radius_bounds
from weather_cache.snapshot_store.base import (
    SnapshotStore,
    is_expired,
    is_recent,
    most_confident_first,
    newest_first,
    prepare_snapshot,
    qualifies,
    risk_filter,
    risk_of,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="snapshot_store/in_memory_snapshot_store")

RiskKey = Tuple[Optional[Hazard], RiskLevel]


class InMemorySnapshotStore(SnapshotStore):
    """
    Thread-safe in-memory store (dev/test).

    One re-entrant lock guards the records and every index, so a ``put`` is
    all-or-nothing. Records are stored and returned as deep copies.

    Spatial queries scan linearly while fewer than ``linear_scan_threshold``
    records are held; above that a Shapely STRtree over record points narrows
    candidates first. The tree is rebuilt lazily on the first spatial query
    after a write.
    """

    def __init__(
        self,
        *,
        cache_key_interval_seconds: int = 0,
        expiry_hours: float = DEFAULT_EXPIRY_HOURS,
        linear_scan_threshold: int = 500,
    ) -> None:
        """Initialize empty indexes with the write-path defaults."""
        logger.debug("Initializing InMemorySnapshotStore")
        self.cache_key_interval_seconds = cache_key_interval_seconds
        self.expiry_hours = expiry_hours
        self.linear_scan_threshold = linear_scan_threshold

        self._lock = threading.RLock()
        self._records: Dict[str, WeatherSnapshot] = {}
        self._by_cache_key: Dict[str, str] = {}
        self._by_risk: Dict[RiskKey, Set[str]] = {}
        # sorted (expires_at, id) pairs
        self._expiry: List[Tuple[datetime, str]] = []
        self._tree: STRtree | None = None
        self._tree_ids: List[str] = []

    # -- index maintenance (lock held) ---------------------------------------

    def _index(self, snap: WeatherSnapshot) -> None:
        self._records[snap.id] = snap
        if snap.cache_key:
            self._by_cache_key[snap.cache_key] = snap.id
        for hazard in (None, *Hazard):
            level = risk_of(snap, hazard)
            if level is not None:
                self._by_risk.setdefault((hazard, level), set()).add(snap.id)
        if snap.expires_at is not None:
            bisect.insort(self._expiry, (snap.expires_at, snap.id))
        self._tree = None

    def _unindex(self, snapshot_id: str) -> WeatherSnapshot | None:
        snap = self._records.pop(snapshot_id, None)
        if snap is None:
            return None
        if snap.cache_key and self._by_cache_key.get(snap.cache_key) == snapshot_id:
            del self._by_cache_key[snap.cache_key]
        for hazard in (None, *Hazard):
            level = risk_of(snap, hazard)
            if level is not None:
                ids = self._by_risk.get((hazard, level))
                if ids is not None:
                    ids.discard(snapshot_id)
        if snap.expires_at is not None:
            pos = bisect.bisect_left(self._expiry, (snap.expires_at, snapshot_id))
            if pos < len(self._expiry) and self._expiry[pos] == (snap.expires_at, snapshot_id):
                del self._expiry[pos]
        self._tree = None
        return snap

    def _spatial_tree(self) -> STRtree:
        if self._tree is None:
            self._tree_ids = list(self._records)
            geoms = [point(self._records[sid].longitude, self._records[sid].latitude) for sid in self._tree_ids]
            self._tree = STRtree(geoms)
        return self._tree

    def _candidates(self, geometries) -> List[WeatherSnapshot]:
        """Records whose point may fall inside any of ``geometries``."""
        if len(self._records) < self.linear_scan_threshold:
            return list(self._records.values())
        tree = self._spatial_tree()
        hits: Set[int] = set()
        for geom in geometries:
            hits.update(int(i) for i in tree.query(geom))
        return [self._records[self._tree_ids[i]] for i in sorted(hits)]

    # -- writes ---------------------------------------------------------------

    def put(self, snapshot: WeatherSnapshot, *, now: datetime | None = None) -> WeatherSnapshot:
        """Insert or replace a snapshot by id; ConflictError on a live cache-key collision."""
        now = ensure_utc(now) if now else utcnow()
        with self._lock:
            existing = self._records.get(snapshot.id) if snapshot.id else None
            snap = prepare_snapshot(
                snapshot,
                existing,
                now=now,
                cache_key_interval_seconds=self.cache_key_interval_seconds,
                expiry_hours=self.expiry_hours,
            )

            holder_id = self._by_cache_key.get(snap.cache_key)
            if holder_id is not None and holder_id != snap.id:
                holder = self._records[holder_id]
                if not is_expired(holder, now):
                    raise ConflictError(
                        f"cache key '{snap.cache_key}' already belongs to snapshot {holder_id}",
                        cache_key=snap.cache_key,
                        existing_id=holder_id,
                    )
                logger.debug("Evicting expired snapshot holding cache key",
                             extra={"cache_key": snap.cache_key, "evicted_id": holder_id})
                self._unindex(holder_id)

            if existing is not None:
                self._unindex(existing.id)
            self._index(snap)
            return snap.model_copy(deep=True)

    def delete_expired(self, now: datetime | None = None) -> int:
        """Remove every snapshot with ``expires_at < now``."""
        now = ensure_utc(now) if now else utcnow()
        with self._lock:
            cutoff = bisect.bisect_left(self._expiry, (now, ""))
            doomed = [sid for _, sid in self._expiry[:cutoff]]
            for sid in doomed:
                self._unindex(sid)
        if doomed:
            logger.info(f"Deleted {len(doomed)} expired snapshots")
        return len(doomed)

    def clear(self) -> None:
        """Clear all snapshots."""
        with self._lock:
            self._records.clear()
            self._by_cache_key.clear()
            self._by_risk.clear()
            self._expiry.clear()
            self._tree = None
            self._tree_ids = []

    # -- reads ----------------------------------------------------------------

    def get(self, snapshot_id: str) -> WeatherSnapshot:
        """Return a snapshot by id."""
        with self._lock:
            snap = self._records.get(snapshot_id)
            if snap is None:
                raise NotFoundError(f"snapshot {snapshot_id} not found", snapshot_id=snapshot_id)
            return snap.model_copy(deep=True)

    def count(self) -> int:
        with self._lock:
            return len(self._records)

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
        """Non-expired snapshots within ``radius_km`` observed in the last ``max_age_hours``."""
        now = ensure_utc(now) if now else utcnow()
        boxes = [bounds_geometry(b) for b in radius_bounds(latitude, longitude, radius_km)]
        out: List[WeatherSnapshot] = []
        with self._lock:
            for snap in self._candidates(boxes):
                check(cancel)
                if is_expired(snap, now) or not is_recent(snap, now, max_age_hours):
                    continue
                if haversine_km(latitude, longitude, snap.latitude, snap.longitude) > radius_km:
                    continue
                out.append(snap.model_copy(deep=True))
        return newest_first(out)

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
        out: List[WeatherSnapshot] = []
        with self._lock:
            for snap in self._records.values():
                check(cancel)
                if is_expired(snap, now) or not is_recent(snap, now, max_age_hours):
                    continue
                name = snap.location.name.lower()
                city = (snap.location.city or "").lower()
                if needle in name or needle in city:
                    out.append(snap.model_copy(deep=True))
        return newest_first(out)

    def find_by_cache_key(self, cache_key: str, *, now: datetime | None = None) -> WeatherSnapshot:
        """Exact cache-key lookup; expired records count as absent."""
        now = ensure_utc(now) if now else utcnow()
        with self._lock:
            sid = self._by_cache_key.get(cache_key)
            snap = self._records.get(sid) if sid else None
            if snap is None or is_expired(snap, now):
                raise NotFoundError(f"no live snapshot for cache key '{cache_key}'", cache_key=cache_key)
            return snap.model_copy(deep=True)

    def find_within(
        self,
        boundary: Any,
        since: datetime,
        *,
        cancel: CancelToken | None = None,
    ) -> List[WeatherSnapshot]:
        """Snapshots covered by ``boundary`` (edges included) observed at or after ``since``."""
        geometry = parse_boundary(boundary)
        since = ensure_utc(since)
        out: List[WeatherSnapshot] = []
        with self._lock:
            for snap in self._candidates([geometry]):
                check(cancel)
                observed = snap.observation_time
                if observed is None or observed < since:
                    continue
                if covers(geometry, snap.longitude, snap.latitude):
                    out.append(snap.model_copy(deep=True))
        return out

    def high_risk_areas(
        self,
        hazard: str = "overall",
        min_level: str = "high",
        *,
        now: datetime | None = None,
    ) -> List[WeatherSnapshot]:
        """Non-expired snapshots at or above ``min_level`` for ``hazard``, most confident first."""
        hazard_key, level = risk_filter(hazard, min_level)
        now = ensure_utc(now) if now else utcnow()
        with self._lock:
            ids: Set[str] = set()
            for candidate in RISK_LEVEL_ORDER:
                if qualifies(candidate, level):
                    ids |= self._by_risk.get((hazard_key, candidate), set())
            matches = [
                self._records[sid].model_copy(deep=True)
                for sid in sorted(ids)
                if not is_expired(self._records[sid], now)
            ]
        return most_confident_first(matches)
