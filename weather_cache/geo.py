"""Great-circle distance, radius bounding boxes and boundary parsing."""

from __future__ import annotations

import math
from typing import Any, List, Mapping, Sequence, Tuple

from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Point, Polygon, box, shape
from shapely.geometry.base import BaseGeometry

from weather_cache.errors import ValidationError

# Earth radius for Haversine calculation (km)
EARTH_RADIUS_KM: float = 6371.0

# Length of one degree of arc on the haversine sphere (km)
KM_PER_DEGREE: float = math.radians(1.0) * EARTH_RADIUS_KM

# boxes are widened by this factor so float rounding never clips the circle
BOUNDS_MARGIN: float = 1.01

Bounds = Tuple[float, float, float, float]  # (min_lon, min_lat, max_lon, max_lat)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    r_lat1 = math.radians(lat1)
    r_lat2 = math.radians(lat2)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(r_lat1) * math.cos(r_lat2) * math.sin(d_lon / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def radius_bounds(latitude: float, longitude: float, radius_km: float) -> List[Bounds]:
    """
    Convert a radius around a point into degree bounding boxes.

    The boxes over-cover the circle; callers still filter by haversine. A box
    that crosses the antimeridian is split in two. Near the poles every
    longitude is included.
    """
    lat_delta = radius_km / KM_PER_DEGREE * BOUNDS_MARGIN
    min_lat = max(-90.0, latitude - lat_delta)
    max_lat = min(90.0, latitude + lat_delta)

    # widest parallel inside the box decides the longitude span
    widest = max(abs(min_lat), abs(max_lat))
    cos_lat = math.cos(math.radians(widest))
    if max_lat >= 90.0 or min_lat <= -90.0 or cos_lat < 1e-6:
        return [(-180.0, min_lat, 180.0, max_lat)]

    lon_delta = radius_km / (KM_PER_DEGREE * cos_lat) * BOUNDS_MARGIN
    if lon_delta >= 180.0:
        return [(-180.0, min_lat, 180.0, max_lat)]

    min_lon = longitude - lon_delta
    max_lon = longitude + lon_delta
    if min_lon < -180.0:
        return [(-180.0, min_lat, max_lon, max_lat), (min_lon + 360.0, min_lat, 180.0, max_lat)]
    if max_lon > 180.0:
        return [(min_lon, min_lat, 180.0, max_lat), (-180.0, min_lat, max_lon - 360.0, max_lat)]
    return [(min_lon, min_lat, max_lon, max_lat)]


def bounds_geometry(bounds: Bounds) -> Polygon:
    """Shapely rectangle for a bounding box."""
    return box(*bounds)


def point(longitude: float, latitude: float) -> Point:
    """Shapely point in (x=longitude, y=latitude) order."""
    return Point(longitude, latitude)


def parse_boundary(boundary: Any) -> BaseGeometry:
    """
    Normalize a region boundary to a Shapely polygon.

    Accepts a GeoJSON Polygon/MultiPolygon mapping, an existing Shapely
    polygon, or a sequence of (longitude, latitude) pairs for the outer ring.
    """
    if isinstance(boundary, (Polygon, MultiPolygon)):
        geometry = boundary
    elif isinstance(boundary, Mapping):
        if boundary.get("type") not in ("Polygon", "MultiPolygon"):
            raise ValidationError("boundary must be a GeoJSON Polygon or MultiPolygon",
                                  geometry_type=boundary.get("type"))
        try:
            geometry = shape(boundary)
        except (KeyError, TypeError, ValueError, IndexError, GEOSException) as exc:
            raise ValidationError(f"invalid GeoJSON boundary: {exc}") from exc
    elif isinstance(boundary, Sequence) and not isinstance(boundary, (str, bytes)):
        try:
            ring = [(float(lon), float(lat)) for lon, lat in boundary]
        except (TypeError, ValueError) as exc:
            raise ValidationError("boundary ring must be (longitude, latitude) pairs") from exc
        if len(ring) < 3:
            raise ValidationError("boundary ring needs at least three points")
        geometry = Polygon(ring)
    else:
        raise ValidationError("unsupported boundary type", boundary_type=type(boundary).__name__)

    if geometry.is_empty or not geometry.is_valid:
        raise ValidationError("boundary polygon is empty or self-intersecting")
    return geometry


def covers(geometry: BaseGeometry, longitude: float, latitude: float) -> bool:
    """True if the point lies inside the geometry or on its edge."""
    return geometry.covers(point(longitude, latitude))
