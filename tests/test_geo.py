import math

import pytest
from shapely.geometry import Polygon

from weather_cache.errors import ValidationError
from weather_cache.geo import KM_PER_DEGREE, covers, haversine_km, parse_boundary, radius_bounds


SQUARE = [(-75.0, 40.0), (-74.0, 40.0), (-74.0, 41.0), (-75.0, 41.0)]


def test_haversine_one_degree_of_latitude():
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.195, abs=0.01)
    assert haversine_km(40.0, -74.0, 40.0, -74.0) == 0.0


def test_radius_bounds_single_box_contains_center():
    (box,) = radius_bounds(40.0, -74.0, 50.0)
    min_lon, min_lat, max_lon, max_lat = box
    assert min_lon < -74.0 < max_lon
    assert max_lat - min_lat == pytest.approx(2 * 50.0 / KM_PER_DEGREE * 1.01)


@pytest.mark.parametrize("latitude", [0.0, 40.0, -60.0])
def test_radius_bounds_cover_points_just_inside_radius(latitude):
    radius = 50.0
    north = latitude + 0.4495
    east = 0.4495 / math.cos(math.radians(latitude))
    for lat, lon in ((north, 0.0), (latitude, east)):
        assert haversine_km(latitude, 0.0, lat, lon) < radius
        assert any(
            b[0] <= lon <= b[2] and b[1] <= lat <= b[3]
            for b in radius_bounds(latitude, 0.0, radius)
        )


def test_radius_bounds_split_at_antimeridian():
    boxes = radius_bounds(0.0, 179.9, 50.0)
    assert len(boxes) == 2
    east, west = boxes
    assert east[2] == 180.0
    assert west[0] == -180.0
    assert west[2] == pytest.approx(-179.65, abs=0.01)


def test_radius_bounds_near_pole_spans_all_longitudes():
    (box,) = radius_bounds(89.9, 10.0, 50.0)
    assert box[0] == -180.0 and box[2] == 180.0
    assert box[3] == 90.0


def test_parse_boundary_accepts_ring_geojson_and_shapely():
    from_ring = parse_boundary(SQUARE)
    from_geojson = parse_boundary({
        "type": "Polygon",
        "coordinates": [[list(p) for p in SQUARE] + [list(SQUARE[0])]],
    })
    from_shapely = parse_boundary(Polygon(SQUARE))
    assert from_ring.equals(from_geojson)
    assert from_ring.equals(from_shapely)


@pytest.mark.parametrize("bad", [
    [(0.0, 0.0), (1.0, 1.0)],
    {"type": "Point", "coordinates": [0.0, 0.0]},
    {"type": "Polygon", "coordinates": []},
    [(0, 0), (1, 1), (1, 0), (0, 1)],  # bow tie
    "POLYGON",
    42,
])
def test_parse_boundary_rejects_invalid_input(bad):
    with pytest.raises(ValidationError):
        parse_boundary(bad)


def test_covers_includes_edges():
    polygon = parse_boundary(SQUARE)
    assert covers(polygon, -74.5, 40.5)
    assert covers(polygon, -74.0, 40.5)
    assert not covers(polygon, -73.9, 40.5)
