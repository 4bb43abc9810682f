#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Sequence

from pyproj import Geod
from shapely.geometry import Polygon

from api_errors import InvalidGeometry

GEOD = Geod(ellps="WGS84")


@dataclass(frozen=True)
class BoundingBox:
    west: float
    south: float
    east: float
    north: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def bounding_box(ring: Sequence[Sequence[float]]) -> BoundingBox:
    """Single pass min/max over a ring of (lon, lat) pairs."""
    if ring is None or len(ring) < 3:
        raise InvalidGeometry("Ring must contain at least 3 points.")

    west = south = math.inf
    east = north = -math.inf
    distinct = set()
    for i, pt in enumerate(ring):
        if not isinstance(pt, (list, tuple)) or len(pt) != 2:
            raise InvalidGeometry(f"Point {i} is not a [lon, lat] pair.")
        lon, lat = pt
        if isinstance(lon, bool) or isinstance(lat, bool):
            raise InvalidGeometry(f"Point {i} contains non-numeric values.")
        try:
            lon = float(lon)
            lat = float(lat)
        except (TypeError, ValueError, OverflowError):
            raise InvalidGeometry(f"Point {i} contains non-numeric values.")
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise InvalidGeometry(f"Point {i} contains non-finite values.")
        distinct.add((lon, lat))

        if lon < west:
            west = lon
        if lon > east:
            east = lon
        if lat < south:
            south = lat
        if lat > north:
            north = lat

    if len(distinct) < 3:
        raise InvalidGeometry("Ring must contain at least 3 distinct points.")
    return BoundingBox(west=west, south=south, east=east, north=north)


def polygon_bounding_box(polygon: Sequence[Sequence[Sequence[float]]]) -> BoundingBox:
    """Bounding box of the outer (first) ring."""
    if not polygon:
        raise InvalidGeometry("Polygon has no rings.")
    return bounding_box(polygon[0])


def to_feature_collection(polygon: List[Any]) -> Dict[str, Any]:
    # aggregate_spatial expects a geometry collection, not a bare polygon
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": polygon,
                },
            }
        ],
    }


def aoi_area_km2(polygon: Sequence[Sequence[Sequence[float]]]) -> float:
    """Geodesic area on the WGS84 ellipsoid; holes are subtracted."""
    if not polygon:
        return 0.0
    polygon_bounding_box(polygon)
    try:
        geom = Polygon(polygon[0], holes=list(polygon[1:]) or None)
    except Exception as e:
        raise InvalidGeometry(f"Invalid polygon: {e}") from e
    if geom.is_empty:
        return 0.0
    area_m2, _ = GEOD.geometry_area_perimeter(geom)
    return abs(float(area_m2)) / 1_000_000.0
