#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
DEM result reshaping: gridded elevation JSON -> point list + statistics.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from api_errors import TransformError

_log = logging.getLogger(__name__)

# Provider nodata conventions, applied literally (SRTM 19.5, generic -9999, int16 -32768).
NODATA_SENTINELS = (19.5, -9999.0, -32768.0)
MIN_ELEVATION_M = -1000.0
MAX_ELEVATION_M = 10000.0


def _round_half_up(value: float, ndigits: int) -> float:
    f = 10 ** ndigits
    return math.floor(value * f + 0.5) / f


@dataclass
class ElevationGrid:
    x_coords: List[float]
    y_coords: List[float]
    values: List[List[Any]]  # [y][x]
    crs: Optional[str] = None
    nodata: Any = None

    @classmethod
    def from_response(cls, raw: Any) -> Optional["ElevationGrid"]:
        """
        Read an xarray-style JSON response:
          {"data": [band][y][x] | [y][x], "coords": {"x": {"data": [...]}, "y": {"data": [...]}}, "attrs": {...}}
        """
        if not isinstance(raw, dict):
            return None
        data = raw.get("data")
        if not isinstance(data, list) or not data:
            return None

        # first (and only) band
        values = data[0] if isinstance(data[0], list) and data[0] and isinstance(data[0][0], list) else data
        if not isinstance(values, list):
            return None

        coords = raw.get("coords") or {}
        x_coords = ((coords.get("x") or {}).get("data")) or []
        y_coords = ((coords.get("y") or {}).get("data")) or []
        if not x_coords or not y_coords:
            _log.warning("No coordinate data found in DEM response")
            return None

        attrs = raw.get("attrs") or {}
        return cls(
            x_coords=list(x_coords),
            y_coords=list(y_coords),
            values=values,
            crs=attrs.get("crs"),
            nodata=attrs.get("nodata"),
        )


@dataclass
class ElevationPoint:
    x: float
    y: float
    elevation: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "elevation": self.elevation}


@dataclass
class ElevationSummary:
    points: List[ElevationPoint]
    min: float
    max: float
    mean: float
    median: float
    stddev: float
    count: int
    units: str = "meters"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def statistics(self) -> Dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "median": self.median,
            "stddev": self.stddev,
            "count": self.count,
            "units": self.units,
        }


def is_valid_elevation(value: Any) -> bool:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    v = float(value)
    if not math.isfinite(v):
        return False
    if v in NODATA_SENTINELS:
        return False
    return MIN_ELEVATION_M < v < MAX_ELEVATION_M


def _statistics(values: Sequence[float]) -> Dict[str, float]:
    arr = np.asarray(values, dtype=np.float64)
    return {
        "min": float(np.min(arr)),
        "max": float(np.max(arr)),
        "mean": float(np.mean(arr)),
        # np.median averages the two middle values for even counts
        "median": float(np.median(arr)),
        # population stddev (ddof=0)
        "stddev": float(np.std(arr)),
    }


def _transform(grid: ElevationGrid) -> Optional[ElevationSummary]:
    if grid.nodata is not None:
        _log.debug("Provider nodata=%r reported; sentinel list %s applied instead", grid.nodata, NODATA_SENTINELS)

    nx, ny = len(grid.x_coords), len(grid.y_coords)
    points: List[ElevationPoint] = []
    valid: List[float] = []

    for y_idx, row in enumerate(grid.values):
        if not isinstance(row, list) or y_idx >= ny:
            continue
        for x_idx, value in enumerate(row):
            if x_idx >= nx or not is_valid_elevation(value):
                continue
            points.append(
                ElevationPoint(
                    x=_round_half_up(float(grid.x_coords[x_idx]), 6),
                    y=_round_half_up(float(grid.y_coords[y_idx]), 6),
                    elevation=_round_half_up(float(value), 2),
                )
            )
            valid.append(float(value))

    if not valid:
        return None

    try:
        stats = _statistics(valid)
        xs = [float(v) for v in grid.x_coords]
        ys = [float(v) for v in grid.y_coords]
    except (TypeError, ValueError) as e:
        raise TransformError(str(e)) from e

    metadata = {
        "gridSize": {"width": nx, "height": ny},
        "bounds": {"minX": min(xs), "maxX": max(xs), "minY": min(ys), "maxY": max(ys)},
        "crs": grid.crs or "Unknown",
    }

    return ElevationSummary(
        points=points,
        min=_round_half_up(stats["min"], 2),
        max=_round_half_up(stats["max"], 2),
        mean=_round_half_up(stats["mean"], 2),
        median=_round_half_up(stats["median"], 2),
        stddev=_round_half_up(stats["stddev"], 2),
        count=len(valid),
        metadata=metadata,
    )


def transform(grid: Optional[ElevationGrid]) -> Optional[ElevationSummary]:
    """
    Valid cells -> points + statistics. Returns None for "no data"
    (no valid cells, malformed input); never raises.
    """
    if grid is None:
        return None
    try:
        return _transform(grid)
    except Exception as e:
        _log.warning("Failed to transform DEM data: %s", e)
        return None


def transform_response(raw: Any) -> Optional[ElevationSummary]:
    try:
        grid = ElevationGrid.from_response(raw)
    except Exception as e:
        _log.warning("Failed to read DEM grid: %s", e)
        return None
    return transform(grid)
