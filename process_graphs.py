#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Fixed openEO process graphs submitted to the /result endpoint.

Both builders are pure functions: the same arguments always yield the
same graph (and the same JSON serialization).
"""

import math
from datetime import date, datetime, timezone
from typing import Any, Dict, Sequence, Tuple, Union

from api_errors import InvalidDateRange
from geo_ops import BoundingBox

NDVI_BANDS = ("B04", "B08")  # index 0 = RED, index 1 = NIR
NDVI_COLLECTION = "SENTINEL2_L2A"

RED_INDEX = 0
NIR_INDEX = 1

JSON_FORMAT = "JSON"
BINARY_FORMATS = ("GTiff", "PNG")

DateLike = Union[str, date, datetime, int, float]


# -------------------------------
# Dates
# -------------------------------

def normalize_date(value: DateLike) -> str:
    """Return a calendar date as YYYY-MM-DD (UTC for zone-aware inputs)."""
    if isinstance(value, bool):
        raise InvalidDateRange(f"Invalid date: {value!r}")

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return value.isoformat()
    elif isinstance(value, (int, float)):
        # epoch milliseconds
        try:
            seconds = float(value) / 1000.0
            if not math.isfinite(seconds):
                raise ValueError(seconds)
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            raise InvalidDateRange(f"Invalid date: {value!r}")
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            raise InvalidDateRange("Empty date string.")
        if len(s) == 10:
            try:
                return date.fromisoformat(s).isoformat()
            except ValueError:
                raise InvalidDateRange(f"Invalid date: {value!r}")
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            raise InvalidDateRange(f"Invalid date: {value!r}")
    else:
        raise InvalidDateRange(f"Invalid date: {value!r}")

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.date().isoformat()


def normalize_date_range(start: DateLike, end: DateLike) -> Tuple[str, str]:
    s = normalize_date(start)
    e = normalize_date(end)
    if s > e:
        raise InvalidDateRange(
            "start_date must be earlier than or equal to end_date",
            details=['"value" failed custom validation because start_date must be earlier than or equal to end_date'],
        )
    return s, e


# -------------------------------
# NDVI
# -------------------------------

def _ndvi_reducer() -> Dict[str, Any]:
    return {
        "process_graph": {
            "arrayelement1": {
                "process_id": "array_element",
                "arguments": {"data": {"from_parameter": "data"}, "index": NIR_INDEX},
            },
            "arrayelement2": {
                "process_id": "array_element",
                "arguments": {"data": {"from_parameter": "data"}, "index": RED_INDEX},
            },
            "subtract1": {
                "process_id": "subtract",
                "arguments": {"x": {"from_node": "arrayelement1"}, "y": {"from_node": "arrayelement2"}},
            },
            "add1": {
                "process_id": "add",
                "arguments": {"x": {"from_node": "arrayelement1"}, "y": {"from_node": "arrayelement2"}},
            },
            "divide1": {
                "process_id": "divide",
                "arguments": {"x": {"from_node": "subtract1"}, "y": {"from_node": "add1"}},
                "result": True,
            },
        }
    }


def build_ndvi_graph(
    temporal_extent: Sequence[str],
    geometry: Dict[str, Any],
    bands: Sequence[str] = NDVI_BANDS,
    collection: str = NDVI_COLLECTION,
) -> Dict[str, Any]:
    """
    load_collection -> reduce_dimension(bands, NDVI) -> aggregate_spatial(mean).

    Spatial filtering happens through the aggregation geometry, so the
    load step carries a null spatial extent.
    """
    start, end = normalize_date_range(temporal_extent[0], temporal_extent[1])

    return {
        "loadcollection1": {
            "process_id": "load_collection",
            "arguments": {
                "bands": list(bands),
                "id": collection,
                "spatial_extent": None,
                "temporal_extent": [start, end],
            },
        },
        "reducedimension1": {
            "process_id": "reduce_dimension",
            "arguments": {
                "data": {"from_node": "loadcollection1"},
                "dimension": "bands",
                "reducer": _ndvi_reducer(),
            },
        },
        "aggregatespatial1": {
            "process_id": "aggregate_spatial",
            "arguments": {
                "data": {"from_node": "reducedimension1"},
                "geometries": geometry,
                "reducer": {
                    "process_graph": {
                        "mean1": {
                            "process_id": "mean",
                            "arguments": {"data": {"from_parameter": "data"}},
                            "result": True,
                        }
                    }
                },
            },
            "result": True,
        },
    }


_ARITHMETIC = {
    "subtract": lambda x, y: x - y,
    "add": lambda x, y: x + y,
    "divide": lambda x, y: x / y,
}


def evaluate_ndvi_reducer(graph: Dict[str, Any], values: Sequence[float]) -> float:
    """Evaluate the band reducer of an NDVI graph for one band vector."""
    pg = graph["reducedimension1"]["arguments"]["reducer"]["process_graph"]
    cache: Dict[str, float] = {}

    def arg(v: Any) -> Any:
        if isinstance(v, dict) and "from_node" in v:
            return node(v["from_node"])
        if isinstance(v, dict) and v.get("from_parameter") == "data":
            return values
        return v

    def node(name: str) -> float:
        if name in cache:
            return cache[name]
        spec = pg[name]
        pid = spec["process_id"]
        args = {k: arg(v) for k, v in spec["arguments"].items()}
        if pid == "array_element":
            out = args["data"][args["index"]]
        elif pid in _ARITHMETIC:
            out = _ARITHMETIC[pid](args["x"], args["y"])
        else:
            raise ValueError(f"Unsupported process in reducer: {pid}")
        cache[name] = out
        return out

    result = next(name for name, spec in pg.items() if spec.get("result"))
    return node(result)


# -------------------------------
# DEM
# -------------------------------

def build_dem_graph(collection_id: str, bbox: BoundingBox, fmt: str = JSON_FORMAT) -> Dict[str, Any]:
    """
    JSON: load -> reduce(t, mean) -> save.
    GTiff/PNG: load -> save.
    """
    if fmt != JSON_FORMAT and fmt not in BINARY_FORMATS:
        raise ValueError(f"Unsupported DEM format: {fmt}")

    graph: Dict[str, Any] = {
        "load": {
            "process_id": "load_collection",
            "arguments": {
                "id": collection_id,
                "spatial_extent": bbox.to_dict(),
                "temporal_extent": None,
            },
        },
    }

    source = "load"
    if fmt == JSON_FORMAT:
        graph["reduce"] = {
            "process_id": "reduce_dimension",
            "arguments": {
                "data": {"from_node": "load"},
                "dimension": "t",
                "reducer": {
                    "process_graph": {
                        "mean1": {
                            "process_id": "mean",
                            "arguments": {"data": {"from_parameter": "data"}},
                            "result": True,
                        }
                    }
                },
            },
        }
        source = "reduce"

    graph["save"] = {
        "process_id": "save_result",
        "arguments": {"data": {"from_node": source}, "format": fmt},
        "result": True,
    }
    return graph


def wrap_process(process_graph: Dict[str, Any]) -> Dict[str, Any]:
    """Request body for POST /result."""
    return {"process": {"process_graph": process_graph}}
