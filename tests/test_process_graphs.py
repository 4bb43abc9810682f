import json
import math
from datetime import date, datetime

import pytest

from api_errors import InvalidDateRange
from geo_ops import BoundingBox, to_feature_collection
from process_graphs import (
    build_dem_graph,
    build_ndvi_graph,
    evaluate_ndvi_reducer,
    normalize_date,
    normalize_date_range,
    wrap_process,
)

BBOX = BoundingBox(west=7.1, south=50.7, east=7.11, north=50.71)


@pytest.fixture
def ndvi_graph(square):
    return build_ndvi_graph(["2020-01-01", "2020-03-31"], to_feature_collection(square))


class TestDates:
    @pytest.mark.parametrize(
        ["value", "expected"],
        [
            ("2020-01-15", "2020-01-15"),
            ("2020-01-15T10:20:30", "2020-01-15"),
            ("2020-01-15T10:20:30Z", "2020-01-15"),
            ("2020-01-15T10:20:30.123+00:00", "2020-01-15"),
            # converted to UTC first
            ("2020-01-31T23:30:00-02:00", "2020-02-01"),
            (date(2021, 6, 1), "2021-06-01"),
            (datetime(2021, 6, 1, 23, 59), "2021-06-01"),
            (0, "1970-01-01"),
            (1577836800000, "2020-01-01"),
        ],
    )
    def test_normalize_date(self, value, expected):
        assert normalize_date(value) == expected

    @pytest.mark.parametrize("value", ["", "not a date", "2020-13-01", "2020-02-30", None, True, [2020, 1, 1]])
    def test_normalize_date_invalid(self, value):
        with pytest.raises(InvalidDateRange):
            normalize_date(value)

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, 1e300, 10**20, 10**400])
    def test_normalize_date_out_of_range_epoch(self, value):
        with pytest.raises(InvalidDateRange):
            normalize_date(value)

    def test_start_after_end(self):
        with pytest.raises(InvalidDateRange):
            normalize_date_range("2020-02-01", "2020-01-01")

    def test_equal_dates_accepted(self):
        assert normalize_date_range("2020-01-01", "2020-01-01") == ("2020-01-01", "2020-01-01")


class TestNdviGraph:
    def test_structure(self, ndvi_graph, square):
        assert set(ndvi_graph) == {"loadcollection1", "reducedimension1", "aggregatespatial1"}

        load = ndvi_graph["loadcollection1"]
        assert load["process_id"] == "load_collection"
        assert load["arguments"] == {
            "bands": ["B04", "B08"],
            "id": "SENTINEL2_L2A",
            "spatial_extent": None,
            "temporal_extent": ["2020-01-01", "2020-03-31"],
        }

        reduce = ndvi_graph["reducedimension1"]
        assert reduce["arguments"]["dimension"] == "bands"
        assert reduce["arguments"]["data"] == {"from_node": "loadcollection1"}

        agg = ndvi_graph["aggregatespatial1"]
        assert agg["result"] is True
        assert agg["arguments"]["data"] == {"from_node": "reducedimension1"}
        assert agg["arguments"]["geometries"] == to_feature_collection(square)
        mean = agg["arguments"]["reducer"]["process_graph"]["mean1"]
        assert mean == {"process_id": "mean", "arguments": {"data": {"from_parameter": "data"}}, "result": True}

    def test_band_order(self, ndvi_graph):
        pg = ndvi_graph["reducedimension1"]["arguments"]["reducer"]["process_graph"]
        # arrayelement1 is NIR (B08 at index 1), arrayelement2 is RED (B04 at index 0)
        assert pg["arrayelement1"]["arguments"]["index"] == 1
        assert pg["arrayelement2"]["arguments"]["index"] == 0
        assert pg["subtract1"]["arguments"] == {"x": {"from_node": "arrayelement1"}, "y": {"from_node": "arrayelement2"}}
        assert pg["divide1"]["result"] is True

    def test_ndvi_sign(self, ndvi_graph):
        # [RED, NIR]
        assert evaluate_ndvi_reducer(ndvi_graph, [0.2, 0.8]) == pytest.approx(0.6)
        assert evaluate_ndvi_reducer(ndvi_graph, [0.8, 0.2]) == pytest.approx(-0.6)

    def test_deterministic(self, square):
        geometry = to_feature_collection(square)
        g1 = build_ndvi_graph(["2020-01-01", "2020-03-31"], geometry)
        g2 = build_ndvi_graph(["2020-01-01", "2020-03-31"], geometry)
        assert json.dumps(g1) == json.dumps(g2)

    def test_only_dates_differ(self, square):
        geometry = to_feature_collection(square)
        g1 = build_ndvi_graph(["2020-01-01", "2020-03-31"], geometry)
        g2 = build_ndvi_graph(["2021-05-01", "2021-05-02"], geometry)
        assert g1 != g2
        g2["loadcollection1"]["arguments"]["temporal_extent"] = ["2020-01-01", "2020-03-31"]
        assert json.dumps(g1) == json.dumps(g2)

    def test_dates_normalized(self, square):
        g = build_ndvi_graph(["2020-01-01T12:00:00Z", "2020-01-02T00:00:00"], to_feature_collection(square))
        assert g["loadcollection1"]["arguments"]["temporal_extent"] == ["2020-01-01", "2020-01-02"]

    def test_date_order(self, square):
        with pytest.raises(InvalidDateRange):
            build_ndvi_graph(["2020-02-01", "2020-01-01"], to_feature_collection(square))


class TestDemGraph:
    def test_json(self):
        g = build_dem_graph("COPERNICUS_30", BBOX, "JSON")
        assert list(g) == ["load", "reduce", "save"]
        assert g["load"] == {
            "process_id": "load_collection",
            "arguments": {
                "id": "COPERNICUS_30",
                "spatial_extent": {"west": 7.1, "south": 50.7, "east": 7.11, "north": 50.71},
                "temporal_extent": None,
            },
        }
        assert g["reduce"]["process_id"] == "reduce_dimension"
        assert g["reduce"]["arguments"]["dimension"] == "t"
        assert g["reduce"]["arguments"]["data"] == {"from_node": "load"}
        assert g["save"] == {
            "process_id": "save_result",
            "arguments": {"data": {"from_node": "reduce"}, "format": "JSON"},
            "result": True,
        }

    @pytest.mark.parametrize("fmt", ["GTiff", "PNG"])
    def test_binary(self, fmt):
        g = build_dem_graph("COPERNICUS_30", BBOX, fmt)
        assert list(g) == ["load", "save"]
        assert g["save"]["arguments"] == {"data": {"from_node": "load"}, "format": fmt}

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            build_dem_graph("COPERNICUS_30", BBOX, "NetCDF")


def test_wrap_process():
    assert wrap_process({"a": 1}) == {"process": {"process_graph": {"a": 1}}}
