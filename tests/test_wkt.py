from __future__ import annotations

import pytest
from shapely import wkt as shapely_wkt

from mapeditor.domain.geo import WEB_MERCATOR_MAX_LAT
from mapeditor.domain.wkt import (
    WKTParseError,
    coordinates_to_wkt,
    parse_wkt_geometry,
    rule_from_wkt,
    wkt_to_coordinates,
)

SQUARE = [(10.0, 20.0), (10.0, 30.0), (15.0, 30.0), (15.0, 20.0)]


class TestImport:

    def test_polygon_swaps_axis_order(self):
        coords, multi = wkt_to_coordinates("POLYGON ((20 10, 30 10, 30 15, 20 15, 20 10))")
        assert not multi
        assert coords == [(10.0, 20.0), (10.0, 30.0), (15.0, 30.0), (15.0, 20.0)]

    def test_multipolygon(self):
        coords, multi = wkt_to_coordinates(
            "MULTIPOLYGON (((0 0, 1 0, 1 1, 0 0)), ((10 10, 11 10, 11 11, 10 10)))"
        )
        assert multi
        assert len(coords) == 2
        assert coords[1][0] == (10.0, 10.0)

    def test_holes_are_kept_when_parsing(self):
        polygons = parse_wkt_geometry(
            "POLYGON ((0 0, 10 0, 10 10, 0 10, 0 0), (2 2, 4 2, 4 4, 2 2))"
        )
        assert len(polygons) == 1
        assert len(polygons[0].outer) == 4
        assert polygons[0].holes == [[(2.0, 2.0), (2.0, 4.0), (4.0, 4.0)]]

    def test_import_clamps_latitude(self):
        coords, _ = wkt_to_coordinates("POLYGON ((0 80, 10 80, 10 89, 0 89, 0 80))")
        assert max(lat for lat, _ in coords) == pytest.approx(WEB_MERCATOR_MAX_LAT)

    @pytest.mark.parametrize("text", ["", "   ", "not wkt", "POINT (1 2)", "LINESTRING (0 0, 1 1)"])
    def test_rejects_unusable_input(self, text):
        with pytest.raises(WKTParseError):
            wkt_to_coordinates(text)

    def test_rule_from_wkt(self):
        rule = rule_from_wkt("r", "NATIVE", "POLYGON ((0 0, 10 0, 10 10, 0 10, 0 0), (2 2, 4 2, 4 4, 2 2))")
        assert rule.annotation == "NATIVE"
        assert len(rule.polygons[0].holes) == 1


class TestExport:

    def test_polygon_is_closed_lng_lat(self):
        geometry = shapely_wkt.loads(coordinates_to_wkt(SQUARE))
        ring = list(geometry.exterior.coords)
        assert ring[0] == ring[-1] == (20.0, 10.0)
        assert len(ring) == 5

    def test_multipolygon_export(self):
        text = coordinates_to_wkt([SQUARE, [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0)]])
        geometry = shapely_wkt.loads(text)
        assert geometry.geom_type == "MultiPolygon"
        assert len(geometry.geoms) == 2

    def test_inverted_export_is_world_with_hole(self):
        geometry = shapely_wkt.loads(coordinates_to_wkt(SQUARE, inverted=True))
        assert geometry.geom_type == "Polygon"
        assert geometry.bounds == pytest.approx((-180, -WEB_MERCATOR_MAX_LAT, 180, WEB_MERCATOR_MAX_LAT))
        hole = list(geometry.interiors[0].coords)
        assert hole[0] == (20.0, 10.0)

    def test_inverted_multipolygon_export_keeps_world_boundary(self):
        triangle = [(-5.0, -5.0), (-5.0, 5.0), (0.0, 0.0)]
        geometry = shapely_wkt.loads(coordinates_to_wkt([SQUARE, triangle], inverted=True))
        assert geometry.geom_type == "Polygon"
        assert geometry.bounds == pytest.approx((-180, -WEB_MERCATOR_MAX_LAT, 180, WEB_MERCATOR_MAX_LAT))
        assert len(geometry.interiors) == 2
        assert [ring.coords[0] for ring in geometry.interiors] == [(20.0, 10.0), (-5.0, -5.0)]
        assert not geometry.contains(shapely_wkt.loads("POINT (25 12)"))
        assert geometry.contains(shapely_wkt.loads("POINT (100 50)"))

    def test_round_trip(self):
        coords, multi = wkt_to_coordinates(coordinates_to_wkt(SQUARE))
        assert not multi
        assert coords == SQUARE

    def test_empty_exports_empty_string(self):
        assert coordinates_to_wkt([]) == ""
        assert coordinates_to_wkt([(0.0, 0.0), (1.0, 1.0)]) == ""
