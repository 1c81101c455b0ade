"""
WKT import and export for polygons and multipolygons.

WKT is written ``lng lat``; the application works in ``(lat, lng)``. Imported
coordinates are clamped to Web Mercator latitude and wrapped into [-180, 180]
longitude. Exported rings are always explicitly closed.
"""

from __future__ import annotations

from typing import List, Tuple

from shapely import wkt as shapely_wkt
from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, Polygon

from mapeditor.domain.geo import (
    WEB_MERCATOR_MAX_LAT,
    Coordinates,
    Ring,
    as_parts,
    clamp_coordinates,
    is_multipolygon,
)
from mapeditor.domain.mutations import MIN_VERTICES, close_ring, open_ring
from mapeditor.domain.polygons import AnnotationRule, PolygonWithHoles

# Outer ring used for inverted exports, in (lng, lat) order.
WORLD_BOUNDARY: List[Tuple[float, float]] = [
    (-180.0, -WEB_MERCATOR_MAX_LAT),
    (-90.0, -WEB_MERCATOR_MAX_LAT),
    (0.0, -WEB_MERCATOR_MAX_LAT),
    (90.0, -WEB_MERCATOR_MAX_LAT),
    (180.0, -WEB_MERCATOR_MAX_LAT),
    (180.0, WEB_MERCATOR_MAX_LAT),
    (90.0, WEB_MERCATOR_MAX_LAT),
    (0.0, WEB_MERCATOR_MAX_LAT),
    (-90.0, WEB_MERCATOR_MAX_LAT),
    (-180.0, WEB_MERCATOR_MAX_LAT),
    (-180.0, -WEB_MERCATOR_MAX_LAT),
]


class WKTParseError(ValueError):
    """Raised when a WKT string is not a usable POLYGON or MULTIPOLYGON."""


def _ring_from_wkt(coords) -> Ring:
    return open_ring([clamp_coordinates(lat, lng) for lng, lat, *_ in coords])


def _polygon_with_holes(polygon: Polygon) -> PolygonWithHoles:
    outer = _ring_from_wkt(polygon.exterior.coords)
    holes = [_ring_from_wkt(interior.coords) for interior in polygon.interiors]
    return PolygonWithHoles(
        outer=outer,
        holes=[hole for hole in holes if len(hole) >= MIN_VERTICES],
    )


def parse_wkt_geometry(text: str) -> List[PolygonWithHoles]:
    """
    Parse POLYGON or MULTIPOLYGON WKT into polygons with holes.

    Raises:
        WKTParseError: For empty input, other geometry types, or polygons with
            fewer than three distinct vertices.
    """
    if not text or not text.strip():
        raise WKTParseError("No WKT geometry was provided.")
    try:
        geometry = shapely_wkt.loads(text.strip())
    except (ShapelyError, ValueError) as exc:
        raise WKTParseError(f"Invalid WKT: {exc}") from exc

    if isinstance(geometry, Polygon):
        polygons = [geometry]
    elif isinstance(geometry, MultiPolygon):
        polygons = list(geometry.geoms)
    else:
        raise WKTParseError(f"Unsupported geometry type: {geometry.geom_type}")

    parsed = [_polygon_with_holes(polygon) for polygon in polygons if not polygon.is_empty]
    parsed = [polygon for polygon in parsed if len(polygon.outer) >= MIN_VERTICES]
    if not parsed:
        raise WKTParseError("Geometry has no polygon with at least 3 vertices.")
    return parsed


def wkt_to_coordinates(text: str) -> Tuple[Coordinates, bool]:
    """
    Import WKT as editable coordinates.

    Holes are dropped because editable polygons carry outer rings only. A
    single polygon comes back as a ring, several as a multipolygon.
    """
    polygons = parse_wkt_geometry(text)
    if len(polygons) == 1:
        return list(polygons[0].outer), False
    return [list(polygon.outer) for polygon in polygons], True


def _to_wkt_ring(ring: Ring) -> List[Tuple[float, float]]:
    closed = close_ring([clamp_coordinates(lat, lng) for lat, lng in ring])
    return [(lng, lat) for lat, lng in closed]


def coordinates_to_wkt(coordinates: Coordinates, inverted: bool = False) -> str:
    """
    Export coordinates as WKT.

    An inverted polygon is written as the world boundary with every part as
    one of its holes. Parts with fewer than three vertices are skipped; an empty
    string is returned when nothing remains.
    """
    if not coordinates:
        return ""
    parts = [part for part in as_parts(coordinates) if len(open_ring(part)) >= MIN_VERTICES]
    if not parts:
        return ""

    rings = [_to_wkt_ring(part) for part in parts]
    if inverted:
        return Polygon(WORLD_BOUNDARY, holes=rings).wkt
    if is_multipolygon(coordinates):
        return MultiPolygon([Polygon(ring) for ring in rings]).wkt
    return Polygon(rings[0]).wkt


def rule_from_wkt(rule_id: str, annotation: str, text: str) -> AnnotationRule:
    """Build a read-only annotation rule overlay from its WKT geometry."""
    return AnnotationRule(id=rule_id, annotation=annotation, polygons=parse_wkt_geometry(text))
