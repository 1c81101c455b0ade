"""
Pure polygon mutation operations.

Every function returns new coordinate lists and leaves its input untouched,
so callers can keep the previous value for undo or diffing. Operations that
would break the polygon invariants raise a :class:`GeometryValidationError`
subclass instead of returning a partially modified result.
"""

from __future__ import annotations

from typing import Final, List, NamedTuple, Optional, Sequence, Tuple

from mapeditor.domain.geo import (
    WEB_MERCATOR_MAX_LAT,
    Coordinates,
    Parts,
    Ring,
    as_parts,
    from_parts,
    is_multipolygon,
    is_within_bounds,
)

MIN_VERTICES: Final[int] = 3
AUTO_DENSIFY_THRESHOLD: Final[int] = 10
MAX_DENSIFY_VERTICES: Final[int] = 100

LATBAND_LNG_BUFFER: Final[float] = 0.4
LATBAND_MAX_LAT: Final[float] = 85.0
LATBAND_MIN_GAP: Final[float] = 0.5
LATBAND_INITIAL_UPPER: Final[float] = 3.0
LATBAND_INITIAL_LOWER: Final[float] = -3.0


class GeometryValidationError(Exception):
    """Base exception raised when a mutation would produce invalid geometry."""


class MinVertexViolation(GeometryValidationError):
    """Raised when a ring would drop below three vertices."""


class OutOfBoundsError(GeometryValidationError):
    """Raised when a vertex would leave the valid geographic bounds."""


class VertexKey(NamedTuple):
    """Address of one vertex inside a (multi)polygon."""

    part: int
    vertex: int


def _point(value: Sequence[float]) -> Tuple[float, float]:
    return float(value[0]), float(value[1])


def _check_bounds(lat: float, lng: float) -> None:
    if not is_within_bounds(lat, lng):
        raise OutOfBoundsError(
            f"Coordinate ({lat:.6f}, {lng:.6f}) is outside valid bounds "
            f"(±{WEB_MERCATOR_MAX_LAT}° lat, ±180° lng)"
        )


def midpoint(a: Sequence[float], b: Sequence[float]) -> Tuple[float, float]:
    """Linear midpoint in lat/lng space (not a great-circle midpoint)."""
    return (a[0] + b[0]) / 2, (a[1] + b[1]) / 2


def append_vertex(ring: Ring, point: Sequence[float]) -> Ring:
    lat, lng = _point(point)
    _check_bounds(lat, lng)
    return [*ring, (lat, lng)]


def move_vertex(coordinates: Coordinates, key: VertexKey, point: Sequence[float]) -> Coordinates:
    """Replace a single vertex, keeping the polygon/multipolygon shape."""
    lat, lng = _point(point)
    _check_bounds(lat, lng)
    multi = is_multipolygon(coordinates)
    parts = as_parts(coordinates)
    _check_key(parts, key)
    part = list(parts[key.part])
    part[key.vertex] = (lat, lng)
    parts[key.part] = part
    return from_parts(parts, multi)


def insert_midpoint(ring: Ring, after_index: int) -> Ring:
    """Insert the midpoint of the edge starting at ``after_index``."""
    if not 0 <= after_index < len(ring):
        raise IndexError(f"Edge index {after_index} out of range for {len(ring)} vertices")
    current = ring[after_index]
    following = ring[(after_index + 1) % len(ring)]
    return [*ring[: after_index + 1], midpoint(current, following), *ring[after_index + 1 :]]


def delete_vertex(ring: Ring, index: int) -> Ring:
    if len(ring) <= MIN_VERTICES:
        raise MinVertexViolation(
            f"Cannot delete vertex: polygon must have at least {MIN_VERTICES} vertices"
        )
    if not 0 <= index < len(ring):
        raise IndexError(f"Vertex index {index} out of range for {len(ring)} vertices")
    return [vertex for i, vertex in enumerate(ring) if i != index]


def densify(ring: Ring, skip_at: Optional[int] = None) -> Ring:
    """
    Insert a midpoint after every vertex, doubling the vertex count.

    Args:
        ring: Polygon ring.
        skip_at: When given, rings already holding at least this many vertices
            are returned unchanged. Used by the automatic densify on entering
            edit mode so repeated invocations cannot grow the ring forever.

    Raises:
        GeometryValidationError: If an explicit densify would exceed
            ``MAX_DENSIFY_VERTICES``.
    """
    if len(ring) < MIN_VERTICES:
        return list(ring)
    if skip_at is not None and len(ring) >= skip_at:
        return list(ring)
    if skip_at is None and len(ring) >= MAX_DENSIFY_VERTICES:
        raise GeometryValidationError(
            f"Cannot add more vertices: polygon already has {MAX_DENSIFY_VERTICES}+ vertices"
        )

    densified: Ring = []
    for i, current in enumerate(ring):
        following = ring[(i + 1) % len(ring)]
        densified.append(current)
        densified.append(midpoint(current, following))
    return densified


def decimate(ring: Ring) -> Ring:
    """Keep the vertices at even indices."""
    kept = [vertex for i, vertex in enumerate(ring) if i % 2 == 0]
    if len(kept) < MIN_VERTICES:
        raise MinVertexViolation(
            f"Cannot remove more vertices: polygon must have at least {MIN_VERTICES} vertices"
        )
    return kept


def translate(coordinates: Coordinates, d_lat: float, d_lng: float) -> Coordinates:
    """Shift every vertex of every part by the same delta."""
    multi = is_multipolygon(coordinates)
    parts = as_parts(coordinates)
    moved: Parts = []
    for part in parts:
        shifted = [(lat + d_lat, lng + d_lng) for lat, lng in part]
        for lat, lng in shifted:
            _check_bounds(lat, lng)
        moved.append(shifted)
    return from_parts(moved, multi)


def close_ring(ring: Ring) -> Ring:
    """Append the first vertex when the ring is not explicitly closed."""
    if not ring:
        return []
    first = _point(ring[0])
    last = _point(ring[-1])
    if first == last:
        return [_point(vertex) for vertex in ring]
    return [*(_point(vertex) for vertex in ring), first]


def open_ring(ring: Ring) -> Ring:
    """Drop an explicit closing duplicate."""
    points = [_point(vertex) for vertex in ring]
    if len(points) > 1 and points[0] == points[-1]:
        return points[:-1]
    return points


def rectangle_from_corners(a: Sequence[float], b: Sequence[float]) -> Ring:
    """Axis-aligned rectangle from two opposite corners."""
    lat1, lng1 = _point(a)
    lat2, lng2 = _point(b)
    return [(lat1, lng1), (lat1, lng2), (lat2, lng2), (lat2, lng1)]


def latitude_band(upper: float, lower: float) -> Ring:
    """Full-width band between two latitudes, explicitly closed (5 vertices)."""
    min_lng = -180.0 + LATBAND_LNG_BUFFER
    max_lng = 180.0 - LATBAND_LNG_BUFFER
    north = min(LATBAND_MAX_LAT, upper)
    south = max(-LATBAND_MAX_LAT, lower)
    return [
        (south, min_lng),
        (north, min_lng),
        (north, max_lng),
        (south, max_lng),
        (south, min_lng),
    ]


def adjust_band_bounds(upper: float, lower: float, upper_delta: float = 0.0, lower_delta: float = 0.0) -> Tuple[float, float]:
    """Move the band bounds, keeping them ordered and apart."""
    if upper_delta:
        upper = max(lower + LATBAND_MIN_GAP, min(LATBAND_MAX_LAT, upper + upper_delta))
    if lower_delta:
        lower = min(upper - LATBAND_MIN_GAP, max(-LATBAND_MAX_LAT, lower + lower_delta))
    return upper, lower


# Multipolygon-aware wrappers keyed by part index.

def insert_midpoint_in(coordinates: Coordinates, part: int, edge: int) -> Coordinates:
    multi = is_multipolygon(coordinates)
    parts = as_parts(coordinates)
    _check_part(parts, part)
    parts[part] = insert_midpoint(parts[part], edge)
    return from_parts(parts, multi)


def delete_vertex_in(coordinates: Coordinates, key: VertexKey) -> Coordinates:
    """Delete a vertex; the three-vertex floor applies to the addressed part."""
    multi = is_multipolygon(coordinates)
    parts = as_parts(coordinates)
    _check_key(parts, key)
    parts[key.part] = delete_vertex(parts[key.part], key.vertex)
    return from_parts(parts, multi)


def densify_all(coordinates: Coordinates, skip_at: Optional[int] = None) -> Coordinates:
    """
    Densify every part.

    With ``skip_at`` the whole polygon is left alone as soon as one part has
    reached the threshold.
    """
    multi = is_multipolygon(coordinates)
    parts = as_parts(coordinates)
    if skip_at is not None and any(len(part) >= skip_at for part in parts):
        return from_parts(parts, multi)
    return from_parts([densify(part, skip_at=skip_at) for part in parts], multi)


def decimate_all(coordinates: Coordinates) -> Coordinates:
    multi = is_multipolygon(coordinates)
    parts = as_parts(coordinates)
    return from_parts([decimate(part) for part in parts], multi)


def validate_coordinates(coordinates: Coordinates) -> Coordinates:
    """
    Check a committed polygon: every part has at least three vertices and
    lies within bounds. Returns the coordinates normalised to float tuples.
    """
    if not coordinates:
        raise MinVertexViolation("Polygon has no vertices")
    multi = is_multipolygon(coordinates)
    parts = as_parts(coordinates)
    for part in parts:
        if len(open_ring(part)) < MIN_VERTICES:
            raise MinVertexViolation(
                f"Each polygon part needs at least {MIN_VERTICES} vertices, got {len(part)}"
            )
        for lat, lng in part:
            _check_bounds(lat, lng)
    return from_parts(parts, multi)


def vertex_count(coordinates: Coordinates) -> int:
    return sum(len(part) for part in as_parts(coordinates))


def _check_part(parts: List[Ring], part: int) -> None:
    if not 0 <= part < len(parts):
        raise IndexError(f"Part index {part} out of range for {len(parts)} parts")


def _check_key(parts: List[Ring], key: VertexKey) -> None:
    _check_part(parts, key.part)
    if not 0 <= key.vertex < len(parts[key.part]):
        raise IndexError(
            f"Vertex index {key.vertex} out of range for {len(parts[key.part])} vertices"
        )
