"""
Geographic primitives shared by the projection, editing and render layers.

Coordinates are always ``(lat, lng)`` in degrees. Conversion to the WKT
``lng lat`` order only happens at the import/export boundary.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Dict, Final, List, NamedTuple, Sequence, Tuple, Union

# Latitude at which Web Mercator's y diverges to infinity.
WEB_MERCATOR_MAX_LAT: Final[float] = 85.0511287798
MAX_LNG: Final[float] = 180.0
TILE_SIZE: Final[int] = 256
EARTH_RADIUS_M: Final[float] = 6371000.0
METERS_PER_DEGREE: Final[float] = 111000.0


class GeoPoint(NamedTuple):
    """Immutable latitude/longitude pair in degrees."""

    lat: float
    lng: float


Ring = List[Tuple[float, float]]
Parts = List[Ring]
Coordinates = Union[Ring, Parts]


class BoundingBox(NamedTuple):
    north: float
    south: float
    east: float
    west: float

    def to_json(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


class Annotation(str, Enum):
    """Categorical label attached to a polygon."""

    SUSPICIOUS = "SUSPICIOUS"
    NATIVE = "NATIVE"
    MANAGED = "MANAGED"
    FORMER = "FORMER"
    VAGRANT = "VAGRANT"

    @classmethod
    def parse(cls, value: Union[str, "Annotation", None]) -> "Annotation":
        """Parse a label case-insensitively, defaulting to SUSPICIOUS."""
        if isinstance(value, Annotation):
            return value
        if not value:
            return cls.SUSPICIOUS
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ValueError(f"Unknown annotation: {value}") from exc


class ColourSet(NamedTuple):
    fill: str
    stroke: str


_ANNOTATION_COLOURS: Final[Dict[str, ColourSet]] = {
    Annotation.SUSPICIOUS.value: ColourSet("#ef4444", "#dc2626"),  # red
    Annotation.NATIVE.value: ColourSet("#10b981", "#059669"),  # green
    Annotation.MANAGED.value: ColourSet("#3b82f6", "#2563eb"),  # blue
    Annotation.FORMER.value: ColourSet("#a855f7", "#9333ea"),  # purple
    Annotation.VAGRANT.value: ColourSet("#f97316", "#ea580c"),  # orange
}

UNKNOWN_ANNOTATION_COLOURS: Final[ColourSet] = ColourSet("#6b7280", "#4b5563")


def colour_for(annotation: Union[str, Annotation, None]) -> ColourSet:
    """
    Return the fill/stroke colours for an annotation.

    Every render call site goes through this lookup. Unknown or missing
    annotation values render grey (``UNKNOWN_ANNOTATION_COLOURS``).
    """
    if annotation is None:
        return UNKNOWN_ANNOTATION_COLOURS
    key = annotation.value if isinstance(annotation, Annotation) else str(annotation).upper()
    return _ANNOTATION_COLOURS.get(key, UNKNOWN_ANNOTATION_COLOURS)


def clamp_latitude(lat: float) -> float:
    """Clamp a latitude to the Web Mercator limit."""
    return max(-WEB_MERCATOR_MAX_LAT, min(WEB_MERCATOR_MAX_LAT, lat))


def normalize_longitude(lng: float) -> float:
    """Wrap a longitude into [-180, 180]."""
    while lng > MAX_LNG:
        lng -= 360.0
    while lng < -MAX_LNG:
        lng += 360.0
    return lng


def clamp_coordinates(lat: float, lng: float) -> GeoPoint:
    return GeoPoint(clamp_latitude(lat), normalize_longitude(lng))


def is_within_bounds(lat: float, lng: float) -> bool:
    """Check that a coordinate is displayable without clamping."""
    return (
        -WEB_MERCATOR_MAX_LAT <= lat <= WEB_MERCATOR_MAX_LAT
        and -MAX_LNG <= lng <= MAX_LNG
    )


def is_multipolygon(coordinates: Sequence) -> bool:
    """Detect the ``[[[lat, lng], ...], ...]`` nesting of a multipolygon."""
    if not coordinates:
        return False
    first = coordinates[0]
    return bool(first) and isinstance(first[0], (list, tuple))


def as_parts(coordinates: Coordinates) -> Parts:
    """Normalise a polygon or multipolygon into a list of rings of tuples."""
    if is_multipolygon(coordinates):
        return [[(float(lat), float(lng)) for lat, lng in part] for part in coordinates]  # type: ignore[misc]
    return [[(float(lat), float(lng)) for lat, lng in coordinates]]  # type: ignore[misc]


def from_parts(parts: Parts, multi: bool) -> Coordinates:
    """Inverse of :func:`as_parts` for the shape the caller started with."""
    if multi:
        return [list(part) for part in parts]
    return list(parts[0])


def haversine_m(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Great-circle distance in metres."""
    lat1, lng1 = math.radians(a[0]), math.radians(a[1])
    lat2, lng2 = math.radians(b[0]), math.radians(b[1])
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def format_distance(metres: float) -> str:
    """Human readable distance, metres below 1 km."""
    if metres < 1000:
        return f"{round(metres)}m"
    return f"{metres / 1000:.1f}km"


def bbox_around(lat: float, lng: float, radius_m: float) -> BoundingBox:
    """
    Approximate bounding box of a circle.

    Uses 1 degree ≈ 111 km for latitude and scales the longitude span by
    ``cos(lat)``.
    """
    radius_deg = radius_m / METERS_PER_DEGREE
    lng_adjustment = radius_deg / max(math.cos(math.radians(lat)), 1e-6)
    return BoundingBox(
        north=lat + radius_deg,
        south=lat - radius_deg,
        east=lng + lng_adjustment,
        west=lng - lng_adjustment,
    )
