"""
Spherical Web Mercator (EPSG:3857) with 256 pixel tiles.

World coordinates are the zoom-dependent pixel position of a point on the
whole projected map. ``geo_to_world`` and ``world_to_geo`` are exact inverses
and share the same latitude clamp, so repeated conversions do not drift.
"""

from __future__ import annotations

import math
from typing import Tuple

from mapeditor.domain.geo import TILE_SIZE, GeoPoint, clamp_latitude

MAX_MERCATOR_Y = 700.0


def world_scale(zoom: float) -> float:
    """Width and height of the world in pixels at ``zoom``."""
    return TILE_SIZE * math.pow(2, zoom)


def geo_to_world(lat: float, lng: float, zoom: float) -> Tuple[float, float]:
    """Project a coordinate into world pixels, clamping the latitude first."""
    scale = world_scale(zoom)
    x = (lng + 180.0) / 360.0 * scale

    lat_rad = math.radians(clamp_latitude(lat))
    mercator_y = math.log(math.tan(math.pi / 4 + lat_rad / 2))
    y = (1 - mercator_y / math.pi) / 2 * scale
    return x, y


def world_to_geo(x: float, y: float, zoom: float, clamp: bool = True) -> GeoPoint:
    """
    Exact inverse of :func:`geo_to_world`.

    With ``clamp=False`` points above or below the projected map keep their
    true latitude (beyond the Mercator limit) so callers can reject them.
    """
    scale = world_scale(zoom)
    lng = x / scale * 360.0 - 180.0

    # exp() overflows far off the map
    mercator_y = max(-MAX_MERCATOR_Y, min(MAX_MERCATOR_Y, math.pi * (1 - 2 * y / scale)))
    lat_rad = 2 * math.atan(math.exp(mercator_y)) - math.pi / 2
    lat = math.degrees(lat_rad)
    return GeoPoint(clamp_latitude(lat) if clamp else lat, lng)


def geo_to_tile(lat: float, lng: float, zoom: int) -> Tuple[int, int]:
    """Slippy-map tile containing a coordinate."""
    x, y = geo_to_world(lat, lng, zoom)
    return int(math.floor(x / TILE_SIZE)), int(math.floor(y / TILE_SIZE))


def tile_to_geo(x: int, y: int, zoom: int) -> GeoPoint:
    """North-west corner of a slippy-map tile."""
    return world_to_geo(x * TILE_SIZE, y * TILE_SIZE, zoom)
