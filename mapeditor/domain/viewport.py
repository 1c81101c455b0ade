"""
Pixel/geo coordinate bridge and live viewport tracking.

Every paint projects through one :class:`CoordinateBridge` snapshot so saved
polygons, drawing previews, drag previews and rule overlays cannot disagree
about the center or zoom they were drawn with.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Protocol, Tuple

from mapeditor.domain.geo import (
    TILE_SIZE,
    BoundingBox,
    GeoPoint,
    clamp_latitude,
    normalize_longitude,
)
from mapeditor.domain.projection import geo_to_tile, geo_to_world, tile_to_geo, world_to_geo

MIN_ZOOM = 0.0
MAX_ZOOM = 18.0
MAX_TILE_ZOOM = 14
MAX_TILES_PER_AXIS = 6


@dataclass(frozen=True)
class ViewportState:
    """Center and zoom of the map at one instant."""

    center: GeoPoint
    zoom: float

    def to_json(self) -> Dict[str, Any]:
        return {"center": [self.center.lat, self.center.lng], "zoom": self.zoom}


@dataclass(frozen=True)
class ViewportSize:
    width: int
    height: int


@dataclass(frozen=True)
class CoordinateBridge:
    """Frozen projection between geographic and screen pixel coordinates."""

    viewport: ViewportState
    size: ViewportSize

    def _center_world(self) -> Tuple[float, float]:
        center = self.viewport.center
        return geo_to_world(center.lat, center.lng, self.viewport.zoom)

    def geo_to_pixel(self, lat: float, lng: float) -> Tuple[float, float]:
        world_x, world_y = geo_to_world(lat, lng, self.viewport.zoom)
        center_x, center_y = self._center_world()
        return (
            world_x - center_x + self.size.width / 2,
            world_y - center_y + self.size.height / 2,
        )

    def pixel_to_geo(self, x: float, y: float, clamp: bool = True) -> GeoPoint:
        """
        Geographic position under a pixel.

        ``clamp=False`` keeps latitudes past the edge of the projected map so a
        click above or below the world can be told apart from one at its edge.
        """
        center_x, center_y = self._center_world()
        world_x = center_x + (x - self.size.width / 2)
        world_y = center_y + (y - self.size.height / 2)
        return world_to_geo(world_x, world_y, self.viewport.zoom, clamp=clamp)

    def bounds(self) -> BoundingBox:
        """Geographic extent of the visible rectangle."""
        north_west = self.pixel_to_geo(0, 0)
        south_east = self.pixel_to_geo(self.size.width, self.size.height)
        return BoundingBox(
            north=north_west.lat,
            south=south_east.lat,
            east=south_east.lng,
            west=north_west.lng,
        )

    @staticmethod
    def pixel_distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
        return math.hypot(b[0] - a[0], b[1] - a[1])


class MapHandle(Protocol):
    """Imperative camera API handed to sibling components."""

    def navigate_to(self, lat: float, lng: float, zoom: Optional[float] = None) -> ViewportState:
        ...


@dataclass(frozen=True)
class TileOverlay:
    """One occurrence heat-map tile anchored at its north-west corner."""

    x: int
    y: int
    z: int
    anchor: GeoPoint
    url: str

    def placement(self, bridge: CoordinateBridge) -> Dict[str, float]:
        """Pixel position and edge length of the tile in the given paint."""
        left, top = bridge.geo_to_pixel(self.anchor.lat, self.anchor.lng)
        scale_factor = math.pow(2, bridge.viewport.zoom - self.z)
        return {"left": left, "top": top, "size": TILE_SIZE * scale_factor}

    def to_frontend_json(self, bridge: CoordinateBridge) -> Dict[str, Any]:
        return {
            "key": f"gbif-{self.z}-{self.x}-{self.y}",
            "url": self.url,
            "anchor": [self.anchor.lat, self.anchor.lng],
            **self.placement(bridge),
        }


def occurrence_tiles(
    bridge: CoordinateBridge,
    species_key: int,
    url_template: str,
) -> List[TileOverlay]:
    """List the occurrence tiles covering the viewport, centered on the view."""
    tile_zoom = max(0, min(MAX_TILE_ZOOM, int(math.floor(bridge.viewport.zoom))))
    center = bridge.viewport.center
    center_x, center_y = geo_to_tile(center.lat, center.lng, tile_zoom)

    tiles_x = min(MAX_TILES_PER_AXIS, math.ceil(bridge.size.width / TILE_SIZE) + 1)
    tiles_y = min(MAX_TILES_PER_AXIS, math.ceil(bridge.size.height / TILE_SIZE) + 1)
    max_tile = 2 ** tile_zoom

    tiles: List[TileOverlay] = []
    for dx in range(-(tiles_x // 2), math.ceil(tiles_x / 2) + 1):
        for dy in range(-(tiles_y // 2), math.ceil(tiles_y / 2) + 1):
            x = center_x + dx
            y = center_y + dy
            if not (0 <= x < max_tile and 0 <= y < max_tile):
                continue
            url = url_template.format(z=tile_zoom, x=x, y=y, taxon_key=species_key)
            tiles.append(TileOverlay(x=x, y=y, z=tile_zoom, anchor=tile_to_geo(x, y, tile_zoom), url=url))
    return tiles


class ViewportTracker:
    """
    Owns the live viewport of one map.

    Vector overlays are projected from :meth:`snapshot` on every paint. Tile
    overlays are only recomputed when no zoom or programmatic navigation is
    animating; while animating they are hidden rather than refetched.
    """

    def __init__(
        self,
        center: GeoPoint,
        zoom: float,
        size: ViewportSize,
        min_zoom: float = MIN_ZOOM,
        max_zoom: float = MAX_ZOOM,
    ) -> None:
        self._min_zoom = min_zoom
        self._max_zoom = max_zoom
        self._viewport = ViewportState(
            center=GeoPoint(clamp_latitude(center.lat), normalize_longitude(center.lng)),
            zoom=self._clamp_zoom(zoom),
        )
        self._size = size
        self._animating = False
        self._tile_cache: List[TileOverlay] = []
        self._tile_cache_key: Optional[Tuple[Any, ...]] = None

    @property
    def viewport(self) -> ViewportState:
        return self._viewport

    @property
    def size(self) -> ViewportSize:
        return self._size

    @property
    def is_animating(self) -> bool:
        return self._animating

    def snapshot(self) -> CoordinateBridge:
        """Return the projection every element of the next paint must share."""
        return CoordinateBridge(viewport=self._viewport, size=self._size)

    def on_viewport_changed(
        self,
        center: Tuple[float, float],
        zoom: float,
        animating: Optional[bool] = None,
    ) -> ViewportState:
        """
        Apply a pan/zoom step reported by the map library.

        A zoom change marks the viewport as animating unless the caller says
        otherwise; :meth:`settle` ends the animation.
        """
        new_zoom = self._clamp_zoom(zoom)
        if animating is None:
            animating = new_zoom != self._viewport.zoom
        self._viewport = ViewportState(
            center=GeoPoint(clamp_latitude(center[0]), normalize_longitude(center[1])),
            zoom=new_zoom,
        )
        self._animating = bool(animating)
        return self._viewport

    def navigate_to(self, lat: float, lng: float, zoom: Optional[float] = None) -> ViewportState:
        """Move the camera; the map animates until :meth:`settle` is called."""
        target_zoom = self._viewport.zoom if zoom is None else self._clamp_zoom(zoom)
        self._viewport = replace(
            self._viewport,
            center=GeoPoint(clamp_latitude(lat), normalize_longitude(lng)),
            zoom=target_zoom,
        )
        self._animating = True
        return self._viewport

    def settle(self) -> None:
        self._animating = False

    def resize(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Viewport size must be positive, got {width}x{height}")
        self._size = ViewportSize(width=width, height=height)

    def visible_occurrence_tiles(self, species_key: Optional[int], url_template: str) -> List[TileOverlay]:
        """Occurrence tiles for the current view, suppressed while animating."""
        if species_key is None:
            self._tile_cache = []
            self._tile_cache_key = None
            return []
        if self._animating:
            return []

        key = (species_key, url_template, self._viewport, self._size)
        if key != self._tile_cache_key:
            self._tile_cache = occurrence_tiles(self.snapshot(), species_key, url_template)
            self._tile_cache_key = key
        return list(self._tile_cache)

    def _clamp_zoom(self, zoom: float) -> float:
        return max(self._min_zoom, min(self._max_zoom, float(zoom)))
