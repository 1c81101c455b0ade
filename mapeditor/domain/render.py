"""
Render projection adapter.

Turns polygons into pixel-space draw instructions for one paint. Nothing
here mutates geometry; every function is a pure function of its inputs and
the :class:`CoordinateBridge` snapshot it is given.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Final, List, Optional, Sequence, Tuple

from mapeditor.domain.geo import Coordinates, ColourSet, as_parts, colour_for
from mapeditor.domain.mutations import VertexKey, midpoint, rectangle_from_corners
from mapeditor.domain.polygons import AnnotatedPolygon, AnnotationRule
from mapeditor.domain.viewport import CoordinateBridge, TileOverlay, ViewportState

INVERTED_MARGIN_PX: Final[float] = 200000.0
VERTEX_HANDLE_RADIUS: Final[float] = 6.0
MIDPOINT_HANDLE_RADIUS: Final[float] = 4.0

PixelRing = List[Tuple[float, float]]


@dataclass(frozen=True)
class Handle:
    """A draggable or clickable marker; for midpoints ``key.vertex`` is the edge start."""

    key: VertexKey
    x: float
    y: float
    radius: float = VERTEX_HANDLE_RADIUS

    def to_json(self) -> Dict[str, Any]:
        return {"part": self.key.part, "index": self.key.vertex, "x": self.x, "y": self.y, "r": self.radius}


@dataclass(frozen=True)
class DrawInstruction:
    """Everything a front-end needs to paint one overlay."""

    kind: str
    paths: List[List[PixelRing]]
    colours: ColourSet
    target_id: Optional[str] = None
    fill_opacity: float = 0.1
    stroke_width: float = 2.0
    dashed: bool = False
    fill_rule: str = "nonzero"
    closed: bool = True
    vertex_handles: List[Handle] = field(default_factory=list)
    midpoint_handles: List[Handle] = field(default_factory=list)

    def to_frontend_json(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "targetId": self.target_id,
            "paths": [to_svg_path(path, closed=self.closed) for path in self.paths],
            "fill": self.colours.fill,
            "stroke": self.colours.stroke,
            "fillOpacity": self.fill_opacity,
            "strokeWidth": self.stroke_width,
            "strokeDasharray": "8,4" if self.dashed else None,
            "fillRule": self.fill_rule,
            "vertices": [handle.to_json() for handle in self.vertex_handles],
            "midpoints": [handle.to_json() for handle in self.midpoint_handles],
        }


@dataclass(frozen=True)
class Frame:
    """All draw instructions of one paint, projected with the same snapshot."""

    bridge: CoordinateBridge
    instructions: List[DrawInstruction]
    tiles: List[TileOverlay] = field(default_factory=list)

    @property
    def viewport(self) -> ViewportState:
        return self.bridge.viewport

    def find(self, kind: str) -> List[DrawInstruction]:
        return [instruction for instruction in self.instructions if instruction.kind == kind]

    def to_frontend_json(self) -> Dict[str, Any]:
        return {
            "viewport": self.viewport.to_json(),
            "size": {"width": self.bridge.size.width, "height": self.bridge.size.height},
            "overlays": [instruction.to_frontend_json() for instruction in self.instructions],
            "tiles": [tile.to_frontend_json(self.bridge) for tile in self.tiles],
        }


def project_ring(ring: Sequence[Sequence[float]], bridge: CoordinateBridge) -> PixelRing:
    return [bridge.geo_to_pixel(lat, lng) for lat, lng in ring]


def to_svg_path(rings: Sequence[PixelRing], closed: bool = True) -> str:
    """Serialise rings as SVG path data, one ``M ... Z`` subpath per ring."""
    commands = []
    for ring in rings:
        if not ring:
            continue
        body = " L ".join(f"{x:.2f},{y:.2f}" for x, y in ring)
        commands.append(f"M {body}{' Z' if closed else ''}")
    return " ".join(commands)


def inverted_margin(bridge: CoordinateBridge) -> float:
    """Half-size of the outer ring; always strictly larger than the viewport."""
    return max(INVERTED_MARGIN_PX, 2.0 * max(bridge.size.width, bridge.size.height))


def to_inverted_render_path(coordinates: Coordinates, bridge: CoordinateBridge) -> List[PixelRing]:
    """
    Build the "polygon as a hole" path.

    The first ring is a huge pixel-space square around the viewport, the
    following rings are the polygon parts in their original winding order.
    Painted with the even-odd rule the shape itself stays empty.
    """
    margin = inverted_margin(bridge)
    outer: PixelRing = [(-margin, -margin), (margin, -margin), (margin, margin), (-margin, margin)]
    return [outer] + [project_ring(part, bridge) for part in as_parts(coordinates)]


def _vertex_handles(coordinates: Coordinates, bridge: CoordinateBridge) -> List[Handle]:
    handles = []
    for part_index, part in enumerate(as_parts(coordinates)):
        for vertex_index, (lat, lng) in enumerate(part):
            x, y = bridge.geo_to_pixel(lat, lng)
            handles.append(Handle(VertexKey(part_index, vertex_index), x, y))
    return handles


def _midpoint_handles(coordinates: Coordinates, bridge: CoordinateBridge) -> List[Handle]:
    handles = []
    for part_index, part in enumerate(as_parts(coordinates)):
        for edge_index, current in enumerate(part):
            mid_lat, mid_lng = midpoint(current, part[(edge_index + 1) % len(part)])
            x, y = bridge.geo_to_pixel(mid_lat, mid_lng)
            handles.append(Handle(VertexKey(part_index, edge_index), x, y, MIDPOINT_HANDLE_RADIUS))
    return handles


def render_polygon(
    polygon: AnnotatedPolygon,
    bridge: CoordinateBridge,
    editing: bool = False,
    dragging_vertex: bool = False,
    dragging_polygon: bool = False,
    coordinates: Optional[Coordinates] = None,
) -> DrawInstruction:
    """
    Draw a saved polygon.

    ``coordinates`` overrides the stored ones with a drag preview. Vertex
    handles are shown while editing unless the whole polygon is being
    dragged; midpoint handles additionally hide during a vertex drag.
    """
    coords = coordinates if coordinates is not None else polygon.coordinates
    colours = colour_for(polygon.annotation)

    if polygon.inverted:
        paths = [to_inverted_render_path(coords, bridge)]
        fill_rule = "evenodd"
        kind = "inverted"
    else:
        paths = [[project_ring(part, bridge)] for part in as_parts(coords)]
        fill_rule = "nonzero"
        kind = "polygon"

    show_vertices = editing and not dragging_polygon
    show_midpoints = show_vertices and not dragging_vertex
    return DrawInstruction(
        kind=kind,
        paths=paths,
        colours=colours,
        target_id=polygon.id,
        fill_rule=fill_rule,
        vertex_handles=_vertex_handles(coords, bridge) if show_vertices else [],
        midpoint_handles=_midpoint_handles(coords, bridge) if show_midpoints else [],
    )


def render_current(
    coordinates: Coordinates,
    bridge: CoordinateBridge,
    annotation: Optional[str],
    target_id: str,
    editing: bool = False,
    dragging_vertex: bool = False,
    inverted: bool = False,
) -> DrawInstruction:
    """Draw the in-progress "current" polygon (e.g. a latitude band)."""
    colours = colour_for(annotation)
    if inverted:
        paths = [to_inverted_render_path(coordinates, bridge)]
        fill_rule = "evenodd"
    else:
        paths = [[project_ring(part, bridge)] for part in as_parts(coordinates)]
        fill_rule = "nonzero"
    return DrawInstruction(
        kind="current",
        paths=paths,
        colours=colours,
        target_id=target_id,
        fill_opacity=0.2,
        fill_rule=fill_rule,
        vertex_handles=_vertex_handles(coordinates, bridge) if editing else [],
        midpoint_handles=_midpoint_handles(coordinates, bridge) if editing and not dragging_vertex else [],
    )


def render_drawing(
    points: Sequence[Sequence[float]],
    bridge: CoordinateBridge,
    annotation: Optional[str],
) -> DrawInstruction:
    """Draw the clicked points of a polygon being drawn as an open polyline."""
    ring = [(float(lat), float(lng)) for lat, lng in points]
    handles = []
    for index, (lat, lng) in enumerate(ring):
        x, y = bridge.geo_to_pixel(lat, lng)
        handles.append(Handle(VertexKey(0, index), x, y, MIDPOINT_HANDLE_RADIUS))
    return DrawInstruction(
        kind="drawing",
        paths=[[project_ring(ring, bridge)]] if ring else [],
        colours=colour_for(annotation),
        fill_opacity=0.2 if len(ring) >= 3 else 0.0,
        closed=len(ring) >= 3,
        vertex_handles=handles,
    )


def render_rectangle_preview(
    start: Sequence[float],
    current: Sequence[float],
    bridge: CoordinateBridge,
    annotation: Optional[str],
) -> DrawInstruction:
    ring = rectangle_from_corners(start, current)
    return DrawInstruction(
        kind="rectangle-preview",
        paths=[[project_ring(ring, bridge)]],
        colours=colour_for(annotation),
        fill_opacity=0.2,
        dashed=True,
    )


def render_rule(rule: AnnotationRule, bridge: CoordinateBridge) -> DrawInstruction:
    """
    Draw an annotation rule: every outer ring and hole of every polygon as one
    even-odd path with a dashed outline.
    """
    rings: List[PixelRing] = []
    for polygon in rule.polygons:
        rings.append(project_ring(polygon.outer, bridge))
        for hole in polygon.holes:
            rings.append(project_ring(hole, bridge))
    return DrawInstruction(
        kind="rule",
        paths=[rings],
        colours=colour_for(rule.annotation),
        target_id=rule.id,
        fill_opacity=0.15,
        stroke_width=2.5,
        dashed=True,
        fill_rule="evenodd",
    )
