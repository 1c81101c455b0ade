from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from mapeditor.domain.geo import (
    Annotation,
    Coordinates,
    GeoPoint,
    Ring,
    as_parts,
    is_within_bounds,
)
from mapeditor.domain.mutations import (
    AUTO_DENSIFY_THRESHOLD,
    LATBAND_INITIAL_LOWER,
    LATBAND_INITIAL_UPPER,
    MIN_VERTICES,
    GeometryValidationError,
    OutOfBoundsError,
    VertexKey,
    adjust_band_bounds,
    decimate_all,
    delete_vertex_in,
    densify_all,
    insert_midpoint_in,
    latitude_band,
    move_vertex,
    rectangle_from_corners,
    translate,
)
from mapeditor.domain.polygons import AnnotatedPolygon, AnnotationRule, SpeciesRef
from mapeditor.domain.render import (
    DrawInstruction,
    Frame,
    render_current,
    render_drawing,
    render_polygon,
    render_rectangle_preview,
    render_rule,
)
from mapeditor.domain.viewport import CoordinateBridge, ViewportState, ViewportTracker
from mapeditor.services.occurrence_service import (
    AreaInvestigator,
    Investigation,
    InvestigationInProgress,
)

logger = logging.getLogger(__name__)

CURRENT_POLYGON_ID = "current"
CLICK_MOVE_THRESHOLD_PX = 10.0
CLICK_MAX_DURATION_MS = 200.0
RECTANGLE_MIN_DRAG_PX = 5.0
DEFAULT_INVESTIGATE_RADIUS_M = 100000.0
MIN_INVESTIGATE_RADIUS_M = 1000.0
MAX_INVESTIGATE_RADIUS_M = 100000.0


class DrawingMode(str, Enum):
    POLYGON = "polygon"
    RECTANGLE = "rectangle"
    LATBAND = "latband"


@dataclass(frozen=True)
class Notice:
    """Transient user-visible message."""

    level: str
    message: str

    def to_json(self) -> Dict[str, str]:
        return {"level": self.level, "message": self.message}


# Hit targets reported by the front-end with a pointer-down / context-menu.

@dataclass(frozen=True)
class VertexTarget:
    polygon_id: str
    key: VertexKey


@dataclass(frozen=True)
class EdgeTarget:
    polygon_id: str
    part: int
    edge: int


@dataclass(frozen=True)
class BodyTarget:
    polygon_id: str


HitTarget = Union[VertexTarget, EdgeTarget, BodyTarget]


# Interaction states. Exactly one is active at a time.

@dataclass(frozen=True)
class Idle:
    name: ClassVar[str] = "idle"


@dataclass(frozen=True)
class Drawing:
    name: ClassVar[str] = "drawing"

    mode: DrawingMode
    points: Tuple[Tuple[float, float], ...] = ()
    drag_start: Optional[GeoPoint] = None
    drag_current: Optional[GeoPoint] = None
    band_upper: float = LATBAND_INITIAL_UPPER
    band_lower: float = LATBAND_INITIAL_LOWER


@dataclass(frozen=True)
class DraggingVertex:
    name: ClassVar[str] = "dragging-vertex"

    target_id: str
    key: VertexKey
    preview: Optional[GeoPoint] = None


@dataclass(frozen=True)
class DraggingPolygon:
    name: ClassVar[str] = "dragging-polygon"

    target_id: str
    start_pos: Tuple[float, float]
    start_coords: Coordinates
    preview: Optional[Coordinates] = None


@dataclass(frozen=True)
class Investigating:
    name: ClassVar[str] = "investigating"

    point: GeoPoint
    radius: float
    status: str
    generation: int


InteractionState = Union[Idle, Drawing, DraggingVertex, DraggingPolygon, Investigating]


def describe_state(state: InteractionState) -> Dict[str, Any]:
    """JSON description of an interaction state."""
    data: Dict[str, Any] = {"state": state.name}
    if isinstance(state, Drawing):
        data.update({
            "mode": state.mode.value,
            "points": [list(point) for point in state.points],
            "dragStart": list(state.drag_start) if state.drag_start else None,
            "dragCurrent": list(state.drag_current) if state.drag_current else None,
        })
        if state.mode is DrawingMode.LATBAND:
            data.update({"bandUpper": state.band_upper, "bandLower": state.band_lower})
    elif isinstance(state, DraggingVertex):
        data.update({"targetId": state.target_id, "part": state.key.part, "index": state.key.vertex})
    elif isinstance(state, DraggingPolygon):
        data.update({"targetId": state.target_id, "startPos": list(state.start_pos)})
    elif isinstance(state, Investigating):
        data.update({
            "point": list(state.point),
            "radius": state.radius,
            "status": state.status,
        })
    return data


@dataclass
class GestureClassifier:
    """
    Tell a click from a map pan.

    A pointer-down/up pair is a click only if the pointer never travelled
    further than ``move_threshold_px`` and was released within
    ``max_duration_ms``.
    """

    move_threshold_px: float = CLICK_MOVE_THRESHOLD_PX
    max_duration_ms: float = CLICK_MAX_DURATION_MS

    def is_click(self, travel_px: float, duration_ms: float) -> bool:
        return travel_px <= self.move_threshold_px and duration_ms <= self.max_duration_ms


@dataclass
class _Gesture:
    origin: Tuple[float, float]
    started_at: float
    target: Optional[HitTarget] = None
    travel: float = 0.0


@dataclass(frozen=True)
class PointerOutcome:
    """What a pointer-up turned out to be."""

    kind: str
    point: Optional[GeoPoint] = None
    investigate: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "point": list(self.point) if self.point else None,
            "investigate": self.investigate,
        }


class MapShell(Protocol):
    """
    The application shell that owns the polygon collection.

    The editor only reads through these accessors and proposes changes
    through the ``on_*`` callbacks; it never keeps its own copy.
    """

    def saved_polygons(self) -> Sequence[AnnotatedPolygon]:
        ...

    def current_polygon(self) -> Optional[Ring]:
        ...

    def current_inverted(self) -> bool:
        ...

    def annotation_rules(self) -> Sequence[AnnotationRule]:
        ...

    def selected_species(self) -> Optional[SpeciesRef]:
        ...

    def current_annotation(self) -> Annotation:
        ...

    def on_polygon_change(self, coordinates: Optional[Ring]) -> None:
        ...

    def on_auto_save(self, coordinates: Ring) -> Optional[str]:
        ...

    def on_update_polygon(self, polygon_id: str, coordinates: Coordinates) -> None:
        ...

    def on_toggle_invert(self, polygon_id: str) -> None:
        ...

    def on_delete_polygon(self, polygon_id: str) -> None:
        ...


def _now_ms() -> float:
    return time.monotonic() * 1000.0


class MapEditor:
    """
    Interactive polygon editing state machine for one map view.

    Pointer events arrive in viewport pixels and are converted to geographic
    coordinates with the live viewport snapshot. Invalid edits are rejected
    locally and reported as :class:`Notice` records; nothing raised by the
    geometry layer escapes an event handler.
    """

    def __init__(
        self,
        shell: MapShell,
        tracker: ViewportTracker,
        investigator: Optional[AreaInvestigator] = None,
        classifier: Optional[GestureClassifier] = None,
        occurrence_tile_url: Optional[str] = None,
    ) -> None:
        self._shell = shell
        self._tracker = tracker
        self._investigator = investigator
        self._classifier = classifier or GestureClassifier()
        self._occurrence_tile_url = occurrence_tile_url
        self._state: InteractionState = Idle()
        self._gesture: Optional[_Gesture] = None
        self._notices: List[Notice] = []
        self.editing_polygon_id: Optional[str] = None
        self.move_tool_active = False
        self.investigate_mode = False
        self.investigate_radius = DEFAULT_INVESTIGATE_RADIUS_M
        self.show_rules = True

    # ------------------------------------------------------------------
    # State and notices
    # ------------------------------------------------------------------

    @property
    def state(self) -> InteractionState:
        return self._state

    @property
    def tracker(self) -> ViewportTracker:
        return self._tracker

    @property
    def investigation(self) -> Optional[Investigation]:
        return self._investigator.current if self._investigator else None

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    def drain_notices(self) -> List[Notice]:
        notices, self._notices = self._notices, []
        return notices

    def _notify(self, level: str, message: str) -> None:
        log = logger.warning if level == "error" else logger.info
        log(f"Editor notice ({level}): {message}")
        self._notices.append(Notice(level=level, message=message))

    def _reject(self, exc: Exception) -> bool:
        self._notify("error", str(exc))
        return False

    def _bridge(self) -> CoordinateBridge:
        return self._tracker.snapshot()

    def _require_idle(self, action: str) -> bool:
        if isinstance(self._state, Idle):
            return True
        self._notify("error", f"Cannot {action} while {self._state.name.replace('-', ' ')} is active")
        return False

    # ------------------------------------------------------------------
    # Viewport
    # ------------------------------------------------------------------

    def on_viewport_changed(self, center: Tuple[float, float], zoom: float, animating: Optional[bool] = None) -> ViewportState:
        return self._tracker.on_viewport_changed(center, zoom, animating=animating)

    def navigate_to(self, lat: float, lng: float, zoom: Optional[float] = None) -> ViewportState:
        return self._tracker.navigate_to(lat, lng, zoom)

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def start_drawing(self, mode: Union[DrawingMode, str]) -> bool:
        try:
            mode = DrawingMode(mode)
        except ValueError:
            return self._reject(GeometryValidationError(f"Unknown drawing mode: {mode}"))
        if not self._require_idle("start drawing"):
            return False

        if mode is DrawingMode.LATBAND:
            state = Drawing(mode=mode)
            self._shell.on_polygon_change(latitude_band(state.band_upper, state.band_lower))
            self._state = state
        else:
            self._state = Drawing(mode=mode)
        logger.debug(f"Started drawing in {mode.value} mode")
        return True

    def adjust_band(self, upper_delta: float = 0.0, lower_delta: float = 0.0) -> bool:
        """Move the bounds of a live latitude band and regenerate it."""
        state = self._state
        if not isinstance(state, Drawing) or state.mode is not DrawingMode.LATBAND:
            self._notify("error", "No latitude band is being drawn")
            return False
        upper, lower = adjust_band_bounds(state.band_upper, state.band_lower, upper_delta, lower_delta)
        self._state = replace(state, band_upper=upper, band_lower=lower)
        self._shell.on_polygon_change(latitude_band(upper, lower))
        return True

    def finish(self) -> bool:
        """Complete the shape being drawn."""
        state = self._state
        if not isinstance(state, Drawing):
            self._notify("error", "Nothing is being drawn")
            return False

        if state.mode is DrawingMode.LATBAND:
            self._state = Idle()
            return True

        if state.mode is DrawingMode.RECTANGLE:
            if len(state.points) != 2:
                self._notify("error", "Please click two opposite corners to create a rectangle")
                return False
            return self._complete(rectangle_from_corners(*state.points))

        if len(state.points) < MIN_VERTICES:
            self._notify("error", f"Please add at least {MIN_VERTICES} points to create a polygon")
            return False
        return self._complete(list(state.points))

    def double_click(self) -> bool:
        if isinstance(self._state, Drawing) and self._state.mode is DrawingMode.POLYGON:
            return self.finish()
        return False

    def _complete(self, ring: Ring) -> bool:
        self._state = Idle()
        polygon_id = self._shell.on_auto_save(ring)
        logger.info(f"Completed polygon with {len(ring)} vertices ({polygon_id})")
        return True

    def cancel(self) -> None:
        """Abandon the active drawing, drag or investigation."""
        state = self._state
        if isinstance(state, Drawing) and state.mode is DrawingMode.LATBAND:
            self._shell.on_polygon_change(None)
        elif isinstance(state, Investigating) and self._investigator is not None:
            self._investigator.cancel()
        self._state = Idle()
        self._gesture = None

    # ------------------------------------------------------------------
    # Edit mode
    # ------------------------------------------------------------------

    def begin_editing(self, polygon_id: str) -> bool:
        """
        Toggle edit mode for a polygon.

        Entering edit mode densifies a polygon once when all of its parts are
        still coarse, so there are handles to grab.
        """
        if self.editing_polygon_id == polygon_id:
            self.stop_editing()
            return False
        if not self._require_idle("start editing"):
            return False

        coordinates = self._coordinates_of(polygon_id)
        if coordinates is None:
            self._notify("error", f"Polygon {polygon_id} not found")
            return False

        self.editing_polygon_id = polygon_id
        if polygon_id != CURRENT_POLYGON_ID:
            densified = densify_all(coordinates, skip_at=AUTO_DENSIFY_THRESHOLD)
            if densified != coordinates:
                self._shell.on_update_polygon(polygon_id, densified)
        return True

    def stop_editing(self) -> None:
        if isinstance(self._state, (DraggingVertex, DraggingPolygon)):
            self._state = Idle()
        self.editing_polygon_id = None
        self.move_tool_active = False

    def set_move_tool(self, active: bool) -> None:
        self.move_tool_active = bool(active)
        if not active and isinstance(self._state, DraggingPolygon):
            self._state = Idle()

    def set_investigate_mode(self, active: bool) -> None:
        self.investigate_mode = bool(active)

    def set_investigate_radius(self, radius_m: float) -> float:
        self.investigate_radius = max(MIN_INVESTIGATE_RADIUS_M, min(MAX_INVESTIGATE_RADIUS_M, float(radius_m)))
        return self.investigate_radius

    def _is_editing(self, polygon_id: str) -> bool:
        return self.editing_polygon_id is not None and self.editing_polygon_id == polygon_id

    def _coordinates_of(self, polygon_id: str) -> Optional[Coordinates]:
        if polygon_id == CURRENT_POLYGON_ID:
            return self._shell.current_polygon()
        for polygon in self._shell.saved_polygons():
            if polygon.id == polygon_id:
                return polygon.coordinates
        return None

    def _commit(self, polygon_id: str, coordinates: Coordinates) -> None:
        if polygon_id == CURRENT_POLYGON_ID:
            self._shell.on_polygon_change(coordinates)  # type: ignore[arg-type]
        else:
            self._shell.on_update_polygon(polygon_id, coordinates)

    def _edit(self, polygon_id: str, action: str) -> Optional[Coordinates]:
        if not self._is_editing(polygon_id):
            self._notify("error", f"Polygon {polygon_id} is not being edited")
            return None
        if not self._require_idle(action):
            return None
        coordinates = self._coordinates_of(polygon_id)
        if coordinates is None:
            self._notify("error", f"Polygon {polygon_id} not found")
        return coordinates

    def insert_midpoint(self, polygon_id: str, part: int, edge: int) -> bool:
        coordinates = self._edit(polygon_id, "insert a vertex")
        if coordinates is None:
            return False
        try:
            updated = insert_midpoint_in(coordinates, part, edge)
        except (GeometryValidationError, IndexError) as exc:
            return self._reject(exc)
        self._commit(polygon_id, updated)
        return True

    def delete_vertex(self, polygon_id: str, key: VertexKey) -> bool:
        coordinates = self._edit(polygon_id, "delete a vertex")
        if coordinates is None:
            return False
        try:
            updated = delete_vertex_in(coordinates, key)
        except (GeometryValidationError, IndexError) as exc:
            return self._reject(exc)
        self._commit(polygon_id, updated)
        return True

    def densify_editing(self) -> bool:
        """Add a midpoint vertex on every edge of the polygon being edited."""
        if self.editing_polygon_id is None:
            self._notify("error", "No polygon is being edited")
            return False
        coordinates = self._edit(self.editing_polygon_id, "add vertices")
        if coordinates is None:
            return False
        try:
            updated = densify_all(coordinates)
        except GeometryValidationError as exc:
            return self._reject(exc)
        self._commit(self.editing_polygon_id, updated)
        self._notify("success", "Added midpoint vertices")
        return True

    def decimate_editing(self) -> bool:
        """Drop every other vertex of the polygon being edited."""
        if self.editing_polygon_id is None:
            self._notify("error", "No polygon is being edited")
            return False
        coordinates = self._edit(self.editing_polygon_id, "remove vertices")
        if coordinates is None:
            return False
        try:
            updated = decimate_all(coordinates)
        except GeometryValidationError as exc:
            return self._reject(exc)
        self._commit(self.editing_polygon_id, updated)
        self._notify("success", "Removed vertices")
        return True

    def toggle_invert(self, polygon_id: str) -> None:
        self._shell.on_toggle_invert(polygon_id)

    def delete_polygon(self, polygon_id: str) -> None:
        if self.editing_polygon_id == polygon_id:
            self.stop_editing()
        self._shell.on_delete_polygon(polygon_id)

    # ------------------------------------------------------------------
    # Pointer events
    # ------------------------------------------------------------------

    def pointer_down(self, x: float, y: float, target: Optional[HitTarget] = None, at: Optional[float] = None) -> None:
        self._gesture = _Gesture(origin=(x, y), started_at=_now_ms() if at is None else at, target=target)
        state = self._state
        bridge = self._bridge()

        if isinstance(state, Drawing) and state.mode is DrawingMode.RECTANGLE and target is None:
            point = bridge.pixel_to_geo(x, y, clamp=False)
            if is_within_bounds(point.lat, point.lng):
                self._state = replace(state, drag_start=point, drag_current=point)
            return

        if not isinstance(state, Idle):
            return

        if isinstance(target, VertexTarget) and self._is_editing(target.polygon_id):
            coordinates = self._coordinates_of(target.polygon_id)
            if coordinates is None:
                return
            parts = as_parts(coordinates)
            if 0 <= target.key.part < len(parts) and 0 <= target.key.vertex < len(parts[target.key.part]):
                self._state = DraggingVertex(target_id=target.polygon_id, key=target.key)
            return

        if (
            isinstance(target, BodyTarget)
            and self.move_tool_active
            and self._is_editing(target.polygon_id)
            and target.polygon_id != CURRENT_POLYGON_ID
        ):
            coordinates = self._coordinates_of(target.polygon_id)
            if coordinates is not None:
                self._state = DraggingPolygon(
                    target_id=target.polygon_id,
                    start_pos=(x, y),
                    start_coords=coordinates,
                )

    def pointer_move(self, x: float, y: float) -> None:
        gesture = self._gesture
        if gesture is not None:
            gesture.travel = max(gesture.travel, CoordinateBridge.pixel_distance(gesture.origin, (x, y)))

        state = self._state
        bridge = self._bridge()

        if isinstance(state, Drawing) and state.drag_start is not None:
            point = bridge.pixel_to_geo(x, y, clamp=False)
            if is_within_bounds(point.lat, point.lng):
                self._state = replace(state, drag_current=point)
        elif isinstance(state, DraggingVertex):
            point = bridge.pixel_to_geo(x, y, clamp=False)
            if is_within_bounds(point.lat, point.lng):
                self._state = replace(state, preview=point)
        elif isinstance(state, DraggingPolygon):
            start = bridge.pixel_to_geo(*state.start_pos)
            current = bridge.pixel_to_geo(x, y)
            try:
                moved = translate(state.start_coords, current.lat - start.lat, current.lng - start.lng)
            except OutOfBoundsError:
                return
            self._state = replace(state, preview=moved)

    def pointer_up(self, x: float, y: float, at: Optional[float] = None) -> PointerOutcome:
        gesture, self._gesture = self._gesture, None
        state = self._state

        if isinstance(state, (DraggingVertex, DraggingPolygon)):
            self._end_drag(state)
            return PointerOutcome(kind="drag-end")

        is_click = False
        if gesture is not None:
            travel = max(gesture.travel, CoordinateBridge.pixel_distance(gesture.origin, (x, y)))
            duration = (_now_ms() if at is None else at) - gesture.started_at
            is_click = self._classifier.is_click(travel, duration)

        if isinstance(state, Drawing) and state.mode is DrawingMode.RECTANGLE:
            return self._rectangle_pointer_up(state, x, y, is_click)

        if not is_click:
            return PointerOutcome(kind="pan")

        point = self._bridge().pixel_to_geo(x, y)
        target = gesture.target if gesture else None

        if isinstance(target, EdgeTarget):
            self.insert_midpoint(target.polygon_id, target.part, target.edge)
            return PointerOutcome(kind="click", point=point)

        if isinstance(state, Drawing) and state.mode is DrawingMode.POLYGON:
            raw = self._bridge().pixel_to_geo(x, y, clamp=False)
            if not is_within_bounds(raw.lat, raw.lng):
                self._notify("error", "Cannot draw outside map boundaries")
                return PointerOutcome(kind="click", point=raw)
            self._state = replace(state, points=state.points + ((raw.lat, raw.lng),))
            return PointerOutcome(kind="click", point=raw)

        if self.investigate_mode and target is None:
            started = self._begin_investigation(point)
            return PointerOutcome(kind="click", point=point, investigate=started)

        return PointerOutcome(kind="click", point=point)

    def pointer_leave(self) -> None:
        """Pointer left the viewport: end drags exactly like a pointer-up."""
        self._gesture = None
        state = self._state
        if isinstance(state, (DraggingVertex, DraggingPolygon)):
            self._end_drag(state)
        elif isinstance(state, Drawing) and state.drag_start is not None:
            self._state = replace(state, drag_start=None, drag_current=None)

    def context_menu(self, target: Optional[HitTarget]) -> bool:
        if isinstance(target, VertexTarget):
            return self.delete_vertex(target.polygon_id, target.key)
        return False

    def _rectangle_pointer_up(self, state: Drawing, x: float, y: float, is_click: bool) -> PointerOutcome:
        bridge = self._bridge()
        if state.drag_start is not None and state.drag_current is not None:
            start_px = bridge.geo_to_pixel(*state.drag_start)
            current_px = bridge.geo_to_pixel(*state.drag_current)
            if CoordinateBridge.pixel_distance(start_px, current_px) > RECTANGLE_MIN_DRAG_PX:
                self._complete(rectangle_from_corners(state.drag_start, state.drag_current))
                return PointerOutcome(kind="drag-end", point=state.drag_current)

        state = replace(state, drag_start=None, drag_current=None)
        self._state = state
        if not is_click:
            return PointerOutcome(kind="pan")

        point = bridge.pixel_to_geo(x, y, clamp=False)
        if not is_within_bounds(point.lat, point.lng):
            self._notify("error", "Cannot draw outside map boundaries")
            return PointerOutcome(kind="click", point=point)

        points = state.points + ((point.lat, point.lng),)
        if len(points) == 2:
            self._complete(rectangle_from_corners(*points))
        else:
            self._state = replace(state, points=points)
        return PointerOutcome(kind="click", point=point)

    def _end_drag(self, state: Union[DraggingVertex, DraggingPolygon]) -> None:
        self._state = Idle()
        preview = self._drag_preview(state)
        if preview is not None:
            self._commit(state.target_id, preview)

    def _drag_preview(self, state: InteractionState) -> Optional[Coordinates]:
        if isinstance(state, DraggingPolygon):
            return state.preview
        if isinstance(state, DraggingVertex) and state.preview is not None:
            coordinates = self._coordinates_of(state.target_id)
            if coordinates is None:
                return None
            try:
                return move_vertex(coordinates, state.key, state.preview)
            except (GeometryValidationError, IndexError):
                return None
        return None

    # ------------------------------------------------------------------
    # Investigation
    # ------------------------------------------------------------------

    def _begin_investigation(self, point: GeoPoint) -> bool:
        if isinstance(self._state, Investigating):
            self._notify("info", "Investigation already in progress...")
            return False
        if not isinstance(self._state, Idle):
            return False
        if self._investigator is None:
            self._notify("error", "Area investigation is not available")
            return False
        species = self._shell.selected_species()
        if species is None:
            self._notify("error", "Select a species before investigating an area")
            return False

        try:
            investigation = self._investigator.begin(point, species, self.investigate_radius)
        except InvestigationInProgress as exc:
            self._notify("info", str(exc))
            return False

        self._state = Investigating(
            point=point,
            radius=self.investigate_radius,
            status=investigation.status,
            generation=investigation.generation,
        )
        return True

    async def complete_investigation(self) -> Optional[Investigation]:
        """
        Run the pending area search and stream its results.

        If the investigation was cancelled while the search was in flight its
        late results are discarded and the state is left alone.
        """
        state = self._state
        if not isinstance(state, Investigating) or self._investigator is None:
            return self.investigation

        try:
            investigation = await self._investigator.run(state.generation)
        except Exception as exc:
            logger.error(f"Area investigation {state.generation} failed: {exc}", exc_info=True)
            if self._is_investigating(state.generation):
                self._state = Idle()
                self._notify("error", "Failed to search for occurrences in this area")
            return self.investigation

        if self._is_investigating(state.generation):
            self._state = Idle()
            if investigation.message:
                level = {"failed": "error", "empty": "info"}.get(investigation.status, "success")
                self._notify(level, investigation.message)
        return investigation

    def _is_investigating(self, generation: int) -> bool:
        state = self._state
        return isinstance(state, Investigating) and state.generation == generation

    def close_investigation(self) -> None:
        """Close the results surface; a search still in flight is discarded."""
        if isinstance(self._state, Investigating):
            self._state = Idle()
        if self._investigator is not None:
            self._investigator.close()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self) -> Frame:
        """Project every overlay of one paint from a single viewport snapshot."""
        bridge = self._bridge()
        state = self._state
        annotation = self._shell.current_annotation().value
        instructions: List[DrawInstruction] = []

        if self.show_rules:
            instructions.extend(render_rule(rule, bridge) for rule in self._shell.annotation_rules())

        dragging_vertex = isinstance(state, DraggingVertex)
        dragging_polygon = isinstance(state, DraggingPolygon)
        preview = self._drag_preview(state)
        preview_target = state.target_id if isinstance(state, (DraggingVertex, DraggingPolygon)) else None

        for polygon in self._shell.saved_polygons():
            instructions.append(render_polygon(
                polygon,
                bridge,
                editing=self._is_editing(polygon.id),
                dragging_vertex=dragging_vertex,
                dragging_polygon=dragging_polygon,
                coordinates=preview if preview_target == polygon.id else None,
            ))

        current = self._shell.current_polygon()
        if current:
            coordinates = preview if preview_target == CURRENT_POLYGON_ID and preview is not None else current
            instructions.append(render_current(
                coordinates,
                bridge,
                annotation,
                CURRENT_POLYGON_ID,
                editing=self._is_editing(CURRENT_POLYGON_ID),
                dragging_vertex=dragging_vertex,
                inverted=self._shell.current_inverted(),
            ))

        if isinstance(state, Drawing):
            if state.drag_start is not None and state.drag_current is not None:
                instructions.append(render_rectangle_preview(state.drag_start, state.drag_current, bridge, annotation))
            elif state.points:
                instructions.append(render_drawing(state.points, bridge, annotation))

        tiles = []
        species = self._shell.selected_species()
        if self._occurrence_tile_url:
            tiles = self._tracker.visible_occurrence_tiles(species.key if species else None, self._occurrence_tile_url)
        return Frame(bridge=bridge, instructions=instructions, tiles=tiles)

    def to_json(self) -> Dict[str, Any]:
        investigation = self.investigation
        return {
            **describe_state(self._state),
            "editingPolygonId": self.editing_polygon_id,
            "moveToolActive": self.move_tool_active,
            "investigateMode": self.investigate_mode,
            "investigateRadius": self.investigate_radius,
            "viewport": self._tracker.viewport.to_json(),
            "animating": self._tracker.is_animating,
            "investigation": investigation.to_json() if investigation else None,
            "canFinish": self._can_finish(),
        }

    def _can_finish(self) -> bool:
        state = self._state
        if not isinstance(state, Drawing):
            return False
        if state.mode is DrawingMode.POLYGON:
            return len(state.points) >= MIN_VERTICES
        if state.mode is DrawingMode.RECTANGLE:
            return len(state.points) == 2
        return True
