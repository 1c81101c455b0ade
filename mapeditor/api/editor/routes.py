from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from flask import Blueprint, current_app, jsonify, request

from mapeditor.app.container import get_editor_session_service, get_polygon_service
from mapeditor.domain.geo import Annotation, GeoPoint
from mapeditor.domain.mutations import VertexKey
from mapeditor.domain.polygons import SpeciesRef
from mapeditor.domain.wkt import WKTParseError, rule_from_wkt
from mapeditor.services.editor_service import BodyTarget, EdgeTarget, HitTarget, VertexTarget
from mapeditor.services.editor_session_service import (
    EditorSession,
    EditorSessionError,
    EditorSessionNotFoundError,
)
from mapeditor.services.polygon_service import PolygonError, PolygonNotFoundError

editor_bp = Blueprint("editor", __name__)


def _error(message: str, status: int):
    return jsonify({"success": False, "message": message}), status


def _session_response(session: EditorSession, status: int = 200, **extra: Any):
    return jsonify({"success": True, **extra, "session": session.to_json()}), status


def _parse_target(data: Optional[Dict[str, Any]]) -> Optional[HitTarget]:
    """Decode a hit target sent by the front-end; a missing target is the bare map."""
    if not data:
        return None
    kind = data.get("type")
    polygon_id = str(data.get("polygonId"))
    if kind == "vertex":
        return VertexTarget(polygon_id, VertexKey(int(data.get("part", 0)), int(data["index"])))
    if kind == "edge":
        return EdgeTarget(polygon_id, int(data.get("part", 0)), int(data["edge"]))
    if kind == "body":
        return BodyTarget(polygon_id)
    raise ValueError(f"Unknown target type: {kind}")


def _apply(session_id: str, action: Callable[[EditorSession, Dict[str, Any]], Optional[Dict[str, Any]]]):
    """Run an editor action against a session and report the resulting state."""
    data = request.get_json(silent=True) or {}
    try:
        session = get_editor_session_service().get_session(session_id)
        with session.lock:
            extra = action(session, data) or {}
            return _session_response(session, **extra)
    except EditorSessionNotFoundError as e:
        return _error(str(e), 404)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    except (PolygonError, EditorSessionError, WKTParseError, KeyError, ValueError, TypeError) as e:
        return _error(str(e), 400)
    except Exception as e:
        current_app.logger.error(f"Error in editor session {session_id}: {e}", exc_info=True)
        return _error(f"Internal server error: {str(e)}", 500)


@editor_bp.post("/api/editor/sessions")
def create_session():
    """Create an editor session with its own viewport."""
    data = request.get_json(silent=True) or {}
    service = get_editor_session_service()
    try:
        center = data.get("center")
        session = service.create_session(
            width=data.get("width"),
            height=data.get("height"),
            center=GeoPoint(float(center[0]), float(center[1])) if center else None,
            zoom=data.get("zoom"),
        )
    except (EditorSessionError, ValueError, TypeError, IndexError) as e:
        return _error(str(e), 400)
    return _session_response(session, status=201)


@editor_bp.get("/api/editor/sessions/<session_id>")
def get_session(session_id: str):
    try:
        session = get_editor_session_service().get_session(session_id)
    except EditorSessionNotFoundError as e:
        return _error(str(e), 404)
    with session.lock:
        return _session_response(session)


@editor_bp.delete("/api/editor/sessions/<session_id>")
def close_session(session_id: str):
    try:
        get_editor_session_service().close_session(session_id)
    except EditorSessionNotFoundError as e:
        return _error(str(e), 404)
    return jsonify({"success": True}), 200


@editor_bp.get("/api/editor/sessions/<session_id>/frame")
def get_frame(session_id: str):
    """Project every overlay for the next paint."""
    try:
        session = get_editor_session_service().get_session(session_id)
    except EditorSessionNotFoundError as e:
        return _error(str(e), 404)
    with session.lock:
        frame = session.editor.render()
    return jsonify(frame.to_frontend_json()), 200


# Viewport

@editor_bp.post("/api/editor/sessions/<session_id>/viewport")
def viewport_changed(session_id: str):
    def action(session, data):
        center = data["center"]
        session.editor.on_viewport_changed((float(center[0]), float(center[1])), float(data["zoom"]), data.get("animating"))
    return _apply(session_id, action)


@editor_bp.post("/api/editor/sessions/<session_id>/viewport/settle")
def viewport_settled(session_id: str):
    return _apply(session_id, lambda session, data: session.editor.tracker.settle())


@editor_bp.post("/api/editor/sessions/<session_id>/viewport/resize")
def viewport_resized(session_id: str):
    return _apply(
        session_id,
        lambda session, data: session.editor.tracker.resize(int(data["width"]), int(data["height"])),
    )


@editor_bp.post("/api/editor/sessions/<session_id>/navigate")
def navigate(session_id: str):
    """Move the camera to a coordinate or to a saved polygon."""
    def action(session, data):
        if data.get("polygonId"):
            polygon = get_polygon_service().get_polygon(str(data["polygonId"]))
            session.navigate_to_polygon(polygon)
        else:
            zoom = data.get("zoom")
            session.editor.navigate_to(float(data["lat"]), float(data["lng"]), None if zoom is None else float(zoom))
    return _apply(session_id, action)


# Selection and overlays

@editor_bp.put("/api/editor/sessions/<session_id>/selection")
def set_selection(session_id: str):
    """Select the species and annotation used for new shapes."""
    def action(session, data):
        if "species" in data:
            session.shell.species = SpeciesRef.from_json(data.get("species"))
        if "annotation" in data:
            session.shell.annotation = Annotation.parse(data.get("annotation"))
    return _apply(session_id, action)


@editor_bp.put("/api/editor/sessions/<session_id>/rules")
def set_rules(session_id: str):
    """Replace the annotation rule overlays; each rule carries WKT geometry."""
    def action(session, data):
        rules = [
            rule_from_wkt(str(rule["id"]), str(rule.get("annotation") or ""), rule["wkt"])
            for rule in data.get("rules") or []
        ]
        session.shell.rules = rules
        if "show" in data:
            session.editor.show_rules = bool(data["show"])
        return {"rules": [rule.to_frontend_json() for rule in rules]}
    return _apply(session_id, action)


# Drawing

@editor_bp.post("/api/editor/sessions/<session_id>/drawing")
def start_drawing(session_id: str):
    def action(session, data):
        return {"started": session.editor.start_drawing(data.get("mode", "polygon"))}
    return _apply(session_id, action)


@editor_bp.post("/api/editor/sessions/<session_id>/drawing/finish")
def finish_drawing(session_id: str):
    return _apply(session_id, lambda session, data: {"finished": session.editor.finish()})


@editor_bp.post("/api/editor/sessions/<session_id>/drawing/band")
def adjust_band(session_id: str):
    def action(session, data):
        adjusted = session.editor.adjust_band(
            float(data.get("upperDelta", 0.0)),
            float(data.get("lowerDelta", 0.0)),
        )
        return {"adjusted": adjusted}
    return _apply(session_id, action)


@editor_bp.post("/api/editor/sessions/<session_id>/cancel")
def cancel(session_id: str):
    return _apply(session_id, lambda session, data: session.editor.cancel())


@editor_bp.post("/api/editor/sessions/<session_id>/save-current")
def save_current(session_id: str):
    """Save the current polygon and start editing it."""
    return _apply(session_id, lambda session, data: {"polygonId": session.save_current()})


# Pointer events

@editor_bp.post("/api/editor/sessions/<session_id>/pointer/down")
def pointer_down(session_id: str):
    def action(session, data):
        session.editor.pointer_down(
            float(data["x"]),
            float(data["y"]),
            target=_parse_target(data.get("target")),
            at=data.get("at"),
        )
    return _apply(session_id, action)


@editor_bp.post("/api/editor/sessions/<session_id>/pointer/move")
def pointer_move(session_id: str):
    return _apply(session_id, lambda session, data: session.editor.pointer_move(float(data["x"]), float(data["y"])))


@editor_bp.post("/api/editor/sessions/<session_id>/pointer/up")
async def pointer_up(session_id: str):
    """Finish a gesture; an investigate click runs the area search before answering."""
    data = request.get_json(silent=True) or {}
    try:
        session = get_editor_session_service().get_session(session_id)
        with session.lock:
            outcome = session.editor.pointer_up(float(data["x"]), float(data["y"]), at=data.get("at"))
            if outcome.investigate:
                await session.editor.complete_investigation()
            return _session_response(session, outcome=outcome.to_json())
    except EditorSessionNotFoundError as e:
        return _error(str(e), 404)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    except (PolygonError, KeyError, ValueError, TypeError) as e:
        return _error(str(e), 400)
    except Exception as e:
        current_app.logger.error(f"Error in editor session {session_id}: {e}", exc_info=True)
        return _error(f"Internal server error: {str(e)}", 500)


@editor_bp.post("/api/editor/sessions/<session_id>/pointer/leave")
def pointer_leave(session_id: str):
    return _apply(session_id, lambda session, data: session.editor.pointer_leave())


@editor_bp.post("/api/editor/sessions/<session_id>/double-click")
def double_click(session_id: str):
    return _apply(session_id, lambda session, data: {"finished": session.editor.double_click()})


@editor_bp.post("/api/editor/sessions/<session_id>/context-menu")
def context_menu(session_id: str):
    def action(session, data):
        return {"handled": session.editor.context_menu(_parse_target(data.get("target")))}
    return _apply(session_id, action)


# Editing

@editor_bp.post("/api/editor/sessions/<session_id>/editing")
def begin_editing(session_id: str):
    """Toggle edit mode for a polygon (``"current"`` for the in-progress one)."""
    def action(session, data):
        return {"editing": session.editor.begin_editing(str(data["polygonId"]))}
    return _apply(session_id, action)


@editor_bp.delete("/api/editor/sessions/<session_id>/editing")
def stop_editing(session_id: str):
    return _apply(session_id, lambda session, data: session.editor.stop_editing())


@editor_bp.put("/api/editor/sessions/<session_id>/move-tool")
def set_move_tool(session_id: str):
    return _apply(session_id, lambda session, data: session.editor.set_move_tool(bool(data.get("active"))))


@editor_bp.put("/api/editor/sessions/<session_id>/investigate")
def set_investigate(session_id: str):
    def action(session, data):
        if "active" in data:
            session.editor.set_investigate_mode(bool(data["active"]))
        if "radius" in data:
            session.editor.set_investigate_radius(float(data["radius"]))
    return _apply(session_id, action)


@editor_bp.post("/api/editor/sessions/<session_id>/midpoint")
def insert_midpoint(session_id: str):
    def action(session, data):
        inserted = session.editor.insert_midpoint(
            str(data["polygonId"]),
            int(data.get("part", 0)),
            int(data["edge"]),
        )
        return {"inserted": inserted}
    return _apply(session_id, action)


@editor_bp.post("/api/editor/sessions/<session_id>/vertex/delete")
def delete_vertex(session_id: str):
    def action(session, data):
        key = VertexKey(int(data.get("part", 0)), int(data["index"]))
        return {"deleted": session.editor.delete_vertex(str(data["polygonId"]), key)}
    return _apply(session_id, action)


@editor_bp.post("/api/editor/sessions/<session_id>/densify")
def densify(session_id: str):
    return _apply(session_id, lambda session, data: {"changed": session.editor.densify_editing()})


@editor_bp.post("/api/editor/sessions/<session_id>/decimate")
def decimate(session_id: str):
    return _apply(session_id, lambda session, data: {"changed": session.editor.decimate_editing()})


@editor_bp.post("/api/editor/sessions/<session_id>/polygons/<polygon_id>/invert")
def toggle_invert(session_id: str, polygon_id: str):
    return _apply(session_id, lambda session, data: session.editor.toggle_invert(polygon_id))


@editor_bp.delete("/api/editor/sessions/<session_id>/polygons/<polygon_id>")
def delete_polygon(session_id: str, polygon_id: str):
    return _apply(session_id, lambda session, data: session.editor.delete_polygon(polygon_id))


# Investigation

@editor_bp.get("/api/editor/sessions/<session_id>/investigation")
def get_investigation(session_id: str):
    try:
        session = get_editor_session_service().get_session(session_id)
    except EditorSessionNotFoundError as e:
        return _error(str(e), 404)
    with session.lock:
        investigation = session.editor.investigation
        body = {"investigation": investigation.to_json() if investigation else None}
    return jsonify(body), 200


@editor_bp.delete("/api/editor/sessions/<session_id>/investigation")
def close_investigation(session_id: str):
    """Close the results panel, discarding any search still in flight."""
    return _apply(session_id, lambda session, data: session.editor.close_investigation())
