from __future__ import annotations

from flask import Blueprint, Response, current_app, jsonify, request

from mapeditor.app.container import get_polygon_service, get_preview_service
from mapeditor.domain.polygons import SpeciesRef
from mapeditor.services.polygon_service import PolygonError, PolygonNotFoundError
from mapeditor.services.preview_service import PreviewError

polygons_bp = Blueprint("polygons", __name__)


def _error(message: str, status: int):
    return jsonify({"success": False, "message": message}), status


@polygons_bp.get("/api/polygons")
def list_polygons():
    """List saved polygons in creation order."""
    service = get_polygon_service()
    polygons = service.list_polygons()
    return jsonify({"polygons": [polygon.to_frontend_json() for polygon in polygons]}), 200


@polygons_bp.post("/api/polygons")
def create_polygon():
    """Create a polygon from coordinates."""
    data = request.get_json(silent=True) or {}
    coordinates = data.get("coordinates")
    if not coordinates:
        return _error("coordinates are required", 400)

    service = get_polygon_service()
    try:
        polygon = service.create_polygon(
            coordinates,
            species=SpeciesRef.from_json(data.get("species")),
            annotation=data.get("annotation"),
            inverted=bool(data.get("inverted", False)),
        )
    except (PolygonError, ValueError, TypeError) as e:
        return _error(str(e), 400)
    except Exception as e:
        current_app.logger.error(f"Error creating polygon: {e}", exc_info=True)
        return _error(f"Internal server error: {str(e)}", 500)
    return jsonify({"success": True, "polygon": polygon.to_frontend_json()}), 201


@polygons_bp.get("/api/polygons/<polygon_id>")
def get_polygon(polygon_id: str):
    service = get_polygon_service()
    try:
        polygon = service.get_polygon(polygon_id)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    return jsonify(polygon.to_frontend_json()), 200


@polygons_bp.put("/api/polygons/<polygon_id>/coordinates")
def update_coordinates(polygon_id: str):
    """Replace the coordinates of a polygon."""
    data = request.get_json(silent=True) or {}
    service = get_polygon_service()
    try:
        polygon = service.update_coordinates(polygon_id, data.get("coordinates") or [])
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    except PolygonError as e:
        return _error(str(e), 400)
    except Exception as e:
        current_app.logger.error(f"Error updating polygon {polygon_id}: {e}", exc_info=True)
        return _error(f"Internal server error: {str(e)}", 500)
    return jsonify({"success": True, "polygon": polygon.to_frontend_json()}), 200


@polygons_bp.post("/api/polygons/<polygon_id>/invert")
def toggle_invert(polygon_id: str):
    service = get_polygon_service()
    try:
        polygon = service.toggle_invert(polygon_id)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    return jsonify({"success": True, "polygon": polygon.to_frontend_json()}), 200


@polygons_bp.put("/api/polygons/<polygon_id>/annotation")
def set_annotation(polygon_id: str):
    data = request.get_json(silent=True) or {}
    service = get_polygon_service()
    try:
        polygon = service.set_annotation(polygon_id, data.get("annotation"))
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    except PolygonError as e:
        return _error(str(e), 400)
    return jsonify({"success": True, "polygon": polygon.to_frontend_json()}), 200


@polygons_bp.put("/api/polygons/<polygon_id>/species")
def set_species(polygon_id: str):
    data = request.get_json(silent=True) or {}
    service = get_polygon_service()
    try:
        species = SpeciesRef.from_json(data.get("species"))
        polygon = service.set_species(polygon_id, species)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    except (ValueError, TypeError) as e:
        return _error(f"Invalid species: {e}", 400)
    return jsonify({"success": True, "polygon": polygon.to_frontend_json()}), 200


@polygons_bp.delete("/api/polygons/<polygon_id>")
def delete_polygon(polygon_id: str):
    service = get_polygon_service()
    try:
        service.delete_polygon(polygon_id)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    return jsonify({"success": True}), 200


@polygons_bp.post("/api/polygons/import-wkt")
def import_wkt():
    """Create a polygon from POLYGON or MULTIPOLYGON WKT."""
    data = request.get_json(silent=True) or {}
    service = get_polygon_service()
    try:
        polygon = service.import_wkt(
            data.get("wkt") or "",
            species=SpeciesRef.from_json(data.get("species")),
            annotation=data.get("annotation"),
        )
    except PolygonError as e:
        return _error(str(e), 400)
    except Exception as e:
        current_app.logger.error(f"Error importing WKT: {e}", exc_info=True)
        return _error(f"Internal server error: {str(e)}", 500)
    return jsonify({"success": True, "polygon": polygon.to_frontend_json()}), 201


@polygons_bp.get("/api/polygons/<polygon_id>/wkt")
def export_wkt(polygon_id: str):
    service = get_polygon_service()
    try:
        wkt = service.export_wkt(polygon_id)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    return jsonify({"id": polygon_id, "wkt": wkt}), 200


@polygons_bp.get("/api/polygons/export")
def export_collection():
    """Download all polygons as a JSON document."""
    service = get_polygon_service()
    return Response(
        service.export_collection(),
        mimetype="application/json",
        headers={"Content-Disposition": "attachment; filename=polygons.json"},
    )


@polygons_bp.post("/api/polygons/import")
def import_collection():
    """Load polygons from a previously exported JSON document."""
    data = request.get_json(silent=True)
    if data is None:
        return _error("A JSON list of polygons is required", 400)
    service = get_polygon_service()
    try:
        imported = service.import_collection(data)
    except PolygonError as e:
        return _error(str(e), 400)
    return jsonify({"success": True, "imported": len(imported)}), 200


@polygons_bp.get("/api/polygons/<polygon_id>/preview.png")
def preview_polygon(polygon_id: str):
    """Render a PNG thumbnail of one polygon."""
    width = request.args.get("width", default=256, type=int)
    height = request.args.get("height", default=256, type=int)
    try:
        polygon = get_polygon_service().get_polygon(polygon_id)
        png = get_preview_service().render_png(polygon, width=width, height=height)
    except PolygonNotFoundError as e:
        return _error(str(e), 404)
    except PreviewError as e:
        return _error(str(e), 400)
    except Exception as e:
        current_app.logger.error(f"Error rendering preview for {polygon_id}: {e}", exc_info=True)
        return _error(f"Internal server error: {str(e)}", 500)
    return Response(png, mimetype="image/png")
