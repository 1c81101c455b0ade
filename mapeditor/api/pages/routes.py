from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from mapeditor.domain.geo import WEB_MERCATOR_MAX_LAT, Annotation, colour_for
from mapeditor.domain.viewport import MAX_ZOOM, MIN_ZOOM

pages_bp = Blueprint("pages", __name__)


@pages_bp.get("/api/map-config")
def map_config():
    """Tile sources, zoom limits and annotation colours for the map front-end."""
    config = current_app.config
    return jsonify({
        "baseTileUrl": config["BASE_TILE_URL"],
        "occurrenceTileUrl": config["OCCURRENCE_TILE_URL"],
        "minZoom": MIN_ZOOM,
        "maxZoom": MAX_ZOOM,
        "maxLatitude": WEB_MERCATOR_MAX_LAT,
        "investigateRadius": config["INVESTIGATE_RADIUS_M"],
        "annotations": {
            annotation.value: colour_for(annotation)._asdict()
            for annotation in Annotation
        },
    }), 200


@pages_bp.get("/health")
def health():
    return jsonify({"status": "ok"}), 200
