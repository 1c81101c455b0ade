from __future__ import annotations

from flask import current_app

from mapeditor.services.editor_session_service import EditorSessionService
from mapeditor.services.occurrence_service import GbifOccurrenceClient
from mapeditor.services.polygon_service import PolygonService
from mapeditor.services.preview_service import PreviewService
from mapeditor.storage.sql import SqlPolygonRepository

POLYGON_SERVICE_KEY = "polygon_service"
EDITOR_SESSION_SERVICE_KEY = "editor_session_service"
PREVIEW_SERVICE_KEY = "preview_service"


def register_services(app) -> None:
    """Pre-instantiate core services and store them on the application."""
    with app.app_context():
        polygon_service = PolygonService.from_app_config(SqlPolygonRepository())
        app.extensions[POLYGON_SERVICE_KEY] = polygon_service

        editor_session_service = EditorSessionService.from_app_config(
            polygon_service,
            occurrence_client=GbifOccurrenceClient.from_app_config(),
        )
        app.extensions[EDITOR_SESSION_SERVICE_KEY] = editor_session_service

        app.extensions[PREVIEW_SERVICE_KEY] = PreviewService()


def get_polygon_service() -> PolygonService:
    """Return the shared polygon service instance."""
    service = current_app.extensions.get(POLYGON_SERVICE_KEY)
    if service is None:
        service = PolygonService.from_app_config(SqlPolygonRepository())
        current_app.extensions[POLYGON_SERVICE_KEY] = service
    return service


def get_editor_session_service() -> EditorSessionService:
    """Return the shared editor session service instance."""
    service = current_app.extensions.get(EDITOR_SESSION_SERVICE_KEY)
    if service is None:
        service = EditorSessionService.from_app_config(
            get_polygon_service(),
            occurrence_client=GbifOccurrenceClient.from_app_config(),
        )
        current_app.extensions[EDITOR_SESSION_SERVICE_KEY] = service
    return service


def get_preview_service() -> PreviewService:
    """Return the shared preview service instance."""
    service = current_app.extensions.get(PREVIEW_SERVICE_KEY)
    if service is None:
        service = PreviewService()
        current_app.extensions[PREVIEW_SERVICE_KEY] = service
    return service
