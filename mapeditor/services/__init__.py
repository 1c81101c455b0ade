from mapeditor.services.polygon_service import (
    PolygonError,
    PolygonNotFoundError,
    PolygonService,
)

__all__ = [
    "PolygonError",
    "PolygonNotFoundError",
    "PolygonService",
]
