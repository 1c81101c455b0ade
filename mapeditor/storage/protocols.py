from __future__ import annotations

from typing import List, Optional, Protocol

from mapeditor.domain.polygons import AnnotatedPolygon


class PolygonRepository(Protocol):
    """Interface for polygon persistence implementations."""

    def list_all(self) -> List[AnnotatedPolygon]:
        ...

    def get(self, polygon_id: str) -> Optional[AnnotatedPolygon]:
        ...

    def save(self, polygon: AnnotatedPolygon) -> AnnotatedPolygon:
        ...

    def delete(self, polygon_id: str) -> bool:
        ...
