from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, Dict, List, Optional, Union

from flask import current_app

from mapeditor.domain.geo import Annotation, Coordinates, is_multipolygon
from mapeditor.domain.mutations import GeometryValidationError, validate_coordinates
from mapeditor.domain.polygons import AnnotatedPolygon, SpeciesRef, new_polygon_id, utc_timestamp
from mapeditor.domain.wkt import WKTParseError, coordinates_to_wkt, wkt_to_coordinates
from mapeditor.storage.protocols import PolygonRepository


class PolygonError(Exception):
    """Base exception raised for polygon management issues."""


class PolygonNotFoundError(PolygonError):
    """Raised when a polygon is not found."""


class PolygonService:
    """Own the saved polygon collection: creation, edits, annotation and import/export."""

    def __init__(self, repository: PolygonRepository, merge_drawn_shapes: bool = True) -> None:
        self._repository = repository
        self._merge_drawn_shapes = merge_drawn_shapes

    @classmethod
    def from_app_config(cls, repository: PolygonRepository) -> "PolygonService":
        """Create PolygonService from Flask app configuration."""
        return cls(
            repository=repository,
            merge_drawn_shapes=bool(current_app.config.get("MERGE_DRAWN_SHAPES", True)),
        )

    def list_polygons(self) -> List[AnnotatedPolygon]:
        return self._repository.list_all()

    def get_polygon(self, polygon_id: str) -> AnnotatedPolygon:
        polygon = self._repository.get(polygon_id)
        if polygon is None:
            raise PolygonNotFoundError(f"Polygon with id {polygon_id} not found.")
        return polygon

    def create_polygon(
        self,
        coordinates: Coordinates,
        species: Optional[SpeciesRef] = None,
        annotation: Union[Annotation, str, None] = None,
        inverted: bool = False,
    ) -> AnnotatedPolygon:
        """Validate and store a new polygon."""
        coordinates = self._validated(coordinates)
        polygon = AnnotatedPolygon(
            id=new_polygon_id(),
            coordinates=coordinates,
            is_multi_polygon=is_multipolygon(coordinates),
            species=species,
            annotation=self._annotation(annotation),
            inverted=bool(inverted),
        )
        self._repository.save(polygon)
        current_app.logger.info(f"Created polygon {polygon.id} ({len(polygon.parts)} part(s))")
        return polygon

    def auto_save(
        self,
        coordinates: Coordinates,
        species: Optional[SpeciesRef] = None,
        annotation: Union[Annotation, str, None] = None,
        inverted: bool = False,
    ) -> AnnotatedPolygon:
        """
        Store a freshly drawn shape.

        When merging is enabled and a polygon already exists, the shape is added
        to the most recently saved polygon as a new part instead of creating a
        second polygon.
        """
        existing = self._repository.list_all()
        if not (self._merge_drawn_shapes and existing):
            return self.create_polygon(coordinates, species, annotation, inverted)

        ring = self._validated(coordinates)
        merged = existing[-1].add_part(ring)
        self._repository.save(merged)
        current_app.logger.info(f"Merged drawn shape into polygon {merged.id} ({len(merged.parts)} parts)")
        return merged

    def update_coordinates(self, polygon_id: str, coordinates: Coordinates) -> AnnotatedPolygon:
        polygon = self.get_polygon(polygon_id)
        updated = polygon.with_coordinates(self._validated(coordinates))
        return self._repository.save(updated)

    def toggle_invert(self, polygon_id: str) -> AnnotatedPolygon:
        polygon = self.get_polygon(polygon_id)
        return self._repository.save(_replace(polygon, inverted=not polygon.inverted))

    def set_annotation(self, polygon_id: str, annotation: Union[Annotation, str]) -> AnnotatedPolygon:
        polygon = self.get_polygon(polygon_id)
        return self._repository.save(_replace(polygon, annotation=self._annotation(annotation)))

    def set_species(self, polygon_id: str, species: Optional[SpeciesRef]) -> AnnotatedPolygon:
        polygon = self.get_polygon(polygon_id)
        return self._repository.save(_replace(polygon, species=species))

    def delete_polygon(self, polygon_id: str) -> None:
        if not self._repository.delete(polygon_id):
            raise PolygonNotFoundError(f"Polygon with id {polygon_id} not found.")
        current_app.logger.info(f"Deleted polygon {polygon_id}")

    def import_wkt(
        self,
        text: str,
        species: Optional[SpeciesRef] = None,
        annotation: Union[Annotation, str, None] = None,
    ) -> AnnotatedPolygon:
        """Import POLYGON / MULTIPOLYGON WKT as a new polygon."""
        try:
            coordinates, _ = wkt_to_coordinates(text)
        except WKTParseError as exc:
            raise PolygonError(str(exc)) from exc
        return self.create_polygon(coordinates, species, annotation)

    def export_wkt(self, polygon_id: str) -> str:
        polygon = self.get_polygon(polygon_id)
        return coordinates_to_wkt(polygon.coordinates, inverted=polygon.inverted)

    def export_collection(self) -> str:
        """Serialise every saved polygon as a JSON document."""
        return json.dumps(
            [polygon.to_storage_json() for polygon in self._repository.list_all()],
            indent=2,
            ensure_ascii=False,
        )

    def import_collection(self, data: Union[str, List[Dict[str, Any]]]) -> List[AnnotatedPolygon]:
        """Load polygons from an exported JSON document, skipping invalid entries."""
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise PolygonError(f"Invalid polygon collection: {exc}") from exc
        if not isinstance(data, list):
            raise PolygonError("Polygon collection must be a JSON list")

        imported = []
        for entry in data:
            try:
                polygon = AnnotatedPolygon.from_storage_json(entry)
                polygon = polygon.with_coordinates(self._validated(polygon.coordinates))
            except (PolygonError, ValueError, TypeError, AttributeError) as exc:
                current_app.logger.warning(f"Skipping invalid polygon in collection: {exc}")
                continue
            imported.append(self._repository.save(polygon))
        return imported

    @staticmethod
    def _validated(coordinates: Coordinates) -> Coordinates:
        try:
            return validate_coordinates(coordinates)
        except (GeometryValidationError, TypeError, ValueError) as exc:
            raise PolygonError(str(exc)) from exc

    @staticmethod
    def _annotation(value: Union[Annotation, str, None]) -> Annotation:
        try:
            return Annotation.parse(value)
        except ValueError as exc:
            raise PolygonError(str(exc)) from exc


def _replace(polygon: AnnotatedPolygon, **changes: Any) -> AnnotatedPolygon:
    return replace(polygon, timestamp=utc_timestamp(), **changes)
