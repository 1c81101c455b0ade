"""
Domain models for annotated polygons and annotation rules.

An :class:`AnnotatedPolygon` is the persisted unit. Its ``coordinates`` are a
list of ``(lat, lng)`` pairs for a simple polygon or a list of such lists for
a multipolygon. Storage JSON follows the layout the front-end persists:
camelCase keys and ``[lat, lng]`` inner pairs.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from mapeditor.domain.geo import (
    Annotation,
    Coordinates,
    Parts,
    as_parts,
    colour_for,
    from_parts,
    is_multipolygon,
)


def new_polygon_id() -> str:
    return uuid.uuid4().hex


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SpeciesRef:
    """Reference to a GBIF taxon."""

    key: int
    name: str = ""
    scientific_name: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {"key": self.key, "name": self.name, "scientificName": self.scientific_name}

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> Optional["SpeciesRef"]:
        if not data or data.get("key") is None:
            return None
        return cls(
            key=int(data["key"]),
            name=str(data.get("name") or ""),
            scientific_name=str(data.get("scientificName") or ""),
        )


@dataclass(frozen=True)
class AnnotatedPolygon:
    """A drawn or imported shape with its annotation."""

    id: str
    coordinates: Coordinates
    is_multi_polygon: bool = False
    species: Optional[SpeciesRef] = None
    annotation: Annotation = Annotation.SUSPICIOUS
    inverted: bool = False
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def parts(self) -> Parts:
        return as_parts(self.coordinates)

    def with_coordinates(self, coordinates: Coordinates) -> "AnnotatedPolygon":
        return replace(self, coordinates=coordinates, is_multi_polygon=is_multipolygon(coordinates))

    def add_part(self, ring: Coordinates) -> "AnnotatedPolygon":
        """Merge another drawn shape into this polygon as a new part."""
        parts = self.parts + as_parts(ring)
        return replace(
            self,
            coordinates=from_parts(parts, True),
            is_multi_polygon=True,
            timestamp=utc_timestamp(),
        )

    def to_storage_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "coordinates": _coordinates_to_json(self.coordinates),
            "isMultiPolygon": self.is_multi_polygon,
            "species": self.species.to_json() if self.species else None,
            "annotation": self.annotation.value,
            "inverted": self.inverted,
            "timestamp": self.timestamp,
        }

    def to_frontend_json(self) -> Dict[str, Any]:
        colours = colour_for(self.annotation)
        data = self.to_storage_json()
        data["colors"] = {"fill": colours.fill, "stroke": colours.stroke}
        data["vertexCount"] = sum(len(part) for part in self.parts)
        return data

    @classmethod
    def from_storage_json(cls, data: Dict[str, Any]) -> "AnnotatedPolygon":
        coordinates = data.get("coordinates") or []
        multi = is_multipolygon(coordinates)
        return cls(
            id=str(data.get("id") or new_polygon_id()),
            coordinates=from_parts(as_parts(coordinates), multi) if coordinates else [],
            is_multi_polygon=multi,
            species=SpeciesRef.from_json(data.get("species")),
            annotation=Annotation.parse(data.get("annotation")),
            inverted=bool(data.get("inverted", False)),
            timestamp=str(data.get("timestamp") or utc_timestamp()),
        )


@dataclass(frozen=True)
class PolygonWithHoles:
    outer: List[tuple]
    holes: List[List[tuple]] = field(default_factory=list)


@dataclass(frozen=True)
class AnnotationRule:
    """A server-side annotation rule displayed as a read-only overlay."""

    id: str
    annotation: str
    polygons: List[PolygonWithHoles]

    def to_frontend_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "annotation": self.annotation,
            "multiPolygon": [
                {
                    "outer": [list(p) for p in polygon.outer],
                    "holes": [[list(p) for p in hole] for hole in polygon.holes],
                }
                for polygon in self.polygons
            ],
        }


def _coordinates_to_json(coordinates: Coordinates) -> List[Any]:
    if is_multipolygon(coordinates):
        return [[[lat, lng] for lat, lng in part] for part in coordinates]  # type: ignore[misc]
    return [[lat, lng] for lat, lng in coordinates]  # type: ignore[misc]
