"""Shared fixtures for mapeditor tests."""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, List, Optional

import pytest

from mapeditor.app import create_app
from mapeditor.app.container import EDITOR_SESSION_SERVICE_KEY, get_polygon_service
from mapeditor.domain.geo import Annotation, GeoPoint
from mapeditor.domain.polygons import AnnotatedPolygon, AnnotationRule, SpeciesRef
from mapeditor.domain.viewport import ViewportSize, ViewportTracker
from mapeditor.services.editor_service import MapEditor
from mapeditor.services.editor_session_service import EditorSessionService
from mapeditor.services.occurrence_service import AreaInvestigator, DatasetInfo, OccurrenceSearchError

SQUARE = [(10.0, 10.0), (10.0, 20.0), (20.0, 20.0), (20.0, 10.0)]
PUMA = SpeciesRef(key=2435099, name="Puma", scientific_name="Puma concolor")


class FakeShell:
    """In-memory shell recording every callback the editor makes."""

    def __init__(self, polygons: Optional[List[AnnotatedPolygon]] = None) -> None:
        self.polygons: Dict[str, AnnotatedPolygon] = {p.id: p for p in polygons or []}
        self.current = None
        self.inverted = False
        self.species: Optional[SpeciesRef] = None
        self.annotation = Annotation.SUSPICIOUS
        self.rules: List[AnnotationRule] = []
        self.calls: List[tuple] = []

    def saved_polygons(self):
        return list(self.polygons.values())

    def current_polygon(self):
        return self.current

    def current_inverted(self):
        return self.inverted

    def annotation_rules(self):
        return self.rules

    def selected_species(self):
        return self.species

    def current_annotation(self):
        return self.annotation

    def on_polygon_change(self, coordinates):
        self.calls.append(("change", coordinates))
        self.current = coordinates

    def on_auto_save(self, coordinates):
        polygon_id = f"p{len(self.polygons) + 1}"
        self.calls.append(("auto_save", coordinates))
        self.polygons[polygon_id] = AnnotatedPolygon(id=polygon_id, coordinates=list(coordinates))
        return polygon_id

    def on_update_polygon(self, polygon_id, coordinates):
        self.calls.append(("update", polygon_id, coordinates))
        self.polygons[polygon_id] = self.polygons[polygon_id].with_coordinates(coordinates)

    def on_toggle_invert(self, polygon_id):
        self.calls.append(("invert", polygon_id))
        polygon = self.polygons[polygon_id]
        self.polygons[polygon_id] = replace(polygon, inverted=not polygon.inverted)

    def on_delete_polygon(self, polygon_id):
        self.calls.append(("delete", polygon_id))
        self.polygons.pop(polygon_id, None)

    def calls_of(self, kind: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == kind]


class FakeOccurrenceClient:
    """Scripted occurrence search backend."""

    def __init__(
        self,
        records: Optional[List[dict]] = None,
        error: Optional[Exception] = None,
        on_search: Optional[Callable[[], None]] = None,
        on_dataset: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.records = records or []
        self.error = error
        self.on_search = on_search
        self.on_dataset = on_dataset
        self.searches: List[tuple] = []

    async def search_occurrences(self, species_key, bbox, limit=20):
        self.searches.append((species_key, bbox, limit))
        if self.on_search:
            self.on_search()
        if self.error:
            raise self.error
        return list(self.records)

    async def get_dataset(self, dataset_key):
        if self.on_dataset:
            self.on_dataset(dataset_key)
        return DatasetInfo(title=f"Dataset {dataset_key}", publisher="Museum")


def occurrence(key: int, lat: float, lng: float, dataset: str = "d1") -> dict:
    return {
        "key": key,
        "scientificName": "Puma concolor",
        "decimalLatitude": lat,
        "decimalLongitude": lng,
        "datasetKey": dataset,
        "eventDate": "2020-05-01",
        "basisOfRecord": "HUMAN_OBSERVATION",
    }


@pytest.fixture
def square_polygon() -> AnnotatedPolygon:
    return AnnotatedPolygon(id="p1", coordinates=list(SQUARE))


@pytest.fixture
def shell(square_polygon) -> FakeShell:
    return FakeShell([square_polygon])


@pytest.fixture
def tracker() -> ViewportTracker:
    return ViewportTracker(GeoPoint(15.0, 15.0), 4, ViewportSize(800, 600))


@pytest.fixture
def occurrence_client() -> FakeOccurrenceClient:
    return FakeOccurrenceClient(records=[occurrence(1, 0.1, 0.1), occurrence(2, 0.2, -0.1, "d2")])


@pytest.fixture
def editor(shell, tracker, occurrence_client) -> MapEditor:
    return MapEditor(shell, tracker, investigator=AreaInvestigator(occurrence_client))


@pytest.fixture
def failing_client() -> FakeOccurrenceClient:
    return FakeOccurrenceClient(error=OccurrenceSearchError("connection refused"))


@pytest.fixture
def app(occurrence_client):
    app = create_app("testing", overrides={"SQLALCHEMY_DATABASE_URI": "sqlite://"})
    with app.app_context():
        app.extensions[EDITOR_SESSION_SERVICE_KEY] = EditorSessionService(
            get_polygon_service(),
            occurrence_client=occurrence_client,
            occurrence_tile_url=app.config["OCCURRENCE_TILE_URL"],
        )
        yield app


@pytest.fixture
def client(app):
    return app.test_client()
