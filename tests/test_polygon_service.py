from __future__ import annotations

import json

import pytest

from mapeditor.app.container import get_polygon_service
from mapeditor.domain.geo import Annotation
from mapeditor.services.polygon_service import PolygonError, PolygonNotFoundError, PolygonService
from mapeditor.storage.sql import SqlPolygonRepository

from tests.conftest import PUMA, SQUARE

TRIANGLE = [(0.0, 0.0), (0.0, 5.0), (5.0, 5.0)]


@pytest.fixture
def service(app) -> PolygonService:
    return get_polygon_service()


class TestPolygonService:

    def test_create_and_list(self, service):
        polygon = service.create_polygon(SQUARE, species=PUMA, annotation="native")
        assert polygon.annotation is Annotation.NATIVE
        (stored,) = service.list_polygons()
        assert stored.id == polygon.id
        assert stored.coordinates == SQUARE
        assert stored.species == PUMA

    def test_list_keeps_creation_order(self, service):
        first = service.create_polygon(SQUARE)
        second = service.create_polygon(TRIANGLE)
        service.update_coordinates(first.id, TRIANGLE)
        assert [p.id for p in service.list_polygons()] == [first.id, second.id]

    def test_create_rejects_invalid_geometry(self, service):
        with pytest.raises(PolygonError):
            service.create_polygon(TRIANGLE[:2])
        with pytest.raises(PolygonError):
            service.create_polygon([(0, 0), (0, 1), (90, 1)])
        assert service.list_polygons() == []

    def test_auto_save_merges_into_last_polygon(self, service):
        first = service.auto_save(SQUARE)
        merged = service.auto_save(TRIANGLE)
        assert merged.id == first.id
        assert merged.is_multi_polygon
        assert len(service.list_polygons()) == 1
        assert len(service.get_polygon(first.id).parts) == 2

    def test_auto_save_without_merging(self, app):
        service = PolygonService(SqlPolygonRepository(), merge_drawn_shapes=False)
        service.auto_save(SQUARE)
        service.auto_save(TRIANGLE)
        assert len(service.list_polygons()) == 2

    def test_toggle_invert_and_annotation(self, service):
        polygon = service.create_polygon(SQUARE)
        assert service.toggle_invert(polygon.id).inverted
        assert service.set_annotation(polygon.id, "MANAGED").annotation is Annotation.MANAGED
        with pytest.raises(PolygonError):
            service.set_annotation(polygon.id, "introduced")

    def test_set_species(self, service):
        polygon = service.create_polygon(SQUARE)
        assert service.set_species(polygon.id, PUMA).species == PUMA
        assert service.set_species(polygon.id, None).species is None

    def test_delete(self, service):
        polygon = service.create_polygon(SQUARE)
        service.delete_polygon(polygon.id)
        with pytest.raises(PolygonNotFoundError):
            service.get_polygon(polygon.id)
        with pytest.raises(PolygonNotFoundError):
            service.delete_polygon(polygon.id)

    def test_wkt_import_and_export(self, service):
        polygon = service.import_wkt("POLYGON ((10 0, 20 0, 20 5, 10 5, 10 0))", annotation="FORMER")
        assert polygon.coordinates == [(0.0, 10.0), (0.0, 20.0), (5.0, 20.0), (5.0, 10.0)]
        assert service.export_wkt(polygon.id).startswith("POLYGON ((10 0")
        with pytest.raises(PolygonError):
            service.import_wkt("POINT (1 1)")

    def test_collection_export_and_import(self, service):
        service.create_polygon(SQUARE, annotation="VAGRANT")
        exported = service.export_collection()
        data = json.loads(exported)
        assert data[0]["annotation"] == "VAGRANT"

        data.append({"id": "broken", "coordinates": [[0, 0]]})
        data[0]["id"] = "copy"
        imported = service.import_collection(data)
        assert [p.id for p in imported] == ["copy"]
        assert len(service.list_polygons()) == 2

    def test_import_collection_rejects_non_list(self, service):
        with pytest.raises(PolygonError):
            service.import_collection('{"id": 1}')
        with pytest.raises(PolygonError):
            service.import_collection("not json")
