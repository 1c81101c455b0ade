"""HTTP API round trips through the Flask test client."""

from __future__ import annotations

from tests.conftest import SQUARE

SQUARE_JSON = [list(p) for p in SQUARE]


def create_polygon(client, **extra):
    response = client.post("/api/polygons", json={"coordinates": SQUARE_JSON, **extra})
    assert response.status_code == 201
    return response.get_json()["polygon"]


def create_session(client, **extra):
    body = {"width": 800, "height": 600, "center": [15, 15], "zoom": 4, **extra}
    response = client.post("/api/editor/sessions", json=body)
    assert response.status_code == 201
    return response.get_json()["session"]["id"]


class TestPolygonsApi:

    def test_create_list_get(self, client):
        polygon = create_polygon(client, annotation="NATIVE")
        assert polygon["colors"]["fill"] == "#10b981"

        listed = client.get("/api/polygons").get_json()["polygons"]
        assert [p["id"] for p in listed] == [polygon["id"]]
        assert client.get(f"/api/polygons/{polygon['id']}").get_json()["annotation"] == "NATIVE"

    def test_create_validation_error(self, client):
        response = client.post("/api/polygons", json={"coordinates": [[0, 0], [1, 1]]})
        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_missing_polygon(self, client):
        assert client.get("/api/polygons/nope").status_code == 404
        assert client.delete("/api/polygons/nope").status_code == 404

    def test_update_invert_annotation_species(self, client):
        polygon_id = create_polygon(client)["id"]
        response = client.put(f"/api/polygons/{polygon_id}/coordinates", json={"coordinates": SQUARE_JSON[:3]})
        assert response.get_json()["polygon"]["vertexCount"] == 3
        assert client.post(f"/api/polygons/{polygon_id}/invert").get_json()["polygon"]["inverted"] is True
        response = client.put(f"/api/polygons/{polygon_id}/annotation", json={"annotation": "bogus"})
        assert response.status_code == 400
        response = client.put(f"/api/polygons/{polygon_id}/species", json={"species": {"key": 1, "name": "X"}})
        assert response.get_json()["polygon"]["species"]["key"] == 1

    def test_wkt_round_trip(self, client):
        response = client.post("/api/polygons/import-wkt", json={"wkt": "POLYGON ((0 0, 10 0, 10 10, 0 0))"})
        assert response.status_code == 201
        polygon_id = response.get_json()["polygon"]["id"]
        wkt = client.get(f"/api/polygons/{polygon_id}/wkt").get_json()["wkt"]
        assert wkt.startswith("POLYGON")
        assert client.post("/api/polygons/import-wkt", json={"wkt": "garbage"}).status_code == 400

    def test_export_and_import(self, client):
        create_polygon(client)
        response = client.get("/api/polygons/export")
        assert response.mimetype == "application/json"
        data = response.get_json()
        data[0]["id"] = "again"
        assert client.post("/api/polygons/import", json=data).get_json()["imported"] == 1
        assert len(client.get("/api/polygons").get_json()["polygons"]) == 2

    def test_preview_png(self, client):
        polygon_id = create_polygon(client, inverted=True)["id"]
        response = client.get(f"/api/polygons/{polygon_id}/preview.png?width=128&height=96")
        assert response.status_code == 200
        assert response.mimetype == "image/png"
        assert response.data.startswith(b"\x89PNG")
        assert client.get(f"/api/polygons/{polygon_id}/preview.png?width=0").status_code == 400

    def test_map_config(self, client):
        data = client.get("/api/map-config").get_json()
        assert "{taxon_key}" in data["occurrenceTileUrl"]
        assert data["annotations"]["VAGRANT"] == {"fill": "#f97316", "stroke": "#ea580c"}


class TestEditorApi:

    def test_draw_polygon_through_pointer_events(self, client, app):
        session_id = create_session(client)
        base = f"/api/editor/sessions/{session_id}"
        assert client.post(f"{base}/drawing", json={"mode": "polygon"}).get_json()["started"]

        for x, y in [(300, 300), (500, 300), (400, 150)]:
            client.post(f"{base}/pointer/down", json={"x": x, "y": y, "at": 0})
            response = client.post(f"{base}/pointer/up", json={"x": x, "y": y, "at": 40})
            assert response.get_json()["outcome"]["kind"] == "click"

        session = client.get(base).get_json()["session"]
        assert session["editor"]["state"] == "drawing"
        assert len(session["editor"]["points"]) == 3
        assert session["editor"]["canFinish"]

        assert client.post(f"{base}/drawing/finish").get_json()["finished"]
        polygons = client.get("/api/polygons").get_json()["polygons"]
        assert len(polygons) == 1
        assert polygons[0]["vertexCount"] == 3

    def test_finish_too_early_reports_notice(self, client):
        session_id = create_session(client)
        base = f"/api/editor/sessions/{session_id}"
        client.post(f"{base}/drawing", json={"mode": "polygon"})
        body = client.post(f"{base}/drawing/finish").get_json()
        assert body["finished"] is False
        assert body["session"]["notices"][0]["level"] == "error"

    def test_frame_projects_saved_polygons(self, client):
        create_polygon(client)
        session_id = create_session(client)
        frame = client.get(f"/api/editor/sessions/{session_id}/frame").get_json()
        assert frame["viewport"]["zoom"] == 4
        assert [o["kind"] for o in frame["overlays"]] == ["polygon"]

    def test_latband_and_save_current(self, client):
        session_id = create_session(client)
        base = f"/api/editor/sessions/{session_id}"
        client.post(f"{base}/drawing", json={"mode": "latband"})
        client.post(f"{base}/drawing/band", json={"upperDelta": 2})
        client.post(f"{base}/drawing/finish")
        body = client.post(f"{base}/save-current").get_json()
        assert body["polygonId"]
        assert body["session"]["editor"]["editingPolygonId"] == body["polygonId"]
        assert body["session"]["currentPolygon"] is None

    def test_edit_commands(self, client):
        polygon_id = create_polygon(client)["id"]
        session_id = create_session(client)
        base = f"/api/editor/sessions/{session_id}"
        client.post(f"{base}/editing", json={"polygonId": polygon_id})
        assert client.get(f"/api/polygons/{polygon_id}").get_json()["vertexCount"] == 8

        body = client.post(f"{base}/context-menu", json={"target": {"type": "vertex", "polygonId": polygon_id, "part": 0, "index": 1}}).get_json()
        assert body["handled"]
        assert client.post(f"{base}/midpoint", json={"polygonId": polygon_id, "edge": 0}).get_json()["inserted"]
        assert client.post(f"{base}/decimate").get_json()["changed"]
        assert client.get(f"/api/polygons/{polygon_id}").get_json()["vertexCount"] == 4

    def test_invalid_target(self, client):
        session_id = create_session(client)
        response = client.post(
            f"/api/editor/sessions/{session_id}/pointer/down",
            json={"x": 1, "y": 1, "target": {"type": "planet", "polygonId": "x"}},
        )
        assert response.status_code == 400

    def test_investigate_click(self, client, occurrence_client):
        session_id = create_session(client, center=[0, 0])
        base = f"/api/editor/sessions/{session_id}"
        client.put(f"{base}/selection", json={"species": {"key": 2435099, "name": "Puma"}})
        client.put(f"{base}/investigate", json={"active": True, "radius": 50000})

        client.post(f"{base}/pointer/down", json={"x": 400, "y": 300, "at": 0})
        body = client.post(f"{base}/pointer/up", json={"x": 400, "y": 300, "at": 30}).get_json()
        assert body["outcome"]["investigate"]
        assert body["session"]["editor"]["state"] == "idle"

        investigation = client.get(f"{base}/investigation").get_json()["investigation"]
        assert investigation["status"] == "done"
        assert investigation["radius"] == 50000
        assert [o["key"] for o in investigation["occurrences"]] == [1, 2]
        assert occurrence_client.searches[0][0] == 2435099

        client.delete(f"{base}/investigation")
        assert client.get(f"{base}/investigation").get_json()["investigation"] is None

    def test_rules_overlay(self, client):
        session_id = create_session(client)
        base = f"/api/editor/sessions/{session_id}"
        response = client.put(f"{base}/rules", json={"rules": [
            {"id": "r1", "annotation": "NATIVE", "wkt": "POLYGON ((10 10, 20 10, 20 20, 10 20, 10 10))"},
        ]})
        assert response.get_json()["rules"][0]["id"] == "r1"
        frame = client.get(f"{base}/frame").get_json()
        assert frame["overlays"][0]["kind"] == "rule"
        assert frame["overlays"][0]["fillRule"] == "evenodd"
        assert client.put(f"{base}/rules", json={"rules": [{"id": "x", "wkt": "POINT (1 1)"}]}).status_code == 400

    def test_viewport_and_navigation(self, client):
        polygon_id = create_polygon(client)["id"]
        session_id = create_session(client)
        base = f"/api/editor/sessions/{session_id}"
        body = client.post(f"{base}/viewport", json={"center": [1, 2], "zoom": 5}).get_json()
        assert body["session"]["editor"]["animating"]
        client.post(f"{base}/viewport/settle")
        body = client.post(f"{base}/navigate", json={"polygonId": polygon_id}).get_json()
        assert body["session"]["editor"]["viewport"] == {"center": [10.0, 10.0], "zoom": 6.0}

    def test_unknown_session(self, client):
        assert client.get("/api/editor/sessions/missing").status_code == 404
        assert client.post("/api/editor/sessions/missing/cancel").status_code == 404

    def test_close_session(self, client):
        session_id = create_session(client)
        assert client.delete(f"/api/editor/sessions/{session_id}").status_code == 200
        assert client.get(f"/api/editor/sessions/{session_id}").status_code == 404
