import httpx
import pytest

from conftest import FakeModel, make_client
from disaster_response.exceptions import RepositoryError
from disaster_response.repository import DataStore, MemoryRepository


class UnreachableRepository:
    """Every database call fails the way a dead connection does."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RepositoryError("could not connect to server")
        return fail


def test_list_disasters_paginates(client):
    resp = client.get("/api/disasters", params={"limit": 2})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert len(body["data"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}


def test_list_disasters_filters(client):
    tagged = client.get("/api/disasters", params={"tag": "flood"}).json()
    assert [d["id"] for d in tagged["data"]] == ["disaster-1"]

    searched = client.get("/api/disasters", params={"search": "wildfire"}).json()
    assert [d["id"] for d in searched["data"]] == ["disaster-2"]

    owned = client.get("/api/disasters", params={"owner_id": "netrunnerX"}).json()
    assert {d["id"] for d in owned["data"]} == {"disaster-1", "disaster-3"}


@pytest.mark.parametrize("payload", [
    {"title": "", "description": "Water everywhere"},
    {"title": "   ", "description": "Water everywhere"},
    {"title": "Flood"},
])
def test_create_disaster_requires_title_and_description(client, payload):
    resp = client.post("/api/disasters", json=payload)
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Invalid request data"
    assert body["details"]

    assert client.get("/api/disasters").json()["pagination"]["total"] == 3


def test_create_disaster_without_ai_uses_unknown_location(client):
    resp = client.post(
        "/api/disasters",
        json={"title": "Test Flood", "description": "Flooding near the river bank", "tags": ["flood"]},
        headers={"X-User-Id": "netrunnerX"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["message"] == "Disaster created successfully"
    disaster = body["data"]
    assert disaster["location_name"] == "Unknown Location"
    assert "location" not in disaster
    assert disaster["owner_id"] == "netrunnerX"
    assert [entry["action"] for entry in disaster["audit_trail"]] == ["create"]

    fetched = client.get(f"/api/disasters/{disaster['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["title"] == "Test Flood"


def test_create_disaster_extracts_location_from_description():
    model = FakeModel("Main St, Springfield")
    with make_client(ai_model=model) as client:
        resp = client.post("/api/disasters", json={
            "title": "Test Flood",
            "description": "Water rising fast on Main St in Springfield",
        })

    assert resp.status_code == 201
    assert resp.json()["data"]["location_name"] == "Main St, Springfield"
    assert len(model.prompts) == 1


def test_explicit_location_name_skips_extraction():
    model = FakeModel("Somewhere Else")
    with make_client(ai_model=model) as client:
        resp = client.post("/api/disasters", json={
            "title": "Quake",
            "description": "Shaking felt downtown",
            "location_name": "Dallas, TX",
        })

    assert resp.json()["data"]["location_name"] == "Dallas, TX"
    assert model.prompts == []


def test_update_disaster_appends_audit_entry(client):
    resp = client.put("/api/disasters/disaster-1", json={"title": "NYC Flood (updated)"},
                      headers={"X-User-Id": "reliefAdmin"})
    assert resp.status_code == 200
    disaster = resp.json()["data"]
    assert disaster["title"] == "NYC Flood (updated)"
    assert disaster["location_name"] == "Manhattan, NYC"
    assert disaster["audit_trail"][-1]["action"] == "update"
    assert disaster["audit_trail"][-1]["user_id"] == "reliefAdmin"
    assert disaster["audit_trail"][-1]["details"] == {"title": "NYC Flood (updated)"}


def test_update_missing_disaster_is_404(client):
    resp = client.put("/api/disasters/disaster-404", json={"title": "Nope"})
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Disaster not found"}


def test_delete_disaster_cascades(client):
    resp = client.delete("/api/disasters/disaster-2")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Disaster deleted successfully"

    assert client.get("/api/disasters/disaster-2").status_code == 404
    assert client.get("/api/reports/report-3").status_code == 404
    assert client.get("/api/resources/resource-3").status_code == 404
    assert client.delete("/api/disasters/disaster-2").status_code == 404


def test_disaster_statistics(client):
    resp = client.get("/api/disasters/disaster-1/statistics")
    assert resp.status_code == 200
    stats = resp.json()["data"]
    assert stats["reports_count"] == 2
    assert stats["resources_count"] == 2
    assert stats["reports_by_status"] == {"verified": 2}
    assert stats["resources_by_type"] == {"shelter": 1, "hospital": 1}
    assert stats["disaster"]["id"] == "disaster-1"


def test_unreachable_database_falls_back_to_mock_mode():
    with make_client() as client:
        services = client.app.state.services
        services.store = DataStore(UnreachableRepository(), MemoryRepository())

        listed = client.get("/api/disasters")
        created = client.post("/api/disasters", json={"title": "Test Flood", "description": "Rising water"})
        updated = client.put("/api/disasters/disaster-3", json={"tags": ["tornado"]})

    assert listed.status_code == 200
    assert listed.json()["message"] == "Disasters retrieved (mock mode)"
    assert listed.json()["pagination"]["total"] == 3

    assert created.status_code == 201
    assert created.json()["message"] == "Disaster created successfully (mock mode)"

    assert updated.status_code == 200
    assert updated.json()["message"] == "Disaster updated successfully (mock mode)"


def test_memory_backend_is_not_reported_as_mock_mode(client):
    listed = client.get("/api/disasters").json()
    updated = client.put("/api/disasters/disaster-3", json={"tags": ["tornado"]}).json()

    assert "message" not in listed
    assert updated["message"] == "Disaster updated successfully"


def test_geocoder_error_reply_keeps_disaster_unlocated():
    def nominatim(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "Unable to geocode"})

    with make_client(transport=httpx.MockTransport(nominatim)) as client:
        resp = client.post("/api/disasters", json={
            "title": "Flood",
            "description": "Water",
            "location_name": "Nowhere",
        })

    assert resp.status_code == 201
    disaster = resp.json()["data"]
    assert disaster["location_name"] == "Nowhere"
    assert "location" not in disaster
