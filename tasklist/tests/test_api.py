"""
HTTP-level tests: routing, status code mapping and the optional API key.
"""

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tasklist import config

logger = logging.getLogger(__name__)


@pytest.fixture
def api_list(client: TestClient) -> dict:
    response = client.post("/api/lists", json={"name": "Inbox", "description": "Unsorted"})
    assert response.status_code == 201, f"Failed to create list: {response.text}"
    return response.json()


def test_health_check(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "ok"}


# ============== CRUD over HTTP ==============


def test_task_lifecycle(client: TestClient, api_list: dict):
    """Test create, read, update, delete of a task through the API."""
    logger.debug("Testing task lifecycle over HTTP")
    response = client.post("/api/tasks", json={
        "title": "Sort mail",
        "list_id": api_list["id"],
        "priority": "high",
        "estimated_hours": 0.5,
    })
    assert response.status_code == 201
    task = response.json()
    assert task["status"] == "pending"
    assert task["estimated_hours"] == 0.5
    assert task["tags"] == []

    response = client.put(f"/api/tasks/{task['id']}", json={"status": "completed"})
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["priority"] == "high"

    assert client.delete(f"/api/tasks/{task['id']}").status_code == 200
    assert client.get(f"/api/tasks/{task['id']}").status_code == 404
    assert client.delete(f"/api/tasks/{task['id']}").status_code == 404
    logger.info("✓ Task lifecycle completed")


def test_list_details_and_tree(client: TestClient, api_list: dict):
    child = client.post("/api/lists", json={"name": "Bills", "parent_list_id": api_list["id"]}).json()
    client.post("/api/tasks", json={"title": "Pay rent", "list_id": child["id"]})

    details = client.get(f"/api/lists/{child['id']}").json()
    assert details["path"] == ["Inbox", "Bills"]
    assert details["parent_name"] == "Inbox"
    assert details["task_count"] == 1

    tree = client.get("/api/lists", params={"hierarchical": True}).json()
    assert [root["name"] for root in tree] == ["Inbox"]
    assert [c["name"] for c in tree[0]["children"]] == ["Bills"]


def test_move_task(client: TestClient, api_list: dict):
    other = client.post("/api/lists", json={"name": "Later"}).json()
    task = client.post("/api/tasks", json={"title": "Read book", "list_id": api_list["id"]}).json()

    response = client.post(f"/api/tasks/{task['id']}/move", json={"target_list_id": other["id"]})
    assert response.status_code == 200
    assert response.json()["list_id"] == other["id"]

    response = client.post(f"/api/tasks/{task['id']}/move", json={"target_list_id": None})
    assert response.json()["list_id"] is None


def test_tags_and_attributes_over_http(client: TestClient, api_list: dict):
    task = client.post("/api/tasks", json={"title": "Renew passport", "list_id": api_list["id"]}).json()
    tag = client.post("/api/tags", json={"name": "urgent", "color": "red"}).json()

    assert client.post(f"/api/tasks/{task['id']}/tags/{tag['id']}").json() == {"success": True}
    assert client.get(f"/api/tasks/{task['id']}").json()["tags"][0]["name"] == "urgent"

    definition = client.post("/api/attributes", json={
        "name": "effort", "type": "integer", "validation_rules": {"min": 1, "max": 5}
    }).json()
    response = client.put(f"/api/tasks/{task['id']}/attributes/{definition['id']}", json={"value": "9"})
    assert response.status_code == 400
    assert response.json()["context"]["constraint"] == "max"

    response = client.put(f"/api/tasks/{task['id']}/attributes/{definition['id']}", json={"value": "3"})
    assert response.status_code == 200
    assert response.json()["value"] == "3"


def test_template_apply_over_http(client: TestClient, api_list: dict):
    client.post("/api/tasks", json={"title": "Step one", "list_id": api_list["id"]})
    template = client.post("/api/templates/from-list", json={"list_id": api_list["id"], "name": "Routine"})
    assert template.status_code == 201

    response = client.post(f"/api/templates/{template.json()['id']}/apply", json={"list_name": "Monday"})
    assert response.status_code == 201
    new_list = response.json()

    tasks = client.get("/api/tasks", params={"list_id": new_list["id"]}).json()
    assert [t["title"] for t in tasks] == ["Step one"]


def test_search_endpoints(client: TestClient, api_list: dict):
    client.post("/api/tasks", json={"title": "Buy milk", "list_id": api_list["id"]})
    client.post("/api/tasks", json={"title": "Buy eggs", "list_id": api_list["id"]})

    response = client.post("/api/search/tasks", json={"query": "milk"})
    assert [t["title"] for t in response.json()] == ["Buy milk"]

    assert client.get("/api/search/suggestions", params={"q": "buy"}).json() == ["Buy eggs", "Buy milk"]

    counts = client.get("/api/analytics/status-counts").json()
    assert counts["pending"] == 2
    assert counts["completed"] == 0


# ============== Error mapping ==============


@pytest.mark.parametrize("payload, expected_status, expected_error", [
    ({"title": "", "list_id": 1}, 400, "validation_error"),
    ({"title": "Negative", "list_id": 1, "estimated_hours": -1}, 400, "validation_error"),
    ({"title": "Orphan", "list_id": 999}, 404, "not_found"),
])
def test_task_errors_map_to_status(client: TestClient, api_list: dict, payload, expected_status, expected_error):
    response = client.post("/api/tasks", json=payload)

    assert response.status_code == expected_status, response.text
    body = response.json()
    assert body["error"] == expected_error
    assert body["detail"]


def test_conflict_and_cycle_map_to_409(client: TestClient, api_list: dict):
    """Test that duplicates, blocked deletes and cycles all answer 409."""
    client.post("/api/tags", json={"name": "dup"})
    response = client.post("/api/tags", json={"name": "dup"})
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"

    child = client.post("/api/lists", json={"name": "Child", "parent_list_id": api_list["id"]}).json()
    response = client.put(f"/api/lists/{api_list['id']}", json={"parent_list_id": child["id"]})
    assert response.status_code == 409
    assert response.json()["error"] == "cycle"

    response = client.delete(f"/api/lists/{api_list['id']}")
    assert response.status_code == 409
    assert client.delete(f"/api/lists/{api_list['id']}", params={"cascade": True}).status_code == 200
    logger.info("✓ Conflicts mapped to 409")


def test_request_shape_errors(client: TestClient):
    assert client.post("/api/tasks", json={"title": "No list"}).status_code == 422
    assert client.post("/api/search/tasks", json={"sort_by": "random"}).status_code == 422


# ============== API key ==============


def test_api_key_required_when_configured(client: TestClient, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", "s3cret")

    assert client.get("/api/lists").status_code == 401
    assert client.get("/api/lists", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get("/api/lists", headers={"X-API-Key": "s3cret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_store_failure_maps_to_503(client: TestClient, test_db: Session, monkeypatch):
    """Test that a persistence failure answers 503 and leaves nothing behind."""
    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(test_db, "commit", failing_commit)

    response = client.post("/api/lists", json={"name": "Unlucky"})

    assert response.status_code == 503, response.text
    assert response.json()["error"] == "store_error"
    assert client.get("/api/lists").json() == []
