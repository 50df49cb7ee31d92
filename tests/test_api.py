"""
Tests for the HTTP surface.

Lifecycle errors map to status codes:
- 404 unknown label or batch
- 400 rejected input, 422 for schema violations
- 409 transitions the state machine refuses
"""
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from labeltrack.database import get_db
from labeltrack.main import app


@pytest.fixture
def client(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _generate(client, quantity=1, sku_id="sku_vodka_750"):
    response = client.post("/api/labels/generate", json={
        "sku_id": sku_id,
        "quantity": quantity,
        "actor_id": "user_123",
    })
    assert response.status_code == 201, response.text
    return response.json()


class TestGenerateEndpoint:

    def test_generate_batch(self, client):
        body = _generate(client, quantity=3)

        assert body["count"] == 3
        assert body["batch"]["quantity"] == 3
        assert {label["status"] for label in body["labels"]} == {"UNASSIGNED"}
        assert len({label["code"] for label in body["labels"]}) == 3

    def test_quantity_above_limit_rejected(self, client):
        response = client.post("/api/labels/generate", json={
            "sku_id": "sku_vodka_750",
            "quantity": 501,
            "actor_id": "user_123",
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "InvalidQuantity"

    def test_zero_quantity_fails_validation(self, client):
        response = client.post("/api/labels/generate", json={
            "sku_id": "sku_vodka_750",
            "quantity": 0,
            "actor_id": "user_123",
        })

        assert response.status_code == 422

    def test_batch_print_sheet(self, client):
        body = _generate(client, quantity=2)

        response = client.get(f"/api/batches/{body['batch']['id']}")

        assert response.status_code == 200
        rows = response.json()["labels"]
        assert len(rows) == 2
        assert all(row["qr_content"] == f"barmetrics://label/{row['code']}" for row in rows)

        assert client.get("/api/batches/missing").status_code == 404


class TestScanEndpoint:

    def test_scan_by_code_and_qr_content(self, client):
        label = _generate(client)["labels"][0]

        by_code = client.get(f"/api/labels/scan/{label['code']}", params={"actor_id": "user_123"})
        qr = quote(f"barmetrics://label/{label['code']}", safe="")
        by_qr = client.get(f"/api/labels/scan/{qr}", params={"actor_id": "user_123"})

        assert by_code.status_code == 200
        assert by_qr.status_code == 200
        assert by_qr.json()["label"]["id"] == label["id"]
        assert by_qr.json()["warning"] is None
        assert by_qr.json()["recent_events"][0]["event_type"] == "SCANNED"

    def test_scan_unknown_and_malformed(self, client):
        assert client.get("/api/labels/scan/BM-23456789").status_code == 404
        assert client.get("/api/labels/scan/not-a-label").status_code == 400

    def test_scan_retired_label_warns(self, client):
        label = _generate(client)["labels"][0]
        client.post(f"/api/labels/{label['id']}/retire", json={"reason": "LOST", "actor_id": "user_123"})

        response = client.get(f"/api/labels/scan/{label['code']}")

        assert response.status_code == 200
        assert response.json()["warning"] == "This label has been retired"


class TestTransitionEndpoints:

    def test_assign_is_idempotent(self, client):
        label = _generate(client)["labels"][0]
        payload = {"location": "Main Bar", "actor_id": "user_123"}

        first = client.post(f"/api/labels/{label['id']}/assign", json=payload)
        second = client.post(f"/api/labels/{label['id']}/assign", json=payload)

        assert first.status_code == 200
        assert first.json()["idempotent"] is False
        assert first.json()["label"]["status"] == "ASSIGNED"
        assert second.status_code == 200
        assert second.json()["idempotent"] is True

        history = client.get(f"/api/labels/{label['id']}/history").json()
        assert [e["event_type"] for e in history["events"]] == ["ASSIGNED", "CREATED"]

    def test_assign_unknown_label(self, client):
        response = client.post("/api/labels/missing/assign", json={"location": "Main Bar", "actor_id": "user_123"})

        assert response.status_code == 404

    def test_double_retire_conflicts(self, client):
        label = _generate(client)["labels"][0]
        url = f"/api/labels/{label['id']}/retire"

        first = client.post(url, json={"reason": "DAMAGED", "actor_id": "user_123"})
        second = client.post(url, json={"reason": "LOST", "actor_id": "user_123"})

        assert first.status_code == 200
        assert first.json()["retired_reason"] == "DAMAGED"
        assert second.status_code == 409
        assert second.json()["detail"]["error"] == "AlreadyRetired"

    def test_assign_retired_label_conflicts(self, client):
        label = _generate(client)["labels"][0]
        client.post(f"/api/labels/{label['id']}/retire", json={"reason": "EXPIRED", "actor_id": "user_123"})

        response = client.post(f"/api/labels/{label['id']}/assign", json={"location": "Main Bar", "actor_id": "user_123"})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "LabelRetired"

    def test_invalid_reason_fails_validation(self, client):
        label = _generate(client)["labels"][0]

        response = client.post(f"/api/labels/{label['id']}/retire", json={"reason": "STOLEN", "actor_id": "user_123"})

        assert response.status_code == 422

    def test_reprint_chain(self, client):
        label = _generate(client)["labels"][0]
        client.post(f"/api/labels/{label['id']}/assign", json={"location": "Main Bar", "actor_id": "user_123"})

        response = client.post(f"/api/labels/{label['id']}/reprint", json={"reason": "FADED", "actor_id": "user_123"})

        assert response.status_code == 201
        old, new = response.json()["old_label"], response.json()["new_label"]
        assert old["status"] == "RETIRED"
        assert old["retired_reason"] == "REPRINTED: FADED"
        assert old["replaced_by_label_id"] == new["id"]
        assert new["replaces_label_id"] == old["id"]
        assert new["status"] == "ASSIGNED"
        assert new["location"] == "Main Bar"

        again = client.post(f"/api/labels/{label['id']}/reprint", json={"reason": "LOST", "actor_id": "user_123"})
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "AlreadyReplaced"
        assert again.json()["detail"]["replaced_by_label_id"] == new["id"]


class TestReadEndpoints:

    def test_list_labels_by_status(self, client):
        labels = _generate(client, quantity=2)["labels"]
        client.post(f"/api/labels/{labels[0]['id']}/assign", json={"location": "Main Bar", "actor_id": "user_123"})

        response = client.get("/api/labels", params={"status": "ASSIGNED"})

        assert response.status_code == 200
        assert [label["id"] for label in response.json()] == [labels[0]["id"]]

    def test_get_label(self, client):
        label = _generate(client)["labels"][0]

        assert client.get(f"/api/labels/{label['id']}").json()["code"] == label["code"]
        assert client.get("/api/labels/missing").status_code == 404
        assert client.get("/api/labels/missing/history").status_code == 404

    def test_audit_search(self, client):
        label = _generate(client)["labels"][0]
        client.post(f"/api/labels/{label['id']}/assign", json={"location": "Patio Bar", "actor_id": "user_456"})

        response = client.get("/api/audit/label-events", params={"user_id": "user_456"})

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["events"][0]["to_value"]["location"] == "Patio Bar"

        assert client.get("/api/audit/label-events", params={"limit": 0}).status_code == 422

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "service": "Label Tracker"}
