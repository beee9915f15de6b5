import json

import pytest

from wellio.api import webhooks
from wellio.core.security import sign_webhook_body
from wellio.db.models import ProgressEvent

SECRET = "rook-test-secret"


@pytest.fixture(autouse=True)
def rook_secret(monkeypatch):
    monkeypatch.setattr(webhooks, "ROOK_SECRET_KEY", SECRET)


def _post(client, payload, secret: str = SECRET):
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json", "X-ROOK-HASH": sign_webhook_body(secret, body)}
    return client.post("/webhooks/rook", content=body, headers=headers)


def _physical(user_id) -> dict:
    return {
        "type": "PHYSICAL",
        "user_id": str(user_id),
        "timestamp": "2026-03-09T18:00:00Z",
        "data": {
            "physical_summary": {
                "active_durations_data": {"activity_seconds": 1800},
                "heart_rate_data": {"avg_hr_bpm": 128},
                "activities": [{"name": "rowing"}],
            }
        },
    }


def test_signed_payload_creates_device_event(client, db_session, create_client):
    row = create_client()
    response = _post(client, _physical(row.id))
    assert response.status_code == 200
    assert response.json() == {"events_created": 1}

    event = db_session.query(ProgressEvent).filter(ProgressEvent.client_id == row.id).one()
    assert event.source == "device_sync"
    assert event.event_type == "exercise"
    data = json.loads(event.data_json)
    assert data["duration_min"] == 30
    assert data["intensity"] == "moderate"
    assert data["workout_type"] == "rowing"


def test_bad_signature_is_rejected(client, create_client):
    row = create_client()
    assert _post(client, _physical(row.id), secret="wrong-secret").status_code == 401
    missing = client.post("/webhooks/rook", content=json.dumps(_physical(row.id)).encode("utf-8"))
    assert missing.status_code == 401


def test_unset_secret_rejects_everything(client, create_client, monkeypatch):
    monkeypatch.setattr(webhooks, "ROOK_SECRET_KEY", "")
    row = create_client()
    assert _post(client, _physical(row.id), secret="").status_code == 401


def test_unknown_client_is_acknowledged(client):
    response = _post(client, _physical(987654321))
    assert response.status_code == 200
    assert response.json() == {"events_created": 0}


def test_unmappable_payload_is_acknowledged(client, db_session, create_client):
    row = create_client()
    response = _post(client, {"type": "PHYSICAL", "user_id": str(row.id), "data": {"physical_summary": {}}})
    assert response.status_code == 200
    assert response.json() == {"events_created": 0}
    assert db_session.query(ProgressEvent).filter(ProgressEvent.client_id == row.id).count() == 0


def test_non_json_body_is_acknowledged(client):
    body = b"not json"
    headers = {"X-ROOK-HASH": sign_webhook_body(SECRET, body)}
    response = client.post("/webhooks/rook", content=body, headers=headers)
    assert response.status_code == 200
    assert response.json() == {"events_created": 0}


def test_rescore_failure_still_acknowledges_stored_events(client, db_session, create_client, monkeypatch):
    row = create_client()

    def failing_rescore(db, client_id, now=None):
        raise RuntimeError("scoring exploded")

    monkeypatch.setattr(webhooks, "update_client_progress", failing_rescore)
    response = _post(client, _physical(row.id))
    assert response.status_code == 200
    assert response.json() == {"events_created": 1}
    assert db_session.query(ProgressEvent).filter(ProgressEvent.client_id == row.id).count() == 1
