from datetime import datetime, timedelta, timezone

from wellio.db.models import EngagementTrigger
from wellio.services.engagement_service import evaluate_all_clients, evaluate_client_engagement


def test_evaluate_creates_inactivity_trigger_once(client, create_coach, create_client, auth_headers, seed_events):
    coach = create_coach()
    headers = auth_headers(coach)
    row = create_client(coach)
    seed_events(row.id, "nutrition", [5, 8])

    first = client.post(f"/clients/{row.id}/engagement/evaluate", headers=headers)
    assert first.status_code == 200
    created = first.json()["created"]
    assert len(created) == 1
    assert created[0]["type"] == "inactivity"
    assert created[0]["severity"] == "high"
    assert created[0]["client_name"] == row.name

    second = client.post(f"/clients/{row.id}/engagement/evaluate", headers=headers)
    assert second.json()["created"] == []
    assert second.json()["escalated"] == []

    open_triggers = client.get("/triggers", headers=headers, params={"client_id": row.id})
    assert len(open_triggers.json()["items"]) == 1


def test_resolved_trigger_can_fire_again(client, create_coach, create_client, auth_headers, seed_events):
    coach = create_coach()
    headers = auth_headers(coach)
    row = create_client(coach)
    seed_events(row.id, "sleep", [6])

    trigger_id = client.post(f"/clients/{row.id}/engagement/evaluate", headers=headers).json()["created"][0]["id"]
    resolved = client.post(f"/triggers/{trigger_id}/resolve", headers=headers)
    assert resolved.status_code == 200
    assert resolved.json()["resolved_at"] is not None

    assert client.get("/triggers", headers=headers, params={"client_id": row.id}).json()["items"] == []
    history = client.get("/triggers", headers=headers, params={"client_id": row.id, "include_resolved": True})
    assert len(history.json()["items"]) == 1

    again = client.post(f"/clients/{row.id}/engagement/evaluate", headers=headers)
    assert len(again.json()["created"]) == 1


def test_client_without_events_gets_no_triggers(client, create_coach, create_client, auth_headers):
    coach = create_coach()
    row = create_client(coach)
    response = client.post(f"/clients/{row.id}/engagement/evaluate", headers=auth_headers(coach))
    assert response.json() == {"client_id": row.id, "created": [], "escalated": []}


def test_missed_workout_detected_from_stored_events(db_session, create_client, seed_events):
    row = create_client()
    now = datetime.now(timezone.utc)
    seed_events(row.id, "exercise", [5.5, 6, 6.5, 7, 7.5, 8, 9, 12, 14, 1], now=now)

    result = evaluate_client_engagement(db_session, row.id, now=now)
    assert [trigger.type for trigger in result.created] == ["missed_workout"]
    assert result.created[0].severity == "medium"
    assert result.created[0].coach_id is None


def test_open_trigger_is_escalated_not_duplicated(db_session, create_client, seed_events):
    row = create_client()
    now = datetime.now(timezone.utc)
    seed_events(row.id, "mood", [4], now=now)
    existing = EngagementTrigger(
        client_id=row.id,
        type="inactivity",
        severity="low",
        reason="Quiet for a bit.",
        detected_at=now - timedelta(days=1),
    )
    db_session.add(existing)
    db_session.commit()

    result = evaluate_client_engagement(db_session, row.id, now=now)
    assert result.created == []
    assert [trigger.id for trigger in result.escalated] == [existing.id]
    db_session.refresh(existing)
    assert existing.severity == "high"
    assert "4 days" in existing.reason
    assert db_session.query(EngagementTrigger).filter(EngagementTrigger.client_id == row.id).count() == 1


def test_evaluate_all_clients_for_coach(db_session, create_coach, create_client, seed_events):
    coach = create_coach()
    quiet = create_client(coach)
    busy = create_client(coach)
    create_client(coach, status="archived")
    seed_events(quiet.id, "nutrition", [10])
    seed_events(busy.id, "nutrition", [0.5])

    batch = evaluate_all_clients(db_session, coach_id=coach.id)
    assert batch.evaluated == 2
    assert batch.created == 1
    assert batch.failures == {}


def test_resolve_unknown_or_foreign_trigger(client, create_coach, create_client, auth_headers, seed_events):
    owner = create_coach()
    row = create_client(owner)
    seed_events(row.id, "sleep", [6])
    trigger_id = client.post(
        f"/clients/{row.id}/engagement/evaluate", headers=auth_headers(owner)
    ).json()["created"][0]["id"]

    stranger = create_coach()
    assert client.post(f"/triggers/{trigger_id}/resolve", headers=auth_headers(stranger)).status_code == 404
    assert client.post("/triggers/987654321/resolve", headers=auth_headers(owner)).status_code == 404


def test_evaluate_all_clients_continues_past_unexpected_error(db_session, create_coach, create_client, seed_events):
    from unittest.mock import patch

    from wellio.services import engagement_service

    coach = create_coach()
    broken = create_client(coach)
    quiet = create_client(coach)
    seed_events(quiet.id, "nutrition", [10])
    real_evaluate = engagement_service.evaluate_client_engagement

    def flaky_evaluate(db, client_id, now=None):
        if client_id == broken.id:
            raise AttributeError("'NoneType' object has no attribute 'occurred_at'")
        return real_evaluate(db, client_id, now=now)

    with patch.object(engagement_service, "evaluate_client_engagement", side_effect=flaky_evaluate):
        batch = evaluate_all_clients(db_session, coach_id=coach.id)

    assert batch.evaluated == 1
    assert batch.created == 1
    assert list(batch.failures) == [broken.id]


def test_nutrition_goal_client_gets_meal_gap_trigger(db_session, create_client, seed_events, seed_goal):
    row = create_client()
    now = datetime.now(timezone.utc)
    seed_goal(row.id, goal_type="calories", title="Hit 2000 kcal")
    seed_events(row.id, "exercise", [0.5, 1.5], now=now)
    seed_events(row.id, "nutrition", [5.5], now=now)

    result = evaluate_client_engagement(db_session, row.id, now=now)
    assert [trigger.type for trigger in result.created] == ["nutrition_concern"]
    assert result.created[0].severity == "high"

    again = evaluate_client_engagement(db_session, row.id, now=now)
    assert again.created == [] and again.escalated == []
