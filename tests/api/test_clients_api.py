from uuid import uuid4


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _signup_and_login(client, email: str, password: str) -> str:
    signup = client.post(
        "/auth/signup",
        json={
            "email": email,
            "password": password,
            "name": "Coach Kim",
            "ai_config": {"ai_provider": "openai", "ai_model": "gpt-4o-mini", "ai_api_key": "sk-test-12345678"},
        },
    )
    assert signup.status_code == 201
    login = client.post("/auth/login", data={"username": email, "password": password})
    assert login.status_code == 200
    return login.json()["access_token"]


def test_signup_login_me_and_ai_config(client) -> None:
    email = f"coach_{uuid4().hex[:8]}@test.com"
    token = _signup_and_login(client, email, "StrongPass123")
    headers = _auth_headers(token)

    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == email
    assert me.json()["ai_configured"] is True

    cfg = client.get("/auth/ai-config", headers=headers)
    assert cfg.status_code == 200
    assert cfg.json()["ai_model"] == "gpt-4o-mini"
    assert cfg.json()["ai_vision_model"] == "gpt-4o"
    assert "sk-test" not in cfg.json()["api_key_masked"]

    updated = client.put(
        "/auth/ai-config",
        headers=headers,
        json={"ai_model": "gpt-4.1-mini", "ai_vision_model": "gpt-4.1", "ai_api_key": "sk-other-87654321"},
    )
    assert updated.status_code == 200
    assert updated.json()["ai_vision_model"] == "gpt-4.1"
    assert updated.json()["api_key_masked"] == "sk-o...4321"

    revoked = client.delete("/auth/ai-config", headers=headers)
    assert revoked.status_code == 204
    assert client.get("/auth/ai-config", headers=headers).status_code == 404


def test_duplicate_signup_and_bad_login(client) -> None:
    email = f"coach_{uuid4().hex[:8]}@test.com"
    _signup_and_login(client, email, "StrongPass123")
    dup = client.post("/auth/signup", json={"email": email, "password": "StrongPass123"})
    assert dup.status_code == 409
    bad = client.post("/auth/login", data={"username": email, "password": "WrongPass123"})
    assert bad.status_code == 401


def test_routes_require_token(client) -> None:
    assert client.get("/clients").status_code == 401
    assert client.get("/clients", headers=_auth_headers("not-a-token")).status_code == 401


def test_client_crud_and_archive(client, create_coach, auth_headers) -> None:
    coach = create_coach()
    headers = auth_headers(coach)

    created = client.post(
        "/clients",
        headers=headers,
        json={"name": "Dana", "email": "Dana@Example.com", "goal_type": "weight_loss", "weight_kg": 82.0},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["email"] == "dana@example.com"
    assert body["status"] == "active"
    assert body["progress_score"] == 0
    client_id = body["id"]

    patched = client.patch(f"/clients/{client_id}", headers=headers, json={"target_weight_kg": 75.0})
    assert patched.status_code == 200
    assert patched.json()["target_weight_kg"] == 75.0
    assert patched.json()["name"] == "Dana"

    archived = client.post(f"/clients/{client_id}/archive", headers=headers)
    assert archived.status_code == 200
    assert archived.json()["status"] == "archived"
    assert archived.json()["archived_at"] is not None

    active = client.get("/clients", headers=headers)
    assert [item["id"] for item in active.json()["items"]] == []
    everyone = client.get("/clients", headers=headers, params={"include_archived": True})
    assert [item["id"] for item in everyone.json()["items"]] == [client_id]

    # Archived clients are still readable.
    assert client.get(f"/clients/{client_id}", headers=headers).status_code == 200


def test_other_coach_cannot_see_client(client, create_coach, create_client, auth_headers) -> None:
    owner = create_coach()
    stranger = create_coach()
    row = create_client(owner)
    assert client.get(f"/clients/{row.id}", headers=auth_headers(stranger)).status_code == 404
    assert client.get(f"/clients/{row.id}/events", headers=auth_headers(stranger)).status_code == 404


def test_goals_create_list_update(client, create_coach, create_client, auth_headers) -> None:
    coach = create_coach()
    headers = auth_headers(coach)
    row = create_client(coach)

    created = client.post(
        f"/clients/{row.id}/goals",
        headers=headers,
        json={"goal_type": "weight_loss", "title": "Reach 75kg", "baseline_value": 85, "target_value": 75,
              "current_value": 80, "unit": "kg"},
    )
    assert created.status_code == 201
    goal_id = created.json()["id"]

    progress = client.get(f"/clients/{row.id}/progress", headers=headers)
    assert progress.json()["goal_progress"] == 50.0

    weekly = client.post(
        f"/clients/{row.id}/goals",
        headers=headers,
        json={"goal_type": "habit", "title": "3 workouts", "scope": "weekly_task", "target_value": 3,
              "week_start_date": "2026-03-11"},
    )
    assert weekly.status_code == 201
    assert weekly.json()["week_start_date"] == "2026-03-09"

    missing_week = client.post(
        f"/clients/{row.id}/goals",
        headers=headers,
        json={"goal_type": "habit", "title": "no week", "scope": "weekly_task", "target_value": 3},
    )
    assert missing_week.status_code == 422

    updated = client.patch(f"/goals/{goal_id}", headers=headers, json={"current_value": 75, "status": "active"})
    assert updated.status_code == 200
    assert updated.json()["current_value"] == 75
    assert client.get(f"/clients/{row.id}/progress", headers=headers).json()["goal_progress"] == 100.0

    listed = client.get(f"/clients/{row.id}/goals", headers=headers)
    assert len(listed.json()["items"]) == 2
