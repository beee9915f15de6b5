import os
import tempfile
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence
from uuid import uuid4

os.environ.setdefault("DB_PATH", str(Path(tempfile.mkdtemp(prefix="wellio_")) / "wellio_default.db"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from wellio.core.security import create_access_token, get_password_hash
from wellio.db.models import Client, Coach, Goal, ProgressEvent
from wellio.db.session import SessionLocal, configure_database, create_tables
from wellio.services.classifier import ClassificationError, OracleResult, get_classification_oracle


class FakeScenario(str, Enum):
    OK_MEAL = "OK_MEAL"
    OK_MIXED = "OK_MIXED"
    UNCLASSIFIABLE = "UNCLASSIFIABLE"
    INVALID_EVENTS = "INVALID_EVENTS"
    FAILURE = "FAILURE"


class FakeClassificationOracle:
    def __init__(self, scenario: FakeScenario) -> None:
        self.scenario = scenario
        self.calls: list[dict] = []

    def classify(
        self, db: Session, coach_id: Optional[int], text: Optional[str], media_urls: Sequence[str]
    ) -> OracleResult:
        self.calls.append({"coach_id": coach_id, "text": text, "media_urls": list(media_urls)})
        if self.scenario == FakeScenario.OK_MEAL:
            return OracleResult.model_validate(
                {
                    "events": [
                        {
                            "event_type": "food",
                            "data": {
                                "food_description": "chicken salad",
                                "calories_est": 450,
                                "protein_est_g": 35,
                            },
                            "confidence": 0.85,
                        }
                    ],
                    "confidence": 0.85,
                }
            )
        if self.scenario == FakeScenario.OK_MIXED:
            return OracleResult.model_validate(
                {
                    "events": [
                        {"event_type": "weight", "data": {"value": 165, "unit": "lbs"}, "confidence": 0.75},
                        {
                            "event_type": "workout",
                            "data": {"type": "strength", "duration_min": 45, "intensity": "medium"},
                            "confidence": 0.9,
                        },
                        {"event_type": "checkin_mood", "data": {"rating": 7}},
                    ],
                    "confidence": 0.8,
                }
            )
        if self.scenario == FakeScenario.UNCLASSIFIABLE:
            return OracleResult(events=[], confidence=0.2)
        if self.scenario == FakeScenario.INVALID_EVENTS:
            return OracleResult.model_validate(
                {
                    "events": [
                        {"event_type": "other", "data": {}},
                        {"event_type": "weight", "data": {"value": -3, "unit": "kg"}},
                    ],
                    "confidence": 0.4,
                }
            )
        if self.scenario == FakeScenario.FAILURE:
            raise ClassificationError("OpenAI request failed: request timed out")
        raise ValueError("Unknown fake scenario")


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "wellio_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from wellio.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def create_coach(db_session: Session) -> Callable[..., Coach]:
    def _create_coach() -> Coach:
        coach = Coach(
            email=f"coach_{uuid4().hex[:10]}@test.com",
            name="Test Coach",
            password_hash=get_password_hash("StrongPass123"),
        )
        db_session.add(coach)
        db_session.commit()
        db_session.refresh(coach)
        return coach

    return _create_coach


@pytest.fixture
def create_client(db_session: Session) -> Callable[..., Client]:
    def _create_client(coach: Optional[Coach] = None, status: str = "active") -> Client:
        row = Client(
            coach_id=coach.id if coach else None,
            name=f"Client {uuid4().hex[:6]}",
            email=f"client_{uuid4().hex[:10]}@test.com",
            status=status,
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _create_client


@pytest.fixture
def auth_headers() -> Callable[[Coach], dict[str, str]]:
    def _headers(coach: Coach) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(coach.id)}"}

    return _headers


@pytest.fixture
def seed_events(db_session: Session):
    def _seed(
        client_id: int,
        event_type: str,
        days_ago: Sequence[float],
        now: Optional[datetime] = None,
        data_json: str = "{}",
    ) -> list[ProgressEvent]:
        anchor = now or datetime.now(timezone.utc)
        rows = []
        for offset in days_ago:
            occurred = anchor - timedelta(days=offset)
            rows.append(
                ProgressEvent(
                    client_id=client_id,
                    event_type=event_type,
                    source="explicit",
                    data_json=data_json,
                    confidence=1.0,
                    date_for_metric=occurred.date(),
                    occurred_at=occurred,
                )
            )
        db_session.add_all(rows)
        db_session.commit()
        return rows

    return _seed


@pytest.fixture
def seed_goal(db_session: Session):
    def _seed(client_id: int, **fields) -> Goal:
        values = {
            "goal_type": "weight_loss",
            "title": "Lose weight",
            "scope": "long_term",
            "baseline_value": 0.0,
            "target_value": 10.0,
            "current_value": 5.0,
            "status": "active",
        }
        values.update(fields)
        row = Goal(client_id=client_id, **values)
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _seed


@pytest.fixture
def fake_oracle_factory() -> Callable[[FakeScenario], FakeClassificationOracle]:
    def _factory(scenario: FakeScenario) -> FakeClassificationOracle:
        return FakeClassificationOracle(scenario=scenario)

    return _factory


@pytest.fixture
def override_oracle(app, fake_oracle_factory):
    def _override(scenario: FakeScenario) -> FakeClassificationOracle:
        oracle = fake_oracle_factory(scenario)
        app.dependency_overrides[get_classification_oracle] = lambda: oracle
        return oracle

    return _override


@pytest.fixture
def today() -> date:
    return datetime.now(timezone.utc).date()
