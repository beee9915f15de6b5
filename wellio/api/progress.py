from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wellio.api.auth import get_current_coach
from wellio.api.clients import get_owned_client
from wellio.core.scoring import (
    ACTIVITY_WEIGHT,
    GOAL_WEIGHT,
    WEEKLY_WEIGHT,
    ProgressBreakdown,
    update_all_clients_progress,
    update_client_progress,
)
from wellio.db.models import Client, Coach
from wellio.db.session import get_db

router = APIRouter(tags=["progress"])


class ProgressResponse(BaseModel):
    client_id: int
    progress_score: int
    composite_score: float
    goal_progress: float
    weekly_progress: float
    activity_progress: float
    progress_updated_at: Optional[datetime] = None


class BatchFailure(BaseModel):
    client_id: int
    error: str


class BatchProgressResponse(BaseModel):
    updated: list[ProgressResponse]
    failures: list[BatchFailure]


def _from_breakdown(client: Client, breakdown: ProgressBreakdown) -> ProgressResponse:
    return ProgressResponse(
        client_id=client.id,
        progress_score=client.progress_score,
        composite_score=round(breakdown.composite_score, 2),
        goal_progress=round(breakdown.goal_progress, 2),
        weekly_progress=round(breakdown.weekly_progress, 2),
        activity_progress=round(breakdown.activity_progress, 2),
        progress_updated_at=client.progress_updated_at,
    )


def _from_client(client: Client) -> ProgressResponse:
    goal = client.goal_progress or 0.0
    weekly = client.weekly_progress or 0.0
    activity = client.activity_progress or 0.0
    return _from_breakdown(
        client,
        ProgressBreakdown(
            composite_score=goal * GOAL_WEIGHT + weekly * WEEKLY_WEIGHT + activity * ACTIVITY_WEIGHT,
            goal_progress=goal,
            weekly_progress=weekly,
            activity_progress=activity,
        ),
    )


@router.get("/clients/{client_id}/progress", response_model=ProgressResponse)
def get_progress(
    client_id: int,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> ProgressResponse:
    return _from_client(get_owned_client(db, coach, client_id))


@router.post("/clients/{client_id}/progress/recalculate", response_model=ProgressResponse)
def recalculate_progress(
    client_id: int,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> ProgressResponse:
    client = get_owned_client(db, coach, client_id)
    breakdown = update_client_progress(db, client.id)
    db.refresh(client)
    return _from_breakdown(client, breakdown)


@router.post("/progress/recalculate-all", response_model=BatchProgressResponse)
def recalculate_all_progress(
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> BatchProgressResponse:
    result = update_all_clients_progress(db, coach_id=coach.id)
    clients: dict[int, Client] = {}
    if result.updated:
        rows = db.query(Client).filter(Client.id.in_(list(result.updated.keys()))).all()
        clients = {row.id: row for row in rows}
    return BatchProgressResponse(
        updated=[
            _from_breakdown(clients[client_id], breakdown)
            for client_id, breakdown in result.updated.items()
            if client_id in clients
        ],
        failures=[BatchFailure(client_id=client_id, error=error) for client_id, error in result.failures.items()],
    )
