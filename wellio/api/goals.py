from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from wellio.api.auth import get_current_coach
from wellio.api.clients import get_owned_client
from wellio.core.scoring import update_client_progress
from wellio.db.models import Client, Coach, Goal
from wellio.db.session import get_db

router = APIRouter(tags=["goals"])


class GoalScope(str, Enum):
    long_term = "long_term"
    weekly_task = "weekly_task"


class GoalStatus(str, Enum):
    active = "active"
    completed = "completed"
    abandoned = "abandoned"


class GoalCreateRequest(BaseModel):
    goal_type: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=255)
    scope: GoalScope = GoalScope.long_term
    baseline_value: Optional[float] = None
    target_value: float
    current_value: float = 0.0
    unit: str = Field(default="", max_length=32)
    deadline: Optional[date] = None
    week_start_date: Optional[date] = None

    @model_validator(mode="after")
    def align_week_start(self):
        if self.scope == GoalScope.weekly_task and self.week_start_date is None:
            raise ValueError("week_start_date is required for weekly tasks")
        if self.week_start_date is not None:
            self.week_start_date = self.week_start_date - timedelta(days=self.week_start_date.weekday())
        return self


class GoalUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    current_value: Optional[float] = None
    target_value: Optional[float] = None
    baseline_value: Optional[float] = None
    status: Optional[GoalStatus] = None
    deadline: Optional[date] = None


class GoalItem(BaseModel):
    id: int
    client_id: int
    goal_type: str
    title: str
    scope: GoalScope
    baseline_value: Optional[float] = None
    target_value: float
    current_value: float
    unit: str
    deadline: Optional[date] = None
    status: GoalStatus
    week_start_date: Optional[date] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class GoalListResponse(BaseModel):
    items: list[GoalItem]


def _to_item(row: Goal) -> GoalItem:
    return GoalItem(
        id=row.id,
        client_id=row.client_id,
        goal_type=row.goal_type,
        title=row.title,
        scope=GoalScope(row.scope),
        baseline_value=row.baseline_value,
        target_value=row.target_value,
        current_value=row.current_value,
        unit=row.unit,
        deadline=row.deadline,
        status=GoalStatus(row.status),
        week_start_date=row.week_start_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


@router.post("/clients/{client_id}/goals", response_model=GoalItem, status_code=status.HTTP_201_CREATED)
def create_goal(
    client_id: int,
    payload: GoalCreateRequest,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> GoalItem:
    client = get_owned_client(db, coach, client_id)
    row = Goal(
        client_id=client.id,
        goal_type=payload.goal_type.strip(),
        title=payload.title.strip(),
        scope=payload.scope.value,
        baseline_value=payload.baseline_value,
        target_value=payload.target_value,
        current_value=payload.current_value,
        unit=payload.unit.strip(),
        deadline=payload.deadline,
        status=GoalStatus.active.value,
        week_start_date=payload.week_start_date,
    )
    db.add(row)
    db.commit()
    update_client_progress(db, client.id)
    db.refresh(row)
    return _to_item(row)


@router.get("/clients/{client_id}/goals", response_model=GoalListResponse)
def list_goals(
    client_id: int,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> GoalListResponse:
    client = get_owned_client(db, coach, client_id)
    rows = db.query(Goal).filter(Goal.client_id == client.id).order_by(Goal.created_at.asc(), Goal.id.asc()).all()
    return GoalListResponse(items=[_to_item(row) for row in rows])


@router.patch("/goals/{goal_id}", response_model=GoalItem)
def update_goal(
    goal_id: int,
    payload: GoalUpdateRequest,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> GoalItem:
    row = (
        db.query(Goal)
        .join(Client, Client.id == Goal.client_id)
        .filter(Goal.id == goal_id, Client.coach_id == coach.id)
        .first()
    )
    if not row:
        raise HTTPException(status_code=404, detail="Goal not found")
    for name, value in payload.model_dump(exclude_unset=True).items():
        if value is None and name in {"title", "current_value", "target_value", "status"}:
            continue
        setattr(row, name, value.value if isinstance(value, Enum) else value)
    db.commit()
    update_client_progress(db, row.client_id)
    db.refresh(row)
    return _to_item(row)
