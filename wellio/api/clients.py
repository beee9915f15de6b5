from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from wellio.api.auth import get_current_coach
from wellio.db.models import Client, Coach
from wellio.db.session import get_db

router = APIRouter(prefix="/clients", tags=["clients"])


class ClientCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    sex: Optional[str] = Field(default=None, max_length=32)
    age: Optional[int] = Field(default=None, ge=1, le=120)
    weight_kg: Optional[float] = Field(default=None, gt=0, le=500)
    height_cm: Optional[float] = Field(default=None, gt=0, le=300)
    activity_level: Optional[str] = Field(default=None, max_length=32)
    goal_type: Optional[str] = Field(default=None, max_length=64)
    goal_description: Optional[str] = Field(default=None, max_length=2000)
    target_weight_kg: Optional[float] = Field(default=None, gt=0, le=500)


class ClientUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    sex: Optional[str] = Field(default=None, max_length=32)
    age: Optional[int] = Field(default=None, ge=1, le=120)
    weight_kg: Optional[float] = Field(default=None, gt=0, le=500)
    height_cm: Optional[float] = Field(default=None, gt=0, le=300)
    activity_level: Optional[str] = Field(default=None, max_length=32)
    goal_type: Optional[str] = Field(default=None, max_length=64)
    goal_description: Optional[str] = Field(default=None, max_length=2000)
    target_weight_kg: Optional[float] = Field(default=None, gt=0, le=500)


class ClientItem(BaseModel):
    id: int
    coach_id: Optional[int]
    name: str
    email: str
    status: str
    sex: Optional[str] = None
    age: Optional[int] = None
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    activity_level: Optional[str] = None
    goal_type: Optional[str] = None
    goal_description: Optional[str] = None
    target_weight_kg: Optional[float] = None
    progress_score: int
    progress_updated_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: datetime


class ClientListResponse(BaseModel):
    items: list[ClientItem]


def _to_item(row: Client) -> ClientItem:
    return ClientItem(
        id=row.id,
        coach_id=row.coach_id,
        name=row.name,
        email=row.email,
        status=row.status,
        sex=row.sex,
        age=row.age,
        weight_kg=row.weight_kg,
        height_cm=row.height_cm,
        activity_level=row.activity_level,
        goal_type=row.goal_type,
        goal_description=row.goal_description,
        target_weight_kg=row.target_weight_kg,
        progress_score=row.progress_score,
        progress_updated_at=row.progress_updated_at,
        archived_at=row.archived_at,
        created_at=row.created_at,
    )


def get_owned_client(db: Session, coach: Coach, client_id: int) -> Client:
    row = db.query(Client).filter(Client.id == client_id, Client.coach_id == coach.id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Client not found")
    return row


@router.post("", response_model=ClientItem, status_code=status.HTTP_201_CREATED)
def create_client(
    payload: ClientCreateRequest,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> ClientItem:
    row = Client(coach_id=coach.id, **payload.model_dump())
    row.email = payload.email.lower()
    db.add(row)
    db.commit()
    db.refresh(row)
    return _to_item(row)


@router.get("", response_model=ClientListResponse)
def list_clients(
    include_archived: bool = Query(default=False),
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> ClientListResponse:
    query = db.query(Client).filter(Client.coach_id == coach.id)
    if not include_archived:
        query = query.filter(Client.status == "active")
    rows = query.order_by(Client.name.asc(), Client.id.asc()).all()
    return ClientListResponse(items=[_to_item(row) for row in rows])


@router.get("/{client_id}", response_model=ClientItem)
def get_client(
    client_id: int,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> ClientItem:
    return _to_item(get_owned_client(db, coach, client_id))


@router.patch("/{client_id}", response_model=ClientItem)
def update_client(
    client_id: int,
    payload: ClientUpdateRequest,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> ClientItem:
    row = get_owned_client(db, coach, client_id)
    for name, value in payload.model_dump(exclude_unset=True).items():
        if value is None and name in {"name", "email"}:
            continue
        setattr(row, name, value.lower() if name == "email" else value)
    db.commit()
    db.refresh(row)
    return _to_item(row)


@router.post("/{client_id}/archive", response_model=ClientItem)
def archive_client(
    client_id: int,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> ClientItem:
    row = get_owned_client(db, coach, client_id)
    if row.status != "archived":
        row.status = "archived"
        row.archived_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(row)
    return _to_item(row)
