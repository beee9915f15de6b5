import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from wellio.api.auth import get_current_coach
from wellio.api.clients import get_owned_client
from wellio.api.logs import EventItem, event_to_item
from wellio.db.models import Client, Coach, SmartLog
from wellio.db.session import get_db
from wellio.services.classifier import ClassificationOracle, get_classification_oracle, media_urls_for
from wellio.services.smart_log_processor import STATUS_PENDING, run_smart_log_pipeline

router = APIRouter(tags=["smart-logs"])


class AuthorType(str, Enum):
    client = "client"
    coach = "coach"


class SmartLogCreateRequest(BaseModel):
    raw_text: Optional[str] = Field(default=None, max_length=8000)
    media_urls: list[str] = Field(default_factory=list, max_length=10)
    local_date: Optional[date] = None
    author_type: AuthorType = AuthorType.coach

    @model_validator(mode="after")
    def strip_blank_media(self):
        self.media_urls = [url.strip() for url in self.media_urls if url and url.strip()]
        return self


class SmartLogItem(BaseModel):
    id: int
    client_id: int
    author_type: AuthorType
    raw_text: Optional[str] = None
    media_urls: list[str]
    local_date: date
    processing_status: str
    processing_error: Optional[str] = None
    attempt_count: int
    oracle_confidence: Optional[float] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    events: list[EventItem]


class SmartLogListResponse(BaseModel):
    items: list[SmartLogItem]


def _to_item(row: SmartLog, include_superseded: bool = False) -> SmartLogItem:
    events = [event for event in row.events if include_superseded or event.superseded_at is None]
    return SmartLogItem(
        id=row.id,
        client_id=row.client_id,
        author_type=AuthorType(row.author_type),
        raw_text=row.raw_text,
        media_urls=media_urls_for(row),
        local_date=row.local_date,
        processing_status=row.processing_status,
        processing_error=row.processing_error,
        attempt_count=row.attempt_count,
        oracle_confidence=row.oracle_confidence,
        processed_at=row.processed_at,
        created_at=row.created_at,
        events=[event_to_item(event) for event in events],
    )


def _owned_smart_log(db: Session, coach: Coach, smart_log_id: int) -> SmartLog:
    row = (
        db.query(SmartLog)
        .join(Client, Client.id == SmartLog.client_id)
        .filter(SmartLog.id == smart_log_id, Client.coach_id == coach.id)
        .first()
    )
    if not row:
        raise HTTPException(status_code=404, detail="Smart log not found")
    return row


@router.post(
    "/clients/{client_id}/smart-logs",
    response_model=SmartLogItem,
    status_code=status.HTTP_202_ACCEPTED,
)
def create_smart_log(
    client_id: int,
    payload: SmartLogCreateRequest,
    background_tasks: BackgroundTasks,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
    oracle: ClassificationOracle = Depends(get_classification_oracle),
) -> SmartLogItem:
    client = get_owned_client(db, coach, client_id)
    row = SmartLog(
        client_id=client.id,
        author_type=payload.author_type.value,
        raw_text=payload.raw_text,
        media_urls_json=json.dumps(payload.media_urls) if payload.media_urls else None,
        local_date=payload.local_date or datetime.now(timezone.utc).date(),
        processing_status=STATUS_PENDING,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    item = _to_item(row)
    background_tasks.add_task(run_smart_log_pipeline, row.id, oracle)
    return item


@router.get("/clients/{client_id}/smart-logs", response_model=SmartLogListResponse)
def list_smart_logs(
    client_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> SmartLogListResponse:
    client = get_owned_client(db, coach, client_id)
    rows = (
        db.query(SmartLog)
        .filter(SmartLog.client_id == client.id)
        .order_by(SmartLog.created_at.desc(), SmartLog.id.desc())
        .limit(limit)
        .all()
    )
    return SmartLogListResponse(items=[_to_item(row) for row in rows])


@router.get("/smart-logs/{smart_log_id}", response_model=SmartLogItem)
def get_smart_log(
    smart_log_id: int,
    include_superseded: bool = Query(default=False),
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> SmartLogItem:
    return _to_item(_owned_smart_log(db, coach, smart_log_id), include_superseded=include_superseded)


@router.post(
    "/smart-logs/{smart_log_id}/reprocess",
    response_model=SmartLogItem,
    status_code=status.HTTP_202_ACCEPTED,
)
def reprocess_smart_log(
    smart_log_id: int,
    background_tasks: BackgroundTasks,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
    oracle: ClassificationOracle = Depends(get_classification_oracle),
) -> SmartLogItem:
    row = _owned_smart_log(db, coach, smart_log_id)
    row.processing_status = STATUS_PENDING
    row.processing_error = None
    db.commit()
    db.refresh(row)
    item = _to_item(row)
    background_tasks.add_task(run_smart_log_pipeline, row.id, oracle)
    return item
