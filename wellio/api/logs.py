import json
import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from wellio.api.auth import get_current_coach
from wellio.api.clients import get_owned_client
from wellio.core.events import EventType, draft_to_row, parse_event_data, to_utc, utc_now
from wellio.core.normalizer import ExplicitCheckIn, ExplicitNutritionLog, ExplicitWorkoutLog, RawInput, normalize
from wellio.core.scoring import update_client_progress
from wellio.db.models import Client, Coach, ProgressEvent
from wellio.db.session import get_db

logger = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["logs"])


class EventItem(BaseModel):
    id: int
    client_id: int
    smart_log_id: Optional[int] = None
    event_type: EventType
    source: str
    data: dict[str, Any]
    confidence: float
    needs_review: bool
    version: int
    superseded_at: Optional[datetime] = None
    date_for_metric: date
    occurred_at: datetime
    reviewed_at: Optional[datetime] = None


class EventListResponse(BaseModel):
    items: list[EventItem]


class LoggedEventsResponse(BaseModel):
    events_created: int
    items: list[EventItem]


class EventReviewRequest(BaseModel):
    data: Optional[dict[str, Any]] = None
    date_for_metric: Optional[date] = None


def event_to_item(row: ProgressEvent) -> EventItem:
    try:
        data = json.loads(row.data_json or "{}")
    except json.JSONDecodeError:
        data = {}
    return EventItem(
        id=row.id,
        client_id=row.client_id,
        smart_log_id=row.smart_log_id,
        event_type=EventType(row.event_type),
        source=row.source,
        data=data if isinstance(data, dict) else {},
        confidence=row.confidence,
        needs_review=row.needs_review,
        version=row.version,
        superseded_at=row.superseded_at,
        date_for_metric=row.date_for_metric,
        occurred_at=row.occurred_at,
        reviewed_at=row.reviewed_at,
    )


def _store_explicit(db: Session, client: Client, raw: RawInput) -> LoggedEventsResponse:
    drafts = normalize(raw, client.id)
    if not drafts:
        raise HTTPException(status_code=422, detail="Log could not be mapped to an event")
    rows = [draft_to_row(draft) for draft in drafts]
    db.add_all(rows)
    db.commit()
    update_client_progress(db, client.id)
    for row in rows:
        db.refresh(row)
    return LoggedEventsResponse(events_created=len(rows), items=[event_to_item(row) for row in rows])


@router.post(
    "/clients/{client_id}/logs/nutrition",
    response_model=LoggedEventsResponse,
    status_code=status.HTTP_201_CREATED,
)
def log_nutrition(
    client_id: int,
    payload: ExplicitNutritionLog,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> LoggedEventsResponse:
    return _store_explicit(db, get_owned_client(db, coach, client_id), payload)


@router.post(
    "/clients/{client_id}/logs/workout",
    response_model=LoggedEventsResponse,
    status_code=status.HTTP_201_CREATED,
)
def log_workout(
    client_id: int,
    payload: ExplicitWorkoutLog,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> LoggedEventsResponse:
    return _store_explicit(db, get_owned_client(db, coach, client_id), payload)


@router.post(
    "/clients/{client_id}/logs/checkin",
    response_model=LoggedEventsResponse,
    status_code=status.HTTP_201_CREATED,
)
def log_checkin(
    client_id: int,
    payload: ExplicitCheckIn,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> LoggedEventsResponse:
    return _store_explicit(db, get_owned_client(db, coach, client_id), payload)


@router.get("/clients/{client_id}/events", response_model=EventListResponse)
def list_events(
    client_id: int,
    event_type: Optional[EventType] = Query(default=None),
    needs_review: Optional[bool] = Query(default=None),
    include_superseded: bool = Query(default=False),
    from_date: Optional[date] = Query(default=None, alias="from"),
    to_date: Optional[date] = Query(default=None, alias="to"),
    limit: int = Query(default=100, ge=1, le=500),
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> EventListResponse:
    client = get_owned_client(db, coach, client_id)
    query = db.query(ProgressEvent).filter(ProgressEvent.client_id == client.id)
    if not include_superseded:
        query = query.filter(ProgressEvent.superseded_at.is_(None))
    if event_type is not None:
        query = query.filter(ProgressEvent.event_type == event_type.value)
    if needs_review is not None:
        query = query.filter(ProgressEvent.needs_review == needs_review)
    if from_date is not None:
        query = query.filter(ProgressEvent.date_for_metric >= from_date)
    if to_date is not None:
        query = query.filter(ProgressEvent.date_for_metric <= to_date)
    rows = query.order_by(ProgressEvent.occurred_at.desc(), ProgressEvent.id.desc()).limit(limit).all()
    return EventListResponse(items=[event_to_item(row) for row in rows])


@router.patch("/events/{event_id}", response_model=EventItem)
def review_event(
    event_id: int,
    payload: EventReviewRequest,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> EventItem:
    row = (
        db.query(ProgressEvent)
        .join(Client, Client.id == ProgressEvent.client_id)
        .filter(ProgressEvent.id == event_id, Client.coach_id == coach.id)
        .first()
    )
    if not row:
        raise HTTPException(status_code=404, detail="Event not found")
    if row.superseded_at is not None:
        raise HTTPException(status_code=409, detail="Event has been superseded")

    if payload.data is not None:
        # The event type is fixed; only its payload can be corrected.
        fields = dict(payload.data, event_type=row.event_type)
        try:
            data = parse_event_data(fields)
        except ValidationError as exc:
            detail = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
            raise HTTPException(status_code=422, detail=detail) from exc
        row.data_json = data.model_dump_json()
    if payload.date_for_metric is not None:
        row.date_for_metric = payload.date_for_metric
        row.occurred_at = to_utc(datetime.combine(payload.date_for_metric, datetime.min.time()))
    row.needs_review = False
    row.reviewed_at = utc_now()
    db.commit()
    update_client_progress(db, row.client_id)
    db.refresh(row)
    logger.info("Event reviewed event_id=%s coach_id=%s", row.id, coach.id)
    return event_to_item(row)
