from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wellio.api.auth import get_current_coach
from wellio.api.clients import get_owned_client
from wellio.core.engagement import TriggerSeverity, TriggerType
from wellio.db.models import Client, Coach, EngagementTrigger
from wellio.db.session import get_db
from wellio.services.engagement_service import evaluate_client_engagement, resolve_trigger

router = APIRouter(tags=["engagement"])


class TriggerItem(BaseModel):
    id: int
    client_id: int
    client_name: Optional[str] = None
    type: TriggerType
    severity: TriggerSeverity
    reason: str
    recommended_action: Optional[str] = None
    detected_at: datetime
    resolved_at: Optional[datetime] = None


class TriggerListResponse(BaseModel):
    items: list[TriggerItem]


class EvaluationResponse(BaseModel):
    client_id: int
    created: list[TriggerItem]
    escalated: list[TriggerItem]


def _to_item(row: EngagementTrigger) -> TriggerItem:
    return TriggerItem(
        id=row.id,
        client_id=row.client_id,
        client_name=row.client.name if row.client is not None else None,
        type=TriggerType(row.type),
        severity=TriggerSeverity(row.severity),
        reason=row.reason,
        recommended_action=row.recommended_action,
        detected_at=row.detected_at,
        resolved_at=row.resolved_at,
    )


@router.post("/clients/{client_id}/engagement/evaluate", response_model=EvaluationResponse)
def evaluate_engagement(
    client_id: int,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> EvaluationResponse:
    client = get_owned_client(db, coach, client_id)
    result = evaluate_client_engagement(db, client.id)
    return EvaluationResponse(
        client_id=client.id,
        created=[_to_item(row) for row in result.created],
        escalated=[_to_item(row) for row in result.escalated],
    )


@router.get("/triggers", response_model=TriggerListResponse)
def list_triggers(
    client_id: Optional[int] = Query(default=None),
    include_resolved: bool = Query(default=False),
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> TriggerListResponse:
    query = (
        db.query(EngagementTrigger)
        .join(Client, Client.id == EngagementTrigger.client_id)
        .filter(Client.coach_id == coach.id)
    )
    if client_id is not None:
        query = query.filter(EngagementTrigger.client_id == client_id)
    if not include_resolved:
        query = query.filter(EngagementTrigger.resolved_at.is_(None))
    rows = query.order_by(EngagementTrigger.detected_at.desc(), EngagementTrigger.id.desc()).all()
    return TriggerListResponse(items=[_to_item(row) for row in rows])


@router.post("/triggers/{trigger_id}/resolve", response_model=TriggerItem)
def resolve_engagement_trigger(
    trigger_id: int,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> TriggerItem:
    row = (
        db.query(EngagementTrigger)
        .join(Client, Client.id == EngagementTrigger.client_id)
        .filter(EngagementTrigger.id == trigger_id, Client.coach_id == coach.id)
        .first()
    )
    if not row:
        raise HTTPException(status_code=404, detail="Trigger not found")
    return _to_item(resolve_trigger(db, row))
