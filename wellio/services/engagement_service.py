import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wellio.core.engagement import (
    INACTIVITY_WINDOW_DAYS,
    MISSED_WORKOUT_WINDOW_DAYS,
    SEVERITY_ORDER,
    DetectedTrigger,
    detect_triggers,
    is_nutrition_goal_type,
)
from wellio.core.events import to_utc, utc_now
from wellio.core.scoring import ClientNotFoundError
from wellio.db.models import Client, EngagementTrigger, Goal, ProgressEvent

logger = logging.getLogger("uvicorn.error")

# Far enough back to find the last event before a long inactive stretch.
HISTORY_WINDOW_DAYS = 90


@dataclass
class EvaluationResult:
    created: list[EngagementTrigger] = field(default_factory=list)
    escalated: list[EngagementTrigger] = field(default_factory=list)


@dataclass
class BatchEvaluationResult:
    evaluated: int = 0
    created: int = 0
    escalated: int = 0
    failures: dict[int, str] = field(default_factory=dict)


def _load_active_events(db: Session, client_id: int, now: datetime) -> list[ProgressEvent]:
    since = now - timedelta(days=max(HISTORY_WINDOW_DAYS, 2 * MISSED_WORKOUT_WINDOW_DAYS, INACTIVITY_WINDOW_DAYS))
    rows = (
        db.query(ProgressEvent)
        .filter(
            ProgressEvent.client_id == client_id,
            ProgressEvent.superseded_at.is_(None),
            ProgressEvent.occurred_at >= since,
        )
        .order_by(ProgressEvent.occurred_at.asc())
        .all()
    )
    if rows:
        return rows
    # Nothing recent: the last event ever still tells inactivity from no data.
    latest = (
        db.query(ProgressEvent)
        .filter(ProgressEvent.client_id == client_id, ProgressEvent.superseded_at.is_(None))
        .order_by(ProgressEvent.occurred_at.desc())
        .first()
    )
    return [latest] if latest else []


def _persist(
    db: Session, client: Client, detected: DetectedTrigger, now: datetime, result: EvaluationResult
) -> None:
    open_trigger = (
        db.query(EngagementTrigger)
        .filter(
            EngagementTrigger.client_id == client.id,
            EngagementTrigger.type == detected.type.value,
            EngagementTrigger.resolved_at.is_(None),
        )
        .order_by(EngagementTrigger.detected_at.desc())
        .first()
    )
    if open_trigger is None:
        row = EngagementTrigger(
            client_id=client.id,
            coach_id=client.coach_id,
            type=detected.type.value,
            severity=detected.severity.value,
            reason=detected.reason,
            recommended_action=detected.recommended_action,
            detected_at=now,
        )
        db.add(row)
        result.created.append(row)
        logger.info("Engagement trigger created client_id=%s type=%s", client.id, detected.type.value)
        return

    if SEVERITY_ORDER[detected.severity.value] > SEVERITY_ORDER.get(open_trigger.severity, 0):
        open_trigger.severity = detected.severity.value
        open_trigger.reason = detected.reason
        open_trigger.recommended_action = detected.recommended_action
        open_trigger.detected_at = now
        result.escalated.append(open_trigger)
        logger.info(
            "Engagement trigger escalated trigger_id=%s severity=%s", open_trigger.id, detected.severity.value
        )


def evaluate_client_engagement(db: Session, client_id: int, now: Optional[datetime] = None) -> EvaluationResult:
    timestamp = to_utc(now or utc_now())
    client = db.query(Client).filter(Client.id == client_id).first()
    if client is None:
        raise ClientNotFoundError(client_id)

    events = _load_active_events(db, client_id, timestamp)
    goal_types = db.query(Goal.goal_type).filter(Goal.client_id == client_id, Goal.status == "active").all()
    has_nutrition_goal = any(is_nutrition_goal_type(row[0]) for row in goal_types)
    detected = detect_triggers(client_id, events, now=timestamp, has_nutrition_goal=has_nutrition_goal)

    result = EvaluationResult()
    if not detected:
        return result
    try:
        for trigger in detected:
            _persist(db, client, trigger, timestamp, result)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Engagement trigger persistence failed client_id=%s", client_id)
        return EvaluationResult()
    for row in result.created:
        db.refresh(row)
    return result


def evaluate_all_clients(
    db: Session, coach_id: Optional[int] = None, now: Optional[datetime] = None
) -> BatchEvaluationResult:
    query = db.query(Client.id).filter(Client.status == "active")
    if coach_id is not None:
        query = query.filter(Client.coach_id == coach_id)
    client_ids = [row[0] for row in query.order_by(Client.id.asc()).all()]

    batch = BatchEvaluationResult()
    for client_id in client_ids:
        try:
            result = evaluate_client_engagement(db, client_id, now=now)
        except Exception as exc:
            db.rollback()
            batch.failures[client_id] = str(exc)[:220] or type(exc).__name__
            logger.exception("Engagement evaluation failed for client_id=%s", client_id)
            continue
        batch.evaluated += 1
        batch.created += len(result.created)
        batch.escalated += len(result.escalated)
    logger.info(
        "Engagement evaluation complete coach_id=%s evaluated=%s created=%s escalated=%s failed=%s",
        coach_id,
        batch.evaluated,
        batch.created,
        batch.escalated,
        len(batch.failures),
    )
    return batch


def resolve_trigger(db: Session, trigger: EngagementTrigger, now: Optional[datetime] = None) -> EngagementTrigger:
    if trigger.resolved_at is None:
        trigger.resolved_at = to_utc(now or utc_now())
        db.commit()
        db.refresh(trigger)
    return trigger
