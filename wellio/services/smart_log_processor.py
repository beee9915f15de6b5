import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wellio.core.events import draft_to_row, utc_now
from wellio.core.scoring import ClientNotFoundError, update_client_progress
from wellio.db.models import ProgressEvent, SmartLog
from wellio.db.session import SessionLocal
from wellio.services.classifier import (
    ClassificationError,
    ClassificationOracle,
    SmartLogClassifier,
    has_classifiable_content,
    media_urls_for,
)

logger = logging.getLogger("uvicorn.error")

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass
class ProcessOutcome:
    success: bool
    status: Optional[str] = None
    event_ids: list[int] = field(default_factory=list)
    error: Optional[str] = None


def _supersede_active_events(db: Session, smart_log_id: int) -> int:
    previous_version = (
        db.query(func.max(ProgressEvent.version)).filter(ProgressEvent.smart_log_id == smart_log_id).scalar()
    )
    now = utc_now()
    (
        db.query(ProgressEvent)
        .filter(ProgressEvent.smart_log_id == smart_log_id, ProgressEvent.superseded_at.is_(None))
        .update({ProgressEvent.superseded_at: now}, synchronize_session=False)
    )
    return int(previous_version or 0) + 1


def process_smart_log(db: Session, smart_log_id: int, oracle: ClassificationOracle) -> ProcessOutcome:
    """Classify one smart log and store its events as a new version.

    Earlier events of the same log are superseded, never deleted, so running this
    twice leaves one active set. A log with no text and no media is marked
    ``skipped``. Oracle failures mark it ``failed`` and keep ``processed_at`` unset.
    """
    smart_log = db.query(SmartLog).filter(SmartLog.id == smart_log_id).first()
    if smart_log is None:
        return ProcessOutcome(success=False, error="Smart log not found")

    if not has_classifiable_content(smart_log.raw_text, media_urls_for(smart_log)):
        smart_log.processing_status = STATUS_SKIPPED
        smart_log.processing_error = None
        db.commit()
        logger.info("Smart log skipped (no content) smart_log_id=%s", smart_log_id)
        return ProcessOutcome(success=True, status=STATUS_SKIPPED)

    smart_log.processing_status = STATUS_PROCESSING
    smart_log.attempt_count = (smart_log.attempt_count or 0) + 1
    smart_log.processing_error = None
    db.commit()

    try:
        result = SmartLogClassifier(oracle, db).classify(smart_log)
    except ClassificationError as exc:
        db.rollback()
        smart_log.processing_status = STATUS_FAILED
        smart_log.processing_error = str(exc)[:1000]
        db.commit()
        logger.warning("Smart log classification failed smart_log_id=%s: %s", smart_log_id, exc)
        return ProcessOutcome(success=False, status=STATUS_FAILED, error=smart_log.processing_error)

    version = _supersede_active_events(db, smart_log.id)
    rows = [draft_to_row(draft, smart_log_id=smart_log.id, version=version) for draft in result.events]
    db.add_all(rows)
    smart_log.processing_status = STATUS_COMPLETED
    smart_log.oracle_confidence = result.confidence
    smart_log.processed_at = utc_now()
    db.commit()
    event_ids = [row.id for row in rows]
    logger.info(
        "Smart log processed smart_log_id=%s version=%s events=%s", smart_log_id, version, len(event_ids)
    )
    return ProcessOutcome(success=True, status=STATUS_COMPLETED, event_ids=event_ids)


def run_smart_log_pipeline(smart_log_id: int, oracle: ClassificationOracle) -> None:
    """Background entry point: process the log, then rescore its client."""
    db = SessionLocal()
    try:
        outcome = process_smart_log(db, smart_log_id, oracle)
        if outcome.status != STATUS_COMPLETED:
            return
        client_id = db.query(SmartLog.client_id).filter(SmartLog.id == smart_log_id).scalar()
        update_client_progress(db, client_id)
    except (SQLAlchemyError, ClientNotFoundError):
        db.rollback()
        logger.exception("Smart log pipeline failed smart_log_id=%s", smart_log_id)
    except Exception as exc:
        db.rollback()
        logger.exception("Unexpected smart log pipeline error smart_log_id=%s", smart_log_id)
        _mark_failed(db, smart_log_id, str(exc) or exc.__class__.__name__)
    finally:
        db.close()


def _mark_failed(db: Session, smart_log_id: int, error: str) -> None:
    smart_log = db.query(SmartLog).filter(SmartLog.id == smart_log_id).first()
    if smart_log is None or smart_log.processing_status != STATUS_PROCESSING:
        return
    smart_log.processing_status = STATUS_FAILED
    smart_log.processing_error = error[:1000]
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record smart log failure smart_log_id=%s", smart_log_id)
