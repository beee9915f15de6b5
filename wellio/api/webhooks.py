import json
import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wellio.core.events import draft_to_row
from wellio.core.normalizer import normalize
from wellio.core.scoring import update_client_progress
from wellio.core.security import verify_webhook_signature
from wellio.db.models import Client
from wellio.db.session import get_db

logger = logging.getLogger("uvicorn.error")

ROOK_SECRET_KEY = os.getenv("ROOK_SECRET_KEY", "")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookResponse(BaseModel):
    events_created: int


def _client_id(payload: dict[str, Any]) -> Optional[int]:
    raw = payload.get("user_id")
    if isinstance(raw, bool):
        return None
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def ingest_device_payload(db: Session, payload: dict[str, Any]) -> int:
    """Store the events mapped from one device payload and rescore the client."""
    client_id = _client_id(payload)
    client = None
    if client_id is not None:
        client = db.query(Client).filter(Client.id == client_id, Client.status == "active").first()
    if client is None:
        # Acknowledged so the provider does not retry.
        logger.warning("Rook webhook ignored: unknown user_id=%r", payload.get("user_id"))
        return 0

    drafts = normalize(payload, client.id)
    if not drafts:
        return 0
    db.add_all([draft_to_row(draft) for draft in drafts])
    db.commit()
    logger.info("Rook webhook stored client_id=%s type=%s events=%s", client.id, payload.get("type"), len(drafts))

    try:
        update_client_progress(db, client.id)
    except Exception:
        db.rollback()
        logger.exception("Progress recalculation after webhook failed client_id=%s", client.id)
    return len(drafts)


@router.post("/rook", response_model=WebhookResponse)
async def rook_webhook(
    request: Request,
    x_rook_hash: Optional[str] = Header(default=None, alias="X-ROOK-HASH"),
    db: Session = Depends(get_db),
) -> WebhookResponse:
    body = await request.body()
    if not verify_webhook_signature(ROOK_SECRET_KEY, body, x_rook_hash):
        logger.warning("Rook webhook rejected: bad signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Rook webhook ignored: body is not JSON")
        return WebhookResponse(events_created=0)
    if not isinstance(payload, dict):
        return WebhookResponse(events_created=0)

    # Session work is blocking; keep it off the event loop.
    created = await run_in_threadpool(ingest_device_payload, db, payload)
    return WebhookResponse(events_created=created)
