"""Smart log classification.

A smart log is free text and/or images. The oracle (an LLM in production) reads
it once and answers with raw events; this module validates them into
``ProgressEventDraft`` objects. An answer with nothing usable still yields one
``note`` event flagged for coach review.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import httpx
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from wellio.core.events import (
    LBS_TO_KG,
    EventSource,
    EventType,
    NoteData,
    ProgressEventDraft,
    event_data_adapter,
    needs_review_for,
)
from wellio.db.models import SmartLog
from wellio.services.llm import LLMClient, LLMRequestError, get_llm_client

logger = logging.getLogger("uvicorn.error")

EVENT_TYPE_ALIASES: dict[str, str] = {
    "workout": "exercise",
    "checkin_mood": "mood",
    "food": "nutrition",
    "meal": "nutrition",
    "body_weight": "weight",
}

INTENSITY_ALIASES: dict[str, Optional[str]] = {
    "low": "low",
    "medium": "moderate",
    "moderate": "moderate",
    "high": "high",
    "unknown": None,
}

CLASSIFICATION_SYSTEM_PROMPT = (
    "You classify and extract wellness log entries written by a coaching client or their coach. "
    "Read the text and any images and return JSON only, with this shape: "
    '{"events": [{"event_type": "nutrition|exercise|sleep|weight|mood|steps|checkin|note", '
    '"data": {...}, "confidence": 0.0-1.0}], "confidence": 0.0-1.0}. '
    "Data fields per type: nutrition {calories, protein_g, carbs_g, fat_g, estimated, food_description, meal_type}; "
    "exercise {workout_type, duration_min, intensity (low|moderate|high), body_focus, notes}; "
    "sleep {hours, quality}; weight {value, unit (kg|lbs)}; mood {rating 1-10, notes}; steps {steps}; "
    "checkin {weight_kg, body_fat_percentage, energy (low|average|high), mood, notes}. "
    "For any food, always estimate calories and macros and set estimated true. "
    "Food photos are nutrition, gym photos are exercise, scale photos are weight. "
    "If nothing can be extracted, return an empty events list with a low confidence."
)


class ClassificationError(RuntimeError):
    pass


class RawEvent(BaseModel):
    event_type: str = Field(min_length=1, max_length=64)
    data: dict[str, Any] = Field(default_factory=dict)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class OracleResult(BaseModel):
    events: list[RawEvent] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0, le=1)


@dataclass
class ClassificationResult:
    events: list[ProgressEventDraft]
    confidence: float


class ClassificationOracle(Protocol):
    def classify(
        self, db: Session, coach_id: Optional[int], text: Optional[str], media_urls: Sequence[str]
    ) -> OracleResult:
        ...


def has_classifiable_content(text: Optional[str], media_urls: Optional[Sequence[str]]) -> bool:
    if text and text.strip():
        return True
    return any(url and url.strip() for url in (media_urls or []))


def media_urls_for(smart_log: SmartLog) -> list[str]:
    if not smart_log.media_urls_json:
        return []
    try:
        loaded = json.loads(smart_log.media_urls_json)
    except json.JSONDecodeError:
        return []
    if not isinstance(loaded, list):
        return []
    return [str(url) for url in loaded if isinstance(url, str) and url.strip()]


class LLMClassificationOracle:
    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    def classify(
        self, db: Session, coach_id: Optional[int], text: Optional[str], media_urls: Sequence[str]
    ) -> OracleResult:
        try:
            payload = self.llm.generate_json(
                db, coach_id, CLASSIFICATION_SYSTEM_PROMPT, text, image_urls=list(media_urls)
            )
        except (LLMRequestError, httpx.HTTPError, TimeoutError, ValueError) as exc:
            raise ClassificationError(str(exc)[:500] or exc.__class__.__name__) from exc
        try:
            return OracleResult.model_validate(payload)
        except ValidationError as exc:
            raise ClassificationError(f"Unexpected oracle response shape: {exc.error_count()} errors") from exc


def _weight_fields(data: dict[str, Any]) -> dict[str, Any]:
    unit = str(data.get("unit") or "kg").strip().lower()
    if unit in {"lb", "lbs", "pound", "pounds"}:
        unit = "lbs"
    else:
        unit = "kg"
    value = data.get("value")
    if value is None:
        value = data.get("value_kg")
    fields = dict(data, unit=unit, value=value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        fields["value_kg"] = round(value * LBS_TO_KG, 2) if unit == "lbs" else float(value)
    return fields


def _nutrition_fields(data: dict[str, Any]) -> dict[str, Any]:
    fields = dict(data)
    estimated = bool(data.get("estimated"))
    for name, est_name in (
        ("calories", "calories_est"),
        ("protein_g", "protein_est_g"),
        ("carbs_g", "carbs_est_g"),
        ("fat_g", "fat_est_g"),
    ):
        if fields.get(name) is None and data.get(est_name) is not None:
            fields[name] = data[est_name]
            estimated = True
    fields["estimated"] = estimated
    return fields


def _exercise_fields(data: dict[str, Any]) -> dict[str, Any]:
    fields = dict(data)
    if not fields.get("workout_type") and data.get("type"):
        fields["workout_type"] = str(data["type"])
    intensity = data.get("intensity")
    if isinstance(intensity, str):
        fields["intensity"] = INTENSITY_ALIASES.get(intensity.strip().lower())
    body_focus = data.get("body_focus")
    if isinstance(body_focus, str):
        fields["body_focus"] = [body_focus]
    return fields


_FIELD_ADAPTERS = {
    EventType.weight.value: _weight_fields,
    EventType.nutrition.value: _nutrition_fields,
    EventType.exercise.value: _exercise_fields,
}


def canonical_event_type(raw_type: str) -> str:
    name = raw_type.strip().lower()
    return EVENT_TYPE_ALIASES.get(name, name)


class SmartLogClassifier:
    def __init__(self, oracle: ClassificationOracle, db: Session) -> None:
        self.oracle = oracle
        self.db = db

    def _to_draft(self, smart_log: SmartLog, raw: RawEvent, overall: float) -> Optional[ProgressEventDraft]:
        event_type = canonical_event_type(raw.event_type)
        adapt = _FIELD_ADAPTERS.get(event_type)
        fields = adapt(raw.data) if adapt else dict(raw.data)
        fields["event_type"] = event_type
        try:
            data = event_data_adapter.validate_python(fields)
        except ValidationError as exc:
            logger.warning(
                "Dropping unparseable oracle event smart_log_id=%s type=%s errors=%s",
                smart_log.id,
                raw.event_type,
                exc.error_count(),
            )
            return None
        confidence = raw.confidence if raw.confidence is not None else overall
        return ProgressEventDraft(
            client_id=smart_log.client_id,
            source=EventSource.smart_log,
            data=data,
            confidence=confidence,
            date_for_metric=smart_log.local_date,
            needs_review=needs_review_for(EventType(event_type), confidence),
        )

    def classify(self, smart_log: SmartLog) -> ClassificationResult:
        coach_id = smart_log.client.coach_id if smart_log.client is not None else None
        result = self.oracle.classify(self.db, coach_id, smart_log.raw_text, media_urls_for(smart_log))

        drafts = [
            draft
            for draft in (self._to_draft(smart_log, raw, result.confidence) for raw in result.events)
            if draft is not None
        ]
        if not drafts:
            drafts = [
                ProgressEventDraft(
                    client_id=smart_log.client_id,
                    source=EventSource.smart_log,
                    data=NoteData(text=smart_log.raw_text, unclassifiable=True),
                    confidence=result.confidence,
                    date_for_metric=smart_log.local_date,
                    needs_review=True,
                )
            ]
        return ClassificationResult(events=drafts, confidence=result.confidence)


def get_classification_oracle() -> ClassificationOracle:
    return LLMClassificationOracle(get_llm_client())
