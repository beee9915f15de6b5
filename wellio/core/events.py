import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from wellio.db.models import ProgressEvent


class EventType(str, Enum):
    nutrition = "nutrition"
    exercise = "exercise"
    sleep = "sleep"
    weight = "weight"
    mood = "mood"
    steps = "steps"
    checkin = "checkin"
    note = "note"


class EventSource(str, Enum):
    explicit = "explicit"
    smart_log = "smart_log"
    device_sync = "device_sync"


LBS_TO_KG = 0.453592

# Below these confidences an oracle-derived event is flagged for coach review.
REVIEW_THRESHOLDS: dict[EventType, float] = {
    EventType.weight: 0.8,
    EventType.steps: 0.8,
}
DEFAULT_REVIEW_THRESHOLD = 0.7


class NutritionData(BaseModel):
    event_type: Literal["nutrition"] = "nutrition"
    calories: Optional[float] = Field(default=None, ge=0)
    protein_g: Optional[float] = Field(default=None, ge=0)
    carbs_g: Optional[float] = Field(default=None, ge=0)
    fat_g: Optional[float] = Field(default=None, ge=0)
    estimated: bool = False
    food_description: Optional[str] = Field(default=None, max_length=1000)
    meal_type: Optional[str] = Field(default=None, max_length=32)


class ExerciseData(BaseModel):
    event_type: Literal["exercise"] = "exercise"
    workout_type: Optional[str] = Field(default=None, max_length=128)
    duration_min: Optional[int] = Field(default=None, ge=0)
    intensity: Optional[Literal["low", "moderate", "high"]] = None
    body_focus: list[str] = Field(default_factory=list)
    activities: list[dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=1000)


class SleepData(BaseModel):
    event_type: Literal["sleep"] = "sleep"
    hours: Optional[float] = Field(default=None, ge=0, le=24)
    quality: Optional[str] = Field(default=None, max_length=32)


class WeightData(BaseModel):
    event_type: Literal["weight"] = "weight"
    value: float = Field(gt=0)
    unit: Literal["kg", "lbs"] = "kg"
    value_kg: Optional[float] = None


class MoodData(BaseModel):
    event_type: Literal["mood"] = "mood"
    rating: Optional[int] = Field(default=None, ge=1, le=10)
    notes: Optional[str] = Field(default=None, max_length=1000)


class StepsData(BaseModel):
    event_type: Literal["steps"] = "steps"
    steps: int = Field(ge=0)


class CheckinData(BaseModel):
    event_type: Literal["checkin"] = "checkin"
    weight_kg: Optional[float] = Field(default=None, gt=0)
    body_fat_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    energy: Optional[Literal["low", "average", "high"]] = None
    mood: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=1000)


class NoteData(BaseModel):
    event_type: Literal["note"] = "note"
    text: Optional[str] = None
    unclassifiable: bool = False


EventData = Annotated[
    Union[
        NutritionData,
        ExerciseData,
        SleepData,
        WeightData,
        MoodData,
        StepsData,
        CheckinData,
        NoteData,
    ],
    Field(discriminator="event_type"),
]

event_data_adapter: TypeAdapter[Any] = TypeAdapter(EventData)


class ProgressEventDraft(BaseModel):
    """A validated event that has not been persisted yet."""

    client_id: int
    source: EventSource
    data: EventData
    confidence: float = Field(default=1.0, ge=0, le=1)
    date_for_metric: date
    occurred_at: Optional[datetime] = None
    needs_review: bool = False

    @property
    def event_type(self) -> EventType:
        return EventType(self.data.event_type)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def needs_review_for(event_type: EventType, confidence: float) -> bool:
    threshold = REVIEW_THRESHOLDS.get(event_type, DEFAULT_REVIEW_THRESHOLD)
    return confidence < threshold


def parse_event_data(raw: Union[str, dict[str, Any]]) -> Any:
    payload = json.loads(raw) if isinstance(raw, str) else raw
    return event_data_adapter.validate_python(payload)


def draft_to_row(draft: ProgressEventDraft, smart_log_id: Optional[int] = None, version: int = 1) -> ProgressEvent:
    occurred_at = draft.occurred_at or datetime.combine(draft.date_for_metric, datetime.min.time())
    return ProgressEvent(
        client_id=draft.client_id,
        smart_log_id=smart_log_id,
        event_type=draft.event_type.value,
        source=draft.source.value,
        data_json=draft.data.model_dump_json(),
        confidence=draft.confidence,
        needs_review=draft.needs_review,
        version=version,
        date_for_metric=draft.date_for_metric,
        occurred_at=to_utc(occurred_at),
    )


def is_active(event: ProgressEvent) -> bool:
    return event.superseded_at is None
