"""Event normalization.

Explicit logs and wearable webhook payloads are reduced to canonical
``ProgressEventDraft`` objects here. ``normalize`` never raises: a payload it
cannot map yields an empty list and a logged warning.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from wellio.core.events import (
    CheckinData,
    EventSource,
    ExerciseData,
    NutritionData,
    ProgressEventDraft,
    SleepData,
)

logger = logging.getLogger("uvicorn.error")

# Heart-rate intensity breakpoints (bpm). Part of the public contract.
HIGH_INTENSITY_HR_BPM = 150
LOW_INTENSITY_HR_BPM = 120

# HRV energy breakpoints (rmssd, ms). Part of the public contract.
HIGH_ENERGY_HRV_MS = 60
LOW_ENERGY_HRV_MS = 30


class ExplicitNutritionLog(BaseModel):
    log_date: Optional[date] = None
    calories: Optional[float] = Field(default=None, ge=0, le=20000)
    protein_g: Optional[float] = Field(default=None, ge=0, le=2000)
    carbs_g: Optional[float] = Field(default=None, ge=0, le=2000)
    fat_g: Optional[float] = Field(default=None, ge=0, le=2000)
    meal_type: Optional[str] = Field(default=None, max_length=32)
    notes: Optional[str] = Field(default=None, max_length=1000)


class ExplicitWorkoutLog(BaseModel):
    log_date: Optional[date] = None
    workout_type: str = Field(min_length=1, max_length=128)
    duration_min: Optional[int] = Field(default=None, ge=0, le=1440)
    intensity: Optional[str] = Field(default=None, pattern="^(low|moderate|high)$")
    avg_hr_bpm: Optional[float] = Field(default=None, ge=20, le=250)
    notes: Optional[str] = Field(default=None, max_length=1000)


class ExplicitCheckIn(BaseModel):
    log_date: Optional[date] = None
    weight_kg: Optional[float] = Field(default=None, gt=0, le=500)
    body_fat_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    mood: Optional[str] = Field(default=None, max_length=64)
    energy: Optional[str] = Field(default=None, pattern="^(low|average|high)$")
    hrv_rmssd_ms: Optional[float] = Field(default=None, ge=0, le=500)
    notes: Optional[str] = Field(default=None, max_length=1000)


RawInput = Union[ExplicitNutritionLog, ExplicitWorkoutLog, ExplicitCheckIn, dict]


def intensity_from_heart_rate(avg_hr_bpm: Optional[float]) -> Optional[str]:
    """Bucket an average heart rate: >150 high, <120 low, otherwise moderate."""
    if avg_hr_bpm is None:
        return None
    if avg_hr_bpm > HIGH_INTENSITY_HR_BPM:
        return "high"
    if avg_hr_bpm < LOW_INTENSITY_HR_BPM:
        return "low"
    return "moderate"


def energy_from_hrv(hrv_rmssd_ms: Optional[float]) -> Optional[str]:
    """Bucket HRV (rmssd): >60 high, <30 low, otherwise average."""
    if hrv_rmssd_ms is None:
        return None
    if hrv_rmssd_ms > HIGH_ENERGY_HRV_MS:
        return "high"
    if hrv_rmssd_ms < LOW_ENERGY_HRV_MS:
        return "low"
    return "average"


def seconds_to_minutes(seconds: Optional[float]) -> Optional[int]:
    if seconds is None:
        return None
    # Half-up, not banker's rounding.
    return int(math.floor(float(seconds) / 60.0 + 0.5))


def _dig(obj: Any, path: str) -> Any:
    current = obj
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _first_activity_name(activities: Any) -> Optional[str]:
    if not isinstance(activities, list) or not activities:
        return None
    first = activities[0]
    if isinstance(first, dict) and first.get("name"):
        return str(first["name"])
    return None


def _activity_list(activities: Any) -> list[dict[str, Any]]:
    if not isinstance(activities, list):
        return []
    return [item for item in activities if isinstance(item, dict)]


# Per-provider field dictionaries: webhook type -> (summary key, {payload field: (source path, converter)}).
DeviceFieldMap = dict[str, tuple[str, dict[str, tuple[str, Callable[[Any], Any]]]]]

DEVICE_FIELD_MAPS: dict[str, DeviceFieldMap] = {
    "rook": {
        "NUTRITION": (
            "nutrition_summary",
            {
                "calories": ("calories_data.net_intake_kcal", _number),
                "protein_g": ("macros_data.protein_g", _number),
                "carbs_g": ("macros_data.carbs_g", _number),
                "fat_g": ("macros_data.fat_g", _number),
            },
        ),
        "PHYSICAL": (
            "physical_summary",
            {
                "duration_min": (
                    "active_durations_data.activity_seconds",
                    lambda v: seconds_to_minutes(_number(v)),
                ),
                "intensity": ("heart_rate_data.avg_hr_bpm", lambda v: intensity_from_heart_rate(_number(v))),
                "workout_type": ("activities", _first_activity_name),
                "activities": ("activities", _activity_list),
            },
        ),
        "BODY": (
            "body_summary",
            {
                "weight_kg": ("weight_data.weight_kg", _number),
                "body_fat_percentage": ("body_composition_data.body_fat_percentage", _number),
                "energy": ("heart_rate_data.hrv_rmssd_ms", lambda v: energy_from_hrv(_number(v))),
            },
        ),
        "SLEEP": (
            "sleep_summary",
            {
                "hours": (
                    "sleep_duration_data.sleep_duration_seconds",
                    lambda v: None if _number(v) is None else round(_number(v) / 3600.0, 2),
                ),
                "quality": ("sleep_quality_data.quality", lambda v: str(v) if v else None),
            },
        ),
    }
}

_DEVICE_BUILDERS = {
    "NUTRITION": NutritionData,
    "PHYSICAL": ExerciseData,
    "BODY": CheckinData,
    "SLEEP": SleepData,
}


def _parse_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _device_metric_date(payload: dict[str, Any], data: dict[str, Any], today: date) -> date:
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return _parse_date(metadata.get("start_date")) or _parse_date(payload.get("timestamp")) or today


def _empty_value(value: Any) -> bool:
    return value is None or value == []


def normalize_device_payload(
    payload: dict[str, Any], client_id: int, provider: str = "rook", today: Optional[date] = None
) -> list[ProgressEventDraft]:
    today = today or datetime.now(timezone.utc).date()
    field_maps = DEVICE_FIELD_MAPS.get(provider)
    if field_maps is None:
        logger.warning("Device payload mapping error: unknown provider=%s client_id=%s", provider, client_id)
        return []

    event_kind = str(payload.get("type") or "").upper()
    if event_kind not in field_maps:
        logger.warning("Device payload mapping error: unsupported type=%r client_id=%s", event_kind, client_id)
        return []

    data = payload.get("data")
    if not isinstance(data, dict):
        logger.warning("Device payload mapping error: data is not an object client_id=%s", client_id)
        return []

    summary_key, fields = field_maps[event_kind]
    summary = data.get(summary_key) if isinstance(data.get(summary_key), dict) else data

    mapped = {name: convert(_dig(summary, path)) for name, (path, convert) in fields.items()}
    if all(_empty_value(value) for value in mapped.values()):
        logger.warning(
            "Device payload mapping error: no mappable fields type=%s client_id=%s", event_kind, client_id
        )
        return []

    builder = _DEVICE_BUILDERS[event_kind]
    payload_fields = {name: value for name, value in mapped.items() if value is not None}
    event_data = None
    while payload_fields:
        try:
            event_data = builder(**payload_fields)
            break
        except ValidationError as exc:
            rejected = {err["loc"][0] for err in exc.errors() if err["loc"] and err["loc"][0] in payload_fields}
            logger.warning(
                "Device payload mapping error: type=%s client_id=%s dropped=%s errors=%s",
                event_kind,
                client_id,
                sorted(rejected),
                exc.errors(),
            )
            if not rejected:
                return []
            for name in rejected:
                payload_fields.pop(name)
            if all(_empty_value(value) for value in payload_fields.values()):
                return []
    if event_data is None:
        return []

    return [
        ProgressEventDraft(
            client_id=client_id,
            source=EventSource.device_sync,
            data=event_data,
            confidence=1.0,
            date_for_metric=_device_metric_date(payload, data, today),
        )
    ]


def _explicit_draft(client_id: int, log_date: Optional[date], data: Any, today: date) -> ProgressEventDraft:
    return ProgressEventDraft(
        client_id=client_id,
        source=EventSource.explicit,
        data=data,
        confidence=1.0,
        date_for_metric=log_date or today,
    )


def _normalize_explicit(raw: BaseModel, client_id: int, today: date) -> list[ProgressEventDraft]:
    if isinstance(raw, ExplicitNutritionLog):
        data = NutritionData(
            calories=raw.calories,
            protein_g=raw.protein_g,
            carbs_g=raw.carbs_g,
            fat_g=raw.fat_g,
            meal_type=raw.meal_type,
            food_description=raw.notes,
        )
        return [_explicit_draft(client_id, raw.log_date, data, today)]
    if isinstance(raw, ExplicitWorkoutLog):
        intensity = raw.intensity or intensity_from_heart_rate(raw.avg_hr_bpm)
        data = ExerciseData(
            workout_type=raw.workout_type,
            duration_min=raw.duration_min,
            intensity=intensity,
            notes=raw.notes,
        )
        return [_explicit_draft(client_id, raw.log_date, data, today)]
    if isinstance(raw, ExplicitCheckIn):
        energy = raw.energy or energy_from_hrv(raw.hrv_rmssd_ms)
        data = CheckinData(
            weight_kg=raw.weight_kg,
            body_fat_percentage=raw.body_fat_percentage,
            energy=energy,
            mood=raw.mood,
            notes=raw.notes,
        )
        return [_explicit_draft(client_id, raw.log_date, data, today)]
    logger.warning("Explicit log mapping error: unsupported input %s client_id=%s", type(raw).__name__, client_id)
    return []


def normalize(raw: RawInput, client_id: int, today: Optional[date] = None) -> list[ProgressEventDraft]:
    """Map one raw input onto zero or more canonical event drafts."""
    today = today or datetime.now(timezone.utc).date()
    try:
        if isinstance(raw, dict):
            return normalize_device_payload(raw, client_id, today=today)
        if isinstance(raw, BaseModel):
            return _normalize_explicit(raw, client_id, today)
    except Exception:
        logger.exception("Normalizer mapping error for client_id=%s", client_id)
        return []
    logger.warning("Normalizer mapping error: unsupported input %s client_id=%s", type(raw).__name__, client_id)
    return []
