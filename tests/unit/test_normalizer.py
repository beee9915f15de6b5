from datetime import date

import pytest

from wellio.core.events import EventSource, EventType
from wellio.core.normalizer import (
    ExplicitCheckIn,
    ExplicitNutritionLog,
    ExplicitWorkoutLog,
    energy_from_hrv,
    intensity_from_heart_rate,
    normalize,
    normalize_device_payload,
    seconds_to_minutes,
)

TODAY = date(2026, 3, 10)


@pytest.mark.parametrize(
    ("bpm", "expected"),
    [(160, "high"), (100, "low"), (135, "moderate"), (150, "moderate"), (120, "moderate"), (None, None)],
)
def test_intensity_breakpoints(bpm, expected) -> None:
    assert intensity_from_heart_rate(bpm) == expected


@pytest.mark.parametrize(
    ("hrv", "expected"),
    [(70, "high"), (20, "low"), (45, "average"), (60, "average"), (30, "average"), (None, None)],
)
def test_energy_breakpoints(hrv, expected) -> None:
    assert energy_from_hrv(hrv) == expected


def test_seconds_to_minutes_rounds_half_up() -> None:
    assert seconds_to_minutes(90) == 2
    assert seconds_to_minutes(150) == 3
    assert seconds_to_minutes(89) == 1
    assert seconds_to_minutes(None) is None


def test_explicit_nutrition_maps_one_to_one() -> None:
    drafts = normalize(
        ExplicitNutritionLog(calories=520, protein_g=40, meal_type="lunch", notes="rice bowl"), 7, today=TODAY
    )
    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.client_id == 7
    assert draft.event_type == EventType.nutrition
    assert draft.source == EventSource.explicit
    assert draft.confidence == 1.0
    assert draft.needs_review is False
    assert draft.date_for_metric == TODAY
    assert draft.data.calories == 520
    assert draft.data.food_description == "rice bowl"


def test_explicit_workout_uses_heart_rate_when_intensity_missing() -> None:
    drafts = normalize(
        ExplicitWorkoutLog(workout_type="run", duration_min=30, avg_hr_bpm=162, log_date=date(2026, 3, 8)),
        7,
        today=TODAY,
    )
    assert drafts[0].event_type == EventType.exercise
    assert drafts[0].data.intensity == "high"
    assert drafts[0].date_for_metric == date(2026, 3, 8)


def test_explicit_workout_keeps_given_intensity() -> None:
    drafts = normalize(ExplicitWorkoutLog(workout_type="yoga", intensity="low", avg_hr_bpm=170), 7, today=TODAY)
    assert drafts[0].data.intensity == "low"


def test_explicit_checkin_derives_energy_from_hrv() -> None:
    drafts = normalize(ExplicitCheckIn(weight_kg=81.5, hrv_rmssd_ms=22), 7, today=TODAY)
    assert drafts[0].event_type == EventType.checkin
    assert drafts[0].data.energy == "low"
    assert drafts[0].data.weight_kg == 81.5


def test_rook_physical_payload() -> None:
    payload = {
        "type": "PHYSICAL",
        "user_id": "7",
        "timestamp": "2026-03-09T18:00:00Z",
        "data": {
            "physical_summary": {
                "active_durations_data": {"activity_seconds": 2730},
                "heart_rate_data": {"avg_hr_bpm": 155},
                "activities": [{"name": "cycling"}, {"name": "walking"}],
            },
            "metadata": {"start_date": "2026-03-09T17:00:00Z"},
        },
    }
    drafts = normalize(payload, 7, today=TODAY)
    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.source == EventSource.device_sync
    assert draft.event_type == EventType.exercise
    assert draft.data.duration_min == 46
    assert draft.data.intensity == "high"
    assert draft.data.workout_type == "cycling"
    assert len(draft.data.activities) == 2
    assert draft.date_for_metric == date(2026, 3, 9)


def test_rook_body_payload_with_missing_subfields() -> None:
    payload = {
        "type": "BODY",
        "user_id": "7",
        "data": {"body_summary": {"heart_rate_data": {"hrv_rmssd_ms": 72}}},
    }
    drafts = normalize(payload, 7, today=TODAY)
    assert len(drafts) == 1
    assert drafts[0].event_type == EventType.checkin
    assert drafts[0].data.energy == "high"
    assert drafts[0].data.weight_kg is None
    assert drafts[0].date_for_metric == TODAY


def test_rook_sleep_and_nutrition_payloads() -> None:
    sleep = normalize(
        {
            "type": "SLEEP",
            "timestamp": "2026-03-09T07:00:00Z",
            "data": {"sleep_summary": {"sleep_duration_data": {"sleep_duration_seconds": 27000}}},
        },
        7,
        today=TODAY,
    )
    assert sleep[0].event_type == EventType.sleep
    assert sleep[0].data.hours == 7.5
    assert sleep[0].date_for_metric == date(2026, 3, 9)

    nutrition = normalize(
        {
            "type": "nutrition",
            "data": {
                "calories_data": {"net_intake_kcal": 2100},
                "macros_data": {"protein_g": 120, "carbs_g": 200, "fat_g": 70},
            },
        },
        7,
        today=TODAY,
    )
    assert nutrition[0].event_type == EventType.nutrition
    assert nutrition[0].data.calories == 2100
    assert nutrition[0].data.fat_g == 70


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"type": "UNKNOWN", "data": {}},
        {"type": "PHYSICAL", "data": "not-a-dict"},
        {"type": "PHYSICAL", "data": {"physical_summary": {}}},
        {"type": "SLEEP", "data": {"sleep_summary": {"sleep_duration_data": {"sleep_duration_seconds": "abc"}}}},
        {"type": "BODY", "data": {"body_summary": {"weight_data": {"weight_kg": -4}}}},
    ],
)
def test_malformed_device_payload_returns_empty(payload) -> None:
    assert normalize(payload, 7, today=TODAY) == []


def test_unknown_provider_returns_empty() -> None:
    assert normalize_device_payload({"type": "BODY", "data": {}}, 7, provider="garmin", today=TODAY) == []


def test_unsupported_input_type_returns_empty() -> None:
    assert normalize("weight 80kg", 7, today=TODAY) == []


def test_out_of_range_device_field_is_nulled_and_rest_kept() -> None:
    payload = {
        "type": "BODY",
        "data": {
            "body_summary": {
                "weight_data": {"weight_kg": 0},
                "heart_rate_data": {"hrv_rmssd_ms": 72},
            }
        },
    }
    drafts = normalize(payload, 7, today=TODAY)
    assert len(drafts) == 1
    assert drafts[0].event_type == EventType.checkin
    assert drafts[0].data.energy == "high"
    assert drafts[0].data.weight_kg is None


def test_negative_device_duration_keeps_intensity() -> None:
    payload = {
        "type": "PHYSICAL",
        "data": {
            "physical_summary": {
                "active_durations_data": {"activity_seconds": -600},
                "heart_rate_data": {"avg_hr_bpm": 160},
            }
        },
    }
    drafts = normalize(payload, 7, today=TODAY)
    assert len(drafts) == 1
    assert drafts[0].data.intensity == "high"
    assert drafts[0].data.duration_min is None
