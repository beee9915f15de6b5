from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Protocol, Sequence

from wellio.core.events import to_utc

INACTIVITY_WINDOW_DAYS = 3
MISSED_WORKOUT_MIN_EVENTS = 10
MISSED_WORKOUT_WINDOW_DAYS = 5
MISSED_WORKOUT_DROP_RATIO = 0.5
NUTRITION_GAP_DAYS = 3
NUTRITION_GAP_HIGH_DAYS = 5

# Goal-type keywords that make meal logging part of the plan.
NUTRITION_GOAL_KEYWORDS = ("nutrition", "eat", "calorie", "protein", "meal", "weight")


class TriggerType(str, Enum):
    inactivity = "inactivity"
    missed_workout = "missed_workout"
    nutrition_concern = "nutrition_concern"


class TriggerSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


SEVERITY_ORDER: dict[str, int] = {"low": 1, "medium": 2, "high": 3}


class EventLike(Protocol):
    event_type: str
    occurred_at: datetime
    superseded_at: Optional[datetime]


@dataclass(frozen=True)
class DetectedTrigger:
    client_id: int
    type: TriggerType
    severity: TriggerSeverity
    reason: str
    recommended_action: str


def _inactivity(client_id: int, occurred: list[datetime], now: datetime) -> Optional[DetectedTrigger]:
    window_start = now - timedelta(days=INACTIVITY_WINDOW_DAYS)
    if any(window_start < ts <= now for ts in occurred):
        return None
    past = [ts for ts in occurred if ts <= now]
    if not past:
        return None
    days = max(INACTIVITY_WINDOW_DAYS, (now - max(past)).days)
    return DetectedTrigger(
        client_id=client_id,
        type=TriggerType.inactivity,
        severity=TriggerSeverity.high,
        reason=f"No logged activity in the last {days} days.",
        recommended_action="Reach out to check in and help the client restart logging.",
    )


def _missed_workout(client_id: int, exercise: list[datetime], now: datetime) -> Optional[DetectedTrigger]:
    if len(exercise) < MISSED_WORKOUT_MIN_EVENTS:
        return None
    window = timedelta(days=MISSED_WORKOUT_WINDOW_DAYS)
    recent = sum(1 for ts in exercise if now - window < ts <= now)
    older = sum(1 for ts in exercise if now - 2 * window < ts <= now - window)
    if older == 0 or recent >= MISSED_WORKOUT_DROP_RATIO * older:
        return None
    return DetectedTrigger(
        client_id=client_id,
        type=TriggerType.missed_workout,
        severity=TriggerSeverity.medium,
        reason=(
            f"Workout frequency dropped: {recent} sessions in the last {MISSED_WORKOUT_WINDOW_DAYS} days "
            f"vs {older} in the {MISSED_WORKOUT_WINDOW_DAYS} days before."
        ),
        recommended_action="Review the training schedule with the client and adjust if needed.",
    )


def is_nutrition_goal_type(goal_type: str) -> bool:
    lowered = (goal_type or "").lower()
    return any(keyword in lowered for keyword in NUTRITION_GOAL_KEYWORDS)


def _nutrition_concern(
    client_id: int, meals: list[datetime], occurred: list[datetime], now: datetime
) -> Optional[DetectedTrigger]:
    # No meal on record: count from the first thing the client logged.
    anchor = max((ts for ts in meals if ts <= now), default=None) or min(occurred)
    days = (now - anchor).days
    if days < NUTRITION_GAP_DAYS:
        return None
    severity = TriggerSeverity.high if days >= NUTRITION_GAP_HIGH_DAYS else TriggerSeverity.medium
    return DetectedTrigger(
        client_id=client_id,
        type=TriggerType.nutrition_concern,
        severity=severity,
        reason=f"No meals logged in the last {days} days despite an active nutrition goal.",
        recommended_action="Ask about eating habits and make meal logging easier to keep up.",
    )


def detect_triggers(
    client_id: int,
    recent_events: Sequence[EventLike],
    now: Optional[datetime] = None,
    has_nutrition_goal: bool = False,
) -> list[DetectedTrigger]:
    """Evaluate the engagement rules once over a client's events.

    Superseded events are ignored. With no events at all there is nothing to
    judge and the result is empty. Each rule contributes at most one trigger.
    The meal-gap rule only runs for clients with an active nutrition goal.
    """
    timestamp = to_utc(now or datetime.now(timezone.utc))
    active = [e for e in recent_events if getattr(e, "superseded_at", None) is None]
    if not active:
        return []

    occurred = [to_utc(e.occurred_at) for e in active]
    exercise = [to_utc(e.occurred_at) for e in active if e.event_type == "exercise"]

    rules = [_inactivity(client_id, occurred, timestamp), _missed_workout(client_id, exercise, timestamp)]
    if has_nutrition_goal:
        meals = [to_utc(e.occurred_at) for e in active if e.event_type == "nutrition"]
        rules.append(_nutrition_concern(client_id, meals, occurred, timestamp))

    triggers: list[DetectedTrigger] = []
    for rule in rules:
        if rule is not None:
            triggers.append(rule)
    return triggers
