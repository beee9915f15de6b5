import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from statistics import mean
from typing import Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from wellio.core.events import to_utc
from wellio.db.models import Client, Goal, ProgressEvent

logger = logging.getLogger("uvicorn.error")

GOAL_WEIGHT = 0.5
WEEKLY_WEIGHT = 0.3
ACTIVITY_WEIGHT = 0.2

WEEKLY_WINDOW_DAYS = 7
ACTIVITY_WINDOW_DAYS = 30

# Weekly targets per activity category; scaled to the activity window.
WEEKLY_ACTIVITY_TARGETS: dict[str, float] = {
    "exercise": 3,
    "nutrition": 5,
    "checkin": 1,
    "weight": 1,
}
ACTIVITY_CATEGORIES: dict[str, str] = {
    "exercise": "exercise",
    "nutrition": "nutrition",
    "mood": "checkin",
    "checkin": "checkin",
    "sleep": "checkin",
    "weight": "weight",
}

NON_QUALIFYING_EVENT_TYPES = {"note"}

# Goal-type keyword -> (event types that move it, how the value is read).
# Checked in order; the first keyword found in the goal type wins.
GOAL_EVENT_MAP: tuple[tuple[str, tuple[str, ...], str], ...] = (
    ("weight", ("weight", "checkin"), "latest"),
    ("calorie", ("nutrition",), "daily_total"),
    ("protein", ("nutrition",), "daily_total"),
    ("step", ("steps",), "latest"),
    ("sleep", ("sleep",), "latest"),
    ("workout", ("exercise",), "count"),
    ("exercise", ("exercise",), "count"),
)


class ClientNotFoundError(LookupError):
    def __init__(self, client_id: int):
        super().__init__(f"Client {client_id} not found")
        self.client_id = client_id


@dataclass(frozen=True)
class ProgressBreakdown:
    composite_score: float
    goal_progress: float
    weekly_progress: float
    activity_progress: float


@dataclass
class BatchProgressResult:
    updated: dict[int, ProgressBreakdown] = field(default_factory=dict)
    failures: dict[int, str] = field(default_factory=dict)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clamp(value: float) -> float:
    return float(max(0.0, min(100.0, value)))


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _goal_completion(goal: Goal) -> float:
    baseline = goal.baseline_value if goal.baseline_value is not None else 0.0
    span = goal.target_value - baseline
    if span == 0:
        return 100.0
    return _clamp(100.0 * (goal.current_value - baseline) / span)


def goal_progress(goals: Iterable[Goal]) -> float:
    active = [g for g in goals if g.status == "active" and g.scope == "long_term"]
    if not active:
        return 0.0
    return _clamp(mean(_goal_completion(g) for g in active))


def _qualifying(events: Iterable[ProgressEvent], since: datetime, until: datetime) -> list[ProgressEvent]:
    rows = []
    for event in events:
        if event.superseded_at is not None or event.event_type in NON_QUALIFYING_EVENT_TYPES:
            continue
        occurred = to_utc(event.occurred_at)
        if since < occurred <= until:
            rows.append(event)
    return rows


def weekly_progress(goals: Iterable[Goal], events: Iterable[ProgressEvent], now: datetime) -> float:
    recent = _qualifying(events, now - timedelta(days=WEEKLY_WINDOW_DAYS), now)
    logged_days = {event.date_for_metric for event in recent}
    day_ratio = min(1.0, len(logged_days) / WEEKLY_WINDOW_DAYS)

    week_start = _week_start(now.date())
    week_end = week_start + timedelta(days=6)
    tasks = [
        g
        for g in goals
        if g.scope == "weekly_task"
        and g.week_start_date is not None
        and week_start <= g.week_start_date <= week_end
        and g.status != "abandoned"
    ]
    if not tasks:
        return _clamp(day_ratio * 100.0)

    completed = [t for t in tasks if t.status == "completed" or t.current_value >= t.target_value]
    task_ratio = len(completed) / len(tasks)
    return _clamp((0.5 * day_ratio + 0.5 * task_ratio) * 100.0)


def activity_progress(events: Iterable[ProgressEvent], now: datetime) -> float:
    recent = _qualifying(events, now - timedelta(days=ACTIVITY_WINDOW_DAYS), now)
    counts = {category: 0 for category in WEEKLY_ACTIVITY_TARGETS}
    for event in recent:
        category = ACTIVITY_CATEGORIES.get(event.event_type)
        if category:
            counts[category] += 1

    scale = ACTIVITY_WINDOW_DAYS / 7.0
    ratios = [
        min(1.0, counts[category] / (target * scale)) for category, target in WEEKLY_ACTIVITY_TARGETS.items()
    ]
    return _clamp(mean(ratios) * 100.0)


def score_progress(
    goals: Sequence[Goal], events: Sequence[ProgressEvent], now: Optional[datetime] = None
) -> ProgressBreakdown:
    timestamp = to_utc(now or _utc_now())
    goal = goal_progress(goals)
    weekly = weekly_progress(goals, events, timestamp)
    activity = activity_progress(events, timestamp)
    composite = _clamp(goal * GOAL_WEIGHT + weekly * WEEKLY_WEIGHT + activity * ACTIVITY_WEIGHT)
    return ProgressBreakdown(
        composite_score=composite,
        goal_progress=goal,
        weekly_progress=weekly,
        activity_progress=activity,
    )


def _event_data(event: ProgressEvent) -> dict:
    try:
        data = json.loads(event.data_json or "{}")
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _reading(keyword: str, data: dict) -> Optional[float]:
    if keyword == "weight":
        candidates = (data.get("value_kg"), data.get("value"), data.get("weight_kg"))
    else:
        field_name = {"calorie": "calories", "protein": "protein_g", "step": "steps", "sleep": "hours"}[keyword]
        candidates = (data.get(field_name),)
    for value in candidates:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def _goal_mapping(goal: Goal) -> Optional[tuple[str, tuple[str, ...], str]]:
    goal_type = (goal.goal_type or "").lower()
    for keyword, event_types, mode in GOAL_EVENT_MAP:
        if keyword in goal_type:
            return keyword, event_types, mode
    return None


def goal_value_from_events(goal: Goal, events: Iterable[ProgressEvent]) -> Optional[float]:
    """Current value of a goal as read from its relevant active events, or None when none apply."""
    mapping = _goal_mapping(goal)
    if mapping is None:
        return None
    keyword, event_types, mode = mapping
    relevant = [e for e in events if e.superseded_at is None and e.event_type in event_types]
    relevant.sort(key=lambda e: (to_utc(e.occurred_at), e.id or 0), reverse=True)

    if mode == "count":
        since = to_utc(goal.created_at) if goal.created_at else None
        count = sum(1 for e in relevant if since is None or to_utc(e.occurred_at) >= since)
        return float(count) if count else None

    readings = [(e.date_for_metric, _reading(keyword, _event_data(e))) for e in relevant]
    readings = [(day, value) for day, value in readings if value is not None]
    if not readings:
        return None
    if mode == "latest":
        return readings[0][1]
    latest_day = max(day for day, _ in readings)
    return sum(value for day, value in readings if day == latest_day)


def refresh_goal_values(db: Session, client_id: int) -> int:
    goals = (
        db.query(Goal)
        .filter(Goal.client_id == client_id, Goal.status == "active", Goal.scope == "long_term")
        .all()
    )
    mapped = [(goal, _goal_mapping(goal)) for goal in goals]
    event_types = {t for _, mapping in mapped if mapping for t in mapping[1]}
    if not event_types:
        return 0

    events = (
        db.query(ProgressEvent)
        .filter(
            ProgressEvent.client_id == client_id,
            ProgressEvent.superseded_at.is_(None),
            ProgressEvent.event_type.in_(event_types),
        )
        .all()
    )
    changed = 0
    for goal, mapping in mapped:
        if mapping is None:
            continue
        value = goal_value_from_events(goal, events)
        if value is not None and value != goal.current_value:
            goal.current_value = value
            changed += 1
    return changed


def compute_progress(db: Session, client_id: int, now: Optional[datetime] = None) -> ProgressBreakdown:
    timestamp = to_utc(now or _utc_now())
    client = db.query(Client).filter(Client.id == client_id).first()
    if client is None:
        raise ClientNotFoundError(client_id)

    goals = db.query(Goal).filter(Goal.client_id == client_id).all()
    since = timestamp - timedelta(days=max(WEEKLY_WINDOW_DAYS, ACTIVITY_WINDOW_DAYS) + 1)
    events = (
        db.query(ProgressEvent)
        .filter(
            ProgressEvent.client_id == client_id,
            ProgressEvent.superseded_at.is_(None),
            ProgressEvent.occurred_at >= since,
        )
        .order_by(ProgressEvent.occurred_at.asc())
        .all()
    )
    return score_progress(goals, events, now=timestamp)


def update_client_progress(db: Session, client_id: int, now: Optional[datetime] = None) -> ProgressBreakdown:
    refresh_goal_values(db, client_id)
    breakdown = compute_progress(db, client_id, now=now)
    client = db.query(Client).filter(Client.id == client_id).first()
    client.progress_score = int(round(breakdown.composite_score))
    client.goal_progress = breakdown.goal_progress
    client.weekly_progress = breakdown.weekly_progress
    client.activity_progress = breakdown.activity_progress
    client.progress_updated_at = _utc_now()
    db.commit()
    return breakdown


def update_all_clients_progress(
    db: Session, coach_id: Optional[int] = None, now: Optional[datetime] = None
) -> BatchProgressResult:
    query = db.query(Client.id).filter(Client.status == "active")
    if coach_id is not None:
        query = query.filter(Client.coach_id == coach_id)
    client_ids = [row[0] for row in query.order_by(Client.id.asc()).all()]

    result = BatchProgressResult()
    for client_id in client_ids:
        try:
            result.updated[client_id] = update_client_progress(db, client_id, now=now)
        except Exception as exc:
            db.rollback()
            result.failures[client_id] = str(exc)[:220] or type(exc).__name__
            logger.exception("Progress recalculation failed for client_id=%s", client_id)
    logger.info(
        "Progress recalculation complete coach_id=%s updated=%s failed=%s",
        coach_id,
        len(result.updated),
        len(result.failures),
    )
    return result
