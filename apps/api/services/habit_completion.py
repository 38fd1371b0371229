"""
Habit Completion Service

Completing and uncompleting activities. One completion moves three things
together: the completion row, the companion's XP/level/evolution, and the
companion's health. They are staged on the session and committed once, so a
failure leaves none of them applied.

State per (user, activity, day):

    NOT_COMPLETED --complete--> COMPLETED --uncomplete--> NOT_COMPLETED

Uncompleting reverses XP but keeps the health recovery.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date
from typing import Dict, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.clock import Clock, as_utc, get_clock
from core.config import settings
from core.events import EVENT_ACTIVITY_COMPLETED, EVENT_ACTIVITY_UNCOMPLETED, emit
from core.exceptions import (
    ActivityNotFoundError,
    AlreadyCompletedTodayError,
    NoCompletionTodayError,
    ValidationError,
)
from models import (
    Activity,
    ActivityCompletion,
    CompletionSource,
    Habitanimal,
    Pillar,
    validate_pillar_subcategory,
)
from schemas import CompletionResponse
from services.habitanimal_health import recover_health
from services.habitanimal_service import get_companion_for_category
from services.xp import calculate_evolution_stage, calculate_habit_xp, calculate_level
import services.auto_trigger  # noqa: F401  (subscribes chained triggers to completion events)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20

# AUTO_TRIGGER is written only by trigger evaluation
USER_COMPLETION_SOURCES = (
    CompletionSource.MANUAL,
    CompletionSource.WHOOP,
    CompletionSource.APPLE_HEALTH,
)


@dataclass
class CompanionStateChange:
    """Before/after snapshot of a companion across one transaction."""
    id: str
    previous_level: int
    new_level: int
    previous_xp: int
    new_xp: int
    previous_evolution_stage: int
    new_evolution_stage: int
    previous_health: int
    new_health: int

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.previous_level

    @property
    def evolved(self) -> bool:
        return self.new_evolution_stage > self.previous_evolution_stage

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["leveled_up"] = self.leveled_up
        data["evolved"] = self.evolved
        return data


@dataclass
class CompletionResult:
    completion: ActivityCompletion
    xp_earned: int
    habitanimal: CompanionStateChange


@dataclass
class UncompleteResult:
    habitanimal: CompanionStateChange


@dataclass
class CompletionHistory:
    completions: List[ActivityCompletion]
    total_count: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.completions) < self.total_count

    def to_dict(self) -> Dict:
        return {
            "completions": [
                CompletionResponse.model_validate(c).model_dump(mode="json") for c in self.completions
            ],
            "total_count": self.total_count,
            "has_more": self.has_more,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _has_details(details: Optional[str]) -> bool:
    return bool(details and details.strip())


def _validate_source(source) -> CompletionSource:
    try:
        source = CompletionSource(source)
    except ValueError:
        source = None
    if source not in USER_COMPLETION_SOURCES:
        allowed = ", ".join(s.value for s in USER_COMPLETION_SOURCES)
        raise ValidationError(f"Invalid source. Must be one of: {allowed}", field="source")
    return source


def verify_activity_ownership(db: Session, activity_id: str, user_id: str) -> Activity:
    """Load an activity the user owns and has not archived."""
    activity = (
        db.query(Activity)
        .filter(
            Activity.id == activity_id,
            Activity.user_id == user_id,
            Activity.archived.is_(False),
        )
        .first()
    )
    if not activity:
        raise ActivityNotFoundError(activity_id)
    return activity


def find_completion_on(db: Session, activity_id: str, day: date) -> Optional[ActivityCompletion]:
    """Most recent completion of an activity on a calendar day."""
    return (
        db.query(ActivityCompletion)
        .filter(
            ActivityCompletion.activity_id == activity_id,
            ActivityCompletion.completed_on == day,
        )
        .order_by(ActivityCompletion.completed_at.desc())
        .first()
    )


def _state_change(companion: Habitanimal, new_xp: int, new_health: int) -> CompanionStateChange:
    previous_level = calculate_level(companion.xp)
    new_level = calculate_level(new_xp)
    return CompanionStateChange(
        id=companion.id,
        previous_level=previous_level,
        new_level=new_level,
        previous_xp=companion.xp,
        new_xp=new_xp,
        previous_evolution_stage=int(calculate_evolution_stage(previous_level)),
        new_evolution_stage=int(calculate_evolution_stage(new_level)),
        previous_health=companion.health,
        new_health=new_health,
    )


# ---------------------------------------------------------------------------
# Main service functions
# ---------------------------------------------------------------------------

def complete_activity(
    db: Session,
    activity_id: str,
    user_id: str,
    details: Optional[str] = None,
    clock: Optional[Clock] = None,
    source: CompletionSource = CompletionSource.MANUAL,
) -> CompletionResult:
    """
    Complete an activity for today.

    Raises:
        ValidationError: source is not MANUAL, WHOOP or APPLE_HEALTH
        ActivityNotFoundError: activity missing, unowned or archived
        AlreadyCompletedTodayError: habit already has a completion today
        CompanionNotFoundError: no companion for the activity's category
    """
    source = _validate_source(source)
    clock = clock or get_clock()
    now = clock.now()
    today = now.date()

    # 1. Verify activity exists and belongs to user
    activity = verify_activity_ownership(db, activity_id, user_id)

    # 2. Check not already completed today
    if activity.is_habit and find_completion_on(db, activity.id, today):
        raise AlreadyCompletedTodayError(activity_id)

    # 3. Calculate XP
    xp_earned = calculate_habit_xp(_has_details(details))

    # 4. Companion tied to the activity's category
    companion = get_companion_for_category(db, user_id, activity.category)

    # 5. New state values
    change = _state_change(companion, companion.xp + xp_earned, recover_health(companion.health))

    # 6. Completion row + companion update, one commit
    completion = ActivityCompletion(
        activity_id=activity.id,
        completed_at=as_utc(now),
        completed_on=today,
        habit_day=today if activity.is_habit else None,
        points_earned=activity.points,
        xp_earned=xp_earned,
        details=details if _has_details(details) else None,
        source=source.value,
    )
    db.add(completion)

    companion.xp = change.new_xp
    companion.level = change.new_level
    companion.evolution_stage = change.new_evolution_stage
    companion.health = change.new_health
    companion.last_interaction = as_utc(now)

    try:
        db.commit()
    except IntegrityError:
        # A concurrent request won the (activity, day) uniqueness race
        db.rollback()
        logger.info(f"Concurrent completion rejected for activity {activity_id}")
        raise AlreadyCompletedTodayError(activity_id)
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Activity {activity.id} completed by user {user_id}: +{xp_earned} XP, "
        f"level {change.previous_level}->{change.new_level}, "
        f"health {change.previous_health}->{change.new_health}",
        extra={"extra_fields": {
            "user_id": user_id,
            "activity_id": activity.id,
            "source": source.value,
            "leveled_up": change.leveled_up,
            "evolved": change.evolved,
        }},
    )

    emit(EVENT_ACTIVITY_COMPLETED, db=db, user_id=user_id, activity_id=activity.id, clock=clock)

    return CompletionResult(completion=completion, xp_earned=xp_earned, habitanimal=change)


def uncomplete_activity(
    db: Session,
    activity_id: str,
    user_id: str,
    clock: Optional[Clock] = None,
) -> UncompleteResult:
    """
    Remove today's completion and take back the XP it earned.

    Health and last_interaction are left as they are.

    Raises:
        ActivityNotFoundError: activity missing, unowned or archived
        NoCompletionTodayError: nothing to undo today
        CompanionNotFoundError: no companion for the activity's category
    """
    clock = clock or get_clock()
    today = clock.today()

    # 1. Verify activity exists and belongs to user
    activity = verify_activity_ownership(db, activity_id, user_id)

    # 2. Find today's completion
    completion = find_completion_on(db, activity.id, today)
    if not completion:
        raise NoCompletionTodayError(activity_id)

    # 3. Companion tied to the activity's category
    companion = get_companion_for_category(db, user_id, activity.category)

    # 4. Reversed state values (health kept)
    change = _state_change(companion, max(0, companion.xp - completion.xp_earned), companion.health)

    # 5. Delete completion + companion update, one commit
    db.delete(completion)
    companion.xp = change.new_xp
    companion.level = change.new_level
    companion.evolution_stage = change.new_evolution_stage

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Activity {activity.id} uncompleted by user {user_id}: "
        f"-{change.previous_xp - change.new_xp} XP"
    )

    emit(EVENT_ACTIVITY_UNCOMPLETED, db=db, user_id=user_id, activity_id=activity.id, clock=clock)

    return UncompleteResult(habitanimal=change)


def get_completion_history(
    db: Session,
    activity_id: str,
    user_id: str,
    limit: int = DEFAULT_HISTORY_LIMIT,
    offset: int = 0,
) -> CompletionHistory:
    """Paginated completions of an owned activity, newest first."""
    max_limit = settings.COMPLETION_HISTORY_MAX_LIMIT
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}", field="limit")
    if offset < 0:
        raise ValidationError("offset must be non-negative", field="offset")

    verify_activity_ownership(db, activity_id, user_id)

    query = db.query(ActivityCompletion).filter(ActivityCompletion.activity_id == activity_id)
    total_count = query.count()
    completions = (
        query.order_by(ActivityCompletion.completed_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    return CompletionHistory(completions=completions, total_count=total_count, limit=limit, offset=offset)


def get_activity_logs(
    db: Session,
    user_id: str,
    day: Optional[date] = None,
    pillar: Optional[Pillar] = None,
    clock: Optional[Clock] = None,
) -> List[Dict]:
    """Completions logged on a day (default today), newest first."""
    day = day or (clock or get_clock()).today()

    query = (
        db.query(ActivityCompletion, Activity)
        .join(Activity, ActivityCompletion.activity_id == Activity.id)
        .filter(Activity.user_id == user_id, ActivityCompletion.completed_on == day)
    )
    if pillar is not None:
        query = query.filter(Activity.pillar == Pillar(pillar).value)

    logs = []
    for completion, activity in query.order_by(ActivityCompletion.completed_at.desc()).all():
        logs.append({
            "id": completion.id,
            "activity_id": activity.id,
            "activity_name": activity.name,
            "pillar": activity.pillar,
            "sub_category": activity.sub_category,
            "points_earned": completion.points_earned,
            "xp_earned": completion.xp_earned,
            "completed_at": completion.completed_at,
            "details": completion.details,
            "source": completion.source,
        })
    return logs


def find_or_create_activity(
    db: Session,
    user_id: str,
    pillar: Pillar,
    sub_category: str,
    name: str,
    points: int = 10,
) -> Activity:
    """
    Reuse the user's live activity with this name in this sub-category, or
    materialize a new habit for it.
    """
    sub = validate_pillar_subcategory(pillar, sub_category)

    activity = (
        db.query(Activity)
        .filter(
            Activity.user_id == user_id,
            Activity.sub_category == sub.value,
            Activity.name == name,
            Activity.archived.is_(False),
        )
        .first()
    )
    if activity:
        return activity

    activity = Activity(
        user_id=user_id,
        name=name,
        pillar=sub.pillar.value,
        sub_category=sub.value,
        points=points,
        is_habit=True,
    )
    db.add(activity)
    db.flush()
    logger.info(f"Materialized activity '{name}' ({sub.value}) for user {user_id}")
    return activity
