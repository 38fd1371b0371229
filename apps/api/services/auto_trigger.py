"""
Auto-Trigger Evaluation Service

Evaluates a user's trigger rules against incoming signals and auto-completes
the linked activity when a rule matches. Called after:
- a Whoop data sync (recovery, sleep, strain, workout triggers)
- an activity completion (ACTIVITY_COMPLETED chained triggers)

Each rule kind has its own evaluator in TRIGGER_EVALUATORS; adding a kind
means adding one function, existing kinds stay untouched. A signal missing
from the context never matches.

Evaluation is idempotent per day: an activity already completed today is
reported, not completed again. Every trigger runs in its own savepoint, so
one failing trigger is logged and recorded in its result while the rest
are still evaluated.
"""

from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.clock import Clock, as_utc, get_clock
from core.events import EVENT_ACTIVITY_COMPLETED, subscribe
from models import Activity, ActivityCompletion, AutoTrigger, AutoTriggerType, CompletionSource
from schemas import TriggerContext

logger = logging.getLogger(__name__)


# Most common sport_ids from the Whoop API
WHOOP_WORKOUT_TYPES = [
    {"id": 1, "name": "Running"},
    {"id": 44, "name": "Functional Fitness"},
    {"id": 43, "name": "HIIT"},
    {"id": 0, "name": "Weightlifting"},
    {"id": 63, "name": "Meditation"},
    {"id": 52, "name": "Cycling"},
    {"id": 71, "name": "Yoga"},
    {"id": 48, "name": "Swimming"},
    {"id": 82, "name": "Walking"},
    {"id": 16, "name": "Basketball"},
    {"id": 25, "name": "Golf"},
    {"id": 57, "name": "Tennis"},
    {"id": 64, "name": "Rowing"},
    {"id": 73, "name": "Pilates"},
]

# Threshold used when a rule has none
DEFAULT_ABOVE_THRESHOLD = 0.0
DEFAULT_BELOW_THRESHOLD = 100.0


@dataclass
class TriggerEvaluationResult:
    trigger_id: str
    activity_id: str
    activity_name: str
    triggered: bool = False
    already_completed_today: bool = False
    completion_created: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Condition evaluators, one per trigger kind
# ---------------------------------------------------------------------------

def _threshold(trigger: AutoTrigger, default: float) -> float:
    return trigger.threshold_value if trigger.threshold_value is not None else default


def _recovery_above(trigger: AutoTrigger, context: TriggerContext) -> bool:
    if context.whoop_recovery is None:
        return False
    return context.whoop_recovery >= _threshold(trigger, DEFAULT_ABOVE_THRESHOLD)


def _recovery_below(trigger: AutoTrigger, context: TriggerContext) -> bool:
    if context.whoop_recovery is None:
        return False
    return context.whoop_recovery < _threshold(trigger, DEFAULT_BELOW_THRESHOLD)


def _sleep_above(trigger: AutoTrigger, context: TriggerContext) -> bool:
    if context.whoop_sleep_hours is None:
        return False
    return context.whoop_sleep_hours >= _threshold(trigger, DEFAULT_ABOVE_THRESHOLD)


def _strain_above(trigger: AutoTrigger, context: TriggerContext) -> bool:
    if context.whoop_strain is None:
        return False
    return context.whoop_strain >= _threshold(trigger, DEFAULT_ABOVE_THRESHOLD)


def _workout_type(trigger: AutoTrigger, context: TriggerContext) -> bool:
    if context.whoop_workout_type_id is None:
        return False
    return context.whoop_workout_type_id == trigger.workout_type_id


def _activity_completed(trigger: AutoTrigger, context: TriggerContext) -> bool:
    if not context.completed_activity_id:
        return False
    return context.completed_activity_id == trigger.trigger_activity_id


TRIGGER_EVALUATORS: Dict[AutoTriggerType, Callable[[AutoTrigger, TriggerContext], bool]] = {
    AutoTriggerType.WHOOP_RECOVERY_ABOVE: _recovery_above,
    AutoTriggerType.WHOOP_RECOVERY_BELOW: _recovery_below,
    AutoTriggerType.WHOOP_SLEEP_ABOVE: _sleep_above,
    AutoTriggerType.WHOOP_STRAIN_ABOVE: _strain_above,
    AutoTriggerType.WHOOP_WORKOUT_TYPE: _workout_type,
    AutoTriggerType.ACTIVITY_COMPLETED: _activity_completed,
}


def evaluate_trigger_condition(trigger: AutoTrigger, context: TriggerContext) -> bool:
    try:
        kind = AutoTriggerType(trigger.trigger_type)
    except ValueError:
        logger.warning(f"Unknown trigger type: {trigger.trigger_type}")
        return False
    return TRIGGER_EVALUATORS[kind](trigger, context)


def get_completion_details(trigger_type: str, context: TriggerContext) -> str:
    """Human-readable note naming the signal that fired."""
    if trigger_type in (AutoTriggerType.WHOOP_RECOVERY_ABOVE.value, AutoTriggerType.WHOOP_RECOVERY_BELOW.value):
        return f"Auto-triggered: Recovery {context.whoop_recovery:g}%"
    if trigger_type == AutoTriggerType.WHOOP_SLEEP_ABOVE.value:
        return f"Auto-triggered: Sleep {context.whoop_sleep_hours:.1f} hours"
    if trigger_type == AutoTriggerType.WHOOP_STRAIN_ABOVE.value:
        return f"Auto-triggered: Strain {context.whoop_strain:.1f}"
    if trigger_type == AutoTriggerType.WHOOP_WORKOUT_TYPE.value:
        return f"Auto-triggered: Workout type {context.whoop_workout_type_id} logged"
    if trigger_type == AutoTriggerType.ACTIVITY_COMPLETED.value:
        return "Auto-triggered: Linked activity completed"
    return "Auto-triggered"


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _load_active_triggers(db: Session, user_id: str) -> List[AutoTrigger]:
    return (
        db.query(AutoTrigger)
        .join(Activity, AutoTrigger.activity_id == Activity.id)
        .filter(
            AutoTrigger.is_active.is_(True),
            Activity.user_id == user_id,
            Activity.archived.is_(False),
        )
        .order_by(AutoTrigger.created_at.asc())
        .all()
    )


def evaluate_auto_triggers(
    db: Session,
    user_id: str,
    context: TriggerContext,
    clock: Optional[Clock] = None,
) -> List[TriggerEvaluationResult]:
    """
    Evaluate every active trigger of a user and auto-complete matches.

    Auto completions carry the activity's points but no XP, and they do not
    touch companions or emit completion events.
    """
    clock = clock or get_clock()
    now = clock.now()
    today = now.date()
    results: List[TriggerEvaluationResult] = []

    triggers = _load_active_triggers(db, user_id)
    if not triggers:
        logger.debug(f"No active triggers found for user {user_id}")
        return results

    logger.info(
        f"Evaluating {len(triggers)} trigger(s) for user {user_id}",
        extra={"extra_fields": {"user_id": user_id, "context": context.model_dump(exclude_none=True)}},
    )

    for trigger in triggers:
        activity = trigger.activity
        result = TriggerEvaluationResult(
            trigger_id=trigger.id,
            activity_id=activity.id,
            activity_name=activity.name,
        )
        results.append(result)

        try:
            with db.begin_nested():
                result.triggered = evaluate_trigger_condition(trigger, context)
                logger.debug(
                    f"Trigger '{activity.name}' ({trigger.trigger_type}): "
                    f"condition {'MET' if result.triggered else 'NOT MET'} "
                    f"(threshold: {trigger.threshold_value}, workout_type: {trigger.workout_type_id})"
                )
                if not result.triggered:
                    continue

                existing = (
                    db.query(ActivityCompletion.id)
                    .filter(
                        ActivityCompletion.activity_id == activity.id,
                        ActivityCompletion.completed_on == today,
                    )
                    .first()
                )
                if existing:
                    result.already_completed_today = True
                    logger.debug(f"Trigger '{activity.name}': already completed today, skipping")
                    continue

                db.add(ActivityCompletion(
                    activity_id=activity.id,
                    completed_at=as_utc(now),
                    completed_on=today,
                    habit_day=today if activity.is_habit else None,
                    points_earned=activity.points,
                    xp_earned=0,
                    details=get_completion_details(trigger.trigger_type, context),
                    source=CompletionSource.AUTO_TRIGGER.value,
                ))
            result.completion_created = True
            logger.info(
                f"Auto-completed '{activity.name}' for user {user_id} (trigger: {trigger.trigger_type})"
            )
        except IntegrityError:
            # Lost the (activity, day) race to a concurrent completion
            result.already_completed_today = True
        except Exception as e:
            result.error = str(e)
            logger.exception(f"Auto-trigger {trigger.id} failed for user {user_id}: {e}")

    db.commit()
    return results


def on_activity_completed(
    db: Session,
    user_id: str,
    activity_id: str,
    clock: Optional[Clock] = None,
    **_,
) -> List[TriggerEvaluationResult]:
    """Fire chained ACTIVITY_COMPLETED triggers after a manual completion."""
    try:
        return evaluate_auto_triggers(
            db, user_id, TriggerContext(completed_activity_id=activity_id), clock=clock
        )
    except Exception:
        db.rollback()
        raise


subscribe(EVENT_ACTIVITY_COMPLETED, on_activity_completed)
