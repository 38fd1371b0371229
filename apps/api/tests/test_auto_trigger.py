"""
Tests for auto-trigger evaluation

Rules match signals from a Whoop sync or a completed activity and
auto-complete the linked habit at most once per day.
"""
import pytest
from unittest.mock import MagicMock, patch

from models import ActivityCompletion, AutoTrigger, AutoTriggerType, CompletionSource, SubCategory
from schemas import TriggerContext
from services.auto_trigger import (
    TRIGGER_EVALUATORS,
    WHOOP_WORKOUT_TYPES,
    evaluate_auto_triggers,
    evaluate_trigger_condition,
    get_completion_details,
)
from services.habit_completion import complete_activity


@pytest.fixture
def make_trigger(db_session):
    def _make(activity, trigger_type, threshold=None, workout_type_id=None, trigger_activity_id=None, is_active=True):
        trigger = AutoTrigger(
            activity_id=activity.id,
            trigger_type=trigger_type.value if hasattr(trigger_type, "value") else trigger_type,
            threshold_value=threshold,
            workout_type_id=workout_type_id,
            trigger_activity_id=trigger_activity_id,
            is_active=is_active,
        )
        db_session.add(trigger)
        db_session.commit()
        return trigger

    return _make


def _completions(db_session, activity):
    return db_session.query(ActivityCompletion).filter_by(activity_id=activity.id).all()


class TestConditions:
    """One evaluator per trigger kind; absent signals never match"""

    def _trigger(self, kind, threshold=None, workout_type_id=None, trigger_activity_id=None):
        return MagicMock(
            trigger_type=kind.value,
            threshold_value=threshold,
            workout_type_id=workout_type_id,
            trigger_activity_id=trigger_activity_id,
        )

    def test_every_kind_has_an_evaluator(self):
        assert set(TRIGGER_EVALUATORS) == set(AutoTriggerType)

    def test_recovery_above_is_inclusive(self):
        trigger = self._trigger(AutoTriggerType.WHOOP_RECOVERY_ABOVE, threshold=70)
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_recovery=70)) is True
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_recovery=69.9)) is False

    def test_recovery_below_is_strict(self):
        trigger = self._trigger(AutoTriggerType.WHOOP_RECOVERY_BELOW, threshold=33)
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_recovery=32)) is True
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_recovery=33)) is False

    def test_default_thresholds(self):
        above = self._trigger(AutoTriggerType.WHOOP_STRAIN_ABOVE)
        below = self._trigger(AutoTriggerType.WHOOP_RECOVERY_BELOW)
        assert evaluate_trigger_condition(above, TriggerContext(whoop_strain=0)) is True
        assert evaluate_trigger_condition(below, TriggerContext(whoop_recovery=99)) is True
        assert evaluate_trigger_condition(below, TriggerContext(whoop_recovery=100)) is False

    def test_sleep_above(self):
        trigger = self._trigger(AutoTriggerType.WHOOP_SLEEP_ABOVE, threshold=7.5)
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_sleep_hours=8.1)) is True
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_sleep_hours=6)) is False

    def test_workout_type_exact_match(self):
        trigger = self._trigger(AutoTriggerType.WHOOP_WORKOUT_TYPE, workout_type_id=0)
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_workout_type_id=0)) is True
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_workout_type_id=1)) is False

    def test_activity_completed_match(self):
        trigger = self._trigger(AutoTriggerType.ACTIVITY_COMPLETED, trigger_activity_id="a1")
        assert evaluate_trigger_condition(trigger, TriggerContext(completed_activity_id="a1")) is True
        assert evaluate_trigger_condition(trigger, TriggerContext(completed_activity_id="a2")) is False

    @pytest.mark.parametrize("kind", list(AutoTriggerType))
    def test_absent_signal_never_matches(self, kind):
        trigger = self._trigger(kind, threshold=0, workout_type_id=1, trigger_activity_id="a1")
        assert evaluate_trigger_condition(trigger, TriggerContext()) is False

    def test_unknown_kind_never_matches(self):
        trigger = MagicMock(trigger_type="MOON_PHASE_FULL")
        assert evaluate_trigger_condition(trigger, TriggerContext(whoop_recovery=100)) is False

    def test_details_strings(self):
        ctx = TriggerContext(whoop_recovery=80, whoop_sleep_hours=7.26, whoop_strain=14, whoop_workout_type_id=44)
        assert get_completion_details("WHOOP_RECOVERY_ABOVE", ctx) == "Auto-triggered: Recovery 80%"
        assert get_completion_details("WHOOP_SLEEP_ABOVE", ctx) == "Auto-triggered: Sleep 7.3 hours"
        assert get_completion_details("WHOOP_STRAIN_ABOVE", ctx) == "Auto-triggered: Strain 14.0"
        assert get_completion_details("WHOOP_WORKOUT_TYPE", ctx) == "Auto-triggered: Workout type 44 logged"
        assert get_completion_details("ACTIVITY_COMPLETED", ctx) == "Auto-triggered: Linked activity completed"

    def test_workout_reference_table(self):
        assert {"id": 1, "name": "Running"} in WHOOP_WORKOUT_TYPES


class TestEvaluateAutoTriggers:
    def test_recovery_trigger_is_idempotent_per_day(self, db_session, user_id, make_activity, make_trigger, fixed_clock):
        activity = make_activity(SubCategory.MEDITATION, points=20)
        make_trigger(activity, AutoTriggerType.WHOOP_RECOVERY_ABOVE, threshold=70)
        context = TriggerContext(whoop_recovery=80)

        first = evaluate_auto_triggers(db_session, user_id, context, clock=fixed_clock)
        second = evaluate_auto_triggers(db_session, user_id, context, clock=fixed_clock)

        assert first[0].triggered is True
        assert first[0].completion_created is True
        assert second[0].triggered is True
        assert second[0].already_completed_today is True
        assert second[0].completion_created is False

        completions = _completions(db_session, activity)
        assert len(completions) == 1
        assert completions[0].source == CompletionSource.AUTO_TRIGGER.value
        assert completions[0].points_earned == 20
        assert completions[0].xp_earned == 0
        assert completions[0].details == "Auto-triggered: Recovery 80%"
        assert completions[0].completed_on == fixed_clock.today()

    def test_companions_untouched(self, db_session, user_id, companions, make_activity, make_trigger, fixed_clock):
        activity = make_activity(SubCategory.TRAINING)
        make_trigger(activity, AutoTriggerType.WHOOP_STRAIN_ABOVE, threshold=10)

        evaluate_auto_triggers(db_session, user_id, TriggerContext(whoop_strain=12), clock=fixed_clock)

        assert companions["TRAINING"].xp == 0

    def test_condition_not_met(self, db_session, user_id, make_activity, make_trigger, fixed_clock):
        activity = make_activity(SubCategory.SLEEP)
        make_trigger(activity, AutoTriggerType.WHOOP_SLEEP_ABOVE, threshold=8)

        results = evaluate_auto_triggers(db_session, user_id, TriggerContext(whoop_sleep_hours=6.5), clock=fixed_clock)

        assert results[0].triggered is False
        assert _completions(db_session, activity) == []

    def test_manual_completion_counts_as_done(self, db_session, user_id, make_activity, make_trigger, add_completion, fixed_clock, today):
        activity = make_activity(SubCategory.SLEEP)
        make_trigger(activity, AutoTriggerType.WHOOP_SLEEP_ABOVE, threshold=7)
        add_completion(activity, today)

        results = evaluate_auto_triggers(db_session, user_id, TriggerContext(whoop_sleep_hours=8), clock=fixed_clock)

        assert results[0].already_completed_today is True
        assert len(_completions(db_session, activity)) == 1

    def test_inactive_and_archived_skipped(self, db_session, user_id, make_activity, make_trigger, fixed_clock):
        paused = make_activity(SubCategory.TRAINING, name="Paused")
        archived = make_activity(SubCategory.TRAINING, name="Archived", archived=True)
        theirs = make_activity(SubCategory.TRAINING, name="Theirs", owner="someone_else")
        make_trigger(paused, AutoTriggerType.WHOOP_STRAIN_ABOVE, is_active=False)
        make_trigger(archived, AutoTriggerType.WHOOP_STRAIN_ABOVE)
        make_trigger(theirs, AutoTriggerType.WHOOP_STRAIN_ABOVE)

        results = evaluate_auto_triggers(db_session, user_id, TriggerContext(whoop_strain=15), clock=fixed_clock)

        assert results == []

    def test_failing_trigger_isolated(self, db_session, user_id, make_activity, make_trigger, fixed_clock):
        strained = make_activity(SubCategory.TRAINING, name="Strain")
        recovered = make_activity(SubCategory.MEDITATION, name="Recovery")
        bad = make_trigger(strained, AutoTriggerType.WHOOP_STRAIN_ABOVE)
        good = make_trigger(recovered, AutoTriggerType.WHOOP_RECOVERY_ABOVE, threshold=50)

        def boom(trigger, context):
            raise RuntimeError("evaluator exploded")

        with patch.dict(TRIGGER_EVALUATORS, {AutoTriggerType.WHOOP_STRAIN_ABOVE: boom}):
            results = evaluate_auto_triggers(
                db_session, user_id, TriggerContext(whoop_strain=12, whoop_recovery=90), clock=fixed_clock
            )

        by_trigger = {r.trigger_id: r for r in results}
        assert by_trigger[bad.id].error == "evaluator exploded"
        assert by_trigger[bad.id].completion_created is False
        assert by_trigger[good.id].error is None
        assert by_trigger[good.id].completion_created is True
        assert len(_completions(db_session, recovered)) == 1
        assert _completions(db_session, strained) == []


class TestChainedTriggers:
    def test_completion_fires_linked_trigger(self, db_session, user_id, companions, make_activity, make_trigger, fixed_clock):
        workout = make_activity(SubCategory.TRAINING, name="Workout")
        stretch = make_activity(SubCategory.TRAINING, name="Stretch")
        make_trigger(stretch, AutoTriggerType.ACTIVITY_COMPLETED, trigger_activity_id=workout.id)

        complete_activity(db_session, workout.id, user_id, clock=fixed_clock)

        chained = _completions(db_session, stretch)
        assert len(chained) == 1
        assert chained[0].source == CompletionSource.AUTO_TRIGGER.value
        assert chained[0].details == "Auto-triggered: Linked activity completed"
        # Only the manual completion earns XP
        assert companions["TRAINING"].xp == 10

    def test_chained_failure_does_not_fail_completion(self, db_session, user_id, companions, make_activity, make_trigger, fixed_clock):
        workout = make_activity(SubCategory.TRAINING, name="Workout")
        stretch = make_activity(SubCategory.TRAINING, name="Stretch")
        make_trigger(stretch, AutoTriggerType.ACTIVITY_COMPLETED, trigger_activity_id=workout.id)

        with patch("services.auto_trigger.evaluate_auto_triggers", side_effect=RuntimeError("sync down")):
            result = complete_activity(db_session, workout.id, user_id, clock=fixed_clock)

        assert result.xp_earned == 10
        assert len(_completions(db_session, workout)) == 1
        assert _completions(db_session, stretch) == []
