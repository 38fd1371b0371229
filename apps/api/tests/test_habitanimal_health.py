"""
Tests for the Habitanimal health model

"Never Miss Twice": one missed day is free, the second costs a little,
every further day costs a lot. Completions heal a flat amount.
"""
import pytest
from datetime import datetime, timedelta, timezone

from services.habitanimal_health import (
    HEALTH_DECAY_CONSECUTIVE_MISS,
    HEALTH_DECAY_SINGLE_MISS,
    HEALTH_RECOVERY_PER_COMPLETION,
    MAX_HEALTH,
    Mood,
    calculate_health_decay,
    days_between,
    get_mood,
    needs_attention,
    recover_health,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestDaysBetween:
    def test_partial_days_are_floored(self):
        assert days_between(NOW - timedelta(hours=47), NOW) == 1

    def test_order_insensitive(self):
        earlier = NOW - timedelta(days=3)
        assert days_between(earlier, NOW) == days_between(NOW, earlier) == 3

    def test_naive_datetimes_treated_as_utc(self):
        naive = (NOW - timedelta(days=2)).replace(tzinfo=None)
        assert days_between(naive, NOW) == 2


class TestHealthDecay:
    """Decay by whole days since the last interaction"""

    @pytest.mark.parametrize("elapsed", [
        timedelta(0),
        timedelta(hours=5),
        timedelta(hours=23, minutes=59),
        timedelta(days=1),
        timedelta(days=1, hours=23, minutes=59),
    ])
    @pytest.mark.parametrize("health", [0, 37, 100])
    def test_no_decay_within_grace_period(self, elapsed, health):
        """Zero or one day missed leaves health untouched"""
        assert calculate_health_decay(health, NOW - elapsed, NOW) == health

    def test_second_missed_day_costs_single_penalty(self):
        assert calculate_health_decay(100, NOW - timedelta(days=2), NOW) == 100 - HEALTH_DECAY_SINGLE_MISS

    def test_each_further_day_costs_consecutive_penalty(self):
        # 3 days: 10 + 30 = 40
        assert calculate_health_decay(100, NOW - timedelta(days=3), NOW) == 60
        # 4 days: 10 + 60 = 70
        assert calculate_health_decay(100, NOW - timedelta(days=4), NOW) == 100 - (
            HEALTH_DECAY_SINGLE_MISS + 2 * HEALTH_DECAY_CONSECUTIVE_MISS
        )

    def test_decay_clamped_at_zero(self):
        assert calculate_health_decay(50, NOW - timedelta(days=30), NOW) == 0

    def test_out_of_range_input_is_clamped(self):
        assert calculate_health_decay(140, NOW, NOW) == MAX_HEALTH


class TestHealthRecovery:
    def test_flat_recovery(self):
        assert recover_health(50) == 50 + HEALTH_RECOVERY_PER_COMPLETION

    def test_recovery_capped_at_max(self):
        assert recover_health(95) == MAX_HEALTH
        assert recover_health(MAX_HEALTH) == MAX_HEALTH

    def test_recovery_never_exceeds_max_and_is_monotonic(self):
        previous = -1
        for health in range(0, MAX_HEALTH + 1):
            recovered = recover_health(health)
            assert recovered <= MAX_HEALTH
            assert recovered >= previous
            previous = recovered


class TestMood:
    @pytest.mark.parametrize("health,expected", [
        (100, Mood.HAPPY),
        (80, Mood.HAPPY),
        (79, Mood.NEUTRAL),
        (50, Mood.NEUTRAL),
        (49, Mood.TIRED),
        (30, Mood.TIRED),
        (29, Mood.SAD),
        (0, Mood.SAD),
    ])
    def test_mood_bands(self, health, expected):
        assert get_mood(health) == expected

    def test_needs_attention_below_fifty(self):
        assert needs_attention(49) is True
        assert needs_attention(50) is False
