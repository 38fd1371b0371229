"""
Habitanimal Health Model

Health state machine implementing the "Never Miss Twice" rule:

    days since last interaction   effect
    0-1                           none (completed today, or one-day grace)
    2                             -HEALTH_DECAY_SINGLE_MISS
    n > 2                         -(HEALTH_DECAY_SINGLE_MISS + (n-2) * HEALTH_DECAY_CONSECUTIVE_MISS)

Recovery is a flat bump per completion. It is never reversed when a
completion is undone.
"""

from datetime import datetime
from enum import Enum

from core.clock import as_utc


MAX_HEALTH = 100
MIN_HEALTH = 0
HEALTH_DECAY_SINGLE_MISS = 10
HEALTH_DECAY_CONSECUTIVE_MISS = 30
HEALTH_RECOVERY_PER_COMPLETION = 15
ATTENTION_THRESHOLD = 50

SECONDS_PER_DAY = 24 * 60 * 60


class Mood(str, Enum):
    HAPPY = "happy"
    NEUTRAL = "neutral"
    TIRED = "tired"
    SAD = "sad"


# (minimum health, mood), checked top-down
MOOD_BANDS = (
    (80, Mood.HAPPY),
    (50, Mood.NEUTRAL),
    (30, Mood.TIRED),
)


def _clamp(value: int) -> int:
    return max(MIN_HEALTH, min(MAX_HEALTH, value))


def days_between(first: datetime, second: datetime) -> int:
    """Whole days elapsed between two instants, order-insensitive."""
    elapsed = abs((as_utc(second) - as_utc(first)).total_seconds())
    return int(elapsed // SECONDS_PER_DAY)


def calculate_health_decay(current_health: int, last_interaction: datetime, now: datetime) -> int:
    """Health after applying decay for the time since the last interaction."""
    days_missed = days_between(last_interaction, now)

    if days_missed <= 1:
        return _clamp(current_health)
    if days_missed == 2:
        return _clamp(current_health - HEALTH_DECAY_SINGLE_MISS)

    extra_days = days_missed - 2
    decay = HEALTH_DECAY_SINGLE_MISS + extra_days * HEALTH_DECAY_CONSECUTIVE_MISS
    return _clamp(current_health - decay)


def recover_health(current_health: int) -> int:
    return _clamp(current_health + HEALTH_RECOVERY_PER_COMPLETION)


def get_mood(health: int) -> Mood:
    for minimum, mood in MOOD_BANDS:
        if health >= minimum:
            return mood
    return Mood.SAD


def needs_attention(health: int) -> bool:
    return health < ATTENTION_THRESHOLD
