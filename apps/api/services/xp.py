"""
Progression Model (XP, levels, evolution)

Level L costs L * XP_PER_LEVEL_MULTIPLIER XP to clear:

    Level 1: 0-99, Level 2: 100-299, Level 3: 300-599, ...

so total_xp_for_level(L) = 100 * L * (L - 1) / 2 and calculate_level inverts
it exactly. Evolution stage is a coarse tier over level.
"""

from dataclasses import dataclass
from enum import IntEnum


BASE_XP = 10
DETAIL_BONUS_MULTIPLIER = 1.5
XP_PER_LEVEL_MULTIPLIER = 100

MIN_LEVEL = 1

EVOLUTION_TEEN_LEVEL = 10
EVOLUTION_ADULT_LEVEL = 25
EVOLUTION_LEGENDARY_LEVEL = 50


class EvolutionStage(IntEnum):
    BABY = 1
    TEEN = 2
    ADULT = 3
    LEGENDARY = 4


# (minimum level, stage), checked top-down
EVOLUTION_THRESHOLDS = (
    (EVOLUTION_LEGENDARY_LEVEL, EvolutionStage.LEGENDARY),
    (EVOLUTION_ADULT_LEVEL, EvolutionStage.ADULT),
    (EVOLUTION_TEEN_LEVEL, EvolutionStage.TEEN),
)


@dataclass
class LevelProgress:
    """Where a companion sits inside its current level."""
    level: int
    xp_into_level: int
    xp_for_next_level: int
    percent: float


def calculate_habit_xp(has_details: bool) -> int:
    """XP for one completion; free-text details earn a bonus."""
    xp = BASE_XP
    if has_details:
        xp = int(xp * DETAIL_BONUS_MULTIPLIER)
    return xp


def xp_for_next_level(current_level: int) -> int:
    """XP needed to clear current_level."""
    return max(MIN_LEVEL, current_level) * XP_PER_LEVEL_MULTIPLIER


def total_xp_for_level(level: int) -> int:
    """Cumulative XP at which level is first reached."""
    level = max(MIN_LEVEL, level)
    return XP_PER_LEVEL_MULTIPLIER * level * (level - 1) // 2


def calculate_level(total_xp: int) -> int:
    level = MIN_LEVEL
    accumulated = 0
    xp_needed = xp_for_next_level(level)

    while accumulated + xp_needed <= total_xp:
        accumulated += xp_needed
        level += 1
        xp_needed = xp_for_next_level(level)

    return level


def calculate_evolution_stage(level: int) -> EvolutionStage:
    for minimum, stage in EVOLUTION_THRESHOLDS:
        if level >= minimum:
            return stage
    return EvolutionStage.BABY


def get_evolution_stage_name(stage: int) -> str:
    try:
        return EvolutionStage(stage).name.title()
    except ValueError:
        return "Unknown"


def level_progress(total_xp: int) -> LevelProgress:
    level = calculate_level(total_xp)
    into = total_xp - total_xp_for_level(level)
    needed = xp_for_next_level(level)
    return LevelProgress(
        level=level,
        xp_into_level=into,
        xp_for_next_level=needed,
        percent=round(100.0 * into / needed, 1),
    )
