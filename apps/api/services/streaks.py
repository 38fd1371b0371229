"""
Streak Service

Consecutive-day streaks derived from completion history.

A day counts once no matter how many completions it holds. The current
streak survives until the end of the day after the last active day, which
is why a streak can be "at risk" while still counting.
"""

from typing import Optional, Dict, List, Iterable, Tuple
from dataclasses import dataclass, asdict
from datetime import date, timedelta
from enum import Enum
import logging

from sqlalchemy.orm import Session

from core.clock import Clock, get_clock
from core.config import settings
from models import Activity, ActivityCompletion, Pillar

logger = logging.getLogger(__name__)


class PillarKey(str, Enum):
    OVERALL = "OVERALL"
    BODY = "BODY"
    MIND = "MIND"


@dataclass
class StreakInfo:
    """Current streak information"""
    current: int
    longest: int
    last_active_date: Optional[date]
    at_risk: bool  # Streak alive but today not yet complete
    hours_remaining: float  # Until local midnight

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["last_active_date"] = self.last_active_date.isoformat() if self.last_active_date else None
        return data


@dataclass
class EmberIntensity:
    level: str
    has_particles: bool


# Days at which the streak ember brightens
EMBER_STEADY_DAYS = 4
EMBER_BRIGHT_DAYS = 7
EMBER_GOLDEN_DAYS = 14

STREAK_MILESTONES = (3, 7, 14, 30, 60, 100, 365)


def calculate_streaks(dates: Iterable[date], today: date) -> Tuple[int, int]:
    """
    Current and longest runs of consecutive calendar days.

    The current streak is 0 unless the newest date is today or yesterday.
    """
    ordered = sorted(set(dates), reverse=True)
    if not ordered:
        return 0, 0

    current = 0
    if ordered[0] in (today, today - timedelta(days=1)):
        current = 1
        for newer, older in zip(ordered, ordered[1:]):
            if newer - older != timedelta(days=1):
                break
            current += 1

    longest = 1
    run = 1
    for newer, older in zip(ordered, ordered[1:]):
        if newer - older == timedelta(days=1):
            run += 1
            longest = max(longest, run)
        else:
            run = 1

    return current, longest


def _pillar_filter(query, pillar_key: PillarKey):
    if pillar_key != PillarKey.OVERALL:
        query = query.filter(Activity.pillar == Pillar(pillar_key.value).value)
    return query


def get_active_dates(
    db: Session,
    user_id: str,
    since: date,
    pillar_key: PillarKey = PillarKey.OVERALL,
) -> List[date]:
    """Distinct days with at least one completion, newest first."""
    query = (
        db.query(ActivityCompletion.completed_on)
        .join(Activity, ActivityCompletion.activity_id == Activity.id)
        .filter(
            Activity.user_id == user_id,
            Activity.archived.is_(False),
            ActivityCompletion.completed_on >= since,
        )
    )
    query = _pillar_filter(query, pillar_key)
    rows = query.distinct().order_by(ActivityCompletion.completed_on.desc()).all()
    return [row.completed_on for row in rows]


def _pillars_completed_on(db: Session, user_id: str, day: date) -> set:
    rows = (
        db.query(Activity.pillar)
        .join(ActivityCompletion, ActivityCompletion.activity_id == Activity.id)
        .filter(
            Activity.user_id == user_id,
            Activity.archived.is_(False),
            ActivityCompletion.completed_on == day,
        )
        .distinct()
        .all()
    )
    return {row.pillar for row in rows}


def is_day_complete(
    db: Session,
    user_id: str,
    day: date,
    pillar_key: PillarKey = PillarKey.OVERALL,
) -> bool:
    """
    A pillar's day is complete with one completion in it. The overall day
    needs both pillars.
    """
    pillars = _pillars_completed_on(db, user_id, day)
    if pillar_key == PillarKey.OVERALL:
        return {p.value for p in Pillar} <= pillars
    return pillar_key.value in pillars


def get_streak(
    db: Session,
    user_id: str,
    pillar_key: PillarKey = PillarKey.OVERALL,
    clock: Optional[Clock] = None,
) -> StreakInfo:
    clock = clock or get_clock()
    pillar_key = PillarKey(pillar_key)
    today = clock.today()
    since = today - timedelta(days=settings.STREAK_LOOKBACK_DAYS - 1)

    dates = get_active_dates(db, user_id, since, pillar_key)
    current, longest = calculate_streaks(dates, today)

    at_risk = current > 0 and not is_day_complete(db, user_id, today, pillar_key)

    logger.debug(
        f"Streak {pillar_key.value} for user {user_id}: current={current}, "
        f"longest={longest}, at_risk={at_risk}"
    )

    return StreakInfo(
        current=current,
        longest=longest,
        last_active_date=dates[0] if dates else None,
        at_risk=at_risk,
        hours_remaining=clock.hours_remaining_today(),
    )


def get_all_streaks(db: Session, user_id: str, clock: Optional[Clock] = None) -> Dict[str, StreakInfo]:
    clock = clock or get_clock()
    return {
        key.value.lower(): get_streak(db, user_id, key, clock=clock)
        for key in PillarKey
    }


def get_ember_intensity(days: int) -> EmberIntensity:
    if days >= EMBER_GOLDEN_DAYS:
        return EmberIntensity(level="golden", has_particles=True)
    if days >= EMBER_BRIGHT_DAYS:
        return EmberIntensity(level="bright", has_particles=False)
    if days >= EMBER_STEADY_DAYS:
        return EmberIntensity(level="steady", has_particles=False)
    return EmberIntensity(level="dim", has_particles=False)


def reached_milestones(days: int) -> List[int]:
    return [m for m in STREAK_MILESTONES if days >= m]
