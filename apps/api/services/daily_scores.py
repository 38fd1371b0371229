"""
Daily Score Calculator

Per-day Body / Mind scores and the balance index.

Architecture:
    Sub-category scores (0-100)
        manual: share of the sub-category's habits completed that day
                (+10 if any completion carries details, capped at 100)
        Whoop:  strain overrides training, sleep performance overrides sleep
             ↓
    Pillar scores = user's WeightConfig percentages over the sub-scores
             ↓
    Balance index = mean of pillars, +5 when the pillars are within 15 points

Mind blends meditation / reading / learning. Journaling has a stored weight
but only joins the blend when SCORING_INCLUDE_JOURNALING is on.

Scores are upserted per (user, date). Recomputing a day overwrites the row,
so the same inputs always give the same stored result.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from typing import Optional, Dict, Any, List
import logging
import math

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.clock import Clock, get_clock
from core.config import settings
from core.exceptions import ValidationError
from models import Activity, ActivityCompletion, DailyScore, Pillar, SubCategory
from services.weights import WeightConfiguration, get_weights

logger = logging.getLogger(__name__)


MAX_SCORE = 100
DETAILS_BONUS = 10

# Whoop strain runs 0-21; 15 and above counts as a full training day
STRAIN_FULL_SCORE = 15.0
RECOVERY_MODIFIER_BASE = 0.8
RECOVERY_MODIFIER_DIVISOR = 500.0
SLEEP_EFFICIENCY_BONUS_THRESHOLD = 85.0
SLEEP_EFFICIENCY_BONUS = 5

BALANCE_TOLERANCE = 15
BALANCE_BONUS = 5

# Pillar points meter
POINTS_THRESHOLD = 100


@dataclass
class WhoopDayData:
    """Biometric inputs for one day. Any field may be missing."""
    strain: Optional[float] = None             # 0-21
    sleep_performance: Optional[float] = None  # 0-100
    recovery_score: Optional[float] = None     # 0-100
    sleep_efficiency: Optional[float] = None   # 0-100


@dataclass
class SubScores:
    training_score: int = 0
    sleep_score: int = 0
    nutrition_score: int = 0
    meditation_score: int = 0
    reading_score: int = 0
    learning_score: int = 0
    journaling_score: Optional[int] = None    # Only when journaling is blended


@dataclass
class DailyScoreResult:
    user_id: str
    target_date: date
    body_score: int
    mind_score: int
    balance_index: int
    sub_scores: SubScores
    weights_used: Dict[str, Any] = field(default_factory=dict)
    is_new: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["target_date"] = self.target_date.isoformat()
        return data


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_balance_index(body_score: int, mind_score: int) -> int:
    """Mean of the pillars, rewarded when neither pillar is neglected."""
    balance = _round_half_up((body_score + mind_score) / 2)
    if abs(body_score - mind_score) <= BALANCE_TOLERANCE and body_score > 0 and mind_score > 0:
        balance = min(MAX_SCORE, balance + BALANCE_BONUS)
    return balance


def calculate_training_score(whoop: Optional[WhoopDayData], manual_score: int) -> int:
    if whoop is not None and whoop.strain is not None:
        return _round_half_up(min(MAX_SCORE, whoop.strain / STRAIN_FULL_SCORE * 100))
    return manual_score


def calculate_sleep_score(whoop: Optional[WhoopDayData], manual_score: int) -> int:
    if whoop is None or whoop.sleep_performance is None:
        return manual_score

    score = whoop.sleep_performance
    if whoop.recovery_score is not None:
        score = score * (RECOVERY_MODIFIER_BASE + whoop.recovery_score / RECOVERY_MODIFIER_DIVISOR)
    if whoop.sleep_efficiency is not None and whoop.sleep_efficiency > SLEEP_EFFICIENCY_BONUS_THRESHOLD:
        score += SLEEP_EFFICIENCY_BONUS

    return _round_half_up(min(MAX_SCORE, score))


class DailyScoreCalculator:
    """
    Compute daily pillar scores for a user.

    Read-only with respect to companions; persistence goes through
    save_daily_score.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        include_journaling: Optional[bool] = None,
    ):
        self.db = db
        self.clock = clock or get_clock()
        if include_journaling is None:
            include_journaling = settings.SCORING_INCLUDE_JOURNALING
        self.include_journaling = include_journaling

    def calculate(
        self,
        user_id: str,
        target_date: Optional[date] = None,
        whoop: Optional[WhoopDayData] = None,
    ) -> DailyScoreResult:
        target_date = target_date or self.clock.today()

        manual = {
            sub: self._sub_category_completion_score(user_id, sub, target_date)
            for sub in SubCategory
        }

        sub_scores = SubScores(
            training_score=calculate_training_score(whoop, manual[SubCategory.TRAINING]),
            sleep_score=calculate_sleep_score(whoop, manual[SubCategory.SLEEP]),
            nutrition_score=manual[SubCategory.NUTRITION],
            meditation_score=manual[SubCategory.MEDITATION],
            reading_score=manual[SubCategory.READING],
            learning_score=manual[SubCategory.LEARNING],
        )
        if self.include_journaling:
            sub_scores.journaling_score = manual[SubCategory.JOURNALING]

        weights = get_weights(self.db, user_id)
        body_score = self._body_score(sub_scores, weights)
        mind_score = self._mind_score(sub_scores, weights)
        balance_index = calculate_balance_index(body_score, mind_score)

        logger.info(
            f"Daily score {user_id} on {target_date}: body={body_score}, mind={mind_score}, "
            f"balance={balance_index}, whoop={'yes' if whoop else 'no'}"
        )

        return DailyScoreResult(
            user_id=user_id,
            target_date=target_date,
            body_score=body_score,
            mind_score=mind_score,
            balance_index=balance_index,
            sub_scores=sub_scores,
            weights_used=weights.to_dict(),
        )

    # ------------------------------------------------------------------
    # Sub-category completion
    # ------------------------------------------------------------------

    def _sub_category_completion_score(self, user_id: str, sub: SubCategory, target_date: date) -> int:
        """
        Share of the sub-category's live habits completed on target_date.

        No habits scores 0, not undefined.
        """
        habit_ids = [
            row.id
            for row in self.db.query(Activity.id).filter(
                Activity.user_id == user_id,
                Activity.sub_category == sub.value,
                Activity.is_habit.is_(True),
                Activity.archived.is_(False),
            )
        ]
        if not habit_ids:
            return 0

        completions = (
            self.db.query(ActivityCompletion)
            .filter(
                ActivityCompletion.activity_id.in_(habit_ids),
                ActivityCompletion.completed_on == target_date,
            )
            .all()
        )

        completed = {c.activity_id for c in completions}
        score = len(completed) / len(habit_ids) * 100

        if any(c.details for c in completions):
            score = min(MAX_SCORE, score + DETAILS_BONUS)

        return _round_half_up(score)

    # ------------------------------------------------------------------
    # Pillar blends (weights are percentages)
    # ------------------------------------------------------------------

    def _body_score(self, s: SubScores, weights: WeightConfiguration) -> int:
        w = weights.body
        total = s.training_score * w.training + s.sleep_score * w.sleep + s.nutrition_score * w.nutrition
        return _round_half_up(total / 100)

    def _mind_score(self, s: SubScores, weights: WeightConfiguration) -> int:
        w = weights.mind
        total = s.meditation_score * w.meditation + s.reading_score * w.reading + s.learning_score * w.learning
        if not self.include_journaling:
            return _round_half_up(total / 100)

        weight_sum = w.meditation + w.reading + w.learning + w.journaling
        if weight_sum <= 0:
            return 0
        total += (s.journaling_score or 0) * w.journaling
        return _round_half_up(total / weight_sum)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def save_daily_score(
    db: Session,
    user_id: str,
    target_date: date,
    result: DailyScoreResult,
    whoop: Optional[WhoopDayData] = None,
) -> DailyScore:
    """Upsert the (user, date) row and flag whether it was new. Overwrites, never accumulates."""
    row = (
        db.query(DailyScore)
        .filter(DailyScore.user_id == user_id, DailyScore.date == target_date)
        .first()
    )
    result.is_new = row is None
    if row is None:
        row = DailyScore(user_id=user_id, date=target_date)
        db.add(row)

    s = result.sub_scores
    row.body_score = result.body_score
    row.mind_score = result.mind_score
    row.balance_index = result.balance_index
    row.body_points = calculate_daily_points(db, user_id, Pillar.BODY, target_date)
    row.mind_points = calculate_daily_points(db, user_id, Pillar.MIND, target_date)
    row.body_complete = is_pillar_complete(row.body_points)
    row.mind_complete = is_pillar_complete(row.mind_points)
    row.training_score = s.training_score
    row.sleep_score = s.sleep_score
    row.nutrition_score = s.nutrition_score
    row.meditation_score = s.meditation_score
    row.reading_score = s.reading_score
    row.learning_score = s.learning_score
    row.journaling_score = s.journaling_score

    whoop = whoop or WhoopDayData()
    row.whoop_strain = whoop.strain
    row.whoop_sleep = whoop.sleep_performance
    row.whoop_recovery = whoop.recovery_score
    row.whoop_sleep_efficiency = whoop.sleep_efficiency

    db.commit()
    return row


def _result_from_row(row: DailyScore) -> DailyScoreResult:
    return DailyScoreResult(
        user_id=row.user_id,
        target_date=row.date,
        body_score=row.body_score,
        mind_score=row.mind_score,
        balance_index=row.balance_index,
        sub_scores=SubScores(
            training_score=row.training_score or 0,
            sleep_score=row.sleep_score or 0,
            nutrition_score=row.nutrition_score or 0,
            meditation_score=row.meditation_score or 0,
            reading_score=row.reading_score or 0,
            learning_score=row.learning_score or 0,
            journaling_score=row.journaling_score,
        ),
        is_new=False,
    )


def score_day(
    db: Session,
    user_id: str,
    target_date: date,
    whoop: Optional[WhoopDayData] = None,
    clock: Optional[Clock] = None,
) -> DailyScoreResult:
    """Compute a day and store it."""
    result = DailyScoreCalculator(db, clock=clock).calculate(user_id, target_date, whoop)
    save_daily_score(db, user_id, target_date, result, whoop)
    return result


def get_today_score(
    db: Session,
    user_id: str,
    whoop: Optional[WhoopDayData] = None,
    clock: Optional[Clock] = None,
) -> DailyScoreResult:
    """Today's stored score, computing and storing it on first read."""
    clock = clock or get_clock()
    today = clock.today()

    existing = (
        db.query(DailyScore)
        .filter(DailyScore.user_id == user_id, DailyScore.date == today)
        .first()
    )
    if existing:
        return _result_from_row(existing)

    return score_day(db, user_id, today, whoop, clock=clock)


def get_recent_scores(
    db: Session,
    user_id: str,
    days: int = 7,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    """
    Stored scores for the last `days` days including today, oldest first,
    with a summary over the window.

    Days without a stored row count toward total_days but not days_with_data.
    """
    max_days = settings.DAILY_SCORE_HISTORY_MAX_DAYS
    if days < 1 or days > max_days:
        raise ValidationError(f"days must be a number between 1 and {max_days}", field="days")

    end = (clock or get_clock()).today()
    start = end - timedelta(days=days - 1)
    rows = (
        db.query(DailyScore)
        .filter(DailyScore.user_id == user_id, DailyScore.date >= start, DailyScore.date <= end)
        .order_by(DailyScore.date.asc())
        .all()
    )

    scores = [
        {
            "date": row.date.isoformat(),
            "body_score": row.body_score,
            "mind_score": row.mind_score,
            "balance_index": row.balance_index,
            "body_points": row.body_points,
            "mind_points": row.mind_points,
            "body_complete": row.body_complete,
            "mind_complete": row.mind_complete,
            "sub_scores": {
                "training": row.training_score or 0,
                "sleep": row.sleep_score or 0,
                "nutrition": row.nutrition_score or 0,
                "meditation": row.meditation_score or 0,
                "reading": row.reading_score or 0,
                "learning": row.learning_score or 0,
            },
        }
        for row in rows
    ]

    return {
        "scores": scores,
        "summary": summarize_scores(rows, total_days=days),
        "date_range": {"start_date": start.isoformat(), "end_date": end.isoformat()},
    }


def summarize_scores(rows: List[DailyScore], total_days: int) -> Dict[str, int]:
    """Averages and completion counts over stored days."""
    count = len(rows)

    def _average(values) -> int:
        return _round_half_up(sum(values) / count) if count else 0

    return {
        "total_days": total_days,
        "days_with_data": count,
        "average_body": _average(r.body_score for r in rows),
        "average_mind": _average(r.mind_score for r in rows),
        "average_balance": _average(r.balance_index for r in rows),
        "perfect_days": sum(1 for r in rows if r.body_complete and r.mind_complete),
        "body_complete_days": sum(1 for r in rows if r.body_complete),
        "mind_complete_days": sum(1 for r in rows if r.mind_complete),
    }


# ---------------------------------------------------------------------------
# Pillar points meter
# ---------------------------------------------------------------------------

def calculate_daily_points(
    db: Session,
    user_id: str,
    pillar: Pillar,
    target_date: Optional[date] = None,
    clock: Optional[Clock] = None,
) -> int:
    """Sum of points earned in one pillar on a day."""
    target_date = target_date or (clock or get_clock()).today()
    total = (
        db.query(func.coalesce(func.sum(ActivityCompletion.points_earned), 0))
        .join(Activity, ActivityCompletion.activity_id == Activity.id)
        .filter(
            Activity.user_id == user_id,
            Activity.pillar == Pillar(pillar).value,
            ActivityCompletion.completed_on == target_date,
        )
        .scalar()
    )
    return int(total or 0)


def is_pillar_complete(points: int) -> bool:
    return points >= POINTS_THRESHOLD


def get_points_progress(points: int) -> float:
    return min(points / POINTS_THRESHOLD * 100, 100.0)


def get_points_remaining(points: int) -> int:
    return max(POINTS_THRESHOLD - points, 0)
