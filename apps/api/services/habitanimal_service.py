"""
Habitanimal (companion) service.

Provisioning at signup, category lookup for the completion path, and the
decay-on-read recalculation that applies "Never Miss Twice" to stored health.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from core.clock import Clock, get_clock
from core.exceptions import CompanionNotFoundError
from core.logging import INTEGRITY_ERROR_KIND
from models import Habitanimal, SubCategory
from services.habitanimal_health import (
    MAX_HEALTH,
    Mood,
    calculate_health_decay,
    get_mood,
    needs_attention,
)
from services.xp import get_evolution_stage_name, level_progress

logger = logging.getLogger(__name__)


@dataclass
class HealthChange:
    id: str
    category: str
    previous_health: int
    new_health: int
    mood: Mood

    @property
    def health_change(self) -> int:
        return self.new_health - self.previous_health


@dataclass
class HealthRecalculation:
    recalculated_at: str
    habitanimals: List[HealthChange] = field(default_factory=list)

    @property
    def health_decayed(self) -> int:
        return sum(1 for h in self.habitanimals if h.health_change < 0)

    @property
    def health_unchanged(self) -> int:
        return sum(1 for h in self.habitanimals if h.health_change == 0)


def provision_companions(db: Session, user_id: str, clock: Optional[Clock] = None) -> List[Habitanimal]:
    """Create any missing companion (one per sub-category). Existing ones are untouched."""
    clock = clock or get_clock()
    existing = {
        h.category: h
        for h in db.query(Habitanimal).filter(Habitanimal.user_id == user_id).all()
    }

    companions = []
    created = 0
    for category in SubCategory:
        companion = existing.get(category.value)
        if companion is None:
            companion = Habitanimal(
                user_id=user_id,
                category=category.value,
                name=category.value.title(),
                xp=0,
                level=1,
                evolution_stage=1,
                health=MAX_HEALTH,
                last_interaction=clock.utcnow(),
            )
            db.add(companion)
            created += 1
        companions.append(companion)

    if created:
        db.commit()
        logger.info(f"Provisioned {created} habitanimal(s) for user {user_id}")
    return companions


def get_companion_for_category(db: Session, user_id: str, category: str) -> Habitanimal:
    companion = (
        db.query(Habitanimal)
        .filter(Habitanimal.user_id == user_id, Habitanimal.category == category)
        .first()
    )
    if companion is None:
        logger.error(
            f"Habitanimal missing for user {user_id}, category {category}",
            extra={"extra_fields": {"error_kind": INTEGRITY_ERROR_KIND, "user_id": user_id, "category": category}},
        )
        raise CompanionNotFoundError(category)
    return companion


def recalculate_health(db: Session, user_id: str, clock: Optional[Clock] = None) -> HealthRecalculation:
    """
    Apply decay-on-read to every companion of a user in one commit.

    last_interaction is not moved, so decay is always measured from the last
    real completion.
    """
    clock = clock or get_clock()
    now = clock.now()
    result = HealthRecalculation(recalculated_at=now.isoformat())

    companions = db.query(Habitanimal).filter(Habitanimal.user_id == user_id).all()
    for companion in companions:
        previous = companion.health
        companion.health = calculate_health_decay(previous, companion.last_interaction, now)
        result.habitanimals.append(
            HealthChange(
                id=companion.id,
                category=companion.category,
                previous_health=previous,
                new_health=companion.health,
                mood=get_mood(companion.health),
            )
        )

    db.commit()
    logger.info(
        f"Health recalculated for user {user_id}: {result.health_decayed} decayed, "
        f"{result.health_unchanged} unchanged"
    )
    return result


def companion_snapshot(companion: Habitanimal) -> Dict:
    """Presentation view of a companion with derived fields."""
    progress = level_progress(companion.xp)
    return {
        "id": companion.id,
        "category": companion.category,
        "name": companion.name,
        "xp": companion.xp,
        "level": companion.level,
        "evolution_stage": companion.evolution_stage,
        "evolution_stage_name": get_evolution_stage_name(companion.evolution_stage),
        "health": companion.health,
        "mood": get_mood(companion.health).value,
        "needs_attention": needs_attention(companion.health),
        "xp_into_level": progress.xp_into_level,
        "xp_for_next_level": progress.xp_for_next_level,
        "level_percent": progress.percent,
    }
