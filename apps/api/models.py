from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Float, Date, DateTime, ForeignKey, Text, String, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
from core.exceptions import ValidationError
from enum import Enum
import uuid
from typing import List


def _new_id() -> str:
    return str(uuid.uuid4())


# --- TAXONOMY ---

class Pillar(str, Enum):
    BODY = "BODY"
    MIND = "MIND"


class SubCategory(str, Enum):
    TRAINING = "TRAINING"
    SLEEP = "SLEEP"
    NUTRITION = "NUTRITION"
    MEDITATION = "MEDITATION"
    READING = "READING"
    LEARNING = "LEARNING"
    JOURNALING = "JOURNALING"

    @property
    def pillar(self) -> Pillar:
        return SUBCATEGORY_PILLARS[self]


SUBCATEGORY_PILLARS = {
    SubCategory.TRAINING: Pillar.BODY,
    SubCategory.SLEEP: Pillar.BODY,
    SubCategory.NUTRITION: Pillar.BODY,
    SubCategory.MEDITATION: Pillar.MIND,
    SubCategory.READING: Pillar.MIND,
    SubCategory.LEARNING: Pillar.MIND,
    SubCategory.JOURNALING: Pillar.MIND,
}


def subcategories_for(pillar: Pillar) -> List[SubCategory]:
    return [sub for sub, owner in SUBCATEGORY_PILLARS.items() if owner == Pillar(pillar)]


def _raw(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def validate_pillar_subcategory(pillar, sub_category) -> SubCategory:
    """Reject sub-categories that do not belong to the given pillar."""
    try:
        pillar = Pillar(_raw(pillar).upper())
    except ValueError:
        raise ValidationError(f"Unknown pillar: {pillar}", field="pillar")
    try:
        sub = SubCategory(_raw(sub_category).upper())
    except ValueError:
        raise ValidationError(f"Unknown sub-category: {sub_category}", field="sub_category")
    if sub.pillar != pillar:
        raise ValidationError(
            f"Sub-category {sub.value} belongs to {sub.pillar.value}, not {pillar.value}",
            field="sub_category",
        )
    return sub


class CompletionSource(str, Enum):
    MANUAL = "MANUAL"
    WHOOP = "WHOOP"
    APPLE_HEALTH = "APPLE_HEALTH"
    AUTO_TRIGGER = "AUTO_TRIGGER"


class WeightPreset(str, Enum):
    BALANCED = "BALANCED"
    ATHLETE = "ATHLETE"
    RECOVERY = "RECOVERY"
    KNOWLEDGE = "KNOWLEDGE"
    CUSTOM = "CUSTOM"


class AutoTriggerType(str, Enum):
    WHOOP_RECOVERY_ABOVE = "WHOOP_RECOVERY_ABOVE"
    WHOOP_RECOVERY_BELOW = "WHOOP_RECOVERY_BELOW"
    WHOOP_SLEEP_ABOVE = "WHOOP_SLEEP_ABOVE"
    WHOOP_STRAIN_ABOVE = "WHOOP_STRAIN_ABOVE"
    WHOOP_WORKOUT_TYPE = "WHOOP_WORKOUT_TYPE"
    ACTIVITY_COMPLETED = "ACTIVITY_COMPLETED"


# --- ENTITIES ---

class Habitanimal(Base):
    """
    Virtual companion, one per user per sub-category.

    level and evolution_stage are cached projections of xp; health only moves
    through decay-on-read or recovery-on-completion.
    """
    __tablename__ = "habitanimal"
    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_habitanimal_user_category"),
        CheckConstraint("xp >= 0", name="ck_habitanimal_xp_non_negative"),
        CheckConstraint("health >= 0 AND health <= 100", name="ck_habitanimal_health_range"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    category = Column(Text, nullable=False)  # SubCategory value
    name = Column(Text, nullable=True)
    species = Column(Text, nullable=True)
    xp = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)
    evolution_stage = Column(Integer, default=1, nullable=False)
    health = Column(Integer, default=100, nullable=False)
    last_interaction = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)


class Activity(Base):
    __tablename__ = "activity"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    pillar = Column(Text, nullable=False)  # Pillar value
    sub_category = Column(Text, nullable=False)  # SubCategory value
    points = Column(Integer, default=10, nullable=False)  # Base reward
    is_habit = Column(Boolean, default=True, nullable=False)
    # Soft delete: completions survive archiving
    archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    completions = relationship("ActivityCompletion", back_populates="activity")
    auto_triggers = relationship(
        "AutoTrigger",
        back_populates="activity",
        foreign_keys="AutoTrigger.activity_id",
    )

    def __init__(self, **kwargs):
        pillar = kwargs.get("pillar")
        sub_category = kwargs.get("sub_category")
        if sub_category is not None:
            if pillar is None:
                try:
                    pillar = SubCategory(_raw(sub_category).upper()).pillar
                except ValueError:
                    raise ValidationError(f"Unknown sub-category: {sub_category}", field="sub_category")
            sub = validate_pillar_subcategory(pillar, sub_category)
            kwargs["pillar"] = sub.pillar.value
            kwargs["sub_category"] = sub.value
        super().__init__(**kwargs)

    @property
    def category(self) -> str:
        """Companion category this activity feeds."""
        return self.sub_category


class ActivityCompletion(Base):
    """
    One performed instance of an activity.

    completed_on is the calendar day in the configured zone. habit_day mirrors
    it for habit activities and stays NULL otherwise, so the unique constraint
    caps habits at one completion per day without limiting free-form logs.
    """
    __tablename__ = "activity_completion"
    __table_args__ = (
        UniqueConstraint("activity_id", "habit_day", name="uq_completion_habit_day"),
        Index("ix_completion_activity_day", "activity_id", "completed_on"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    activity_id = Column(String(36), ForeignKey("activity.id"), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=False)
    completed_on = Column(Date, nullable=False, index=True)
    habit_day = Column(Date, nullable=True)
    points_earned = Column(Integer, default=0, nullable=False)
    xp_earned = Column(Integer, default=0, nullable=False)
    details = Column(Text, nullable=True)
    source = Column(Text, default=CompletionSource.MANUAL.value, nullable=False)  # MANUAL, integration name, AUTO_TRIGGER

    activity = relationship("Activity", back_populates="completions")


class DailyScore(Base):
    __tablename__ = "daily_score"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_score_user_date"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False, index=True)
    date = Column(Date, nullable=False)

    body_score = Column(Integer, nullable=False, default=0)
    mind_score = Column(Integer, nullable=False, default=0)
    balance_index = Column(Integer, nullable=False, default=0)

    # Pillar points meter at scoring time
    body_points = Column(Integer, nullable=False, default=0)
    mind_points = Column(Integer, nullable=False, default=0)
    body_complete = Column(Boolean, nullable=False, default=False)
    mind_complete = Column(Boolean, nullable=False, default=False)

    training_score = Column(Integer, nullable=True)
    sleep_score = Column(Integer, nullable=True)
    nutrition_score = Column(Integer, nullable=True)
    meditation_score = Column(Integer, nullable=True)
    reading_score = Column(Integer, nullable=True)
    learning_score = Column(Integer, nullable=True)
    journaling_score = Column(Integer, nullable=True)

    # Captured biometric inputs (Whoop)
    whoop_strain = Column(Float, nullable=True)
    whoop_sleep = Column(Float, nullable=True)  # sleep performance 0-100
    whoop_recovery = Column(Float, nullable=True)
    whoop_sleep_efficiency = Column(Float, nullable=True)

    calculated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)


class WeightConfig(Base):
    """Per-user sub-category weights, percentages summing to 100 per pillar."""
    __tablename__ = "weight_config"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(Text, unique=True, nullable=False)
    preset = Column(Text, default=WeightPreset.BALANCED.value, nullable=False)

    training_weight = Column(Integer, nullable=False)
    sleep_weight = Column(Integer, nullable=False)
    nutrition_weight = Column(Integer, nullable=False)

    meditation_weight = Column(Integer, nullable=False)
    reading_weight = Column(Integer, nullable=False)
    learning_weight = Column(Integer, nullable=False)
    # Only blended into the Mind score when SCORING_INCLUDE_JOURNALING is on
    journaling_weight = Column(Integer, default=0, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)


class AutoTrigger(Base):
    __tablename__ = "auto_trigger"
    __table_args__ = (
        UniqueConstraint("activity_id", "trigger_type", name="uq_auto_trigger_activity_type"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    activity_id = Column(String(36), ForeignKey("activity.id"), nullable=False, index=True)
    trigger_type = Column(Text, nullable=False)  # AutoTriggerType value
    threshold_value = Column(Float, nullable=True)
    workout_type_id = Column(Integer, nullable=True)  # Whoop sport_id
    # Chained trigger: fire when this other activity is completed
    trigger_activity_id = Column(String(36), ForeignKey("activity.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    activity = relationship("Activity", back_populates="auto_triggers", foreign_keys=[activity_id])
