"""
Weight Configuration Service

Per-user weighting of sub-categories inside each pillar. Weights are whole
percentages that must sum to 100 per pillar. Named presets cover the common
profiles; CUSTOM takes user-supplied weights and is validated before
anything is written.
"""

from dataclasses import dataclass, asdict
from typing import Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from core.exceptions import ValidationError
from models import WeightConfig, WeightPreset
from schemas import WeightConfigUpdate

logger = logging.getLogger(__name__)

REQUIRED_SUM = 100


@dataclass(frozen=True)
class BodyWeights:
    training: int
    sleep: int
    nutrition: int


@dataclass(frozen=True)
class MindWeights:
    meditation: int
    reading: int
    learning: int
    journaling: int = 0


@dataclass
class WeightConfiguration:
    preset: WeightPreset
    body: BodyWeights
    mind: MindWeights

    def to_dict(self) -> Dict:
        return {"preset": self.preset.value, "body": asdict(self.body), "mind": asdict(self.mind)}


@dataclass
class WeightValidationIssue:
    field: str
    message: str


WEIGHT_PRESETS: Dict[WeightPreset, Dict[str, object]] = {
    WeightPreset.BALANCED: {
        "body": BodyWeights(training=35, sleep=35, nutrition=30),
        "mind": MindWeights(meditation=40, reading=30, learning=30),
    },
    WeightPreset.ATHLETE: {
        "body": BodyWeights(training=50, sleep=35, nutrition=15),
        "mind": MindWeights(meditation=50, reading=25, learning=25),
    },
    WeightPreset.RECOVERY: {
        "body": BodyWeights(training=20, sleep=50, nutrition=30),
        "mind": MindWeights(meditation=50, reading=30, learning=20),
    },
    WeightPreset.KNOWLEDGE: {
        "body": BodyWeights(training=30, sleep=40, nutrition=30),
        "mind": MindWeights(meditation=20, reading=40, learning=40),
    },
    # CUSTOM starts from the BALANCED values
    WeightPreset.CUSTOM: {
        "body": BodyWeights(training=35, sleep=35, nutrition=30),
        "mind": MindWeights(meditation=40, reading=30, learning=30),
    },
}


def default_configuration() -> WeightConfiguration:
    preset = WEIGHT_PRESETS[WeightPreset.BALANCED]
    return WeightConfiguration(preset=WeightPreset.BALANCED, body=preset["body"], mind=preset["mind"])


def validate_body_weights(weights: BodyWeights) -> Optional[WeightValidationIssue]:
    values = (weights.training, weights.sleep, weights.nutrition)
    total = sum(values)
    if total != REQUIRED_SUM:
        return WeightValidationIssue("body", f"Body weights must sum to {REQUIRED_SUM}, got {total}")
    if any(v < 0 for v in values):
        return WeightValidationIssue("body", "Body weights cannot be negative")
    return None


def validate_mind_weights(weights: MindWeights) -> Optional[WeightValidationIssue]:
    # journaling sits outside the three-way blend and is checked on its own
    values = (weights.meditation, weights.reading, weights.learning)
    total = sum(values)
    if total != REQUIRED_SUM:
        return WeightValidationIssue("mind", f"Mind weights must sum to {REQUIRED_SUM}, got {total}")
    if any(v < 0 for v in values) or weights.journaling < 0:
        return WeightValidationIssue("mind", "Mind weights cannot be negative")
    return None


def validate_weights(body: BodyWeights, mind: MindWeights) -> List[WeightValidationIssue]:
    issues = []
    for issue in (validate_body_weights(body), validate_mind_weights(mind)):
        if issue:
            issues.append(issue)
    return issues


def _from_row(config: WeightConfig) -> WeightConfiguration:
    return WeightConfiguration(
        preset=WeightPreset(config.preset),
        body=BodyWeights(
            training=config.training_weight,
            sleep=config.sleep_weight,
            nutrition=config.nutrition_weight,
        ),
        mind=MindWeights(
            meditation=config.meditation_weight,
            reading=config.reading_weight,
            learning=config.learning_weight,
            journaling=config.journaling_weight or 0,
        ),
    )


def get_weights(db: Session, user_id: str) -> WeightConfiguration:
    """Stored configuration, or the BALANCED preset when none exists."""
    config = db.query(WeightConfig).filter(WeightConfig.user_id == user_id).first()
    if not config:
        return default_configuration()
    return _from_row(config)


def set_weights(db: Session, user_id: str, update: WeightConfigUpdate) -> WeightConfiguration:
    """
    Upsert a user's weight configuration.

    - Non-CUSTOM presets use their predefined weights (provided weights are ignored)
    - CUSTOM uses the provided weights, BALANCED for any pillar left out

    Raises:
        ValidationError: naming the first offending pillar ("body" or "mind")
    """
    preset = WeightPreset(update.preset)
    balanced = WEIGHT_PRESETS[WeightPreset.BALANCED]

    if preset == WeightPreset.CUSTOM:
        body = BodyWeights(**update.body.model_dump()) if update.body else balanced["body"]
        mind = MindWeights(**update.mind.model_dump()) if update.mind else balanced["mind"]
    else:
        body = WEIGHT_PRESETS[preset]["body"]
        mind = WEIGHT_PRESETS[preset]["mind"]

    issues = validate_weights(body, mind)
    if issues:
        logger.info(
            f"Rejected weight config for user {user_id}: {[i.message for i in issues]}",
            extra={"extra_fields": {"user_id": user_id, "fields": [i.field for i in issues]}},
        )
        raise ValidationError(issues[0].message, field=issues[0].field)

    config = db.query(WeightConfig).filter(WeightConfig.user_id == user_id).first()
    if not config:
        config = WeightConfig(user_id=user_id)
        db.add(config)

    config.preset = preset.value
    config.training_weight = body.training
    config.sleep_weight = body.sleep
    config.nutrition_weight = body.nutrition
    config.meditation_weight = mind.meditation
    config.reading_weight = mind.reading
    config.learning_weight = mind.learning
    config.journaling_weight = mind.journaling

    db.commit()
    logger.info(f"Weight config for user {user_id} set to {preset.value}")
    return _from_row(config)


def get_presets() -> Dict[str, Dict[str, Dict[str, int]]]:
    return {
        preset.value: {"body": asdict(values["body"]), "mind": asdict(values["mind"])}
        for preset, values in WEIGHT_PRESETS.items()
    }
