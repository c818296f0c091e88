"""
Form Quality Classifier
Feature vector -> (0-100 score, quality label).

The rule-based path is always available and deterministic. An optional learned
model can override it as long as it returns a plain score.
"""

import math
import logging
from typing import Callable, Optional, Sequence, Tuple

from .models import FormQuality
from .form_scoring import range_score
from config import get_thresholds
from config.thresholds import ClassifierConfig

logger = logging.getLogger(__name__)

# Feature vector layout (see BiomechanicsCalculator.feature_vector)
KNEE_DRIVE = 0
TORSO = 1
ARM_SWING_FORWARD = 2
FOOT_STRIKE = 3
KNEE_SYMMETRY = 4

ScoreModel = Callable[[Sequence[float]], float]


def quality_label(score: float, config: Optional[ClassifierConfig] = None) -> FormQuality:
    cfg = config or get_thresholds().classifier
    if score >= cfg.excellent_min:
        return FormQuality.EXCELLENT
    if score >= cfg.good_min:
        return FormQuality.GOOD
    if score >= cfg.needs_work_min:
        return FormQuality.NEEDS_WORK
    return FormQuality.POOR


class FormQualityClassifier:
    """Weighted range scoring over the first five features"""

    def __init__(self, model: Optional[ScoreModel] = None, config: Optional[ClassifierConfig] = None):
        self.model = model
        self.config = config or get_thresholds().classifier

    def classify(self, features: Sequence[float]) -> Tuple[float, FormQuality]:
        cfg = self.config
        if len(features) < cfg.min_features:
            return cfg.fallback_score, FormQuality.NEEDS_WORK

        score = None
        if self.model is not None:
            score = self._model_score(features)
        if score is None:
            score = self.rule_score(features)

        return score, quality_label(score, cfg)

    def rule_score(self, features: Sequence[float]) -> float:
        cfg = self.config
        weighted = [
            (cfg.knee_drive_weight,
             range_score(features[KNEE_DRIVE], *cfg.knee_drive_range, cfg.knee_drive_tolerance)),
            (cfg.torso_weight,
             range_score(features[TORSO], *cfg.torso_range, cfg.torso_tolerance)),
            (cfg.arm_swing_weight,
             range_score(features[ARM_SWING_FORWARD], *cfg.arm_swing_range, cfg.arm_swing_tolerance)),
            (cfg.foot_strike_weight,
             range_score(features[FOOT_STRIKE], *cfg.foot_strike_range, cfg.foot_strike_tolerance)),
            (cfg.symmetry_weight,
             range_score(features[KNEE_SYMMETRY], 0.0, 0.0, cfg.symmetry_tolerance)),
        ]
        total_weight = sum(w for w, _ in weighted)
        earned = sum(w * s for w, s in weighted)
        return earned / total_weight * 100

    def _model_score(self, features: Sequence[float]) -> Optional[float]:
        try:
            score = float(self.model(features))
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.warning(f"Form model failed, using rule-based score: {e}")
            return None
        if not math.isfinite(score):
            logger.warning("Form model returned a non-finite score, using rule-based score")
            return None
        return max(0.0, min(100.0, score))
