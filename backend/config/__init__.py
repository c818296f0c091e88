from .thresholds import (
    ThresholdConfig,
    get_thresholds,
    THRESHOLDS,
    RULE_COOLDOWN_FRAMES,
    DEFAULT_SPLIT_INTERVAL_M,
    MIN_KEYPOINTS_PER_POSE,
)
from .settings import Settings, get_settings, settings

__all__ = [
    "ThresholdConfig",
    "get_thresholds",
    "THRESHOLDS",
    "RULE_COOLDOWN_FRAMES",
    "DEFAULT_SPLIT_INTERVAL_M",
    "MIN_KEYPOINTS_PER_POSE",
    "Settings", "get_settings", "settings"
]
