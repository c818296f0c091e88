"""
SprintSense - Configurable Thresholds
All analysis thresholds can be tuned without code changes by modifying this file.
"""

from dataclasses import dataclass, field
from typing import Tuple


@dataclass
class VisibilityConfig:
    """Landmark visibility thresholds"""
    # A keypoint is trusted only if both scores exceed these
    min_confidence: float = 0.5
    min_visibility: float = 0.5
    # Minimum keypoints for a pose to be usable
    min_keypoints_per_pose: int = 10
    # Keypoints used for the bounding box need at least this confidence
    bbox_min_confidence: float = 0.3
    bbox_padding: float = 0.05


@dataclass
class SmoothingConfig:
    """2D Kalman filter parameters (per landmark)"""
    process_noise: float = 0.01
    measurement_noise: float = 0.05
    initial_covariance: float = 1.0
    initial_velocity_covariance: float = 1.0
    # Velocity blend: keep this much of the old velocity per update
    velocity_retention: float = 0.8


@dataclass
class PhaseConfig:
    """Sprint phase detection thresholds"""
    # Rolling pose history (frames, ~3s at 30fps)
    history_capacity: int = 90
    # Hip track kept for the post-run velocity curve (frames, ~2 min at 30fps);
    # older samples are dropped so an abandoned live session stays bounded
    hip_track_capacity: int = 3600
    # Rolling ankle-height history per foot (seconds)
    ankle_window_sec: float = 2.0
    # Step detection: slope threshold (normalized y) and refractory period
    step_slope_threshold: float = 0.02
    min_step_interval_sec: float = 0.15
    step_scan_samples: int = 5
    # Ankle counts as grounded when within this of the lowest recent ankle y
    ground_tolerance: float = 0.02
    # Velocity moving-average window (samples)
    velocity_window: int = 5

    # Classification table
    block_set_max_velocity: float = 0.3
    crouch_ratio_min: float = 0.6
    crouch_ratio_max: float = 0.85
    block_start_max_steps: int = 2
    block_start_max_distance: float = 3.0
    drive_max_distance: float = 10.0
    drive_max_steps: int = 8
    acceleration_max_distance: float = 30.0
    max_velocity_max_distance: float = 65.0
    max_velocity_peak_ratio: float = 0.93
    speed_endurance_max_distance: float = 100.0


@dataclass
class ClassifierConfig:
    """Rule-based form quality classifier (weights sum to 100)"""
    min_features: int = 5
    fallback_score: float = 50.0

    knee_drive_range: Tuple[float, float] = (85.0, 105.0)
    knee_drive_tolerance: float = 30.0
    knee_drive_weight: float = 20.0

    torso_range: Tuple[float, float] = (75.0, 90.0)
    torso_tolerance: float = 30.0
    torso_weight: float = 15.0

    arm_swing_range: Tuple[float, float] = (50.0, 80.0)
    arm_swing_tolerance: float = 40.0
    arm_swing_weight: float = 15.0

    foot_strike_range: Tuple[float, float] = (-5.0, 10.0)
    foot_strike_tolerance: float = 20.0
    foot_strike_weight: float = 25.0

    symmetry_tolerance: float = 10.0
    symmetry_weight: float = 25.0

    # Label thresholds
    excellent_min: float = 80.0
    good_min: float = 60.0
    needs_work_min: float = 40.0


@dataclass
class FeedbackConfig:
    """Real-time feedback rule thresholds"""
    # Cooldown between the same rule firing (frames, ~3s at 30fps)
    rule_cooldown_frames: int = 90
    # Narration is considered in flight for this long
    narration_duration_sec: float = 3.0

    knee_drive_min: float = 85.0
    torso_lean_min: float = 40.0
    shoulder_rotation_max: float = 10.0
    stride_frequency_min: float = 4.0
    hip_drop_max: float = 5.0
    knee_asymmetry_max: float = 5.0


@dataclass
class ScoringConfig:
    """Post-run form scoring ranges"""
    neutral_sub_score: float = 12.5
    max_sub_score: float = 25.0
    min_consistency_snapshots: int = 6

    rear_shin_range: Tuple[float, float] = (35.0, 50.0)
    rear_shin_tolerance: float = 15.0
    front_shin_range: Tuple[float, float] = (50.0, 70.0)
    front_shin_tolerance: float = 20.0
    hip_height_range: Tuple[float, float] = (0.55, 0.75)
    hip_height_tolerance: float = 0.2
    block_torso_range: Tuple[float, float] = (35.0, 50.0)
    block_torso_tolerance: float = 15.0

    acceleration_knee_range: Tuple[float, float] = (85.0, 105.0)
    # Torso expected to finish acceleration near upright
    upright_torso_range: Tuple[float, float] = (75.0, 90.0)
    upright_torso_tolerance: float = 20.0
    knee_tolerance: float = 20.0
    max_shoulder_rotation: float = 15.0

    max_velocity_torso_range: Tuple[float, float] = (80.0, 88.0)
    max_velocity_torso_tolerance: float = 10.0
    max_velocity_knee_range: Tuple[float, float] = (90.0, 110.0)
    max_asymmetry: float = 10.0
    foot_strike_range: Tuple[float, float] = (-5.0, 5.0)
    foot_strike_tolerance: float = 10.0
    max_torso_deviation: float = 15.0
    # Knee drive drop fraction that zeroes the fatigue term
    knee_drop_zero_at: float = 0.2

    # Breakdown entries
    phase_target_points: float = 20.0
    symmetry_optimal_max: float = 3.0


@dataclass
class InjuryConfig:
    """Injury risk thresholds"""
    asymmetry_flag: float = 5.0
    asymmetry_high: float = 10.0
    overstride_flag: float = 15.0
    overstride_high: float = 25.0
    rotation_flag: float = 10.0
    rotation_high: float = 20.0
    # Fatigue compares first vs last quarter of the run
    fatigue_min_snapshots: int = 11
    fatigue_flag: float = 0.15
    fatigue_high: float = 0.25
    hip_drop_mean_flag: float = 5.0
    hip_drop_max_flag: float = 8.0
    hip_drop_high: float = 10.0


@dataclass
class SplitConfig:
    """Split-time estimation"""
    interval_m: float = 10.0
    variance_window: int = 5
    confidence_floor: float = 0.5
    confidence_divisor: float = 5.0
    plateau_ratio: float = 0.97

    # Theoretical curve
    peak_over_average: float = 1.13
    distance_to_max_m: float = 35.0
    late_decay: float = 0.06
    race_distance_m: float = 100.0
    resolution: int = 50


@dataclass
class TrackerConfig:
    """Multi-athlete tracking"""
    iou_threshold: float = 0.3
    max_missing_frames: int = 15
    max_persons: int = 4


@dataclass
class ThresholdConfig:
    """Master threshold configuration"""
    visibility: VisibilityConfig = field(default_factory=VisibilityConfig)
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
    phase: PhaseConfig = field(default_factory=PhaseConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    injury: InjuryConfig = field(default_factory=InjuryConfig)
    splits: SplitConfig = field(default_factory=SplitConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)


# Global config instance - modify this to tune thresholds
THRESHOLDS = ThresholdConfig()


def get_thresholds() -> ThresholdConfig:
    """Get the current threshold configuration"""
    return THRESHOLDS


# Commonly referenced thresholds (aliases)
RULE_COOLDOWN_FRAMES = THRESHOLDS.feedback.rule_cooldown_frames
DEFAULT_SPLIT_INTERVAL_M = THRESHOLDS.splits.interval_m
MIN_KEYPOINTS_PER_POSE = THRESHOLDS.visibility.min_keypoints_per_pose
