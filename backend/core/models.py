"""
Sprint Biomechanics Data Model
Immutable per-frame records and post-run results shared across the analysis core.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple, TypeVar, Union

from config import get_thresholds


Point = Tuple[float, float]
BoundingBox = Tuple[float, float, float, float]  # x, y, width, height (normalized)


class PoseLandmark(IntEnum):
    """MediaPipe 33-point body model"""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


# Name -> index lookup (e.g. "left_hip" -> 23)
LANDMARKS: Dict[str, int] = {lm.name.lower(): lm.value for lm in PoseLandmark}


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class Keypoint:
    """One tracked landmark in normalized image coordinates (y grows downward)"""
    landmark: int
    x: float
    y: float
    confidence: float
    visibility: float

    def __post_init__(self):
        object.__setattr__(self, "confidence", _clamp01(self.confidence))
        object.__setattr__(self, "visibility", _clamp01(self.visibility))

    @property
    def position(self) -> Point:
        return (self.x, self.y)

    @property
    def is_visible(self) -> bool:
        vis = get_thresholds().visibility
        return self.confidence > vis.min_confidence and self.visibility > vis.min_visibility


@dataclass(frozen=True)
class DetectedPose:
    """One person's keypoints for one frame"""
    keypoints: Tuple[Keypoint, ...]
    bounding_box: BoundingBox = (0.0, 0.0, 1.0, 1.0)
    athlete_index: int = 0
    confidence: float = 1.0
    _by_landmark: Dict[int, Keypoint] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "keypoints", tuple(self.keypoints))
        object.__setattr__(self, "_by_landmark", {kp.landmark: kp for kp in self.keypoints})

    def keypoint(self, landmark: int) -> Optional[Keypoint]:
        return self._by_landmark.get(int(landmark))

    def position(self, landmark: int) -> Optional[Point]:
        """Position of a landmark, or None unless it is visible"""
        kp = self._by_landmark.get(int(landmark))
        if kp is None or not kp.is_visible:
            return None
        return kp.position

    def all_visible(self, *landmarks: int) -> bool:
        return all(self.position(lm) is not None for lm in landmarks)

    @property
    def visible_count(self) -> int:
        return sum(1 for kp in self.keypoints if kp.is_visible)

    def with_keypoints(self, keypoints: List[Keypoint]) -> "DetectedPose":
        return DetectedPose(
            keypoints=tuple(keypoints),
            bounding_box=self.bounding_box,
            athlete_index=self.athlete_index,
            confidence=self.confidence,
        )

    def with_athlete_index(self, athlete_index: int) -> "DetectedPose":
        return DetectedPose(
            keypoints=self.keypoints,
            bounding_box=self.bounding_box,
            athlete_index=athlete_index,
            confidence=self.confidence,
        )


class SprintPhase(Enum):
    """Stages of a sprint, in distance order"""
    BLOCK_SET = "block_set"
    BLOCK_START = "block_start"
    DRIVE_PHASE = "drive_phase"
    ACCELERATION = "acceleration"
    MAX_VELOCITY = "max_velocity"
    SPEED_ENDURANCE = "speed_endurance"
    DECELERATION = "deceleration"
    UNKNOWN = "unknown"

    @property
    def order(self) -> int:
        """Position in the distance-ordered phase list (-1 for unknown)"""
        return _PHASE_ORDER.get(self, -1)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def is_block(self) -> bool:
        return self in (SprintPhase.BLOCK_SET, SprintPhase.BLOCK_START)


_PHASE_ORDER = {
    SprintPhase.BLOCK_SET: 0,
    SprintPhase.BLOCK_START: 1,
    SprintPhase.DRIVE_PHASE: 2,
    SprintPhase.ACCELERATION: 3,
    SprintPhase.MAX_VELOCITY: 4,
    SprintPhase.SPEED_ENDURANCE: 5,
    SprintPhase.DECELERATION: 6,
}


# =============================================================================
# Present-or-not-computed values
# =============================================================================

class NotComputedReason(Enum):
    """Why a phase- or history-dependent value is absent"""
    NOT_APPLICABLE_IN_PHASE = "not_applicable_in_phase"
    NO_PREVIOUS_FRAME = "no_previous_frame"
    LANDMARKS_MISSING = "landmarks_missing"
    DEFERRED_TO_PHASE_DETECTOR = "deferred_to_phase_detector"


@dataclass(frozen=True)
class NotComputed:
    """Absent value, tagged with the reason it is absent"""
    reason: NotComputedReason


T = TypeVar("T")
Computed = Union[T, NotComputed]


def is_computed(value) -> bool:
    return not isinstance(value, NotComputed)


def computed_or(value, default):
    """Unwrap a Computed value, falling back to ``default`` when absent"""
    return default if isinstance(value, NotComputed) else value


# =============================================================================
# Per-frame angles and metrics
# =============================================================================

@dataclass(frozen=True)
class BlockAngles:
    """Set-position geometry (degrees from horizontal unless noted)"""
    rear_shin_angle: float
    front_shin_angle: float
    rear_thigh_angle: float
    front_thigh_angle: float
    hip_height: float           # hip height / (2 * torso length)
    torso_lean: float
    weight_distribution: float  # 0 = all rear, 1 = all front


@dataclass(frozen=True)
class RunningAngles:
    knee_drive_angle: float = 0.0
    trailing_leg_extension: float = 0.0
    arm_swing_forward: float = 0.0
    arm_swing_back: float = 0.0
    foot_strike_angle: float = 0.0
    hip_flexion_angle: float = 0.0
    torso_angle: float = 0.0        # inclination from horizontal, 90 = upright
    left_knee_drive: float = 0.0
    right_knee_drive: float = 0.0
    left_arm_swing: float = 0.0
    right_arm_swing: float = 0.0

    @property
    def knee_drive_symmetry(self) -> float:
        return abs(self.left_knee_drive - self.right_knee_drive)

    @property
    def arm_swing_symmetry(self) -> float:
        return abs(self.left_arm_swing - self.right_arm_swing)


@dataclass(frozen=True)
class PostureMetrics:
    head_alignment: float = 0.0
    shoulder_rotation: float = 0.0
    hip_drop: float = 0.0
    hip_symmetry: float = 0.0
    spine_alignment: float = 0.0

    @property
    def overall_posture_score(self) -> float:
        head = max(0.0, 100 - self.head_alignment * 5)
        shoulders = max(0.0, 100 - self.shoulder_rotation * 10)
        hips = max(0.0, 100 - self.hip_drop * 10)
        return (head + shoulders + hips) / 3


class FormQuality(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_WORK = "needs_work"
    POOR = "poor"


@dataclass(frozen=True)
class BiomechanicsSnapshot:
    """Full analysis record for one processed frame"""
    timestamp: float
    frame_index: int
    phase: SprintPhase
    keypoints: Tuple[Keypoint, ...]
    block_angles: Computed[BlockAngles]
    running_angles: RunningAngles
    posture: PostureMetrics
    stride_length: Computed[float]
    stride_frequency: Computed[float]
    vertical_oscillation: Computed[float]
    ground_contact_time_ms: Computed[float]
    form_score: float
    form_quality: FormQuality
    confidence: float
    athlete_index: int = 0


@dataclass(frozen=True)
class SprintPhaseSegment:
    """Interval [start_time, end_time) spent in one phase"""
    phase: SprintPhase
    start_time: float
    end_time: float
    start_distance: float = 0.0
    end_distance: float = 0.0
    average_velocity: float = 0.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class VelocityPoint:
    distance: float   # meters
    velocity: float   # m/s
    timestamp: float  # seconds


# =============================================================================
# Post-run results
# =============================================================================

@dataclass
class MetricScore:
    name: str
    score: float            # 0-100
    weight: float
    measured_value: float
    optimal_min: float
    optimal_max: float
    unit: str
    feedback: str

    @property
    def is_in_optimal_range(self) -> bool:
        return self.optimal_min <= self.measured_value <= self.optimal_max


@dataclass
class FormScore:
    overall: float = 0.0
    block_start: float = 0.0
    acceleration: float = 0.0
    max_velocity: float = 0.0
    consistency: float = 0.0
    breakdown: List[MetricScore] = field(default_factory=list)

    @property
    def grade(self) -> str:
        for floor, grade in ((90, "A+"), (80, "A"), (70, "B"), (60, "C"), (50, "D")):
            if self.overall >= floor:
                return grade
        return "F"


class RiskSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


@dataclass
class InjuryRiskFlag:
    timestamp: float
    severity: RiskSeverity
    body_part: str
    issue: str
    description: str
    recommendation: str


class CuePriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class CueCategory(Enum):
    TECHNIQUE = "technique"
    STRENGTH = "strength"
    MOBILITY = "mobility"
    RHYTHM = "rhythm"
    POSTURE = "posture"
    BLOCK_START = "block_start"


@dataclass
class CoachingCue:
    """A single actionable coaching suggestion"""
    priority: CuePriority
    category: CueCategory
    issue: str
    recommendation: str
    voice_text: str
    drill_ids: List[str] = field(default_factory=list)
    improvement_weeks: int = 2
    trigger_condition: str = ""
    rule_id: Optional[str] = None
    timestamp: Optional[float] = None
