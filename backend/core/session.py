"""
Run Session
Owns everything that lives for one run: keypoint smoothing, athlete tracking,
per-athlete phase detection and live feedback, and the snapshot list. When the
run stops it produces the post-run results (score, risk flags,
recommendations, splits).

Deliveries carry the generation they were requested under. start() and stop()
bump the generation, so a pose estimate that finishes after the run changed is
discarded instead of leaking into the next run.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .athlete_tracker import AthleteTracker
from .biomechanics import BiomechanicsCalculator
from .calibration import Calibration, calibration_from_settings
from .feedback_engine import RealtimeFeedbackEngine, VoiceNarrator
from .form_scoring import FormScoringEngine
from .injury_risk import InjuryRiskDetector
from .kalman_filter import KeypointSmoother
from .models import (
    BiomechanicsSnapshot,
    CoachingCue,
    DetectedPose,
    FormScore,
    InjuryRiskFlag,
    SprintPhase,
    SprintPhaseSegment,
    VelocityPoint,
)
from .phase_detector import SprintPhaseDetector
from .recommendations import RecommendationEngine
from .split_times import SplitTime, SplitTimeEstimator, VelocityStats
from config import get_thresholds
from exceptions import SessionStateError
from logging_config import LogTimer, StructuredLogger

logger = logging.getLogger(__name__)


# =============================================================================
# Messages and results
# =============================================================================

@dataclass(frozen=True)
class PoseMessage:
    """Pose estimates for one frame, tagged with the generation they belong to"""
    poses: Sequence[DetectedPose]
    timestamp: float
    generation: int


@dataclass
class FrameResult:
    timestamp: float
    snapshots: List[BiomechanicsSnapshot] = field(default_factory=list)
    cues: List[CoachingCue] = field(default_factory=list)


@dataclass
class AthleteResult:
    athlete_index: int
    score: FormScore
    segments: List[SprintPhaseSegment]
    snapshots: List[BiomechanicsSnapshot]
    velocity_curve: List[VelocityPoint]
    risk_flags: List[InjuryRiskFlag]
    recommendations: List[CoachingCue]
    splits: List[SplitTime]
    velocity_stats: Optional[VelocityStats]
    step_count: int = 0
    distance: float = 0.0
    max_velocity: float = 0.0


@dataclass
class RunResult:
    run_id: str
    frames_processed: int
    duration: float
    athletes: List[AthleteResult] = field(default_factory=list)

    @property
    def primary(self) -> Optional[AthleteResult]:
        """Athlete with the most snapshots (lowest index on ties)"""
        if not self.athletes:
            return None
        return max(self.athletes, key=lambda a: (len(a.snapshots), -a.athlete_index))


# =============================================================================
# Services
# =============================================================================

@dataclass
class AnalysisServices:
    """Stateless analysis services shared by every athlete in a run"""
    calculator: BiomechanicsCalculator
    scorer: FormScoringEngine
    injury_detector: InjuryRiskDetector
    recommender: RecommendationEngine
    split_estimator: SplitTimeEstimator

    @classmethod
    def create(cls, calibration: Optional[Calibration] = None) -> "AnalysisServices":
        return cls(
            calculator=BiomechanicsCalculator(calibration),
            scorer=FormScoringEngine(),
            injury_detector=InjuryRiskDetector(),
            recommender=RecommendationEngine(),
            split_estimator=SplitTimeEstimator(),
        )


class _AthleteState:
    """Per-athlete run state"""

    def __init__(self, athlete_index: int, calibration: Calibration, feedback: RealtimeFeedbackEngine):
        self.athlete_index = athlete_index
        self.detector = SprintPhaseDetector(calibration)
        self.feedback = feedback
        self.snapshots: List[BiomechanicsSnapshot] = []
        self.previous_pose: Optional[DetectedPose] = None


# =============================================================================
# Session
# =============================================================================

class RunSession:
    """
    Single-owner run controller. Not thread-safe: every call must come from
    the same thread or event loop.
    """

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"

    def __init__(
        self,
        calibration: Optional[Calibration] = None,
        services: Optional[AnalysisServices] = None,
        multi_person: bool = False,
        max_persons: Optional[int] = None,
        kalman_smoothing: bool = True,
        voice_feedback: bool = True,
        frame_stride: int = 1,
        split_interval: Optional[float] = None,
        speak: Optional[Callable[[str], None]] = None,
        history: Sequence[FormScore] = (),
    ):
        self.calibration = calibration or Calibration()
        self.services = services or AnalysisServices.create(self.calibration)
        self.multi_person = multi_person
        self.kalman_smoothing = kalman_smoothing
        self.voice_feedback = voice_feedback
        self.frame_stride = max(1, frame_stride)
        self.split_interval = split_interval
        self.history = list(history)
        self._speak = speak

        self.smoother = KeypointSmoother()
        self.tracker = AthleteTracker(max_persons=max_persons)
        self.min_keypoints = get_thresholds().visibility.min_keypoints_per_pose

        self.run_id = str(uuid.uuid4())[:8]
        self.state = self.IDLE
        self.generation = 0
        self._athletes: Dict[int, _AthleteState] = {}
        self._last_timestamp: Optional[float] = None
        self._frames_processed = 0
        self._started_at = 0.0
        self.log = StructuredLogger(__name__, {"run_id": self.run_id})

    @classmethod
    def from_settings(cls, settings, calibration: Optional[Calibration] = None, **kwargs) -> "RunSession":
        """Session configured from application settings; keyword arguments override them"""
        options = dict(
            multi_person=settings.MULTI_PERSON_ENABLED,
            max_persons=settings.MAX_PERSONS,
            kalman_smoothing=settings.KALMAN_SMOOTHING_ENABLED,
            voice_feedback=settings.VOICE_FEEDBACK_ENABLED,
            frame_stride=settings.frame_stride,
            split_interval=settings.SPLIT_INTERVAL_M,
        )
        options.update(kwargs)
        return cls(calibration=calibration or calibration_from_settings(settings), **options)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self.state == self.RUNNING

    def start(self) -> int:
        """
        Begin a run, clearing all state from any previous run.

        Returns:
            Generation that deliveries for this run must carry
        """
        if self.is_running:
            raise SessionStateError("Run already in progress", state=self.state)

        self.generation += 1
        self.smoother.reset()
        self.tracker.reset()
        self._athletes = {}
        self._last_timestamp = None
        self._frames_processed = 0
        self._started_at = time.perf_counter()
        self.state = self.RUNNING
        self.log.info("Run started", generation=self.generation)
        return self.generation

    def stop(self) -> RunResult:
        """End the run and compute post-run results"""
        if not self.is_running:
            raise SessionStateError("No run in progress", state=self.state)

        self.generation += 1
        self.state = self.STOPPED
        duration = time.perf_counter() - self._started_at

        with LogTimer(logger, "Post-run analysis", run_id=self.run_id):
            athletes = [self._finalize(state) for _, state in sorted(self._athletes.items())]
            for state in self._athletes.values():
                state.feedback.narrator.stop()

        self.log.info(
            "Run stopped",
            frames_processed=self._frames_processed,
            athletes=len(athletes),
        )
        return RunResult(
            run_id=self.run_id,
            frames_processed=self._frames_processed,
            duration=duration,
            athletes=athletes,
        )

    def should_process_frame(self, frame_number: int) -> bool:
        """Camera frame throttling: analyze every ``frame_stride``-th frame"""
        return frame_number % self.frame_stride == 0

    # =========================================================================
    # Delivery
    # =========================================================================

    def process(self, poses: Sequence[DetectedPose], timestamp: float) -> Optional[FrameResult]:
        """Deliver poses for the current generation"""
        return self.deliver(PoseMessage(poses=poses, timestamp=timestamp, generation=self.generation))

    def deliver(self, message: PoseMessage) -> Optional[FrameResult]:
        """
        Analyze one frame's poses.

        Returns None when the message is stale, out of order or carries no
        usable pose; such frames leave the run untouched.
        """
        if not self.is_running or message.generation != self.generation:
            logger.debug(f"Discarding stale delivery (generation {message.generation}, current {self.generation})")
            return None
        if self._last_timestamp is not None and message.timestamp < self._last_timestamp:
            logger.debug(f"Discarding out-of-order frame at {message.timestamp:.3f}s")
            return None

        usable = [p for p in message.poses if p.visible_count >= self.min_keypoints]
        if not usable:
            return None

        if self.multi_person:
            assignments = self.tracker.update(usable)
            for idx in self.tracker.dropped:
                self.smoother.forget(idx)
        else:
            best = max(usable, key=lambda p: (p.visible_count, p.confidence))
            assignments = {0: best.with_athlete_index(0)}

        self._last_timestamp = message.timestamp
        self._frames_processed += 1
        result = FrameResult(timestamp=message.timestamp)

        for idx, pose in sorted(assignments.items()):
            snapshot, cues = self._analyze_athlete(idx, pose, message.timestamp)
            result.snapshots.append(snapshot)
            result.cues.extend(cues)

        return result

    def _analyze_athlete(self, idx: int, pose: DetectedPose, timestamp: float):
        state = self._athletes.get(idx)
        if state is None:
            state = _AthleteState(idx, self.calibration, self._new_feedback_engine())
            self._athletes[idx] = state

        if self.kalman_smoothing:
            pose = self.smoother.smooth(pose)

        detector = state.detector
        phase = detector.update(pose, timestamp)
        snapshot = self.services.calculator.compute_snapshot(
            pose,
            state.previous_pose,
            frame_index=len(state.snapshots),
            timestamp=timestamp,
            phase=phase,
            stride_frequency=detector.stride_frequency,
            ground_contact_time_ms=detector.ground_contact_time_ms or None,
        )
        state.snapshots.append(snapshot)
        state.previous_pose = pose
        cues = state.feedback.process_snapshot(snapshot)
        return snapshot, cues

    def _new_feedback_engine(self) -> RealtimeFeedbackEngine:
        return RealtimeFeedbackEngine(
            narrator=VoiceNarrator(speak=self._speak),
            voice_enabled=self.voice_feedback,
        )

    # =========================================================================
    # Live views
    # =========================================================================

    @property
    def athlete_indices(self) -> List[int]:
        return sorted(self._athletes)

    def snapshots(self, athlete_index: int = 0) -> List[BiomechanicsSnapshot]:
        state = self._athletes.get(athlete_index)
        return list(state.snapshots) if state else []

    def current_phase(self, athlete_index: int = 0) -> SprintPhase:
        state = self._athletes.get(athlete_index)
        return state.detector.current_phase if state else SprintPhase.UNKNOWN

    def active_cues(self, athlete_index: int = 0) -> List[CoachingCue]:
        state = self._athletes.get(athlete_index)
        return state.feedback.active_cues if state else []

    # =========================================================================
    # Post-run
    # =========================================================================

    def _finalize(self, state: _AthleteState) -> AthleteResult:
        svc = self.services
        detector = state.detector
        segments = detector.phase_segments
        curve = detector.build_velocity_curve()
        score = svc.scorer.score_run(state.snapshots, segments)

        return AthleteResult(
            athlete_index=state.athlete_index,
            score=score,
            segments=segments,
            snapshots=list(state.snapshots),
            velocity_curve=curve,
            risk_flags=svc.injury_detector.analyze(state.snapshots),
            recommendations=svc.recommender.generate(score, self.history),
            splits=svc.split_estimator.estimate_splits(curve, self.split_interval),
            velocity_stats=svc.split_estimator.velocity_stats(curve),
            step_count=detector.step_count,
            distance=detector.estimated_distance,
            max_velocity=detector.max_velocity,
        )
