"""
Sprint Phase Detector
Tracks per-run kinematics (steps, velocity, distance, stride rate) from the pose
stream and classifies the current sprint phase.

Phase is recomputed from continuous signals on every update, so transitions
are implicit. The threshold table lives in classify_phase() and can be tested
on its own.

Known limitations, kept on purpose:
- Phases gate on absolute distance, so a bad pixels-per-meter calibration
  produces wrong phases without any error.
- MAX_VELOCITY needs the current velocity within 93% of the run's peak; a slow
  monotonic build-up can stay in ACCELERATION until 65 m.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

from .calibration import Calibration
from .models import DetectedPose, Point, PoseLandmark as L, SprintPhase, SprintPhaseSegment, VelocityPoint
from config import get_thresholds
from config.thresholds import PhaseConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseInputs:
    """Signals the phase table is evaluated against"""
    distance: float
    velocity: float
    step_count: int
    peak_velocity: float
    crouched: bool = False


@dataclass(frozen=True)
class PhaseKinematics:
    """Read-only view of the detector's running state"""
    phase: SprintPhase
    step_count: int
    distance: float
    velocity: float
    peak_velocity: float
    stride_frequency: float
    ground_contact_time_ms: float


def classify_phase(inputs: PhaseInputs, config: Optional[PhaseConfig] = None) -> SprintPhase:
    """
    Map kinematic signals to a phase. Rules are checked in order; first match wins.
    """
    cfg = config or get_thresholds().phase

    if inputs.velocity < cfg.block_set_max_velocity and inputs.step_count == 0:
        return SprintPhase.BLOCK_SET if inputs.crouched else SprintPhase.UNKNOWN

    if inputs.step_count <= cfg.block_start_max_steps and inputs.distance < cfg.block_start_max_distance:
        return SprintPhase.BLOCK_START

    if inputs.distance < cfg.drive_max_distance and inputs.step_count <= cfg.drive_max_steps:
        return SprintPhase.DRIVE_PHASE

    if inputs.distance < cfg.acceleration_max_distance:
        return SprintPhase.ACCELERATION

    if inputs.distance < cfg.max_velocity_max_distance:
        if inputs.velocity >= inputs.peak_velocity * cfg.max_velocity_peak_ratio:
            return SprintPhase.MAX_VELOCITY
        return SprintPhase.ACCELERATION

    if inputs.distance < cfg.speed_endurance_max_distance:
        return SprintPhase.SPEED_ENDURANCE

    return SprintPhase.DECELERATION


class MovingAverage:
    """Mean of the last N samples"""

    def __init__(self, window: int = 5):
        self.window = window
        self._buffer: Deque[float] = deque(maxlen=window)

    def update(self, value: float) -> float:
        self._buffer.append(value)
        return sum(self._buffer) / len(self._buffer)

    def reset(self):
        self._buffer.clear()


class _FootTrack:
    """Rolling ankle-height history and ground contact timing for one foot"""

    def __init__(self, window_sec: float, ground_tolerance: float):
        self.window_sec = window_sec
        self.ground_tolerance = ground_tolerance
        self.samples: Deque[Tuple[float, float]] = deque()  # (timestamp, y)
        self.contact_start: Optional[float] = None
        self.last_contact_ms = 0.0

    def add(self, timestamp: float, y: float):
        self.samples.append((timestamp, y))
        while self.samples and timestamp - self.samples[0][0] >= self.window_sec:
            self.samples.popleft()

        # Lowest point in the window approximates the ground line (y grows downward)
        ground_y = max(s[1] for s in self.samples)
        grounded = y >= ground_y - self.ground_tolerance
        if grounded and self.contact_start is None:
            self.contact_start = timestamp
        elif not grounded and self.contact_start is not None:
            self.last_contact_ms = (timestamp - self.contact_start) * 1000
            self.contact_start = None

    def peaks(self, scan: int, slope: float) -> List[float]:
        """Timestamps of ankle-height peaks among the most recent samples"""
        recent = list(self.samples)[-scan:]
        found = []
        for i in range(1, len(recent) - 1):
            dy1 = recent[i][1] - recent[i - 1][1]
            dy2 = recent[i + 1][1] - recent[i][1]
            if dy1 < -slope and dy2 > slope:
                found.append(recent[i][0])
        return found


class SprintPhaseDetector:
    """
    Stateful per-run phase classifier.

    Construct one per run (or call reset() between runs). Updates must arrive
    in non-decreasing timestamp order from a single owner.
    """

    def __init__(self, calibration: Optional[Calibration] = None, config: Optional[PhaseConfig] = None):
        self.calibration = calibration or Calibration()
        self.config = config or get_thresholds().phase
        self.reset()

    def reset(self):
        """Clear every buffer and counter so the next run starts fresh"""
        cfg = self.config
        self._pose_history: Deque[Tuple[float, DetectedPose]] = deque(maxlen=cfg.history_capacity)
        self._hip_track: Deque[Tuple[float, Optional[Point]]] = deque(maxlen=cfg.hip_track_capacity)
        self._feet = {
            "left": _FootTrack(cfg.ankle_window_sec, cfg.ground_tolerance),
            "right": _FootTrack(cfg.ankle_window_sec, cfg.ground_tolerance),
        }
        self._velocity_filter = MovingAverage(cfg.velocity_window)
        self._step_times: Deque[float] = deque()
        self._last_step_time = float("-inf")

        self.step_count = 0
        self.estimated_distance = 0.0
        self.current_velocity = 0.0
        self.max_velocity = 0.0
        self.stride_frequency = 0.0
        self.ground_contact_time_ms = 0.0
        self.current_phase = SprintPhase.UNKNOWN

        self._segments: List[SprintPhaseSegment] = []
        self._segment_phase: Optional[SprintPhase] = None
        self._segment_start = 0.0
        self._segment_velocities: List[float] = []
        self._last_timestamp: Optional[float] = None

    # =========================================================================
    # Main update
    # =========================================================================

    def update(self, pose: DetectedPose, timestamp: float) -> SprintPhase:
        """
        Feed one smoothed pose and return the phase for this frame.
        """
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            logger.warning(
                f"Out-of-order pose at {timestamp:.3f}s (last {self._last_timestamp:.3f}s), ignored"
            )
            return self.current_phase

        self._pose_history.append((timestamp, pose))
        self._update_feet(pose, timestamp)
        self._update_steps()
        self._update_velocity(pose, timestamp)
        self._update_stride_frequency(timestamp)

        phase = classify_phase(
            PhaseInputs(
                distance=self.estimated_distance,
                velocity=self.current_velocity,
                step_count=self.step_count,
                peak_velocity=self.max_velocity,
                crouched=self._is_crouched(pose),
            ),
            self.config,
        )
        self._track_segment(phase, timestamp)

        if phase != self.current_phase:
            logger.debug(
                f"Phase {self.current_phase.value} -> {phase.value} at {timestamp:.2f}s "
                f"({self.estimated_distance:.1f}m, {self.current_velocity:.2f}m/s, {self.step_count} steps)"
            )
        self.current_phase = phase
        self._last_timestamp = timestamp
        return phase

    @property
    def kinematics(self) -> PhaseKinematics:
        return PhaseKinematics(
            phase=self.current_phase,
            step_count=self.step_count,
            distance=self.estimated_distance,
            velocity=self.current_velocity,
            peak_velocity=self.max_velocity,
            stride_frequency=self.stride_frequency,
            ground_contact_time_ms=self.ground_contact_time_ms,
        )

    # =========================================================================
    # Signals
    # =========================================================================

    def _update_feet(self, pose: DetectedPose, timestamp: float):
        for side, landmark in (("left", L.LEFT_ANKLE), ("right", L.RIGHT_ANKLE)):
            ankle = pose.position(landmark)
            if ankle is not None:
                self._feet[side].add(timestamp, ankle[1])
        contacts = [f.last_contact_ms for f in self._feet.values() if f.last_contact_ms > 0]
        if contacts:
            self.ground_contact_time_ms = contacts[-1] if len(contacts) == 1 else sum(contacts) / len(contacts)

    def _update_steps(self):
        cfg = self.config
        peaks = []
        for foot in self._feet.values():
            if len(foot.samples) >= 3:
                peaks.extend(foot.peaks(cfg.step_scan_samples, cfg.step_slope_threshold))

        for t in sorted(peaks):
            if t - self._last_step_time > cfg.min_step_interval_sec:
                self.step_count += 1
                self._last_step_time = t
                self._step_times.append(t)

    def _update_velocity(self, pose: DetectedPose, timestamp: float):
        hip = pose.position(L.LEFT_HIP) or pose.position(L.RIGHT_HIP)
        previous = self._hip_track[-1] if self._hip_track else None
        self._hip_track.append((timestamp, hip))

        if previous is None or previous[1] is None or hip is None:
            return
        dt = timestamp - previous[0]
        if dt <= 0:
            return

        raw = self.calibration.meters(hip[0] - previous[1][0], hip[1] - previous[1][1]) / dt
        velocity = self._velocity_filter.update(raw)
        self.current_velocity = velocity
        self.max_velocity = max(self.max_velocity, velocity)
        self.estimated_distance += velocity * dt

    def _update_stride_frequency(self, timestamp: float):
        window = self.config.ankle_window_sec
        while self._step_times and timestamp - self._step_times[0] >= window:
            self._step_times.popleft()
        self.stride_frequency = len(self._step_times) / window

    def _is_crouched(self, pose: DetectedPose) -> bool:
        hip = pose.position(L.LEFT_HIP) or pose.position(L.RIGHT_HIP)
        ankle = pose.position(L.LEFT_ANKLE) or pose.position(L.RIGHT_ANKLE)
        if hip is None or ankle is None or ankle[1] <= 0:
            return False
        ratio = hip[1] / ankle[1]
        return self.config.crouch_ratio_min < ratio < self.config.crouch_ratio_max

    # =========================================================================
    # Segments
    # =========================================================================

    def _track_segment(self, phase: SprintPhase, timestamp: float):
        if self._segment_phase is None:
            self._segment_phase = phase
            self._segment_start = timestamp
        elif phase != self._segment_phase:
            self._segments.append(self._close_segment(timestamp))
            self._segment_phase = phase
            self._segment_start = timestamp
            self._segment_velocities = []
        self._segment_velocities.append(self.current_velocity)

    def _close_segment(self, end_time: float) -> SprintPhaseSegment:
        if self._segment_velocities:
            avg_velocity = sum(self._segment_velocities) / len(self._segment_velocities)
        else:
            avg_velocity = self.current_velocity
        duration = end_time - self._segment_start
        return SprintPhaseSegment(
            phase=self._segment_phase,
            start_time=self._segment_start,
            end_time=end_time,
            start_distance=max(0.0, self.estimated_distance - avg_velocity * duration),
            end_distance=self.estimated_distance,
            average_velocity=avg_velocity,
        )

    @property
    def phase_segments(self) -> List[SprintPhaseSegment]:
        """
        Contiguous segments covering [first update, last update].
        The open segment is closed at the latest timestamp.
        """
        segments = list(self._segments)
        if self._segment_phase is None:
            return segments
        last = self._last_timestamp
        if last > self._segment_start or not segments:
            segments.append(self._close_segment(last))
        return segments

    # =========================================================================
    # Velocity curve
    # =========================================================================

    def build_velocity_curve(self) -> List[VelocityPoint]:
        """
        Re-integrate hip displacement over the run (the last
        ``hip_track_capacity`` frames).
        Independent of the live distance estimate.
        """
        points: List[VelocityPoint] = []
        smoother = MovingAverage(self.config.velocity_window)
        running = 0.0

        track = list(self._hip_track)
        for (t0, hip0), (t1, hip1) in zip(track, track[1:]):
            if hip0 is None or hip1 is None:
                continue
            dt = t1 - t0
            if dt <= 0:
                continue
            raw = self.calibration.meters(hip1[0] - hip0[0], hip1[1] - hip0[1]) / dt
            velocity = smoother.update(raw)
            running += velocity * dt
            points.append(VelocityPoint(distance=running, velocity=velocity, timestamp=t1))

        return points

    @property
    def recent_poses(self) -> List[DetectedPose]:
        """Poses in the rolling history window, oldest first"""
        return [pose for _, pose in self._pose_history]
