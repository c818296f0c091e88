"""
Shared fixtures: synthetic poses and snapshots.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.models import (
    BiomechanicsSnapshot,
    DetectedPose,
    FormQuality,
    Keypoint,
    NotComputed,
    NotComputedReason,
    PoseLandmark as L,
    PostureMetrics,
    RunningAngles,
    SprintPhase,
)


def standing_points(x: float = 0.5, hip_y: float = 0.5, ankle_y: float = 0.9) -> dict:
    """Upright side-on athlete: every left/right pair stacked on the same x"""
    return {
        L.NOSE: (x, 0.15),
        L.LEFT_SHOULDER: (x, 0.25),
        L.RIGHT_SHOULDER: (x, 0.25),
        L.LEFT_ELBOW: (x, 0.35),
        L.RIGHT_ELBOW: (x, 0.35),
        L.LEFT_WRIST: (x + 0.05, 0.42),
        L.RIGHT_WRIST: (x + 0.05, 0.42),
        L.LEFT_HIP: (x, hip_y),
        L.RIGHT_HIP: (x, hip_y),
        L.LEFT_KNEE: (x, (hip_y + ankle_y) / 2),
        L.RIGHT_KNEE: (x, (hip_y + ankle_y) / 2),
        L.LEFT_ANKLE: (x, ankle_y),
        L.RIGHT_ANKLE: (x, ankle_y),
    }


def build_pose(points: dict, confidence: float = 0.9, visibility: float = 0.9, bounding_box=None) -> DetectedPose:
    keypoints = tuple(Keypoint(int(lm), x, y, confidence, visibility) for lm, (x, y) in points.items())
    if bounding_box is None:
        return DetectedPose(keypoints)
    return DetectedPose(keypoints, bounding_box)


def build_snapshot(
    timestamp: float = 0.0,
    phase: SprintPhase = SprintPhase.MAX_VELOCITY,
    knee: float = 100.0,
    left_knee: float = None,
    right_knee: float = None,
    torso: float = 84.0,
    foot_strike: float = 0.0,
    shoulder_rotation: float = 0.0,
    hip_drop: float = 0.0,
    block_angles=None,
    stride_length=None,
    stride_frequency=None,
    frame_index: int = 0,
) -> BiomechanicsSnapshot:
    return BiomechanicsSnapshot(
        timestamp=timestamp,
        frame_index=frame_index,
        phase=phase,
        keypoints=(),
        block_angles=block_angles or NotComputed(NotComputedReason.NOT_APPLICABLE_IN_PHASE),
        running_angles=RunningAngles(
            knee_drive_angle=knee,
            torso_angle=torso,
            foot_strike_angle=foot_strike,
            left_knee_drive=knee if left_knee is None else left_knee,
            right_knee_drive=knee if right_knee is None else right_knee,
        ),
        posture=PostureMetrics(shoulder_rotation=shoulder_rotation, hip_drop=hip_drop),
        stride_length=stride_length if stride_length is not None else NotComputed(NotComputedReason.NO_PREVIOUS_FRAME),
        stride_frequency=(
            stride_frequency if stride_frequency is not None
            else NotComputed(NotComputedReason.DEFERRED_TO_PHASE_DETECTOR)
        ),
        vertical_oscillation=NotComputed(NotComputedReason.NO_PREVIOUS_FRAME),
        ground_contact_time_ms=NotComputed(NotComputedReason.DEFERRED_TO_PHASE_DETECTOR),
        form_score=80.0,
        form_quality=FormQuality.EXCELLENT,
        confidence=0.9,
    )


def constant_speed_run(frames: int = 405, fps: float = 30.0, half_period: int = 28):
    """
    (timestamp, pose) pairs for an athlete whose hip sweeps back and forth
    across the frame at a constant per-frame displacement. Ankles never lift,
    so no steps are detected.
    """
    step = 0.8 / half_period
    run = []
    for k in range(frames):
        p = k % (2 * half_period)
        x = 0.1 + step * (p if p <= half_period else 2 * half_period - p)
        run.append((k / fps, build_pose(standing_points(x))))
    return run


@pytest.fixture
def make_pose():
    return build_pose


@pytest.fixture
def standing():
    return standing_points


@pytest.fixture
def make_snapshot():
    return build_snapshot


@pytest.fixture
def sprint_run():
    return constant_speed_run
