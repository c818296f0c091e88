"""
Biomechanics Calculator
Converts a smoothed pose (plus the previous pose) into a per-frame snapshot
of block angles, running angles, posture metrics and stride metrics.

Missing landmarks never raise: running angles and posture terms fall back
to 0 and block angles are reported as not computed.
"""

import logging
from typing import List, Optional

from .calibration import Calibration
from .form_classifier import FormQualityClassifier
from .geometry import joint_angle, line_tilt, midpoint, shin_angle, thigh_angle, vector_angle_from_vertical
from .models import (
    BiomechanicsSnapshot,
    BlockAngles,
    Computed,
    DetectedPose,
    NotComputed,
    NotComputedReason,
    PoseLandmark as L,
    PostureMetrics,
    RunningAngles,
    SprintPhase,
)

logger = logging.getLogger(__name__)

BLOCK_LANDMARKS = (
    L.LEFT_HIP, L.RIGHT_HIP,
    L.LEFT_KNEE, L.RIGHT_KNEE,
    L.LEFT_ANKLE, L.RIGHT_ANKLE,
    L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
)


class BiomechanicsCalculator:
    """
    Stateless per-frame transform.

    Orientation convention: the athlete runs toward +x in the image, so in the
    set position the leg whose knee has the larger x is the front leg.
    """

    def __init__(
        self,
        calibration: Optional[Calibration] = None,
        classifier: Optional[FormQualityClassifier] = None,
    ):
        self.calibration = calibration or Calibration()
        self.classifier = classifier or FormQualityClassifier()

    def compute_snapshot(
        self,
        pose: DetectedPose,
        previous_pose: Optional[DetectedPose],
        frame_index: int,
        timestamp: float,
        phase: SprintPhase,
        stride_frequency: Optional[float] = None,
        ground_contact_time_ms: Optional[float] = None,
    ) -> BiomechanicsSnapshot:
        """
        Build the snapshot for one frame.

        Args:
            pose: Smoothed pose for this frame
            previous_pose: Pose from the previous processed frame, if any
            frame_index: Processed-frame index within the run
            timestamp: Frame timestamp (seconds)
            phase: Phase classified for this frame
            stride_frequency: Multi-frame estimate from the phase detector
            ground_contact_time_ms: Multi-frame estimate from the phase detector
        """
        block = self.compute_block_angles(pose, phase)
        angles = self.compute_running_angles(pose)
        posture = self.compute_posture_metrics(pose)

        if previous_pose is not None:
            stride_length = self.estimate_stride_length(pose, previous_pose)
            vertical_osc = self.estimate_vertical_oscillation(pose, previous_pose)
        else:
            stride_length = NotComputed(NotComputedReason.NO_PREVIOUS_FRAME)
            vertical_osc = NotComputed(NotComputedReason.NO_PREVIOUS_FRAME)

        deferred = NotComputed(NotComputedReason.DEFERRED_TO_PHASE_DETECTOR)

        features = self.feature_vector(angles, posture, block)
        score, quality = self.classifier.classify(features)
        logger.debug(
            f"Frame {frame_index} @ {timestamp:.2f}s: {phase.value}, "
            f"knee drive {angles.knee_drive_angle:.0f}, torso {angles.torso_angle:.0f}, form {score:.0f}"
        )

        return BiomechanicsSnapshot(
            timestamp=timestamp,
            frame_index=frame_index,
            phase=phase,
            keypoints=pose.keypoints,
            block_angles=block,
            running_angles=angles,
            posture=posture,
            stride_length=stride_length,
            stride_frequency=stride_frequency if stride_frequency is not None else deferred,
            vertical_oscillation=vertical_osc,
            ground_contact_time_ms=ground_contact_time_ms if ground_contact_time_ms is not None else deferred,
            form_score=score,
            form_quality=quality,
            confidence=pose.confidence,
            athlete_index=pose.athlete_index,
        )

    # =========================================================================
    # Block start
    # =========================================================================

    def compute_block_angles(self, pose: DetectedPose, phase: SprintPhase) -> Computed[BlockAngles]:
        if not phase.is_block:
            return NotComputed(NotComputedReason.NOT_APPLICABLE_IN_PHASE)
        if not pose.all_visible(*BLOCK_LANDMARKS):
            return NotComputed(NotComputedReason.LANDMARKS_MISSING)

        p = pose.position
        left_hip, right_hip = p(L.LEFT_HIP), p(L.RIGHT_HIP)
        left_knee, right_knee = p(L.LEFT_KNEE), p(L.RIGHT_KNEE)
        left_ankle, right_ankle = p(L.LEFT_ANKLE), p(L.RIGHT_ANKLE)
        hip_center = midpoint(left_hip, right_hip)
        shoulder_center = midpoint(p(L.LEFT_SHOULDER), p(L.RIGHT_SHOULDER))

        if left_knee[0] > right_knee[0]:
            front = (left_hip, left_knee, left_ankle)
            rear = (right_hip, right_knee, right_ankle)
        else:
            front = (right_hip, right_knee, right_ankle)
            rear = (left_hip, left_knee, left_ankle)

        torso_length = abs(shoulder_center[1] - hip_center[1])
        hip_from_ground = 1.0 - hip_center[1]
        hip_height = hip_from_ground / (torso_length * 2) if torso_length > 0 else 0.6

        block_width = abs(front[2][0] - rear[2][0])
        weight = abs(hip_center[0] - rear[2][0]) / block_width if block_width > 0 else 0.5

        return BlockAngles(
            rear_shin_angle=shin_angle(rear[1], rear[2]),
            front_shin_angle=shin_angle(front[1], front[2]),
            rear_thigh_angle=thigh_angle(rear[0], rear[1]),
            front_thigh_angle=thigh_angle(front[0], front[1]),
            hip_height=hip_height,
            torso_lean=vector_angle_from_vertical(hip_center, shoulder_center),
            weight_distribution=weight,
        )

    # =========================================================================
    # Running angles
    # =========================================================================

    def compute_running_angles(self, pose: DetectedPose) -> RunningAngles:
        p = pose.position
        ls, rs = p(L.LEFT_SHOULDER), p(L.RIGHT_SHOULDER)
        le, re = p(L.LEFT_ELBOW), p(L.RIGHT_ELBOW)
        lw, rw = p(L.LEFT_WRIST), p(L.RIGHT_WRIST)
        lh, rh = p(L.LEFT_HIP), p(L.RIGHT_HIP)
        lk, rk = p(L.LEFT_KNEE), p(L.RIGHT_KNEE)
        la, ra = p(L.LEFT_ANKLE), p(L.RIGHT_ANKLE)

        left_knee = _angle_or_zero(lh, lk, la)
        right_knee = _angle_or_zero(rh, rk, ra)
        # Leading leg shows the greater angle; the other is the trailing leg
        if left_knee < right_knee:
            trailing = _angle_or_zero(lh, lk, la)
        else:
            trailing = _angle_or_zero(rh, rk, ra)

        left_arm = _angle_or_zero(ls, le, lw)
        right_arm = _angle_or_zero(rs, re, rw)

        hip_flexion = _angle_or_zero(ls, lh, lk)
        if hip_flexion == 0:
            hip_flexion = _angle_or_zero(rs, rh, rk)

        torso = 0.0
        if ls and rs and lh and rh:
            torso = vector_angle_from_vertical(midpoint(lh, rh), midpoint(ls, rs))

        foot_strike = 0.0
        if lk and la:
            foot_strike = shin_angle(lk, la) - 90
        elif rk and ra:
            foot_strike = shin_angle(rk, ra) - 90

        return RunningAngles(
            knee_drive_angle=max(left_knee, right_knee),
            trailing_leg_extension=trailing,
            arm_swing_forward=max(left_arm, right_arm),
            arm_swing_back=min(left_arm, right_arm),
            foot_strike_angle=foot_strike,
            hip_flexion_angle=hip_flexion,
            torso_angle=torso,
            left_knee_drive=left_knee,
            right_knee_drive=right_knee,
            left_arm_swing=left_arm,
            right_arm_swing=right_arm,
        )

    # =========================================================================
    # Posture
    # =========================================================================

    def compute_posture_metrics(self, pose: DetectedPose) -> PostureMetrics:
        p = pose.position
        nose = p(L.NOSE)
        ls, rs = p(L.LEFT_SHOULDER), p(L.RIGHT_SHOULDER)
        lh, rh = p(L.LEFT_HIP), p(L.RIGHT_HIP)

        head = 0.0
        shoulder_rotation = 0.0
        if ls and rs:
            shoulder_mid = midpoint(ls, rs)
            shoulder_rotation = line_tilt(ls, rs)
            if nose:
                head = abs(nose[0] - shoulder_mid[0]) * 100

        hip_drop = 0.0
        hip_symmetry = 0.0
        if lh and rh:
            hip_drop = line_tilt(lh, rh)
            hip_symmetry = abs(lh[1] - rh[1]) * 100

        spine = 0.0
        if ls and rs and lh and rh:
            spine = abs(midpoint(ls, rs)[0] - midpoint(lh, rh)[0]) * 100

        return PostureMetrics(
            head_alignment=head,
            shoulder_rotation=shoulder_rotation,
            hip_drop=hip_drop,
            hip_symmetry=hip_symmetry,
            spine_alignment=spine,
        )

    # =========================================================================
    # Stride metrics (two consecutive frames)
    # =========================================================================

    def estimate_stride_length(self, current: DetectedPose, previous: DetectedPose) -> Computed[float]:
        """Ankle displacement between frames, in meters"""
        curr = current.position(L.LEFT_ANKLE) or current.position(L.RIGHT_ANKLE)
        prev = previous.position(L.LEFT_ANKLE) or previous.position(L.RIGHT_ANKLE)
        if curr is None or prev is None:
            return NotComputed(NotComputedReason.LANDMARKS_MISSING)
        return self.calibration.meters(curr[0] - prev[0], curr[1] - prev[1])

    def estimate_vertical_oscillation(self, current: DetectedPose, previous: DetectedPose) -> Computed[float]:
        """Vertical hip displacement between frames, in centimeters"""
        curr = current.position(L.LEFT_HIP) or current.position(L.RIGHT_HIP)
        prev = previous.position(L.LEFT_HIP) or previous.position(L.RIGHT_HIP)
        if curr is None or prev is None:
            return NotComputed(NotComputedReason.LANDMARKS_MISSING)
        return self.calibration.vertical_meters(curr[1] - prev[1]) * 100

    # =========================================================================
    # Classifier input
    # =========================================================================

    @staticmethod
    def feature_vector(
        angles: RunningAngles,
        posture: PostureMetrics,
        block: Computed[BlockAngles],
    ) -> List[float]:
        """12 running/posture features, plus 3 block features when present"""
        features = [
            angles.knee_drive_angle,
            angles.torso_angle,
            angles.arm_swing_forward,
            angles.foot_strike_angle,
            angles.knee_drive_symmetry,
            angles.arm_swing_symmetry,
            angles.trailing_leg_extension,
            angles.hip_flexion_angle,
            posture.head_alignment,
            posture.shoulder_rotation,
            posture.hip_drop,
            posture.hip_symmetry,
        ]
        if isinstance(block, BlockAngles):
            features.extend([block.rear_shin_angle, block.front_shin_angle, block.torso_lean])
        return features


def _angle_or_zero(a, vertex, b) -> float:
    if a is None or vertex is None or b is None:
        return 0.0
    return joint_angle(a, vertex, b)
