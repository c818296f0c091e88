"""
Result Serialization
Plain-dict views of analysis results for the API and WebSocket responses.
"""

from typing import Any, Dict, List, Optional

from .models import (
    BiomechanicsSnapshot,
    BlockAngles,
    CoachingCue,
    FormScore,
    InjuryRiskFlag,
    NotComputed,
    SprintPhaseSegment,
    VelocityPoint,
)
from .session import AthleteResult, FrameResult, RunResult
from .split_times import SplitTime, VelocityStats


def computed_to_dict(value) -> Any:
    """Rounded value, or {"not_computed": reason} for an absent one"""
    if isinstance(value, NotComputed):
        return {"not_computed": value.reason.value}
    if isinstance(value, float):
        return round(value, 3)
    return value


def block_angles_to_dict(block) -> Any:
    if not isinstance(block, BlockAngles):
        return computed_to_dict(block)
    return {
        "rear_shin_angle": round(block.rear_shin_angle, 1),
        "front_shin_angle": round(block.front_shin_angle, 1),
        "rear_thigh_angle": round(block.rear_thigh_angle, 1),
        "front_thigh_angle": round(block.front_thigh_angle, 1),
        "hip_height": round(block.hip_height, 3),
        "torso_lean": round(block.torso_lean, 1),
        "weight_distribution": round(block.weight_distribution, 3),
    }


def snapshot_to_dict(snapshot: BiomechanicsSnapshot, include_keypoints: bool = False) -> Dict:
    a = snapshot.running_angles
    p = snapshot.posture
    data = {
        "timestamp": round(snapshot.timestamp, 3),
        "frame_index": snapshot.frame_index,
        "athlete_index": snapshot.athlete_index,
        "phase": snapshot.phase.value,
        "block_angles": block_angles_to_dict(snapshot.block_angles),
        "running_angles": {
            "knee_drive_angle": round(a.knee_drive_angle, 1),
            "trailing_leg_extension": round(a.trailing_leg_extension, 1),
            "arm_swing_forward": round(a.arm_swing_forward, 1),
            "arm_swing_back": round(a.arm_swing_back, 1),
            "foot_strike_angle": round(a.foot_strike_angle, 1),
            "hip_flexion_angle": round(a.hip_flexion_angle, 1),
            "torso_angle": round(a.torso_angle, 1),
            "left_knee_drive": round(a.left_knee_drive, 1),
            "right_knee_drive": round(a.right_knee_drive, 1),
            "knee_drive_symmetry": round(a.knee_drive_symmetry, 1),
            "arm_swing_symmetry": round(a.arm_swing_symmetry, 1),
        },
        "posture": {
            "head_alignment": round(p.head_alignment, 2),
            "shoulder_rotation": round(p.shoulder_rotation, 2),
            "hip_drop": round(p.hip_drop, 2),
            "hip_symmetry": round(p.hip_symmetry, 2),
            "spine_alignment": round(p.spine_alignment, 2),
            "overall_posture_score": round(p.overall_posture_score, 1),
        },
        "stride_length": computed_to_dict(snapshot.stride_length),
        "stride_frequency": computed_to_dict(snapshot.stride_frequency),
        "vertical_oscillation": computed_to_dict(snapshot.vertical_oscillation),
        "ground_contact_time_ms": computed_to_dict(snapshot.ground_contact_time_ms),
        "form_score": round(snapshot.form_score, 1),
        "form_quality": snapshot.form_quality.value,
        "confidence": round(snapshot.confidence, 3),
    }
    if include_keypoints:
        data["keypoints"] = [
            {"landmark": kp.landmark, "x": round(kp.x, 4), "y": round(kp.y, 4),
             "confidence": round(kp.confidence, 3), "visibility": round(kp.visibility, 3)}
            for kp in snapshot.keypoints
        ]
    return data


def segment_to_dict(segment: SprintPhaseSegment) -> Dict:
    return {
        "phase": segment.phase.value,
        "start_time": round(segment.start_time, 3),
        "end_time": round(segment.end_time, 3),
        "duration": round(segment.duration, 3),
        "start_distance": round(segment.start_distance, 2),
        "end_distance": round(segment.end_distance, 2),
        "average_velocity": round(segment.average_velocity, 2),
    }


def score_to_dict(score: FormScore) -> Dict:
    return {
        "overall": round(score.overall, 1),
        "grade": score.grade,
        "block_start": round(score.block_start, 2),
        "acceleration": round(score.acceleration, 2),
        "max_velocity": round(score.max_velocity, 2),
        "consistency": round(score.consistency, 2),
        "breakdown": [
            {
                "name": m.name,
                "score": round(m.score, 1),
                "weight": m.weight,
                "measured_value": round(m.measured_value, 2),
                "optimal_min": m.optimal_min,
                "optimal_max": m.optimal_max,
                "unit": m.unit,
                "feedback": m.feedback,
                "in_optimal_range": m.is_in_optimal_range,
            }
            for m in score.breakdown
        ],
    }


def flag_to_dict(flag: InjuryRiskFlag) -> Dict:
    return {
        "timestamp": round(flag.timestamp, 3),
        "severity": flag.severity.value,
        "body_part": flag.body_part,
        "issue": flag.issue,
        "description": flag.description,
        "recommendation": flag.recommendation,
    }


def cue_to_dict(cue: CoachingCue) -> Dict:
    data = {
        "priority": cue.priority.value,
        "category": cue.category.value,
        "issue": cue.issue,
        "recommendation": cue.recommendation,
        "voice_text": cue.voice_text,
        "drill_ids": list(cue.drill_ids),
        "improvement_weeks": cue.improvement_weeks,
        "trigger_condition": cue.trigger_condition,
    }
    if cue.rule_id is not None:
        data["rule_id"] = cue.rule_id
    if cue.timestamp is not None:
        data["timestamp"] = round(cue.timestamp, 3)
    return data


def velocity_point_to_dict(point: VelocityPoint) -> Dict:
    return {
        "distance": round(point.distance, 2),
        "velocity": round(point.velocity, 3),
        "timestamp": round(point.timestamp, 3),
    }


def split_to_dict(split: SplitTime) -> Dict:
    return {
        "label": split.label,
        "start_distance": split.start_distance,
        "end_distance": split.end_distance,
        "time": round(split.time, 3),
        "crossing_time": round(split.crossing_time, 3),
        "confidence": round(split.confidence, 3),
    }


def stats_to_dict(stats: Optional[VelocityStats]) -> Optional[Dict]:
    if stats is None:
        return None
    return {
        "max_velocity": round(stats.max_velocity, 2),
        "max_velocity_distance": round(stats.max_velocity_distance, 2),
        "max_velocity_time": round(stats.max_velocity_time, 3),
        "average_velocity": round(stats.average_velocity, 2),
        "time_to_max_velocity": round(stats.time_to_max_velocity, 3),
        "velocity_at_finish": round(stats.velocity_at_finish, 2),
        "acceleration_phase_length": round(stats.acceleration_phase_length, 2),
    }


def frame_result_to_dict(result: FrameResult) -> Dict:
    return {
        "timestamp": round(result.timestamp, 3),
        "snapshots": [snapshot_to_dict(s) for s in result.snapshots],
        "cues": [cue_to_dict(c) for c in result.cues],
    }


def athlete_result_to_dict(result: AthleteResult, include_snapshots: bool = True) -> Dict:
    data = {
        "athlete_index": result.athlete_index,
        "score": score_to_dict(result.score),
        "segments": [segment_to_dict(s) for s in result.segments],
        "velocity_curve": [velocity_point_to_dict(p) for p in result.velocity_curve],
        "risk_flags": [flag_to_dict(f) for f in result.risk_flags],
        "recommendations": [cue_to_dict(c) for c in result.recommendations],
        "splits": [split_to_dict(s) for s in result.splits],
        "velocity_stats": stats_to_dict(result.velocity_stats),
        "step_count": result.step_count,
        "distance": round(result.distance, 2),
        "max_velocity": round(result.max_velocity, 2),
        "snapshot_count": len(result.snapshots),
    }
    if include_snapshots:
        data["snapshots"] = [snapshot_to_dict(s) for s in result.snapshots]
    return data


def run_result_to_dict(result: RunResult, include_snapshots: bool = False) -> Dict:
    athletes: List[Dict] = [athlete_result_to_dict(a, include_snapshots) for a in result.athletes]
    primary = result.primary
    return {
        "run_id": result.run_id,
        "frames_processed": result.frames_processed,
        "duration_sec": round(result.duration, 3),
        "primary_athlete": primary.athlete_index if primary else None,
        "athletes": athletes,
    }
