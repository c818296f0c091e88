"""
Form Scoring Engine
Composite 0-100 post-run form score: four 25-point sub-scores (block start,
acceleration, max velocity, consistency) plus a per-metric breakdown.

A phase with no snapshots scores the neutral 12.5 instead of 0, so a clip that
starts mid-run is not punished for the part it never saw.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .models import (
    BiomechanicsSnapshot,
    BlockAngles,
    FormScore,
    MetricScore,
    SprintPhase,
    SprintPhaseSegment,
    is_computed,
)
from config import get_thresholds
from config.thresholds import ScoringConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Shared helpers
# =============================================================================

def range_score(value: float, lo: float, hi: float, tolerance: float) -> float:
    """
    1.0 inside [lo, hi], falling linearly to 0 at ``tolerance`` outside it.
    """
    if lo <= value <= hi:
        return 1.0
    deviation = lo - value if value < lo else value - hi
    if tolerance <= 0:
        return 0.0
    return max(0.0, 1.0 - deviation / tolerance)


def assess_progression(values: Sequence[float], should_increase: bool = True) -> float:
    """
    0-1 score for whether a series trends the right way.
    Compares the mean of the first half to the mean of the last half;
    fewer than 3 values is neutral.
    """
    if len(values) < 3:
        return 0.5
    half = len(values) // 2
    diff = _mean(values[-half:]) - _mean(values[:half])
    if not should_increase:
        diff = -diff
    return max(0.0, min(1.0, 0.5 + diff / 20.0))


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def _sample_std(values: Sequence[float]) -> float:
    return float(np.std(values, ddof=1)) if len(values) > 1 else 0.0


# =============================================================================
# Engine
# =============================================================================

class FormScoringEngine:
    """Scores a finished run from its snapshots"""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or get_thresholds().scoring

    def score_run(
        self,
        snapshots: Sequence[BiomechanicsSnapshot],
        phases: Sequence[SprintPhaseSegment] = (),
    ) -> FormScore:
        """
        Score a run.

        Args:
            snapshots: Snapshots in timestamp order
            phases: Phase segments of the run (informational)

        Returns:
            FormScore; all zeros for an empty run
        """
        if not snapshots:
            return FormScore()

        block = [s for s in snapshots if s.phase.is_block]
        acceleration = [
            s for s in snapshots
            if s.phase in (SprintPhase.ACCELERATION, SprintPhase.DRIVE_PHASE)
        ]
        max_velocity = [s for s in snapshots if s.phase == SprintPhase.MAX_VELOCITY]
        running = [s for s in snapshots if s.phase != SprintPhase.BLOCK_SET]

        block_score = self.score_block_phase(block)
        accel_score = self.score_acceleration_phase(acceleration)
        max_vel_score = self.score_max_velocity_phase(max_velocity)
        consistency_score = self.score_consistency(running)

        overall = min(100.0, block_score + accel_score + max_vel_score + consistency_score)
        logger.info(
            f"Scored run of {len(snapshots)} snapshots ({len(phases)} phases): {overall:.1f} "
            f"[block {block_score:.1f}, accel {accel_score:.1f}, "
            f"max vel {max_vel_score:.1f}, consistency {consistency_score:.1f}]"
        )

        return FormScore(
            overall=overall,
            block_start=block_score,
            acceleration=accel_score,
            max_velocity=max_vel_score,
            consistency=consistency_score,
            breakdown=self._build_breakdown(
                snapshots, block_score, accel_score, max_vel_score, consistency_score
            ),
        )

    # =========================================================================
    # Sub-scores (25 pts each)
    # =========================================================================

    def score_block_phase(self, snapshots: Sequence[BiomechanicsSnapshot]) -> float:
        cfg = self.config
        angles: List[BlockAngles] = [s.block_angles for s in snapshots if is_computed(s.block_angles)]
        if not angles:
            return cfg.neutral_sub_score

        score = 0.0
        score += 8.0 * range_score(
            _mean([a.rear_shin_angle for a in angles]), *cfg.rear_shin_range, cfg.rear_shin_tolerance
        )
        score += 7.0 * range_score(
            _mean([a.front_shin_angle for a in angles]), *cfg.front_shin_range, cfg.front_shin_tolerance
        )
        score += 5.0 * range_score(
            _mean([a.hip_height for a in angles]), *cfg.hip_height_range, cfg.hip_height_tolerance
        )
        score += 5.0 * range_score(
            _mean([a.torso_lean for a in angles]), *cfg.block_torso_range, cfg.block_torso_tolerance
        )
        return min(cfg.max_sub_score, score)

    def score_acceleration_phase(self, snapshots: Sequence[BiomechanicsSnapshot]) -> float:
        cfg = self.config
        if not snapshots:
            return cfg.neutral_sub_score

        score = 0.0

        # Lean: torso should rise toward upright; an athlete already upright gets full credit
        torso = [s.running_angles.torso_angle for s in snapshots]
        late_torso = torso[len(torso) // 2:]
        lean = max(
            assess_progression(torso, should_increase=True),
            range_score(_mean(late_torso), *cfg.upright_torso_range, cfg.upright_torso_tolerance),
        )
        score += 8.0 * lean

        knee = _mean([s.running_angles.knee_drive_angle for s in snapshots])
        score += 8.0 * range_score(knee, *cfg.acceleration_knee_range, cfg.knee_tolerance)

        rotation = _mean([s.posture.shoulder_rotation for s in snapshots])
        score += 5.0 * max(0.0, 1 - rotation / cfg.max_shoulder_rotation)

        strides = [s.stride_length for s in snapshots if is_computed(s.stride_length)]
        score += 4.0 * (assess_progression(strides, should_increase=True) if strides else 0.5)

        return min(cfg.max_sub_score, score)

    def score_max_velocity_phase(self, snapshots: Sequence[BiomechanicsSnapshot]) -> float:
        cfg = self.config
        if not snapshots:
            return cfg.neutral_sub_score

        score = 0.0
        torso = _mean([s.running_angles.torso_angle for s in snapshots])
        score += 7.0 * range_score(torso, *cfg.max_velocity_torso_range, cfg.max_velocity_torso_tolerance)

        knee = _mean([s.running_angles.knee_drive_angle for s in snapshots])
        score += 8.0 * range_score(knee, *cfg.max_velocity_knee_range, cfg.knee_tolerance)

        asymmetry = _mean([s.running_angles.knee_drive_symmetry for s in snapshots])
        score += 6.0 * max(0.0, 1 - asymmetry / cfg.max_asymmetry)

        foot = _mean([s.running_angles.foot_strike_angle for s in snapshots])
        score += 4.0 * range_score(foot, *cfg.foot_strike_range, cfg.foot_strike_tolerance)

        return min(cfg.max_sub_score, score)

    def score_consistency(self, snapshots: Sequence[BiomechanicsSnapshot]) -> float:
        """Form held from the first third of the run to the last third"""
        cfg = self.config
        if len(snapshots) < cfg.min_consistency_snapshots:
            return cfg.neutral_sub_score

        third = len(snapshots) // 3
        first_knee = _mean([s.running_angles.knee_drive_angle for s in snapshots[:third]])
        last_knee = _mean([s.running_angles.knee_drive_angle for s in snapshots[-third:]])
        drop = abs(first_knee - last_knee) / first_knee if first_knee > 0 else 0.0

        score = 10.0 * max(0.0, 1 - drop / cfg.knee_drop_zero_at)

        symmetry = [s.running_angles.knee_drive_symmetry for s in snapshots]
        score += 8.0 * max(0.0, 1 - (_mean(symmetry) + _sample_std(symmetry)) / cfg.max_asymmetry)

        torso = [s.running_angles.torso_angle for s in snapshots]
        score += 7.0 * max(0.0, 1 - _sample_std(torso) / cfg.max_torso_deviation)

        return min(cfg.max_sub_score, score)

    # =========================================================================
    # Breakdown
    # =========================================================================

    def _build_breakdown(
        self,
        snapshots: Sequence[BiomechanicsSnapshot],
        block_score: float,
        accel_score: float,
        max_vel_score: float,
        consistency_score: float,
    ) -> List[MetricScore]:
        cfg = self.config
        target = cfg.phase_target_points
        top = cfg.max_sub_score

        phase_entries = [
            ("Block Start", block_score,
             "Excellent block position", "Work on shin angles and hip height"),
            ("Acceleration", accel_score,
             "Strong acceleration phase", "Focus on forward lean and knee drive"),
            ("Max Velocity", max_vel_score,
             "Excellent top-end form", "Improve posture and turnover"),
            ("Consistency", consistency_score,
             "Form held throughout", "Form breaking down late in run"),
        ]
        metrics = [
            MetricScore(
                name=name,
                score=value / top * 100,
                weight=1.0,
                measured_value=value,
                optimal_min=target,
                optimal_max=top,
                unit="pts",
                feedback=good if value >= target else bad,
            )
            for name, value, good, bad in phase_entries
        ]

        knee_lo, knee_hi = cfg.acceleration_knee_range
        knee = _mean([s.running_angles.knee_drive_angle for s in snapshots])
        metrics.append(MetricScore(
            name="Knee Drive",
            score=range_score(knee, knee_lo, knee_hi, cfg.knee_tolerance) * 100,
            weight=2.0,
            measured_value=knee,
            optimal_min=knee_lo,
            optimal_max=knee_hi,
            unit="°",
            feedback="Good knee drive height" if knee >= knee_lo else "Drive your knees higher",
        ))

        asymmetry = _mean([s.running_angles.knee_drive_symmetry for s in snapshots])
        metrics.append(MetricScore(
            name="Symmetry",
            score=max(0.0, 1 - asymmetry / cfg.max_asymmetry) * 100,
            weight=1.5,
            measured_value=asymmetry,
            optimal_min=0.0,
            optimal_max=cfg.symmetry_optimal_max,
            unit="°",
            feedback=(
                "Good bilateral symmetry" if asymmetry <= cfg.symmetry_optimal_max
                else "Left/right imbalance detected"
            ),
        ))
        return metrics
