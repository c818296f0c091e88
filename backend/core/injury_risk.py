"""
Injury Risk Detection
Post-run screening for movement patterns associated with injury:
asymmetry, overstriding, trunk rotation, fatigue breakdown and hip drop.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .models import BiomechanicsSnapshot, InjuryRiskFlag, RiskSeverity, SprintPhase
from config import get_thresholds
from config.thresholds import InjuryConfig

logger = logging.getLogger(__name__)


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


class InjuryRiskDetector:
    """Runs each check independently; every check emits at most one flag."""

    def __init__(self, config: Optional[InjuryConfig] = None):
        self.config = config or get_thresholds().injury

    def analyze(self, snapshots: Sequence[BiomechanicsSnapshot]) -> List[InjuryRiskFlag]:
        """
        Screen a finished run.

        Returns:
            Flags sorted high severity first; empty for an empty run
        """
        if not snapshots:
            return []

        timestamp = snapshots[-1].timestamp
        flags: List[InjuryRiskFlag] = []
        for check in (
            self.detect_asymmetry,
            self.detect_overstriding,
            self.detect_excessive_rotation,
            self.detect_fatigue,
            self.detect_hip_drop,
        ):
            flag = check(snapshots, timestamp)
            if flag is not None:
                flags.append(flag)

        flags.sort(key=lambda f: f.severity.rank, reverse=True)
        if flags:
            logger.info(
                f"{len(flags)} injury risk flag(s): "
                + ", ".join(f"{f.body_part} ({f.severity.value})" for f in flags)
            )
        return flags

    def detect_asymmetry(self, snapshots, timestamp: float) -> Optional[InjuryRiskFlag]:
        cfg = self.config
        asymmetry = _mean([s.running_angles.knee_drive_symmetry for s in snapshots])
        if asymmetry <= cfg.asymmetry_flag:
            return None

        left = _mean([s.running_angles.left_knee_drive for s in snapshots])
        right = _mean([s.running_angles.right_knee_drive for s in snapshots])
        weaker, stronger = ("left", "right") if left < right else ("right", "left")

        return InjuryRiskFlag(
            timestamp=timestamp,
            severity=RiskSeverity.HIGH if asymmetry > cfg.asymmetry_high else RiskSeverity.MEDIUM,
            body_part="Knees / Hips",
            issue=f"Bilateral Asymmetry ({asymmetry:.1f}° difference)",
            description=(
                f"The {weaker} leg shows significantly lower knee drive than the {stronger}, "
                "indicating a strength or mobility imbalance."
            ),
            recommendation=(
                "Unilateral strength work (single-leg squats, SL RDLs). "
                "Consider physio assessment if persistent."
            ),
        )

    def detect_overstriding(self, snapshots, timestamp: float) -> Optional[InjuryRiskFlag]:
        """Foot strike angle as a proxy for landing ahead of the center of mass"""
        cfg = self.config
        strikes = [
            s.running_angles.foot_strike_angle for s in snapshots
            if s.phase in (SprintPhase.MAX_VELOCITY, SprintPhase.SPEED_ENDURANCE)
        ]
        if not strikes:
            return None
        strike = _mean(strikes)
        if strike <= cfg.overstride_flag:
            return None

        return InjuryRiskFlag(
            timestamp=timestamp,
            severity=RiskSeverity.HIGH if strike > cfg.overstride_high else RiskSeverity.MEDIUM,
            body_part="Ankles / Hamstrings",
            issue=f"Overstriding Detected ({strike:.0f}° foot strike angle)",
            description=(
                "Foot is landing too far in front of the body's center of mass, "
                "creating a braking force and increasing hamstring strain risk."
            ),
            recommendation=(
                "Focus on landing under the hips. Use wicket runs to shorten ground contact. "
                "Strengthen hip flexors."
            ),
        )

    def detect_excessive_rotation(self, snapshots, timestamp: float) -> Optional[InjuryRiskFlag]:
        cfg = self.config
        rotation = _mean([s.posture.shoulder_rotation for s in snapshots])
        if rotation <= cfg.rotation_flag:
            return None

        return InjuryRiskFlag(
            timestamp=timestamp,
            severity=RiskSeverity.HIGH if rotation > cfg.rotation_high else RiskSeverity.MEDIUM,
            body_part="Lower Back / Core",
            issue=f"Excessive Trunk Rotation ({rotation:.0f}°)",
            description=(
                "Shoulders are rotating excessively across the body, indicating poor core "
                "stability and increasing lumbar spine stress."
            ),
            recommendation=(
                "Arm swing drills and seated arm mechanics. "
                "Core stability exercises (Pallof press, anti-rotation holds)."
            ),
        )

    def detect_fatigue(self, snapshots, timestamp: float) -> Optional[InjuryRiskFlag]:
        """Knee drive drop from the first quarter of the run to the last"""
        cfg = self.config
        if len(snapshots) < cfg.fatigue_min_snapshots:
            return None

        quarter = len(snapshots) // 4
        first = _mean([s.running_angles.knee_drive_angle for s in snapshots[:quarter]])
        last = _mean([s.running_angles.knee_drive_angle for s in snapshots[-quarter:]])
        if first <= 0:
            return None

        drop = (first - last) / first
        if drop <= cfg.fatigue_flag:
            return None

        return InjuryRiskFlag(
            timestamp=timestamp,
            severity=RiskSeverity.HIGH if drop > cfg.fatigue_high else RiskSeverity.MEDIUM,
            body_part="General",
            issue=f"Fatigue-Induced Form Breakdown ({drop * 100:.0f}% knee drive drop)",
            description=(
                "Sprint mechanics deteriorate significantly in the final section, "
                "indicating inadequate speed endurance."
            ),
            recommendation=(
                "Incorporate speed endurance training. Ensure adequate recovery between sessions. "
                "Check training load this week."
            ),
        )

    def detect_hip_drop(self, snapshots, timestamp: float) -> Optional[InjuryRiskFlag]:
        cfg = self.config
        drops = [s.posture.hip_drop for s in snapshots]
        mean_drop = _mean(drops)
        max_drop = max(drops)
        if mean_drop <= cfg.hip_drop_mean_flag and max_drop <= cfg.hip_drop_max_flag:
            return None

        return InjuryRiskFlag(
            timestamp=timestamp,
            severity=RiskSeverity.HIGH if max_drop > cfg.hip_drop_high else RiskSeverity.MEDIUM,
            body_part="Hip / IT Band / Knee",
            issue=f"Hip Drop / Trendelenburg Sign ({mean_drop:.0f}° average)",
            description=(
                "Pelvis drops to the unsupported side during single-leg support, indicating weak "
                "hip abductors (glute medius). This increases IT band and patellofemoral stress."
            ),
            recommendation=(
                "Lateral band walks, clamshells, single-leg glute bridges. "
                "Consider physio assessment for IT band syndrome prevention."
            ),
        )
