"""
Post-Run Coaching Recommendations
Turns the weakest parts of a form score breakdown into coaching cues, plus a
trend cue when recent sessions are declining.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from .models import CoachingCue, CueCategory, CuePriority, FormScore, MetricScore

logger = logging.getLogger(__name__)

# Breakdown entries considered per run (lowest scores first)
WEAKEST_METRICS = 3
TREND_WINDOW = 3
TREND_DROP_POINTS = 5.0


def _priority(metric: MetricScore, high_below: float) -> CuePriority:
    return CuePriority.HIGH if metric.score < high_below else CuePriority.MEDIUM


def _knee_drive(m: MetricScore) -> CoachingCue:
    return CoachingCue(
        priority=_priority(m, 50),
        category=CueCategory.TECHNIQUE,
        issue=f"Below-optimal knee drive (avg {int(m.measured_value)}°)",
        recommendation=(
            "Incorporate high knees and A-skips into every warm-up. "
            "Focus on driving knee to hip pocket height."
        ),
        voice_text="Focus on knee drive this session",
        drill_ids=["high_knees", "a_skip", "b_skip", "wall_drives"],
        improvement_weeks=2,
    )


def _block_start(m: MetricScore) -> CoachingCue:
    return CoachingCue(
        priority=_priority(m, 50),
        category=CueCategory.BLOCK_START,
        issue="Block start position needs improvement",
        recommendation="Review shin angles (rear: 35-50°, front: 50-70°) and hip height positioning.",
        voice_text="Work on your block position",
        drill_ids=["block_starts_drill", "fall_and_sprint", "push_starts"],
        improvement_weeks=1,
    )


def _acceleration(m: MetricScore) -> CoachingCue:
    return CoachingCue(
        priority=_priority(m, 50),
        category=CueCategory.TECHNIQUE,
        issue="Acceleration mechanics need work",
        recommendation="Hold a forward lean through the first 20m and rise gradually. Push the ground back, not down.",
        voice_text="Stay low out of the blocks",
        drill_ids=["wall_drives", "sled_push", "falling_starts"],
        improvement_weeks=2,
    )


def _consistency(m: MetricScore) -> CoachingCue:
    return CoachingCue(
        priority=_priority(m, 60),
        category=CueCategory.STRENGTH,
        issue="Form breaking down in later stages",
        recommendation="Build speed endurance with 60-80m runs and specific conditioning work.",
        voice_text="Build your endurance",
        drill_ids=["speed_endurance_runs", "tempo_runs", "special_endurance"],
        improvement_weeks=4,
    )


def _symmetry(m: MetricScore) -> CoachingCue:
    return CoachingCue(
        priority=_priority(m, 60),
        category=CueCategory.STRENGTH,
        issue="Bilateral asymmetry detected",
        recommendation=(
            "Single-leg strength work to address imbalances. "
            "Bulgarian split squats and single-leg RDLs."
        ),
        voice_text="Work on single-leg strength",
        drill_ids=["single_leg_squat", "single_leg_rdl", "hurdle_hops_unilateral"],
        improvement_weeks=3,
    )


def _max_velocity(m: MetricScore) -> CoachingCue:
    return CoachingCue(
        priority=_priority(m, 50),
        category=CueCategory.TECHNIQUE,
        issue="Top-end form needs improvement",
        recommendation="Wicket runs, flying sprints, and overspeed training to improve max velocity mechanics.",
        voice_text="Focus on relaxation at top speed",
        drill_ids=["wicket_runs", "flying_30s", "downhill_sprints", "overspeed_towing"],
        improvement_weeks=3,
    )


METRIC_CUES: Dict[str, Callable[[MetricScore], CoachingCue]] = {
    "Knee Drive": _knee_drive,
    "Block Start": _block_start,
    "Acceleration": _acceleration,
    "Consistency": _consistency,
    "Symmetry": _symmetry,
    "Max Velocity": _max_velocity,
}


class RecommendationEngine:
    """Maps a run's form score (and optional score history) to coaching cues"""

    def generate(self, score: FormScore, history: Sequence[FormScore] = ()) -> List[CoachingCue]:
        """
        Args:
            score: Score of the run just finished
            history: Earlier scores for the same athlete, oldest first

        Returns:
            Cues sorted high priority first
        """
        if not score.breakdown:
            # Nothing was measured, so there is nothing to recommend
            return []

        cues: List[CoachingCue] = []
        weakest = sorted(score.breakdown, key=lambda m: m.score)[:WEAKEST_METRICS]
        for metric in weakest:
            builder = METRIC_CUES.get(metric.name)
            if builder is not None:
                cues.append(builder(metric))

        trend = self.assess_trend(history)
        if trend is not None:
            cues.append(trend)

        cues.sort(key=lambda c: c.priority.rank)
        logger.debug(f"Generated {len(cues)} recommendations from {len(score.breakdown)} metrics")
        return cues

    @staticmethod
    def assess_trend(history: Sequence[FormScore]) -> Optional[CoachingCue]:
        if len(history) < TREND_WINDOW:
            return None
        recent = [s.overall for s in history[-TREND_WINDOW:]]
        if recent[-1] - recent[0] >= -TREND_DROP_POINTS:
            return None
        return CoachingCue(
            priority=CuePriority.HIGH,
            category=CueCategory.TECHNIQUE,
            issue=f"Performance declining over last {TREND_WINDOW} sessions",
            recommendation="Consider a lighter training day or deload week. Review recent training load.",
            voice_text="Consider a recovery day",
            drill_ids=["active_recovery", "form_drills_easy"],
            improvement_weeks=1,
        )
