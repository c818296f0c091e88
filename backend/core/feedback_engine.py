"""
Real-Time Feedback Engine
Evaluates a fixed set of form rules against live snapshots and emits coaching
cues, rate-limited per rule, with at most one spoken cue in flight.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence

from .models import (
    BiomechanicsSnapshot,
    CoachingCue,
    CueCategory,
    CuePriority,
    SprintPhase,
    computed_or,
)
from config import get_thresholds
from config.thresholds import FeedbackConfig

logger = logging.getLogger(__name__)

RuleCheck = Callable[[BiomechanicsSnapshot, FeedbackConfig], Optional[CoachingCue]]


@dataclass(frozen=True)
class FeedbackRule:
    """A form check run every ``check_interval`` frames"""
    rule_id: str
    category: CueCategory
    priority: CuePriority
    check_interval: int
    evaluate: RuleCheck


# =============================================================================
# Rule checks
# =============================================================================

def _knee_drive_low(snap: BiomechanicsSnapshot, cfg: FeedbackConfig) -> Optional[CoachingCue]:
    angle = snap.running_angles.knee_drive_angle
    if not 0 < angle < cfg.knee_drive_min:
        return None
    return CoachingCue(
        priority=CuePriority.HIGH,
        category=CueCategory.TECHNIQUE,
        issue=f"Low knee drive detected ({int(angle)}°)",
        recommendation="Drive your knees to hip height on every stride",
        voice_text="Drive your knee higher",
        drill_ids=["high_knees", "a_skip", "wall_drives"],
        improvement_weeks=2,
        trigger_condition=f"knee_drive < {cfg.knee_drive_min:.0f}°",
    )


def _torso_lean_insufficient(snap: BiomechanicsSnapshot, cfg: FeedbackConfig) -> Optional[CoachingCue]:
    if snap.phase not in (SprintPhase.ACCELERATION, SprintPhase.DRIVE_PHASE):
        return None
    angle = snap.running_angles.torso_angle
    if not 0 < angle < cfg.torso_lean_min:
        return None
    return CoachingCue(
        priority=CuePriority.MEDIUM,
        category=CueCategory.POSTURE,
        issue=f"Insufficient forward lean ({int(angle)}°)",
        recommendation="Lean your torso forward from the ankles, not the waist",
        voice_text="Lean forward more",
        drill_ids=["wall_lean_drills", "falling_starts", "sled_push"],
        improvement_weeks=1,
        trigger_condition=f"torso_lean < {cfg.torso_lean_min:.0f}° in acceleration",
    )


def _arm_crosses_midline(snap: BiomechanicsSnapshot, cfg: FeedbackConfig) -> Optional[CoachingCue]:
    rotation = snap.posture.shoulder_rotation
    if rotation <= cfg.shoulder_rotation_max:
        return None
    return CoachingCue(
        priority=CuePriority.MEDIUM,
        category=CueCategory.TECHNIQUE,
        issue=f"Arms crossing body midline ({int(rotation)}° rotation)",
        recommendation="Keep your arm swing forward-and-back, not across your body",
        voice_text="Keep arms straight",
        drill_ids=["seated_arm_swings", "arm_circles", "mirror_drills"],
        improvement_weeks=1,
        trigger_condition=f"shoulder_rotation > {cfg.shoulder_rotation_max:.0f}°",
    )


def _stride_frequency_drop(snap: BiomechanicsSnapshot, cfg: FeedbackConfig) -> Optional[CoachingCue]:
    if snap.phase not in (SprintPhase.SPEED_ENDURANCE, SprintPhase.DECELERATION):
        return None
    freq = computed_or(snap.stride_frequency, 0.0)
    if not 0 < freq < cfg.stride_frequency_min:
        return None
    return CoachingCue(
        priority=CuePriority.HIGH,
        category=CueCategory.RHYTHM,
        issue=f"Stride frequency dropping ({freq:.1f} strides/s)",
        recommendation="Maintain your turnover rate through the finish line",
        voice_text="Maintain your tempo",
        drill_ids=["fast_feet", "downhill_sprints", "wicket_runs"],
        improvement_weeks=3,
        trigger_condition=f"stride_frequency < {cfg.stride_frequency_min:.1f} late in the run",
    )


def _hip_drop(snap: BiomechanicsSnapshot, cfg: FeedbackConfig) -> Optional[CoachingCue]:
    drop = snap.posture.hip_drop
    if drop <= cfg.hip_drop_max:
        return None
    return CoachingCue(
        priority=CuePriority.MEDIUM,
        category=CueCategory.POSTURE,
        issue=f"Hip drop detected ({int(drop)}°)",
        recommendation="Keep your hips level and engage your glutes",
        voice_text="Keep hips level",
        drill_ids=["glute_bridges", "single_leg_deadlifts", "lateral_band_walks"],
        improvement_weeks=3,
        trigger_condition=f"hip_drop > {cfg.hip_drop_max:.0f}°",
    )


def _bilateral_asymmetry(snap: BiomechanicsSnapshot, cfg: FeedbackConfig) -> Optional[CoachingCue]:
    angles = snap.running_angles
    asymmetry = angles.knee_drive_symmetry
    if asymmetry <= cfg.knee_asymmetry_max:
        return None
    weaker = "left" if angles.left_knee_drive < angles.right_knee_drive else "right"
    return CoachingCue(
        priority=CuePriority.MEDIUM,
        category=CueCategory.TECHNIQUE,
        issue=f"Asymmetrical knee drive ({int(asymmetry)}° difference)",
        recommendation=f"Focus on equal {weaker} leg drive to reduce imbalance",
        voice_text="Equal knee drive both legs",
        drill_ids=["single_leg_bounds", "hurdle_hops", "step_ups"],
        improvement_weeks=4,
        trigger_condition=f"knee_drive_asymmetry > {cfg.knee_asymmetry_max:.0f}°",
    )


FEEDBACK_RULES: Sequence[FeedbackRule] = (
    FeedbackRule("knee_drive_low", CueCategory.TECHNIQUE, CuePriority.HIGH, 5, _knee_drive_low),
    FeedbackRule("torso_lean_insufficient", CueCategory.POSTURE, CuePriority.MEDIUM, 5, _torso_lean_insufficient),
    FeedbackRule("arm_crosses_midline", CueCategory.TECHNIQUE, CuePriority.MEDIUM, 5, _arm_crosses_midline),
    FeedbackRule("stride_frequency_drop", CueCategory.RHYTHM, CuePriority.HIGH, 10, _stride_frequency_drop),
    FeedbackRule("hip_drop", CueCategory.POSTURE, CuePriority.MEDIUM, 5, _hip_drop),
    FeedbackRule("bilateral_asymmetry", CueCategory.TECHNIQUE, CuePriority.MEDIUM, 10, _bilateral_asymmetry),
)


# =============================================================================
# Narration
# =============================================================================

def _log_speech(text: str):
    logger.info(f"Voice cue: {text}")


class VoiceNarrator:
    """
    Single-utterance voice output.

    The speaking flag is tied to the snapshot clock: it clears once
    ``duration_s`` has passed since the utterance started. Requests made while
    speaking are dropped, never queued.
    """

    def __init__(self, speak: Optional[Callable[[str], None]] = None, duration_s: Optional[float] = None):
        self._speak = speak or _log_speech
        self.duration_s = duration_s if duration_s is not None else get_thresholds().feedback.narration_duration_sec
        self._started_at: Optional[float] = None
        self.spoken: List[str] = []

    def is_speaking(self, now: float) -> bool:
        if self._started_at is None:
            return False
        if now - self._started_at >= self.duration_s:
            self._started_at = None
            return False
        return True

    def narrate(self, text: str, now: float) -> bool:
        """Speak unless an utterance is in flight; returns whether it was spoken"""
        if self.is_speaking(now):
            logger.debug(f"Dropped voice cue while speaking: {text}")
            return False
        self._started_at = now
        self.spoken.append(text)
        self._speak(text)
        return True

    def stop(self):
        self._started_at = None


# =============================================================================
# Engine
# =============================================================================

@dataclass
class _RuleState:
    last_fired_frame: Optional[int] = None
    cue: Optional[CoachingCue] = None


class RealtimeFeedbackEngine:
    """
    Per-run rule evaluator. One instance per athlete per run.
    """

    def __init__(
        self,
        rules: Sequence[FeedbackRule] = FEEDBACK_RULES,
        narrator: Optional[VoiceNarrator] = None,
        config: Optional[FeedbackConfig] = None,
        voice_enabled: bool = True,
    ):
        self.rules = tuple(rules)
        self.narrator = narrator or VoiceNarrator()
        self.config = config or get_thresholds().feedback
        self.voice_enabled = voice_enabled
        self.reset()

    def reset(self):
        self.frame_count = 0
        self._states: Dict[str, _RuleState] = {r.rule_id: _RuleState() for r in self.rules}
        self.narrator.stop()

    def process_snapshot(self, snapshot: BiomechanicsSnapshot) -> List[CoachingCue]:
        """
        Run due rules against one snapshot.

        Returns:
            Cues triggered on this frame, in registry order
        """
        self.frame_count += 1
        cooldown = self.config.rule_cooldown_frames
        triggered: List[CoachingCue] = []

        for rule in self.rules:
            if self.frame_count % rule.check_interval != 0:
                continue
            state = self._states[rule.rule_id]
            if state.last_fired_frame is not None and self.frame_count - state.last_fired_frame < cooldown:
                continue

            cue = rule.evaluate(snapshot, self.config)
            if cue is None:
                continue

            cue = replace(cue, rule_id=rule.rule_id, timestamp=snapshot.timestamp)
            state.last_fired_frame = self.frame_count
            state.cue = cue
            triggered.append(cue)
            logger.debug(f"Rule {rule.rule_id} fired at frame {self.frame_count}: {cue.issue}")

            if self.voice_enabled:
                self.narrator.narrate(cue.voice_text, snapshot.timestamp)

        return triggered

    @property
    def active_cues(self) -> List[CoachingCue]:
        """Cues whose rule is still cooling down, most urgent first"""
        cooldown = self.config.rule_cooldown_frames
        active = [
            s.cue for s in self._states.values()
            if s.cue is not None and self.frame_count - s.last_fired_frame < cooldown
        ]
        return sorted(active, key=lambda c: c.priority.rank)
