"""
Tests for real-time coaching feedback
"""

import pytest

from config import RULE_COOLDOWN_FRAMES
from core.feedback_engine import FEEDBACK_RULES, RealtimeFeedbackEngine, VoiceNarrator
from core.models import CuePriority, SprintPhase


def run_frames(engine, snapshot_factory, count, **snapshot_kwargs):
    """Feed ``count`` identical snapshots at 30 fps; return cues per frame"""
    return [
        engine.process_snapshot(snapshot_factory(timestamp=i / 30, frame_index=i, **snapshot_kwargs))
        for i in range(count)
    ]


class TestFeedbackRules:

    def test_rule_registry(self):
        ids = [r.rule_id for r in FEEDBACK_RULES]
        assert len(ids) == len(set(ids)) == 6
        assert all(r.check_interval in (5, 10) for r in FEEDBACK_RULES)

    @pytest.mark.parametrize("rule_id,snapshot_kwargs,drills", [
        ("knee_drive_low", {"knee": 70}, ["high_knees", "a_skip", "wall_drives"]),
        ("torso_lean_insufficient", {"torso": 30, "phase": SprintPhase.ACCELERATION},
         ["wall_lean_drills", "falling_starts", "sled_push"]),
        ("arm_crosses_midline", {"shoulder_rotation": 15}, ["seated_arm_swings", "arm_circles", "mirror_drills"]),
        ("stride_frequency_drop", {"stride_frequency": 3.0, "phase": SprintPhase.SPEED_ENDURANCE},
         ["fast_feet", "downhill_sprints", "wicket_runs"]),
        ("hip_drop", {"hip_drop": 7}, ["glute_bridges", "single_leg_deadlifts", "lateral_band_walks"]),
        ("bilateral_asymmetry", {"left_knee": 88, "right_knee": 100},
         ["single_leg_bounds", "hurdle_hops", "step_ups"]),
    ])
    def test_drill_catalogue(self, make_snapshot, rule_id, snapshot_kwargs, drills):
        from config import get_thresholds

        rule = next(r for r in FEEDBACK_RULES if r.rule_id == rule_id)
        cue = rule.evaluate(make_snapshot(**snapshot_kwargs), get_thresholds().feedback)

        assert cue is not None
        assert cue.drill_ids == drills

    def test_good_form_is_quiet(self, make_snapshot):
        engine = RealtimeFeedbackEngine()
        cues = run_frames(engine, make_snapshot, 100)
        assert not any(cues)

    def test_rule_only_checked_on_its_interval(self, make_snapshot):
        """Low knee drive is checked every 5th frame"""
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        cues = run_frames(engine, make_snapshot, 5, knee=70)

        assert cues[:4] == [[], [], [], []]
        assert [c.rule_id for c in cues[4]] == ["knee_drive_low"]
        assert cues[4][0].timestamp == pytest.approx(4 / 30)
        assert "70" in cues[4][0].issue

    def test_cooldown(self, make_snapshot):
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        cues = run_frames(engine, make_snapshot, 100, knee=70)

        fired_on = [i + 1 for i, frame in enumerate(cues) if frame]
        assert fired_on == [5, 5 + RULE_COOLDOWN_FRAMES]

    def test_zero_angle_is_not_low_knee_drive(self, make_snapshot):
        """Undetected legs report 0 and must not trigger a cue"""
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        assert not any(run_frames(engine, make_snapshot, 10, knee=0))

    def test_torso_lean_only_during_acceleration(self, make_snapshot):
        accel = RealtimeFeedbackEngine(voice_enabled=False)
        top_speed = RealtimeFeedbackEngine(voice_enabled=False)

        accel_cues = run_frames(accel, make_snapshot, 5, torso=30, phase=SprintPhase.ACCELERATION)
        top_cues = run_frames(top_speed, make_snapshot, 5, torso=30, phase=SprintPhase.MAX_VELOCITY)

        assert [c.rule_id for c in accel_cues[4]] == ["torso_lean_insufficient"]
        assert top_cues[4] == []

    def test_stride_frequency_drop_late_in_run(self, make_snapshot):
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        cues = run_frames(engine, make_snapshot, 10, stride_frequency=3.0, phase=SprintPhase.SPEED_ENDURANCE)

        assert [c.rule_id for c in cues[9]] == ["stride_frequency_drop"]
        assert cues[9][0].priority == CuePriority.HIGH

    def test_stride_frequency_not_computed_is_quiet(self, make_snapshot):
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        assert not any(run_frames(engine, make_snapshot, 10, phase=SprintPhase.DECELERATION))

    def test_asymmetry_names_weaker_leg(self, make_snapshot):
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        cues = run_frames(engine, make_snapshot, 10, knee=100, left_knee=88, right_knee=100)

        asym = [c for c in cues[9] if c.rule_id == "bilateral_asymmetry"]
        assert len(asym) == 1
        assert "left" in asym[0].recommendation

    def test_active_cues_sorted_by_priority(self, make_snapshot):
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        run_frames(engine, make_snapshot, 5, knee=70, hip_drop=8)

        active = engine.active_cues
        assert [c.rule_id for c in active] == ["knee_drive_low", "hip_drop"]
        assert active[0].priority == CuePriority.HIGH

    def test_active_cues_expire_after_cooldown(self, make_snapshot):
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        run_frames(engine, make_snapshot, 5, knee=70)
        run_frames(engine, make_snapshot, RULE_COOLDOWN_FRAMES)

        assert engine.active_cues == []

    def test_reset(self, make_snapshot):
        engine = RealtimeFeedbackEngine(voice_enabled=False)
        run_frames(engine, make_snapshot, 5, knee=70)
        engine.reset()

        assert engine.frame_count == 0
        assert engine.active_cues == []
        cues = run_frames(engine, make_snapshot, 5, knee=70)
        assert cues[4]


class TestVoiceNarrator:

    def test_drops_while_speaking(self):
        said = []
        narrator = VoiceNarrator(speak=said.append, duration_s=3.0)

        assert narrator.narrate("Drive your knee higher", 0.0)
        assert not narrator.narrate("Keep hips level", 1.0)
        assert narrator.narrate("Keep hips level", 3.0)
        assert said == ["Drive your knee higher", "Keep hips level"]

    def test_stop_clears_speaking(self):
        narrator = VoiceNarrator(speak=lambda text: None)
        narrator.narrate("Lean forward more", 0.0)
        narrator.stop()

        assert not narrator.is_speaking(0.1)

    def test_one_utterance_per_frame(self, make_snapshot):
        """Two cues on the same frame: only the first is spoken"""
        said = []
        engine = RealtimeFeedbackEngine(narrator=VoiceNarrator(speak=said.append))
        cues = run_frames(engine, make_snapshot, 5, knee=70, hip_drop=8)

        assert len(cues[4]) == 2
        assert said == ["Drive your knee higher"]

    def test_voice_disabled(self, make_snapshot):
        said = []
        engine = RealtimeFeedbackEngine(narrator=VoiceNarrator(speak=said.append), voice_enabled=False)
        run_frames(engine, make_snapshot, 5, knee=70)

        assert said == []
