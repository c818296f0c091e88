"""
Tests for post-run analysis: form scoring, injury risk, splits,
recommendations and athlete tracking
"""

import pytest

from core.models import BlockAngles, FormScore, MetricScore, RiskSeverity, SprintPhase, VelocityPoint


IDEAL_BLOCK = BlockAngles(
    rear_shin_angle=42.0,
    front_shin_angle=60.0,
    rear_thigh_angle=30.0,
    front_thigh_angle=20.0,
    hip_height=0.65,
    torso_lean=42.0,
    weight_distribution=0.6,
)


def ideal_run(make_snapshot):
    """Block start, acceleration and top-speed snapshots with textbook angles"""
    snaps = [make_snapshot(timestamp=i * 0.1, phase=SprintPhase.BLOCK_START, block_angles=IDEAL_BLOCK)
             for i in range(3)]
    snaps += [make_snapshot(timestamp=0.3 + i * 0.1, phase=SprintPhase.ACCELERATION) for i in range(10)]
    snaps += [make_snapshot(timestamp=1.3 + i * 0.1, phase=SprintPhase.MAX_VELOCITY) for i in range(10)]
    return snaps


class TestScoringHelpers:

    def test_range_score(self):
        from core.form_scoring import range_score

        assert range_score(90, 85, 105, 20) == 1.0
        assert range_score(75, 85, 105, 20) == pytest.approx(0.5)
        assert range_score(125, 85, 105, 20) == 0.0
        assert range_score(200, 85, 105, 20) == 0.0

    def test_progression_neutral_for_short_series(self):
        from core.form_scoring import assess_progression

        assert assess_progression([1, 2]) == 0.5

    def test_progression_direction(self):
        from core.form_scoring import assess_progression

        assert assess_progression([0, 0, 10, 10]) == pytest.approx(1.0)
        assert assess_progression([10, 10, 0, 0]) == pytest.approx(0.0)
        assert assess_progression([10, 10, 0, 0], should_increase=False) == pytest.approx(1.0)


class TestFormScoring:

    def test_empty_run(self):
        from core.form_scoring import FormScoringEngine

        score = FormScoringEngine().score_run([])
        assert score.overall == 0.0
        assert score.breakdown == []

    def test_unobserved_phases_score_neutral(self, make_snapshot):
        """A short clip with no classified phases gets the neutral half score"""
        from core.form_scoring import FormScoringEngine

        snaps = [make_snapshot(timestamp=i * 0.1, phase=SprintPhase.UNKNOWN) for i in range(5)]
        score = FormScoringEngine().score_run(snaps)

        assert score.block_start == 12.5
        assert score.acceleration == 12.5
        assert score.max_velocity == 12.5
        assert score.consistency == 12.5
        assert score.overall == 50.0

    def test_ideal_run(self, make_snapshot):
        from core.form_scoring import FormScoringEngine

        score = FormScoringEngine().score_run(ideal_run(make_snapshot))

        assert score.block_start == pytest.approx(25.0)
        assert score.max_velocity == pytest.approx(25.0)
        assert score.consistency == pytest.approx(25.0)
        assert score.overall >= 95
        assert score.grade == "A+"

    def test_sub_scores_capped(self, make_snapshot):
        from core.form_scoring import FormScoringEngine

        score = FormScoringEngine().score_run(ideal_run(make_snapshot))
        for sub in (score.block_start, score.acceleration, score.max_velocity, score.consistency):
            assert 0 <= sub <= 25
        assert score.overall <= 100

    def test_breakdown(self, make_snapshot):
        from core.form_scoring import FormScoringEngine

        score = FormScoringEngine().score_run(ideal_run(make_snapshot))
        names = [m.name for m in score.breakdown]

        assert names == ["Block Start", "Acceleration", "Max Velocity", "Consistency", "Knee Drive", "Symmetry"]
        knee = score.breakdown[4]
        assert knee.weight == 2.0
        assert knee.is_in_optimal_range

    def test_knee_drive_fade_costs_consistency(self, make_snapshot):
        from core.form_scoring import FormScoringEngine

        knees = [100] * 4 + [90] * 4 + [80] * 4
        snaps = [make_snapshot(timestamp=i * 0.1, knee=k) for i, k in enumerate(knees)]
        engine = FormScoringEngine()

        faded = engine.score_consistency(snaps)
        steady = engine.score_consistency([make_snapshot(timestamp=i * 0.1) for i in range(12)])
        assert steady == pytest.approx(25.0)
        assert faded == pytest.approx(15.0)

    def test_grades(self):
        assert FormScore(overall=91).grade == "A+"
        assert FormScore(overall=72).grade == "B"
        assert FormScore(overall=49).grade == "F"


class TestInjuryRisk:

    def test_empty_run(self):
        from core.injury_risk import InjuryRiskDetector

        assert InjuryRiskDetector().analyze([]) == []

    def test_clean_run(self, make_snapshot):
        from core.injury_risk import InjuryRiskDetector

        assert InjuryRiskDetector().analyze(ideal_run(make_snapshot)) == []

    def test_asymmetry(self, make_snapshot):
        from core.injury_risk import InjuryRiskDetector

        snaps = [make_snapshot(left_knee=85, right_knee=100) for _ in range(5)]
        flag = InjuryRiskDetector().detect_asymmetry(snaps, 1.0)

        assert flag.severity == RiskSeverity.HIGH
        assert "left leg" in flag.description

    def test_moderate_asymmetry(self, make_snapshot):
        from core.injury_risk import InjuryRiskDetector

        snaps = [make_snapshot(left_knee=100, right_knee=92) for _ in range(5)]
        flag = InjuryRiskDetector().detect_asymmetry(snaps, 1.0)

        assert flag.severity == RiskSeverity.MEDIUM
        assert "right leg" in flag.description

    def test_overstriding_only_at_speed(self, make_snapshot):
        from core.injury_risk import InjuryRiskDetector

        detector = InjuryRiskDetector()
        at_speed = [make_snapshot(foot_strike=20, phase=SprintPhase.MAX_VELOCITY) for _ in range(5)]
        accelerating = [make_snapshot(foot_strike=20, phase=SprintPhase.ACCELERATION) for _ in range(5)]

        assert detector.detect_overstriding(at_speed, 1.0).severity == RiskSeverity.MEDIUM
        assert detector.detect_overstriding(accelerating, 1.0) is None

    def test_fatigue(self, make_snapshot):
        from core.injury_risk import InjuryRiskDetector

        knees = [100] * 4 + [85] * 4 + [70] * 4
        snaps = [make_snapshot(timestamp=i * 0.1, knee=k) for i, k in enumerate(knees)]
        flags = InjuryRiskDetector().analyze(snaps)

        assert len(flags) == 1
        assert flags[0].body_part == "General"
        assert flags[0].severity == RiskSeverity.HIGH
        assert flags[0].timestamp == pytest.approx(1.1)

    def test_fatigue_needs_enough_snapshots(self, make_snapshot):
        from core.injury_risk import InjuryRiskDetector

        snaps = [make_snapshot(knee=k) for k in [100] * 5 + [60] * 5]
        assert InjuryRiskDetector().detect_fatigue(snaps, 1.0) is None

    def test_flags_sorted_by_severity(self, make_snapshot):
        from core.injury_risk import InjuryRiskDetector

        snaps = [make_snapshot(shoulder_rotation=25, hip_drop=6) for _ in range(5)]
        flags = InjuryRiskDetector().analyze(snaps)

        assert [f.severity for f in flags] == [RiskSeverity.HIGH, RiskSeverity.MEDIUM]
        assert flags[0].body_part == "Lower Back / Core"


class TestSplitTimes:

    @staticmethod
    def constant_curve(velocity=10.0, points=105, dt=0.1):
        return [VelocityPoint(distance=i * velocity * dt, velocity=velocity, timestamp=i * dt) for i in range(points)]

    def test_constant_velocity_splits(self):
        from core.split_times import SplitTimeEstimator

        splits = SplitTimeEstimator().estimate_splits(self.constant_curve())

        assert len(splits) == 10
        assert [s.label for s in splits[:2]] == ["0-10m", "10-20m"]
        for split in splits:
            assert split.time == pytest.approx(1.0)
            assert split.confidence == pytest.approx(1.0)
        assert splits[-1].crossing_time == pytest.approx(10.0)

    def test_boundary_interpolated_between_points(self):
        from core.split_times import SplitTimeEstimator

        curve = [VelocityPoint(9, 9.5, 1.0), VelocityPoint(11, 9.5, 1.2)]
        splits = SplitTimeEstimator().estimate_splits(curve)

        assert len(splits) == 1
        assert splits[0].crossing_time == pytest.approx(1.1)

    def test_several_boundaries_in_one_gap(self):
        from core.split_times import SplitTimeEstimator

        curve = [VelocityPoint(0, 10, 0.0), VelocityPoint(25, 10, 2.5)]
        splits = SplitTimeEstimator().estimate_splits(curve, interval=10)

        assert [s.end_distance for s in splits] == [10, 20]
        assert [s.time for s in splits] == pytest.approx([1.0, 1.0])

    def test_degenerate_input(self):
        from core.split_times import SplitTimeEstimator

        estimator = SplitTimeEstimator()
        assert estimator.estimate_splits([]) == []
        assert estimator.estimate_splits(self.constant_curve(), interval=0) == []
        assert estimator.velocity_stats([]) is None

    def test_noisy_velocity_lowers_confidence(self):
        from core.split_times import SplitTimeEstimator

        curve = [VelocityPoint(i * 1.0, 10.0 + (4 if i % 2 else -4), i * 0.1) for i in range(30)]
        splits = SplitTimeEstimator().estimate_splits(curve)

        assert splits
        assert all(0.5 <= s.confidence < 1.0 for s in splits)

    def test_velocity_stats(self):
        from core.split_times import SplitTimeEstimator

        curve = [
            VelocityPoint(0.0, 2.0, 0.0),
            VelocityPoint(5.0, 6.0, 1.0),
            VelocityPoint(15.0, 9.8, 2.0),
            VelocityPoint(25.0, 10.0, 3.0),
            VelocityPoint(34.0, 9.0, 4.0),
        ]
        stats = SplitTimeEstimator().velocity_stats(curve)

        assert stats.max_velocity == 10.0
        assert stats.max_velocity_distance == 25.0
        assert stats.time_to_max_velocity == 3.0
        assert stats.velocity_at_finish == 9.0
        assert stats.average_velocity == pytest.approx(7.36)
        # 9.8 is within 97% of the peak
        assert stats.acceleration_phase_length == 15.0

    def test_theoretical_curve(self):
        from core.split_times import SplitTimeEstimator

        curve = SplitTimeEstimator().theoretical_curve(10.0)

        assert len(curve) == 50
        assert curve[0].velocity == 0.0
        assert max(p.velocity for p in curve) == pytest.approx(11.3, rel=0.01)
        times = [p.timestamp for p in curve]
        assert times == sorted(times)

    def test_theoretical_curve_invalid_target(self):
        from core.split_times import SplitTimeEstimator

        assert SplitTimeEstimator().theoretical_curve(0) == []
        assert SplitTimeEstimator().theoretical_curve(-9.8) == []


class TestRecommendations:

    def test_weakest_metrics(self, make_snapshot):
        from core.form_scoring import FormScoringEngine
        from core.recommendations import RecommendationEngine, WEAKEST_METRICS

        snaps = [make_snapshot(timestamp=i * 0.1, knee=60, left_knee=55, right_knee=70) for i in range(12)]
        score = FormScoringEngine().score_run(snaps)
        cues = RecommendationEngine().generate(score)

        assert 0 < len(cues) <= WEAKEST_METRICS
        issues = " ".join(c.issue for c in cues)
        assert "knee drive" in issues.lower()

    def test_sorted_by_priority(self, make_snapshot):
        from core.form_scoring import FormScoringEngine
        from core.recommendations import RecommendationEngine

        snaps = [make_snapshot(timestamp=i * 0.1, knee=60, left_knee=55, right_knee=70) for i in range(12)]
        cues = RecommendationEngine().generate(FormScoringEngine().score_run(snaps))

        ranks = [c.priority.rank for c in cues]
        assert ranks == sorted(ranks)

    def test_declining_trend(self):
        from core.models import CuePriority
        from core.recommendations import RecommendationEngine

        history = [FormScore(overall=80), FormScore(overall=75), FormScore(overall=70)]
        measured = FormScore(overall=72, breakdown=[
            MetricScore("Stride Length", 90, 0.1, 2.1, 2.0, 2.5, "m", "Good stride length"),
        ])
        cues = RecommendationEngine().generate(measured, history)

        assert len(cues) == 1
        assert cues[0].priority == CuePriority.HIGH
        assert "declining" in cues[0].issue

    def test_unmeasured_run_gets_no_cues(self):
        """An empty run scores all zeros with no breakdown; a falling history alone stays quiet"""
        from core.recommendations import RecommendationEngine

        history = [FormScore(overall=80), FormScore(overall=75), FormScore(overall=70)]
        assert RecommendationEngine().generate(FormScore(), history) == []

    def test_stable_trend_is_quiet(self):
        from core.recommendations import RecommendationEngine

        assert RecommendationEngine.assess_trend([FormScore(overall=80), FormScore(overall=78), FormScore(overall=77)]) is None
        assert RecommendationEngine.assess_trend([FormScore(overall=80), FormScore(overall=60)]) is None


class TestAthleteTracker:

    LEFT_BOX = (0.05, 0.1, 0.3, 0.8)
    RIGHT_BOX = (0.6, 0.1, 0.3, 0.8)

    def test_iou(self):
        from core.athlete_tracker import iou

        assert iou(self.LEFT_BOX, self.LEFT_BOX) == pytest.approx(1.0)
        assert iou(self.LEFT_BOX, self.RIGHT_BOX) == 0.0
        assert iou((0, 0, 1, 1), (0.5, 0, 1, 1)) == pytest.approx(1 / 3)

    def test_pose_bounding_box(self, make_pose, standing):
        from core.athlete_tracker import pose_bounding_box

        x, y, w, h = pose_bounding_box(make_pose(standing()).keypoints)
        assert x == pytest.approx(0.45)
        assert y == pytest.approx(0.10)
        assert x + w == pytest.approx(0.60)
        assert y + h == pytest.approx(0.95)

    def test_stable_indices(self, make_pose, standing):
        from core.athlete_tracker import AthleteTracker

        left = make_pose(standing(x=0.2), bounding_box=self.LEFT_BOX)
        right = make_pose(standing(x=0.75), bounding_box=self.RIGHT_BOX)
        tracker = AthleteTracker()

        first = tracker.update([left, right])
        second = tracker.update([right, left])

        assert first[0].bounding_box == self.LEFT_BOX
        assert second[0].bounding_box == self.LEFT_BOX
        assert second[1].bounding_box == self.RIGHT_BOX
        assert second[1].athlete_index == 1

    def test_capacity(self, make_pose, standing):
        from core.athlete_tracker import AthleteTracker

        tracker = AthleteTracker(max_persons=1)
        assigned = tracker.update([
            make_pose(standing(x=0.2), bounding_box=self.LEFT_BOX),
            make_pose(standing(x=0.75), bounding_box=self.RIGHT_BOX),
        ])

        assert list(assigned) == [0]

    def test_lost_track_dropped(self, make_pose, standing):
        from core.athlete_tracker import AthleteTracker

        tracker = AthleteTracker()
        tracker.update([make_pose(standing(x=0.2), bounding_box=self.LEFT_BOX)])
        for _ in range(tracker.config.max_missing_frames - 1):
            tracker.update([])
        assert 0 in tracker.tracks

        tracker.update([])
        assert tracker.dropped == [0]
        assert tracker.tracks == {}
