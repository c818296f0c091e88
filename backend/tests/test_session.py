"""
Tests for run sessions and the live analysis loop
"""

import asyncio
import logging

import pytest

from config import MIN_KEYPOINTS_PER_POSE
from core.live import LiveAnalysisLoop, safe_pose_source
from core.models import PoseLandmark as L, SprintPhase
from core.session import PoseMessage, RunSession
from exceptions import SessionStateError


@pytest.fixture
def session():
    return RunSession(voice_feedback=False)


class TestLifecycle:

    def test_start_returns_generation(self, session):
        assert session.start() == 1
        assert session.is_running

    def test_double_start_rejected(self, session):
        session.start()
        with pytest.raises(SessionStateError):
            session.start()

    def test_stop_without_start_rejected(self, session):
        with pytest.raises(SessionStateError) as exc_info:
            session.stop()
        assert exc_info.value.status_code == 409

    def test_generation_increases_across_runs(self, session):
        session.start()
        session.stop()
        assert session.start() == 3

    def test_restart_clears_state(self, session, make_pose, standing):
        session.start()
        session.process([make_pose(standing())], 0.0)
        session.stop()
        session.start()

        assert session.athlete_indices == []
        assert session.snapshots() == []

    def test_frame_throttling(self):
        session = RunSession(frame_stride=2)
        assert session.should_process_frame(0)
        assert not session.should_process_frame(1)
        assert session.should_process_frame(4)

    def test_from_settings_overrides(self):
        from config.settings import Settings

        session = RunSession.from_settings(Settings(), multi_person=True, voice_feedback=False)
        assert session.multi_person
        assert not session.voice_feedback
        assert session.calibration.pixels_per_meter == Settings().PIXELS_PER_METER


class TestDelivery:

    def test_not_running_discards(self, session, make_pose, standing):
        assert session.process([make_pose(standing())], 0.0) is None

    def test_stale_generation_discarded(self, session, make_pose, standing):
        generation = session.start()
        stale = PoseMessage(poses=[make_pose(standing())], timestamp=0.0, generation=generation - 1)

        assert session.deliver(stale) is None
        assert session.snapshots() == []

    def test_late_result_after_restart_discarded(self, session, make_pose, standing):
        old = session.start()
        session.stop()
        session.start()

        late = PoseMessage(poses=[make_pose(standing())], timestamp=0.0, generation=old)
        assert session.deliver(late) is None

    def test_out_of_order_frame_discarded(self, session, make_pose, standing):
        session.start()
        assert session.process([make_pose(standing())], 1.0) is not None
        assert session.process([make_pose(standing())], 0.5) is None
        assert len(session.snapshots()) == 1

    def test_empty_frame_discarded(self, session):
        session.start()
        assert session.process([], 0.0) is None

    def test_sparse_pose_discarded(self, session, make_pose, standing):
        points = dict(list(standing().items())[:MIN_KEYPOINTS_PER_POSE - 1])
        session.start()
        assert session.process([make_pose(points)], 0.0) is None

    def test_single_person_picks_best_pose(self, session, make_pose, standing):
        sparse = dict(standing(x=0.2))
        del sparse[L.NOSE]
        full = make_pose(standing(x=0.7))

        session.start()
        result = session.process([make_pose(sparse), full], 0.0)

        assert len(result.snapshots) == 1
        assert result.snapshots[0].athlete_index == 0
        assert len(result.snapshots[0].keypoints) == len(full.keypoints)

    def test_multi_person(self, make_pose, standing):
        session = RunSession(multi_person=True, voice_feedback=False)
        session.start()
        left = make_pose(standing(x=0.2), bounding_box=(0.05, 0.1, 0.3, 0.8))
        right = make_pose(standing(x=0.75), bounding_box=(0.6, 0.1, 0.3, 0.8))

        for i in range(3):
            session.process([left, right], i / 30)

        assert session.athlete_indices == [0, 1]
        assert len(session.snapshots(1)) == 3

    def test_live_views(self, session, make_pose, standing):
        session.start()
        session.process([make_pose(standing(hip_y=0.65))], 0.0)

        assert session.current_phase() == SprintPhase.BLOCK_SET
        assert session.current_phase(5) == SprintPhase.UNKNOWN
        assert session.active_cues() == []


class TestRunResult:

    def test_full_run(self, sprint_run):
        session = RunSession(kalman_smoothing=False, voice_feedback=False)
        session.start()
        for t, pose in sprint_run():
            session.process([pose], t)
        result = session.stop()

        athlete = result.primary
        assert result.frames_processed == len(sprint_run())
        assert athlete.athlete_index == 0
        assert athlete.distance > 100
        assert athlete.max_velocity == pytest.approx(0.8 / 28 * 1920 / 200 * 30, rel=1e-3)
        assert len(athlete.splits) == int(athlete.velocity_curve[-1].distance // 10)
        assert athlete.velocity_stats is not None
        assert 0 < athlete.score.overall <= 100

        phases = [s.phase for s in athlete.segments if s.phase != SprintPhase.UNKNOWN]
        assert [p.order for p in phases] == sorted(p.order for p in phases)
        assert phases[-1] == SprintPhase.DECELERATION

    def test_empty_run(self, session):
        session.start()
        result = session.stop()

        assert result.frames_processed == 0
        assert result.athletes == []
        assert result.primary is None

    def test_history_feeds_recommendations(self, make_pose, standing):
        from core.models import FormScore

        history = [FormScore(overall=85), FormScore(overall=75), FormScore(overall=65)]
        session = RunSession(voice_feedback=False, history=history)
        session.start()
        session.process([make_pose(standing())], 0.0)
        result = session.stop()

        assert any("declining" in c.issue for c in result.primary.recommendations)

    def test_voice_cues_spoken(self, make_pose, standing):
        """A low knee angle is called out through the speak callback"""
        said = []
        session = RunSession(speak=said.append)
        points = standing()
        # Sharply bent knees, about 67 degrees
        points[L.LEFT_KNEE] = (0.8, 0.7)
        points[L.RIGHT_KNEE] = (0.8, 0.7)
        points[L.LEFT_ANKLE] = (0.5, 0.9)
        points[L.RIGHT_ANKLE] = (0.5, 0.9)
        points[L.LEFT_HIP] = (0.5, 0.5)
        points[L.RIGHT_HIP] = (0.5, 0.5)

        session.start()
        for i in range(5):
            session.process([make_pose(points)], i / 30)

        assert "Drive your knee higher" in said


class TestLiveLoop:

    def test_safe_pose_source_swallows_failures(self, caplog):
        def broken(frame):
            raise RuntimeError("camera glitch")

        with caplog.at_level(logging.WARNING):
            assert safe_pose_source(broken)("frame") == []
        assert "camera glitch" in caplog.text

    def test_frame_round_trip(self, session, make_pose, standing):
        pose = make_pose(standing())
        results = []

        async def scenario():
            loop = LiveAnalysisLoop(session, pose_source=lambda frame: [frame], on_result=results.append)
            assert loop.submit(pose, 0.0)
            assert not loop.submit(pose, 0.033)
            return loop, await loop.drain()

        session.start()
        loop, result = asyncio.run(scenario())

        assert result is not None
        assert results == [result]
        assert loop.frames_submitted == 1
        assert loop.frames_dropped == 1

    def test_result_after_stop_discarded(self, session, make_pose, standing):
        pose = make_pose(standing())

        async def scenario():
            loop = LiveAnalysisLoop(session, pose_source=lambda frame: [frame])
            loop.submit(pose, 0.0)
            session.stop()
            return await loop.drain()

        session.start()
        assert asyncio.run(scenario()) is None

    def test_not_running_rejects_frames(self, session, make_pose, standing):
        async def scenario():
            loop = LiveAnalysisLoop(session, pose_source=lambda frame: [frame])
            return loop.submit(make_pose(standing()), 0.0)

        assert asyncio.run(scenario()) is False

    def test_throttled_frames_not_submitted(self, make_pose, standing):
        session = RunSession(voice_feedback=False, frame_stride=2)

        async def scenario():
            loop = LiveAnalysisLoop(session, pose_source=lambda frame: [frame])
            return loop.submit(make_pose(standing()), 0.033, frame_number=1)

        session.start()
        assert asyncio.run(scenario()) is False

    def test_estimation_failure_skips_frame(self, session):
        def broken(frame):
            raise RuntimeError("model crashed")

        async def scenario():
            loop = LiveAnalysisLoop(session, pose_source=broken)
            loop.submit("frame", 0.0)
            return await loop.drain()

        session.start()
        assert asyncio.run(scenario()) is None
        assert session.is_running
