"""
Tests for offline video analysis (needs the optional pose extra)
"""

import pytest

cv2 = pytest.importorskip("cv2")
pytest.importorskip("mediapipe")
np = pytest.importorskip("numpy")

from core.pose_extractor import analyze_video
from core.session import RunSession
from exceptions import InsufficientPoseData, VideoProcessingError


@pytest.fixture
def blank_video(tmp_path):
    """Write a short black MJPG clip; skip if the codec is unavailable"""
    path = tmp_path / "clip.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 30.0, (64, 48))
    if not writer.isOpened():
        pytest.skip("MJPG writer unavailable")
    for _ in range(12):
        writer.write(np.zeros((48, 64, 3), dtype=np.uint8))
    writer.release()
    return path


class TestAnalyzeVideo:

    def test_missing_file(self, tmp_path):
        with pytest.raises(VideoProcessingError) as exc_info:
            analyze_video(str(tmp_path / "missing.mp4"), session=RunSession(voice_feedback=False))
        assert exc_info.value.details["stage"] == "decode"

    def test_frames_fed_through_session(self, blank_video, make_pose, standing):
        calls = []

        def fake_source(frame):
            calls.append(frame.shape)
            return [make_pose(standing(x=0.2 + 0.01 * len(calls)))]

        result = analyze_video(str(blank_video), session=RunSession(voice_feedback=False), extractor=fake_source)

        assert len(calls) == result.frames_processed
        assert result.frames_processed > 0
        assert calls[0] == (48, 64, 3)
        assert result.primary.athlete_index == 0

    def test_no_poses_detected(self, blank_video):
        with pytest.raises(InsufficientPoseData):
            analyze_video(str(blank_video), session=RunSession(voice_feedback=False), extractor=lambda frame: [])
