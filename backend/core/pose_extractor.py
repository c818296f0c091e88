"""
Pose Extraction using MediaPipe BlazePose
Offline pose source for recorded sprint videos: 33 landmarks per frame,
converted to DetectedPose and fed through a RunSession.

Requires the optional ``pose`` extra (opencv-python-headless, mediapipe).
"""

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

import cv2
import mediapipe as mp
import numpy as np

from .athlete_tracker import pose_bounding_box
from .calibration import Calibration
from .models import DetectedPose, Keypoint
from .session import RunResult, RunSession
from exceptions import InsufficientPoseData, VideoProcessingError

logger = logging.getLogger(__name__)


class PoseExtractor:
    """
    Single-person MediaPipe pose source.
    Callable on a BGR frame, so it can back a LiveAnalysisLoop as well.
    """

    def __init__(
        self,
        model_complexity: int = 1,  # 0=lite, 1=full, 2=heavy
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.pose = None

    def _init_pose(self):
        if self.pose is None:
            self.pose = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=self.model_complexity,
                enable_segmentation=False,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )

    def extract_from_frame(self, frame: np.ndarray) -> List[DetectedPose]:
        """
        Detect poses in one BGR frame.

        Returns:
            Zero or one DetectedPose (BlazePose tracks a single person)
        """
        self._init_pose()
        results = self.pose.process(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        if not results.pose_landmarks:
            return []

        keypoints = [
            Keypoint(landmark=i, x=lm.x, y=lm.y, confidence=lm.visibility, visibility=lm.visibility)
            for i, lm in enumerate(results.pose_landmarks.landmark)
        ]
        confidence = float(np.mean([kp.visibility for kp in keypoints]))
        return [DetectedPose(
            keypoints=tuple(keypoints),
            bounding_box=pose_bounding_box(keypoints),
            confidence=confidence,
        )]

    __call__ = extract_from_frame

    def close(self):
        """Release resources"""
        if self.pose:
            self.pose.close()
            self.pose = None


def analyze_video(
    video_path: str,
    session: Optional[RunSession] = None,
    settings=None,
    extractor: Optional[PoseExtractor] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> RunResult:
    """
    Run a recorded video through a fresh run session.

    Args:
        video_path: Path to video file
        session: Session to use; built from settings (with the video's frame
            size) when omitted
        settings: Application settings used to build the session
        extractor: Pose source; a default PoseExtractor when omitted
        progress_callback: Optional callback(current_frame, total_frames)

    Raises:
        VideoProcessingError: If the video can't be opened
        InsufficientPoseData: If no frame produced a usable pose
    """
    path = Path(video_path)
    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise VideoProcessingError(f"Cannot open video: {path.name}", stage="decode")

    fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
    total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    logger.info(f"Processing video: {total_frames} frames, {fps:.1f} FPS, {width}x{height}")

    if session is None:
        if settings is None:
            from config import get_settings
            settings = get_settings()
        calibration = Calibration(
            pixels_per_meter=settings.PIXELS_PER_METER,
            frame_width_px=width or settings.FRAME_WIDTH_PX,
            frame_height_px=height or settings.FRAME_HEIGHT_PX,
            camera_angle_deg=settings.CAMERA_ANGLE_DEG,
        )
        session = RunSession.from_settings(settings, calibration=calibration, voice_feedback=False)

    own_extractor = extractor is None
    extractor = extractor or PoseExtractor()
    start_time = time.time()
    analyzed = 0
    frame_idx = 0

    session.start()
    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                break
            if session.should_process_frame(frame_idx):
                if session.process(extractor(frame), frame_idx / fps) is not None:
                    analyzed += 1
            frame_idx += 1
            if progress_callback and frame_idx % 30 == 0:
                progress_callback(frame_idx, total_frames)
    finally:
        cap.release()
        if own_extractor:
            extractor.close()

    result = session.stop()
    logger.info(
        f"Video analyzed in {time.time() - start_time:.1f}s: "
        f"{analyzed} of {frame_idx} frames had a usable pose"
    )
    if analyzed == 0:
        raise InsufficientPoseData("No poses detected in video. Ensure the full body is visible.")
    return result
