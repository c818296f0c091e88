"""
Live Analysis Loop
Runs pose estimation off the event loop and feeds results back to a
RunSession on the loop, one estimate in flight at a time.
"""

import asyncio
import logging
from concurrent.futures import Executor
from typing import Any, Callable, List, Optional

from .models import DetectedPose
from .session import FrameResult, PoseMessage, RunSession

logger = logging.getLogger(__name__)

PoseSource = Callable[[Any], List[DetectedPose]]


def safe_pose_source(source: PoseSource) -> PoseSource:
    """
    Wrap a pose source so estimation failures yield no poses.
    A failed frame is logged and skipped; the run carries on.
    """
    def estimate(frame) -> List[DetectedPose]:
        try:
            return list(source(frame))
        except Exception as e:
            logger.warning(f"Pose estimation failed, skipping frame: {e}")
            return []

    return estimate


class LiveAnalysisLoop:
    """
    Frame pump between a camera feed and a RunSession.

    Frames that arrive while an estimate is running are dropped. Each estimate
    carries the session generation at submit time, so results that land after
    a stop or restart are discarded by the session.
    """

    def __init__(
        self,
        session: RunSession,
        pose_source: PoseSource,
        executor: Optional[Executor] = None,
        on_result: Optional[Callable[[FrameResult], None]] = None,
    ):
        self.session = session
        self.pose_source = safe_pose_source(pose_source)
        self.executor = executor
        self.on_result = on_result
        self.frames_submitted = 0
        self.frames_dropped = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, frame: Any, timestamp: float, frame_number: Optional[int] = None) -> bool:
        """
        Queue a camera frame for estimation. Must be called on the event loop.

        Returns:
            True if the frame was accepted, False if throttled or dropped
        """
        if not self.session.is_running:
            return False
        if frame_number is not None and not self.session.should_process_frame(frame_number):
            return False
        if self.in_flight:
            self.frames_dropped += 1
            return False

        self.frames_submitted += 1
        generation = self.session.generation
        self._task = asyncio.get_running_loop().create_task(
            self._estimate(frame, timestamp, generation)
        )
        return True

    async def _estimate(self, frame: Any, timestamp: float, generation: int) -> Optional[FrameResult]:
        loop = asyncio.get_running_loop()
        poses = await loop.run_in_executor(self.executor, self.pose_source, frame)
        result = self.session.deliver(PoseMessage(poses=poses, timestamp=timestamp, generation=generation))
        if result is not None and self.on_result is not None:
            self.on_result(result)
        return result

    async def drain(self) -> Optional[FrameResult]:
        """Wait for the in-flight estimate, if any"""
        if self._task is None:
            return None
        task, self._task = self._task, None
        return await task
