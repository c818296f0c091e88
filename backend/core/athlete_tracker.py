"""
Multi-Athlete Tracker
Assigns stable athlete indices to per-frame detections by bounding-box overlap.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .models import BoundingBox, DetectedPose, Keypoint
from config import get_thresholds
from config.thresholds import TrackerConfig, VisibilityConfig

logger = logging.getLogger(__name__)


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over union of two (x, y, w, h) boxes"""
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    ix = max(0.0, min(ax + aw, bx + bw) - max(ax, bx))
    iy = max(0.0, min(ay + ah, by + bh) - max(ay, by))
    inter = ix * iy
    union = aw * ah + bw * bh - inter
    return inter / union if union > 0 else 0.0


def pose_bounding_box(
    keypoints: Sequence[Keypoint],
    config: Optional[VisibilityConfig] = None,
) -> BoundingBox:
    """Padded box around keypoints above the box confidence threshold, clipped to the frame"""
    cfg = config or get_thresholds().visibility
    pts = [(kp.x, kp.y) for kp in keypoints if kp.confidence > cfg.bbox_min_confidence]
    if not pts:
        return (0.0, 0.0, 1.0, 1.0)
    xs = [p[0] for p in pts]
    ys = [p[1] for p in pts]
    x0 = max(0.0, min(xs) - cfg.bbox_padding)
    y0 = max(0.0, min(ys) - cfg.bbox_padding)
    x1 = min(1.0, max(xs) + cfg.bbox_padding)
    y1 = min(1.0, max(ys) + cfg.bbox_padding)
    return (x0, y0, max(0.0, x1 - x0), max(0.0, y1 - y0))


@dataclass
class Track:
    athlete_index: int
    bounding_box: BoundingBox
    missing_frames: int = 0


class AthleteTracker:
    """
    Greedy IoU matcher.

    Each detection takes the best-overlapping unclaimed track above the IoU
    threshold, otherwise opens a new track while capacity allows. Tracks unseen
    for ``max_missing_frames`` updates are dropped.
    """

    def __init__(self, config: Optional[TrackerConfig] = None, max_persons: Optional[int] = None):
        self.config = config or get_thresholds().tracker
        self.max_persons = max_persons if max_persons is not None else self.config.max_persons
        self.reset()

    def reset(self):
        self.tracks: Dict[int, Track] = {}
        self._next_index = 0
        self.dropped: List[int] = []

    def update(self, poses: Sequence[DetectedPose]) -> Dict[int, DetectedPose]:
        """
        Match one frame's detections to tracks.

        Returns:
            athlete index -> pose re-tagged with that index
        """
        for track in self.tracks.values():
            track.missing_frames += 1
        self.dropped = [
            idx for idx, t in self.tracks.items() if t.missing_frames >= self.config.max_missing_frames
        ]
        for idx in self.dropped:
            logger.debug(f"Dropping athlete track {idx}")
            del self.tracks[idx]

        assignments: Dict[int, DetectedPose] = {}
        for pose in poses:
            best_index, best_iou = None, self.config.iou_threshold
            for idx, track in self.tracks.items():
                if idx in assignments:
                    continue
                overlap = iou(track.bounding_box, pose.bounding_box)
                if overlap > best_iou:
                    best_index, best_iou = idx, overlap

            if best_index is None:
                if len(self.tracks) >= self.max_persons:
                    logger.debug(f"Ignoring detection, already tracking {self.max_persons} athletes")
                    continue
                best_index = self._next_index
                self._next_index += 1
                self.tracks[best_index] = Track(best_index, pose.bounding_box)
                logger.info(f"New athlete track {best_index}")

            track = self.tracks[best_index]
            track.bounding_box = pose.bounding_box
            track.missing_frames = 0
            assignments[best_index] = pose.with_athlete_index(best_index)

        return assignments
