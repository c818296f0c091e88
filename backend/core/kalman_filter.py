"""
Kalman Filter Implementation for Keypoint Smoothing
Simplified constant-velocity model with a scalar gain per axis.

Pose keypoints jitter frame to frame; one filter per (athlete, landmark)
stabilizes them while keeping the overall trajectory.
"""

from typing import Dict, Optional, Tuple

from .models import DetectedPose, Keypoint
from config import get_thresholds
from config.thresholds import SmoothingConfig


class KalmanFilter2D:
    """
    2D position/velocity filter.

    Predict adds velocity to position; the gain is predicted covariance over
    predicted covariance plus measurement noise. Velocity is an exponential
    blend of the old velocity and the observed correction rather than a full
    Kalman velocity update.
    """

    def __init__(self, config: Optional[SmoothingConfig] = None):
        self.config = config or get_thresholds().smoothing
        self.reset()

    def update(self, mx: float, my: float) -> Tuple[float, float]:
        """
        Filter one measurement.

        Returns:
            Smoothed (x, y). The first measurement passes through unchanged.
        """
        if not self.initialized:
            self.x, self.y = mx, my
            self.initialized = True
            return mx, my

        cfg = self.config

        # Predict
        pred_x = self.x + self.vx
        pred_y = self.y + self.vy
        pred_px = self.px + self.pvx + cfg.process_noise
        pred_py = self.py + self.pvy + cfg.process_noise

        # Gain
        kx = pred_px / (pred_px + cfg.measurement_noise)
        ky = pred_py / (pred_py + cfg.measurement_noise)

        # Update
        self.x = pred_x + kx * (mx - pred_x)
        self.y = pred_y + ky * (my - pred_y)

        keep = cfg.velocity_retention
        self.vx = keep * self.vx + (1 - keep) * (self.x - pred_x)
        self.vy = keep * self.vy + (1 - keep) * (self.y - pred_y)

        self.px = (1 - kx) * pred_px
        self.py = (1 - ky) * pred_py

        return self.x, self.y

    @property
    def covariance(self) -> Tuple[float, float]:
        return self.px, self.py

    def reset(self):
        """Reset filter state"""
        cfg = self.config
        self.x = 0.0
        self.y = 0.0
        self.vx = 0.0
        self.vy = 0.0
        self.px = cfg.initial_covariance
        self.py = cfg.initial_covariance
        self.pvx = cfg.initial_velocity_covariance
        self.pvy = cfg.initial_velocity_covariance
        self.initialized = False


class KeypointSmoother:
    """
    Applies Kalman filtering to pose keypoints.
    Keeps a separate filter per athlete index and landmark.
    """

    def __init__(self, config: Optional[SmoothingConfig] = None):
        self.config = config or get_thresholds().smoothing
        self.filters: Dict[Tuple[int, int], KalmanFilter2D] = {}

    def smooth(self, pose: DetectedPose) -> DetectedPose:
        """
        Smooth one athlete's pose.

        Keypoints that aren't visible pass through raw and leave their
        filter untouched.
        """
        smoothed = []
        for kp in pose.keypoints:
            if not kp.is_visible:
                smoothed.append(kp)
                continue

            key = (pose.athlete_index, kp.landmark)
            kf = self.filters.get(key)
            if kf is None:
                kf = KalmanFilter2D(self.config)
                self.filters[key] = kf

            sx, sy = kf.update(kp.x, kp.y)
            smoothed.append(Keypoint(kp.landmark, sx, sy, kp.confidence, kp.visibility))

        return pose.with_keypoints(smoothed)

    def forget(self, athlete_index: int):
        """Drop filters for an athlete whose track ended"""
        for key in [k for k in self.filters if k[0] == athlete_index]:
            del self.filters[key]

    def reset(self):
        """Reset all filters"""
        self.filters.clear()
