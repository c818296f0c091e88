"""
Split Time Estimation
Interval split times, velocity statistics and an idealized 100 m velocity
profile, all derived from a velocity-vs-distance curve.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .models import VelocityPoint
from config import get_thresholds
from config.thresholds import SplitConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitTime:
    start_distance: float
    end_distance: float
    time: float           # seconds spent in the interval
    confidence: float     # 0.5-1.0, lower when velocity is noisy near the crossing
    crossing_time: float  # timestamp the end distance was reached

    @property
    def label(self) -> str:
        return f"{self.start_distance:.0f}-{self.end_distance:.0f}m"


@dataclass(frozen=True)
class VelocityStats:
    max_velocity: float
    max_velocity_distance: float
    max_velocity_time: float
    average_velocity: float
    time_to_max_velocity: float
    velocity_at_finish: float
    acceleration_phase_length: float  # distance where velocity first reaches the plateau


class SplitTimeEstimator:
    """Stateless estimator over velocity curves"""

    def __init__(self, config: Optional[SplitConfig] = None):
        self.config = config or get_thresholds().splits

    def estimate_splits(
        self,
        curve: Sequence[VelocityPoint],
        interval: Optional[float] = None,
    ) -> List[SplitTime]:
        """
        Interpolate the time each interval boundary is crossed.

        The first split starts at distance 0 and the first point's timestamp.
        Several boundaries between two consecutive points each get a split.
        """
        cfg = self.config
        interval = interval if interval is not None else cfg.interval_m
        if not curve or interval <= 0:
            return []

        splits: List[SplitTime] = []
        split_start = 0.0
        split_start_time = curve[0].timestamp

        for i in range(1, len(curve)):
            prev, point = curve[i - 1], curve[i]
            while point.distance >= split_start + interval:
                target = split_start + interval
                span = point.distance - prev.distance
                fraction = (target - prev.distance) / span if span > 0 else 1.0
                fraction = max(0.0, min(1.0, fraction))
                crossing = prev.timestamp + fraction * (point.timestamp - prev.timestamp)

                spread = self._local_std(curve, i)
                confidence = max(cfg.confidence_floor, 1.0 - spread / cfg.confidence_divisor)

                splits.append(SplitTime(
                    start_distance=split_start,
                    end_distance=target,
                    time=crossing - split_start_time,
                    confidence=confidence,
                    crossing_time=crossing,
                ))
                split_start = target
                split_start_time = crossing

        logger.debug(f"Estimated {len(splits)} splits of {interval:g}m from {len(curve)} points")
        return splits

    def velocity_stats(self, curve: Sequence[VelocityPoint]) -> Optional[VelocityStats]:
        if not curve:
            return None

        velocities = [p.velocity for p in curve]
        peak = max(velocities)
        peak_point = next(p for p in curve if p.velocity == peak)
        plateau = peak * self.config.plateau_ratio
        accel_end = next((p.distance for p in curve if p.velocity >= plateau), peak_point.distance)
        elapsed = peak_point.timestamp - curve[0].timestamp

        return VelocityStats(
            max_velocity=peak,
            max_velocity_distance=peak_point.distance,
            max_velocity_time=elapsed,
            average_velocity=float(np.mean(velocities)),
            time_to_max_velocity=elapsed,
            velocity_at_finish=curve[-1].velocity,
            acceleration_phase_length=accel_end,
        )

    def theoretical_curve(self, target_100m_time: float, resolution: Optional[int] = None) -> List[VelocityPoint]:
        """
        Idealized velocity profile for a given 100 m time.

        Smoothstep acceleration to a peak ~13% above the average speed at
        35 m, then a slow linear decay to the finish.
        """
        cfg = self.config
        resolution = resolution if resolution is not None else cfg.resolution
        if target_100m_time <= 0 or resolution <= 0:
            return []

        peak = cfg.race_distance_m / target_100m_time * cfg.peak_over_average
        step = cfg.race_distance_m / resolution
        curve: List[VelocityPoint] = []

        for i in range(resolution):
            dist = i * step
            if dist < cfg.distance_to_max_m:
                t = dist / cfg.distance_to_max_m
                velocity = peak * (3 * t * t - 2 * t * t * t)
            else:
                t = (dist - cfg.distance_to_max_m) / (cfg.race_distance_m - cfg.distance_to_max_m)
                velocity = peak * (1 - cfg.late_decay * t)

            if i == 0:
                time = 0.0
            else:
                prev = curve[-1]
                time = prev.timestamp + step / ((prev.velocity + velocity) / 2)
            curve.append(VelocityPoint(distance=dist, velocity=velocity, timestamp=time))

        return curve

    def _local_std(self, curve: Sequence[VelocityPoint], index: int) -> float:
        half = self.config.variance_window // 2
        start = max(0, index - half)
        end = min(len(curve) - 1, index + half)
        window = [p.velocity for p in curve[start:end + 1]]
        return float(np.std(window, ddof=1)) if len(window) > 1 else 0.0
