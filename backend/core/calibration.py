"""
Camera Calibration
Pixel-to-meter scale used for every distance and velocity the core reports.

The core reads this value and never estimates it. Bad input is rejected here,
at setup time, so a run never starts with an unusable scale.
"""

import math
import logging
from dataclasses import dataclass
from typing import Tuple

from exceptions import CalibrationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Calibration:
    """Scale and frame geometry for one camera setup"""
    pixels_per_meter: float = 200.0
    frame_width_px: int = 1920
    frame_height_px: int = 1080
    # Estimated camera angle from horizontal (degrees)
    camera_angle_deg: float = 0.0

    def __post_init__(self):
        if not self.pixels_per_meter > 0:
            raise CalibrationError(
                f"pixels_per_meter must be positive, got {self.pixels_per_meter}",
                field="pixels_per_meter"
            )
        if self.frame_width_px <= 0 or self.frame_height_px <= 0:
            raise CalibrationError(
                f"Invalid frame size {self.frame_width_px}x{self.frame_height_px}",
                field="frame_size"
            )
        if not 0 <= self.camera_angle_deg < 90:
            raise CalibrationError(
                f"camera_angle_deg must be in [0, 90), got {self.camera_angle_deg}",
                field="camera_angle_deg"
            )

    def to_pixels(self, dx: float, dy: float) -> Tuple[float, float]:
        """Convert a normalized displacement to pixels"""
        return dx * self.frame_width_px, dy * self.frame_height_px

    def meters(self, dx: float, dy: float) -> float:
        """Length of a normalized displacement in meters"""
        px, py = self.to_pixels(dx, dy)
        return math.hypot(px, py) / self.pixels_per_meter

    def vertical_meters(self, dy: float) -> float:
        return abs(dy) * self.frame_height_px / self.pixels_per_meter

    @classmethod
    def from_reference(
        cls,
        pixel_distance: float,
        real_distance_m: float,
        camera_angle_deg: float = 0.0,
        frame_width_px: int = 1920,
        frame_height_px: int = 1080,
    ) -> "Calibration":
        """
        Build a calibration from a known distance marked on screen.

        Args:
            pixel_distance: Distance between the two reference marks in pixels
            real_distance_m: Real-world distance between the marks
            camera_angle_deg: Camera angle from horizontal; applies a cosine correction

        Raises:
            CalibrationError: If either distance is zero or negative
        """
        if real_distance_m <= 0:
            raise CalibrationError(
                f"Reference distance must be positive, got {real_distance_m}",
                field="real_distance_m"
            )
        if pixel_distance <= 0:
            raise CalibrationError(
                f"Reference pixel distance must be positive, got {pixel_distance}",
                field="pixel_distance"
            )

        corrected = pixel_distance * math.cos(math.radians(camera_angle_deg))
        ppm = corrected / real_distance_m
        logger.info(
            f"Calibrated {ppm:.1f} px/m from {pixel_distance:.1f}px over {real_distance_m}m "
            f"(camera angle {camera_angle_deg:.1f} deg)"
        )
        return cls(
            pixels_per_meter=ppm,
            frame_width_px=frame_width_px,
            frame_height_px=frame_height_px,
            camera_angle_deg=camera_angle_deg,
        )

    @classmethod
    def from_reference_points(
        cls,
        p1: Tuple[float, float],
        p2: Tuple[float, float],
        real_distance_m: float,
        camera_angle_deg: float = 0.0,
        frame_width_px: int = 1920,
        frame_height_px: int = 1080,
    ) -> "Calibration":
        """Same as from_reference, with the marks given as pixel coordinates"""
        pixel_distance = math.hypot(p2[0] - p1[0], p2[1] - p1[1])
        return cls.from_reference(
            pixel_distance, real_distance_m, camera_angle_deg, frame_width_px, frame_height_px
        )


def calibration_from_settings(settings) -> Calibration:
    """Default calibration from application settings"""
    return Calibration(
        pixels_per_meter=settings.PIXELS_PER_METER,
        frame_width_px=settings.FRAME_WIDTH_PX,
        frame_height_px=settings.FRAME_HEIGHT_PX,
        camera_angle_deg=settings.CAMERA_ANGLE_DEG,
    )
