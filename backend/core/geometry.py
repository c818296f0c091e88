"""
2D Angle Geometry
Pure helpers over normalized (x, y) points. Degenerate input resolves to 0 degrees.
"""

import math
from typing import Tuple

Point = Tuple[float, float]


def midpoint(a: Point, b: Point) -> Point:
    return ((a[0] + b[0]) / 2, (a[1] + b[1]) / 2)


def distance(a: Point, b: Point) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def joint_angle(a: Point, vertex: Point, b: Point) -> float:
    """
    Interior angle at ``vertex`` between the rays to ``a`` and ``b``.

    Returns:
        Angle in degrees, 0-180. Zero-length rays give 0.
    """
    ax, ay = a[0] - vertex[0], a[1] - vertex[1]
    bx, by = b[0] - vertex[0], b[1] - vertex[1]
    mag_a = math.hypot(ax, ay)
    mag_b = math.hypot(bx, by)
    if mag_a == 0 or mag_b == 0:
        return 0.0
    cos_angle = (ax * bx + ay * by) / (mag_a * mag_b)
    cos_angle = max(-1.0, min(1.0, cos_angle))
    return math.degrees(math.acos(cos_angle))


def _inclination(p1: Point, p2: Point) -> float:
    dx = abs(p2[0] - p1[0])
    dy = abs(p2[1] - p1[1])
    if dx == 0 and dy == 0:
        return 0.0
    return math.degrees(math.atan2(dy, dx))


def shin_angle(knee: Point, ankle: Point) -> float:
    """Shin inclination from the ground plane, 0-90"""
    return _inclination(knee, ankle)


def thigh_angle(hip: Point, knee: Point) -> float:
    """Thigh inclination from the ground plane, 0-90"""
    return _inclination(hip, knee)


def vector_angle_from_vertical(p1: Point, p2: Point) -> float:
    """Inclination of segment p1->p2 measured from horizontal, 0-90"""
    return _inclination(p1, p2)


def line_tilt(left: Point, right: Point) -> float:
    """
    Tilt of a left/right landmark pair (shoulders, hips) away from level.
    A pair stacked on the same x (side-on camera) reads as level.

    Folded to 0-90 regardless of which side is on the left of the image, so
    a pair reversed by the camera view reads the same as its mirror. The
    posture thresholds (``FeedbackConfig.shoulder_rotation_max``,
    ``ScoringConfig.max_shoulder_rotation``, ``InjuryConfig.rotation_flag``
    and the hip-drop limits) are in this folded convention, where 0 is level
    and 90 is vertical.
    """
    if right[0] - left[0] == 0:
        return 0.0
    return _inclination(left, right)
