"""
Coordinate helpers shared by the parser and the format encoders.

All inputs are normalized [0, 1] coordinates unless the name says "pixels".
"""

from typing import Sequence

import numpy as np


def clamp_unit(value: float) -> float:
    """Clamp a normalized value to [0, 1]."""
    return float(min(1.0, max(0.0, value)))


def clamp_points(points: Sequence[Sequence[float]]) -> list[tuple[float, float]]:
    """
    Clamp (x, y) points to the unit square.

    Args:
        points: Sequence of (x, y) pairs; extra components are ignored

    Returns:
        List of clamped (x, y) tuples
    """
    if len(points) == 0:
        return []
    arr = np.clip(np.asarray([p[:2] for p in points], dtype=np.float64), 0.0, 1.0)
    return [(float(x), float(y)) for x, y in arr]


def denormalize_points(
    points: Sequence[Sequence[float]],
    width: int,
    height: int
) -> list[tuple[float, float]]:
    """
    Convert normalized (x, y) points to pixel coordinates.

    Args:
        points: Sequence of normalized (x, y) pairs
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        List of (x, y) pixel coordinates
    """
    if len(points) == 0:
        return []
    arr = np.asarray([p[:2] for p in points], dtype=np.float64)
    arr = arr * np.array([width, height], dtype=np.float64)
    return [(float(x), float(y)) for x, y in arr]


def polygon_to_flat_list(polygon: Sequence[Sequence[float]]) -> list[float]:
    """
    Flatten polygon to list of coordinates [x1, y1, x2, y2, ...].
    """
    result = []
    for point in polygon:
        result.extend([float(point[0]), float(point[1])])
    return result


def cxcywh_to_xyxy(cx: float, cy: float, w: float, h: float) -> tuple[float, float, float, float]:
    """Center box to (x_min, y_min, x_max, y_max), same units."""
    return (cx - w / 2.0, cy - h / 2.0, cx + w / 2.0, cy + h / 2.0)


def bbox_to_pixels(
    cx: float,
    cy: float,
    w: float,
    h: float,
    width: int,
    height: int
) -> list[float]:
    """
    Convert a normalized center box to COCO pixel format.

    Returns:
        [x_min, y_min, box_width, box_height] in pixels
    """
    x_min = (cx - w / 2.0) * width
    y_min = (cy - h / 2.0) * height
    return [x_min, y_min, w * width, h * height]


def bbox_to_voc(
    cx: float,
    cy: float,
    w: float,
    h: float,
    width: int,
    height: int
) -> tuple[int, int, int, int]:
    """
    Convert a normalized center box to Pascal VOC corners.

    Corners are rounded to whole pixels and clamped to the image.
    """
    x1, y1, x2, y2 = cxcywh_to_xyxy(cx, cy, w, h)
    return (
        max(0, int(round(x1 * width))),
        max(0, int(round(y1 * height))),
        min(width, int(round(x2 * width))),
        min(height, int(round(y2 * height))),
    )


def polygon_bbox(points: Sequence[Sequence[float]]) -> tuple[float, float, float, float]:
    """
    Minimal axis-aligned rectangle enclosing a polygon.

    Args:
        points: Sequence of (x, y) pairs (any units)

    Returns:
        (cx, cy, w, h) in the same units as the input
    """
    if len(points) == 0:
        return (0.0, 0.0, 0.0, 0.0)
    arr = np.asarray([p[:2] for p in points], dtype=np.float64)
    x_min, y_min = arr.min(axis=0)
    x_max, y_max = arr.max(axis=0)
    w = x_max - x_min
    h = y_max - y_min
    return (float(x_min + w / 2.0), float(y_min + h / 2.0), float(w), float(h))


def keypoints_bbox(points: Sequence[Sequence[float]]) -> tuple[float, float, float, float]:
    """
    Enclosing box of the labelled keypoints (visibility > 0).

    Falls back to all points when none is labelled.
    """
    labelled = [p for p in points if len(p) < 3 or p[2] > 0]
    return polygon_bbox(labelled or points)


def polygon_area(polygon: Sequence[Sequence[float]]) -> float:
    """
    Calculate the area of a polygon using the shoelace formula.

    Args:
        polygon: Sequence of (x, y) coordinates

    Returns:
        Area (in whatever units the coordinates are in)
    """
    if len(polygon) < 3:
        return 0.0
    arr = np.asarray([p[:2] for p in polygon], dtype=np.float64)
    x, y = arr[:, 0], arr[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)


def validate_polygon(points: Sequence[Sequence[float]], min_points: int = 3) -> tuple[bool, str]:
    """
    Check that a polygon has enough points to enclose an area.

    Returns:
        (is_valid, error_message)
    """
    if len(points) < min_points:
        return False, f"Polygon has only {len(points)} points (minimum {min_points} required)"
    return True, "OK"
