"""Geometry utilities for pose analysis."""

from typing import Sequence, Tuple

import numpy as np

# Below this length a limb segment is treated as collapsed.
DEFAULT_EPSILON = 1e-4

Point3D = Sequence[float]


def joint_vectors(
    point1: Point3D,
    point2: Point3D,
    point3: Point3D,
) -> Tuple[np.ndarray, np.ndarray]:
    """Build the two segment vectors that meet at the vertex point2.

    Args:
        point1: Proximal point (x, y, z).
        point2: Vertex point (x, y, z).
        point3: Distal point (x, y, z).

    Returns:
        Tuple of (point1 - point2, point3 - point2) as float arrays.
    """
    vertex = np.asarray(point2, dtype=float)[:3]
    v1 = np.asarray(point1, dtype=float)[:3] - vertex
    v2 = np.asarray(point3, dtype=float)[:3] - vertex
    return v1, v2


def is_degenerate(
    point1: Point3D,
    point2: Point3D,
    point3: Point3D,
    epsilon: float = DEFAULT_EPSILON,
) -> bool:
    """Check whether either segment at the vertex is too short to define an angle."""
    v1, v2 = joint_vectors(point1, point2, point3)
    return bool(np.linalg.norm(v1) < epsilon or np.linalg.norm(v2) < epsilon)


def calculate_angle_3d(
    point1: Point3D,
    point2: Point3D,
    point3: Point3D,
    epsilon: float = DEFAULT_EPSILON,
) -> float:
    """Calculate 3D angle formed by three points (in degrees).

    The angle is calculated at point2 (vertex), formed by vectors
    point2->point1 and point2->point3, using all three coordinates.

    Args:
        point1: First point (x, y, z).
        point2: Vertex point (x, y, z).
        point3: Third point (x, y, z).
        epsilon: Minimum segment length; shorter segments yield 0.

    Returns:
        Angle in degrees (0-180), or 0.0 for degenerate geometry.

    Example:
        >>> calculate_angle_3d((0, 1, 0), (0, 0, 0), (0, 0, 1))
        90.0
    """
    v1, v2 = joint_vectors(point1, point2, point3)

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 < epsilon or norm2 < epsilon:
        return 0.0

    cos_angle = np.dot(v1, v2) / (norm1 * norm2)
    cos_angle = np.clip(cos_angle, -1.0, 1.0)  # Handle numerical errors

    return float(np.degrees(np.arccos(cos_angle)))


def euclidean_distance_3d(point1: Point3D, point2: Point3D) -> float:
    """Calculate Euclidean distance between two 3D points.

    Args:
        point1: First point (x, y, z).
        point2: Second point (x, y, z).

    Returns:
        Distance between points.
    """
    diff = np.asarray(point1, dtype=float)[:3] - np.asarray(point2, dtype=float)[:3]
    return float(np.linalg.norm(diff))


def linear_score(value: float, ceiling: float) -> float:
    """Map a non-negative error onto a 0-100 score.

    0 maps to 100 and anything at or beyond ``ceiling`` maps to 0.

    Args:
        value: Measured error (degrees, displacement, ratio...).
        ceiling: Error at which the score reaches 0.

    Returns:
        Score clamped to [0, 100].
    """
    if ceiling <= 0:
        return 100.0 if value <= 0 else 0.0
    return float(np.clip(100.0 * (1.0 - value / ceiling), 0.0, 100.0))
