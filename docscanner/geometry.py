"""Geometry helpers: corner ordering, rescaling and perspective correction.

Every function here is pure. Points are ``(x, y)`` in pixel coordinates with
the origin at the top-left corner and y growing downwards.
"""

import math
from typing import List, Sequence, Tuple

import cv2
import numpy as np

from .frames import Size

# Clockwise rotations supported by cv2.rotate
_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _as_points(points) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float32)
    return pts.reshape(-1, 2)


def order_corners(points) -> np.ndarray:
    """Order 4 points as top-left, top-right, bottom-right, bottom-left.

    The two points with the smallest x form the left pair, the other two the
    right pair; within each pair the smaller y is the top. This assumes the
    quadrilateral is not heavily rotated: a diamond-oriented document gets an
    arbitrary but deterministic labelling.

    Args:
        points: 4 points, any array-like reshapeable to (4, 2).

    Returns:
        float32 array of shape (4, 2).
    """
    pts = _as_points(points)
    if len(pts) != 4:
        raise ValueError(f"expected 4 points, got {len(pts)}")

    by_x = np.argsort(pts[:, 0], kind='stable')
    left = pts[by_x[:2]]
    right = pts[by_x[2:]]

    left = left[np.argsort(left[:, 1], kind='stable')]
    right = right[np.argsort(right[:, 1], kind='stable')]

    return np.array([left[0], right[0], right[1], left[1]], dtype=np.float32)


def rescale(quad, from_size: Sequence[int], to_size: Sequence[int]) -> np.ndarray:
    """Scale points from one resolution to another.

    x and y are scaled independently, so the aspect ratio may change.
    """
    pts = _as_points(quad)
    x_scale = float(to_size[0]) / float(from_size[0])
    y_scale = float(to_size[1]) / float(from_size[1])
    return (pts * np.array([x_scale, y_scale], dtype=np.float32)).astype(np.float32)


def scale_contour(contour, from_size: Sequence[int], to_size: Sequence[int]) -> np.ndarray:
    """Order a 4-point contour and extrapolate it to another resolution."""
    return rescale(order_corners(contour), from_size, to_size)


def distance(a, b) -> float:
    return math.hypot(float(a[0]) - float(b[0]), float(a[1]) - float(b[1]))


def output_size(quad) -> Size:
    """Size of the flattened document for an ordered quad.

    Width is the longer of the top and bottom edges, height the longer of the
    left and right edges, both truncated to integers.
    """
    tl, tr, br, bl = _as_points(quad)

    width = max(distance(br, bl), distance(tr, tl))
    height = max(distance(tr, br), distance(tl, bl))

    return Size(max(int(width), 1), max(int(height), 1))


def destination_points(size: Size) -> np.ndarray:
    return np.array([
        [0, 0],                            # Top-left
        [size.width - 1, 0],               # Top-right
        [size.width - 1, size.height - 1],  # Bottom-right
        [0, size.height - 1],              # Bottom-left
    ], dtype=np.float32)


def perspective_transform(quad) -> Tuple[Size, np.ndarray]:
    """Compute the homography flattening an ordered quad.

    Args:
        quad: Points ordered TL, TR, BR, BL (see :func:`order_corners`).

    Returns:
        Tuple of (output size, 3x3 transformation matrix).
    """
    src = _as_points(quad)
    size = output_size(src)
    matrix = cv2.getPerspectiveTransform(src, destination_points(size))
    return size, matrix


def warp(
    image: np.ndarray,
    matrix: np.ndarray,
    size: Sequence[int],
    border_value=(0, 0, 0),
) -> np.ndarray:
    """Resample ``image`` into a ``size`` raster through ``matrix``.

    Pixels mapping outside the source take ``border_value``.
    """
    return cv2.warpPerspective(
        image, matrix, (int(size[0]), int(size[1])),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border_value,
    )


def rotate(image: np.ndarray, degrees: int) -> np.ndarray:
    """Rotate clockwise by a multiple of 90 degrees, keeping the whole image."""
    degrees %= 360
    if degrees == 0:
        return image
    if degrees not in _ROTATE_CODES:
        raise ValueError(f"rotation must be a multiple of 90, got {degrees}")
    return cv2.rotate(image, _ROTATE_CODES[degrees])


def rotated_size(size: Sequence[int], degrees: int) -> Size:
    if degrees % 180 == 90:
        return Size(int(size[1]), int(size[0]))
    return Size(int(size[0]), int(size[1]))


def polygon_edges(points) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Edges of the closed polygon through ``points``, as (start, end) pairs."""
    pts = _as_points(points)
    n = len(pts)
    return [(pts[i], pts[(i + 1) % n]) for i in range(n)]


def exterior_angle(edge, previous) -> float:
    """Signed turning angle in degrees between two edges, in (-180, 180].

    Measured from the direction of ``edge`` to the direction of ``previous``.
    """
    d1 = edge[1] - edge[0]
    d2 = previous[1] - previous[0]
    angle = math.degrees(math.atan2(d2[1], d2[0]) - math.atan2(d1[1], d1[0]))
    if angle <= -180.0:
        return angle + 360.0
    if angle > 180.0:
        return angle - 360.0
    return angle


def exterior_angles(points) -> List[float]:
    """Absolute exterior angle at each vertex of a closed polygon."""
    edges = polygon_edges(points)
    n = len(edges)
    return [abs(exterior_angle(edges[(j + 1) % n], edges[j])) for j in range(n)]
