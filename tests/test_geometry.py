"""Tests for corner ordering, rescaling and perspective correction."""
import itertools

import numpy as np
import pytest

from docscanner.frames import Size
from docscanner.geometry import (
    exterior_angles,
    order_corners,
    output_size,
    perspective_transform,
    polygon_edges,
    rescale,
    rotate,
    rotated_size,
    scale_contour,
    warp,
)


QUADS = [
    [(0, 0), (0, 10), (10, 10), (10, 0)],
    [(12, 8), (205, 20), (190, 150), (5, 140)],
    [(300, 410), (40, 395), (52, 60), (310, 75)],
]


class TestOrderCorners:

    def test_canonical_order(self):
        ordered = order_corners([(10, 10), (0, 0), (0, 10), (10, 0)])
        np.testing.assert_array_equal(ordered, [[0, 0], [10, 0], [10, 10], [0, 10]])

    @pytest.mark.parametrize("quad", QUADS)
    def test_idempotent(self, quad):
        once = order_corners(quad)
        np.testing.assert_array_equal(order_corners(once), once)

    @pytest.mark.parametrize("quad", QUADS)
    def test_input_order_does_not_matter(self, quad):
        expected = order_corners(quad)
        for perm in itertools.permutations(quad):
            np.testing.assert_array_equal(order_corners(list(perm)), expected)

    def test_accepts_opencv_contour_shape(self):
        contour = np.array([[[5, 5]], [[50, 6]], [[49, 40]], [[4, 41]]], dtype=np.int32)
        ordered = order_corners(contour)
        assert ordered.shape == (4, 2)
        assert ordered.dtype == np.float32
        np.testing.assert_array_equal(ordered[0], [5, 5])
        np.testing.assert_array_equal(ordered[2], [49, 40])

    def test_wrong_point_count(self):
        with pytest.raises(ValueError):
            order_corners([(0, 0), (1, 0), (1, 1)])


class TestRescale:

    @pytest.mark.parametrize("quad", QUADS)
    def test_round_trip(self, quad):
        a, b = (853, 512), (1920, 1080)
        back = rescale(rescale(quad, a, b), b, a)
        np.testing.assert_allclose(back, np.array(quad, dtype=np.float32), atol=1e-3)

    def test_non_uniform(self):
        scaled = rescale([(10, 10), (20, 10), (20, 20), (10, 20)], (100, 100), (200, 50))
        np.testing.assert_allclose(scaled[0], [20, 5])
        np.testing.assert_allclose(scaled[2], [40, 10])

    def test_scale_contour_orders_first(self):
        contour = [(10, 10), (10, 0), (0, 10), (0, 0)]
        scaled = scale_contour(contour, (10, 10), (20, 30))
        np.testing.assert_allclose(scaled, [[0, 0], [20, 0], [20, 30], [0, 30]])


class TestPerspective:

    def test_output_size_uses_longest_edges(self):
        quad = order_corners([(0, 0), (100, 0), (90, 50), (10, 60)])
        size = output_size(quad)
        assert size == Size(100, 60)

    def test_output_size_truncates(self):
        quad = [(0, 0), (10.9, 0), (10.9, 5.7), (0, 5.7)]
        assert output_size(quad) == Size(10, 5)

    def test_square_is_identity_equivalent(self):
        quad = order_corners([(0, 0), (0, 10), (10, 10), (10, 0)])
        size, matrix = perspective_transform(quad)

        assert size == Size(10, 10)
        # Pure scale onto the (0,0)-(9,9) destination, no shear or projection
        expected = np.diag([0.9, 0.9, 1.0])
        np.testing.assert_allclose(matrix / matrix[2, 2], expected, atol=1e-6)

        image = np.full((20, 20, 3), 123, dtype=np.uint8)
        warped = warp(image, matrix, size)
        assert warped.shape == (10, 10, 3)
        np.testing.assert_array_equal(warped, image[:10, :10])

    def test_maps_corners_to_destination_rectangle(self):
        quad = order_corners([(12, 8), (205, 20), (190, 150), (5, 140)])
        size, matrix = perspective_transform(quad)

        src = np.hstack([quad, np.ones((4, 1), dtype=np.float32)])
        dst = (matrix @ src.T).T
        dst = dst[:, :2] / dst[:, 2:3]

        w, h = size
        np.testing.assert_allclose(dst, [[0, 0], [w - 1, 0], [w - 1, h - 1], [0, h - 1]], atol=1e-3)

    def test_warp_flattens_document(self):
        image = np.zeros((200, 300, 3), dtype=np.uint8)
        image[50:150, 100:250] = 255
        quad = order_corners([(100, 50), (249, 50), (249, 149), (100, 149)])
        size, matrix = perspective_transform(quad)
        warped = warp(image, matrix, size)

        assert warped.shape[:2] == (size.height, size.width)
        assert warped.mean() > 250


class TestRotation:

    def test_rotate_clockwise(self):
        image = np.zeros((2, 3), dtype=np.uint8)
        image[0, 0] = 255
        rotated = rotate(image, 90)
        assert rotated.shape == (3, 2)
        # Top-left ends up top-right after a clockwise quarter turn
        assert rotated[0, 1] == 255

    def test_rotate_zero_returns_input(self):
        image = np.zeros((2, 3), dtype=np.uint8)
        assert rotate(image, 0) is image
        assert rotate(image, 360) is image

    def test_rotate_rejects_arbitrary_angles(self):
        with pytest.raises(ValueError):
            rotate(np.zeros((2, 2), dtype=np.uint8), 45)

    def test_rotated_size(self):
        assert rotated_size((640, 480), 90) == Size(480, 640)
        assert rotated_size((640, 480), 180) == Size(640, 480)
        assert rotated_size((640, 480), 270) == Size(480, 640)


class TestExteriorAngles:

    def test_rectangle(self):
        angles = exterior_angles([(0, 0), (40, 0), (40, 20), (0, 20)])
        np.testing.assert_allclose(angles, [90, 90, 90, 90])

    def test_parallelogram(self):
        angles = exterior_angles([(0, 0), (100, 0), (130, 40), (30, 40)])
        acute = np.degrees(np.arctan2(40, 30))
        np.testing.assert_allclose(sorted(angles), sorted([acute, acute, 180 - acute, 180 - acute]), atol=1e-3)

    def test_edges_close_polygon(self):
        edges = polygon_edges([(0, 0), (1, 0), (1, 1)])
        assert len(edges) == 3
        np.testing.assert_array_equal(edges[-1][1], [0, 0])
