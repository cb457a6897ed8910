"""Tests for edge detection and contour selection."""
import cv2
import numpy as np
import pytest

from conftest import DOC_QUAD
from docscanner.config import ANGLE_BANDS, ScannerConfig
from docscanner.detector import EdgeDetector, angles_within_band
from docscanner.frames import Size
from docscanner.geometry import order_corners, rescale

RECT = [(100, 80), (500, 80), (500, 380), (100, 380)]
# 40 degree shear, far from a right angle
PARALLELOGRAM = [(540, 450), (700, 450), (815, 354), (655, 354)]
TRIANGLE = [(600, 80), (800, 80), (700, 250)]


def draw_outlines(*polygons, size=(853, 512)):
    binary = np.zeros((size[1], size[0]), dtype=np.uint8)
    for poly in polygons:
        cv2.polylines(binary, [np.array(poly, dtype=np.int32)], True, 255, 1)
    return binary


def sheared(angle_deg, origin=(100, 300), base=300, side=200):
    """Parallelogram whose interior angle at ``origin`` is ``angle_deg``."""
    ox, oy = origin
    dx = side * np.cos(np.radians(angle_deg))
    dy = side * np.sin(np.radians(angle_deg))
    return np.array([
        [ox, oy], [ox + base, oy], [ox + base + dx, oy - dy], [ox + dx, oy - dy],
    ]).round().astype(np.int32)


class TestAnglesWithinBand:

    def test_near_right_angles_accepted(self):
        assert angles_within_band([89, 91, 88, 92], ANGLE_BANDS['strict'])

    def test_one_sharp_angle_rejects(self):
        assert not angles_within_band([89, 91, 40, 92], ANGLE_BANDS['strict'])

    def test_inclusive_bounds(self):
        assert angles_within_band([75, 105, 75, 105], (75, 105))

    def test_negative_angles_use_magnitude(self):
        assert angles_within_band([-90, -88, 91, 90], (75, 105))


class TestAnalyzeContour:

    def test_rectangle(self):
        candidate = EdgeDetector().analyze_contour(np.array(RECT, dtype=np.int32))
        assert candidate.vertex_count == 4
        assert candidate.is_document
        assert candidate.area == pytest.approx(400 * 300)

    @pytest.mark.parametrize("band,accepted", [
        ('strict', False),
        ('normal', True),
        ('loose', True),
    ])
    def test_sheared_parallelogram(self, band, accepted):
        detector = EdgeDetector(ScannerConfig(angle_band=ANGLE_BANDS[band]))
        candidate = detector.analyze_contour(sheared(65))
        assert candidate.vertex_count == 4
        assert candidate.is_rectangle is accepted

    def test_triangle_is_not_a_document(self):
        candidate = EdgeDetector().analyze_contour(np.array(TRIANGLE, dtype=np.int32))
        assert candidate.vertex_count == 3
        assert not candidate.is_document


class TestSelectBestContour:

    def test_picks_rectangle_among_distractors(self):
        detector = EdgeDetector()
        binary = draw_outlines(RECT, PARALLELOGRAM, TRIANGLE)

        best = detector.select_best_contour(binary)

        assert best is not None
        np.testing.assert_allclose(order_corners(best), order_corners(RECT), atol=2)

    def test_winner_is_largest_candidate(self):
        detector = EdgeDetector()
        binary = draw_outlines(RECT, PARALLELOGRAM, TRIANGLE, [(150, 120), (300, 120), (300, 250), (150, 250)])

        result = detector.detect_binary(binary)

        assert result.found
        winner_area = cv2.contourArea(result.contour)
        assert all(winner_area >= c.area for c in result.candidates)
        # Distractors never make it into the candidate list
        assert all(c.approx[:, 0].max() <= 502 for c in result.candidates)

    def test_outline_on_frame_border(self):
        detector = EdgeDetector()
        binary = draw_outlines([(0, 0), (400, 0), (400, 300), (0, 300)])

        closed = detector.close_gaps(binary)
        best = detector.select_best_contour(closed)

        assert np.count_nonzero(closed[0]) >= 401
        assert best is not None
        np.testing.assert_allclose(
            order_corners(best), [[0, 0], [400, 0], [400, 300], [0, 300]], atol=2
        )

    def test_nothing_rectangular(self):
        detector = EdgeDetector()
        assert detector.select_best_contour(draw_outlines(PARALLELOGRAM, TRIANGLE)) is None


class TestDetect:

    def _gray(self, image):
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

    def test_finds_document(self, config, document_image):
        detector = EdgeDetector(config)
        result = detector.detect(self._gray(document_image))

        assert result.found
        assert result.size == Size(762, 572)
        assert result.contour.shape == (4, 2)

        expected = rescale(order_corners(DOC_QUAD), (640, 480), result.size)
        np.testing.assert_allclose(order_corners(result.contour), expected, atol=5)

    def test_overlay_matches_working_size(self, config, document_image):
        result = EdgeDetector(config).detect(self._gray(document_image))

        assert result.overlay.shape == (572, 762, 4)
        green = result.overlay[:, :, 1]
        assert green.any()
        assert not result.overlay[:, :, 2].any()

    def test_rotation_swaps_working_size(self, config, document_image):
        result = EdgeDetector(config).detect(self._gray(document_image), rotation=90)

        assert result.size == Size(572, 762)
        assert result.overlay.shape[:2] == (762, 572)
        assert result.found
        # Landscape paper becomes portrait after a quarter turn
        xs, ys = result.contour[:, 0], result.contour[:, 1]
        assert ys.max() - ys.min() > xs.max() - xs.min()

    def test_explicit_working_size(self, config, document_image):
        result = EdgeDetector(config).detect(self._gray(document_image), size=(320, 240))
        assert result.size == Size(320, 240)
        assert result.found

    def test_blank_frame(self, config, blank_image):
        result = EdgeDetector(config).detect(self._gray(blank_image))

        assert not result.found
        assert result.contour is None
        assert not result.overlay.any()

    def test_debug_overlay_draws_more(self, document_image):
        gray = self._gray(document_image)
        plain = EdgeDetector(ScannerConfig()).detect(gray)
        debug = EdgeDetector(ScannerConfig(debug_overlay=True)).detect(gray)

        assert np.count_nonzero(debug.overlay[:, :, 3]) > np.count_nonzero(plain.overlay[:, :, 3])
        assert debug.overlay[:, :, 2].any()
