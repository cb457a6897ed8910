"""Tests for perspective correction and output encoding."""
import cv2
import numpy as np
import pytest

from conftest import DOC_QUAD
from docscanner.config import ScannerConfig
from docscanner.exceptions import RectificationError
from docscanner.rectifier import Rectifier

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


class TestRectifier:

    def test_color_mode(self, document_image):
        result = Rectifier().rectify(document_image, DOC_QUAD)

        assert result.mode == 'color'
        assert result.image.shape == (240, 320, 3)
        assert (result.width, result.height) == (320, 240)
        assert result.image.mean() > 200
        assert result.png.startswith(PNG_MAGIC)

    def test_png_decodes_to_image(self, document_image):
        result = Rectifier().rectify(document_image, DOC_QUAD)
        decoded = cv2.imdecode(np.frombuffer(result.png, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
        np.testing.assert_array_equal(decoded, result.image)

    def test_corner_order_does_not_matter(self, document_image):
        shuffled = [DOC_QUAD[2], DOC_QUAD[0], DOC_QUAD[3], DOC_QUAD[1]]
        a = Rectifier().rectify(document_image, DOC_QUAD)
        b = Rectifier().rectify(document_image, shuffled)
        np.testing.assert_array_equal(a.image, b.image)
        np.testing.assert_array_equal(a.quad, b.quad)

    def test_document_mode(self, document_image):
        rectifier = Rectifier(ScannerConfig(output_mode='document'))
        result = rectifier.rectify(document_image, DOC_QUAD)

        assert result.mode == 'document'
        assert result.image.ndim == 2
        assert set(np.unique(result.image)) <= {0, 255}
        assert result.png.startswith(PNG_MAGIC)

    def test_mode_override(self, document_image):
        result = Rectifier().rectify(document_image, DOC_QUAD, mode='document')
        assert result.image.ndim == 2

    def test_unknown_mode(self, document_image):
        with pytest.raises(RectificationError):
            Rectifier().rectify(document_image, DOC_QUAD, mode='photo')

    def test_quad_outside_image_fills_black(self):
        image = np.full((100, 100, 3), 255, dtype=np.uint8)
        result = Rectifier().rectify(image, [(50, 50), (150, 50), (150, 150), (50, 150)])

        assert result.image[10, 10].tolist() == [255, 255, 255]
        assert result.image[90, 90].tolist() == [0, 0, 0]

    def test_collinear_quad(self, document_image):
        with pytest.raises(RectificationError):
            Rectifier().rectify(document_image, [(0, 0), (10, 10), (20, 20), (30, 30)])

    def test_wrong_corner_count(self, document_image):
        with pytest.raises(RectificationError):
            Rectifier().rectify(document_image, DOC_QUAD[:3])

    def test_empty_image(self):
        with pytest.raises(RectificationError):
            Rectifier().rectify(np.zeros((0, 0, 3), dtype=np.uint8), DOC_QUAD)
