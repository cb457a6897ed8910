"""Perspective correction of a captured frame into a flat document image."""

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .config import OUTPUT_MODES, ScannerConfig
from .exceptions import RectificationError
from .geometry import order_corners, perspective_transform, warp
from .imaging import encode_png

logger = logging.getLogger(__name__)


@dataclass
class RectifiedImage:
    """Final flattened document image.

    Attributes:
        image: BGR image, or single-channel in document mode.
        png: The same image encoded as PNG.
        quad: Source corners (TL, TR, BR, BL) in the captured image.
        mode: ``"color"`` or ``"document"``.
    """

    image: np.ndarray
    png: bytes
    quad: np.ndarray
    mode: str = 'color'

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]


class Rectifier:
    """Applies perspective transformation to flatten a detected document.

    In document mode the warped image is additionally converted to grayscale
    and binarized with an adaptive threshold.
    """

    def __init__(self, config: Optional[ScannerConfig] = None):
        self.config = config or ScannerConfig()

    def binarize(self, image: np.ndarray) -> np.ndarray:
        """Grayscale + Gaussian adaptive threshold cleanup."""
        if image.ndim == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
            cv2.THRESH_BINARY, self.config.adaptive_block_size, self.config.adaptive_c
        )

    def rectify(self, image: np.ndarray, quad, mode: Optional[str] = None) -> RectifiedImage:
        """Warp the quad region of ``image`` to a top-down rectangle.

        Args:
            image: Full-resolution BGR image.
            quad: 4 corner points in ``image`` coordinates, any order.
            mode: Overrides the configured output mode.

        Returns:
            RectifiedImage with the encoded PNG.

        Raises:
            RectificationError: If the image or quad cannot be warped.
        """
        mode = mode or self.config.output_mode
        if mode not in OUTPUT_MODES:
            raise RectificationError(f"unknown output mode {mode!r}, expected one of {OUTPUT_MODES}")
        if image is None or image.size == 0:
            raise RectificationError("cannot rectify an empty image")

        try:
            ordered = order_corners(quad)
        except ValueError as e:
            raise RectificationError(str(e)) from e

        if cv2.contourArea(ordered) < 1.0:
            raise RectificationError("degenerate quad, corners are collinear")

        try:
            size, matrix = perspective_transform(ordered)
        except cv2.error as e:
            raise RectificationError(f"no perspective transform for quad: {e}") from e
        if not np.all(np.isfinite(matrix)):
            raise RectificationError("degenerate quad, no perspective transform")

        warped = warp(image, matrix, size)
        if warped is None or warped.size == 0:
            raise RectificationError("perspective warp produced an empty image")

        if mode == 'document':
            warped = self.binarize(warped)

        png = encode_png(warped, self.config.png_compression)
        logger.info(f"Rectified {mode} image {size.width}x{size.height}")

        return RectifiedImage(image=warped, png=png, quad=ordered, mode=mode)
