"""Live document boundary detection on preview frames."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import ScannerConfig
from .frames import Size, working_size
from .geometry import exterior_angles, rotate

logger = logging.getLogger(__name__)

# Overlay colours (BGRA)
WINNER_COLOR = (0, 255, 0, 255)     # green
CONTOUR_COLOR = (0, 0, 255, 255)    # red, debug only
CANDIDATE_COLOR = (255, 0, 0, 255)  # blue, debug only
LINE_THICKNESS = 3


def angles_within_band(angles: Sequence[float], band: Tuple[float, float]) -> bool:
    """True if every absolute exterior angle lies inside ``band`` (inclusive)."""
    low, high = band
    return all(low <= abs(a) <= high for a in angles)


@dataclass
class ContourCandidate:
    """A traced contour with its polygon approximation."""

    contour: np.ndarray
    approx: np.ndarray
    area: float
    is_rectangle: bool

    @property
    def vertex_count(self) -> int:
        return len(self.approx)

    @property
    def is_document(self) -> bool:
        return self.vertex_count == 4 and self.is_rectangle


@dataclass
class DetectionResult:
    """Outcome of one preview tick.

    Attributes:
        contour: Best 4-point contour as an int32 (4, 2) array, or None.
        overlay: BGRA image at ``size`` with the outline drawn.
        size: Working resolution after rotation; ``contour`` is in this space.
        contours: All traced contours.
        candidates: Rectangle-shaped 4-vertex candidates, largest first.
    """

    contour: Optional[np.ndarray]
    overlay: np.ndarray
    size: Size
    contours: List[np.ndarray] = field(default_factory=list)
    candidates: List[ContourCandidate] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.contour is not None


class EdgeDetector:
    """Finds the largest rectangle-like contour in a grayscale frame.

    Each call resizes the frame to a fixed working area so the cost per tick
    stays roughly constant whatever the camera resolution, then runs blur,
    Canny, rotation, morphological closing and contour tracing.
    """

    def __init__(self, config: Optional[ScannerConfig] = None):
        """Initialize the edge detector.

        Args:
            config: Detection parameters; defaults are used when omitted.
        """
        self.config = config or ScannerConfig()

    def working_size(self, preview_size: Sequence[int]) -> Size:
        return working_size(Size(int(preview_size[0]), int(preview_size[1])), self.config.target_pixel_area)

    def edge_map(self, gray: np.ndarray, rotation: int = 0, size: Optional[Sequence[int]] = None) -> np.ndarray:
        """Binary edge map of a grayscale frame at working resolution.

        Args:
            gray: Single-channel image at preview resolution.
            rotation: Clockwise rotation (multiple of 90) applied to the map.
            size: Working (width, height); computed from the frame if omitted.

        Returns:
            uint8 binary image, rotated.
        """
        cfg = self.config
        if size is None:
            size = self.working_size((gray.shape[1], gray.shape[0]))
        size = (int(size[0]), int(size[1]))

        # Resize to make image processing faster
        if (gray.shape[1], gray.shape[0]) != size:
            resized = cv2.resize(gray, size)
        else:
            resized = gray

        # Blur to make edge detection easier
        blurred = cv2.GaussianBlur(resized, (cfg.blur_kernel, cfg.blur_kernel), 0)

        edges = cv2.Canny(blurred, cfg.canny_low, cfg.canny_high)

        # The preview itself is never rotated, only the edge map
        edges = rotate(edges, rotation)

        return self.close_gaps(edges)

    def close_gaps(self, binary: np.ndarray) -> np.ndarray:
        """Morphological closing to connect nearby edges."""
        radius = self.config.morph_radius
        if radius <= 0:
            return binary
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (2 * radius + 1, 2 * radius + 1))
        return cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)

    def analyze_contour(self, contour: np.ndarray) -> ContourCandidate:
        """Approximate a contour and run the rectangle test on it."""
        perimeter = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, perimeter * self.config.approx_epsilon, True)
        approx = approx.reshape(-1, 2)

        is_rectangle = len(approx) >= 3 and angles_within_band(
            exterior_angles(approx), self.config.angle_band
        )

        return ContourCandidate(
            contour=contour,
            approx=approx.astype(np.int32),
            area=float(cv2.contourArea(approx)),
            is_rectangle=is_rectangle,
        )

    def find_candidates(self, binary: np.ndarray) -> Tuple[List[np.ndarray], List[ContourCandidate]]:
        """Trace contours and keep the rectangle-shaped quadrilaterals.

        Returns:
            Tuple of (all contours, document candidates sorted by descending
            area, ties in tracing order).
        """
        contours, _ = cv2.findContours(binary, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)
        contours = list(contours)

        analyzed = [self.analyze_contour(c) for c in contours]
        candidates = [c for c in analyzed if c.is_document]
        candidates.sort(key=lambda c: c.area, reverse=True)

        return contours, candidates

    def select_best_contour(self, binary: np.ndarray) -> Optional[np.ndarray]:
        """Largest rectangle-like 4-point contour of a binary map, or None."""
        _, candidates = self.find_candidates(binary)
        if not candidates:
            return None
        return candidates[0].approx

    def draw_overlay(
        self,
        size: Size,
        best: Optional[ContourCandidate],
        contours: List[np.ndarray],
        candidates: List[ContourCandidate],
    ) -> np.ndarray:
        """Transparent BGRA overlay with the detected outline."""
        overlay = np.zeros((size.height, size.width, 4), dtype=np.uint8)

        if self.config.debug_overlay:
            if contours:
                cv2.drawContours(overlay, contours, -1, CONTOUR_COLOR, LINE_THICKNESS)
            if candidates:
                cv2.drawContours(overlay, [c.approx for c in candidates], -1, CANDIDATE_COLOR, LINE_THICKNESS)

        if best is not None:
            cv2.drawContours(overlay, [best.approx], -1, WINNER_COLOR, LINE_THICKNESS)

        return overlay

    def detect(
        self,
        gray: np.ndarray,
        rotation: int = 0,
        size: Optional[Sequence[int]] = None,
    ) -> DetectionResult:
        """Run one detection tick.

        Args:
            gray: Single-channel preview frame.
            rotation: Orientation-derived clockwise rotation in degrees.
            size: Working (width, height) before rotation.

        Returns:
            DetectionResult; ``contour`` is None when nothing qualifies.
        """
        binary = self.edge_map(gray, rotation, size)
        return self.detect_binary(binary)

    def detect_binary(self, binary: np.ndarray) -> DetectionResult:
        """Detection on an already rotated binary map at working resolution."""
        size = Size(binary.shape[1], binary.shape[0])
        contours, candidates = self.find_candidates(binary)
        best = candidates[0] if candidates else None

        if best is None:
            logger.debug(f"No document candidate among {len(contours)} contours")

        overlay = self.draw_overlay(size, best, contours, candidates)

        return DetectionResult(
            contour=best.approx.copy() if best is not None else None,
            overlay=overlay,
            size=size,
            contours=contours,
            candidates=candidates,
        )
