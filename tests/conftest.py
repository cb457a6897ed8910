"""Pytest configuration and shared fixtures for the document scanner tests.

Synthetic frames are used throughout: a bright quadrilateral "document" on a
dark, slightly textured background.
"""
import logging

import cv2
import numpy as np
import pytest

from docscanner.config import ScannerConfig
from docscanner.frames import PixelFormat, RawFrame
from docscanner.imaging import bgr_to_nv21


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logging.getLogger('PIL').setLevel(logging.WARNING)

# Axis-aligned document in a 640x480 frame
DOC_QUAD = [(160, 120), (480, 120), (480, 360), (160, 360)]


def make_document_image(width=640, height=480, quad=DOC_QUAD, background=40, paper=225):
    """BGR image with a filled bright polygon."""
    image = np.full((height, width, 3), background, dtype=np.uint8)
    pts = np.array(quad, dtype=np.int32)
    cv2.fillConvexPoly(image, pts, (paper, paper, paper))
    return image


def make_frame(image, pixel_format=PixelFormat.NV21):
    """Raw frame of a BGR image in the requested format."""
    h, w = image.shape[:2]
    if pixel_format is PixelFormat.NV21:
        data = bgr_to_nv21(image)
    elif pixel_format is PixelFormat.GRAY8:
        data = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY).tobytes()
    elif pixel_format is PixelFormat.BGRA32:
        data = cv2.cvtColor(image, cv2.COLOR_BGR2BGRA).tobytes()
    elif pixel_format is PixelFormat.RGB24:
        data = cv2.cvtColor(image, cv2.COLOR_BGR2RGB).tobytes()
    else:
        data = image.tobytes()
    return RawFrame(data=data, width=w, height=h, pixel_format=pixel_format)


@pytest.fixture
def config():
    """Default config with an upright webcam-style sensor."""
    return ScannerConfig(sensor_offset=0)


@pytest.fixture
def document_image():
    return make_document_image()


@pytest.fixture
def blank_image():
    return np.full((480, 640, 3), 40, dtype=np.uint8)


@pytest.fixture
def document_frame(document_image):
    return make_frame(document_image)


@pytest.fixture
def blank_frame(blank_image):
    return make_frame(blank_image)
