"""
Image conversion helpers shared by the sources, the CLI and the demo app.
"""

import base64
import io
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps

from .exceptions import RectificationError


def encode_png(image: np.ndarray, compression: int = 3) -> bytes:
    """Encode an OpenCV image as PNG bytes."""
    ok, buffer = cv2.imencode('.png', image, [cv2.IMWRITE_PNG_COMPRESSION, compression])
    if not ok:
        raise RectificationError("PNG encoding failed")
    return buffer.tobytes()


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode encoded image bytes to a BGR image, honouring EXIF orientation.

    Raises:
        ValueError: If the bytes are not a readable image.
    """
    try:
        pil_image = Image.open(io.BytesIO(image_bytes))
        pil_image = ImageOps.exif_transpose(pil_image)
    except (OSError, SyntaxError) as e:
        raise ValueError(f"unreadable image: {e}") from e
    return pil_to_cv2(pil_image)


def load_image(path: str) -> np.ndarray:
    """Read an image file to BGR, honouring EXIF orientation."""
    with open(path, 'rb') as f:
        return decode_image(f.read())


def pil_to_cv2(image: Image.Image) -> np.ndarray:
    """Convert PIL image to an OpenCV BGR image."""
    if image.mode != 'RGB':
        image = image.convert('RGB')
    return cv2.cvtColor(np.array(image), cv2.COLOR_RGB2BGR)


def cv2_to_pil(image: np.ndarray) -> Image.Image:
    """Convert an OpenCV image (gray, BGR or BGRA) to PIL."""
    if image.ndim == 2:
        return Image.fromarray(image)
    if image.shape[2] == 4:
        return Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA))
    return Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))


def png_to_base64(png: bytes) -> str:
    return base64.b64encode(png).decode('utf-8')


def bgr_to_nv21(image: np.ndarray) -> bytes:
    """Encode a BGR image as NV21 bytes (even width and height required)."""
    h, w = image.shape[:2]
    if w % 2 or h % 2:
        raise ValueError("NV21 needs even dimensions")
    i420 = cv2.cvtColor(image, cv2.COLOR_BGR2YUV_I420).reshape(-1)
    y = i420[:w * h]
    u = i420[w * h:w * h + w * h // 4]
    v = i420[w * h + w * h // 4:]
    vu = np.empty(w * h // 2, dtype=np.uint8)
    vu[0::2] = v
    vu[1::2] = u
    return np.concatenate([y, vu]).tobytes()


def compose_overlay(frame: np.ndarray, overlay: np.ndarray) -> np.ndarray:
    """Blend a BGRA overlay onto a BGR frame, scaling it to fit."""
    h, w = frame.shape[:2]
    if overlay.shape[:2] != (h, w):
        overlay = cv2.resize(overlay, (w, h), interpolation=cv2.INTER_NEAREST)
    alpha = overlay[:, :, 3:4].astype(np.float32) / 255.0
    blended = frame.astype(np.float32) * (1 - alpha) + overlay[:, :, :3].astype(np.float32) * alpha
    return blended.astype(np.uint8)


def create_thumbnail(image: np.ndarray, max_size: Tuple[int, int] = (300, 300)) -> Image.Image:
    """
    Create a thumbnail of the image.

    Args:
        image: OpenCV image
        max_size: Maximum dimensions

    Returns:
        Thumbnail image
    """
    thumbnail = cv2_to_pil(image)
    thumbnail.thumbnail(max_size, Image.Resampling.LANCZOS)
    return thumbnail
