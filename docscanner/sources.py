"""Frame sources and output sinks for the capture pipeline."""

import logging
import queue
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np

from .exceptions import CameraUnavailableError
from .frames import OrientationState, PixelFormat, Size, frame_buffer_size
from .imaging import bgr_to_nv21, decode_image, load_image

logger = logging.getLogger(__name__)

# Sizes commonly offered by UVC webcams; OpenCV cannot enumerate them.
DEFAULT_CAMERA_SIZES = [
    Size(640, 480),
    Size(800, 600),
    Size(1280, 720),
    Size(1920, 1080),
]


def encode_frame(image: np.ndarray, pixel_format: PixelFormat) -> bytes:
    """Convert a BGR image to raw bytes in ``pixel_format``."""
    if pixel_format is PixelFormat.BGR24:
        return np.ascontiguousarray(image).tobytes()
    if pixel_format is PixelFormat.NV21:
        return bgr_to_nv21(image)
    if pixel_format is PixelFormat.GRAY8:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY).tobytes()
    if pixel_format is PixelFormat.RGB24:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB).tobytes()
    return cv2.cvtColor(image, cv2.COLOR_BGR2BGRA).tobytes()


class _RotatingSource:
    """Shared orientation bookkeeping."""

    def __init__(self, sensor_offset: int = 0, device_rotation: int = 0):
        self._orientation = OrientationState(device_rotation=device_rotation, sensor_offset=sensor_offset)

    def orientation(self) -> OrientationState:
        return self._orientation

    def set_device_rotation(self, degrees: int) -> None:
        self._orientation = OrientationState(
            device_rotation=degrees, sensor_offset=self._orientation.sensor_offset
        )


class OpenCVCameraSource(_RotatingSource):
    """Webcam preview through ``cv2.VideoCapture``, delivered as BGR24."""

    pixel_format = PixelFormat.BGR24

    def __init__(
        self,
        camera_index: int = 0,
        sizes: Optional[Sequence[Sequence[int]]] = None,
        sensor_offset: int = 0,
    ):
        """Initialize the camera source.

        Args:
            camera_index: Camera device index
            sizes: Sizes to offer for negotiation
            sensor_offset: Mounting rotation of the sensor in degrees
        """
        super().__init__(sensor_offset=sensor_offset)
        self.camera_index = camera_index
        self._sizes = [Size(int(w), int(h)) for w, h in (sizes or DEFAULT_CAMERA_SIZES)]
        self._capture: Optional[cv2.VideoCapture] = None
        self._size: Optional[Size] = None

    def supported_sizes(self) -> List[Size]:
        return list(self._sizes)

    def open(self, size: Optional[Size] = None) -> None:
        """Open the camera at ``size``.

        Raises:
            CameraUnavailableError: If the device cannot be opened.
        """
        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailableError(f"Failed to open camera {self.camera_index}")

        if size is not None:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, size.width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, size.height)
            self._size = Size(size.width, size.height)
        else:
            self._size = Size(
                int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            )

        self._capture = capture
        logger.info(f"Camera {self.camera_index} opened at {self._size.width}x{self._size.height}")

    @property
    def is_open(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    def read(self) -> Optional[bytes]:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        if not ok or frame is None:
            logger.warning("Failed to read frame from camera")
            return None
        # Drivers may ignore the requested size
        if (frame.shape[1], frame.shape[0]) != self._size:
            frame = cv2.resize(frame, self._size)
        return frame.tobytes()

    def close(self) -> None:
        capture = self._capture
        self._capture = None
        if capture is None:
            return
        try:
            capture.release()
        except cv2.error as e:
            # Releasing a camera that never started streaming
            logger.debug(f"Ignoring camera release error: {e}")


class StillImageSource(_RotatingSource):
    """Serves one image as an endless preview stream.

    Useful for files, uploads and tests. The image is re-encoded in the
    requested raw pixel format so the pipeline sees camera-like bytes.
    """

    def __init__(
        self,
        image: np.ndarray,
        pixel_format: PixelFormat = PixelFormat.BGR24,
        sensor_offset: int = 0,
        device_rotation: int = 0,
    ):
        super().__init__(sensor_offset=sensor_offset, device_rotation=device_rotation)
        if image is None or image.ndim != 3:
            raise ValueError("StillImageSource needs a BGR image")
        self.pixel_format = pixel_format
        self._image = image
        self._size = Size(image.shape[1], image.shape[0])
        self._data: Optional[bytes] = None
        self.frames_served = 0

    @classmethod
    def from_bytes(cls, image_bytes: bytes, **kwargs) -> 'StillImageSource':
        return cls(decode_image(image_bytes), **kwargs)

    @classmethod
    def from_path(cls, path: str, **kwargs) -> 'StillImageSource':
        return cls(load_image(path), **kwargs)

    @property
    def image(self) -> np.ndarray:
        return self._image

    def supported_sizes(self) -> List[Size]:
        return [Size(self._image.shape[1], self._image.shape[0])]

    def open(self, size: Optional[Size] = None) -> None:
        image = self._image
        if size is not None and (image.shape[1], image.shape[0]) != tuple(size):
            image = cv2.resize(image, (size[0], size[1]))
        self._size = Size(image.shape[1], image.shape[0])
        self._data = encode_frame(image, self.pixel_format)

    def frame_bytes(self) -> bytes:
        if self._data is None:
            self.open()
        return self._data

    def read(self) -> Optional[bytes]:
        self.frames_served += 1
        return self.frame_bytes()

    @property
    def buffer_size(self) -> int:
        return frame_buffer_size(self._size.width, self._size.height, self.pixel_format)

    def close(self) -> None:
        self._data = None


class QueueSink:
    """Collects overlays and results on thread-safe queues."""

    def __init__(self, keep_overlays: bool = True):
        self.keep_overlays = keep_overlays
        self.overlays: "queue.SimpleQueue[Optional[np.ndarray]]" = queue.SimpleQueue()
        self.results: "queue.SimpleQueue" = queue.SimpleQueue()

    def show_overlay(self, overlay: Optional[np.ndarray]) -> None:
        if self.keep_overlays:
            self.overlays.put(overlay)

    def deliver(self, result) -> None:
        self.results.put(result)

    def next_result(self, timeout: Optional[float] = None):
        """Block for the next rectified image; None on timeout."""
        try:
            return self.results.get(timeout=timeout)
        except queue.Empty:
            return None


class CallbackSink:
    """Forwards overlays and results to plain callables."""

    def __init__(
        self,
        on_overlay: Optional[Callable[[Optional[np.ndarray]], None]] = None,
        on_result: Optional[Callable] = None,
    ):
        self._on_overlay = on_overlay
        self._on_result = on_result

    def show_overlay(self, overlay: Optional[np.ndarray]) -> None:
        if self._on_overlay is not None:
            self._on_overlay(overlay)

    def deliver(self, result) -> None:
        if self._on_result is not None:
            self._on_result(result)
