"""Raw camera frames, orientation and the reusable frame buffer pool."""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Sequence, Union

import cv2
import numpy as np

from .exceptions import BufferAllocationError, CameraUnavailableError, FrameFormatError

logger = logging.getLogger(__name__)

VALID_ROTATIONS = (0, 90, 180, 270)


class Size(NamedTuple):
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def aspect(self) -> float:
        return self.width / self.height

    def swapped(self) -> 'Size':
        return Size(self.height, self.width)


class PixelFormat(Enum):
    """Raw pixel layouts a camera may deliver."""

    NV21 = "nv21"      # YUV 4:2:0 semi-planar, Android preview default
    GRAY8 = "gray8"
    BGR24 = "bgr24"
    RGB24 = "rgb24"
    BGRA32 = "bgra32"  # iOS sample buffers

    @property
    def bits_per_pixel(self) -> int:
        return _BITS_PER_PIXEL[self]


_BITS_PER_PIXEL = {
    PixelFormat.NV21: 12,
    PixelFormat.GRAY8: 8,
    PixelFormat.BGR24: 24,
    PixelFormat.RGB24: 24,
    PixelFormat.BGRA32: 32,
}


def frame_buffer_size(width: int, height: int, pixel_format: PixelFormat) -> int:
    """Number of bytes of one frame, rounded down."""
    return width * height * pixel_format.bits_per_pixel // 8


@dataclass(frozen=True)
class OrientationState:
    """Device rotation and camera sensor mounting offset, in degrees."""

    device_rotation: int = 0
    sensor_offset: int = 90

    def __post_init__(self):
        if self.device_rotation not in VALID_ROTATIONS:
            raise ValueError(f"device_rotation must be one of {VALID_ROTATIONS}")

    @property
    def rotation(self) -> int:
        """Clockwise rotation to apply to sensor-oriented images."""
        return (self.sensor_offset - self.device_rotation + 360) % 360

    @property
    def is_portrait(self) -> bool:
        return self.rotation in (90, 270)


@dataclass(frozen=True)
class RawFrame:
    """One camera frame as delivered by the platform, uninterpreted.

    The buffer may belong to a :class:`FrameBufferPool`; call
    :meth:`snapshot` to keep the pixels past the frame's release.
    """

    data: Union[bytes, bytearray, memoryview]
    width: int
    height: int
    pixel_format: PixelFormat
    timestamp: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        expected = frame_buffer_size(self.width, self.height, self.pixel_format)
        if self.width <= 0 or self.height <= 0:
            raise FrameFormatError(f"invalid frame size {self.width}x{self.height}")
        if len(self.data) != expected:
            raise FrameFormatError(
                f"{self.pixel_format.name} frame {self.width}x{self.height} "
                f"needs {expected} bytes, got {len(self.data)}"
            )

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)

    def snapshot(self) -> 'RawFrame':
        """Independent copy of this frame."""
        return RawFrame(
            data=bytes(self.data),
            width=self.width,
            height=self.height,
            pixel_format=self.pixel_format,
            timestamp=self.timestamp,
        )

    def _array(self) -> np.ndarray:
        return np.frombuffer(self.data, dtype=np.uint8)

    def luma(self) -> np.ndarray:
        """Grayscale plane at the frame's resolution.

        For NV21 and GRAY8 this is a view of the first plane (no copy);
        packed colour formats are converted.
        """
        arr = self._array()
        w, h = self.width, self.height
        fmt = self.pixel_format
        if fmt in (PixelFormat.NV21, PixelFormat.GRAY8):
            return arr[:w * h].reshape(h, w)
        if fmt is PixelFormat.BGR24:
            return cv2.cvtColor(arr.reshape(h, w, 3), cv2.COLOR_BGR2GRAY)
        if fmt is PixelFormat.RGB24:
            return cv2.cvtColor(arr.reshape(h, w, 3), cv2.COLOR_RGB2GRAY)
        return cv2.cvtColor(arr.reshape(h, w, 4), cv2.COLOR_BGRA2GRAY)

    def to_bgr(self) -> np.ndarray:
        """Full-resolution colour image (always a new array)."""
        arr = self._array()
        w, h = self.width, self.height
        fmt = self.pixel_format
        if fmt is PixelFormat.NV21:
            yuv = arr.reshape((h >> 1) * 3, w)
            return cv2.cvtColor(yuv, cv2.COLOR_YUV2BGR_NV21)
        if fmt is PixelFormat.GRAY8:
            return cv2.cvtColor(arr.reshape(h, w), cv2.COLOR_GRAY2BGR)
        if fmt is PixelFormat.BGR24:
            return arr.reshape(h, w, 3).copy()
        if fmt is PixelFormat.RGB24:
            return cv2.cvtColor(arr.reshape(h, w, 3), cv2.COLOR_RGB2BGR)
        return cv2.cvtColor(arr.reshape(h, w, 4), cv2.COLOR_BGRA2BGR)


def optimal_size(
    sizes: Optional[Iterable[Sequence[int]]],
    width: int,
    height: int,
    tolerance: float = 0.1,
) -> Optional[Size]:
    """Pick the supported size best matching a requested size.

    Sizes whose aspect ratio is within ``tolerance`` of ``width / height`` are
    considered first, closest height wins (first one on ties). If none match
    the aspect ratio, the closest height is used regardless of aspect.

    Args:
        sizes: Supported (width, height) pairs.
        width: Requested width.
        height: Requested height.
        tolerance: Allowed absolute aspect ratio difference.

    Returns:
        The chosen Size or None if ``sizes`` is empty.
    """
    if not sizes:
        return None

    candidates = [Size(int(w), int(h)) for w, h in sizes if w > 0 and h > 0]
    target_ratio = width / height if height > 0 else 0.0

    def closest(pool: List[Size]) -> Optional[Size]:
        best = None
        min_diff = math.inf
        for size in pool:
            diff = abs(size.height - height)
            if diff < min_diff:
                best = size
                min_diff = diff
        return best

    matching = [s for s in candidates if abs(s.aspect - target_ratio) <= tolerance]
    return closest(matching) or closest(candidates)


def working_size(preview_size: Size, target_area: float) -> Size:
    """Downscaled detection size with roughly ``target_area`` pixels."""
    ratio = round(math.sqrt(preview_size.area / target_area), 3)
    if ratio <= 0:
        ratio = 0.001
    return Size(max(1, int(preview_size.width / ratio)), max(1, int(preview_size.height / ratio)))


class FrameBufferPool:
    """A fixed set of reusable frame buffers."""

    def __init__(self, buffer_size: int, count: int = 3):
        if buffer_size <= 0 or count <= 0:
            raise BufferAllocationError(
                f"cannot allocate {count} buffers of {buffer_size} bytes"
            )
        try:
            self._buffers = [bytearray(buffer_size) for _ in range(count)]
        except MemoryError as e:
            raise BufferAllocationError(
                f"out of memory allocating {count} x {buffer_size} bytes"
            ) from e

        self.buffer_size = buffer_size
        self._free = list(self._buffers)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buffers)

    @property
    def available(self) -> int:
        with self._lock:
            return len(self._free)

    def acquire(self) -> Optional[bytearray]:
        """Take a free buffer, or None if all are in use."""
        with self._lock:
            if not self._free:
                return None
            return self._free.pop()

    def release(self, buffer: bytearray) -> None:
        with self._lock:
            if any(buffer is b for b in self._free):
                return
            if not any(buffer is b for b in self._buffers):
                # Buffer from a previous configuration
                return
            self._free.append(buffer)


class FrameBufferManager:
    """Owns camera frame memory and the negotiated preview geometry.

    The platform collaborator hands raw bytes to :meth:`publish`; consumers
    take frames with :meth:`acquire_next_frame` and give them back with
    :meth:`release_frame` once done.
    """

    def __init__(
        self,
        pixel_format: PixelFormat = PixelFormat.NV21,
        target_pixel_area: float = 853 * 512,
        pool_size: int = 3,
        preview_aspect_tolerance: float = 0.1,
        picture_aspect_tolerance: float = 0.12,
    ):
        self.pixel_format = pixel_format
        self.target_pixel_area = target_pixel_area
        self.pool_size = pool_size
        self.preview_aspect_tolerance = preview_aspect_tolerance
        self.picture_aspect_tolerance = picture_aspect_tolerance

        self.preview_size: Optional[Size] = None
        self.picture_size: Optional[Size] = None
        self.working_size: Optional[Size] = None
        self.orientation = OrientationState()

        self._pool: Optional[FrameBufferPool] = None
        self._pending: Optional[RawFrame] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, pixel_format: PixelFormat = PixelFormat.NV21) -> 'FrameBufferManager':
        return cls(
            pixel_format=pixel_format,
            target_pixel_area=config.target_pixel_area,
            pool_size=config.buffer_pool_size,
            preview_aspect_tolerance=config.preview_aspect_tolerance,
            picture_aspect_tolerance=config.picture_aspect_tolerance,
        )

    @property
    def configured(self) -> bool:
        return self.preview_size is not None

    @property
    def buffer_size(self) -> int:
        if self.preview_size is None:
            return 0
        return frame_buffer_size(self.preview_size.width, self.preview_size.height, self.pixel_format)

    def configure(
        self,
        surface_size: Sequence[int],
        preview_sizes: Iterable[Sequence[int]],
        picture_sizes: Optional[Iterable[Sequence[int]]] = None,
        orientation: Optional[OrientationState] = None,
    ) -> Size:
        """Negotiate preview/picture sizes after a surface or orientation change.

        Args:
            surface_size: (width, height) of the display surface.
            preview_sizes: Preview sizes supported by the camera.
            picture_sizes: Picture sizes supported by the camera; defaults to
                the preview sizes.
            orientation: Current orientation, kept if omitted.

        Returns:
            The chosen preview size.

        Raises:
            CameraUnavailableError: If the camera reports no sizes.
            BufferAllocationError: If the buffer pool cannot be allocated.
        """
        preview_sizes = list(preview_sizes or [])
        picture_sizes = list(picture_sizes or preview_sizes)
        if orientation is not None:
            self.orientation = orientation

        width, height = int(surface_size[0]), int(surface_size[1])
        if self.orientation.is_portrait:
            width, height = height, width

        preview = optimal_size(preview_sizes, width, height, self.preview_aspect_tolerance)
        if preview is None:
            raise CameraUnavailableError("camera reports no supported preview sizes")
        picture = optimal_size(
            picture_sizes, preview.width, preview.height, self.picture_aspect_tolerance
        )

        pool = FrameBufferPool(
            frame_buffer_size(preview.width, preview.height, self.pixel_format),
            self.pool_size,
        )

        with self._lock:
            self.preview_size = preview
            self.picture_size = picture
            self.working_size = working_size(preview, self.target_pixel_area)
            self._pool = pool
            self._pending = None

        logger.info(
            f"Preview {preview.width}x{preview.height}, picture "
            f"{picture.width}x{picture.height}, working "
            f"{self.working_size.width}x{self.working_size.height}, "
            f"rotation {self.orientation.rotation}"
        )
        return preview

    def set_orientation(self, orientation: OrientationState) -> None:
        self.orientation = orientation

    def publish(self, data: Union[bytes, bytearray, memoryview], timestamp: Optional[float] = None) -> Optional[RawFrame]:
        """Copy raw camera bytes into a pooled buffer.

        Args:
            data: Frame bytes in the configured pixel format and preview size.
            timestamp: Capture time, defaults to now.

        Returns:
            The published frame, or None when no buffer is free (frame dropped).

        Raises:
            FrameFormatError: If not configured or ``data`` has the wrong length.
        """
        if self._pool is None or self.preview_size is None:
            raise FrameFormatError("frame buffer manager is not configured")
        if len(data) != self.buffer_size:
            raise FrameFormatError(
                f"expected {self.buffer_size} bytes for {self.pixel_format.name} "
                f"{self.preview_size.width}x{self.preview_size.height}, got {len(data)}"
            )

        pool = self._pool
        buffer = pool.acquire()
        if buffer is None:
            logger.debug("No free frame buffer, dropping frame")
            return None
        buffer[:] = data

        frame = RawFrame(
            data=buffer,
            width=self.preview_size.width,
            height=self.preview_size.height,
            pixel_format=self.pixel_format,
            timestamp=time.monotonic() if timestamp is None else timestamp,
        )

        with self._lock:
            stale = self._pending
            self._pending = frame
        if stale is not None:
            self.release_frame(stale)
        return frame

    def acquire_next_frame(self) -> Optional[RawFrame]:
        """Latest published frame not yet handed out, or None."""
        with self._lock:
            frame = self._pending
            self._pending = None
        return frame

    def release_frame(self, frame: RawFrame) -> None:
        """Return a frame's buffer to the pool."""
        if self._pool is not None and isinstance(frame.data, bytearray):
            self._pool.release(frame.data)
