"""Capture pipeline controller: preview ticks, orientation and capture.

Preview frames and capture requests may arrive on different threads. Both
serialize on one non-blocking busy flag; whichever side finds the pipeline
busy drops its event instead of waiting.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Sequence, Tuple

import numpy as np

from .config import ScannerConfig
from .detector import DetectionResult, EdgeDetector
from .frames import FrameBufferManager, OrientationState, PixelFormat, RawFrame, Size
from .geometry import rotate, rotated_size, scale_contour
from .ports import FrameSource, OverlaySink, ResultSink
from .rectifier import RectifiedImage, Rectifier
from .sources import StillImageSource

logger = logging.getLogger(__name__)


class CapturePipeline:
    """Coordinates live detection and capture-and-rectify.

    The pipeline keeps the most recent raw frame snapshot and the most recent
    successfully detected contour. A capture rectifies that frame with that
    contour and then clears both.
    """

    def __init__(
        self,
        config: Optional[ScannerConfig] = None,
        detector: Optional[EdgeDetector] = None,
        rectifier: Optional[Rectifier] = None,
        overlay_sink: Optional[OverlaySink] = None,
        result_sink: Optional[ResultSink] = None,
        frames: Optional[FrameBufferManager] = None,
        pixel_format: PixelFormat = PixelFormat.NV21,
    ):
        self.config = config or ScannerConfig()
        self.detector = detector or EdgeDetector(self.config)
        self.rectifier = rectifier or Rectifier(self.config)
        self.overlay_sink = overlay_sink
        self.result_sink = result_sink
        self.frames = frames or FrameBufferManager.from_config(self.config, pixel_format)
        self.orientation = OrientationState(sensor_offset=self.config.sensor_offset)

        self._busy = threading.Lock()
        self._busy_since: Optional[float] = None
        self._stats_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='docscanner-capture')
        self._closed = False

        self._last_frame: Optional[RawFrame] = None
        self._last_contour: Optional[np.ndarray] = None
        self._last_contour_size: Optional[Size] = None

        self.dropped_frames = 0
        self.processed_frames = 0
        self.dropped_captures = 0

    # Lifecycle -------------------------------------------------------------

    def __enter__(self) -> 'CapturePipeline':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Stop accepting capture requests and wait for a running one."""
        self._closed = True
        self._executor.shutdown(wait=True)

    def configure(
        self,
        surface_size: Sequence[int],
        preview_sizes: Sequence[Sequence[int]],
        picture_sizes: Optional[Sequence[Sequence[int]]] = None,
        device_rotation: Optional[int] = None,
    ) -> Size:
        """Handle a surface-geometry change.

        Renegotiates the preview size and reallocates frame buffers.

        Returns:
            The chosen preview size.
        """
        if device_rotation is not None:
            self.orientation = OrientationState(device_rotation, self.orientation.sensor_offset)
        return self.frames.configure(surface_size, preview_sizes, picture_sizes, self.orientation)

    def on_orientation_changed(self, device_rotation: int) -> None:
        self.orientation = OrientationState(device_rotation, self.orientation.sensor_offset)
        self.frames.set_orientation(self.orientation)
        logger.debug(f"Orientation changed, rotation now {self.orientation.rotation}")

    # Busy flag -------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def _try_enter(self) -> bool:
        if not self._busy.acquire(blocking=False):
            return False
        self._busy_since = time.monotonic()
        return True

    def _leave(self) -> None:
        self._busy_since = None
        self._busy.release()

    def _busy_for(self) -> float:
        since = self._busy_since
        return 0.0 if since is None else time.monotonic() - since

    # Retained state --------------------------------------------------------

    @property
    def last_frame(self) -> Optional[RawFrame]:
        return self._last_frame

    @property
    def last_contour(self) -> Optional[np.ndarray]:
        return self._last_contour

    @property
    def has_capture_data(self) -> bool:
        return self._last_frame is not None and self._last_contour is not None

    def _clear_retained(self) -> None:
        self._last_frame = None
        self._last_contour = None
        self._last_contour_size = None

    # Preview ---------------------------------------------------------------

    def _working_size_for(self, frame: RawFrame) -> Size:
        if self.frames.working_size is not None and frame.size == self.frames.preview_size:
            return self.frames.working_size
        return self.detector.working_size(frame.size)

    def on_preview_frame(self, frame: RawFrame) -> Optional[DetectionResult]:
        """Process one preview frame unless the pipeline is busy.

        Args:
            frame: Frame from the buffer manager; not retained past this call.

        Returns:
            The detection result, or None if the frame was dropped.
        """
        if not self._try_enter():
            with self._stats_lock:
                self.dropped_frames += 1
            busy_for = self._busy_for()
            if busy_for > self.config.stall_warning_seconds:
                logger.warning(f"Pipeline busy for {busy_for:.1f}s, dropping preview frames")
            else:
                logger.debug("Pipeline busy, preview frame dropped")
            return None

        try:
            # The camera reuses its buffer as soon as we return
            snapshot = frame.snapshot()
            self._last_frame = snapshot

            result = self.detector.detect(
                snapshot.luma(),
                self.orientation.rotation,
                self._working_size_for(snapshot),
            )

            if result.found:
                self._last_contour = result.contour
                self._last_contour_size = result.size

            if self.overlay_sink is not None:
                self.overlay_sink.show_overlay(result.overlay)

            with self._stats_lock:
                self.processed_frames += 1
            return result
        finally:
            self._leave()

    # Capture ---------------------------------------------------------------

    def capture(self) -> Optional[RectifiedImage]:
        """Rectify the retained frame with the retained contour.

        Returns:
            The rectified image, or None when there is nothing to rectify yet
            or the pipeline is busy.
        """
        if not self._try_enter():
            with self._stats_lock:
                self.dropped_captures += 1
            logger.debug("Pipeline busy, capture request dropped")
            return None

        try:
            frame = self._last_frame
            contour = self._last_contour
            contour_size = self._last_contour_size
            if frame is None or contour is None or contour_size is None:
                logger.debug("Capture requested before any document was detected")
                return None

            # Format conversion only happens here, never per preview tick
            image = rotate(frame.to_bgr(), self.orientation.rotation)
            height, width = image.shape[:2]

            if (contour_size.width > contour_size.height) != (width > height):
                contour_size = contour_size.swapped()

            quad = scale_contour(contour, contour_size, (width, height))
            result = self.rectifier.rectify(image, quad)

            if self.result_sink is not None:
                self.result_sink.deliver(result)

            self._clear_retained()
            return result
        finally:
            self._leave()

    def request_capture(self) -> "Future[Optional[RectifiedImage]]":
        """Capture asynchronously.

        Returns:
            A future completed exactly once with the rectified image or None.

        Raises:
            RuntimeError: If the pipeline is closed.
        """
        if self._closed:
            raise RuntimeError("pipeline is closed")
        return self._executor.submit(self.capture)


class PreviewLoop:
    """Pumps frames from a FrameSource through the pipeline on a worker thread."""

    def __init__(self, source: FrameSource, pipeline: CapturePipeline, target_fps: float = 15.0):
        self.source = source
        self.pipeline = pipeline
        self.target_fps = target_fps
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, surface_size: Optional[Sequence[int]] = None) -> Size:
        """Negotiate the preview size, open the source and start pumping.

        Raises:
            CameraUnavailableError: If the source cannot be opened.
        """
        if self.running:
            logger.warning("Preview loop already running")
            return self.pipeline.frames.preview_size

        sizes = self.source.supported_sizes()
        orientation = self.source.orientation()
        if surface_size is None and sizes:
            # Sizes are sensor-oriented, the surface is display-oriented
            surface_size = rotated_size(sizes[-1], orientation.rotation)

        self.pipeline.orientation = orientation
        self.pipeline.frames.pixel_format = self.source.pixel_format
        preview = self.pipeline.configure(surface_size or (0, 0), sizes)
        self.source.open(preview)

        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='docscanner-preview', daemon=True)
        self._thread.start()
        return preview

    def step(self) -> Optional[DetectionResult]:
        """Read, publish and process a single frame."""
        frames = self.pipeline.frames
        orientation = self.source.orientation()
        if orientation != self.pipeline.orientation:
            self.pipeline.on_orientation_changed(orientation.device_rotation)

        data = self.source.read()
        if data is None:
            return None
        if frames.publish(data) is None:
            return None

        frame = frames.acquire_next_frame()
        if frame is None:
            return None
        try:
            return self.pipeline.on_preview_frame(frame)
        finally:
            frames.release_frame(frame)

    def _loop(self) -> None:
        frame_delay = 1.0 / self.target_fps if self.target_fps > 0 else 0.0

        while not self._stop.is_set():
            loop_start = time.monotonic()
            try:
                self.step()
            except Exception as e:
                logger.error(f"Error in preview loop: {e}")
                self._stop.wait(0.1)

            sleep_time = frame_delay - (time.monotonic() - loop_start)
            if sleep_time > 0:
                self._stop.wait(sleep_time)

    def stop(self, timeout: float = 2.0) -> None:
        """Stop pumping and close the source; safe if never started."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.source.close()


def scan_image(
    image: np.ndarray,
    config: Optional[ScannerConfig] = None,
    pixel_format: PixelFormat = PixelFormat.BGR24,
) -> Tuple[Optional[DetectionResult], Optional[RectifiedImage]]:
    """Run one preview tick and one capture on a still BGR image.

    Returns:
        Tuple of (detection result, rectified image or None).
    """
    source = StillImageSource(image, pixel_format=pixel_format)
    with CapturePipeline(config, pixel_format=pixel_format) as pipeline:
        pipeline.orientation = source.orientation()
        size = source.supported_sizes()[0]
        preview = pipeline.configure(size, [size])
        source.open(preview)

        detection = PreviewLoop(source, pipeline).step()
        rectified = pipeline.capture() if detection is not None and detection.found else None
    return detection, rectified
