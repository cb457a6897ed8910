"""Live document scanner: boundary detection and perspective correction."""

from .config import ScannerConfig, load_config
from .detector import DetectionResult, EdgeDetector
from .exceptions import (
    BufferAllocationError,
    CameraUnavailableError,
    ConfigError,
    FrameError,
    FrameFormatError,
    RectificationError,
    ScannerError,
)
from .frames import (
    FrameBufferManager,
    FrameBufferPool,
    OrientationState,
    PixelFormat,
    RawFrame,
    Size,
    optimal_size,
)
from .pipeline import CapturePipeline, PreviewLoop, scan_image
from .rectifier import RectifiedImage, Rectifier
from .sources import CallbackSink, OpenCVCameraSource, QueueSink, StillImageSource

__version__ = "0.1.0"

__all__ = [
    "ScannerConfig",
    "load_config",
    "EdgeDetector",
    "DetectionResult",
    "Rectifier",
    "RectifiedImage",
    "CapturePipeline",
    "PreviewLoop",
    "scan_image",
    "FrameBufferManager",
    "FrameBufferPool",
    "RawFrame",
    "PixelFormat",
    "OrientationState",
    "Size",
    "optimal_size",
    "OpenCVCameraSource",
    "StillImageSource",
    "QueueSink",
    "CallbackSink",
    "ScannerError",
    "ConfigError",
    "FrameError",
    "FrameFormatError",
    "BufferAllocationError",
    "CameraUnavailableError",
    "RectificationError",
]
