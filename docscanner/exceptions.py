"""Exceptions raised by the document scanner pipeline."""


class ScannerError(Exception):
    """Base scanner error."""
    pass


class ConfigError(ScannerError):
    """Invalid or unreadable configuration."""
    pass


class FrameError(ScannerError):
    """Base exception for raw frame handling errors."""
    pass


class FrameFormatError(FrameError):
    """Frame bytes do not match the declared size and pixel format."""
    pass


class BufferAllocationError(FrameError):
    """Frame buffer pool could not be allocated."""
    pass


class CameraUnavailableError(ScannerError):
    """Camera could not be opened or reports no usable sizes."""
    pass


class RectificationError(ScannerError):
    """Perspective correction could not produce a valid image."""
    pass
