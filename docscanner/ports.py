"""Collaborator interfaces between the pipeline and the platform.

A platform only implements these adapters; all pipeline logic lives in
:mod:`docscanner.pipeline`.
"""

from typing import TYPE_CHECKING, List, Optional, Protocol, Union, runtime_checkable

import numpy as np

from .frames import OrientationState, PixelFormat, Size

if TYPE_CHECKING:
    from .rectifier import RectifiedImage


@runtime_checkable
class FrameSource(Protocol):
    """Yields raw preview frames plus the current device orientation."""

    pixel_format: PixelFormat

    def open(self, size: Optional[Size] = None) -> None: ...
    def read(self) -> Optional[Union[bytes, bytearray, memoryview]]: ...
    def supported_sizes(self) -> List[Size]: ...
    def orientation(self) -> OrientationState: ...
    def close(self) -> None: ...


@runtime_checkable
class OverlaySink(Protocol):
    """Receives the live overlay (BGRA, working resolution) of every processed tick."""

    def show_overlay(self, overlay: Optional[np.ndarray]) -> None: ...


@runtime_checkable
class ResultSink(Protocol):
    """Receives each rectified capture, exactly once."""

    def deliver(self, result: "RectifiedImage") -> None: ...
