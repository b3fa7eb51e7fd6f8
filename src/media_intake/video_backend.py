"""Video decode backend used for probing, playback and frame capture."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import cv2
import numpy as np

from .errors import DecodeError

logger = logging.getLogger(__name__)


class VideoSource(Protocol):
    """An open decoder positioned anywhere in a video stream."""

    width: int
    height: int

    def read_at(self, seconds: float) -> Optional[np.ndarray]:
        """Return the RGB frame displayed at *seconds*, or ``None`` past the end."""
        ...

    def release(self) -> None:
        ...


VideoOpener = Callable[[Path], VideoSource]


class OpenCVVideoSource:
    """:class:`VideoSource` backed by ``cv2.VideoCapture``."""

    def __init__(self, path: Path) -> None:
        self._capture: Any = cv2.VideoCapture(str(path))
        if not self._capture.isOpened():
            self._capture.release()
            raise DecodeError(f"OpenCV could not open {path.name}")
        self.width = int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        self.height = int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)

    def read_at(self, seconds: float) -> Optional[np.ndarray]:
        self._capture.set(cv2.CAP_PROP_POS_MSEC, max(0.0, float(seconds)) * 1000.0)
        ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        if not self.width or not self.height:
            self.height, self.width = rgb.shape[:2]
        return rgb

    def release(self) -> None:
        self._capture.release()


def open_video_source(path: Path) -> VideoSource:
    """Default :data:`VideoOpener`."""
    return OpenCVVideoSource(path)


def frame_is_black(frame: np.ndarray, *, grid: int = 32, threshold: int = 15) -> bool:
    """
    Return ``True`` when *frame* looks uniformly black.

    The frame is area-resampled to a ``grid`` x ``grid`` thumbnail and every channel
    of every sampled pixel must be at or below ``threshold``.
    """
    if frame.size == 0:
        raise ValueError("frame has no pixels")
    sample = cv2.resize(frame, (grid, grid), interpolation=cv2.INTER_AREA)
    return bool(np.max(sample) <= threshold)


__all__ = [
    "OpenCVVideoSource",
    "VideoOpener",
    "VideoSource",
    "frame_is_black",
    "open_video_source",
]
