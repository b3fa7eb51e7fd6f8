"""Headless playback model for one selected video."""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import IntEnum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

import numpy as np

from .errors import DecodeError
from .probe import Playability, release_temp_media, write_temp_media
from .video_backend import VideoOpener, VideoSource, open_video_source

logger = logging.getLogger(__name__)

ROTATIONS = (0, 90, 180, 270)


class ReadyState(IntEnum):
    HAVE_NOTHING = 0
    HAVE_METADATA = 1
    HAVE_CURRENT_DATA = 2


TimeObserver = Callable[["VideoSession"], Union[Awaitable[None], None]]


class VideoSession:
    """
    Playback state for one video: source resource, clock, rotation and check flags.

    The decoded stream lives in a private temporary file plus an open decoder handle;
    both are released by :meth:`close` and whenever :meth:`load` swaps the source.
    Time observers are notified after every position change.
    """

    def __init__(self, name: str, original: bytes, *, opener: VideoOpener = open_video_source) -> None:
        self.name = name
        self.original = original
        self.playability = Playability.UNTESTED
        self.rotation = 0
        self.black_screen_checked = False
        self.current_time = 0.0
        self.paused = True
        self.has_played = False
        self.ended = False
        self.closed = False
        self.error: Optional[DecodeError] = None
        self.ready_state = ReadyState.HAVE_NOTHING
        self.width = 0
        self.height = 0
        self.frame: Optional[np.ndarray] = None
        self._opener = opener
        self._source: Optional[VideoSource] = None
        self._resource: Optional[Path] = None
        self._observers: List[TimeObserver] = []

    @property
    def resource_path(self) -> Optional[Path]:
        return self._resource

    async def load(self, data: bytes, *, suffix_name: str | None = None, start_at: float = 0.0) -> None:
        """Replace the playback source with *data* and present the frame at *start_at*."""
        self._release()
        self.error = None
        self.ready_state = ReadyState.HAVE_NOTHING
        self.frame = None
        self.width = self.height = 0
        self.current_time = 0.0
        self.ended = False

        self._resource = await asyncio.to_thread(write_temp_media, data, suffix_name or self.name)
        try:
            self._source = await asyncio.to_thread(self._opener, self._resource)
        except DecodeError as exc:
            logger.warning("%s: %s", self.name, exc)
            self.error = exc
            return
        self.width = self._source.width
        self.height = self._source.height
        self.ready_state = ReadyState.HAVE_METADATA
        await self._present(start_at)

    def play(self) -> bool:
        if self.closed or self.error is not None or self._source is None:
            return False
        self.paused = False
        self.has_played = True
        return True

    def pause(self) -> None:
        self.paused = True

    def rotate(self) -> int:
        self.rotation = (self.rotation + 90) % 360
        return self.rotation

    async def advance(self, seconds: float) -> None:
        """Move the playback clock forward while playing."""
        if self.paused or self.closed or self.ended:
            return
        await self.seek(self.current_time + seconds)

    async def play_to(self, seconds: float, *, step: float = 0.5) -> None:
        """Simulate playback in *step* increments until *seconds* or until playback stops."""
        if step <= 0:
            raise ValueError("step must be positive")
        while (
            not self.paused
            and not self.closed
            and not self.ended
            and self.error is None
            and self.current_time < seconds
        ):
            await self.advance(min(step, seconds - self.current_time))

    async def seek(self, seconds: float) -> None:
        if self.closed or self._source is None:
            return
        if await self._present(max(0.0, seconds)):
            await self._emit_time_update()

    def add_time_observer(self, observer: TimeObserver) -> None:
        self._observers.append(observer)

    def remove_time_observer(self, observer: TimeObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def close(self) -> None:
        self.pause()
        self._observers.clear()
        self._release()
        self.closed = True

    async def _present(self, seconds: float) -> bool:
        assert self._source is not None
        try:
            frame = await asyncio.to_thread(self._source.read_at, seconds)
        except Exception as exc:
            self.error = DecodeError(f"Decoding failed at {seconds:.2f}s: {exc}")
            logger.warning("%s: %s", self.name, self.error)
            return False
        if frame is None:
            if self.frame is None:
                self.error = DecodeError("The video contains no decodable frames.")
                return False
            self.ended = True
            self.paused = True
            return False
        self.frame = frame
        self.height, self.width = frame.shape[:2]
        self.current_time = seconds
        self.ready_state = ReadyState.HAVE_CURRENT_DATA
        return True

    async def _emit_time_update(self) -> None:
        for observer in list(self._observers):
            result = observer(self)
            if inspect.isawaitable(result):
                await result

    def _release(self) -> None:
        if self._source is not None:
            try:
                self._source.release()
            finally:
                self._source = None
        release_temp_media(self._resource)
        self._resource = None


__all__ = ["ROTATIONS", "ReadyState", "TimeObserver", "VideoSession"]
