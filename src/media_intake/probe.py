"""Decide whether a video can be decoded natively or needs conversion."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path

from src.datatypes import VideoConfig

from .errors import DecodeError
from .ingest import PendingFile
from .video_backend import VideoOpener, open_video_source

logger = logging.getLogger(__name__)


class Playability(str, Enum):
    UNTESTED = "untested"
    NATIVE_PLAYABLE = "native_playable"
    NEEDS_TRANSCODE = "needs_transcode"
    TRANSCODING = "transcoding"
    READY = "ready"
    FAILED = "failed"


def write_temp_media(data: bytes, name: str, *, prefix: str = "media-intake-") -> Path:
    """Write *data* to a private temporary file that keeps *name*'s extension."""
    suffix = Path(name).suffix.lower()
    fd, raw_path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    return Path(raw_path)


def release_temp_media(path: Path | None) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.debug("could not remove temporary media %s: %s", path, exc)


class VideoPlaybackProbe:
    """Extension override first, then an empirical decode bounded by a timeout."""

    def __init__(self, cfg: VideoConfig, *, opener: VideoOpener = open_video_source) -> None:
        self._cfg = cfg
        self._opener = opener

    def forces_transcode(self, name: str) -> bool:
        lowered = name.lower()
        return any(lowered.endswith(ext) for ext in self._cfg.force_transcode_extensions)

    async def probe(self, video: PendingFile) -> Playability:
        if self.forces_transcode(video.name):
            logger.info("%s: container forced to transcode", video.name)
            return Playability.NEEDS_TRANSCODE

        data = await video.read()
        temp_path = await asyncio.to_thread(write_temp_media, data, video.name)
        try:
            playable = await asyncio.wait_for(
                asyncio.to_thread(self._decodes_first_frame, temp_path),
                timeout=self._cfg.probe_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.info("%s: probe timed out after %.1fs", video.name, self._cfg.probe_timeout_seconds)
            playable = False
        finally:
            release_temp_media(temp_path)
        result = Playability.NATIVE_PLAYABLE if playable else Playability.NEEDS_TRANSCODE
        logger.info("%s: probe result %s", video.name, result.value)
        return result

    def _decodes_first_frame(self, path: Path) -> bool:
        try:
            source = self._opener(path)
        except DecodeError as exc:
            logger.debug("probe open failed: %s", exc)
            return False
        try:
            frame = source.read_at(0.0)
        except Exception as exc:
            logger.debug("probe decode failed: %s", exc)
            return False
        finally:
            source.release()
        return frame is not None and frame.size > 0


__all__ = ["Playability", "VideoPlaybackProbe", "release_temp_media", "write_temp_media"]
