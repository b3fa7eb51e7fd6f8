"""Wiring for the image and video intake workflows around one collection."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Mapping, Optional, Sequence

from src.datatypes import AppConfig
from src.normalizer import normalize_image

from .capture import FrameCaptureService
from .collection import ImageCollection, NormalizedImage
from .crop import CropCoordinator
from .env_flags import crop_disabled_by_env
from .errors import (
    CaptureError,
    CollectionFullError,
    EngineLoadError,
    TranscodeCancelled,
    TranscodeError,
)
from .ingest import IngestionQueue, PendingFile
from .interfaces import CropSurface, Notifier
from .probe import Playability, VideoPlaybackProbe
from .sampler import BlackScreenDetector
from .session import VideoSession
from .transcode import TranscodeEngine, shared_engine
from .video_backend import VideoOpener, open_video_source

logger = logging.getLogger(__name__)

FIX_BLACK_SCREEN_PROMPT = (
    "This will convert the video to fix black screen issues. It may take a moment. Continue?"
)


class IntakePipeline:
    """
    Owns the collection and every component that feeds it.

    Images go through the crop queue, pasted images are normalized directly, and a
    video goes probe → optional conversion → playback session → frame capture. At
    most one video session is open; opening another releases the previous one.
    """

    def __init__(
        self,
        cfg: AppConfig,
        notifier: Notifier,
        *,
        crop_surface: Optional[CropSurface] = None,
        engine: Optional[TranscodeEngine] = None,
        opener: VideoOpener = open_video_source,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.cfg = cfg
        self.notifier = notifier
        self._opener = opener
        self._engine = engine

        crop_enabled = cfg.crop.enabled and not crop_disabled_by_env(environ)
        if crop_surface is not None and not crop_enabled:
            logger.info("crop capability disabled; images will be normalized directly")
        self.collection = ImageCollection(cfg.collection.max_size)
        self.coordinator = CropCoordinator(
            self.collection,
            notifier,
            crop_cfg=cfg.crop,
            normalize_cfg=cfg.normalize,
            surface=crop_surface if crop_enabled else None,
        )
        self.queue = IngestionQueue(self.collection, self.coordinator, notifier)
        self.probe = VideoPlaybackProbe(cfg.video, opener=opener)
        self.capture = FrameCaptureService(self.collection, cfg.normalize)
        self.session: Optional[VideoSession] = None
        self.detector: Optional[BlackScreenDetector] = None
        self._cleared: Optional[tuple[NormalizedImage, ...]] = None

    @property
    def engine(self) -> TranscodeEngine:
        if self._engine is None:
            self._engine = shared_engine(self.cfg.engine)
        return self._engine

    @property
    def crop_available(self) -> bool:
        return self.coordinator.crop_available

    # Images -----------------------------------------------------------------

    async def submit_images(self, files: Sequence[PendingFile]) -> None:
        await self.queue.submit(files)

    async def paste_image(self, data: bytes, mime_type: str) -> bool:
        """Add a clipboard image without cropping; non-image payloads are ignored."""
        if not mime_type.lower().startswith("image/"):
            logger.debug("ignoring pasted payload of type %s", mime_type)
            return False
        if self.collection.is_full:
            self._notify_limit()
            return False
        normalized = await asyncio.to_thread(
            normalize_image,
            data,
            max_width=self.cfg.normalize.max_width,
            quality=self.cfg.normalize.quality,
        )
        try:
            self.collection.append(
                NormalizedImage(
                    data=normalized.data,
                    width=normalized.width,
                    height=normalized.height,
                    source="clipboard",
                )
            )
        except CollectionFullError:
            self._notify_limit()
            return False
        self.notifier.notify("Image pasted from clipboard successfully!")
        return True

    def remove_image(self, index: int) -> NormalizedImage:
        return self.collection.remove(index)

    def reorder_images(self, source: int, target: int) -> None:
        self.collection.reorder(source, target)

    def clear(self) -> int:
        """Empty the collection, remembering its contents for :meth:`undo_clear`."""
        snapshot = self.collection.clear()
        if snapshot:
            self._cleared = snapshot
        return len(snapshot)

    def undo_clear(self) -> bool:
        if not self._cleared:
            return False
        self.collection.restore(self._cleared)
        self._cleared = None
        return True

    # Video ------------------------------------------------------------------

    async def open_video(self, video: PendingFile) -> Optional[VideoSession]:
        """
        Probe, convert when needed, and start playback of *video*.

        Returns the playing session, or ``None`` when the item was discarded. Any
        previously open session is released first.
        """
        if self.collection.is_full:
            self._notify_limit()
            return None
        self.close_video()

        try:
            data = await video.read()
        except OSError as exc:
            logger.warning("could not read %s: %s", video.name, exc)
            self.notifier.notify(f'"{video.name}" could not be read.', "Video Error")
            return None

        session = VideoSession(video.name, data, opener=self._opener)
        self.session = session
        session.playability = await self.probe.probe(video)
        if self.session is not session:
            session.close()
            return None

        payload = data
        load_name = video.name
        if session.playability is Playability.NEEDS_TRANSCODE:
            converted = await self._convert(session)
            if self.session is not session:
                session.close()
                return None
            if converted is None:
                self._discard(session)
                return None
            payload = converted
            load_name = _converted_name(video.name)

        await session.load(payload, suffix_name=load_name, start_at=self.cfg.video.kickstart_seconds)
        if self.session is not session:
            session.close()
            return None
        if session.playability is Playability.TRANSCODING:
            session.playability = Playability.READY
        if session.error is not None:
            self.notifier.notify(
                "The video could not be played. Try the black screen fix or choose another file.",
                "Video Error",
            )
            return session

        self.detector = BlackScreenDetector(
            session,
            self.notifier,
            self.cfg.video,
            remediate=lambda: self.fix_black_screen(confirm=False),
        )
        self.detector.attach()
        session.play()
        return session

    async def fix_black_screen(self, *, confirm: bool = True) -> bool:
        """
        Re-convert the current video's original bytes and reload playback.

        On success the session is ``ready`` with rotation reset to 0.
        """
        session = self.session
        if session is None:
            return False
        session.pause()
        if confirm and not await self.notifier.confirm(FIX_BLACK_SCREEN_PROMPT, "Fix Black Screen"):
            session.play()
            return False

        converted = await self._convert(session)
        if self.session is not session:
            return False
        if converted is None:
            self._discard(session)
            return False

        await session.load(
            converted,
            suffix_name=_converted_name(session.name),
            start_at=self.cfg.video.kickstart_seconds,
        )
        session.playability = Playability.READY
        session.rotation = 0
        if session.error is not None:
            self.notifier.notify(
                "The converted video could not be played. Choose another file.",
                "Video Error",
            )
            return False
        session.play()
        logger.info("%s: black screen fix applied", session.name)
        return True

    def rotate_video(self) -> Optional[int]:
        if self.session is None:
            return None
        return self.session.rotate()

    async def capture_frame(self) -> Optional[NormalizedImage]:
        session = self.session
        if session is None:
            self.notifier.notify("Please select a video first.", "Capture Error")
            return None
        try:
            return await self.capture.capture(session)
        except CaptureError as exc:
            logger.info("%s: capture refused (%s)", session.name, exc.reason.value)
            self.notifier.notify(str(exc), "Capture Error")
            return None

    def close_video(self) -> None:
        if self.detector is not None:
            self.detector.detach()
            self.detector = None
        if self.session is not None:
            self.session.close()
            self.session = None

    async def _convert(self, session: VideoSession) -> Optional[bytes]:
        session.playability = Playability.TRANSCODING
        while True:
            try:
                return await self.engine.transcode(
                    session.original,
                    session.name,
                    video_cfg=self.cfg.video,
                    notifier=self.notifier,
                )
            except TranscodeCancelled as exc:
                logger.info("%s", exc)
                return None
            except EngineLoadError as exc:
                retry = await self.notifier.confirm(
                    f"{exc}\n\nWould you like to try loading it again?",
                    "Conversion Engine Error",
                )
                if not retry:
                    return None
                self.engine.retry()
            except TranscodeError as exc:
                self.notifier.notify(str(exc), "Conversion Failed")
                return None

    def _discard(self, session: VideoSession) -> None:
        session.playability = Playability.FAILED
        if self.session is session:
            self.close_video()
        else:
            session.close()

    def _notify_limit(self) -> None:
        self.notifier.notify(
            f"You can only upload a maximum of {self.collection.capacity} images.",
            "Limit Reached",
        )


def _converted_name(name: str) -> str:
    return f"{Path(name).stem}.mp4"


__all__ = ["FIX_BLACK_SCREEN_PROMPT", "IntakePipeline"]
