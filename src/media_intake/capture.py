"""Capture the displayed video frame into the image collection."""

from __future__ import annotations

import asyncio
import io
import logging

import numpy as np
from PIL import Image

from src.datatypes import NormalizeConfig
from src.normalizer import normalize_image

from .collection import ImageCollection, NormalizedImage
from .errors import CaptureError, CaptureFailure, CollectionFullError
from .session import ReadyState, VideoSession

logger = logging.getLogger(__name__)


def rotate_frame(frame: np.ndarray, rotation: int) -> np.ndarray:
    """Rotate an ``H x W x C`` frame clockwise by *rotation* degrees (multiple of 90)."""
    quarter_turns = (rotation // 90) % 4
    if quarter_turns == 0:
        return frame
    return np.ascontiguousarray(np.rot90(frame, k=-quarter_turns))


def encode_png(frame: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(frame).save(buffer, format="PNG")
    return buffer.getvalue()


class FrameCaptureService:
    def __init__(self, collection: ImageCollection, normalize_cfg: NormalizeConfig) -> None:
        self._collection = collection
        self._normalize_cfg = normalize_cfg

    def check(self, session: VideoSession) -> None:
        """Raise :class:`CaptureError` when *session* cannot be captured right now."""
        if session.error is not None:
            raise CaptureError(CaptureFailure.DECODE_FAILED)
        if session.ready_state < ReadyState.HAVE_CURRENT_DATA or session.frame is None:
            raise CaptureError(CaptureFailure.NOT_READY)
        if session.width == 0 or session.height == 0:
            raise CaptureError(CaptureFailure.NO_DIMENSIONS)
        if self._collection.is_full:
            raise CaptureError(CaptureFailure.COLLECTION_FULL)

    async def capture(self, session: VideoSession) -> NormalizedImage:
        """
        Rotate, encode and normalize the current frame, then append it.

        The collection is only mutated on success; capacity is re-checked by
        ``append`` after the off-loop encode.
        """
        self.check(session)
        assert session.frame is not None
        frame = rotate_frame(session.frame, session.rotation)
        try:
            png = await asyncio.to_thread(encode_png, frame)
        except (OSError, ValueError, TypeError) as exc:
            logger.error("%s: frame encode failed: %s", session.name, exc)
            raise CaptureError(CaptureFailure.DECODE_FAILED) from exc
        normalized = await asyncio.to_thread(
            normalize_image,
            png,
            max_width=self._normalize_cfg.max_width,
            quality=self._normalize_cfg.quality,
        )
        try:
            stored = self._collection.append(
                NormalizedImage(
                    data=normalized.data,
                    width=normalized.width,
                    height=normalized.height,
                    source=f"{session.name}@{session.current_time:.2f}s",
                )
            )
        except CollectionFullError as exc:
            raise CaptureError(CaptureFailure.COLLECTION_FULL) from exc
        logger.info(
            "captured %s at %.2fs (%dx%d, rotation %d)",
            session.name,
            session.current_time,
            stored.width,
            stored.height,
            session.rotation,
        )
        return stored


__all__ = ["FrameCaptureService", "encode_png", "rotate_frame"]
