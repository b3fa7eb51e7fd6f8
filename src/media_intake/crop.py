"""Serial crop queue: one pending image on the crop surface at a time."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from src.datatypes import CropConfig, NormalizeConfig
from src.normalizer import normalize_image

from .collection import ImageCollection, NormalizedImage
from .errors import CollectionFullError, DecodeError, ValidationError
from .ingest import PendingFile, PendingStatus
from .interfaces import CropAction, CropDecision, CropRequest, CropSurface, Notifier

if TYPE_CHECKING:  # pragma: no cover
    from .ingest import IngestionQueue

logger = logging.getLogger(__name__)

_CROP_JPEG_QUALITY = 92

Box = tuple[int, int, int, int]


@dataclass(frozen=True)
class CropResult:
    """Rasterised crop at the fixed output size, consumed immediately by the normalizer."""

    data: bytes
    width: int
    height: int


def default_crop_box(width: int, height: int, aspect_ratio: float, area_fraction: float) -> Box:
    """
    Return the centred default crop box for an image of ``width`` x ``height``.

    The box is the largest ``aspect_ratio`` rectangle that fits the image, scaled by
    ``area_fraction`` on each axis.
    """
    if width <= 0 or height <= 0:
        raise ValueError("image dimensions must be positive")
    fit_w = min(float(width), height * aspect_ratio)
    fit_h = fit_w / aspect_ratio
    box_w = max(1, int(round(fit_w * area_fraction)))
    box_h = max(1, int(round(fit_h * area_fraction)))
    left = (width - box_w) // 2
    top = (height - box_h) // 2
    return left, top, left + box_w, top + box_h


def _open_upright(data: bytes) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as opened:
            opened.load()
            img = ImageOps.exif_transpose(opened)
            return img.convert("RGB") if img.mode != "RGB" else img.copy()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Image could not be decoded: {exc}") from exc


def build_crop_request(name: str, data: bytes, cfg: CropConfig) -> CropRequest:
    """Decode *data* far enough to describe it to a crop surface."""
    img = _open_upright(data)
    box = default_crop_box(img.width, img.height, cfg.aspect_ratio, cfg.default_area_fraction)
    return CropRequest(
        name=name,
        data=data,
        width=img.width,
        height=img.height,
        aspect_ratio=cfg.aspect_ratio,
        default_box=box,
    )


def fit_box_to_aspect(box: Box, width: int, height: int, aspect_ratio: float) -> Box:
    """
    Clamp *box* to a ``width`` x ``height`` image and trim it to ``aspect_ratio``.

    The longer side is shrunk around its centre, so the result is never larger than
    the requested box and never leaves the image.
    """
    left, top, right, bottom = box
    left = max(0, min(left, width - 1))
    top = max(0, min(top, height - 1))
    right = max(left + 1, min(right, width))
    bottom = max(top + 1, min(bottom, height))
    box_w = right - left
    box_h = bottom - top
    if box_w > box_h * aspect_ratio:
        fitted_w = max(1, int(round(box_h * aspect_ratio)))
        left += (box_w - fitted_w) // 2
        right = left + fitted_w
    elif box_w < box_h * aspect_ratio:
        fitted_h = max(1, int(round(box_w / aspect_ratio)))
        top += (box_h - fitted_h) // 2
        bottom = top + fitted_h
    return left, top, right, bottom


def render_crop(data: bytes, box: Box, output_size: int, aspect_ratio: float = 1.0) -> CropResult:
    """Cut *box* out of *data* and rasterise it to the fixed output size without distortion."""
    img = _open_upright(data)
    left, top, right, bottom = fit_box_to_aspect(box, img.width, img.height, aspect_ratio)
    out_w = output_size
    out_h = max(1, int(round(output_size / aspect_ratio)))
    cropped = img.crop((left, top, right, bottom)).resize((out_w, out_h), Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    cropped.save(buffer, format="JPEG", quality=_CROP_JPEG_QUALITY)
    return CropResult(buffer.getvalue(), out_w, out_h)


class CropCoordinator:
    """
    Drains an :class:`IngestionQueue` one file at a time.

    The crop surface is an injected capability: ``None`` means cropping is
    unavailable and every file goes straight to the normalizer.
    """

    def __init__(
        self,
        collection: ImageCollection,
        notifier: Notifier,
        *,
        crop_cfg: CropConfig,
        normalize_cfg: NormalizeConfig,
        surface: Optional[CropSurface] = None,
    ) -> None:
        self._collection = collection
        self._notifier = notifier
        self._crop_cfg = crop_cfg
        self._normalize_cfg = normalize_cfg
        self._surface = surface
        self._current: PendingFile | None = None
        self._running = False
        self.history: List[PendingFile] = []

    @property
    def crop_available(self) -> bool:
        return self._surface is not None

    @property
    def is_idle(self) -> bool:
        return not self._running

    @property
    def current(self) -> PendingFile | None:
        return self._current

    async def run(self, queue: "IngestionQueue") -> None:
        """Process queued files until the queue is empty, then close the surface."""
        if self._running:
            return
        self._running = True
        try:
            while True:
                pending = queue.pop_next()
                if pending is None:
                    break
                self._current = pending
                try:
                    cancel_rest = await self._process(pending)
                finally:
                    self._current = None
                    self.history.append(pending)
                if cancel_rest:
                    dropped = queue.drop_all()
                    self.history.extend(dropped)
                    logger.info("crop cancelled; dropped %d queued file(s)", len(dropped))
        finally:
            self._running = False
            if self._surface is not None:
                self._surface.close()

    async def _process(self, pending: PendingFile) -> bool:
        limit = self._crop_cfg.size_ceiling_bytes
        if pending.size > limit:
            pending.status = PendingStatus.REJECTED_TOO_LARGE
            pending.error = ValidationError(
                f'The image "{pending.name}" is too large (>{limit / (1024 * 1024):g}MB) and will be skipped.'
            )
            self._notifier.notify(str(pending.error), "File Too Large")
            return False

        try:
            data = await pending.read()
        except OSError as exc:
            self._fail(pending, DecodeError(f"Could not read {pending.name}: {exc}"))
            return False
        pending.status = PendingStatus.CROPPING

        if self._surface is None:
            logger.debug("crop surface unavailable; normalizing %s directly", pending.name)
            await self._store(pending, data, PendingStatus.NORMALIZED)
            return False

        try:
            request = await asyncio.to_thread(build_crop_request, pending.name, data, self._crop_cfg)
            decision: CropDecision = await self._surface.present(request)
        except DecodeError as exc:
            self._fail(pending, exc)
            return False

        if decision.action is CropAction.CANCEL_ALL:
            pending.status = PendingStatus.CANCELLED
            return True
        if decision.action is CropAction.SKIP:
            await self._store(pending, data, PendingStatus.SKIPPED)
            return False

        box = decision.box or request.default_box
        try:
            result = await asyncio.to_thread(
                render_crop,
                data,
                box,
                self._crop_cfg.output_size,
                self._crop_cfg.aspect_ratio,
            )
        except DecodeError as exc:
            self._fail(pending, exc)
            return False
        await self._store(pending, result.data, PendingStatus.NORMALIZED)
        return False

    async def _store(self, pending: PendingFile, data: bytes, status: PendingStatus) -> None:
        normalized = await asyncio.to_thread(
            normalize_image,
            data,
            max_width=self._normalize_cfg.max_width,
            quality=self._normalize_cfg.quality,
        )
        try:
            self._collection.append(
                NormalizedImage(
                    data=normalized.data,
                    width=normalized.width,
                    height=normalized.height,
                    source=pending.name,
                )
            )
        except CollectionFullError as exc:
            pending.status = PendingStatus.FAILED
            pending.error = exc
            self._notifier.notify(str(exc), "Limit Reached")
            return
        pending.status = status

    def _fail(self, pending: PendingFile, exc: DecodeError) -> None:
        pending.status = PendingStatus.FAILED
        pending.error = exc
        logger.warning("skipping %s: %s", pending.name, exc)
        self._notifier.notify(
            f'"{pending.name}" could not be processed and was skipped. Choose a different file.',
            "Image Error",
        )


__all__ = [
    "CropCoordinator",
    "CropResult",
    "build_crop_request",
    "default_crop_box",
    "fit_box_to_aspect",
    "render_crop",
]
