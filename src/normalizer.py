"""Bounded resize and lossy re-encode for collection images."""

from __future__ import annotations

import io
import logging
from typing import NamedTuple

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

NORMALIZED_FORMAT = "JPEG"
NORMALIZED_MIME = "image/jpeg"


class NormalizeResult(NamedTuple):
    """Encoded bytes plus the pixel dimensions they decode to (0 when unknown)."""

    data: bytes
    width: int
    height: int
    normalized: bool


def _quality_percent(quality: float) -> int:
    """Map a 0-1 quality factor onto Pillow's 1-95 JPEG scale."""
    return max(1, min(95, int(round(float(quality) * 100))))


def _scaled_size(width: int, height: int, max_width: int) -> tuple[int, int]:
    if width <= max_width:
        return width, height
    ratio = max_width / float(width)
    return max_width, max(1, int(round(height * ratio)))


def probe_dimensions(data: bytes) -> tuple[int, int]:
    """Return ``(width, height)`` for encoded *data*, or ``(0, 0)`` when undecodable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return int(img.width), int(img.height)
    except (UnidentifiedImageError, OSError, ValueError):
        return 0, 0


def normalize_image(data: bytes, *, max_width: int = 1024, quality: float = 0.8) -> NormalizeResult:
    """
    Decode *data*, downscale it to at most *max_width* pixels wide and re-encode as JPEG.

    Aspect ratio is preserved and EXIF orientation is applied before measuring. Any
    failure to decode or encode returns the original bytes untouched so the caller's
    pipeline never blocks on a bad image.

    Returns:
        NormalizeResult: encoded bytes, their dimensions and whether re-encoding happened.
    """
    try:
        with Image.open(io.BytesIO(data)) as opened:
            opened.load()
            img = ImageOps.exif_transpose(opened)
            if img.mode != "RGB":
                img = img.convert("RGB")
            target = _scaled_size(img.width, img.height, max_width)
            if target != img.size:
                img = img.resize(target, Image.Resampling.LANCZOS)
            buffer = io.BytesIO()
            img.save(buffer, format=NORMALIZED_FORMAT, quality=_quality_percent(quality))
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        logger.debug("normalize skipped, returning original bytes: %s", exc)
        width, height = probe_dimensions(data)
        return NormalizeResult(data, width, height, False)
    return NormalizeResult(buffer.getvalue(), target[0], target[1], True)


def normalize(data: bytes, *, max_width: int = 1024, quality: float = 0.8) -> bytes:
    """Return the normalized encoding of *data* (fail-open: original bytes on error)."""
    return normalize_image(data, max_width=max_width, quality=quality).data


__all__ = [
    "NORMALIZED_FORMAT",
    "NORMALIZED_MIME",
    "NormalizeResult",
    "normalize",
    "normalize_image",
    "probe_dimensions",
]
