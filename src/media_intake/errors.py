"""Exception hierarchy for the intake pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = [
    "CaptureError",
    "CaptureFailure",
    "CollectionFullError",
    "DecodeError",
    "EngineLoadError",
    "IntakeError",
    "TranscodeCancelled",
    "TranscodeError",
    "ValidationError",
]


class IntakeError(RuntimeError):
    """Base class for intake failures scoped to a single item or job."""


class ValidationError(IntakeError):
    """Raised for over-capacity submissions and oversize files."""


class CollectionFullError(ValidationError):
    """Raised when a mutation would push the collection past its capacity."""


class DecodeError(IntakeError):
    """Raised when an image or video payload cannot be decoded."""


class EngineLoadError(IntakeError):
    """Raised when the conversion engine cannot be resolved or initialised."""


class TranscodeCancelled(IntakeError):
    """Raised when the user declines a large-file conversion."""


@dataclass(eq=False)
class TranscodeError(IntakeError):
    """Raised when a conversion job fails mid-run."""

    detail: str
    likely_too_large: bool = False

    def __str__(self) -> str:
        hint = (
            "The file is likely too large to convert here. Try recording shorter clips."
            if self.likely_too_large
            else "The file might be corrupted or uses a format that cannot be processed."
        )
        return f"Video conversion failed. {hint} ({self.detail})"


class CaptureFailure(str, Enum):
    """Reasons a frame capture can be refused."""

    DECODE_FAILED = "decode_failed"
    NOT_READY = "not_ready"
    NO_DIMENSIONS = "no_dimensions"
    COLLECTION_FULL = "collection_full"


_CAPTURE_MESSAGES = {
    CaptureFailure.DECODE_FAILED: "Cannot capture: The video file is corrupted or unsupported.",
    CaptureFailure.NOT_READY: "Video is not ready. Please play the video first.",
    CaptureFailure.NO_DIMENSIONS: "Cannot capture: Video has no dimensions (0x0).",
    CaptureFailure.COLLECTION_FULL: "Maximum number of images reached. Remove an image to capture another.",
}


@dataclass(eq=False)
class CaptureError(IntakeError):
    """Raised when no usable frame can be captured from a session."""

    reason: CaptureFailure

    def __str__(self) -> str:  # pragma: no cover - trivial formatting
        return _CAPTURE_MESSAGES[self.reason]
