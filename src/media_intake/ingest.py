"""Batch image submission with capacity truncation."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from .collection import ImageCollection
from .errors import IntakeError
from .interfaces import Notifier

if TYPE_CHECKING:  # pragma: no cover
    from .crop import CropCoordinator

logger = logging.getLogger(__name__)


class PendingStatus(str, Enum):
    QUEUED = "queued"
    CROPPING = "cropping"
    SKIPPED = "skipped"
    NORMALIZED = "normalized"
    REJECTED_TOO_LARGE = "rejected_too_large"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {
        PendingStatus.SKIPPED,
        PendingStatus.NORMALIZED,
        PendingStatus.REJECTED_TOO_LARGE,
        PendingStatus.CANCELLED,
        PendingStatus.FAILED,
    }
)


@dataclass
class PendingFile:
    """
    A user-selected file waiting to be cropped or normalized.

    The payload lives either in memory (``data``) or on disk (``path``); reading is a
    suspension point so large files never block the event loop.
    """

    name: str
    size: int
    mime_type: str
    data: Optional[bytes] = None
    path: Optional[Path] = None
    status: PendingStatus = PendingStatus.QUEUED
    error: Optional[IntakeError] = None

    @classmethod
    def from_path(cls, path: str | Path) -> "PendingFile":
        resolved = Path(path)
        mime, _ = mimetypes.guess_type(resolved.name)
        return cls(
            name=resolved.name,
            size=resolved.stat().st_size,
            mime_type=mime or "application/octet-stream",
            path=resolved,
        )

    @classmethod
    def from_bytes(cls, data: bytes, name: str, mime_type: str | None = None) -> "PendingFile":
        if mime_type is None:
            guessed, _ = mimetypes.guess_type(name)
            mime_type = guessed or "application/octet-stream"
        return cls(name=name, size=len(data), mime_type=mime_type, data=data)

    @property
    def is_resolved(self) -> bool:
        return self.status in TERMINAL_STATUSES

    async def read(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise OSError(f"{self.name} has no readable payload")
        return await asyncio.to_thread(self.path.read_bytes)


class IngestionQueue:
    """
    FIFO of pending images feeding a :class:`CropCoordinator`.

    Submissions are truncated to the remaining collection capacity (files already
    queued or in flight count against it). The excess is dropped after a notice.
    """

    def __init__(
        self,
        collection: ImageCollection,
        coordinator: "CropCoordinator",
        notifier: Notifier,
    ) -> None:
        self._collection = collection
        self._coordinator = coordinator
        self._notifier = notifier
        self._queue: deque[PendingFile] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def pending(self) -> tuple[PendingFile, ...]:
        return tuple(self._queue)

    @property
    def remaining(self) -> int:
        in_flight = 0 if self._coordinator.current is None else 1
        return max(0, self._collection.remaining - len(self._queue) - in_flight)

    async def submit(self, files: Sequence[PendingFile]) -> None:
        """Enqueue as many of *files* as capacity allows and drive the coordinator."""
        if not files:
            return
        remaining = self.remaining
        if remaining <= 0:
            self._notifier.notify(
                f"You can only upload a maximum of {self._collection.capacity} images.",
                "Limit Reached",
            )
            logger.info("submission of %d file(s) rejected: collection full", len(files))
            return
        accepted = list(files[:remaining])
        if len(files) > remaining:
            self._notifier.notify(
                f"You can only add {remaining} more image(s). The first {remaining} will be processed."
            )
            logger.info("dropping %d file(s) beyond remaining capacity", len(files) - remaining)
        for pending in accepted:
            pending.status = PendingStatus.QUEUED
            self._queue.append(pending)
        if self._coordinator.is_idle:
            await self._coordinator.run(self)

    def pop_next(self) -> PendingFile | None:
        if not self._queue:
            return None
        return self._queue.popleft()

    def drop_all(self) -> list[PendingFile]:
        """Discard every queued file immediately and return what was dropped."""
        dropped = list(self._queue)
        self._queue.clear()
        for pending in dropped:
            pending.status = PendingStatus.CANCELLED
        return dropped


__all__ = ["IngestionQueue", "PendingFile", "PendingStatus", "TERMINAL_STATUSES"]
