"""Bounded, ordered image store shared with the downstream layout engine."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterator, Literal, Sequence

from src.normalizer import NORMALIZED_MIME

from .errors import CollectionFullError, ValidationError

logger = logging.getLogger(__name__)

ChangeKind = Literal["append", "remove", "reorder", "clear", "restore"]

DEFAULT_CAPACITY = 6


@dataclass(frozen=True)
class NormalizedImage:
    """An encoded raster stored in the collection."""

    data: bytes
    width: int
    height: int
    position: int = 0
    mime_type: str = NORMALIZED_MIME
    source: str = ""

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class CollectionChange:
    """Notification payload emitted after every mutation."""

    kind: ChangeKind
    images: tuple[NormalizedImage, ...]


CollectionListener = Callable[[CollectionChange], None]


class ImageCollection:
    """
    Ordered sequence of :class:`NormalizedImage` with a hard capacity.

    Every mutating method checks the capacity synchronously before touching the
    underlying list, so callers on the event loop can never interleave between the
    check and the mutation. Positions are renumbered after each change.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._images: list[NormalizedImage] = []
        self._listeners: list[CollectionListener] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def remaining(self) -> int:
        return self._capacity - len(self._images)

    @property
    def is_full(self) -> bool:
        return len(self._images) >= self._capacity

    @property
    def images(self) -> tuple[NormalizedImage, ...]:
        return tuple(self._images)

    def __len__(self) -> int:
        return len(self._images)

    def __iter__(self) -> Iterator[NormalizedImage]:
        return iter(tuple(self._images))

    def __getitem__(self, index: int) -> NormalizedImage:
        return self._images[index]

    def as_data_urls(self) -> list[str]:
        """Return the ordered list of encoded raster strings for the layout engine."""
        return [image.to_data_url() for image in self._images]

    def subscribe(self, listener: CollectionListener) -> Callable[[], None]:
        """Register *listener* for change notifications and return an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def append(self, image: NormalizedImage) -> NormalizedImage:
        """
        Append *image* at the end of the collection.

        Raises:
            CollectionFullError: when the collection is already at capacity.
        """
        if len(self._images) >= self._capacity:
            raise CollectionFullError(
                f"Maximum of {self._capacity} images reached. Remove an image to add a new one."
            )
        stored = replace(image, position=len(self._images))
        self._images.append(stored)
        self._emit("append")
        return stored

    def remove(self, index: int) -> NormalizedImage:
        """Remove and return the image at *index*."""
        self._check_index(index)
        removed = self._images.pop(index)
        self._renumber()
        self._emit("remove")
        return removed

    def reorder(self, source: int, target: int) -> None:
        """Move the image at *source* so that it ends up at *target*."""
        self._check_index(source)
        self._check_index(target)
        if source == target:
            return
        moved = self._images.pop(source)
        self._images.insert(target, moved)
        self._renumber()
        self._emit("reorder")

    def clear(self) -> tuple[NormalizedImage, ...]:
        """Empty the collection and return the snapshot that was removed."""
        snapshot = tuple(self._images)
        self._images.clear()
        self._emit("clear")
        return snapshot

    def restore(self, snapshot: Sequence[NormalizedImage]) -> None:
        """Replace the contents with *snapshot* (used by undo-clear)."""
        if len(snapshot) > self._capacity:
            raise CollectionFullError(
                f"Cannot restore {len(snapshot)} images into a collection of {self._capacity}."
            )
        self._images = list(snapshot)
        self._renumber()
        self._emit("restore")

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._images):
            raise ValidationError(f"No image at position {index}.")

    def _renumber(self) -> None:
        self._images = [
            image if image.position == idx else replace(image, position=idx)
            for idx, image in enumerate(self._images)
        ]

    def _emit(self, kind: ChangeKind) -> None:
        change = CollectionChange(kind=kind, images=tuple(self._images))
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as exc:
                logger.warning("collection listener failed on %s: %s", kind, exc)


__all__ = [
    "ChangeKind",
    "CollectionChange",
    "CollectionListener",
    "DEFAULT_CAPACITY",
    "ImageCollection",
    "NormalizedImage",
]
