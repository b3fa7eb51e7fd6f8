"""Protocols describing notification, confirmation and crop presentation adapters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class Notifier(Protocol):
    """Alert/confirm primitives answered asynchronously by the presentation layer."""

    def notify(self, message: str, title: str = "") -> None:
        """Show a single non-blocking notice."""
        ...

    async def confirm(self, message: str, title: str = "") -> bool:
        """Ask a yes/no question and return the user's answer."""
        ...


class CropAction(str, Enum):
    CONFIRM = "confirm"
    SKIP = "skip"
    CANCEL_ALL = "cancel_all"


@dataclass(frozen=True)
class CropRequest:
    """Everything a crop surface needs to present one pending image."""

    name: str
    data: bytes
    width: int
    height: int
    aspect_ratio: float
    default_box: tuple[int, int, int, int]


@dataclass(frozen=True)
class CropDecision:
    """User resolution of a crop request; ``box`` is ``(left, top, right, bottom)``."""

    action: CropAction
    box: tuple[int, int, int, int] | None = None

    @classmethod
    def confirm(cls, box: tuple[int, int, int, int]) -> "CropDecision":
        return cls(CropAction.CONFIRM, box)

    @classmethod
    def skip(cls) -> "CropDecision":
        return cls(CropAction.SKIP)

    @classmethod
    def cancel_all(cls) -> "CropDecision":
        return cls(CropAction.CANCEL_ALL)


class CropSurface(Protocol):
    """Interactive crop facility. Only one request is ever outstanding."""

    async def present(self, request: CropRequest) -> CropDecision:
        """Show *request* and wait for the user's decision."""
        ...

    def close(self) -> None:
        """Hide the surface once the queue is drained."""
        ...
