"""Typed interface definitions for user-facing adapters."""

from __future__ import annotations

from .prompts import (
    CropAction,
    CropDecision,
    CropRequest,
    CropSurface,
    Notifier,
)

__all__ = [
    "CropAction",
    "CropDecision",
    "CropRequest",
    "CropSurface",
    "Notifier",
]
