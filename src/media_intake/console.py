"""Terminal adapters: a rich notifier, a prompt-driven crop surface and collection export."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.markup import escape

from .collection import ImageCollection
from .interfaces import CropDecision, CropRequest

logger = logging.getLogger(__name__)

COLLECTION_MANIFEST = "collection.json"


class ConsoleNotifier:
    """:class:`~.interfaces.Notifier` printing notices through a rich console."""

    def __init__(self, console: Console | None = None, *, assume_yes: Optional[bool] = None) -> None:
        self.console = console or Console(highlight=False)
        self._assume_yes = assume_yes
        self.history: List[tuple[str, str]] = []

    def notify(self, message: str, title: str = "") -> None:
        self.history.append((title, message))
        if title:
            self.console.print(f"[bold yellow]{escape(title)}:[/] {escape(message)}")
        else:
            self.console.print(escape(message))

    async def confirm(self, message: str, title: str = "") -> bool:
        if title:
            self.console.print(f"[bold cyan]{escape(title)}[/]")
        if self._assume_yes is not None:
            self.console.print(f"{escape(message)} [dim]({'yes' if self._assume_yes else 'no'})[/]")
            return self._assume_yes
        return await asyncio.to_thread(click.confirm, message, default=True)


def _parse_box(text: str) -> tuple[int, int, int, int]:
    parts = [part.strip() for part in text.split(",")]
    if len(parts) != 4:
        raise click.BadParameter("expected left,top,right,bottom")
    try:
        left, top, right, bottom = (int(part) for part in parts)
    except ValueError as exc:
        raise click.BadParameter("crop box values must be integers") from exc
    if right <= left or bottom <= top:
        raise click.BadParameter("crop box must have a positive area")
    return left, top, right, bottom


class ConsoleCropSurface:
    """
    :class:`~.interfaces.CropSurface` answered from the terminal.

    Each request shows the image size and default box, then asks for ``crop``,
    ``skip`` or ``cancel``. A crop may accept the default box or take an explicit
    ``left,top,right,bottom``.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(highlight=False)
        self.presented = 0

    async def present(self, request: CropRequest) -> CropDecision:
        self.presented += 1
        return await asyncio.to_thread(self._prompt, request)

    def _prompt(self, request: CropRequest) -> CropDecision:
        left, top, right, bottom = request.default_box
        self.console.print(
            f"[bold]Crop[/] {escape(request.name)} ({request.width}x{request.height}), "
            f"default box {left},{top},{right},{bottom}"
        )
        action = click.prompt(
            "Action",
            type=click.Choice(["crop", "skip", "cancel"], case_sensitive=False),
            default="crop",
        )
        action = action.lower()
        if action == "skip":
            return CropDecision.skip()
        if action == "cancel":
            return CropDecision.cancel_all()
        default_text = f"{left},{top},{right},{bottom}"
        while True:
            response = click.prompt("Crop box", default=default_text)
            try:
                return CropDecision.confirm(_parse_box(response))
            except click.BadParameter as exc:
                click.echo(f"Error: {exc.message}")

    def close(self) -> None:
        logger.debug("crop surface closed after %d request(s)", self.presented)


def write_collection(collection: ImageCollection, out_dir: Path) -> List[Path]:
    """
    Write every collection image as ``image_<n>.jpg`` plus a ``collection.json`` manifest.

    The manifest lists the images in order with their dimensions and data URL, the
    shape the downstream layout engine consumes.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    entries: List[Dict[str, Any]] = []
    for image in collection:
        target = out_dir / f"image_{image.position + 1}.jpg"
        target.write_bytes(image.data)
        written.append(target)
        entries.append(
            {
                "position": image.position,
                "file": target.name,
                "source": image.source,
                "width": image.width,
                "height": image.height,
                "mime_type": image.mime_type,
                "data_url": image.to_data_url(),
            }
        )
    manifest = out_dir / COLLECTION_MANIFEST
    manifest.write_text(
        json.dumps({"capacity": collection.capacity, "images": entries}, indent=2),
        encoding="utf-8",
    )
    logger.info("wrote %d image(s) to %s", len(written), out_dir)
    return written


__all__ = ["COLLECTION_MANIFEST", "ConsoleCropSurface", "ConsoleNotifier", "write_collection"]
