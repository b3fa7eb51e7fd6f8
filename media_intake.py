"""CLI entry point for the media intake pipeline."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, cast

import click
from rich.console import Console
from rich.logging import RichHandler

import src.media_intake.doctor as doctor_module
from src.config_loader import ConfigError, load_config
from src.datatypes import AppConfig
from src.media_intake.console import ConsoleCropSurface, ConsoleNotifier, write_collection
from src.media_intake.ingest import PendingFile
from src.media_intake.pipeline import IntakePipeline

_ROTATIONS = ("0", "90", "180", "270")


def _configure_logging(verbose: bool, console: Console) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def _params(ctx: click.Context) -> Dict[str, Any]:
    return cast(Dict[str, Any], ctx.ensure_object(dict))


def _load_app_config(params: Dict[str, Any]) -> AppConfig:
    config_path = params.get("config_path")
    try:
        return load_config(config_path)
    except FileNotFoundError as exc:
        raise click.ClickException(f"Config file not found: {config_path}") from exc
    except ConfigError as exc:
        raise click.ClickException(f"Config error: {exc}") from exc


def _build_pipeline(params: Dict[str, Any], *, crop: bool) -> tuple[IntakePipeline, Console]:
    console = cast(Console, params["console"])
    cfg = _load_app_config(params)
    notifier = ConsoleNotifier(console, assume_yes=True if params.get("assume_yes") else None)
    surface = ConsoleCropSurface(console) if crop else None
    return IntakePipeline(cfg, notifier, crop_surface=surface), console


def _finish(pipeline: IntakePipeline, console: Console, out_dir: Path) -> None:
    written = write_collection(pipeline.collection, out_dir)
    console.print(
        f"[green]Collection:[/] {len(written)}/{pipeline.collection.capacity} image(s) written to {out_dir}"
    )


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to a TOML config file (defaults are used when omitted).",
)
@click.option("--verbose", is_flag=True, help="Show diagnostic logging.")
@click.option("--no-color", is_flag=True, help="Disable ANSI colour output.")
@click.option("--yes", "assume_yes", is_flag=True, help="Answer every confirmation with yes.")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    *,
    verbose: bool,
    no_color: bool,
    assume_yes: bool,
) -> None:
    """Ingest images and video frames into a bounded, normalized image collection."""

    console = Console(no_color=no_color, highlight=False)
    _configure_logging(verbose, console)
    params = _params(ctx)
    params.update(
        {
            "config_path": config_path,
            "verbose": verbose,
            "no_color": no_color,
            "assume_yes": assume_yes,
            "console": console,
        }
    )


@main.command("images")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--out", "out_dir", required=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--no-crop", is_flag=True, help="Skip the crop prompts and normalize images directly.")
@click.pass_context
def images_command(ctx: click.Context, files: Sequence[Path], out_dir: Path, no_crop: bool) -> None:
    """Add still images through the crop queue."""

    pipeline, console = _build_pipeline(_params(ctx), crop=not no_crop)
    pending = [PendingFile.from_path(path) for path in files]
    asyncio.run(pipeline.submit_images(pending))
    _finish(pipeline, console, out_dir)


async def _capture_video(
    pipeline: IntakePipeline,
    video: PendingFile,
    times: Sequence[float],
    rotation: int,
) -> int:
    captured = 0
    session = await pipeline.open_video(video)
    if session is None:
        raise click.ClickException(f"{video.name} could not be opened.")
    try:
        for _ in range(rotation // 90):
            pipeline.rotate_video()
        for target in sorted(times):
            session = pipeline.session
            if session is None:
                break
            session.play()
            await session.play_to(target)
            session = pipeline.session
            if session is None:
                break
            session.pause()
            if session.current_time != target:
                await session.seek(target)
            if await pipeline.capture_frame() is not None:
                captured += 1
    finally:
        pipeline.close_video()
    return captured


@main.command("video")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--out", "out_dir", required=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--at", "times", multiple=True, required=True, type=click.FloatRange(min=0.0), help="Capture time in seconds (repeatable).")
@click.option("--rotate", type=click.Choice(_ROTATIONS), default="0", show_default=True, help="Clockwise rotation applied to captures.")
@click.pass_context
def video_command(
    ctx: click.Context,
    file: Path,
    out_dir: Path,
    times: Sequence[float],
    rotate: str,
) -> None:
    """Open a video, converting it when needed, and capture frames at the given times."""

    pipeline, console = _build_pipeline(_params(ctx), crop=False)
    captured = asyncio.run(_capture_video(pipeline, PendingFile.from_path(file), times, int(rotate)))
    console.print(f"Captured {captured} frame(s) from {file.name}")
    _finish(pipeline, console, out_dir)


@main.command("paste")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--out", "out_dir", required=True, type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def paste_command(ctx: click.Context, file: Path, out_dir: Path) -> None:
    """Add an image directly, the way a clipboard paste does (no crop prompt)."""

    pipeline, console = _build_pipeline(_params(ctx), crop=False)
    mime_type, _ = mimetypes.guess_type(file.name)
    mime_type = mime_type or "application/octet-stream"
    if not mime_type.startswith("image/"):
        raise click.ClickException(f"{file.name} is not an image ({mime_type}).")
    asyncio.run(pipeline.paste_image(file.read_bytes(), mime_type))
    _finish(pipeline, console, out_dir)


@main.command("doctor")
@click.option("--json", "json_mode", is_flag=True, help="Emit machine-readable diagnostics.")
@click.pass_context
def doctor(ctx: click.Context, json_mode: bool) -> None:
    """Summarise dependency and capability readiness."""

    params = _params(ctx)
    config_path: Optional[Path] = params.get("config_path")
    config_issue: Optional[str] = None
    try:
        cfg = load_config(config_path)
    except FileNotFoundError:
        config_issue = f"Config file not found at {config_path}; using defaults."
        cfg = AppConfig()
    except ConfigError as exc:
        config_issue = f"Config parsing failed: {exc}"
        cfg = AppConfig()

    checks, notes = doctor_module.collect_checks(cfg, config_issue=config_issue)
    doctor_module.emit_results(checks, notes, json_mode=json_mode, config_path=config_path)


if __name__ == "__main__":
    _entry_point = cast(Callable[[], None], main)
    _entry_point()
