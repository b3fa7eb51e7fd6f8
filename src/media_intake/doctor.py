"""Capability checks for the ``doctor`` command."""

from __future__ import annotations

import importlib.util
import json
import shutil
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Final, Literal, Optional, TypedDict

import click

from src.datatypes import AppConfig

from .env_flags import NO_CROP_ENV_VAR, crop_disabled_by_env
from .transcode import engine_cache_dir

DoctorStatus = Literal["pass", "fail", "warn"]


class DoctorCheck(TypedDict):
    """Structured result for dependency doctor checks."""

    id: str
    label: str
    status: DoctorStatus
    message: str


_DOCTOR_STATUS_ICONS: Final[dict[DoctorStatus, str]] = {
    "pass": "✅",
    "fail": "❌",
    "warn": "⚠️",
}

_MODULE_CHECKS: Final[tuple[tuple[str, str, str, str], ...]] = (
    ("pillow", "Pillow import", "PIL", "Pillow"),
    ("opencv", "OpenCV import", "cv2", "opencv-python-headless"),
    ("numpy", "NumPy import", "numpy", "numpy"),
)


def _module_check(check_id: str, label: str, module: str, dist: str) -> DoctorCheck:
    if importlib.util.find_spec(module) is not None:
        return {"id": check_id, "label": label, "status": "pass", "message": f"{module} available."}
    return {
        "id": check_id,
        "label": label,
        "status": "fail",
        "message": f"{module} not found. Install it with 'pip install {dist}'.",
    }


def _ffmpeg_check(cfg: AppConfig) -> DoctorCheck:
    engine = cfg.engine
    if engine.executable:
        candidate = Path(engine.executable).expanduser()
        if candidate.is_file() or shutil.which(engine.executable):
            status: DoctorStatus = "pass"
            message = f"Configured executable {engine.executable} found."
        else:
            status = "fail"
            message = f"Configured executable {engine.executable} not found. Fix [engine].executable."
    elif shutil.which("ffmpeg"):
        status = "pass"
        message = "ffmpeg available on PATH."
    elif (engine_cache_dir(engine) / "ffmpeg").is_file():
        status = "pass"
        message = f"Cached engine found in {engine_cache_dir(engine)}."
    elif engine.download:
        status = "warn"
        message = "ffmpeg not on PATH; it will be downloaded on first conversion."
    else:
        status = "fail"
        message = "ffmpeg not on PATH and [engine].download is disabled. Install FFmpeg."
    return {"id": "ffmpeg", "label": "Conversion engine", "status": status, "message": message}


def _crop_check(cfg: AppConfig, environ: Optional[Mapping[str, str]]) -> DoctorCheck:
    if not cfg.crop.enabled:
        return {
            "id": "crop",
            "label": "Interactive crop",
            "status": "warn",
            "message": "Cropping disabled by [crop].enabled; images are normalized directly.",
        }
    if crop_disabled_by_env(environ):
        return {
            "id": "crop",
            "label": "Interactive crop",
            "status": "warn",
            "message": f"Cropping disabled by {NO_CROP_ENV_VAR}; images are normalized directly.",
        }
    return {"id": "crop", "label": "Interactive crop", "status": "pass", "message": "Cropping enabled."}


def collect_checks(
    cfg: AppConfig,
    *,
    config_issue: str | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> tuple[list[DoctorCheck], list[str]]:
    """Generate doctor check results and auxiliary notes."""

    notes: list[str] = []
    if config_issue:
        notes.append(config_issue)

    checks = [_module_check(*spec) for spec in _MODULE_CHECKS]
    checks.append(_ffmpeg_check(cfg))
    checks.append(_crop_check(cfg, environ))
    return checks, notes


def emit_results(
    checks: Sequence[DoctorCheck],
    notes: Sequence[str],
    *,
    json_mode: bool,
    config_path: Path | None,
) -> None:
    """Render doctor results either as text lines or JSON payload."""

    if json_mode:
        payload = {
            "config_path": str(config_path) if config_path else None,
            "checks": list(checks),
            "notes": list(notes),
        }
        click.echo(json.dumps(payload, indent=2))
        return

    width = max((len(check["label"]) for check in checks), default=0)
    for check in checks:
        icon = _DOCTOR_STATUS_ICONS.get(check["status"], "•")
        label = check["label"].ljust(width)
        click.echo(f"{icon} {label} - {check['message']}")
    if notes:
        click.echo("Notes:")
        for note in notes:
            click.echo(f"  - {note}")


def has_failures(checks: Sequence[DoctorCheck]) -> bool:
    return any(check["status"] == "fail" for check in checks)


__all__ = ["DoctorCheck", "DoctorStatus", "collect_checks", "emit_results", "has_failures"]
