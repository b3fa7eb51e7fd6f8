"""Lazily-loaded FFmpeg conversion engine with single-flight initialisation."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import httpx

from src.datatypes import EngineConfig, VideoConfig

from .errors import EngineLoadError, TranscodeCancelled, TranscodeError
from .interfaces import Notifier
from .net import BackoffError, download_with_backoff, redact_url_for_logs
from .subproc import run_checked, stderr_tail

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


class EngineLoadState(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineHandle:
    """A validated FFmpeg executable."""

    executable: Path
    version: str


EngineLoader = Callable[[EngineConfig], Awaitable[EngineHandle]]


def engine_cache_dir(cfg: EngineConfig) -> Path:
    if cfg.cache_dir:
        return Path(cfg.cache_dir).expanduser()
    return Path.home() / ".cache" / "media-intake" / "engine"


async def _resolve_executable(cfg: EngineConfig) -> Path:
    if cfg.executable:
        candidate = Path(cfg.executable).expanduser()
        if candidate.is_file():
            return candidate
        found = shutil.which(cfg.executable)
        if found:
            return Path(found)
        raise EngineLoadError(f"Configured FFmpeg executable not found: {cfg.executable}")

    found = shutil.which("ffmpeg")
    if found:
        return Path(found)
    if not cfg.download:
        raise EngineLoadError(
            "FFmpeg was not found on PATH. Install FFmpeg or enable [engine].download."
        )

    target = engine_cache_dir(cfg) / "ffmpeg"
    if target.is_file():
        return target
    logger.info(
        "Loading conversion engine from %s (first time only)",
        redact_url_for_logs(cfg.download_url),
    )
    try:
        async with httpx.AsyncClient(timeout=cfg.load_timeout_seconds) as client:
            await download_with_backoff(client, cfg.download_url, target)
        target.chmod(0o755)
    except (httpx.HTTPError, BackoffError, OSError) as exc:
        raise EngineLoadError(
            "Failed to load the video conversion engine. Please check your internet connection."
        ) from exc
    return target


async def load_ffmpeg_engine(cfg: EngineConfig) -> EngineHandle:
    """Default :data:`EngineLoader`: resolve (or download) FFmpeg and validate it."""
    executable = await _resolve_executable(cfg)
    try:
        completed = await asyncio.to_thread(
            run_checked,
            [str(executable), "-hide_banner", "-version"],
            timeout=cfg.load_timeout_seconds,
            text=True,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise EngineLoadError(f"FFmpeg at {executable} could not be started: {exc}") from exc
    if completed.returncode != 0:
        raise EngineLoadError(f"FFmpeg at {executable} failed validation: {stderr_tail(completed)}")
    lines = (completed.stdout or "").splitlines()
    version = lines[0].strip() if lines else "unknown"
    logger.info("Conversion engine ready: %s", version)
    return EngineHandle(executable=executable, version=version)


def build_transcode_argv(executable: Path, source: Path, target: Path, cfg: EngineConfig) -> List[str]:
    """Return the FFmpeg argv producing a broadly decodable H.264/MP4 stream."""
    return [
        str(executable),
        "-nostdin",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(source),
        "-c:v",
        cfg.video_codec,
        "-preset",
        cfg.preset,
        "-crf",
        str(cfg.crf),
        "-pix_fmt",
        "yuv420p",
        "-movflags",
        "+faststart",
        str(target),
    ]


class TranscodeEngine:
    """
    Conversion service whose load is shared by every caller.

    ``ensure_loaded`` is single-flight: the first caller starts one load task and
    every concurrent caller awaits that same task. A failed load stays failed until
    :meth:`retry` is called explicitly.
    """

    def __init__(self, cfg: EngineConfig, *, loader: EngineLoader = load_ffmpeg_engine) -> None:
        self._cfg = cfg
        self._loader = loader
        self._state = EngineLoadState.NOT_LOADED
        self._handle: Optional[EngineHandle] = None
        self._pending: Optional[asyncio.Future[EngineHandle]] = None
        self._failure: Optional[EngineLoadError] = None

    @property
    def state(self) -> EngineLoadState:
        return self._state

    @property
    def handle(self) -> Optional[EngineHandle]:
        return self._handle

    @property
    def config(self) -> EngineConfig:
        return self._cfg

    def retry(self) -> None:
        """Allow a new load attempt after a failure."""
        if self._state is EngineLoadState.FAILED:
            self._state = EngineLoadState.NOT_LOADED
            self._failure = None

    async def ensure_loaded(self) -> EngineHandle:
        if self._state is EngineLoadState.LOADED and self._handle is not None:
            return self._handle
        if self._state is EngineLoadState.FAILED:
            raise self._failure or EngineLoadError("The conversion engine failed to load.")
        if self._pending is None:
            self._state = EngineLoadState.LOADING
            self._pending = asyncio.ensure_future(self._load())
        return await asyncio.shield(self._pending)

    async def _load(self) -> EngineHandle:
        try:
            handle = await self._loader(self._cfg)
        except EngineLoadError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            wrapped = EngineLoadError(f"The conversion engine failed to initialise: {exc}")
            self._fail(wrapped)
            raise wrapped from exc
        finally:
            self._pending = None
        self._handle = handle
        self._state = EngineLoadState.LOADED
        return handle

    def _fail(self, exc: EngineLoadError) -> None:
        logger.error("Conversion engine load failed: %s", exc)
        self._failure = exc
        self._state = EngineLoadState.FAILED

    async def transcode(
        self,
        data: bytes,
        name: str,
        *,
        video_cfg: VideoConfig,
        notifier: Notifier,
    ) -> bytes:
        """
        Re-encode *data* into a broadly decodable MP4.

        Raises:
            TranscodeCancelled: the user declined the large-file warning.
            EngineLoadError: the engine could not be loaded.
            TranscodeError: the conversion itself failed.
        """
        size = len(data)
        if size > video_cfg.large_warning_bytes:
            confirmed = await notifier.confirm(
                f"Large File Detected ({size / _MIB:.0f}MB)\n\n"
                "Converting large videos may fail due to memory limits. Do you want to try anyway?",
                "Large File Warning",
            )
            if not confirmed:
                raise TranscodeCancelled(f"Conversion of {name} was cancelled.")

        handle = await self.ensure_loaded()
        try:
            return await self._convert(handle, data, name)
        except TranscodeError as exc:
            exc.likely_too_large = size > video_cfg.likely_too_large_bytes
            logger.error("Conversion failed for %s: %s", name, exc.detail)
            raise

    async def _convert(self, handle: EngineHandle, data: bytes, name: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="media-intake-engine-") as workdir:
            root = Path(workdir)
            source = root / f"input{Path(name).suffix.lower() or '.bin'}"
            target = root / "output.mp4"
            await asyncio.to_thread(source.write_bytes, data)
            argv = build_transcode_argv(handle.executable, source, target, self._cfg)
            logger.debug("transcode argv: %s", argv)
            try:
                completed = await asyncio.to_thread(
                    run_checked,
                    argv,
                    cwd=root,
                    timeout=self._cfg.transcode_timeout_seconds,
                )
            except subprocess.TimeoutExpired as exc:
                raise TranscodeError(f"timed out after {exc.timeout:.0f}s") from exc
            except OSError as exc:
                raise TranscodeError(f"engine could not be started: {exc}") from exc
            if completed.returncode != 0:
                raise TranscodeError(stderr_tail(completed))
            if not target.is_file() or target.stat().st_size == 0:
                raise TranscodeError("engine produced no output")
            return await asyncio.to_thread(target.read_bytes)


_shared_engine: Optional[TranscodeEngine] = None


def shared_engine(cfg: EngineConfig) -> TranscodeEngine:
    """
    Return the process-wide engine, creating it from *cfg* on first use.

    The first configuration wins: later callers with a different ``[engine]`` table
    share the already-created engine and only a debug note is logged.
    """
    global _shared_engine
    if _shared_engine is None:
        _shared_engine = TranscodeEngine(cfg)
    elif _shared_engine.config != cfg:
        logger.debug(
            "conversion engine already created; ignoring differing [engine] config (executable=%r, codec=%s)",
            cfg.executable,
            cfg.video_codec,
        )
    return _shared_engine


__all__ = [
    "EngineHandle",
    "EngineLoadState",
    "EngineLoader",
    "TranscodeEngine",
    "build_transcode_argv",
    "engine_cache_dir",
    "load_ffmpeg_engine",
    "shared_engine",
]
