from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Any, List

import pytest

from src.datatypes import EngineConfig, VideoConfig
from src.media_intake import transcode as transcode_module
from src.media_intake.errors import EngineLoadError, TranscodeCancelled, TranscodeError
from src.media_intake.transcode import (
    EngineHandle,
    EngineLoadState,
    TranscodeEngine,
    build_transcode_argv,
    load_ffmpeg_engine,
    shared_engine,
)
from tests.helpers.intake_stubs import RecordingNotifier, counting_loader


class _FakeRunner:
    """Stand-in for ``run_checked`` that records argv and fakes FFmpeg output."""

    def __init__(self, *, returncode: int = 0, stderr: bytes = b"", output: bytes = b"mp4-bytes") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.output = output
        self.argvs: List[List[str]] = []

    def __call__(self, argv, *, cwd=None, timeout=None, text=False, check=False) -> subprocess.CompletedProcess[Any]:
        self.argvs.append(list(argv))
        if self.returncode == 0 and self.output:
            Path(argv[-1]).write_bytes(self.output)
        return subprocess.CompletedProcess(argv, self.returncode, stdout=b"", stderr=self.stderr)


def test_concurrent_callers_share_one_load() -> None:
    calls: List[int] = []
    engine = TranscodeEngine(EngineConfig(), loader=counting_loader(calls))

    async def _race() -> List[EngineHandle]:
        return list(await asyncio.gather(*(engine.ensure_loaded() for _ in range(5))))

    handles = asyncio.run(_race())

    assert calls == [1]
    assert all(handle is handles[0] for handle in handles)
    assert engine.state is EngineLoadState.LOADED


def test_failed_load_requires_explicit_retry() -> None:
    calls: List[int] = []
    engine = TranscodeEngine(EngineConfig(), loader=counting_loader(calls, fail=True))

    async def _race() -> List[Any]:
        return list(
            await asyncio.gather(*(engine.ensure_loaded() for _ in range(3)), return_exceptions=True)
        )

    results = asyncio.run(_race())

    assert calls == [1]
    assert all(isinstance(result, EngineLoadError) for result in results)
    assert engine.state is EngineLoadState.FAILED

    with pytest.raises(EngineLoadError):
        asyncio.run(engine.ensure_loaded())
    assert calls == [1]

    engine.retry()
    assert engine.state is EngineLoadState.NOT_LOADED
    engine._loader = counting_loader(calls)
    asyncio.run(engine.ensure_loaded())
    assert calls == [1, 1]
    assert engine.state is EngineLoadState.LOADED


def test_unexpected_loader_errors_become_engine_load_errors() -> None:
    async def _broken(cfg: EngineConfig) -> EngineHandle:
        raise RuntimeError("segfault")

    engine = TranscodeEngine(EngineConfig(), loader=_broken)

    with pytest.raises(EngineLoadError, match="segfault"):
        asyncio.run(engine.ensure_loaded())
    assert engine.state is EngineLoadState.FAILED


def test_declining_large_file_warning_cancels_job() -> None:
    calls: List[int] = []
    engine = TranscodeEngine(EngineConfig(), loader=counting_loader(calls))
    notifier = RecordingNotifier([False])

    with pytest.raises(TranscodeCancelled):
        asyncio.run(
            engine.transcode(
                b"x" * 11,
                "huge.mov",
                video_cfg=VideoConfig(large_warning_bytes=10),
                notifier=notifier,
            )
        )

    assert notifier.prompts[0][0] == "Large File Warning"
    assert calls == []


def test_transcode_returns_output_and_removes_sandbox(monkeypatch: pytest.MonkeyPatch) -> None:
    runner = _FakeRunner()
    monkeypatch.setattr(transcode_module, "run_checked", runner)
    engine = TranscodeEngine(EngineConfig(), loader=counting_loader([]))
    notifier = RecordingNotifier()

    output = asyncio.run(engine.transcode(b"avi-bytes", "clip.avi", video_cfg=VideoConfig(), notifier=notifier))

    assert output == b"mp4-bytes"
    argv = runner.argvs[0]
    source = Path(argv[argv.index("-i") + 1])
    assert source.suffix == ".avi"
    assert not source.parent.exists()
    assert notifier.prompts == []


@pytest.mark.parametrize("likely_limit, expected", [(5, True), (500, False)])
def test_failed_conversion_reports_size_hint_and_cleans_up(
    monkeypatch: pytest.MonkeyPatch,
    likely_limit: int,
    expected: bool,
) -> None:
    runner = _FakeRunner(returncode=1, stderr=b"moov atom not found\n")
    monkeypatch.setattr(transcode_module, "run_checked", runner)
    engine = TranscodeEngine(EngineConfig(), loader=counting_loader([]))

    with pytest.raises(TranscodeError) as excinfo:
        asyncio.run(
            engine.transcode(
                b"0123456789",
                "clip.mkv",
                video_cfg=VideoConfig(likely_too_large_bytes=likely_limit),
                notifier=RecordingNotifier(),
            )
        )

    assert excinfo.value.likely_too_large is expected
    assert "moov atom not found" in str(excinfo.value)
    hint = "likely too large" if expected else "might be corrupted"
    assert hint in str(excinfo.value)
    argv = runner.argvs[0]
    assert not Path(argv[-1]).parent.exists()


def test_empty_output_is_a_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(transcode_module, "run_checked", _FakeRunner(output=b""))
    engine = TranscodeEngine(EngineConfig(), loader=counting_loader([]))

    with pytest.raises(TranscodeError, match="no output"):
        asyncio.run(engine.transcode(b"abc", "clip.mov", video_cfg=VideoConfig(), notifier=RecordingNotifier()))


def test_build_transcode_argv_uses_configured_codec() -> None:
    argv = build_transcode_argv(Path("/bin/ffmpeg"), Path("in.avi"), Path("out.mp4"), EngineConfig(crf=23))

    assert argv[0] == "/bin/ffmpeg"
    assert argv[argv.index("-c:v") + 1] == "libx264"
    assert argv[argv.index("-preset") + 1] == "ultrafast"
    assert argv[argv.index("-crf") + 1] == "23"
    assert argv[-1] == "out.mp4"


def test_load_engine_prefers_path_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(transcode_module.shutil, "which", lambda name: "/opt/bin/ffmpeg")

    def _version(argv, **kwargs) -> subprocess.CompletedProcess[Any]:
        return subprocess.CompletedProcess(argv, 0, stdout="ffmpeg version 6.1\nbuilt with gcc\n", stderr="")

    monkeypatch.setattr(transcode_module, "run_checked", _version)

    handle = asyncio.run(load_ffmpeg_engine(EngineConfig()))

    assert handle.executable == Path("/opt/bin/ffmpeg")
    assert handle.version == "ffmpeg version 6.1"


def test_load_engine_downloads_into_cache(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(transcode_module.shutil, "which", lambda name: None)
    fetched: List[str] = []

    async def _download(client, url: str, destination: Path, **kwargs: Any) -> Path:
        fetched.append(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"\x7fELF")
        return destination

    monkeypatch.setattr(transcode_module, "download_with_backoff", _download)
    monkeypatch.setattr(
        transcode_module,
        "run_checked",
        lambda argv, **kwargs: subprocess.CompletedProcess(argv, 0, stdout="ffmpeg version static\n", stderr=""),
    )
    cfg = EngineConfig(cache_dir=str(tmp_path / "engine"))

    handle = asyncio.run(load_ffmpeg_engine(cfg))

    assert fetched == [cfg.download_url]
    assert handle.executable == tmp_path / "engine" / "ffmpeg"
    assert handle.executable.stat().st_mode & 0o111


def test_load_engine_without_download_fails(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(transcode_module.shutil, "which", lambda name: None)

    with pytest.raises(EngineLoadError, match="not found on PATH"):
        asyncio.run(load_ffmpeg_engine(EngineConfig(download=False, cache_dir=str(tmp_path))))


def test_load_engine_rejects_failing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(transcode_module.shutil, "which", lambda name: "/opt/bin/ffmpeg")
    monkeypatch.setattr(
        transcode_module,
        "run_checked",
        lambda argv, **kwargs: subprocess.CompletedProcess(argv, 1, stdout="", stderr="illegal instruction\n"),
    )

    with pytest.raises(EngineLoadError, match="illegal instruction"):
        asyncio.run(load_ffmpeg_engine(EngineConfig()))


def test_shared_engine_keeps_first_config(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    monkeypatch.setattr(transcode_module, "_shared_engine", None)
    caplog.set_level(logging.DEBUG, logger=transcode_module.__name__)
    first_cfg = EngineConfig(executable="/opt/ffmpeg")

    first = shared_engine(first_cfg)
    again = shared_engine(EngineConfig(executable="/opt/ffmpeg"))
    assert "ignoring differing [engine] config" not in caplog.text

    other = shared_engine(EngineConfig(executable="/usr/local/bin/ffmpeg", crf=18))

    assert first is again is other
    assert other.config is first_cfg
    assert "ignoring differing [engine] config" in caplog.text
    assert "/usr/local/bin/ffmpeg" in caplog.text
