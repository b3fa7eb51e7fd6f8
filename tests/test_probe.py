from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import List

import pytest

from src.datatypes import VideoConfig
from src.media_intake import probe as probe_module
from src.media_intake.ingest import PendingFile
from src.media_intake.probe import Playability, VideoPlaybackProbe, write_temp_media
from tests.helpers.intake_stubs import FakeOpener, FakeVideoSource, payload_opener, solid_frame


def _track_temp_files(monkeypatch: pytest.MonkeyPatch) -> List[Path]:
    created: List[Path] = []

    def _recording_write(data: bytes, name: str, *, prefix: str = "media-intake-") -> Path:
        path = write_temp_media(data, name, prefix=prefix)
        created.append(path)
        return path

    monkeypatch.setattr(probe_module, "write_temp_media", _recording_write)
    return created


def test_forced_extension_needs_transcode_without_decoding() -> None:
    def _never(path: Path) -> FakeVideoSource:
        raise AssertionError("decoder must not be consulted")

    probe = VideoPlaybackProbe(VideoConfig(), opener=_never)
    video = PendingFile.from_bytes(b"RIFF....AVI ", "clip.AVI", "video/x-msvideo")

    assert asyncio.run(probe.probe(video)) is Playability.NEEDS_TRANSCODE


def test_decodable_video_is_native_playable_and_temp_file_released(monkeypatch: pytest.MonkeyPatch) -> None:
    created = _track_temp_files(monkeypatch)
    opener = payload_opener({b"good": [solid_frame(16, 8)]})
    probe = VideoPlaybackProbe(VideoConfig(), opener=opener)

    result = asyncio.run(probe.probe(PendingFile.from_bytes(b"good", "clip.mp4")))

    assert result is Playability.NATIVE_PLAYABLE
    assert opener.sources[0].released is True
    assert created and not any(path.exists() for path in created)
    assert created[0].suffix == ".mp4"


def test_undecodable_video_needs_transcode(monkeypatch: pytest.MonkeyPatch) -> None:
    created = _track_temp_files(monkeypatch)
    probe = VideoPlaybackProbe(VideoConfig(), opener=payload_opener({}))

    result = asyncio.run(probe.probe(PendingFile.from_bytes(b"hevc", "clip.mov")))

    assert result is Playability.NEEDS_TRANSCODE
    assert not any(path.exists() for path in created)


def test_empty_first_frame_needs_transcode() -> None:
    opener = FakeOpener(lambda data: FakeVideoSource([]))
    probe = VideoPlaybackProbe(VideoConfig(), opener=opener)

    result = asyncio.run(probe.probe(PendingFile.from_bytes(b"x", "clip.webm")))

    assert result is Playability.NEEDS_TRANSCODE
    assert opener.sources[0].released is True


def test_probe_timeout_needs_transcode(monkeypatch: pytest.MonkeyPatch) -> None:
    created = _track_temp_files(monkeypatch)

    class _SlowSource(FakeVideoSource):
        def read_at(self, seconds: float):
            time.sleep(0.3)
            return super().read_at(seconds)

    opener = FakeOpener(lambda data: _SlowSource([solid_frame(4, 4)]))
    probe = VideoPlaybackProbe(VideoConfig(probe_timeout_seconds=0.05), opener=opener)

    result = asyncio.run(probe.probe(PendingFile.from_bytes(b"slow", "clip.mp4")))

    assert result is Playability.NEEDS_TRANSCODE
    assert not any(path.exists() for path in created)


def test_forces_transcode_is_case_insensitive() -> None:
    probe = VideoPlaybackProbe(VideoConfig(force_transcode_extensions=[".avi", ".wmv"]))

    assert probe.forces_transcode("Holiday.WMV")
    assert not probe.forces_transcode("holiday.mp4")
