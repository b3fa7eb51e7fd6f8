from __future__ import annotations

import asyncio
from typing import List

import numpy as np
import pytest

from src.datatypes import VideoConfig
from src.media_intake import sampler as sampler_module
from src.media_intake.sampler import BlackScreenDetector
from src.media_intake.session import VideoSession
from src.media_intake.video_backend import frame_is_black
from tests.helpers.intake_stubs import RecordingNotifier, payload_opener, solid_frame


def _session(value: int, *, count: int = 12, width: int = 32, height: int = 16) -> VideoSession:
    frames = [solid_frame(width, height, value) for _ in range(count)]
    return VideoSession("clip.mp4", b"clip", opener=payload_opener({b"clip": frames}))


def _detector(session: VideoSession, notifier: RecordingNotifier, fixes: List[int]) -> BlackScreenDetector:
    async def _remediate() -> None:
        fixes.append(1)

    detector = BlackScreenDetector(session, notifier, VideoConfig(), remediate=_remediate)
    detector.attach()
    return detector


def test_black_video_prompts_once_and_resumes_on_decline() -> None:
    session = _session(0)
    notifier = RecordingNotifier([False])
    fixes: List[int] = []
    detector = _detector(session, notifier, fixes)

    async def _run() -> None:
        await session.load(b"clip", start_at=0.1)
        session.play()
        await session.play_to(3.0)
        await session.seek(0.5)
        await session.play_to(5.0)

    asyncio.run(_run())

    assert [title for title, _ in notifier.prompts] == ["Automatic Fix Suggested"]
    assert session.black_screen_checked is True
    assert detector.flagged is True
    assert detector.attached is False
    assert fixes == []
    assert session.paused is False
    assert session.current_time == 5.0
    session.close()


def test_black_video_runs_remediation_on_confirm() -> None:
    session = _session(0)
    notifier = RecordingNotifier([True])
    fixes: List[int] = []
    _detector(session, notifier, fixes)

    async def _run() -> None:
        await session.load(b"clip")
        session.play()
        await session.play_to(3.0)

    asyncio.run(_run())

    assert fixes == [1]
    assert session.paused is True
    session.close()


def test_bright_video_consumes_check_without_prompt() -> None:
    session = _session(200)
    notifier = RecordingNotifier()
    detector = _detector(session, notifier, [])

    async def _run() -> None:
        await session.load(b"clip")
        session.play()
        await session.play_to(3.0)

    asyncio.run(_run())

    assert notifier.prompts == []
    assert session.black_screen_checked is True
    assert detector.flagged is False
    session.close()


def test_updates_before_delay_or_first_play_do_not_consume_check() -> None:
    session = _session(0)
    notifier = RecordingNotifier([False])
    _detector(session, notifier, [])

    async def _run() -> None:
        await session.load(b"clip")
        await session.seek(1.5)
        assert session.black_screen_checked is False
        await session.seek(2.5)
        assert session.black_screen_checked is False
        session.play()
        await session.advance(0.5)

    asyncio.run(_run())

    assert session.black_screen_checked is True
    assert len(notifier.prompts) == 1
    session.close()


def test_zero_dimension_frames_do_not_consume_check() -> None:
    session = _session(0, width=0, height=0)
    notifier = RecordingNotifier()
    _detector(session, notifier, [])

    async def _run() -> None:
        await session.load(b"clip")
        session.play()
        await session.play_to(3.0)

    asyncio.run(_run())

    assert session.black_screen_checked is False
    assert notifier.prompts == []
    session.close()


def test_sampling_error_is_logged_and_consumes_check(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    def _boom(frame: np.ndarray, *, grid: int, threshold: int) -> bool:
        raise ValueError("canvas tainted")

    monkeypatch.setattr(sampler_module, "frame_is_black", _boom)
    session = _session(0)
    notifier = RecordingNotifier()
    detector = _detector(session, notifier, [])

    async def _run() -> None:
        await session.load(b"clip")
        session.play()
        await session.play_to(3.0)

    with caplog.at_level("ERROR"):
        asyncio.run(_run())

    assert session.black_screen_checked is True
    assert detector.flagged is False
    assert notifier.prompts == []
    assert "canvas tainted" in caplog.text
    session.close()


def test_attach_is_skipped_once_checked() -> None:
    session = _session(0)
    session.black_screen_checked = True
    detector = BlackScreenDetector(session, RecordingNotifier(), VideoConfig(), remediate=lambda: asyncio.sleep(0))

    detector.attach()

    assert detector.attached is False


@pytest.mark.parametrize("value, expected", [(0, True), (15, True), (16, False), (255, False)])
def test_frame_is_black_threshold(value: int, expected: bool) -> None:
    assert frame_is_black(solid_frame(64, 48, value), grid=32, threshold=15) is expected


def test_frame_is_black_detects_single_bright_region() -> None:
    frame = solid_frame(64, 64, 0)
    frame[:8, :8] = 255

    assert frame_is_black(frame) is False
