"""One-shot black-screen detection for a playing video session."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from src.datatypes import VideoConfig

from .interfaces import Notifier
from .session import VideoSession
from .video_backend import frame_is_black

logger = logging.getLogger(__name__)

Remediation = Callable[[], Awaitable[object]]

BLACK_SCREEN_PROMPT = (
    "The video appears to be a black screen. This is a common issue with some recording software.\n\n"
    "Would you like to run the automatic fixer now?"
)


class BlackScreenDetector:
    """
    Samples the displayed frame once, after playback passes the check delay.

    The check is consumed by the first eligible time update, whatever its outcome,
    and the detector detaches itself. Updates while the session has no decoded
    dimensions or is paused before its first play do not consume it.
    """

    def __init__(
        self,
        session: VideoSession,
        notifier: Notifier,
        cfg: VideoConfig,
        *,
        remediate: Remediation,
    ) -> None:
        self._session = session
        self._notifier = notifier
        self._cfg = cfg
        self._remediate = remediate
        self._attached = False
        self.flagged: Optional[bool] = None

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> None:
        if self._attached or self._session.black_screen_checked:
            return
        self._session.add_time_observer(self._on_time_update)
        self._attached = True

    def detach(self) -> None:
        if self._attached:
            self._session.remove_time_observer(self._on_time_update)
            self._attached = False

    async def _on_time_update(self, session: VideoSession) -> None:
        if session.black_screen_checked:
            self.detach()
            return
        if session.current_time <= self._cfg.black_check_after_seconds:
            return
        if session.width == 0 or session.height == 0:
            return
        if session.paused or not session.has_played:
            return

        session.black_screen_checked = True
        self.detach()

        frame = session.frame
        if frame is None:
            self.flagged = False
            return
        try:
            is_black = frame_is_black(
                frame,
                grid=self._cfg.black_sample_grid,
                threshold=self._cfg.black_threshold,
            )
        except Exception as exc:
            logger.error("Error checking for black screen: %s", exc)
            self.flagged = False
            return
        self.flagged = is_black
        if not is_black:
            return

        logger.info("%s: automatic black screen detection triggered", session.name)
        session.pause()
        if await self._notifier.confirm(BLACK_SCREEN_PROMPT, "Automatic Fix Suggested"):
            await self._remediate()
        else:
            session.play()


__all__ = ["BLACK_SCREEN_PROMPT", "BlackScreenDetector", "Remediation"]
