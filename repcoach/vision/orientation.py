"""
Periodic check that the user is set up the way the exercise asks
(facing, distance, camera angle). Advisory only: a NO answer raises a
throttled orientation alert, errors and timeouts are skipped.
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import Callable, Optional

from repcoach.common.events import EventType, PromptEvent
from repcoach.vision.config import VisionConfig
from repcoach.vision.prompts import build_orientation_check_prompt, parse_orientation
from repcoach.vision.providers import VisionProvider

logger = logging.getLogger(__name__)

ORIENTATION_ALERT_COOLDOWN_S = 15.0


class OrientationMonitor:
    def __init__(
        self,
        provider: VisionProvider,
        frame_source: Callable[[], Optional[str]],
        orientation: str,
        cfg: Optional[VisionConfig] = None,
        on_alert: Optional[Callable[[PromptEvent], None]] = None,
        session_id: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.frame_source = frame_source
        self.orientation = orientation
        self.cfg = cfg or VisionConfig()
        self.on_alert = on_alert
        self.session_id = session_id
        self.clock = clock
        self.prompt = build_orientation_check_prompt(orientation)

        self._last_alert: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def start(self, autorun: bool = True):
        self._running = True
        self._last_alert = None
        if autorun:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self):
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        try:
            await self.provider.close()
        except Exception as e:
            logger.warning("closing %s failed: %r", self.provider.name, e)

    async def _run(self):
        try:
            await asyncio.wait_for(self.provider.start(), self.cfg.init_timeout_ms / 1000.0)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("orientation check disabled, %s failed to start: %r", self.provider.name, e)
            return
        interval = self.cfg.inference_interval_ms / 1000.0
        while self._running:
            await self.check()
            await asyncio.sleep(interval)

    async def check(self) -> Optional[bool]:
        """One round. True/False is the model's verdict; None means skipped."""
        if not self._running:
            return None
        image = self.frame_source()
        if not image:
            return None
        try:
            text = await asyncio.wait_for(
                self.provider.ask(image, self.prompt),
                self.cfg.request_timeout_ms / 1000.0,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning("orientation check timed out; frame skipped")
            return None
        except Exception as e:
            logger.warning("orientation check failed: %r", e)
            return None

        following = parse_orientation(text)
        if not following:
            self._alert()
        return following

    def _alert(self):
        now = self.clock()
        if self._last_alert is not None and now - self._last_alert < ORIENTATION_ALERT_COOLDOWN_S:
            logger.debug("orientation alert suppressed (cooldown)")
            return
        self._last_alert = now
        if self.on_alert is None:
            return
        self.on_alert(PromptEvent(
            type=EventType.ORIENTATION_ALERT,
            ts=now,
            msg=self.orientation,
            session_id=self.session_id,
        ))
