"""
Vision-based rep counting with one-way provider failover.

Each provider runs its own asyncio polling loop: grab the latest camera
frame, ask the remote model for a position label, apply the label to the
shared RepCounterState. Only the active provider's labels are applied.
After `failure_threshold` consecutive unusable answers (unknown label,
error or timeout), or if the primary cannot initialise, the fallback takes
over for the rest of the session.
"""

from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Callable, Dict, Optional

from repcoach.common.events import EventType, HalfRepEvent, ProviderSwitchEvent
from repcoach.counter.state import RepCounterState
from repcoach.vision.config import VisionConfig
from repcoach.vision.prompts import (
    RepCheckInstructions,
    VisionPosition,
    build_rep_counting_prompt,
    parse_position,
)
from repcoach.vision.providers import VisionProvider

logger = logging.getLogger(__name__)


class ProviderRole(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    NONE = "none"


@dataclass
class VisionProviderState:
    active_provider: ProviderRole = ProviderRole.PRIMARY
    consecutive_failures: int = 0
    last_success_timestamp: float = 0.0
    switched_at: Optional[float] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["active_provider"] = self.active_provider.value
        return data


class VisionCoordinator:
    def __init__(
        self,
        primary: VisionProvider,
        fallback: Optional[VisionProvider],
        counter: RepCounterState,
        frame_source: Callable[[], Optional[str]],
        instructions: RepCheckInstructions,
        cfg: Optional[VisionConfig] = None,
        on_event: Optional[Callable[[object], None]] = None,
        session_id: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.providers: Dict[ProviderRole, Optional[VisionProvider]] = {
            ProviderRole.PRIMARY: primary,
            ProviderRole.FALLBACK: fallback,
        }
        self.counter = counter
        self.frame_source = frame_source
        self.cfg = cfg or VisionConfig()
        self.on_event = on_event
        self.session_id = session_id
        self.clock = clock
        self.prompt = build_rep_counting_prompt(instructions)

        self.state = VisionProviderState()
        self._previous = VisionPosition.UNKNOWN
        self._tasks: Dict[ProviderRole, asyncio.Task] = {}
        self._running = False
        self._autorun = False

    # lifecycle

    def start(self, autorun: bool = True):
        """Begin a session. With autorun the primary loop is scheduled on the running loop."""
        self.state = VisionProviderState()
        self._previous = VisionPosition.UNKNOWN
        self._running = True
        self._autorun = autorun
        if autorun:
            self._spawn(ProviderRole.PRIMARY)

    async def stop(self):
        """Cancel every loop and in-flight request. Later ticks are no-ops."""
        self._running = False
        tasks = [t for t in self._tasks.values() if not t.done()]
        self._tasks.clear()
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for provider in self.providers.values():
            if provider is not None:
                try:
                    await provider.close()
                except Exception as e:
                    logger.warning("closing %s failed: %r", provider.name, e)

    def _live(self, role: ProviderRole) -> bool:
        return self._running and self.state.active_provider == role

    def _spawn(self, role: ProviderRole):
        if self.providers.get(role) is None:
            return
        self._tasks[role] = asyncio.get_running_loop().create_task(self._run(role))

    async def _run(self, role: ProviderRole):
        if not await self.init_provider(role):
            return
        interval = self.cfg.inference_interval_ms / 1000.0
        while self._live(role):
            await self.tick(role)
            await asyncio.sleep(interval)
        logger.debug("%s loop finished", role.value)

    async def init_provider(self, role: ProviderRole) -> bool:
        provider = self.providers.get(role)
        if provider is None:
            return False
        try:
            await asyncio.wait_for(provider.start(), self.cfg.init_timeout_ms / 1000.0)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("vision provider %s failed to start: %r", provider.name, e)
            if role == ProviderRole.PRIMARY:
                self._fail_over("init_error")
            elif self._live(role):
                self._set_active(ProviderRole.NONE, "init_error")
            return False

    # per-result logic

    async def tick(self, role: ProviderRole) -> Optional[VisionPosition]:
        """One classification round for `role`. Returns the applied label, if any."""
        if not self._live(role):
            return None
        image = self.frame_source()
        if not image:
            # nothing captured yet; not the provider's fault
            return None

        provider = self.providers[role]
        text: Optional[str] = None
        try:
            text = await asyncio.wait_for(
                provider.classify(image, self.prompt),
                self.cfg.request_timeout_ms / 1000.0,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning("%s: request timed out", provider.name)
        except Exception as e:
            logger.warning("%s: inference error: %r", provider.name, e)

        label = parse_position(text) if text is not None else VisionPosition.UNKNOWN
        if self.apply_label(role, label):
            return label
        return None

    def apply_label(self, role: ProviderRole, label: VisionPosition) -> bool:
        if not self._live(role):
            logger.debug("ignoring %s label from inactive %s provider", label.value, role.value)
            return False

        if label == VisionPosition.UNKNOWN:
            self.state.consecutive_failures += 1
            logger.debug("%s: unrecognized label (%d in a row)", role.value, self.state.consecutive_failures)
            if self.state.consecutive_failures >= self.cfg.failure_threshold:
                if role == ProviderRole.PRIMARY:
                    self._fail_over("failure_threshold")
                else:
                    logger.warning("%s provider keeps failing; no further provider to switch to", role.value)
            return True

        self.state.consecutive_failures = 0
        self.state.last_success_timestamp = self.clock()
        self._count(label)
        return True

    def _count(self, label: VisionPosition):
        prev = self._previous
        c = self.counter
        if label == VisionPosition.PREPARATION:
            c.set_feedback("")
        elif prev == VisionPosition.START and label == VisionPosition.END and c.direction == 1:
            c.apply_half_rep(0, "Down")
            self._emit_half_rep()
        elif prev == VisionPosition.END and label == VisionPosition.START and c.direction == 0:
            c.apply_half_rep(1, "Up")
            self._emit_half_rep()

        if label in (VisionPosition.START, VisionPosition.END):
            self._previous = label
        c.set_position(label.value)

    # failover

    def _fail_over(self, reason: str):
        if self.state.active_provider != ProviderRole.PRIMARY:
            return
        target = ProviderRole.FALLBACK if self.providers.get(ProviderRole.FALLBACK) else ProviderRole.NONE
        self._set_active(target, reason)

        if not self._autorun:
            return
        # the primary loop exits on its own once it is no longer active
        task = self._tasks.pop(ProviderRole.PRIMARY, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        if self._running and target == ProviderRole.FALLBACK:
            self._spawn(ProviderRole.FALLBACK)

    def _set_active(self, target: ProviderRole, reason: str):
        previous = self.state.active_provider
        self.state.active_provider = target
        self.state.consecutive_failures = 0
        self.state.switched_at = self.clock()
        logger.warning("vision provider switched %s -> %s (%s)", previous.value, target.value, reason)
        self._emit(ProviderSwitchEvent(
            type=EventType.PROVIDER_SWITCHED,
            session_id=self.session_id,
            ts=self.state.switched_at,
            from_provider=previous.value,
            to_provider=target.value,
            reason=reason,
        ))

    def _emit_half_rep(self):
        c = self.counter
        self._emit(HalfRepEvent(
            type=EventType.HALF_REP,
            session_id=self.session_id,
            ts=self.clock(),
            rep_count=c.rep_count,
            direction=c.direction,
            feedback=c.feedback,
        ))

    def _emit(self, ev):
        if self.on_event is None:
            return
        try:
            self.on_event(ev)
        except Exception as e:
            logger.warning("event sink failed: %r", e)
