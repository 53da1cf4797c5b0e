from __future__ import annotations
import asyncio
import logging
import sqlite3
import time
import uuid
from enum import Enum
from typing import Callable, Optional, Tuple

from repcoach.common.events import (
    EventType,
    PhaseEvent,
    PromptEvent,
    ProviderSwitchEvent,
    RepEvent,
    SessionEvent,
    to_payload,
)
from repcoach.counter.detector import DetectorCallbacks, PhaseDetector, RepPhase, RepRecord, SetData
from repcoach.counter.profiles import resolve_profile
from repcoach.counter.state import RepCounterState
from repcoach.counter.web_pipeline import WebAnglePipeline
from repcoach.data import db
from repcoach.data.templates import TemplateStore
from repcoach.vision.config import VisionConfig
from repcoach.vision.coordinator import ProviderRole, VisionCoordinator
from repcoach.vision.frames import decode_data_url, encode_frame
from repcoach.vision.orientation import OrientationMonitor
from repcoach.vision.prompts import RepCheckInstructions
from repcoach.vision.providers import VisionProvider, build_default_providers

logger = logging.getLogger(__name__)

PROMPT_COOLDOWN_S = 3.0
FORM_ALERT_COOLDOWN_S = 5.0  # same advisory is not repeated within this window
MOVE_INTO_VIEW = "Move into view - I can't see your whole body"


class CountingSource(str, Enum):
    POSE = "pose"
    VISION = "vision"


class UnknownExerciseError(LookupError):
    """No hand-authored profile and no recorded template for the exercise."""


ProviderFactory = Callable[[VisionConfig], Tuple[VisionProvider, Optional[VisionProvider]]]


class RepSessionManager:
    """
    Owns the one RepCounterState of the running session and whichever
    counting source currently feeds it (pose detector or vision coordinator).
    """

    def __init__(
        self,
        templates: Optional[TemplateStore] = None,
        vision_cfg: Optional[VisionConfig] = None,
        provider_factory: ProviderFactory = build_default_providers,
        clock: Callable[[], float] = time.time,
    ):
        self.templates = templates or TemplateStore()
        self.vision_cfg = vision_cfg or VisionConfig.from_env()
        self.provider_factory = provider_factory
        self.clock = clock

        self.counter = RepCounterState()
        self.active_id: Optional[str] = None
        self.exercise_id: Optional[str] = None
        self.exercise_name: Optional[str] = None
        self.instructions: Optional[RepCheckInstructions] = None
        self.source: Optional[CountingSource] = None
        self.active_pipeline: Optional[WebAnglePipeline] = None
        self.vision: Optional[VisionCoordinator] = None
        self.orientation: Optional[str] = None
        self.orientation_monitor: Optional[OrientationMonitor] = None
        self.paused = False

        self._latest_image: Optional[str] = None
        self._set_index = 0
        self._last_prompt: Optional[float] = None
        self._last_form_alert: Optional[Tuple[str, float]] = None
        self._event_sink: Optional[Callable[[dict], None]] = None

    def set_event_sink(self, sink: Callable[[dict], None]):
        self._event_sink = sink

    # lifecycle

    async def start(
        self,
        exercise_id: str,
        exercise_name: Optional[str] = None,
        source: CountingSource = CountingSource.POSE,
        instructions: Optional[RepCheckInstructions] = None,
        orientation: Optional[str] = None,
    ) -> str:
        if self.active_id is not None:
            await self.stop()

        self.exercise_id = exercise_id
        self.exercise_name = exercise_name
        self.instructions = instructions
        self.orientation = orientation
        self.paused = False
        self._last_form_alert = None
        self.counter.reset()
        self._set_index = 0
        self._latest_image = None

        sid = str(uuid.uuid4())
        await self._activate(CountingSource(source), sid)
        if orientation:
            self._start_orientation(sid)
        self.active_id = sid
        ts = self.clock()
        self._db(db.insert_session, sid, exercise_id, exercise_name, self.source.value, ts)
        self._emit(SessionEvent(
            type=EventType.SESSION_STARTED,
            session_id=sid,
            exercise=exercise_name or exercise_id,
            source=self.source.value,
            ts=ts,
        ))
        logger.info("session %s started: %s via %s", sid, exercise_name or exercise_id, self.source.value)
        return sid

    async def stop(self) -> Optional[str]:
        sid = self.active_id
        await self._deactivate()
        if self.orientation_monitor is not None:
            await self.orientation_monitor.stop()
            self.orientation_monitor = None
        if sid is not None:
            c = self.counter
            ts = self.clock()
            self._db(db.stop_session, sid, ts, c.attempted_reps, c.completed_reps, c.rep_count)
            self._emit(SessionEvent(
                type=EventType.SESSION_STOPPED,
                session_id=sid,
                exercise=self.exercise_name or self.exercise_id or "",
                source=self.source.value if self.source else "",
                ts=ts,
                count=c.completed_reps,
            ))
        self.active_id = None
        self.source = None
        self.paused = False
        return sid

    async def switch_source(self, source: CountingSource):
        """Swap the counting source mid-session; the counters are kept."""
        source = CountingSource(source)
        if source == self.source:
            return
        await self._deactivate()
        await self._activate(source, self.active_id or "")
        logger.info("session %s now counting via %s", self.active_id, source.value)

    async def _activate(self, source: CountingSource, session_id: str):
        if source == CountingSource.POSE:
            template = self.templates.get(self.exercise_id)
            profile = resolve_profile(self.exercise_id, self.exercise_name, template)
            if profile is None:
                raise UnknownExerciseError(
                    f"No profile or recorded template for exercise {self.exercise_id!r}"
                )
            detector = PhaseDetector(profile, self._detector_callbacks(), template=template)
            self.active_pipeline = WebAnglePipeline(detector, on_missing=self._on_missing)
        else:
            if self.instructions is None:
                raise ValueError("Vision counting needs rep-check instructions")
            primary, fallback = self.provider_factory(self.vision_cfg)
            self.vision = VisionCoordinator(
                primary,
                fallback,
                self.counter,
                frame_source=self.latest_image,
                instructions=self.instructions,
                cfg=self.vision_cfg,
                on_event=self._on_vision_event,
                session_id=session_id,
            )
            self.vision.start()
        self.source = source

    async def _deactivate(self):
        if self.active_pipeline is not None:
            self.active_pipeline.stop()
            self.active_pipeline = None
        if self.vision is not None:
            await self.vision.stop()
            self.vision = None

    def _start_orientation(self, session_id: str):
        primary, fallback = self.provider_factory(self.vision_cfg)
        # orientation runs on the fallback model when one is configured
        self.orientation_monitor = OrientationMonitor(
            fallback or primary,
            frame_source=self.latest_image,
            orientation=self.orientation,
            cfg=self.vision_cfg,
            on_alert=self._emit,
            session_id=session_id,
            clock=self.clock,
        )
        self.orientation_monitor.start()

    def pause(self):
        """Stop feeding either counting source until resume(); counters are kept."""
        self.paused = True
        # vision ticks skip while there is no frame
        self._latest_image = None

    def resume(self):
        self.paused = False

    # inputs

    def push_angle_frame(self, payload: dict) -> bool:
        """Browser angle sample; ignored unless the pose detector is the active source."""
        if self.paused or self.source != CountingSource.POSE or self.active_pipeline is None:
            return False
        return self.active_pipeline.push_frame(payload)

    def push_camera_frame(self, data_url: str) -> bool:
        """Keep the latest camera frame for the vision loops (counting or orientation)."""
        if self.paused:
            return False
        if self.source != CountingSource.VISION and self.orientation_monitor is None:
            return False
        img = decode_data_url(data_url)
        if img is None:
            return False
        self._latest_image = encode_frame(img, self.vision_cfg.image_size, self.vision_cfg.image_quality)
        return self._latest_image is not None

    def latest_image(self) -> Optional[str]:
        return self._latest_image

    def status(self) -> dict:
        return {
            "session_id": self.active_id,
            "state": ("paused" if self.paused else "running") if self.active_id else "idle",
            "exercise_id": self.exercise_id,
            "exercise_name": self.exercise_name,
            "source": self.source.value if self.source else None,
            "counter": self.counter.to_dict(),
            "vision": self.vision.state.to_dict() if self.vision else None,
        }

    # detector callbacks

    def _detector_callbacks(self) -> DetectorCallbacks:
        return DetectorCallbacks(
            on_phase_change=self._on_phase,
            on_attempt_started=self._on_attempt,
            on_rep_completed=self._on_rep,
            on_set_started=self._on_set_started,
            on_set_completed=self._on_set_completed,
        )

    def _on_phase(self, phase: RepPhase):
        self.counter.set_phase(phase)
        self._emit(PhaseEvent(type=EventType.PHASE, session_id=self.active_id or "", ts=self.clock(), phase=phase.value))

    def _on_attempt(self):
        self.counter.record_attempt()
        if self.active_id:
            self._db(db.insert_event, self.active_id, self.clock(), EventType.ATTEMPT.value, "")

    def _on_rep(self, rep: RepRecord):
        self.counter.record_completion()
        c = self.counter
        if self.active_id:
            self._db(db.insert_rep, self.active_id, self._set_index, rep.rep_number,
                     rep.start_time, rep.end_time, rep.phases, rep.feedback)
        if rep.feedback:
            c.set_feedback(rep.feedback[0])
            for alert in rep.feedback:
                self._form_alert(alert)
        self._emit(RepEvent(
            type=EventType.REP,
            session_id=self.active_id or "",
            ts=self.clock(),
            rep_number=rep.rep_number,
            attempted=c.attempted_reps,
            completed=c.completed_reps,
            duration_ms=rep.duration or 0,
            feedback=list(rep.feedback or []),
        ))

    def _form_alert(self, alert: str):
        now = self.clock()
        last = self._last_form_alert
        if last is not None and last[0] == alert and now - last[1] < FORM_ALERT_COOLDOWN_S:
            return
        self._last_form_alert = (alert, now)
        self._emit(PromptEvent(type=EventType.FORM_ALERT, ts=now, msg=alert, session_id=self.active_id))

    def _on_set_started(self, s: SetData):
        self._set_index += 1
        if self.active_id:
            self._db(db.insert_event, self.active_id, self.clock(), EventType.SET_STARTED.value, str(self._set_index))
        self._emit_dict({"type": EventType.SET_STARTED.value, "set_index": self._set_index})

    def _on_set_completed(self, s: SetData):
        if self.active_id:
            self._db(db.insert_event, self.active_id, self.clock(), EventType.SET_COMPLETED.value, str(len(s.reps)))
        self._emit_dict({"type": EventType.SET_COMPLETED.value, "set_index": self._set_index, "reps": len(s.reps)})

    def _on_missing(self, reason: str):
        now = self.clock()
        if self._last_prompt is not None and now - self._last_prompt < PROMPT_COOLDOWN_S:
            return
        self._last_prompt = now
        self._emit(PromptEvent(type=EventType.PROMPT, ts=now, msg=MOVE_INTO_VIEW, session_id=self.active_id))

    # vision callbacks

    def _on_vision_event(self, ev):
        if isinstance(ev, ProviderSwitchEvent):
            if self.active_id:
                self._db(db.insert_event, self.active_id, ev.ts, EventType.PROVIDER_SWITCHED.value,
                         f"{ev.from_provider}->{ev.to_provider}:{ev.reason}")
            if ev.to_provider == ProviderRole.NONE.value:
                self._vision_exhausted()
        self._emit(ev)

    def _vision_exhausted(self):
        """No vision provider left: hand counting to the pose detector if we can."""
        template = self.templates.get(self.exercise_id) if self.exercise_id else None
        if resolve_profile(self.exercise_id or "", self.exercise_name, template) is None:
            self._emit(PromptEvent(type=EventType.PROMPT, ts=self.clock(),
                                   msg="Vision counting unavailable", session_id=self.active_id))
            return
        try:
            asyncio.get_running_loop().create_task(self.switch_source(CountingSource.POSE))
        except RuntimeError:
            logger.warning("vision exhausted outside an event loop; staying on vision")

    # plumbing

    def _db(self, fn, *args):
        try:
            fn(*args)
        except sqlite3.Error as e:
            logger.warning("db write %s failed: %r", fn.__name__, e)

    def _emit(self, ev):
        self._emit_dict(to_payload(ev))

    def _emit_dict(self, payload: dict):
        if self._event_sink is None:
            return
        try:
            self._event_sink(payload)
        except Exception as e:
            logger.warning("event sink failed: %r", e)
