from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from repcoach.counter.angles import AngleFrame, ThresholdData
from repcoach.counter.profile import ExerciseProfile

logger = logging.getLogger(__name__)


class RepPhase(str, Enum):
    WAITING_FOR_START = "WaitingForStart"
    START = "Start"
    ECCENTRIC = "Eccentric"
    TURNAROUND = "Turnaround"
    CONCENTRIC = "Concentric"
    END = "End"


class SetState(str, Enum):
    IDLE = "Idle"
    ACTIVE = "Active"
    RESTING = "Resting"
    COMPLETED = "Completed"


@dataclass
class RepRecord:
    rep_number: int
    start_time: int
    end_time: Optional[int] = None
    # phase name (lowercase) -> timestamp it was entered
    phases: Dict[str, int] = field(default_factory=dict)
    frames: List[AngleFrame] = field(default_factory=list)
    feedback: Optional[List[str]] = None

    @property
    def duration(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time


@dataclass
class SetData:
    start_time: int
    end_time: Optional[int] = None
    reps: List[RepRecord] = field(default_factory=list)
    state: SetState = SetState.ACTIVE


@dataclass
class DetectorCallbacks:
    on_phase_change: Optional[Callable[[RepPhase], None]] = None
    on_attempt_started: Optional[Callable[[], None]] = None
    on_rep_completed: Optional[Callable[[RepRecord], None]] = None
    on_set_started: Optional[Callable[[SetData], None]] = None
    on_set_completed: Optional[Callable[[SetData], None]] = None


class PhaseDetector:
    """
    Rep/set state machine driven one AngleFrame at a time.

    WaitingForStart -> Start -> Eccentric -> Turnaround -> Concentric -> End,
    where End behaves like WaitingForStart. All exercise knowledge lives in
    the ExerciseProfile; this class only owns the timing and bookkeeping.
    Not thread-safe: feed it from a single producer.
    """

    def __init__(
        self,
        profile: ExerciseProfile,
        callbacks: Optional[DetectorCallbacks] = None,
        template: Optional[ThresholdData] = None,
    ):
        self.profile = profile
        self.template = template
        self.callbacks = callbacks or DetectorCallbacks()
        self.reset()

    def set_profile(self, profile: ExerciseProfile, template: Optional[ThresholdData] = None):
        """Swap the exercise; all counters start over."""
        self.profile = profile
        self.template = template
        self.reset()

    def reset(self):
        self._set: Optional[SetData] = None
        self._rep: Optional[RepRecord] = None
        self._phase = RepPhase.WAITING_FOR_START
        self._last_frame: Optional[AngleFrame] = None
        self._last_phase_change = 0
        self._time_in_start = 0
        self._time_idle = 0

    # read-only views
    @property
    def current_phase(self) -> RepPhase:
        return self._phase

    @property
    def current_set(self) -> Optional[SetData]:
        return self._set

    @property
    def current_rep(self) -> Optional[RepRecord]:
        return self._rep

    @property
    def rep_count(self) -> int:
        return len(self._set.reps) if self._set else 0

    def process_frame(self, frame: AngleFrame):
        prev = self._last_frame
        if prev is None:
            self._last_frame = frame
            return

        time_delta = frame.timestamp - prev.timestamp
        if time_delta < 0:
            logger.debug("dropping out-of-order frame ts=%s (last=%s)", frame.timestamp, prev.timestamp)
            return

        self._update_set_state(frame, time_delta)

        if self._set is not None and self._set.state == SetState.ACTIVE:
            self._update_rep_phase(frame, prev)

        if self._rep is not None:
            self._rep.frames.append(frame)

        self._last_frame = frame

    def _update_set_state(self, frame: AngleFrame, time_delta: int):
        p = self.profile
        if p.start_position(frame.angles):
            self._time_in_start += time_delta
            self._time_idle = 0
        else:
            self._time_in_start = 0
            self._time_idle += time_delta

        if self._set is None and self._time_in_start > p.rest_threshold:
            self._start_set(frame.timestamp)
        elif (
            self._set is not None
            and self._set.state == SetState.ACTIVE
            and self._time_idle > p.set_end_threshold
        ):
            self._end_set(frame.timestamp)

    def _update_rep_phase(self, frame: AngleFrame, prev: AngleFrame):
        p = self.profile
        now = frame.timestamp
        timed_out = (now - self._last_phase_change) > p.max_rep_duration
        phase = self._phase

        if phase in (RepPhase.WAITING_FOR_START, RepPhase.END):
            if p.start_position(frame.angles):
                self._start_rep(now)

        elif phase == RepPhase.START:
            if timed_out:
                self._abandon_rep("timeout in start")
            elif p.eccentric_started(frame.angles, prev.angles):
                self._enter_phase(RepPhase.ECCENTRIC, now)

        elif phase == RepPhase.ECCENTRIC:
            if timed_out:
                self._abandon_rep("timeout in eccentric")
            elif p.turnaround_reached(frame.angles):
                self._enter_phase(RepPhase.TURNAROUND, now)

        elif phase == RepPhase.TURNAROUND:
            # holding at the bottom is allowed indefinitely
            if p.concentric_started(frame.angles, prev.angles):
                self._enter_phase(RepPhase.CONCENTRIC, now)

        elif phase == RepPhase.CONCENTRIC:
            if timed_out:
                self._abandon_rep("timeout in concentric")
            elif p.end_position(frame.angles):
                self._complete_rep(frame)

    def _start_set(self, ts: int):
        self._set = SetData(start_time=ts, state=SetState.ACTIVE)
        self._rep = None
        self._enter_phase(RepPhase.WAITING_FOR_START, ts)
        logger.info("%s: set started at %d", self.profile.name, ts)
        if self.callbacks.on_set_started:
            self.callbacks.on_set_started(self._set)

    def _end_set(self, ts: int):
        finished = self._set
        finished.end_time = ts
        finished.state = SetState.COMPLETED
        self._set = None
        self._rep = None
        self._enter_phase(RepPhase.WAITING_FOR_START, ts)
        logger.info("%s: set completed with %d reps", self.profile.name, len(finished.reps))
        if self.callbacks.on_set_completed:
            self.callbacks.on_set_completed(finished)

    def _start_rep(self, ts: int):
        self._rep = RepRecord(rep_number=len(self._set.reps) + 1, start_time=ts)
        self._enter_phase(RepPhase.START, ts)

    def _enter_phase(self, phase: RepPhase, ts: int):
        self._phase = phase
        self._last_phase_change = ts
        if self._rep is not None and phase != RepPhase.WAITING_FOR_START:
            self._rep.phases[phase.value.lower()] = ts
        if self.callbacks.on_phase_change:
            self.callbacks.on_phase_change(phase)
        if phase == RepPhase.ECCENTRIC and self.callbacks.on_attempt_started:
            self.callbacks.on_attempt_started()

    def _abandon_rep(self, reason: str):
        logger.debug("%s: rep abandoned (%s)", self.profile.name, reason)
        self._rep = None
        self._phase = RepPhase.WAITING_FOR_START
        if self.callbacks.on_phase_change:
            self.callbacks.on_phase_change(self._phase)

    def _complete_rep(self, frame: AngleFrame):
        rep = self._rep
        ts = frame.timestamp
        # process_frame won't see this rep again, so keep the closing frame here
        rep.frames.append(frame)
        rep.end_time = ts
        rep.phases["end"] = ts

        if rep.duration < self.profile.min_rep_duration:
            self._abandon_rep(f"too fast ({rep.duration} ms)")
            return

        if self.profile.analyze_form is not None:
            rep.feedback = self.profile.analyze_form(rep, self.template)

        self._set.reps.append(rep)
        self._rep = None
        if self.callbacks.on_rep_completed:
            self.callbacks.on_rep_completed(rep)
        self._enter_phase(RepPhase.END, ts)
