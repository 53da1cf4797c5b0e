from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Optional

from repcoach.counter.detector import RepPhase


@dataclass
class RepCounterState:
    """
    Counters shown to the user. Owned by the session manager; written only
    from detector/coordinator callbacks, never by frame producers.
    """
    attempted_reps: int = 0
    completed_reps: int = 0
    phase: RepPhase = RepPhase.WAITING_FOR_START
    # vision path: half-rep tally and which half comes next
    rep_count: float = 0.0
    # 1 = next counted half is start->end, 0 = next is end->start
    direction: int = 1
    position: Optional[str] = None
    feedback: str = ""

    def record_attempt(self):
        self.attempted_reps += 1

    def record_completion(self):
        if self.completed_reps < self.attempted_reps:
            self.completed_reps += 1

    def set_phase(self, phase: RepPhase):
        self.phase = phase

    def apply_half_rep(self, direction: int, feedback: str = ""):
        self.rep_count += 0.5
        self.direction = direction
        self.feedback = feedback

    def set_position(self, position: Optional[str]):
        self.position = position

    def set_feedback(self, feedback: str):
        self.feedback = feedback

    def reset(self):
        self.attempted_reps = 0
        self.completed_reps = 0
        self.phase = RepPhase.WAITING_FOR_START
        self.rep_count = 0.0
        self.direction = 1
        self.position = None
        self.feedback = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data
