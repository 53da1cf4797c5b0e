from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional

class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_STOPPED = "session_stopped"
    SET_STARTED = "set_started"
    SET_COMPLETED = "set_completed"
    PHASE = "phase"
    ATTEMPT = "attempt"
    REP = "rep"
    HALF_REP = "half_rep"
    FORM_ALERT = "form_alert"
    ORIENTATION_ALERT = "orientation_alert"
    PROVIDER_SWITCHED = "provider_switched"
    PROMPT = "prompt"
    TRACE = "trace"

@dataclass
class SessionEvent:
    type: EventType
    session_id: str
    exercise: str
    source: str
    ts: float
    count: int = 0

@dataclass
class PhaseEvent:
    type: EventType
    session_id: str
    ts: float
    phase: str

@dataclass
class RepEvent:
    type: EventType
    session_id: str
    ts: float
    rep_number: int
    attempted: int
    completed: int
    duration_ms: int
    feedback: List[str] = field(default_factory=list)

@dataclass
class HalfRepEvent:
    type: EventType
    session_id: str
    ts: float
    rep_count: float
    direction: int
    feedback: str = ""

@dataclass
class ProviderSwitchEvent:
    type: EventType
    session_id: str
    ts: float
    from_provider: str
    to_provider: str
    reason: str  # e.g., "init_error", "failure_threshold"

@dataclass
class PromptEvent:
    type: EventType
    ts: float
    msg: str
    session_id: Optional[str] = None


def to_payload(ev) -> dict:
    """Flatten an event dataclass into a JSON-ready dict for the WS sink."""
    data = asdict(ev)
    data["type"] = ev.type.value
    return data
