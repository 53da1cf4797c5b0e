from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, Mapping, Tuple

JOINT_KEYS: Tuple[str, ...] = (
    "left_hip",
    "left_knee",
    "right_hip",
    "left_ankle",
    "left_elbow",
    "left_wrist",
    "right_knee",
    "right_ankle",
    "right_elbow",
    "right_wrist",
    "left_shoulder",
    "right_shoulder",
)

# wire names used by the browser client and stored templates
_CAMEL = {k: k.split("_")[0] + k.split("_")[1].capitalize() for k in JOINT_KEYS}


class MissingJointError(ValueError):
    """Raised when an angle payload lacks a required joint."""


@dataclass(frozen=True)
class JointAngles:
    left_elbow: float
    right_elbow: float
    left_shoulder: float
    right_shoulder: float
    left_hip: float
    right_hip: float
    left_knee: float
    right_knee: float
    left_ankle: float
    right_ankle: float
    left_wrist: float
    right_wrist: float

    def __getitem__(self, joint: str) -> float:
        return getattr(self, joint)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JointAngles":
        values = {}
        for key in JOINT_KEYS:
            raw = data.get(key, data.get(_CAMEL[key]))
            if raw is None:
                raise MissingJointError(f"missing joint angle: {key}")
            values[key] = float(raw)
        return cls(**values)

    def to_dict(self) -> Dict[str, float]:
        return {_CAMEL[f.name]: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class AngleFrame:
    timestamp: int  # ms, monotonic within one recording
    angles: JointAngles

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AngleFrame":
        return cls(timestamp=int(data["timestamp"]), angles=JointAngles.from_dict(data["angles"]))

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "angles": self.angles.to_dict()}


@dataclass(frozen=True)
class ThresholdData:
    """One recorded repetition, start-to-start, used to derive a profile."""
    duration: float
    sample_rate: float
    frames: Tuple[AngleFrame, ...]

    @classmethod
    def from_frames(cls, frames: Iterable[AngleFrame], sample_rate: float = 0.0) -> "ThresholdData":
        """Build a template from live frames, rebasing timestamps to start at 0."""
        frames = tuple(frames)
        if not frames:
            return cls(duration=0, sample_rate=sample_rate, frames=())
        t0 = frames[0].timestamp
        rebased = tuple(AngleFrame(f.timestamp - t0, f.angles) for f in frames)
        return cls(duration=rebased[-1].timestamp, sample_rate=sample_rate, frames=rebased)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ThresholdData":
        return cls(
            duration=data.get("duration", 0),
            sample_rate=data.get("sampleRate", data.get("sample_rate", 0)),
            frames=tuple(AngleFrame.from_dict(f) for f in data.get("frames", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "sampleRate": self.sample_rate,
            "frames": [f.to_dict() for f in self.frames],
        }
