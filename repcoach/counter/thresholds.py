"""
Derive an ExerciseProfile from a single recorded repetition.

The template is split into a start window (first 20% of its duration) and a
bottom window (40-60%). The joint with the widest range over the whole
recording becomes the only discriminant; tolerances and timing scale with
that joint's amplitude and the template's duration, with floors so that a
near-flat or very short recording still yields usable thresholds.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from repcoach.counter.angles import JOINT_KEYS, AngleFrame, JointAngles, ThresholdData
from repcoach.counter.profile import ExerciseProfile

START_WINDOW_END = 0.2
BOTTOM_WINDOW = (0.4, 0.6)

MIN_AMPLITUDE = 15.0
MIN_TOLERANCE = 10.0
TOLERANCE_FACTOR = 0.25
MIN_VELOCITY = 1.0
VELOCITY_FACTOR = 0.02

# (floor ms, multiple of template duration)
MIN_REP = (400.0, 0.4)
MAX_REP = (3000.0, 3.0)
REST = (800.0, 0.8)
SET_END = (3000.0, 4.0)

ROM_SHORTFALL = 0.8  # rep travel below this share of amplitude gets flagged


@dataclass(frozen=True)
class ThresholdDerivation:
    primary_joint: str
    start_angles: Dict[str, float]
    bottom_angles: Dict[str, float]
    amplitude: float
    direction: int
    start_tolerance: float
    bottom_tolerance: float
    velocity_threshold: float
    min_rep_duration: float
    max_rep_duration: float
    rest_threshold: float
    set_end_threshold: float

    @property
    def start_value(self) -> float:
        return self.start_angles[self.primary_joint]

    @property
    def bottom_value(self) -> float:
        return self.bottom_angles[self.primary_joint]


def _matrix(frames: Sequence[AngleFrame]) -> np.ndarray:
    return np.array([[f.angles[k] for k in JOINT_KEYS] for f in frames], dtype=float)


def average_angles(frames: Sequence[AngleFrame]) -> Dict[str, float]:
    means = _matrix(frames).mean(axis=0)
    return {k: float(v) for k, v in zip(JOINT_KEYS, means)}


def primary_joint(frames: Sequence[AngleFrame]) -> str:
    """Joint with the largest max-min range; first in JOINT_KEYS wins ties."""
    ranges = np.ptp(_matrix(frames), axis=0)
    best_key, best_range = JOINT_KEYS[0], 0.0
    for key, rng in zip(JOINT_KEYS, ranges):
        if rng > best_range:
            best_key, best_range = key, float(rng)
    return best_key


def _scaled(rule, duration: float) -> float:
    floor, factor = rule
    return max(floor, duration * factor)


def derive_thresholds(template: ThresholdData) -> ThresholdDerivation:
    frames = list(template.frames)
    if not frames:
        raise ValueError("Template has no frames; record a repetition first.")

    duration = template.duration or frames[-1].timestamp or 0
    start_end = duration * START_WINDOW_END
    bottom_lo, bottom_hi = duration * BOTTOM_WINDOW[0], duration * BOTTOM_WINDOW[1]

    start_frames = [f for f in frames if f.timestamp <= start_end] or frames[:3]
    bottom_frames = [f for f in frames if bottom_lo <= f.timestamp <= bottom_hi] or [frames[len(frames) // 2]]

    start_angles = average_angles(start_frames)
    bottom_angles = average_angles(bottom_frames)

    joint = primary_joint(frames)
    start_v, bottom_v = start_angles[joint], bottom_angles[joint]
    amplitude = max(abs(bottom_v - start_v), MIN_AMPLITUDE)
    tolerance = max(MIN_TOLERANCE, amplitude * TOLERANCE_FACTOR)

    return ThresholdDerivation(
        primary_joint=joint,
        start_angles=start_angles,
        bottom_angles=bottom_angles,
        amplitude=amplitude,
        direction=1 if bottom_v >= start_v else -1,
        start_tolerance=tolerance,
        bottom_tolerance=tolerance,
        velocity_threshold=max(MIN_VELOCITY, amplitude * VELOCITY_FACTOR),
        min_rep_duration=_scaled(MIN_REP, duration),
        max_rep_duration=_scaled(MAX_REP, duration),
        rest_threshold=_scaled(REST, duration),
        set_end_threshold=_scaled(SET_END, duration),
    )


def build_threshold_profile(template: ThresholdData, name: str = "threshold-based") -> ExerciseProfile:
    d = derive_thresholds(template)
    joint = d.primary_joint

    def at_start(a: JointAngles) -> bool:
        return abs(a[joint] - d.start_value) <= d.start_tolerance

    def at_bottom(a: JointAngles) -> bool:
        return abs(a[joint] - d.bottom_value) <= d.bottom_tolerance

    def toward_bottom(cur: JointAngles, prev: JointAngles) -> bool:
        return d.direction * (cur[joint] - prev[joint]) >= d.velocity_threshold

    def toward_start(cur: JointAngles, prev: JointAngles) -> bool:
        return d.direction * (cur[joint] - prev[joint]) <= -d.velocity_threshold

    def analyze(rep, _template: Optional[ThresholdData] = None) -> List[str]:
        if not rep.frames:
            return []
        values = [f.angles[joint] for f in rep.frames]
        if max(values) - min(values) < d.amplitude * ROM_SHORTFALL:
            return ["Range of motion shorter than your recorded example"]
        return []

    return ExerciseProfile(
        name=name,
        start_position=at_start,
        eccentric_started=toward_bottom,
        turnaround_reached=at_bottom,
        concentric_started=toward_start,
        # symmetric motion: finish where we started
        end_position=at_start,
        min_rep_duration=d.min_rep_duration,
        max_rep_duration=d.max_rep_duration,
        rest_threshold=d.rest_threshold,
        set_end_threshold=d.set_end_threshold,
        analyze_form=analyze,
    )
