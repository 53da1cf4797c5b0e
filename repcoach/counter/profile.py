from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional

from repcoach.counter.angles import JointAngles, ThresholdData

if TYPE_CHECKING:
    from repcoach.counter.detector import RepRecord

PositionTest = Callable[[JointAngles], bool]
MotionTest = Callable[[JointAngles, JointAngles], bool]  # (current, previous)
FormAnalyzer = Callable[["RepRecord", Optional[ThresholdData]], List[str]]


@dataclass(frozen=True)
class ExerciseProfile:
    """
    Pure description of one exercise's motion: five predicates plus timing.
    Durations are milliseconds. Built once per exercise selection and shared
    by every frame of a set; holds no state.
    """
    name: str
    start_position: PositionTest
    eccentric_started: MotionTest
    turnaround_reached: PositionTest
    concentric_started: MotionTest
    end_position: PositionTest
    min_rep_duration: float  # shorter reps are noise
    max_rep_duration: float  # longer phases reset the rep
    rest_threshold: float    # hold in start position before a set opens
    set_end_threshold: float # idle time before the set closes
    analyze_form: Optional[FormAnalyzer] = None
