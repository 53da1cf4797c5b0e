from __future__ import annotations
import asyncio
import itertools
from typing import Iterable, List

import pytest

from repcoach.counter.angles import JOINT_KEYS, AngleFrame, JointAngles
from repcoach.counter.profile import ExerciseProfile
from repcoach.data import db
from repcoach.vision.providers import ProviderInitError, VisionProvider


def make_angles(default: float = 170.0, **overrides) -> JointAngles:
    values = {k: default for k in JOINT_KEYS}
    values.update(overrides)
    return JointAngles(**values)


def knee_frames(knees: Iterable[float], step: int = 50, start: int = 0) -> List[AngleFrame]:
    """Frames where only both knees move; everything else stays at 170."""
    return [
        AngleFrame(timestamp=start + i * step, angles=make_angles(left_knee=k, right_knee=k))
        for i, k in enumerate(knees)
    ]


def knee_profile(**overrides) -> ExerciseProfile:
    """Simple squat-like profile on the left knee with short timings."""
    params = dict(
        name="test-knee",
        start_position=lambda a: a.left_knee >= 160,
        eccentric_started=lambda cur, prev: prev.left_knee - cur.left_knee >= 5,
        turnaround_reached=lambda a: a.left_knee <= 90,
        concentric_started=lambda cur, prev: cur.left_knee - prev.left_knee >= 5,
        end_position=lambda a: a.left_knee >= 160,
        min_rep_duration=400,
        max_rep_duration=2000,
        rest_threshold=100,
        set_end_threshold=10000,
    )
    params.update(overrides)
    return ExerciseProfile(**params)


# hold at the top long enough to open a set, then one clean rep (start at t=150, end at t=550)
ONE_REP = [170, 170, 170, 170, 170, 150, 120, 90, 90, 110, 140, 165]


class ScriptedProvider(VisionProvider):
    """Vision provider that replays canned answers (or raises them)."""

    def __init__(self, name: str, answers: Iterable, fail_start: bool = False, delay: float = 0.0, cycle: bool = False):
        self.name = name
        self._answers = itertools.cycle(list(answers)) if cycle else iter(list(answers))
        self.fail_start = fail_start
        self.delay = delay
        self.calls = 0
        self.closed = False

    async def start(self) -> None:
        if self.fail_start:
            raise ProviderInitError(f"{self.name}: no api key")

    async def classify(self, image_data_url: str, prompt: str) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        answer = next(self._answers, "")
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def tmp_db(tmp_path):
    db.set_db_path(tmp_path / "repcoach.db")
    yield tmp_path / "repcoach.db"
    # closes the connection
    db.set_db_path(tmp_path / "repcoach.db")
