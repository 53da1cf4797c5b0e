"""
Hand-authored exercise profiles and the lookup that picks a profile for an
exercise (registry id, then name, then the recorded template).
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, List, Optional

from repcoach.counter.angles import JointAngles, ThresholdData
from repcoach.counter.detector import RepRecord
from repcoach.counter.profile import ExerciseProfile
from repcoach.counter.thresholds import build_threshold_profile

logger = logging.getLogger(__name__)

ASYMMETRY_TOLERANCE = 15.0
MOTION_EPS = 2.0  # deg per frame that counts as movement


def _avg(a: float, b: float) -> float:
    return (a + b) / 2.0


def elbow(a: JointAngles) -> float:
    return _avg(a.left_elbow, a.right_elbow)


def hip(a: JointAngles) -> float:
    return _avg(a.left_hip, a.right_hip)


def knee(a: JointAngles) -> float:
    return _avg(a.left_knee, a.right_knee)


def _max_asymmetry(rep: RepRecord, left: str, right: str) -> float:
    if not rep.frames:
        return 0.0
    return max(abs(f.angles[left] - f.angles[right]) for f in rep.frames)


# Push-up

PUSHUP_TOP = 150.0      # elbows near lockout
PUSHUP_BOTTOM = 100.0
PUSHUP_BODY_LINE = 150.0


def _pushup_form(rep: RepRecord, template: Optional[ThresholdData] = None) -> List[str]:
    issues: List[str] = []
    if not rep.frames:
        return issues
    lowest = min(elbow(f.angles) for f in rep.frames)
    if lowest > PUSHUP_BOTTOM - 5:
        issues.append("Go lower - bring your chest closer to the floor")
    if min(hip(f.angles) for f in rep.frames) < PUSHUP_BODY_LINE:
        issues.append("Keep your body straight - don't let your hips sag")
    if _max_asymmetry(rep, "left_elbow", "right_elbow") > ASYMMETRY_TOLERANCE:
        issues.append("Even out your arms - one side is doing more work")
    return issues


PUSHUP_PROFILE = ExerciseProfile(
    name="pushup",
    start_position=lambda a: elbow(a) >= PUSHUP_TOP and hip(a) >= PUSHUP_BODY_LINE,
    eccentric_started=lambda cur, prev: elbow(prev) - elbow(cur) >= MOTION_EPS,
    turnaround_reached=lambda a: elbow(a) <= PUSHUP_BOTTOM,
    concentric_started=lambda cur, prev: elbow(cur) - elbow(prev) >= MOTION_EPS,
    end_position=lambda a: elbow(a) >= PUSHUP_TOP,
    min_rep_duration=500,
    max_rep_duration=5000,
    rest_threshold=1000,
    set_end_threshold=6000,
    analyze_form=_pushup_form,
)


# Squat

SQUAT_TOP = 150.0
SQUAT_BOTTOM = 100.0
SQUAT_DEPTH_TARGET = 90.0  # thighs parallel; stricter than the turnaround gate


def _squat_form(rep: RepRecord, template: Optional[ThresholdData] = None) -> List[str]:
    issues: List[str] = []
    if not rep.frames:
        return issues
    bottom = min(rep.frames, key=lambda f: knee(f.angles))
    bottom_knee = knee(bottom.angles)
    if bottom_knee > SQUAT_DEPTH_TARGET:
        issues.append("Go lower - aim for thighs parallel to the ground")
    elif hip(bottom.angles) > SQUAT_BOTTOM:
        issues.append("Sit back more - push your hips back as you squat")
    if _max_asymmetry(rep, "left_knee", "right_knee") > ASYMMETRY_TOLERANCE:
        issues.append("Keep your weight even on both legs")
    return issues


SQUAT_PROFILE = ExerciseProfile(
    name="squat",
    start_position=lambda a: knee(a) >= SQUAT_TOP and hip(a) >= SQUAT_TOP,
    eccentric_started=lambda cur, prev: knee(prev) - knee(cur) >= MOTION_EPS,
    turnaround_reached=lambda a: knee(a) <= SQUAT_BOTTOM,
    concentric_started=lambda cur, prev: knee(cur) - knee(prev) >= MOTION_EPS,
    end_position=lambda a: knee(a) >= SQUAT_TOP,
    min_rep_duration=600,
    max_rep_duration=6000,
    rest_threshold=1000,
    set_end_threshold=8000,
    analyze_form=_squat_form,
)


PROFILE_REGISTRY: Dict[str, Callable[[], ExerciseProfile]] = {
    "f5da3aad-07b4-45b8-a4f2-c38e5dfb2825": lambda: PUSHUP_PROFILE,
    "5f3936b9-12e0-4bd3-bb61-6597758ce11e": lambda: SQUAT_PROFILE,
}


def resolve_profile(
    exercise_id: str,
    exercise_name: Optional[str] = None,
    template: Optional[ThresholdData] = None,
) -> Optional[ExerciseProfile]:
    """Hand-authored profiles win; the template path is the fallback."""
    factory = PROFILE_REGISTRY.get(exercise_id)
    if factory:
        return factory()

    name = (exercise_name or "").lower()
    if "pushup" in name or "push-up" in name or "push up" in name:
        return PUSHUP_PROFILE
    if "squat" in name:
        return SQUAT_PROFILE

    if template is not None and template.frames:
        logger.info("deriving thresholds for %s from template (%d frames)", exercise_id, len(template.frames))
        return build_threshold_profile(template)

    return None
