from __future__ import annotations
from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class RepCheckInstructions:
    start_description: str
    end_description: str
    exercise_context: str


class VisionPosition(str, Enum):
    START = "start"
    MIDWAY = "midway"
    END = "end"
    PREPARATION = "preparation"
    UNKNOWN = "unknown"


def parse_position(response: str) -> VisionPosition:
    """Map a free-text model answer onto a position label."""
    normalized = (response or "").upper().strip()
    if "PREPARATION" in normalized:
        return VisionPosition.PREPARATION
    if "START" in normalized:
        return VisionPosition.START
    if "END" in normalized:
        return VisionPosition.END
    if "MIDWAY" in normalized:
        return VisionPosition.MIDWAY
    return VisionPosition.UNKNOWN


def build_rep_counting_prompt(instructions: RepCheckInstructions) -> str:
    return f"""You are analyzing a {instructions.exercise_context} exercise.

POSITIONS TO DETECT:
1. PREPARATION - Person is visible but NOT doing the exercise yet (standing, sitting, or getting ready)
2. START - {instructions.start_description}
3. MIDWAY - Person is between start and end positions (halfway through the movement)
4. END - {instructions.end_description}

RULES:
- If the person is not in an exercise position, answer PREPARATION
- If the person matches the START description, answer START
- If the person matches the END description, answer END
- If the person is between START and END, answer MIDWAY
- Look at body position, joint angles, and limb placement

Which position is the person in right now? Answer with one word."""


def build_orientation_check_prompt(orientation: str) -> str:
    return f"""You are checking if the person in the image is following these orientation instructions for their exercise:

INSTRUCTIONS TO CHECK:
{orientation}

RULES:
- Look at the person's body position, camera angle, and overall setup
- Check if they match the orientation instructions above
- Only answer YES if the person is clearly following the instructions
- Answer NO if the person is not visible, not positioned correctly, or you cannot verify

Is the person following the orientation instructions? Answer only YES or NO."""


def parse_orientation(response: str) -> bool:
    """True only for an explicit YES; anything else means 'not set up right'."""
    return "YES" in (response or "").upper()
