import asyncio

import pytest

from repcoach.common.events import HalfRepEvent, ProviderSwitchEvent
from repcoach.counter.state import RepCounterState
from repcoach.vision.config import VisionConfig
from repcoach.vision.coordinator import ProviderRole, VisionCoordinator
from repcoach.vision.prompts import RepCheckInstructions, VisionPosition, parse_position

from conftest import ScriptedProvider

INSTRUCTIONS = RepCheckInstructions(
    start_description="Arms fully extended, body in a straight line",
    end_description="Chest close to the floor, elbows bent",
    exercise_context="push-up",
)
IMAGE = "data:image/jpeg;base64,AAAA"

P = ProviderRole.PRIMARY
F = ProviderRole.FALLBACK


def make_coordinator(primary=None, fallback=None, frame=IMAGE, **cfg):
    events = []
    counter = RepCounterState()
    coord = VisionCoordinator(
        primary or ScriptedProvider("primary", []),
        fallback,
        counter,
        frame_source=lambda: frame,
        instructions=INSTRUCTIONS,
        cfg=VisionConfig(**cfg),
        on_event=events.append,
        session_id="s1",
        clock=lambda: 1000.0,
    )
    coord.start(autorun=False)
    return coord, counter, events


def switches(events):
    return [e for e in events if isinstance(e, ProviderSwitchEvent)]


@pytest.mark.parametrize("text,expected", [
    ("START", VisionPosition.START),
    ("  end.", VisionPosition.END),
    ("Midway", VisionPosition.MIDWAY),
    ("The person is in PREPARATION", VisionPosition.PREPARATION),
    ("banana", VisionPosition.UNKNOWN),
    ("", VisionPosition.UNKNOWN),
])
def test_parse_position(text, expected):
    assert parse_position(text) == expected


def test_prompt_embeds_instructions():
    coord, _, _ = make_coordinator()
    assert "push-up" in coord.prompt
    assert "Chest close to the floor" in coord.prompt
    assert coord.prompt.rstrip().endswith("Answer with one word.")


def test_start_end_alternation_counts_half_reps():
    coord, counter, events = make_coordinator()
    coord.apply_label(P, VisionPosition.START)
    assert counter.rep_count == 0
    assert counter.direction == 1

    coord.apply_label(P, VisionPosition.END)
    assert counter.rep_count == 0.5
    assert counter.direction == 0
    assert counter.feedback == "Down"

    coord.apply_label(P, VisionPosition.START)
    assert counter.rep_count == 1.0
    assert counter.direction == 1
    assert counter.feedback == "Up"
    assert counter.position == "start"

    coord.apply_label(P, VisionPosition.END)
    assert counter.direction == 0
    half_reps = [e for e in events if isinstance(e, HalfRepEvent)]
    assert [e.direction for e in half_reps] == [0, 1, 0]


def test_starting_at_the_bottom_waits_for_a_down_half():
    coord, counter, _ = make_coordinator()
    coord.apply_label(P, VisionPosition.END)
    coord.apply_label(P, VisionPosition.START)
    # end->start only counts once a start->end half has been counted
    assert counter.rep_count == 0
    assert counter.direction == 1

    coord.apply_label(P, VisionPosition.END)
    coord.apply_label(P, VisionPosition.START)
    assert counter.rep_count == 1.0


def test_midway_and_repeats_do_not_count():
    coord, counter, _ = make_coordinator()
    for label in (VisionPosition.START, VisionPosition.START, VisionPosition.MIDWAY, VisionPosition.END, VisionPosition.END):
        coord.apply_label(P, label)
    assert counter.rep_count == 0.5
    assert counter.position == "end"


def test_preparation_clears_feedback():
    coord, counter, _ = make_coordinator()
    coord.apply_label(P, VisionPosition.START)
    coord.apply_label(P, VisionPosition.END)
    coord.apply_label(P, VisionPosition.PREPARATION)
    assert counter.feedback == ""
    assert counter.rep_count == 0.5
    assert coord.state.consecutive_failures == 0


def test_switches_to_fallback_on_third_failure_not_second():
    coord, _, events = make_coordinator(fallback=ScriptedProvider("fallback", []))
    coord.apply_label(P, VisionPosition.UNKNOWN)
    coord.apply_label(P, VisionPosition.UNKNOWN)
    assert coord.state.active_provider == P
    assert coord.state.consecutive_failures == 2

    coord.apply_label(P, VisionPosition.UNKNOWN)
    assert coord.state.active_provider == F
    assert coord.state.consecutive_failures == 0
    assert coord.state.switched_at == 1000.0
    [ev] = switches(events)
    assert (ev.from_provider, ev.to_provider, ev.reason) == ("primary", "fallback", "failure_threshold")


def test_success_resets_failure_streak():
    coord, _, _ = make_coordinator(fallback=ScriptedProvider("fallback", []))
    coord.apply_label(P, VisionPosition.UNKNOWN)
    coord.apply_label(P, VisionPosition.UNKNOWN)
    coord.apply_label(P, VisionPosition.MIDWAY)
    assert coord.state.last_success_timestamp == 1000.0
    coord.apply_label(P, VisionPosition.UNKNOWN)
    coord.apply_label(P, VisionPosition.UNKNOWN)
    assert coord.state.active_provider == P


def test_inactive_provider_results_are_ignored():
    coord, counter, _ = make_coordinator(fallback=ScriptedProvider("fallback", []))
    assert coord.apply_label(F, VisionPosition.START) is False

    for _ in range(3):
        coord.apply_label(P, VisionPosition.UNKNOWN)
    coord.apply_label(F, VisionPosition.START)
    assert coord.apply_label(P, VisionPosition.END) is False
    assert counter.rep_count == 0
    assert counter.position == "start"


def test_no_switch_back_to_primary():
    coord, _, events = make_coordinator(fallback=ScriptedProvider("fallback", []))
    for _ in range(3):
        coord.apply_label(P, VisionPosition.UNKNOWN)
    for _ in range(10):
        coord.apply_label(F, VisionPosition.UNKNOWN)
    assert coord.state.active_provider == F
    assert len(switches(events)) == 1


def test_failure_without_fallback_goes_to_none():
    coord, _, events = make_coordinator(fallback=None)
    for _ in range(3):
        coord.apply_label(P, VisionPosition.UNKNOWN)
    assert coord.state.active_provider == ProviderRole.NONE
    assert switches(events)[0].to_provider == "none"


def test_primary_init_error_switches_to_fallback():
    coord, _, events = make_coordinator(
        primary=ScriptedProvider("primary", [], fail_start=True),
        fallback=ScriptedProvider("fallback", []),
    )
    ok = asyncio.run(coord.init_provider(P))
    assert ok is False
    assert coord.state.active_provider == F
    assert switches(events)[0].reason == "init_error"


def test_fallback_init_error_leaves_no_provider():
    coord, _, _ = make_coordinator(
        primary=ScriptedProvider("primary", [], fail_start=True),
        fallback=ScriptedProvider("fallback", [], fail_start=True),
    )
    asyncio.run(coord.init_provider(P))
    asyncio.run(coord.init_provider(F))
    assert coord.state.active_provider == ProviderRole.NONE


def test_tick_applies_provider_answer():
    provider = ScriptedProvider("primary", ["START", "END"])
    coord, counter, _ = make_coordinator(primary=provider)

    async def go():
        return [await coord.tick(P), await coord.tick(P)]

    assert asyncio.run(go()) == [VisionPosition.START, VisionPosition.END]
    assert counter.rep_count == 0.5
    assert provider.calls == 2


def test_tick_timeout_and_errors_count_as_failures():
    slow = ScriptedProvider("primary", ["START"], delay=0.5)
    coord, counter, _ = make_coordinator(primary=slow, request_timeout_ms=20)
    asyncio.run(coord.tick(P))
    assert coord.state.consecutive_failures == 1
    assert counter.position is None

    broken = ScriptedProvider("primary", [RuntimeError("502 bad gateway")])
    coord, _, _ = make_coordinator(primary=broken)
    asyncio.run(coord.tick(P))
    assert coord.state.consecutive_failures == 1


def test_tick_without_frame_is_not_a_failure():
    provider = ScriptedProvider("primary", ["START"])
    coord, _, _ = make_coordinator(primary=provider, frame=None)
    assert asyncio.run(coord.tick(P)) is None
    assert provider.calls == 0
    assert coord.state.consecutive_failures == 0


def test_stop_makes_ticks_noops():
    provider = ScriptedProvider("primary", ["START"])
    coord, counter, _ = make_coordinator(primary=provider)
    asyncio.run(coord.stop())
    assert provider.closed
    assert asyncio.run(coord.tick(P)) is None
    assert coord.apply_label(P, VisionPosition.START) is False
    assert counter.position is None


def test_polling_loops_fail_over_and_keep_counting():
    primary = ScriptedProvider("primary", ["no idea"], cycle=True)
    fallback = ScriptedProvider("fallback", ["START", "END"], cycle=True)
    counter = RepCounterState()
    events = []

    async def scenario():
        coord = VisionCoordinator(
            primary, fallback, counter,
            frame_source=lambda: IMAGE,
            instructions=INSTRUCTIONS,
            cfg=VisionConfig(inference_interval_ms=5),
            on_event=events.append,
        )
        coord.start()
        await asyncio.sleep(0.4)
        await coord.stop()
        return coord

    coord = asyncio.run(scenario())
    assert coord.state.active_provider == F
    assert primary.calls == 3
    assert counter.rep_count >= 1.0
    assert len(switches(events)) == 1
    assert fallback.closed and primary.closed
