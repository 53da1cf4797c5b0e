import asyncio

from repcoach.vision.config import VisionConfig
from repcoach.vision.orientation import ORIENTATION_ALERT_COOLDOWN_S, OrientationMonitor
from repcoach.vision.prompts import build_orientation_check_prompt, parse_orientation

from conftest import ScriptedProvider

IMAGE = "data:image/jpeg;base64,AAAA"
SIDE_ON = "Stand side-on to the camera with your whole body in frame"


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def make_monitor(answers, frame=IMAGE, clock=None, **cfg):
    alerts = []
    provider = ScriptedProvider("fallback", answers)
    monitor = OrientationMonitor(
        provider,
        frame_source=lambda: frame,
        orientation=SIDE_ON,
        cfg=VisionConfig(**cfg),
        on_alert=alerts.append,
        session_id="s1",
        clock=clock or Clock(),
    )
    monitor.start(autorun=False)
    return monitor, provider, alerts


def test_parse_orientation():
    assert parse_orientation("YES") is True
    assert parse_orientation(" yes.") is True
    assert parse_orientation("NO") is False
    assert parse_orientation("") is False
    assert parse_orientation(None) is False


def test_orientation_prompt_embeds_setup():
    prompt = build_orientation_check_prompt(SIDE_ON)
    assert SIDE_ON in prompt
    assert "YES" in prompt and "NO" in prompt


def test_no_answer_alerts_once_per_cooldown():
    clock = Clock()
    monitor, _, alerts = make_monitor(["NO", "NO", "NO"], clock=clock)

    assert asyncio.run(monitor.check()) is False
    assert len(alerts) == 1
    assert alerts[0].msg == SIDE_ON
    assert alerts[0].type.value == "orientation_alert"
    assert alerts[0].ts == 100.0

    clock.now += ORIENTATION_ALERT_COOLDOWN_S - 1
    assert asyncio.run(monitor.check()) is False
    assert len(alerts) == 1

    clock.now += 2
    asyncio.run(monitor.check())
    assert len(alerts) == 2


def test_yes_answer_is_silent():
    monitor, _, alerts = make_monitor(["YES"])
    assert asyncio.run(monitor.check()) is True
    assert alerts == []


def test_errors_and_timeouts_are_skipped():
    monitor, _, alerts = make_monitor([RuntimeError("429 rate limited")])
    assert asyncio.run(monitor.check()) is None
    assert alerts == []

    slow = ScriptedProvider("fallback", ["NO"], delay=0.5)
    monitor = OrientationMonitor(slow, lambda: IMAGE, SIDE_ON, cfg=VisionConfig(request_timeout_ms=20))
    monitor.start(autorun=False)
    assert asyncio.run(monitor.check()) is None


def test_no_frame_means_no_request():
    monitor, provider, _ = make_monitor(["NO"], frame=None)
    assert asyncio.run(monitor.check()) is None
    assert provider.calls == 0


def test_stopped_monitor_does_nothing():
    monitor, provider, alerts = make_monitor(["NO"])
    asyncio.run(monitor.stop())
    assert provider.closed
    assert asyncio.run(monitor.check()) is None
    assert alerts == []


def test_failed_start_disables_checks():
    broken = ScriptedProvider("fallback", ["NO"], fail_start=True)
    alerts = []

    async def scenario():
        monitor = OrientationMonitor(broken, lambda: IMAGE, SIDE_ON,
                                     cfg=VisionConfig(inference_interval_ms=5), on_alert=alerts.append)
        monitor.start()
        await asyncio.sleep(0.05)
        await monitor.stop()

    asyncio.run(scenario())
    assert broken.calls == 0
    assert alerts == []
