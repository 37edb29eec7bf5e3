import asyncio
import json

from fakes import MemoryStore
from mummyhelp.models import HitEvent
from mummyhelp.settings import SettingsStore
from mummyhelp.trigger import HitAccumulator


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _accumulator(clock, **kwargs):
    calls = {"single": 0, "emergency": 0}

    def single():
        calls["single"] += 1

    def emergency():
        calls["emergency"] += 1

    accumulator = HitAccumulator(clock=clock, **kwargs)
    accumulator.init(single, emergency)
    return accumulator, calls


def test_three_hits_inside_window_escalate_once():
    clock = Clock()
    accumulator, calls = _accumulator(clock)

    events = []
    for stamp in (0, 4000, 9000):
        clock.now = stamp
        events.append(accumulator.process_text("Mummy help"))

    assert events == [HitEvent.ARMED, HitEvent.ARMED, HitEvent.ESCALATED]
    assert calls == {"single": 2, "emergency": 1}
    assert accumulator.get_hit_status().count == 0

    clock.now = 9500
    assert accumulator.process_text("mummy help") is HitEvent.ARMED
    assert calls["emergency"] == 1


def test_old_hits_are_pruned():
    clock = Clock()
    accumulator, calls = _accumulator(clock)

    for stamp in (0, 11000, 22000):
        clock.now = stamp
        assert accumulator.process_text("mummy help") is HitEvent.ARMED

    assert calls == {"single": 3, "emergency": 0}
    assert accumulator.get_hit_status().count == 1


def test_hit_exactly_window_old_still_counts():
    clock = Clock()
    accumulator, _ = _accumulator(clock, required_hits=2)

    accumulator.process_text("mummy help")
    clock.now = 10000

    assert accumulator.process_text("mummy help") is HitEvent.ESCALATED


def test_text_without_wake_phrase_is_ignored():
    accumulator, calls = _accumulator(Clock())

    assert accumulator.process_text("what is for dinner") is None
    assert accumulator.process_text("") is None
    assert accumulator.process_text(None) is None
    assert calls == {"single": 0, "emergency": 0}


def test_substring_match_mid_sentence_counts_once():
    accumulator, calls = _accumulator(Clock())

    # Contains both "mummy help" and "hey mummy help".
    assert accumulator.process_text("I said HEY MUMMY HELP please") is HitEvent.ARMED
    assert accumulator.get_hit_status().count == 1
    assert calls["single"] == 1


def test_hit_status_reports_time_left_and_progress():
    clock = Clock()
    accumulator, _ = _accumulator(clock)

    accumulator.process_text("mummy help")
    clock.now = 4000
    status = accumulator.get_hit_status()

    assert status.count == 1
    assert status.required == 3
    assert status.time_left == 6000
    assert abs(status.progress - 1 / 3) < 1e-9
    assert status.is_emergency_ready is False

    clock.now = 20000
    assert accumulator.get_hit_status().as_dict() == {
        "count": 0,
        "required": 3,
        "time_left": 0,
        "progress": 0.0,
        "is_emergency_ready": False,
    }


def test_lowering_threshold_applies_on_next_hit_only():
    clock = Clock()
    accumulator, calls = _accumulator(clock)
    accumulator.process_text("mummy help")
    accumulator.process_text("mummy help")

    assert accumulator.update_settings(required_hits=2)
    assert calls["emergency"] == 0
    assert accumulator.get_hit_status().is_emergency_ready is True

    assert accumulator.process_text("mummy help") is HitEvent.ESCALATED
    assert calls["emergency"] == 1


def test_invalid_update_leaves_options_unchanged():
    accumulator, _ = _accumulator(Clock())

    assert accumulator.update_settings(required_hits=5, wake_phrases=[]) is False
    assert accumulator.update_settings(window_ms=0) is False
    assert accumulator.update_settings(colour="red") is False
    assert accumulator.get_settings() == {
        "wake_phrases": ["mummy help", "hey mummy help", "help me mummy"],
        "required_hits": 3,
        "window_ms": 10000,
        "auto_emergency": True,
    }


def test_manual_mode_asks_for_confirmation_at_threshold():
    accumulator, calls = _accumulator(Clock(), auto_emergency=False)

    events = [accumulator.process_text("help me mummy") for _ in range(3)]

    assert events == [HitEvent.ARMED] * 3
    assert calls == {"single": 3, "emergency": 0}
    assert accumulator.get_hit_status().count == 0


def test_failing_emergency_callback_still_resets():
    def boom():
        raise RuntimeError("ui gone")

    accumulator = HitAccumulator(required_hits=1, clock=Clock())
    accumulator.init(None, boom)

    assert accumulator.process_text("mummy help") is HitEvent.ESCALATED
    assert accumulator.get_hit_status().count == 0


def test_simulate_escalation():
    accumulator, calls = _accumulator(Clock(50000))

    assert accumulator.simulate_escalation() is HitEvent.ESCALATED
    assert calls["emergency"] == 1


def test_bound_accumulator_follows_settings():
    settings = SettingsStore(MemoryStore())
    asyncio.run(settings.initialize())
    accumulator, _ = _accumulator(Clock())
    accumulator.bind(settings)

    asyncio.run(settings.update_settings({"hit_threshold": 5, "time_window": 2000}))
    asyncio.run(settings.add_wake_phrase("Mama Come"))

    assert accumulator.required_hits == 5
    assert accumulator.window_ms == 2000
    assert accumulator.process_text("mama come now") is HitEvent.ARMED

    asyncio.run(settings.reset_to_defaults())
    assert accumulator.required_hits == 3
    assert accumulator.process_text("mama come now") is None


def test_refused_threshold_keeps_store_and_accumulator_in_step():
    store = MemoryStore()
    settings = SettingsStore(store)
    asyncio.run(settings.initialize())
    accumulator, _ = _accumulator(Clock())
    accumulator.bind(settings)

    assert asyncio.run(settings.update_setting("hit_threshold", 0)) is False
    assert settings.get_setting("hit_threshold") == accumulator.required_hits == 3

    store.data["voice_settings"] = json.dumps({"hit_threshold": "five"})
    fresh = SettingsStore(store)
    asyncio.run(fresh.initialize())
    restarted, _ = _accumulator(Clock())
    restarted.bind(fresh)
    assert restarted.required_hits == 3
