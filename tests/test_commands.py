import asyncio

from fakes import FakeLocator, FakeSpeaker, MemoryStore
from mummyhelp.alerts import EscalationDispatcher
from mummyhelp.commands import CONFIDENCE_THRESHOLD, CommandRegistry, generate_variations
from mummyhelp.models import (
    CheckinSent,
    CommandError,
    EmergencyBusy,
    EmergencySent,
    ListeningStopped,
    LocationFailed,
    LocationReported,
    MatchTier,
    NoMatch,
    ShareLocationFailed,
    StatusReport,
    UnknownAction,
)
from mummyhelp.settings import SettingsStore
from mummyhelp.speech import VoiceFeedback


def _registry(dispatcher, locator, notifier, builtins=True, speaker=None):
    feedback = VoiceFeedback(speaker) if speaker is not None else None
    return CommandRegistry(dispatcher, locator, notifier, feedback, builtins=builtins)


def test_variations_cover_prefixes_suffixes_and_contractions():
    variations = generate_variations("i am safe")

    assert "hey i am safe" in variations
    assert "could you i am safe" in variations
    assert "i am safe quick" in variations
    assert "please i am safe now" in variations
    assert "im safe" in variations


def test_exact_match(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)

    result = registry.match("  Emergency ")

    assert result.tier is MatchTier.EXACT
    assert result.entry.action == "emergency"
    assert result.score == 1.0


def test_alias_match_resolves_to_canonical_command(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)

    result = registry.match("please check in now")

    assert result.tier is MatchTier.ALIAS
    assert result.entry.phrase == "check in"
    assert result.entry.action == "checkin"


def test_exact_match_wins_over_alias(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)
    registry.register_command("hey help", "test", "Shadow an alias")

    result = registry.match("hey help")

    assert result.tier is MatchTier.EXACT
    assert result.entry.action == "test"


def test_partial_match_scores_by_length_ratio(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)

    result = registry.match("show my location")

    assert result.tier is MatchTier.PARTIAL
    assert result.entry.phrase == "my location"
    assert abs(result.score - 11 / 16) < 1e-9


def test_score_of_exactly_threshold_is_rejected(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier, builtins=False)
    registry.register_command("abcdef", "test")

    assert len("abcdef") / len("abcdef xyz") == CONFIDENCE_THRESHOLD
    assert registry.match("abcdef xyz") is None
    assert registry.match("abcdef xy").tier is MatchTier.PARTIAL


def test_partial_ties_go_to_first_registered(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier, builtins=False)
    registry.register_command("abcde", "first")
    registry.register_command("abcdx", "second")

    result = registry.match("abcd")

    assert result.entry.action == "first"
    assert result.score == 0.8


def test_reregistering_replaces_entry(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier, builtins=False)
    registry.register_command("ping", "test", "old")
    registry.register_command("ping", "status", "new")

    assert registry.get_commands() == [{"phrase": "ping", "action": "status", "description": "new"}]
    assert registry.match("hey ping").entry.action == "status"


def test_no_match_is_reported_not_raised(dispatcher, locator, notifier):
    speaker = FakeSpeaker()
    registry = _registry(dispatcher, locator, notifier, speaker=speaker)
    seen = []
    registry.set_command_callback(seen.append)

    result = asyncio.run(registry.process_voice_input("Xyzzy"))

    assert isinstance(result, NoMatch)
    assert result.type == "no_match"
    assert result.input == "xyzzy"
    assert speaker.spoken == ["Command not recognized. Please try again."]
    assert seen == []


def test_empty_input_is_ignored(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)

    assert asyncio.run(registry.process_voice_input("   ")) is None
    assert asyncio.run(registry.process_voice_input(42)) is None


def test_emergency_command_goes_through_dispatcher(dispatcher, locator, notifier, alerts):
    registry = _registry(dispatcher, locator, notifier)
    seen = []
    registry.set_command_callback(seen.append)

    result = asyncio.run(registry.process_voice_input("SOS"))

    assert isinstance(result, EmergencySent)
    assert result.input == "sos"
    assert result.action == "trigger_emergency"
    assert result.alert_id == "alert-1"
    assert len(alerts.calls) == 1
    assert seen == [result]


def test_emergency_command_while_dispatching_is_busy(dispatcher, locator, notifier, alerts):
    registry = _registry(dispatcher, locator, notifier)
    dispatcher._try_acquire()

    result = asyncio.run(registry.process_voice_input("emergency"))

    assert isinstance(result, EmergencyBusy)
    assert alerts.calls == []


def test_checkin_command(dispatcher, locator, notifier, alerts):
    registry = _registry(dispatcher, locator, notifier)

    result = asyncio.run(registry.process_voice_input("please check in now"))

    assert isinstance(result, CheckinSent)
    assert result.type == "checkin_success"
    assert alerts.calls[0][0]["type"] == "checkin"


def test_location_command_shares_location(dispatcher, locator, notifier):
    speaker = FakeSpeaker()
    registry = _registry(dispatcher, locator, notifier, speaker=speaker)

    result = asyncio.run(registry.process_voice_input("where am i"))

    assert isinstance(result, LocationReported)
    assert result.coordinates == {"latitude": 51.507351, "longitude": -0.127758}
    assert len(locator.shared) == 1
    assert notifier.titles == ["📍 Location Shared!"]
    assert any("10 Downing Street" in text for text in speaker.spoken)


def test_location_failures_become_typed_results(dispatcher, notifier):
    missing = _registry(dispatcher, FakeLocator(location=None), notifier)
    result = asyncio.run(missing.process_voice_input("location"))
    assert isinstance(result, LocationFailed)
    assert result.message == "Location not available"

    rejected = _registry(dispatcher, FakeLocator(sent=False), notifier)
    result = asyncio.run(rejected.process_voice_input("share location"))
    assert isinstance(result, ShareLocationFailed)
    assert result.error == "Failed to send location to backend"

    broken = _registry(dispatcher, FakeLocator(error=OSError("gps off")), notifier)
    result = asyncio.run(broken.process_voice_input("send location"))
    assert result.type == "share_location_failed"
    assert result.error == "gps off"


def test_status_command(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)

    result = asyncio.run(registry.process_voice_input("whats my status"))

    assert isinstance(result, StatusReport)
    assert result.status["location_available"] is True
    assert result.status["has_active_alert"] is False


def test_stop_listening_command(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)

    result = asyncio.run(registry.process_voice_input("stop listening"))

    assert isinstance(result, ListeningStopped)
    assert result.action == "stop_voice"


def test_unknown_action_and_handler_errors(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier, builtins=False)
    registry.register_command("dance", "dance")
    registry.register_command("test", "test")

    async def boom(text):
        raise RuntimeError("speaker exploded")

    registry._handlers["test"] = boom

    assert isinstance(asyncio.run(registry.process_voice_input("dance")), UnknownAction)
    result = asyncio.run(registry.process_voice_input("test"))
    assert isinstance(result, CommandError)
    assert result.type == "error"
    assert result.error == "speaker exploded"


def test_failing_callback_does_not_escape(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)

    def broken(result):
        raise RuntimeError("ui gone")

    registry.set_command_callback(broken)

    assert asyncio.run(registry.process_voice_input("test")).type == "test"


def test_bound_registry_tracks_custom_commands_and_aliases(dispatcher, locator, notifier):
    settings = SettingsStore(MemoryStore())
    asyncio.run(settings.initialize())
    registry = _registry(dispatcher, locator, notifier)
    registry.bind(settings)

    command = asyncio.run(settings.add_custom_command("Pizza Time", "checkin"))
    assert registry.match("pizza time").tier is MatchTier.EXACT
    assert registry.match("pizza time now").tier is MatchTier.ALIAS

    asyncio.run(settings.add_command_alias("all good", "i am safe"))
    result = registry.match("all good")
    assert result.tier is MatchTier.ALIAS
    assert result.entry.action == "checkin"

    asyncio.run(settings.update_custom_command(command.id, enabled=False))
    assert registry.match("pizza time") is None

    asyncio.run(settings.reset_to_defaults())
    assert registry.match("all good") is None
    assert registry.match("emergency").tier is MatchTier.EXACT


def test_clear_commands(dispatcher, locator, notifier):
    registry = _registry(dispatcher, locator, notifier)
    registry.clear_commands()

    assert registry.get_commands() == []
    assert registry.match("emergency") is None
    assert registry.get_status()["commands_count"] == 0


def test_builtin_dispatcher_is_shared(alerts, locator, notifier, tracker):
    dispatcher = EscalationDispatcher(alerts, locator, notifier, tracker)
    registry = _registry(dispatcher, locator, notifier)

    asyncio.run(registry.process_voice_input("danger"))

    assert dispatcher.current_alert_id == "alert-1"
    assert tracker.started == 1
