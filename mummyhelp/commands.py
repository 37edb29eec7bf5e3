"""Spoken command registry, matching and execution."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .alerts import EscalationDispatcher
from .models import (
    AlertSent,
    CheckinBusy,
    CommandEntry,
    CommandError,
    CommandMatch,
    CustomCommand,
    EmergencyBusy,
    ListeningStarted,
    ListeningStopped,
    LocationFailed,
    LocationReported,
    LocationShared,
    MatchTier,
    NoMatch,
    Outcome,
    ShareLocationFailed,
    StatusFailed,
    StatusReport,
    TestRun,
    UnknownAction,
    normalize_phrase,
)
from .services import LocationProvider, Notifier
from .settings import SettingsStore
from .speech import VoiceFeedback

PREFIXES = ("hey", "hi", "hello", "please", "can you", "could you")
SUFFIXES = ("please", "now", "quick", "fast")
CONTRACTIONS = (("i am", "im"), ("i will", "ill"))
CONFIDENCE_THRESHOLD = 0.6

EMERGENCY = "emergency"
CHECKIN = "checkin"
LOCATION = "location"
SHARE_LOCATION = "share_location"
STATUS = "status"
STOP_LISTENING = "stop_listening"
START_LISTENING = "start_listening"
TEST = "test"

BUILTIN_COMMANDS: List[Tuple[str, str, str]] = [
    ("emergency", EMERGENCY, "Triggers emergency alert"),
    ("help", EMERGENCY, "Triggers emergency alert"),
    ("sos", EMERGENCY, "Triggers emergency alert"),
    ("danger", EMERGENCY, "Triggers emergency alert"),
    ("check in", CHECKIN, "Sends check-in message"),
    ("checkin", CHECKIN, "Sends check-in message"),
    ("safe", CHECKIN, "Sends check-in message"),
    ("i am safe", CHECKIN, "Sends check-in message"),
    ("im safe", CHECKIN, "Sends check-in message"),
    ("where am i", LOCATION, "Gets current location"),
    ("location", LOCATION, "Gets current location"),
    ("my location", LOCATION, "Gets current location"),
    ("current location", LOCATION, "Gets current location"),
    ("share location", SHARE_LOCATION, "Shares current location with parent"),
    ("send location", SHARE_LOCATION, "Shares current location with parent"),
    ("status", STATUS, "Gets app status"),
    ("how am i", STATUS, "Gets app status"),
    ("whats my status", STATUS, "Gets app status"),
    ("stop listening", STOP_LISTENING, "Stops voice recognition"),
    ("stop voice", STOP_LISTENING, "Stops voice recognition"),
    ("start listening", START_LISTENING, "Starts voice recognition"),
    ("start voice", START_LISTENING, "Starts voice recognition"),
    ("test", TEST, "Runs test command"),
    ("test voice", TEST, "Runs test command"),
]

Handler = Callable[[str], Awaitable[Outcome]]
CommandCallback = Callable[[Outcome], None]


def generate_variations(phrase: str) -> List[str]:
    """Return the alias spellings generated for a canonical phrase."""

    variations = [f"{prefix} {phrase}" for prefix in PREFIXES]
    variations.extend(f"{phrase} {suffix}" for suffix in SUFFIXES)
    variations.extend(f"{prefix} {phrase} {suffix}" for prefix in PREFIXES for suffix in SUFFIXES)
    for long_form, short_form in CONTRACTIONS:
        if long_form in phrase:
            variations.append(phrase.replace(long_form, short_form, 1))
    return variations


def find_partial_match(text: str, commands: Dict[str, CommandEntry]) -> Optional[CommandMatch]:
    """Score substring containment in either direction by length ratio.

    The first candidate with the highest score wins; it is accepted only when
    the score is strictly above :data:`CONFIDENCE_THRESHOLD`.
    """

    if not text:
        return None
    best: Optional[CommandEntry] = None
    best_score = 0.0
    for phrase, entry in commands.items():
        if phrase in text:
            score = len(phrase) / len(text)
            if score > best_score:
                best, best_score = entry, score
        if text in phrase:
            score = len(text) / len(phrase)
            if score > best_score:
                best, best_score = entry, score
    if best is None or best_score <= CONFIDENCE_THRESHOLD:
        return None
    return CommandMatch(entry=best, tier=MatchTier.PARTIAL, score=best_score)


class CommandRegistry:
    """Map free-form utterances to commands and run them.

    The command and alias tables are rebuilt as new dictionaries and swapped
    in whole whenever registrations or persisted custom commands change, so
    a match in progress always sees one consistent table.
    """

    def __init__(
        self,
        dispatcher: EscalationDispatcher,
        locator: LocationProvider,
        notifier: Notifier,
        feedback: Optional[VoiceFeedback] = None,
        *,
        builtins: bool = True,
    ) -> None:
        self._dispatcher = dispatcher
        self._locator = locator
        self._notifier = notifier
        self._feedback = feedback
        self._registered: Dict[str, CommandEntry] = {}
        self._custom: List[CustomCommand] = []
        self._user_aliases: Dict[str, str] = {}
        self._commands: Dict[str, CommandEntry] = {}
        self._aliases: Dict[str, str] = {}
        self._callback: Optional[CommandCallback] = None
        self._handlers: Dict[str, Handler] = {
            EMERGENCY: self._handle_emergency,
            CHECKIN: self._handle_checkin,
            LOCATION: self._handle_location,
            SHARE_LOCATION: self._handle_share_location,
            STATUS: self._handle_status,
            STOP_LISTENING: self._handle_stop_listening,
            START_LISTENING: self._handle_start_listening,
            TEST: self._handle_test,
        }
        if builtins:
            for phrase, action, description in BUILTIN_COMMANDS:
                self._registered[normalize_phrase(phrase)] = CommandEntry(normalize_phrase(phrase), action, description)
            self._rebuild()

    # Registration -----------------------------------------------------------

    def register_command(self, phrase: str, action: str, description: str = "") -> CommandEntry:
        normalized = normalize_phrase(phrase)
        if not normalized:
            raise ValueError("Command phrase cannot be empty.")
        entry = CommandEntry(normalized, action, description)
        self._registered[normalized] = entry
        self._rebuild()
        logging.debug('Command registered: "%s" -> %s', normalized, action)
        return entry

    def clear_commands(self) -> None:
        self._registered = {}
        self._custom = []
        self._user_aliases = {}
        self._rebuild()
        logging.info("All voice commands cleared")

    def _rebuild(self) -> None:
        commands: Dict[str, CommandEntry] = {}
        aliases: Dict[str, str] = {}
        entries = list(self._registered.values())
        entries.extend(
            CommandEntry(custom.phrase, custom.action, custom.description) for custom in self._custom if custom.enabled
        )
        for entry in entries:
            commands[entry.phrase] = entry
            for variation in generate_variations(entry.phrase):
                aliases[variation] = entry.phrase
        aliases.update(self._user_aliases)
        self._commands, self._aliases = commands, aliases

    def bind(self, store: SettingsStore) -> Callable[[], None]:
        """Load persisted custom commands and aliases and follow later changes."""

        self._load_from_settings(store.get_settings())
        return store.add_listener(self._handle_settings_change)

    def _load_from_settings(self, settings: Dict[str, Any]) -> None:
        custom: List[CustomCommand] = []
        for payload in settings.get("custom_commands", []):
            try:
                custom.append(CustomCommand.from_dict(payload))
            except (KeyError, TypeError, AttributeError) as exc:
                logging.warning("Skipping malformed custom command %s: %s", payload, exc)
        self._custom = custom
        self._user_aliases = {
            normalize_phrase(alias): normalize_phrase(phrase)
            for alias, phrase in settings.get("command_aliases", {}).items()
        }
        self._rebuild()

    def _handle_settings_change(self, key: str, value: Any, settings: Dict[str, Any]) -> None:
        if key in ("custom_commands", "command_aliases", "reset", "import"):
            self._load_from_settings(settings)

    # Matching ---------------------------------------------------------------

    def match(self, text: str) -> Optional[CommandMatch]:
        normalized = normalize_phrase(text)
        commands, aliases = self._commands, self._aliases

        entry = commands.get(normalized)
        if entry is not None:
            return CommandMatch(entry=entry, tier=MatchTier.EXACT)

        canonical = aliases.get(normalized)
        if canonical is not None and canonical in commands:
            return CommandMatch(entry=commands[canonical], tier=MatchTier.ALIAS)

        return find_partial_match(normalized, commands)

    async def process_voice_input(self, text: Any) -> Optional[Outcome]:
        """Match ``text`` and execute its command. Never raises."""

        if not isinstance(text, str) or not text.strip():
            return None

        normalized = normalize_phrase(text)
        logging.debug("Processing voice input: %s", normalized)
        match = self.match(normalized)
        if match is None:
            logging.info("No command matched: %s", normalized)
            await self._speak("Command not recognized. Please try again.")
            return NoMatch(input=normalized, message="Command not recognized")

        logging.info('Command matched (%s): "%s" -> %s', match.tier.value, normalized, match.entry.action)
        return await self.execute_command(match.entry.action, normalized)

    async def execute_command(self, action: str, text: str) -> Outcome:
        handler = self._handlers.get(action)
        try:
            if handler is None:
                result: Outcome = UnknownAction(input=text, action=action, message="Unknown action")
            else:
                result = await handler(text)
        except Exception as exc:
            logging.exception("Error executing command %s", action)
            result = CommandError(input=text, action=action, message="Error executing command", error=str(exc))

        if self._callback is not None:
            try:
                self._callback(result)
            except Exception:
                logging.exception("Command callback failed")
        return result

    # Handlers ---------------------------------------------------------------

    async def _handle_emergency(self, text: str) -> Outcome:
        await self._speak("Emergency command recognized. Processing...")
        result = await self._dispatcher.handle_emergency()
        if result is None:
            await self._speak("An emergency alert is already being sent.")
            return EmergencyBusy(input=text, action="trigger_emergency", message="Emergency alert already in progress")
        if isinstance(result, AlertSent):
            await self._speak("Emergency alert sent successfully. Help is on the way.")
        else:
            await self._speak("Failed to send emergency alert. Please try again.")
        return dataclasses.replace(result, input=text, action="trigger_emergency")

    async def _handle_checkin(self, text: str) -> Outcome:
        await self._speak("Check-in command recognized. Sending safe message...")
        result = await self._dispatcher.send_checkin()
        if result is None:
            return CheckinBusy(input=text, action="send_checkin", message="Another alert is being sent")
        if isinstance(result, AlertSent):
            await self._speak("Check-in message sent successfully. Your parent knows you are safe.")
        else:
            await self._speak("Failed to send check-in message. Please try again.")
        return dataclasses.replace(result, input=text, action="send_checkin")

    async def _handle_location(self, text: str) -> Outcome:
        await self._speak("Location command recognized. Getting current location...")
        return await self._share_location(
            text,
            action="get_location",
            success_cls=LocationReported,
            failure_cls=LocationFailed,
            spoken="Your current location is {place}. Location has been shared with your parent.",
            body="Your location has been shared: {place}",
            kind="voice_location",
            success_message="Location retrieved and shared successfully",
            failure_message="Failed to get location",
        )

    async def _handle_share_location(self, text: str) -> Outcome:
        await self._speak("Share location command recognized. Sharing your location...")
        return await self._share_location(
            text,
            action="share_location",
            success_cls=LocationShared,
            failure_cls=ShareLocationFailed,
            spoken="Location shared successfully. Your parent can now see you are at {place}.",
            body="Your location has been shared with your parent: {place}",
            kind="voice_share_location",
            success_message="Location shared successfully",
            failure_message="Failed to share location",
        )

    async def _share_location(
        self,
        text: str,
        *,
        action: str,
        success_cls: type,
        failure_cls: type,
        spoken: str,
        body: str,
        kind: str,
        success_message: str,
        failure_message: str,
    ) -> Outcome:
        try:
            location = await self._locator.get_current_location_with_address()
            if location is None:
                await self._speak("Could not get your location. Please check location permissions.")
                return failure_cls(input=text, action=action, message="Location not available")

            if not await self._locator.send_location_to_backend(location):
                raise RuntimeError("Failed to send location to backend")

            place = location.describe()
            await self._speak(spoken.format(place=place))
            await self._notifier.send_local_notification(
                "📍 Location Shared!",
                body.format(place=place),
                {"type": kind, "location": place},
            )
            return success_cls(
                input=text,
                action=action,
                message=success_message,
                location=location.address,
                coordinates={"latitude": location.latitude, "longitude": location.longitude},
            )
        except Exception as exc:
            logging.error("Location command failed: %s", exc)
            await self._speak(f"{failure_message}. Please try again.")
            return failure_cls(input=text, action=action, message=failure_message, error=str(exc))

    async def _handle_status(self, text: str) -> Outcome:
        await self._speak("Status command recognized. Checking app status...")
        try:
            location = await self._locator.get_current_location_with_address()
            alert_status = self._dispatcher.get_current_alert_status()
            status = {
                "location_available": location is not None,
                "location_accuracy": location.accuracy if location is not None else None,
                "alert_in_progress": alert_status.is_processing,
                "has_active_alert": alert_status.has_active_alert,
            }

            parts = ["App status:"]
            parts.append("Location is available." if location is not None else "Location is not available.")
            if location is not None and location.accuracy:
                parts.append(f"Current location accuracy: {round(location.accuracy)} meters.")
            if alert_status.is_processing:
                parts.append("An alert is being sent.")
            parts.append("An alert is active." if alert_status.has_active_alert else "No alert is active.")
            summary = " ".join(parts)
            await self._speak(summary)
            return StatusReport(input=text, action="get_status", message=summary, status=status)
        except Exception as exc:
            logging.error("Status command failed: %s", exc)
            await self._speak("Failed to get app status. Please try again.")
            return StatusFailed(input=text, action="get_status", message="Failed to get status", error=str(exc))

    async def _handle_stop_listening(self, text: str) -> Outcome:
        await self._speak("Stopping voice recognition...")
        return ListeningStopped(input=text, action="stop_voice", message="Voice recognition stopped")

    async def _handle_start_listening(self, text: str) -> Outcome:
        await self._speak("Starting voice recognition...")
        return ListeningStarted(input=text, action="start_voice", message="Voice recognition started")

    async def _handle_test(self, text: str) -> Outcome:
        await self._speak("Test command recognized. Running test...")
        return TestRun(input=text, action="run_test", message="Test command executed")

    # Introspection ----------------------------------------------------------

    def set_command_callback(self, callback: Optional[CommandCallback]) -> None:
        self._callback = callback

    def get_commands(self) -> List[Dict[str, str]]:
        return [dataclasses.asdict(entry) for entry in self._commands.values()]

    def get_command_help(self) -> List[str]:
        return [f'"{entry.phrase}" - {entry.description}' for entry in self._commands.values()]

    def get_status(self) -> Dict[str, Any]:
        return {
            "commands_count": len(self._commands),
            "aliases_count": len(self._aliases),
            "voice_enabled": self._feedback is not None and self._feedback.available,
            "has_callback": self._callback is not None,
        }

    async def _speak(self, text: str) -> None:
        if self._feedback is not None:
            await self._feedback.speak(text)
