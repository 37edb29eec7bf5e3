"""Recognizer session: lifecycle and fan-out of recognised text."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .alerts import EscalationDispatcher
from .commands import EMERGENCY, CommandRegistry
from .models import (
    Config,
    HitEvent,
    ListeningStarted,
    ListeningStopped,
    Outcome,
)
from .services import (
    BackendClient,
    BackgroundLocationTracker,
    ConsoleNotifier,
    FixedLocationProvider,
    Notifier,
    OfflineAlertClient,
)
from .settings import SettingsStore
from .speech import Speaker, VoiceFeedback, get_speaker
from .storage import KeyValueStore, Storage
from .trigger import HitAccumulator

ResultCallback = Callable[[Outcome], None]
StatusCallback = Callable[[Dict[str, Any]], None]


class VoiceSession:
    """Own the listening state and route each transcript to the core.

    Recognised text goes to the hit accumulator first; an armed or escalated
    hit is handed to the dispatcher. When commands are enabled the same text
    is also matched against the command registry. Every outcome is returned
    and passed to ``on_result``.
    """

    def __init__(
        self,
        settings: SettingsStore,
        accumulator: HitAccumulator,
        registry: CommandRegistry,
        dispatcher: EscalationDispatcher,
        feedback: Optional[VoiceFeedback] = None,
        *,
        on_result: Optional[ResultCallback] = None,
        on_status_change: Optional[StatusCallback] = None,
    ) -> None:
        self.settings = settings
        self.accumulator = accumulator
        self.registry = registry
        self.dispatcher = dispatcher
        self.feedback = feedback
        self.on_result = on_result
        self.on_status_change = on_status_change
        self.is_listening = False
        self.is_continuous = True
        self._unsubscribe: List[Callable[[], None]] = []
        self._cleanup: List[Callable[[], Any]] = []

    async def initialize(self) -> bool:
        """Load settings and subscribe the accumulator and registry to them."""

        loaded = await self.settings.initialize()
        self.accumulator.init(self._on_single_hit, self._on_emergency)
        self._unsubscribe = [self.accumulator.bind(self.settings), self.registry.bind(self.settings)]
        logging.info("Voice session initialised")
        return loaded

    def add_cleanup(self, callback: Callable[[], Any]) -> None:
        self._cleanup.append(callback)

    async def close(self) -> None:
        await self.stop_listening(quiet=True)
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        for callback in reversed(self._cleanup):
            result = callback()
            if inspect.isawaitable(result):
                await result
        self._cleanup = []

    # Lifecycle --------------------------------------------------------------

    async def start_listening(self, continuous: Optional[bool] = None) -> bool:
        if self.is_listening:
            logging.info("Already listening")
            return False
        if not self.settings.get_setting("recognition_enabled"):
            logging.warning("Voice recognition is disabled in settings")
            self._update_status("disabled", "Voice recognition is disabled")
            return False

        self.is_listening = True
        self.is_continuous = (
            continuous if continuous is not None else bool(self.settings.get_setting("continuous_listening"))
        )
        self._update_status("listening")
        await self._speak("Listening for voice commands")
        logging.info("Voice recognition started")
        return True

    async def stop_listening(self, quiet: bool = False) -> bool:
        if not self.is_listening:
            logging.debug("Not currently listening")
            return False
        self.is_listening = False
        self._update_status("stopped")
        if not quiet:
            await self._speak("Voice recognition stopped")
        logging.info("Voice recognition stopped")
        return True

    def on_error(self, error: BaseException) -> None:
        logging.error("Voice recognition error: %s", error)
        self._update_status("error", str(error))

    # Text -------------------------------------------------------------------

    async def on_text_detected(self, text: str) -> List[Outcome]:
        if not self.is_listening:
            logging.debug("Ignoring text while not listening: %s", text)
            return []

        event = self.accumulator.process_text(text)
        outcomes = await self._dispatch_hit(event)

        if self.settings.get_setting("commands_enabled") and self._runs_command(text, event):
            command_result = await self.registry.process_voice_input(text)
            if command_result is not None:
                outcomes.append(command_result)
                if isinstance(command_result, ListeningStopped):
                    await self.stop_listening(quiet=True)
                elif isinstance(command_result, ListeningStarted):
                    await self.start_listening()

        for outcome in outcomes:
            self._emit(outcome)
        return outcomes

    def _runs_command(self, text: str, event: Optional[HitEvent]) -> bool:
        if event is None:
            return True
        # Escalation for a wake phrase utterance stays with the accumulator.
        match = self.registry.match(text)
        if match is None or match.entry.action == EMERGENCY:
            logging.debug("Command skipped for wake phrase utterance: %s", text)
            return False
        return True

    async def _dispatch_hit(self, event: Optional[HitEvent]) -> List[Outcome]:
        result: Optional[Outcome] = None
        if event is HitEvent.ESCALATED:
            await self._speak("Emergency detected. Sending alert now.")
            result = await self.dispatcher.handle_emergency()
        elif event is HitEvent.ARMED:
            result = await self.dispatcher.handle_single_hit()
        return [result] if result is not None else []

    async def simulate_escalation(self) -> List[Outcome]:
        """Run a full escalation as if the wake phrase had been repeated."""

        outcomes = await self._dispatch_hit(self.accumulator.simulate_escalation())
        for outcome in outcomes:
            self._emit(outcome)
        return outcomes

    async def confirm_emergency(self) -> Optional[Outcome]:
        result = await self.dispatcher.handle_emergency_confirmed()
        if result is not None:
            self._emit(result)
        return result

    async def cancel_emergency(self) -> Outcome:
        self.accumulator.reset_hits()
        result = await self.dispatcher.handle_emergency_cancelled()
        self._emit(result)
        return result

    async def cancel_alert(self) -> bool:
        return await self.dispatcher.cancel_current_alert()

    def reset(self) -> None:
        self.accumulator.reset_hits()
        self.dispatcher.reset()

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_listening": self.is_listening,
            "is_continuous": self.is_continuous,
            "settings": self.settings.get_settings_summary(),
            "trigger": self.accumulator.get_status(),
            "commands": self.registry.get_status(),
            "alert": self.dispatcher.get_current_alert_status().as_dict(),
        }

    # Internals --------------------------------------------------------------

    def _on_single_hit(self) -> None:
        self._update_status("wake_phrase", "Wake phrase detected")

    def _on_emergency(self) -> None:
        self._update_status("emergency", "Emergency threshold reached")

    def _emit(self, outcome: Outcome) -> None:
        if self.on_result is None:
            return
        try:
            self.on_result(outcome)
        except Exception:
            logging.exception("Result callback failed for %s", outcome.type)

    def _update_status(self, status: str, message: str = "") -> None:
        info = {
            "status": status,
            "message": message,
            "timestamp": datetime.now().isoformat(),
            "is_listening": self.is_listening,
            "is_continuous": self.is_continuous,
        }
        logging.debug("Status update: %s", info)
        if self.on_status_change is None:
            return
        try:
            self.on_status_change(info)
        except Exception:
            logging.exception("Status callback failed")

    async def _speak(self, text: str) -> None:
        if self.feedback is not None:
            await self.feedback.speak(text)


def build_session(
    cfg: Config,
    store: Optional[KeyValueStore] = None,
    *,
    speaker: Optional[Speaker] = None,
    notifier: Optional[Notifier] = None,
    on_result: Optional[ResultCallback] = None,
    on_status_change: Optional[StatusCallback] = None,
) -> VoiceSession:
    """Wire a session with the default collaborators for ``cfg``.

    Without a configured server the session still runs; alert submissions
    then fail with a configuration error that is reported as a failed result.
    """

    settings = SettingsStore(store if store is not None else Storage())
    backend = BackendClient.from_config(cfg) if cfg.server_url else None
    alerts = backend if backend is not None else OfflineAlertClient()
    locator = FixedLocationProvider.from_config(cfg, backend=backend)
    tracker = BackgroundLocationTracker(locator, interval=cfg.tracking_interval)
    notifier = notifier or ConsoleNotifier()
    if speaker is None:
        speaker = get_speaker(cfg.speech_backend)
    feedback = VoiceFeedback(speaker, settings)

    dispatcher = EscalationDispatcher(alerts, locator, notifier, tracker)
    registry = CommandRegistry(dispatcher, locator, notifier, feedback)
    session = VoiceSession(
        settings,
        HitAccumulator(),
        registry,
        dispatcher,
        feedback,
        on_result=on_result,
        on_status_change=on_status_change,
    )
    session.add_cleanup(tracker.stop_background_location)
    if backend is not None:
        session.add_cleanup(backend.aclose)
    return session
