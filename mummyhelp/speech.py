"""Spoken feedback backends."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Protocol

from .settings import SettingsStore

DEFAULT_SPEECH_OPTIONS: Dict[str, Any] = {"language": "en-US", "rate": 0.9, "pitch": 1.0, "volume": 0.8}


class Speaker(Protocol):
    """Common interface for text-to-speech engines."""

    async def speak(self, text: str, options: Dict[str, Any]) -> None:
        """Say ``text`` using ``language``, ``rate``, ``pitch`` and ``volume`` options."""


class Pyttsx3Speaker:
    """Offline speech using the `pyttsx3` package."""

    # pyttsx3 rates are words per minute; settings store a multiplier.
    BASE_RATE = 200

    def __init__(self) -> None:
        try:
            import pyttsx3  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("The `pyttsx3` package is required for spoken feedback.") from exc
        self._engine = pyttsx3.init()
        self._lock = threading.Lock()

    def _select_voice(self, language: str) -> None:
        wanted = language.lower().replace("-", "_")
        prefix = wanted.split("_")[0]
        for voice in self._engine.getProperty("voices") or []:
            languages = " ".join(
                lang.decode(errors="ignore") if isinstance(lang, bytes) else str(lang)
                for lang in getattr(voice, "languages", []) or []
            ).lower().replace("-", "_")
            if wanted in languages or wanted in str(voice.id).lower():
                self._engine.setProperty("voice", voice.id)
                return
            if prefix and prefix in languages:
                self._engine.setProperty("voice", voice.id)
                return

    def _say(self, text: str, options: Dict[str, Any]) -> None:
        with self._lock:
            self._engine.setProperty("rate", int(self.BASE_RATE * float(options.get("rate", 1.0))))
            self._engine.setProperty("volume", float(options.get("volume", 1.0)))
            if options.get("language"):
                self._select_voice(str(options["language"]))
            self._engine.say(text)
            self._engine.runAndWait()

    async def speak(self, text: str, options: Dict[str, Any]) -> None:  # pragma: no cover - audio device
        await asyncio.to_thread(self._say, text, options)


def get_speaker(backend: str = "pyttsx3") -> Optional[Speaker]:
    """Return the configured speech engine, or ``None`` when speech is off or unavailable."""

    if backend == "none":
        return None
    if backend == "pyttsx3":
        try:
            return Pyttsx3Speaker()
        except Exception as exc:
            logging.warning("Spoken feedback unavailable: %s", exc)
            return None
    raise RuntimeError(f"Unknown speech backend '{backend}'. Use 'pyttsx3' or 'none'.")


class VoiceFeedback:
    """Speak short confirmations using the live voice settings.

    Options are read from the settings store on every call, so volume, rate,
    pitch, language and the on/off switch apply without a restart. Speaker
    failures are logged and never propagate.
    """

    def __init__(self, speaker: Optional[Speaker], settings: Optional[SettingsStore] = None) -> None:
        self._speaker = speaker
        self._settings = settings

    @property
    def available(self) -> bool:
        return self._speaker is not None

    async def speak(self, text: str) -> bool:
        if self._speaker is None:
            return False
        if self._settings is not None:
            if not self._settings.get_setting("voice_enabled"):
                return False
            options = self._settings.get_speech_options()
        else:
            options = dict(DEFAULT_SPEECH_OPTIONS)
        try:
            await self._speaker.speak(text, options)
        except Exception:
            logging.exception("Error speaking response")
            return False
        logging.debug("Voice response: %s", text)
        return True
