"""Wake phrase hit accumulation and escalation."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .models import HitEvent, HitStatus, Settings, normalize_phrase
from .settings import SettingsStore

Clock = Callable[[], float]
Callback = Callable[[], None]

# Settings store keys and the accumulator option each one drives.
SETTING_OPTIONS = {
    "wake_phrases": "wake_phrases",
    "hit_threshold": "required_hits",
    "time_window": "window_ms",
    "auto_emergency": "auto_emergency",
}


def _now_ms() -> float:
    return time.time() * 1000


def _normalize_all(phrases: Iterable[str]) -> Tuple[str, ...]:
    seen: List[str] = []
    for phrase in phrases:
        normalized = normalize_phrase(phrase)
        if normalized and normalized not in seen:
            seen.append(normalized)
    return tuple(seen)


class HitAccumulator:
    """Count wake phrase detections inside a sliding time window.

    Every detection appends a timestamp and prunes those older than the
    window. Below the threshold the single-hit callback fires (the caller asks
    the user to confirm); reaching the threshold fires the emergency callback
    and clears the log so the next phrase starts a fresh window. The window
    is evaluated lazily on each call; there is no timer.
    """

    def __init__(
        self,
        wake_phrases: Optional[Iterable[str]] = None,
        required_hits: Optional[int] = None,
        window_ms: Optional[float] = None,
        *,
        auto_emergency: bool = True,
        on_single_hit: Optional[Callback] = None,
        on_emergency: Optional[Callback] = None,
        clock: Clock = _now_ms,
    ) -> None:
        defaults = Settings()
        self._wake_phrases = _normalize_all(wake_phrases if wake_phrases is not None else defaults.wake_phrases)
        self.required_hits = required_hits if required_hits is not None else defaults.hit_threshold
        self.window_ms = window_ms if window_ms is not None else defaults.time_window
        self.auto_emergency = auto_emergency
        self.on_single_hit = on_single_hit
        self.on_emergency = on_emergency
        self._clock = clock
        self._hits: List[float] = []

    @property
    def wake_phrases(self) -> Tuple[str, ...]:
        return self._wake_phrases

    def init(self, on_single_hit: Optional[Callback], on_emergency: Optional[Callback]) -> bool:
        self.on_single_hit = on_single_hit
        self.on_emergency = on_emergency
        logging.info(
            "Voice trigger initialised: %s phrase(s), %s hits in %sms",
            len(self._wake_phrases),
            self.required_hits,
            self.window_ms,
        )
        return True

    # Settings ---------------------------------------------------------------

    def bind(self, store: SettingsStore) -> Callable[[], None]:
        """Adopt the store's current values and follow later changes."""

        self._apply_settings(store.get_settings())
        return store.add_listener(self._handle_settings_change)

    def _apply_settings(self, settings: Dict[str, Any]) -> None:
        self.update_settings(
            **{option: settings[key] for key, option in SETTING_OPTIONS.items() if key in settings}
        )

    def _handle_settings_change(self, key: str, value: Any, settings: Dict[str, Any]) -> None:
        if key in ("reset", "import"):
            self._apply_settings(settings)
        elif key in SETTING_OPTIONS:
            self.update_settings(**{SETTING_OPTIONS[key]: value})

    def update_settings(self, **patch: Any) -> bool:
        """Apply new options; they take effect on the next processed text."""

        unknown = set(patch) - set(SETTING_OPTIONS.values())
        if unknown:
            logging.warning("Ignoring unknown trigger options: %s", ", ".join(sorted(unknown)))
            return False

        phrases = self._wake_phrases
        required = self.required_hits
        window = self.window_ms
        if "wake_phrases" in patch:
            phrases = _normalize_all(patch["wake_phrases"] or ())
            if not phrases:
                logging.warning("Ignoring empty wake phrase list")
                return False
        if "required_hits" in patch:
            required = int(patch["required_hits"])
            if required < 1:
                logging.warning("Ignoring hit threshold %s; it must be at least 1", required)
                return False
        if "window_ms" in patch:
            window = float(patch["window_ms"])
            if window <= 0:
                logging.warning("Ignoring time window %s; it must be positive", window)
                return False

        self._wake_phrases = phrases
        self.required_hits = required
        self.window_ms = window
        if "auto_emergency" in patch:
            self.auto_emergency = bool(patch["auto_emergency"])

        logging.debug("Voice trigger options updated: %s", patch)
        return True

    def get_settings(self) -> Dict[str, Any]:
        return {
            "wake_phrases": list(self._wake_phrases),
            "required_hits": self.required_hits,
            "window_ms": self.window_ms,
            "auto_emergency": self.auto_emergency,
        }

    # Detection --------------------------------------------------------------

    def process_text(self, text: Any) -> Optional[HitEvent]:
        """Record a hit when ``text`` contains any wake phrase."""

        if not isinstance(text, str) or not text.strip():
            return None

        lowered = normalize_phrase(text)
        detected = next((phrase for phrase in self._wake_phrases if phrase in lowered), None)
        if detected is None:
            return None

        logging.info("Wake phrase detected: %s", detected)
        return self._record_hit()

    def _record_hit(self) -> HitEvent:
        now = self._clock()
        self._hits.append(now)
        self._prune(now)
        count = len(self._hits)
        logging.info("Hit recorded. Total hits in window: %s", count)

        if count < self.required_hits:
            self._fire(self.on_single_hit)
            return HitEvent.ARMED

        try:
            if self.auto_emergency:
                logging.warning("Emergency threshold reached (%s hits)", count)
                self._fire(self.on_emergency)
                return HitEvent.ESCALATED
            logging.info("Threshold reached but automatic emergency is off; asking for confirmation")
            self._fire(self.on_single_hit)
            return HitEvent.ARMED
        finally:
            self.reset_hits()

    @staticmethod
    def _fire(callback: Optional[Callback]) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logging.exception("Voice trigger callback failed")

    def _prune(self, now: float) -> None:
        self._hits = [stamp for stamp in self._hits if now - stamp <= self.window_ms]

    def reset_hits(self) -> None:
        self._hits = []
        logging.debug("Hit counter reset")

    def get_hit_status(self) -> HitStatus:
        now = self._clock()
        self._prune(now)
        count = len(self._hits)
        time_left = max(0.0, self.window_ms - (now - min(self._hits))) if self._hits else 0
        return HitStatus(
            count=count,
            required=self.required_hits,
            time_left=time_left,
            progress=min(1.0, count / self.required_hits),
            is_emergency_ready=count >= self.required_hits,
        )

    def simulate_escalation(self) -> HitEvent:
        """Seed a full window of hits one second apart and record one more."""

        now = self._clock()
        self._hits = [now - i * 1000 for i in range(self.required_hits)]
        logging.info("Simulated %s hits", len(self._hits))
        return self._record_hit()

    def get_status(self) -> Dict[str, Any]:
        return {
            "hit_status": self.get_hit_status().as_dict(),
            "settings": self.get_settings(),
            "is_initialized": self.on_single_hit is not None and self.on_emergency is not None,
        }
