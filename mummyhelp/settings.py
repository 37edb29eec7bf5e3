"""Reactive voice settings backed by the persistent key-value store."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import math
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .models import CustomCommand, Settings, normalize_phrase
from .storage import KeyValueStore

SETTINGS_KEY = "voice_settings"
EXPORT_VERSION = "1.0.0"

Listener = Callable[[str, Any, Dict[str, Any]], None]
Mutation = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]

VOICE_PRESETS: Dict[str, Dict[str, Any]] = {
    "default": {"name": "Default", "volume": 0.8, "rate": 0.9, "pitch": 1.0, "language": "en-US"},
    "slow": {"name": "Slow & Clear", "volume": 0.9, "rate": 0.7, "pitch": 1.0, "language": "en-US"},
    "fast": {"name": "Quick", "volume": 0.7, "rate": 1.2, "pitch": 1.0, "language": "en-US"},
    "child": {"name": "Child Friendly", "volume": 0.9, "rate": 0.8, "pitch": 1.1, "language": "en-US"},
    "elderly": {"name": "Elderly Friendly", "volume": 1.0, "rate": 0.6, "pitch": 0.9, "language": "en-US"},
}

AVAILABLE_LANGUAGES = [
    ("en-US", "English (US)"),
    ("en-GB", "English (UK)"),
    ("es-ES", "Spanish"),
    ("fr-FR", "French"),
    ("de-DE", "German"),
    ("it-IT", "Italian"),
    ("pt-BR", "Portuguese (Brazil)"),
    ("ru-RU", "Russian"),
    ("ja-JP", "Japanese"),
    ("ko-KR", "Korean"),
    ("zh-CN", "Chinese (Simplified)"),
    ("ar-SA", "Arabic"),
    ("hi-IN", "Hindi"),
]

CUSTOM_COMMAND_FIELDS = {"phrase", "action", "description", "enabled"}


def _clean_phrases(phrases: Any) -> List[str]:
    if isinstance(phrases, str) or not isinstance(phrases, (list, tuple)):
        return []
    cleaned: List[str] = []
    for phrase in phrases:
        if not isinstance(phrase, str):
            continue
        normalized = normalize_phrase(phrase)
        if normalized and normalized not in cleaned:
            cleaned.append(normalized)
    return cleaned


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_hit_threshold(value: Any) -> Optional[int]:
    number = _as_number(value)
    if number is None or not number.is_integer() or number < 1:
        return None
    return int(number)


def _as_time_window(value: Any) -> Optional[float]:
    number = _as_number(value)
    if number is None or number <= 0:
        return None
    return int(number) if number.is_integer() else number


# Values the hit accumulator depends on; anything it would refuse is refused here.
TRIGGER_VALUES: Dict[str, Callable[[Any], Any]] = {
    "hit_threshold": _as_hit_threshold,
    "time_window": _as_time_window,
}


def _coerce_trigger_values(values: Dict[str, Any]) -> List[str]:
    """Coerce trigger values in place and return the keys that could not be used."""

    invalid: List[str] = []
    for key, coerce in TRIGGER_VALUES.items():
        if key not in values:
            continue
        coerced = coerce(values[key])
        if coerced is None:
            invalid.append(key)
        else:
            values[key] = coerced
    return invalid


class SettingsStore:
    """Own the voice settings, persist every change and notify subscribers.

    Every mutation goes through :meth:`_apply`: the new settings object is
    built from a copy, the whole object is written to the store, and only
    after the write succeeds does it become current and are listeners called
    with ``(key, value, settings)``. A failed write leaves the previous
    settings in place and notifies nobody. Mutations are serialised by a lock
    so listeners observe changes in the order they were persisted.
    """

    def __init__(self, store: KeyValueStore, defaults: Optional[Settings] = None) -> None:
        self._store = store
        self._defaults: Dict[str, Any] = asdict(defaults or Settings())
        self._settings: Dict[str, Any] = copy.deepcopy(self._defaults)
        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()
        self.initialized = False

    async def initialize(self) -> bool:
        """Load persisted settings over the defaults."""

        try:
            raw = await self._store.get(SETTINGS_KEY)
        except Exception:
            logging.exception("Failed to load voice settings; using defaults")
            return False

        if raw is None:
            saved = await self._persist(self._settings)
            if saved:
                logging.info("Default voice settings saved")
            self.initialized = saved
            return saved

        try:
            stored = json.loads(raw)
        except json.JSONDecodeError as exc:
            logging.error("Stored voice settings are not valid JSON: %s", exc)
            return False
        if not isinstance(stored, dict):
            logging.error("Stored voice settings are not an object; using defaults")
            return False

        merged = self._merge(self._defaults, stored)
        for key in _coerce_trigger_values(merged):
            logging.warning("Stored %s is invalid; using the default %s", key, self._defaults[key])
            merged[key] = self._defaults[key]
        self._settings = merged
        self.initialized = True
        logging.info("Voice settings loaded from storage")
        return True

    @staticmethod
    def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        merged = copy.deepcopy(base)
        for key, value in overrides.items():
            if key in merged:
                merged[key] = copy.deepcopy(value)
            else:
                logging.debug("Dropping unknown stored setting %s", key)
        return merged

    # Reading ----------------------------------------------------------------

    def get_settings(self) -> Dict[str, Any]:
        return copy.deepcopy(self._settings)

    def get_setting(self, key: str) -> Any:
        return copy.deepcopy(self._settings.get(key))

    def snapshot(self) -> Settings:
        return Settings(**copy.deepcopy(self._settings))

    def get_speech_options(self) -> Dict[str, Any]:
        return {
            "language": self._settings["voice_language"],
            "rate": self._settings["voice_rate"],
            "pitch": self._settings["voice_pitch"],
            "volume": self._settings["voice_volume"],
        }

    # Listeners --------------------------------------------------------------

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)
        return lambda: self.remove_listener(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def cleanup(self) -> None:
        self._listeners.clear()

    def _notify(self, key: str, value: Any) -> None:
        for callback in list(self._listeners):
            try:
                callback(key, copy.deepcopy(value), self.get_settings())
            except Exception:
                logging.exception("Settings listener failed for %s", key)

    # Persistence ------------------------------------------------------------

    async def _persist(self, settings: Dict[str, Any]) -> bool:
        try:
            await self._store.set(SETTINGS_KEY, json.dumps(settings))
        except Exception:
            logging.exception("Failed to save voice settings")
            return False
        return True

    async def _apply(self, mutate: Mutation, event: Optional[str] = None) -> bool:
        async with self._lock:
            changes = mutate(copy.deepcopy(self._settings))
            if changes is None:
                return False
            updated = {**self._settings, **changes}
            if not await self._persist(updated):
                return False
            self._settings = updated
            if event is not None:
                self._notify(event, self._settings)
            else:
                for key, value in changes.items():
                    self._notify(key, value)
        return True

    # Updates ----------------------------------------------------------------

    def _prepare(self, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        unknown = [key for key in patch if key not in self._defaults]
        if unknown:
            logging.warning("Ignoring settings update with unknown keys: %s", ", ".join(unknown))
            return None
        prepared = copy.deepcopy(dict(patch))
        if "wake_phrases" in prepared:
            phrases = _clean_phrases(prepared["wake_phrases"])
            if not phrases:
                logging.warning("Refusing to replace wake phrases with an empty list")
                return None
            prepared["wake_phrases"] = phrases
        invalid = _coerce_trigger_values(prepared)
        if invalid:
            logging.warning("Refusing settings update with invalid values for: %s", ", ".join(invalid))
            return None
        return prepared

    async def update_setting(self, key: str, value: Any) -> bool:
        prepared = self._prepare({key: value})
        if prepared is None:
            return False
        updated = await self._apply(lambda _: prepared)
        if updated:
            logging.info("Setting updated: %s = %s", key, value)
        return updated

    async def update_settings(self, patch: Dict[str, Any]) -> bool:
        prepared = self._prepare(patch)
        if prepared is None:
            return False
        updated = await self._apply(lambda _: prepared)
        if updated:
            logging.info("Multiple settings updated: %s", sorted(patch))
        return updated

    async def reset_to_defaults(self) -> bool:
        reset = await self._apply(lambda _: copy.deepcopy(self._defaults), event="reset")
        if reset:
            logging.info("Settings reset to defaults")
        return reset

    # Wake phrases -----------------------------------------------------------

    async def add_wake_phrase(self, phrase: str) -> bool:
        normalized = normalize_phrase(phrase)
        if not normalized:
            return False

        def mutate(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            phrases = current["wake_phrases"]
            if normalized in phrases:
                return None
            return {"wake_phrases": [*phrases, normalized]}

        added = await self._apply(mutate)
        if added:
            logging.info('Wake phrase added: "%s"', normalized)
        return added

    async def remove_wake_phrase(self, phrase: str) -> bool:
        normalized = normalize_phrase(phrase)

        def mutate(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            phrases = current["wake_phrases"]
            if normalized not in phrases:
                return None
            if len(phrases) <= 1:
                logging.warning('Refusing to remove "%s": at least one wake phrase is required', normalized)
                return None
            return {"wake_phrases": [p for p in phrases if p != normalized]}

        removed = await self._apply(mutate)
        if removed:
            logging.info('Wake phrase removed: "%s"', normalized)
        return removed

    async def update_wake_phrases(self, phrases: List[str]) -> bool:
        return await self.update_setting("wake_phrases", phrases)

    # Custom commands --------------------------------------------------------

    async def add_custom_command(self, phrase: str, action: str, description: str = "") -> Optional[CustomCommand]:
        normalized = normalize_phrase(phrase)
        if not normalized or not action:
            return None
        command = CustomCommand(
            id=uuid.uuid4().hex,
            phrase=normalized,
            action=action,
            description=description,
        )

        def mutate(current: Dict[str, Any]) -> Dict[str, Any]:
            return {"custom_commands": [*current["custom_commands"], command.to_dict()]}

        if not await self._apply(mutate):
            return None
        logging.info('Custom command added: "%s" -> %s', normalized, action)
        return command

    async def remove_custom_command(self, command_id: str) -> bool:
        def mutate(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            commands = current["custom_commands"]
            remaining = [cmd for cmd in commands if cmd.get("id") != command_id]
            if len(remaining) == len(commands):
                return None
            return {"custom_commands": remaining}

        removed = await self._apply(mutate)
        if removed:
            logging.info("Custom command removed: %s", command_id)
        return removed

    async def update_custom_command(self, command_id: str, **updates: Any) -> bool:
        unknown = set(updates) - CUSTOM_COMMAND_FIELDS
        if unknown:
            logging.warning("Ignoring custom command update with unknown fields: %s", ", ".join(sorted(unknown)))
            return False
        if "phrase" in updates:
            updates["phrase"] = normalize_phrase(updates["phrase"])

        def mutate(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            commands = current["custom_commands"]
            for command in commands:
                if command.get("id") == command_id:
                    command.update(updates)
                    command["timestamp"] = datetime.now().isoformat()
                    return {"custom_commands": commands}
            return None

        return await self._apply(mutate)

    # Aliases ----------------------------------------------------------------

    async def add_command_alias(self, alias: str, phrase: str) -> bool:
        key = normalize_phrase(alias)
        target = normalize_phrase(phrase)
        if not key or not target:
            return False

        def mutate(current: Dict[str, Any]) -> Dict[str, Any]:
            aliases = current["command_aliases"]
            aliases[key] = target
            return {"command_aliases": aliases}

        added = await self._apply(mutate)
        if added:
            logging.info('Command alias added: "%s" -> "%s"', key, target)
        return added

    async def remove_command_alias(self, alias: str) -> bool:
        key = normalize_phrase(alias)

        def mutate(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            aliases = current["command_aliases"]
            if key not in aliases:
                return None
            del aliases[key]
            return {"command_aliases": aliases}

        return await self._apply(mutate)

    # Presets, import and export --------------------------------------------

    def get_voice_presets(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(VOICE_PRESETS)

    def get_available_languages(self) -> List[Dict[str, str]]:
        return [{"code": code, "name": name} for code, name in AVAILABLE_LANGUAGES]

    async def apply_voice_preset(self, preset_name: str) -> bool:
        preset = VOICE_PRESETS.get(preset_name)
        if preset is None:
            return False
        return await self.update_settings(
            {
                "voice_volume": preset["volume"],
                "voice_rate": preset["rate"],
                "voice_pitch": preset["pitch"],
                "voice_language": preset["language"],
            }
        )

    def export_settings(self) -> str:
        return json.dumps(
            {
                "settings": self._settings,
                "timestamp": datetime.now().isoformat(),
                "version": EXPORT_VERSION,
            },
            indent=2,
        )

    async def import_settings(self, payload: str) -> bool:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            logging.error("Cannot import settings: %s", exc)
            return False
        if not isinstance(data, dict) or not isinstance(data.get("settings"), dict) or not data.get("version"):
            logging.error("Cannot import settings: missing settings or version")
            return False

        incoming = {key: value for key, value in data["settings"].items() if key in self._defaults}
        prepared = self._prepare(incoming)
        if prepared is None:
            logging.error("Cannot import settings: invalid values")
            return False

        imported = await self._apply(lambda current: self._merge(current, prepared), event="import")
        if imported:
            logging.info("Settings imported successfully")
        return imported

    # Introspection ----------------------------------------------------------

    def get_settings_summary(self) -> Dict[str, Any]:
        return {
            "total_settings": len(self._settings),
            "wake_phrases_count": len(self._settings["wake_phrases"]),
            "custom_commands_count": len(self._settings["custom_commands"]),
            "command_aliases_count": len(self._settings["command_aliases"]),
            "voice_enabled": self._settings["voice_enabled"],
            "recognition_enabled": self._settings["recognition_enabled"],
            "commands_enabled": self._settings["commands_enabled"],
        }

    def validate_settings(self) -> Dict[str, Any]:
        s = self._settings
        errors: List[str] = []
        if not 0 <= s["voice_volume"] <= 1:
            errors.append("Voice volume must be between 0 and 1")
        if not 0.1 <= s["voice_rate"] <= 2.0:
            errors.append("Voice rate must be between 0.1 and 2.0")
        if not 0.5 <= s["voice_pitch"] <= 2.0:
            errors.append("Voice pitch must be between 0.5 and 2.0")
        if not 1 <= s["hit_threshold"] <= 10:
            errors.append("Hit threshold must be between 1 and 10")
        if not 1000 <= s["time_window"] <= 60000:
            errors.append("Time window must be between 1 and 60 seconds")
        if not s["wake_phrases"]:
            errors.append("At least one wake phrase is required")
        return {"is_valid": not errors, "errors": errors}
