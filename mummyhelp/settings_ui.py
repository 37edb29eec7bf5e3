from __future__ import annotations

import asyncio
from typing import Any, Dict

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import Button, Footer, Header, Input, Label, Select, Static, Switch

from .settings import AVAILABLE_LANGUAGES, SettingsStore
from .storage import KeyValueStore


class SettingsApp(App):
    CSS = """
    Screen {
        align: center top;
    }

    #voice-form {
        width: 64;
        max-height: 90%;
        margin: 1 0;
        border: round $accent;
        padding: 0 1;
    }

    .group {
        color: $secondary;
        text-style: bold underline;
        padding: 1 0 0 0;
    }

    .row {
        height: auto;
        padding: 0 0 0 1;
    }

    .row Label {
        width: 22;
        padding: 1 0;
    }

    .row Input, .row Select {
        width: 1fr;
    }

    #actions {
        height: auto;
        padding: 1 0;
        align-horizontal: right;
    }

    #actions Button {
        margin-left: 2;
    }
    """

    BINDINGS = [
        Binding("ctrl+s", "save", "Save"),
        Binding("escape", "app.quit", "Discard"),
    ]

    def __init__(self, settings: SettingsStore):
        super().__init__()
        self.settings = settings
        self.values = settings.get_settings()

    def _row(self, label: str, widget) -> Horizontal:
        return Horizontal(Label(label), widget, classes="row")

    def _number(self, label: str, key: str, value: Any) -> Horizontal:
        return self._row(label, Input(value=str(value), id=key, type="number"))

    def _toggle(self, label: str, key: str) -> Horizontal:
        return self._row(label, Switch(value=bool(self.values[key]), id=key))

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        languages = Select(
            [(name, code) for code, name in AVAILABLE_LANGUAGES],
            value=self.values["voice_language"],
            id="voice_language",
            allow_blank=False,
        )
        with VerticalScroll(id="voice-form"):
            yield Static("Spoken feedback", classes="group")
            yield self._toggle("Speak responses", "voice_enabled")
            yield self._number("Volume (0-1)", "voice_volume", self.values["voice_volume"])
            yield self._number("Rate (0.1-2)", "voice_rate", self.values["voice_rate"])
            yield self._number("Pitch (0.5-2)", "voice_pitch", self.values["voice_pitch"])
            yield self._row("Language", languages)

            yield Static("Wake phrase trigger", classes="group")
            yield Static("Phrases: " + ", ".join(self.values["wake_phrases"]))
            yield self._number("Hits needed", "hit_threshold", self.values["hit_threshold"])
            yield self._number("Window (seconds)", "time_window", self.values["time_window"] / 1000)
            yield self._toggle("Send without asking", "auto_emergency")

            yield Static("Voice commands", classes="group")
            yield self._toggle("Listen for commands", "commands_enabled")
            yield self._toggle("Keep listening", "continuous_listening")

            with Horizontal(id="actions"):
                yield Button("Discard", id="discard")
                yield Button("Save", variant="success", id="save")
        yield Footer()

    async def action_save(self) -> None:
        await self.save_settings()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "save":
            await self.save_settings()
        else:
            self.exit()

    def collect(self) -> Dict[str, Any]:
        patch: Dict[str, Any] = {
            key: self.query_one(f"#{key}", Switch).value
            for key in ("voice_enabled", "auto_emergency", "commands_enabled", "continuous_listening")
        }
        for key in ("voice_volume", "voice_rate", "voice_pitch"):
            patch[key] = float(self.query_one(f"#{key}", Input).value)
        patch["voice_language"] = str(self.query_one("#voice_language", Select).value)
        patch["hit_threshold"] = int(self.query_one("#hit_threshold", Input).value)
        patch["time_window"] = int(float(self.query_one("#time_window", Input).value) * 1000)
        return patch

    async def save_settings(self) -> None:
        try:
            patch = self.collect()
        except ValueError as exc:
            self.notify(f"Invalid value: {exc}", severity="error")
            return

        if not await self.settings.update_settings(patch):
            self.notify("Settings could not be saved", severity="error")
            return
        for error in self.settings.validate_settings()["errors"]:
            self.notify(error, severity="warning")
        self.exit(patch)


def show_settings_ui(store: KeyValueStore) -> None:
    settings = SettingsStore(store)
    asyncio.run(settings.initialize())
    SettingsApp(settings).run()
