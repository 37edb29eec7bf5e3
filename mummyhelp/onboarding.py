from __future__ import annotations

import asyncio
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table
from rich.text import Text

from .config import CONFIG_PATH, config_problems, load_config, save_config
from .models import Config, Settings
from .settings import SettingsStore
from .storage import KeyValueStore


async def _save_voice_settings(store: KeyValueStore, wake_phrases: List[str], hit_threshold: int) -> bool:
    settings = SettingsStore(store)
    await settings.initialize()
    return await settings.update_settings({"wake_phrases": wake_phrases, "hit_threshold": hit_threshold})


def _ask_optional_float(label: str, current: Optional[float]) -> Optional[float]:
    default = "" if current is None else str(current)
    while True:
        raw = Prompt.ask(label, default=default, show_default=current is not None)
        if not raw.strip():
            return None
        try:
            return float(raw)
        except ValueError:
            Console().print("[red]Please enter a number.[/red]")


def run_onboarding(store: KeyValueStore) -> Config:
    console = Console()

    console.clear()

    welcome_text = Text()
    welcome_text.append("🆘 Welcome to mummyhelp!\n\n", style="bold cyan")
    welcome_text.append("Say your wake phrase a few times and help is on the way\n", style="dim")

    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    config = load_config()

    console.rule("[bold]Alert Server[/bold]", align="left")
    console.print("Alerts and check-ins are sent to your family's backend.")
    while True:
        config.server_url = Prompt.ask("Server URL", default=config.server_url or "").strip() or None
        if not config.server_url or config.server_url.startswith(("http://", "https://")):
            break
        console.print("[red]The server URL must start with http:// or https://[/red]")
    if config.server_url:
        token = Prompt.ask("API token (leave blank to keep)", password=True, default="", show_default=False)
        if token:
            config.server_token = token

    console.rule("[bold]Device Location[/bold]", align="left")
    console.print("Where is this device? The location is attached to every alert.")
    while True:
        config.device_latitude = _ask_optional_float("Latitude", config.device_latitude)
        config.device_longitude = _ask_optional_float("Longitude", config.device_longitude)
        problems = [problem for problem in config_problems(config) if problem.startswith("device_")]
        if not problems:
            break
        for problem in problems:
            console.print(f"[red]{problem}[/red]")
    address = Prompt.ask("Address (optional)", default=config.device_address or "")
    config.device_address = address.strip() or None

    console.rule("[bold]Spoken Feedback[/bold]", align="left")
    console.print("  1. Speak confirmations aloud (requires pyttsx3)")
    console.print("  2. Silent")
    console.print()
    speech_choice = Prompt.ask("Select option", choices=["1", "2"], default="1" if config.speech_backend != "none" else "2")
    config.speech_backend = "pyttsx3" if speech_choice == "1" else "none"

    console.rule("[bold]Wake Phrases[/bold]", align="left")
    defaults = Settings()
    wake_phrases = list(defaults.wake_phrases)
    console.print("Default phrases: " + ", ".join(f'"{p}"' for p in wake_phrases))
    while Confirm.ask("Add another wake phrase?", default=False):
        phrase = Prompt.ask("Phrase").lower().strip()
        if phrase and phrase not in wake_phrases:
            wake_phrases.append(phrase)

    hit_threshold = IntPrompt.ask(
        f"How many times must a phrase be heard within {defaults.time_window // 1000} seconds",
        default=defaults.hit_threshold,
    )
    hit_threshold = max(1, hit_threshold)

    console.print()
    console.print("[bold green]✓ Setup Complete![/bold green]")
    console.print()

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()

    summary.add_row("Server:", config.server_url or "not configured")
    if config.device_latitude is not None and config.device_longitude is not None:
        summary.add_row("Location:", f"{config.device_latitude}, {config.device_longitude}")
    else:
        summary.add_row("Location:", "not configured")
    summary.add_row("Speech:", config.speech_backend)
    summary.add_row("Wake phrases:", ", ".join(wake_phrases))
    summary.add_row("Hits needed:", str(hit_threshold))

    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if Confirm.ask("Save this configuration?", default=True):
        save_config(config)
        if not asyncio.run(_save_voice_settings(store, wake_phrases, hit_threshold)):
            console.print("[red]Voice settings could not be saved.[/red]")
        console.print("[green]Configuration saved to[/green]", CONFIG_PATH)
        console.print()
        console.print("[bold]To start listening, run:[/bold]")
        console.print("  [cyan]mummyhelp listen[/cyan]")
        console.print()
        console.print("[bold]To serve the HTTP API, run:[/bold]")
        console.print("  [cyan]mummyhelp serve[/cyan]")
        console.print()
        return config
    else:
        console.print("[yellow]Configuration not saved. Run 'mummyhelp setup' to try again.[/yellow]")
        return config
