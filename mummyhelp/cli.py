"""Command line interface for the mummyhelp application."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterator, NoReturn, Optional, TypeVar

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from . import config as config_mod
from . import storage as storage_mod
from .config import ConfigError
from .models import AlertSent, EmergencyBusy, CheckinBusy, Failure, NoMatch, Outcome
from .session import VoiceSession, build_session
from .settings import VOICE_PRESETS, SettingsStore
from .storage import StorageError

T = TypeVar("T")

app = typer.Typer(add_completion=False, help="Hands-free safety alerts triggered by voice.")
wake_app = typer.Typer(help="Manage wake phrases.")
alias_app = typer.Typer(help="Manage user command aliases.")
custom_app = typer.Typer(help="Manage custom voice commands.")
settings_app = typer.Typer(help="Inspect and change voice settings.")
app.add_typer(wake_app, name="wake")
app.add_typer(alias_app, name="alias")
app.add_typer(custom_app, name="custom")
app.add_typer(settings_app, name="settings")

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


def _fail(message: str, exc: Optional[BaseException] = None) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def _run(factory: Callable[[], Awaitable[T]]) -> T:
    try:
        return asyncio.run(factory())
    except (ConfigError, StorageError) as exc:
        _fail(str(exc), exc)


def _ensure_server_config(cfg: config_mod.Config) -> None:
    if not cfg.server_url:
        typer.secho(
            "No API server configured. Run `mummyhelp config --server-url https://host/api` first.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)


def _report_http_error(exc: httpx.HTTPError) -> None:
    detail = str(exc)
    status_text = ""
    if getattr(exc, "response", None) is not None:
        response = exc.response
        status_text = f"{response.status_code} {response.request.method} {response.request.url}"
        try:
            payload = response.json()
            detail = payload.get("message") or payload.get("detail") or detail
        except ValueError:
            detail = response.text or detail
    typer.secho(f"Request to API failed ({status_text}): {detail}", fg=typer.colors.RED, err=True)


@contextmanager
def _api_client(cfg: config_mod.Config) -> Iterator[httpx.Client]:
    _ensure_server_config(cfg)
    headers: Dict[str, str] = {}
    if cfg.server_token:
        headers["Authorization"] = f"Bearer {cfg.server_token}"
    with httpx.Client(
        base_url=cfg.server_url.rstrip("/"),
        headers=headers,
        timeout=cfg.api_timeout,
        verify=cfg.verify_ssl,
    ) as client:
        yield client


def _open_store() -> storage_mod.Storage:
    return storage_mod.Storage(storage_mod.DB_PATH)


async def _open_settings() -> SettingsStore:
    store = SettingsStore(_open_store())
    if not await store.initialize():
        raise StorageError("Could not load voice settings.")
    return store


async def _open_session(**callbacks: Any) -> VoiceSession:
    cfg = config_mod.load_config()
    session = build_session(cfg, _open_store(), **callbacks)
    await session.initialize()
    return session


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _print_outcome(outcome: Outcome) -> None:
    if isinstance(outcome, Failure):
        colour = typer.colors.RED
    elif isinstance(outcome, (EmergencyBusy, CheckinBusy, NoMatch)):
        colour = typer.colors.YELLOW
    elif isinstance(outcome, AlertSent):
        colour = typer.colors.GREEN
    else:
        colour = typer.colors.BLUE
    line = f"[{outcome.type}] {outcome.message}"
    if isinstance(outcome, Failure) and outcome.error:
        line += f" ({outcome.error})"
    typer.secho(line, fg=colour)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(f"mummyhelp v{__version__}")
        raise typer.Exit()

    _configure_logging(verbose)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def listen(
    source: Optional[Path] = typer.Argument(
        None, exists=True, readable=True, help="Transcript file to replay; reads stdin when omitted."
    ),
) -> None:
    """Feed recognised text, one utterance per line, into a voice session."""

    def show_status(info: Dict[str, Any]) -> None:
        if info["status"] in ("wake_phrase", "emergency", "error", "disabled"):
            typer.secho(f"* {info['message']}", fg=typer.colors.MAGENTA, err=True)

    async def run() -> None:
        session = await _open_session(on_status_change=show_status)
        try:
            if not await session.start_listening():
                _fail("Voice recognition is disabled. Enable it with `mummyhelp settings set recognition_enabled true`.")
            stream = source.open() if source is not None else sys.stdin
            try:
                for line in stream:
                    text = line.strip()
                    if not text:
                        continue
                    for outcome in await session.on_text_detected(text):
                        _print_outcome(outcome)
                    if not session.is_listening:
                        break
            finally:
                if source is not None:
                    stream.close()
        finally:
            await session.close()

    _run(run)


@app.command()
def status() -> None:
    """Show trigger, command and alert state."""

    async def run() -> Dict[str, Any]:
        session = await _open_session()
        try:
            return session.get_status()
        finally:
            await session.close()

    typer.echo(json.dumps(_run(run), indent=2, default=str))


@app.command("commands")
def commands_command() -> None:
    """List the voice commands that are currently recognised."""

    async def run() -> list:
        session = await _open_session()
        try:
            return session.registry.get_commands()
        finally:
            await session.close()

    table = Table(title="Voice commands")
    table.add_column("Phrase", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("Description")
    for entry in _run(run):
        table.add_row(entry["phrase"], entry["action"], entry["description"])
    console.print(table)


@app.command()
def match(text: str = typer.Argument(..., help="Utterance to match.")) -> None:
    """Show which command an utterance resolves to without running it."""

    async def run():
        session = await _open_session()
        try:
            return session.registry.match(text)
        finally:
            await session.close()

    result = _run(run)
    if result is None:
        typer.secho(f'No command matches "{text}".', fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    typer.echo(
        f'{result.tier.value}: "{result.entry.phrase}" -> {result.entry.action} (score {result.score:.2f})'
    )


# Wake phrases --------------------------------------------------------------


@wake_app.command("list")
def wake_list() -> None:
    """List configured wake phrases."""

    store = _run(_open_settings)
    for phrase in store.get_setting("wake_phrases"):
        typer.echo(phrase)


@wake_app.command("add")
def wake_add(phrase: str = typer.Argument(..., help="Phrase to listen for.")) -> None:
    """Add a wake phrase."""

    async def run() -> bool:
        return await (await _open_settings()).add_wake_phrase(phrase)

    if not _run(run):
        _fail(f'Could not add "{phrase}"; it may already be configured.')
    typer.secho(f'Wake phrase "{phrase.lower().strip()}" added.', fg=typer.colors.BLUE)


@wake_app.command("remove")
def wake_remove(phrase: str = typer.Argument(..., help="Phrase to remove.")) -> None:
    """Remove a wake phrase. The last phrase cannot be removed."""

    async def run() -> bool:
        return await (await _open_settings()).remove_wake_phrase(phrase)

    if not _run(run):
        _fail(f'Could not remove "{phrase}"; it is unknown or the last wake phrase.')
    typer.secho(f'Wake phrase "{phrase.lower().strip()}" removed.', fg=typer.colors.BLUE)


# Aliases -------------------------------------------------------------------


@alias_app.command("add")
def alias_add(
    alias: str = typer.Argument(..., help="Alternate wording."),
    phrase: str = typer.Argument(..., help="Existing command phrase it stands for."),
) -> None:
    """Map an alternate wording onto an existing command."""

    async def run() -> bool:
        return await (await _open_settings()).add_command_alias(alias, phrase)

    if not _run(run):
        _fail("Could not save the alias.")
    typer.secho(f'Alias "{alias}" -> "{phrase}" saved.', fg=typer.colors.BLUE)


@alias_app.command("remove")
def alias_remove(alias: str = typer.Argument(..., help="Alias to remove.")) -> None:
    """Remove a user alias."""

    async def run() -> bool:
        return await (await _open_settings()).remove_command_alias(alias)

    if not _run(run):
        _fail(f'No alias "{alias}" found.')
    typer.secho(f'Alias "{alias}" removed.', fg=typer.colors.BLUE)


# Custom commands -----------------------------------------------------------


@custom_app.command("list")
def custom_list() -> None:
    """List custom commands."""

    store = _run(_open_settings)
    commands = store.get_setting("custom_commands")
    if not commands:
        typer.echo("No custom commands. Use `mummyhelp custom add` to create one.")
        return
    table = Table()
    table.add_column("ID", style="dim")
    table.add_column("Phrase", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("Enabled")
    for command in commands:
        table.add_row(command["id"], command["phrase"], command["action"], "yes" if command.get("enabled") else "no")
    console.print(table)


@custom_app.command("add")
def custom_add(
    phrase: str = typer.Argument(..., help="Phrase that triggers the command."),
    action: str = typer.Argument(..., help="Action to run, e.g. checkin or share_location."),
    description: str = typer.Option("", "--description", "-d", help="Shown in the command list."),
) -> None:
    """Add a custom command."""

    async def run():
        return await (await _open_settings()).add_custom_command(phrase, action, description)

    command = _run(run)
    if command is None:
        _fail("Could not save the custom command.")
    typer.secho(f"Custom command {command.id} added.", fg=typer.colors.BLUE)


@custom_app.command("remove")
def custom_remove(command_id: str = typer.Argument(..., help="Identifier shown by `custom list`.")) -> None:
    """Remove a custom command."""

    async def run() -> bool:
        return await (await _open_settings()).remove_custom_command(command_id)

    if not _run(run):
        _fail(f"No custom command {command_id} found.")
    typer.secho(f"Custom command {command_id} removed.", fg=typer.colors.BLUE)


# Settings ------------------------------------------------------------------


@settings_app.command("show")
def settings_show() -> None:
    """Print all voice settings."""

    store = _run(_open_settings)
    typer.echo(json.dumps(store.get_settings(), indent=2))
    report = store.validate_settings()
    for error in report["errors"]:
        typer.secho(f"warning: {error}", fg=typer.colors.YELLOW, err=True)


@settings_app.command("set")
def settings_set(
    key: str = typer.Argument(..., help="Setting name."),
    value: str = typer.Argument(..., help="New value; parsed as JSON when possible."),
) -> None:
    """Change one voice setting."""

    async def run() -> bool:
        return await (await _open_settings()).update_setting(key, _parse_value(value))

    if not _run(run):
        _fail(f"Could not update {key}.")
    typer.secho(f"{key} updated.", fg=typer.colors.BLUE)


@settings_app.command("reset")
def settings_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Restore every voice setting to its default."""

    if not yes:
        typer.confirm("Reset all voice settings to defaults?", abort=True)

    async def run() -> bool:
        return await (await _open_settings()).reset_to_defaults()

    if not _run(run):
        _fail("Could not reset settings.")
    typer.secho("Settings reset to defaults.", fg=typer.colors.BLUE)


@settings_app.command("preset")
def settings_preset(name: Optional[str] = typer.Argument(None, help="Preset to apply; lists presets when omitted.")) -> None:
    """Apply a voice preset."""

    if name is None:
        for key, preset in VOICE_PRESETS.items():
            typer.echo(f"{key:<10} {preset['name']}")
        return
    if name not in VOICE_PRESETS:
        _fail(f"Unknown preset '{name}'. Choose from: {', '.join(VOICE_PRESETS)}.")

    async def run() -> bool:
        return await (await _open_settings()).apply_voice_preset(name)

    if not _run(run):
        _fail("Could not apply preset.")
    typer.secho(f"Preset '{VOICE_PRESETS[name]['name']}' applied.", fg=typer.colors.BLUE)


@settings_app.command("export")
def settings_export(
    output: Optional[Path] = typer.Argument(None, help="File to write; prints to stdout when omitted."),
) -> None:
    """Export voice settings as JSON."""

    payload = _run(_open_settings).export_settings()
    if output is None:
        typer.echo(payload)
        return
    output.write_text(payload)
    typer.secho(f"Settings exported to {output}.", fg=typer.colors.BLUE)


@settings_app.command("import")
def settings_import(
    source: Path = typer.Argument(..., exists=True, readable=True, help="File produced by `settings export`."),
) -> None:
    """Import voice settings from an export file."""

    async def run() -> bool:
        return await (await _open_settings()).import_settings(source.read_text())

    if not _run(run):
        _fail(f"Could not import settings from {source}.")
    typer.secho("Settings imported.", fg=typer.colors.BLUE)


@settings_app.command("ui")
def settings_ui() -> None:
    """Open the interactive settings editor."""

    try:
        from .settings_ui import show_settings_ui
    except ImportError as exc:
        _fail("Missing dependencies for the settings UI. Install `textual`.", exc)

    try:
        show_settings_ui(_open_store())
    except Exception as exc:
        _fail(f"Settings UI failed: {exc}", exc)


# Configuration and server --------------------------------------------------


@app.command()
def config(
    server_url: Optional[str] = typer.Option(None, help="Base URL of the alert backend."),
    server_token: Optional[str] = typer.Option(None, help="Bearer token for the alert backend."),
    verify_ssl: Optional[bool] = typer.Option(
        None,
        "--verify-ssl/--no-verify-ssl",
        help="Toggle TLS certificate verification for API calls.",
    ),
    api_timeout: Optional[float] = typer.Option(None, help="HTTP client timeout (seconds) for API calls."),
    device_latitude: Optional[float] = typer.Option(None, help="Latitude of this device."),
    device_longitude: Optional[float] = typer.Option(None, help="Longitude of this device."),
    device_address: Optional[str] = typer.Option(None, help="Human readable address of this device."),
    tracking_interval: Optional[float] = typer.Option(None, help="Seconds between location reports after an alert."),
    speech_backend: Optional[str] = typer.Option(None, help="Spoken feedback engine (pyttsx3 or none)."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "server_url": server_url,
            "server_token": server_token,
            "verify_ssl": verify_ssl,
            "api_timeout": api_timeout,
            "device_latitude": device_latitude,
            "device_longitude": device_longitude,
            "device_address": device_address,
            "tracking_interval": tracking_interval,
            "speech_backend": speech_backend,
        }.items()
        if value is not None
    }

    if show or not updates:
        try:
            cfg = config_mod.load_config()
        except ConfigError as exc:
            _fail(str(exc), exc)
        typer.echo(json.dumps(asdict(cfg), indent=2, default=str))
        return

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        _fail(str(exc), exc)
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def login(
    token: Optional[str] = typer.Option(
        None,
        "--token",
        help="API token for authenticating with the alert backend.",
        prompt=True,
        hide_input=True,
    ),
) -> None:
    """Persist the API bearer token for server requests."""

    try:
        config_mod.update_config(server_token=token or None)
    except ConfigError as exc:
        _fail(str(exc), exc)
    typer.secho("Server token stored.", fg=typer.colors.BLUE)


@app.command()
def health() -> None:
    """Check connectivity to the configured alert backend."""

    cfg = config_mod.load_config()
    try:
        with _api_client(cfg) as client:
            response = client.get("/health")
            response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    payload = response.json()
    typer.echo(f"Status: {payload.get('status', 'unknown')}")
    if payload.get("message"):
        typer.echo(f"Message: {payload['message']}")


@app.command()
def setup() -> None:
    """Run the interactive setup wizard."""

    from .onboarding import run_onboarding

    try:
        run_onboarding(_open_store())
    except (ConfigError, StorageError) as exc:
        _fail(f"Setup failed: {exc}", exc)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8000, help="Port to listen on."),
) -> None:  # pragma: no cover - starts a server
    """Serve the session over HTTP."""

    import uvicorn

    uvicorn.run("mummyhelp.api:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    app()
