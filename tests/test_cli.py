import json

import pytest
from typer.testing import CliRunner

from mummyhelp import config
from mummyhelp.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def home(app_home):
    config.save_config(config.Config(speech_backend="none", device_latitude=51.5, device_longitude=-0.12))
    return app_home


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert "mummyhelp v" in result.stdout


def test_wake_phrase_commands():
    assert runner.invoke(app, ["wake", "add", "Mama Come"]).exit_code == 0
    assert runner.invoke(app, ["wake", "add", "mama come"]).exit_code == 1

    listed = runner.invoke(app, ["wake", "list"]).stdout.splitlines()
    assert listed[-1] == "mama come"


def test_match_shows_tier():
    result = runner.invoke(app, ["match", "please check in now"])

    assert result.exit_code == 0
    assert 'alias: "check in" -> checkin' in result.stdout

    assert runner.invoke(app, ["match", "xyzzy"]).exit_code == 1


def test_settings_set_and_show():
    assert runner.invoke(app, ["settings", "set", "hit_threshold", "5"]).exit_code == 0
    assert runner.invoke(app, ["settings", "set", "hotkey", "fn"]).exit_code == 1

    shown = json.loads(runner.invoke(app, ["settings", "show"]).stdout)
    assert shown["hit_threshold"] == 5


def test_settings_export_and_import(home):
    runner.invoke(app, ["settings", "preset", "slow"])
    export_path = home / "voice.json"
    assert runner.invoke(app, ["settings", "export", str(export_path)]).exit_code == 0

    runner.invoke(app, ["settings", "reset", "--yes"])
    assert runner.invoke(app, ["settings", "import", str(export_path)]).exit_code == 0

    shown = json.loads(runner.invoke(app, ["settings", "show"]).stdout)
    assert shown["voice_rate"] == 0.7


def test_listen_replays_transcript(home):
    transcript = home / "transcript.txt"
    transcript.write_text("mummy help\n\nwhat time is it\nmummy help\n")

    result = runner.invoke(app, ["listen", str(transcript)])

    assert result.exit_code == 0
    assert result.stdout.count("[single_hit]") == 2


def test_config_update_and_show():
    assert runner.invoke(app, ["config", "--server-url", "https://alerts.example/api"]).exit_code == 0

    shown = json.loads(runner.invoke(app, ["config", "--show"]).stdout)
    assert shown["server_url"] == "https://alerts.example/api"
    assert shown["speech_backend"] == "none"


def test_health_requires_server():
    result = runner.invoke(app, ["health"])

    assert result.exit_code == 1
