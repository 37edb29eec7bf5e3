"""Device configuration: backend server, credentials and fixed location."""

from __future__ import annotations

import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, List

from .models import Config

CONFIG_PATH = (Path.home() / ".mummyhelp" / "config.json").expanduser()

SPEECH_BACKENDS = ("pyttsx3", "none")


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded, validated or saved."""


def config_problems(cfg: Config) -> List[str]:
    problems: List[str] = []
    if cfg.server_url and not cfg.server_url.startswith(("http://", "https://")):
        problems.append("server_url must start with http:// or https://")
    if (cfg.device_latitude is None) != (cfg.device_longitude is None):
        problems.append("device_latitude and device_longitude must be set together")
    if cfg.device_latitude is not None and not -90 <= cfg.device_latitude <= 90:
        problems.append("device_latitude must be between -90 and 90")
    if cfg.device_longitude is not None and not -180 <= cfg.device_longitude <= 180:
        problems.append("device_longitude must be between -180 and 180")
    if cfg.api_timeout <= 0:
        problems.append("api_timeout must be positive")
    if cfg.tracking_interval <= 0:
        problems.append("tracking_interval must be positive")
    if cfg.speech_backend not in SPEECH_BACKENDS:
        problems.append(f"speech_backend must be one of: {', '.join(SPEECH_BACKENDS)}")
    return problems


def _check(cfg: Config) -> Config:
    problems = config_problems(cfg)
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))
    if cfg.server_url:
        cfg.server_url = cfg.server_url.rstrip("/")
    return cfg


def _from_payload(payload: Dict[str, Any]) -> Config:
    known = {f.name for f in fields(Config)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    return Config(**payload)


def load_config() -> Config:
    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Configuration file must contain a JSON object")
    return _check(_from_payload(payload))


def save_config(config: Config) -> None:
    _check(config)
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    """Merge ``kwargs`` into the stored configuration; nothing is written if the result is invalid."""

    payload = asdict(load_config())
    payload.update(kwargs)
    config = _from_payload(payload)
    save_config(config)
    return config
