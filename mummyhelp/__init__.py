"""Top-level package for mummyhelp."""

__version__ = "0.1.0"

from . import alerts, commands, config, settings, storage, trigger  # noqa: E402

__all__ = ["alerts", "commands", "config", "settings", "storage", "trigger", "__version__"]
