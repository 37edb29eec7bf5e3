import pytest

from fakes import FakeAlerts, FakeLocator, FakeNotifier, FakeTracker
from mummyhelp import config, storage
from mummyhelp.alerts import EscalationDispatcher


@pytest.fixture
def alerts():
    return FakeAlerts()


@pytest.fixture
def locator():
    return FakeLocator()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def tracker():
    return FakeTracker()


@pytest.fixture
def dispatcher(alerts, locator, notifier, tracker):
    return EscalationDispatcher(alerts, locator, notifier, tracker)


@pytest.fixture
def app_home(tmp_path, monkeypatch):
    """Point config and storage at a temporary home directory."""

    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "config.json")
    monkeypatch.setattr(storage, "DB_PATH", tmp_path / "store.db")
    return tmp_path
