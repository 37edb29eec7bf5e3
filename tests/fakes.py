import asyncio
from typing import Any, Dict, List, Optional

from mummyhelp.models import Location
from mummyhelp.storage import StorageError

HOME = Location(latitude=51.507351, longitude=-0.127758, accuracy=12.0, address="10 Downing Street, London")


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data = dict(initial or {})
        self.fail_writes = False
        self.writes = 0

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageError("disk full")
        self.writes += 1
        self.data[key] = value


class FakeAlerts:
    def __init__(self, response: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None, gated=False):
        self.response = response if response is not None else {"success": True, "data": {"alert": {"id": "alert-1"}}}
        self.error = error
        self.gated = gated
        self.gates: List[asyncio.Event] = []
        self.calls: List[Any] = []
        self.cancelled: List[Any] = []

    async def create_alert_with_location(self, alert, location):
        self.calls.append((alert, location))
        if self.gated:
            gate = asyncio.Event()
            self.gates.append(gate)
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.response

    async def cancel_alert(self, alert_id):
        self.cancelled.append(alert_id)
        return {"success": True}


class FakeLocator:
    def __init__(self, location: Optional[Location] = HOME, sent: bool = True, error: Optional[Exception] = None):
        self.location = location
        self.sent = sent
        self.error = error
        self.shared: List[Location] = []

    async def get_current_location_with_address(self):
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.location

    async def send_location_to_backend(self, location):
        self.shared.append(location)
        return self.sent


class FakeTracker:
    def __init__(self):
        self.started = 0
        self.stopped = 0

    async def start_background_location(self):
        self.started += 1
        return True

    async def stop_background_location(self):
        self.stopped += 1
        return True


class FakeNotifier:
    def __init__(self):
        self.notifications: List[Any] = []

    async def send_local_notification(self, title, body, data):
        self.notifications.append((title, body, data))

    @property
    def titles(self):
        return [title for title, _, _ in self.notifications]


class FakeSpeaker:
    def __init__(self, error: Optional[Exception] = None):
        self.spoken: List[str] = []
        self.options: List[Dict[str, Any]] = []
        self.error = error

    async def speak(self, text, options):
        if self.error is not None:
            raise self.error
        self.spoken.append(text)
        self.options.append(options)
