"""Collaborators the core calls out to: backend API, location, tracking and notifications."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

import httpx
from rich.console import Console
from rich.panel import Panel

from .config import ConfigError
from .models import Config, Location


class AlertClient(Protocol):
    async def create_alert_with_location(self, alert: Dict[str, Any], location: Optional[Location]) -> Dict[str, Any]:
        """Submit an alert; the reply carries ``success``, ``data.alert.id`` and ``message``."""

    async def cancel_alert(self, alert_id: Any) -> Dict[str, Any]:
        """Cancel a previously submitted alert."""


class LocationProvider(Protocol):
    async def get_current_location_with_address(self) -> Optional[Location]:
        """Return the current position or ``None`` when it cannot be determined."""

    async def send_location_to_backend(self, location: Location) -> bool:
        """Share ``location`` with the backend."""


class LocationTracker(Protocol):
    async def start_background_location(self) -> bool:
        """Begin periodic location reporting."""

    async def stop_background_location(self) -> bool:
        """Stop periodic location reporting."""


class Notifier(Protocol):
    async def send_local_notification(self, title: str, body: str, data: Dict[str, Any]) -> None:
        """Show a notification on this device."""


class BackendClient:
    """Async HTTP client for the alert backend."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    @classmethod
    def from_config(cls, cfg: Config) -> "BackendClient":
        if not cfg.server_url:
            raise ConfigError("No API server configured. Run `mummyhelp config --server-url https://host/api` first.")
        return cls(cfg.server_url, token=cfg.server_token, timeout=cfg.api_timeout, verify=cfg.verify_ssl)

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json()

    async def create_alert_with_location(self, alert: Dict[str, Any], location: Optional[Location]) -> Dict[str, Any]:
        payload = dict(alert)
        if location is not None:
            payload.update(
                latitude=location.latitude,
                longitude=location.longitude,
                accuracy=location.accuracy,
                address=location.address,
            )
        return await self._request("POST", "/alerts/create", json=payload)

    async def cancel_alert(self, alert_id: Any) -> Dict[str, Any]:
        return await self._request("PUT", f"/alerts/{alert_id}/cancel")

    async def create_location(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/locations", json=payload)

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/health")


class OfflineAlertClient:
    """Stand-in used until a server is configured; every call fails."""

    async def create_alert_with_location(self, alert: Dict[str, Any], location: Optional[Location]) -> Dict[str, Any]:
        raise ConfigError("No API server configured. Run `mummyhelp config --server-url https://host/api` first.")

    async def cancel_alert(self, alert_id: Any) -> Dict[str, Any]:
        raise ConfigError("No API server configured. Run `mummyhelp config --server-url https://host/api` first.")


def clean_location_payload(location: Location) -> Optional[Dict[str, Any]]:
    """Validate and round a location the way the backend expects it."""

    try:
        lat = float(location.latitude)
        lng = float(location.longitude)
    except (TypeError, ValueError):
        logging.error("Invalid location data - missing or invalid lat/lng: %s", location)
        return None
    if lat != lat or lng != lng or not -90 <= lat <= 90 or not -180 <= lng <= 180:
        logging.error("Location coordinates out of valid range: %s, %s", lat, lng)
        return None

    payload: Dict[str, Any] = {"latitude": round(lat, 6), "longitude": round(lng, 6)}
    if location.accuracy is not None and location.accuracy > 0:
        payload["accuracy"] = round(float(location.accuracy), 2)
    # A heading of -1 means the platform had no bearing.
    if location.heading is not None and 0 <= location.heading <= 360:
        payload["heading"] = round(float(location.heading), 1)
    if location.speed is not None and location.speed >= 0:
        payload["speed"] = round(float(location.speed), 2)
    if location.altitude is not None:
        payload["altitude"] = round(float(location.altitude), 1)
    return payload


class FixedLocationProvider:
    """Location source for a device installed at a known place."""

    def __init__(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        address: Optional[str] = None,
        accuracy: Optional[float] = None,
        backend: Optional[BackendClient] = None,
    ) -> None:
        self.latitude = latitude
        self.longitude = longitude
        self.address = address
        self.accuracy = accuracy
        self._backend = backend

    @classmethod
    def from_config(cls, cfg: Config, backend: Optional[BackendClient] = None) -> "FixedLocationProvider":
        return cls(cfg.device_latitude, cfg.device_longitude, cfg.device_address, backend=backend)

    async def get_current_location_with_address(self) -> Optional[Location]:
        if self.latitude is None or self.longitude is None:
            logging.warning("No device location configured")
            return None
        return Location(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            address=self.address,
            timestamp=datetime.now().isoformat(),
        )

    async def send_location_to_backend(self, location: Location) -> bool:
        if self._backend is None:
            logging.error("No backend configured for location sharing")
            return False
        payload = clean_location_payload(location)
        if payload is None:
            return False
        try:
            response = await self._backend.create_location(payload)
        except httpx.HTTPError as exc:
            logging.error("Error sending location to backend: %s", exc)
            return False
        if not response.get("success"):
            logging.warning("Failed to send location to backend: %s", response.get("message"))
            return False
        return True


class BackgroundLocationTracker:
    """Report the location periodically from an asyncio task."""

    def __init__(self, locator: LocationProvider, interval: float = 5.0) -> None:
        self._locator = locator
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start_background_location(self) -> bool:
        if self.is_active:
            return True
        self._task = asyncio.create_task(self._run())
        logging.info("Background location tracking started")
        return True

    async def stop_background_location(self) -> bool:
        if self._task is None:
            return False
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logging.info("Background location tracking stopped")
        return True

    async def _run(self) -> None:
        while True:
            try:
                location = await self._locator.get_current_location_with_address()
                if location is not None:
                    await self._locator.send_location_to_backend(location)
            except Exception:
                logging.exception("Error in background location task")
            await asyncio.sleep(self.interval)


class ConsoleNotifier:
    """Render local notifications in the terminal."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console(stderr=True)

    async def send_local_notification(self, title: str, body: str, data: Dict[str, Any]) -> None:
        kind = str(data.get("type", ""))
        style = "red" if "failed" in kind or "emergency" in kind or "alert_sent" in kind else "green"
        self._console.print(Panel(body, title=title, border_style=style, expand=False))
