"""Escalation dispatch: turns detections and commands into outbound alerts."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Type

from .models import (
    AlertSent,
    AlertStatus,
    CheckinFailed,
    CheckinSent,
    DispatchState,
    EmergencyCancelled,
    EmergencyConfirmed,
    EmergencyFailed,
    EmergencySent,
    Failure,
    Location,
    Outcome,
    SingleHit,
)
from .services import AlertClient, LocationProvider, LocationTracker, Notifier

ALERT_FAILED_MESSAGE = "Failed to send emergency alert. Please try again."


class EscalationDispatcher:
    """Single choke point for network-visible alert actions.

    At most one dispatch is in flight. The guard is taken synchronously as the
    first statement of each entry point, before any ``await``, so a second
    request scheduled on the same loop always observes it and is dropped
    (logged, returns ``None``). Each acquisition gets a token and only the
    holder of the current token releases the guard, so a cancellation that
    frees the guard early cannot be undone by the dispatch it interrupted.
    """

    def __init__(
        self,
        alerts: AlertClient,
        locator: LocationProvider,
        notifier: Notifier,
        tracker: Optional[LocationTracker] = None,
    ) -> None:
        self._alerts = alerts
        self._locator = locator
        self._notifier = notifier
        self._tracker = tracker
        self._state = DispatchState.IDLE
        self._token = 0
        self.current_alert_id: Optional[Any] = None

    # Guard ------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self._state is DispatchState.DISPATCHING

    def _try_acquire(self) -> Optional[int]:
        if self._state is DispatchState.DISPATCHING:
            logging.info("Alert already being processed; dropping request")
            return None
        self._state = DispatchState.DISPATCHING
        self._token += 1
        return self._token

    def _release(self, token: int) -> None:
        if token == self._token:
            self._state = DispatchState.IDLE

    # Entry points -----------------------------------------------------------

    async def handle_single_hit(self) -> Optional[SingleHit]:
        if self.is_processing:
            logging.info("Alert already being processed; not prompting")
            return None
        logging.info("Single hit detected - requesting confirmation")
        return SingleHit(message="Wake phrase detected. Please confirm emergency alert.")

    async def handle_emergency(self) -> Optional[Outcome]:
        """Send an alert because the hit threshold was reached."""

        token = self._try_acquire()
        if token is None:
            return None
        logging.warning("Emergency threshold reached - sending alert automatically")
        try:
            result = await self._send_emergency(
                "Emergency alert triggered by voice command",
                EmergencySent,
                "Emergency alert sent automatically!",
            )
            if isinstance(result, Failure):
                await self._notify(
                    "❌ Alert Failed",
                    ALERT_FAILED_MESSAGE,
                    {"type": "alert_failed", "error": result.error},
                )
            return result
        finally:
            self._release(token)

    async def handle_emergency_confirmed(self) -> Optional[Outcome]:
        """Send an alert the user confirmed; the caller reports failures itself."""

        token = self._try_acquire()
        if token is None:
            return None
        logging.info("User confirmed emergency alert")
        try:
            return await self._send_emergency(
                "Emergency alert confirmed by user",
                EmergencyConfirmed,
                "Emergency alert sent! Your parent has been notified.",
            )
        finally:
            self._release(token)

    async def handle_emergency_cancelled(self) -> EmergencyCancelled:
        logging.info("User cancelled emergency alert")
        self._state = DispatchState.IDLE
        return EmergencyCancelled(message="Emergency alert cancelled.")

    async def send_checkin(self) -> Optional[Outcome]:
        """Tell the backend the user is safe."""

        token = self._try_acquire()
        if token is None:
            return None
        try:
            location = await self._current_location()
            if location is None:
                return CheckinFailed(message="Location not available", error="Could not get current location")
            result = await self._submit(
                {"type": "checkin", "message": "Check-in message: I am safe and well"},
                location,
                CheckinSent,
                "Check-in message sent successfully",
                CheckinFailed,
                "Failed to send check-in message",
            )
            if isinstance(result, CheckinSent):
                await self._notify(
                    "✅ Check-in Sent!",
                    "Your parent has been notified that you are safe.",
                    {"type": "checkin_sent"},
                )
            return result
        finally:
            self._release(token)

    async def cancel_current_alert(self) -> bool:
        if self.current_alert_id is None:
            logging.info("No current alert to cancel")
            return False
        try:
            response = await self._alerts.cancel_alert(self.current_alert_id)
        except Exception:
            logging.exception("Error cancelling alert %s", self.current_alert_id)
            return False
        if not response.get("success"):
            logging.warning("Failed to cancel alert: %s", response.get("message"))
            return False
        logging.info("Alert %s cancelled", self.current_alert_id)
        self.current_alert_id = None
        if self._tracker is not None:
            try:
                await self._tracker.stop_background_location()
            except Exception:
                logging.exception("Failed to stop background location tracking")
        return True

    def get_current_alert_status(self) -> AlertStatus:
        return AlertStatus(
            is_processing=self.is_processing,
            current_alert_id=self.current_alert_id,
            has_active_alert=self.current_alert_id is not None,
        )

    def reset(self) -> None:
        self._state = DispatchState.IDLE
        self.current_alert_id = None
        logging.info("Alert handlers reset")

    # Internals --------------------------------------------------------------

    async def _current_location(self) -> Optional[Location]:
        try:
            return await self._locator.get_current_location_with_address()
        except Exception:
            logging.exception("Error getting current location")
            return None

    async def _send_emergency(self, message: str, sent_cls: Type[AlertSent], sent_message: str) -> Outcome:
        location = await self._current_location()
        if location is None:
            return EmergencyFailed(message=ALERT_FAILED_MESSAGE, error="Could not get current location")

        result = await self._submit(
            {"type": "emergency", "message": message},
            location,
            sent_cls,
            sent_message,
            EmergencyFailed,
            ALERT_FAILED_MESSAGE,
        )
        if not isinstance(result, AlertSent):
            return result

        self.current_alert_id = result.alert_id
        if self._tracker is not None:
            try:
                await self._tracker.start_background_location()
            except Exception:
                logging.exception("Failed to start background location tracking")
        await self._notify(
            "🚨 Emergency Alert Sent!",
            "Your parent has been notified. Help is on the way!",
            {"type": "alert_sent", "alert_type": "emergency"},
        )
        logging.warning("Emergency alert sent: %s", self.current_alert_id)
        return result

    async def _submit(
        self,
        alert: Dict[str, Any],
        location: Location,
        sent_cls: Type[AlertSent],
        sent_message: str,
        failed_cls: Type[Failure],
        failed_message: str,
    ) -> Outcome:
        payload = {**alert, "location": location.address or "Current location"}
        try:
            response = await self._alerts.create_alert_with_location(payload, location)
        except Exception as exc:
            logging.error("Error sending %s alert: %s", alert["type"], exc)
            return failed_cls(message=failed_message, error=str(exc))

        if not response.get("success"):
            error = response.get("message") or f"Failed to send {alert['type']} alert"
            logging.error("Backend rejected %s alert: %s", alert["type"], error)
            return failed_cls(message=failed_message, error=error)

        alert_id = ((response.get("data") or {}).get("alert") or {}).get("id")
        return sent_cls(message=sent_message, alert_id=alert_id, location=location.address)

    async def _notify(self, title: str, body: str, data: Dict[str, Any]) -> None:
        data = {**data, "timestamp": datetime.now().isoformat()}
        try:
            await self._notifier.send_local_notification(title, body, data)
        except Exception:
            logging.exception("Failed to deliver notification: %s", title)
