"""Dataclasses describing settings, records and dispatch outcomes for mummyhelp."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional


def normalize_phrase(text: str) -> str:
    """Lower-case and trim a phrase the way every matcher expects it."""

    return text.lower().strip()


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    server_url: Optional[str] = None
    server_token: Optional[str] = None
    api_timeout: float = 15.0
    verify_ssl: bool = True
    device_latitude: Optional[float] = None
    device_longitude: Optional[float] = None
    device_address: Optional[str] = None
    tracking_interval: float = 5.0
    speech_backend: str = "pyttsx3"


@dataclass(slots=True)
class Settings:
    """Voice settings persisted as one JSON object."""

    # Voice feedback
    voice_enabled: bool = True
    voice_volume: float = 0.8
    voice_rate: float = 0.9
    voice_pitch: float = 1.0
    voice_language: str = "en-US"

    # Wake phrases
    wake_phrases: List[str] = field(
        default_factory=lambda: ["mummy help", "hey mummy help", "help me mummy"]
    )
    hit_threshold: int = 3
    time_window: int = 10_000
    auto_emergency: bool = True

    # Commands
    commands_enabled: bool = True
    custom_commands: List[Dict[str, Any]] = field(default_factory=list)
    command_aliases: Dict[str, str] = field(default_factory=dict)

    # Recognition
    recognition_enabled: bool = True
    continuous_listening: bool = True
    sensitivity: float = 0.7
    timeout: int = 5_000

    # Notifications
    voice_notifications: bool = True
    command_confirmations: bool = True
    error_feedback: bool = True

    # Privacy
    save_voice_history: bool = True
    max_history_items: int = 50
    auto_clear_history: bool = False
    clear_history_after: int = 24 * 60 * 60 * 1000


@dataclass(slots=True)
class CommandEntry:
    """A canonical phrase and the action it triggers."""

    phrase: str
    action: str
    description: str


@dataclass(slots=True)
class CustomCommand:
    """A user defined command stored in the settings."""

    id: str
    phrase: str
    action: str
    description: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CustomCommand":
        return cls(
            id=str(payload["id"]),
            phrase=normalize_phrase(payload["phrase"]),
            action=payload["action"],
            description=payload.get("description", ""),
            timestamp=payload.get("timestamp") or datetime.now().isoformat(),
            enabled=bool(payload.get("enabled", True)),
        )


class MatchTier(str, Enum):
    EXACT = "exact"
    ALIAS = "alias"
    PARTIAL = "partial"


@dataclass(slots=True)
class CommandMatch:
    entry: CommandEntry
    tier: MatchTier
    score: float = 1.0


@dataclass(slots=True)
class Location:
    """A resolved device position."""

    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    address: Optional[str] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    timestamp: Optional[str] = None

    def describe(self) -> str:
        if self.address:
            return self.address
        return f"Latitude {self.latitude:.4f}, Longitude {self.longitude:.4f}"


class HitEvent(str, Enum):
    """Classification of a wake phrase detection."""

    ARMED = "armed"
    ESCALATED = "escalated"


@dataclass(slots=True)
class HitStatus:
    count: int
    required: int
    time_left: float
    progress: float
    is_emergency_ready: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DispatchState(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"


@dataclass(slots=True)
class AlertStatus:
    is_processing: bool
    current_alert_id: Optional[Any]
    has_active_alert: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Outcomes -----------------------------------------------------------------


@dataclass(slots=True, kw_only=True)
class Outcome:
    """Base of every result produced by the dispatcher and the command layer.

    Each subclass fixes ``type`` at class level so callers can branch on
    ``result.type`` (or ``isinstance``) uniformly for success and failure.
    ``input`` and ``action`` are filled in when the outcome came from a
    spoken command.
    """

    type: ClassVar[str] = "outcome"

    message: str
    input: Optional[str] = None
    action: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        payload.update(asdict(self))
        return payload


@dataclass(slots=True, kw_only=True)
class SingleHit(Outcome):
    type: ClassVar[str] = "single_hit"

    show_modal: bool = True


@dataclass(slots=True, kw_only=True)
class AlertSent(Outcome):
    alert_id: Optional[Any] = None
    location: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class EmergencySent(AlertSent):
    type: ClassVar[str] = "emergency_sent"


@dataclass(slots=True, kw_only=True)
class EmergencyConfirmed(AlertSent):
    type: ClassVar[str] = "emergency_confirmed"


@dataclass(slots=True, kw_only=True)
class CheckinSent(AlertSent):
    type: ClassVar[str] = "checkin_success"


@dataclass(slots=True, kw_only=True)
class Failure(Outcome):
    error: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class EmergencyFailed(Failure):
    type: ClassVar[str] = "emergency_failed"


@dataclass(slots=True, kw_only=True)
class CheckinFailed(Failure):
    type: ClassVar[str] = "checkin_failed"


@dataclass(slots=True, kw_only=True)
class LocationFailed(Failure):
    type: ClassVar[str] = "location_failed"


@dataclass(slots=True, kw_only=True)
class ShareLocationFailed(Failure):
    type: ClassVar[str] = "share_location_failed"


@dataclass(slots=True, kw_only=True)
class StatusFailed(Failure):
    type: ClassVar[str] = "status_failed"


@dataclass(slots=True, kw_only=True)
class CommandError(Failure):
    type: ClassVar[str] = "error"


@dataclass(slots=True, kw_only=True)
class EmergencyBusy(Outcome):
    type: ClassVar[str] = "emergency_in_progress"


@dataclass(slots=True, kw_only=True)
class CheckinBusy(Outcome):
    type: ClassVar[str] = "checkin_in_progress"


@dataclass(slots=True, kw_only=True)
class EmergencyCancelled(Outcome):
    type: ClassVar[str] = "emergency_cancelled"


@dataclass(slots=True, kw_only=True)
class LocationReported(Outcome):
    type: ClassVar[str] = "location_success"

    location: Optional[str] = None
    coordinates: Dict[str, float] = field(default_factory=dict)


@dataclass(slots=True, kw_only=True)
class LocationShared(Outcome):
    type: ClassVar[str] = "share_location_success"

    location: Optional[str] = None
    coordinates: Dict[str, float] = field(default_factory=dict)


@dataclass(slots=True, kw_only=True)
class StatusReport(Outcome):
    type: ClassVar[str] = "status_success"

    status: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, kw_only=True)
class ListeningStopped(Outcome):
    type: ClassVar[str] = "stop_listening"


@dataclass(slots=True, kw_only=True)
class ListeningStarted(Outcome):
    type: ClassVar[str] = "start_listening"


@dataclass(slots=True, kw_only=True)
class TestRun(Outcome):
    type: ClassVar[str] = "test"

    __test__: ClassVar[bool] = False


@dataclass(slots=True, kw_only=True)
class UnknownAction(Outcome):
    type: ClassVar[str] = "unknown_action"


@dataclass(slots=True, kw_only=True)
class NoMatch(Outcome):
    type: ClassVar[str] = "no_match"
