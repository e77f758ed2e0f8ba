"""TypedDict models for telemetry records.

Records are persisted as JSON objects, so every field is a JSON-native value.
Timestamps are ISO 8601 UTC strings.
"""

from datetime import UTC, datetime
from typing import Any, Literal

from typing_extensions import TypedDict

Severity = Literal["info", "warn", "critical"]
IncidentStatus = Literal["open", "ack", "resolved"]
UserRole = Literal["viewer", "host", "ops"]

EventType = Literal[
    "packet_loss_spike",
    "bitrate_drop",
    "freeze_detected",
    "pts_jump",
    "audio_clipping",
    "black_frames",
    "resolution_change",
    "codec_change",
]

SEVERITIES: tuple[Severity, ...] = ("info", "warn", "critical")
STATUSES: tuple[IncidentStatus, ...] = ("open", "ack", "resolved")


class Incident(TypedDict):
    id: str
    session_id: str
    session_name: str
    primary_line_id: str
    primary_line_label: str
    started_at: str  # ISO 8601
    ended_at: str | None  # None while ongoing
    severity: Severity
    status: IncidentStatus
    summary: str
    created_by: str


class Event(TypedDict):
    id: str
    incident_id: str
    session_id: str
    line_id: str
    timestamp: str  # ISO 8601
    type: EventType
    severity: Severity
    confidence: float  # 0.0 - 1.0
    evidence: dict[str, Any]  # metric name -> value, keys vary per type


class Alert(TypedDict):
    id: str
    incident_id: str
    target_user_id: str
    delivered_at: str  # ISO 8601
    ack_at: str | None


class User(TypedDict):
    id: str
    name: str
    role: UserRole


class IncidentReport(TypedDict):
    incident: Incident
    events: list[Event]


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
    """Render an aware datetime as an ISO 8601 UTC string."""
    return moment.astimezone(UTC).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
