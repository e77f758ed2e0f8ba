"""Incident lifecycle — status transitions, alert auto-ack, scoped queries.

Status only moves forward::

    open --(ack)--> ack --(resolve)--> resolved
    open --(resolve)--> resolved

``resolved`` is terminal. Moving an incident to ``ack`` or ``resolved``
acknowledges every outstanding alert for it.
"""

import json
import logging
from collections.abc import Callable
from datetime import datetime

from quinn.config import get_settings
from quinn.observability.metrics import STATUS_TRANSITIONS_TOTAL
from quinn.telemetry.models import (
    Event,
    Incident,
    IncidentReport,
    IncidentStatus,
    User,
    to_iso,
    utc_now,
)
from quinn.telemetry.store import TelemetryStore

logger = logging.getLogger(__name__)

_STATUS_ORDER: dict[str, int] = {"open": 0, "ack": 1, "resolved": 2}


class InvalidTransitionError(ValueError):
    """Raised when a status change would move an incident backwards."""

    def __init__(self, incident_id: str, current: str, requested: str) -> None:
        self.incident_id = incident_id
        self.current = current
        self.requested = requested
        super().__init__(f"Incident {incident_id} cannot move from '{current}' back to '{requested}'")


class IncidentController:
    """Reads and status changes over the telemetry store."""

    def __init__(self, store: TelemetryStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def incidents_for_session(self, session_id: str) -> list[Incident]:
        return [i for i in self._store.get_incidents() if i["session_id"] == session_id]

    def events_for_incident(self, incident_id: str) -> list[Event]:
        return [e for e in self._store.get_events() if e["incident_id"] == incident_id]

    def unacked_alert_count(self, session_id: str | None, user_id: str) -> int:
        """Count unacknowledged alerts for a user, optionally scoped to one session."""
        alerts = [a for a in self._store.get_alerts() if a["target_user_id"] == user_id and not a["ack_at"]]
        if session_id is None:
            return len(alerts)
        incident_ids = {i["id"] for i in self.incidents_for_session(session_id)}
        return sum(1 for a in alerts if a["incident_id"] in incident_ids)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def update_status(
        self,
        incident_id: str,
        new_status: IncidentStatus,
        *,
        notify: bool = True,
    ) -> Incident | None:
        """Move an incident to ``new_status`` and auto-ack its alerts.

        Args:
            incident_id: Incident to change.
            new_status: Target status.
            notify: Fire the store's change subscribers afterwards. The
                simulator passes False because it notifies once per tick.

        Returns:
            The stored incident after the change, or None if the id is unknown.

        Raises:
            InvalidTransitionError: If ``new_status`` is behind the current status.
        """
        with self._store.lock:
            incident = self._store.get_incident(incident_id)
            if incident is None:
                logger.debug("Status update for unknown incident %s ignored", incident_id)
                return None

            current = incident["status"]
            if new_status == current:
                return incident
            if _STATUS_ORDER[new_status] < _STATUS_ORDER[current]:
                raise InvalidTransitionError(incident_id, current, new_status)

            now = to_iso(self._clock())
            updated: Incident = {**incident, "status": new_status}
            if new_status == "resolved" and updated["ended_at"] is None:
                updated["ended_at"] = now
            self._store.update_incident(updated)

            acked = [
                {**a, "ack_at": now}
                for a in self._store.get_alerts()
                if a["incident_id"] == incident_id and not a["ack_at"]
            ]
            if acked:
                self._store.update_alerts(acked)  # type: ignore[arg-type]

        STATUS_TRANSITIONS_TOTAL.labels(status=new_status).inc()
        logger.info("Incident %s: %s -> %s (%d alert(s) acked)", incident_id, current, new_status, len(acked))
        if notify:
            self._store.notify_changed()
        return updated

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def incident_report(self, incident_id: str) -> IncidentReport | dict[str, object]:
        """Snapshot of an incident and its events, or an empty dict if unknown."""
        incident = self._store.get_incident(incident_id)
        if incident is None:
            return {}
        return IncidentReport(incident=incident, events=self.events_for_incident(incident_id))

    def export_report(self, incident_id: str) -> str:
        """Serialize the incident report as indented JSON. Never raises for unknown ids."""
        return json.dumps(self.incident_report(incident_id), indent=2, ensure_ascii=False)


def report_filename(incident_id: str) -> str:
    return f"incident-{incident_id}.json"


# ---------------------------------------------------------------------------
# Single-user role model
# ---------------------------------------------------------------------------


def current_user() -> User:
    """The operator this process acts for, taken from settings."""
    settings = get_settings()
    role = settings.current_user_role if settings.current_user_role in ("viewer", "host", "ops") else "viewer"
    return User(id=settings.current_user_id, name=settings.current_user_name, role=role)  # type: ignore[typeddict-item]


def can_manage(user: User, session_host_user_id: str | None = None) -> bool:
    """Ops users manage every incident; a session host manages their own session's."""
    if user["role"] == "ops":
        return True
    return session_host_user_id is not None and user["id"] == session_host_user_id
