"""Simulated monitoring worker — synthesizes plausible fault incidents.

Stands in for a real anomaly detector. Each tick picks a template, a line and a
session, then persists one Incident, its Event and (for warn/critical) one
Alert. Stale open incidents are occasionally resolved so the open list stays
bounded without a human in the loop.

Ticks run on single-shot timers: the first after U(8s, 15s), each following
one U(30s, 60s) after the previous tick completes. Two ticks never overlap.
"""

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, NamedTuple, Protocol
from uuid import uuid4

from quinn.observability.metrics import AUTO_RESOLVED_TOTAL, SIMULATED_INCIDENTS_TOTAL
from quinn.telemetry.lifecycle import IncidentController
from quinn.telemetry.models import Alert, Event, EventType, Incident, Severity, parse_iso, to_iso, utc_now
from quinn.telemetry.store import TelemetryStore

logger = logging.getLogger(__name__)

SIMULATOR_USER_ID = "u1"
CREATED_BY = "quinn"


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


# ---------------------------------------------------------------------------
# Template catalog
# ---------------------------------------------------------------------------


class Line(NamedTuple):
    id: str
    label: str


class Session(NamedTuple):
    id: str
    name: str


LINES: tuple[Line, ...] = (
    Line("line-1", "Line 1 — Camera A"),
    Line("line-2", "Line 2 — Camera B"),
    Line("line-3", "Line 3 — Program"),
)

SESSIONS: tuple[Session, ...] = (
    Session("sess-001", "Super Bowl LVIII — Main Feed"),
    Session("sess-002", "Champions League Semi — QC"),
)


def _r(rng: random.Random, low: float, high: float) -> float:
    return round(low + rng.random() * (high - low), 2)


@dataclass(frozen=True)
class Template:
    type: EventType
    severity: Severity
    summary: Callable[[random.Random], str]
    evidence: Callable[[random.Random], dict[str, Any]]


TEMPLATES: tuple[Template, ...] = (
    Template(
        "packet_loss_spike",
        "warn",
        lambda rng: f"Packet loss spike detected ({_r(rng, 0.5, 1.4)}%). Monitoring for sustained impact.",
        lambda rng: {
            "lossBefore": _r(rng, 0.01, 0.1),
            "lossAfter": _r(rng, 0.5, 1.4),
            "durationMs": round(_r(rng, 1500, 6000)),
        },
    ),
    Template(
        "packet_loss_spike",
        "critical",
        lambda rng: f"Sustained packet loss at {_r(rng, 1.5, 3.0)}%. High freeze/artifact risk.",
        lambda rng: {
            "lossBefore": _r(rng, 0.05, 0.2),
            "lossAfter": _r(rng, 1.5, 3.0),
            "durationMs": round(_r(rng, 3000, 8000)),
        },
    ),
    Template(
        "bitrate_drop",
        "warn",
        lambda rng: f"Bitrate dropped {round(_r(rng, 25, 55))}%. Possible encoder adaptation or congestion.",
        lambda rng: {
            "bitrateBefore": _r(rng, 8, 14),
            "bitrateAfter": _r(rng, 3, 7),
            "dropPct": round(_r(rng, 25, 55)),
        },
    ),
    Template(
        "freeze_detected",
        "critical",
        lambda rng: f"Freeze detected for {_r(rng, 1.5, 5)}s. Duplicate frames observed.",
        lambda rng: {
            "freezeDurationMs": round(_r(rng, 1500, 5000)),
            "framesDuplicated": round(_r(rng, 30, 150)),
        },
    ),
    Template(
        "audio_clipping",
        "warn",
        lambda rng: f"Audio clipping detected. Peak exceeded -1.0 dBFS for {round(_r(rng, 200, 1200))}ms.",
        lambda rng: {"peakDbfs": _r(rng, -0.8, 0), "durationMs": round(_r(rng, 200, 1200))},
    ),
    Template(
        "pts_jump",
        "warn",
        lambda rng: f"PTS discontinuity detected. Timestamp jumped {round(_r(rng, 80, 500))}ms.",
        lambda rng: {
            "jumpMs": round(_r(rng, 80, 500)),
            "direction": "forward" if rng.random() > 0.5 else "backward",
        },
    ),
    Template(
        "black_frames",
        "warn",
        lambda rng: f"Black frames detected for {_r(rng, 0.5, 3)}s. Possible signal loss.",
        lambda rng: {"durationMs": round(_r(rng, 500, 3000)), "avgLuma": _r(rng, 0, 5)},
    ),
    Template(
        "resolution_change",
        "info",
        lambda rng: "Resolution change detected: 1920×1080 → 3840×2160.",
        lambda rng: {"from": "1920×1080", "to": "3840×2160"},
    ),
    Template(
        "codec_change",
        "info",
        lambda rng: "Codec change detected: H.264 High → H.265 Main.",
        lambda rng: {"from": "H.264 High", "to": "H.265 Main"},
    ),
)


class SimulatedIncident(NamedTuple):
    incident: Incident
    event: Event
    alert: Alert | None


def generate_incident(rng: random.Random, now: datetime) -> SimulatedIncident:
    """Synthesize one incident with its event and, unless info, its alert."""
    template = rng.choice(TEMPLATES)
    line = rng.choice(LINES)
    session = rng.choice(SESSIONS)
    timestamp = to_iso(now)
    suffix = uuid4().hex[:8]
    incident_id = f"inc-sim-{suffix}"

    incident: Incident = {
        "id": incident_id,
        "session_id": session.id,
        "session_name": session.name,
        "primary_line_id": line.id,
        "primary_line_label": line.label,
        "started_at": timestamp,
        "ended_at": None,
        "severity": template.severity,
        "status": "open",
        "summary": template.summary(rng),
        "created_by": CREATED_BY,
    }
    event: Event = {
        "id": f"ev-sim-{suffix}",
        "incident_id": incident_id,
        "session_id": session.id,
        "line_id": line.id,
        "timestamp": timestamp,
        "type": template.type,
        "severity": template.severity,
        "confidence": _r(rng, 0.82, 0.99),
        "evidence": template.evidence(rng),
    }
    alert: Alert | None = None
    if template.severity != "info":
        alert = {
            "id": f"al-sim-{suffix}",
            "incident_id": incident_id,
            "target_user_id": SIMULATOR_USER_ID,
            "delivered_at": timestamp,
            "ack_at": None,
        }
    return SimulatedIncident(incident, event, alert)


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------


class IncidentSimulator:
    """Timer-driven producer of simulated incidents.

    ``start()`` arms the first tick; ``stop()`` cancels whichever timer is
    pending and clears the liveness flag, so a timer that fires anyway is a
    no-op and no change notification reaches a consumer that has gone away.
    """

    def __init__(
        self,
        store: TelemetryStore,
        controller: IncidentController,
        timers: Timers,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
        initial_delay: tuple[float, float] = (8.0, 15.0),
        interval: tuple[float, float] = (30.0, 60.0),
        auto_resolve_after_seconds: float = 90.0,
        auto_resolve_probability: float = 0.3,
    ) -> None:
        self._store = store
        self._controller = controller
        self._timers = timers
        self._rng = rng or random.Random()
        self._clock = clock
        self._initial_delay = initial_delay
        self._interval = interval
        self._auto_resolve_after = timedelta(seconds=auto_resolve_after_seconds)
        self._auto_resolve_probability = auto_resolve_probability
        self._pending: TimerHandle | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        delay = self._rng.uniform(*self._initial_delay)
        logger.info("Incident simulator started — first tick in %.1fs", delay)
        self._pending = self._timers.call_later(delay, self._on_timer)

    def stop(self) -> None:
        self._running = False
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        logger.info("Incident simulator stopped")

    def tick(self) -> SimulatedIncident:
        """Synthesize and persist one incident, maybe auto-resolve a stale one, notify."""
        now = self._clock()
        generated = generate_incident(self._rng, now)
        self._store.append_incident(generated.incident)
        self._store.append_event(generated.event)
        if generated.alert is not None:
            self._store.append_alert(generated.alert)
        SIMULATED_INCIDENTS_TOTAL.labels(severity=generated.incident["severity"]).inc()
        logger.debug("Simulated %s incident %s", generated.incident["severity"], generated.incident["id"])

        self._auto_resolve(now)
        self._store.notify_changed()
        return generated

    def _auto_resolve(self, now: datetime) -> None:
        cutoff = now - self._auto_resolve_after
        stale = [
            i
            for i in self._store.get_incidents()
            if i["status"] == "open" and parse_iso(i["started_at"]) < cutoff
        ]
        if not stale or self._rng.random() >= self._auto_resolve_probability:
            return
        target = self._rng.choice(stale)
        if self._controller.update_status(target["id"], "resolved", notify=False) is not None:
            AUTO_RESOLVED_TOTAL.inc()
            logger.debug("Auto-resolved stale incident %s", target["id"])

    def _on_timer(self) -> None:
        self._pending = None
        if not self._running:
            return
        try:
            self.tick()
        except Exception:
            logger.exception("Simulator tick failed")
        if self._running:
            self._pending = self._timers.call_later(self._rng.uniform(*self._interval), self._on_timer)
