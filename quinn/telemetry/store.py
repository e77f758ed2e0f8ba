"""Bounded telemetry store — incidents, events and alerts with retention caps.

Each collection is a JSON list kept under one key of a durable key-value
medium, most-recent-first. Every write replaces the whole collection, so the
last write wins and no partial write is ever observable.

Telemetry history is best-effort: an unavailable medium or a malformed payload
makes the store fall back to its seed data instead of raising.
"""

import copy
import json
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from quinn.observability.metrics import STORE_FALLBACKS_TOTAL
from quinn.telemetry.models import Alert, Event, Incident
from quinn.telemetry.seed import SEED_ALERTS, SEED_EVENTS, SEED_INCIDENTS
from quinn.telemetry.storage import KeyValueStorage

logger = logging.getLogger(__name__)

MAX_INCIDENTS = 100
MAX_EVENTS = 200
MAX_ALERTS = 100

INCIDENTS_KEY = "quinn_incidents"
EVENTS_KEY = "quinn_events"
ALERTS_KEY = "quinn_alerts"

ChangeCallback = Callable[[], None]


@dataclass(frozen=True)
class _Collection:
    name: str
    key: str
    cap: int
    seed: list[Any]


_INCIDENTS = _Collection("incidents", INCIDENTS_KEY, MAX_INCIDENTS, SEED_INCIDENTS)
_EVENTS = _Collection("events", EVENTS_KEY, MAX_EVENTS, SEED_EVENTS)
_ALERTS = _Collection("alerts", ALERTS_KEY, MAX_ALERTS, SEED_ALERTS)


class TelemetryStore:
    """Owns every Incident, Event and Alert.

    All mutation goes through the ``append_*`` / ``update_*`` methods; callers
    never read-modify-write a collection themselves. Derived views (per-session
    filters and so on) are computed from the lists returned here.

    Every read-modify-write runs under ``lock``, a re-entrant lock callers may
    also hold to make several store calls one atomic step.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self._subscribers: list[ChangeCallback] = []
        self.lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_incidents(self) -> list[Incident]:
        return self._read(_INCIDENTS)

    def get_events(self) -> list[Event]:
        return self._read(_EVENTS)

    def get_alerts(self) -> list[Alert]:
        return self._read(_ALERTS)

    def get_incident(self, incident_id: str) -> Incident | None:
        return next((i for i in self.get_incidents() if i["id"] == incident_id), None)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append_incident(self, incident: Incident) -> None:
        self._append(_INCIDENTS, incident)

    def append_event(self, event: Event) -> None:
        self._append(_EVENTS, event)

    def append_alert(self, alert: Alert) -> None:
        self._append(_ALERTS, alert)

    def update_incident(self, incident: Incident) -> None:
        """Replace the stored incident with the same id, keeping its position."""
        self._update(_INCIDENTS, [incident])

    def update_alerts(self, alerts: Iterable[Alert]) -> None:
        """Replace each stored alert with the same id in a single write."""
        self._update(_ALERTS, list(alerts))

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def subscribe_to_changes(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a no-argument callback fired after telemetry changes.

        Returns a function that removes the registration; calling it more than
        once is harmless.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify_changed(self) -> None:
        """Invoke every subscriber. A failing subscriber never stops the rest."""
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("Telemetry change subscriber failed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read(self, collection: _Collection) -> list[Any]:
        with self.lock:
            return self._read_locked(collection)

    def _read_locked(self, collection: _Collection) -> list[Any]:
        try:
            raw = self._storage.get(collection.key)
        except Exception:
            logger.warning("Telemetry store unavailable reading %s — using seed data", collection.name, exc_info=True)
            STORE_FALLBACKS_TOTAL.labels(collection=collection.name, operation="read").inc()
            return copy.deepcopy(collection.seed)

        if raw is not None:
            try:
                data = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                data = None
            if isinstance(data, list) and all(isinstance(item, dict) for item in data):
                return data
            logger.warning("Malformed %s payload in telemetry store — reseeding", collection.name)
            STORE_FALLBACKS_TOTAL.labels(collection=collection.name, operation="read").inc()

        seed = copy.deepcopy(collection.seed)
        self._write(collection, seed)
        return seed

    def _write(self, collection: _Collection, items: list[Any]) -> None:
        try:
            self._storage.set(collection.key, json.dumps(items, ensure_ascii=False))
        except Exception:
            logger.warning("Failed to persist %s — change dropped", collection.name, exc_info=True)
            STORE_FALLBACKS_TOTAL.labels(collection=collection.name, operation="write").inc()

    def _append(self, collection: _Collection, item: Any) -> None:
        with self.lock:
            items = self._read(collection)
            items.insert(0, item)
            # Eviction drops the oldest entries off the tail, silently.
            self._write(collection, items[: collection.cap])

    def _update(self, collection: _Collection, replacements: list[Any]) -> None:
        by_id = {r["id"]: r for r in replacements}
        if not by_id:
            return
        with self.lock:
            items = self._read(collection)
            changed = False
            for idx, item in enumerate(items):
                replacement = by_id.get(item.get("id"))
                if replacement is not None:
                    items[idx] = replacement
                    changed = True
            if changed:
                self._write(collection, items)
