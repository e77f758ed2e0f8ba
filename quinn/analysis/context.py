"""Per-request context from the telemetry store.

Builds the bounded incident/event snapshot attached to an analysis request.
The snapshot is assembled fresh for every request and never persisted; read
skew against a concurrent simulator tick is acceptable.
"""

import logging
from typing import NotRequired

from typing_extensions import TypedDict

from quinn.telemetry.models import Event, Incident
from quinn.telemetry.store import TelemetryStore

logger = logging.getLogger(__name__)

MAX_CONTEXT_INCIDENTS = 20
MAX_SESSION_EVENTS = 40
MAX_GLOBAL_EVENTS = 30


class AnalysisContext(TypedDict):
    incidents: list[Incident]
    events: list[Event]
    session_name: NotRequired[str]


def build_analysis_context(
    store: TelemetryStore,
    session_id: str | None = None,
    session_name: str | None = None,
) -> AnalysisContext:
    """Assemble the most recent incidents and events, optionally for one session.

    Args:
        store: Telemetry store to read from.
        session_id: Restrict to this session. None means global scope.
        session_name: Display name of the session. When omitted for a scoped
            request, it is taken from the session's incidents if any exist.

    Returns:
        Up to 20 incidents and up to 40 events (session scope) or 30 events
        (global scope), most recent first, plus the session name when scoped.
    """
    incidents = store.get_incidents()
    events = store.get_events()

    if session_id is None:
        return AnalysisContext(
            incidents=incidents[:MAX_CONTEXT_INCIDENTS],
            events=events[:MAX_GLOBAL_EVENTS],
        )

    scoped_incidents = [i for i in incidents if i["session_id"] == session_id]
    scoped_events = [e for e in events if e["session_id"] == session_id]
    context = AnalysisContext(
        incidents=scoped_incidents[:MAX_CONTEXT_INCIDENTS],
        events=scoped_events[:MAX_SESSION_EVENTS],
    )
    name = session_name or next((i["session_name"] for i in scoped_incidents), None)
    if name:
        context["session_name"] = name
    return context
