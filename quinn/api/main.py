"""FastAPI backend for the Quinn telemetry engine.

Serves incident history and status changes to the presentation layer, and
relays analysis chats to an OpenAI-compatible gateway as a server-sent-event
stream. The store, controller and simulator are built once at startup and
shared across requests.

Serve with ``uvicorn quinn.api.main:app``.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from starlette.background import BackgroundTask

from quinn.analysis.context import build_analysis_context
from quinn.analysis.prompt import build_system_prompt
from quinn.config import get_settings
from quinn.observability.metrics import (
    ANALYSIS_REQUESTS_TOTAL,
    APP_INFO,
    REQUEST_DURATION,
    REQUESTS_IN_PROGRESS,
    REQUESTS_TOTAL,
)
from quinn.telemetry.lifecycle import (
    IncidentController,
    InvalidTransitionError,
    can_manage,
    current_user,
    report_filename,
)
from quinn.telemetry.models import Alert, Event, Incident
from quinn.telemetry.scheduler import start_simulator, stop_simulator
from quinn.telemetry.storage import open_storage
from quinn.telemetry.store import TelemetryStore

logger = logging.getLogger(__name__)

UPSTREAM_TIMEOUT_SECONDS = 60.0


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class StatusUpdateRequest(BaseModel):
    """Request body for POST /incidents/{incident_id}/status."""

    status: Literal["open", "ack", "resolved"]
    session_host_user_id: str | None = None


class UnackedAlertsResponse(BaseModel):
    """Response body for GET /alerts/unacked."""

    user_id: str
    session_id: str | None
    count: int


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AnalysisChatRequest(BaseModel):
    """Request body for POST /analysis/chat."""

    messages: list[ChatTurn]
    context: dict[str, Any] | None = None
    session_id: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    model: str
    simulator: str
    incidents: int


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store and start the simulator at startup, stop it on shutdown."""
    settings = get_settings()
    APP_INFO.info({"version": "0.1.0", "model": settings.openai_model})

    store = TelemetryStore(open_storage(settings.store_db_path))
    controller = IncidentController(store)
    app.state.store = store
    app.state.controller = controller

    app.state.simulator = start_simulator(store, controller)
    yield
    stop_simulator()
    logger.info("Shutting down Quinn")


app = FastAPI(title="Quinn Telemetry Engine", lifespan=lifespan)


def _store(request: Request) -> TelemetryStore:
    store: TelemetryStore = request.app.state.store
    return store


def _controller(request: Request) -> IncidentController:
    controller: IncidentController = request.app.state.controller
    return controller


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/incidents")
async def list_incidents(request: Request, session_id: str | None = None) -> list[Incident]:
    """Incidents, most recent first, optionally for one session."""
    if session_id is None:
        return _store(request).get_incidents()
    return _controller(request).incidents_for_session(session_id)


@app.get("/incidents/{incident_id}/events")
async def list_incident_events(request: Request, incident_id: str) -> list[Event]:
    return _controller(request).events_for_incident(incident_id)


@app.post("/incidents/{incident_id}/status")
async def update_incident_status(request: Request, incident_id: str, body: StatusUpdateRequest) -> Incident:
    """Acknowledge or resolve an incident. Requires the ops role or session host."""
    endpoint = "/incidents/status"
    REQUESTS_IN_PROGRESS.labels(endpoint=endpoint).inc()
    start = time.monotonic()
    try:
        if not can_manage(current_user(), body.session_host_user_id):
            REQUESTS_TOTAL.labels(endpoint=endpoint, status="forbidden").inc()
            raise HTTPException(status_code=403, detail="Managing incidents requires the ops role or session host")

        try:
            updated = _controller(request).update_status(incident_id, body.status)
        except InvalidTransitionError as exc:
            REQUESTS_TOTAL.labels(endpoint=endpoint, status="conflict").inc()
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        if updated is None:
            REQUESTS_TOTAL.labels(endpoint=endpoint, status="not_found").inc()
            raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")

        REQUESTS_TOTAL.labels(endpoint=endpoint, status="success").inc()
        return updated
    finally:
        REQUESTS_IN_PROGRESS.labels(endpoint=endpoint).dec()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)


@app.get("/incidents/{incident_id}/export")
async def export_incident(request: Request, incident_id: str) -> Response:
    """Download the incident and its events as JSON (``{}`` for unknown ids)."""
    payload = _controller(request).export_report(incident_id)
    return Response(
        content=payload.encode("utf-8"),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{report_filename(incident_id)}"'},
    )


@app.get("/alerts/unacked", response_model=UnackedAlertsResponse)
async def unacked_alerts(request: Request, session_id: str | None = None, user_id: str | None = None) -> UnackedAlertsResponse:
    uid = user_id or current_user()["id"]
    count = _controller(request).unacked_alert_count(session_id, uid)
    return UnackedAlertsResponse(user_id=uid, session_id=session_id, count=count)


@app.get("/alerts")
async def list_alerts(request: Request) -> list[Alert]:
    return _store(request).get_alerts()


@app.get("/context")
async def analysis_context(request: Request, session_id: str | None = None) -> dict[str, Any]:
    """The bounded incident/event snapshot an analysis request would carry."""
    return dict(build_analysis_context(_store(request), session_id))


@app.post("/analysis/chat", response_model=None)
async def analysis_chat(request: Request, body: AnalysisChatRequest) -> Response:
    """Relay a chat to the upstream gateway and stream its SSE body back unchanged."""
    settings = get_settings()
    if not settings.openai_api_key:
        ANALYSIS_REQUESTS_TOTAL.labels(status="not_configured").inc()
        return JSONResponse({"error": "OPENAI_API_KEY is not configured"}, status_code=500)

    context = body.context
    if context is None:
        context = dict(build_analysis_context(_store(request), body.session_id))

    payload = {
        "model": settings.openai_model,
        "messages": [
            {"role": "system", "content": build_system_prompt(context)},
            *(turn.model_dump() for turn in body.messages),
        ],
        "stream": True,
    }

    client = httpx.AsyncClient(timeout=UPSTREAM_TIMEOUT_SECONDS)
    try:
        upstream_request = client.build_request(
            "POST",
            f"{settings.openai_base_url.rstrip('/')}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {settings.openai_api_key}"},
        )
        upstream = await client.send(upstream_request, stream=True)
    except httpx.HTTPError as exc:
        await client.aclose()
        ANALYSIS_REQUESTS_TOTAL.labels(status="unavailable").inc()
        logger.exception("Analysis gateway unreachable")
        return JSONResponse({"error": f"AI gateway unreachable: {exc}"}, status_code=502)

    if not upstream.is_success:
        text = (await upstream.aread()).decode("utf-8", errors="replace")
        await upstream.aclose()
        await client.aclose()
        ANALYSIS_REQUESTS_TOTAL.labels(status=str(upstream.status_code)).inc()
        if upstream.status_code == 429:
            return JSONResponse({"error": "Rate limit exceeded. Please try again shortly."}, status_code=429)
        if upstream.status_code == 402:
            return JSONResponse({"error": "AI credits exhausted."}, status_code=402)
        logger.error("AI gateway error: HTTP %d — %.500s", upstream.status_code, text)
        return JSONResponse({"error": "AI gateway error"}, status_code=500)

    ANALYSIS_REQUESTS_TOTAL.labels(status="success").inc()

    async def _close() -> None:
        await upstream.aclose()
        await client.aclose()

    return StreamingResponse(
        upstream.aiter_raw(),
        media_type="text/event-stream",
        background=BackgroundTask(_close),
    )


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    settings = get_settings()
    simulator = request.app.state.simulator
    if simulator is None:
        simulator_state = "disabled"
    else:
        simulator_state = "running" if simulator.running else "stopped"
    incidents = len(_store(request).get_incidents())
    status = "healthy" if settings.openai_api_key else "degraded"
    return HealthResponse(status=status, model=settings.openai_model, simulator=simulator_state, incidents=incidents)
