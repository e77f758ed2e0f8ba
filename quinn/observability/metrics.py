"""Prometheus metric definitions for Quinn self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0)

# ---------------------------------------------------------------------------
# Request-level metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "quinn_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "quinn_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

REQUESTS_IN_PROGRESS = Gauge(
    "quinn_requests_in_progress",
    "Number of requests currently being processed",
    labelnames=["endpoint"],
)

# ---------------------------------------------------------------------------
# Telemetry store / simulator / lifecycle
# ---------------------------------------------------------------------------

SIMULATED_INCIDENTS_TOTAL = Counter(
    "quinn_simulated_incidents_total",
    "Incidents synthesized by the simulator",
    labelnames=["severity"],
)

AUTO_RESOLVED_TOTAL = Counter(
    "quinn_auto_resolved_incidents_total",
    "Stale open incidents resolved automatically by the simulator",
)

STATUS_TRANSITIONS_TOTAL = Counter(
    "quinn_incident_status_transitions_total",
    "Incident status changes applied by the lifecycle controller",
    labelnames=["status"],
)

STORE_FALLBACKS_TOTAL = Counter(
    "quinn_store_fallbacks_total",
    "Reads or writes where the durable medium failed and the store fell back",
    labelnames=["collection", "operation"],
)

# ---------------------------------------------------------------------------
# Streaming analysis
# ---------------------------------------------------------------------------

STREAM_FRAMES_TOTAL = Counter(
    "quinn_stream_frames_total",
    "Server-sent-event lines seen by the analysis decoder",
    labelnames=["outcome"],  # delta | ignored | deferred | malformed | done
)

ANALYSIS_REQUESTS_TOTAL = Counter(
    "quinn_analysis_requests_total",
    "Analysis requests relayed to the upstream chat-completions gateway",
    labelnames=["status"],
)

# ---------------------------------------------------------------------------
# Info
# ---------------------------------------------------------------------------

APP_INFO = Info(
    "quinn",
    "Quinn telemetry engine build information",
)
