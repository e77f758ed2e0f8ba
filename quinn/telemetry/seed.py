"""Deterministic fixtures the store starts from when nothing is persisted yet."""

from quinn.telemetry.models import Alert, Event, Incident

SEED_INCIDENTS: list[Incident] = [
    {
        "id": "inc-001",
        "session_id": "sess-001",
        "session_name": "Super Bowl LVIII — Main Feed",
        "primary_line_id": "line-3",
        "primary_line_label": "Line 3 — Program",
        "started_at": "2026-02-13T15:14:08+00:00",
        "ended_at": None,
        "severity": "critical",
        "status": "open",
        "summary": (
            "Sustained packet loss spike on Line 3 (1.8%) with freeze risk. "
            "Loss rose from 0.1% → 1.8% over 4 seconds."
        ),
        "created_by": "quinn",
    },
    {
        "id": "inc-002",
        "session_id": "sess-001",
        "session_name": "Super Bowl LVIII — Main Feed",
        "primary_line_id": "line-1",
        "primary_line_label": "Line 1 — Camera A",
        "started_at": "2026-02-13T14:52:30+00:00",
        "ended_at": "2026-02-13T14:53:45+00:00",
        "severity": "warn",
        "status": "resolved",
        "summary": "Brief audio clipping detected on Line 1. Peak exceeded -1.0 dBFS for 800ms.",
        "created_by": "quinn",
    },
    {
        "id": "inc-003",
        "session_id": "sess-002",
        "session_name": "Champions League Semi — QC",
        "primary_line_id": "line-2",
        "primary_line_label": "Line 2 — Camera B",
        "started_at": "2026-02-13T13:22:00+00:00",
        "ended_at": None,
        "severity": "warn",
        "status": "ack",
        "summary": "Bitrate dropped 42% on Line 2 for 18 seconds. Recovered automatically.",
        "created_by": "quinn",
    },
    {
        "id": "inc-004",
        "session_id": "sess-001",
        "session_name": "Super Bowl LVIII — Main Feed",
        "primary_line_id": "line-2",
        "primary_line_label": "Line 2 — Camera B",
        "started_at": "2026-02-13T14:41:00+00:00",
        "ended_at": "2026-02-13T14:41:30+00:00",
        "severity": "info",
        "status": "resolved",
        "summary": "Resolution change detected on Line 2: 1920×1080 → 3840×2160. Codec switched to H.265.",
        "created_by": "quinn",
    },
]

SEED_EVENTS: list[Event] = [
    {
        "id": "ev-001",
        "incident_id": "inc-001",
        "session_id": "sess-001",
        "line_id": "line-3",
        "timestamp": "2026-02-13T15:14:08+00:00",
        "type": "packet_loss_spike",
        "severity": "critical",
        "confidence": 0.95,
        "evidence": {"lossBefore": 0.1, "lossAfter": 1.8, "durationMs": 4200},
    },
    {
        "id": "ev-002",
        "incident_id": "inc-001",
        "session_id": "sess-001",
        "line_id": "line-3",
        "timestamp": "2026-02-13T15:14:12+00:00",
        "type": "freeze_detected",
        "severity": "critical",
        "confidence": 0.88,
        "evidence": {"freezeDurationMs": 2100, "framesDuplicated": 63},
    },
    {
        "id": "ev-003",
        "incident_id": "inc-002",
        "session_id": "sess-001",
        "line_id": "line-1",
        "timestamp": "2026-02-13T14:52:30+00:00",
        "type": "audio_clipping",
        "severity": "warn",
        "confidence": 0.92,
        "evidence": {"peakDbfs": -0.3, "durationMs": 800},
    },
    {
        "id": "ev-004",
        "incident_id": "inc-003",
        "session_id": "sess-002",
        "line_id": "line-2",
        "timestamp": "2026-02-13T13:22:00+00:00",
        "type": "bitrate_drop",
        "severity": "warn",
        "confidence": 0.97,
        "evidence": {"bitrateBefore": 12.1, "bitrateAfter": 7.0, "dropPct": 42},
    },
    {
        "id": "ev-005",
        "incident_id": "inc-004",
        "session_id": "sess-001",
        "line_id": "line-2",
        "timestamp": "2026-02-13T14:41:00+00:00",
        "type": "resolution_change",
        "severity": "info",
        "confidence": 1.0,
        "evidence": {"from": "1920×1080", "to": "3840×2160"},
    },
    {
        "id": "ev-006",
        "incident_id": "inc-004",
        "session_id": "sess-001",
        "line_id": "line-2",
        "timestamp": "2026-02-13T14:41:00+00:00",
        "type": "codec_change",
        "severity": "info",
        "confidence": 1.0,
        "evidence": {"from": "H.264 High", "to": "H.265 Main"},
    },
]

SEED_ALERTS: list[Alert] = [
    {
        "id": "al-001",
        "incident_id": "inc-001",
        "target_user_id": "u1",
        "delivered_at": "2026-02-13T15:14:10+00:00",
        "ack_at": None,
    },
    {
        "id": "al-002",
        "incident_id": "inc-002",
        "target_user_id": "u1",
        "delivered_at": "2026-02-13T14:52:32+00:00",
        "ack_at": "2026-02-13T14:53:00+00:00",
    },
]
