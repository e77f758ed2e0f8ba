"""System prompt for the Quinn analyst, with retrieved incident context."""

import json
from collections.abc import Mapping
from typing import Any

SYSTEM_PROMPT = """\
You are Quinn, an AI broadcast engineering analyst. You monitor live video streams \
(SRT ingest) and help operators understand incidents.

CRITICAL RULES:
- Only use the provided incident/event data. Never invent metrics, timestamps, or evidence.
- Always cite evidence with exact numbers (loss %, bitrate Mbps, timestamps).
- If data is missing, say so explicitly.
- Label uncertainty: "Most likely", "Possibly", "Unknown".
- Keep answers concise and actionable, like a senior broadcast engineer.
- Reference incidents by their ID and affected line.
- When listing incidents, include severity, status, and key evidence.
- For recommended checks, be specific and non-invasive.

OUTPUT FORMAT:
- Use markdown for structure (bold, bullets, code for metrics).
- Always include timestamps when referencing events.
- End with "Suggested next steps" when relevant."""

NO_DATA_NOTE = "No incident data available."


def format_context(context: Mapping[str, Any] | None) -> str:
    """Render incidents, events and session name as prompt sections.

    Returns an empty string when there is nothing to show.
    """
    if not context:
        return ""

    lines: list[str] = []
    incidents = context.get("incidents") or []
    if incidents:
        lines.append("\n## ACTIVE INCIDENTS")
        for inc in incidents:
            lines.append(f"\n### {inc['id']} [{str(inc['severity']).upper()}] [{inc['status']}]")
            lines.append(f"- Session: {inc['session_name']}")
            lines.append(f"- Line: {inc['primary_line_label']}")
            lines.append(f"- Started: {inc['started_at']}")
            lines.append(f"- Ended: {inc.get('ended_at') or 'Ongoing'}")
            lines.append(f"- Summary: {inc['summary']}")

    events = context.get("events") or []
    if events:
        lines.append("\n## EVENT LOG")
        for ev in events:
            confidence = f"{float(ev['confidence']) * 100:.0f}%"
            evidence = json.dumps(ev.get("evidence", {}), ensure_ascii=False)
            lines.append(
                f"- [{ev['timestamp']}] {ev['type']} on {ev['line_id']} "
                f"({ev['severity']}, confidence {confidence}) — Evidence: {evidence}"
            )

    session_name = context.get("session_name")
    if session_name:
        lines.append(f"\n## CURRENT SESSION: {session_name}")

    return "\n".join(lines)


def build_system_prompt(context: Mapping[str, Any] | None) -> str:
    """System prompt plus the retrieved-context section (or a no-data note)."""
    rendered = format_context(context)
    if not rendered:
        return f"{SYSTEM_PROMPT}\n\n{NO_DATA_NOTE}"
    return f"{SYSTEM_PROMPT}\n\n--- RETRIEVED CONTEXT ---\n{rendered}"
