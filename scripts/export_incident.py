"""Export an incident and its events to incident-<id>.json.

Reads from the configured store (STORE_DB_PATH).

Usage:
    uv run python -m scripts.export_incident inc-001 --out reports/
"""

import argparse
import logging
import sys
from pathlib import Path

from quinn.config import get_settings
from quinn.telemetry.lifecycle import IncidentController, report_filename
from quinn.telemetry.storage import open_storage
from quinn.telemetry.store import TelemetryStore

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Export an incident report as JSON")
    parser.add_argument("incident_id", help="Incident id, e.g. inc-001")
    parser.add_argument("--out", default=".", help="Output directory (default: current directory)")
    args = parser.parse_args()

    store = TelemetryStore(open_storage(get_settings().store_db_path))
    payload = IncidentController(store).export_report(args.incident_id)
    if payload == "{}":
        print(f"Unknown incident: {args.incident_id}", file=sys.stderr)
        sys.exit(1)

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / report_filename(args.incident_id)
    path.write_text(payload, encoding="utf-8")
    print(path)


if __name__ == "__main__":
    main()
