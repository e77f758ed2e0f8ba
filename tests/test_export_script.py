"""Tests for the incident export script."""

import json
import sys
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from scripts import export_incident


class TestExportScript:
    def test_writes_report_file(self, mock_settings: Any, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "argv", ["export_incident", "inc-001", "--out", str(tmp_path / "reports")])
        with patch("scripts.export_incident.get_settings", return_value=mock_settings):
            export_incident.main()

        path = tmp_path / "reports" / "incident-inc-001.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["incident"]["id"] == "inc-001"
        assert [e["id"] for e in data["events"]] == ["ev-001", "ev-002"]

    def test_unknown_incident_exits_nonzero(
        self, mock_settings: Any, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(sys, "argv", ["export_incident", "inc-404", "--out", str(tmp_path)])
        with (
            patch("scripts.export_incident.get_settings", return_value=mock_settings),
            pytest.raises(SystemExit) as exc_info,
        ):
            export_incident.main()

        assert exc_info.value.code == 1
        assert list(tmp_path.iterdir()) == []
