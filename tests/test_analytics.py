"""
Tests for tool usage analytics.
"""
import json

import pytest

from adbguard.utils import analytics


@pytest.fixture(autouse=True)
def analytics_file(tmp_path, monkeypatch):
    monkeypatch.setattr(analytics, "ANALYTICS_DIR", tmp_path / "data")
    monkeypatch.setattr(analytics, "ANALYTICS_FILE", tmp_path / "data" / "analytics.jsonl")
    monkeypatch.setattr(analytics, "_last_tool", None)
    return tmp_path / "data" / "analytics.jsonl"


def test_log_event_fields(analytics_file):
    analytics.log_event("toggle_packages", ok=True, batch_size=4)
    analytics.log_event("toggle_packages", ok=False)
    analytics.log_event("run_terminal", ok=False, rejected=True)

    first, second, third = [json.loads(line) for line in analytics_file.read_text().splitlines()]
    assert first["tool"] == "toggle_packages"
    assert first["batch_size"] == 4
    assert first["retry"] is False
    assert second["retry"] is True
    assert third["rejected"] is True
    assert third["retry"] is False
    assert "ts" in first


def test_summary_without_data():
    assert analytics.get_summary() == {"error": "No analytics data yet"}


def test_summary_rates():
    for _ in range(3):
        analytics.log_event("toggle_package", ok=True)
    analytics.log_event("toggle_packages", ok=True, batch_size=3)
    analytics.log_event("run_terminal", ok=False, rejected=True)

    summary = analytics.get_summary()
    assert summary["total_events"] == 5
    assert summary["tool_counts"]["toggle_package"] == 3
    assert summary["success_rate"] == 80.0
    assert summary["rejection_rate"] == 20.0
    assert summary["retry_rate"] == 40.0
    assert summary["batch_adoption"] == 25.0


def test_insights():
    for _ in range(5):
        analytics.log_event("run_terminal", ok=False, rejected=True)
    insights = analytics.get_summary()["insights"]
    assert any(i.startswith("High rejection rate") for i in insights)
    assert any(i.startswith("High retry rate") for i in insights)
    assert any("validate_command" in i for i in insights)


def test_clear(analytics_file):
    analytics.log_event("audit_log", ok=True)
    assert analytics_file.exists()
    assert analytics.clear_analytics() == "Analytics cleared."
    assert not analytics_file.exists()
