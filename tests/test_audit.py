"""
Tests for the session audit log.
"""
from adbguard.core.audit import SEPARATOR, AuditLog
from adbguard.core.models import AuditStatus, ShellResult


def test_command_listener_records_status_and_output():
    log = AuditLog()
    log.on_command("pm list packages", ShellResult(0, "package:a\n", ""))
    log.on_command("pm disable-user x", ShellResult(1, "", "Error: no such package\n"))

    ok, failed = log.entries
    assert ok.status == AuditStatus.SUCCESS
    assert ok.message == "package:a"
    assert failed.status == AuditStatus.ERROR
    assert failed.message == "Error: no such package"


def test_recent_is_newest_first():
    log = AuditLog()
    for i in range(5):
        log.success(f"cmd {i}")
    assert [e.command for e in log.recent(2)] == ["cmd 4", "cmd 3"]
    assert len(log.recent()) == 5


def test_clear_resets_totals():
    log = AuditLog()
    log.pending("download x")
    log.error("install x", "boom")
    assert log.total_commands == 2
    log.clear()
    assert len(log) == 0
    assert log.total_commands == 0


def test_export_text_format():
    log = AuditLog()
    log.success("getprop ro.product.model", "Pixel 6")
    log.error("rm -rf /", "")
    text = log.export_text()

    blocks = text.split(f"{SEPARATOR}\n")
    assert "] getprop ro.product.model\nPixel 6\n" in blocks[0]
    assert "] rm -rf /\n\n" in blocks[1]
    assert text.index("getprop") < text.index("rm -rf")


def test_export_to_directory(tmp_path):
    log = AuditLog()
    log.success("wm size reset")
    path = log.export_to(tmp_path)
    assert path.parent == tmp_path
    assert path.name.startswith("adb_session_log_")
    assert "wm size reset" in path.read_text(encoding="utf-8")
