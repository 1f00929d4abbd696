"""
End-to-end checks against a real device.

Test devices:
- Pixel 6 (18271FDF600EJW)
- Lenovo TB-J606F (HA18JEG1)

Skipped unless adb is on PATH and a device is attached and authorized.
Run with: pytest -m device
"""
import shutil
import subprocess

import pytest

from adbguard.core.config import ADB_BINARY
from adbguard.core.manager import ConsoleManager
from adbguard.core.transport import AdbTransport


def detect_device():
    """First attached, authorized device serial, or None."""
    if shutil.which(ADB_BINARY) is None:
        return None
    try:
        result = subprocess.run(
            [ADB_BINARY, "devices", "-l"],
            capture_output=True, text=True, timeout=10
        )
    except (OSError, subprocess.TimeoutExpired):
        return None

    for line in result.stdout.strip().split('\n')[1:]:
        parts = line.split()
        if len(parts) >= 2 and parts[1] == 'device':
            return parts[0]
    return None


DEVICE = detect_device()

pytestmark = [
    pytest.mark.device,
    pytest.mark.skipif(DEVICE is None, reason="no authorized adb device attached"),
]


@pytest.fixture(scope="module")
def console():
    manager = ConsoleManager(transport=AdbTransport())
    result = manager.connect(DEVICE)
    assert result.startswith("STATUS: CONNECTED"), result
    yield manager
    manager.disconnect()


def test_list_devices(console):
    result = console.list_devices()
    assert result.startswith("STATUS: FOUND_")
    assert DEVICE in result


def test_status(console):
    result = console.status()
    assert result.startswith("STATUS: CONNECTED")
    assert f"Serial: {DEVICE}" in result


def test_terminal_roundtrip(console):
    assert console.check_command("getprop ro.build.version.sdk").startswith("STATUS: ALLOWED")
    result = console.run_terminal("getprop ro.build.version.sdk")
    assert result.startswith("STATUS: SUCCESS\nEXIT_CODE: 0")
    assert result.rsplit("\n", 1)[-1].strip().isdigit()


def test_grep_pipe(console):
    result = console.run_terminal("dumpsys battery | grep level")
    assert result.startswith("STATUS: SUCCESS")
    assert "level" in result


def test_rejected_command_never_runs(console):
    before = console.audit.total_commands
    result = console.run_terminal("reboot")
    assert result.startswith("STATUS: REJECTED")
    # Only the rejection entry, no device command
    assert console.audit.total_commands == before + 1


def test_list_packages(console):
    result = console.list_packages("android")
    assert result.startswith("STATUS: FOUND_")
    assert "com.android." in result
