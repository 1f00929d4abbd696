"""
Tests for adb output parsers and the shared transport logic.
"""
import pytest

from adbguard.core.errors import TransportError, ValidationError
from adbguard.core.models import DeviceMode, ShellResult
from adbguard.core import transport as transport_module
from adbguard.core.shell import AdbShell
from adbguard.core.transport import (
    AdbTransport, is_system_path, parse_device_list, parse_package_names, parse_package_paths, parse_users,
)

DEVICES_OUTPUT = """List of devices attached
18271FDF600EJW         device usb:1-1 product:oriole model:Pixel_6 device:oriole transport_id:3
HA18JEG1               unauthorized usb:1-2 transport_id:4
emulator-5554          offline

"""


def test_parse_device_list():
    devices = parse_device_list(DEVICES_OUTPUT)
    assert [d.serial for d in devices] == ["18271FDF600EJW", "HA18JEG1", "emulator-5554"]
    assert devices[0].mode == DeviceMode.ADB
    assert devices[0].model == "Pixel_6"
    assert devices[0].transport_id == "3"
    assert devices[1].mode == DeviceMode.UNAUTHORIZED
    assert devices[2].mode == DeviceMode.OFFLINE


def test_parse_package_paths_handles_equals_in_path():
    output = (
        "package:/data/app/~~abc==/com.example-1/base.apk=com.example\n"
        "package:/system/app/YouTube/YouTube.apk=com.google.android.youtube\n"
        "garbage line\n"
    )
    assert parse_package_paths(output) == [
        ("/data/app/~~abc==/com.example-1/base.apk", "com.example"),
        ("/system/app/YouTube/YouTube.apk", "com.google.android.youtube"),
    ]


def test_parse_package_names():
    assert parse_package_names("package:com.a\npackage:com.b\n\n") == {"com.a", "com.b"}


def test_parse_users():
    output = (
        "Users:\n"
        "\tUserInfo{0:Owner:c13} running\n"
        "\tUserInfo{10:Work profile:1030}\n"
    )
    users = parse_users(output)
    assert [(u.id, u.name, u.running) for u in users] == [(0, "Owner", True), (10, "Work profile", False)]
    assert users[1].is_managed
    assert not users[0].is_managed


def test_is_system_path():
    assert is_system_path("/system/app/X/X.apk")
    assert is_system_path("/product/priv-app/Y/Y.apk")
    assert not is_system_path("/data/app/z/base.apk")
    assert not is_system_path(None)


# ============= BaseTransport on a fake =============

def test_disable_falls_back_to_uninstall(transport):
    transport.on("pm disable-user", ShellResult(1, "Exception: Cannot disable system package", ""))
    transport.on("pm uninstall -k", ShellResult(0, "Success", ""))
    result = transport.disable_package("com.example.app")
    assert result.exit_code == 0
    assert result.stdout.startswith("[Fallback: uninstall]")
    assert transport.commands == [
        "pm disable-user --user 0 com.example.app",
        "pm uninstall -k --user 0 com.example.app",
    ]


def test_disable_reports_both_failures(transport):
    transport.on("pm disable-user", ShellResult(1, "", "denied"))
    transport.on("pm uninstall -k", ShellResult(1, "Failure", ""))
    result = transport.disable_package("com.example.app")
    assert result.exit_code == 1
    assert "Neither disable nor uninstall worked" in result.stderr


def test_enable_falls_back_to_install_existing(transport):
    transport.on("pm enable", ShellResult(1, "", "Unknown package"))
    transport.on("pm install-existing", ShellResult(0, "Package com.example.app installed for user: 0", ""))
    result = transport.enable_package("com.example.app")
    assert result.stdout.startswith("[Reinstall]")


def test_invalid_package_never_reaches_channel(transport):
    with pytest.raises(ValidationError):
        transport.disable_package("com.example; reboot")
    assert transport.commands == []


def test_find_package_matches_exact_name(transport):
    transport.on("pm list packages -f -u com.user.b", ShellResult(0, (
        "package:/data/app/bb/base.apk=com.user.b.beta\n"
        "package:/system/app/B/B.apk=com.user.b\n"), ""))
    record = transport.find_package("com.user.b")
    assert (record.name, record.apk_path, record.is_system) == ("com.user.b", "/system/app/B/B.apk", True)
    assert transport.find_package("com.user") is None


def test_list_packages_computes_state_and_drops_ghosts(transport):
    transport.on("pm list packages -f -u", ShellResult(0, (
        "package:/system/app/A/A.apk=com.sys.a\n"
        "package:/data/app/b/base.apk=com.user.b\n"
        "package:/data/app/c/base.apk=com.ghost.c\n"), ""))
    transport.on("pm list packages -d", ShellResult(0, "package:com.sys.a\n", ""))
    transport.on("pm list packages", ShellResult(0, "package:com.sys.a\npackage:com.user.b\n", ""))
    transport.on("for p in", ShellResult(0, "com.sys.a com.user.b ", ""))

    records = {r.name: r for r in transport.list_packages()}
    assert set(records) == {"com.sys.a", "com.user.b"}
    assert records["com.sys.a"].is_system and not records["com.sys.a"].is_enabled
    assert records["com.user.b"].is_enabled and not records["com.user.b"].is_system


def test_install_binary_always_removes_temp_file(transport):
    transport.on("pm install", TransportError("device offline"))
    with pytest.raises(TransportError):
        transport.install_binary(b"apk-bytes")
    assert transport.commands[-1].startswith('rm "/data/local/tmp/app_install_')


def test_install_binary_progress_is_monotonic(transport):
    seen = []
    transport.install_binary(b"x" * 100000, seen.append)
    assert seen == sorted(seen)
    assert seen[0] == 0.1 and seen[-1] == 1.0


def test_root_uninstall_rejects_paths_outside_partitions(transport):
    with pytest.raises(ValidationError):
        transport.uninstall_package_root("com.example.app", "/sdcard/evil.apk")
    assert transport.commands == []


def test_listeners_see_failed_commands(transport):
    seen = []
    transport.add_command_listener(lambda cmd, res: seen.append((cmd, res.exit_code)))
    transport.on("wm size", TransportError("device offline"))
    with pytest.raises(TransportError):
        transport.shell("wm size")
    assert seen == [("wm size", 1)]


# ============= interactive shell output =============

def test_shell_output_parser_reads_exit_code():
    exit_marker = "__EXIT_abcd1234__"
    raw = f"\r\nDownload\r\nMusic\r\n{exit_marker}0{exit_marker}\r\n"
    result = AdbShell._parse_output(raw, exit_marker)
    assert result == ShellResult(0, "Download\nMusic", "")


def test_shell_output_parser_drops_prompts_and_keeps_failure_code():
    exit_marker = "__EXIT_ffff0000__"
    raw = f"\r\n/system/bin/sh: foo: not found\r\n{exit_marker}127{exit_marker}\r\noriole:/ $ \r\n"
    result = AdbShell._parse_output(raw, exit_marker)
    assert result.exit_code == 127
    assert result.stdout == "/system/bin/sh: foo: not found"


# ============= adb transport =============

class DeadShell:
    """Interactive shell whose device stops answering right after connect."""
    instances = []

    def __init__(self, serial):
        self.serial = serial
        self.closed = False
        DeadShell.instances.append(self)

    def connect(self):
        pass

    def run(self, command):
        raise TransportError("device offline")

    def disconnect(self):
        self.closed = True


def test_adb_connect_closes_shell_when_device_info_fails(monkeypatch):
    DeadShell.instances = []
    monkeypatch.setattr(transport_module.shutil, "which", lambda binary: "/usr/bin/adb")
    monkeypatch.setattr(AdbTransport, "list_devices", lambda self: parse_device_list(DEVICES_OUTPUT))
    monkeypatch.setattr(transport_module, "AdbShell", DeadShell)

    adb = AdbTransport()
    with pytest.raises(TransportError):
        adb.connect()
    assert DeadShell.instances[0].closed
    assert adb._shell is None and adb.serial is None
