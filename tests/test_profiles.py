"""
Tests for work-profile creation, debloat and app cloning.
"""
import pytest

from adbguard.core.models import AuditStatus, CancelToken, ShellResult
from adbguard.core.profiles import ProfileManager, is_profile_essential

from conftest import offline_error

PROFILE_PACKAGES = "\n".join([
    "package:com.google.android.gms",
    "package:com.android.providers.calendar",
    "package:com.facebook.appmanager",
    "package:com.google.android.youtube",
    "package:com.vendor.stubborn",
])


@pytest.fixture
def profiles(connected, audit, notes):
    return ProfileManager(connected, audit, notes)


@pytest.fixture
def profile_device(transport):
    transport.on("pm create-user", ShellResult(0, "Success: created user id 10", ""))
    transport.on("pm list packages --user 10 -e", ShellResult(0, PROFILE_PACKAGES, ""))
    transport.on("pm uninstall -k --user 10 com.google.android.youtube",
                 ShellResult(1, "Failure [DELETE_FAILED_INTERNAL_ERROR]", ""))
    transport.on("pm uninstall -k --user 10 com.vendor.stubborn", ShellResult(1, "Failure", ""))
    transport.on("pm disable-user --user 10 com.vendor.stubborn", ShellResult(1, "", "Error"))
    return transport


def test_essential_packages():
    assert is_profile_essential("com.android.vending")
    assert is_profile_essential("com.android.providers.calendar")
    assert not is_profile_essential("com.google.android.youtube")


def test_create_clone_profile(profiles, profile_device, notes):
    events = []
    setup = profiles.create_clone_profile("Work Apps", on_progress=events.append)

    assert setup.created
    assert setup.user_id == 10
    assert setup.provisioned
    assert setup.debloat.kept == 2
    assert setup.debloat.removed == 2
    assert setup.debloat.failed_packages == ["com.vendor.stubborn"]

    commands = profile_device.commands
    assert commands[:5] == [
        'pm create-user --profileOf 0 --managed "Work Apps"',
        "am start-user 10",
        "settings put --user 10 secure user_setup_complete 1",
        "settings put --user 10 secure install_non_market_apps 1",
        "settings put --user 10 global device_provisioned 1",
    ]
    assert "pm disable-user --user 10 com.google.android.youtube" in commands
    assert not any("com.google.android.gms" in c for c in commands[6:])

    assert events[-1].phase == "done"
    assert events[-1].fraction == 1.0
    assert notes[-1].title == "Profile created"
    assert notes[-1].message == "User 10: 2 removed, 2 kept, 1 failed"


def test_create_profile_refused(profiles, transport, audit, notes):
    assert not profiles.create_clone_profile().created
    assert audit.entries[-1].status == AuditStatus.ERROR
    assert notes.titles == ["Profile error"]
    assert not any(c.startswith("am start-user") for c in transport.commands)


def test_create_profile_blank_name(profiles, transport):
    assert not profiles.create_clone_profile("   ").created
    assert transport.commands == []


def test_setup_failure_keeps_profile_id(profiles, transport, audit, notes):
    transport.on("pm create-user", ShellResult(0, "Success: created user id 10", ""))
    transport.on("pm list packages --user 10 -e", offline_error())
    setup = profiles.create_clone_profile()
    assert setup.created and setup.user_id == 10
    assert not setup.completed
    assert [e.status for e in audit.entries if e.command == "set up profile 10"] == [AuditStatus.ERROR]
    assert notes.titles == ["Profile error"]


def test_cancelled_debloat_keeps_profile(profiles, profile_device):
    cancel = CancelToken()
    cancel.cancel()
    setup = profiles.create_clone_profile(cancel=cancel)
    assert setup.created
    assert setup.debloat.removed == 0
    assert not any(c.startswith("pm remove-user") for c in profile_device.commands)


def test_delete_primary_user_refused(profiles, transport, audit):
    assert not profiles.delete_profile(0)
    assert transport.commands == []
    assert audit.entries[-1].message == "The primary user cannot be removed"


def test_delete_profile(profiles, transport, notes):
    assert profiles.delete_profile(10)
    assert transport.commands == ["pm remove-user 10"]
    assert notes.titles == ["Profile removed"]


def test_clone_app(profiles, transport, notes):
    transport.on("pm install-existing", ShellResult(0, "Package com.example.app installed for user: 10", ""))
    assert profiles.clone_app("com.example.app", 10)
    assert transport.commands == ["pm install-existing --user 10 com.example.app"]
    assert notes.titles == ["App cloned"]


@pytest.mark.parametrize("output", [
    "Package com.example.app doesn't exist",
    "Package com.example.app is not installed for user 10",
])
def test_clone_requires_install_confirmation(profiles, transport, notes, output):
    transport.on("pm install-existing", ShellResult(0, output, ""))
    assert not profiles.clone_app("com.example.app", 10)
    assert notes.titles == ["Profile error"]


def test_clone_invalid_package(profiles, transport):
    assert not profiles.clone_app("com.example;reboot", 10)
    assert transport.commands == []


def test_list_users(profiles, transport):
    transport.on("pm list users", ShellResult(0, "Users:\n\tUserInfo{0:Owner:c13} running\n\tUserInfo{10:Work:1030}\n", ""))
    users = profiles.list_users()
    assert [u.id for u in users] == [0, 10]
    assert users[0].running
    assert not users[1].running


def test_demo_profile_flow(demo, audit, notes):
    manager = ProfileManager(demo, audit, notes)
    setup = manager.create_clone_profile("Clones")
    assert setup.created
    assert any(u.id == setup.user_id for u in manager.list_users())
    assert manager.clone_app("com.example.app", setup.user_id)
    assert notes[-1].message.endswith("(Demo Mode)")
    assert manager.delete_profile(setup.user_id)
    assert not any(u.id == setup.user_id for u in manager.list_users())
