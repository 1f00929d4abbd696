"""
Tests for result interpretation and transport error classification.
"""
import pytest

from adbguard.core.models import ShellResult
from adbguard.core.results import (
    MARKER_TABLE, MARKER_TABLE_VERSION, OutcomeTag, TransportErrorKind,
    classify_transport_error, interpret_result, quirk_hints, with_quirk_hints,
)


def test_exit_zero_is_success_without_markers():
    interpretation = interpret_result(ShellResult(0, "", ""))
    assert interpretation.success
    assert not interpretation.tags


def test_marker_rescues_nonzero_exit():
    interpretation = interpret_result(
        ShellResult(1, "Package com.x new state: disabled-user", ""))
    assert interpretation.success
    assert OutcomeTag.STATE_CHANGED in interpretation.tags


def test_fallback_marker_discloses_alternate_method():
    interpretation = interpret_result(ShellResult(0, "[Fallback: uninstall] Success", ""))
    assert interpretation.used_alternate_method
    assert {OutcomeTag.FALLBACK, OutcomeTag.SUCCESS} <= interpretation.tags


def test_reinstall_marker():
    interpretation = interpret_result(
        ShellResult(0, "[Reinstall] Package com.x installed for user: 0", ""))
    assert interpretation.used_alternate_method
    assert OutcomeTag.REINSTALLED in interpretation.tags


def test_not_installed_is_not_success():
    interpretation = interpret_result(ShellResult(1, "Package com.x not installed", ""))
    assert not interpretation.success
    assert interpretation.error_text == "Package com.x not installed"


def test_error_text_prefers_stderr():
    interpretation = interpret_result(ShellResult(1, "some output", "  Failure [DELETE_FAILED]  "))
    assert interpretation.error_text == "Failure [DELETE_FAILED]"
    assert interpret_result(ShellResult(1, "", "")).error_text == "Unknown error"


def test_marker_table_is_versioned_and_complete():
    assert MARKER_TABLE_VERSION >= 1
    assert {tag for _marker, tag in MARKER_TABLE} == set(OutcomeTag)


def test_quirk_hints():
    assert quirk_hints("java.lang.SecurityException: Shell cannot change component state")
    assert quirk_hints("Unknown package: com.x")
    assert quirk_hints("Failure [INSTALL_FAILED_VERSION_DOWNGRADE]") == []
    assert with_quirk_hints("plain failure") == "plain failure"
    assert "\n\nHint: " in with_quirk_hints("Cannot disable com.x")


@pytest.mark.parametrize("message,kind", [
    ("SECURE_CONTEXT_REQUIRED", TransportErrorKind.SECURE_CONTEXT_REQUIRED),
    ("TRANSPORT_UNSUPPORTED", TransportErrorKind.TRANSPORT_UNSUPPORTED),
    ("CHANNEL_INIT_FAILED", TransportErrorKind.CHANNEL_INIT_FAILED),
    ("no device selected", TransportErrorKind.NO_DEVICE_SELECTED),
    ("Unable to claim interface", TransportErrorKind.DEVICE_BUSY),
    ("Access denied (insufficient permissions)", TransportErrorKind.ACCESS_DENIED),
    ("device not found: ABC", TransportErrorKind.DEVICE_NOT_FOUND),
    ("ABC is offline", TransportErrorKind.DEVICE_OFFLINE),
    ("Network error", TransportErrorKind.DEVICE_OFFLINE),
])
def test_classify_transport_error(message, kind):
    classified, user_message = classify_transport_error(message)
    assert classified == kind
    assert user_message and user_message != message


def test_unknown_transport_error_passes_raw_message():
    assert classify_transport_error("weird failure") == (TransportErrorKind.UNKNOWN, "weird failure")


def test_no_device_selected_wins_over_not_found():
    kind, _ = classify_transport_error("no device selected, device not found")
    assert kind == TransportErrorKind.NO_DEVICE_SELECTED
