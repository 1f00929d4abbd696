"""
Tests for value validators.
"""
import math

import pytest

from adbguard.core.errors import ValidationError
from adbguard.core.validators import (
    normalize_path, validate_app_op, validate_dns_hostname, validate_file_path,
    validate_integer_value, validate_numeric_value, validate_package_name,
    validate_permission, validate_settings_command, validate_text_input,
)


def _kind(fn, *args, **kwargs) -> str:
    with pytest.raises(ValidationError) as exc:
        fn(*args, **kwargs)
    return exc.value.kind


# ============= package names =============

@pytest.mark.parametrize("name", [
    "com.android.chrome",
    "com.samsung.android.app_123",
    "org.mozilla.firefox",
    "com.vendor." + ".".join(f"part{i}" for i in range(24)),
])
def test_package_name_accepts_valid_ids(name):
    assert validate_package_name(name) == name


def test_package_name_is_trimmed():
    assert validate_package_name("  com.whatsapp  ") == "com.whatsapp"


@pytest.mark.parametrize("name", [
    "chrome",
    "1com.example.app",
    "com..example",
    "com.example.app; reboot",
    "com.example.app && rm -rf /",
    "com.example.$(id)",
])
def test_package_name_rejects_bad_syntax(name):
    assert _kind(validate_package_name, name) == "syntax"


def test_package_name_rejects_empty_and_too_long():
    assert _kind(validate_package_name, "   ") == "empty"
    assert _kind(validate_package_name, "com." + "a" * 300) == "too_long"


# ============= paths =============

def test_normalize_path_collapses_segments():
    assert normalize_path("/data/local/tmp/./a//b/../c") == "/data/local/tmp/a/c"
    assert normalize_path("/../../etc") == "/etc"


def test_file_path_accepts_allowed_prefix():
    assert validate_file_path("/sdcard/Download/app.apk") == "/sdcard/Download/app.apk"


def test_file_path_traversal_checked_after_normalization():
    err_kind = _kind(validate_file_path, "/data/local/tmp/../../etc/hosts")
    assert err_kind == "not_allowed"


def test_file_path_rejections():
    assert _kind(validate_file_path, "") == "empty"
    assert _kind(validate_file_path, "relative/path") == "not_absolute"
    assert _kind(validate_file_path, "/sdcard/a;reboot") == "dangerous_chars"
    assert _kind(validate_file_path, "/sdcard/$(id)") == "dangerous_chars"
    assert _kind(validate_file_path, "/sdcard/a\nb") == "dangerous_chars"
    assert _kind(validate_file_path, "/" + "a" * 1100) == "too_long"


def test_file_path_custom_prefixes():
    assert validate_file_path("/data/local/tmp/x.apk", ("/data/local/tmp/",)) == "/data/local/tmp/x.apk"
    assert _kind(validate_file_path, "/sdcard/x.apk", ("/data/local/tmp/",)) == "not_allowed"


# ============= numbers =============

def test_numeric_value_accepts_in_range_values():
    assert validate_numeric_value(1.5, 0, 10, "Scale") == 1.5
    assert validate_numeric_value("2", 0, 10, "Scale") == 2.0


def test_numeric_value_never_clamps():
    with pytest.raises(ValidationError) as exc:
        validate_numeric_value(11, 0, 10, "Animation scale")
    assert exc.value.kind == "out_of_range"
    assert exc.value.message == "Animation scale must be between 0 and 10, got 11"


@pytest.mark.parametrize("value,kind", [
    (float("nan"), "not_a_number"),
    ("abc", "not_a_number"),
    (True, "not_a_number"),
    (float("inf"), "not_finite"),
    (-math.inf, "not_finite"),
])
def test_numeric_value_rejections(value, kind):
    assert _kind(validate_numeric_value, value, 0, 10, "Value") == kind


def test_integer_value():
    assert validate_integer_value("1080", 240, 7680, "Width") == 1080
    assert validate_integer_value(1080.0, 240, 7680, "Width") == 1080
    assert _kind(validate_integer_value, 1080.5, 240, 7680, "Width") == "not_integer"
    assert _kind(validate_integer_value, 100, 240, 7680, "Width") == "out_of_range"


# ============= settings =============

def test_settings_get_and_put_commands():
    assert validate_settings_command("get", "global", "window_animation_scale") == \
        "settings get global window_animation_scale"
    assert validate_settings_command("put", "global", "private_dns_mode", " hostname ") == \
        "settings put global private_dns_mode hostname"


def test_settings_rejections():
    assert _kind(validate_settings_command, "delete", "global", "font_scale") == "not_allowed"
    assert _kind(validate_settings_command, "get", "vendor", "font_scale") == "not_allowed"
    assert _kind(validate_settings_command, "get", "global", "bad key") == "syntax"
    assert _kind(validate_settings_command, "get", "global", "adb_enabled") == "not_allowed"
    assert _kind(validate_settings_command, "put", "global", "font_scale") == "missing_value"
    assert _kind(validate_settings_command, "put", "global", "font_scale", "1;reboot") == "dangerous_chars"
    assert _kind(validate_settings_command, "put", "global", "font_scale", "9" * 300) == "too_long"


# ============= identifiers and free text =============

def test_dns_hostname():
    assert validate_dns_hostname("dns.adguard.com") == "dns.adguard.com"
    assert validate_dns_hostname("   ") == ""
    assert _kind(validate_dns_hostname, "-bad-.example") == "syntax"
    assert _kind(validate_dns_hostname, "dns.example.com; reboot") == "syntax"


def test_permission_and_app_op():
    assert validate_permission("android.permission.CAMERA") == "android.permission.CAMERA"
    assert _kind(validate_permission, "CAMERA") == "syntax"
    assert _kind(validate_permission, "") == "empty"
    assert validate_app_op("RUN_IN_BACKGROUND") == "RUN_IN_BACKGROUND"
    assert _kind(validate_app_op, "run_in_background") == "syntax"


def test_text_input_lengths():
    assert validate_text_input("  Work  ", "Profile name", 64, min_length=1) == "Work"
    assert _kind(validate_text_input, "", "Profile name", 64, min_length=1) == "empty"
    assert _kind(validate_text_input, "x" * 65, "Profile name", 64) == "too_long"
