"""
Value validators for everything that gets embedded into a device shell command.

Every function here is pure: it takes a raw value and either returns the
normalized value or raises ValidationError with a specific kind.
"""
import math
import re
from typing import Iterable, Optional, Union

from .config import (
    ALLOWED_PATH_PREFIXES, ALLOWED_SETTING_KEYS, SETTINGS_NAMESPACES,
    MAX_IDENTIFIER_LENGTH, MAX_PATH_LENGTH, MAX_SETTING_VALUE_LENGTH,
    MAX_HOSTNAME_LENGTH,
)
from .errors import ValidationError

# com.android.example, com.samsung.android.app_123
PACKAGE_NAME_RE = re.compile(r'[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+')

# Shell metacharacters plus control characters
DANGEROUS_CHARS_RE = re.compile(r'[;|&$`(){}<>!~\x00-\x1f\x7f]')

SETTING_KEY_RE = re.compile(r'[a-zA-Z_][a-zA-Z0-9_]{0,128}')

DNS_HOSTNAME_RE = re.compile(
    r'[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?'
    r'(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*'
)

# android.permission.CAMERA, com.vendor.permission.X
PERMISSION_RE = re.compile(r'[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*){2,10}')

APP_OP_RE = re.compile(r'[A-Z_]{2,50}')

Number = Union[int, float, str]


def validate_package_name(name: str) -> str:
    """Validate an Android package / application id. Returns the trimmed name."""
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("empty", "Package name cannot be empty")
    if len(trimmed) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError("too_long", "Package name too long")
    if not PACKAGE_NAME_RE.fullmatch(trimmed):
        raise ValidationError(
            "syntax",
            f'Invalid package name: "{trimmed}". Package names must be like com.example.app')
    return trimmed


def normalize_path(path: str) -> str:
    """
    Collapse `.`, `..` and empty segments of an absolute path.

    `..` never climbs above the root: "/../etc" becomes "/etc".
    """
    retained = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if retained:
                retained.pop()
            continue
        retained.append(part)
    return "/" + "/".join(retained)


def validate_file_path(path: str, allowed_prefixes: Optional[Iterable[str]] = None) -> str:
    """
    Validate a path on the device and return its normalized form.

    The normalized path (not the raw input) is checked against the allowed
    root prefixes, so "/data/local/tmp/../../etc/hosts" is rejected as "/etc/hosts".
    """
    trimmed = (path or "").strip()
    if not trimmed:
        raise ValidationError("empty", "File path cannot be empty")
    if len(trimmed) > MAX_PATH_LENGTH:
        raise ValidationError("too_long", "File path too long")
    if DANGEROUS_CHARS_RE.search(trimmed):
        raise ValidationError("dangerous_chars", f'File path contains dangerous characters: "{trimmed}"')
    if not trimmed.startswith("/"):
        raise ValidationError("not_absolute", "File path must be absolute (start with /)")

    normalized = normalize_path(trimmed)
    prefixes = tuple(allowed_prefixes) if allowed_prefixes is not None else ALLOWED_PATH_PREFIXES
    if not any(normalized.startswith(prefix) for prefix in prefixes):
        raise ValidationError("not_allowed", f'File path "{normalized}" is not in an allowed directory')
    return normalized


def _as_number(value: Number, name: str) -> float:
    if isinstance(value, bool):
        raise ValidationError("not_a_number", f"{name} must be a valid number")
    if isinstance(value, (int, float)):
        number = value
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            raise ValidationError("not_a_number", f"{name} must be a valid number")
    if isinstance(number, float) and math.isnan(number):
        raise ValidationError("not_a_number", f"{name} must be a valid number")
    return number


def _format_number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def validate_numeric_value(value: Number, minimum: float, maximum: float, name: str) -> float:
    """Reject NaN, infinities and anything outside [minimum, maximum]. Never clamps."""
    number = _as_number(value, name)
    if isinstance(number, float) and math.isinf(number):
        raise ValidationError("not_finite", f"{name} must be a finite number")
    if number < minimum or number > maximum:
        raise ValidationError(
            "out_of_range",
            f"{name} must be between {minimum} and {maximum}, got {_format_number(number)}")
    return number


def validate_integer_value(value: Number, minimum: int, maximum: int, name: str) -> int:
    number = validate_numeric_value(value, minimum, maximum, name)
    if isinstance(number, float):
        if not number.is_integer():
            raise ValidationError("not_integer", f"{name} must be an integer, got {number}")
        number = int(number)
    return number


def validate_settings_command(action: str, namespace: str, key: str, value: Optional[str] = None) -> str:
    """
    Validate a settings get/put and return the command string.

    The key must be syntactically valid AND present in ALLOWED_SETTING_KEYS.
    """
    if action not in ("get", "put"):
        raise ValidationError("not_allowed", f'Invalid settings action: "{action}"')
    if namespace not in SETTINGS_NAMESPACES:
        raise ValidationError("not_allowed", f'Invalid settings namespace: "{namespace}"')
    if not SETTING_KEY_RE.fullmatch(key or ""):
        raise ValidationError("syntax", f'Invalid setting key: "{key}"')
    if key not in ALLOWED_SETTING_KEYS:
        raise ValidationError("not_allowed", f'Setting key not in allowlist: "{key}"')

    if action == "get":
        return f"settings get {namespace} {key}"

    if value is None:
        raise ValidationError("missing_value", "Value is required for settings put")
    trimmed = str(value).strip()
    if len(trimmed) > MAX_SETTING_VALUE_LENGTH:
        raise ValidationError("too_long", "Settings value too long")
    if DANGEROUS_CHARS_RE.search(trimmed):
        raise ValidationError("dangerous_chars", f'Settings value contains dangerous characters: "{trimmed}"')
    return f"settings put {namespace} {key} {trimmed}"


def validate_dns_hostname(hostname: str) -> str:
    """Validate a private DNS hostname. Empty string means "disable" and is returned as-is."""
    trimmed = (hostname or "").strip()
    if not trimmed:
        return ""
    if len(trimmed) > MAX_HOSTNAME_LENGTH:
        raise ValidationError("too_long", "DNS hostname too long")
    if not DNS_HOSTNAME_RE.fullmatch(trimmed):
        raise ValidationError("syntax", f'Invalid DNS hostname: "{trimmed}"')
    return trimmed


def validate_permission(permission: str) -> str:
    trimmed = (permission or "").strip()
    if not trimmed:
        raise ValidationError("empty", "Permission cannot be empty")
    if len(trimmed) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError("too_long", "Permission name too long")
    if not PERMISSION_RE.fullmatch(trimmed):
        raise ValidationError("syntax", f'Invalid permission format: "{trimmed}"')
    return trimmed


def validate_app_op(op: str) -> str:
    trimmed = (op or "").strip()
    if not APP_OP_RE.fullmatch(trimmed):
        raise ValidationError("syntax", f'Invalid appops operation: "{trimmed}"')
    return trimmed


def validate_text_input(value: str, field_name: str, max_length: int, min_length: int = 0) -> str:
    """Length check on trimmed free text (profile names, labels)."""
    trimmed = (value or "").strip()
    if len(trimmed) < min_length:
        raise ValidationError("empty", f"{field_name} must be at least {min_length} characters")
    if len(trimmed) > max_length:
        raise ValidationError("too_long", f"{field_name} must be at most {max_length} characters")
    return trimmed
