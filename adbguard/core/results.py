"""
Interpretation of device channel results and transport failures.

Device shells report success inconsistently across vendors, so success is
decided by exit code OR a known marker in stdout. The markers live in one
versioned table shared by every call site (toggle, root removal, install).
This is an approximation: an unusual vendor shell can still produce a
false positive.
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Tuple

from .models import ShellResult


class OutcomeTag(Enum):
    STATE_CHANGED = "state_changed"
    SUCCESS = "success"
    FALLBACK = "fallback"
    REINSTALLED = "reinstalled"


MARKER_TABLE_VERSION = 2

# marker -> outcome, matched as case-sensitive substrings of stdout
MARKER_TABLE: Tuple[Tuple[str, OutcomeTag], ...] = (
    ("new state", OutcomeTag.STATE_CHANGED),
    ("Success", OutcomeTag.SUCCESS),
    ("installed for user", OutcomeTag.SUCCESS),
    ("[Fallback", OutcomeTag.FALLBACK),
    ("[Reinstall", OutcomeTag.REINSTALLED),
)

ALTERNATE_METHOD_TAGS = frozenset([OutcomeTag.FALLBACK, OutcomeTag.REINSTALLED])


@dataclass(frozen=True)
class Interpretation:
    success: bool
    tags: FrozenSet[OutcomeTag]
    output: str

    @property
    def used_alternate_method(self) -> bool:
        return bool(self.tags & ALTERNATE_METHOD_TAGS)

    @property
    def error_text(self) -> str:
        return self.output or "Unknown error"


def interpret_result(result: ShellResult) -> Interpretation:
    """Decide whether a channel result means the operation was applied."""
    stdout = result.stdout or ""
    tags = frozenset(tag for marker, tag in MARKER_TABLE if marker in stdout)
    success = result.exit_code == 0 or bool(tags)
    output = (result.stderr or "").strip() or stdout.strip()
    return Interpretation(success=success, tags=tags, output=output)


# ==================== Device quirk hints ====================

# (substrings matched against the lower-cased error, hint)
QUIRK_HINTS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("security", "permission"),
     "The vendor blocks this change for ADB. Some OEM builds need 'Disable permission monitoring' "
     "(Xiaomi/MIUI) or a root shell."),
    (("cannot disable", "securityexception"),
     "This package is protected against disabling. The console already tried an uninstall for user 0; "
     "a rooted device can remove it from the system partition."),
    (("not found", "unknown package"),
     "The package is not present for this user. Refresh the package list; it may already be removed."),
)


def quirk_hints(error_text: str) -> List[str]:
    lowered = (error_text or "").lower()
    return [hint for needles, hint in QUIRK_HINTS if any(n in lowered for n in needles)]


def with_quirk_hints(error_text: str) -> str:
    """Append remediation hints for known device quirks to an error message."""
    hints = quirk_hints(error_text)
    if not hints:
        return error_text
    return f"{error_text}\n\nHint: " + "\n".join(hints)


# ==================== Transport error classification ====================

class TransportErrorKind(Enum):
    SECURE_CONTEXT_REQUIRED = "secure_context_required"
    TRANSPORT_UNSUPPORTED = "transport_unsupported"
    CHANNEL_INIT_FAILED = "channel_init_failed"
    NO_DEVICE_SELECTED = "no_device_selected"
    DEVICE_BUSY = "device_busy"
    ACCESS_DENIED = "access_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    DEVICE_OFFLINE = "device_offline"
    UNKNOWN = "unknown"


# Exact codes raised by transports
_ERROR_CODES = {
    "SECURE_CONTEXT_REQUIRED": TransportErrorKind.SECURE_CONTEXT_REQUIRED,
    "TRANSPORT_UNSUPPORTED": TransportErrorKind.TRANSPORT_UNSUPPORTED,
    "CHANNEL_INIT_FAILED": TransportErrorKind.CHANNEL_INIT_FAILED,
}

# Checked in order against the lower-cased message
_ERROR_SUBSTRINGS = (
    (("no device selected",), TransportErrorKind.NO_DEVICE_SELECTED),
    (("already in use", "unable to claim interface", "claim interface", "interface already claimed"),
     TransportErrorKind.DEVICE_BUSY),
    (("access denied",), TransportErrorKind.ACCESS_DENIED),
    (("device not found", "no device"), TransportErrorKind.DEVICE_NOT_FOUND),
    (("network", "offline"), TransportErrorKind.DEVICE_OFFLINE),
)

TRANSPORT_ERROR_MESSAGES = {
    TransportErrorKind.SECURE_CONTEXT_REQUIRED: "A secure context is required to access the device channel.",
    TransportErrorKind.TRANSPORT_UNSUPPORTED: "The ADB transport is not available on this host. Install platform-tools.",
    TransportErrorKind.CHANNEL_INIT_FAILED: "Could not open the ADB channel to the device.",
    TransportErrorKind.NO_DEVICE_SELECTED: "No device selected. Connect a device and enable USB debugging.",
    TransportErrorKind.DEVICE_BUSY: "The device is in use by another program. Close other ADB clients and retry.",
    TransportErrorKind.ACCESS_DENIED: "Access to the device was denied. Check USB permissions.",
    TransportErrorKind.DEVICE_NOT_FOUND: "Device not found. Check the cable and that USB debugging is on.",
    TransportErrorKind.DEVICE_OFFLINE: "The device is offline. Reconnect it and retry.",
}


def classify_transport_error(message: str) -> Tuple[TransportErrorKind, str]:
    """Map a raw transport error to a kind and a user-facing message."""
    raw = message or ""
    kind = _ERROR_CODES.get(raw.strip())
    if kind is None:
        lowered = raw.lower()
        kind = TransportErrorKind.UNKNOWN
        for needles, candidate in _ERROR_SUBSTRINGS:
            if any(n in lowered for n in needles):
                kind = candidate
                break
    if kind is TransportErrorKind.UNKNOWN:
        return kind, raw or "Unknown error"
    return kind, TRANSPORT_ERROR_MESSAGES[kind]
