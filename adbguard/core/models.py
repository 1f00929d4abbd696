"""
Data models and enums for the ADB console core.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List
import threading


class DeviceMode(Enum):
    ADB = "adb"
    RECOVERY = "recovery"
    SIDELOAD = "sideload"
    OFFLINE = "offline"
    UNAUTHORIZED = "unauthorized"
    UNKNOWN = "unknown"


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHORIZING = "authorizing"
    CONNECTED = "connected"
    ERROR = "error"
    DEMO = "demo"


class AuditStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class RiskLevel(Enum):
    RECOMMENDED = "recommended"
    ADVANCED = "advanced"
    EXPERT = "expert"
    UNSAFE = "unsafe"

    @property
    def is_dangerous(self) -> bool:
        return self in (RiskLevel.EXPERT, RiskLevel.UNSAFE)


@dataclass
class AttachedDevice:
    """A device as reported by `adb devices -l`."""
    serial: str
    mode: DeviceMode
    product: Optional[str] = None
    model: Optional[str] = None
    device: Optional[str] = None
    transport_id: Optional[str] = None


@dataclass
class DeviceInfo:
    """Identity and state of the attached device."""
    manufacturer: str
    model: str
    serial: str
    android_version: str
    api_level: int
    battery_level: int = 0
    is_rooted: bool = False
    screen_resolution: str = ""
    screen_density: int = 0
    battery_status: str = ""

    @property
    def fingerprint(self) -> str:
        return f"{self.manufacturer}:{self.model}:{self.serial}".lower()


@dataclass(frozen=True)
class ValidationOutcome:
    """Accept/reject decision of the command gateway."""
    is_accepted: bool
    normalized_value: Optional[str] = None
    reason: Optional[str] = None
    matched_rule_id: Optional[str] = None

    def __post_init__(self):
        if self.is_accepted and self.reason is not None:
            raise ValueError("an accepted outcome cannot carry a reason")
        if not self.is_accepted and (self.normalized_value is not None or self.matched_rule_id is not None):
            raise ValueError("a rejected outcome carries only a reason")

    @classmethod
    def accept(cls, value: str, rule_id: str) -> "ValidationOutcome":
        return cls(True, normalized_value=value, matched_rule_id=rule_id)

    @classmethod
    def reject(cls, reason: str) -> "ValidationOutcome":
        return cls(False, reason=reason)


@dataclass(frozen=True)
class ShellResult:
    """Outcome of one command executed over the device channel."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class AuditEntry:
    command: str
    status: AuditStatus
    message: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PackageRecord:
    name: str
    is_enabled: bool = True
    is_system: bool = False
    apk_path: Optional[str] = None
    risk_level: RiskLevel = RiskLevel.ADVANCED


@dataclass
class BatchProgress:
    total: int
    current: int = 0
    current_label: str = ""


@dataclass(frozen=True)
class ProgressEvent:
    """One progress report of a long-running operation (fraction in [0, 1])."""
    phase: str
    fraction: float
    message: str = ""
    current: int = 0
    total: int = 0
    label: str = ""


@dataclass(frozen=True)
class Notification:
    level: str  # "success" | "error" | "info"
    title: str
    message: str = ""


@dataclass
class UserInfo:
    """An Android user/profile from `pm list users`."""
    id: int
    name: str
    flags: int = 0
    running: bool = False

    @property
    def is_managed(self) -> bool:
        return bool(self.flags & 0x20)


@dataclass
class BatchSummary:
    total: int
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed)


class CancelToken:
    """Cooperative cancellation flag checked between steps."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
