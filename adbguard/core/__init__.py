"""
Core module for AdbGuard.
Contains models, configuration, validation, the device channel and the
orchestrators that act on it.
"""
from .models import (
    DeviceMode, SessionState, AuditStatus, RiskLevel, DeviceInfo, ShellResult,
    ValidationOutcome, PackageRecord, Notification, ProgressEvent, CancelToken,
)
from .errors import AdbGuardError, ValidationError, SessionError, TransportError, DownloadError
from .gateway import validate_terminal_command
from .results import interpret_result, classify_transport_error
from .session import Session
from .transport import BaseTransport, AdbTransport
from .demo import DemoTransport
from .audit import AuditLog
from .manager import ConsoleManager

__all__ = [
    # Models
    "DeviceMode",
    "SessionState",
    "AuditStatus",
    "RiskLevel",
    "DeviceInfo",
    "ShellResult",
    "ValidationOutcome",
    "PackageRecord",
    "Notification",
    "ProgressEvent",
    "CancelToken",
    # Errors
    "AdbGuardError",
    "ValidationError",
    "SessionError",
    "TransportError",
    "DownloadError",
    # Functions
    "validate_terminal_command",
    "interpret_result",
    "classify_transport_error",
    # Classes
    "Session",
    "BaseTransport",
    "AdbTransport",
    "DemoTransport",
    "AuditLog",
    "ConsoleManager",
]
