"""
Exception hierarchy for the ADB console core.
"""
from typing import Optional


class AdbGuardError(Exception):
    """Base class for all console errors."""


class ValidationError(AdbGuardError):
    """A value was rejected before reaching the device channel."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class SessionError(AdbGuardError):
    """Illegal session transition or missing channel."""


class TransportError(AdbGuardError):
    """The device channel failed. The message is classified for the user."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or message


class DownloadError(AdbGuardError):
    """Remote APK could not be fetched."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message
