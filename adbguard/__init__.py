"""
AdbGuard - MCP server and command-security gateway for an ADB device console.
"""
from .core.models import DeviceMode, SessionState, DeviceInfo
from .core.gateway import validate_terminal_command
from .core.session import Session
from .core.manager import ConsoleManager

__all__ = [
    "DeviceMode",
    "SessionState",
    "DeviceInfo",
    "validate_terminal_command",
    "Session",
    "ConsoleManager",
]
