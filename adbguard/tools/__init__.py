"""
MCP tool registration for AdbGuard.
"""
from .handlers import register_tools

__all__ = ["register_tools"]
