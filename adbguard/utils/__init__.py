"""
Utilities module for AdbGuard.
"""
from .analytics import log_event, get_summary, clear_analytics

__all__ = ["log_event", "get_summary", "clear_analytics"]
