"""
Minimal usage analytics for the MCP tool surface.
One JSON line per tool call, to see how agents actually use the console.
"""
import json
import logging
from datetime import datetime

from ..core.config import DATA_DIR

logger = logging.getLogger(__name__)

# Storage location
ANALYTICS_DIR = DATA_DIR
ANALYTICS_FILE = ANALYTICS_DIR / "analytics.jsonl"

KNOWN_TOOLS = frozenset({
    "list_devices", "connect_device", "disconnect_device", "enter_demo", "session_status",
    "validate_command", "run_terminal", "list_packages", "toggle_package", "toggle_packages",
    "install_apk", "update_risk_catalog", "device_setting", "profiles", "audit_log",
})

# Track last tool for retry detection
_last_tool = None


def log_event(tool: str, ok: bool, rejected: bool = False, batch_size: int = 1):
    """
    Log a tool usage event.

    Args:
        tool: Tool name (e.g., "run_terminal", "toggle_packages")
        ok: Whether the tool succeeded
        rejected: Whether the command gateway or a validator refused the input
        batch_size: Number of items (for batch tools)
    """
    global _last_tool

    event = {
        "ts": datetime.now().isoformat(timespec="seconds"),
        "tool": tool,
        "ok": ok,
        "rejected": rejected,
        "retry": tool == _last_tool,
        "batch_size": batch_size,
    }
    _last_tool = tool
    try:
        ANALYTICS_DIR.mkdir(parents=True, exist_ok=True)
        with open(ANALYTICS_FILE, "a", encoding="utf-8") as f:
            f.write(json.dumps(event) + "\n")
    except OSError as e:
        # Never fail the tool call due to analytics
        logger.debug("Analytics write failed: %s", e)


def _read_events() -> list:
    events = []
    with open(ANALYTICS_FILE, encoding="utf-8") as f:
        for line in f:
            if line.strip():
                events.append(json.loads(line))
    return events


def get_summary() -> dict:
    """
    Get usage summary.

    Returns dict with:
    - tool_counts: {tool_name: count}
    - success_rate, rejection_rate, retry_rate: percentages
    - batch_adoption: % of toggle calls that used the batch tool
    - insights: list of human-readable observations
    """
    if not ANALYTICS_FILE.exists():
        return {"error": "No analytics data yet"}

    try:
        events = _read_events()
    except (OSError, ValueError) as e:
        return {"error": str(e)}
    if not events:
        return {"error": "No events recorded"}

    total = len(events)
    tool_counts = {}
    for e in events:
        tool = e.get("tool", "unknown")
        tool_counts[tool] = tool_counts.get(tool, 0) + 1
    successes = sum(1 for e in events if e.get("ok"))
    rejections = sum(1 for e in events if e.get("rejected"))
    retries = sum(1 for e in events if e.get("retry"))
    batch = tool_counts.get("toggle_packages", 0)
    single = tool_counts.get("toggle_package", 0)

    return {
        "total_events": total,
        "tool_counts": tool_counts,
        "success_rate": round(successes / total * 100, 1),
        "rejection_rate": round(rejections / total * 100, 1),
        "retry_rate": round(retries / total * 100, 1),
        "batch_adoption": round(batch / (batch + single) * 100, 1) if batch + single else 0,
        "insights": _generate_insights(tool_counts, rejections / total, retries / total, batch, single),
    }


def _generate_insights(tool_counts: dict, rejection_rate: float, retry_rate: float, batch: int, single: int) -> list:
    insights = []

    if single > batch * 2 and single >= 5:
        insights.append("Low batch adoption: agents call toggle_package far more than toggle_packages.")

    if rejection_rate > 0.2:
        insights.append(f"High rejection rate ({rejection_rate*100:.0f}%): agents keep sending commands "
                        "the gateway refuses. Point them at validate_command.")

    if retry_rate > 0.15:
        insights.append(f"High retry rate ({retry_rate*100:.0f}%): check error messages and recovery hints.")

    unused = KNOWN_TOOLS - set(tool_counts)
    if unused:
        insights.append(f"Unused tools: {', '.join(sorted(unused))}.")

    if not insights:
        insights.append("No obvious ergonomic issues detected.")
    return insights


def clear_analytics():
    """Clear all analytics data."""
    if ANALYTICS_FILE.exists():
        ANALYTICS_FILE.unlink()
    return "Analytics cleared."
