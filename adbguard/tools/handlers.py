"""
MCP Tool definitions for AdbGuard.

Consolidated tools: one tool per concern, `action` arguments where a
concern has several operations.

Analytics: one line per call to ~/.adbguard/analytics.jsonl
"""
from mcp.server.fastmcp import FastMCP

from ..core.catalog import load_catalog
from ..core.config import LOCAL_USER_ID
from ..core.manager import ConsoleManager
from ..core.registry import JsonFileRegistry
from ..utils import analytics

# Global console instance
_manager = ConsoleManager(registry=JsonFileRegistry(), risk_catalog=load_catalog(), user_id=LOCAL_USER_ID)


def _ok(result: str, *statuses: str) -> bool:
    """True when the envelope status is one of `statuses` (FOUND_ matches any count)."""
    status = result.split("\n", 1)[0].replace("STATUS: ", "", 1)
    if status.startswith("FOUND_"):
        status = "FOUND_"
    return status in statuses


def _filter_output(result: str, max_lines: int = None, output_mode: str = "tail") -> str:
    """Limit command output to protect the LLM context window."""
    if not max_lines:
        return result

    header_lines = []
    output_lines = []
    in_output = False
    for line in result.split('\n'):
        if in_output:
            output_lines.append(line)
        else:
            header_lines.append(line)
            in_output = line.startswith("OUTPUT:")

    original_count = len(output_lines)
    if original_count <= max_lines:
        return result

    if output_mode == "head":
        output_lines = output_lines[:max_lines]
    else:
        output_lines = output_lines[-max_lines:]
    header_lines.insert(-1, f"TRUNCATED: {len(output_lines)}/{original_count} lines ({output_mode})")
    return '\n'.join(header_lines + output_lines)


def register_tools(mcp: FastMCP):
    """Register all MCP tools with the server."""

    # ==================== Session ====================
    @mcp.tool()
    def list_devices() -> str:
        """
        List Android devices attached to the host adb server.

        Returns serial, mode (adb/recovery/sideload/unauthorized/offline),
        model and guidance for devices that need attention.
        """
        result = _manager.list_devices()
        analytics.log_event("list_devices", ok=_ok(result, "FOUND_", "NO_DEVICES"))
        return result

    @mcp.tool()
    def connect_device(serial: str = None) -> str:
        """
        Attach the console to a device.

        Args:
            serial: Device serial (from list_devices). Omit to use the first device.

        An unauthorized device waits for the USB debugging prompt to be
        accepted; if authorization hangs, the session recovers to disconnected.
        """
        result = _manager.connect(serial)
        analytics.log_event("connect_device", ok=_ok(result, "CONNECTED", "ALREADY_CONNECTED"))
        return result

    @mcp.tool()
    def disconnect_device() -> str:
        """Detach from the device. Clears the audit log and the package list."""
        result = _manager.disconnect()
        analytics.log_event("disconnect_device", ok=True)
        return result

    @mcp.tool()
    def enter_demo() -> str:
        """
        Start demo mode: a simulated Pixel device. Every command "succeeds"
        and nothing reaches real hardware. Only available while disconnected.
        """
        result = _manager.enter_demo()
        analytics.log_event("enter_demo", ok=_ok(result, "DEMO"))
        return result

    @mcp.tool()
    def session_status() -> str:
        """
        Current session state, device details, last error, batch progress
        and any pending notifications.
        """
        result = _manager.status()
        analytics.log_event("session_status", ok=True)
        return result

    # ==================== Terminal ====================
    @mcp.tool()
    def validate_command(command: str) -> str:
        """
        Check a terminal command against the security gateway without running it.

        Returns ALLOWED with the matched rule, or REJECTED with the reason.
        """
        result = _manager.check_command(command)
        allowed = _ok(result, "ALLOWED")
        analytics.log_event("validate_command", ok=allowed, rejected=not allowed)
        return result

    @mcp.tool()
    def run_terminal(command: str, max_lines: int = None) -> str:
        """
        Run one allow-listed command on the device.

        Args:
            command: e.g. "pm list packages -d", "dumpsys battery | grep level"
            max_lines: Limit output to the last N lines. RECOMMENDED for dumpsys!

        Only allow-listed command families run. Redirection, chaining,
        substitution and destructive commands are refused; the only pipe
        allowed is a single pipe to grep.

        Returns:
        - STATUS: SUCCESS/COMMAND_FAILED/REJECTED/ERROR/NO_DEVICE
        - EXIT_CODE and OUTPUT when the command ran
        """
        result = _filter_output(_manager.run_terminal(command), max_lines)
        analytics.log_event("run_terminal", ok=_ok(result, "SUCCESS"), rejected=_ok(result, "REJECTED"))
        return result

    # ==================== Packages ====================
    @mcp.tool()
    def list_packages(filter: str = None, only_disabled: bool = False) -> str:
        """
        List installed packages with state, risk level and system flag.

        Args:
            filter: Case-insensitive substring of the package name
            only_disabled: Only show disabled packages
        """
        result = _manager.list_packages(filter, only_disabled)
        analytics.log_event("list_packages", ok=_ok(result, "FOUND_"))
        return result

    @mcp.tool()
    def toggle_package(package: str, enable: bool = False, confirmed: bool = False) -> str:
        """
        Enable or disable one package.

        Args:
            package: Package name, e.g. "com.facebook.katana"
            enable: True to enable, False to disable
            confirmed: Required to disable system or Expert/Unsafe packages

        Disabling falls back to a keep-data uninstall for the user when the
        device refuses; enabling falls back to reinstalling the stock APK.
        """
        result = _manager.toggle_package(package, enable, confirmed)
        analytics.log_event("toggle_package", ok=_ok(result, "ENABLED", "DISABLED"))
        return result

    @mcp.tool()
    def toggle_packages(packages: list, enable: bool = False) -> str:
        """
        Enable or disable several packages in ONE call, one after another.

        Args:
            packages: ["com.example.a", "com.example.b"]
            enable: True to enable all, False to disable all

        Selecting packages for a batch counts as confirmation.
        """
        result = _manager.toggle_packages(packages, enable)
        analytics.log_event(
            "toggle_packages",
            ok=", 0 failed" in result.split("\n", 1)[0],
            batch_size=len(packages) if isinstance(packages, list) else 1,
        )
        return result

    # ==================== Install ====================
    @mcp.tool()
    def install_apk(url: str = None, label: str = None, urls: list = None) -> str:
        """
        Download APKs from a trusted host and install them.

        Args:
            url: HTTPS link ending in .apk on github.com, f-droid.org,
                 apkmirror.com, apkpure.com or releases.mozilla.org
            label: Display name for the audit log (single install only)
            urls: Several links, installed one after another in ONE call
        """
        if urls:
            result = _manager.install_apks(urls)
            analytics.log_event(
                "install_apk",
                ok=", 0 failed" in result.split("\n", 1)[0],
                batch_size=len(urls) if isinstance(urls, list) else 1,
            )
            return result
        if not url:
            result = "STATUS: ERROR\nReason: Pass url, or urls for several APKs."
            analytics.log_event("install_apk", ok=False)
            return result
        result = _manager.install_apk(url, label)
        analytics.log_event("install_apk", ok=_ok(result, "INSTALLED"))
        return result

    @mcp.tool()
    def update_risk_catalog() -> str:
        """
        Refresh the removal-risk list (Universal Android Debloater) used to
        rate packages as recommended/advanced/expert/unsafe. Expert and
        unsafe packages need confirmation before they are disabled.
        """
        result = _manager.update_risk_catalog()
        analytics.log_event("update_risk_catalog", ok=_ok(result, "UPDATED"))
        return result

    # ==================== Device settings ====================
    @mcp.tool()
    def device_setting(
        action: str,
        namespace: str = None,
        key: str = None,
        value: str = None,
        package: str = None,
        permission: str = None,
        op: str = None,
        width: int = None,
        height: int = None,
    ) -> str:
        """
        Read or change a device setting.

        Args:
            action: "get", "put", "dns", "resolution", "density",
                    "reset_screen", "grant", "revoke", or "appop"
            namespace: "system", "secure" or "global" (get/put)
            key: Allow-listed setting key (get/put)
            value: New value (put), DNS hostname (dns, empty = off),
                   DPI (density), or mode allow/deny/ignore/default (appop)
            package: Target package (grant/revoke/appop)
            permission: android.permission.* name (grant/revoke)
            op: App operation name, e.g. "RUN_IN_BACKGROUND" (appop)
            width, height: Pixels (resolution)

        Examples:
            device_setting("get", namespace="global", key="window_animation_scale")
            device_setting("dns", value="dns.adguard.com")
            device_setting("resolution", width=1080, height=2400)
        """
        result = _manager.device_setting(
            action, namespace=namespace, key=key, value=value, package=package,
            permission=permission, width=width, height=height, op=op)
        analytics.log_event("device_setting", ok=_ok(result, "SUCCESS"))
        return result

    # ==================== Profiles ====================
    @mcp.tool()
    def profiles(action: str, name: str = None, user_id: int = None, package: str = None) -> str:
        """
        Manage work profiles used to run cloned apps.

        Args:
            action: "list", "create", "delete", or "clone"
            name: Profile name for "create" (letters, digits, spaces)
            user_id: Profile id for "delete" and "clone"
            package: Package to make available in the profile ("clone")

        "create" provisions the new profile and removes non-essential
        packages from it.
        """
        result = _manager.profiles(action, name=name, user_id=user_id, package=package)
        analytics.log_event("profiles", ok=_ok(result, "FOUND_", "CREATED", "REMOVED", "CLONED"))
        return result

    # ==================== Audit log ====================
    @mcp.tool()
    def audit_log(action: str = "show", limit: int = 20) -> str:
        """
        Session audit log of every command sent to the device.

        Args:
            action: "show" (newest first), "clear", or "export" (writes a
                    text file under ~/.adbguard/logs)
            limit: Entries to show (default 20)
        """
        action = (action or "").lower()
        if action == "show":
            result = _manager.show_audit(limit)
        elif action == "clear":
            result = _manager.clear_audit()
        elif action == "export":
            result = _manager.export_audit()
        else:
            result = f"STATUS: ERROR\nReason: Unknown action '{action}'. Use: show, clear, export"
        analytics.log_event("audit_log", ok=not result.startswith("STATUS: ERROR"))
        return result
