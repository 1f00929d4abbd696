"""
ConsoleManager: wires the session, audit log and orchestrators together
and renders every outcome as a plain-text STATUS envelope.
"""
import logging
import threading
import time
from collections import Counter, deque
from typing import Callable, Deque, Iterable, List, Mapping, Optional

import requests

from .audit import AuditLog
from .catalog import fetch_catalog
from .device_tools import DeviceTools
from .errors import DownloadError, SessionError, TransportError
from .gateway import describe_rule, validate_terminal_command
from .installer import RemoteInstaller
from .models import CancelToken, DeviceMode, Notification, ProgressEvent, RiskLevel, SessionState
from .orchestrator import ActionRecorder, ToggleOrchestrator
from .profiles import ProfileManager
from .registry import DeviceRegistry
from .results import classify_transport_error
from .session import Session
from .transport import AdbTransport, BaseTransport

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 50

SETTING_ACTIONS = ("get", "put", "dns", "resolution", "density", "reset_screen", "grant", "revoke", "appop")
PROFILE_ACTIONS = ("list", "create", "delete", "clone")


class ConsoleManager:
    """
    One console per process: a single session and the services that act on it.
    """

    def __init__(self, transport: Optional[BaseTransport] = None,
                 registry: Optional[DeviceRegistry] = None,
                 risk_catalog: Optional[Mapping[str, RiskLevel]] = None,
                 root_mode: bool = False,
                 http: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 user_id: Optional[str] = None):
        self.transport = transport if transport is not None else AdbTransport()
        self.audit = AuditLog()
        self.notifications: Deque[Notification] = deque(maxlen=MAX_NOTIFICATIONS)
        self._notify_lock = threading.Lock()

        self.session = Session(self.transport, registry=registry)
        self.session.add_command_listener(self.audit.on_command)
        if registry is not None and user_id:
            self.session.authenticate(user_id)

        recorder = ActionRecorder(registry) if registry is not None else None
        self.packages = ToggleOrchestrator(
            self.session, self.audit, self.notify, recorder=recorder,
            risk_catalog=risk_catalog, root_mode=root_mode, sleep=sleep)
        self.installer = RemoteInstaller(
            self.session, self.audit, self.notify, http=http, sleep=sleep)
        self.tools = DeviceTools(self.session, self.audit, self.notify)
        self.profiles_manager = ProfileManager(self.session, self.audit, self.notify)

        self.session.add_reset_hook(self.audit.clear)
        self.session.add_reset_hook(self.packages.clear)

    # ==================== Notifications ====================

    def notify(self, notification: Notification):
        with self._notify_lock:
            self.notifications.append(notification)

    def drain_notifications(self) -> List[Notification]:
        with self._notify_lock:
            drained = list(self.notifications)
            self.notifications.clear()
        return drained

    def _with_notices(self, text: str) -> str:
        notices = self.drain_notifications()
        if not notices:
            return text
        lines = [text, "", "NOTICES:"]
        for n in notices:
            lines.append(f"  [{n.level.upper()}] {n.title}: {n.message}" if n.message else f"  [{n.level.upper()}] {n.title}")
        return "\n".join(lines)

    def _no_device(self) -> str:
        return ("STATUS: NO_DEVICE\nReason: No device is connected.\n"
                "Action: Use connect_device, or enter_demo to try the console without hardware.")

    def _ensure_device(self) -> bool:
        """Attach lazily with the one automatic reconnect this process allows."""
        if self.session.has_device:
            return True
        if self.session.state in (SessionState.DISCONNECTED, SessionState.ERROR):
            logger.info("No device attached, trying the automatic reconnect")
            return self.session.reconnect_once()
        return False

    # ==================== Session ====================

    def list_devices(self) -> str:
        if not isinstance(self.transport, AdbTransport):
            return "STATUS: NO_DEVICES\nDevice discovery needs the adb transport."
        try:
            devices = self.transport.list_devices()
        except TransportError as e:
            message = classify_transport_error(e.code)[1]
            return f"STATUS: ERROR\nReason: {message}\nAction: Install Android platform-tools and make sure adb is on PATH."

        if not devices:
            return "STATUS: NO_DEVICES\nNo devices found.\nAction: Connect the device and enable USB debugging."

        lines = [f"STATUS: FOUND_{len(devices)}_DEVICE(S)", ""]
        for d in devices:
            line = f"  {d.serial}: {d.mode.value.upper()}"
            if d.model:
                line += f" ({d.model})"
            if d.mode == DeviceMode.UNAUTHORIZED:
                line += " - Accept USB debugging prompt on device"
            elif d.mode == DeviceMode.OFFLINE:
                line += " - Reconnect device"
            lines.append(line)
        return "\n".join(lines)

    def connect(self, serial: Optional[str] = None) -> str:
        if self.session.has_device:
            return f"STATUS: ALREADY_CONNECTED\n{self._describe_device()}"
        try:
            connected = self.session.connect(serial)
        except SessionError as e:
            return f"STATUS: ERROR\nReason: {e}\nAction: Use disconnect_device first."
        if not connected:
            return (f"STATUS: ERROR\nState: {self.session.state.value}\n"
                    f"Reason: {self.session.last_error or 'Connection did not complete'}\n"
                    "Action: Check the cable, unlock the device and accept the USB debugging prompt.")
        return f"STATUS: CONNECTED\n{self._describe_device()}"

    def disconnect(self) -> str:
        was = self.session.state
        self.session.disconnect()
        return f"STATUS: DISCONNECTED\nPrevious state: {was.value}\nAudit log and package list cleared."

    def enter_demo(self) -> str:
        try:
            self.session.enter_demo()
        except SessionError as e:
            return f"STATUS: ERROR\nReason: {e}\nAction: Use disconnect_device first."
        return f"STATUS: DEMO\n{self._describe_device()}\nNo command reaches real hardware in demo mode."

    def _describe_device(self) -> str:
        info = self.session.device_info
        if info is None:
            return "Device: none"
        lines = [
            f"Device: {info.manufacturer} {info.model}",
            f"Serial: {info.serial}",
            f"Android: {info.android_version} (API {info.api_level})",
            f"Screen: {info.screen_resolution} @ {info.screen_density} DPI",
            f"Battery: {info.battery_level}% ({info.battery_status or 'Unknown'})",
            f"Root: {'yes' if info.is_rooted else 'no'}",
        ]
        return "\n".join(lines)

    def status(self) -> str:
        session = self.session
        lines = [f"STATUS: {session.state.value.upper()}"]
        if session.has_device:
            lines.append(self._describe_device())
        if session.last_error:
            lines.append(f"Last error: {session.last_error}")
        lines.append(f"Commands this session: {self.audit.total_commands}")
        if session.is_returning_device:
            lines.append("Returning device: yes")
        if session.system_update_detected:
            lines.append("System update detected since the last visit.")
        if session.returned_packages:
            lines.append(f"Returned after update: {', '.join(sorted(session.returned_packages))}")
        progress = self.packages.batch_progress
        if progress is not None:
            lines.append(f"Batch: {progress.current}/{progress.total} ({progress.current_label})")
        return self._with_notices("\n".join(lines))

    # ==================== Terminal ====================

    @staticmethod
    def check_command(command: str) -> str:
        outcome = validate_terminal_command(command)
        if not outcome.is_accepted:
            return f"STATUS: REJECTED\nReason: {outcome.reason}"
        return (f"STATUS: ALLOWED\nCommand: {outcome.normalized_value}\n"
                f"Rule: {outcome.matched_rule_id} ({describe_rule(outcome.matched_rule_id)})")

    def run_terminal(self, command: str) -> str:
        outcome = validate_terminal_command(command)
        if not outcome.is_accepted:
            # Audited through DeviceTools so the rejection lands in the log
            self.tools.run_terminal_command(command)
            return f"STATUS: REJECTED\nReason: {outcome.reason}\nAction: Use validate_command to check a command first."
        if not self._ensure_device():
            return self._no_device()

        result = self.tools.run_terminal_command(command)
        if result is None:
            return self._with_notices("STATUS: ERROR\nReason: The command could not be sent to the device.")
        status = "SUCCESS" if result.exit_code == 0 else "COMMAND_FAILED"
        output = "\n".join(s for s in (result.stdout, result.stderr) if s) or "(no output)"
        return f"STATUS: {status}\nEXIT_CODE: {result.exit_code}\nOUTPUT:\n{output}"

    # ==================== Packages ====================

    def list_packages(self, name_filter: Optional[str] = None, only_disabled: bool = False) -> str:
        if not self._ensure_device():
            return self._no_device()
        try:
            records = self.packages.load_packages()
        except (TransportError, SessionError) as e:
            message = classify_transport_error(e.code)[1] if isinstance(e, TransportError) else str(e)
            return f"STATUS: ERROR\nReason: {message}"

        if name_filter:
            records = [r for r in records if name_filter.lower() in r.name.lower()]
        if only_disabled:
            records = [r for r in records if not r.is_enabled]

        lines = [f"STATUS: FOUND_{len(records)}_PACKAGE(S)", ""]
        for r in sorted(records, key=lambda r: r.name):
            flags = ["enabled" if r.is_enabled else "DISABLED", r.risk_level.value]
            if r.is_system:
                flags.append("system")
            if r.name in self.session.returned_packages:
                flags.append("returned")
            lines.append(f"  {r.name} [{', '.join(flags)}]")
        return "\n".join(lines)

    def toggle_package(self, package: str, enable: bool, confirmed: bool = False) -> str:
        if not self._ensure_device():
            return self._no_device()
        if not confirmed and self.packages.requires_confirmation(package, enable):
            if package in self.packages.packages:
                reason = "This is a system or high-risk package."
            else:
                reason = "The package was not found on the device, so its risk could not be checked."
            return (f"STATUS: CONFIRMATION_REQUIRED\nPackage: {package}\n"
                    f"Risk: {self.packages.risk_of(package).value}\n"
                    f"Reason: {reason}\n"
                    "Action: Call toggle_package again with confirmed=true to proceed.")
        ok = self.packages.toggle(package, enable, confirmed=confirmed)
        verb = "ENABLED" if enable else "DISABLED"
        return self._with_notices(f"STATUS: {verb if ok else 'ERROR'}\nPackage: {package}")

    def toggle_packages(self, packages: Iterable[str], enable: bool = False,
                        cancel: Optional[CancelToken] = None) -> str:
        if not self._ensure_device():
            return self._no_device()
        summary = self.packages.toggle_batch(packages, enable=enable, cancel=cancel)
        header = f"BATCH RESULTS: {len(summary.succeeded)}/{summary.total} succeeded, {len(summary.failed)} failed"
        lines = [header, "=" * 50]
        lines += [f"[{name}] SUCCESS" for name in summary.succeeded]
        lines += [f"[{name}] FAILED" for name in summary.failed]
        if summary.cancelled:
            lines.append(f"--- CANCELLED after {summary.processed} of {summary.total} ---")
        return self._with_notices("\n".join(lines))

    # ==================== Install ====================

    def install_apk(self, url: str, label: Optional[str] = None) -> str:
        if not self._ensure_device():
            return self._no_device()
        events: List[ProgressEvent] = []
        ok = self.installer.install_from_url(url, label, on_progress=events.append)
        status = "INSTALLED" if ok else "ERROR"
        last = f"\nProgress: {events[-1].fraction:.0%}" if events else ""
        return self._with_notices(f"STATUS: {status}\nURL: {url}{last}")

    def install_apks(self, urls: Iterable[str], cancel: Optional[CancelToken] = None) -> str:
        if not self._ensure_device():
            return self._no_device()
        summary = self.installer.install_batch(urls, cancel=cancel)
        header = f"BATCH RESULTS: {len(summary.succeeded)}/{summary.total} installed, {len(summary.failed)} failed"
        lines = [header, "=" * 50]
        lines += [f"[{url}] INSTALLED" for url in summary.succeeded]
        lines += [f"[{url}] FAILED" for url in summary.failed]
        if summary.cancelled:
            lines.append(f"--- CANCELLED after {summary.processed} of {summary.total} ---")
        return self._with_notices("\n".join(lines))

    # ==================== Risk catalogue ====================

    def update_risk_catalog(self) -> str:
        """Refresh the removal-risk list from upstream and re-rate loaded packages."""
        try:
            catalog = fetch_catalog(self.installer.http)
        except DownloadError as e:
            return (f"STATUS: ERROR\nReason: {e.message}\n"
                    f"Action: Retry later; {len(self.packages.risk_catalog)} cached entries stay in use.")
        self.packages.set_risk_catalog(catalog)
        counts = Counter(level.value for level in catalog.values())
        lines = ["STATUS: UPDATED", f"Entries: {len(catalog)}"]
        lines += [f"  {level.value}: {counts[level.value]}" for level in RiskLevel]
        return "\n".join(lines)

    # ==================== Audit log ====================

    def show_audit(self, limit: int = 20) -> str:
        entries = self.audit.recent(limit)
        if not entries:
            return "STATUS: EMPTY\nNo commands recorded this session."
        lines = [f"STATUS: {len(entries)}_OF_{self.audit.total_commands}_ENTRIES", ""]
        for e in entries:
            lines.append(f"[{e.timestamp.strftime('%H:%M:%S')}] {e.status.value.upper()} {e.command}")
            if e.message:
                lines.extend(f"    {line}" for line in e.message.splitlines())
        return "\n".join(lines)

    def clear_audit(self) -> str:
        self.audit.clear()
        return "STATUS: CLEARED\nAudit log cleared."

    def export_audit(self) -> str:
        try:
            path = self.audit.export_to()
        except OSError as e:
            return f"STATUS: ERROR\nReason: {e}"
        return f"STATUS: EXPORTED\nFile: {path}"

    # ==================== Device settings ====================

    def device_setting(self, action: str, namespace: Optional[str] = None, key: Optional[str] = None,
                       value: Optional[str] = None, package: Optional[str] = None,
                       permission: Optional[str] = None, width: Optional[int] = None,
                       height: Optional[int] = None, op: Optional[str] = None) -> str:
        action = (action or "").lower()
        if action not in SETTING_ACTIONS:
            return f"STATUS: ERROR\nReason: Unknown action '{action}'. Use: {', '.join(SETTING_ACTIONS)}"
        if not self._ensure_device():
            return self._no_device()

        tools = self.tools
        if action == "get":
            current = tools.get_setting(namespace or "", key or "")
            if current is None:
                return self._with_notices(f"STATUS: ERROR\nSetting: {namespace}/{key}")
            return f"STATUS: SUCCESS\nSetting: {namespace}/{key}\nValue: {current}"

        if action == "put":
            ok = tools.put_setting(namespace or "", key or "", "" if value is None else value)
        elif action == "dns":
            ok = tools.set_private_dns(value or "")
        elif action == "resolution":
            ok = tools.set_resolution(width, height)
        elif action == "density":
            ok = tools.set_density(value)
        elif action == "reset_screen":
            ok = tools.reset_screen()
        elif action == "grant":
            ok = tools.grant_permission(package or "", permission or "")
        elif action == "revoke":
            ok = tools.revoke_permission(package or "", permission or "")
        else:
            ok = tools.set_app_op(package or "", op or "", value or "")
        return self._with_notices(f"STATUS: {'SUCCESS' if ok else 'ERROR'}\nAction: {action}")

    # ==================== Profiles ====================

    def profiles(self, action: str, name: Optional[str] = None, user_id: Optional[int] = None,
                 package: Optional[str] = None) -> str:
        action = (action or "").lower()
        if action not in PROFILE_ACTIONS:
            return f"STATUS: ERROR\nReason: Unknown action '{action}'. Use: {', '.join(PROFILE_ACTIONS)}"
        if not self._ensure_device():
            return self._no_device()
        if action in ("delete", "clone") and user_id is None:
            return f"STATUS: ERROR\nReason: '{action}' requires user_id"

        if action == "list":
            try:
                users = self.profiles_manager.list_users()
            except (TransportError, SessionError) as e:
                message = classify_transport_error(e.code)[1] if isinstance(e, TransportError) else str(e)
                return f"STATUS: ERROR\nReason: {message}"
            lines = [f"STATUS: FOUND_{len(users)}_USER(S)", ""]
            for u in users:
                tags = [t for t, on in (("managed", u.is_managed), ("running", u.running)) if on]
                lines.append(f"  {u.id}: {u.name}" + (f" [{', '.join(tags)}]" if tags else ""))
            return "\n".join(lines)

        if action == "create":
            setup = self.profiles_manager.create_clone_profile(name or "ClonedApps")
            if not setup.created:
                return self._with_notices("STATUS: ERROR\nReason: Profile was not created.")
            if not setup.completed:
                return self._with_notices(
                    f"STATUS: PARTIAL\nUser: {setup.user_id}\n"
                    "Reason: The profile was created but its setup did not finish.\n"
                    f"Action: Retry, or remove it with profiles(action=\"delete\", user_id={setup.user_id}).")
            stats = setup.debloat
            text = (f"STATUS: CREATED\nUser: {setup.user_id}\n"
                    f"Provisioned: {'yes' if setup.provisioned else 'partially'}\n"
                    f"Debloat: {stats.removed} removed, {stats.kept} kept, {stats.failed} failed")
            if stats.failed_packages:
                text += f"\nFailed: {', '.join(stats.failed_packages)}"
            return self._with_notices(text)

        if action == "delete":
            ok = self.profiles_manager.delete_profile(user_id)
            return self._with_notices(f"STATUS: {'REMOVED' if ok else 'ERROR'}\nUser: {user_id}")

        if not package:
            return "STATUS: ERROR\nReason: 'clone' requires package"
        ok = self.profiles_manager.clone_app(package, user_id)
        return self._with_notices(f"STATUS: {'CLONED' if ok else 'ERROR'}\nPackage: {package}\nUser: {user_id}")
