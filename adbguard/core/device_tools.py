"""
Device tools: screen, settings, private DNS, permissions, app-ops and the
interactive terminal. Every value is validated before a command is built.
"""
import logging
from dataclasses import replace
from typing import Callable, Optional

from .audit import AuditLog
from .config import (
    APP_OP_MODES, MAX_DENSITY, MAX_RESOLUTION, MIN_DENSITY, MIN_RESOLUTION,
)
from .demo import MOCK_DEVICE_INFO
from .errors import SessionError, TransportError, ValidationError
from .gateway import validate_terminal_command
from .models import Notification, ShellResult
from .results import classify_transport_error, interpret_result, with_quirk_hints
from .session import Session
from .validators import (
    validate_app_op, validate_dns_hostname, validate_integer_value,
    validate_numeric_value, validate_package_name, validate_permission,
    validate_settings_command,
)

logger = logging.getLogger(__name__)


class DeviceTools:

    def __init__(self, session: Session, audit: AuditLog,
                 notify: Optional[Callable[[Notification], None]] = None):
        self.session = session
        self.audit = audit
        self.notify = notify if notify is not None else (lambda _n: None)

    # ==================== helpers ====================

    def _run(self, label: str, build: Callable[[], str]) -> Optional[ShellResult]:
        """
        Validate (inside `build`), run and interpret one command.

        Returns the result on success, None after reporting the failure.
        """
        try:
            command = build()
            result = self.session.channel.shell(command)
        except ValidationError as e:
            self._fail(label, e.message)
            return None
        except (TransportError, SessionError) as e:
            message = classify_transport_error(e.code)[1] if isinstance(e, TransportError) else str(e)
            self._fail(label, message)
            return None

        interpretation = interpret_result(result)
        if not interpretation.success:
            self._fail(label, with_quirk_hints(interpretation.error_text))
            return None
        return result

    def _fail(self, label: str, message: str):
        self.audit.error(label, message)
        self.notify(Notification("error", "Error", message))

    def _ok(self, title: str, message: str):
        if self.session.is_demo:
            message = f"{message} (Demo Mode)"
        self.notify(Notification("success", title, message))

    def _refresh_device_info(self, **demo_changes):
        """Re-read device info after a screen change (demo: patch the mock)."""
        info = self.session.device_info
        if info is None:
            return
        if self.session.is_demo:
            self.session.update_device_info(replace(info, **demo_changes))
            return
        try:
            self.session.update_device_info(self.session.channel.get_device_info())
        except (TransportError, SessionError) as e:
            logger.warning("Device info refresh failed: %s", e)

    # ==================== screen ====================

    def set_resolution(self, width, height) -> bool:
        try:
            w = validate_integer_value(width, MIN_RESOLUTION, MAX_RESOLUTION, "Screen width")
            h = validate_integer_value(height, MIN_RESOLUTION, MAX_RESOLUTION, "Screen height")
        except ValidationError as e:
            self._fail("set resolution", e.message)
            return False

        if self._run("set resolution", lambda: f"wm size {w}x{h}") is None:
            return False
        self._refresh_device_info(screen_resolution=f"{w}x{h}")
        self._ok("Resolution changed", f"{w}x{h}")
        return True

    def set_density(self, density) -> bool:
        try:
            dpi = validate_integer_value(density, MIN_DENSITY, MAX_DENSITY, "Screen density")
        except ValidationError as e:
            self._fail("set density", e.message)
            return False

        if self._run("set density", lambda: f"wm density {dpi}") is None:
            return False
        self._refresh_device_info(screen_density=dpi)
        self._ok("Density changed", f"{dpi} DPI")
        return True

    def reset_screen(self) -> bool:
        if self._run("reset resolution", lambda: "wm size reset") is None:
            return False
        if self._run("reset density", lambda: "wm density reset") is None:
            return False
        self._refresh_device_info(screen_resolution=MOCK_DEVICE_INFO.screen_resolution,
                                  screen_density=MOCK_DEVICE_INFO.screen_density)
        self._ok("Reset complete", "Screen restored to factory values")
        return True

    # ==================== settings ====================

    def get_setting(self, namespace: str, key: str) -> Optional[str]:
        result = self._run(f"settings get {namespace} {key}",
                           lambda: validate_settings_command("get", namespace, key))
        return result.stdout.strip() if result is not None else None

    def put_setting(self, namespace: str, key: str, value) -> bool:
        result = self._run(f"settings put {namespace} {key}",
                           lambda: validate_settings_command("put", namespace, key, str(value)))
        if result is None:
            return False
        self._ok("Setting updated", f"{namespace}/{key} = {str(value).strip()}")
        return True

    def set_animation_scale(self, scale) -> bool:
        """Set all three animation scales (0 disables animations)."""
        try:
            value = validate_numeric_value(scale, 0, 10, "Animation scale")
        except ValidationError as e:
            self._fail("set animation scale", e.message)
            return False
        for key in ("window_animation_scale", "transition_animation_scale", "animator_duration_scale"):
            if not self.put_setting("global", key, value):
                return False
        return True

    def set_screen_timeout(self, seconds) -> bool:
        try:
            value = validate_integer_value(seconds, 15, 1800, "Screen timeout")
        except ValidationError as e:
            self._fail("set screen timeout", e.message)
            return False
        return self.put_setting("system", "screen_off_timeout", value * 1000)

    def set_private_dns(self, hostname: str) -> bool:
        """Use a private DNS provider; an empty hostname turns private DNS off."""
        try:
            host = validate_dns_hostname(hostname)
        except ValidationError as e:
            self._fail("set private dns", e.message)
            return False
        if not host:
            return self.put_setting("global", "private_dns_mode", "off")
        return (self.put_setting("global", "private_dns_mode", "hostname")
                and self.put_setting("global", "private_dns_specifier", host))

    # ==================== permissions ====================

    def _permission(self, verb: str, package: str, permission: str) -> bool:
        def build():
            pkg = validate_package_name(package)
            perm = validate_permission(permission)
            return f"pm {verb} {pkg} {perm}"

        if self._run(f"{verb} {permission} {package}", build) is None:
            return False
        self._ok("Permission granted" if verb == "grant" else "Permission revoked", f"{permission} -> {package}")
        return True

    def grant_permission(self, package: str, permission: str) -> bool:
        return self._permission("grant", package, permission)

    def revoke_permission(self, package: str, permission: str) -> bool:
        return self._permission("revoke", package, permission)

    def set_app_op(self, package: str, op: str, mode: str) -> bool:
        def build():
            pkg = validate_package_name(package)
            app_op = validate_app_op(op)
            if mode not in APP_OP_MODES:
                raise ValidationError("not_allowed", f'Invalid appops mode: "{mode}"')
            return f"appops set {pkg} {app_op} {mode}"

        if self._run(f"appops {op} {package}", build) is None:
            return False
        self._ok("App operation updated", f"{package} {op} = {mode}")
        return True

    # ==================== terminal ====================

    def run_terminal_command(self, raw: str) -> Optional[ShellResult]:
        """
        Run one interactive terminal line.

        Rejected lines are audited with the reason and never reach the device.
        """
        outcome = validate_terminal_command(raw)
        if not outcome.is_accepted:
            self.audit.error((raw or "").strip() or "(empty)", outcome.reason)
            return None
        try:
            return self.session.channel.shell(outcome.normalized_value)
        except (TransportError, SessionError) as e:
            message = classify_transport_error(e.code)[1] if isinstance(e, TransportError) else str(e)
            self._fail(outcome.normalized_value, message)
            return None
