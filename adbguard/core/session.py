"""
Session state machine: device attach, authorization and recovery.

    Disconnected -> Connecting -> Authorizing -> Connected
    Disconnected -> Demo -> Disconnected
    any state    -> Error

`device_info` is present exactly when the state is Connected or Demo.
"""
import logging
import threading
import weakref
from typing import Callable, List, Optional, Set

from .config import AUTHORIZING_TIMEOUT
from .demo import DemoTransport
from .errors import SessionError, TransportError
from .models import DeviceInfo, SessionState
from .registry import DeviceRegistry
from .results import TransportErrorKind, classify_transport_error
from .transport import BaseTransport, CommandListener

logger = logging.getLogger(__name__)

S = SessionState

TRANSITIONS = {
    S.DISCONNECTED: {S.CONNECTING, S.DEMO, S.ERROR},
    S.CONNECTING: {S.AUTHORIZING, S.CONNECTED, S.DISCONNECTED, S.ERROR},
    S.AUTHORIZING: {S.CONNECTED, S.DISCONNECTED, S.ERROR},
    S.CONNECTED: {S.DISCONNECTED, S.ERROR},
    S.ERROR: {S.CONNECTING, S.DISCONNECTED, S.ERROR},
    S.DEMO: {S.DISCONNECTED, S.ERROR},
}

WITH_DEVICE = (S.CONNECTED, S.DEMO)

# Process-wide: one Connected session, one auto-reconnect attempt
_process_lock = threading.Lock()
_connected_owner: Optional[weakref.ref] = None
_auto_reconnect_used = False


def _claim_ownership(session: "Session"):
    global _connected_owner
    with _process_lock:
        owner = _connected_owner() if _connected_owner else None
        if owner is not None and owner is not session:
            raise SessionError("Another session is already connected to a device")
        _connected_owner = weakref.ref(session)


def _release_ownership(session: "Session"):
    global _connected_owner
    with _process_lock:
        owner = _connected_owner() if _connected_owner else None
        if owner is None or owner is session:
            _connected_owner = None


def claim_auto_reconnect() -> bool:
    """True exactly once per process."""
    global _auto_reconnect_used
    with _process_lock:
        if _auto_reconnect_used:
            return False
        _auto_reconnect_used = True
        return True


def _reset_process_state():
    global _connected_owner, _auto_reconnect_used
    with _process_lock:
        _connected_owner = None
        _auto_reconnect_used = False


class Session:
    """
    One device attachment.

    Owns the active transport handle. Orchestrators receive the session by
    reference and reach the device only through `session.channel`.
    """

    def __init__(self, transport: BaseTransport,
                 registry: Optional[DeviceRegistry] = None,
                 authorizing_timeout: float = AUTHORIZING_TIMEOUT,
                 on_recovery: Optional[Callable[[], None]] = None):
        self.transport = transport
        self.registry = registry
        self.authorizing_timeout = authorizing_timeout
        self.on_recovery = on_recovery

        self._state = S.DISCONNECTED
        self._device_info: Optional[DeviceInfo] = None
        self.last_error: Optional[str] = None
        self.error_kind: Optional[TransportErrorKind] = None

        self.user_id: Optional[str] = None
        self.device_id: Optional[str] = None
        self.is_returning_device = False
        self.system_update_detected = False
        self.returned_packages: Set[str] = set()

        self._demo: Optional[DemoTransport] = None
        self._command_listeners: List[CommandListener] = []
        self._reset_hooks: List[Callable[[], None]] = []
        self._state_listeners: List[Callable[[SessionState], None]] = []

        self._lock = threading.RLock()
        self._attempt = 0
        self._auth_timer: Optional[threading.Timer] = None
        self._registration: Optional[threading.Thread] = None

    # ==================== Read-only views ====================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        return self._device_info

    @property
    def fingerprint(self) -> Optional[str]:
        return self._device_info.fingerprint if self._device_info else None

    @property
    def is_demo(self) -> bool:
        return self._state == S.DEMO

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def has_device(self) -> bool:
        return self._state in WITH_DEVICE

    @property
    def channel(self) -> BaseTransport:
        """The transport commands go to: the real device or the demo simulation."""
        with self._lock:
            if self._state == S.DEMO and self._demo is not None:
                return self._demo
            if self._state == S.CONNECTED:
                return self.transport
        raise SessionError("No connected device")

    # ==================== Hooks ====================

    def add_command_listener(self, listener: CommandListener):
        """Attach a listener to the real transport and every demo transport."""
        self._command_listeners.append(listener)
        self.transport.add_command_listener(listener)
        if self._demo:
            self._demo.add_command_listener(listener)

    def add_reset_hook(self, hook: Callable[[], None]):
        """Called after every disconnect/reset (clear logs, package lists)."""
        self._reset_hooks.append(hook)

    def add_state_listener(self, listener: Callable[[SessionState], None]):
        self._state_listeners.append(listener)

    def authenticate(self, user_id: Optional[str]):
        self.user_id = user_id or None

    def update_device_info(self, info: DeviceInfo):
        with self._lock:
            if self._state not in WITH_DEVICE:
                raise SessionError("No connected device")
            self._device_info = info

    # ==================== Transitions ====================

    def _transition(self, new_state: SessionState, device_info: Optional[DeviceInfo] = None,
                    error: Optional[str] = None):
        with self._lock:
            old_state = self._state
            if new_state not in TRANSITIONS[old_state]:
                raise SessionError(f"Illegal transition {old_state.value} -> {new_state.value}")
            if new_state in WITH_DEVICE and device_info is None:
                raise SessionError(f"{new_state.value} requires device info")

            if new_state == S.CONNECTED:
                _claim_ownership(self)
            elif old_state == S.CONNECTED:
                _release_ownership(self)

            self._state = new_state
            self._device_info = device_info if new_state in WITH_DEVICE else None
            self.last_error = error if new_state == S.ERROR else None
            if new_state != S.ERROR:
                self.error_kind = None
            if new_state != S.AUTHORIZING:
                self._cancel_auth_timer()

        logger.debug("Session %s -> %s", old_state.value, new_state.value)
        for listener in list(self._state_listeners):
            listener(new_state)

    def _cancel_auth_timer(self):
        if self._auth_timer is not None:
            self._auth_timer.cancel()
            self._auth_timer = None

    def _enter_authorizing(self, attempt: int):
        with self._lock:
            if attempt != self._attempt or self._state != S.CONNECTING:
                return
            self._transition(S.AUTHORIZING)
            timer = threading.Timer(self.authorizing_timeout, self._on_authorizing_timeout, args=(attempt,))
            timer.daemon = True
            self._auth_timer = timer
            timer.start()

    def _on_authorizing_timeout(self, attempt: int):
        with self._lock:
            if attempt != self._attempt or self._state != S.AUTHORIZING:
                return
        logger.warning("Authorization pending for %ss, forcing recovery", self.authorizing_timeout)
        if self.on_recovery:
            self.on_recovery()
        else:
            self.hard_reset()

    # ==================== Lifecycle ====================

    def connect(self, serial: Optional[str] = None) -> bool:
        """
        Attach to a device. Returns True when Connected.

        Transport failures are classified and stored in `last_error`;
        the session moves to Error and control returns to the caller.
        """
        with self._lock:
            if self._state not in (S.DISCONNECTED, S.ERROR):
                raise SessionError(f"Cannot connect while {self._state.value}")
            self._attempt += 1
            attempt = self._attempt
            self._transition(S.CONNECTING)

        def on_status(status: str):
            if status == "authorizing":
                self._enter_authorizing(attempt)

        try:
            info = self.transport.connect(serial, on_status=on_status)
        except (TransportError, OSError) as e:
            code = e.code if isinstance(e, TransportError) else str(e)
            kind, message = classify_transport_error(code)
            with self._lock:
                if attempt == self._attempt:
                    # A half-open shell must not outlive a failed connect
                    self._safe_transport_disconnect()
                    self._transition(S.ERROR, error=message)
                    self.error_kind = kind
            logger.info("Connect failed: %s", e)
            return False

        with self._lock:
            if attempt != self._attempt or self._state not in (S.CONNECTING, S.AUTHORIZING):
                # Reset while the transport was still connecting
                self._safe_transport_disconnect()
                return False
            try:
                self._transition(S.CONNECTED, device_info=info)
            except SessionError as e:
                self._safe_transport_disconnect()
                self._transition(S.ERROR, error=str(e))
                return False

        self._start_registration(info)
        return True

    def reconnect_once(self, serial: Optional[str] = None) -> bool:
        """Auto-reconnect, allowed a single time per process."""
        if not claim_auto_reconnect():
            return False
        if self._state not in (S.DISCONNECTED, S.ERROR):
            return False
        return self.connect(serial)

    def enter_demo(self) -> DeviceInfo:
        """Enter demo mode without contacting any transport."""
        with self._lock:
            if self._state != S.DISCONNECTED:
                raise SessionError(f"Demo mode is only available while disconnected (now {self._state.value})")
            demo = DemoTransport()
            for listener in self._command_listeners:
                demo.add_command_listener(listener)
            self._demo = demo
            self._transition(S.DEMO, device_info=demo.get_device_info())
            return self._device_info

    def disconnect(self):
        """Explicit disconnect from any state. Runs the reset hooks."""
        with self._lock:
            self._attempt += 1
            if self._state == S.CONNECTED:
                self._safe_transport_disconnect()
            if self._state != S.DISCONNECTED:
                self._transition(S.DISCONNECTED)
            self._demo = None
            self.device_id = None
            self.is_returning_device = False
            self.system_update_detected = False
            self.returned_packages = set()
        for hook in list(self._reset_hooks):
            hook()

    def hard_reset(self):
        """Recovery action: drop the transport and return to a clean Disconnected state."""
        with self._lock:
            self._safe_transport_disconnect()
        self.disconnect()

    def _safe_transport_disconnect(self):
        try:
            self.transport.disconnect()
        except (TransportError, OSError) as e:
            logger.warning("Transport disconnect failed: %s", e)

    # ==================== Registration ====================

    def _start_registration(self, info: DeviceInfo):
        if self.registry is None:
            return
        thread = threading.Thread(target=self._register_device, args=(info,), daemon=True)
        self._registration = thread
        thread.start()

    def _register_device(self, info: DeviceInfo):
        fingerprint = info.fingerprint
        try:
            previous = self.registry.lookup(fingerprint)
            record = self.registry.register(fingerprint, info)
        except Exception as e:  # registry is best-effort, never fatal
            logger.warning("Device registration failed: %s", e)
            return
        self.device_id = record.device_id
        self.is_returning_device = previous is not None
        if previous is not None and info.api_level > previous.api_level:
            self.system_update_detected = True

    def wait_for_registration(self, timeout: Optional[float] = None):
        if self._registration is not None:
            self._registration.join(timeout)
