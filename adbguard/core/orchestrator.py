"""
Package toggle orchestrator: risk policy, channel call, result
interpretation, fallback disclosure and batching.
"""
import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from .audit import AuditLog
from .config import BATCH_STEP_DELAY
from .errors import SessionError, TransportError, ValidationError
from .models import (
    BatchProgress, BatchSummary, CancelToken, Notification, PackageRecord,
    ProgressEvent, RiskLevel,
)
from .registry import DeviceRegistry
from .results import classify_transport_error, interpret_result, with_quirk_hints
from .session import Session

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[Notification], None]
ConfirmCallback = Callable[[PackageRecord, bool], bool]
ProgressListener = Callable[[ProgressEvent], None]


def _ignore(_notification: Notification):
    pass


class ActionRecorder:
    """Records user actions against the registry off the caller's thread."""

    def __init__(self, registry: DeviceRegistry):
        self.registry = registry
        self._threads: List[threading.Thread] = []

    def record(self, user_id: str, device_id: str, package: str, action: str):
        thread = threading.Thread(
            target=self._record, args=(user_id, device_id, package, action), daemon=True)
        self._threads.append(thread)
        thread.start()

    def _record(self, user_id: str, device_id: str, package: str, action: str):
        try:
            self.registry.record_action(user_id, device_id, package, action)
        except Exception as e:  # best-effort, must not surface to the toggle result
            logger.warning("Failed to record %s of %s: %s", action, package, e)

    def flush(self, timeout: Optional[float] = None):
        threads, self._threads = self._threads, []
        for thread in threads:
            thread.join(timeout)


class ToggleOrchestrator:
    """
    Turns "enable/disable this package" into channel operations.

    Disabling a system or Expert/Unsafe package needs explicit confirmation,
    either through `confirmed=True` or the `confirm` callback. With root mode
    on a rooted device, disabling removes the package from its partition.
    """

    def __init__(self, session: Session, audit: AuditLog,
                 notify: Optional[NotifyCallback] = None,
                 confirm: Optional[ConfirmCallback] = None,
                 recorder: Optional[ActionRecorder] = None,
                 risk_catalog: Optional[Mapping[str, RiskLevel]] = None,
                 root_mode: bool = False,
                 step_delay: float = BATCH_STEP_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self.session = session
        self.audit = audit
        self.notify = notify if notify is not None else _ignore
        self.confirm = confirm
        self.recorder = recorder
        self.risk_catalog: Mapping[str, RiskLevel] = risk_catalog or {}
        self.root_mode = root_mode
        self.step_delay = step_delay
        self._sleep = sleep

        self.packages: Dict[str, PackageRecord] = {}
        self.batch_progress: Optional[BatchProgress] = None

    # ==================== Package list ====================

    def risk_of(self, name: str) -> RiskLevel:
        return self.risk_catalog.get(name, RiskLevel.ADVANCED)

    def set_risk_catalog(self, catalog: Mapping[str, RiskLevel]):
        """Swap the catalogue and re-rate packages already loaded."""
        self.risk_catalog = catalog
        for record in self.packages.values():
            record.risk_level = self.risk_of(record.name)

    def load_packages(self) -> List[PackageRecord]:
        """Fetch the package list from the channel and attach risk levels."""
        records = self.session.channel.list_packages()
        for record in records:
            record.risk_level = self.risk_of(record.name)
        self.packages = {r.name: r for r in records}
        self._detect_returned_packages(records)
        return records

    def clear(self):
        self.packages = {}
        self.batch_progress = None

    def _detect_returned_packages(self, records: Iterable[PackageRecord]):
        """Packages this user disabled before that are enabled again (e.g. after an OTA)."""
        session = self.session
        if not (self.recorder and session.is_authenticated and session.device_id):
            return
        try:
            previously_disabled = self.recorder.registry.disabled_packages(session.user_id, session.device_id)
        except Exception as e:  # registry is best-effort
            logger.warning("Could not read action history: %s", e)
            return
        session.returned_packages = {r.name for r in records if r.is_enabled and r.name in previously_disabled}

    def _record_for(self, name: str) -> PackageRecord:
        record = self.packages.get(name)
        if record is None:
            record = PackageRecord(name=name, risk_level=self.risk_of(name))
        return record

    def lookup(self, name: str) -> Optional[PackageRecord]:
        """
        The loaded record for a package, else a single-package query on
        the channel (cached). None when the device does not know it.
        """
        record = self.packages.get(name)
        if record is None:
            record = self.session.channel.find_package(name)
            if record is not None:
                record.risk_level = self.risk_of(record.name)
                self.packages[record.name] = record
        return record

    # ==================== Policy ====================

    def _use_root_removal(self) -> bool:
        info = self.session.device_info
        return self.root_mode and bool(info and info.is_rooted)

    @staticmethod
    def _needs_confirmation(record: Optional[PackageRecord]) -> bool:
        # Unknown packages cannot be checked against the policy
        if record is None:
            return True
        return record.risk_level.is_dangerous or record.is_system

    def requires_confirmation(self, name: str, enable: bool) -> bool:
        if enable:
            return False
        try:
            record = self.lookup(name)
        except (ValidationError, TransportError, SessionError) as e:
            logger.info("Package lookup for %s failed: %s", name, e)
            record = None
        return self._needs_confirmation(record)

    def _confirmed(self, name: str, record: Optional[PackageRecord], enable: bool, confirmed: bool) -> bool:
        if confirmed:
            return True
        if self.confirm is not None and self.confirm(record or self._record_for(name), enable):
            return True
        if record is None:
            message = f"{name} was not found in the package list. Confirm to continue."
        else:
            message = f"{name} is a system or high-risk package. Confirm to continue."
        self.notify(Notification("info", "Confirmation required", message))
        return False

    def toggle(self, name: str, enable: bool, confirmed: bool = False) -> bool:
        """Enable or disable one package. Returns True when applied."""
        if enable:
            return self._apply(self._record_for(name), enable)

        label = f"disable {name}"
        try:
            record = self.lookup(name)
        except ValidationError as e:
            return self._fail(label, e.message)
        except (TransportError, SessionError) as e:
            return self._fail(label, self._transport_message(e))

        if self._needs_confirmation(record) and not self._confirmed(name, record, enable, confirmed):
            return False
        if self._use_root_removal():
            return self.uninstall_root(name)
        return self._apply(record or self._record_for(name), enable)

    # ==================== Channel operations ====================

    def _apply(self, record: PackageRecord, enable: bool, quiet: bool = False) -> bool:
        action = "enable" if enable else "disable"
        label = f"{action} {record.name}"
        try:
            channel = self.session.channel
            result = channel.enable_package(record.name) if enable else channel.disable_package(record.name)
        except ValidationError as e:
            return self._fail(label, e.message, quiet)
        except (TransportError, SessionError) as e:
            return self._fail(label, self._transport_message(e), quiet)

        interpretation = interpret_result(result)
        if not interpretation.success:
            return self._fail(label, with_quirk_hints(interpretation.error_text), quiet)

        self._mark(record, enabled=enable)
        message = record.name
        if interpretation.used_alternate_method:
            message = f"{record.name} (applied with an alternative method)"
        if self.session.is_demo:
            message = f"{message} (Demo Mode)"
        self.audit.success(label, message)
        self._record_action(record.name, action)
        if not quiet:
            self.notify(Notification("success", "Package enabled" if enable else "Package removed", message))
        return True

    def uninstall_root(self, name: str) -> bool:
        """Root removal from the system partition (needs the APK path)."""
        record = self._record_for(name)
        label = f"root-uninstall {name}"
        if not record.apk_path:
            return self._fail(label, "Package info not found")
        try:
            result = self.session.channel.uninstall_package_root(name, record.apk_path)
        except ValidationError as e:
            return self._fail(label, e.message)
        except (TransportError, SessionError) as e:
            return self._fail(label, self._transport_message(e))

        interpretation = interpret_result(result)
        if not interpretation.success:
            return self._fail(label, with_quirk_hints(interpretation.error_text))

        self._mark(record, enabled=False)
        message = f"{name} (Root Demo)" if self.session.is_demo else f"{name} (Root)"
        self.audit.success(label, message)
        self._record_action(name, "uninstall")
        self.notify(Notification("success", "Package removed", message))
        return True

    def _mark(self, record: PackageRecord, enabled: bool):
        # Only after a confirmed result, never speculatively
        record.is_enabled = enabled
        if record.name in self.packages:
            self.packages[record.name].is_enabled = enabled

    def _fail(self, label: str, message: str, quiet: bool = False) -> bool:
        self.audit.error(label, message)
        if not quiet:
            self.notify(Notification("error", "Error", message))
        return False

    @staticmethod
    def _transport_message(error: Exception) -> str:
        if isinstance(error, TransportError):
            return classify_transport_error(error.code)[1]
        return str(error)

    def _record_action(self, package: str, action: str):
        session = self.session
        if self.recorder and session.is_authenticated and session.device_id:
            self.recorder.record(session.user_id, session.device_id, package, action)

    # ==================== Batch ====================

    def toggle_batch(self, names: Iterable[str], enable: bool = False,
                     cancel: Optional[CancelToken] = None,
                     on_progress: Optional[ProgressListener] = None) -> BatchSummary:
        """
        Apply one toggle per package, strictly one after another.

        Batch selection is itself the confirmation, so the per-package gate
        is not applied. Cancellation is checked between steps; steps already
        applied stay applied.
        """
        names = list(dict.fromkeys(names))
        summary = BatchSummary(total=len(names))
        self.batch_progress = BatchProgress(total=len(names))
        try:
            for index, name in enumerate(names, start=1):
                if cancel is not None and cancel.cancelled:
                    summary.cancelled = True
                    break
                self.batch_progress = BatchProgress(total=len(names), current=index, current_label=name)
                if on_progress:
                    on_progress(ProgressEvent(
                        phase="toggle", fraction=index / len(names),
                        message=f"{'Enabling' if enable else 'Disabling'} {name}",
                        current=index, total=len(names), label=name))

                if self._apply(self._record_for(name), enable, quiet=True):
                    summary.succeeded.append(name)
                else:
                    summary.failed.append(name)

                if index < len(names):
                    self._sleep(self.step_delay)
        finally:
            self.batch_progress = None

        self.notify(self._batch_notification(summary, enable))
        return summary

    @staticmethod
    def _batch_notification(summary: BatchSummary, enable: bool) -> Notification:
        verb = "enabled" if enable else "disabled"
        message = f"{len(summary.succeeded)} of {summary.total} apps were {verb}."
        if summary.failed:
            message += f" Failed: {', '.join(summary.failed)}."
        if summary.cancelled:
            return Notification("info", "Batch cancelled", message)
        level = "success" if not summary.failed else "error"
        return Notification(level, "Batch completed", message)
