"""
Device channel: the transport every orchestrated action goes through.

BaseTransport implements the package/user operations on top of a single
primitive, `_run(command)`. AdbTransport backs it with an interactive adb
shell; the demo and test transports back it with canned results.
"""
import base64
import re
import subprocess
import shutil
import threading
import time
import logging
from typing import Callable, Iterable, List, Optional, Set, Tuple

from .config import (
    ADB_BINARY, AUTHORIZATION_WAIT, DEVICE_POLL_INTERVAL, GHOST_CHECK_CHUNK,
    PUSH_CHUNK_SIZE, PUSH_PATH_PREFIXES, ROOT_APP_DIRS, ROOT_REMOVAL_PREFIXES,
    SYSTEM_PATH_PREFIXES, INSTALL_TEMP_DIR,
)
from .errors import TransportError, ValidationError
from .gateway import escape_shell_arg
from .models import (
    AttachedDevice, DeviceInfo, DeviceMode, PackageRecord, ShellResult, UserInfo,
)
from .shell import AdbShell
from .validators import validate_file_path, validate_package_name

logger = logging.getLogger(__name__)

CommandListener = Callable[[str, ShellResult], None]
ProgressCallback = Callable[[float], None]

USER_INFO_RE = re.compile(r'UserInfo\{(\d+):([^:]+):([0-9a-fA-F]+)\}(?:\s+(running))?')
CREATED_USER_RE = re.compile(r'created user id (\d+)')
# "Package com.x installed for user: 10"; never matches "not installed"
INSTALLED_FOR_USER_RE = re.compile(r'^Package \S+ installed for user', re.MULTILINE)

_STATE_TO_MODE = {
    "device": DeviceMode.ADB,
    "unauthorized": DeviceMode.UNAUTHORIZED,
    "offline": DeviceMode.OFFLINE,
    "recovery": DeviceMode.RECOVERY,
    "sideload": DeviceMode.SIDELOAD,
}


# ==================== Output parsers ====================

def parse_device_list(output: str) -> List[AttachedDevice]:
    """Parse `adb devices -l`."""
    devices = []
    for line in output.strip().split('\n')[1:]:
        parts = line.split()
        if len(parts) < 2:
            continue
        info = AttachedDevice(serial=parts[0], mode=_STATE_TO_MODE.get(parts[1], DeviceMode.UNKNOWN))
        for part in parts[2:]:
            if ':' not in part:
                continue
            key, val = part.split(':', 1)
            if key in ("product", "model", "device", "transport_id"):
                setattr(info, key, val)
        devices.append(info)
    return devices


def parse_package_paths(output: str) -> List[Tuple[str, str]]:
    """Parse `pm list packages -f` lines into (apk_path, name) pairs."""
    entries = []
    for line in output.split('\n'):
        line = line.strip()
        if not line.startswith("package:"):
            continue
        content = line[len("package:"):]
        apk_path, sep, name = content.rpartition("=")
        name = name.strip()
        if not sep or not name or "/" in name or apk_path.endswith("="):
            continue
        entries.append((apk_path, name))
    return entries


def parse_package_names(output: str) -> Set[str]:
    """Parse plain `pm list packages` output into a set of names."""
    return {
        line.replace("package:", "").strip()
        for line in output.split('\n')
        if line.strip()
    }


def parse_users(output: str) -> List[UserInfo]:
    users = []
    for line in output.split('\n'):
        match = USER_INFO_RE.search(line)
        if not match:
            continue
        users.append(UserInfo(
            id=int(match.group(1)),
            name=match.group(2),
            flags=int(match.group(3), 16),
            running=bool(match.group(4)),
        ))
    return users


def _first_int(text: str, default: int = 0) -> int:
    match = re.search(r'(\d+)', text or "")
    return int(match.group(1)) if match else default


def is_system_path(apk_path: Optional[str]) -> bool:
    return bool(apk_path) and apk_path.startswith(SYSTEM_PATH_PREFIXES)


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


# ==================== Shared transport logic ====================

class BaseTransport:
    """
    Package, user and install operations expressed as shell commands.

    Subclasses provide `_run(command)`. Every command is reported to the
    registered listeners once its result is known.
    """

    def __init__(self):
        self._listeners: List[CommandListener] = []
        self._listener_lock = threading.Lock()

    # ---------- listeners ----------

    def add_command_listener(self, listener: CommandListener):
        with self._listener_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def _notify(self, command: str, result: ShellResult):
        with self._listener_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(command, result)

    # ---------- primitives ----------

    def _run(self, command: str) -> ShellResult:
        raise NotImplementedError

    def shell(self, command: str) -> ShellResult:
        try:
            result = self._run(command)
        except TransportError as e:
            self._notify(command, ShellResult(1, "", str(e)))
            raise
        self._notify(command, result)
        return result

    def connect(self, serial: Optional[str] = None,
                on_status: Optional[Callable[[str], None]] = None) -> DeviceInfo:
        raise NotImplementedError

    def disconnect(self):
        raise NotImplementedError

    # ---------- device info ----------

    def is_rooted(self) -> bool:
        result = self.shell("su -c id")
        return result.exit_code == 0 and "uid=0(root)" in result.stdout

    def get_device_info(self) -> DeviceInfo:
        def prop(name: str) -> str:
            return self.shell(f"getprop {name}").stdout.strip()

        model = prop("ro.product.model") or "Unknown"
        manufacturer = prop("ro.product.manufacturer") or "Unknown"
        android_version = prop("ro.build.version.release") or "Unknown"
        api_level = _first_int(prop("ro.build.version.sdk"))
        serial = prop("ro.serialno") or "Unknown"
        battery = self.shell("cat /sys/class/power_supply/battery/capacity 2>/dev/null || echo 0")
        status = self.shell("cat /sys/class/power_supply/battery/status 2>/dev/null || echo Unknown")
        size = self.shell("wm size")
        density = self.shell("wm density")
        size_match = re.search(r'(\d+x\d+)', size.stdout)

        return DeviceInfo(
            manufacturer=manufacturer,
            model=model,
            serial=serial,
            android_version=android_version,
            api_level=api_level,
            battery_level=_first_int(battery.stdout),
            battery_status=status.stdout.strip() or "Unknown",
            screen_resolution=size_match.group(1) if size_match else "Unknown",
            screen_density=_first_int(density.stdout),
            is_rooted=self.is_rooted(),
        )

    # ---------- packages ----------

    def list_packages(self) -> List[PackageRecord]:
        result = self.shell("pm list packages -f -u")
        if result.exit_code != 0:
            raise TransportError("Unable to load package list")

        records = [
            PackageRecord(name=name, apk_path=path, is_system=is_system_path(path))
            for path, name in parse_package_paths(result.stdout)
        ]
        disabled = parse_package_names(self.shell("pm list packages -d").stdout)
        installed = parse_package_names(self.shell("pm list packages").stdout)
        for record in records:
            record.is_enabled = record.name not in disabled and record.name in installed

        return self._filter_ghost_packages(records)

    def find_package(self, name: str) -> Optional[PackageRecord]:
        """Look up one package by exact name; None when it is not on the device."""
        safe_name = validate_package_name(name)
        result = self.shell(f"pm list packages -f -u {safe_name}")
        for path, found in parse_package_paths(result.stdout):
            if found == safe_name:
                return PackageRecord(name=found, apk_path=path, is_system=is_system_path(path))
        return None

    def _filter_ghost_packages(self, records: List[PackageRecord]) -> List[PackageRecord]:
        """Drop packages that `pm path` no longer resolves."""
        names = []
        for record in records:
            try:
                names.append(validate_package_name(record.name))
            except ValidationError:
                continue
        if not names:
            return records

        resolvable: Set[str] = set()
        for chunk in _chunks(names, GHOST_CHECK_CHUNK):
            args = " ".join(f'"{escape_shell_arg(n)}"' for n in chunk)
            result = self.shell(
                f'for p in {args}; do if pm path "$p" 2>/dev/null | head -1 >/dev/null; '
                f'then printf "%s " "$p"; fi; done')
            resolvable.update(result.stdout.split())
        return [r for r in records if r.name in resolvable]

    def disable_package(self, name: str) -> ShellResult:
        """Disable for user 0, falling back to a keep-data uninstall."""
        safe_name = validate_package_name(name)
        disabled = self.shell(f"pm disable-user --user 0 {safe_name}")
        if (disabled.exit_code == 0
                and "SecurityException" not in disabled.stdout
                and "Cannot disable" not in disabled.stdout):
            return disabled

        removed = self.shell(f"pm uninstall -k --user 0 {safe_name}")
        if removed.exit_code == 0 or "Success" in removed.stdout:
            return ShellResult(0, f"[Fallback: uninstall] {removed.stdout}".strip(), removed.stderr)

        return ShellResult(
            1, disabled.stdout,
            f"Neither disable nor uninstall worked. Disable: {disabled.stdout or disabled.stderr} "
            f"| Uninstall: {removed.stdout or removed.stderr}")

    def enable_package(self, name: str) -> ShellResult:
        """Enable, falling back to reinstalling the stock APK for user 0."""
        safe_name = validate_package_name(name)
        enabled = self.shell(f"pm enable {safe_name}")
        if enabled.exit_code == 0 and "new state" in enabled.stdout:
            return enabled

        restored = self.shell(f"pm install-existing {safe_name}")
        if restored.exit_code == 0 or "installed" in restored.stdout:
            return ShellResult(0, f"[Reinstall] {restored.stdout}".strip(), restored.stderr)

        return ShellResult(
            1, enabled.stdout,
            f"Enable: {enabled.stdout or enabled.stderr} | Install-existing: {restored.stdout or restored.stderr}")

    def uninstall_package_root(self, name: str, apk_path: str) -> ShellResult:
        """Remove a system app from its partition with su, then uninstall it."""
        safe_name = validate_package_name(name)
        safe_path = validate_file_path(apk_path, ROOT_REMOVAL_PREFIXES)

        for mount_point in ("/", "/system", "/product", "/vendor"):
            self.shell(f'su -c "mount -o rw,remount {mount_point}"')

        parent_dir = safe_path.rsplit("/", 1)[0]
        target = safe_path if parent_dir in ROOT_APP_DIRS else parent_dir
        removed = self.shell(f'su -c "rm -rf \\"{escape_shell_arg(target)}\\""')
        uninstalled = self.shell(f'su -c "pm uninstall {safe_name}"')

        if removed.exit_code == 0 or uninstalled.exit_code == 0:
            return ShellResult(
                0, f"Root removal executed. rm={removed.exit_code}, pm={uninstalled.stdout}".strip(),
                uninstalled.stderr)
        return ShellResult(
            1, uninstalled.stdout,
            f"Root uninstall failed: {removed.stderr} {uninstalled.stderr}".strip())

    # ---------- install ----------

    def _write_chunk(self, path: str, chunk: str, append: bool):
        op = ">>" if append else ">"
        self.shell(f'echo "{chunk}" | base64 -d {op} "{escape_shell_arg(path)}"')

    def push_file(self, data: bytes, remote_path: str, on_progress: Optional[ProgressCallback] = None):
        """Write bytes to the device as base64 chunks."""
        safe_path = validate_file_path(remote_path, PUSH_PATH_PREFIXES)
        if on_progress:
            on_progress(0.1)
        encoded = base64.b64encode(data).decode("ascii")
        if on_progress:
            on_progress(0.3)

        chunks = [encoded[i:i + PUSH_CHUNK_SIZE] for i in range(0, len(encoded), PUSH_CHUNK_SIZE)] or [""]
        for i, chunk in enumerate(chunks):
            self._write_chunk(safe_path, chunk, append=i > 0)
            if on_progress:
                on_progress(0.3 + 0.6 * (i + 1) / len(chunks))
        if on_progress:
            on_progress(1.0)

    def install_binary(self, data: bytes, on_progress: Optional[ProgressCallback] = None) -> ShellResult:
        """Push an APK to a temp file, `pm install -r` it, and always remove the temp file."""
        temp_path = f"{INSTALL_TEMP_DIR}/app_install_{int(time.time() * 1000)}.apk"
        try:
            self.push_file(data, temp_path, on_progress)
            return self.shell(f'pm install -r "{temp_path}"')
        finally:
            try:
                self.shell(f'rm "{temp_path}"')
            except TransportError:
                logger.warning("Could not remove %s after install", temp_path)

    # ---------- users / profiles ----------

    def list_users(self) -> List[UserInfo]:
        result = self.shell("pm list users")
        if result.exit_code != 0:
            return []
        return parse_users(result.stdout)

    def create_managed_profile(self, name: str = "ClonedApps") -> Optional[int]:
        safe_name = re.sub(r'[^a-zA-Z0-9 ]', '', name)
        result = self.shell(f'pm create-user --profileOf 0 --managed "{safe_name}"')
        if result.exit_code == 0:
            match = CREATED_USER_RE.search(result.stdout)
            if match:
                return int(match.group(1))
        return None

    def start_user(self, user_id: int) -> bool:
        return self.shell(f"am start-user {int(user_id)}").exit_code == 0

    def remove_user(self, user_id: int) -> bool:
        return self.shell(f"pm remove-user {int(user_id)}").exit_code == 0

    def install_existing_for_user(self, name: str, user_id: int) -> bool:
        safe_name = validate_package_name(name)
        result = self.shell(f"pm install-existing --user {int(user_id)} {safe_name}")
        # pm exits 0 for unknown packages too; only the confirmation line counts
        return bool(INSTALLED_FOR_USER_RE.search(result.stdout))


# ==================== Real device ====================

class AdbTransport(BaseTransport):
    """Transport backed by the host adb binary and one interactive shell."""

    def __init__(self, adb_binary: str = ADB_BINARY):
        super().__init__()
        self.adb_binary = adb_binary
        self.serial: Optional[str] = None
        self._shell: Optional[AdbShell] = None

    def _adb(self, *args: str, timeout: int = 10, input_text: Optional[str] = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                [self.adb_binary, *args],
                capture_output=True, text=True, timeout=timeout, input=input_text
            )
        except FileNotFoundError as e:
            raise TransportError("TRANSPORT_UNSUPPORTED") from e
        except subprocess.TimeoutExpired as e:
            raise TransportError(f"adb {' '.join(args[:3])} timed out: device offline") from e

    def list_devices(self) -> List[AttachedDevice]:
        result = self._adb("devices", "-l")
        return parse_device_list(result.stdout)

    def _wait_for_authorization(self, serial: str):
        deadline = time.time() + AUTHORIZATION_WAIT
        while time.time() < deadline:
            state = self._adb("-s", serial, "get-state", timeout=5).stdout.strip()
            if state == "device":
                return
            time.sleep(DEVICE_POLL_INTERVAL)
        raise TransportError(f"Authorization not granted on {serial}: access denied")

    def connect(self, serial: Optional[str] = None,
                on_status: Optional[Callable[[str], None]] = None) -> DeviceInfo:
        if shutil.which(self.adb_binary) is None:
            raise TransportError("TRANSPORT_UNSUPPORTED")

        devices = self.list_devices()
        if serial is not None:
            devices = [d for d in devices if d.serial == serial]
            if not devices:
                raise TransportError(f"device not found: {serial}")
        if not devices:
            raise TransportError("no device selected")

        device = devices[0]
        if device.mode == DeviceMode.OFFLINE:
            raise TransportError(f"{device.serial} is offline")
        if device.mode == DeviceMode.UNAUTHORIZED:
            if on_status:
                on_status("authorizing")
            self._wait_for_authorization(device.serial)
        elif device.mode != DeviceMode.ADB:
            raise TransportError(f"device not found: {device.serial} is in {device.mode.value} mode")

        shell = AdbShell(device.serial)
        shell.connect()
        self._shell = shell
        self.serial = device.serial
        logger.info("Connected to %s", device.serial)
        try:
            return self.get_device_info()
        except (TransportError, OSError):
            self.disconnect()
            raise

    def disconnect(self):
        if self._shell:
            self._shell.disconnect()
        self._shell = None
        self.serial = None

    def _run(self, command: str) -> ShellResult:
        if not self._shell:
            raise TransportError("No connected device: no device selected")
        return self._shell.run(command)

    def _write_chunk(self, path: str, chunk: str, append: bool):
        # Fed through stdin: a 50k-char line does not fit the interactive pty
        op = ">>" if append else ">"
        command = f'base64 -d {op} "{escape_shell_arg(path)}"'
        completed = self._adb("-s", self.serial, "shell", command, timeout=60, input_text=chunk)
        result = ShellResult(completed.returncode, completed.stdout, completed.stderr)
        self._notify(f"{command}  # {len(chunk)} base64 chars", result)
        if result.exit_code != 0:
            raise TransportError(f"Push to {path} failed: {result.stderr or result.stdout}")
