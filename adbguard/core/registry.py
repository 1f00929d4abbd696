"""
Device registry: fingerprint records and per-user action history.

Used for returning-device detection and for tracking packages that came
back after a system update. Every call is best-effort from the console's
point of view and never runs on the device channel.
"""
import json
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set

from .config import DATA_DIR
from .models import DeviceInfo


@dataclass
class DeviceRecord:
    device_id: str
    fingerprint: str
    manufacturer: str
    model: str
    api_level: int
    last_seen: str = ""


class DeviceRegistry:
    """In-memory registry. Subclasses persist the same data elsewhere."""

    def __init__(self):
        self._devices: Dict[str, DeviceRecord] = {}
        self._actions: List[dict] = []
        self._lock = threading.Lock()

    def lookup(self, fingerprint: str) -> Optional[DeviceRecord]:
        with self._lock:
            return self._devices.get(fingerprint)

    def register(self, fingerprint: str, info: DeviceInfo) -> DeviceRecord:
        """Create or refresh the record for a fingerprint."""
        with self._lock:
            record = self._devices.get(fingerprint)
            device_id = record.device_id if record else f"dev-{len(self._devices) + 1}"
            record = DeviceRecord(
                device_id=device_id,
                fingerprint=fingerprint,
                manufacturer=info.manufacturer,
                model=info.model,
                api_level=info.api_level,
                last_seen=datetime.now().isoformat(timespec="seconds"),
            )
            self._devices[fingerprint] = record
            self._save()
            return record

    def record_action(self, user_id: str, device_id: str, package: str, action: str):
        with self._lock:
            self._actions.append({
                "ts": datetime.now().isoformat(timespec="seconds"),
                "user": user_id,
                "device": device_id,
                "package": package,
                "action": action,
            })
            self._save()

    def disabled_packages(self, user_id: str, device_id: str) -> Set[str]:
        """Packages whose last recorded action by this user on this device was a disable."""
        last: Dict[str, str] = {}
        with self._lock:
            for event in self._actions:
                if event["user"] == user_id and event["device"] == device_id:
                    last[event["package"]] = event["action"]
        return {pkg for pkg, action in last.items() if action in ("disable", "uninstall")}

    def _save(self):
        pass


class JsonFileRegistry(DeviceRegistry):
    """Registry persisted as one JSON document under the data directory."""

    def __init__(self, path: Optional[Path] = None):
        super().__init__()
        self.path = Path(path) if path else DATA_DIR / "registry.json"
        if self.path.exists():
            data = json.loads(self.path.read_text(encoding="utf-8"))
            self._devices = {
                fp: DeviceRecord(**rec) for fp, rec in data.get("devices", {}).items()
            }
            self._actions = data.get("actions", [])

    def _save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "devices": {fp: asdict(rec) for fp, rec in self._devices.items()},
            "actions": self._actions,
        }
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
