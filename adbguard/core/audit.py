"""
Audit log: per-command record of everything sent to the device.
"""
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from .config import DATA_DIR
from .models import AuditEntry, AuditStatus, ShellResult

SEPARATOR = "-------------------"


class AuditLog:
    """
    Append-only, in-memory sequence of AuditEntry.

    Registered as a transport command listener so every channel command
    lands here; orchestrators append their own action-level entries.
    """

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._total = 0
        self._lock = threading.Lock()

    def append(self, command: str, status: AuditStatus, message: str = "") -> AuditEntry:
        entry = AuditEntry(command=command, status=status, message=message or "")
        with self._lock:
            self._entries.append(entry)
            self._total += 1
        return entry

    def pending(self, command: str, message: str = "") -> AuditEntry:
        return self.append(command, AuditStatus.PENDING, message)

    def success(self, command: str, message: str = "") -> AuditEntry:
        return self.append(command, AuditStatus.SUCCESS, message)

    def error(self, command: str, message: str = "") -> AuditEntry:
        return self.append(command, AuditStatus.ERROR, message)

    def on_command(self, command: str, result: ShellResult):
        """Transport listener: one entry per executed channel command."""
        message = "\n".join(s.strip() for s in (result.stdout, result.stderr) if s and s.strip())
        status = AuditStatus.SUCCESS if result.exit_code == 0 else AuditStatus.ERROR
        self.append(command, status, message)

    @property
    def entries(self) -> Tuple[AuditEntry, ...]:
        """All entries, oldest first."""
        with self._lock:
            return tuple(self._entries)

    def recent(self, limit: Optional[int] = None) -> List[AuditEntry]:
        """Newest first."""
        with self._lock:
            newest = list(reversed(self._entries))
        return newest[:limit] if limit else newest

    @property
    def total_commands(self) -> int:
        return self._total

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self):
        with self._lock:
            self._entries = []
            self._total = 0

    def export_text(self) -> str:
        """Full session log, oldest first."""
        blocks = []
        for entry in self.entries:
            time_str = entry.timestamp.strftime("%H:%M:%S")
            message = f"{entry.message}\n" if entry.message else ""
            blocks.append(f"[{time_str}] {entry.command}\n{message}\n{SEPARATOR}\n")
        return "\n".join(blocks)

    def export_to(self, directory: Optional[Path] = None) -> Path:
        """Write the session log to a timestamped file and return its path."""
        target_dir = Path(directory) if directory else DATA_DIR / "logs"
        target_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        path = target_dir / f"adb_session_log_{stamp}.txt"
        path.write_text(self.export_text(), encoding="utf-8")
        return path
