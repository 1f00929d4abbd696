"""
Interactive adb shell session used as the device channel.
"""
import pexpect
import re
import time
import uuid
import threading
from typing import Optional

from .config import (
    ADB_BINARY, MARKER_PREFIX, SHELL_PROMPT_PATTERNS,
    COMMAND_TIMEOUT, TIMEOUT_EXIT_CODE,
)
from .errors import TransportError
from .models import ShellResult


class AdbShell:
    """
    One `adb -s SERIAL shell` session.

    Commands are serialized by a lock: the device channel is a single
    conversation and concurrent commands would interleave their output.
    """

    def __init__(self, device_serial: str):
        self.device_serial = device_serial
        self._process: Optional[pexpect.spawn] = None
        self._is_connected: bool = False
        self._last_activity: float = 0
        self._lock = threading.Lock()

    def connect(self):
        """Spawn the shell and wait for a prompt. Raises TransportError on failure."""
        with self._lock:
            if self._is_connected and self._process and self._process.isalive():
                return
            try:
                self._process = pexpect.spawn(
                    f"{ADB_BINARY} -s {self.device_serial} shell",
                    encoding="utf-8",
                    codec_errors="replace",
                    timeout=COMMAND_TIMEOUT,
                    maxread=65536,
                    searchwindowsize=4096,
                    dimensions=(24, 4096)
                )
                try:
                    self._process.expect(SHELL_PROMPT_PATTERNS, timeout=10)
                except pexpect.TIMEOUT:
                    # Some ROMs print the prompt only after a keypress
                    self._process.sendline("")
                    self._process.expect(SHELL_PROMPT_PATTERNS, timeout=5)
            except (pexpect.TIMEOUT, pexpect.EOF, pexpect.ExceptionPexpect, OSError) as e:
                self._force_close()
                raise TransportError(f"Could not open shell on {self.device_serial}: {e}",
                                     code="CHANNEL_INIT_FAILED") from e

            self._is_connected = True
            self._last_activity = time.time()

    def _force_close(self):
        """Force close without graceful exit."""
        if self._process:
            try:
                self._process.close(force=True)
            except (pexpect.ExceptionPexpect, OSError):
                pass
        self._process = None
        self._is_connected = False

    def disconnect(self):
        """Gracefully close the shell."""
        with self._lock:
            if self._process:
                try:
                    self._process.sendline("exit")
                    time.sleep(0.1)
                    self._process.close()
                except (pexpect.ExceptionPexpect, OSError):
                    self._force_close()
            self._process = None
            self._is_connected = False

    def is_alive(self) -> bool:
        if not self._is_connected or not self._process:
            return False
        return self._process.isalive()

    def run(self, command: str, timeout_seconds: int = COMMAND_TIMEOUT) -> ShellResult:
        """
        Execute one command and return its exit code and output.

        The pty merges stderr into stdout, so stderr is only used for
        local failures (timeouts). A timed-out command is interrupted
        with Ctrl+C and reported with exit code 124.
        """
        with self._lock:
            if not self.is_alive():
                raise TransportError("Shell not connected: device offline", code="device offline")

            marker = f"{MARKER_PREFIX}{uuid.uuid4().hex[:8]}"
            exit_marker = f"__EXIT_{uuid.uuid4().hex[:8]}__"
            wrapped = f'{command}; echo "{exit_marker}$?{exit_marker}"; echo "{marker}"'

            try:
                self._process.sendline(wrapped)
                # Skip the echoed command line, then wait for the real marker
                self._process.expect_exact(f'echo "{marker}"', timeout=timeout_seconds)
                self._process.expect_exact(marker, timeout=timeout_seconds)
                raw = self._process.before
            except pexpect.TIMEOUT:
                self._process.sendcontrol('c')
                try:
                    self._process.expect(SHELL_PROMPT_PATTERNS, timeout=3)
                except pexpect.TIMEOUT:
                    pass
                return ShellResult(TIMEOUT_EXIT_CODE, "", f"Command timed out after {timeout_seconds}s")
            except pexpect.EOF as e:
                self._is_connected = False
                raise TransportError("Shell connection lost: device offline", code="device offline") from e

            self._last_activity = time.time()
            return self._parse_output(raw, exit_marker)

    @staticmethod
    def _parse_output(raw: str, exit_marker: str) -> ShellResult:
        output = raw.replace('\r\n', '\n').replace('\r', '\n')

        exit_code = 0
        exit_match = re.search(rf'{exit_marker}(\d+){exit_marker}', output)
        if exit_match:
            exit_code = int(exit_match.group(1))
            output = output[:exit_match.start()]

        lines = []
        for line in output.split('\n'):
            stripped = line.rstrip()
            if MARKER_PREFIX in stripped or '__EXIT_' in stripped:
                continue
            # Shell prompts echoed between commands
            if re.match(r'^[\w@\-\.]+:[/\w]*\s*[#$]\s*$', stripped):
                continue
            lines.append(stripped)

        while lines and not lines[0]:
            lines.pop(0)
        while lines and not lines[-1]:
            lines.pop()

        return ShellResult(exit_code, '\n'.join(lines), "")
