"""
Shared fakes for the AdbGuard test suite.
"""
import json
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest
import requests

from adbguard.core import session as session_module
from adbguard.core.audit import AuditLog
from adbguard.core.errors import TransportError
from adbguard.core.models import DeviceInfo, Notification, ShellResult
from adbguard.core.session import Session
from adbguard.core.transport import BaseTransport

FAKE_DEVICE = DeviceInfo(
    manufacturer="Google",
    model="Pixel 6",
    serial="18271FDF600EJW",
    android_version="13",
    api_level=33,
    battery_level=70,
    battery_status="Charging",
    screen_resolution="1080x2400",
    screen_density=420,
)

Scripted = Union[ShellResult, Exception, Callable[[str], ShellResult]]


class FakeTransport(BaseTransport):
    """
    Records every command in order and answers from a prefix script.

    The longest matching prefix wins; unmatched commands succeed with
    empty output.
    """

    def __init__(self, device: DeviceInfo = FAKE_DEVICE):
        super().__init__()
        self.device = device
        self.commands: List[str] = []
        self.script: Dict[str, Scripted] = {}
        self.connect_error: Optional[Exception] = None
        self.connect_hook: Optional[Callable[[Optional[Callable[[str], None]]], None]] = None
        self.disconnects = 0

    def on(self, prefix: str, result: Scripted) -> "FakeTransport":
        self.script[prefix] = result
        return self

    def _run(self, command: str) -> ShellResult:
        self.commands.append(command)
        matches = [p for p in self.script if command.startswith(p)]
        if not matches:
            return ShellResult(0, "", "")
        answer = self.script[max(matches, key=len)]
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(command)
        return answer

    def connect(self, serial=None, on_status=None) -> DeviceInfo:
        if self.connect_hook:
            self.connect_hook(on_status)
        if self.connect_error:
            raise self.connect_error
        return self.device

    def disconnect(self):
        self.disconnects += 1

    def get_device_info(self) -> DeviceInfo:
        return self.device


class FakeResponse:
    def __init__(self, body: bytes = b"", status_code: int = 200,
                 headers: Optional[dict] = None, chunk_size: int = 4):
        self.body = body
        self.status_code = status_code
        self.headers = headers if headers is not None else {
            "Content-Type": "application/vnd.android.package-archive",
            "Content-Length": str(len(body)),
        }
        self.chunk_size = chunk_size
        self.closed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def iter_content(self, chunk_size=None):
        for i in range(0, len(self.body), self.chunk_size):
            yield self.body[i:i + self.chunk_size]

    def json(self):
        return json.loads(self.body.decode("utf-8"))

    def close(self):
        self.closed = True


class FakeHttp:
    """Stands in for requests.Session; answers by exact URL or URL prefix."""

    def __init__(self):
        self.routes: List[Tuple[str, Union[FakeResponse, Exception]]] = []
        self.requested: List[str] = []

    def route(self, prefix: str, answer: Union[FakeResponse, Exception]) -> "FakeHttp":
        self.routes.append((prefix, answer))
        return self

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        for prefix, answer in self.routes:
            if url.startswith(prefix):
                if isinstance(answer, Exception):
                    raise answer
                return answer
        raise requests.ConnectionError(f"no route to {url}")


class FakeRecorder:
    """ActionRecorder stand-in that records synchronously."""

    def __init__(self, registry):
        self.registry = registry
        self.recorded: List[Tuple[str, str, str, str]] = []

    def record(self, user_id, device_id, package, action):
        self.recorded.append((user_id, device_id, package, action))
        self.registry.record_action(user_id, device_id, package, action)

    def flush(self, timeout=None):
        pass


class Notifications(list):
    """Collects notifications; call it like a notify callback."""

    def __call__(self, notification: Notification):
        self.append(notification)

    @property
    def titles(self) -> List[str]:
        return [n.title for n in self]


@pytest.fixture(autouse=True)
def reset_process_state():
    session_module._reset_process_state()
    yield
    session_module._reset_process_state()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def audit():
    return AuditLog()


@pytest.fixture
def notes():
    return Notifications()


@pytest.fixture
def session(transport, audit):
    s = Session(transport)
    s.add_command_listener(audit.on_command)
    return s


@pytest.fixture
def connected(session):
    assert session.connect()
    return session


@pytest.fixture
def demo(session):
    session.enter_demo()
    return session


def no_sleep(_seconds):
    pass


def offline_error() -> TransportError:
    return TransportError("device offline")
