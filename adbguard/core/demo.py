"""
Demo transport: a simulated device that never touches real hardware.
"""
import copy
import re
from dataclasses import replace
from typing import Callable, List, Optional

from .models import DeviceInfo, PackageRecord, ShellResult, UserInfo
from .transport import BaseTransport, ProgressCallback

DEMO_OUTPUT = "Success (Demo Mode)"

MOCK_DEVICE_INFO = DeviceInfo(
    manufacturer="Google",
    model="Pixel 7 Pro (DEMO)",
    serial="DEMO-MODE-12345",
    android_version="14",
    api_level=34,
    battery_level=85,
    battery_status="Discharging",
    screen_resolution="1440x3120",
    screen_density=560,
    is_rooted=False,
)


def _pkg(name: str, path: str, is_system: bool) -> PackageRecord:
    return PackageRecord(name=name, apk_path=path, is_enabled=True, is_system=is_system)


MOCK_PACKAGES: List[PackageRecord] = [
    _pkg("com.google.android.youtube", "/system/app/YouTube/YouTube.apk", True),
    _pkg("com.google.android.apps.maps", "/system/app/Maps/Maps.apk", True),
    _pkg("com.facebook.katana", "/data/app/facebook/base.apk", False),
    _pkg("com.instagram.android", "/data/app/instagram/base.apk", False),
    _pkg("com.whatsapp", "/data/app/whatsapp/base.apk", False),
    _pkg("com.android.chrome", "/system/app/Chrome/Chrome.apk", True),
    _pkg("com.google.android.gm", "/system/app/Gmail/Gmail.apk", True),
    _pkg("com.google.android.apps.photos", "/system/app/Photos/Photos.apk", True),
    _pkg("com.netflix.mediaclient", "/data/app/netflix/base.apk", False),
    _pkg("com.spotify.music", "/data/app/spotify/base.apk", False),
    _pkg("com.amazon.mShop.android.shopping", "/data/app/amazon/base.apk", False),
    _pkg("com.google.android.calendar", "/system/app/Calendar/Calendar.apk", True),
    _pkg("com.google.android.contacts", "/system/app/Contacts/Contacts.apk", True),
    _pkg("com.google.android.apps.messaging", "/system/app/Messages/Messages.apk", True),
    _pkg("com.google.android.dialer", "/system/app/Phone/Phone.apk", True),
]

DEMO_PROFILE_ID = 10


class DemoTransport(BaseTransport):
    """
    Every command "succeeds" with a fixed demo output.

    Listeners still see the command that would have been sent, so the
    audit log of a demo session reads like a real one.
    """

    def __init__(self):
        super().__init__()
        self.device_info = replace(MOCK_DEVICE_INFO)
        self._packages = copy.deepcopy(MOCK_PACKAGES)
        self._users = [UserInfo(id=0, name="Owner", flags=0x13, running=True)]

    def _run(self, command: str) -> ShellResult:
        return ShellResult(0, DEMO_OUTPUT, "")

    def connect(self, serial: Optional[str] = None,
                on_status: Optional[Callable[[str], None]] = None) -> DeviceInfo:
        return self.get_device_info()

    def disconnect(self):
        pass

    def get_device_info(self) -> DeviceInfo:
        return replace(self.device_info)

    def is_rooted(self) -> bool:
        return self.device_info.is_rooted

    def list_packages(self) -> List[PackageRecord]:
        return copy.deepcopy(self._packages)

    def find_package(self, name: str) -> Optional[PackageRecord]:
        for record in self._packages:
            if record.name == name:
                return copy.deepcopy(record)
        return None

    def _set_enabled(self, name: str, enabled: bool):
        for record in self._packages:
            if record.name == name:
                record.is_enabled = enabled

    def disable_package(self, name: str) -> ShellResult:
        result = super().disable_package(name)
        self._set_enabled(name, False)
        return result

    def enable_package(self, name: str) -> ShellResult:
        result = super().enable_package(name)
        self._set_enabled(name, True)
        return result

    def install_binary(self, data: bytes, on_progress: Optional[ProgressCallback] = None) -> ShellResult:
        if on_progress:
            on_progress(1.0)
        return self.shell(f"pm install -r /data/local/tmp/demo_{len(data)}.apk")

    def list_users(self) -> List[UserInfo]:
        return copy.deepcopy(self._users)

    def create_managed_profile(self, name: str = "ClonedApps") -> Optional[int]:
        name = re.sub(r"[^a-zA-Z0-9 ]", "", name)
        self.shell(f'pm create-user --profileOf 0 --managed "{name}"')
        if not any(u.id == DEMO_PROFILE_ID for u in self._users):
            self._users.append(UserInfo(id=DEMO_PROFILE_ID, name=name, flags=0x30, running=False))
        return DEMO_PROFILE_ID

    def install_existing_for_user(self, name: str, user_id: int) -> bool:
        super().install_existing_for_user(name, user_id)
        return True

    def start_user(self, user_id: int) -> bool:
        ok = super().start_user(user_id)
        for user in self._users:
            if user.id == user_id:
                user.running = True
        return ok

    def remove_user(self, user_id: int) -> bool:
        ok = super().remove_user(user_id)
        self._users = [u for u in self._users if u.id != user_id]
        return ok
