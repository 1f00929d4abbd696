"""
Work profiles: create a managed "clone" profile, provision it, strip it
down to the essentials and copy apps into it.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .audit import AuditLog
from .errors import SessionError, TransportError, ValidationError
from .models import CancelToken, Notification, ProgressEvent, UserInfo
from .results import classify_transport_error
from .session import Session
from .validators import validate_package_name, validate_text_input

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

# Packages a managed profile needs to boot, sign in and install apps
PROFILE_KEEP = frozenset({
    "android",
    "com.android.systemui",
    "com.android.settings",
    "com.android.providers.settings",
    "com.android.providers.contacts",
    "com.android.providers.media",
    "com.android.providers.media.module",
    "com.android.providers.downloads",
    "com.android.providers.downloads.ui",
    "com.android.providers.userdictionary",
    "com.android.providers.blockednumber",
    "com.android.providers.telephony",
    "com.android.shell",
    "com.android.keychain",
    "com.android.permissioncontroller",
    "com.android.packageinstaller",
    "com.android.certinstaller",
    "com.android.externalstorage",
    "com.android.documentsui",
    "com.android.inputdevices",
    "com.android.location.fused",
    "com.android.networkstack.tethering",
    "com.android.se",
    "com.google.android.gms",
    "com.google.android.gsf",
    "com.google.android.gsf.login",
    "com.android.vending",
    "com.android.inputmethod.latin",
    "com.google.android.inputmethod.latin",
    "com.android.webview",
    "com.google.android.webview",
    "com.google.android.trichromelibrary",
    "com.android.launcher3",
    "com.google.android.apps.nexuslauncher",
    "com.android.managedprovisioning",
    "com.google.android.apps.work.oobconfig",
    "com.android.companiondevicemanager",
    "com.android.networkstack",
    "com.android.captiveportallogin",
    "com.android.theme.icon.roundedrect",
    "com.android.theme.icon.teardrop",
})

PROFILE_KEEP_PREFIXES = (
    "com.android.providers.",
    "com.android.server.",
    "com.android.internal.",
    "com.android.overlay.",
    "com.android.theme.",
    "android.auto_generated_rro",
)

PROVISIONING_SETTINGS = (
    ("secure", "user_setup_complete", "Configuring profile settings..."),
    ("secure", "install_non_market_apps", "Enabling sideload permissions..."),
    ("global", "device_provisioned", "Finalizing provisioning..."),
)


def is_profile_essential(package: str) -> bool:
    return package in PROFILE_KEEP or package.startswith(PROFILE_KEEP_PREFIXES)


@dataclass
class DebloatStats:
    removed: int = 0
    kept: int = 0
    failed_packages: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_packages)


@dataclass
class ProfileSetup:
    user_id: Optional[int]
    provisioned: bool = False
    debloat: DebloatStats = field(default_factory=DebloatStats)
    completed: bool = False

    @property
    def created(self) -> bool:
        return self.user_id is not None


class ProfileManager:

    def __init__(self, session: Session, audit: AuditLog,
                 notify: Optional[Callable[[Notification], None]] = None):
        self.session = session
        self.audit = audit
        self.notify = notify if notify is not None else (lambda _n: None)

    def list_users(self) -> List[UserInfo]:
        return self.session.channel.list_users()

    def create_clone_profile(self, name: str = "ClonedApps",
                             on_progress: Optional[ProgressListener] = None,
                             cancel: Optional[CancelToken] = None) -> ProfileSetup:
        """
        Create a managed profile, start it, mark it provisioned and remove
        everything that is not essential from it.

        Steps run one after another. A cancelled setup keeps the profile as
        far as it got; it is not removed.
        """
        def progress(phase: str, message: str, **extra):
            if on_progress:
                on_progress(ProgressEvent(phase=phase, fraction=extra.pop("fraction", 0.0),
                                          message=message, **extra))

        try:
            clean_name = validate_text_input(name, "Profile name", 64, min_length=1)
            channel = self.session.channel
            user_id = channel.create_managed_profile(clean_name)
        except ValidationError as e:
            self._fail("create profile", e.message)
            return ProfileSetup(user_id=None)
        except (TransportError, SessionError) as e:
            self._fail("create profile", self._transport_message(e))
            return ProfileSetup(user_id=None)
        if user_id is None:
            self._fail("create profile", "The device refused to create a managed profile")
            return ProfileSetup(user_id=None)
        self.audit.success(f"create profile {clean_name}", f"Created user {user_id}")

        # From here on the profile exists; failures keep its id so it can be removed
        setup = ProfileSetup(user_id=user_id)
        try:
            if not channel.start_user(user_id):
                logger.warning("Profile %s did not start", user_id)

            provisioned = True
            for namespace, key, message in PROVISIONING_SETTINGS:
                progress("settings", message)
                result = channel.shell(f"settings put --user {user_id} {namespace} {key} 1")
                provisioned = provisioned and result.exit_code == 0
            setup.provisioned = provisioned

            setup.debloat = self.debloat_profile(user_id, progress, cancel)
        except (TransportError, SessionError) as e:
            self._fail(f"set up profile {user_id}", self._transport_message(e))
            return setup

        setup.completed = True
        stats = setup.debloat
        progress("done", "Profile ready!", fraction=1.0)
        self.notify(Notification(
            "success", "Profile created",
            f"User {user_id}: {stats.removed} removed, {stats.kept} kept, {stats.failed} failed"))
        return setup

    def debloat_profile(self, user_id: int, progress: Callable[..., None],
                        cancel: Optional[CancelToken] = None) -> DebloatStats:
        """Uninstall (or at least disable) every non-essential package in a profile."""
        stats = DebloatStats()
        channel = self.session.channel
        progress("scanning", "Scanning installed packages...")
        listing = channel.shell(f"pm list packages --user {int(user_id)} -e")
        packages = [
            line.strip()[len("package:"):].strip()
            for line in listing.stdout.split("\n")
            if line.strip().startswith("package:")
        ]
        if not packages:
            return stats
        progress("scanning", f"Found {len(packages)} packages to analyze", total=len(packages))

        for index, package in enumerate(packages, start=1):
            if cancel is not None and cancel.cancelled:
                break
            if is_profile_essential(package):
                stats.kept += 1
                continue
            try:
                safe = validate_package_name(package)
            except ValidationError:
                stats.failed_packages.append(package)
                continue

            progress("debloating", "Removing bloatware...", fraction=index / len(packages),
                     current=index, total=len(packages), label=safe)
            removed = channel.shell(f"pm uninstall -k --user {int(user_id)} {safe}")
            if removed.exit_code == 0 or "Success" in removed.stdout:
                stats.removed += 1
                continue
            disabled = channel.shell(f"pm disable-user --user {int(user_id)} {safe}")
            if disabled.exit_code == 0:
                stats.removed += 1
            else:
                stats.failed_packages.append(safe)
        return stats

    def delete_profile(self, user_id: int) -> bool:
        if int(user_id) == 0:
            return self._fail("remove profile", "The primary user cannot be removed")
        try:
            ok = self.session.channel.remove_user(int(user_id))
        except (TransportError, SessionError) as e:
            return self._fail(f"remove profile {user_id}", self._transport_message(e))
        if not ok:
            return self._fail(f"remove profile {user_id}", f"Could not remove user {user_id}")
        self.audit.success(f"remove profile {user_id}", "Removed")
        self.notify(Notification("success", "Profile removed", f"User {user_id}"))
        return True

    def clone_app(self, package: str, user_id: int) -> bool:
        """Make an app already installed for the owner available in a profile."""
        label = f"clone {package} to user {user_id}"
        try:
            ok = self.session.channel.install_existing_for_user(package, int(user_id))
        except ValidationError as e:
            return self._fail(label, e.message)
        except (TransportError, SessionError) as e:
            return self._fail(label, self._transport_message(e))
        if not ok:
            return self._fail(label, f"{package} could not be installed for user {user_id}")
        message = f"{package} (Demo Mode)" if self.session.is_demo else package
        self.audit.success(label, message)
        self.notify(Notification("success", "App cloned", message))
        return True

    def _fail(self, label: str, message: str) -> bool:
        self.audit.error(label, message)
        self.notify(Notification("error", "Profile error", message))
        return False

    @staticmethod
    def _transport_message(error: Exception) -> str:
        if isinstance(error, TransportError):
            return classify_transport_error(error.code)[1]
        return str(error)
