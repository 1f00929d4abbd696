"""
Configuration and constants for the ADB console core.
"""
import shutil
from pathlib import Path

ADB_BINARY = shutil.which("adb") or "adb"

# Unique marker for output boundary detection
MARKER_PREFIX = "___ADBG_MARKER___"

# Robust prompt patterns for various Android shells/ROMs
SHELL_PROMPT_PATTERNS = [
    r'[\$#]\s*$',           # Simple $ or # at end
    r':\S*\s*[\$#]\s*$',    # path:dir $ or #
    r'@\S+:\S*\s*[\$#]\s*$' # user@host:dir $ or #
]

# Exit code reported when a shell command hits its timeout
TIMEOUT_EXIT_CODE = 124

COMMAND_TIMEOUT = 30           # seconds per shell command
DEVICE_POLL_INTERVAL = 0.5     # seconds between get-state polls
AUTHORIZATION_WAIT = 60        # seconds the transport waits for the RSA prompt

# Session recovery: a stuck authorization handshake forces a full reset
AUTHORIZING_TIMEOUT = 30

# Storage location for analytics and exported logs
DATA_DIR = Path.home() / ".adbguard"

# Registry owner for this host (single-user server)
LOCAL_USER_ID = "local"

# ==================== Validation limits ====================
MAX_COMMAND_LENGTH = 2048
MAX_IDENTIFIER_LENGTH = 256
MAX_PATH_LENGTH = 1024
MAX_SETTING_VALUE_LENGTH = 256
MAX_HOSTNAME_LENGTH = 253

ALLOWED_PATH_PREFIXES = (
    "/data/local/tmp/",
    "/sdcard/",
    "/storage/",
    "/system/",
    "/product/",
    "/vendor/",
    "/apex/",
    "/data/data/",
    "/data/app/",
)

# Where the root removal path may delete APKs from
ROOT_REMOVAL_PREFIXES = ("/system/", "/product/", "/vendor/", "/apex/", "/data/app/")

# Shared app directories: only the APK file is removed, never the directory
ROOT_APP_DIRS = (
    "/system/app",
    "/system/priv-app",
    "/product/app",
    "/product/priv-app",
    "/vendor/app",
)

SYSTEM_PATH_PREFIXES = ("/system/", "/product/", "/vendor/", "/apex/")

PUSH_PATH_PREFIXES = ("/data/local/tmp/",)

SETTINGS_NAMESPACES = ("system", "secure", "global")

ALLOWED_SETTING_KEYS = frozenset([
    # Display / animations
    "font_scale",
    "window_animation_scale",
    "transition_animation_scale",
    "animator_duration_scale",
    "screen_off_timeout",
    "screen_brightness_mode",
    "stay_on_while_plugged_in",
    # Developer / debug
    "show_touches",
    "pointer_location",
    "force_gpu_rendering",
    "debug_gpu_overdraw",
    "adb_wifi_enabled",
    # Privacy / security
    "install_non_market_apps",
    "usage_stats_enabled",
    "send_action_app_error",
    # Network
    "private_dns_mode",
    "private_dns_specifier",
    # Desktop mode
    "force_resizable_activities",
    "enable_freeform_support",
])

APP_OP_MODES = ("allow", "deny", "ignore", "default")

# ==================== Screen bounds ====================
MIN_RESOLUTION = 240
MAX_RESOLUTION = 7680
MIN_DENSITY = 72
MAX_DENSITY = 960

# ==================== Remote install ====================
ALLOWED_APK_DOMAINS = (
    "github.com",
    "raw.githubusercontent.com",
    "objects.githubusercontent.com",
    "f-droid.org",
    "apkmirror.com",
    "apkpure.com",
    "releases.mozilla.org",
)
APK_EXTENSION = ".apk"
MAX_APK_SIZE = 500 * 1024 * 1024

# Tried in order after the direct fetch fails; the target URL is appended percent-encoded
DOWNLOAD_PROXIES = (
    "https://corsproxy.io/?",
    "https://api.allorigins.win/raw?url=",
    "https://api.codetabs.com/v1/proxy?quest=",
)
DOWNLOAD_TIMEOUT = 60
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Share of overall progress reported by the download phase
DOWNLOAD_PHASE_WEIGHT = 0.4

# ==================== Risk catalogue ====================
UAD_LIST_URL = (
    "https://raw.githubusercontent.com/Universal-Debloater-Alliance/"
    "universal-android-debloater-next-generation/main/resources/assets/uad_lists.json"
)
CATALOG_FILE = DATA_DIR / "risk_catalog.json"
CATALOG_TIMEOUT = 30

# ==================== Batching ====================
BATCH_STEP_DELAY = 0.1
INSTALL_BATCH_DELAY = 0.5

PUSH_CHUNK_SIZE = 50000        # base64 characters per push step
GHOST_CHECK_CHUNK = 120        # packages per `pm path` probe
INSTALL_TEMP_DIR = "/data/local/tmp"
