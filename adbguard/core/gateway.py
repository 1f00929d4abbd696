"""
Command security gateway for the interactive terminal.

Every free-form line a user wants to run on the device goes through
validate_terminal_command() first. The order of checks matters:

1. empty / length limit
2. pipe shape (at most one pipe, and only into grep)
3. deny-list over the WHOLE line, so a benign prefix cannot hide a payload
4. allow-list over the left side of the pipe
"""
import re
from typing import List, NamedTuple, Optional, Pattern

from .config import MAX_COMMAND_LENGTH
from .models import ValidationOutcome


class CommandRule(NamedTuple):
    rule_id: str
    pattern: Pattern
    description: str


class BlockedPattern(NamedTuple):
    pattern: Pattern
    label: str


def _rule(rule_id: str, pattern: str, description: str) -> CommandRule:
    return CommandRule(rule_id, re.compile(pattern), description)


def _blocked(pattern: str, label: str) -> BlockedPattern:
    return BlockedPattern(re.compile(pattern), label)


# Adding a rule here widens what can reach the device. Review carefully.
ALLOWED_COMMANDS: List[CommandRule] = [
    _rule("package-manager",
          r'^pm\s+(list\s+packages|path|dump|disable-user|enable|install-existing|uninstall|install|grant|revoke'
          r'|clear|force-stop|set-installer|get-install-location)(\s|$)',
          "Package manager operations"),
    _rule("activity-manager", r'^am\s+(start|force-stop|kill|broadcast|instrument|profile)(\s|$)',
          "Activity manager operations"),
    _rule("getprop", r'^getprop(\s|$)', "Get device properties"),
    _rule("setprop", r'^setprop\s+', "Set device properties"),
    _rule("settings", r'^settings\s+(get|put|list)\s+(system|secure|global)(\s|$)', "Android settings"),
    _rule("window-manager", r'^wm\s+(size|density|overscan)(\s|$)', "Window manager"),
    _rule("dumpsys",
          r'^dumpsys\s+(battery|display|window|activity|meminfo|cpuinfo|package|diskstats|netstats|usagestats'
          r'|notification|alarm|power|connectivity|wifi)(\s|$)',
          "System dump"),
    _rule("cat", r'^cat\s+/', "Read files"),
    _rule("ls", r'^ls(\s|$)', "List files"),
    _rule("df", r'^df(\s|$)', "Disk free"),
    _rule("du", r'^du(\s|$)', "Disk usage"),
    _rule("ps", r'^ps(\s|$)', "Process list"),
    _rule("top", r'^top(\s|$)', "Top processes"),
    _rule("id", r'^id(\s|$)', "User identity"),
    _rule("whoami", r'^whoami(\s|$)', "Who am I"),
    _rule("uname", r'^uname(\s|$)', "System info"),
    _rule("uptime", r'^uptime(\s|$)', "System uptime"),
    _rule("date", r'^date(\s|$)', "Date/time"),
    _rule("free", r'^free(\s|$)', "Memory info"),
    _rule("mount", r'^mount(\s|$)', "Mount info (read only)"),
    _rule("ping", r'^ping(\s|$)', "Ping"),
    _rule("ifconfig", r'^ifconfig(\s|$)', "Network interfaces"),
    _rule("ip", r'^ip\s+(addr|link|route|rule|neigh)(\s|$)', "IP configuration"),
    _rule("netstat", r'^netstat(\s|$)', "Network statistics"),
    _rule("nslookup", r'^nslookup(\s|$)', "DNS lookup"),
    _rule("appops", r'^appops\s+(get|set|reset)\s+', "App operations"),
    _rule("input", r'^input\s+(tap|swipe|keyevent|text)(\s|$)', "Input simulation"),
    _rule("screencap", r'^screencap(\s|$)', "Screen capture"),
    _rule("screenrecord", r'^screenrecord(\s|$)', "Screen recording"),
    _rule("logcat", r'^logcat(\s|$)', "Log viewer"),
    _rule("service", r'^service\s+(list|check)(\s|$)', "Service operations"),
    _rule("content", r'^content\s+(query|read)(\s|$)', "Content provider query"),
    _rule("monkey", r'^monkey(\s|$)', "UI monkey tester"),
    _rule("grep", r'^grep(\s|$)', "Text search"),
]

BLOCKED_PATTERNS: List[BlockedPattern] = [
    _blocked(r';\s*', "statement separator"),
    _blocked(r'\|\|', "OR chaining"),
    _blocked(r'&&', "AND chaining"),
    _blocked(r'(^|[^&])&([^&]|$)', "background execution"),
    _blocked(r'`', "backtick substitution"),
    _blocked(r'\$\(', "command substitution"),
    _blocked(r'\$\{', "variable expansion"),
    _blocked(r'[\n\r]', "embedded newline"),
    _blocked(r'>>', "append redirection"),
    _blocked(r'>', "output redirection"),
    _blocked(r'\bsu\b', "root elevation"),
    _blocked(r'\b(sh|bash|zsh|ksh)\s+-c\b', "shell trampoline"),
    _blocked(r'\brm\s', "file removal"),
    _blocked(r'\bdd\b', "direct disk write"),
    _blocked(r'\breboot\b', "reboot"),
    _blocked(r'\bshutdown\b', "shutdown"),
    _blocked(r'\bformat\b', "format"),
    _blocked(r'\bmkfs\b', "make filesystem"),
    _blocked(r'\bflash\b', "flash"),
    _blocked(r'\bfastboot\b', "fastboot"),
    _blocked(r'\brecovery\b', "recovery mode"),
    _blocked(r'\bwipe\b', "wipe data"),
    _blocked(r'\bchmod\s', "permission change"),
    _blocked(r'\bchown\s', "ownership change"),
    _blocked(r'\bmount\b.*-o\s*\S*\brw\b', "read-write remount"),
]

FILTER_COMMAND_RE = re.compile(r'^grep(\s|$)')
FILTER_FORBIDDEN_RE = re.compile(r'[;&`$<>{}]')

_RULES_BY_ID = {rule.rule_id: rule for rule in ALLOWED_COMMANDS}


def describe_rule(rule_id: Optional[str]) -> str:
    """Human-readable capability description for a matched rule id."""
    rule = _RULES_BY_ID.get(rule_id or "")
    return rule.description if rule else ""


def validate_terminal_command(raw: str) -> ValidationOutcome:
    """Decide whether a terminal line may be sent to the device."""
    trimmed = (raw or "").strip()

    if not trimmed:
        return ValidationOutcome.reject("Command is empty")
    if len(trimmed) > MAX_COMMAND_LENGTH:
        return ValidationOutcome.reject(f"Command too long (max {MAX_COMMAND_LENGTH} chars)")

    command = trimmed
    if "|" in trimmed:
        parts = [part.strip() for part in trimmed.split("|")]
        parts = [part for part in parts if part]
        if len(parts) != 2:
            return ValidationOutcome.reject("Only one pipe is allowed, and only to grep.")
        left, right = parts
        if not FILTER_COMMAND_RE.match(right):
            return ValidationOutcome.reject("Pipes are only allowed when piping to grep.")
        if FILTER_FORBIDDEN_RE.search(right):
            return ValidationOutcome.reject("Grep arguments contain blocked shell metacharacters.")
        command = left

    for blocked in BLOCKED_PATTERNS:
        if blocked.pattern.search(trimmed):
            return ValidationOutcome.reject(
                f"Command contains a blocked pattern: {blocked.pattern.pattern} ({blocked.label}). "
                f"For security, this operation is not allowed in the terminal.")

    for rule in ALLOWED_COMMANDS:
        if rule.pattern.search(command):
            return ValidationOutcome.accept(trimmed, rule.rule_id)

    first_token = trimmed.split()[0]
    return ValidationOutcome.reject(
        f'Command "{first_token}" is not in the allowed commands list. '
        f'Only ADB-related commands are permitted.')


def escape_shell_arg(arg: str) -> str:
    """
    Escape a value for use inside double quotes on the device shell.

    Only ever applied to values that already passed validation.
    """
    return (arg.replace("\\", "\\\\")
               .replace('"', '\\"')
               .replace("$", "\\$")
               .replace("`", "\\`")
               .replace("!", "\\!"))
