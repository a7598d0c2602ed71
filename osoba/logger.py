"""
Logging module for osoba.

Provides a simple interface to configure and retrieve loggers using Python's
built-in logging module, plus masking of credentials that may show up in
agent commands and gh output.
"""

from __future__ import annotations

import contextvars
import logging
import os
import re
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler

SYSTEM_CONTEXT = "osoba-system"

# Context variable for issue tracking (thread-safe)
_issue_context: contextvars.ContextVar[str] = contextvars.ContextVar(
    "issue_context", default=SYSTEM_CONTEXT
)


def set_issue_context(repo: str | None = None, issue_number: int | None = None) -> None:
    """Set the current issue context for logging.

    Args:
        repo: Repository in 'owner/repo' format
        issue_number: Issue or pull request number
    """
    if repo and issue_number is not None:
        _issue_context.set(f"{repo}#{issue_number}")
    else:
        _issue_context.set(SYSTEM_CONTEXT)


def clear_issue_context() -> None:
    """Clear the issue context, resetting to osoba-system."""
    _issue_context.set(SYSTEM_CONTEXT)


def get_issue_context() -> str:
    """Get the current issue context string."""
    return _issue_context.get()


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    GRAY = "\033[90m"
    ORANGE = "\033[38;5;208m"


# Keywords that pick a color and prefix for INFO logs
SEMANTIC_COLORS = {
    "starting": ("green", ">>>"),
    "creating": ("green", ">>>"),
    "launching": ("green", ">>>"),
    "dispatching": ("green", ">>>"),
    "merged": ("green", "✓"),
    "claimed": ("green", "✓"),
    "stopped": ("green", "✓"),
    "cleaned up": ("blue", "🧹"),
    "cleanup": ("blue", "🧹"),
    "removed worktree": ("blue", "🧹"),
    "killed window": ("blue", "🧹"),
    "transition": ("yellow", "→"),
    "auto-plan": ("magenta", "↺"),
    "recreat": ("magenta", "↺"),
    "skipping": ("gray", "⊘"),
    "no issues": ("gray", "⊘"),
    "no pull requests": ("gray", "⊘"),
    "already": ("gray", "⊘"),
    "planning": ("orange", "⚙"),
    "implementing": ("orange", "⚙"),
    "reviewing": ("orange", "⚙"),
    "revising": ("orange", "⚙"),
}

# Patterns for credentials that must never reach a log file
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{10,}"), "gh*_****"),
    (re.compile(r"\bgithub_pat_[A-Za-z0-9_]{10,}"), "github_pat_****"),
    (re.compile(r"\bsk-[A-Za-z0-9\-_]{10,}"), "sk-****"),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9\-_\.=]+"), "Bearer ****"),
    (re.compile(r"(?i)\b(GITHUB_TOKEN|GH_TOKEN|ANTHROPIC_API_KEY)=\S+"), r"\1=****"),
]


def mask_sensitive(text: str) -> str:
    """Replace tokens and API keys in text with placeholders.

    Args:
        text: Text that may contain credentials

    Returns:
        Text with every recognized credential masked.
    """
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class DateRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that adds date (yyyy-mm-dd) to backup filenames."""

    def rotation_filename(self, default_name: str) -> str:
        """Generate backup filename with date."""
        # "osoba.log.1" becomes "osoba.2024-01-15.log.1"
        base = self.baseFilename
        dirname = os.path.dirname(base)
        basename = os.path.basename(base)
        suffix = default_name[len(base) :]
        date_str = datetime.now().strftime("%Y-%m-%d")

        if "." in basename:
            name_part, ext = basename.rsplit(".", 1)
            new_name = f"{name_part}.{date_str}.{ext}{suffix}"
        else:
            new_name = f"{basename}.{date_str}{suffix}"

        return os.path.join(dirname, new_name)


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors based on log level and semantic content."""

    COLOR_MAP = {
        "green": Colors.GREEN,
        "blue": Colors.BLUE,
        "magenta": Colors.MAGENTA,
        "yellow": Colors.YELLOW,
        "gray": Colors.GRAY,
        "red": Colors.RED,
        "orange": Colors.ORANGE,
    }

    def _get_semantic_color(self, message: str) -> tuple[str, str] | None:
        """Return (color_name, prefix_symbol) for the first matching keyword."""
        message_lower = message.lower()
        for keyword, (color, prefix) in SEMANTIC_COLORS.items():
            if keyword in message_lower:
                return (color, prefix)
        return None

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        if record.levelno >= logging.ERROR:
            return f"{Colors.RED}{message}{Colors.RESET}"
        elif record.levelno >= logging.WARNING:
            return f"{Colors.YELLOW}{message}{Colors.RESET}"

        if record.levelno == logging.INFO:
            semantic = self._get_semantic_color(record.getMessage())
            if semantic:
                color_name, prefix = semantic
                color_code = self.COLOR_MAP.get(color_name, "")
                return f"{color_code}{prefix} {message}{Colors.RESET}"

        return message


class ContextAwareFormatter(ColoredFormatter):
    """Colored formatter that injects issue context from contextvars."""

    def format(self, record: logging.LogRecord) -> str:
        record.issue_context = get_issue_context()
        return super().format(record)


class PlainContextAwareFormatter(logging.Formatter):
    """Plain formatter (no colors) that injects issue context from contextvars."""

    def format(self, record: logging.LogRecord) -> str:
        record.issue_context = get_issue_context()
        return super().format(record)


class MaskingFilter(logging.Filter):
    """Filter that masks credentials in log records before they are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = mask_sensitive(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: mask_sensitive(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    mask_sensitive(arg) if isinstance(arg, str) else arg for arg in record.args
                )

        return True


LOG_FORMAT = "[%(asctime)s] %(levelname)s %(issue_context)s %(threadName)s %(name)s: %(message)s"


def setup_logging(
    log_file: str | None = None,
    log_size: int = 10 * 1024 * 1024,
    log_backups: int = 5,
    daemon_mode: bool = False,
    level: str | None = None,
) -> None:
    """
    Configure the root logger with a standard format and level.

    The LOG_LEVEL environment variable wins over the level argument.
    Default level is INFO.

    Args:
        log_file: Path to log file. Required when daemon_mode=True.
        log_size: Max size in bytes before rotation. Default: 10MB
        log_backups: Number of backup files to keep. Default: 5
        daemon_mode: If True, log to file only (no stdout/stderr).
        level: Level name from configuration (e.g. "debug").

    Output: When daemon_mode=False: stdout for INFO/DEBUG, stderr for WARNING+, and file.
            When daemon_mode=True: file only.
    """
    log_level_str = (os.getenv("LOG_LEVEL") or level or "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    masking_filter = MaskingFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if not daemon_mode:
        formatter = ContextAwareFormatter(LOG_FORMAT)

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(logging.DEBUG)
        stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)
        stdout_handler.addFilter(masking_filter)
        stdout_handler.setFormatter(formatter)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.addFilter(masking_filter)
        stderr_handler.setFormatter(formatter)

        root_logger.addHandler(stdout_handler)
        root_logger.addHandler(stderr_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = DateRotatingFileHandler(
                log_file,
                maxBytes=log_size,
                backupCount=log_backups,
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(PlainContextAwareFormatter(LOG_FORMAT))
            file_handler.addFilter(masking_filter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"[logger] Failed to create file handler: {e}", file=sys.stderr)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger with the specified name.

    Args:
        name: The name for the logger, typically __name__ of the calling module

    Returns:
        A configured Logger instance
    """
    return logging.getLogger(name)
