"""Configuration module for osoba.

This module provides configuration management for the application,
loading settings from a YAML file (~/.config/osoba/osoba.yml by default)
with environment variable overrides for credentials and log level.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from osoba.labels import Phases

logger = logging.getLogger(__name__)

# Search order when no explicit path is given
DEFAULT_CONFIG_PATHS = (
    "~/.config/osoba/osoba.yml",
    "~/.config/osoba/osoba.yaml",
    "~/.osoba.yml",
    "~/.osoba.yaml",
)

MIN_POLL_INTERVAL = 1
DEFAULT_PHASE_ARGS = ["--dangerously-skip-permissions"]


class ConfigError(ValueError):
    """Raised when the configuration file is unreadable or invalid."""

    pass


@dataclass
class PhaseConfig:
    """Claude invocation settings for one phase.

    Attributes:
        args: Extra command-line arguments passed to the claude CLI
        prompt: Prompt template; supports {{issue-number}}, {{issue-title}}, {{repo-name}}
    """

    args: list[str] = field(default_factory=lambda: list(DEFAULT_PHASE_ARGS))
    prompt: str = ""


def _default_phases() -> dict[str, PhaseConfig]:
    return {
        phase: PhaseConfig(prompt=f"/osoba:{phase} {{{{issue-number}}}}")
        for phase in (Phases.PLAN, Phases.IMPLEMENT, Phases.REVIEW, Phases.REVISE)
    }


@dataclass
class GitHubConfig:
    """GitHub polling and automation settings."""

    token: str | None = None
    poll_interval: int = 5
    auto_merge_lgtm: bool = True
    auto_plan_issue: bool = False
    auto_revise_pr: bool = True
    merge_method: str = "squash"


@dataclass
class TmuxConfig:
    """tmux session settings."""

    session_prefix: str = "osoba-"
    max_panes: int = 6
    auto_resize_panes: bool = True


@dataclass
class ClaudeConfig:
    """Claude CLI settings per phase."""

    phases: dict[str, PhaseConfig] = field(default_factory=_default_phases)


@dataclass
class LogConfig:
    """Logging settings.

    Attributes:
        level: Log level name (debug, info, warning, error)
        file: Explicit log file path; derived from the repository when empty
        size: Max size in bytes before rotation
        backups: Number of rotated files to keep
    """

    level: str = "info"
    file: str = ""
    size: int = 10 * 1024 * 1024
    backups: int = 5


@dataclass
class HealthConfig:
    """Watcher health thresholds."""

    stale_after: int = 300
    min_success_rate: float = 0.1


@dataclass
class Config:
    """Application configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    tmux: TmuxConfig = field(default_factory=TmuxConfig)
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    log: LogConfig = field(default_factory=LogConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    otel_endpoint: str = ""
    otel_service_name: str = "osoba"
    config_path: str | None = None

    def phase(self, name: str) -> PhaseConfig:
        """Return the settings for a phase, falling back to defaults."""
        return self.claude.phases.get(name) or _default_phases()[name]


def find_config_file(explicit: str | None = None) -> Path | None:
    """Locate the configuration file.

    Args:
        explicit: Path given on the command line, if any

    Returns:
        Path to an existing config file, or None when none is found.

    Raises:
        ConfigError: If an explicit path was given but does not exist
    """
    if explicit:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file not found: {explicit}")
        return path

    for candidate in DEFAULT_CONFIG_PATHS:
        path = Path(candidate).expanduser()
        if path.exists():
            return path
    return None


def parse_config_file(config_path: Path) -> dict[str, Any]:
    """Parse a YAML configuration file into a mapping.

    Args:
        config_path: Path to the YAML file

    Returns:
        Parsed mapping; empty when the file is empty.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or is not a mapping
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a YAML mapping, got {type(raw).__name__}")
    return raw


def _section(raw: dict[str, Any], name: str, errors: list[str]) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        errors.append(f"'{name}' must be a mapping")
        return {}
    return value


def _build_phases(raw_phases: Any, errors: list[str]) -> dict[str, PhaseConfig]:
    phases = _default_phases()
    if raw_phases is None:
        return phases
    if not isinstance(raw_phases, dict):
        errors.append("'claude.phases' must be a mapping")
        return phases

    for name, entry in raw_phases.items():
        if not isinstance(entry, dict):
            errors.append(f"'claude.phases.{name}' must be a mapping")
            continue
        base = phases.get(name, PhaseConfig(prompt=f"/osoba:{name} {{{{issue-number}}}}"))
        args = entry.get("args", base.args)
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            errors.append(f"'claude.phases.{name}.args' must be a list of strings")
            args = base.args
        prompt = entry.get("prompt", base.prompt)
        if not isinstance(prompt, str) or not prompt.strip():
            errors.append(f"'claude.phases.{name}.prompt' must be a non-empty string")
            prompt = base.prompt
        phases[name] = PhaseConfig(args=list(args), prompt=prompt)
    return phases


def build_config(raw: dict[str, Any]) -> Config:
    """Build a Config from a parsed mapping, validating every field.

    Args:
        raw: Mapping as returned by parse_config_file

    Returns:
        Populated Config

    Raises:
        ConfigError: Listing every validation problem found
    """
    errors: list[str] = []
    config = Config()

    github = _section(raw, "github", errors)
    config.github.token = github.get("token") or None
    config.github.poll_interval = _as_int(
        github.get("poll_interval", config.github.poll_interval), "github.poll_interval", errors
    )
    config.github.auto_merge_lgtm = bool(github.get("auto_merge_lgtm", True))
    config.github.auto_plan_issue = bool(github.get("auto_plan_issue", False))
    config.github.auto_revise_pr = bool(github.get("auto_revise_pr", True))
    config.github.merge_method = github.get("merge_method", config.github.merge_method)
    if config.github.merge_method not in ("merge", "squash", "rebase"):
        errors.append(
            "'github.merge_method' must be merge, squash or rebase, "
            f"got {config.github.merge_method!r}"
        )

    tmux = _section(raw, "tmux", errors)
    config.tmux.session_prefix = str(tmux.get("session_prefix", config.tmux.session_prefix))
    config.tmux.max_panes = _as_int(
        tmux.get("max_panes", config.tmux.max_panes), "tmux.max_panes", errors
    )
    config.tmux.auto_resize_panes = bool(tmux.get("auto_resize_panes", True))

    claude = _section(raw, "claude", errors)
    config.claude.phases = _build_phases(claude.get("phases"), errors)

    log = _section(raw, "log", errors)
    config.log.level = str(log.get("level", config.log.level))
    config.log.file = str(log.get("file", "") or "")
    config.log.size = _as_int(log.get("size", config.log.size), "log.size", errors)
    config.log.backups = _as_int(log.get("backups", config.log.backups), "log.backups", errors)

    health = _section(raw, "health", errors)
    config.health.stale_after = _as_int(
        health.get("stale_after", config.health.stale_after), "health.stale_after", errors
    )
    try:
        config.health.min_success_rate = float(
            health.get("min_success_rate", config.health.min_success_rate)
        )
    except (TypeError, ValueError):
        errors.append("'health.min_success_rate' must be a number")

    telemetry = _section(raw, "telemetry", errors)
    config.otel_endpoint = str(telemetry.get("endpoint", "") or "")
    config.otel_service_name = str(telemetry.get("service_name", "osoba"))

    _apply_env_overrides(config, errors)
    _validate(config, errors)

    if errors:
        raise ConfigError("Invalid configuration:\n  - " + "\n  - ".join(errors))
    return config


def _as_int(value: Any, name: str, errors: list[str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        errors.append(f"'{name}' must be an integer, got {value!r}")
        return 0


def _apply_env_overrides(config: Config, errors: list[str]) -> None:
    token = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if token:
        config.github.token = token

    poll = os.environ.get("OSOBA_POLL_INTERVAL")
    if poll:
        config.github.poll_interval = _as_int(poll, "OSOBA_POLL_INTERVAL", errors)

    level = os.environ.get("LOG_LEVEL")
    if level:
        config.log.level = level


def _validate(config: Config, errors: list[str]) -> None:
    if config.github.poll_interval < MIN_POLL_INTERVAL:
        errors.append(
            f"'github.poll_interval' must be at least {MIN_POLL_INTERVAL}s, "
            f"got {config.github.poll_interval}"
        )
    if config.tmux.max_panes < 1:
        errors.append(f"'tmux.max_panes' must be positive, got {config.tmux.max_panes}")
    if not 0.0 <= config.health.min_success_rate <= 1.0:
        errors.append("'health.min_success_rate' must be between 0 and 1")
    if config.log.level.upper() not in ("DEBUG", "INFO", "WARNING", "WARN", "ERROR"):
        errors.append(f"'log.level' is not a valid level: {config.log.level!r}")


def load_config(path: str | None = None) -> Config:
    """Load configuration from YAML, falling back to defaults.

    Args:
        path: Optional explicit config file path

    Returns:
        Config with defaults, file values, and environment overrides applied.

    Raises:
        ConfigError: If the file is invalid or values fail validation
    """
    config_path = find_config_file(path)
    if config_path is None:
        logger.debug("No config file found, using defaults")
        config = build_config({})
    else:
        logger.debug(f"Loading config from {config_path}")
        config = build_config(parse_config_file(config_path))
        config.config_path = str(config_path)
    return config


DEFAULT_CONFIG_TEMPLATE = """\
github:
  # token: set GITHUB_TOKEN or run `gh auth login` instead of storing it here
  poll_interval: 5
  auto_merge_lgtm: true
  auto_plan_issue: false
  auto_revise_pr: true
  merge_method: squash

tmux:
  session_prefix: "osoba-"
  max_panes: 6
  auto_resize_panes: true

claude:
  phases:
    plan:
      args: ["--dangerously-skip-permissions"]
      prompt: "/osoba:plan {{issue-number}}"
    implement:
      args: ["--dangerously-skip-permissions"]
      prompt: "/osoba:implement {{issue-number}}"
    review:
      args: ["--dangerously-skip-permissions"]
      prompt: "/osoba:review {{issue-number}}"
    revise:
      args: ["--dangerously-skip-permissions"]
      prompt: "/osoba:revise {{issue-number}}"

log:
  level: info
"""


def write_default_config(path: str | None = None, overwrite: bool = False) -> Path:
    """Write the default configuration template.

    Args:
        path: Destination; defaults to the first entry of DEFAULT_CONFIG_PATHS
        overwrite: Replace an existing file

    Returns:
        Path that was written (or left untouched when it already existed).
    """
    target = Path(path or DEFAULT_CONFIG_PATHS[0]).expanduser()
    if target.exists() and not overwrite:
        logger.info(f"Config already exists at {target}")
        return target
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    logger.info(f"Created default config at {target}")
    return target
