"""CLI entry point for osoba.

Subcommands:
    osoba init      - Write the default config and create the status labels
    osoba start     - Start watching the current repository (background by default)
    osoba stop      - Stop the daemon and release every window and worktree
    osoba status    - Show daemon, session and label status
    osoba clean     - Remove windows and worktrees for one issue or all issues
    osoba open      - Attach to the repository's tmux session
    osoba resize    - Even out pane sizes in every window
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime

from osoba.health import utcnow

__version__ = "0.4.0"

# ANSI escape codes for startup message colors
RESET = "\033[0m"
STARTUP_COLORS = {
    "check": "\033[38;2;96;165;250m",
    "config": "\033[38;2;52;211;153m",
    "launch": "\033[38;2;250;204;21m",
    "error": "\033[38;2;239;98;52m",
}


def startup_print(msg: str, color: str) -> None:
    """Print a startup message in the given step color."""
    print(f"{STARTUP_COLORS.get(color, '')}{msg}{RESET}")


def fail(msg: str) -> None:
    """Print an error to stderr and exit with status 1."""
    print(f"\n{msg}", file=sys.stderr)
    sys.exit(1)


def format_uptime(start: datetime, now: datetime | None = None) -> str:
    """Format the time since start as e.g. '2h05m' or '42s'."""
    seconds = max(0, int(((now or utcnow()) - start).total_seconds()))
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def _setup_cli_logging(config_level: str | None = None) -> None:
    from osoba.logger import setup_logging

    setup_logging(level=config_level or "warning")


def _load_context(args: argparse.Namespace):
    """Resolve the repository and load the configuration.

    Returns:
        (config, repo_info)
    """
    from osoba.config import load_config
    from osoba.setup import get_github_repo

    repo = get_github_repo()
    config = load_config(args.config)
    return config, repo


def cmd_init(args: argparse.Namespace) -> None:
    """Handle 'init': write the config template and bootstrap labels."""
    from osoba.config import write_default_config
    from osoba.github_client import GhClient, GitHubError
    from osoba.setup import SetupError, check_required_tools, get_github_repo

    startup_print("Checking required tools...", "check")
    try:
        claude_info = check_required_tools()
        startup_print("  ✓ tmux, git and gh found", "check")
        startup_print(
            f"  ✓ claude CLI found at {claude_info.path} v{claude_info.version}", "check"
        )
    except SetupError as e:
        startup_print(f"  ✗ {e}", "error")
    print()

    startup_print("Writing configuration...", "config")
    path = write_default_config(args.config, overwrite=args.force)
    startup_print(f"  ✓ {path}", "config")
    print()

    try:
        repo = get_github_repo()
    except SetupError as e:
        print(f"Skipping label setup: {e}")
        return

    startup_print(f"Creating status labels in {repo.full_name}...", "launch")
    try:
        created = GhClient().ensure_labels_exist(repo.full_name)
    except GitHubError as e:
        fail(f"Failed to create labels: {e}")
        return
    if created:
        for name in created:
            startup_print(f"  ✓ created {name}", "launch")
    else:
        startup_print("  ✓ all labels already exist", "launch")
    print()
    print("Next steps:")
    print(f"  1. Review {path}")
    print("  2. Run `osoba start` inside the repository")


def cmd_start(args: argparse.Namespace) -> None:
    """Handle 'start': pre-flight checks, singleton check, then detach or run inline."""
    from osoba.config import ConfigError, load_config
    from osoba.daemon import run_daemon
    from osoba.setup import SetupError, run_preflight_checks
    from osoba.supervisor import (
        DaemonSupervisor,
        SupervisorError,
        default_log_file,
        is_daemon_child,
    )

    child = is_daemon_child()
    try:
        if not child:
            startup_print("Checking required tools...", "check")
        repo = run_preflight_checks()
        config = load_config(args.config)
        supervisor = DaemonSupervisor(repo.full_name, repo.root)

        if child or args.foreground:
            if child:
                supervisor.start()
            else:
                supervisor.claim_record()
            try:
                run_daemon(config, repo, daemon_mode=child)
            finally:
                supervisor.remove_record()
            return

        startup_print(f"  ✓ repository {repo.full_name} at {repo.root}", "check")
        pid = supervisor.start()
        log_file = config.log.file or default_log_file(repo.full_name)
        startup_print(f"Started osoba in the background (pid {pid})", "launch")
        startup_print(f"  Logs: {log_file}", "launch")
        startup_print("  Attach with `osoba open`, stop with `osoba stop`", "launch")

    except SetupError as e:
        fail(str(e))
    except ConfigError as e:
        fail(f"Configuration error: {e}")
    except SupervisorError as e:
        fail(str(e))
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)


def cmd_stop(args: argparse.Namespace) -> None:
    """Handle 'stop': stop the daemon, clean up every resource, kill the session.

    Each step runs even if an earlier one failed.
    """
    from osoba.cleanup import CleanupError, CleanupManager
    from osoba.config import ConfigError
    from osoba.naming import session_name_for
    from osoba.setup import SetupError
    from osoba.supervisor import DaemonSupervisor, SupervisorError
    from osoba.tmux import TmuxError, TmuxManager
    from osoba.worktree import WorktreeManager

    try:
        config, repo = _load_context(args)
    except (SetupError, ConfigError) as e:
        fail(str(e))
        return
    _setup_cli_logging(config.log.level if args.verbose else None)

    errors = []
    supervisor = DaemonSupervisor(repo.full_name, repo.root)
    try:
        if supervisor.stop():
            print("Stopped osoba.")
        else:
            print("osoba is not running.")
    except SupervisorError as e:
        errors.append(str(e))
        print(f"Failed to stop the daemon, continuing with cleanup: {e}", file=sys.stderr)

    session = session_name_for(repo.full_name, config.tmux.session_prefix)
    tmux = TmuxManager()
    try:
        result = CleanupManager(tmux, WorktreeManager(repo.root), session).cleanup_all(
            force=True
        )
        print(f"Removed {len(result.windows)} window(s) and {len(result.worktrees)} worktree(s).")
    except CleanupError as e:
        errors.append(str(e))
        print(f"Cleanup failed, continuing: {e}", file=sys.stderr)

    try:
        if tmux.kill_session(session):
            print(f"Killed tmux session '{session}'.")
    except TmuxError as e:
        errors.append(str(e))
        print(f"Failed to kill tmux session: {e}", file=sys.stderr)

    if errors:
        fail(f"Stop finished with {len(errors)} error(s).")


def cmd_status(args: argparse.Namespace) -> None:
    """Handle 'status': daemon record, tmux session, labels and rate limit."""
    from osoba.config import ConfigError
    from osoba.github_client import GhClient, GitHubError
    from osoba.labels import STATUS_LABELS
    from osoba.naming import session_name_for
    from osoba.setup import SetupError
    from osoba.supervisor import DaemonSupervisor, default_log_file
    from osoba.tmux import TmuxManager

    try:
        config, repo = _load_context(args)
    except (SetupError, ConfigError) as e:
        fail(str(e))
        return
    _setup_cli_logging()

    print(f"Repository: {repo.full_name} ({repo.root})")

    status = DaemonSupervisor(repo.full_name, repo.root).status()
    if status.running and status.record is not None:
        record = status.record
        print(
            f"Daemon:     running (pid {record.pid}, "
            f"up {format_uptime(record.start_time)}, since {record.start_time.isoformat()})"
        )
    else:
        print("Daemon:     stopped")
    print(f"Log file:   {config.log.file or default_log_file(repo.full_name)}")

    tmux = TmuxManager()
    session = session_name_for(repo.full_name, config.tmux.session_prefix)
    if tmux.session_exists(session):
        windows = tmux.list_windows(session)
        print(f"Session:    {session} ({len(windows)} window(s))")
        for name in windows:
            print(f"  - {name}")
    else:
        print(f"Session:    {session} (not running)")
        if status.running:
            print("  hint: the daemon is alive but its session is gone; `osoba open` recreates it")

    client = GhClient(token=config.github.token)
    try:
        print("Issues:")
        for label in STATUS_LABELS:
            issues = client.list_issues_by_labels(repo.full_name, [label])
            if issues:
                numbers = ", ".join(f"#{issue.number}" for issue in issues)
                print(f"  {label}: {numbers}")
        rate = client.get_rate_limit()
        reset = rate.reset_at.astimezone().strftime("%H:%M:%S")
        print(f"Rate limit: {rate.remaining}/{rate.limit} remaining (resets {reset})")
        if rate.limit and rate.remaining < rate.limit * 0.1:
            print("  hint: less than 10% of the rate limit left; polling may start failing")
    except GitHubError as e:
        print(f"GitHub:     unavailable ({e})", file=sys.stderr)


def cmd_clean(args: argparse.Namespace) -> None:
    """Handle 'clean': remove windows and worktrees for one issue or all of them."""
    from osoba.cleanup import CleanupError, CleanupManager
    from osoba.config import ConfigError
    from osoba.naming import session_name_for
    from osoba.setup import SetupError
    from osoba.tmux import TmuxManager
    from osoba.worktree import WorktreeManager

    if args.issue is None and not args.all:
        fail("Specify an issue number or --all")
        return
    if args.issue is not None and args.all:
        fail("Specify either an issue number or --all, not both")
        return

    try:
        config, repo = _load_context(args)
    except (SetupError, ConfigError) as e:
        fail(str(e))
        return
    _setup_cli_logging(config.log.level if args.verbose else None)

    session = session_name_for(repo.full_name, config.tmux.session_prefix)
    manager = CleanupManager(TmuxManager(), WorktreeManager(repo.root), session)
    try:
        if args.all:
            result = manager.cleanup_all(force=args.force)
        else:
            result = manager.cleanup_issue(args.issue, force=args.force)
    except CleanupError as e:
        fail(str(e))
        return

    print(f"Removed {len(result.windows)} window(s) and {len(result.worktrees)} worktree(s).")
    for number in result.skipped:
        print(f"  skipped issue #{number}: uncommitted changes (use --force)")


def cmd_open(args: argparse.Namespace) -> None:
    """Handle 'open': attach to the session, recreating it if the daemon is alive."""
    from osoba.config import ConfigError
    from osoba.naming import session_name_for
    from osoba.setup import SetupError
    from osoba.supervisor import DaemonSupervisor, NotRunningError
    from osoba.tmux import TmuxError, TmuxManager

    try:
        config, repo = _load_context(args)
    except (SetupError, ConfigError) as e:
        fail(str(e))
        return

    tmux = TmuxManager()
    session = session_name_for(repo.full_name, config.tmux.session_prefix)
    if not tmux.session_exists(session):
        try:
            DaemonSupervisor(repo.full_name, repo.root).require_running()
            tmux.ensure_session(session, start_directory=str(repo.root))
            print(f"Recovered tmux session '{session}'")
        except NotRunningError as e:
            fail(f"Session '{session}' not found. {e}")
            return
        except TmuxError as e:
            fail(f"Failed to recover session '{session}': {e}")
            return

    command = tmux.attach_command(session)
    os.execvp(command[0], command)


def cmd_resize(args: argparse.Namespace) -> None:
    """Handle 'resize': apply the even layout to every window in the session."""
    from osoba.config import ConfigError
    from osoba.naming import session_name_for
    from osoba.setup import SetupError
    from osoba.tmux import TmuxError, TmuxManager

    try:
        config, repo = _load_context(args)
    except (SetupError, ConfigError) as e:
        fail(str(e))
        return

    tmux = TmuxManager()
    session = session_name_for(repo.full_name, config.tmux.session_prefix)
    if not tmux.session_exists(session):
        fail(f"Session '{session}' not found. Run 'osoba start' first.")
        return

    failures = []
    for name in tmux.list_windows(session):
        try:
            tmux.resize_panes_evenly(session, name)
            print(f"Resized '{name}'")
        except TmuxError as e:
            failures.append(str(e))
    if failures:
        fail("\n".join(failures))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="osoba",
        description="GitHub-label-driven development loop with Claude in tmux",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"osoba {__version__}",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to the config file (default: ~/.config/osoba/osoba.yml)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show log output from cleanup and stop",
    )

    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser("init", help="Write the default config and create labels")
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing config file"
    )

    start_parser = subparsers.add_parser("start", help="Start watching the current repository")
    start_parser.add_argument(
        "--foreground",
        "-f",
        action="store_true",
        help="Run in the foreground (log to stdout and file)",
    )

    subparsers.add_parser("stop", help="Stop the daemon and clean up every resource")
    subparsers.add_parser("status", help="Show daemon, session and label status")

    clean_parser = subparsers.add_parser("clean", help="Remove windows and worktrees")
    clean_parser.add_argument(
        "issue", nargs="?", type=int, default=None, help="Issue number to clean up"
    )
    clean_parser.add_argument("--all", action="store_true", help="Clean up every issue")
    clean_parser.add_argument(
        "--force", action="store_true", help="Remove worktrees with uncommitted changes"
    )

    subparsers.add_parser("open", help="Attach to the repository's tmux session")
    subparsers.add_parser("resize", help="Even out pane sizes in every window")

    return parser


COMMANDS = {
    "init": cmd_init,
    "start": cmd_start,
    "stop": cmd_stop,
    "status": cmd_status,
    "clean": cmd_clean,
    "open": cmd_open,
    "resize": cmd_resize,
}


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the osoba CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    COMMANDS[args.command](args)


if __name__ == "__main__":
    main()
