"""Pre-flight checks run before the daemon or the CLI touch anything."""

from osoba.setup.checks import (
    ClaudeInfo,
    RepoInfo,
    SetupError,
    check_claude_installation,
    check_gh_auth,
    check_required_tools,
    find_repo_root,
    get_github_repo,
    parse_github_remote,
    run_preflight_checks,
)

__all__ = [
    "ClaudeInfo",
    "RepoInfo",
    "SetupError",
    "check_claude_installation",
    "check_gh_auth",
    "check_required_tools",
    "find_repo_root",
    "get_github_repo",
    "parse_github_remote",
    "run_preflight_checks",
]
