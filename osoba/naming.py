"""Deterministic names for per-issue resources.

Every resource osoba allocates for an issue is named by a pure function of
the repository, issue number and phase. Re-running a dispatch finds the same
names, and cleanup can rediscover resources without any persisted index.
"""

import re
from pathlib import Path

WORKTREE_SUBDIR = Path(".git") / "osoba" / "worktrees"

_UNSAFE_CHARS = re.compile(r"[/\\:. ]")


def sanitize_identifier(value: str) -> str:
    """Make a repository identifier safe for use as a file name.

    Args:
        value: Repository path or owner/repo string

    Returns:
        value with '/', '\\', ':', '.' and spaces replaced by '_'
    """
    return _UNSAFE_CHARS.sub("_", value)


def repo_name_from(repo: str) -> str:
    """Extract the bare repository name from 'owner/repo' or a URL."""
    name = repo.rstrip("/")
    if name.endswith(".git"):
        name = name[:-4]
    return re.split(r"[/:]", name)[-1]


def session_name_for(repo: str, prefix: str = "osoba-") -> str:
    """tmux session name for a repository (e.g. 'osoba-myrepo')."""
    return f"{prefix}{repo_name_from(repo)}"


def window_name_for(issue_number: int, phase: str) -> str:
    """tmux window name for an (issue, phase) pair (e.g. '83-plan')."""
    return f"{issue_number}-{phase}"


def branch_name_for(issue_number: int) -> str:
    """Git branch used by the worktree of an issue (e.g. 'osoba/#83')."""
    return f"osoba/#{issue_number}"


def worktree_dir_name(issue_number: int) -> str:
    """Directory name of an issue's worktree (e.g. 'issue-83')."""
    return f"issue-{issue_number}"


def worktree_path_for(repo_root: str | Path, issue_number: int) -> Path:
    """Absolute worktree path for an issue inside a repository checkout."""
    return Path(repo_root).resolve() / WORKTREE_SUBDIR / worktree_dir_name(issue_number)


def issue_number_from_worktree(path: str | Path) -> int | None:
    """Inverse of worktree_dir_name; None for directories osoba did not create."""
    match = re.fullmatch(r"issue-(\d+)", Path(path).name)
    return int(match.group(1)) if match else None
