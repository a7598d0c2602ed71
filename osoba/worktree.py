"""
Worktree management module for osoba.

Provides WorktreeManager for creating and removing the git worktree that
backs each issue. Worktrees live under .git/osoba/worktrees/issue-N inside
the repository checkout and use the branch osoba/#N.
"""

import subprocess
from pathlib import Path

from osoba.logger import get_logger
from osoba.naming import (
    WORKTREE_SUBDIR,
    branch_name_for,
    issue_number_from_worktree,
    worktree_path_for,
)

logger = get_logger(__name__)

DEFAULT_BASE_BRANCH = "main"


class WorktreeError(Exception):
    """Base exception for worktree management errors."""

    pass


class WorktreeManager:
    """
    Manages git worktrees for individual issues.

    One worktree per issue, shared by every phase of that issue, so plan,
    implementation and revision all build on the same branch.
    """

    def __init__(self, repo_root: str | Path):
        """
        Initialize the worktree manager.

        Args:
            repo_root: Root of the main repository checkout
        """
        self.repo_root = Path(repo_root).resolve()
        self.worktrees_dir = self.repo_root / WORKTREE_SUBDIR
        logger.debug(f"WorktreeManager initialized for {self.repo_root}")

    def _run_git_command(
        self, args: list[str], cwd: Path | None = None, check: bool = True
    ) -> subprocess.CompletedProcess[str]:
        """
        Run a git command with proper error handling.

        Args:
            args: Git command arguments (without 'git' prefix)
            cwd: Working directory for the command (defaults to the repo root)
            check: Whether to raise exception on non-zero exit code

        Returns:
            CompletedProcess instance

        Raises:
            WorktreeError: If command fails and check=True, or git is missing
        """
        cmd = ["git"] + args
        workdir = cwd or self.repo_root
        logger.debug(f"Running git command: {' '.join(cmd)} in {workdir}")

        try:
            result = subprocess.run(cmd, cwd=workdir, capture_output=True, text=True, check=check)
        except subprocess.CalledProcessError as e:
            error_msg = f"Git command failed: {' '.join(cmd)} (exit {e.returncode})"
            if e.stderr:
                error_msg += f": {e.stderr.strip()}"
            logger.error(error_msg)
            raise WorktreeError(error_msg) from e
        except FileNotFoundError as e:
            raise WorktreeError("git is not installed or not in PATH") from e

        if result.stderr:
            logger.debug(f"Git stderr: {result.stderr.strip()}")
        return result

    def worktree_path(self, issue_number: int) -> Path:
        """Path of the worktree for an issue (whether or not it exists)."""
        return worktree_path_for(self.repo_root, issue_number)

    def branch_name(self, issue_number: int) -> str:
        """Branch name of the worktree for an issue."""
        return branch_name_for(issue_number)

    def worktree_exists(self, issue_number: int) -> bool:
        """Whether git knows about a worktree at the issue's path."""
        path = self.worktree_path(issue_number)
        return path.exists() and path in self._registered_worktrees()

    def _registered_worktrees(self) -> set[Path]:
        result = self._run_git_command(["worktree", "list", "--porcelain"])
        return {
            Path(line[len("worktree ") :]).resolve()
            for line in result.stdout.splitlines()
            if line.startswith("worktree ")
        }

    def _branch_exists(self, branch: str) -> bool:
        result = self._run_git_command(
            ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], check=False
        )
        return result.returncode == 0

    def _base_ref(self) -> str:
        """Return origin's default branch ref, fetching it first when possible."""
        fetch = self._run_git_command(["fetch", "origin"], check=False)
        if fetch.returncode != 0:
            logger.warning(f"git fetch origin failed, using local refs: {fetch.stderr.strip()}")

        head = self._run_git_command(
            ["symbolic-ref", "--short", "refs/remotes/origin/HEAD"], check=False
        )
        if head.returncode == 0 and head.stdout.strip():
            return head.stdout.strip()

        remote_main = self._run_git_command(
            ["show-ref", "--verify", "--quiet", f"refs/remotes/origin/{DEFAULT_BASE_BRANCH}"],
            check=False,
        )
        if remote_main.returncode == 0:
            return f"origin/{DEFAULT_BASE_BRANCH}"
        return "HEAD"

    def ensure_worktree(self, issue_number: int) -> Path:
        """
        Resolve the worktree for an issue, creating it if needed.

        Reuses the branch if it already exists (e.g. after a manual removal
        of the worktree directory), otherwise branches from origin's default.

        Args:
            issue_number: Issue number

        Returns:
            Path to the worktree

        Raises:
            WorktreeError: If git cannot create the worktree
        """
        path = self.worktree_path(issue_number)
        if self.worktree_exists(issue_number):
            logger.debug(f"Worktree for issue #{issue_number} already exists at {path}")
            return path

        branch = self.branch_name(issue_number)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Drop stale registrations left behind by deleted directories
        self._run_git_command(["worktree", "prune"], check=False)

        if self._branch_exists(branch):
            logger.info(f"Creating worktree for issue #{issue_number} on existing branch {branch}")
            self._run_git_command(["worktree", "add", str(path), branch])
        else:
            base = self._base_ref()
            logger.info(f"Creating worktree for issue #{issue_number} on {branch} from {base}")
            self._run_git_command(["worktree", "add", "-b", branch, str(path), base])

        return path

    def has_uncommitted_changes(self, issue_number: int) -> bool:
        """
        Check a worktree for uncommitted or untracked changes.

        Returns:
            False when the worktree does not exist
        """
        path = self.worktree_path(issue_number)
        if not path.exists():
            return False
        result = self._run_git_command(["status", "--porcelain"], cwd=path)
        return bool(result.stdout.strip())

    def remove_worktree(self, issue_number: int, force: bool = False) -> bool:
        """
        Remove the worktree for an issue. The branch is kept.

        Args:
            issue_number: Issue number
            force: Remove even with uncommitted changes

        Returns:
            True if a worktree was removed, False if none existed

        Raises:
            WorktreeError: If git refuses to remove the worktree
        """
        path = self.worktree_path(issue_number)
        if not self.worktree_exists(issue_number):
            logger.debug(f"No worktree for issue #{issue_number}")
            self._run_git_command(["worktree", "prune"], check=False)
            return False

        args = ["worktree", "remove", str(path)]
        if force:
            args.append("--force")
        self._run_git_command(args)
        logger.info(f"Removed worktree for issue #{issue_number} at {path}")
        return True

    def list_issue_worktrees(self) -> list[int]:
        """Issue numbers of every osoba worktree git knows about, ascending."""
        numbers = []
        for path in self._registered_worktrees():
            if path.parent != self.worktrees_dir.resolve():
                continue
            number = issue_number_from_worktree(path)
            if number is not None:
                numbers.append(number)
        return sorted(numbers)
