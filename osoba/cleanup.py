"""Cleanup of per-issue resources.

Releases the tmux windows and git worktree allocated for an issue, either
after its PR merged or on request from the CLI. Branches are never deleted.
"""

from dataclasses import dataclass, field

from osoba.logger import get_logger
from osoba.tmux import OSOBA_WINDOW_PATTERN, TmuxError, TmuxManager
from osoba.worktree import WorktreeError, WorktreeManager

logger = get_logger(__name__)


class CleanupError(Exception):
    """Raised when some resources of an issue could not be released."""

    pass


class UncommittedChangesError(CleanupError):
    """Raised when a worktree has uncommitted changes and force was not given."""

    pass


@dataclass
class CleanupResult:
    """What a cleanup released.

    Attributes:
        windows: Killed window names
        worktrees: Issue numbers whose worktree was removed
        skipped: Issue numbers left alone because of uncommitted changes
    """

    windows: list[str] = field(default_factory=list)
    worktrees: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)


class CleanupManager:
    """Kills windows and removes worktrees for finished issues."""

    def __init__(self, tmux: TmuxManager, worktrees: WorktreeManager, session_name: str):
        self.tmux = tmux
        self.worktrees = worktrees
        self.session_name = session_name

    def cleanup_issue(self, issue_number: int, force: bool = False) -> CleanupResult:
        """Release every resource allocated for one issue.

        Windows are killed first, then the worktree is removed. Both steps
        run even if the other fails.

        Args:
            issue_number: Issue to clean up
            force: Remove the worktree even with uncommitted changes

        Returns:
            CleanupResult describing what was released

        Raises:
            UncommittedChangesError: If the worktree has uncommitted changes and
                force is False (windows are still killed; other failures are
                included in the message)
            CleanupError: If a window or the worktree could not be removed
        """
        result = CleanupResult()
        errors: list[str] = []

        try:
            windows = self.tmux.list_windows_for_issue(self.session_name, issue_number)
            result.windows = self.tmux.kill_windows(self.session_name, windows)
        except TmuxError as e:
            errors.append(str(e))

        dirty = False
        try:
            if not force and self.worktrees.has_uncommitted_changes(issue_number):
                dirty = True
                result.skipped.append(issue_number)
            elif self.worktrees.remove_worktree(issue_number, force=force):
                result.worktrees.append(issue_number)
        except WorktreeError as e:
            errors.append(str(e))

        if dirty:
            message = (
                f"Worktree for issue #{issue_number} has uncommitted changes "
                "(use --force to remove anyway)"
            )
            if errors:
                message += "; also failed: " + "; ".join(errors)
            raise UncommittedChangesError(message)
        if errors:
            raise CleanupError(f"Cleanup of issue #{issue_number} incomplete: " + "; ".join(errors))

        logger.info(
            f"Cleaned up issue #{issue_number}: {len(result.windows)} window(s), "
            f"{len(result.worktrees)} worktree(s)"
        )
        return result

    def cleanup_all(self, force: bool = False) -> CleanupResult:
        """Release every osoba window and worktree in this repository.

        Worktrees with uncommitted changes are skipped unless force is set.

        Raises:
            CleanupError: Listing everything that could not be removed
        """
        result = CleanupResult()
        errors: list[str] = []

        try:
            windows = self.tmux.list_windows_by_pattern(self.session_name, OSOBA_WINDOW_PATTERN)
            result.windows = self.tmux.kill_windows(self.session_name, windows)
        except TmuxError as e:
            errors.append(str(e))

        try:
            issue_numbers = self.worktrees.list_issue_worktrees()
        except WorktreeError as e:
            errors.append(str(e))
            issue_numbers = []

        for number in issue_numbers:
            try:
                if not force and self.worktrees.has_uncommitted_changes(number):
                    logger.warning(f"Skipping worktree for issue #{number}: uncommitted changes")
                    result.skipped.append(number)
                    continue
                if self.worktrees.remove_worktree(number, force=force):
                    result.worktrees.append(number)
            except WorktreeError as e:
                errors.append(f"issue #{number}: {e}")

        if errors:
            raise CleanupError("Cleanup incomplete: " + "; ".join(errors))

        logger.info(
            f"Cleaned up {len(result.windows)} window(s) and {len(result.worktrees)} worktree(s)"
        )
        return result
