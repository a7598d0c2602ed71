"""Action dispatcher.

Turns a claimed (issue, phase) into a running Claude session:
worktree -> tmux session -> tmux window -> claude command typed into the pane.
Every name involved is derived from (issue, phase), so dispatching twice
reuses the same worktree and window and launches Claude only once.
"""

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from osoba.claude_runner import ClaudeExecutor, ClaudeRunnerError, TemplateVariables
from osoba.config import Config
from osoba.logger import get_logger
from osoba.naming import (
    branch_name_for,
    repo_name_from,
    session_name_for,
    window_name_for,
    worktree_path_for,
)
from osoba.telemetry import get_tracer, record_dispatch
from osoba.tmux import TmuxError, TmuxManager
from osoba.worktree import WorktreeError, WorktreeManager

logger = get_logger(__name__)

RESIZE_DEBOUNCE_SECONDS = 0.5


class DispatchError(Exception):
    """Raised when the work environment for a dispatch cannot be prepared."""

    pass


@dataclass(frozen=True)
class WorkEnvironment:
    """Resources allocated for one (issue, phase).

    Attributes:
        issue_number: Issue the work belongs to
        phase: Phase name (plan, implement, review, revise)
        worktree_path: Checkout the agent works in
        branch_name: Branch checked out in the worktree
        window_name: tmux window hosting the agent
        session_name: tmux session holding the window
    """

    issue_number: int
    phase: str
    worktree_path: str
    branch_name: str
    window_name: str
    session_name: str


def plan_work_environment(
    repo_root: str | Path, session_name: str, issue_number: int, phase: str
) -> WorkEnvironment:
    """Compute the work environment for an (issue, phase) without touching anything."""
    return WorkEnvironment(
        issue_number=issue_number,
        phase=phase,
        worktree_path=str(worktree_path_for(repo_root, issue_number)),
        branch_name=branch_name_for(issue_number),
        window_name=window_name_for(issue_number, phase),
        session_name=session_name,
    )


@dataclass
class Providers:
    """The resource providers a dispatch talks to."""

    tmux: TmuxManager
    worktrees: WorktreeManager
    executor: ClaudeExecutor


ProviderFactory = Callable[[], Providers]


def default_provider_factory(repo_root: str | Path) -> ProviderFactory:
    """Factory building the real libtmux/git/claude providers."""

    def factory() -> Providers:
        tmux = TmuxManager()
        return Providers(
            tmux=tmux,
            worktrees=WorktreeManager(repo_root),
            executor=ClaudeExecutor(tmux),
        )

    return factory


class ActionDispatcher:
    """Prepares work environments and launches Claude in them."""

    def __init__(
        self,
        config: Config,
        repo: str,
        repo_root: str | Path,
        provider_factory: ProviderFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config: Application configuration
            repo: Repository in 'owner/repo' format
            repo_root: Root of the local repository checkout
            provider_factory: Builds the providers; defaults to the real ones
            clock: Monotonic clock used for resize debouncing
        """
        self.config = config
        self.repo = repo
        self.repo_root = Path(repo_root).resolve()
        self.session_name = session_name_for(repo, config.tmux.session_prefix)
        self._provider_factory = provider_factory or default_provider_factory(self.repo_root)
        self._providers: Providers | None = None
        self._clock = clock
        self._last_resize: dict[str, float] = {}
        # Both watchers dispatch through one instance; only dispatches for the
        # same issue wait on each other since they share its worktree.
        self._state_lock = threading.Condition()
        self._active_issues: set[int] = set()

    @property
    def providers(self) -> Providers:
        with self._state_lock:
            if self._providers is None:
                self._providers = self._provider_factory()
            return self._providers

    @contextmanager
    def _issue_slot(self, issue_number: int) -> Iterator[None]:
        """Hold the issue for one dispatch, waiting while another holds it."""
        with self._state_lock:
            while issue_number in self._active_issues:
                self._state_lock.wait()
            self._active_issues.add(issue_number)
        try:
            yield
        finally:
            with self._state_lock:
                self._active_issues.discard(issue_number)
                self._state_lock.notify_all()

    def dispatch(self, issue_number: int, phase: str, title: str = "") -> WorkEnvironment:
        """Prepare the work environment for (issue, phase) and launch Claude in it.

        A pre-existing window means the phase is already running (or was
        resumed by hand), so Claude is not launched a second time.

        Args:
            issue_number: Issue number
            phase: Phase name
            title: Issue title for prompt templates

        Returns:
            The WorkEnvironment in use

        Raises:
            DispatchError: If the worktree, session, window or launch fails.
                The issue keeps its advanced label; nothing is rolled back.
        """
        env = plan_work_environment(self.repo_root, self.session_name, issue_number, phase)

        with (
            self._issue_slot(issue_number),
            get_tracer().start_as_current_span("dispatch") as span,
        ):
            span.set_attribute("issue.number", issue_number)
            span.set_attribute("phase", phase)
            providers = self.providers

            logger.info(f"Dispatching {phase} for issue #{issue_number}")

            try:
                worktree = providers.worktrees.ensure_worktree(issue_number)
            except WorktreeError as e:
                record_dispatch(phase, "error")
                raise DispatchError(f"Worktree for issue #{issue_number} failed: {e}") from e

            try:
                providers.tmux.ensure_session(
                    self.session_name, start_directory=str(self.repo_root)
                )
                _, created = providers.tmux.create_window(
                    self.session_name, env.window_name, str(worktree)
                )
                if created:
                    providers.executor.execute_in_window(
                        self.session_name,
                        env.window_name,
                        phase,
                        self.config.phase(phase),
                        TemplateVariables(
                            issue_number=issue_number,
                            issue_title=title,
                            repo_name=repo_name_from(self.repo),
                        ),
                        str(worktree),
                    )
                else:
                    logger.info(
                        f"Window '{env.window_name}' already exists, "
                        f"skipping launch for issue #{issue_number}"
                    )
            except (TmuxError, ClaudeRunnerError) as e:
                record_dispatch(phase, "error")
                raise DispatchError(
                    f"Launching {phase} for issue #{issue_number} failed: {e}"
                ) from e

            record_dispatch(phase, "launched" if created else "resumed")
            self._maybe_resize(providers, env.window_name)

        return env

    def _maybe_resize(self, providers: Providers, window_name: str) -> None:
        """Even out pane sizes once the session holds more panes than tmux.max_panes."""
        if not self.config.tmux.auto_resize_panes:
            return

        try:
            pane_count = len(providers.tmux.list_panes(self.session_name))
        except TmuxError as e:
            logger.warning(f"Failed to count panes in '{self.session_name}': {e}")
            return
        if pane_count <= self.config.tmux.max_panes:
            return

        now = self._clock()
        with self._state_lock:
            # Entries outside the debounce window no longer matter
            self._last_resize = {
                name: at
                for name, at in self._last_resize.items()
                if now - at < RESIZE_DEBOUNCE_SECONDS
            }
            if window_name in self._last_resize:
                logger.debug(f"Skipping resize of '{window_name}' (debounced)")
                return
            self._last_resize[window_name] = now

        try:
            providers.tmux.resize_panes_evenly(self.session_name, window_name)
            logger.info(f"Resized panes evenly in '{window_name}' ({pane_count} panes in session)")
        except TmuxError as e:
            logger.warning(f"Failed to resize panes in '{window_name}': {e}")
