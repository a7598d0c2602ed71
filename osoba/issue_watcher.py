"""Issue watcher.

Polls issues carrying a trigger label, claims each one through the label
transition engine and dispatches the implied phase. Items within a tick are
processed sequentially in the order GitHub returns them; one item's failure
never stops the rest of the batch.
"""

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from osoba.config import Config
from osoba.dispatcher import ActionDispatcher
from osoba.health import HealthReport, HealthStats, check_health, utcnow
from osoba.interfaces import GitHubClient, Issue
from osoba.labels import ISSUE_TRIGGER_LABELS, STATUS_LABELS, Labels, has_status_label
from osoba.logger import clear_issue_context, get_logger, set_issue_context
from osoba.retry import call_with_retry
from osoba.telemetry import record_tick
from osoba.transitions import LabelTransitionEngine

logger = get_logger(__name__)


class IssueWatcher:
    """Poll loop for issues carrying osoba trigger labels."""

    NAME = "issue-watcher"

    def __init__(
        self,
        client: GitHubClient,
        repo: str,
        config: Config,
        engine: LabelTransitionEngine,
        dispatcher: ActionDispatcher,
        clock: Callable[[], datetime] = utcnow,
        retry_sleep: Callable[[float], None] | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            client: GitHub client
            repo: Repository in 'owner/repo' format
            config: Application configuration
            engine: Label transition engine for this repository
            dispatcher: Dispatcher used for claimed issues
            clock: Source of the current time
            retry_sleep: Sleep used between retries (tests pass a no-op)
        """
        self.client = client
        self.repo = repo
        self.config = config
        self.engine = engine
        self.dispatcher = dispatcher
        self._clock = clock
        self._retry_sleep = retry_sleep
        self.stats = HealthStats(start_time=clock())

    def poll_once(self) -> bool:
        """Run a single tick.

        Returns:
            True if the tick finished without errors
        """
        try:
            issues = call_with_retry(
                lambda: self.client.list_issues_by_labels(self.repo, list(ISSUE_TRIGGER_LABELS)),
                sleep=self._retry_sleep,
            )
        except Exception as e:
            logger.error(f"Failed to list issues for {self.repo}: {e}")
            self._finish_tick(False)
            return False

        if not issues:
            logger.debug(f"No issues with trigger labels in {self.repo}")

        success = True
        for issue in issues:
            if not self._process_issue(issue):
                success = False

        if self.config.github.auto_plan_issue:
            try:
                self.auto_plan()
            except Exception as e:
                logger.warning(f"Auto-plan failed: {e}")
                success = False

        self._finish_tick(success)
        return success

    def _finish_tick(self, success: bool) -> None:
        self.stats.record(success, self._clock())
        record_tick(self.NAME, "success" if success else "failure")

    def _process_issue(self, issue: Issue) -> bool:
        """Claim and dispatch one issue. Returns False if anything failed."""
        set_issue_context(self.repo, issue.number)
        try:
            result = self.engine.claim_and_advance(issue.number, issue.labels)
            if not result.claimed or result.phase is None:
                return True
            self.dispatcher.dispatch(issue.number, result.phase, issue.title)
            return True
        except Exception as e:
            logger.error(f"Failed to process issue #{issue.number}: {e}", exc_info=True)
            return False
        finally:
            clear_issue_context()

    def _has_active_items(self) -> bool:
        """Whether any open issue or pull request carries a status label."""
        labels = list(STATUS_LABELS)
        if self.client.list_issues_by_labels(self.repo, labels):
            return True
        prs = self.client.list_pull_requests_by_labels(self.repo, labels)
        return any(pr.state == "OPEN" for pr in prs)

    def auto_plan(self) -> int | None:
        """Queue the lowest-numbered open issue for planning when nothing is in flight.

        Only acts when no open issue or pull request carries any status label.
        The check is repeated right before labeling, so an issue labeled by a
        human in the meantime is not joined by a second one.

        Returns:
            The issue number that received status:needs-plan, or None
        """
        if call_with_retry(self._has_active_items, sleep=self._retry_sleep):
            logger.debug("Auto-plan skipped: status labels are in use")
            return None

        open_issues = call_with_retry(
            lambda: self.client.list_open_issues(self.repo), sleep=self._retry_sleep
        )
        if any(has_status_label(issue.labels) for issue in open_issues):
            logger.debug("Auto-plan skipped: an issue already carries a status label")
            return None
        if not open_issues:
            return None

        target = min(open_issues, key=lambda issue: issue.number)
        if self._has_active_items() or has_status_label(
            self.client.get_issue_labels(self.repo, target.number)
        ):
            logger.info(f"Auto-plan: labels changed while choosing #{target.number}, skipping")
            return None

        self.client.add_label(self.repo, target.number, Labels.NEEDS_PLAN)
        logger.info(f"Auto-plan: queued issue #{target.number} for planning")
        return target.number

    def run(self, stop_event: threading.Event) -> None:
        """Poll until stop_event is set.

        The event is checked between ticks only; an in-flight tick finishes.
        """
        interval = self.config.github.poll_interval
        logger.info(f"Starting issue watcher for {self.repo} (every {interval}s)")
        while not stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Unexpected error in issue watcher tick: {e}", exc_info=True)
            if stop_event.wait(timeout=interval):
                break
        logger.info("Issue watcher stopped")

    def check_health(self, now: datetime | None = None) -> HealthReport:
        """Check this watcher against the configured health thresholds."""
        return check_health(
            self.stats,
            timedelta(seconds=self.config.health.stale_after),
            self.config.health.min_success_rate,
            now=now or self._clock(),
        )
