"""Pull request watcher.

Polls pull requests labeled status:lgtm or status:requires-changes.
Approved PRs are merged once a fresh status check shows them mergeable with
green CI; PRs needing changes are claimed and handed to the revise phase of
the issue they close. Closed and draft PRs are never acted on.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from osoba.cleanup import CleanupManager
from osoba.config import Config
from osoba.dispatcher import ActionDispatcher
from osoba.health import HealthReport, HealthStats, check_health, utcnow
from osoba.interfaces import GitHubClient, PullRequest, PullRequestStatus
from osoba.labels import PR_WATCHED_LABELS, Labels, Phases
from osoba.logger import clear_issue_context, get_logger, set_issue_context
from osoba.retry import call_with_retry
from osoba.telemetry import record_merge, record_tick
from osoba.transitions import LabelTransitionEngine

logger = get_logger(__name__)


@dataclass
class AutoMergeMetrics:
    """Auto-merge outcomes for one PR watcher.

    Attributes:
        total_attempts: Merge decisions taken
        successful_merges: PRs merged
        failed_merges: PRs not merged (blocked or errored)
        failure_reasons: Count of failures per reason
        start_time: When tracking started
        last_attempt_time: When the latest attempt happened
    """

    total_attempts: int = 0
    successful_merges: int = 0
    failed_merges: int = 0
    failure_reasons: dict[str, int] = field(default_factory=dict)
    start_time: datetime = field(default_factory=utcnow)
    last_attempt_time: datetime | None = None

    def record_success(self, when: datetime | None = None) -> None:
        self.total_attempts += 1
        self.successful_merges += 1
        self.last_attempt_time = when or utcnow()

    def record_failure(self, reason: str, when: datetime | None = None) -> None:
        self.total_attempts += 1
        self.failed_merges += 1
        self.failure_reasons[reason] = self.failure_reasons.get(reason, 0) + 1
        self.last_attempt_time = when or utcnow()

    def success_rate(self) -> float:
        """Successful merges as a percentage of attempts (0 before any attempt)."""
        if self.total_attempts == 0:
            return 0.0
        return self.successful_merges / self.total_attempts * 100

    def top_failure_reasons(self, limit: int = 3) -> list[tuple[str, int]]:
        """Most frequent failure reasons, most common first."""
        ranked = sorted(self.failure_reasons.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def reset(self) -> None:
        self.total_attempts = 0
        self.successful_merges = 0
        self.failed_merges = 0
        self.failure_reasons = {}
        self.start_time = utcnow()
        self.last_attempt_time = None

    def snapshot(self) -> "AutoMergeMetrics":
        return replace(self, failure_reasons=dict(self.failure_reasons))


def is_actionable(pr: PullRequest) -> bool:
    """Only open, non-draft pull requests are ever acted on."""
    return pr.state == "OPEN" and not pr.is_draft


def merge_blocker(status: PullRequestStatus) -> str | None:
    """Return why a PR must not be merged, or None when it may be merged."""
    if status.state != "OPEN":
        return f"state={status.state or 'UNKNOWN'}"
    if status.is_draft:
        return "draft"
    if status.mergeable != "MERGEABLE":
        return f"mergeable={status.mergeable}"
    if status.checks_status != "SUCCESS":
        return f"checks={status.checks_status}"
    return None


class PRWatcher:
    """Poll loop for pull requests awaiting merge or revision."""

    NAME = "pr-watcher"
    # Re-fetches while GitHub is still computing mergeability
    STATUS_ATTEMPTS = 3
    STATUS_RETRY_DELAY = 2.0

    def __init__(
        self,
        client: GitHubClient,
        repo: str,
        config: Config,
        engine: LabelTransitionEngine,
        dispatcher: ActionDispatcher,
        cleanup: CleanupManager | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        retry_sleep: Callable[[float], None] | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            client: GitHub client
            repo: Repository in 'owner/repo' format
            config: Application configuration
            engine: Label transition engine for this repository
            dispatcher: Dispatcher used for revise actions
            cleanup: Releases an issue's resources after its PR merges
            clock: Source of the current time
            sleep: Sleep used between mergeability re-checks
            retry_sleep: Sleep used between API retries
        """
        self.client = client
        self.repo = repo
        self.config = config
        self.engine = engine
        self.dispatcher = dispatcher
        self.cleanup = cleanup
        self._clock = clock
        self._sleep = sleep
        self._retry_sleep = retry_sleep
        self.stats = HealthStats(start_time=clock())
        self.metrics = AutoMergeMetrics(start_time=clock())

    def poll_once(self) -> bool:
        """Run a single tick.

        Returns:
            True if the tick finished without errors
        """
        try:
            labels = list(PR_WATCHED_LABELS)
            prs = call_with_retry(
                lambda: self.client.list_pull_requests_by_labels(self.repo, labels),
                sleep=self._retry_sleep,
            )
        except Exception as e:
            logger.error(f"Failed to list pull requests for {self.repo}: {e}")
            self._finish_tick(False)
            return False

        candidates = [pr for pr in prs if is_actionable(pr)]
        skipped = len(prs) - len(candidates)
        if skipped:
            logger.debug(f"Skipping {skipped} closed or draft pull request(s)")
        if not candidates:
            logger.debug(f"No pull requests to act on in {self.repo}")

        success = True
        for pr in candidates:
            set_issue_context(self.repo, pr.number)
            try:
                self._process_pull_request(pr)
            except Exception as e:
                logger.error(f"Failed to process PR #{pr.number}: {e}", exc_info=True)
                success = False
            finally:
                clear_issue_context()

        self._finish_tick(success)
        return success

    def _finish_tick(self, success: bool) -> None:
        self.stats.record(success, self._clock())
        record_tick(self.NAME, "success" if success else "failure")

    def _process_pull_request(self, pr: PullRequest) -> None:
        # lgtm wins over requires-changes when both are present
        if Labels.LGTM in pr.labels:
            if self.config.github.auto_merge_lgtm:
                self.try_auto_merge(pr)
            return

        if Labels.REQUIRES_CHANGES in pr.labels and self.config.github.auto_revise_pr:
            self.revise(pr)

    def fetch_fresh_status(self, number: int) -> PullRequestStatus:
        """Re-fetch a PR's status, waiting briefly while mergeability is UNKNOWN."""
        status = None
        for attempt in range(1, self.STATUS_ATTEMPTS + 1):
            status = call_with_retry(
                lambda: self.client.get_pull_request_status(self.repo, number),
                sleep=self._retry_sleep,
            )
            if status.mergeable != "UNKNOWN":
                break
            if attempt < self.STATUS_ATTEMPTS:
                logger.debug(f"PR #{number} mergeability unknown, re-checking (attempt {attempt})")
                self._sleep(self.STATUS_RETRY_DELAY * attempt)
        return status

    def try_auto_merge(self, pr: PullRequest) -> bool:
        """Merge an lgtm PR if its live status allows it.

        Returns:
            True if the PR was merged

        Raises:
            GitHubError: If the status fetch or the merge call fails (the
                failure is recorded in metrics first)
        """
        try:
            status = self.fetch_fresh_status(pr.number)
        except Exception:
            self.metrics.record_failure("status_error", self._clock())
            record_merge("failed")
            raise

        blocker = merge_blocker(status)
        if blocker is not None:
            logger.info(f"Skipping merge of PR #{pr.number}: {blocker}")
            self.metrics.record_failure(blocker, self._clock())
            record_merge("failed")
            return False

        try:
            self.client.merge_pull_request(self.repo, pr.number, self.config.github.merge_method)
        except Exception:
            self.metrics.record_failure("merge_error", self._clock())
            record_merge("failed")
            raise

        self.metrics.record_success(self._clock())
        record_merge("merged")
        logger.info(f"Auto-merged PR #{pr.number}: {pr.title}")
        self._cleanup_after_merge(pr)
        return True

    def _cleanup_after_merge(self, pr: PullRequest) -> None:
        if self.cleanup is None:
            return
        try:
            issue_number = self.client.get_closing_issue_number(self.repo, pr.number)
            if issue_number is None:
                logger.debug(f"PR #{pr.number} closes no issue, nothing to clean up")
                return
            self.cleanup.cleanup_issue(issue_number, force=True)
        except Exception as e:
            logger.warning(f"Cleanup after merging PR #{pr.number} failed: {e}")

    def revise(self, pr: PullRequest) -> bool:
        """Move a requires-changes review onto the closing issue and dispatch revise.

        Returns:
            True if a revise dispatch was started
        """
        issue_number = self.client.get_closing_issue_number(self.repo, pr.number)
        if issue_number is None:
            logger.warning(f"PR #{pr.number} has no closing issue, cannot revise")
            return False

        result = self.engine.claim_revision(pr.number, pr.labels, issue_number)
        if not result.claimed:
            return False

        self.dispatcher.dispatch(issue_number, Phases.REVISE, pr.title)
        return True

    def run(self, stop_event: threading.Event) -> None:
        """Poll until stop_event is set."""
        interval = self.config.github.poll_interval
        logger.info(f"Starting PR watcher for {self.repo} (every {interval}s)")
        while not stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Unexpected error in PR watcher tick: {e}", exc_info=True)
            if stop_event.wait(timeout=interval):
                break
        logger.info("PR watcher stopped")

    def check_health(self, now: datetime | None = None) -> HealthReport:
        """Check this watcher against the configured health thresholds."""
        return check_health(
            self.stats,
            timedelta(seconds=self.config.health.stale_after),
            self.config.health.min_success_rate,
            now=now or self._clock(),
        )
