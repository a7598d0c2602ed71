"""Per-watcher health statistics.

Each watcher owns one HealthStats instance and is its only writer, so the
counters need no locking. Readers (status reporting, tests) only take
snapshots.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

# Success-rate checks only apply once a watcher has this many executions
MIN_EXECUTIONS_FOR_RATE = 10


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class HealthStats:
    """Execution counters for one watcher.

    Attributes:
        total_executions: Ticks started
        successful_executions: Ticks that finished without errors
        failed_executions: Ticks with at least one error
        last_execution_time: When the latest tick finished (None before the first)
        start_time: When the watcher was created
    """

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    last_execution_time: datetime | None = None
    start_time: datetime = field(default_factory=utcnow)

    def record(self, success: bool, when: datetime | None = None) -> None:
        """Record a finished tick."""
        self.total_executions += 1
        if success:
            self.successful_executions += 1
        else:
            self.failed_executions += 1
        self.last_execution_time = when or utcnow()

    @property
    def success_rate(self) -> float:
        """Fraction of successful ticks (1.0 before the first tick)."""
        if self.total_executions == 0:
            return 1.0
        return self.successful_executions / self.total_executions

    def snapshot(self) -> "HealthStats":
        return replace(self)


@dataclass(frozen=True)
class HealthReport:
    """Result of a health check."""

    healthy: bool
    message: str


def check_health(
    stats: HealthStats,
    stale_after: timedelta,
    min_success_rate: float = 0.1,
    now: datetime | None = None,
) -> HealthReport:
    """Evaluate watcher health.

    Unhealthy when the watcher never executed, when the last execution is
    older than stale_after, or when the success rate dropped below
    min_success_rate after more than MIN_EXECUTIONS_FOR_RATE executions.

    Args:
        stats: Counters of the watcher being checked
        stale_after: Maximum allowed time since the last execution
        min_success_rate: Success-rate floor between 0 and 1
        now: Current time (defaults to utcnow)

    Returns:
        HealthReport with a human-readable message
    """
    now = now or utcnow()

    if stats.last_execution_time is None or stats.total_executions == 0:
        return HealthReport(False, "watcher has never been executed")

    inactive_for = now - stats.last_execution_time
    if inactive_for > stale_after:
        return HealthReport(
            False,
            f"watcher inactive for {_format_delta(inactive_for)} "
            f"(threshold {_format_delta(stale_after)})",
        )

    rate = stats.success_rate
    if stats.total_executions > MIN_EXECUTIONS_FOR_RATE and rate < min_success_rate:
        return HealthReport(
            False,
            f"success rate {rate:.1%} below {min_success_rate:.1%} "
            f"({stats.successful_executions}/{stats.total_executions})",
        )

    return HealthReport(
        True,
        f"healthy: {stats.total_executions} executions, {rate:.1%} success, "
        f"last {_format_delta(inactive_for)} ago",
    )


def _format_delta(delta: timedelta) -> str:
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m{seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"
