"""GitHub client protocol and data types.

This module defines the snapshot types the watchers operate on and the
capability set osoba needs from a GitHub client.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Issue:
    """Snapshot of a GitHub issue taken during one poll tick.

    Attributes:
        number: Issue number (stable identity)
        title: Issue title
        labels: Set of label names on the issue
        state: Issue state ("OPEN" or "CLOSED")
        url: Web URL of the issue
    """

    number: int
    title: str
    labels: frozenset[str] = field(default_factory=frozenset)
    state: str = "OPEN"
    url: str = ""


@dataclass(frozen=True)
class PullRequest:
    """Snapshot of a GitHub pull request taken during one poll tick.

    Attributes:
        number: PR number
        title: PR title
        labels: Set of label names on the PR
        state: "OPEN", "CLOSED" or "MERGED"
        is_draft: Whether the PR is a draft
        mergeable: "MERGEABLE", "CONFLICTING" or "UNKNOWN"
        checks_status: Rolled-up CI status: "SUCCESS", "FAILURE", "PENDING" or "NONE"
        head_ref: Head branch name
        url: Web URL of the PR
    """

    number: int
    title: str
    labels: frozenset[str] = field(default_factory=frozenset)
    state: str = "OPEN"
    is_draft: bool = False
    mergeable: str = "UNKNOWN"
    checks_status: str = "NONE"
    head_ref: str = ""
    url: str = ""


@dataclass(frozen=True)
class PullRequestStatus:
    """Live status of one pull request, fetched right before acting on it."""

    number: int
    state: str
    is_draft: bool
    mergeable: str
    checks_status: str
    review_decision: str = ""


@dataclass(frozen=True)
class RateLimit:
    """Core REST API rate limit snapshot."""

    limit: int
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class LabelTransition:
    """Outcome of an add-then-remove label swap on one issue."""

    transitioned: bool
    from_label: str
    to_label: str


@runtime_checkable
class GitHubClient(Protocol):
    """Protocol for the GitHub operations osoba relies on.

    All methods raise GitHubError subclasses on failure. Repository arguments
    use the 'owner/repo' form.
    """

    def list_issues_by_labels(self, repo: str, labels: list[str]) -> list[Issue]:
        """List open issues carrying any of the given labels.

        Issues are returned once each, in the order GitHub returns them,
        with earlier labels in the list taking precedence.
        """
        ...

    def list_open_issues(self, repo: str) -> list[Issue]:
        """List every open issue in the repository."""
        ...

    def get_issue_labels(self, repo: str, number: int) -> set[str]:
        """Read the live label set of an issue or pull request."""
        ...

    def add_label(self, repo: str, number: int, label: str) -> None:
        """Add a label to an issue or pull request."""
        ...

    def remove_label(self, repo: str, number: int, label: str) -> None:
        """Remove a label from an issue or pull request."""
        ...

    def transition_issue_label_with_info(
        self, repo: str, number: int, from_label: str, to_label: str
    ) -> LabelTransition:
        """Add to_label, then remove from_label.

        Returns:
            LabelTransition with transitioned=True when both calls succeeded.
        """
        ...

    def create_issue_comment(self, repo: str, number: int, body: str) -> None:
        """Post a comment on an issue or pull request."""
        ...

    def list_pull_requests_by_labels(self, repo: str, labels: list[str]) -> list[PullRequest]:
        """List pull requests carrying any of the given labels (all states)."""
        ...

    def get_pull_request_status(self, repo: str, number: int) -> PullRequestStatus:
        """Fetch the live mergeability and CI status of a pull request."""
        ...

    def merge_pull_request(self, repo: str, number: int, merge_method: str = "squash") -> None:
        """Merge a pull request."""
        ...

    def get_closing_issue_number(self, repo: str, pr_number: int) -> int | None:
        """Return the issue number a pull request closes, if any."""
        ...

    def get_rate_limit(self) -> RateLimit:
        """Return the current core API rate limit."""
        ...

    def ensure_labels_exist(self, repo: str) -> list[str]:
        """Create any missing status labels.

        Returns:
            Names of the labels that were created.
        """
        ...
