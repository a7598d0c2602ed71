"""GitHub client backed by the gh CLI.

Every call shells out to `gh` with JSON output. Errors from gh are mapped
onto a small exception hierarchy so callers can tell transient failures
(network, rate limit, 5xx) from permanent ones (auth, bad request).
"""

import json
import os
import re
import subprocess
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

from osoba.interfaces import Issue, LabelTransition, PullRequest, PullRequestStatus, RateLimit
from osoba.labels import REQUIRED_LABELS
from osoba.logger import get_logger

logger = get_logger(__name__)

ISSUE_FIELDS = "number,title,labels,state,url"
PR_FIELDS = "number,title,labels,state,isDraft,mergeable,statusCheckRollup,headRefName,url"

_FAILED_CONCLUSIONS = {"FAILURE", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED", "STARTUP_FAILURE"}
_FAILED_STATES = {"FAILURE", "ERROR"}
_PENDING_STATES = {"PENDING", "EXPECTED"}

_BRANCH_ISSUE_RE = re.compile(r"^osoba/#?(\d+)$")
_CLOSES_RE = re.compile(r"(?i)\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\s+#(\d+)")


class GitHubError(Exception):
    """Base exception for GitHub client errors."""

    pass


class NetworkError(GitHubError):
    """Raised when a gh call fails due to network connectivity issues.

    Examples: TLS handshake timeout, connection refused, DNS failures,
    I/O timeout. Authentication and validation failures never raise this.
    """

    pass


class RateLimitError(GitHubError):
    """Raised when GitHub reports an exhausted rate limit."""

    pass


class GitHubAuthError(GitHubError):
    """Raised when gh is not authenticated or the token is rejected."""

    pass


_NETWORK_ERROR_PATTERNS = (
    "tls handshake timeout",
    "connection timeout",
    "network error",
    "connection refused",
    "connection reset",
    "temporary failure",
    "i/o timeout",
    "timeout",
    "dial tcp",
    "no such host",
)

_SERVER_ERROR_PATTERNS = (
    "http 500",
    "http 502",
    "http 503",
    "http 504",
    "server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)

_AUTH_ERROR_PATTERNS = (
    "gh auth login",
    "authentication",
    "unauthorized",
    "http 401",
    "not logged in",
    "bad credentials",
)


def is_retryable_error(error: BaseException) -> bool:
    """Whether an error is worth retrying within the same tick.

    Network errors, rate limits and 5xx responses are retryable. Everything
    else (auth, validation, missing resources) is permanent.
    """
    if isinstance(error, (NetworkError, RateLimitError)):
        return True
    if isinstance(error, GitHubError) and not isinstance(error, GitHubAuthError):
        message = str(error).lower()
        return any(pattern in message for pattern in _SERVER_ERROR_PATTERNS)
    return False


def summarize_checks(rollup: Any) -> str:
    """Collapse a statusCheckRollup payload into a single status.

    Args:
        rollup: statusCheckRollup from gh, either a list of check runs and
            status contexts or an object with a "state" key

    Returns:
        "SUCCESS", "FAILURE", "PENDING" or "NONE" (no checks reported)
    """
    if not rollup:
        return "NONE"
    if isinstance(rollup, dict):
        return str(rollup.get("state") or "NONE").upper()

    pending = False
    for check in rollup:
        # Check runs carry status/conclusion, commit statuses carry state
        state = (check.get("state") or "").upper()
        status = (check.get("status") or "").upper()
        conclusion = (check.get("conclusion") or "").upper()

        if state:
            if state in _FAILED_STATES:
                return "FAILURE"
            if state in _PENDING_STATES:
                pending = True
            continue

        if status and status != "COMPLETED":
            pending = True
        elif conclusion in _FAILED_CONCLUSIONS:
            return "FAILURE"

    return "PENDING" if pending else "SUCCESS"


def _label_names(raw_labels: list[dict[str, Any]] | None) -> frozenset[str]:
    return frozenset(label["name"] for label in raw_labels or [] if label)


class GhClient:
    """GitHubClient implementation that shells out to the gh CLI."""

    def __init__(self, token: str | None = None) -> None:
        """Initialize the client.

        Args:
            token: GitHub token passed to gh via GITHUB_TOKEN, or None to use
                the credentials from `gh auth login`
        """
        self.token = token
        logger.debug(f"{self.__class__.__name__} initialized")

    # Issues

    def list_issues_by_labels(self, repo: str, labels: list[str]) -> list[Issue]:
        """List open issues carrying any of the given labels.

        Args:
            repo: Repository in 'owner/repo' format
            labels: Labels to query, one gh call per label

        Returns:
            Issues deduplicated by number, in gh order per label, earlier
            labels first.
        """
        seen: set[int] = set()
        issues: list[Issue] = []
        for label in labels:
            args = [
                "issue", "list", "--repo", repo, "--label", label,
                "--state", "open", "--json", ISSUE_FIELDS, "--limit", "100",
            ]
            for raw in self._run_json(args):
                if raw["number"] in seen:
                    continue
                seen.add(raw["number"])
                issues.append(self._parse_issue(raw))
        logger.debug(f"Found {len(issues)} issue(s) in {repo} for labels {labels}")
        return issues

    def list_open_issues(self, repo: str) -> list[Issue]:
        """List every open issue in the repository."""
        args = [
            "issue", "list", "--repo", repo, "--state", "open",
            "--json", ISSUE_FIELDS, "--limit", "500",
        ]
        return [self._parse_issue(raw) for raw in self._run_json(args)]

    def get_issue_labels(self, repo: str, number: int) -> set[str]:
        """Read the live label set of an issue or pull request.

        Args:
            repo: Repository in 'owner/repo' format
            number: Issue or PR number

        Returns:
            Set of label names currently on the item
        """
        data = self._run_json(["api", f"repos/{repo}/issues/{number}"])
        return set(_label_names(data.get("labels")))

    def add_label(self, repo: str, number: int, label: str) -> None:
        """Add a label to an issue or pull request."""
        self._run_gh_command([
            "api", "--method", "POST", f"repos/{repo}/issues/{number}/labels",
            "-f", f"labels[]={label}",
        ])
        logger.info(f"Added label '{label}' to {repo}#{number}")

    def remove_label(self, repo: str, number: int, label: str) -> None:
        """Remove a label from an issue or pull request."""
        self._run_gh_command([
            "api", "--method", "DELETE",
            f"repos/{repo}/issues/{number}/labels/{quote(label, safe='')}",
        ])
        logger.info(f"Removed label '{label}' from {repo}#{number}")

    def transition_issue_label_with_info(
        self, repo: str, number: int, from_label: str, to_label: str
    ) -> LabelTransition:
        """Add to_label, then remove from_label.

        The add happens first so the item is never left without a status label.
        A failed remove leaves both labels in place and is raised to the caller.

        Args:
            repo: Repository in 'owner/repo' format
            number: Issue number
            from_label: Label being replaced
            to_label: Label being applied

        Returns:
            LabelTransition(transitioned=True, ...) when both calls succeeded

        Raises:
            GitHubError: If either gh call fails
        """
        self.add_label(repo, number, to_label)
        self.remove_label(repo, number, from_label)
        logger.info(f"Label transition on {repo}#{number}: {from_label} -> {to_label}")
        return LabelTransition(transitioned=True, from_label=from_label, to_label=to_label)

    def create_issue_comment(self, repo: str, number: int, body: str) -> None:
        """Post a comment on an issue or pull request."""
        self._run_gh_command(
            ["issue", "comment", str(number), "--repo", repo, "--body-file", "-"],
            input_data=body,
        )
        logger.debug(f"Commented on {repo}#{number}")

    # Pull requests

    def list_pull_requests_by_labels(self, repo: str, labels: list[str]) -> list[PullRequest]:
        """List pull requests carrying any of the given labels.

        Closed and draft PRs are included; filtering is the caller's job.
        """
        seen: set[int] = set()
        prs: list[PullRequest] = []
        for label in labels:
            args = [
                "pr", "list", "--repo", repo, "--label", label,
                "--state", "all", "--json", PR_FIELDS, "--limit", "50",
            ]
            for raw in self._run_json(args):
                if raw["number"] in seen:
                    continue
                seen.add(raw["number"])
                prs.append(self._parse_pull_request(raw))
        logger.debug(f"Found {len(prs)} pull request(s) in {repo} for labels {labels}")
        return prs

    def get_pull_request_status(self, repo: str, number: int) -> PullRequestStatus:
        """Fetch the live mergeability and CI status of a pull request.

        Args:
            repo: Repository in 'owner/repo' format
            number: PR number

        Returns:
            PullRequestStatus as reported by GitHub right now
        """
        data = self._run_json([
            "pr", "view", str(number), "--repo", repo,
            "--json", "number,state,isDraft,mergeable,statusCheckRollup,reviewDecision",
        ])
        return PullRequestStatus(
            number=data["number"],
            state=(data.get("state") or "").upper(),
            is_draft=bool(data.get("isDraft")),
            mergeable=(data.get("mergeable") or "UNKNOWN").upper(),
            checks_status=summarize_checks(data.get("statusCheckRollup")),
            review_decision=data.get("reviewDecision") or "",
        )

    def merge_pull_request(self, repo: str, number: int, merge_method: str = "squash") -> None:
        """Merge a pull request.

        Args:
            repo: Repository in 'owner/repo' format
            number: PR number
            merge_method: 'merge', 'squash' or 'rebase'

        Raises:
            ValueError: If merge_method is not recognized
            GitHubError: If gh refuses the merge
        """
        if merge_method not in ("merge", "squash", "rebase"):
            raise ValueError(f"Invalid merge method: {merge_method}")
        self._run_gh_command(["pr", "merge", str(number), "--repo", repo, f"--{merge_method}"])
        logger.info(f"Merged PR {repo}#{number} ({merge_method})")

    def get_closing_issue_number(self, repo: str, pr_number: int) -> int | None:
        """Return the issue number a pull request closes, if any.

        Looks at closingIssuesReferences first, then at an osoba/#N head
        branch, then at closing keywords in the body.
        """
        data = self._run_json([
            "pr", "view", str(pr_number), "--repo", repo,
            "--json", "closingIssuesReferences,headRefName,body",
        ])
        references = data.get("closingIssuesReferences") or []
        if references:
            return int(references[0]["number"])

        branch_match = _BRANCH_ISSUE_RE.match(data.get("headRefName") or "")
        if branch_match:
            return int(branch_match.group(1))

        body_match = _CLOSES_RE.search(data.get("body") or "")
        if body_match:
            return int(body_match.group(1))
        return None

    # Repository

    def get_rate_limit(self) -> RateLimit:
        """Return the current core REST API rate limit."""
        data = self._run_json(["api", "rate_limit"])
        core = data.get("resources", {}).get("core", {})
        return RateLimit(
            limit=int(core.get("limit", 0)),
            remaining=int(core.get("remaining", 0)),
            reset_at=datetime.fromtimestamp(int(core.get("reset", 0)), tz=UTC),
        )

    def ensure_labels_exist(self, repo: str) -> list[str]:
        """Create any missing status labels in a repository.

        Args:
            repo: Repository in 'owner/repo' format

        Returns:
            Names of the labels that were created
        """
        logger.info(f"Ensuring required labels exist in {repo}...")
        existing = {
            label["name"]
            for label in self._run_json(
                ["label", "list", "--repo", repo, "--json", "name", "--limit", "500"]
            )
        }

        created: list[str] = []
        for name, label_config in REQUIRED_LABELS.items():
            if name in existing:
                logger.debug(f"Label '{name}' already exists")
                continue
            self._run_gh_command([
                "label", "create", name, "--repo", repo, "--force",
                "--description", label_config["description"],
                "--color", label_config["color"],
            ])
            logger.info(f"Creating label '{name}' in {repo}")
            created.append(name)
        return created

    # Parsing

    def _parse_issue(self, raw: dict[str, Any]) -> Issue:
        return Issue(
            number=int(raw["number"]),
            title=raw.get("title", ""),
            labels=_label_names(raw.get("labels")),
            state=(raw.get("state") or "OPEN").upper(),
            url=raw.get("url", ""),
        )

    def _parse_pull_request(self, raw: dict[str, Any]) -> PullRequest:
        return PullRequest(
            number=int(raw["number"]),
            title=raw.get("title", ""),
            labels=_label_names(raw.get("labels")),
            state=(raw.get("state") or "").upper(),
            is_draft=bool(raw.get("isDraft")),
            mergeable=(raw.get("mergeable") or "UNKNOWN").upper(),
            checks_status=summarize_checks(raw.get("statusCheckRollup")),
            head_ref=raw.get("headRefName", ""),
            url=raw.get("url", ""),
        )

    # Transport

    def _run_json(self, args: list[str]) -> Any:
        output = self._run_gh_command(args)
        try:
            return json.loads(output) if output.strip() else []
        except json.JSONDecodeError as e:
            logger.debug(f"Raw output: {output}")
            raise GitHubError(f"Invalid JSON response from gh CLI: {e}") from e

    def _run_gh_command(self, args: list[str], input_data: str | None = None) -> str:
        """Run a gh CLI command with proper error handling.

        Args:
            args: Command arguments (excluding 'gh' itself)
            input_data: Optional data to pass to stdin

        Returns:
            Command output as string

        Raises:
            NetworkError: On connectivity failures
            RateLimitError: When GitHub reports the rate limit is exhausted
            GitHubAuthError: When gh is not authenticated
            GitHubError: For any other gh failure or a missing gh binary
        """
        cmd = ["gh", *args]
        logger.debug(f"Running command: {' '.join(cmd)}")

        env = dict(os.environ)
        if self.token:
            env["GITHUB_TOKEN"] = self.token

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                input=input_data,
                env=env,
            )
            logger.debug(f"Command succeeded, output length: {len(result.stdout)} bytes")
            return result.stdout

        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            error_output = stderr.lower()
            logger.debug(f"gh exited with {e.returncode}: {stderr}")

            if "rate limit" in error_output:
                raise RateLimitError(f"GitHub API rate limit exceeded: {stderr}") from e
            if any(pattern in error_output for pattern in _NETWORK_ERROR_PATTERNS):
                raise NetworkError(f"GitHub API network error: {stderr}") from e
            if any(pattern in error_output for pattern in _AUTH_ERROR_PATTERNS):
                raise GitHubAuthError(
                    "GitHub authentication failed. Set GITHUB_TOKEN or run 'gh auth login'."
                ) from e
            raise GitHubError(f"gh {' '.join(args[:2])} failed: {stderr}") from e

        except FileNotFoundError as e:
            raise GitHubError(
                "GitHub CLI (gh) is not installed or not in PATH. "
                "Please install it from https://cli.github.com/"
            ) from e
