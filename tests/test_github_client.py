"""Unit tests for the gh-backed GitHub client."""

import json
import subprocess
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from osoba.github_client import (
    GhClient,
    GitHubAuthError,
    GitHubError,
    NetworkError,
    RateLimitError,
    is_retryable_error,
    summarize_checks,
)
from osoba.interfaces import GitHubClient
from osoba.labels import REQUIRED_LABELS, Labels
from osoba.retry import call_with_retry

REPO = "douhashi/osoba"


@pytest.fixture
def client():
    """Fixture providing a GhClient instance."""
    return GhClient()


def called_error(stderr: str) -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(1, ["gh"], output="", stderr=stderr)


@pytest.mark.unit
class TestProtocolConformance:
    def test_gh_client_satisfies_protocol(self, client):
        assert isinstance(client, GitHubClient)


@pytest.mark.unit
class TestRunGhCommand:
    """Tests for subprocess handling and error mapping."""

    def test_returns_stdout(self, client, mock_gh_subprocess):
        mock_gh_subprocess.return_value = MagicMock(stdout="ok\n")

        assert client._run_gh_command(["api", "user"]) == "ok\n"

        cmd = mock_gh_subprocess.call_args[0][0]
        assert cmd == ["gh", "api", "user"]
        kwargs = mock_gh_subprocess.call_args[1]
        assert kwargs["capture_output"] is True
        assert kwargs["check"] is True

    def test_token_is_passed_through_env(self, mock_gh_subprocess):
        mock_gh_subprocess.return_value = MagicMock(stdout="")

        GhClient(token="ghp_secret")._run_gh_command(["api", "user"])

        assert mock_gh_subprocess.call_args[1]["env"]["GITHUB_TOKEN"] == "ghp_secret"

    @pytest.mark.parametrize(
        "stderr,error_type",
        [
            ("API rate limit exceeded for user", RateLimitError),
            ("dial tcp: lookup api.github.com: no such host", NetworkError),
            ("net/http: TLS handshake timeout", NetworkError),
            ("HTTP 401: Bad credentials", GitHubAuthError),
            ("To get started with GitHub CLI, please run:  gh auth login", GitHubAuthError),
            ("HTTP 404: Not Found", GitHubError),
        ],
    )
    def test_error_mapping(self, client, mock_gh_subprocess, stderr, error_type):
        mock_gh_subprocess.side_effect = called_error(stderr)

        with pytest.raises(error_type):
            client._run_gh_command(["issue", "list"])

    def test_missing_gh_binary(self, client, mock_gh_subprocess):
        mock_gh_subprocess.side_effect = FileNotFoundError()

        with pytest.raises(GitHubError, match="not installed"):
            client._run_gh_command(["issue", "list"])

    def test_invalid_json(self, client):
        with patch.object(client, "_run_gh_command", return_value="{not json"):
            with pytest.raises(GitHubError, match="Invalid JSON"):
                client._run_json(["api", "x"])


@pytest.mark.unit
class TestIsRetryableError:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (NetworkError("i/o timeout"), True),
            (RateLimitError("rate limit"), True),
            (GitHubError("gh pr view failed: HTTP 502 Bad Gateway"), True),
            (GitHubError("gh pr view failed: HTTP 404"), False),
            (GitHubAuthError("HTTP 401 server error"), False),
            (ValueError("boom"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable_error(error) is expected

    def test_call_with_retry_retries_transient_errors(self):
        operation = MagicMock(side_effect=[NetworkError("timeout"), NetworkError("timeout"), 7])
        sleeps = []

        assert call_with_retry(operation, sleep=sleeps.append) == 7
        assert operation.call_count == 3
        assert len(sleeps) == 2

    def test_call_with_retry_gives_up(self):
        operation = MagicMock(side_effect=NetworkError("timeout"))

        with pytest.raises(NetworkError):
            call_with_retry(operation, attempts=2, sleep=lambda _: None)
        assert operation.call_count == 2

    def test_call_with_retry_does_not_retry_permanent_errors(self):
        operation = MagicMock(side_effect=GitHubAuthError("bad credentials"))

        with pytest.raises(GitHubAuthError):
            call_with_retry(operation, sleep=lambda _: None)
        assert operation.call_count == 1


@pytest.mark.unit
class TestSummarizeChecks:
    @pytest.mark.parametrize(
        "rollup,expected",
        [
            (None, "NONE"),
            ([], "NONE"),
            ({"state": "pending"}, "PENDING"),
            ([{"status": "COMPLETED", "conclusion": "SUCCESS"}], "SUCCESS"),
            ([{"status": "COMPLETED", "conclusion": "SKIPPED"}], "SUCCESS"),
            ([{"status": "IN_PROGRESS", "conclusion": ""}], "PENDING"),
            ([{"status": "COMPLETED", "conclusion": "FAILURE"}], "FAILURE"),
            ([{"state": "SUCCESS"}, {"state": "PENDING"}], "PENDING"),
            ([{"state": "ERROR"}], "FAILURE"),
        ],
    )
    def test_rollup(self, rollup, expected):
        assert summarize_checks(rollup) == expected

    def test_failure_wins_over_pending(self):
        rollup = [
            {"status": "QUEUED", "conclusion": None},
            {"status": "COMPLETED", "conclusion": "TIMED_OUT"},
        ]
        assert summarize_checks(rollup) == "FAILURE"


@pytest.mark.unit
class TestIssues:
    """Tests for issue listing and label operations."""

    def test_list_issues_by_labels_deduplicates(self, client):
        responses = {
            Labels.NEEDS_PLAN: [
                {"number": 3, "title": "A", "labels": [{"name": Labels.NEEDS_PLAN}]},
            ],
            Labels.READY: [
                {"number": 3, "title": "A", "labels": [{"name": Labels.READY}]},
                {"number": 5, "title": "B", "labels": [{"name": Labels.READY}], "state": "open"},
            ],
        }

        def fake_run(args, input_data=None):
            return json.dumps(responses[args[args.index("--label") + 1]])

        with patch.object(client, "_run_gh_command", side_effect=fake_run):
            issues = client.list_issues_by_labels(REPO, [Labels.NEEDS_PLAN, Labels.READY])

        assert [i.number for i in issues] == [3, 5]
        assert issues[0].labels == frozenset({Labels.NEEDS_PLAN})
        assert issues[1].state == "OPEN"

    def test_get_issue_labels_uses_rest_api(self, client):
        payload = json.dumps({"labels": [{"name": "bug"}, {"name": Labels.LGTM}]})
        with patch.object(client, "_run_gh_command", return_value=payload) as mock_run:
            labels = client.get_issue_labels(REPO, 12)

        assert labels == {"bug", Labels.LGTM}
        mock_run.assert_called_once_with(["api", f"repos/{REPO}/issues/12"])

    def test_remove_label_quotes_name(self, client):
        with patch.object(client, "_run_gh_command", return_value="") as mock_run:
            client.remove_label(REPO, 12, Labels.NEEDS_PLAN)

        args = mock_run.call_args[0][0]
        assert args[:3] == ["api", "--method", "DELETE"]
        assert args[3] == f"repos/{REPO}/issues/12/labels/status%3Aneeds-plan"

    def test_transition_adds_before_removing(self, client):
        with patch.object(client, "_run_gh_command", return_value="") as mock_run:
            result = client.transition_issue_label_with_info(
                REPO, 8, Labels.READY, Labels.IMPLEMENTING
            )

        assert result.transitioned
        methods = [call[0][0][2] for call in mock_run.call_args_list]
        assert methods == ["POST", "DELETE"]
        assert f"labels[]={Labels.IMPLEMENTING}" in mock_run.call_args_list[0][0][0]

    def test_failed_remove_propagates(self, client):
        with patch.object(
            client, "_run_gh_command", side_effect=["", GitHubError("HTTP 404")]
        ):
            with pytest.raises(GitHubError):
                client.transition_issue_label_with_info(REPO, 8, Labels.READY, Labels.IMPLEMENTING)

    def test_create_issue_comment_uses_stdin(self, client):
        with patch.object(client, "_run_gh_command", return_value="") as mock_run:
            client.create_issue_comment(REPO, 4, "hello")

        assert mock_run.call_args[1]["input_data"] == "hello"


@pytest.mark.unit
class TestPullRequests:
    """Tests for pull request operations."""

    def test_list_pull_requests_parses_status(self, client):
        payload = json.dumps(
            [
                {
                    "number": 123,
                    "title": "Add login",
                    "labels": [{"name": Labels.LGTM}],
                    "state": "OPEN",
                    "isDraft": False,
                    "mergeable": "MERGEABLE",
                    "statusCheckRollup": [{"status": "COMPLETED", "conclusion": "SUCCESS"}],
                    "headRefName": "osoba/#83",
                }
            ]
        )
        with patch.object(client, "_run_gh_command", return_value=payload):
            prs = client.list_pull_requests_by_labels(REPO, [Labels.LGTM])

        assert len(prs) == 1
        assert prs[0].checks_status == "SUCCESS"
        assert prs[0].mergeable == "MERGEABLE"
        assert prs[0].head_ref == "osoba/#83"

    def test_get_pull_request_status(self, client):
        payload = json.dumps(
            {
                "number": 9,
                "state": "OPEN",
                "isDraft": True,
                "mergeable": None,
                "statusCheckRollup": [],
                "reviewDecision": "APPROVED",
            }
        )
        with patch.object(client, "_run_gh_command", return_value=payload):
            status = client.get_pull_request_status(REPO, 9)

        assert status.is_draft
        assert status.mergeable == "UNKNOWN"
        assert status.checks_status == "NONE"
        assert status.review_decision == "APPROVED"

    def test_merge_uses_method_flag(self, client):
        with patch.object(client, "_run_gh_command", return_value="") as mock_run:
            client.merge_pull_request(REPO, 5, "rebase")

        mock_run.assert_called_once_with(["pr", "merge", "5", "--repo", REPO, "--rebase"])

    def test_merge_rejects_unknown_method(self, client):
        with pytest.raises(ValueError, match="Invalid merge method"):
            client.merge_pull_request(REPO, 5, "octopus")

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"closingIssuesReferences": [{"number": 83}], "headRefName": "osoba/#1"}, 83),
            ({"closingIssuesReferences": [], "headRefName": "osoba/#42"}, 42),
            ({"headRefName": "feature/x", "body": "This fixes #17 for good"}, 17),
            ({"headRefName": "feature/x", "body": "Related to #17"}, None),
        ],
    )
    def test_get_closing_issue_number(self, client, payload, expected):
        with patch.object(client, "_run_gh_command", return_value=json.dumps(payload)):
            assert client.get_closing_issue_number(REPO, 123) == expected


@pytest.mark.unit
class TestRepository:
    def test_get_rate_limit(self, client):
        payload = json.dumps(
            {"resources": {"core": {"limit": 5000, "remaining": 42, "reset": 1767225600}}}
        )
        with patch.object(client, "_run_gh_command", return_value=payload):
            rate = client.get_rate_limit()

        assert rate.limit == 5000
        assert rate.remaining == 42
        assert rate.reset_at == datetime(2026, 1, 1, tzinfo=UTC)

    def test_ensure_labels_exist_creates_only_missing(self, client):
        existing = [{"name": name} for name in REQUIRED_LABELS if name != Labels.REVISING]
        calls = []

        def fake_run(args, input_data=None):
            calls.append(args)
            return json.dumps(existing) if args[:2] == ["label", "list"] else ""

        with patch.object(client, "_run_gh_command", side_effect=fake_run):
            created = client.ensure_labels_exist(REPO)

        assert created == [Labels.REVISING]
        create_calls = [c for c in calls if c[:2] == ["label", "create"]]
        assert len(create_calls) == 1
        assert create_calls[0][2] == Labels.REVISING
