"""Pytest configuration and shared fixtures."""

import os
import re
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import settings

from osoba.claude_runner import ClaudeExecutor
from osoba.config import Config
from osoba.dispatcher import ActionDispatcher, Providers
from osoba.interfaces import Issue, LabelTransition, PullRequest, PullRequestStatus, RateLimit
from osoba.naming import worktree_path_for
from osoba.tmux import PaneInfo, TmuxError, issue_window_pattern

# Configure Hypothesis profiles for different environments
settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("dev", max_examples=50, deadline=None)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "dev"))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast tests with every external process mocked")
    config.addinivalue_line("markers", "integration: tests that wire several components together")
    config.addinivalue_line("markers", "hypothesis: marks property-based tests using Hypothesis")


REPO = "douhashi/osoba"


class FakeGitHub:
    """In-memory GitHubClient with one shared, live label store.

    Issue and PR snapshots are built from the live store at list time, so a
    test can mutate labels between the list and the claim to simulate races.
    """

    def __init__(self):
        self.labels: dict[int, set[str]] = {}
        self.titles: dict[int, str] = {}
        self.prs: dict[int, dict] = {}
        self.statuses: dict[int, list[PullRequestStatus]] = {}
        self.closing: dict[int, int] = {}
        self.merged: list[tuple[int, str]] = []
        self.mutations: list[tuple[str, int, str]] = []
        self.comments: list[tuple[int, str]] = []
        self.created_labels: list[str] = []
        self.fail_list_with: Exception | None = None
        self.fail_merge_with: Exception | None = None

    # Setup helpers

    def add_issue(self, number: int, labels=(), title: str = "") -> None:
        self.labels[number] = set(labels)
        self.titles[number] = title or f"Issue {number}"

    def add_pr(
        self,
        number: int,
        labels=(),
        state: str = "OPEN",
        is_draft: bool = False,
        mergeable: str = "MERGEABLE",
        checks_status: str = "SUCCESS",
        closes: int | None = None,
    ) -> None:
        self.labels[number] = set(labels)
        self.titles[number] = f"PR {number}"
        self.prs[number] = {
            "state": state,
            "is_draft": is_draft,
            "mergeable": mergeable,
            "checks_status": checks_status,
        }
        self.statuses[number] = [
            PullRequestStatus(number, state, is_draft, mergeable, checks_status)
        ]
        if closes is not None:
            self.closing[number] = closes

    # GitHubClient

    def list_issues_by_labels(self, repo, labels):
        if self.fail_list_with is not None:
            raise self.fail_list_with
        issues, seen = [], set()
        for label in labels:
            for number in sorted(self.labels):
                if number in self.prs or number in seen or label not in self.labels[number]:
                    continue
                seen.add(number)
                issues.append(
                    Issue(number, self.titles[number], frozenset(self.labels[number]))
                )
        return issues

    def list_open_issues(self, repo):
        return [
            Issue(number, self.titles[number], frozenset(labels))
            for number, labels in sorted(self.labels.items())
            if number not in self.prs
        ]

    def get_issue_labels(self, repo, number):
        return set(self.labels.get(number, set()))

    def add_label(self, repo, number, label):
        self.mutations.append(("add", number, label))
        self.labels.setdefault(number, set()).add(label)

    def remove_label(self, repo, number, label):
        self.mutations.append(("remove", number, label))
        self.labels.setdefault(number, set()).discard(label)

    def transition_issue_label_with_info(self, repo, number, from_label, to_label):
        self.add_label(repo, number, to_label)
        self.remove_label(repo, number, from_label)
        return LabelTransition(True, from_label, to_label)

    def create_issue_comment(self, repo, number, body):
        self.comments.append((number, body))

    def list_pull_requests_by_labels(self, repo, labels):
        if self.fail_list_with is not None:
            raise self.fail_list_with
        prs, seen = [], set()
        for label in labels:
            for number, pr in sorted(self.prs.items()):
                if number in seen or label not in self.labels[number]:
                    continue
                seen.add(number)
                prs.append(
                    PullRequest(
                        number,
                        self.titles[number],
                        frozenset(self.labels[number]),
                        state=pr["state"],
                        is_draft=pr["is_draft"],
                        mergeable=pr["mergeable"],
                        checks_status=pr["checks_status"],
                    )
                )
        return prs

    def get_pull_request_status(self, repo, number):
        queue = self.statuses[number]
        # The last status sticks once the queue is drained
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def merge_pull_request(self, repo, number, merge_method="squash"):
        if self.fail_merge_with is not None:
            raise self.fail_merge_with
        self.merged.append((number, merge_method))
        self.prs[number]["state"] = "MERGED"

    def get_closing_issue_number(self, repo, pr_number):
        return self.closing.get(pr_number)

    def get_rate_limit(self):
        return RateLimit(5000, 4999, datetime(2026, 1, 1, tzinfo=UTC))

    def ensure_labels_exist(self, repo):
        self.created_labels.append(repo)
        return []


class FakeTmux:
    """In-memory stand-in for TmuxManager."""

    def __init__(self):
        self.sessions: dict[str, dict[str, str]] = {}
        self.sent: list[tuple[str, str, str]] = []
        self.resized: list[tuple[str, str]] = []
        self.fail_create_window: Exception | None = None

    def session_exists(self, name):
        return name in self.sessions

    def ensure_session(self, name, start_directory=None):
        if name in self.sessions:
            return False
        self.sessions[name] = {}
        return True

    def kill_session(self, name):
        return self.sessions.pop(name, None) is not None

    def window_exists(self, session_name, window_name):
        return window_name in self.sessions.get(session_name, {})

    def create_window(self, session_name, window_name, workdir):
        if self.fail_create_window is not None:
            raise self.fail_create_window
        if session_name not in self.sessions:
            raise TmuxError(f"tmux session '{session_name}' does not exist")
        windows = self.sessions[session_name]
        if window_name in windows:
            return window_name, False
        windows[window_name] = workdir
        return window_name, True

    def list_windows(self, session_name):
        return list(self.sessions.get(session_name, {}))

    def list_windows_by_pattern(self, session_name, pattern):
        regex = re.compile(pattern)
        return [name for name in self.list_windows(session_name) if regex.search(name)]

    def list_windows_for_issue(self, session_name, issue_number):
        return self.list_windows_by_pattern(session_name, issue_window_pattern(issue_number))

    def kill_windows(self, session_name, window_names):
        killed = []
        for name in window_names:
            if self.sessions.get(session_name, {}).pop(name, None) is not None:
                killed.append(name)
        return killed

    def send_keys(self, session_name, window_name, keys, enter=True):
        if not self.window_exists(session_name, window_name):
            raise TmuxError(f"Window '{window_name}' not found in session '{session_name}'")
        self.sent.append((session_name, window_name, keys))

    def list_panes(self, session_name, window_name=None):
        return [
            PaneInfo(window_name=name, index=0, title="", active=True)
            for name in self.list_windows(session_name)
            if window_name is None or name == window_name
        ]

    def resize_panes_evenly(self, session_name, window_name):
        self.resized.append((session_name, window_name))


class FakeWorktrees:
    """In-memory stand-in for WorktreeManager."""

    def __init__(self, repo_root):
        self.repo_root = Path(repo_root)
        self.existing: set[int] = set()
        self.dirty: set[int] = set()
        self.ensure_calls: list[int] = []
        self.fail_ensure: Exception | None = None

    def worktree_path(self, issue_number):
        return worktree_path_for(self.repo_root, issue_number)

    def ensure_worktree(self, issue_number):
        self.ensure_calls.append(issue_number)
        if self.fail_ensure is not None:
            raise self.fail_ensure
        self.existing.add(issue_number)
        return self.worktree_path(issue_number)

    def has_uncommitted_changes(self, issue_number):
        return issue_number in self.dirty and issue_number in self.existing

    def remove_worktree(self, issue_number, force=False):
        if issue_number not in self.existing:
            return False
        self.existing.discard(issue_number)
        self.dirty.discard(issue_number)
        return True

    def list_issue_worktrees(self):
        return sorted(self.existing)


@pytest.fixture
def temp_workspace_dir():
    """Fixture providing a temporary workspace directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def mock_gh_subprocess():
    """Fixture for mocking subprocess calls to gh CLI."""
    with patch("subprocess.run") as mock_run:
        yield mock_run


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep host credentials and overrides out of every test."""
    for var in ("GITHUB_TOKEN", "GH_TOKEN", "OSOBA_POLL_INTERVAL", "LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("OSOBA_DAEMON_MODE", raising=False)


@pytest.fixture
def config():
    """Default configuration."""
    return Config()


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def fake_tmux():
    return FakeTmux()


@pytest.fixture
def fake_worktrees(temp_workspace_dir):
    return FakeWorktrees(temp_workspace_dir)


@pytest.fixture
def providers(fake_tmux, fake_worktrees):
    return Providers(
        tmux=fake_tmux, worktrees=fake_worktrees, executor=ClaudeExecutor(fake_tmux)
    )


@pytest.fixture
def dispatcher(config, temp_workspace_dir, providers):
    """ActionDispatcher wired to the in-memory providers."""
    return ActionDispatcher(
        config, REPO, temp_workspace_dir, provider_factory=lambda: providers
    )
