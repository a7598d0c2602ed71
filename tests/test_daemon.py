"""Tests for the Daemon orchestrator."""

import signal
from unittest.mock import MagicMock, patch

import pytest

from osoba.daemon import Daemon, run_daemon
from osoba.labels import Labels
from osoba.setup import RepoInfo
from osoba.tmux import TmuxError


@pytest.fixture
def repo_info(temp_workspace_dir):
    return RepoInfo(root=temp_workspace_dir, owner="douhashi", name="osoba")


@pytest.fixture
def daemon(config, repo_info, fake_github, providers):
    return Daemon(config, repo_info, client=fake_github, provider_factory=lambda: providers)


@pytest.mark.unit
class TestDaemonInit:
    def test_components_share_client_and_dispatcher(self, daemon, fake_github):
        assert daemon.repo == "douhashi/osoba"
        assert daemon.session_name == "osoba-osoba"
        assert daemon.issue_watcher.client is fake_github
        assert daemon.pr_watcher.client is fake_github
        assert daemon.issue_watcher.dispatcher is daemon.pr_watcher.dispatcher
        assert daemon.pr_watcher.cleanup is daemon.cleanup


@pytest.mark.unit
class TestPrepare:
    def test_bootstraps_labels_and_session(self, daemon, fake_github, fake_tmux):
        daemon.prepare()

        assert fake_github.created_labels == ["douhashi/osoba"]
        assert fake_tmux.session_exists("osoba-osoba")

    def test_label_failure_is_not_fatal(self, daemon, fake_github, fake_tmux):
        fake_github.ensure_labels_exist = MagicMock(side_effect=RuntimeError("HTTP 403"))

        daemon.prepare()

        assert fake_tmux.session_exists("osoba-osoba")

    def test_recover_session_only_when_missing(self, daemon, fake_tmux):
        assert daemon.recover_session() is True
        assert daemon.recover_session() is False

    def test_recover_session_tmux_failure(self, daemon, fake_tmux):
        fake_tmux.ensure_session = MagicMock(side_effect=TmuxError("no server"))

        assert daemon.recover_session() is False


@pytest.mark.unit
class TestLifecycle:
    def test_signal_handler_sets_shutdown(self, daemon):
        daemon._signal_handler(signal.SIGTERM, None)

        assert daemon._shutdown_event.is_set()

    def test_install_signal_handlers(self, daemon):
        with patch("signal.signal") as mock_signal:
            daemon.install_signal_handlers()

        registered = {c.args[0] for c in mock_signal.call_args_list}
        assert registered == {signal.SIGINT, signal.SIGTERM}

    def test_start_and_stop_threads(self, daemon, config):
        config.github.poll_interval = 1
        daemon.start()
        threads = list(daemon._threads)

        assert {t.name for t in threads} == {"issue-watcher", "pr-watcher"}

        daemon.stop()

        assert all(not t.is_alive() for t in threads)
        assert daemon._threads == []

    @pytest.mark.integration
    def test_run_processes_issue_until_shutdown(self, daemon, fake_github, fake_tmux):
        fake_github.add_issue(83, {Labels.NEEDS_PLAN})
        daemon.HEALTH_CHECK_INTERVAL = 0.01

        def stop_after_dispatch():
            if fake_tmux.sent:
                daemon._shutdown_event.set()

        with patch.object(daemon, "_log_health", side_effect=stop_after_dispatch):
            daemon.run()

        assert fake_github.labels[83] == {Labels.PLANNING}
        assert fake_tmux.list_windows("osoba-osoba") == ["83-plan"]

    def test_health_reports_both_watchers(self, daemon):
        reports = daemon.health()

        assert set(reports) == {"issue-watcher", "pr-watcher"}
        assert not reports["issue-watcher"].healthy


@pytest.mark.unit
class TestRunDaemon:
    def test_sets_up_logging_and_runs(self, config, repo_info, tmp_path):
        config.log.file = str(tmp_path / "osoba.log")
        with (
            patch("osoba.daemon.setup_logging") as mock_logging,
            patch("osoba.daemon.get_git_version", return_value="abc1234"),
            patch("osoba.daemon.init_telemetry") as mock_telemetry,
            patch("osoba.daemon.Daemon") as mock_daemon,
        ):
            run_daemon(config, repo_info, daemon_mode=True)

        assert mock_logging.call_args[1]["log_file"] == config.log.file
        assert mock_logging.call_args[1]["daemon_mode"] is True
        mock_telemetry.assert_not_called()
        mock_daemon.return_value.install_signal_handlers.assert_called_once()
        mock_daemon.return_value.run.assert_called_once()

    def test_telemetry_when_endpoint_configured(self, config, repo_info):
        config.otel_endpoint = "http://localhost:4318"
        with (
            patch("osoba.daemon.setup_logging"),
            patch("osoba.daemon.get_git_version", return_value="abc1234"),
            patch("osoba.daemon.init_telemetry") as mock_telemetry,
            patch("osoba.daemon.Daemon"),
        ):
            run_daemon(config, repo_info)

        mock_telemetry.assert_called_once_with(
            "http://localhost:4318", "osoba", service_version="abc1234"
        )
