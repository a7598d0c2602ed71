"""Orchestrator that runs both watchers for one repository.

This module ties the components together:
- Bootstraps the status labels and recovers the tmux session
- Runs the issue watcher and the PR watcher on their own threads
- Shares one shutdown event between both loops and the signal handlers
- Periodically logs watcher health
"""

import signal
import threading
from pathlib import Path

from osoba.cleanup import CleanupManager
from osoba.config import Config
from osoba.dispatcher import ActionDispatcher, ProviderFactory
from osoba.github_client import GhClient
from osoba.health import HealthReport
from osoba.interfaces import GitHubClient
from osoba.issue_watcher import IssueWatcher
from osoba.logger import get_logger, setup_logging
from osoba.pr_watcher import PRWatcher
from osoba.setup import RepoInfo
from osoba.supervisor import default_log_file
from osoba.telemetry import get_git_version, init_telemetry
from osoba.tmux import TmuxError
from osoba.transitions import LabelTransitionEngine

logger = get_logger(__name__)


class Daemon:
    """Runs the watcher loops until a shutdown signal arrives."""

    HEALTH_CHECK_INTERVAL = 60
    JOIN_TIMEOUT = 30

    def __init__(
        self,
        config: Config,
        repo: RepoInfo,
        client: GitHubClient | None = None,
        provider_factory: ProviderFactory | None = None,
    ) -> None:
        """Initialize the daemon and its components.

        Args:
            config: Application configuration
            repo: Repository being served
            client: GitHub client; defaults to the gh CLI client
            provider_factory: tmux/worktree/claude providers; defaults to the real ones
        """
        self.config = config
        self.repo = repo.full_name
        self.repo_root = Path(repo.root)
        self.client = client or GhClient(token=config.github.token)

        self.engine = LabelTransitionEngine(self.client, self.repo)
        self.dispatcher = ActionDispatcher(
            config, self.repo, self.repo_root, provider_factory=provider_factory
        )
        providers = self.dispatcher.providers
        self.cleanup = CleanupManager(
            providers.tmux, providers.worktrees, self.dispatcher.session_name
        )
        self.issue_watcher = IssueWatcher(
            self.client, self.repo, config, self.engine, self.dispatcher
        )
        self.pr_watcher = PRWatcher(
            self.client, self.repo, config, self.engine, self.dispatcher, cleanup=self.cleanup
        )

        self._shutdown_event = threading.Event()
        self._threads: list[threading.Thread] = []

        logger.debug("Daemon initialization complete")

    @property
    def session_name(self) -> str:
        return self.dispatcher.session_name

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to a graceful shutdown. Main thread only."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum: int, _frame: object) -> None:
        """Handle shutdown signals gracefully.

        Args:
            signum: Signal number
            _frame: Current stack frame
        """
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self._shutdown_event.set()

    def prepare(self) -> None:
        """Make sure labels and the tmux session exist before polling starts."""
        try:
            created = self.client.ensure_labels_exist(self.repo)
            if created:
                logger.info(f"Created {len(created)} missing label(s) in {self.repo}")
        except Exception as e:
            logger.warning(f"Failed to ensure labels exist in {self.repo}: {e}")

        self.recover_session()

    def recover_session(self) -> bool:
        """Recreate the tmux session if it is missing.

        Returns:
            True if the session had to be created
        """
        tmux = self.dispatcher.providers.tmux
        try:
            created = tmux.ensure_session(self.session_name, start_directory=str(self.repo_root))
        except TmuxError as e:
            logger.error(f"Failed to prepare tmux session '{self.session_name}': {e}")
            return False
        if created:
            logger.info(f"Recovered tmux session '{self.session_name}'")
        return created

    def start(self) -> None:
        """Start both watcher threads."""
        self._shutdown_event.clear()
        self._threads = [
            threading.Thread(
                target=watcher.run,
                args=(self._shutdown_event,),
                name=watcher.NAME,
                daemon=True,
            )
            for watcher in (self.issue_watcher, self.pr_watcher)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Watching {self.repo} (session '{self.session_name}')")

    def health(self) -> dict[str, HealthReport]:
        return {
            IssueWatcher.NAME: self.issue_watcher.check_health(),
            PRWatcher.NAME: self.pr_watcher.check_health(),
        }

    def _log_health(self) -> None:
        for name, report in self.health().items():
            if report.healthy:
                logger.debug(f"{name}: {report.message}")
            else:
                logger.warning(f"{name} unhealthy: {report.message}")

        metrics = self.pr_watcher.metrics.snapshot()
        if metrics.total_attempts:
            logger.debug(
                f"Auto-merge: {metrics.successful_merges}/{metrics.total_attempts} merged "
                f"({metrics.success_rate():.0f}%), top failures: {metrics.top_failure_reasons()}"
            )

    def run(self) -> None:
        """Prepare, start both watchers and block until shutdown is requested."""
        self.prepare()
        self.start()
        try:
            while not self._shutdown_event.wait(timeout=self.HEALTH_CHECK_INTERVAL):
                self._log_health()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.stop()

    def stop(self) -> None:
        """Signal both watchers and wait for in-flight ticks to finish."""
        logger.debug("Stopping daemon")
        self._shutdown_event.set()
        for thread in self._threads:
            thread.join(timeout=self.JOIN_TIMEOUT)
            if thread.is_alive():
                logger.warning(f"Thread '{thread.name}' did not stop within {self.JOIN_TIMEOUT}s")
        self._threads = []
        logger.debug("Daemon stopped")


def run_daemon(config: Config, repo: RepoInfo, daemon_mode: bool = False) -> None:
    """Set up logging and telemetry, then run the daemon in this process.

    Args:
        config: Application configuration
        repo: Repository being served
        daemon_mode: Log to the file only (detached background process)
    """
    log_file = config.log.file or str(default_log_file(repo.full_name))
    setup_logging(
        log_file=log_file,
        log_size=config.log.size,
        log_backups=config.log.backups,
        daemon_mode=daemon_mode,
        level=config.log.level,
    )
    logger.info("=== osoba Daemon Starting ===")
    logger.info(f"Logging to file: {log_file}")

    git_version = get_git_version()
    logger.info(f"osoba version: {git_version}")

    if config.otel_endpoint:
        init_telemetry(config.otel_endpoint, config.otel_service_name, service_version=git_version)

    daemon = Daemon(config, repo)
    daemon.install_signal_handlers()
    daemon.run()

    logger.info("=== osoba Daemon Stopped ===")
