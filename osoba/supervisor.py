"""Daemon supervisor.

Detaches osoba into the background and tracks the running process with one
record file per repository. The record is the single-daemon guard. It is
created atomically and start refuses while a live record exists; dead
records are removed lazily by whoever notices them.
"""

import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from osoba.health import utcnow
from osoba.logger import get_logger
from osoba.naming import sanitize_identifier

logger = get_logger(__name__)

DAEMON_ENV_MARKER = "OSOBA_DAEMON_MODE"
DEFAULT_DATA_DIR = Path("~/.local/share/osoba")
RECORD_FILE_MODE = 0o600


class SupervisorError(Exception):
    """Base class for daemon lifecycle errors."""

    pass


class AlreadyRunningError(SupervisorError):
    """Raised when starting while a live daemon already serves the repository."""

    pass


class NotRunningError(SupervisorError):
    """Raised when an operation needs a running daemon and there is none."""

    pass


@dataclass(frozen=True)
class DaemonRecord:
    """Contents of the record file: pid, start time, repository path."""

    pid: int
    start_time: datetime
    repo_path: str

    def format(self) -> str:
        return f"{self.pid}\n{self.start_time.isoformat(timespec='seconds')}\n{self.repo_path}"

    @classmethod
    def parse(cls, text: str) -> "DaemonRecord":
        """Parse record file contents.

        Raises:
            ValueError: If the contents are malformed
        """
        lines = text.strip().splitlines()
        if len(lines) < 3:
            raise ValueError(f"expected 3 lines, got {len(lines)}")
        return cls(
            pid=int(lines[0]),
            start_time=datetime.fromisoformat(lines[1].strip()),
            repo_path=lines[2].strip(),
        )


@dataclass(frozen=True)
class DaemonStatus:
    """Result of a status probe."""

    running: bool
    record: DaemonRecord | None = None


def data_dir(base_dir: str | Path | None = None) -> Path:
    return Path(base_dir or DEFAULT_DATA_DIR).expanduser()


def pid_file_path(repo_identifier: str, base_dir: str | Path | None = None) -> Path:
    """Record file for a repository: {data}/run/{sanitized}.pid"""
    return data_dir(base_dir) / "run" / f"{sanitize_identifier(repo_identifier)}.pid"


def log_dir_for(repo_identifier: str, base_dir: str | Path | None = None) -> Path:
    """Log directory for a repository: {data}/logs/{sanitized}"""
    return data_dir(base_dir) / "logs" / sanitize_identifier(repo_identifier)


def default_log_file(repo_identifier: str, base_dir: str | Path | None = None) -> Path:
    return log_dir_for(repo_identifier, base_dir) / "osoba.log"


def is_daemon_child() -> bool:
    """Whether this process was spawned by DaemonSupervisor.start."""
    return os.environ.get(DAEMON_ENV_MARKER) == "1"


def process_alive(pid: int) -> bool:
    """Probe a pid with signal 0. Any error counts as not running."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


class DaemonSupervisor:
    """Start, stop and probe the background daemon for one repository."""

    STOP_POLL_ATTEMPTS = 100
    STOP_POLL_INTERVAL = 0.1
    ADOPT_POLL_ATTEMPTS = 50
    STARTUP_GRACE = 1.0

    def __init__(
        self,
        repo_identifier: str,
        repo_path: str | Path,
        base_dir: str | Path | None = None,
        alive: Callable[[int], bool] = process_alive,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the supervisor.

        Args:
            repo_identifier: Repository identity used to name the record file
            repo_path: Local checkout the daemon serves
            base_dir: Data directory; defaults to ~/.local/share/osoba
            alive: Liveness probe for a pid
            sleep: Sleep used while waiting for the daemon to exit
        """
        self.repo_identifier = repo_identifier
        self.repo_path = str(repo_path)
        self.pid_file = pid_file_path(repo_identifier, base_dir)
        self._alive = alive
        self._sleep = sleep

    def read_record(self) -> DaemonRecord | None:
        """Read the record file. Missing or unreadable records read as None."""
        try:
            text = self.pid_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read {self.pid_file}: {e}")
            return None

        try:
            return DaemonRecord.parse(text)
        except ValueError as e:
            logger.warning(f"Ignoring malformed daemon record {self.pid_file}: {e}")
            return None

    def _write_atomically(self, record: DaemonRecord, exclusive: bool) -> None:
        """Write the record through a private temp file so readers never see it partial.

        Raises:
            FileExistsError: If exclusive and a record already exists
        """
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.pid_file.with_name(f"{self.pid_file.name}.{os.getpid()}.tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, RECORD_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(record.format())
        os.chmod(tmp, RECORD_FILE_MODE)
        try:
            if exclusive:
                os.link(tmp, self.pid_file)
            else:
                os.replace(tmp, self.pid_file)
        finally:
            tmp.unlink(missing_ok=True)

    def write_record(self, pid: int | None = None) -> DaemonRecord:
        """Write (or overwrite) the record for this process (or pid) with mode 0600."""
        record = DaemonRecord(
            pid=pid or os.getpid(), start_time=utcnow(), repo_path=self.repo_path
        )
        self._write_atomically(record, exclusive=False)
        logger.debug(f"Wrote daemon record {self.pid_file} (pid {record.pid})")
        return record

    def claim_record(self, pid: int | None = None) -> DaemonRecord:
        """Create the record only if no live daemon holds it.

        Creation is atomic, so of two concurrent claimers exactly one wins.
        A stale record is removed and the claim retried once.

        Raises:
            AlreadyRunningError: If a live daemon already serves the repository
        """
        record = DaemonRecord(
            pid=pid or os.getpid(), start_time=utcnow(), repo_path=self.repo_path
        )
        for _ in range(2):
            try:
                self._write_atomically(record, exclusive=True)
            except FileExistsError as e:
                status = self.status()
                if status.running and status.record is not None:
                    raise AlreadyRunningError(self._already_running(status.record)) from e
                continue
            logger.debug(f"Claimed daemon record {self.pid_file} (pid {record.pid})")
            return record
        raise AlreadyRunningError(f"Another osoba start is claiming {self.pid_file}")

    def _already_running(self, record: DaemonRecord) -> str:
        return (
            f"osoba is already running for {self.repo_identifier} "
            f"(pid {record.pid}, started {record.start_time.isoformat()})"
        )

    def remove_record(self) -> None:
        try:
            self.pid_file.unlink()
            logger.debug(f"Removed daemon record {self.pid_file}")
        except FileNotFoundError:
            pass

    def status(self) -> DaemonStatus:
        """Probe the daemon, removing the record if its process is gone."""
        record = self.read_record()
        if record is None:
            if self.pid_file.exists():
                self.remove_record()
            return DaemonStatus(running=False)

        if not self._alive(record.pid):
            logger.info(f"Removing stale daemon record for pid {record.pid}")
            self.remove_record()
            return DaemonStatus(running=False, record=record)

        return DaemonStatus(running=True, record=record)

    def is_running(self) -> bool:
        return self.status().running

    def require_running(self) -> DaemonRecord:
        """Return the live record.

        Raises:
            NotRunningError: If no daemon is running for this repository
        """
        status = self.status()
        if not status.running or status.record is None:
            raise NotRunningError(
                f"osoba is not running for {self.repo_identifier}. Run 'osoba start' first."
            )
        return status.record

    def start(self, args: list[str] | None = None) -> int | None:
        """Start the daemon.

        The parent claims the record, re-executes osoba with the marker in a
        new session, hands the record over to the child pid and returns it.
        The spawned child (marker set) waits until the record names it.

        Args:
            args: CLI arguments for the child; defaults to sys.argv[1:]

        Returns:
            The child pid in the parent, None in the child

        Raises:
            AlreadyRunningError: If a live daemon already serves the repository
            SupervisorError: If the child cannot be spawned or exits during startup
        """
        if is_daemon_child():
            self._adopt_record()
            return None

        # Held with our own pid until the child exists
        self.claim_record()

        env = dict(os.environ)
        env[DAEMON_ENV_MARKER] = "1"
        command = [sys.executable, "-m", "osoba", *(sys.argv[1:] if args is None else args)]
        try:
            process = subprocess.Popen(
                command,
                cwd=self.repo_path,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            self.remove_record()
            raise SupervisorError(f"Failed to start daemon: {e}") from e

        self.write_record(process.pid)

        self._sleep(self.STARTUP_GRACE)
        exit_code = process.poll()
        if exit_code is not None:
            self.remove_record()
            raise SupervisorError(
                f"osoba daemon exited during startup with code {exit_code}; check the log file"
            )

        logger.info(f"Started osoba daemon (pid {process.pid})")
        return process.pid

    def _adopt_record(self) -> DaemonRecord:
        """Wait for the parent to hand the record over to this process.

        Raises:
            AlreadyRunningError: If the record belongs to another live daemon
            SupervisorError: If the record never names this process
        """
        own_pid = os.getpid()
        for _ in range(self.ADOPT_POLL_ATTEMPTS):
            record = self.read_record()
            if record is not None and record.pid == own_pid:
                return record
            self._sleep(self.STOP_POLL_INTERVAL)

        status = self.status()
        if status.running and status.record is not None:
            raise AlreadyRunningError(self._already_running(status.record))
        raise SupervisorError(f"Daemon record {self.pid_file} was not handed over to pid {own_pid}")

    def stop(self) -> bool:
        """Stop the daemon: SIGTERM, wait up to 10s, then SIGKILL.

        Returns:
            True if a running daemon was signalled, False if none was running

        Raises:
            SupervisorError: If the process cannot be signalled
        """
        status = self.status()
        if not status.running or status.record is None:
            logger.info(f"osoba is not running for {self.repo_identifier}")
            return False

        pid = status.record.pid
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self.remove_record()
            return False
        except OSError as e:
            raise SupervisorError(f"Failed to send SIGTERM to pid {pid}: {e}") from e

        for _ in range(self.STOP_POLL_ATTEMPTS):
            if not self._alive(pid):
                logger.info(f"osoba daemon (pid {pid}) stopped")
                self.remove_record()
                return True
            self._sleep(self.STOP_POLL_INTERVAL)

        logger.warning(f"osoba daemon (pid {pid}) did not exit after SIGTERM, sending SIGKILL")
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            raise SupervisorError(f"Failed to send SIGKILL to pid {pid}: {e}") from e

        self.remove_record()
        return True
