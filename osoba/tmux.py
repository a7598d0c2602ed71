"""tmux session management via libtmux.

Each repository gets one session (osoba-{repo}); each (issue, phase) pair
gets one window inside it. Window names are the lookup key, so creating a
window that already exists returns the existing one instead of a duplicate.
"""

import os
import re
from dataclasses import dataclass

import libtmux
from libtmux._internal.query_list import ObjectDoesNotExist
from libtmux.exc import LibTmuxException

from osoba.logger import get_logger

logger = get_logger(__name__)

# Windows osoba creates: "83-plan" style, plus the older "issue-83" style
OSOBA_WINDOW_PATTERN = r"^\d+-\w+$|^issue-\d+$"

EVEN_LAYOUT = "even-horizontal"


class TmuxError(Exception):
    """Raised when a tmux operation fails."""

    pass


@dataclass
class PaneInfo:
    """A pane as seen by list_panes."""

    window_name: str
    index: int
    title: str
    active: bool
    current_path: str = ""


def issue_window_pattern(issue_number: int) -> str:
    """Regex matching every window osoba creates for one issue."""
    return rf"^{issue_number}-\w+$|^issue-{issue_number}$"


class TmuxManager:
    """Thin wrapper over libtmux with idempotent create semantics."""

    def __init__(self, socket_name: str | None = None) -> None:
        """Initialize with an optional socket name for test isolation.

        Args:
            socket_name: tmux socket (-L); falls back to OSOBA_TMUX_SOCKET
        """
        self._socket_name = socket_name or os.environ.get("OSOBA_TMUX_SOCKET")
        self._server: libtmux.Server | None = None

    @property
    def server(self) -> libtmux.Server:
        """Lazy-load the tmux server connection."""
        if self._server is None:
            if self._socket_name:
                self._server = libtmux.Server(socket_name=self._socket_name)
            else:
                self._server = libtmux.Server()
        return self._server

    # Sessions

    def _get_session(self, name: str) -> libtmux.Session | None:
        try:
            return self.server.sessions.get(session_name=name)
        except (LibTmuxException, ObjectDoesNotExist):
            return None

    def _require_session(self, name: str) -> libtmux.Session:
        session = self._get_session(name)
        if session is None:
            raise TmuxError(f"tmux session '{name}' does not exist")
        return session

    def session_exists(self, name: str) -> bool:
        """Whether a session with this name is running."""
        try:
            return self.server.has_session(name)
        except LibTmuxException:
            return False

    def ensure_session(self, name: str, start_directory: str | None = None) -> bool:
        """Create the session unless it already exists.

        Args:
            name: Session name
            start_directory: Working directory for the session's first window

        Returns:
            True if the session was created, False if it already existed

        Raises:
            TmuxError: If tmux refuses to create the session
        """
        if self.session_exists(name):
            logger.debug(f"tmux session '{name}' already exists")
            return False

        kwargs = {"session_name": name, "attach": False}
        if start_directory:
            kwargs["start_directory"] = start_directory
        try:
            self.server.new_session(**kwargs)
        except LibTmuxException as e:
            # Lost a race with another creator
            if self.session_exists(name):
                return False
            raise TmuxError(f"Failed to create tmux session '{name}': {e}") from e
        logger.info(f"Creating tmux session '{name}'")
        return True

    def kill_session(self, name: str) -> bool:
        """Kill a session.

        Returns:
            True if a session was killed, False if none existed
        """
        session = self._get_session(name)
        if session is None:
            return False
        try:
            session.kill()
        except LibTmuxException as e:
            raise TmuxError(f"Failed to kill tmux session '{name}': {e}") from e
        logger.info(f"Killed tmux session '{name}'")
        return True

    # Windows

    def _get_window(self, session_name: str, window_name: str) -> libtmux.Window | None:
        session = self._get_session(session_name)
        if session is None:
            return None
        try:
            return session.windows.get(window_name=window_name)
        except (LibTmuxException, ObjectDoesNotExist):
            return None

    def window_exists(self, session_name: str, window_name: str) -> bool:
        """Whether the session has a window with this name."""
        return self._get_window(session_name, window_name) is not None

    def create_window(
        self, session_name: str, window_name: str, workdir: str
    ) -> tuple[libtmux.Window, bool]:
        """Return the named window, creating it if needed.

        Args:
            session_name: Session to create the window in
            window_name: Window name, used as the identity of the window
            workdir: Start directory for a newly created window

        Returns:
            (window, created) where created is False when the window pre-existed

        Raises:
            TmuxError: If the session is missing or tmux refuses to create the window
        """
        existing = self._get_window(session_name, window_name)
        if existing is not None:
            logger.debug(f"Window '{window_name}' already exists in '{session_name}'")
            return existing, False

        session = self._require_session(session_name)
        try:
            window = session.new_window(
                window_name=window_name, start_directory=workdir, attach=False
            )
        except LibTmuxException as e:
            raise TmuxError(f"Failed to create window '{window_name}': {e}") from e
        logger.info(f"Creating window '{window_name}' in '{session_name}' at {workdir}")
        return window, True

    def list_windows(self, session_name: str) -> list[str]:
        """Names of every window in the session (empty if the session is missing)."""
        session = self._get_session(session_name)
        if session is None:
            return []
        return [window.window_name or "" for window in session.windows]

    def list_windows_by_pattern(self, session_name: str, pattern: str) -> list[str]:
        """Names of windows whose name matches a regex."""
        regex = re.compile(pattern)
        return [name for name in self.list_windows(session_name) if regex.search(name)]

    def list_windows_for_issue(self, session_name: str, issue_number: int) -> list[str]:
        """Names of every window belonging to one issue."""
        return self.list_windows_by_pattern(session_name, issue_window_pattern(issue_number))

    def kill_windows(self, session_name: str, window_names: list[str]) -> list[str]:
        """Kill the named windows.

        Every window is attempted even if one fails.

        Returns:
            Names of the windows that were killed

        Raises:
            TmuxError: Listing every window that could not be killed
        """
        killed: list[str] = []
        failures: list[str] = []
        for name in window_names:
            window = self._get_window(session_name, name)
            if window is None:
                logger.debug(f"Window '{name}' not found in '{session_name}'")
                continue
            try:
                window.kill()
                killed.append(name)
                logger.info(f"Killed window '{name}'")
            except LibTmuxException as e:
                failures.append(f"{name}: {e}")

        if failures:
            raise TmuxError("Failed to kill windows: " + "; ".join(failures))
        return killed

    # Panes

    def send_keys(
        self, session_name: str, window_name: str, keys: str, enter: bool = True
    ) -> None:
        """Type keys into the active pane of a window.

        Raises:
            TmuxError: If the window is missing or tmux rejects the keys
        """
        window = self._get_window(session_name, window_name)
        if window is None:
            raise TmuxError(f"Window '{window_name}' not found in session '{session_name}'")
        try:
            pane = window.active_pane or window.panes[0]
            pane.send_keys(keys, enter=enter)
        except (LibTmuxException, IndexError) as e:
            raise TmuxError(f"Failed to send keys to '{window_name}': {e}") from e

    def list_panes(self, session_name: str, window_name: str | None = None) -> list[PaneInfo]:
        """List panes in one window, or in the whole session."""
        session = self._get_session(session_name)
        if session is None:
            return []

        panes: list[PaneInfo] = []
        for window in session.windows:
            if window_name is not None and window.window_name != window_name:
                continue
            for pane in window.panes:
                panes.append(
                    PaneInfo(
                        window_name=window.window_name or "",
                        index=int(pane.pane_index or 0),
                        title=pane.pane_title or "",
                        active=pane.pane_active == "1",
                        current_path=pane.pane_current_path or "",
                    )
                )
        return panes

    def resize_panes_evenly(self, session_name: str, window_name: str) -> None:
        """Apply an even layout to one window.

        Raises:
            TmuxError: If the window is missing or tmux rejects the layout
        """
        window = self._get_window(session_name, window_name)
        if window is None:
            raise TmuxError(f"Window '{window_name}' not found in session '{session_name}'")
        try:
            window.select_layout(EVEN_LAYOUT)
        except LibTmuxException as e:
            raise TmuxError(f"Failed to resize panes in '{window_name}': {e}") from e
        logger.debug(f"Resized panes evenly in '{window_name}'")

    def attach_command(self, session_name: str) -> list[str]:
        """Command that attaches the current terminal to the session."""
        if os.environ.get("TMUX"):
            return ["tmux", "switch-client", "-t", session_name]
        return ["tmux", "attach-session", "-t", session_name]
