"""Unit tests for the libtmux-backed TmuxManager."""

import re
from unittest.mock import MagicMock, patch

import pytest
from libtmux._internal.query_list import ObjectDoesNotExist
from libtmux.exc import LibTmuxException

from osoba.tmux import OSOBA_WINDOW_PATTERN, TmuxError, TmuxManager, issue_window_pattern


def make_window(name, panes=1):
    window = MagicMock()
    window.window_name = name
    window.panes = [
        MagicMock(
            pane_index=str(i), pane_title=f"pane{i}", pane_active="1" if i == 0 else "0",
            pane_current_path="/work",
        )
        for i in range(panes)
    ]
    window.active_pane = window.panes[0]
    return window


class FakeQuery(list):
    """List with the .get(**filters) lookup libtmux query lists provide."""

    def get(self, **filters):
        for item in self:
            if all(getattr(item, key) == value for key, value in filters.items()):
                return item
        raise ObjectDoesNotExist()


def make_manager(sessions=None):
    """TmuxManager over a mocked server holding {session_name: [window names]}."""
    server = MagicMock()
    session_objs = FakeQuery()
    for session_name, windows in (sessions or {}).items():
        session = MagicMock()
        session.session_name = session_name
        session.windows = FakeQuery(make_window(name) for name in windows)
        session_objs.append(session)
    server.sessions = session_objs
    server.has_session.side_effect = lambda name: any(
        s.session_name == name for s in session_objs
    )
    manager = TmuxManager()
    manager._server = server
    return manager, server


@pytest.mark.unit
class TestWindowPatterns:
    @pytest.mark.parametrize("name", ["83-plan", "1-implement", "issue-7", "12-revise"])
    def test_osoba_windows_match(self, name):
        assert re.search(OSOBA_WINDOW_PATTERN, name)

    @pytest.mark.parametrize("name", ["bash", "zsh", "plan-83", "83-"])
    def test_other_windows_do_not_match(self, name):
        assert not re.search(OSOBA_WINDOW_PATTERN, name)

    def test_issue_pattern_is_exact(self):
        manager, _ = make_manager({"s": ["8-plan", "83-plan", "83-review", "issue-83", "bash"]})

        assert manager.list_windows_for_issue("s", 83) == ["83-plan", "83-review", "issue-83"]
        assert issue_window_pattern(8) == r"^8-\w+$|^issue-8$"


@pytest.mark.unit
class TestServer:
    def test_socket_name_from_env(self, monkeypatch):
        monkeypatch.setenv("OSOBA_TMUX_SOCKET", "osoba-test")
        with patch("osoba.tmux.libtmux.Server") as mock_server:
            TmuxManager().server

        mock_server.assert_called_once_with(socket_name="osoba-test")

    def test_server_is_cached(self, monkeypatch):
        monkeypatch.delenv("OSOBA_TMUX_SOCKET", raising=False)
        with patch("osoba.tmux.libtmux.Server") as mock_server:
            manager = TmuxManager()
            assert manager.server is manager.server

        mock_server.assert_called_once_with()


@pytest.mark.unit
class TestSessions:
    def test_ensure_session_creates_missing(self):
        manager, server = make_manager()

        assert manager.ensure_session("osoba-app", "/repo") is True

        server.new_session.assert_called_once_with(
            session_name="osoba-app", attach=False, start_directory="/repo"
        )

    def test_ensure_session_keeps_existing(self):
        manager, server = make_manager({"osoba-app": []})

        assert manager.ensure_session("osoba-app") is False
        server.new_session.assert_not_called()

    def test_ensure_session_failure(self):
        manager, server = make_manager()
        server.new_session.side_effect = LibTmuxException("no server running")

        with pytest.raises(TmuxError, match="Failed to create tmux session"):
            manager.ensure_session("osoba-app")

    def test_ensure_session_lost_race(self):
        manager, server = make_manager()
        server.new_session.side_effect = LibTmuxException("duplicate session: osoba-app")
        server.has_session.side_effect = [False, True]

        assert manager.ensure_session("osoba-app") is False

    def test_kill_session(self):
        manager, server = make_manager({"osoba-app": []})

        assert manager.kill_session("osoba-app") is True
        server.sessions[0].kill.assert_called_once()
        assert manager.kill_session("missing") is False

    def test_session_exists_swallows_server_errors(self):
        manager, server = make_manager()
        server.has_session.side_effect = LibTmuxException("no server running")

        assert manager.session_exists("osoba-app") is False


@pytest.mark.unit
class TestWindows:
    def test_create_window_is_idempotent(self):
        manager, server = make_manager({"s": ["83-plan"]})
        session = server.sessions[0]

        window, created = manager.create_window("s", "83-plan", "/work")

        assert created is False
        assert window.window_name == "83-plan"
        session.new_window.assert_not_called()

    def test_create_window_new(self):
        manager, server = make_manager({"s": []})
        session = server.sessions[0]

        _, created = manager.create_window("s", "83-plan", "/work")

        assert created is True
        session.new_window.assert_called_once_with(
            window_name="83-plan", start_directory="/work", attach=False
        )

    def test_create_window_missing_session(self):
        manager, _ = make_manager()

        with pytest.raises(TmuxError, match="does not exist"):
            manager.create_window("s", "83-plan", "/work")

    def test_list_windows_missing_session(self):
        manager, _ = make_manager()
        assert manager.list_windows("s") == []

    def test_kill_windows_attempts_all(self):
        manager, server = make_manager({"s": ["1-plan", "2-plan", "3-plan"]})
        windows = server.sessions[0].windows
        windows[0].kill.side_effect = LibTmuxException("busy")

        with pytest.raises(TmuxError, match="1-plan: busy"):
            manager.kill_windows("s", ["1-plan", "2-plan", "missing"])

        windows[1].kill.assert_called_once()

    def test_kill_windows_returns_killed(self):
        manager, _ = make_manager({"s": ["1-plan", "2-plan"]})

        assert manager.kill_windows("s", ["2-plan", "9-plan"]) == ["2-plan"]


@pytest.mark.unit
class TestPanes:
    def test_send_keys_targets_active_pane(self):
        manager, server = make_manager({"s": ["83-plan"]})
        pane = server.sessions[0].windows[0].active_pane

        manager.send_keys("s", "83-plan", "claude 'go'")

        pane.send_keys.assert_called_once_with("claude 'go'", enter=True)

    def test_send_keys_missing_window(self):
        manager, _ = make_manager({"s": []})

        with pytest.raises(TmuxError, match="not found"):
            manager.send_keys("s", "83-plan", "ls")

    def test_list_panes(self):
        manager, server = make_manager({"s": ["1-plan", "2-plan"]})

        panes = manager.list_panes("s", "2-plan")

        assert len(panes) == 1
        assert panes[0].window_name == "2-plan"
        assert panes[0].active is True
        assert panes[0].current_path == "/work"
        assert len(manager.list_panes("s")) == 2

    def test_resize_panes_evenly(self):
        manager, server = make_manager({"s": ["1-plan"]})

        manager.resize_panes_evenly("s", "1-plan")

        server.sessions[0].windows[0].select_layout.assert_called_once_with("even-horizontal")

    def test_attach_command_inside_tmux(self, monkeypatch):
        monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
        assert TmuxManager().attach_command("s") == ["tmux", "switch-client", "-t", "s"]

    def test_attach_command_outside_tmux(self, monkeypatch):
        monkeypatch.delenv("TMUX", raising=False)
        assert TmuxManager().attach_command("s") == ["tmux", "attach-session", "-t", "s"]
