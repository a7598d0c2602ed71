"""
Claude CLI launcher for osoba.

Claude runs interactively inside a tmux pane so a human can attach and watch
or take over. This module renders the phase prompt, builds the shell command
and types it into the pane; it never waits for Claude to finish.
"""

import re
import shlex
from dataclasses import dataclass

from osoba.config import PhaseConfig
from osoba.logger import get_logger, mask_sensitive
from osoba.tmux import TmuxManager

logger = get_logger(__name__)

_TEMPLATE_VAR = re.compile(r"\{\{\s*([a-z][a-z0-9-]*)\s*\}\}")


class ClaudeRunnerError(Exception):
    """Raised when a phase cannot be launched."""

    pass


@dataclass
class TemplateVariables:
    """Values available to prompt templates."""

    issue_number: int
    issue_title: str = ""
    repo_name: str = ""

    def as_dict(self) -> dict[str, str]:
        return {
            "issue-number": str(self.issue_number),
            "issue-title": self.issue_title,
            "repo-name": self.repo_name,
        }


def render_prompt(template: str, variables: TemplateVariables) -> str:
    """Substitute {{issue-number}}, {{issue-title}} and {{repo-name}}.

    Unknown placeholders are left untouched.

    Args:
        template: Prompt template from the phase configuration
        variables: Values to substitute

    Returns:
        The rendered prompt
    """
    values = variables.as_dict()

    def replace(match: re.Match[str]) -> str:
        return values.get(match.group(1), match.group(0))

    return _TEMPLATE_VAR.sub(replace, template)


def build_command(phase: PhaseConfig, variables: TemplateVariables, workdir: str) -> str:
    """Build the shell line typed into the pane.

    Args:
        phase: Phase configuration (args and prompt template)
        variables: Template values
        workdir: Directory Claude should run in

    Returns:
        e.g. "cd <worktree> && claude --dangerously-skip-permissions '/osoba:plan 83'"

    Raises:
        ClaudeRunnerError: If the rendered prompt is empty
    """
    prompt = render_prompt(phase.prompt, variables)
    if not prompt.strip():
        raise ClaudeRunnerError(f"Empty prompt for issue #{variables.issue_number}")

    parts = ["claude", *phase.args, prompt]
    return f"cd {shlex.quote(workdir)} && {shlex.join(parts)}"


class ClaudeExecutor:
    """Launches Claude in a tmux window without waiting for it."""

    def __init__(self, tmux: TmuxManager) -> None:
        self.tmux = tmux

    def execute_in_window(
        self,
        session_name: str,
        window_name: str,
        phase_name: str,
        phase: PhaseConfig,
        variables: TemplateVariables,
        workdir: str,
    ) -> str:
        """Type the Claude command into the window's active pane.

        Args:
            session_name: tmux session
            window_name: Window created for this (issue, phase)
            phase_name: Phase name, for logging
            phase: Phase configuration
            variables: Template values
            workdir: Worktree path

        Returns:
            The command that was sent

        Raises:
            ClaudeRunnerError: If the prompt renders empty
            TmuxError: If the keys cannot be delivered
        """
        command = build_command(phase, variables, workdir)
        logger.info(
            f"Launching claude for {phase_name} of issue #{variables.issue_number} "
            f"in {session_name}:{window_name}"
        )
        logger.debug(f"Command: {mask_sensitive(command)}")
        self.tmux.send_keys(session_name, window_name, command, enter=True)
        return command
