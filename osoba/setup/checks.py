"""Pre-flight checks for required CLI tools and the current repository."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from osoba.logger import get_logger

logger = get_logger(__name__)

# tool -> install hint
REQUIRED_TOOLS = {
    "tmux": "Install tmux: https://github.com/tmux/tmux/wiki/Installing",
    "git": "Install git: https://git-scm.com/downloads",
    "gh": "gh CLI not found. Install from: https://cli.github.com/",
}

# git@github.com:owner/repo.git, https://github.com/owner/repo, ssh://git@github.com/owner/repo
_REMOTE_RE = re.compile(
    r"^(?:git@|ssh://git@|https?://(?:[^@/]+@)?)github\.com[:/]"
    r"(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)


class SetupError(Exception):
    """Raised when setup validation fails."""

    pass


@dataclass
class ClaudeInfo:
    """Information about the Claude CLI installation."""

    path: str
    version: str


@dataclass
class RepoInfo:
    """The repository osoba serves.

    Attributes:
        root: Top-level directory of the local checkout
        owner: GitHub owner (user or organization)
        name: GitHub repository name
    """

    root: Path
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


def check_claude_installation() -> ClaudeInfo:
    """Check the Claude CLI is on PATH and report its version.

    Raises:
        SetupError: If claude is not found or its version check fails
    """
    claude_path = shutil.which("claude")
    if claude_path is None:
        raise SetupError(
            "claude CLI not found. Install from: "
            "https://docs.anthropic.com/en/docs/claude-code/overview"
        )

    try:
        result = subprocess.run(
            ["claude", "--version"],
            capture_output=True,
            check=True,
            text=True,
        )
    except subprocess.CalledProcessError as e:
        raise SetupError(f"claude CLI error: {e.stderr if e.stderr else str(e)}") from e

    version_output = result.stdout.strip()
    version_match = re.search(r"v?(\d+\.\d+\.\d+)", version_output)
    version = version_match.group(1) if version_match else version_output
    return ClaudeInfo(path=claude_path, version=version)


def check_required_tools() -> ClaudeInfo:
    """Check that tmux, git, gh and claude are available.

    Returns:
        ClaudeInfo with details about the Claude CLI installation

    Raises:
        SetupError: Listing every missing tool with installation instructions
    """
    errors = []
    for tool, hint in REQUIRED_TOOLS.items():
        if shutil.which(tool) is None:
            errors.append(hint)

    try:
        claude_info = check_claude_installation()
    except SetupError as e:
        errors.append(str(e))
        claude_info = None

    if errors or claude_info is None:
        raise SetupError("\n".join(errors))

    return claude_info


def check_gh_auth() -> None:
    """Check gh has credentials, unless a token is supplied via the environment.

    Raises:
        SetupError: If gh is not authenticated
    """
    if os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN"):
        return

    try:
        subprocess.run(["gh", "auth", "status"], capture_output=True, check=True, text=True)
    except FileNotFoundError as e:
        raise SetupError("gh CLI not found. Install from: https://cli.github.com/") from e
    except subprocess.CalledProcessError as e:
        raise SetupError(
            "gh is not authenticated. Run 'gh auth login' or set GITHUB_TOKEN."
        ) from e


def find_repo_root(directory: Path | None = None) -> Path:
    """Return the top-level directory of the git repository containing directory.

    Raises:
        SetupError: If directory is not inside a git repository
    """
    cwd = directory or Path.cwd()
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=cwd,
            capture_output=True,
            check=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise SetupError("git not found. Install git: https://git-scm.com/downloads") from e
    except subprocess.CalledProcessError as e:
        raise SetupError(f"'{cwd}' is not inside a git repository") from e
    return Path(result.stdout.strip()).resolve()


def parse_github_remote(url: str) -> tuple[str, str]:
    """Extract (owner, repo) from a GitHub remote URL.

    Raises:
        SetupError: If the URL does not point at github.com
    """
    match = _REMOTE_RE.match(url.strip())
    if match is None:
        raise SetupError(f"Remote '{url}' is not a GitHub repository URL")
    return match.group("owner"), match.group("repo")


def get_github_repo(repo_root: Path | None = None) -> RepoInfo:
    """Identify the GitHub repository behind the local checkout's origin remote.

    Raises:
        SetupError: If there is no git repository or no GitHub origin remote
    """
    root = find_repo_root(repo_root)
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=root,
            capture_output=True,
            check=True,
            text=True,
        )
    except subprocess.CalledProcessError as e:
        raise SetupError(f"No 'origin' remote configured in {root}") from e

    owner, name = parse_github_remote(result.stdout)
    return RepoInfo(root=root, owner=owner, name=name)


def run_preflight_checks(directory: Path | None = None) -> RepoInfo:
    """Run every check the daemon needs before starting.

    Returns:
        RepoInfo for the repository in directory

    Raises:
        SetupError: On the first failing check
    """
    claude_info = check_required_tools()
    logger.debug(f"claude {claude_info.version} at {claude_info.path}")
    check_gh_auth()
    repo = get_github_repo(directory)
    logger.debug(f"Serving {repo.full_name} from {repo.root}")
    return repo
