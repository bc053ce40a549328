"""Shell, git and gh utilities.

Thin wrappers around subprocess for the external tools librarian drives
(git, gh, docker), plus terminal output helpers.
"""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path


def git(*args: str, cwd: Path | str | None = None, check: bool = True) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "status", "--porcelain").
        cwd: Working directory for the command. Defaults to the current one.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., tag lookup).

    Returns:
        Stripped stdout from the git command.

    Raises:
        subprocess.CalledProcessError: If check is True and git fails.
    """
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=check
    )
    return result.stdout.strip()


def gh(*args: str, token: str | None = None, check: bool = True) -> str:
    """Run a GitHub CLI command and return stdout.

    Args:
        *args: Arguments to pass to gh (e.g., "pr", "view", "12").
        token: GitHub token exported to gh as GH_TOKEN. When None, gh uses
               whatever authentication it already has.
        check: If True (default), raise on non-zero exit.
    """
    env = None
    if token:
        env = {**os.environ, "GH_TOKEN": token}
    result = subprocess.run(
        ["gh", *args], capture_output=True, text=True, check=check, env=env
    )
    return result.stdout.strip()


def run(*args: str, check: bool = True) -> subprocess.CompletedProcess[bytes]:
    """Run an arbitrary command, streaming its output to the terminal.

    Used for container invocations so that users can follow generator and
    build progress.

    Args:
        *args: Command and arguments (e.g., "docker", "run", ...).
        check: If True (default), raise on non-zero exit.

    Returns:
        CompletedProcess with returncode for checking success.
    """
    return subprocess.run(args, check=check)


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of a command in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def warn(msg: str) -> None:
    """Print a warning to stderr without interrupting the run."""
    print(f"Warning: {msg}", file=sys.stderr)
