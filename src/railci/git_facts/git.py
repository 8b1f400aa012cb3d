# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to fill in event defaults (branch, repository name) so the
# rest of the codebase never calls subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Name of the checked out branch.

    Returns "" on a detached HEAD, which no tracked-branch pattern matches.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return "" if branch == "HEAD" else branch


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """URL of the given remote."""
    return _git(["remote", "get-url", remote], cwd=cwd)


def repository_name(cwd: Optional[str] = None) -> str:
    """Short repository name from the origin URL, else the directory name."""
    try:
        url = get_remote_url("origin", cwd=cwd)
        return url.rstrip("/").split("/")[-1].replace(".git", "")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(cwd or ".").resolve().name
