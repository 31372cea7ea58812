# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional

from matrixci.model import RepositoryIdentity

# short hash, full hash, author, author email, committer, committer email, subject
SHOW_FORMAT = "format:%h%n%H%n%an%n%ae%n%cn%n%ce%n%s"
SHOW_FIELDS = ("commit", "sha", "author", "author_email", "committer", "committer_email", "subject")


class GitError(RuntimeError):
    """A git command failed or git is not installed."""


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        GitError: git is missing or exited non-zero
    """
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise GitError("git command not found. Please install Git.") from e

    if proc.returncode != 0:
        raise GitError(f"git {' '.join(args)} failed: {proc.stderr.strip()}")
    return proc.stdout.strip()


def clone(url: str, dest: str | Path, commit: Optional[str] = None) -> Path:
    """
    Clone `url` into `dest` and optionally check out `commit`.

    Without a commit only the tip of the default branch is fetched
    (--depth 1 --single-branch); a specific commit needs full history.
    """
    dest = Path(dest)
    args = ["clone", "-q"]
    if commit is None:
        args.extend(["--depth", "1", "--single-branch"])
    _git([*args, url, str(dest)])

    if commit is not None:
        _git(["checkout", "-q", commit], cwd=dest)
    return dest


def parse_show_output(url: str, out: str) -> RepositoryIdentity:
    """Turn the output of `git show --pretty=SHOW_FORMAT -s` into an identity."""
    lines: List[str] = out.split("\n")
    lines.extend([""] * (len(SHOW_FIELDS) - len(lines)))
    return RepositoryIdentity(url=url, **dict(zip(SHOW_FIELDS, lines)))


def commit_identity(url: str, cwd: str | Path) -> RepositoryIdentity:
    """
    Describe the checked-out commit: short/full hash, author, committer, subject.
    """
    return parse_show_output(url, _git(["show", f"--pretty={SHOW_FORMAT}", "-s"], cwd=cwd))

