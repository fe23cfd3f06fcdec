"""Resolve the source revision a deployment was made from.

The ``git`` binary is invoked through :func:`subprocess.run` with an explicit
timeout.  Failures surface as :class:`GitClientError`; callers that only want
a label for the audit record use :func:`resolve_source_revision`, which falls
back to ``"unknown"``.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

_SUBPROCESS_TIMEOUT = 30  # seconds
UNKNOWN_REVISION = "unknown"


class GitClientError(Exception):
    """Raised when a git operation fails or the path is not inside a repository."""


def _run_git(cmd: list[str], repo_path: Path) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(
            cmd,
            cwd=repo_path,
            capture_output=True,
            text=True,
            check=True,
            timeout=_SUBPROCESS_TIMEOUT,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise GitClientError(f"git command failed: {' '.join(cmd)}\nExit code {exc.returncode}: {stderr}") from exc
    except subprocess.TimeoutExpired as exc:
        raise GitClientError(f"git command timed out after {_SUBPROCESS_TIMEOUT}s: {' '.join(cmd)}") from exc
    except FileNotFoundError as exc:
        raise GitClientError("git executable not found. Ensure git is installed and on PATH.") from exc


def get_current_sha(repo_path: Path) -> str:
    """Return the full SHA of HEAD for the repository containing *repo_path*.

    Raises
    ------
    GitClientError
        If *repo_path* is not a directory, is outside a repository, or the
        repository has no commits.
    """
    if not repo_path.is_dir():
        raise GitClientError(f"Repository path does not exist: {repo_path}")
    result = _run_git(["git", "rev-parse", "HEAD"], repo_path)
    return result.stdout.strip()


def resolve_source_revision(repo_path: Path, explicit: str | None = None) -> str:
    """Pick the revision label for an audit record.

    Order: *explicit*, then ``GITHUB_SHA``, then ``git rev-parse HEAD`` in
    *repo_path*, then ``"unknown"``.
    """
    if explicit:
        return explicit
    from_ci = os.environ.get("GITHUB_SHA", "").strip()
    if from_ci:
        return from_ci
    try:
        return get_current_sha(repo_path)
    except GitClientError as exc:
        logger.warning("Could not determine source revision: %s", exc)
        return UNKNOWN_REVISION
