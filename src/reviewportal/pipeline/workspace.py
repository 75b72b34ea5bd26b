"""Temporary review workspaces and shallow clones.

Each review gets its own directory under the system temp dir. The
directory is removed when the ``acquire_workspace`` context exits, on
success, failure and cancellation alike.

Example usage:
    >>> async with acquire_workspace("codereview-pr") as workspace:
    ...     await clone_repository("https://github.com/acme/widgets.git", workspace)
    ...     ...  # run the agent inside workspace
"""

from __future__ import annotations

import asyncio
import secrets
import shutil
import tempfile
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import git
from git import GitCommandError

from reviewportal.errors import CloneError
from reviewportal.logging import get_logger

logger = get_logger(__name__)


def workspace_name(prefix: str) -> str:
    """Unique directory name: ``<prefix>-<epoch ms>-<random hex>``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@asynccontextmanager
async def acquire_workspace(prefix: str = "codereview-pr") -> AsyncIterator[Path]:
    """Create a fresh temporary directory and remove it on exit."""
    path = Path(tempfile.gettempdir()) / workspace_name(prefix)
    path.mkdir(parents=True)
    logger.debug("workspace_created", path=str(path))
    try:
        yield path
    finally:
        await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)
        logger.debug("workspace_removed", path=str(path))


def _clone(url: str, path: Path) -> None:
    git.Repo.clone_from(url, str(path), depth=1)


async def clone_repository(url: str, path: Path) -> None:
    """Shallow-clone ``url`` into ``path``.

    Raises:
        CloneError: If git fails for any reason.
    """
    logger.info("clone_started", git_remote=url, path=str(path))
    try:
        await asyncio.to_thread(_clone, url, path)
    except GitCommandError as e:
        logger.error("clone_failed", git_remote=url, error=str(e), exit_status=e.status)
        detail = (e.stderr or str(e)).strip()
        raise CloneError(f"Failed to clone {url}: {detail}") from e
    logger.info("clone_completed", git_remote=url)
