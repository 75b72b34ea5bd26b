"""Git remote URL helpers.

``parse_remote`` maps a GitHub remote to its (owner, repo) pair and
``project_id_for_remote`` derives the stable project identifier used as the
primary key and as the store directory name.

Example:
    >>> parse_remote("git@github.com:acme/widgets.git")
    RemoteRef(owner='acme', repo='widgets')
    >>> project_id_for_remote("https://github.com/acme/widgets.git")
    'github.com/acme/widgets'
"""

from __future__ import annotations

import re
from typing import NamedTuple

from reviewportal.errors import ConfigurationError

_GITHUB_REMOTE = re.compile(
    r"^(?:https?://(?:[^@/]+@)?github\.com/|ssh://git@github\.com/|git@github\.com:)"
    r"(?P<owner>[^/\s:]+)/(?P<repo>[^/\s]+?)(?:\.git)?/?$"
)
_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


class RemoteRef(NamedTuple):
    """Owner and repository name of a GitHub remote.

    Both fields are empty strings when the remote could not be parsed.
    """

    owner: str
    repo: str

    @property
    def is_valid(self) -> bool:
        return bool(self.owner and self.repo)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_remote(remote: str) -> RemoteRef:
    """Parse an HTTPS or SSH GitHub remote into owner and repo.

    A trailing ``.git`` and a trailing slash are tolerated. Anything else
    yields an empty pair instead of raising, so callers must check
    ``is_valid`` before talking to GitHub.
    """
    match = _GITHUB_REMOTE.match(remote.strip())
    if match is None:
        return RemoteRef("", "")
    return RemoteRef(match.group("owner"), match.group("repo"))


def require_remote(remote: str) -> RemoteRef:
    """Parse a remote, raising ConfigurationError when it is unusable."""
    ref = parse_remote(remote)
    if not ref.is_valid:
        raise ConfigurationError(f"Could not parse owner/repo from git remote: {remote!r}")
    return ref


def project_id_for_remote(remote: str) -> str:
    """Derive the project identifier from a git remote URL.

    The scheme, a trailing slash and a trailing ``.git`` are removed and
    colons become path separators, so the result is a pure function of
    the remote string.
    """
    project_id = _SCHEME.sub("", remote.strip())
    project_id = project_id.rstrip("/")
    if project_id.endswith(".git"):
        project_id = project_id[: -len(".git")]
    return project_id.replace(":", "/")
