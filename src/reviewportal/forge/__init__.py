"""GitHub integration: remote URL parsing and the REST API client."""

from reviewportal.forge.github import GitHubClient, PullRequestInfo, PullRequestLabel
from reviewportal.forge.remote import (
    RemoteRef,
    parse_remote,
    project_id_for_remote,
    require_remote,
)

__all__ = [
    "GitHubClient",
    "PullRequestInfo",
    "PullRequestLabel",
    "RemoteRef",
    "parse_remote",
    "project_id_for_remote",
    "require_remote",
]
