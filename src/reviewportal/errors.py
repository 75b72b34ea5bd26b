"""Exception taxonomy for Review Portal.

Configuration errors fail fast and are surfaced to the caller. Clone and
agent errors are per-PR failures: the PR is marked failed and the batch
continues. Output errors mark a run as partially successful.
"""

from __future__ import annotations


class PortalError(Exception):
    """Base exception for Review Portal errors."""

    pass


class ConfigurationError(PortalError):
    """Raised for missing credentials or unusable project configuration."""

    pass


class ProjectNotFoundError(PortalError):
    """Raised when a project id is not registered."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class ReviewAlreadyClaimedError(PortalError):
    """Raised when a pending review already exists for a pull request."""

    def __init__(self, project_id: str, pr_number: int) -> None:
        self.project_id = project_id
        self.pr_number = pr_number
        super().__init__(f"PR #{pr_number} of {project_id} already has a review in progress")


class CloneError(PortalError):
    """Raised when the repository cannot be cloned into the workspace."""

    pass


class AgentRunError(PortalError):
    """Raised when the review agent cannot be started or exits unsuccessfully."""

    pass


class ReviewOutputError(PortalError):
    """Raised when the review artifact is missing or does not match the schema."""

    pass


class GitHubAPIError(PortalError):
    """Raised when the GitHub REST API returns an error response.

    Attributes:
        status_code: HTTP status returned by GitHub, None for transport errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class StoreError(PortalError):
    """Raised when a review store document cannot be located or written."""

    pass


class ReviewNotFoundError(PortalError):
    """Raised when a review id (or a completed review for a PR) does not exist."""

    pass


class ReviewAlreadyPublishedError(PortalError):
    """Raised when a review has already been posted to GitHub."""

    def __init__(self, review_id: str, github_review_id: int) -> None:
        self.review_id = review_id
        self.github_review_id = github_review_id
        super().__init__("Review already posted to GitHub")
