"""GitHub REST API client for Review Portal.

Covers the three forge operations the portal needs: listing open pull
requests, removing a label from a pull request and creating a pull request
review with inline comments.

Example usage:
    >>> from reviewportal.config import GitHubConfig
    >>> client = GitHubClient(GitHubConfig(token="ghp_..."))
    >>> pulls = await client.list_open_pulls("acme", "widgets")
    >>> await client.remove_label("acme", "widgets", 42, "ai_codereview")
    >>> await client.close()
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel, Field

from reviewportal.config import GitHubConfig
from reviewportal.errors import ConfigurationError, GitHubAPIError

logger = structlog.get_logger(__name__)

GITHUB_API_VERSION = "2022-11-28"


class PullRequestLabel(BaseModel):
    name: str


class PullRequestInfo(BaseModel):
    """Subset of the GitHub pull request payload used by discovery.

    Attributes:
        number: Pull request number
        title: Pull request title
        html_url: Browser URL of the pull request
        updated_at: Last update time reported by GitHub
        labels: Labels currently applied
    """

    number: int
    title: str = ""
    html_url: str = ""
    updated_at: datetime
    labels: list[PullRequestLabel] = Field(default_factory=list)

    def has_label(self, name: str) -> bool:
        return any(label.name == name for label in self.labels)


class GitHubClient:
    """Async client for the GitHub REST API.

    The underlying httpx client is created on first use and reused until
    ``close()`` is called.

    Attributes:
        config: GitHub configuration with token, base URL and timeouts
    """

    def __init__(self, config: GitHubConfig) -> None:
        self.config = config
        self._client: httpx.AsyncClient | None = None
        self.logger = logger.bind(component="github_client")

    @property
    def is_configured(self) -> bool:
        """Whether an API token is available."""
        return bool(self.config.token)

    def _get_client(self) -> httpx.AsyncClient:
        if not self.config.token:
            raise ConfigurationError("GitHub token not configured")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url,
                headers={
                    "Authorization": f"Bearer {self.config.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": GITHUB_API_VERSION,
                },
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            self.logger.warning("github_request_failed", method=method, path=path, error=str(e))
            raise GitHubAPIError(f"GitHub request failed: {e}") from e

        if response.is_success:
            return response

        try:
            message = response.json().get("message", response.text)
        except ValueError:
            message = response.text
        self.logger.warning(
            "github_api_error",
            method=method,
            path=path,
            status_code=response.status_code,
            message=message,
        )
        raise GitHubAPIError(
            f"GitHub API {method} {path} returned {response.status_code}: {message}",
            status_code=response.status_code,
        )

    async def list_open_pulls(
        self,
        owner: str,
        repo: str,
        per_page: int | None = None,
    ) -> list[PullRequestInfo]:
        """List open pull requests, most recently updated first.

        Only the first page is fetched; this is a best-effort scan bounded
        by ``per_page``.

        Raises:
            ConfigurationError: If no token is configured.
            GitHubAPIError: On any non-success response.
        """
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            params={
                "state": "open",
                "sort": "updated",
                "direction": "desc",
                "per_page": per_page or self.config.per_page,
            },
        )
        pulls = [PullRequestInfo.model_validate(item) for item in response.json()]
        self.logger.info("github_pulls_listed", repository=f"{owner}/{repo}", count=len(pulls))
        return pulls

    async def remove_label(self, owner: str, repo: str, number: int, label: str) -> bool:
        """Remove a label from a pull request.

        Returns:
            True if the label was removed, False if it was already absent.

        Raises:
            GitHubAPIError: On any error other than 404.
        """
        try:
            await self._request(
                "DELETE",
                f"/repos/{owner}/{repo}/issues/{number}/labels/{quote(label, safe='')}",
            )
        except GitHubAPIError as e:
            if e.status_code == 404:
                self.logger.info("github_label_already_absent", pr_number=number, label=label)
                return False
            raise
        self.logger.info("github_label_removed", pr_number=number, label=label)
        return True

    async def create_review(
        self,
        owner: str,
        repo: str,
        number: int,
        body: str,
        event: str,
        comments: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Create a pull request review with inline comments.

        Args:
            owner: Repository owner.
            repo: Repository name.
            number: Pull request number.
            body: Overall review body.
            event: APPROVE, REQUEST_CHANGES or COMMENT.
            comments: Inline comment payloads.

        Returns:
            The review object returned by GitHub.
        """
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{number}/reviews",
            json={"body": body, "event": event, "comments": comments},
        )
        data = response.json()
        self.logger.info("github_review_created", pr_number=number, github_review_id=data.get("id"))
        return data
