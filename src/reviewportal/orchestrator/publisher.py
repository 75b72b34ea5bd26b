"""Posting stored review artifacts to GitHub as pull request reviews.

The artifact verdict maps to a GitHub review event and every comment
becomes an inline comment on the RIGHT side of the diff. Multi-line
comments carry ``start_line`` so GitHub renders a range.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from reviewportal.agents.result_schema import (
    ReviewComment,
    ReviewOutput,
    parse_review_output_safe,
)
from reviewportal.database.models.session import SessionStatus, SessionType
from reviewportal.database.queries.review import (
    get_review,
    latest_completed_review,
    update_review,
)
from reviewportal.database.queries.session import create_session, end_session
from reviewportal.errors import (
    ConfigurationError,
    GitHubAPIError,
    ReviewAlreadyPublishedError,
    ReviewNotFoundError,
    ReviewOutputError,
)
from reviewportal.orchestrator.review_runner import new_session_id

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewportal.database.models.review import Review
    from reviewportal.forge.github import GitHubClient
    from reviewportal.store.documents import ReviewStore

logger = structlog.get_logger(__name__)

VERDICT_EVENTS = {
    "approve": "APPROVE",
    "request_changes": "REQUEST_CHANGES",
    "comment": "COMMENT",
}


def review_event_for(verdict: str) -> str:
    return VERDICT_EVENTS.get(verdict.lower(), "COMMENT")


def comment_payload(comment: ReviewComment) -> dict[str, Any]:
    """Render one artifact comment as a GitHub inline review comment."""
    payload: dict[str, Any] = {
        "path": comment.path,
        "body": f"[{comment.severity}][{comment.category}] {comment.body}",
        "side": "RIGHT",
        "line": comment.end_line,
    }
    if comment.is_multiline:
        payload["start_line"] = comment.start_line
        payload["start_side"] = "RIGHT"
    return payload


def build_review_request(output: ReviewOutput) -> dict[str, Any]:
    return {
        "body": output.overall_summary,
        "event": review_event_for(output.verdict),
        "comments": [comment_payload(c) for c in output.comments],
    }


@dataclass
class PublishResult:
    review_id: str
    project_id: str
    pr_number: int
    github_review_id: int
    review_url: str
    review_output: ReviewOutput


class ReviewPublisher:
    """Posts a completed review to GitHub and records the GitHub review id.

    Attributes:
        session_factory: Produces database sessions.
        store: Review store holding archived artifacts.
        github: GitHub REST client.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: ReviewStore,
        github: GitHubClient,
    ) -> None:
        self.session_factory = session_factory
        self.store = store
        self.github = github
        self._logger = logger.bind(component="ReviewPublisher")

    async def publish(self, review_id: str) -> PublishResult:
        """Publish a review by id.

        Raises:
            ReviewNotFoundError: If the review does not exist.
            ReviewAlreadyPublishedError: If it was already posted.
            ReviewOutputError: If no artifact can be found.
            ConfigurationError: If no GitHub token is configured.
            GitHubAPIError: If GitHub rejects the review.
        """
        async with self.session_factory() as session:
            review = await get_review(session, review_id)
        if review is None:
            raise ReviewNotFoundError("Review not found")
        return await self._publish(review)

    async def publish_latest(self, project_id: str, pr_number: int) -> PublishResult:
        """Publish the most recent completed review of a pull request."""
        async with self.session_factory() as session:
            review = await latest_completed_review(session, project_id, pr_number)
        if review is None:
            raise ReviewNotFoundError("No completed review found for this PR")
        return await self._publish(review)

    def load_output(self, review: Review) -> ReviewOutput:
        """Artifact from the database copy, falling back to the store."""
        output = parse_review_output_safe(review.review_output)
        if output is not None:
            return output
        data = self.store.read_review_output(review.review_dir)
        if data is None:
            raise ReviewOutputError("Review output file not found")
        try:
            return ReviewOutput.model_validate(data)
        except ValueError as e:
            raise ReviewOutputError(f"Review output is invalid: {e}") from e

    async def _publish(self, review: Review) -> PublishResult:
        if review.github_review_id is not None:
            raise ReviewAlreadyPublishedError(review.id, review.github_review_id)
        output = self.load_output(review)
        if not self.github.is_configured:
            raise ConfigurationError("GitHub token not configured")
        owner, _, repo = review.repository.partition("/")
        if not owner or not repo:
            raise ConfigurationError(f"Cannot determine repository for review {review.id}")

        session_id = new_session_id("push")
        async with self.session_factory() as session:
            await create_session(session, session_id, review.project_id, SessionType.push)

        request = build_review_request(output)
        try:
            data = await self.github.create_review(
                owner,
                repo,
                review.pr_number,
                body=request["body"],
                event=request["event"],
                comments=request["comments"],
            )
        except GitHubAPIError as e:
            async with self.session_factory() as session:
                await end_session(session, session_id, SessionStatus.error, error_message=str(e))
            raise

        github_review_id = int(data["id"])
        async with self.session_factory() as session:
            await update_review(session, review.id, github_review_id=github_review_id)
            await end_session(session, session_id, SessionStatus.completed)

        review_url = data.get("html_url") or f"{review.pr_url}#pullrequestreview-{github_review_id}"
        self._logger.info(
            "review_published",
            review_id=review.id,
            pr_number=review.pr_number,
            github_review_id=github_review_id,
            comment_count=len(request["comments"]),
        )
        return PublishResult(
            review_id=review.id,
            project_id=review.project_id,
            pr_number=review.pr_number,
            github_review_id=github_review_id,
            review_url=review_url,
            review_output=output,
        )
