"""Publishing saved reviews to GitHub.

Routes:
    POST /api/github/push-review/{review_id}
        Publish one review.
    POST /api/github/push-review-by-pr/{project_id}/{pr_number}
        Publish the latest completed review of a pull request.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel

from reviewportal.errors import (
    ConfigurationError,
    GitHubAPIError,
    ReviewAlreadyPublishedError,
    ReviewNotFoundError,
    ReviewOutputError,
)
from reviewportal.logging import get_logger
from reviewportal.orchestrator.publisher import PublishResult
from reviewportal.orchestrator.services import PortalServices
from reviewportal.web.dependencies import get_services

logger = get_logger(__name__)


class PushReviewResponse(BaseModel):
    """Result of publishing a review.

    Attributes:
        success: Always True on 200
        review_id: Published review
        project_id: Owning project
        pr_number: Pull request the review was posted to
        github_review_id: Id GitHub assigned to the review
        review_url: Link to the review on GitHub
        review_output: The artifact that was posted
    """

    success: bool = True
    review_id: str
    project_id: str
    pr_number: int
    github_review_id: int
    review_url: str
    review_output: dict[str, Any]


def _response(result: PublishResult) -> PushReviewResponse:
    return PushReviewResponse(
        review_id=result.review_id,
        project_id=result.project_id,
        pr_number=result.pr_number,
        github_review_id=result.github_review_id,
        review_url=result.review_url,
        review_output=result.review_output.model_dump(),
    )


def _http_error(error: Exception) -> HTTPException:
    """Translate a publishing failure into an HTTP error."""
    if isinstance(error, ReviewNotFoundError | ReviewOutputError):
        return HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ReviewAlreadyPublishedError | ConfigurationError):
        return HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, GitHubAPIError):
        if error.status_code == 403:
            return HTTPException(
                status_code=http_status.HTTP_403_FORBIDDEN,
                detail="GitHub API permission denied",
            )
        if error.status_code == 404:
            return HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail="Pull request or repository not found",
            )
        return HTTPException(
            status_code=http_status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to post review: {error}",
        )
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(error),
    )


PUBLISH_ERRORS = (
    ReviewNotFoundError,
    ReviewOutputError,
    ReviewAlreadyPublishedError,
    ConfigurationError,
    GitHubAPIError,
)


def create_github_router() -> APIRouter:
    """Create the review publishing router."""
    router = APIRouter(prefix="/api/github", tags=["github"])

    @router.post(
        "/push-review-by-pr/{project_id:path}/{pr_number:int}",
        response_model=PushReviewResponse,
    )
    async def push_review_by_pr(
        project_id: str,
        pr_number: int,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> PushReviewResponse:
        try:
            result = await services.publisher.publish_latest(project_id, pr_number)
        except PUBLISH_ERRORS as e:
            logger.warning(
                "push_review_failed",
                project_id=project_id,
                pr_number=pr_number,
                error=str(e),
            )
            raise _http_error(e) from e
        return _response(result)

    @router.post("/push-review/{review_id:path}", response_model=PushReviewResponse)
    async def push_review(
        review_id: str,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> PushReviewResponse:
        try:
            result = await services.publisher.publish(review_id)
        except PUBLISH_ERRORS as e:
            logger.warning("push_review_failed", review_id=review_id, error=str(e))
            raise _http_error(e) from e
        return _response(result)

    return router
