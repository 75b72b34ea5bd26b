"""Review inspection endpoints.

Review ids embed the project id, which contains slashes, so the id is
matched with a ``path`` converter.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, ConfigDict

from reviewportal.database.models.review import ReviewStatus, ReviewVerdict
from reviewportal.database.queries.review import get_review, update_review
from reviewportal.logging import get_logger
from reviewportal.orchestrator.services import PortalServices
from reviewportal.web.dependencies import get_services

logger = get_logger(__name__)


class ReviewResponse(BaseModel):
    """Review row as returned by the API.

    Attributes:
        id: Review identifier
        project_id: Owning project
        pr_number: Pull request number
        pr_title: Pull request title at claim time
        pr_url: Pull request page URL
        repository: "owner/repo"
        status: pending, completed, partial or failed
        verdict: approve, request_changes or comment
        comment_count: Number of inline comments in the artifact
        review_dir: Archive directory name under the store's reviews/
        reviewed_at: When the reviewed attempt was claimed
        github_review_id: GitHub review id once published
        session_id: Agent session that produced the review
        error_message: Failure description for failed or partial reviews
        created_at: Claim time
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    pr_number: int
    pr_title: str
    pr_url: str
    repository: str
    status: ReviewStatus
    verdict: ReviewVerdict
    comment_count: int
    review_dir: str
    reviewed_at: datetime | None
    github_review_id: int | None
    session_id: str | None
    error_message: str | None
    created_at: datetime


class ReviewDetailResponse(ReviewResponse):
    """Review row plus the archived artifact and summary.

    Attributes:
        comments: Parsed review output document
        summary: Markdown summary written by the agent
    """

    comments: dict[str, Any] | None = None
    summary: str | None = None


def create_reviews_router() -> APIRouter:
    """Create the reviews router.

    Routes:
        GET /api/reviews/{review_id} - Review row with artifact and summary
    """
    router = APIRouter(prefix="/api/reviews", tags=["reviews"])

    @router.get("/{review_id:path}", response_model=ReviewDetailResponse)
    async def get_review_detail(
        review_id: str,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> ReviewDetailResponse:
        """Return a review with its archived output.

        When the recorded directory holds no files, the newest archive for
        the same pull request is located and recorded on the review.
        """
        store = services.store
        async with services.session_factory() as session:
            review = await get_review(session, review_id)
            if review is None:
                raise HTTPException(
                    status_code=http_status.HTTP_404_NOT_FOUND,
                    detail="Review not found",
                )

            comments = await asyncio.to_thread(store.read_review_output, review.review_dir)
            summary = await asyncio.to_thread(store.read_review_summary, review.review_dir)

            if comments is None and summary is None:
                found = await asyncio.to_thread(
                    store.find_review_dir, review.pr_number, review.repository
                )
                if found is not None:
                    logger.info(
                        "review_dir_relinked",
                        review_id=review_id,
                        previous=review.review_dir,
                        review_dir=found,
                    )
                    review = await update_review(session, review_id, review_dir=found)
                    comments = await asyncio.to_thread(store.read_review_output, found)
                    summary = await asyncio.to_thread(store.read_review_summary, found)

        if comments is None and summary is None:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail="Review files not found",
            )

        detail = ReviewDetailResponse.model_validate(review)
        detail.comments = comments
        detail.summary = summary
        return detail

    return router
