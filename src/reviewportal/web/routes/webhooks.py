"""GitHub webhook receiver.

Accepted ``pull_request`` deliveries for registered projects with auto
review enabled and the trigger label present queue a background review
and return 202 immediately. Every other delivery is acknowledged with 200
and a message saying why it was ignored.

When a webhook secret is configured the ``X-Hub-Signature-256`` header
must carry ``sha256=<hex HMAC-SHA256 of the raw body>``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi import status as http_status
from fastapi.responses import JSONResponse

from reviewportal.database.models.project import Project
from reviewportal.database.queries.project import get_project, list_projects
from reviewportal.errors import ConfigurationError
from reviewportal.forge.remote import parse_remote, project_id_for_remote
from reviewportal.logging import get_logger
from reviewportal.orchestrator.review_runner import ReviewTarget
from reviewportal.orchestrator.services import PortalServices
from reviewportal.web.dependencies import get_services

logger = get_logger(__name__)

REVIEW_ACTIONS = frozenset({"labeled", "opened", "synchronize", "reopened"})
SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """``sha256=`` followed by the hex HMAC-SHA256 of ``payload``."""
    digest = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), signature)


async def _find_project(services: PortalServices, repository: dict[str, Any]) -> Project | None:
    """Match the delivery's repository to a registered project.

    The id derived from ``clone_url`` is tried first; projects registered
    under another remote form (for example SSH) are matched by owner/repo.
    """
    clone_url = repository.get("clone_url") or ""
    full_name = (repository.get("full_name") or "").lower()
    async with services.session_factory() as session:
        if clone_url:
            project = await get_project(session, project_id_for_remote(clone_url))
            if project is not None:
                return project
        if not full_name:
            return None
        for project in await list_projects(session):
            ref = parse_remote(project.git_remote)
            if ref.is_valid and ref.full_name.lower() == full_name:
                return project
    return None


def _ignored(message: str) -> dict[str, str]:
    logger.info("webhook_ignored", reason=message)
    return {"message": message}


def create_webhooks_router() -> APIRouter:
    """Create the webhook receiver router.

    Routes:
        POST /webhooks/github - GitHub event delivery
    """
    router = APIRouter(prefix="/webhooks", tags=["webhooks"])

    @router.post("/github", response_model=None)
    async def github_webhook(
        request: Request,
        x_github_event: str | None = Header(default=None),  # noqa: B008
        x_hub_signature_256: str | None = Header(default=None),  # noqa: B008
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any] | JSONResponse:
        """Handle one GitHub delivery."""
        body = await request.body()

        secret = services.config.github.webhook_secret
        if secret:
            if not x_hub_signature_256:
                raise HTTPException(
                    status_code=http_status.HTTP_401_UNAUTHORIZED,
                    detail="Missing signature",
                )
            if not verify_signature(body, x_hub_signature_256, secret):
                logger.warning("webhook_signature_invalid")
                raise HTTPException(
                    status_code=http_status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid signature",
                )

        if x_github_event != "pull_request":
            return _ignored("Event ignored")

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="Invalid JSON payload",
            ) from e

        action = payload.get("action")
        if action not in REVIEW_ACTIONS:
            return _ignored("Action ignored")

        pull = payload.get("pull_request") or {}
        repository = (pull.get("base") or {}).get("repo") or payload.get("repository") or {}
        project = await _find_project(services, repository)
        if project is None:
            return _ignored("Project not registered")
        if not project.auto_review_enabled:
            return _ignored("Auto review disabled for this project")

        labels = {label.get("name") for label in pull.get("labels") or []}
        if project.review_trigger_label not in labels:
            return _ignored("Trigger label not present")

        try:
            target = ReviewTarget.from_project(project)
        except ConfigurationError as e:
            return _ignored(str(e))
        pr_number = int(pull["number"])
        services.tasks.spawn(
            services.orchestrator.run_review(
                target,
                pr_number,
                pull.get("title") or "",
                pull.get("html_url") or "",
            ),
            name=f"webhook-review-{project.id}-{pr_number}",
        )
        logger.info(
            "webhook_review_queued",
            project_id=project.id,
            pr_number=pr_number,
            action=action,
        )
        return JSONResponse(
            status_code=http_status.HTTP_202_ACCEPTED,
            content={"message": "Review queued", "pr_number": pr_number},
        )

    return router
