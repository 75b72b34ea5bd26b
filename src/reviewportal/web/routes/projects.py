"""Project management endpoints for Review Portal.

Project ids are derived from git remotes (``github.com/acme/widgets``) and
contain slashes, so every per-project route matches the id with a
``path`` converter and a fixed suffix.

Routes:
    GET    /api/projects                               - List project summaries
    POST   /api/projects/refresh                       - Sync projects from the store
    POST   /api/projects/add                           - Onboard a repository (SSE)
    GET    /api/projects/{project_id}/index            - Guideline index
    GET    /api/projects/{project_id}/settings         - Project settings
    PATCH  /api/projects/{project_id}/settings         - Update project settings
    GET    /api/projects/{project_id}/reviews          - Reviews of a project
    GET    /api/projects/{project_id}/document         - Read a guideline document
    PUT    /api/projects/{project_id}/document         - Write a guideline document
    GET    /api/projects/{project_id}/document/versions - Document revision history
    DELETE /api/projects/{project_id}                  - Remove a project
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from pydantic import BaseModel, ConfigDict, Field
from sse_starlette.sse import EventSourceResponse

from reviewportal.database.models.base import as_utc
from reviewportal.database.queries.document import add_version, latest_version, list_versions
from reviewportal.database.queries.project import delete_project, list_projects, update_project
from reviewportal.database.queries.review import list_reviews, review_stats
from reviewportal.errors import StoreError
from reviewportal.logging import get_logger
from reviewportal.orchestrator.initializer import sync_projects
from reviewportal.orchestrator.services import PortalServices
from reviewportal.review.events import EventSink
from reviewportal.web.dependencies import get_services, load_project
from reviewportal.web.routes.reviews import ReviewResponse
from reviewportal.web.sse import stream_events

if TYPE_CHECKING:
    from reviewportal.database.models.project import Project
    from reviewportal.store.documents import ReviewStore

logger = get_logger(__name__)

ProjectStatus = Literal["not_initialized", "draft", "up_to_date", "needs_regeneration"]


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------


class ProjectSummary(BaseModel):
    """Dashboard summary of one project.

    Attributes:
        project_id: Identifier derived from the git remote
        display_name: Human-readable name
        git_remote: Remote URL
        total_modules: Modules listed in the guideline index
        last_review_date: Most recent finished review
        last_generated_date: When the guideline index was generated
        status: not_initialized, draft, up_to_date or needs_regeneration
    """

    project_id: str
    display_name: str
    git_remote: str
    total_modules: int
    last_review_date: datetime | None
    last_generated_date: str | None
    status: ProjectStatus


class SyncResponse(BaseModel):
    success: bool = True
    discovered: int
    upserted: int


class AddProjectRequest(BaseModel):
    """Request body for onboarding a repository.

    Attributes:
        git_url: Remote to clone
        display_name: Optional name overriding the derived one
    """

    git_url: str | None = None
    display_name: str | None = None


class ProjectSettings(BaseModel):
    """Stored project configuration.

    Attributes:
        project_id: Project identifier
        display_name: Human-readable name
        git_remote: Remote URL
        github_token_ref: Credential name used for this project
        main_branch: Default branch
        auto_review_enabled: Whether labelled PRs are reviewed automatically
        review_trigger_label: Label that requests a review
        post_clone_scripts: Commands run after cloning
        review_model: Model identifier for the review agent
        excluded_paths: Paths the agent ignores
        max_diff_lines: Largest diff the agent reviews
        severity_threshold: Minimum comment severity
        polling_enabled: Whether the poller checks this project
        last_polled_at: End of the last successful poll
    """

    model_config = ConfigDict(from_attributes=True)

    project_id: str = Field(validation_alias="id")
    display_name: str
    git_remote: str
    github_token_ref: str | None
    main_branch: str
    auto_review_enabled: bool
    review_trigger_label: str
    post_clone_scripts: list[Any]
    review_model: str
    excluded_paths: list[Any]
    max_diff_lines: int
    severity_threshold: str
    polling_enabled: bool
    last_polled_at: datetime | None


class ProjectSettingsUpdate(BaseModel):
    """Partial settings update; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    display_name: str | None = None
    main_branch: str | None = None
    auto_review_enabled: bool | None = None
    review_trigger_label: str | None = None
    post_clone_scripts: list[str] | None = None
    review_model: str | None = None
    excluded_paths: list[str] | None = None
    max_diff_lines: int | None = Field(default=None, gt=0)
    severity_threshold: Literal["HIGH", "MEDIUM", "LOW"] | None = None
    github_token_ref: str | None = None
    polling_enabled: bool | None = None


class DocumentResponse(BaseModel):
    project_id: str
    module_name: str | None
    file_path: str
    content: str
    last_modified: datetime
    version: int


class DocumentUpdate(BaseModel):
    """Request body for saving a guideline document.

    Attributes:
        module: Module name, omitted or null for the root document
        content: Full document text
    """

    module: str | None = None
    content: Any = None


class DocumentSaveResponse(BaseModel):
    success: bool = True
    file_path: str
    version: int


class DocumentVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version: int
    modified_at: datetime
    modified_by: str


class DeleteResponse(BaseModel):
    success: bool = True
    project_id: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def project_status(
    store: ReviewStore,
    project: Project,
    last_review_date: datetime | None,
) -> ProjectStatus:
    """Classify a project for the dashboard.

    A project without an index is not initialized; one that was never
    reviewed is a draft; an index rewritten after the project row was last
    updated needs regeneration.
    """
    if store.read_index(project.id) is None:
        return "not_initialized"
    if last_review_date is None:
        return "draft"
    index_mtime = store.index_mtime(project.id)
    updated_at = as_utc(project.updated_at)
    if index_mtime is not None and updated_at is not None and index_mtime > updated_at:
        return "needs_regeneration"
    return "up_to_date"


def _summaries(
    store: ReviewStore,
    projects: list[Project],
    stats: dict[str, tuple[int, datetime | None]],
) -> list[ProjectSummary]:
    summaries = []
    for project in sorted(projects, key=lambda p: p.display_name):
        _, last_review_date = stats.get(project.id, (0, None))
        index = store.read_index(project.id)
        summaries.append(
            ProjectSummary(
                project_id=project.id,
                display_name=project.display_name,
                git_remote=project.git_remote,
                total_modules=len(index.modules) if index else 0,
                last_review_date=last_review_date,
                last_generated_date=index.generated_at if index else None,
                status=project_status(store, project, last_review_date),
            )
        )
    return summaries


def _file_mtime(path: Any) -> datetime | None:
    if path is None or not path.is_file():
        return None
    return datetime.fromtimestamp(path.stat().st_mtime).astimezone()


# ---------------------------------------------------------------------------
# Router Factory
# ---------------------------------------------------------------------------


def create_projects_router() -> APIRouter:
    """Create projects router with all endpoints.

    Returns:
        Configured APIRouter with project endpoints.
    """
    router = APIRouter(prefix="/api/projects", tags=["projects"])

    @router.get("", response_model=list[ProjectSummary])
    async def list_project_summaries(
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> list[ProjectSummary]:
        """Sync from the store, then summarise every project."""
        await sync_projects(services.session_factory, services.store)
        async with services.session_factory() as session:
            projects = await list_projects(session)
            stats = await review_stats(session)
        return await asyncio.to_thread(_summaries, services.store, projects, stats)

    @router.post("/refresh", response_model=SyncResponse)
    async def refresh_projects(
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> SyncResponse:
        result = await sync_projects(services.session_factory, services.store)
        return SyncResponse(discovered=result.discovered, upserted=result.upserted)

    @router.post("/add")
    async def add_project(
        body: AddProjectRequest,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> EventSourceResponse:
        """Clone a repository, generate its guidelines and stream progress."""
        if not body.git_url or not body.git_url.strip():
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="git_url is required",
            )
        git_url = body.git_url.strip()

        async def produce(emit: EventSink) -> None:
            await services.initializer.add_project(git_url, body.display_name, emit)

        return stream_events(produce)

    @router.get("/{project_id:path}/index")
    async def get_index(
        project_id: str,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        index = await asyncio.to_thread(services.store.read_index, project_id)
        if index is None:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail="Project index not found. Run the guideline generation first.",
            )
        return index.model_dump()

    @router.get("/{project_id:path}/settings")
    async def get_settings(
        project_id: str,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        """Database settings overlaid with the store's settings.json."""
        project = await load_project(services.session_factory, project_id)
        file_settings = await asyncio.to_thread(services.store.read_settings, project_id)
        settings = ProjectSettings.model_validate(project).model_dump(mode="json")
        settings.update(file_settings or {})
        return settings

    @router.patch("/{project_id:path}/settings")
    async def update_settings(
        project_id: str,
        body: ProjectSettingsUpdate,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        """Apply a partial update to the database and mirror it to settings.json."""
        updates = body.model_dump(exclude_unset=True)
        if not updates:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="No fields to update",
            )
        await load_project(services.session_factory, project_id)

        async with services.session_factory() as session:
            project = await update_project(session, project_id, **updates)

        store = services.store
        existing = await asyncio.to_thread(store.read_settings, project_id)
        await asyncio.to_thread(store.write_settings, project_id, {**(existing or {}), **updates})

        logger.info("project_settings_updated", project_id=project_id, fields=sorted(updates))
        return ProjectSettings.model_validate(project).model_dump(mode="json")

    @router.get("/{project_id:path}/reviews", response_model=list[ReviewResponse])
    async def get_project_reviews(
        project_id: str,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> list[ReviewResponse]:
        async with services.session_factory() as session:
            reviews = await list_reviews(session, project_id=project_id)
        return [ReviewResponse.model_validate(r) for r in reviews]

    @router.get(
        "/{project_id:path}/document/versions",
        response_model=list[DocumentVersionResponse],
    )
    async def get_document_versions(
        project_id: str,
        module: str | None = Query(default=None),  # noqa: B008
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> list[DocumentVersionResponse]:
        async with services.session_factory() as session:
            versions = await list_versions(session, project_id, module)
        return [DocumentVersionResponse.model_validate(v) for v in versions]

    @router.get("/{project_id:path}/document", response_model=DocumentResponse)
    async def get_document(
        project_id: str,
        module: str | None = Query(default=None),  # noqa: B008
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> DocumentResponse:
        """Read the root document, or a module's document when ``module`` is given."""
        store = services.store
        content = await asyncio.to_thread(store.read_document, project_id, module)
        path = await asyncio.to_thread(store.document_path, project_id, module)
        if content is None or path is None:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail="Document not found",
            )

        async with services.session_factory() as session:
            latest = await latest_version(session, project_id, module)

        if latest is not None:
            last_modified = as_utc(latest.modified_at)
        else:
            last_modified = await asyncio.to_thread(_file_mtime, path)
        return DocumentResponse(
            project_id=project_id,
            module_name=module,
            file_path=str(path.relative_to(store.project_dir(project_id))),
            content=content,
            last_modified=last_modified or datetime.now().astimezone(),
            version=latest.version if latest else 1,
        )

    @router.put("/{project_id:path}/document", response_model=DocumentSaveResponse)
    async def put_document(
        project_id: str,
        body: DocumentUpdate,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> DocumentSaveResponse:
        """Overwrite a document and record the new revision."""
        if not isinstance(body.content, str):
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="content must be a string",
            )
        try:
            path = await asyncio.to_thread(
                services.store.write_document, project_id, body.module, body.content
            )
        except StoreError as e:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail=str(e),
            ) from e

        async with services.session_factory() as session:
            version = await add_version(session, project_id, body.module, body.content)
        return DocumentSaveResponse(file_path=str(path), version=version.version)

    @router.delete("/{project_id:path}", response_model=DeleteResponse)
    async def remove_project(
        project_id: str,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> DeleteResponse:
        """Delete the project, its reviews and its store files."""
        await load_project(services.session_factory, project_id)
        async with services.session_factory() as session:
            reviews = await list_reviews(session, project_id=project_id)
            review_dirs = [r.review_dir for r in reviews]
            await delete_project(session, project_id)

        await asyncio.to_thread(services.store.remove_project, project_id, review_dirs)
        logger.info("project_removed", project_id=project_id, review_dirs=len(review_dirs))
        return DeleteResponse(project_id=project_id)

    return router
