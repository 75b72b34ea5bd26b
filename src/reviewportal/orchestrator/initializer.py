"""Project onboarding and store synchronisation.

``sync_projects`` upserts every project found in the review store into the
database. ``ProjectInitializer.add_project`` clones a repository, runs the
agent's guideline-generation command in it, imports the generated files
into the store and syncs.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from reviewportal.config import AgentConfig
from reviewportal.database.models.session import SessionStatus, SessionType
from reviewportal.database.queries.project import update_project, upsert_project
from reviewportal.database.queries.session import (
    create_session,
    end_session,
    set_agent_session_id,
)
from reviewportal.errors import CloneError
from reviewportal.forge.remote import project_id_for_remote
from reviewportal.orchestrator.review_runner import new_session_id
from reviewportal.pipeline.workspace import acquire_workspace, clone_repository
from reviewportal.review.events import EventKind, EventSink, event, null_sink

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewportal.agents.runner import AgentRunner
    from reviewportal.store.documents import ReviewStore

logger = structlog.get_logger(__name__)


@dataclass
class SyncResult:
    discovered: int
    upserted: int


@dataclass
class InitResult:
    project_id: str
    session_id: str
    files_copied: int
    synced: int


async def sync_projects(
    session_factory: async_sessionmaker[AsyncSession],
    store: ReviewStore,
) -> SyncResult:
    """Upsert every project in the store, keyed by its derived id."""
    discovered = await asyncio.to_thread(store.discover_projects)
    upserted = 0
    async with session_factory() as session:
        for project in discovered:
            await upsert_project(
                session,
                project_id=project.project_id,
                display_name=project.display_name,
                git_remote=project.git_remote,
                store_path=project.store_path,
            )
            upserted += 1
    logger.info("projects_synced", discovered=len(discovered), upserted=upserted)
    return SyncResult(discovered=len(discovered), upserted=upserted)


class ProjectInitializer:
    """Clones a repository and generates its review guidelines."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: ReviewStore,
        runner: AgentRunner,
        config: AgentConfig,
    ) -> None:
        self.session_factory = session_factory
        self.store = store
        self.runner = runner
        self.config = config
        self._logger = logger.bind(component="ProjectInitializer")

    async def add_project(
        self,
        git_url: str,
        display_name: str | None = None,
        emit: EventSink = null_sink,
    ) -> InitResult | None:
        """Onboard a repository.

        Progress is reported through ``emit``; failures end with an
        ``error`` event and a None result. The workspace is always removed.
        """
        project_id = project_id_for_remote(git_url)
        session_id = new_session_id(self.config.mode)
        async with self.session_factory() as session:
            await create_session(session, session_id, None, SessionType.init)

        async def fail(message: str) -> None:
            self._logger.warning("project_init_failed", git_remote=git_url, error=message)
            async with self.session_factory() as session:
                await end_session(session, session_id, SessionStatus.error, error_message=message)
            await emit(event(EventKind.ERROR, message=message))

        try:
            async with acquire_workspace("codereview-clone") as workspace:
                await emit(event(EventKind.STATUS, message=f"Cloning {git_url}..."))
                try:
                    await clone_repository(git_url, workspace)
                except CloneError as e:
                    await fail(str(e))
                    return None
                await emit(event(EventKind.STATUS, message="Repository cloned successfully."))

                await emit(
                    event(
                        EventKind.STATUS,
                        message="Starting deep initialization (this may take several minutes)...",
                    )
                )

                async def forward(line: str) -> None:
                    await emit(event(EventKind.SESSION_EVENT, message=line))

                async def link_agent_session(agent_session_id: str) -> None:
                    async with self.session_factory() as session:
                        await set_agent_session_id(session, session_id, agent_session_id)
                    started = f"Agent session started: {agent_session_id}"
                    await emit(event(EventKind.STATUS, message=started))

                result = await self.runner.run(
                    self.config.init_command,
                    workspace,
                    "",
                    sink=forward,
                    on_started=link_agent_session,
                )
                if not result.succeeded:
                    await fail(result.describe())
                    return None
                await emit(event(EventKind.STATUS, message="Deep initialization completed."))

                await emit(event(EventKind.STATUS, message="Analyzing generated files..."))
                copied = await asyncio.to_thread(
                    self.store.import_generated_files, workspace, project_id
                )
                if not copied:
                    await emit(
                        event(
                            EventKind.STATUS,
                            message="WARNING: No code review files were generated.",
                        )
                    )
                for name in copied:
                    await emit(event(EventKind.STATUS, message=f"Copied {name}"))
        except asyncio.CancelledError:
            async with self.session_factory() as session:
                await end_session(
                    session, session_id, SessionStatus.error, error_message="cancelled"
                )
            raise

        await emit(event(EventKind.STATUS, message="Syncing project to database..."))
        synced = await sync_projects(self.session_factory, self.store)
        async with self.session_factory() as session:
            if display_name:
                try:
                    await update_project(session, project_id, display_name=display_name)
                except ValueError:
                    self._logger.warning("project_not_synced", project_id=project_id)
            await end_session(session, session_id, SessionStatus.completed)

        await emit(
            event(
                EventKind.DONE,
                message=f"Project processed. {len(copied)} files copied to store.",
                project_id=project_id,
                session_id=session_id,
                synced=synced.upserted,
                files_copied=len(copied),
            )
        )
        self._logger.info("project_initialized", project_id=project_id, files_copied=len(copied))
        return InitResult(
            project_id=project_id,
            session_id=session_id,
            files_copied=len(copied),
            synced=synced.upserted,
        )
