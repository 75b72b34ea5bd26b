"""Scheduled GitHub poller.

Each cycle runs discovery for every project with both auto review and
polling enabled, reviews the pending pull requests sequentially and
stamps the project's ``last_polled_at``. A failure in one project is
logged and recorded as ``last_error`` without stopping the others.

``start`` and ``stop`` are idempotent. Cycles never overlap: a manual
``poll_once`` waits for a running scheduled cycle to finish.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from reviewportal.config import PollingConfig
from reviewportal.database.models.base import utcnow
from reviewportal.database.queries.project import list_pollable_projects, mark_polled
from reviewportal.errors import ConfigurationError
from reviewportal.orchestrator.review_runner import OutcomeStatus, ReviewTarget

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewportal.database.models.project import Project
    from reviewportal.forge.github import GitHubClient
    from reviewportal.orchestrator.review_runner import ReviewOrchestrator
    from reviewportal.review.discovery import PRDiscovery

logger = structlog.get_logger(__name__)


@dataclass
class PollResult:
    projects_checked: int = 0
    reviews_triggered: int = 0


class GitHubPoller:
    """Interval-driven discovery and review across pollable projects.

    Attributes:
        session_factory: Produces database sessions.
        discovery: Discovery engine.
        orchestrator: Review orchestrator.
        github: GitHub client (token presence gates start).
        config: Polling configuration.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        discovery: PRDiscovery,
        orchestrator: ReviewOrchestrator,
        github: GitHubClient,
        config: PollingConfig,
    ) -> None:
        self.session_factory = session_factory
        self.discovery = discovery
        self.orchestrator = orchestrator
        self.github = github
        self.config = config

        self._running = False
        self._loop_task: asyncio.Task[None] | None = None
        self._loop_tasks: set[asyncio.Task[None]] = set()
        self._wakeup = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self._last_poll_time: datetime | None = None
        self._last_error: str | None = None
        self._logger = logger.bind(component="GitHubPoller")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_poll_time(self) -> datetime | None:
        return self._last_poll_time

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "last_poll_time": self._last_poll_time.isoformat() if self._last_poll_time else None,
            "last_error": self._last_error,
            "polling_interval_seconds": self.config.interval_seconds,
            "github_token_configured": self.github.is_configured,
        }

    async def start(self) -> None:
        """Start polling: one cycle immediately, then one per interval.

        Starting a running poller is a no-op.

        Raises:
            ConfigurationError: If no GitHub token is configured.
        """
        if self._running:
            self._logger.debug("poller_start_noop", reason="already running")
            return
        if not self.github.is_configured:
            raise ConfigurationError("GitHub token is required for polling mode")

        self._running = True
        self._last_error = None
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.create_task(self._loop(self._wakeup), name="github-poller")
        self._loop_tasks.add(self._loop_task)
        self._loop_task.add_done_callback(self._loop_tasks.discard)
        self._logger.info("poller_started", interval_seconds=self.config.interval_seconds)

    async def stop(self) -> None:
        """Stop scheduling new cycles.

        A cycle already in progress finishes in the background. Stopping a
        stopped poller is a no-op.
        """
        if not self._running:
            self._logger.debug("poller_stop_noop", reason="not running")
            return
        self._running = False
        self._wakeup.set()
        self._logger.info("poller_stopped")

    async def shutdown(self) -> None:
        """Stop and cancel any in-flight cycle (process exit).

        This includes cycles still finishing from an earlier ``stop``.
        """
        await self.stop()
        tasks = [task for task in self._loop_tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None

    async def _loop(self, wakeup: asyncio.Event) -> None:
        while not wakeup.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                self._last_error = str(e)
                self._logger.exception("poll_loop_error")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(wakeup.wait(), timeout=self.config.interval_seconds)
        self._logger.info("poll_loop_exited")

    async def poll_once(self) -> PollResult:
        """Run one cycle over all pollable projects."""
        async with self._cycle_lock:
            result = PollResult()
            errors: list[str] = []

            async with self.session_factory() as session:
                projects = await list_pollable_projects(session)

            for project in projects:
                try:
                    result.reviews_triggered += await self._poll_project(project)
                    result.projects_checked += 1
                    async with self.session_factory() as session:
                        await mark_polled(session, project.id)
                except Exception as e:
                    errors.append(f"{project.id}: {e}")
                    self._logger.error(
                        "poll_project_failed",
                        project_id=project.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

            self._last_poll_time = utcnow()
            self._last_error = errors[-1] if errors else None
            self._logger.info(
                "poll_cycle_completed",
                projects_checked=result.projects_checked,
                reviews_triggered=result.reviews_triggered,
                failed_projects=len(errors),
            )
            return result

    async def _poll_project(self, project: Project) -> int:
        target = ReviewTarget.from_project(project)
        found = await self.discovery.discover(project)
        if not found.pending:
            return 0
        outcomes = await self.orchestrator.run_batch(target, found.pending)
        return sum(1 for o in outcomes if o.status != OutcomeStatus.SKIPPED)
