"""Composition of the long-lived portal services.

Both the web application lifespan and the CLI build their object graph
here so that each process owns exactly one poller, one GitHub client and
one agent runner.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from reviewportal.agents.runner import create_agent_runner
from reviewportal.forge.github import GitHubClient
from reviewportal.orchestrator.initializer import ProjectInitializer
from reviewportal.orchestrator.poller import GitHubPoller
from reviewportal.orchestrator.publisher import ReviewPublisher
from reviewportal.orchestrator.recovery import StaleClaimReconciler
from reviewportal.orchestrator.review_runner import ReviewOrchestrator
from reviewportal.orchestrator.tasks import TaskRegistry
from reviewportal.review.discovery import PRDiscovery
from reviewportal.store.documents import ReviewStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewportal.agents.runner import AgentRunner
    from reviewportal.config import PortalConfig


@dataclass
class PortalServices:
    config: PortalConfig
    session_factory: async_sessionmaker[AsyncSession]
    store: ReviewStore
    github: GitHubClient
    runner: AgentRunner
    reconciler: StaleClaimReconciler
    discovery: PRDiscovery
    orchestrator: ReviewOrchestrator
    poller: GitHubPoller
    initializer: ProjectInitializer
    publisher: ReviewPublisher
    tasks: TaskRegistry

    async def aclose(self) -> None:
        """Stop the poller, cancel background runs and close HTTP clients."""
        await self.poller.shutdown()
        await self.tasks.shutdown()
        await self.runner.close()
        await self.github.close()


def build_services(
    config: PortalConfig,
    session_factory: async_sessionmaker[AsyncSession],
    github: GitHubClient | None = None,
    runner: AgentRunner | None = None,
) -> PortalServices:
    """Wire the service graph; ``github`` and ``runner`` may be injected."""
    store = ReviewStore(config.store, config.agent)
    github = github or GitHubClient(config.github)
    runner = runner or create_agent_runner(config.agent)
    orchestrator = ReviewOrchestrator(session_factory, store, github, runner, config.agent)
    reconciler = StaleClaimReconciler(
        session_factory,
        config.polling,
        active_reviews=orchestrator.active_review_ids,
    )
    discovery = PRDiscovery(session_factory, github, reconciler)
    poller = GitHubPoller(session_factory, discovery, orchestrator, github, config.polling)
    initializer = ProjectInitializer(session_factory, store, runner, config.agent)
    return PortalServices(
        config=config,
        session_factory=session_factory,
        store=store,
        github=github,
        runner=runner,
        reconciler=reconciler,
        discovery=discovery,
        orchestrator=orchestrator,
        poller=poller,
        initializer=initializer,
        publisher=ReviewPublisher(session_factory, store, github),
        tasks=TaskRegistry(),
    )
