"""FastAPI application factory for Review Portal.

This module provides the application factory that creates and configures
a FastAPI application with:
- CORS middleware for the dashboard origin
- Request logging middleware with correlation IDs
- Database and service lifecycle management
- Project, review, polling, webhook and health endpoints

Example usage:
    >>> from reviewportal.config import PortalConfig
    >>> from reviewportal.web.app import create_app
    >>>
    >>> app = create_app(PortalConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=3001)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reviewportal import __version__
from reviewportal.config import PortalConfig
from reviewportal.database.connection import get_engine, get_session_factory, init_database
from reviewportal.errors import ConfigurationError
from reviewportal.logging import get_logger
from reviewportal.orchestrator.services import PortalServices, build_services
from reviewportal.web.middleware import RequestLoggingMiddleware
from reviewportal.web.routes.github import create_github_router
from reviewportal.web.routes.health import create_health_router
from reviewportal.web.routes.polling import create_polling_router
from reviewportal.web.routes.pr_check import create_pr_check_router
from reviewportal.web.routes.projects import create_projects_router
from reviewportal.web.routes.reviews import create_reviews_router
from reviewportal.web.routes.sessions import create_sessions_router
from reviewportal.web.routes.settings import create_settings_router
from reviewportal.web.routes.webhooks import create_webhooks_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the database and the long-lived services.

    When ``create_app`` was given prebuilt services (tests), they are used
    as-is and left for the caller to close. Otherwise the engine, schema
    and service graph are created here and torn down on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: PortalConfig = app.state.config
    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    services: PortalServices | None = app.state.services
    if services is not None:
        app.state.session_factory = services.session_factory
        yield
        logger.info("app_shutdown_complete", owned_services=False)
        return

    engine = get_engine(config.database_url, config.database)
    await init_database(engine)
    session_factory = get_session_factory(engine)
    services = build_services(config, session_factory)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.services = services
    logger.info("services_initialized", agent_mode=config.agent.mode, store=str(config.store.root))

    if config.polling.start_on_boot:
        try:
            await services.poller.start()
        except ConfigurationError as e:
            logger.warning("poller_not_started", reason=str(e))

    try:
        yield
    finally:
        logger.info("app_shutdown_begin")
        await services.aclose()
        await engine.dispose()
        app.state.services = None
        logger.info("app_shutdown_complete", owned_services=True)


def create_app(
    config: PortalConfig | None = None,
    services: PortalServices | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Portal configuration. If None, loaded from the environment.
        services: Prebuilt service graph, mainly for tests. When given, its
            session factory is used and the lifespan does not close it.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = services.config if services is not None else PortalConfig()

    app = FastAPI(
        title="Review Portal",
        version=__version__,
        description="Management portal for AI-generated GitHub pull request reviews",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.services = services
    if services is not None:
        app.state.session_factory = services.session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_projects_router())
    app.include_router(create_pr_check_router())
    app.include_router(create_reviews_router())
    app.include_router(create_github_router())
    app.include_router(create_polling_router())
    app.include_router(create_sessions_router())
    app.include_router(create_settings_router())
    app.include_router(create_webhooks_router())

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        version=__version__,
    )
    return app
