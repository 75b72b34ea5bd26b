"""Unit tests for FastAPI application setup.

Tests cover:
- Application factory creates FastAPI instance
- CORS middleware uses the configured dashboard origins
- Request logging middleware and correlation ids
- Health and readiness endpoints
- Router registration
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from httpx import ASGITransport, AsyncClient

from reviewportal import __version__
from reviewportal.config import PortalConfig, WebConfig
from reviewportal.web.app import create_app
from reviewportal.web.middleware import RequestLoggingMiddleware


def session_factory_mock(failure: Exception | None = None) -> MagicMock:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=MagicMock())
    factory = MagicMock()
    if failure is not None:
        factory.return_value.__aenter__ = AsyncMock(side_effect=failure)
    else:
        factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=None)
    return factory


@pytest.fixture
def app() -> FastAPI:
    """App whose database is a mock; the lifespan is never started."""
    application = create_app(PortalConfig())
    application.state.session_factory = session_factory_mock()
    return application


class TestCreateApp:
    def test_metadata(self) -> None:
        app = create_app(PortalConfig())
        assert isinstance(app, FastAPI)
        assert app.title == "Review Portal"
        assert app.version == __version__

    def test_config_stored_in_state(self) -> None:
        config = PortalConfig()
        app = create_app(config)
        assert app.state.config is config
        assert app.state.services is None

    def test_config_taken_from_services(self) -> None:
        services = MagicMock()
        services.config = PortalConfig(web=WebConfig(port=4000))

        app = create_app(services=services)

        assert app.state.config is services.config
        assert app.state.session_factory is services.session_factory


class TestMiddleware:
    def test_cors_uses_config_origins(self) -> None:
        origins = ["https://reviews.example.com"]
        app = create_app(PortalConfig(web=WebConfig(cors_origins=origins)))

        cors = [m for m in app.user_middleware if m.cls == CORSMiddleware]

        assert len(cors) == 1
        assert cors[0].kwargs["allow_origins"] == origins
        assert cors[0].kwargs["allow_credentials"] is True

    def test_default_origin_is_dashboard(self) -> None:
        app = create_app(PortalConfig())
        cors = next(m for m in app.user_middleware if m.cls == CORSMiddleware)
        assert cors.kwargs["allow_origins"] == ["http://localhost:3000"]

    def test_request_logging_registered(self) -> None:
        app = create_app(PortalConfig())
        assert any(m.cls == RequestLoggingMiddleware for m in app.user_middleware)

    async def test_correlation_id_echoed(self, app: FastAPI) -> None:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            generated = await client.get("/health/")
            echoed = await client.get("/health/", headers={"X-Correlation-ID": "req-42"})

        assert generated.headers["X-Correlation-ID"]
        assert echoed.headers["X-Correlation-ID"] == "req-42"


class TestHealth:
    async def test_liveness(self, app: FastAPI) -> None:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health/")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_readiness_connected(self, app: FastAPI) -> None:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health/ready")

        assert response.json() == {"status": "ok", "database": "connected"}

    async def test_readiness_disconnected(self) -> None:
        app = create_app(PortalConfig())
        app.state.session_factory = session_factory_mock(Exception("database is locked"))

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "unhealthy", "database": "disconnected"}


@pytest.mark.parametrize(
    "path",
    [
        "/health/ready",
        "/api/projects",
        "/api/projects/refresh",
        "/api/projects/add",
        "/api/projects/{project_id:path}/check-prs",
        "/api/projects/{project_id:path}/review-pr",
        "/api/projects/{project_id:path}/review-prs-stream",
        "/api/projects/{project_id:path}/document/versions",
        "/api/reviews/{review_id:path}",
        "/api/github/push-review/{review_id:path}",
        "/api/github/push-review-by-pr/{project_id:path}/{pr_number:int}",
        "/api/polling/status",
        "/api/polling/trigger",
        "/api/sessions/{session_id}/status",
        "/api/settings",
        "/webhooks/github",
    ],
)
def test_route_registered(path: str) -> None:
    app = create_app(PortalConfig())
    assert path in {route.path for route in app.routes if isinstance(route, APIRoute)}
