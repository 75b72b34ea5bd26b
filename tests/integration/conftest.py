"""Pytest fixtures for integration tests.

Provides an in-memory SQLite database shared by every connection of a
test, a portal configuration whose review store lives under ``tmp_path``,
a fake review agent, a no-op clone and a fully wired service graph with
an HTTP client bound to the FastAPI app.

GitHub is never contacted: tests that reach the REST API mock it with
respx through the ``github_api`` fixture.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
import respx
import sse_starlette.sse
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from reviewportal.agents.runner import AgentRunResult
from reviewportal.config import AgentConfig, GitHubConfig, PortalConfig, StoreConfig
from reviewportal.database.models.base import Base
from reviewportal.database.models.project import Project
from reviewportal.orchestrator.initializer import sync_projects
from reviewportal.orchestrator.services import PortalServices, build_services
from reviewportal.web.app import create_app

GITHUB_API = "https://api.github.com"
PROJECT_ID = "github.com/acme/widgets"
GIT_REMOTE = "https://github.com/acme/widgets.git"

REVIEW_OUTPUT: dict[str, Any] = {
    "pr_number": 42,
    "repository": "acme/widgets",
    "verdict": "request_changes",
    "overall_summary": "Two issues need attention before merging.",
    "comments": [
        {
            "path": "src/auth.py",
            "start_line": 10,
            "end_line": 14,
            "severity": "HIGH",
            "category": "security",
            "body": "Token is logged in plain text.",
        },
        {
            "path": "src/util.py",
            "start_line": 3,
            "severity": "LOW",
            "category": "style",
            "body": "Unused import.",
        },
    ],
}


class FakeAgentRunner:
    """Agent stand-in that writes fixed files into the workspace.

    Attributes:
        files: Relative path -> content written on every successful run
        exit_code: Exit code reported for successful runs
        failing_prs: PR numbers whose review run exits with code 1
        block: When set, runs wait on this event before finishing
        started: Set whenever a run begins
        calls: Arguments of every run, in order
    """

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files = dict(files or {})
        self.exit_code = 0
        self.failing_prs: set[int] = set()
        self.block: Any = None
        self.started: Any = None
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def run(
        self,
        command: str,
        directory: Path,
        arguments: str,
        sink: Any = None,
        model: str | None = None,
        on_started: Any = None,
    ) -> AgentRunResult:
        self.calls.append(
            {"command": command, "directory": directory, "arguments": arguments, "model": model}
        )
        if self.started is not None:
            self.started.set()
        if sink is not None:
            await sink(f"running {command} {arguments}".strip())
        if self.block is not None:
            await self.block.wait()

        pr_number = int(arguments.split()[0]) if arguments else None
        if pr_number in self.failing_prs:
            return AgentRunResult(exit_code=1)
        for name, content in self.files.items():
            path = directory / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return AgentRunResult(exit_code=self.exit_code)

    async def close(self) -> None:
        self.closed = True


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def write_project_index(
    store_root: Path,
    project_id: str = PROJECT_ID,
    git_remote: str = GIT_REMOTE,
    name: str = "widgets",
) -> Path:
    """Create a guideline index with a root document and one module."""
    directory = store_root / "projects" / project_id
    (directory / "modules").mkdir(parents=True, exist_ok=True)
    (directory / "CODEREVIEW.md").write_text("# Root guidelines\n", encoding="utf-8")
    (directory / "modules" / "api.md").write_text("# API guidelines\n", encoding="utf-8")
    index = {
        "project": name,
        "git_remote": git_remote,
        "generated_at": "2026-01-15T09:00:00Z",
        "root_codereview": "CODEREVIEW.md",
        "modules": [{"name": "api", "path": "src/api", "codereview_file": "modules/api.md"}],
    }
    path = directory / "codereview_index.json"
    path.write_text(json.dumps(index), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def reset_sse_exit_event(monkeypatch: pytest.MonkeyPatch) -> None:
    """sse-starlette may cache its exit event on the first event loop it sees."""
    app_status = getattr(sse_starlette.sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        monkeypatch.setattr(app_status, "should_exit_event", None)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite async engine for testing.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.

    Yields:
        Configured AsyncEngine instance using in-memory SQLite.
    """
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    event.listen(test_engine.sync_engine, "connect", _enable_foreign_keys)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine.

    Args:
        engine: The test database engine.

    Returns:
        Configured async_sessionmaker for creating test sessions.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a new async database session for each test.

    Args:
        session_factory: The session factory fixture.

    Yields:
        AsyncSession instance for the test.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def config(store_root: Path) -> PortalConfig:
    """Portal configuration with a temporary store and a test token."""
    return PortalConfig(
        store=StoreConfig(root=store_root),
        github=GitHubConfig(token="ghp_test"),
        agent=AgentConfig(terminate_grace_seconds=0.5),
    )


@pytest.fixture
def review_output() -> dict[str, Any]:
    """The artifact the fake agent writes for PR 42."""
    return json.loads(json.dumps(REVIEW_OUTPUT))


@pytest.fixture
def make_project_index(store_root: Path) -> Any:
    """Write a guideline index for another project into the store."""

    def _make(project_id: str, git_remote: str, name: str) -> Path:
        return write_project_index(store_root, project_id, git_remote, name)

    return _make


@pytest.fixture
def agent_runner() -> FakeAgentRunner:
    """Agent that writes a valid review artifact and a summary."""
    return FakeAgentRunner(
        files={
            "review_comments.json": json.dumps(REVIEW_OUTPUT),
            "review_summary.md": "# Review of PR 42\n\nTwo issues.\n",
        }
    )


@pytest.fixture
def fake_clone(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Replace git clones with a no-op and record the cloned remotes."""
    cloned: list[str] = []

    async def _clone(url: str, path: Path) -> None:
        cloned.append(url)

    monkeypatch.setattr("reviewportal.orchestrator.review_runner.clone_repository", _clone)
    monkeypatch.setattr("reviewportal.orchestrator.initializer.clone_repository", _clone)
    return cloned


@pytest.fixture
def github_api() -> Iterator[respx.MockRouter]:
    """Mock the GitHub REST API; unmatched requests fail the test."""
    with respx.mock(base_url=GITHUB_API, assert_all_called=False) as router:
        yield router


@pytest_asyncio.fixture
async def services(
    config: PortalConfig,
    session_factory: async_sessionmaker[AsyncSession],
    agent_runner: FakeAgentRunner,
) -> AsyncGenerator[PortalServices, None]:
    """Service graph wired to the test database and the fake agent."""
    portal = build_services(config, session_factory, runner=agent_runner)
    yield portal
    await portal.aclose()


@pytest_asyncio.fixture
async def project(services: PortalServices, store_root: Path) -> Project:
    """The acme/widgets project, registered through a store sync."""
    write_project_index(store_root)
    await sync_projects(services.session_factory, services.store)
    async with services.session_factory() as session:
        registered = await session.get(Project, PROJECT_ID)
    assert registered is not None
    return registered


@pytest_asyncio.fixture
async def client(services: PortalServices) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing the FastAPI app.

    Yields:
        AsyncClient configured to test the application.
    """
    app = create_app(services.config, services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
