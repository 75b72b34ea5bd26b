"""Integration tests for the project management API.

Tests cover:
- Listing and refreshing projects from the review store
- Guideline index and document read/write with revision history
- Project settings read and partial update
- Project removal
- Repository onboarding over SSE
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest
from httpx import AsyncClient

from reviewportal.database.models.project import Project
from reviewportal.errors import CloneError
from reviewportal.orchestrator.services import PortalServices

pytestmark = pytest.mark.integration

BASE = "/api/projects/github.com/acme/widgets"


def sse_frames(response: httpx.Response) -> list[dict[str, Any]]:
    """Decode the JSON payload of every ``data:`` line."""
    return [
        json.loads(line[len("data:") :].strip())
        for line in response.text.splitlines()
        if line.startswith("data:")
    ]


class TestListProjects:
    async def test_empty_store(self, client: AsyncClient) -> None:
        response = await client.get("/api/projects")

        assert response.status_code == 200
        assert response.json() == []

    async def test_lists_synced_projects(self, client: AsyncClient, make_project_index) -> None:
        make_project_index(
            "github.com/acme/widgets", "https://github.com/acme/widgets.git", "widgets"
        )

        response = await client.get("/api/projects")

        assert response.status_code == 200
        [summary] = response.json()
        assert summary["project_id"] == "github.com/acme/widgets"
        assert summary["display_name"] == "widgets"
        assert summary["git_remote"] == "https://github.com/acme/widgets.git"
        assert summary["total_modules"] == 1
        assert summary["last_generated_date"] == "2026-01-15T09:00:00Z"
        assert summary["last_review_date"] is None
        assert summary["status"] == "draft"

    async def test_refresh(
        self, client: AsyncClient, project: Project, make_project_index
    ) -> None:
        make_project_index(
            "github.com/acme/gadgets", "https://github.com/acme/gadgets.git", "gadgets"
        )

        response = await client.post("/api/projects/refresh")

        assert response.status_code == 200
        assert response.json() == {"success": True, "discovered": 2, "upserted": 2}


class TestIndexAndDocuments:
    async def test_index(self, client: AsyncClient, project: Project) -> None:
        response = await client.get(f"{BASE}/index")

        assert response.status_code == 200
        data = response.json()
        assert data["project"] == "widgets"
        assert [m["name"] for m in data["modules"]] == ["api"]

    async def test_index_missing(self, client: AsyncClient) -> None:
        response = await client.get("/api/projects/github.com/acme/unknown/index")
        assert response.status_code == 404

    async def test_read_root_and_module(self, client: AsyncClient, project: Project) -> None:
        root = await client.get(f"{BASE}/document")
        module = await client.get(f"{BASE}/document", params={"module": "api"})

        assert root.status_code == 200
        assert root.json()["content"] == "# Root guidelines\n"
        assert root.json()["file_path"] == "CODEREVIEW.md"
        assert root.json()["module_name"] is None
        assert root.json()["version"] == 1
        assert module.json()["content"] == "# API guidelines\n"
        assert module.json()["file_path"] == "modules/api.md"

    async def test_read_unknown_module(self, client: AsyncClient, project: Project) -> None:
        response = await client.get(f"{BASE}/document", params={"module": "web"})
        assert response.status_code == 404

    async def test_write_records_versions(
        self, client: AsyncClient, project: Project, store_root: Path
    ) -> None:
        first = await client.put(f"{BASE}/document", json={"content": "# v2\n"})
        second = await client.put(f"{BASE}/document", json={"content": "# v3\n"})

        assert first.status_code == 200
        assert first.json()["version"] == 1
        assert second.json()["version"] == 2
        on_disk = store_root / "projects/github.com/acme/widgets/CODEREVIEW.md"
        assert on_disk.read_text(encoding="utf-8") == "# v3\n"

        current = await client.get(f"{BASE}/document")
        assert current.json()["content"] == "# v3\n"
        assert current.json()["version"] == 2

        versions = await client.get(f"{BASE}/document/versions")
        assert [v["version"] for v in versions.json()] == [2, 1]
        assert versions.json()[0]["modified_by"] == "user"

    async def test_write_unknown_module(self, client: AsyncClient, project: Project) -> None:
        response = await client.put(
            f"{BASE}/document", json={"module": "web", "content": "# Web\n"}
        )

        assert response.status_code == 404
        assert 'Module "web" not found in index' in response.json()["detail"]

    async def test_write_requires_string_content(
        self, client: AsyncClient, project: Project
    ) -> None:
        response = await client.put(f"{BASE}/document", json={"content": 42})

        assert response.status_code == 400
        assert response.json()["detail"] == "content must be a string"


class TestSettings:
    async def test_get_defaults(self, client: AsyncClient, project: Project) -> None:
        response = await client.get(f"{BASE}/settings")

        assert response.status_code == 200
        data = response.json()
        assert data["project_id"] == "github.com/acme/widgets"
        assert data["review_trigger_label"] == "ai_codereview"
        assert data["auto_review_enabled"] is True
        assert data["polling_enabled"] is False

    async def test_patch(
        self, client: AsyncClient, project: Project, services: PortalServices
    ) -> None:
        response = await client.patch(
            f"{BASE}/settings",
            json={"polling_enabled": True, "review_trigger_label": "needs-review"},
        )

        assert response.status_code == 200
        assert response.json()["polling_enabled"] is True
        assert response.json()["review_trigger_label"] == "needs-review"

        stored = services.store.read_settings("github.com/acme/widgets")
        assert stored == {"polling_enabled": True, "review_trigger_label": "needs-review"}

        again = await client.get(f"{BASE}/settings")
        assert again.json()["review_trigger_label"] == "needs-review"

    async def test_patch_empty(self, client: AsyncClient, project: Project) -> None:
        response = await client.patch(f"{BASE}/settings", json={})
        assert response.status_code == 400

    async def test_patch_rejects_unknown_fields(
        self, client: AsyncClient, project: Project
    ) -> None:
        response = await client.patch(f"{BASE}/settings", json={"store_path": "/tmp"})
        assert response.status_code == 422

    async def test_unknown_project(self, client: AsyncClient) -> None:
        get = await client.get("/api/projects/github.com/acme/unknown/settings")
        patch = await client.patch(
            "/api/projects/github.com/acme/unknown/settings", json={"polling_enabled": True}
        )

        assert get.status_code == 404
        assert patch.status_code == 404


class TestDeleteProject:
    async def test_delete(
        self, client: AsyncClient, project: Project, store_root: Path
    ) -> None:
        response = await client.delete(BASE)

        assert response.status_code == 200
        assert response.json() == {"success": True, "project_id": "github.com/acme/widgets"}
        assert not (store_root / "projects/github.com/acme/widgets").exists()
        assert (await client.get(f"{BASE}/settings")).status_code == 404
        assert (await client.get("/api/projects")).json() == []

    async def test_delete_unknown(self, client: AsyncClient) -> None:
        response = await client.delete("/api/projects/github.com/acme/unknown")
        assert response.status_code == 404


class TestAddProject:
    """Test repository onboarding through the init command."""

    async def test_requires_git_url(self, client: AsyncClient) -> None:
        response = await client.post("/api/projects/add", json={"git_url": "  "})
        assert response.status_code == 400

    async def test_add(
        self,
        client: AsyncClient,
        agent_runner,
        fake_clone: list[str],
        store_root: Path,
    ) -> None:
        index = {
            "project": "gadgets",
            "git_remote": "https://github.com/acme/gadgets.git",
            "root_codereview": "CODEREVIEW.md",
            "modules": [],
        }
        agent_runner.files = {
            "codereview_index.json": json.dumps(index),
            "CODEREVIEW.md": "# Gadgets guidelines\n",
            "src/main.py": "print('not copied')\n",
        }

        response = await client.post(
            "/api/projects/add",
            json={"git_url": "https://github.com/acme/gadgets.git", "display_name": "Gadgets"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = sse_frames(response)
        done = frames[-1]
        assert done["type"] == "done"
        assert done["project_id"] == "github.com/acme/gadgets"
        assert done["files_copied"] == 2
        assert fake_clone == ["https://github.com/acme/gadgets.git"]
        assert agent_runner.calls[0]["command"] == "codereview-int-deep"

        project_dir = store_root / "projects/github.com/acme/gadgets"
        assert (project_dir / "CODEREVIEW.md").is_file()
        assert not (project_dir / "src/main.py").exists()

        listed = (await client.get("/api/projects")).json()
        assert [p["display_name"] for p in listed] == ["Gadgets"]

    async def test_clone_failure(
        self,
        client: AsyncClient,
        agent_runner,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def failing_clone(url: str, path: Path) -> None:
            raise CloneError(f"Failed to clone {url}: not found")

        monkeypatch.setattr(
            "reviewportal.orchestrator.initializer.clone_repository", failing_clone
        )

        response = await client.post(
            "/api/projects/add", json={"git_url": "https://github.com/acme/missing.git"}
        )

        frames = sse_frames(response)
        assert frames[-1]["type"] == "error"
        assert "Failed to clone" in frames[-1]["message"]
        assert agent_runner.calls == []
