"""Filesystem review store.

Layout under the store root::

    projects/<project_id>/codereview_index.json
    projects/<project_id>/settings.json
    projects/<project_id>/<guideline documents>.md
    reviews/<YYYY-MM-DD>_PR-<n>_<repo>/review_comments.json
    reviews/<YYYY-MM-DD>_PR-<n>_<repo>/review_summary.md

Project ids contain slashes (``github.com/acme/widgets``) and map directly
onto nested directories below ``projects/``.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reviewportal.config import AgentConfig, StoreConfig
from reviewportal.errors import StoreError
from reviewportal.logging import get_logger

INDEX_FILENAME = "codereview_index.json"
SETTINGS_FILENAME = "settings.json"
GENERATED_FILE_NAMES = {"settings.json", "opencode.json"}


class ModuleEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    path: str = ""
    codereview_file: str


class ProjectIndex(BaseModel):
    """Guideline index written by the agent's init command."""

    model_config = ConfigDict(extra="allow")

    project: str = ""
    git_remote: str = ""
    generated_at: str | None = None
    root_codereview: str | None = None
    modules: list[ModuleEntry] = Field(default_factory=list)

    def module(self, name: str) -> ModuleEntry | None:
        return next((m for m in self.modules if m.name == name), None)


@dataclass
class DiscoveredProject:
    project_id: str
    display_name: str
    git_remote: str
    store_path: str


class ReviewStore:
    """Read and write access to the review store directory tree.

    Attributes:
        config: Store configuration (root directory)
        output_filename: Name of the review artifact inside a review dir
        summary_filename: Name of the markdown summary inside a review dir
    """

    def __init__(self, config: StoreConfig, agent_config: AgentConfig | None = None) -> None:
        agent_config = agent_config or AgentConfig()
        self.config = config
        self.output_filename = agent_config.output_filename
        self.summary_filename = agent_config.summary_filename
        self.logger = get_logger(__name__).bind(component="review_store")

    @property
    def projects_dir(self) -> Path:
        return self.config.projects_dir

    @property
    def reviews_dir(self) -> Path:
        return self.config.reviews_dir

    def project_dir(self, project_id: str) -> Path:
        """Directory of a project; rejects ids escaping the projects dir."""
        base = self.projects_dir.resolve()
        path = (base / project_id).resolve()
        if path == base or base not in path.parents:
            raise StoreError(f"Invalid project id: {project_id!r}")
        return path

    def review_dir(self, review_dir: str) -> Path:
        base = self.reviews_dir.resolve()
        path = (base / review_dir).resolve()
        if base not in path.parents:
            raise StoreError(f"Invalid review directory: {review_dir!r}")
        return path

    # ------------------------------------------------------------------
    # Guideline index and documents
    # ------------------------------------------------------------------

    def index_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / INDEX_FILENAME

    def read_index(self, project_id: str) -> ProjectIndex | None:
        """Parse the project's index, or None if absent or unreadable."""
        path = self.index_path(project_id)
        if not path.is_file():
            return None
        try:
            return ProjectIndex.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            self.logger.warning("store_index_invalid", project_id=project_id, error=str(e))
            return None

    def index_mtime(self, project_id: str) -> datetime | None:
        path = self.index_path(project_id)
        if not path.is_file():
            return None
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    def document_path(self, project_id: str, module_name: str | None) -> Path | None:
        """Resolve the document file for the root (None) or a module."""
        index = self.read_index(project_id)
        if index is None:
            return None
        if module_name is None:
            relative = index.root_codereview
        else:
            entry = index.module(module_name)
            relative = entry.codereview_file if entry else None
        if not relative:
            return None
        return self.project_dir(project_id) / relative

    def read_document(self, project_id: str, module_name: str | None) -> str | None:
        path = self.document_path(project_id, module_name)
        if path is None or not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def write_document(self, project_id: str, module_name: str | None, content: str) -> Path:
        """Overwrite a guideline document.

        Raises:
            StoreError: If the project has no index or the module is unknown.
        """
        if self.read_index(project_id) is None:
            raise StoreError("Project index not found")
        path = self.document_path(project_id, module_name)
        if path is None:
            raise StoreError(f'Module "{module_name}" not found in index')
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        self.logger.info("store_document_written", project_id=project_id, module=module_name)
        return path

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def read_settings(self, project_id: str) -> dict[str, Any] | None:
        path = self.project_dir(project_id) / SETTINGS_FILENAME
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            self.logger.warning("store_settings_invalid", project_id=project_id, error=str(e))
            return None

    def write_settings(self, project_id: str, settings: dict[str, Any]) -> None:
        directory = self.project_dir(project_id)
        directory.mkdir(parents=True, exist_ok=True)
        (directory / SETTINGS_FILENAME).write_text(
            json.dumps(settings, indent=2, default=str), encoding="utf-8"
        )

    # ------------------------------------------------------------------
    # Project discovery and import
    # ------------------------------------------------------------------

    def discover_projects(self) -> list[DiscoveredProject]:
        """Find every directory below projects/ holding an index."""
        if not self.projects_dir.is_dir():
            return []
        projects = []
        for index_file in sorted(self.projects_dir.rglob(INDEX_FILENAME)):
            directory = index_file.parent
            project_id = directory.relative_to(self.projects_dir).as_posix()
            index = self.read_index(project_id)
            if index is None:
                continue
            projects.append(
                DiscoveredProject(
                    project_id=project_id,
                    display_name=index.project or project_id.rsplit("/", 1)[-1],
                    git_remote=index.git_remote or f"https://{project_id}.git",
                    store_path=str(directory),
                )
            )
        self.logger.debug("store_projects_discovered", count=len(projects))
        return projects

    def import_generated_files(self, source_dir: Path, project_id: str) -> list[str]:
        """Copy guideline files produced by the init command into the store.

        Copied: any path containing "codereview", settings.json,
        opencode.json and markdown files. The .git directory is skipped.

        Returns:
            Relative paths of the copied files.
        """
        target = self.project_dir(project_id)
        copied = []
        for path in sorted(source_dir.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(source_dir)
            if relative.parts[0] == ".git":
                continue
            rel = relative.as_posix()
            if "codereview" in rel or rel in GENERATED_FILE_NAMES or rel.endswith(".md"):
                destination = target / relative
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(path, destination)
                copied.append(rel)
        self.logger.info("store_files_imported", project_id=project_id, count=len(copied))
        return copied

    def remove_project(self, project_id: str, review_dirs: list[str] | None = None) -> None:
        """Delete the project directory and the given review directories."""
        shutil.rmtree(self.project_dir(project_id), ignore_errors=True)
        for name in review_dirs or []:
            try:
                shutil.rmtree(self.review_dir(name), ignore_errors=True)
            except StoreError:
                self.logger.warning("store_review_dir_skipped", review_dir=name)
        self.logger.info("store_project_removed", project_id=project_id)

    # ------------------------------------------------------------------
    # Review artifacts
    # ------------------------------------------------------------------

    @staticmethod
    def review_dir_name(pr_number: int, repository: str, when: datetime | None = None) -> str:
        """``YYYY-MM-DD_PR-<n>_<repo>`` using the repository's short name."""
        when = when or datetime.now(timezone.utc)
        repo_name = repository.rsplit("/", 1)[-1]
        return f"{when:%Y-%m-%d}_PR-{pr_number}_{repo_name}"

    def archive_review_output(self, workspace: Path, review_dir: str) -> Path:
        """Copy the artifact and summary out of a workspace.

        Raises:
            StoreError: If the workspace holds no review artifact.
        """
        source = workspace / self.output_filename
        if not source.is_file():
            raise StoreError("Review output file not found")
        destination = self.review_dir(review_dir)
        destination.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination / self.output_filename)
        summary = workspace / self.summary_filename
        if summary.is_file():
            shutil.copyfile(summary, destination / self.summary_filename)
        self.logger.info("store_review_archived", review_dir=review_dir)
        return destination

    def read_review_output(self, review_dir: str) -> dict[str, Any] | None:
        path = self.review_dir(review_dir) / self.output_filename
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            self.logger.warning("store_review_output_invalid", review_dir=review_dir, error=str(e))
            return None

    def read_review_summary(self, review_dir: str) -> str | None:
        path = self.review_dir(review_dir) / self.summary_filename
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def list_review_dirs(self) -> list[str]:
        """Review directory names, newest first."""
        if not self.reviews_dir.is_dir():
            return []
        return sorted((p.name for p in self.reviews_dir.iterdir() if p.is_dir()), reverse=True)

    def find_review_dir(self, pr_number: int, repository: str | None) -> str | None:
        """Most recent review dir for a PR that holds an artifact."""
        suffix = f"_PR-{pr_number}"
        if repository:
            suffix += f"_{repository.rsplit('/', 1)[-1]}"
        for name in self.list_review_dirs():
            if name.endswith(suffix) and (self.reviews_dir / name / self.output_filename).is_file():
                return name
        return None
