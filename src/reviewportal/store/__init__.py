"""Filesystem review store: guideline documents, settings and review artifacts."""

from reviewportal.store.documents import (
    DiscoveredProject,
    ModuleEntry,
    ProjectIndex,
    ReviewStore,
)

__all__ = ["DiscoveredProject", "ModuleEntry", "ProjectIndex", "ReviewStore"]
