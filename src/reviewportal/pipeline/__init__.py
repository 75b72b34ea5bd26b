"""Workspace lifecycle and repository cloning."""

from reviewportal.pipeline.workspace import acquire_workspace, clone_repository, workspace_name

__all__ = ["acquire_workspace", "clone_repository", "workspace_name"]
