from .client import (
    ArtifactClient,
    StatResult,
    WorkspaceClient,
    WorkspaceError,
    WorkspaceSettings,
    expand_workspace_path,
)

__all__ = [
    "ArtifactClient",
    "StatResult",
    "WorkspaceClient",
    "WorkspaceError",
    "WorkspaceSettings",
    "expand_workspace_path",
]
