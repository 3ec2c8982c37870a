"""Core storage - local artifact store."""

from core.storage.artifacts import (
    ArtifactStore,
    ArtifactUnreadableError,
    candidate_names,
)

__all__ = [
    "ArtifactStore",
    "ArtifactUnreadableError",
    "candidate_names",
]
