"""Exception hierarchy for repograph."""

from __future__ import annotations

from typing import Optional


class RepographError(Exception):
    """Base exception for repograph errors."""


class ParseError(RepographError):
    """A single file could not be parsed.  Never fatal for a sync."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class GraphError(RepographError):
    """Graph store failure."""


class GraphWriteError(GraphError):
    """Persisting a file's nodes and edges failed."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"graph write failed for {path}: {message}")
        self.path = path


class JobConflictError(RepographError):
    """A sync was requested while another one is active for the repository."""

    def __init__(self, repo_id: str, active_job_id: Optional[str] = None) -> None:
        msg = f"repository '{repo_id}' already has an active sync job"
        if active_job_id:
            msg += f" ({active_job_id})"
        super().__init__(msg)
        self.repo_id = repo_id
        self.active_job_id = active_job_id


class JobNotFoundError(RepographError):
    """No job with the given id exists."""


class SourceTreeError(RepographError):
    """The repository's files could not be listed, read or diffed."""


class EmbeddingError(RepographError):
    """The embedding collaborator failed or timed out."""


class VectorStoreError(RepographError):
    """The vector-store collaborator rejected an upsert."""


class UnsafeQueryError(RepographError):
    """A raw graph query contains a mutating keyword."""
