"""Source tree collaborators: where a sync reads file lists and contents from.

``GitSourceTree`` shells out to the ``git`` CLI for registered repositories.
``DirectorySourceTree`` snapshots a plain working tree; each snapshot's
manifest (path to content hash) is saved so later deltas can be diffed.
"""

from __future__ import annotations

import hashlib
import json
import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .config import DATA_DIR, SKIP_DIRS
from .errors import SourceTreeError
from .models import CommitInfo, FileChanges, is_code_file

logger = logging.getLogger(__name__)

DEFAULT_REF = "HEAD"
GIT_TIMEOUT_SECONDS = 60
DEFAULT_LOG_LIMIT = 500

# Record and field separators for `git log --format`
_LOG_FORMAT = "%x1e%H%x1f%P%x1f%an%x1f%ae%x1f%cn%x1f%at%x1f%s"


class SourceTree(Protocol):
    def list_files(self, repo_id: str, ref: str) -> List[str]: ...

    def read_file(self, repo_id: str, ref: str, path: str) -> bytes: ...

    def diff(self, repo_id: str, from_ref: str, to_ref: str) -> FileChanges: ...

    def resolve_ref(self, repo_id: str, ref: Optional[str]) -> str: ...

    def log(
        self, repo_id: str, ref: str, since: Optional[str] = None, limit: int = DEFAULT_LOG_LIMIT,
    ) -> List[CommitInfo]: ...


# ===================================================================
# Git
# ===================================================================

class GitSourceTree:
    """Read repositories through the ``git`` command line."""

    def __init__(self, repos: Optional[Dict[str, Path]] = None) -> None:
        self._repos: Dict[str, Path] = dict(repos or {})

    def register(self, repo_id: str, path: Path) -> None:
        self._repos[repo_id] = Path(path).resolve()

    def _root(self, repo_id: str) -> Path:
        root = self._repos.get(repo_id)
        if root is None:
            raise SourceTreeError(f"unknown repository: {repo_id}")
        return root

    def _git(self, repo_id: str, *args: str) -> bytes:
        root = self._root(repo_id)
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=str(root),
                capture_output=True,
                timeout=GIT_TIMEOUT_SECONDS,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise SourceTreeError(f"git {args[0]} failed in {root}: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise SourceTreeError(f"git {args[0]} failed in {root}: {stderr}")
        return result.stdout

    def resolve_ref(self, repo_id: str, ref: Optional[str]) -> str:
        out = self._git(repo_id, "rev-parse", "--verify", f"{ref or DEFAULT_REF}^{{commit}}")
        return out.decode("ascii").strip()

    def list_files(self, repo_id: str, ref: str) -> List[str]:
        out = self._git(repo_id, "ls-tree", "-r", "--name-only", "-z", ref)
        paths = [p for p in out.decode("utf-8", errors="replace").split("\0") if p]
        return sorted(p for p in paths if is_code_file(p) and not _skipped(p))

    def read_file(self, repo_id: str, ref: str, path: str) -> bytes:
        return self._git(repo_id, "show", f"{ref}:{path}")

    def diff(self, repo_id: str, from_ref: str, to_ref: str) -> FileChanges:
        out = self._git(repo_id, "diff", "--name-status", "--no-renames", "-z", from_ref, to_ref)
        return _parse_name_status(out)

    def log(
        self, repo_id: str, ref: str, since: Optional[str] = None, limit: int = DEFAULT_LOG_LIMIT,
    ) -> List[CommitInfo]:
        """Commits reachable from *ref* and not from *since*, newest first."""
        rev = f"{since}..{ref}" if since else ref
        out = self._git(repo_id, "log", f"--max-count={limit}", f"--format={_LOG_FORMAT}", rev)
        commits: List[CommitInfo] = []
        for record in out.decode("utf-8", errors="replace").split("\x1e"):
            record = record.strip("\n")
            if not record:
                continue
            sha, parents, author, email, committer, timestamp, subject = record.split("\x1f", 6)
            commits.append(CommitInfo(
                sha=sha,
                message=subject,
                author=author,
                author_email=email,
                committer=committer,
                timestamp=int(timestamp or 0),
                parents=parents.split(),
                changes=self._commit_changes(repo_id, sha),
            ))
        return commits

    def _commit_changes(self, repo_id: str, sha: str) -> FileChanges:
        # Merge commits report nothing here; their changes belong to the merged commits
        out = self._git(
            repo_id, "diff-tree", "--no-commit-id", "--root", "-r",
            "--name-status", "--no-renames", "-z", sha,
        )
        return _parse_name_status(out)


# ===================================================================
# Plain directory
# ===================================================================

class DirectorySourceTree:
    """Working-tree snapshots for directories without git.

    ``resolve_ref`` hashes the current tree and stores its manifest; the
    returned id is usable as a ``from_ref`` for :meth:`diff` later.  File
    contents are always read from disk, so only the latest snapshot is
    readable.
    """

    def __init__(self, repos: Optional[Dict[str, Path]] = None, state_dir: Optional[Path] = None) -> None:
        self._repos: Dict[str, Path] = {k: Path(v).resolve() for k, v in (repos or {}).items()}
        self.state_dir = state_dir or (DATA_DIR / "snapshots")

    def register(self, repo_id: str, path: Path) -> None:
        self._repos[repo_id] = Path(path).resolve()

    def _root(self, repo_id: str) -> Path:
        root = self._repos.get(repo_id)
        if root is None or not root.is_dir():
            raise SourceTreeError(f"unknown repository or missing directory: {repo_id}")
        return root

    def _scan(self, repo_id: str) -> Dict[str, str]:
        root = self._root(repo_id)
        manifest: Dict[str, str] = {}
        for file_path in sorted(root.rglob("*")):
            rel = file_path.relative_to(root).as_posix()
            if not file_path.is_file() or _skipped(rel) or not is_code_file(rel):
                continue
            try:
                manifest[rel] = hashlib.sha256(file_path.read_bytes()).hexdigest()
            except OSError as exc:
                logger.warning("Could not read %s: %s", file_path, exc)
        return manifest

    def _manifest_path(self, repo_id: str, snapshot: str) -> Path:
        return self.state_dir / repo_id / f"{snapshot}.json"

    def _load_manifest(self, repo_id: str, snapshot: str) -> Dict[str, str]:
        path = self._manifest_path(repo_id, snapshot)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SourceTreeError(f"unknown snapshot {snapshot} for {repo_id}") from exc

    def resolve_ref(self, repo_id: str, ref: Optional[str]) -> str:
        if ref and ref != DEFAULT_REF and self._manifest_path(repo_id, ref).exists():
            return ref
        manifest = self._scan(repo_id)
        digest = hashlib.sha256(
            json.dumps(manifest, sort_keys=True).encode("utf-8")
        ).hexdigest()[:16]
        path = self._manifest_path(repo_id, digest)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(manifest, sort_keys=True), encoding="utf-8")
        return digest

    def list_files(self, repo_id: str, ref: str) -> List[str]:
        return sorted(self._load_manifest(repo_id, ref))

    def read_file(self, repo_id: str, ref: str, path: str) -> bytes:
        try:
            return (self._root(repo_id) / path).read_bytes()
        except OSError as exc:
            raise SourceTreeError(f"cannot read {path}: {exc}") from exc

    def diff(self, repo_id: str, from_ref: str, to_ref: str) -> FileChanges:
        old = self._load_manifest(repo_id, from_ref)
        new = self._load_manifest(repo_id, to_ref)
        return FileChanges(
            added=sorted(set(new) - set(old)),
            modified=sorted(p for p in set(new) & set(old) if new[p] != old[p]),
            deleted=sorted(set(old) - set(new)),
        )

    def log(
        self, repo_id: str, ref: str, since: Optional[str] = None, limit: int = DEFAULT_LOG_LIMIT,
    ) -> List[CommitInfo]:
        # Snapshots carry no authorship or ancestry
        return []


def _skipped(rel_path: str) -> bool:
    return any(part in SKIP_DIRS for part in rel_path.split("/")[:-1])


def _parse_name_status(out: bytes) -> FileChanges:
    fields = [f for f in out.decode("utf-8", errors="replace").split("\0") if f]
    changes = FileChanges()
    for status, path in zip(fields[::2], fields[1::2]):
        if not is_code_file(path) or _skipped(path):
            continue
        if status.startswith("A"):
            changes.added.append(path)
        elif status.startswith("D"):
            changes.deleted.append(path)
        else:
            changes.modified.append(path)
    return changes
