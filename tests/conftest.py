"""Pytest configuration and fixtures for repograph tests."""

import hashlib
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest

from repograph.graph import GraphManager
from repograph.models import CommitInfo, FileChanges, Language
from repograph.parser import ParserFacade
from repograph.storage import GraphStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture(autouse=True)
def repograph_home(temp_dir: Path, monkeypatch) -> Path:
    """Point every storage path at a temporary home directory.

    Modules bind paths at import time, so patch both ``config`` and the
    importing modules.
    """
    home = temp_dir / "home"
    data = home / "data"
    paths = {
        "BASE_DIR": home,
        "DATA_DIR": data,
        "GRAPH_DIR": data / "graphs",
        "VECTOR_DIR": data / "vectors",
        "JOBS_DB": data / "jobs.db",
        "CONFIG_FILE": home / "config.toml",
    }
    for name, value in paths.items():
        monkeypatch.setattr(f"repograph.config.{name}", value)
    monkeypatch.setattr("repograph.config_manager.BASE_DIR", paths["BASE_DIR"])
    monkeypatch.setattr("repograph.config_manager.CONFIG_FILE", paths["CONFIG_FILE"])
    monkeypatch.setattr("repograph.storage.GRAPH_DIR", paths["GRAPH_DIR"])
    monkeypatch.setattr("repograph.jobs.JOBS_DB", paths["JOBS_DB"])
    monkeypatch.setattr("repograph.vector_store.VECTOR_DIR", paths["VECTOR_DIR"])
    monkeypatch.setattr("repograph.source_tree.DATA_DIR", data)
    monkeypatch.setattr("repograph.embeddings.MODEL_CACHE_DIR", home / "models")
    return home


@pytest.fixture(scope="session")
def parser() -> ParserFacade:
    """One facade for the whole session, like the CLI builds at startup."""
    facade = ParserFacade()
    facade.initialize()
    return facade


@pytest.fixture
def require_language(parser: ParserFacade) -> Callable[[Language], None]:
    """Skip the calling test when a grammar package is not installed."""

    def _require(lang: Language) -> None:
        if not parser.supports(lang):
            pytest.skip(f"tree-sitter grammar for {lang.value} not installed")

    return _require


@pytest.fixture
def graph_manager(temp_dir: Path) -> Generator[GraphManager, None, None]:
    """GraphManager over a fresh database file."""
    store = GraphStore(temp_dir / "graph.db", "test-repo")
    yield GraphManager("test-repo", store)
    store.close()


class FakeSourceTree:
    """In-memory source tree with named snapshots.

    ``commit(files)`` records a new snapshot and makes it ``HEAD``.
    ``on_read`` is called with each path as it is read.  ``log`` only
    reports commits when ``track_history`` is set.
    """

    def __init__(self) -> None:
        self.snapshots: Dict[str, Dict[str, bytes]] = {}
        self.history: Dict[str, CommitInfo] = {}
        self.head: Optional[str] = None
        self.on_read: Optional[Callable[[str], None]] = None
        self.fail_listing = False
        self.track_history = False
        self.reads: List[str] = []

    def commit(self, files: Dict[str, str], message: str = "update") -> str:
        snapshot = {path: text.encode("utf-8") for path, text in files.items()}
        digest = hashlib.sha1(repr(sorted(snapshot.items())).encode("utf-8")).hexdigest()[:12]
        parent = self.head
        self.snapshots[digest] = snapshot
        if digest not in self.history:
            if parent is None:
                changes = FileChanges(added=sorted(snapshot))
            else:
                changes = self.diff("", parent, digest)
            self.history[digest] = CommitInfo(
                sha=digest,
                message=message,
                author="Dev",
                author_email="dev@example.com",
                committer="Dev",
                timestamp=len(self.history) + 1,
                parents=[parent] if parent else [],
                changes=changes,
            )
        self.head = digest
        return digest

    def resolve_ref(self, repo_id: str, ref: Optional[str]) -> str:
        from repograph.errors import SourceTreeError

        if self.fail_listing or self.head is None:
            raise SourceTreeError(f"cannot read repository {repo_id}")
        if ref in (None, "HEAD"):
            return self.head
        if ref not in self.snapshots:
            raise SourceTreeError(f"unknown ref {ref}")
        return ref

    def list_files(self, repo_id: str, ref: str) -> List[str]:
        return sorted(self.snapshots[ref])

    def read_file(self, repo_id: str, ref: str, path: str) -> bytes:
        self.reads.append(path)
        if self.on_read is not None:
            self.on_read(path)
        return self.snapshots[ref][path]

    def diff(self, repo_id: str, from_ref: str, to_ref: str) -> FileChanges:
        old, new = self.snapshots[from_ref], self.snapshots[to_ref]
        return FileChanges(
            added=sorted(set(new) - set(old)),
            modified=sorted(p for p in set(new) & set(old) if new[p] != old[p]),
            deleted=sorted(set(old) - set(new)),
        )

    def log(self, repo_id: str, ref: str, since: Optional[str] = None, limit: int = 500) -> List[CommitInfo]:
        if not self.track_history:
            return []
        commits: List[CommitInfo] = []
        sha: Optional[str] = ref
        while sha and sha != since and len(commits) < limit:
            commit = self.history[sha]
            commits.append(commit)
            sha = commit.parents[0] if commit.parents else None
        return commits


@pytest.fixture
def fake_tree() -> FakeSourceTree:
    return FakeSourceTree()


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing the parser."""
    return '''"""Sample module for testing."""

__all__ = ["hello", "Calculator"]


def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {name}!"


class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    def multiply(self, a: int, b: int) -> int:
        result = self.add(a, 0)
        for _ in range(b - 1):
            result = self.add(result, a)
        return result

    def _reset(self):
        pass
'''


@pytest.fixture
def entry_point_code() -> str:
    """``main`` calls ``helper``; ``unused`` is called by nobody."""
    return '''def main():
    helper()


def helper():
    return 1


def unused():
    return 2
'''
