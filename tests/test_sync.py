"""End-to-end tests for the sync orchestrator using an in-memory source tree."""

import hashlib
from pathlib import Path
from typing import Dict, List

import pytest

from repograph.config_manager import SyncSettings
from repograph.embeddings import HashEmbeddingModel
from repograph.errors import EmbeddingError, JobConflictError, SourceTreeError
from repograph.graph import GraphManager
from repograph.jobs import JobStore
from repograph.models import JobStatus, JobType, Language
from repograph.sync import SyncOrchestrator
from repograph.workers import JobQueue


class FakeVectorStore:
    """Records upserts and deletes keyed by ``(repo_id, chunk_id)``."""

    def __init__(self) -> None:
        self.rows: Dict[tuple, Dict] = {}
        self.deleted_paths: List[str] = []

    def upsert(self, repo_id, chunk_id, vector, payload) -> None:
        self.rows[(repo_id, chunk_id)] = {"vector": vector, **payload}

    def delete_by_file_path(self, repo_id, file_path) -> int:
        self.deleted_paths.append(file_path)
        doomed = [k for k, v in self.rows.items() if k[0] == repo_id and v["file_path"] == file_path]
        for key in doomed:
            del self.rows[key]
        return len(doomed)


class BrokenEmbedder:
    model_key = "broken"

    def embed_text(self, text):
        raise EmbeddingError("model unavailable")


def _settings(**overrides) -> SyncSettings:
    values = dict(
        max_workers=2, batch_size=4, retry_backoff_seconds=0.0,
        embed_retries=2, embed_timeout_seconds=5.0,
    )
    values.update(overrides)
    return SyncSettings(**values)


@pytest.fixture
def job_store(temp_dir: Path):
    store = JobStore(temp_dir / "jobs.db")
    yield store
    store.close()


@pytest.fixture
def make_orchestrator(parser, require_language, fake_tree, job_store, graph_manager):
    require_language(Language.PYTHON)
    created = []

    def _make(**kwargs) -> SyncOrchestrator:
        settings = kwargs.pop("settings", None) or _settings()
        orch = SyncOrchestrator(
            parser, fake_tree, job_store, kwargs.pop("queue", None),
            lambda repo_id: graph_manager,
            settings=settings, **kwargs,
        )
        created.append(orch)
        return orch

    yield _make
    for orch in created:
        orch.close()


REPO = "test-repo"


def _module(name: str, body: str = "return 1") -> str:
    return f"def {name}():\n    {body}\n"


class TestFullSync:
    """Tests for full syncs."""

    def test_entry_point_graph(self, make_orchestrator, fake_tree, graph_manager, entry_point_code):
        """Test that callers and dead code come out right after one sync."""
        fake_tree.commit({"app.py": entry_point_code})
        job = make_orchestrator().sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.error_message is None
        assert [s.name for s in graph_manager.find_dead_code()] == ["unused"]
        assert [s.name for s in graph_manager.get_callers("helper")] == ["main"]
        assert job.nodes_created == 4

    def test_cross_file_calls_resolve_on_second_pass(self, make_orchestrator, fake_tree, graph_manager):
        """Test that a call into a file processed later still gets an edge."""
        fake_tree.commit({
            "app.py": "from lib import helper\n\ndef main():\n    helper()\n",
            "lib.py": _module("helper"),
        })
        job = make_orchestrator(settings=_settings(max_workers=1, batch_size=1)).sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        assert [s.name for s in graph_manager.get_callers("helper")] == ["main"]
        assert [f.path for f in graph_manager.get_file_dependencies("app.py")] == ["lib.py"]

    def test_sets_watermark(self, make_orchestrator, fake_tree, job_store):
        head = fake_tree.commit({"a.py": _module("a")})
        make_orchestrator().sync_now(REPO, JobType.FULL)
        assert job_store.get_watermark(REPO) == head

    def test_full_sync_removes_vanished_files(self, make_orchestrator, fake_tree, graph_manager):
        orch = make_orchestrator()
        fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")})
        orch.sync_now(REPO, JobType.FULL)
        fake_tree.commit({"a.py": _module("a")})
        orch.sync_now(REPO, JobType.FULL)
        assert graph_manager.list_files() == ["a.py"]

    def test_resync_of_unchanged_tree_skips_writes(self, make_orchestrator, fake_tree, graph_manager):
        orch = make_orchestrator()
        fake_tree.commit({"a.py": _module("a")})
        orch.sync_now(REPO, JobType.FULL)
        second = orch.sync_now(REPO, JobType.FULL)

        assert second.status == JobStatus.COMPLETED
        assert second.nodes_created == 0
        assert graph_manager.get_file_node("a.py").version == 1

    def test_file_errors_do_not_fail_job(self, make_orchestrator, fake_tree, graph_manager):
        """Test that unreadable and binary files are skipped, not fatal."""
        fake_tree.commit({
            "good.py": _module("good"),
            "gone.py": _module("gone"),
            "blob.py": "\x00\x01binary",
        })

        def on_read(path):
            if path == "gone.py":
                raise SourceTreeError("gone.py: object missing")

        fake_tree.on_read = on_read
        job = make_orchestrator().sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        assert job.file_errors == ["gone.py: object missing"]
        assert job.error_message == "1 file error(s)"
        assert graph_manager.list_files() == ["good.py"]

    def test_file_error_list_is_capped(self, make_orchestrator, fake_tree):
        fake_tree.commit({f"m{i}.py": _module(f"f{i}") for i in range(5)})

        def on_read(path):
            raise SourceTreeError(f"{path}: unreadable")

        fake_tree.on_read = on_read
        job = make_orchestrator(settings=_settings(max_file_errors=2)).sync_now(REPO, JobType.FULL)

        assert len(job.file_errors) == 2
        assert job.error_message == "5 file error(s)"

    def test_unreadable_repository_fails_job(self, make_orchestrator, fake_tree, job_store):
        fake_tree.fail_listing = True
        job = make_orchestrator().sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.FAILED
        assert "cannot read repository" in job.error_message
        assert job_store.get_watermark(REPO) is None


class TestDeltaSync:
    """Tests for delta and incremental syncs."""

    def test_delta_touches_only_changed_files(self, make_orchestrator, fake_tree, graph_manager):
        """Test that a one-file change leaves every other file's version alone."""
        files = {f"pkg/m{i}.py": _module(f"f{i}") for i in range(10)}
        orch = make_orchestrator()
        fake_tree.commit(files)
        orch.sync_now(REPO, JobType.FULL)

        files["pkg/m3.py"] = _module("f3", "return 3")
        fake_tree.commit(files)
        fake_tree.reads.clear()
        job = orch.sync_now(REPO, JobType.DELTA)

        assert job.status == JobStatus.COMPLETED
        assert fake_tree.reads == ["pkg/m3.py"]
        versions = {p: graph_manager.get_file_node(p).version for p in files}
        assert versions.pop("pkg/m3.py") == 2
        assert set(versions.values()) == {1}
        assert (job.nodes_created, job.edges_created) == (2, 0)

    def test_delta_links_callers_in_unchanged_files(self, make_orchestrator, fake_tree, graph_manager):
        """Test that a callee added by a delta picks up callers from untouched files."""
        orch = make_orchestrator()
        files = {"app.py": "def main():\n    helper()\n", "lib.py": _module("other")}
        fake_tree.commit(files)
        orch.sync_now(REPO, JobType.FULL)
        assert graph_manager.get_callers("helper") == []

        files["lib.py"] = _module("helper")
        fake_tree.commit(files)
        fake_tree.reads.clear()
        job = orch.sync_now(REPO, JobType.DELTA)

        assert job.status == JobStatus.COMPLETED
        assert fake_tree.reads == ["lib.py"]
        assert [s.name for s in graph_manager.get_callers("helper")] == ["main"]
        assert "helper" not in [s.name for s in graph_manager.find_dead_code()]

    def test_full_sync_links_dangling_calls(self, make_orchestrator, fake_tree, graph_manager, parser):
        """Test that a full sync links stored calls even when every file is unchanged."""
        files = {"app.py": "def main():\n    helper()\n", "lib.py": _module("helper")}
        for path in ("app.py", "lib.py"):
            content = files[path].encode("utf-8")
            graph_manager.apply_file(parser.parse(path, content), hashlib.sha256(content).hexdigest())
        assert graph_manager.get_callers("helper") == []

        fake_tree.commit(files)
        job = make_orchestrator().sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        assert graph_manager.get_file_node("app.py").version == 1
        assert [s.name for s in graph_manager.get_callers("helper")] == ["main"]
        assert job.edges_created == 1

    def test_delta_removes_deleted_files(self, make_orchestrator, fake_tree, graph_manager):
        orch = make_orchestrator()
        fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")})
        orch.sync_now(REPO, JobType.FULL)
        fake_tree.commit({"a.py": _module("a")})

        job = orch.sync_now(REPO, JobType.DELTA)
        assert job.status == JobStatus.COMPLETED
        assert graph_manager.list_files() == ["a.py"]
        assert graph_manager.get_symbol("b") is None

    def test_delta_without_watermark_runs_full(self, make_orchestrator, fake_tree, graph_manager, job_store):
        head = fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")})
        job = make_orchestrator().sync_now(REPO, JobType.DELTA)

        assert job.status == JobStatus.COMPLETED
        assert graph_manager.list_files() == ["a.py", "b.py"]
        assert job_store.get_watermark(REPO) == head

    def test_delta_advances_watermark(self, make_orchestrator, fake_tree, job_store):
        orch = make_orchestrator()
        fake_tree.commit({"a.py": _module("a")})
        orch.sync_now(REPO, JobType.FULL)
        head = fake_tree.commit({"a.py": _module("a", "return 2")})
        orch.sync_now(REPO, JobType.DELTA)
        assert job_store.get_watermark(REPO) == head

    def test_incremental_keeps_watermark(self, make_orchestrator, fake_tree, job_store, graph_manager):
        """Test that an incremental sync updates the graph but not the watermark."""
        orch = make_orchestrator()
        first = fake_tree.commit({"a.py": _module("a")})
        orch.sync_now(REPO, JobType.FULL)
        fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")})

        job = orch.sync_now(REPO, JobType.INCREMENTAL)
        assert job.status == JobStatus.COMPLETED
        assert graph_manager.list_files() == ["a.py", "b.py"]
        assert job_store.get_watermark(REPO) == first


class TestCommitHistory:
    """Tests for Commit nodes recorded by full and delta syncs."""

    def test_full_sync_records_commits(self, make_orchestrator, fake_tree, graph_manager):
        fake_tree.track_history = True
        first = fake_tree.commit({"a.py": _module("a")}, message="add a")
        second = fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")}, message="add b")

        job = make_orchestrator().sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        # 2 files, 2 functions, 2 commits
        assert job.nodes_created == 6
        stats = graph_manager.get_stats()
        assert stats.nodes_by_label["Commit"] == 2
        assert stats.relationships_by_type["PARENT_OF"] == 1
        assert stats.relationships_by_type["MODIFIES"] == 2
        assert graph_manager.get_commit_parents(second) == [first]
        assert graph_manager.get_commit(second).message == "add b"
        assert [(c.sha, c.change_type) for c in graph_manager.get_file_history("b.py")] == [(second, "added")]

    def test_delta_records_commits_since_watermark(self, make_orchestrator, fake_tree, graph_manager):
        fake_tree.track_history = True
        first = fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")})
        orch = make_orchestrator()
        orch.sync_now(REPO, JobType.FULL)

        second = fake_tree.commit({"a.py": _module("a", "return 2"), "b.py": _module("b")})
        job = orch.sync_now(REPO, JobType.DELTA)

        assert job.status == JobStatus.COMPLETED
        assert graph_manager.get_stats().nodes_by_label["Commit"] == 2
        assert [c.sha for c in graph_manager.get_file_history("a.py")] == [second, first]
        assert graph_manager.get_commit_files(second) == {"a.py": "modified"}
        assert graph_manager.get_commit_parents(second) == [first]

    def test_deleted_file_gets_no_modifies_edge(self, make_orchestrator, fake_tree, graph_manager):
        fake_tree.track_history = True
        fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")})
        orch = make_orchestrator()
        orch.sync_now(REPO, JobType.FULL)

        removal = fake_tree.commit({"a.py": _module("a")})
        job = orch.sync_now(REPO, JobType.DELTA)

        assert job.status == JobStatus.COMPLETED
        assert job.file_errors == []
        assert graph_manager.get_commit(removal).files_changed == 1
        assert graph_manager.get_commit_files(removal) == {}
        assert graph_manager.get_file_history("b.py") == []

    def test_incremental_skips_history(self, make_orchestrator, fake_tree, graph_manager):
        fake_tree.track_history = True
        fake_tree.commit({"a.py": _module("a")})
        make_orchestrator().sync_now(REPO, JobType.INCREMENTAL)
        assert graph_manager.get_stats().nodes_by_label["Commit"] == 0

    def test_history_failure_is_recorded_not_fatal(self, make_orchestrator, fake_tree, graph_manager, monkeypatch):
        fake_tree.commit({"a.py": _module("a")})

        def broken_log(*args, **kwargs):
            raise SourceTreeError("log unavailable")

        monkeypatch.setattr(fake_tree, "log", broken_log)
        job = make_orchestrator().sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        assert job.file_errors == ["history: log unavailable"]
        assert graph_manager.list_files() == ["a.py"]


class TestJobControl:
    """Tests for queueing, conflicts and cancellation."""

    def test_enqueue_conflict(self, make_orchestrator, fake_tree):
        fake_tree.commit({"a.py": _module("a")})
        q = JobQueue()
        orch = make_orchestrator(queue=q)
        job_id = orch.enqueue_sync(REPO, JobType.FULL)

        with pytest.raises(JobConflictError):
            orch.enqueue_sync(REPO, JobType.DELTA)
        assert len(q) == 1
        assert orch.get_job_status(job_id).status == JobStatus.PENDING
        assert [j.id for j in orch.list_recent_jobs(REPO)] == [job_id]

    def test_cancel_pending_job(self, make_orchestrator, fake_tree):
        fake_tree.commit({"a.py": _module("a")})
        orch = make_orchestrator()
        job_id = orch.enqueue_sync(REPO, JobType.FULL)

        assert orch.cancel_job(job_id) is True
        assert orch.get_job_status(job_id).status == JobStatus.CANCELLED
        assert orch.cancel_job(job_id) is False
        # A cancelled job is never started
        orch.run_job(orch.get_job_status(job_id))
        assert fake_tree.reads == []
        assert orch._cancel_flags == {}

    def test_cancel_running_job_keeps_applied_files(self, make_orchestrator, fake_tree, graph_manager, job_store):
        """Test that cancellation stops at a file boundary without rollback."""
        fake_tree.commit({f"m{i}.py": _module(f"f{i}") for i in range(5)})
        orch = make_orchestrator(settings=_settings(max_workers=1, batch_size=1))
        job_id = orch.enqueue_sync(REPO, JobType.FULL)

        def on_read(path):
            if path == "m2.py":
                orch.cancel_job(job_id)

        fake_tree.on_read = on_read
        orch.run_job(job_store.get_job(job_id))

        job = job_store.get_job(job_id)
        assert job.status == JobStatus.CANCELLED
        assert fake_tree.reads == ["m0.py", "m1.py", "m2.py"]
        applied = graph_manager.list_files()
        assert applied[:2] == ["m0.py", "m1.py"]
        assert "m3.py" not in applied and "m4.py" not in applied
        assert job_store.get_watermark(REPO) is None

    def test_cancel_after_finish_leaves_no_flag(self, make_orchestrator, fake_tree):
        fake_tree.commit({"a.py": _module("a")})
        orch = make_orchestrator()
        job = orch.sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        orch.request_cancel(job.id)
        orch.request_cancel("missing")
        assert orch._cancel_flags == {}

    def test_unknown_job(self, make_orchestrator):
        orch = make_orchestrator()
        assert orch.get_job_status("missing") is None
        assert orch.cancel_job("missing") is False


class TestVectorIndexing:
    """Tests for chunk embedding during sync."""

    def test_chunks_are_embedded(self, make_orchestrator, fake_tree, sample_python_code):
        vectors = FakeVectorStore()
        fake_tree.commit({"calc.py": sample_python_code})
        orch = make_orchestrator(embedder=HashEmbeddingModel(dim=32), vector_store=vectors)
        job = orch.sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        assert job.vectors_created == 5
        names = sorted(row["symbol_name"] for row in vectors.rows.values())
        assert names == ["Calculator", "_reset", "add", "hello", "multiply"]
        row = next(r for r in vectors.rows.values() if r["symbol_name"] == "add")
        assert len(row["vector"]) == 32
        assert row["document"].startswith("file: calc.py\nsymbol: add\ntype: method")
        assert row["start_line"] > 0

    def test_deleted_file_vectors_are_dropped(self, make_orchestrator, fake_tree):
        vectors = FakeVectorStore()
        orch = make_orchestrator(embedder=HashEmbeddingModel(dim=16), vector_store=vectors)
        fake_tree.commit({"a.py": _module("a"), "b.py": _module("b")})
        orch.sync_now(REPO, JobType.FULL)
        fake_tree.commit({"a.py": _module("a")})
        orch.sync_now(REPO, JobType.DELTA)

        assert "b.py" in vectors.deleted_paths
        assert sorted(r["file_path"] for r in vectors.rows.values()) == ["a.py"]

    def test_embedding_failure_is_a_file_error(self, make_orchestrator, fake_tree, graph_manager):
        """Test that a failing embedder does not roll back the graph write."""
        fake_tree.commit({"a.py": _module("a")})
        orch = make_orchestrator(embedder=BrokenEmbedder(), vector_store=FakeVectorStore())
        job = orch.sync_now(REPO, JobType.FULL)

        assert job.status == JobStatus.COMPLETED
        assert job.vectors_created == 0
        assert job.file_errors == ["a.py: model unavailable"]
        assert graph_manager.list_files() == ["a.py"]
