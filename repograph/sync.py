"""Sync orchestrator: turn a repository snapshot into graph nodes and vectors.

A job moves ``pending -> running -> completed | failed | cancelled`` and
its row in the :class:`~repograph.jobs.JobStore` is the only record of
that state.  Per job:

1. Work out the file set (full, delta against the watermark, or
   incremental at one ref).
2. Parse files in batches on a bounded thread pool.
3. Apply each file's graph writes in its own transaction, in path order.
4. Chunk, embed and index the file's symbols.
5. Retry calls and imports that missed on the first pass.
6. For full and delta jobs, record the commits since the watermark.

File-level failures are collected on the job; only failing to read the
repository at all fails the job.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .chunker import build_chunks, chunk_text
from .config_manager import SyncSettings
from .errors import EmbeddingError, GraphWriteError, ParseError, SourceTreeError, VectorStoreError
from .graph import GraphManager, PendingLinks
from .jobs import JobStore
from .models import JobStatus, JobType, ParseResult, SyncJob
from .parser import ParserFacade
from .workers import JobQueue

logger = logging.getLogger(__name__)

GraphFactory = Callable[[str], GraphManager]


@dataclass
class _JobRun:
    """Mutable counters for one running job."""

    job: SyncJob
    total: int = 0
    done: int = 0
    nodes_created: int = 0
    edges_created: int = 0
    vectors_created: int = 0
    file_errors: List[str] = field(default_factory=list)
    error_count: int = 0

    def record_error(self, message: str, cap: int) -> None:
        self.error_count += 1
        if len(self.file_errors) < cap:
            self.file_errors.append(message)

    def counters(self) -> Dict[str, Any]:
        return {
            "nodes_created": self.nodes_created,
            "edges_created": self.edges_created,
            "vectors_created": self.vectors_created,
            "file_errors": self.file_errors,
        }


@dataclass
class _Parsed:
    path: str
    content: bytes = b""
    result: Optional[ParseResult] = None
    error: Optional[str] = None
    binary: bool = False


class SyncOrchestrator:
    """Owns sync job lifecycles for every repository."""

    def __init__(
        self,
        parser: ParserFacade,
        source_tree: Any,
        job_store: JobStore,
        queue: Optional[JobQueue],
        graph_factory: GraphFactory,
        embedder: Any = None,
        vector_store: Any = None,
        settings: Optional[SyncSettings] = None,
    ) -> None:
        self.parser = parser
        self.source_tree = source_tree
        self.job_store = job_store
        self.queue = queue
        self.graph_factory = graph_factory
        self.embedder = embedder
        self.vector_store = vector_store
        self.settings = settings or SyncSettings()
        self._cancel_flags: Dict[str, threading.Event] = {}
        self._flags_lock = threading.Lock()
        self._embed_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="repograph-embed")

    def close(self) -> None:
        self._embed_pool.shutdown(wait=False)

    # ==================================================================
    # Job API
    # ==================================================================

    def enqueue_sync(self, repo_id: str, job_type: JobType, ref: Optional[str] = None) -> str:
        """Create a pending job and queue it.  Raises ``JobConflictError``."""
        job = self.job_store.create_job(repo_id, job_type, ref)
        if self.queue is not None:
            self.queue.enqueue(job.id)
        return job.id

    def sync_now(self, repo_id: str, job_type: JobType, ref: Optional[str] = None) -> SyncJob:
        """Create a job and run it on the calling thread."""
        job = self.job_store.create_job(repo_id, job_type, ref)
        self.run_job(job)
        return self.job_store.get_job(job.id) or job

    def get_job_status(self, job_id: str) -> Optional[SyncJob]:
        return self.job_store.get_job(job_id)

    def list_recent_jobs(self, repo_id: Optional[str] = None, limit: int = 10) -> List[SyncJob]:
        return self.job_store.list_jobs(repo_id, limit)

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a pending job outright, or signal a running one.

        A running job stops at the next file boundary and keeps every
        file it already applied.
        """
        job = self.job_store.get_job(job_id)
        if job is None or job.status.is_terminal:
            return False
        if job.status == JobStatus.PENDING and self.job_store.finish(job_id, JobStatus.CANCELLED):
            return True
        self.request_cancel(job_id)
        return True

    def request_cancel(self, job_id: str) -> None:
        """Signal a job this orchestrator is running; unknown ids are ignored."""
        with self._flags_lock:
            flag = self._cancel_flags.get(job_id)
        if flag is not None:
            flag.set()

    # ==================================================================
    # Running a job
    # ==================================================================

    def run_job(self, job: SyncJob) -> None:
        """Drive *job* to exactly one terminal state."""
        # Registered first so a cancel arriving right after mark_running is seen
        with self._flags_lock:
            owned = job.id not in self._cancel_flags
            cancel = self._cancel_flags.setdefault(job.id, threading.Event())
        if not self.job_store.mark_running(job.id):
            logger.info("Job %s is no longer pending; skipping", job.id)
            if owned:
                with self._flags_lock:
                    self._cancel_flags.pop(job.id, None)
            return
        run = _JobRun(job=job)
        logger.info("Starting %s sync %s for %s", job.job_type.value, job.id, job.repo_id)
        try:
            self._run(run, cancel)
        except SourceTreeError as exc:
            logger.warning("Job %s failed: %s", job.id, exc)
            self.job_store.finish(job.id, JobStatus.FAILED, str(exc), **run.counters())
        except Exception as exc:
            logger.exception("Job %s crashed", job.id)
            self.job_store.finish(job.id, JobStatus.FAILED, f"{type(exc).__name__}: {exc}", **run.counters())
        finally:
            with self._flags_lock:
                self._cancel_flags.pop(job.id, None)

    def _run(self, run: _JobRun, cancel: threading.Event) -> None:
        job = run.job
        graph = self.graph_factory(job.repo_id)
        target = self.source_tree.resolve_ref(job.repo_id, job.ref)
        since = self.job_store.get_watermark(job.repo_id) if job.job_type == JobType.DELTA else None
        paths, deleted = self._file_set(job, target, graph)
        run.total = len(paths) + len(deleted)
        self._progress(run, "planning")

        for path in deleted:
            if cancel.is_set():
                break
            graph.remove_file(path)
            self._drop_vectors(run, path)
            run.done += 1
            if not self._progress(run, f"removed {path}"):
                cancel.set()

        pending = PendingLinks(retry_all=job.job_type == JobType.FULL)
        if not cancel.is_set():
            self._process_files(run, graph, target, paths, pending, cancel)

        if cancel.is_set():
            self.job_store.finish(job.id, JobStatus.CANCELLED, "cancelled", **run.counters())
            return

        if pending:
            self._progress(run, "resolving references")
            run.edges_created += graph.relink(pending)

        if job.job_type in (JobType.FULL, JobType.DELTA):
            self._sync_history(run, graph, target, since)

        summary = None
        if run.error_count:
            summary = f"{run.error_count} file error(s)"
        won = self.job_store.finish(job.id, JobStatus.COMPLETED, summary, **run.counters())
        if won and job.job_type in (JobType.FULL, JobType.DELTA):
            self.job_store.set_watermark(job.repo_id, target)

    def _sync_history(self, run: _JobRun, graph: GraphManager, ref: str, since: Optional[str]) -> None:
        """Add Commit nodes between *since* and *ref*; failures only warn."""
        self._progress(run, "recording history")
        try:
            commits = self.source_tree.log(run.job.repo_id, ref, since, self.settings.max_commits)
            nodes, edges = graph.sync_commits(commits)
        except (SourceTreeError, GraphWriteError) as exc:
            logger.warning("Commit history skipped for %s: %s", run.job.repo_id, exc)
            run.record_error(f"history: {exc}", self.settings.max_file_errors)
            return
        run.nodes_created += nodes
        run.edges_created += edges

    def _file_set(self, job: SyncJob, target: str, graph: GraphManager) -> Tuple[List[str], List[str]]:
        """Paths to (re)process and paths to remove."""
        if job.job_type == JobType.DELTA:
            watermark = self.job_store.get_watermark(job.repo_id)
            if watermark:
                changes = self.source_tree.diff(job.repo_id, watermark, target)
                return changes.changed, sorted(changes.deleted)
            logger.info("No watermark for %s; delta falls back to a full sync", job.repo_id)

        paths = sorted(self.source_tree.list_files(job.repo_id, target))
        if job.job_type == JobType.INCREMENTAL:
            return paths, []
        listed = set(paths)
        stale = [p for p in graph.list_files() if p not in listed]
        return paths, stale

    def _process_files(
        self,
        run: _JobRun,
        graph: GraphManager,
        ref: str,
        paths: Sequence[str],
        pending: PendingLinks,
        cancel: threading.Event,
    ) -> None:
        batch_size = max(1, self.settings.batch_size)
        with ThreadPoolExecutor(
            max_workers=max(1, self.settings.max_workers),
            thread_name_prefix="repograph-parse",
        ) as pool:
            for start in range(0, len(paths), batch_size):
                if cancel.is_set():
                    return
                batch = paths[start:start + batch_size]
                futures = [pool.submit(self._read_and_parse, run.job.repo_id, ref, p) for p in batch]
                for future in futures:
                    if cancel.is_set():
                        for other in futures:
                            other.cancel()
                        return
                    parsed = future.result()
                    self._apply(run, graph, parsed, pending)
                    run.done += 1
                    if not self._progress(run, f"processed {parsed.path}"):
                        # Row left the running state (supervisor timeout)
                        cancel.set()

    def _read_and_parse(self, repo_id: str, ref: str, path: str) -> _Parsed:
        try:
            content = self.source_tree.read_file(repo_id, ref, path)
        except SourceTreeError as exc:
            return _Parsed(path=path, error=str(exc))
        if b"\0" in content:
            return _Parsed(path=path, content=content, binary=True)
        result = self.parser.parse(path, content)
        if result.errors and result.is_empty:
            return _Parsed(path=path, content=content, error=str(ParseError(path, "; ".join(result.errors))))
        if result.errors:
            logger.debug("Partial parse of %s: %s", path, "; ".join(result.errors))
        result.chunks = build_chunks(path, result.language, content, result.symbols, result.imports)
        return _Parsed(path=path, content=content, result=result)

    def _apply(self, run: _JobRun, graph: GraphManager, parsed: _Parsed, pending: PendingLinks) -> None:
        cap = self.settings.max_file_errors
        if parsed.binary:
            logger.debug("Skipping binary file %s", parsed.path)
            return
        if parsed.error is not None or parsed.result is None:
            logger.warning("Skipping %s: %s", parsed.path, parsed.error)
            run.record_error(parsed.error or f"{parsed.path}: unreadable", cap)
            return

        result = parsed.result
        content_hash = hashlib.sha256(parsed.content).hexdigest()
        outcome = None
        attempts = max(1, self.settings.graph_write_retries)
        for attempt in range(1, attempts + 1):
            try:
                outcome = graph.apply_file(result, content_hash)
                break
            except GraphWriteError as exc:
                if attempt == attempts:
                    logger.warning("Giving up on %s after %d attempts: %s", parsed.path, attempts, exc)
                    run.record_error(str(exc), cap)
                    return
                logger.debug("Retrying graph write for %s (%d/%d): %s", parsed.path, attempt, attempts, exc)
                time.sleep(self.settings.retry_backoff_seconds * attempt)

        if outcome is None or outcome.skipped:
            return
        run.nodes_created += outcome.nodes_created
        run.edges_created += outcome.edges_created
        pending.add(outcome, result.imports)
        self._index_chunks(run, result)

    # ------------------------------------------------------------------
    # Embedding / vectors
    # ------------------------------------------------------------------

    def _index_chunks(self, run: _JobRun, result: ParseResult) -> None:
        if self.embedder is None or self.vector_store is None:
            return
        cap = self.settings.max_file_errors
        try:
            self.vector_store.delete_by_file_path(run.job.repo_id, result.path)
            items = []
            for chunk in result.chunks:
                text = chunk_text(chunk, self.settings.max_chunk_chars)
                vector = self._embed_with_retry(text)
                items.append((chunk.id, vector, {
                    "document": text,
                    "file_path": chunk.file,
                    "symbol_name": chunk.symbol_name,
                    "symbol_kind": chunk.symbol_kind.value if chunk.symbol_kind else "",
                    "start_line": chunk.start_line,
                    "end_line": chunk.end_line,
                    "language": chunk.language,
                }))
            for chunk_id, vector, payload in items:
                self.vector_store.upsert(run.job.repo_id, chunk_id, vector, payload)
                run.vectors_created += 1
        except (EmbeddingError, VectorStoreError) as exc:
            logger.warning("Vector indexing failed for %s: %s", result.path, exc)
            run.record_error(f"{result.path}: {exc}", cap)

    def _embed_with_retry(self, text: str) -> List[float]:
        attempts = max(1, self.settings.embed_retries)
        last: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            future = self._embed_pool.submit(self.embedder.embed_text, text)
            try:
                return list(future.result(timeout=self.settings.embed_timeout_seconds))
            except FutureTimeout:
                future.cancel()
                last = EmbeddingError(f"embedding timed out after {self.settings.embed_timeout_seconds:g}s")
            except Exception as exc:
                last = exc
            logger.debug("Embedding attempt %d/%d failed: %s", attempt, attempts, last)
            if attempt < attempts:
                time.sleep(self.settings.retry_backoff_seconds * attempt)
        if isinstance(last, EmbeddingError):
            raise last
        raise EmbeddingError(str(last)) from last

    def _drop_vectors(self, run: _JobRun, path: str) -> None:
        if self.vector_store is None:
            return
        try:
            self.vector_store.delete_by_file_path(run.job.repo_id, path)
        except VectorStoreError as exc:
            run.record_error(f"{path}: {exc}", self.settings.max_file_errors)

    def _progress(self, run: _JobRun, step: str) -> bool:
        pct = int(run.done * 100 / run.total) if run.total else 0
        return self.job_store.update_progress(run.job.id, min(pct, 99), step, **run.counters())
