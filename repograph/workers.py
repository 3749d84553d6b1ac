"""In-process job queue and worker pool for sync jobs.

Workers claim job ids from :class:`JobQueue` and hand them to the
orchestrator.  A supervisor thread watches running jobs and force-fails
any that outlive ``job_timeout_seconds``: it raises the job's cancel flag
so the worker stops at the next file boundary, and marks the row failed.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from .models import JobStatus

if TYPE_CHECKING:
    from .sync import SyncOrchestrator

logger = logging.getLogger(__name__)


class JobQueue:
    """FIFO of job ids with claim / ack / fail semantics."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[str]" = queue.Queue()
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def enqueue(self, job_id: str) -> None:
        self._queue.put(job_id)

    def claim(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next job id, or None when nothing arrives within *timeout*."""
        try:
            job_id = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        with self._lock:
            self._in_flight.add(job_id)
        return job_id

    def ack(self, job_id: str) -> None:
        self._settle(job_id)

    def fail(self, job_id: str, reason: str = "") -> None:
        logger.warning("Job %s failed in worker: %s", job_id, reason or "unknown error")
        self._settle(job_id)

    def _settle(self, job_id: str) -> None:
        with self._lock:
            if job_id not in self._in_flight:
                return
            self._in_flight.discard(job_id)
        self._queue.task_done()

    def join(self) -> None:
        """Block until every enqueued job has been acked or failed."""
        self._queue.join()

    def __len__(self) -> int:
        return self._queue.qsize()


class WorkerPool:
    """Threads that drain a :class:`JobQueue` into ``orchestrator.run_job``."""

    def __init__(
        self,
        orchestrator: "SyncOrchestrator",
        job_queue: JobQueue,
        num_workers: int = 2,
        job_timeout_seconds: float = 1800.0,
        poll_interval: float = 0.2,
    ) -> None:
        self.orchestrator = orchestrator
        self.queue = job_queue
        self.num_workers = max(1, num_workers)
        self.job_timeout_seconds = job_timeout_seconds
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._running: Dict[str, float] = {}
        self._running_lock = threading.Lock()

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for i in range(self.num_workers):
            t = threading.Thread(target=self._work, name=f"repograph-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        sup = threading.Thread(target=self._supervise, name="repograph-supervisor", daemon=True)
        sup.start()
        self._threads.append(sup)
        logger.info("Started %d sync worker(s)", self.num_workers)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads.clear()

    def _work(self) -> None:
        while not self._stop.is_set():
            job_id = self.queue.claim(timeout=self.poll_interval)
            if job_id is None:
                continue
            job = self.orchestrator.get_job_status(job_id)
            if job is None or job.status != JobStatus.PENDING:
                # Cancelled while queued, or already handled
                self.queue.ack(job_id)
                continue
            with self._running_lock:
                self._running[job_id] = time.monotonic()
            try:
                self.orchestrator.run_job(job)
            except Exception as exc:
                logger.exception("Unhandled error running job %s", job_id)
                self.orchestrator.job_store.finish(job_id, JobStatus.FAILED, f"worker error: {exc}")
                self.queue.fail(job_id, str(exc))
            else:
                self.queue.ack(job_id)
            finally:
                with self._running_lock:
                    self._running.pop(job_id, None)

    def _supervise(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self.check_timeouts()

    def check_timeouts(self, now: Optional[float] = None) -> List[str]:
        """Force-fail running jobs past the timeout.  Returns their ids."""
        now = time.monotonic() if now is None else now
        with self._running_lock:
            expired = [
                job_id for job_id, started in self._running.items()
                if now - started > self.job_timeout_seconds
            ]
        for job_id in expired:
            self.orchestrator.request_cancel(job_id)
            if self.orchestrator.job_store.finish(
                job_id, JobStatus.FAILED,
                f"timed out after {self.job_timeout_seconds:g}s",
            ):
                logger.warning("Job %s exceeded %gs and was failed", job_id, self.job_timeout_seconds)
        return expired
