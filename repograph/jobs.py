"""SQLite job metadata store: sync job rows and per-repository watermarks.

Job rows are the single source of truth for job state.  At most one job
per repository may be ``pending`` or ``running``; a partial unique index
enforces this so concurrent requests cannot both win.  Transitions into a
terminal state are guarded on the current state, so a job reaches exactly
one terminal state even when a worker and the timeout supervisor race.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .config import JOBS_DB
from .errors import JobConflictError
from .models import JobStatus, JobType, SyncJob

logger = logging.getLogger(__name__)

_ACTIVE = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class JobStore:
    """Thread-safe CRUD for :class:`SyncJob` rows."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else JOBS_DB
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _init_schema(self) -> None:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("""
                CREATE TABLE IF NOT EXISTS sync_jobs (
                    id              TEXT PRIMARY KEY,
                    repo_id         TEXT NOT NULL,
                    job_type        TEXT NOT NULL,
                    status          TEXT NOT NULL,
                    ref             TEXT,
                    progress        INTEGER NOT NULL DEFAULT 0,
                    current_step    TEXT NOT NULL DEFAULT '',
                    nodes_created   INTEGER NOT NULL DEFAULT 0,
                    edges_created   INTEGER NOT NULL DEFAULT 0,
                    vectors_created INTEGER NOT NULL DEFAULT 0,
                    error_message   TEXT,
                    file_errors     TEXT NOT NULL DEFAULT '[]',
                    created_at      TEXT NOT NULL,
                    started_at      TEXT,
                    completed_at    TEXT
                )
            """)
            cur.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_one_active
                ON sync_jobs(repo_id) WHERE status IN ('pending', 'running')
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_jobs_repo ON sync_jobs(repo_id, created_at)")
            cur.execute("""
                CREATE TABLE IF NOT EXISTS repositories (
                    repo_id            TEXT PRIMARY KEY,
                    last_synced_commit TEXT,
                    last_synced_at     TEXT
                )
            """)
            self.conn.commit()

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create_job(self, repo_id: str, job_type: JobType, ref: Optional[str] = None) -> SyncJob:
        """Insert a ``pending`` job, or raise :class:`JobConflictError`.

        The check and the insert are one statement, so a conflict never
        leaves a row behind.
        """
        job = SyncJob(
            id=uuid.uuid4().hex,
            repo_id=repo_id,
            job_type=job_type,
            status=JobStatus.PENDING,
            ref=ref,
            created_at=_now(),
        )
        with self._lock:
            try:
                self.conn.execute(
                    """
                    INSERT INTO sync_jobs (id, repo_id, job_type, status, ref, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (job.id, repo_id, job_type.value, job.status.value, ref, job.created_at.isoformat()),
                )
                self.conn.commit()
            except sqlite3.IntegrityError:
                self.conn.rollback()
                row = self.conn.execute(
                    "SELECT id FROM sync_jobs WHERE repo_id = ? AND status IN (?, ?)",
                    (repo_id, *_ACTIVE),
                ).fetchone()
                raise JobConflictError(repo_id, row["id"] if row else None) from None
        logger.info("Queued %s sync %s for %s", job_type.value, job.id, repo_id)
        return job

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM sync_jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row is not None else None

    def list_jobs(self, repo_id: Optional[str] = None, limit: int = 10) -> List[SyncJob]:
        """Most recent jobs first."""
        with self._lock:
            if repo_id:
                rows = self.conn.execute(
                    "SELECT * FROM sync_jobs WHERE repo_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                    (repo_id, limit),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM sync_jobs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                    (limit,),
                ).fetchall()
        return [_row_to_job(r) for r in rows]

    def active_job(self, repo_id: str) -> Optional[SyncJob]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM sync_jobs WHERE repo_id = ? AND status IN (?, ?)",
                (repo_id, *_ACTIVE),
            ).fetchone()
        return _row_to_job(row) if row is not None else None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_running(self, job_id: str) -> bool:
        """``pending`` to ``running``.  False if the job is no longer pending."""
        return self._update(
            job_id,
            {"status": JobStatus.RUNNING.value, "started_at": _now().isoformat()},
            from_states=(JobStatus.PENDING.value,),
        )

    def update_progress(self, job_id: str, progress: int, current_step: str, **counters: Any) -> bool:
        """Record progress and counters while the job is running."""
        values: Dict[str, Any] = {"progress": max(0, min(100, progress)), "current_step": current_step}
        values.update(_counter_columns(counters))
        return self._update(job_id, values, from_states=(JobStatus.RUNNING.value,))

    def finish(
        self,
        job_id: str,
        status: JobStatus,
        error_message: Optional[str] = None,
        **counters: Any,
    ) -> bool:
        """Move an active job into *status*.  Only the first caller wins."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        values: Dict[str, Any] = {
            "status": status.value,
            "completed_at": _now().isoformat(),
            "error_message": error_message,
        }
        if status == JobStatus.COMPLETED:
            values["progress"] = 100
        values.update(_counter_columns(counters))
        won = self._update(job_id, values, from_states=_ACTIVE)
        if won:
            logger.info("Job %s %s%s", job_id, status.value, f": {error_message}" if error_message else "")
        return won

    def _update(self, job_id: str, values: Dict[str, Any], from_states: Tuple[str, ...]) -> bool:
        columns = ", ".join(f"{key} = ?" for key in values)
        marks = ",".join("?" * len(from_states))
        with self._lock:
            cur = self.conn.execute(
                f"UPDATE sync_jobs SET {columns} WHERE id = ? AND status IN ({marks})",
                (*values.values(), job_id, *from_states),
            )
            self.conn.commit()
            return cur.rowcount > 0

    def recover(self) -> Tuple[List[str], List[str]]:
        """Handle jobs left behind by a crashed process.

        Pending jobs are returned for re-enqueueing.  Running jobs were
        interrupted mid-way and are marked failed.
        """
        with self._lock:
            pending = [
                r["id"] for r in self.conn.execute(
                    "SELECT id FROM sync_jobs WHERE status = ? ORDER BY created_at",
                    (JobStatus.PENDING.value,),
                )
            ]
            running = [
                r["id"] for r in self.conn.execute(
                    "SELECT id FROM sync_jobs WHERE status = ?", (JobStatus.RUNNING.value,),
                )
            ]
        for job_id in running:
            self.finish(job_id, JobStatus.FAILED, "interrupted by process restart")
        if pending or running:
            logger.info("Recovered %d pending job(s); failed %d interrupted job(s)", len(pending), len(running))
        return pending, running

    # ------------------------------------------------------------------
    # Watermarks
    # ------------------------------------------------------------------

    def get_watermark(self, repo_id: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "SELECT last_synced_commit FROM repositories WHERE repo_id = ?", (repo_id,),
            ).fetchone()
        return row["last_synced_commit"] if row is not None else None

    def set_watermark(self, repo_id: str, commit: str) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO repositories (repo_id, last_synced_commit, last_synced_at)
                VALUES (?, ?, ?)
                ON CONFLICT(repo_id) DO UPDATE SET
                    last_synced_commit = excluded.last_synced_commit,
                    last_synced_at = excluded.last_synced_at
                """,
                (repo_id, commit, _now().isoformat()),
            )
            self.conn.commit()


_COUNTERS = ("nodes_created", "edges_created", "vectors_created")


def _counter_columns(counters: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, value in counters.items():
        if key in _COUNTERS:
            values[key] = int(value)
        elif key == "file_errors":
            values[key] = json.dumps(list(value))
        else:
            raise TypeError(f"unknown job field: {key}")
    return values


def _row_to_job(row: sqlite3.Row) -> SyncJob:
    return SyncJob(
        id=row["id"],
        repo_id=row["repo_id"],
        job_type=JobType(row["job_type"]),
        status=JobStatus(row["status"]),
        ref=row["ref"],
        progress=row["progress"],
        current_step=row["current_step"],
        nodes_created=row["nodes_created"],
        edges_created=row["edges_created"],
        vectors_created=row["vectors_created"],
        error_message=row["error_message"],
        file_errors=json.loads(row["file_errors"] or "[]"),
        created_at=_ts(row["created_at"]),
        started_at=_ts(row["started_at"]),
        completed_at=_ts(row["completed_at"]),
    )
