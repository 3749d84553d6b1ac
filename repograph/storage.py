"""SQLite persistence for per-repository property graphs.

Layout: one database file per repository under ``GRAPH_DIR``
(``repo_<id>.db``), holding ``files`` and ``symbols`` node tables and one
``edges`` table keyed by ``(edge_type, src, dst)``.  A ``commits`` table
holds the history nodes that ``PARENT_OF`` and ``MODIFIES`` edges hang off.

The database runs in WAL mode.  All writes go through one connection
guarded by a lock, one file per transaction; reads use a per-thread
connection so a sync in progress never blocks a query.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from .config import GRAPH_DIR
from .errors import GraphError

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def graph_db_path(repo_id: str, base_dir: Optional[Path] = None) -> Path:
    """Return the database path for *repo_id*."""
    safe = _SAFE_ID_RE.sub("_", repo_id).strip("_") or "default"
    return (base_dir or GRAPH_DIR) / f"repo_{safe}.db"


class GraphStore:
    """Thread-safe SQLite store backing one repository graph."""

    def __init__(self, db_path: Path, repo_id: str = "") -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.repo_id = repo_id
        self._lock = threading.RLock()
        self._local = threading.local()
        self._readers: List[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self._init_schema()

    def close(self) -> None:
        with self._readers_lock:
            for reader in self._readers:
                reader.close()
            self._readers.clear()
        with self._lock:
            self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("""
                CREATE TABLE IF NOT EXISTS files (
                    path          TEXT PRIMARY KEY,
                    language      TEXT NOT NULL,
                    lines_of_code INTEGER NOT NULL DEFAULT 0,
                    complexity    INTEGER NOT NULL DEFAULT 0,
                    content_hash  TEXT NOT NULL DEFAULT '',
                    version       INTEGER NOT NULL DEFAULT 1,
                    updated_at    REAL NOT NULL
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS symbols (
                    qualified_name TEXT PRIMARY KEY,
                    name           TEXT NOT NULL,
                    kind           TEXT NOT NULL,
                    file           TEXT NOT NULL,
                    start_line     INTEGER NOT NULL,
                    end_line       INTEGER NOT NULL,
                    signature      TEXT,
                    docstring      TEXT,
                    return_type    TEXT,
                    parameters     TEXT,
                    visibility     TEXT NOT NULL,
                    is_async       INTEGER NOT NULL DEFAULT 0,
                    is_static      INTEGER NOT NULL DEFAULT 0,
                    is_abstract    INTEGER NOT NULL DEFAULT 0,
                    is_exported    INTEGER NOT NULL DEFAULT 0,
                    complexity     INTEGER NOT NULL DEFAULT 1,
                    parent_symbol  TEXT,
                    calls          TEXT,
                    bases          TEXT,
                    version        INTEGER NOT NULL DEFAULT 1,
                    updated_at     REAL NOT NULL
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS edges (
                    src              TEXT NOT NULL,
                    dst              TEXT NOT NULL,
                    edge_type        TEXT NOT NULL,
                    line             INTEGER,
                    is_conditional   INTEGER NOT NULL DEFAULT 0,
                    call_count       INTEGER NOT NULL DEFAULT 1,
                    imported_symbols TEXT,
                    change_type      TEXT,
                    updated_at       REAL NOT NULL,
                    PRIMARY KEY (edge_type, src, dst)
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS commits (
                    sha           TEXT PRIMARY KEY,
                    message       TEXT NOT NULL DEFAULT '',
                    author        TEXT NOT NULL DEFAULT '',
                    author_email  TEXT NOT NULL DEFAULT '',
                    committer     TEXT NOT NULL DEFAULT '',
                    timestamp     INTEGER NOT NULL DEFAULT 0,
                    files_changed INTEGER NOT NULL DEFAULT 0,
                    updated_at    REAL NOT NULL
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS meta (
                    key   TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            # Databases created before commit history lack the MODIFIES column
            columns = {row["name"] for row in cur.execute("PRAGMA table_info(edges)")}
            if "change_type" not in columns:
                cur.execute("ALTER TABLE edges ADD COLUMN change_type TEXT")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_symbols_name ON symbols(name)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_symbols_file ON symbols(file)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_edges_src ON edges(src, edge_type)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_edges_dst ON edges(dst, edge_type)")
            if self.repo_id:
                cur.execute(
                    "INSERT OR IGNORE INTO meta (key, value) VALUES ('repo_id', ?)",
                    (self.repo_id,),
                )
            self.conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block of writes atomically on the writer connection."""
        with self._lock:
            cur = self.conn.cursor()
            try:
                cur.execute("BEGIN IMMEDIATE")
                yield cur
                self.conn.commit()
            except BaseException:
                self.conn.rollback()
                raise
            finally:
                cur.close()

    def clear(self) -> None:
        with self.transaction() as cur:
            cur.execute("DELETE FROM edges")
            cur.execute("DELETE FROM symbols")
            cur.execute("DELETE FROM files")
            cur.execute("DELETE FROM commits")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _reader(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._reader().execute(sql, _bind(params)).fetchall()
        except sqlite3.Error as exc:
            raise GraphError(f"query failed: {exc}") from exc

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        try:
            return self._reader().execute(sql, _bind(params)).fetchone()
        except sqlite3.Error as exc:
            raise GraphError(f"query failed: {exc}") from exc

    def get_meta(self, key: str) -> Optional[str]:
        row = self.fetch_one("SELECT value FROM meta WHERE key = ?", (key,))
        return row["value"] if row is not None else None


def _bind(params: Any) -> Any:
    # Named parameters stay a mapping; positional ones become a tuple
    return params if isinstance(params, dict) else tuple(params)
