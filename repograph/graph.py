"""Graph manager: write, resolve and read one repository's code graph.

Nodes are ``File`` rows and ``Symbol`` rows; edges are ``DEFINES``
(File to Symbol), ``CALLS`` (Symbol to Symbol), ``IMPORTS`` (File to
File), ``DEPENDS_ON`` (File to an external ``module:<name>`` marker) and
``INHERITS`` (Symbol to Symbol).  ``Commit`` rows carry history: ``PARENT_OF``
(Commit to parent Commit) and ``MODIFIES`` (Commit to File).

Calls and imports are resolved by name against what is already in the
graph.  Misses are dropped and handed back to the caller so a later pass
can retry them once more files are in.
"""

from __future__ import annotations

import json
import logging
import posixpath
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from . import analysis
from .errors import GraphError, GraphWriteError
from .models import (
    CallInfo,
    CallPath,
    CommitInfo,
    CommitNode,
    EdgeType,
    FileNode,
    GraphQuery,
    GraphStats,
    ImportInfo,
    Language,
    ParseResult,
    QueryType,
    Symbol,
    SymbolKind,
    SymbolNode,
    SymbolUsage,
    Visibility,
    language_for_path,
)
from .storage import GraphStore

logger = logging.getLogger(__name__)

_CONTAINER_KINDS = (
    SymbolKind.CLASS.value, SymbolKind.INTERFACE.value,
    SymbolKind.ENUM.value, SymbolKind.TYPE.value,
)
_SCRIPT_EXTS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".d.ts")
MODULE_PREFIX = "module:"


@dataclass
class ApplyResult:
    """Outcome of applying one file's parse result."""

    path: str
    skipped: bool = False
    nodes_created: int = 0
    edges_created: int = 0
    removed_symbols: int = 0
    unresolved_calls: List[Tuple[str, CallInfo]] = field(default_factory=list)
    unresolved_imports: int = 0
    symbol_names: Set[str] = field(default_factory=set)


@dataclass
class PendingLinks:
    """Calls and imports that missed on the first pass of a sync.

    ``new_names`` collects the bare names of symbols written during the
    run; stored calls from untouched files that name one of them are
    linked at the end.  With ``retry_all`` every stored call is retried.
    """

    calls: List[Tuple[str, CallInfo]] = field(default_factory=list)
    imports: Dict[str, List[ImportInfo]] = field(default_factory=dict)
    new_names: Set[str] = field(default_factory=set)
    retry_all: bool = False

    def add(self, result: ApplyResult, imports: List[ImportInfo]) -> None:
        self.calls.extend(result.unresolved_calls)
        self.new_names.update(result.symbol_names)
        if result.unresolved_imports:
            self.imports[result.path] = imports

    def __bool__(self) -> bool:
        return bool(self.calls or self.imports or self.new_names or self.retry_all)


class GraphManager:
    """Read/write API over one repository's :class:`GraphStore`."""

    def __init__(self, repo_id: str, store: GraphStore) -> None:
        self.repo_id = repo_id
        self.store = store

    # ==================================================================
    # Writes
    # ==================================================================

    def apply_file(
        self,
        result: ParseResult,
        content_hash: str = "",
        force: bool = False,
    ) -> ApplyResult:
        """Upsert a file, its symbols, DEFINES, CALLS and import edges atomically.

        A file whose stored content hash equals *content_hash* is left
        untouched unless *force* is set.  Symbols that the file no longer
        declares are removed in the same transaction.
        """
        outcome = ApplyResult(path=result.path)
        try:
            with self.store.transaction() as cur:
                row = cur.execute(
                    "SELECT content_hash FROM files WHERE path = ?", (result.path,),
                ).fetchone()
                if row is not None and content_hash and row["content_hash"] == content_hash and not force:
                    outcome.skipped = True
                    return outcome

                now = time.time()
                complexity = sum(s.complexity for s in result.symbols)
                self._write_file(cur, result.path, result.language, result.lines_of_code,
                                 content_hash, complexity, now)
                outcome.nodes_created += 1

                new_names = {s.qualified_name for s in result.symbols}
                old_names = {
                    r["qualified_name"] for r in cur.execute(
                        "SELECT qualified_name FROM symbols WHERE file = ?", (result.path,),
                    )
                }
                stale = sorted(old_names - new_names)
                if stale:
                    _delete_symbols(cur, stale)
                    outcome.removed_symbols = len(stale)

                for symbol in result.symbols:
                    outcome.edges_created += self._write_symbol(cur, symbol, now)
                    outcome.nodes_created += 1
                    outcome.symbol_names.add(symbol.name)

                # Outgoing calls are rebuilt; inbound edges from other files stay.
                if new_names:
                    _delete_edges_from(cur, sorted(new_names), EdgeType.CALLS)
                    _delete_edges_from(cur, sorted(new_names), EdgeType.INHERITS)
                for symbol in result.symbols:
                    created, missed = self._link_calls(cur, symbol, symbol.calls, now)
                    outcome.edges_created += created
                    outcome.unresolved_calls.extend((symbol.qualified_name, c) for c in missed)
                    if symbol.bases:
                        outcome.edges_created += self._link_inherits(cur, symbol, symbol.bases, now)

                created, missed = self._link_imports(cur, result.path, result.imports, now)
                outcome.edges_created += created
                outcome.unresolved_imports = missed
        except sqlite3.Error as exc:
            raise GraphWriteError(result.path, str(exc)) from exc

        logger.debug(
            "Applied %s: %d nodes, %d edges, %d stale symbols removed",
            result.path, outcome.nodes_created, outcome.edges_created, outcome.removed_symbols,
        )
        return outcome

    def upsert_file(self, path: str, language: str, lines_of_code: int, content_hash: str = "") -> None:
        """Create or update a File node.  Idempotent by path."""
        try:
            with self.store.transaction() as cur:
                self._write_file(cur, path, language, lines_of_code, content_hash, 0, time.time())
        except sqlite3.Error as exc:
            raise GraphWriteError(path, str(exc)) from exc

    def upsert_symbol(self, symbol: Symbol) -> None:
        """Create or update a Symbol node and its DEFINES edge.

        Identity is the qualified name, so inbound CALLS edges survive.
        """
        try:
            with self.store.transaction() as cur:
                now = time.time()
                exists = cur.execute(
                    "SELECT 1 FROM files WHERE path = ?", (symbol.file,),
                ).fetchone()
                if exists is None:
                    lang = language_for_path(symbol.file)
                    self._write_file(cur, symbol.file, lang.value if lang else "unknown", 0, "", 0, now)
                self._write_symbol(cur, symbol, now)
        except sqlite3.Error as exc:
            raise GraphWriteError(symbol.file, str(exc)) from exc

    def remove_file(self, path: str) -> int:
        """Remove a File node, its symbols and every edge touching them."""
        try:
            with self.store.transaction() as cur:
                names = [
                    r["qualified_name"] for r in cur.execute(
                        "SELECT qualified_name FROM symbols WHERE file = ?", (path,),
                    )
                ]
                if names:
                    _delete_symbols(cur, names)
                cur.execute("DELETE FROM edges WHERE src = ? OR dst = ?", (path, path))
                cur.execute("DELETE FROM files WHERE path = ?", (path,))
        except sqlite3.Error as exc:
            raise GraphWriteError(path, str(exc)) from exc
        logger.debug("Removed %s (%d symbols)", path, len(names))
        return len(names)

    def link_calls(self, qualified_name: str, callee_names: Iterable[str]) -> int:
        """Resolve *callee_names* from one symbol and add CALLS edges.

        Unresolved names are skipped.  Returns the number of edges created.
        """
        calls = [CallInfo(callee=name, line=0) for name in callee_names]
        with self.store.transaction() as cur:
            caller = _row_to_symbol(cur.execute(
                "SELECT * FROM symbols WHERE qualified_name = ?", (qualified_name,),
            ).fetchone())
            if caller is None:
                return 0
            created, _ = self._link_calls(cur, caller, calls, time.time(), replace=False)
            return created

    def link_imports(self, path: str, imports: Sequence[ImportInfo]) -> int:
        """Rebuild IMPORTS / DEPENDS_ON edges for *path*."""
        with self.store.transaction() as cur:
            created, _ = self._link_imports(cur, path, imports, time.time())
            return created

    def link_inherits(self, qualified_name: str, bases: Sequence[str]) -> int:
        with self.store.transaction() as cur:
            child = _row_to_symbol(cur.execute(
                "SELECT * FROM symbols WHERE qualified_name = ?", (qualified_name,),
            ).fetchone())
            if child is None:
                return 0
            return self._link_inherits(cur, child, bases, time.time())

    def relink(self, pending: PendingLinks) -> int:
        """Second pass: retry calls and imports that missed on the first pass."""
        created = 0
        now = time.time()
        with self.store.transaction() as cur:
            by_caller: Dict[str, List[CallInfo]] = {}
            for qname, call in pending.calls:
                by_caller.setdefault(qname, []).append(call)
            for qname, calls in by_caller.items():
                caller = _row_to_symbol(cur.execute(
                    "SELECT * FROM symbols WHERE qualified_name = ?", (qname,),
                ).fetchone())
                if caller is None:
                    continue
                n, _ = self._link_calls(cur, caller, calls, now, replace=False)
                created += n
            for path, imports in pending.imports.items():
                n, _ = self._link_imports(cur, path, imports, now)
                created += n
            if pending.retry_all or pending.new_names:
                created += self._link_dangling(cur, None if pending.retry_all else pending.new_names, now)
        if created:
            logger.debug("Second pass resolved %d edges", created)
        return created

    def sync_commits(self, commits: Sequence[CommitInfo]) -> Tuple[int, int]:
        """Upsert Commit nodes with their PARENT_OF and MODIFIES edges.

        PARENT_OF runs child to parent and is only drawn when the parent
        is already a node.  MODIFIES runs Commit to File and is only drawn
        for files present in the graph, so history of removed files and
        commits older than the synced window stay out.  Returns
        ``(nodes_created, edges_created)``.
        """
        nodes = edges = 0
        now = time.time()
        try:
            with self.store.transaction() as cur:
                for commit in commits:
                    known = cur.execute(
                        "SELECT 1 FROM commits WHERE sha = ?", (commit.sha,),
                    ).fetchone()
                    cur.execute(
                        """
                        INSERT INTO commits (sha, message, author, author_email, committer,
                                             timestamp, files_changed, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(sha) DO UPDATE SET
                            message = excluded.message,
                            author = excluded.author,
                            author_email = excluded.author_email,
                            committer = excluded.committer,
                            timestamp = excluded.timestamp,
                            files_changed = excluded.files_changed,
                            updated_at = excluded.updated_at
                        """,
                        (commit.sha, commit.message, commit.author, commit.author_email,
                         commit.committer, commit.timestamp,
                         len(commit.changes.added) + len(commit.changes.modified)
                         + len(commit.changes.deleted), now),
                    )
                    if known is None:
                        nodes += 1
                # Edges after all nodes so a batch may list children before parents
                for commit in commits:
                    for parent in commit.parents:
                        if cur.execute("SELECT 1 FROM commits WHERE sha = ?", (parent,)).fetchone() is None:
                            continue
                        cur.execute(
                            "INSERT OR IGNORE INTO edges (src, dst, edge_type, updated_at) VALUES (?, ?, ?, ?)",
                            (commit.sha, parent, EdgeType.PARENT_OF.value, now),
                        )
                        edges += max(cur.rowcount, 0)
                    for change_type, paths in (
                        ("added", commit.changes.added),
                        ("modified", commit.changes.modified),
                        ("deleted", commit.changes.deleted),
                    ):
                        for path in paths:
                            if cur.execute("SELECT 1 FROM files WHERE path = ?", (path,)).fetchone() is None:
                                continue
                            cur.execute(
                                """
                                INSERT OR IGNORE INTO edges (src, dst, edge_type, change_type, updated_at)
                                VALUES (?, ?, ?, ?, ?)
                                """,
                                (commit.sha, path, EdgeType.MODIFIES.value, change_type, now),
                            )
                            edges += max(cur.rowcount, 0)
        except sqlite3.Error as exc:
            raise GraphWriteError("commits", str(exc)) from exc
        if nodes or edges:
            logger.debug("Synced %d commits (%d new edges)", nodes, edges)
        return nodes, edges

    def clear(self) -> None:
        self.store.clear()

    # ------------------------------------------------------------------
    # Write helpers (run inside a transaction)
    # ------------------------------------------------------------------

    @staticmethod
    def _write_file(cur, path, language, loc, content_hash, complexity, now) -> None:
        cur.execute(
            """
            INSERT INTO files (path, language, lines_of_code, complexity, content_hash, version, updated_at)
            VALUES (?, ?, ?, ?, ?, 1, ?)
            ON CONFLICT(path) DO UPDATE SET
                language = excluded.language,
                lines_of_code = excluded.lines_of_code,
                complexity = excluded.complexity,
                content_hash = excluded.content_hash,
                version = files.version + 1,
                updated_at = excluded.updated_at
            """,
            (path, language, loc, complexity, content_hash, now),
        )

    @staticmethod
    def _write_symbol(cur: sqlite3.Cursor, symbol: Symbol, now: float) -> int:
        cur.execute(
            """
            INSERT INTO symbols (
                qualified_name, name, kind, file, start_line, end_line,
                signature, docstring, return_type, parameters, visibility,
                is_async, is_static, is_abstract, is_exported, complexity,
                parent_symbol, calls, bases, version, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
            ON CONFLICT(qualified_name) DO UPDATE SET
                name = excluded.name,
                kind = excluded.kind,
                file = excluded.file,
                start_line = excluded.start_line,
                end_line = excluded.end_line,
                signature = excluded.signature,
                docstring = excluded.docstring,
                return_type = excluded.return_type,
                parameters = excluded.parameters,
                visibility = excluded.visibility,
                is_async = excluded.is_async,
                is_static = excluded.is_static,
                is_abstract = excluded.is_abstract,
                is_exported = excluded.is_exported,
                complexity = excluded.complexity,
                parent_symbol = excluded.parent_symbol,
                calls = excluded.calls,
                bases = excluded.bases,
                version = symbols.version + 1,
                updated_at = excluded.updated_at
            """,
            (
                symbol.qualified_name, symbol.name, symbol.kind.value, symbol.file,
                symbol.start_line, symbol.end_line, symbol.signature, symbol.docstring,
                symbol.return_type,
                json.dumps([p.__dict__ for p in symbol.parameters]),
                symbol.visibility.value,
                int(symbol.is_async), int(symbol.is_static), int(symbol.is_abstract),
                int(symbol.is_exported), max(1, symbol.complexity), symbol.parent_symbol,
                json.dumps([c.__dict__ for c in symbol.calls]),
                json.dumps(symbol.bases),
                now,
            ),
        )
        # A symbol has exactly one DEFINES edge: drop any from another file
        cur.execute(
            "DELETE FROM edges WHERE edge_type = ? AND dst = ? AND src != ?",
            (EdgeType.DEFINES.value, symbol.qualified_name, symbol.file),
        )
        cur.execute(
            """
            INSERT OR IGNORE INTO edges (src, dst, edge_type, line, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (symbol.file, symbol.qualified_name, EdgeType.DEFINES.value, symbol.start_line, now),
        )
        return cur.rowcount if cur.rowcount > 0 else 0

    def _link_calls(
        self,
        cur: sqlite3.Cursor,
        caller: Symbol,
        calls: Sequence[CallInfo],
        now: float,
        replace: bool = True,
    ) -> Tuple[int, List[CallInfo]]:
        targets: Dict[str, List[CallInfo]] = {}
        missed: List[CallInfo] = []
        cache: Dict[str, Optional[str]] = {}
        for call in calls:
            if call.callee not in cache:
                cache[call.callee] = _resolve_symbol(cur, call.callee, caller)
            target = cache[call.callee]
            if target is None:
                missed.append(call)
                continue
            targets.setdefault(target, []).append(call)

        verb = "INSERT OR REPLACE" if replace else "INSERT OR IGNORE"
        created = 0
        for target, sites in targets.items():
            cur.execute(
                f"""
                {verb} INTO edges (src, dst, edge_type, line, is_conditional, call_count, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    caller.qualified_name, target, EdgeType.CALLS.value,
                    min(s.line for s in sites),
                    int(all(s.is_conditional for s in sites)),
                    len(sites),
                    now,
                ),
            )
            created += max(cur.rowcount, 0)
        return created, missed

    def _link_dangling(self, cur: sqlite3.Cursor, names: Optional[Set[str]], now: float) -> int:
        """Link stored calls whose callee has no CALLS edge yet.

        Callers in files a sync skipped keep their call list in
        ``symbols.calls``.  Only callees in *names* are retried, or every
        callee when *names* is ``None``.
        """
        created = 0
        rows = cur.execute(
            "SELECT * FROM symbols WHERE calls IS NOT NULL AND calls != '[]'"
        ).fetchall()
        for row in rows:
            calls = [CallInfo(**c) for c in json.loads(row["calls"])]
            if names is not None:
                calls = [c for c in calls if c.callee in names]
            if not calls:
                continue
            linked = {
                r["name"] for r in cur.execute(
                    """
                    SELECT t.name FROM edges e
                    JOIN symbols t ON t.qualified_name = e.dst
                    WHERE e.edge_type = ? AND e.src = ?
                    """,
                    (EdgeType.CALLS.value, row["qualified_name"]),
                )
            }
            calls = [c for c in calls if c.callee not in linked]
            if calls:
                n, _ = self._link_calls(cur, _row_to_symbol(row), calls, now, replace=False)
                created += n
        return created

    def _link_inherits(self, cur: sqlite3.Cursor, child: Symbol, bases: Sequence[str], now: float) -> int:
        created = 0
        for base in bases:
            target = _resolve_symbol(cur, base, child, kinds=_CONTAINER_KINDS)
            if target is None or target == child.qualified_name:
                continue
            cur.execute(
                """
                INSERT OR IGNORE INTO edges (src, dst, edge_type, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (child.qualified_name, target, EdgeType.INHERITS.value, now),
            )
            created += max(cur.rowcount, 0)
        return created

    def _link_imports(
        self,
        cur: sqlite3.Cursor,
        path: str,
        imports: Sequence[ImportInfo],
        now: float,
    ) -> Tuple[int, int]:
        cur.execute(
            "DELETE FROM edges WHERE src = ? AND edge_type IN (?, ?)",
            (path, EdgeType.IMPORTS.value, EdgeType.DEPENDS_ON.value),
        )
        if not imports:
            return 0, 0
        known = {r["path"] for r in cur.execute("SELECT path FROM files")}
        created = 0
        missed = 0
        for imp in imports:
            targets = [t for t in resolve_import(path, imp, known) if t != path]
            if targets:
                edge_type, dsts = EdgeType.IMPORTS.value, targets
            else:
                missed += 1
                edge_type, dsts = EdgeType.DEPENDS_ON.value, [MODULE_PREFIX + imp.source]
            for dst in dsts:
                cur.execute(
                    """
                    INSERT OR REPLACE INTO edges (src, dst, edge_type, line, imported_symbols, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (path, dst, edge_type, imp.line, json.dumps(imp.imported_symbols), now),
                )
                created += 1
        return created, missed

    # ==================================================================
    # Reads
    # ==================================================================

    def get_stats(self) -> GraphStats:
        stats = GraphStats()
        row = self.store.fetch_one("SELECT COUNT(*) AS n FROM files")
        stats.file_count = row["n"] if row else 0
        for r in self.store.fetch_all("SELECT kind, COUNT(*) AS n FROM symbols GROUP BY kind"):
            stats.symbol_count += r["n"]
            if r["kind"] in (SymbolKind.FUNCTION.value, SymbolKind.METHOD.value):
                stats.function_count += r["n"]
            elif r["kind"] in (SymbolKind.CLASS.value, SymbolKind.INTERFACE.value):
                stats.class_count += r["n"]
        for r in self.store.fetch_all("SELECT edge_type, COUNT(*) AS n FROM edges GROUP BY edge_type"):
            stats.relationships_by_type[r["edge_type"]] = r["n"]
            stats.relationship_count += r["n"]
        modules = self.store.fetch_one(
            "SELECT COUNT(DISTINCT dst) AS n FROM edges WHERE edge_type = ?",
            (EdgeType.DEPENDS_ON.value,),
        )
        commits = self.store.fetch_one("SELECT COUNT(*) AS n FROM commits")
        stats.nodes_by_label = {
            "File": stats.file_count,
            "Symbol": stats.symbol_count,
            "Module": modules["n"] if modules else 0,
            "Commit": commits["n"] if commits else 0,
        }
        return stats

    def query(self, raw: str, params: Any = None) -> List[Dict[str, Any]]:
        """Run a caller-supplied read query verbatim.

        No content filtering happens here; callers exposing this to
        untrusted input must screen it first (see ``cli.screen_query``).
        """
        return [dict(r) for r in self.store.fetch_all(raw, params or ())]

    def execute_query(self, q: GraphQuery) -> List[Dict[str, Any]]:
        """Run one of the fixed, parameterised query shapes."""
        if q.type == QueryType.CALLS:
            return [s.to_dict() for s in self.get_callees(q.target or "")]
        if q.type == QueryType.CALLED_BY:
            return [s.to_dict() for s in self.get_callers(q.target or "")]
        if q.type == QueryType.IMPORTS:
            return [f.__dict__ for f in self.get_file_dependencies(q.target or "")]
        if q.type == QueryType.IMPORTED_BY:
            return [f.__dict__ for f in self.get_file_dependents(q.target or "")]
        if q.type == QueryType.DEFINES:
            return [s.to_dict() for s in self.get_file_symbols(q.target or "")]
        if q.type == QueryType.INHERITS:
            inheritance = self.get_inheritance(q.target or "")
            return [
                {"relation": rel, **s.to_dict()}
                for rel, symbols in inheritance.items() for s in symbols
            ]
        if q.type == QueryType.PATH:
            paths = self.find_call_paths(q.from_symbol or "", q.to_symbol or "", q.max_depth)
            return [{"path": p.path, "depth": p.depth} for p in paths]
        if q.type == QueryType.CUSTOM:
            if not q.query:
                raise GraphError("custom query requires query text")
            return self.query(q.query, q.params)
        raise GraphError(f"unknown query type: {q.type}")

    def resolve_name(self, name: str) -> Optional[str]:
        """Map a qualified or bare name to a qualified name, if any."""
        row = self.store.fetch_one(
            "SELECT qualified_name FROM symbols WHERE qualified_name = ?", (name,),
        )
        if row is not None:
            return row["qualified_name"]
        row = self.store.fetch_one(
            "SELECT qualified_name FROM symbols WHERE name = ? ORDER BY qualified_name LIMIT 1",
            (name,),
        )
        return row["qualified_name"] if row is not None else None

    def get_symbol(self, name: str) -> Optional[SymbolNode]:
        qname = self.resolve_name(name)
        if qname is None:
            return None
        row = self.store.fetch_one("SELECT * FROM symbols WHERE qualified_name = ?", (qname,))
        return _row_to_node(row) if row is not None else None

    def get_symbol_usage(self, name: str) -> Optional[SymbolUsage]:
        symbol = self.get_symbol(name)
        if symbol is None:
            return None
        return SymbolUsage(
            symbol=symbol,
            callers=self.get_callers(symbol.qualified_name),
            callees=self.get_callees(symbol.qualified_name),
        )

    def get_callers(self, name: str) -> List[SymbolNode]:
        qname = self.resolve_name(name)
        if qname is None:
            return []
        rows = self.store.fetch_all(
            """
            SELECT s.* FROM edges e JOIN symbols s ON s.qualified_name = e.src
            WHERE e.edge_type = ? AND e.dst = ?
            ORDER BY s.qualified_name
            """,
            (EdgeType.CALLS.value, qname),
        )
        return [_row_to_node(r) for r in rows]

    def get_callees(self, name: str) -> List[SymbolNode]:
        qname = self.resolve_name(name)
        if qname is None:
            return []
        rows = self.store.fetch_all(
            """
            SELECT s.* FROM edges e JOIN symbols s ON s.qualified_name = e.dst
            WHERE e.edge_type = ? AND e.src = ?
            ORDER BY s.qualified_name
            """,
            (EdgeType.CALLS.value, qname),
        )
        return [_row_to_node(r) for r in rows]

    def get_inheritance(self, name: str) -> Dict[str, List[SymbolNode]]:
        qname = self.resolve_name(name)
        if qname is None:
            return {"bases": [], "subclasses": []}
        bases = self.store.fetch_all(
            """
            SELECT s.* FROM edges e JOIN symbols s ON s.qualified_name = e.dst
            WHERE e.edge_type = ? AND e.src = ? ORDER BY s.qualified_name
            """,
            (EdgeType.INHERITS.value, qname),
        )
        subclasses = self.store.fetch_all(
            """
            SELECT s.* FROM edges e JOIN symbols s ON s.qualified_name = e.src
            WHERE e.edge_type = ? AND e.dst = ? ORDER BY s.qualified_name
            """,
            (EdgeType.INHERITS.value, qname),
        )
        return {
            "bases": [_row_to_node(r) for r in bases],
            "subclasses": [_row_to_node(r) for r in subclasses],
        }

    def find_call_paths(self, from_name: str, to_name: str, max_depth: int = 10) -> List[CallPath]:
        """All simple CALLS paths from one symbol to another, up to *max_depth* hops."""
        src = self.resolve_name(from_name)
        dst = self.resolve_name(to_name)
        if src is None or dst is None:
            return []
        adjacency = self._call_adjacency()
        return [CallPath(path=p) for p in analysis.all_simple_paths(adjacency, src, dst, max_depth)]

    def get_impact(self, name: str, hops: int = 2) -> List[SymbolNode]:
        """Symbols that transitively call *name* within *hops* edges."""
        qname = self.resolve_name(name)
        if qname is None:
            return []
        reverse: Dict[str, List[str]] = {}
        for src, targets in self._call_adjacency().items():
            for dst in targets:
                reverse.setdefault(dst, []).append(src)
        impacted = sorted(analysis.reachable(reverse, qname, hops))
        nodes = []
        for other in impacted:
            row = self.store.fetch_one("SELECT * FROM symbols WHERE qualified_name = ?", (other,))
            if row is not None:
                nodes.append(_row_to_node(row))
        return nodes

    def find_dead_code(self) -> List[SymbolNode]:
        """Non-exported functions and methods that no other symbol calls.

        Types, enums and other declarations never receive CALLS edges, so
        they are left out.
        """
        rows = self.store.fetch_all(
            """
            SELECT s.* FROM symbols s
            WHERE s.is_exported = 0
              AND s.kind IN (?, ?)
              AND NOT EXISTS (
                  SELECT 1 FROM edges e
                  WHERE e.edge_type = ? AND e.dst = s.qualified_name AND e.src != s.qualified_name
              )
            ORDER BY s.file, s.start_line, s.qualified_name
            """,
            (SymbolKind.FUNCTION.value, SymbolKind.METHOD.value, EdgeType.CALLS.value),
        )
        return [_row_to_node(r) for r in rows]

    def find_complexity_hotspots(self, threshold: int = 10, limit: int = 50) -> List[SymbolNode]:
        rows = self.store.fetch_all(
            """
            SELECT * FROM symbols WHERE complexity >= ?
            ORDER BY complexity DESC, qualified_name LIMIT ?
            """,
            (threshold, limit),
        )
        return [_row_to_node(r) for r in rows]

    def get_file_node(self, path: str) -> Optional[FileNode]:
        row = self.store.fetch_one("SELECT * FROM files WHERE path = ?", (path,))
        return _row_to_file(row) if row is not None else None

    def get_file_symbols(self, path: str) -> List[SymbolNode]:
        rows = self.store.fetch_all(
            "SELECT * FROM symbols WHERE file = ? ORDER BY start_line, qualified_name", (path,),
        )
        return [_row_to_node(r) for r in rows]

    def get_file_dependencies(self, path: str) -> List[FileNode]:
        rows = self.store.fetch_all(
            """
            SELECT f.* FROM edges e JOIN files f ON f.path = e.dst
            WHERE e.edge_type = ? AND e.src = ? ORDER BY f.path
            """,
            (EdgeType.IMPORTS.value, path),
        )
        return [_row_to_file(r) for r in rows]

    def get_file_dependents(self, path: str) -> List[FileNode]:
        rows = self.store.fetch_all(
            """
            SELECT f.* FROM edges e JOIN files f ON f.path = e.src
            WHERE e.edge_type = ? AND e.dst = ? ORDER BY f.path
            """,
            (EdgeType.IMPORTS.value, path),
        )
        return [_row_to_file(r) for r in rows]

    def get_external_dependencies(self, path: str) -> List[str]:
        rows = self.store.fetch_all(
            "SELECT dst FROM edges WHERE edge_type = ? AND src = ? ORDER BY dst",
            (EdgeType.DEPENDS_ON.value, path),
        )
        return [r["dst"][len(MODULE_PREFIX):] for r in rows]

    def get_commit(self, sha: str) -> Optional[CommitNode]:
        """Look up a commit by full sha or unique prefix."""
        if not sha:
            return None
        rows = self.store.fetch_all(
            "SELECT * FROM commits WHERE substr(sha, 1, ?) = ? ORDER BY sha LIMIT 2",
            (len(sha), sha),
        )
        exact = [r for r in rows if r["sha"] == sha]
        if exact:
            return _row_to_commit(exact[0])
        return _row_to_commit(rows[0]) if len(rows) == 1 else None

    def get_commit_parents(self, sha: str) -> List[str]:
        rows = self.store.fetch_all(
            "SELECT dst FROM edges WHERE edge_type = ? AND src = ? ORDER BY dst",
            (EdgeType.PARENT_OF.value, sha),
        )
        return [r["dst"] for r in rows]

    def get_commit_files(self, sha: str) -> Dict[str, str]:
        """Files a commit touched, mapped to how it changed them."""
        rows = self.store.fetch_all(
            "SELECT dst, change_type FROM edges WHERE edge_type = ? AND src = ? ORDER BY dst",
            (EdgeType.MODIFIES.value, sha),
        )
        return {r["dst"]: r["change_type"] for r in rows}

    def get_file_history(self, path: str, limit: int = 20) -> List[CommitNode]:
        """Commits that touched *path*, newest first."""
        rows = self.store.fetch_all(
            """
            SELECT c.*, e.change_type FROM edges e JOIN commits c ON c.sha = e.src
            WHERE e.edge_type = ? AND e.dst = ?
            ORDER BY c.timestamp DESC, c.sha LIMIT ?
            """,
            (EdgeType.MODIFIES.value, path, limit),
        )
        return [_row_to_commit(r) for r in rows]

    def list_files(self) -> List[str]:
        return [r["path"] for r in self.store.fetch_all("SELECT path FROM files ORDER BY path")]

    def _call_adjacency(self) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = {}
        rows = self.store.fetch_all(
            "SELECT src, dst FROM edges WHERE edge_type = ? ORDER BY src, dst",
            (EdgeType.CALLS.value,),
        )
        for r in rows:
            adjacency.setdefault(r["src"], []).append(r["dst"])
        return adjacency


# ===================================================================
# Resolution
# ===================================================================

def _resolve_symbol(
    cur: sqlite3.Cursor,
    name: str,
    caller: Symbol,
    kinds: Optional[Tuple[str, ...]] = None,
) -> Optional[str]:
    """Pick the best symbol named *name* for a reference made from *caller*.

    Preference: same file and enclosing scope, then same file, then same
    directory, then the lexicographically smallest qualified name.
    """
    if kinds:
        marks = ",".join("?" * len(kinds))
        rows = cur.execute(
            f"SELECT qualified_name, file, parent_symbol FROM symbols WHERE name = ? AND kind IN ({marks})",
            (name, *kinds),
        ).fetchall()
    else:
        rows = cur.execute(
            "SELECT qualified_name, file, parent_symbol FROM symbols WHERE name = ?", (name,),
        ).fetchall()
    if not rows:
        return None

    caller_dir = posixpath.dirname(caller.file)

    def rank(row: sqlite3.Row) -> Tuple[int, str]:
        if row["file"] == caller.file:
            same_scope = caller.parent_symbol and row["parent_symbol"] == caller.parent_symbol
            return (0 if same_scope else 1, row["qualified_name"])
        if posixpath.dirname(row["file"]) == caller_dir:
            return (2, row["qualified_name"])
        return (3, row["qualified_name"])

    return min(rows, key=rank)["qualified_name"]


def resolve_import(from_path: str, imp: ImportInfo, known: Set[str]) -> List[str]:
    """Map an import to repository file paths present in *known*."""
    lang = language_for_path(from_path)
    source = imp.source
    if not source or lang is None:
        return []

    if lang in (Language.TYPESCRIPT, Language.TSX, Language.JAVASCRIPT):
        if not source.startswith((".", "/")):
            return []
        base = posixpath.normpath(posixpath.join(posixpath.dirname(from_path), source)).lstrip("/")
        candidates = [base] + [base + ext for ext in _SCRIPT_EXTS]
        candidates += [posixpath.join(base, "index" + ext) for ext in _SCRIPT_EXTS]
        return _first_known(candidates, known)

    if lang == Language.PYTHON:
        return _resolve_python(from_path, imp, known)

    if lang == Language.GO:
        return sorted(
            p for p in known
            if p.endswith(".go") and _dir_has_suffix(posixpath.dirname(p), source)
        )

    if lang == Language.RUST:
        return _resolve_rust(from_path, source, known)

    if lang == Language.JAVA:
        rel = source.replace(".", "/")
        if imp.namespace_import == "*":
            return sorted(
                p for p in known
                if p.endswith(".java") and _dir_has_suffix(posixpath.dirname(p), rel)
            )
        return sorted(p for p in known if p == rel + ".java" or p.endswith("/" + rel + ".java"))

    return []


def _resolve_python(from_path: str, imp: ImportInfo, known: Set[str]) -> List[str]:
    source = imp.source
    if source.startswith("."):
        dots = len(source) - len(source.lstrip("."))
        base = posixpath.dirname(from_path)
        for _ in range(dots - 1):
            base = posixpath.dirname(base)
        module = source[dots:]
        if not module:
            candidates = [posixpath.join(base, name + ".py") for name in imp.imported_symbols]
            candidates += [posixpath.join(base, name, "__init__.py") for name in imp.imported_symbols]
            found = [c for c in candidates if c in known]
            if found:
                return found
            return _first_known([posixpath.join(base, "__init__.py")], known)
        rel = posixpath.join(base, *module.split("."))
        return _first_known([rel + ".py", posixpath.join(rel, "__init__.py")], known)

    rel = source.replace(".", "/")
    for suffix in (rel + ".py", rel + "/__init__.py"):
        matches = sorted(p for p in known if p == suffix or p.endswith("/" + suffix))
        if matches:
            return matches[:1]
    return []


def _resolve_rust(from_path: str, source: str, known: Set[str]) -> List[str]:
    parts = [p for p in source.split("::") if p]
    if not parts:
        return []
    head = parts[0]
    here = posixpath.dirname(from_path)
    stem = posixpath.splitext(posixpath.basename(from_path))[0]
    if head == "crate":
        # crate root is the nearest enclosing src/ directory
        marker = ("/" + from_path).rfind("/src/")
        base = from_path[:marker + 3].lstrip("/") if marker >= 0 else ""
        rest = parts[1:]
    elif head in ("self", "super"):
        base = here if stem in ("mod", "lib", "main") else posixpath.join(here, stem)
        if head == "super":
            base = posixpath.dirname(base)
        rest = parts[1:]
    else:
        return []

    # Items may be named after the module path: try longest prefix first
    for end in range(len(rest), 0, -1):
        rel = posixpath.join(base, *rest[:end]) if base else posixpath.join(*rest[:end])
        found = _first_known([rel + ".rs", posixpath.join(rel, "mod.rs")], known)
        if found:
            return found
    return []


def _first_known(candidates: Iterable[str], known: Set[str]) -> List[str]:
    for candidate in candidates:
        if candidate in known:
            return [candidate]
    return []


def _dir_has_suffix(directory: str, suffix: str) -> bool:
    suffix = suffix.strip("/")
    return directory == suffix or directory.endswith("/" + suffix) or (
        bool(directory) and suffix.endswith("/" + directory)
    )


# ===================================================================
# Row mapping
# ===================================================================

def _delete_symbols(cur: sqlite3.Cursor, names: List[str]) -> None:
    for i in range(0, len(names), 400):
        batch = names[i:i + 400]
        marks = ",".join("?" * len(batch))
        cur.execute(f"DELETE FROM edges WHERE src IN ({marks}) OR dst IN ({marks})", batch + batch)
        cur.execute(f"DELETE FROM symbols WHERE qualified_name IN ({marks})", batch)


def _delete_edges_from(cur: sqlite3.Cursor, names: List[str], edge_type: EdgeType) -> None:
    for i in range(0, len(names), 400):
        batch = names[i:i + 400]
        marks = ",".join("?" * len(batch))
        cur.execute(
            f"DELETE FROM edges WHERE edge_type = ? AND src IN ({marks})",
            [edge_type.value, *batch],
        )


def _row_to_node(row: sqlite3.Row) -> SymbolNode:
    return SymbolNode(
        qualified_name=row["qualified_name"],
        name=row["name"],
        kind=SymbolKind(row["kind"]),
        file=row["file"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        signature=row["signature"] or "",
        docstring=row["docstring"] or "",
        return_type=row["return_type"] or "",
        visibility=Visibility(row["visibility"]),
        is_async=bool(row["is_async"]),
        is_static=bool(row["is_static"]),
        is_abstract=bool(row["is_abstract"]),
        is_exported=bool(row["is_exported"]),
        complexity=row["complexity"],
        parent_symbol=row["parent_symbol"],
        version=row["version"],
        updated_at=row["updated_at"],
    )


def _row_to_symbol(row: Optional[sqlite3.Row]) -> Optional[Symbol]:
    """Rebuild the minimal :class:`Symbol` needed for call resolution."""
    if row is None:
        return None
    return Symbol(
        name=row["name"],
        qualified_name=row["qualified_name"],
        kind=SymbolKind(row["kind"]),
        file=row["file"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        parent_symbol=row["parent_symbol"],
    )


def _row_to_file(row: sqlite3.Row) -> FileNode:
    return FileNode(
        path=row["path"],
        language=row["language"],
        lines_of_code=row["lines_of_code"],
        complexity=row["complexity"],
        content_hash=row["content_hash"],
        version=row["version"],
        updated_at=row["updated_at"],
    )


def _row_to_commit(row: sqlite3.Row) -> CommitNode:
    return CommitNode(
        sha=row["sha"],
        message=row["message"],
        author=row["author"],
        author_email=row["author_email"],
        committer=row["committer"],
        timestamp=row["timestamp"],
        files_changed=row["files_changed"],
        change_type=row["change_type"] if "change_type" in row.keys() else None,
        updated_at=row["updated_at"],
    )
