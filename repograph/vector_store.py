"""Chunk vector index backed by LanceDB.

One LanceDB database under ``VECTOR_DIR`` holds a table per embedding
model (``code_chunks_<model_key>``) so vectors of different dimensions
never share a table.  Rows from every repository live side by side and
are told apart by the ``repo_id`` column.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .config import VECTOR_DIR
from .errors import VectorStoreError

logger = logging.getLogger(__name__)

try:
    import lancedb  # type: ignore[import-untyped]
    import pyarrow as pa  # type: ignore[import-untyped]
    LANCE_AVAILABLE = True
except ImportError:
    LANCE_AVAILABLE = False


class VectorIndex(Protocol):
    def upsert(self, repo_id: str, chunk_id: str, vector: List[float], payload: Dict[str, Any]) -> None: ...

    def delete_by_file_path(self, repo_id: str, file_path: str) -> int: ...


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _schema(dim: int) -> "pa.Schema":
    return pa.schema([
        pa.field("id", pa.utf8()),
        pa.field("repo_id", pa.utf8()),
        pa.field("vector", pa.list_(pa.float32(), dim)),
        pa.field("document", pa.utf8()),
        pa.field("file_path", pa.utf8()),
        pa.field("symbol_name", pa.utf8()),
        pa.field("symbol_kind", pa.utf8()),
        pa.field("start_line", pa.int64()),
        pa.field("end_line", pa.int64()),
        pa.field("language", pa.utf8()),
    ])


class VectorStore:
    """LanceDB-backed store for chunk embeddings.

    Schema per row:

    ============ ============ ==================================
    Column       Type         Description
    ============ ============ ==================================
    id           utf8         Chunk id (see ``chunker.chunk_id``)
    repo_id      utf8         Owning repository
    vector       float32[dim] Embedding vector
    document     utf8         Text that was embedded
    file_path    utf8         Repository-relative path
    symbol_name  utf8         Symbol the chunk covers
    symbol_kind  utf8         function / class / ...
    start_line   int64        First line of the chunk
    end_line     int64        Last line of the chunk
    language     utf8         Source language
    ============ ============ ==================================
    """

    def __init__(self, base_dir: Optional[Path] = None, model_key: str = "hash") -> None:
        if not LANCE_AVAILABLE:
            raise ImportError(
                "lancedb is not installed. Install with: pip install lancedb pyarrow"
            )

        self.base_dir = Path(base_dir) if base_dir is not None else VECTOR_DIR
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.model_key = model_key
        self._table_name = f"code_chunks_{model_key}"
        self._db: Any = lancedb.connect(str(self.base_dir))
        self._table: Optional[Any] = None
        if self._table_name in self._db.table_names():
            self._table = self._db.open_table(self._table_name)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def upsert(self, repo_id: str, chunk_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        """Insert or replace one chunk vector."""
        self.upsert_many(repo_id, [(chunk_id, vector, payload)])

    def upsert_many(self, repo_id: str, items: Sequence[tuple]) -> int:
        """Insert or replace ``(chunk_id, vector, payload)`` triples.

        Existing rows with the same id in the same repository are deleted
        first.  Raises :class:`VectorStoreError` on failure.
        """
        if not items:
            return 0
        rows = [
            {
                "id": chunk_id,
                "repo_id": repo_id,
                "vector": [float(v) for v in vector],
                "document": payload.get("document", ""),
                "file_path": payload.get("file_path", ""),
                "symbol_name": payload.get("symbol_name", "") or "",
                "symbol_kind": payload.get("symbol_kind", "") or "",
                "start_line": int(payload.get("start_line", 0)),
                "end_line": int(payload.get("end_line", 0)),
                "language": payload.get("language", ""),
            }
            for chunk_id, vector, payload in items
        ]
        try:
            if self._table is None:
                schema = _schema(len(rows[0]["vector"]))
                self._table = self._db.create_table(self._table_name, data=rows, schema=schema)
            else:
                ids = ", ".join(_quote(row["id"]) for row in rows)
                self._table.delete(f"repo_id = {_quote(repo_id)} AND id IN ({ids})")
                self._table.add(rows)
        except Exception as exc:
            raise VectorStoreError(f"upsert into {self._table_name} failed: {exc}") from exc
        return len(rows)

    def delete_by_file_path(self, repo_id: str, file_path: str) -> int:
        """Delete every chunk of *file_path*; returns the number removed."""
        if self._table is None:
            return 0
        try:
            before = self._table.count_rows()
            self._table.delete(
                f"repo_id = {_quote(repo_id)} AND file_path = {_quote(file_path)}"
            )
            after = self._table.count_rows()
        except Exception as exc:
            raise VectorStoreError(f"delete for {file_path} failed: {exc}") from exc
        return max(0, before - after)

    def delete_repo(self, repo_id: str) -> None:
        if self._table is None:
            return
        try:
            self._table.delete(f"repo_id = {_quote(repo_id)}")
        except Exception as exc:
            raise VectorStoreError(f"delete for repository {repo_id} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query_vector: List[float],
        repo_id: Optional[str] = None,
        n_results: int = 10,
    ) -> List[Dict[str, Any]]:
        """Cosine similarity search, optionally restricted to one repository.

        Each hit carries the stored payload columns plus ``score``
        (``1 - cosine distance``).
        """
        if self._table is None:
            return []
        try:
            query = self._table.search(query_vector).metric("cosine").limit(n_results)
            if repo_id:
                query = query.where(f"repo_id = {_quote(repo_id)}", prefilter=True)
            results = query.to_list()
        except Exception as exc:
            logger.warning("LanceDB search failed: %s", exc)
            return []

        hits: List[Dict[str, Any]] = []
        for row in results:
            dist = row.get("_distance", 0.0)
            hits.append({
                "id": row.get("id", ""),
                "repo_id": row.get("repo_id", ""),
                "file_path": row.get("file_path", ""),
                "symbol_name": row.get("symbol_name", ""),
                "symbol_kind": row.get("symbol_kind", ""),
                "start_line": row.get("start_line", 0),
                "end_line": row.get("end_line", 0),
                "document": row.get("document", ""),
                "score": round(max(0.0, 1.0 - dist), 5),
            })
        return hits

    def count(self, repo_id: Optional[str] = None) -> int:
        if self._table is None:
            return 0
        if repo_id:
            return self._table.count_rows(f"repo_id = {_quote(repo_id)}")
        return self._table.count_rows()
