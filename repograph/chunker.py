"""Slice parsed files into symbol-scoped chunks for embedding."""

from __future__ import annotations

import hashlib
import re
from typing import List, Optional, Sequence, Union

from .models import Chunk, ImportInfo, Symbol

# Bare import lines carry no meaning for similarity search
_CHUNK_IMPORT_RE = re.compile(r"^(?:from\s+\S+\s+)?import\s+.+$", re.MULTILINE)
DEFAULT_MAX_CHUNK_CHARS = 1500


def chunk_id(path: str, name: str, start_line: int) -> str:
    """Stable identifier: first 16 hex chars of ``sha256(path:name:line)``."""
    digest = hashlib.sha256(f"{path}:{name}:{start_line}".encode("utf-8"))
    return digest.hexdigest()[:16]


def build_chunks(
    path: str,
    language: str,
    content: Union[str, bytes],
    symbols: Sequence[Symbol],
    imports: Optional[Sequence[ImportInfo]] = None,
) -> List[Chunk]:
    """Return one chunk per symbol, in symbol order.

    The chunk text is the file's lines from the symbol's start line to its
    end line, inclusive.  Pure function of its arguments.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    lines = content.splitlines()
    import_sources = [imp.source for imp in imports or []]

    chunks: List[Chunk] = []
    for symbol in symbols:
        text = "\n".join(lines[max(symbol.start_line - 1, 0): symbol.end_line])
        chunks.append(Chunk(
            id=chunk_id(path, symbol.name, symbol.start_line),
            file=path,
            language=language,
            start_line=symbol.start_line,
            end_line=symbol.end_line,
            text=text,
            symbol_name=symbol.name,
            symbol_kind=symbol.kind,
            docstring=symbol.docstring,
            imports=list(import_sources),
            complexity=symbol.complexity,
        ))
    return chunks


def chunk_text(chunk: Chunk, max_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> str:
    """Build embedding input: a short header followed by the code."""
    parts: List[str] = [f"file: {chunk.file}"]
    if chunk.symbol_name:
        parts.append(f"symbol: {chunk.symbol_name}")
    if chunk.symbol_kind is not None:
        parts.append(f"type: {chunk.symbol_kind.value}")
    if chunk.docstring and chunk.docstring.strip():
        parts.append(f"doc: {chunk.docstring.strip()}")

    code = _CHUNK_IMPORT_RE.sub("", chunk.text).strip()
    if len(code) > max_chars:
        code = code[:max_chars] + "\n... (truncated)"
    if code:
        parts.append(code)
    return "\n".join(parts)
