"""Core data models shared by parsing, graph storage and sync orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional


# ===================================================================
# Languages
# ===================================================================

class Language(str, Enum):
    """Closed set of languages with a dedicated adapter."""

    PYTHON = "python"
    TYPESCRIPT = "typescript"
    TSX = "tsx"
    JAVASCRIPT = "javascript"
    GO = "go"
    RUST = "rust"
    JAVA = "java"


EXTENSION_TO_LANGUAGE: Dict[str, Language] = {
    ".py": Language.PYTHON,
    ".ts": Language.TYPESCRIPT,
    ".tsx": Language.TSX,
    ".js": Language.JAVASCRIPT,
    ".jsx": Language.JAVASCRIPT,
    ".mjs": Language.JAVASCRIPT,
    ".cjs": Language.JAVASCRIPT,
    ".go": Language.GO,
    ".rs": Language.RUST,
    ".java": Language.JAVA,
}


def language_for_path(path: str) -> Optional[Language]:
    """Return the language for *path* based on its extension, if known."""
    return EXTENSION_TO_LANGUAGE.get(PurePosixPath(path).suffix.lower())


def is_code_file(path: str) -> bool:
    return language_for_path(path) is not None


# ===================================================================
# Parse output
# ===================================================================

class SymbolKind(str, Enum):
    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    ENUM = "enum"
    VARIABLE = "variable"
    CONSTANT = "constant"
    PROPERTY = "property"
    MODULE = "module"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"
    INTERNAL = "internal"


@dataclass
class Parameter:
    name: str
    type: Optional[str] = None
    default_value: Optional[str] = None
    is_optional: bool = False
    is_rest: bool = False


@dataclass
class CallInfo:
    """A call expression found inside a symbol body."""

    callee: str
    line: int
    is_conditional: bool = False


@dataclass
class Symbol:
    """A declaration extracted from a source file.

    ``qualified_name`` is ``<file>:<name>`` for top-level declarations and
    ``<file>:<Parent>.<name>`` for members.  It is the identity used for
    graph upserts, so it must not depend on anything but the source text.
    """

    name: str
    qualified_name: str
    kind: SymbolKind
    file: str
    start_line: int
    end_line: int
    signature: Optional[str] = None
    docstring: Optional[str] = None
    return_type: Optional[str] = None
    parameters: List[Parameter] = field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    is_async: bool = False
    is_static: bool = False
    is_abstract: bool = False
    is_exported: bool = False
    complexity: int = 1
    calls: List[CallInfo] = field(default_factory=list)
    parent_symbol: Optional[str] = None
    bases: List[str] = field(default_factory=list)


@dataclass
class ImportInfo:
    source: str
    imported_symbols: List[str] = field(default_factory=list)
    default_import: Optional[str] = None
    namespace_import: Optional[str] = None
    is_type_only: bool = False
    is_external: bool = True
    line: int = 0


@dataclass
class ExportInfo:
    name: str
    is_default: bool = False
    is_re_export: bool = False
    source: Optional[str] = None
    line: int = 0


@dataclass
class Chunk:
    """A symbol-scoped slice of source text prepared for embedding."""

    id: str
    file: str
    language: str
    start_line: int
    end_line: int
    text: str
    symbol_name: Optional[str] = None
    symbol_kind: Optional[SymbolKind] = None
    docstring: Optional[str] = None
    imports: List[str] = field(default_factory=list)
    complexity: int = 1


@dataclass
class ParseResult:
    path: str
    language: str
    symbols: List[Symbol] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)
    exports: List[ExportInfo] = field(default_factory=list)
    chunks: List[Chunk] = field(default_factory=list)
    lines_of_code: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.symbols and not self.imports and not self.exports


# ===================================================================
# Graph projections
# ===================================================================

class EdgeType(str, Enum):
    DEFINES = "DEFINES"
    CALLS = "CALLS"
    IMPORTS = "IMPORTS"
    DEPENDS_ON = "DEPENDS_ON"
    INHERITS = "INHERITS"
    PARENT_OF = "PARENT_OF"
    MODIFIES = "MODIFIES"


@dataclass
class FileNode:
    path: str
    language: str
    lines_of_code: int
    complexity: int = 0
    content_hash: str = ""
    version: int = 0
    updated_at: float = 0.0


@dataclass
class SymbolNode:
    qualified_name: str
    name: str
    kind: SymbolKind
    file: str
    start_line: int
    end_line: int
    signature: str = ""
    docstring: str = ""
    return_type: str = ""
    visibility: Visibility = Visibility.PUBLIC
    is_async: bool = False
    is_static: bool = False
    is_abstract: bool = False
    is_exported: bool = False
    complexity: int = 1
    parent_symbol: Optional[str] = None
    version: int = 0
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualified_name": self.qualified_name,
            "name": self.name,
            "kind": self.kind.value,
            "file": self.file,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "signature": self.signature,
            "docstring": self.docstring,
            "visibility": self.visibility.value,
            "is_async": self.is_async,
            "is_static": self.is_static,
            "is_exported": self.is_exported,
            "complexity": self.complexity,
            "parent_symbol": self.parent_symbol,
        }


@dataclass
class CommitNode:
    sha: str
    message: str
    author: str
    author_email: str
    committer: str
    timestamp: int
    files_changed: int = 0
    # Set when the node is read through a file's history
    change_type: Optional[str] = None
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sha": self.sha,
            "message": self.message,
            "author": self.author,
            "author_email": self.author_email,
            "committer": self.committer,
            "timestamp": self.timestamp,
            "files_changed": self.files_changed,
        }
        if self.change_type is not None:
            data["change_type"] = self.change_type
        return data


@dataclass
class GraphStats:
    file_count: int = 0
    symbol_count: int = 0
    function_count: int = 0
    class_count: int = 0
    relationship_count: int = 0
    nodes_by_label: Dict[str, int] = field(default_factory=dict)
    relationships_by_type: Dict[str, int] = field(default_factory=dict)


@dataclass
class CallPath:
    path: List[str]

    @property
    def depth(self) -> int:
        return len(self.path) - 1


@dataclass
class SymbolUsage:
    symbol: SymbolNode
    callers: List[SymbolNode]
    callees: List[SymbolNode]

    @property
    def caller_count(self) -> int:
        return len(self.callers)

    @property
    def callee_count(self) -> int:
        return len(self.callees)


class QueryType(str, Enum):
    CALLS = "calls"
    CALLED_BY = "calledBy"
    IMPORTS = "imports"
    IMPORTED_BY = "importedBy"
    DEFINES = "defines"
    INHERITS = "inherits"
    PATH = "path"
    CUSTOM = "custom"


@dataclass
class GraphQuery:
    """A typed query mapped onto a fixed, parameterised template."""

    type: QueryType
    target: Optional[str] = None
    from_symbol: Optional[str] = None
    to_symbol: Optional[str] = None
    max_depth: int = 10
    query: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)


# ===================================================================
# Sync jobs
# ===================================================================

class JobType(str, Enum):
    FULL = "full"
    DELTA = "delta"
    INCREMENTAL = "incremental"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


@dataclass
class SyncJob:
    id: str
    repo_id: str
    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    ref: Optional[str] = None
    progress: int = 0
    current_step: str = ""
    nodes_created: int = 0
    edges_created: int = 0
    vectors_created: int = 0
    error_message: Optional[str] = None
    file_errors: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repo_id": self.repo_id,
            "job_type": self.job_type.value,
            "status": self.status.value,
            "ref": self.ref,
            "progress": self.progress,
            "current_step": self.current_step,
            "nodes_created": self.nodes_created,
            "edges_created": self.edges_created,
            "vectors_created": self.vectors_created,
            "error_message": self.error_message,
            "file_errors": list(self.file_errors),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class FileChanges:
    """Paths changed between two refs."""

    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @property
    def changed(self) -> List[str]:
        return sorted(set(self.added) | set(self.modified))


@dataclass
class CommitInfo:
    """One commit as read from a source tree, with its code-file changes."""

    sha: str
    message: str = ""
    author: str = ""
    author_email: str = ""
    committer: str = ""
    timestamp: int = 0
    parents: List[str] = field(default_factory=list)
    changes: FileChanges = field(default_factory=FileChanges)
