"""Shared machinery for tree-sitter language adapters.

Every adapter turns one concrete syntax tree into the common symbol model.
The walk happens in two phases:

1. ``_collect`` walks declarations depth-first and asks the adapter to
   ``describe`` each node.  Described nodes become :class:`Symbol` records
   with their qualified name, flags and docstring filled in.
2. ``_analyse`` walks each symbol's own subtree (skipping nested symbols)
   and counts branching constructs and call expressions.

Adapters only provide node-type tables and the per-language ``describe``,
``extract_imports`` and ``extract_exports`` hooks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from ..models import (
    CallInfo,
    ExportInfo,
    ImportInfo,
    Language,
    Parameter,
    Symbol,
    SymbolKind,
    Visibility,
)

# Maximum number of lines scanned above a declaration for its doc comment
DOCSTRING_LOOKBACK = 10

CONTAINER_KINDS = frozenset({
    SymbolKind.CLASS, SymbolKind.INTERFACE, SymbolKind.ENUM, SymbolKind.TYPE,
})
CALLABLE_KINDS = frozenset({
    SymbolKind.FUNCTION, SymbolKind.METHOD, SymbolKind.PROPERTY,
})

# Node types that carry a bare name at the end of a callee expression
_NAME_TYPES = frozenset({
    "identifier", "property_identifier", "field_identifier",
    "type_identifier", "private_property_identifier",
    "shorthand_property_identifier",
})
_CALLEE_FIELDS = ("attribute", "property", "field", "name", "function")
_WS_RE = re.compile(r"\s+")

NodeKey = Tuple[int, int, str]


def node_key(node: Any) -> NodeKey:
    return (node.start_byte, node.end_byte, node.type)


def node_text(node: Any) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def field_text(node: Any, name: str) -> str:
    return node_text(node.child_by_field_name(name))


def iter_descendants(node: Any) -> Iterator[Any]:
    """Yield every descendant of *node* in source order."""
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def find_ancestor(node: Any, types: FrozenSet[str], stop: Optional[FrozenSet[str]] = None) -> Any:
    current = node.parent
    while current is not None:
        if current.type in types:
            return current
        if stop and current.type in stop:
            return None
        current = current.parent
    return None


def strip_quotes(raw: str) -> str:
    for q in ('"""', "'''"):
        if raw.startswith(q) and raw.endswith(q) and len(raw) >= 6:
            return raw[3:-3]
    for q in ('"', "'", "`"):
        if raw.startswith(q) and raw.endswith(q) and len(raw) >= 2:
            return raw[1:-1]
    return raw


@dataclass
class ExtractContext:
    """Per-file state shared by one adapter run."""

    path: str
    source: bytes
    lines: List[str] = field(default_factory=list)
    exported_names: Set[str] = field(default_factory=set)
    _seen: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.lines:
            self.lines = self.source.decode("utf-8", errors="replace").splitlines()

    def qualify(self, name: str, scope: Optional[str]) -> str:
        """Build ``path:Scope.name`` and disambiguate repeats with ``#n``."""
        base = f"{self.path}:{scope}.{name}" if scope else f"{self.path}:{name}"
        count = self._seen.get(base, 0) + 1
        self._seen[base] = count
        return base if count == 1 else f"{base}#{count}"

    def scope_of(self, symbol: Symbol) -> str:
        """Return the qualified name of *symbol* without its file prefix."""
        return symbol.qualified_name[len(self.path) + 1:]


class LanguageAdapter:
    """Base class for one language's extraction rules.

    Subclasses set the node-type tables below and implement
    :meth:`describe`, :meth:`extract_imports` and (for languages with
    dedicated export syntax) :meth:`extract_exports`.
    """

    language: Language
    grammar_module: str = ""
    grammar_attr: str = "language"

    # Node types counted by the additive complexity metric
    branch_types: FrozenSet[str] = frozenset()
    # Binary expression node types whose ``&&`` / ``||`` operator counts
    binary_types: FrozenSet[str] = frozenset({"binary_expression"})
    short_circuit_ops: FrozenSet[str] = frozenset({"&&", "||"})
    # Switch arms that make nested calls conditional without adding to complexity
    conditional_types: FrozenSet[str] = frozenset()
    call_types: FrozenSet[str] = frozenset()

    # Line prefixes recognised by the preceding-comment docstring scan
    comment_prefixes: Tuple[str, ...] = ("//", "/*", "*")
    # Lines between a doc comment and its declaration that are skipped over
    attribute_prefixes: Tuple[str, ...] = ()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract_symbols(self, root: Any, path: str, source: bytes) -> List[Symbol]:
        ctx = ExtractContext(path=path, source=source)
        self.prepare(root, ctx)
        found: List[Tuple[Symbol, Any]] = []
        self._collect(root, ctx, None, found)

        nested = {node_key(node) for _, node in found}
        for symbol, node in found:
            self._analyse(symbol, node, nested)
        return [symbol for symbol, _ in found]

    def extract_imports(self, root: Any, source: bytes) -> List[ImportInfo]:
        return []

    def extract_exports(self, root: Any, source: bytes) -> List[ExportInfo]:
        return []

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def prepare(self, root: Any, ctx: ExtractContext) -> None:
        """Gather file-wide facts before symbols are collected."""

    def describe(
        self, node: Any, ctx: ExtractContext, parent: Optional[Symbol],
    ) -> Optional[Tuple[Symbol, Any]]:
        """Return ``(symbol, body)`` when *node* declares a symbol.

        *body* is the subtree searched for nested declarations, or ``None``.
        The returned symbol's ``qualified_name`` is assigned by the caller.
        """
        raise NotImplementedError

    def callee_node(self, call: Any) -> Any:
        return call.child_by_field_name("function")

    # ------------------------------------------------------------------
    # Symbol helpers for subclasses
    # ------------------------------------------------------------------

    def make_symbol(
        self,
        ctx: ExtractContext,
        range_node: Any,
        name: str,
        kind: SymbolKind,
        body: Any = None,
        decl_node: Any = None,
        **attrs: Any,
    ) -> Symbol:
        decl = decl_node if decl_node is not None else range_node
        start_line = range_node.start_point[0] + 1
        symbol = Symbol(
            name=name,
            qualified_name="",
            kind=kind,
            file=ctx.path,
            start_line=start_line,
            end_line=range_node.end_point[0] + 1,
            signature=self.signature_of(decl, body),
            **attrs,
        )
        if symbol.docstring is None:
            symbol.docstring = self.leading_comment(ctx, start_line)
        return symbol

    @staticmethod
    def callable_kind(parent: Optional[Symbol]) -> SymbolKind:
        if parent is not None and parent.kind in CONTAINER_KINDS:
            return SymbolKind.METHOD
        return SymbolKind.FUNCTION

    @staticmethod
    def signature_of(decl: Any, body: Any = None) -> str:
        if body is not None and body.start_byte > decl.start_byte:
            raw = decl.text[: body.start_byte - decl.start_byte]
        else:
            raw = decl.text.split(b"\n", 1)[0]
        text = _WS_RE.sub(" ", raw.decode("utf-8", errors="replace")).strip()
        return text.rstrip("{:").rstrip() or text

    def leading_comment(self, ctx: ExtractContext, start_line: int) -> Optional[str]:
        """Join the contiguous comment run directly above *start_line*."""
        collected: List[str] = []
        index = start_line - 2
        lowest = max(0, start_line - 1 - DOCSTRING_LOOKBACK)
        while index >= lowest:
            stripped = ctx.lines[index].strip()
            index -= 1
            if not stripped:
                if collected:
                    break
                continue
            if self.attribute_prefixes and stripped.startswith(self.attribute_prefixes) and not collected:
                continue
            if not stripped.startswith(self.comment_prefixes):
                break
            collected.append(stripped)
        if not collected:
            return None
        cleaned = [self.strip_comment_markers(line) for line in reversed(collected)]
        text = "\n".join(line for line in cleaned if line)
        return text or None

    def strip_comment_markers(self, line: str) -> str:
        if line.endswith("*/"):
            line = line[:-2]
        for marker in ("///", "//!", "//", "/**", "/*", "*", "#"):
            if line.startswith(marker):
                line = line[len(marker):]
                break
        return line.strip()

    @staticmethod
    def params_from(nodes: List[Any], skip: FrozenSet[str] = frozenset()) -> List[Parameter]:
        out: List[Parameter] = []
        for node in nodes:
            param = _parameter_of(node)
            if param is not None and param.name not in skip:
                out.append(param)
        return out

    # ------------------------------------------------------------------
    # Phase 1: declaration walk
    # ------------------------------------------------------------------

    def _collect(
        self,
        node: Any,
        ctx: ExtractContext,
        parent: Optional[Symbol],
        found: List[Tuple[Symbol, Any]],
    ) -> None:
        for child in node.named_children:
            described = self.describe(child, ctx, parent)
            if described is None:
                self._collect(child, ctx, parent, found)
                continue

            symbol, body = described
            scope = symbol.parent_symbol
            if parent is not None:
                scope = ctx.scope_of(parent)
                symbol.parent_symbol = parent.name
                if parent.kind in CONTAINER_KINDS:
                    symbol.is_exported = (
                        parent.is_exported and symbol.visibility == Visibility.PUBLIC
                    )
                else:
                    symbol.is_exported = False
            elif symbol.name == "main" and symbol.kind == SymbolKind.FUNCTION:
                symbol.is_exported = True
            symbol.qualified_name = ctx.qualify(symbol.name, scope)

            found.append((symbol, child))
            if body is not None:
                self._collect(body, ctx, symbol, found)

    # ------------------------------------------------------------------
    # Phase 2: complexity and calls
    # ------------------------------------------------------------------

    def _analyse(self, symbol: Symbol, node: Any, nested: Set[NodeKey]) -> None:
        complexity = 1
        calls: List[CallInfo] = []
        seen_calls: Set[Tuple[str, int]] = set()

        stack: List[Tuple[Any, bool]] = [(c, False) for c in reversed(node.children)]
        while stack:
            current, conditional = stack.pop()
            if node_key(current) in nested:
                continue

            branching = self.is_branch(current)
            if branching:
                complexity += 1

            if current.type in self.call_types:
                callee = _callee_name(self.callee_node(current))
                if callee:
                    line = current.start_point[0] + 1
                    if (callee, line) not in seen_calls:
                        seen_calls.add((callee, line))
                        calls.append(CallInfo(callee=callee, line=line, is_conditional=conditional))

            inner = conditional or branching or current.type in self.conditional_types
            stack.extend((c, inner) for c in reversed(current.children))

        symbol.complexity = complexity
        symbol.calls = calls

    def is_branch(self, node: Any) -> bool:
        if node.type in self.branch_types:
            return True
        if node.type in self.binary_types:
            op = node.child_by_field_name("operator")
            return op is not None and op.type in self.short_circuit_ops
        return False


# ===================================================================
# Module helpers
# ===================================================================

def _callee_name(node: Any) -> Optional[str]:
    """Reduce a callee expression to its final bare name."""
    while node is not None:
        if node.type in _NAME_TYPES:
            return node_text(node)
        for name in _CALLEE_FIELDS:
            sub = node.child_by_field_name(name)
            if sub is not None:
                node = sub
                break
        else:
            named = node.named_children
            if not named:
                return None
            node = named[0] if node.type in ("generic_type", "parenthesized_expression") else named[-1]
    return None


_PARAM_NAME_TYPES = frozenset({"identifier", "type_identifier", "shorthand_property_identifier_pattern"})


def _parameter_of(node: Any) -> Optional[Parameter]:
    if not node.is_named or node.type in ("comment", "(", ")", ","):
        return None
    if node.type in _PARAM_NAME_TYPES:
        return Parameter(name=node_text(node))

    is_rest = node.type in (
        "list_splat_pattern", "dictionary_splat_pattern", "rest_pattern",
        "variadic_parameter_declaration", "spread_parameter",
    )
    name_node = (
        node.child_by_field_name("name")
        or node.child_by_field_name("pattern")
        or node.child_by_field_name("left")
    )
    if name_node is None:
        for child in node.named_children:
            if child.type in _PARAM_NAME_TYPES or child.type.endswith("_pattern"):
                name_node = child
                break
    if name_node is None:
        return None

    name = node_text(name_node).lstrip("*.").strip()
    if name_node.type.endswith("_pattern") and name_node.named_children:
        inner = name_node.named_children[0]
        if inner.type == "identifier":
            name = node_text(inner)
    type_node = node.child_by_field_name("type")
    default = node.child_by_field_name("value") or node.child_by_field_name("right")
    return Parameter(
        name=name,
        type=node_text(type_node).lstrip(":").strip() or None,
        default_value=node_text(default) if default is not None else None,
        is_optional=default is not None or node.type == "optional_parameter",
        is_rest=is_rest,
    )
