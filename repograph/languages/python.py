"""Python adapter."""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

from ..models import ExportInfo, ImportInfo, Language, Symbol, SymbolKind, Visibility
from .base import (
    ExtractContext,
    LanguageAdapter,
    field_text,
    node_text,
    strip_quotes,
)

_PROPERTY_DECORATORS = {"property", "cached_property", "functools.cached_property"}


class PythonAdapter(LanguageAdapter):
    language = Language.PYTHON
    grammar_module = "tree_sitter_python"

    branch_types = frozenset({
        "if_statement", "elif_clause", "for_statement", "while_statement",
        "except_clause", "case_clause", "conditional_expression",
        "boolean_operator", "if_clause",
    })
    # ``and`` / ``or`` are boolean_operator nodes, already in branch_types
    binary_types = frozenset()
    call_types = frozenset({"call"})
    comment_prefixes = ("#",)

    def prepare(self, root: Any, ctx: ExtractContext) -> None:
        ctx.exported_names = set(_dunder_all(root))

    def describe(
        self, node: Any, ctx: ExtractContext, parent: Optional[Symbol],
    ) -> Optional[Tuple[Symbol, Any]]:
        decorators: List[str] = []
        decl = node
        if node.type == "decorated_definition":
            decl = node.child_by_field_name("definition")
            if decl is None:
                return None
            decorators = [
                node_text(d).lstrip("@").split("(", 1)[0].strip()
                for d in node.children if d.type == "decorator"
            ]

        if decl.type == "function_definition":
            return self._function(node, decl, decorators, ctx, parent)
        if decl.type == "class_definition":
            return self._class(node, decl, ctx, parent)
        return None

    # ------------------------------------------------------------------

    def _function(self, node, decl, decorators, ctx, parent):
        name = field_text(decl, "name")
        if not name:
            return None
        body = decl.child_by_field_name("body")
        kind = self.callable_kind(parent)
        if kind == SymbolKind.METHOD and (
            _PROPERTY_DECORATORS.intersection(decorators)
            or any(d.endswith((".setter", ".getter", ".deleter")) for d in decorators)
        ):
            kind = SymbolKind.PROPERTY

        params_node = decl.child_by_field_name("parameters")
        parameters = self.params_from(
            params_node.named_children if params_node is not None else [],
            skip=frozenset({"self", "cls"}) if kind != SymbolKind.FUNCTION else frozenset(),
        )
        return_type = field_text(decl, "return_type") or None

        symbol = self.make_symbol(
            ctx, node, name, kind, body=body, decl_node=decl,
            docstring=_body_docstring(body),
            return_type=return_type,
            parameters=parameters,
            visibility=_visibility(name),
            is_async=any(c.type == "async" for c in decl.children),
            is_static="staticmethod" in decorators,
            is_abstract=any(d.endswith("abstractmethod") for d in decorators),
            is_exported=parent is None and name in ctx.exported_names,
        )
        return symbol, body

    def _class(self, node, decl, ctx, parent):
        name = field_text(decl, "name")
        if not name:
            return None
        body = decl.child_by_field_name("body")
        bases: List[str] = []
        supers = decl.child_by_field_name("superclasses")
        if supers is not None:
            for arg in supers.named_children:
                if arg.type in ("identifier", "attribute"):
                    bases.append(node_text(arg).rsplit(".", 1)[-1])
        symbol = self.make_symbol(
            ctx, node, name, SymbolKind.CLASS, body=body, decl_node=decl,
            docstring=_body_docstring(body),
            visibility=_visibility(name),
            is_abstract="ABC" in bases or "ABCMeta" in node_text(supers),
            is_exported=parent is None and name in ctx.exported_names,
            bases=bases,
        )
        return symbol, body

    # ------------------------------------------------------------------
    # Imports / exports
    # ------------------------------------------------------------------

    def extract_imports(self, root: Any, source: bytes) -> List[ImportInfo]:
        imports: List[ImportInfo] = []
        for node in _module_statements(root):
            line = node.start_point[0] + 1
            if node.type == "import_statement":
                for child in node.children_by_field_name("name"):
                    if child.type == "aliased_import":
                        module = field_text(child, "name")
                        alias = field_text(child, "alias") or None
                    else:
                        module, alias = node_text(child), None
                    imports.append(ImportInfo(
                        source=module,
                        namespace_import=alias or module,
                        is_external=True,
                        line=line,
                    ))
            elif node.type == "import_from_statement":
                module = field_text(node, "module_name")
                names: List[str] = []
                namespace = None
                for child in node.children_by_field_name("name"):
                    if child.type == "aliased_import":
                        names.append(field_text(child, "name"))
                    else:
                        names.append(node_text(child))
                if any(c.type == "wildcard_import" for c in node.children):
                    namespace = "*"
                imports.append(ImportInfo(
                    source=module,
                    imported_symbols=names,
                    namespace_import=namespace,
                    is_external=not module.startswith("."),
                    line=line,
                ))
        return imports

    def extract_exports(self, root: Any, source: bytes) -> List[ExportInfo]:
        exports: List[ExportInfo] = []
        for node in _module_statements(root):
            if _is_dunder_all(node):
                line = node.start_point[0] + 1
                exports.extend(ExportInfo(name=n, line=line) for n in _string_items(node))
        return exports


# ===================================================================
# Helpers
# ===================================================================

def _visibility(name: str) -> Visibility:
    if name.startswith("__") and name.endswith("__"):
        return Visibility.PUBLIC
    if name.startswith("_"):
        return Visibility.PRIVATE
    return Visibility.PUBLIC


def _body_docstring(body: Any) -> Optional[str]:
    if body is None:
        return None
    for child in body.named_children:
        if child.type == "comment":
            continue
        if child.type == "expression_statement" and child.named_children:
            expr = child.named_children[0]
            if expr.type == "string":
                raw = node_text(expr).lstrip("rRbBuUfF")
                return strip_quotes(raw).strip() or None
        break
    return None


def _module_statements(root: Any) -> List[Any]:
    """Top-level statements, including those under ``if``/``try`` guards."""
    out: List[Any] = []
    stack = list(reversed(root.named_children))
    while stack:
        node = stack.pop()
        if node.type in ("if_statement", "try_statement", "block", "else_clause",
                         "elif_clause", "except_clause", "finally_clause"):
            stack.extend(reversed(node.named_children))
            continue
        out.append(node)
    return out


def _is_dunder_all(node: Any) -> bool:
    if node.type != "expression_statement" or not node.named_children:
        return False
    expr = node.named_children[0]
    if expr.type not in ("assignment", "augmented_assignment"):
        return False
    return field_text(expr, "left") == "__all__"


def _string_items(node: Any) -> List[str]:
    expr = node.named_children[0]
    right = expr.child_by_field_name("right")
    if right is None or right.type not in ("list", "tuple"):
        return []
    return [
        strip_quotes(node_text(item))
        for item in right.named_children if item.type == "string"
    ]


def _dunder_all(root: Any) -> List[str]:
    names: List[str] = []
    for node in _module_statements(root):
        if _is_dunder_all(node):
            names.extend(_string_items(node))
    return names
