"""Java adapter."""

from __future__ import annotations

from typing import Any, List, Optional, Set, Tuple

from ..models import ExportInfo, ImportInfo, Language, Parameter, Symbol, SymbolKind, Visibility
from .base import (
    ExtractContext,
    LanguageAdapter,
    field_text,
    node_text,
)

_TYPE_DECLS = {
    "class_declaration": SymbolKind.CLASS,
    "record_declaration": SymbolKind.CLASS,
    "interface_declaration": SymbolKind.INTERFACE,
    "enum_declaration": SymbolKind.ENUM,
}


class JavaAdapter(LanguageAdapter):
    language = Language.JAVA
    grammar_module = "tree_sitter_java"

    branch_types = frozenset({
        "if_statement", "for_statement", "enhanced_for_statement",
        "while_statement", "do_statement", "catch_clause", "ternary_expression",
    })
    conditional_types = frozenset({"switch_block_statement_group", "switch_rule"})
    call_types = frozenset({"method_invocation", "object_creation_expression"})

    def is_branch(self, node: Any) -> bool:
        if node.type == "switch_label":
            return not node_text(node).startswith("default")
        return super().is_branch(node)

    def callee_node(self, call: Any) -> Any:
        if call.type == "method_invocation":
            return call.child_by_field_name("name")
        return call.child_by_field_name("type")

    def describe(
        self, node: Any, ctx: ExtractContext, parent: Optional[Symbol],
    ) -> Optional[Tuple[Symbol, Any]]:
        kind = _TYPE_DECLS.get(node.type)
        if kind is not None:
            return self._type(node, kind, ctx, parent)
        if node.type in ("method_declaration", "constructor_declaration"):
            return self._method(node, ctx, parent)
        return None

    def _type(self, node, kind, ctx, parent):
        name = field_text(node, "name")
        if not name:
            return None
        body = node.child_by_field_name("body")
        mods = _modifiers(node)
        visibility = _visibility(mods, parent)
        symbol = self.make_symbol(
            ctx, node, name, kind, body=body,
            visibility=visibility,
            is_static="static" in mods,
            is_abstract="abstract" in mods or kind == SymbolKind.INTERFACE,
            is_exported=visibility == Visibility.PUBLIC,
            bases=_supertypes(node),
        )
        return symbol, body

    def _method(self, node, ctx, parent):
        name = field_text(node, "name")
        if not name:
            return None
        body = node.child_by_field_name("body")
        mods = _modifiers(node)
        in_interface = parent is not None and parent.kind == SymbolKind.INTERFACE
        symbol = self.make_symbol(
            ctx, node, name, self.callable_kind(parent), body=body,
            parameters=_parameters(node.child_by_field_name("parameters")),
            return_type=field_text(node, "type") or None,
            visibility=_visibility(mods, parent),
            is_static="static" in mods,
            is_abstract="abstract" in mods or (in_interface and body is None),
        )
        return symbol, body

    # ------------------------------------------------------------------

    def extract_imports(self, root: Any, source: bytes) -> List[ImportInfo]:
        imports: List[ImportInfo] = []
        for node in root.named_children:
            if node.type != "import_declaration":
                continue
            target = next(
                (c for c in node.named_children if c.type in ("scoped_identifier", "identifier")),
                None,
            )
            if target is None:
                continue
            path = node_text(target)
            line = node.start_point[0] + 1
            if any(c.type == "asterisk" for c in node.children):
                imports.append(ImportInfo(source=path, namespace_import="*", line=line))
            else:
                name = path.rpartition(".")[2]
                imports.append(ImportInfo(
                    source=path,
                    imported_symbols=[name],
                    is_external=True,
                    line=line,
                ))
        return imports

    def extract_exports(self, root: Any, source: bytes) -> List[ExportInfo]:
        exports: List[ExportInfo] = []
        for node in root.named_children:
            if node.type in _TYPE_DECLS and "public" in _modifiers(node):
                exports.append(ExportInfo(
                    name=field_text(node, "name"), line=node.start_point[0] + 1,
                ))
        return exports


# ===================================================================
# Helpers
# ===================================================================

def _modifiers(node: Any) -> Set[str]:
    mods: Set[str] = set()
    for child in node.children:
        if child.type == "modifiers":
            mods.update(node_text(c) for c in child.children if not c.is_named)
    return mods


def _visibility(mods: Set[str], parent: Optional[Symbol]) -> Visibility:
    if "public" in mods:
        return Visibility.PUBLIC
    if "private" in mods:
        return Visibility.PRIVATE
    if "protected" in mods:
        return Visibility.PROTECTED
    if parent is not None and parent.kind == SymbolKind.INTERFACE:
        return Visibility.PUBLIC
    return Visibility.INTERNAL


def _parameters(params: Any) -> List[Parameter]:
    out: List[Parameter] = []
    if params is None:
        return out
    for param in params.named_children:
        if param.type == "formal_parameter":
            out.append(Parameter(
                name=field_text(param, "name"),
                type=field_text(param, "type") or None,
            ))
        elif param.type == "spread_parameter":
            declarator = next(
                (c for c in param.named_children if c.type == "variable_declarator"), None,
            )
            type_node = next(
                (c for c in param.named_children if c.type not in ("modifiers", "variable_declarator")),
                None,
            )
            out.append(Parameter(
                name=field_text(declarator, "name") if declarator is not None else "args",
                type=node_text(type_node) or None,
                is_rest=True,
            ))
    return out


def _supertypes(node: Any) -> List[str]:
    bases: List[str] = []
    for field_name in ("superclass", "interfaces"):
        holder = node.child_by_field_name(field_name)
        if holder is not None:
            bases.extend(_type_names(holder))
    for child in node.named_children:
        if child.type == "extends_interfaces":
            bases.extend(_type_names(child))
    return bases


def _type_names(holder: Any) -> List[str]:
    names: List[str] = []
    stack = [holder]
    while stack:
        current = stack.pop()
        if current.type == "type_identifier":
            names.append(node_text(current))
        elif current.type == "scoped_type_identifier":
            names.append(node_text(current).rsplit(".", 1)[-1])
        elif current.type != "type_arguments":
            stack.extend(reversed(current.named_children))
    return names
