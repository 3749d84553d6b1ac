"""Rust adapter."""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

from ..models import ExportInfo, ImportInfo, Language, Symbol, SymbolKind, Visibility
from .base import (
    ExtractContext,
    LanguageAdapter,
    field_text,
    node_text,
)

_TYPE_ITEMS = {
    "struct_item": SymbolKind.CLASS,
    "union_item": SymbolKind.CLASS,
    "enum_item": SymbolKind.ENUM,
    "trait_item": SymbolKind.INTERFACE,
    "type_item": SymbolKind.TYPE,
}
_LOCAL_ROOTS = ("crate", "self", "super")


class RustAdapter(LanguageAdapter):
    language = Language.RUST
    grammar_module = "tree_sitter_rust"

    branch_types = frozenset({
        "if_expression", "while_expression", "for_expression",
        "loop_expression", "match_arm",
    })
    call_types = frozenset({"call_expression"})
    attribute_prefixes = ("#[", "#![")

    def describe(
        self, node: Any, ctx: ExtractContext, parent: Optional[Symbol],
    ) -> Optional[Tuple[Symbol, Any]]:
        if node.type in ("function_item", "function_signature_item"):
            return self._function(node, ctx, parent)
        kind = _TYPE_ITEMS.get(node.type)
        if kind is not None:
            name = field_text(node, "name")
            if not name:
                return None
            visibility = _visibility(node)
            bases: List[str] = []
            bounds = node.child_by_field_name("bounds")
            if bounds is not None:
                bases = [node_text(b).split("<", 1)[0] for b in bounds.named_children]
            symbol = self.make_symbol(
                ctx, node, name, kind,
                body=node.child_by_field_name("body"),
                visibility=visibility,
                is_exported=visibility == Visibility.PUBLIC,
                bases=bases,
            )
            nested = node.child_by_field_name("body") if kind == SymbolKind.INTERFACE else None
            return symbol, nested
        return None

    def _function(self, node, ctx, parent):
        name = field_text(node, "name")
        if not name:
            return None
        body = node.child_by_field_name("body")
        impl = _enclosing_impl(node)
        receiver = None
        in_trait_impl = False
        if impl is not None and parent is None:
            receiver = field_text(impl, "type").split("<", 1)[0] or None
            in_trait_impl = impl.child_by_field_name("trait") is not None

        if parent is not None and parent.kind == SymbolKind.INTERFACE:
            # trait members inherit the trait's visibility
            visibility = Visibility.PUBLIC
        elif in_trait_impl:
            visibility = Visibility.PUBLIC
        else:
            visibility = _visibility(node)

        modifiers = " ".join(
            node_text(c) for c in node.children if c.type == "function_modifiers"
        )
        params = node.child_by_field_name("parameters")
        symbol = self.make_symbol(
            ctx, node, name,
            SymbolKind.METHOD if receiver else self.callable_kind(parent),
            body=body,
            parameters=self.params_from(params.named_children if params is not None else []),
            return_type=field_text(node, "return_type") or None,
            visibility=visibility,
            is_async="async" in modifiers,
            is_static=receiver is not None and not _has_self(params),
            is_abstract=node.type == "function_signature_item",
            is_exported=visibility == Visibility.PUBLIC or in_trait_impl,
            parent_symbol=receiver,
        )
        return symbol, body

    # ------------------------------------------------------------------

    def extract_imports(self, root: Any, source: bytes) -> List[ImportInfo]:
        imports: List[ImportInfo] = []
        for node in root.named_children:
            line = node.start_point[0] + 1
            if node.type == "use_declaration":
                arg = node.child_by_field_name("argument")
                if arg is not None:
                    imports.append(_use_import(arg, line))
            elif node.type == "mod_item" and node.child_by_field_name("body") is None:
                imports.append(ImportInfo(
                    source=f"self::{field_text(node, 'name')}",
                    is_external=False,
                    line=line,
                ))
        return imports

    def extract_exports(self, root: Any, source: bytes) -> List[ExportInfo]:
        exports: List[ExportInfo] = []
        for node in root.named_children:
            if node.type in _TYPE_ITEMS or node.type == "function_item":
                if _visibility(node) == Visibility.PUBLIC:
                    exports.append(ExportInfo(
                        name=field_text(node, "name"), line=node.start_point[0] + 1,
                    ))
            elif node.type == "use_declaration" and _visibility(node) == Visibility.PUBLIC:
                arg = node.child_by_field_name("argument")
                if arg is not None:
                    info = _use_import(arg, node.start_point[0] + 1)
                    for name in info.imported_symbols or ["*"]:
                        exports.append(ExportInfo(
                            name=name, is_re_export=True, source=info.source, line=info.line,
                        ))
        return exports


# ===================================================================
# Helpers
# ===================================================================

def _visibility(node: Any) -> Visibility:
    for child in node.children:
        if child.type == "visibility_modifier":
            text = node_text(child).replace(" ", "")
            return Visibility.PUBLIC if text == "pub" else Visibility.INTERNAL
    return Visibility.PRIVATE


def _enclosing_impl(node: Any) -> Any:
    parent = node.parent
    if parent is not None and parent.type == "declaration_list":
        grand = parent.parent
        if grand is not None and grand.type == "impl_item":
            return grand
    return None


def _has_self(params: Any) -> bool:
    return params is not None and any(c.type == "self_parameter" for c in params.named_children)


def _use_import(arg: Any, line: int) -> ImportInfo:
    names: List[str] = []
    namespace = None
    if arg.type == "scoped_use_list":
        path = field_text(arg, "path")
        use_list = arg.child_by_field_name("list")
        for item in use_list.named_children if use_list is not None else []:
            if item.type == "use_as_clause":
                names.append(node_text(item.child_by_field_name("path")).rsplit("::", 1)[-1])
            elif item.type in ("identifier", "scoped_identifier", "self"):
                names.append(node_text(item).rsplit("::", 1)[-1])
    elif arg.type == "use_wildcard":
        path = node_text(arg).rstrip("*").rstrip(":")
        namespace = "*"
    elif arg.type == "use_as_clause":
        full = field_text(arg, "path")
        path, _, last = full.rpartition("::")
        names.append(last)
    else:
        full = node_text(arg)
        path, _, last = full.rpartition("::")
        if path:
            names.append(last)
        else:
            path = last
    return ImportInfo(
        source=path,
        imported_symbols=names,
        namespace_import=namespace,
        is_external=path.split("::", 1)[0] not in _LOCAL_ROOTS,
        line=line,
    )
