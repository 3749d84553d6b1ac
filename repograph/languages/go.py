"""Go adapter."""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

from ..models import ExportInfo, ImportInfo, Language, Parameter, Symbol, SymbolKind, Visibility
from .base import (
    ExtractContext,
    LanguageAdapter,
    field_text,
    node_text,
    strip_quotes,
)


class GoAdapter(LanguageAdapter):
    language = Language.GO
    grammar_module = "tree_sitter_go"

    branch_types = frozenset({
        "if_statement", "for_statement", "expression_case", "type_case",
        "communication_case",
    })
    conditional_types = frozenset({"default_case"})
    call_types = frozenset({"call_expression"})

    def describe(
        self, node: Any, ctx: ExtractContext, parent: Optional[Symbol],
    ) -> Optional[Tuple[Symbol, Any]]:
        if node.type == "function_declaration":
            return self._function(node, ctx, None)
        if node.type == "method_declaration":
            return self._function(node, ctx, _receiver_type(node))
        if node.type in ("method_spec", "method_elem") and parent is not None:
            name = field_text(node, "name")
            if not name:
                return None
            return self.make_symbol(
                ctx, node, name, SymbolKind.METHOD,
                parameters=_parameters(node.child_by_field_name("parameters")),
                return_type=field_text(node, "result") or None,
                visibility=_visibility(name),
                is_abstract=True,
            ), None
        if node.type in ("type_spec", "type_alias"):
            return self._type(node, ctx)
        return None

    def _function(self, node, ctx, receiver):
        name = field_text(node, "name")
        if not name:
            return None
        body = node.child_by_field_name("body")
        exported = _is_capitalised(name)
        symbol = self.make_symbol(
            ctx, node, name,
            SymbolKind.METHOD if receiver else SymbolKind.FUNCTION,
            body=body,
            parameters=_parameters(node.child_by_field_name("parameters")),
            return_type=field_text(node, "result") or None,
            visibility=_visibility(name),
            is_exported=exported,
            parent_symbol=receiver,
        )
        return symbol, body

    def _type(self, node, ctx):
        name = field_text(node, "name")
        if not name:
            return None
        type_node = node.child_by_field_name("type")
        if type_node is not None and type_node.type == "interface_type":
            kind = SymbolKind.INTERFACE
        elif type_node is not None and type_node.type == "struct_type":
            kind = SymbolKind.CLASS
        else:
            kind = SymbolKind.TYPE
        # Doc comments sit above the enclosing ``type`` keyword
        range_node = node
        if node.parent is not None and node.parent.type == "type_declaration" \
                and len(node.parent.named_children) == 1:
            range_node = node.parent
        symbol = self.make_symbol(
            ctx, range_node, name, kind, body=type_node, decl_node=node,
            visibility=_visibility(name),
            is_exported=_is_capitalised(name),
            bases=_embedded_types(type_node),
        )
        return symbol, type_node if kind == SymbolKind.INTERFACE else None

    # ------------------------------------------------------------------

    def extract_imports(self, root: Any, source: bytes) -> List[ImportInfo]:
        imports: List[ImportInfo] = []
        for decl in root.named_children:
            if decl.type != "import_declaration":
                continue
            specs = [c for c in decl.named_children if c.type == "import_spec"]
            for spec_list in decl.named_children:
                if spec_list.type == "import_spec_list":
                    specs.extend(c for c in spec_list.named_children if c.type == "import_spec")
            for spec in specs:
                path = strip_quotes(field_text(spec, "path"))
                alias = field_text(spec, "name") or None
                imports.append(ImportInfo(
                    source=path,
                    namespace_import=alias or path.rsplit("/", 1)[-1],
                    is_external=True,
                    line=spec.start_point[0] + 1,
                ))
        return imports

    def extract_exports(self, root: Any, source: bytes) -> List[ExportInfo]:
        exports: List[ExportInfo] = []
        for node in root.named_children:
            line = node.start_point[0] + 1
            if node.type == "function_declaration":
                name = field_text(node, "name")
                if _is_capitalised(name):
                    exports.append(ExportInfo(name=name, line=line))
            elif node.type == "type_declaration":
                for spec in node.named_children:
                    name = field_text(spec, "name")
                    if _is_capitalised(name):
                        exports.append(ExportInfo(name=name, line=spec.start_point[0] + 1))
        return exports


# ===================================================================
# Helpers
# ===================================================================

def _is_capitalised(name: str) -> bool:
    return bool(name) and name[0].isupper()


def _visibility(name: str) -> Visibility:
    return Visibility.PUBLIC if _is_capitalised(name) else Visibility.PRIVATE


def _receiver_type(node: Any) -> Optional[str]:
    receiver = node.child_by_field_name("receiver")
    if receiver is None:
        return None
    for param in receiver.named_children:
        if param.type == "parameter_declaration":
            text = field_text(param, "type").lstrip("*").strip()
            return text.split("[", 1)[0] or None
    return None


def _parameters(params: Any) -> List[Parameter]:
    out: List[Parameter] = []
    if params is None:
        return out
    for decl in params.named_children:
        if decl.type not in ("parameter_declaration", "variadic_parameter_declaration"):
            continue
        type_text = field_text(decl, "type") or None
        is_rest = decl.type == "variadic_parameter_declaration"
        names = decl.children_by_field_name("name")
        if not names:
            out.append(Parameter(name="_", type=type_text, is_rest=is_rest))
        for name in names:
            out.append(Parameter(name=node_text(name), type=type_text, is_rest=is_rest))
    return out


def _embedded_types(type_node: Any) -> List[str]:
    """Embedded struct fields and interface elements, Go's form of inheritance."""
    bases: List[str] = []
    if type_node is None:
        return bases
    if type_node.type == "struct_type":
        for field_list in type_node.named_children:
            for decl in field_list.named_children:
                if decl.type == "field_declaration" and decl.child_by_field_name("name") is None:
                    bases.append(field_text(decl, "type").lstrip("*").rsplit(".", 1)[-1])
    elif type_node.type == "interface_type":
        for elem in type_node.named_children:
            if elem.type in ("type_elem", "constraint_elem", "interface_type_name"):
                bases.append(node_text(elem).rsplit(".", 1)[-1])
    return [b for b in bases if b]
