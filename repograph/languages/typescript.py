"""TypeScript, TSX and JavaScript adapters.

The three grammars share node names for everything the symbol model
needs, so one adapter class serves all of them.
"""

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

_FUNCTION_DECLS = frozenset({"function_declaration", "generator_function_declaration"})
_CLASS_DECLS = frozenset({"class_declaration", "abstract_class_declaration", "class"})
_METHOD_DECLS = frozenset({"method_definition", "method_signature", "abstract_method_signature"})
_FIELD_DECLS = frozenset({"public_field_definition", "field_definition"})
_FUNCTION_VALUES = frozenset({
    "arrow_function", "function_expression", "function", "generator_function",
})


class ScriptAdapter(LanguageAdapter):
    language = Language.TYPESCRIPT
    grammar_module = "tree_sitter_typescript"
    grammar_attr = "language_typescript"

    branch_types = frozenset({
        "if_statement", "for_statement", "for_in_statement", "while_statement",
        "do_statement", "switch_case", "catch_clause", "ternary_expression",
    })
    conditional_types = frozenset({"switch_default"})
    call_types = frozenset({"call_expression", "new_expression"})

    def callee_node(self, call: Any) -> Any:
        if call.type == "new_expression":
            return call.child_by_field_name("constructor")
        return call.child_by_field_name("function")

    def prepare(self, root: Any, ctx: ExtractContext) -> None:
        for export in self.extract_exports(root, ctx.source):
            if not export.is_re_export:
                ctx.exported_names.add(export.name)

    def describe(
        self, node: Any, ctx: ExtractContext, parent: Optional[Symbol],
    ) -> Optional[Tuple[Symbol, Any]]:
        kind_of = node.type
        if kind_of in _FUNCTION_DECLS:
            return self._callable(node, node, field_text(node, "name"), ctx, parent)
        if kind_of in _CLASS_DECLS:
            return self._container(node, SymbolKind.CLASS, ctx)
        if kind_of == "interface_declaration":
            return self._container(node, SymbolKind.INTERFACE, ctx)
        if kind_of == "type_alias_declaration":
            return self._container(node, SymbolKind.TYPE, ctx)
        if kind_of == "enum_declaration":
            return self._container(node, SymbolKind.ENUM, ctx)
        if kind_of in _METHOD_DECLS:
            return self._callable(node, node, field_text(node, "name"), ctx, parent)
        if kind_of == "variable_declarator":
            value = node.child_by_field_name("value")
            if value is not None and value.type in _FUNCTION_VALUES:
                return self._callable(node, value, field_text(node, "name"), ctx, parent)
        if kind_of in _FIELD_DECLS and parent is not None:
            value = node.child_by_field_name("value")
            if value is not None and value.type in _FUNCTION_VALUES:
                name = field_text(node, "name") or field_text(node, "property")
                return self._callable(node, value, name, ctx, parent)
        return None

    # ------------------------------------------------------------------

    def _callable(self, node, func, name, ctx, parent):
        if not name:
            return None
        body = func.child_by_field_name("body")
        kind = self.callable_kind(parent)
        modifiers = {c.type for c in node.children} | {c.type for c in func.children}
        if kind == SymbolKind.METHOD and ("get" in modifiers or "set" in modifiers):
            kind = SymbolKind.PROPERTY

        params = func.child_by_field_name("parameters")
        if params is None:
            single = func.child_by_field_name("parameter")
            param_nodes = [single] if single is not None else []
        else:
            param_nodes = params.named_children

        symbol = self.make_symbol(
            ctx, node, name, kind, body=body, decl_node=node,
            return_type=field_text(func, "return_type").lstrip(":").strip() or None,
            parameters=self.params_from(param_nodes),
            visibility=_visibility(node, name),
            is_async="async" in modifiers,
            is_static="static" in modifiers,
            is_abstract=node.type == "abstract_method_signature" or "abstract" in modifiers,
            is_exported=self._exported(node, name, ctx, parent),
        )
        return symbol, body

    def _container(self, node, kind, ctx):
        name = field_text(node, "name")
        if not name:
            return None
        body = node.child_by_field_name("body")
        if kind in (SymbolKind.TYPE, SymbolKind.ENUM):
            nested = None
        else:
            nested = body
        symbol = self.make_symbol(
            ctx, node, name, kind, body=body,
            is_abstract=node.type == "abstract_class_declaration",
            is_exported=self._exported(node, name, ctx, None),
            bases=_heritage(node),
        )
        return symbol, nested

    @staticmethod
    def _exported(node: Any, name: str, ctx: ExtractContext, parent: Optional[Symbol]) -> bool:
        if parent is not None:
            return False
        current = node.parent
        for _ in range(2):
            if current is None:
                break
            if current.type == "export_statement":
                return True
            if current.type not in ("lexical_declaration", "variable_declaration"):
                break
            current = current.parent
        return name in ctx.exported_names

    # ------------------------------------------------------------------
    # Imports / exports
    # ------------------------------------------------------------------

    def extract_imports(self, root: Any, source: bytes) -> List[ImportInfo]:
        imports: List[ImportInfo] = []
        for node in root.named_children:
            if node.type != "import_statement":
                continue
            src = strip_quotes(field_text(node, "source"))
            info = ImportInfo(
                source=src,
                is_type_only=any(c.type == "type" for c in node.children),
                is_external=not src.startswith((".", "/")),
                line=node.start_point[0] + 1,
            )
            clause = next((c for c in node.named_children if c.type == "import_clause"), None)
            if clause is not None:
                for part in clause.named_children:
                    if part.type == "identifier":
                        info.default_import = node_text(part)
                    elif part.type == "namespace_import":
                        ident = next((c for c in part.named_children if c.type == "identifier"), None)
                        info.namespace_import = node_text(ident) or None
                    elif part.type == "named_imports":
                        for spec in part.named_children:
                            if spec.type == "import_specifier":
                                info.imported_symbols.append(field_text(spec, "name"))
            imports.append(info)
        return imports

    def extract_exports(self, root: Any, source: bytes) -> List[ExportInfo]:
        exports: List[ExportInfo] = []
        for node in root.named_children:
            if node.type != "export_statement":
                continue
            line = node.start_point[0] + 1
            is_default = any(c.type == "default" for c in node.children)
            src_node = node.child_by_field_name("source")
            src = strip_quotes(node_text(src_node)) if src_node is not None else None

            decl = node.child_by_field_name("declaration")
            if decl is not None:
                for name in _declared_names(decl):
                    exports.append(ExportInfo(name=name, is_default=is_default, line=line))
                continue

            clause = next((c for c in node.named_children if c.type == "export_clause"), None)
            if clause is not None:
                for spec in clause.named_children:
                    if spec.type != "export_specifier":
                        continue
                    name = field_text(spec, "alias") or field_text(spec, "name")
                    exports.append(ExportInfo(
                        name=name, is_re_export=src is not None, source=src, line=line,
                    ))
                continue

            if src is not None:
                exports.append(ExportInfo(name="*", is_re_export=True, source=src, line=line))
                continue

            value = node.child_by_field_name("value")
            if value is not None and value.type == "identifier":
                exports.append(ExportInfo(name=node_text(value), is_default=True, line=line))
        return exports


class TsxAdapter(ScriptAdapter):
    language = Language.TSX
    grammar_attr = "language_tsx"


class JavaScriptAdapter(ScriptAdapter):
    language = Language.JAVASCRIPT
    grammar_module = "tree_sitter_javascript"
    grammar_attr = "language"


# ===================================================================
# Helpers
# ===================================================================

def _visibility(node: Any, name: str) -> Visibility:
    if name.startswith("#"):
        return Visibility.PRIVATE
    for child in node.children:
        if child.type == "accessibility_modifier":
            text = node_text(child)
            if text == "private":
                return Visibility.PRIVATE
            if text == "protected":
                return Visibility.PROTECTED
    return Visibility.PUBLIC


def _heritage(node: Any) -> List[str]:
    bases: List[str] = []
    for child in node.named_children:
        if child.type not in ("class_heritage", "extends_type_clause", "extends_clause"):
            continue
        stack = [child]
        while stack:
            current = stack.pop()
            if current.type in ("identifier", "type_identifier"):
                bases.append(node_text(current))
            elif current.type in ("member_expression", "nested_type_identifier"):
                bases.append(node_text(current).rsplit(".", 1)[-1])
            elif current.type != "type_arguments":
                stack.extend(reversed(current.named_children))
    return bases


def _declared_names(decl: Any) -> List[str]:
    if decl.type in ("lexical_declaration", "variable_declaration"):
        return [
            field_text(d, "name")
            for d in decl.named_children if d.type == "variable_declarator"
        ]
    name = field_text(decl, "name")
    return [name] if name else []
