"""
Language adapters: normalise tree-sitter syntax trees into the symbol model.

Components:
    - LanguageAdapter: shared two-phase walker (declarations, then bodies)
    - PythonAdapter, ScriptAdapter/TsxAdapter/JavaScriptAdapter,
      GoAdapter, RustAdapter, JavaAdapter: per-language node tables

Each adapter extracts:
    - Symbols: functions, methods, classes, interfaces, types, enums
    - Calls: callee name, line and whether the call sits under a branch
    - Imports and exports

Adding a new language:
    1. Add a member to ``repograph.models.Language`` and its extensions
    2. Subclass LanguageAdapter and implement ``describe``
    3. Register the class in ``ADAPTER_CLASSES`` below
"""

from typing import Dict, Type

from ..models import Language
from .base import LanguageAdapter
from .go import GoAdapter
from .java import JavaAdapter
from .python import PythonAdapter
from .rust import RustAdapter
from .typescript import JavaScriptAdapter, ScriptAdapter, TsxAdapter

ADAPTER_CLASSES: Dict[Language, Type[LanguageAdapter]] = {
    Language.PYTHON: PythonAdapter,
    Language.TYPESCRIPT: ScriptAdapter,
    Language.TSX: TsxAdapter,
    Language.JAVASCRIPT: JavaScriptAdapter,
    Language.GO: GoAdapter,
    Language.RUST: RustAdapter,
    Language.JAVA: JavaAdapter,
}

__all__ = [
    "ADAPTER_CLASSES",
    "GoAdapter",
    "JavaAdapter",
    "JavaScriptAdapter",
    "LanguageAdapter",
    "PythonAdapter",
    "RustAdapter",
    "ScriptAdapter",
    "TsxAdapter",
]
