"""Parser facade: dispatch source files to tree-sitter language adapters.

One :class:`ParserFacade` is built at process start and passed to every
caller.  Grammars are loaded once by :meth:`ParserFacade.initialize`;
tree-sitter ``Parser`` objects are not thread-safe, so each thread gets
its own parser per language while the ``Language`` objects are shared.
"""

from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from .languages import ADAPTER_CLASSES, LanguageAdapter
from .models import Language, ParseResult, language_for_path

logger = logging.getLogger(__name__)


@dataclass
class InitResult:
    """Which languages loaded and why the others did not."""

    languages: List[Language] = field(default_factory=list)
    errors: Dict[Language, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return bool(self.languages)


class ParserFacade:
    """Error-tolerant, multi-language parser built on tree-sitter."""

    def __init__(self, languages: Optional[Iterable[Language]] = None) -> None:
        self._requested: List[Language] = list(languages) if languages else list(Language)
        self._adapters: Dict[Language, LanguageAdapter] = {}
        self._grammars: Dict[Language, Any] = {}
        self._result: Optional[InitResult] = None
        self._init_lock = threading.Lock()
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def initialize(self) -> InitResult:
        """Load every requested grammar.  Safe to call repeatedly."""
        with self._init_lock:
            if self._result is not None:
                return self._result

            result = InitResult()
            try:
                from tree_sitter import Language as TSLanguage  # type: ignore[import-untyped]
            except ImportError as exc:
                logger.warning(
                    "tree-sitter is not installed -- parsing unavailable. "
                    "Install with: pip install tree-sitter",
                )
                result.errors = {lang: str(exc) for lang in self._requested}
                self._result = result
                return result

            for lang in self._requested:
                adapter_cls = ADAPTER_CLASSES[lang]
                try:
                    mod = importlib.import_module(adapter_cls.grammar_module)
                    # tree-sitter >=0.22 grammar packages expose a function
                    # returning the Language capsule.
                    capsule = getattr(mod, adapter_cls.grammar_attr)()
                    self._grammars[lang] = TSLanguage(capsule)
                    self._adapters[lang] = adapter_cls()
                    result.languages.append(lang)
                    logger.debug("Loaded tree-sitter grammar for %s", lang.value)
                except ImportError as exc:
                    logger.warning(
                        "Grammar package '%s' not installed for language '%s'. "
                        "Install with: pip install %s",
                        adapter_cls.grammar_module, lang.value,
                        adapter_cls.grammar_module.replace("_", "-"),
                    )
                    result.errors[lang] = str(exc)
                except Exception as exc:
                    logger.warning("Could not load tree-sitter grammar for %s: %s", lang.value, exc)
                    result.errors[lang] = str(exc)

            self._result = result
            return result

    @property
    def available_languages(self) -> List[Language]:
        return list(self.initialize().languages)

    def supports(self, language: Language) -> bool:
        self.initialize()
        return language in self._adapters

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, path: str, content: Union[str, bytes]) -> ParseResult:
        """Parse one file.

        Unknown extensions and unavailable grammars give an empty result
        with no errors.  An adapter failure gives an empty result whose
        ``errors`` describe it.
        """
        self.initialize()
        lang = language_for_path(path)
        if lang is None:
            return ParseResult(path=path, language="unknown")
        adapter = self._adapters.get(lang)
        if adapter is None:
            return ParseResult(path=path, language=lang.value)

        source = content.encode("utf-8") if isinstance(content, str) else content
        try:
            tree = self._parser_for(lang).parse(source)
            root = tree.root_node
            result = ParseResult(
                path=path,
                language=lang.value,
                symbols=adapter.extract_symbols(root, path, source),
                imports=adapter.extract_imports(root, source),
                exports=adapter.extract_exports(root, source),
            )
        except Exception as exc:
            logger.warning("Failed to parse %s: %s", path, exc)
            return ParseResult(
                path=path, language=lang.value, errors=[f"{type(exc).__name__}: {exc}"],
            )

        result.lines_of_code = _count_lines(source)
        if root.has_error:
            result.errors.append("syntax errors present; extraction is best-effort")
        return result

    def _parser_for(self, lang: Language) -> Any:
        from tree_sitter import Parser as TSParser  # type: ignore[import-untyped]

        parsers = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = self._local.parsers = {}
        parser = parsers.get(lang)
        if parser is None:
            parser = parsers[lang] = TSParser(self._grammars[lang])
        return parser


def _count_lines(source: bytes) -> int:
    if not source:
        return 0
    return source.count(b"\n") + (0 if source.endswith(b"\n") else 1)
