"""Per-language extraction tests.

Each language gets the same function shape: a call before any branch,
a call under an ``if`` whose condition uses ``&&`` / ``and``, a loop and
one more branching construct.  Tests skip when a grammar is missing.
"""

import pytest

from repograph.models import Language, SymbolKind, Visibility


def _symbol(result, name):
    matches = [s for s in result.symbols if s.name == name]
    assert matches, f"{name} not in {[s.qualified_name for s in result.symbols]}"
    return matches[0]


def _call(symbol, callee):
    matches = [c for c in symbol.calls if c.callee == callee]
    assert matches, f"{callee} not called by {symbol.name}: {symbol.calls}"
    return matches[0]


COMPLEXITY_CASES = [
    (
        Language.PYTHON, "mod.py", 5,
        "def f(x):\n"
        "    setup()\n"
        "    if x > 0 and x < 10:\n"
        "        g()\n"
        "    for i in range(3):\n"
        "        pass\n"
        "    return 1 if x else 0\n",
    ),
    (
        Language.TYPESCRIPT, "mod.ts", 5,
        "function f(x: number): number {\n"
        "  setup();\n"
        "  if (x > 0 && x < 10) {\n"
        "    g();\n"
        "  }\n"
        "  for (let i = 0; i < 3; i++) {}\n"
        "  return x > 5 ? 1 : 0;\n"
        "}\n",
    ),
    (
        Language.JAVASCRIPT, "mod.js", 5,
        "function f(x) {\n"
        "  setup();\n"
        "  if (x > 0 && x < 10) {\n"
        "    g();\n"
        "  }\n"
        "  while (x > 100) { x--; }\n"
        "  return x > 5 ? 1 : 0;\n"
        "}\n",
    ),
    (
        Language.GO, "mod.go", 6,
        "package main\n"
        "\n"
        "func f(x int) int {\n"
        "\tsetup()\n"
        "\tif x > 0 && x < 10 {\n"
        "\t\tg()\n"
        "\t}\n"
        "\tfor i := 0; i < 3; i++ {\n"
        "\t}\n"
        "\tswitch x {\n"
        "\tcase 1:\n"
        "\t\treturn 1\n"
        "\tcase 2:\n"
        "\t\treturn 2\n"
        "\t}\n"
        "\treturn x\n"
        "}\n",
    ),
    (
        Language.RUST, "lib.rs", 6,
        "fn f(x: i32) -> i32 {\n"
        "    setup();\n"
        "    if x > 0 && x < 10 {\n"
        "        g();\n"
        "    }\n"
        "    for _i in 0..3 {}\n"
        "    match x {\n"
        "        1 => 1,\n"
        "        _ => 0,\n"
        "    }\n"
        "}\n",
    ),
    (
        Language.JAVA, "A.java", 5,
        "public class A {\n"
        "    public int f(int x) {\n"
        "        setup();\n"
        "        if (x > 0 && x < 10) {\n"
        "            g();\n"
        "        }\n"
        "        for (int i = 0; i < 3; i++) {}\n"
        "        return x > 5 ? 1 : 0;\n"
        "    }\n"
        "}\n",
    ),
]


@pytest.mark.parametrize("lang,path,expected,source", COMPLEXITY_CASES, ids=lambda v: getattr(v, "value", None))
def test_complexity_counts_each_branch(parser, require_language, lang, path, expected, source):
    """A function with b branching constructs has complexity 1 + b."""
    require_language(lang)
    result = parser.parse(path, source)
    assert result.errors == []
    assert _symbol(result, "f").complexity == expected


@pytest.mark.parametrize("lang,path,expected,source", COMPLEXITY_CASES, ids=lambda v: getattr(v, "value", None))
def test_conditional_calls_are_flagged(parser, require_language, lang, path, expected, source):
    """Calls under a branch are conditional; calls outside are not."""
    require_language(lang)
    f = _symbol(parser.parse(path, source), "f")
    assert _call(f, "g").is_conditional is True
    assert _call(f, "setup").is_conditional is False


# ``a`` sits in a case arm and ``d`` in the default arm.  Complexity is
# only given where a default arm does not count.
SWITCH_CASES = [
    (
        Language.PYTHON, "sw.py", None,
        "def f(x):\n"
        "    k()\n"
        "    match x:\n"
        "        case 1:\n"
        "            a()\n"
        "        case _:\n"
        "            d()\n",
    ),
    (
        Language.TYPESCRIPT, "sw.ts", 2,
        "function f(x: number): void {\n"
        "  k();\n"
        "  switch (x) {\n"
        "    case 1:\n"
        "      a();\n"
        "      break;\n"
        "    default:\n"
        "      d();\n"
        "  }\n"
        "}\n",
    ),
    (
        Language.JAVASCRIPT, "sw.js", 2,
        "function f(x) {\n"
        "  k();\n"
        "  switch (x) {\n"
        "    case 1:\n"
        "      a();\n"
        "      break;\n"
        "    default:\n"
        "      d();\n"
        "  }\n"
        "}\n",
    ),
    (
        Language.GO, "sw.go", 2,
        "package main\n"
        "\n"
        "func f(x int) {\n"
        "\tk()\n"
        "\tswitch x {\n"
        "\tcase 1:\n"
        "\t\ta()\n"
        "\tdefault:\n"
        "\t\td()\n"
        "\t}\n"
        "}\n",
    ),
    (
        Language.RUST, "sw.rs", None,
        "fn f(x: i32) {\n"
        "    k();\n"
        "    match x {\n"
        "        1 => a(),\n"
        "        _ => d(),\n"
        "    }\n"
        "}\n",
    ),
    (
        Language.JAVA, "Sw.java", 2,
        "public class Sw {\n"
        "    public void f(int x) {\n"
        "        k();\n"
        "        switch (x) {\n"
        "            case 1:\n"
        "                a();\n"
        "                break;\n"
        "            default:\n"
        "                d();\n"
        "        }\n"
        "    }\n"
        "}\n",
    ),
    (
        Language.JAVA, "Rules.java", 2,
        "public class Rules {\n"
        "    public void f(int x) {\n"
        "        k();\n"
        "        switch (x) {\n"
        "            case 1 -> a();\n"
        "            default -> d();\n"
        "        }\n"
        "    }\n"
        "}\n",
    ),
]


@pytest.mark.parametrize("lang,path,expected,source", SWITCH_CASES, ids=lambda v: getattr(v, "value", None))
def test_switch_arms_are_conditional(parser, require_language, lang, path, expected, source):
    """Calls in case and default arms are conditional; the one before the switch is not."""
    require_language(lang)
    result = parser.parse(path, source)
    assert result.errors == []
    f = _symbol(result, "f")
    assert _call(f, "k").is_conditional is False
    assert _call(f, "a").is_conditional is True
    assert _call(f, "d").is_conditional is True
    if expected is not None:
        assert f.complexity == expected


@pytest.mark.parametrize("lang,path,expected,source", COMPLEXITY_CASES, ids=lambda v: getattr(v, "value", None))
def test_parse_is_deterministic(parser, require_language, lang, path, expected, source):
    require_language(lang)
    first = parser.parse(path, source)
    second = parser.parse(path, source)
    assert [s.qualified_name for s in first.symbols] == [s.qualified_name for s in second.symbols]
    assert [(s.complexity, s.start_line, s.end_line) for s in first.symbols] == [
        (s.complexity, s.start_line, s.end_line) for s in second.symbols
    ]


# ===================================================================
# Python
# ===================================================================

class TestPython:
    """Python-specific extraction rules."""

    def test_classes_methods_and_docstrings(self, parser, require_language, sample_python_code):
        require_language(Language.PYTHON)
        result = parser.parse("pkg/calc.py", sample_python_code)

        calc = _symbol(result, "Calculator")
        assert calc.kind == SymbolKind.CLASS
        assert calc.qualified_name == "pkg/calc.py:Calculator"
        assert calc.docstring == "Simple calculator."
        assert calc.is_exported is True

        add = _symbol(result, "add")
        assert add.kind == SymbolKind.METHOD
        assert add.qualified_name == "pkg/calc.py:Calculator.add"
        assert add.parent_symbol == "Calculator"
        assert add.docstring == "Add two numbers."
        assert [p.name for p in add.parameters] == ["a", "b"]
        assert add.parameters[0].type == "int"
        assert add.return_type == "int"
        assert add.is_exported is True

    def test_private_members_are_not_exported(self, parser, require_language, sample_python_code):
        require_language(Language.PYTHON)
        reset = _symbol(parser.parse("calc.py", sample_python_code), "_reset")
        assert reset.visibility == Visibility.PRIVATE
        assert reset.is_exported is False

    def test_self_calls_resolve_to_bare_name(self, parser, require_language, sample_python_code):
        require_language(Language.PYTHON)
        multiply = _symbol(parser.parse("calc.py", sample_python_code), "multiply")
        add_calls = [c for c in multiply.calls if c.callee == "add"]
        assert [c.is_conditional for c in add_calls] == [False, True]

    def test_exports_follow_dunder_all(self, parser, require_language, sample_python_code):
        require_language(Language.PYTHON)
        result = parser.parse("calc.py", sample_python_code)
        assert [e.name for e in result.exports] == ["hello", "Calculator"]
        assert _symbol(result, "hello").is_exported is True

    def test_main_is_an_entry_point(self, parser, require_language, entry_point_code):
        require_language(Language.PYTHON)
        result = parser.parse("app.py", entry_point_code)
        assert _symbol(result, "main").is_exported is True
        assert _symbol(result, "helper").is_exported is False

    def test_decorators_async_and_properties(self, parser, require_language):
        require_language(Language.PYTHON)
        source = (
            "class Service:\n"
            "    @property\n"
            "    def name(self):\n"
            "        return 'x'\n"
            "\n"
            "    @staticmethod\n"
            "    def build():\n"
            "        return Service()\n"
            "\n"
            "    async def fetch(self, url, *args, timeout=3):\n"
            "        return await get(url)\n"
        )
        result = parser.parse("svc.py", source)
        name = _symbol(result, "name")
        assert name.kind == SymbolKind.PROPERTY
        assert name.start_line == 2
        assert _symbol(result, "build").is_static is True
        fetch = _symbol(result, "fetch")
        assert fetch.is_async is True
        assert [p.name for p in fetch.parameters] == ["url", "args", "timeout"]
        assert fetch.parameters[1].is_rest is True
        assert fetch.parameters[2].default_value == "3"

    def test_nested_functions_are_not_exported(self, parser, require_language):
        require_language(Language.PYTHON)
        source = (
            "__all__ = ['outer']\n"
            "\n"
            "def outer():\n"
            "    def inner():\n"
            "        return 1\n"
            "    return inner()\n"
        )
        result = parser.parse("n.py", source)
        inner = _symbol(result, "inner")
        assert inner.qualified_name == "n.py:outer.inner"
        assert inner.kind == SymbolKind.FUNCTION
        assert inner.is_exported is False
        # Nested symbol bodies are not counted twice
        assert _symbol(result, "outer").calls[0].callee == "inner"

    def test_imports(self, parser, require_language):
        require_language(Language.PYTHON)
        source = "import os\nimport numpy as np\nfrom .models import Symbol, Chunk\nfrom x import *\n"
        imports = parser.parse("m.py", source).imports
        assert [i.source for i in imports] == ["os", "numpy", ".models", "x"]
        assert imports[1].namespace_import == "np"
        assert imports[2].imported_symbols == ["Symbol", "Chunk"]
        assert imports[2].is_external is False
        assert imports[3].namespace_import == "*"

    def test_duplicate_names_get_suffix(self, parser, require_language):
        require_language(Language.PYTHON)
        source = "def f():\n    pass\n\ndef f():\n    pass\n"
        names = [s.qualified_name for s in parser.parse("d.py", source).symbols]
        assert names == ["d.py:f", "d.py:f#2"]


# ===================================================================
# TypeScript / JavaScript
# ===================================================================

class TestTypeScript:
    """TypeScript and JavaScript extraction rules."""

    def test_exported_class_members(self, parser, require_language):
        require_language(Language.TYPESCRIPT)
        source = (
            "// Keeps track of users.\n"
            "export class UserStore extends BaseStore {\n"
            "  private cache = new Map();\n"
            "  public find(id: string): User {\n"
            "    return this.load(id);\n"
            "  }\n"
            "  private load(id: string): User {\n"
            "    return fetchUser(id);\n"
            "  }\n"
            "}\n"
            "\n"
            "export interface User { id: string }\n"
            "type Id = string;\n"
            "export const handler = async (req: Request) => {\n"
            "  return new UserStore();\n"
            "};\n"
        )
        result = parser.parse("src/store.ts", source)

        store = _symbol(result, "UserStore")
        assert store.kind == SymbolKind.CLASS
        assert store.is_exported is True
        assert store.bases == ["BaseStore"]
        assert store.docstring == "Keeps track of users."

        find = _symbol(result, "find")
        assert find.qualified_name == "src/store.ts:UserStore.find"
        assert find.is_exported is True
        load = _symbol(result, "load")
        assert load.visibility == Visibility.PRIVATE
        assert load.is_exported is False

        assert _symbol(result, "User").kind == SymbolKind.INTERFACE
        id_type = _symbol(result, "Id")
        assert id_type.kind == SymbolKind.TYPE
        assert id_type.is_exported is False

        handler = _symbol(result, "handler")
        assert handler.kind == SymbolKind.FUNCTION
        assert handler.is_async is True
        assert handler.is_exported is True
        assert [c.callee for c in handler.calls] == ["UserStore"]

    def test_imports_and_exports(self, parser, require_language):
        require_language(Language.TYPESCRIPT)
        source = (
            'import React, { useState } from "react";\n'
            'import * as path from "path";\n'
            'import type { Config } from "./config";\n'
            "function local() {}\n"
            "export { local };\n"
            'export * from "./util";\n'
        )
        result = parser.parse("app.ts", source)
        react, path_mod, cfg = result.imports
        assert react.default_import == "React"
        assert react.imported_symbols == ["useState"]
        assert react.is_external is True
        assert path_mod.namespace_import == "path"
        assert cfg.is_type_only is True
        assert cfg.is_external is False

        assert [(e.name, e.is_re_export) for e in result.exports] == [("local", False), ("*", True)]
        assert _symbol(result, "local").is_exported is True


# ===================================================================
# Go
# ===================================================================

class TestGo:
    def test_methods_types_and_capitalisation(self, parser, require_language):
        require_language(Language.GO)
        source = (
            "package server\n"
            "\n"
            'import (\n\t"fmt"\n\tlog "github.com/sirupsen/logrus"\n)\n'
            "\n"
            "// Server serves.\n"
            "type Server struct {\n\tport int\n}\n"
            "\n"
            "// Start starts the server.\n"
            "func (s *Server) Start() error {\n"
            "\treturn s.listen()\n"
            "}\n"
            "\n"
            "func (s *Server) listen() error {\n"
            "\tfmt.Println(s.port)\n"
            "\treturn nil\n"
            "}\n"
        )
        result = parser.parse("server/server.go", source)

        server = _symbol(result, "Server")
        assert server.kind == SymbolKind.CLASS
        assert server.is_exported is True
        assert server.docstring == "Server serves."

        start = _symbol(result, "Start")
        assert start.kind == SymbolKind.METHOD
        assert start.qualified_name == "server/server.go:Server.Start"
        assert start.parent_symbol == "Server"
        assert start.docstring == "Start starts the server."
        assert start.is_exported is True

        listen = _symbol(result, "listen")
        assert listen.visibility == Visibility.PRIVATE
        assert listen.is_exported is False
        assert [c.callee for c in listen.calls] == ["Println"]

        assert [(i.source, i.namespace_import) for i in result.imports] == [
            ("fmt", "fmt"), ("github.com/sirupsen/logrus", "log"),
        ]


# ===================================================================
# Rust
# ===================================================================

class TestRust:
    def test_impl_methods_and_visibility(self, parser, require_language):
        require_language(Language.RUST)
        source = (
            "use crate::store::Store;\n"
            "\n"
            "/// A counter.\n"
            "#[derive(Debug)]\n"
            "pub struct Counter {\n    n: u32,\n}\n"
            "\n"
            "impl Counter {\n"
            "    pub fn new() -> Self {\n        Counter { n: 0 }\n    }\n"
            "\n"
            "    pub fn inc(&mut self) {\n        self.bump(1);\n    }\n"
            "\n"
            "    fn bump(&mut self, by: u32) {\n        self.n += by;\n    }\n"
            "}\n"
            "\n"
            "pub(crate) trait Named {\n    fn name(&self) -> String;\n}\n"
        )
        result = parser.parse("src/counter.rs", source)

        counter = _symbol(result, "Counter")
        assert counter.kind == SymbolKind.CLASS
        assert counter.is_exported is True
        assert counter.docstring == "A counter."

        inc = _symbol(result, "inc")
        assert inc.kind == SymbolKind.METHOD
        assert inc.qualified_name == "src/counter.rs:Counter.inc"
        assert inc.is_static is False
        assert [c.callee for c in inc.calls] == ["bump"]
        assert _symbol(result, "new").is_static is True
        assert _symbol(result, "bump").visibility == Visibility.PRIVATE

        named = _symbol(result, "Named")
        assert named.kind == SymbolKind.INTERFACE
        assert named.visibility == Visibility.INTERNAL
        assert _symbol(result, "name").is_abstract is True

        assert result.imports[0].source == "crate::store"
        assert result.imports[0].imported_symbols == ["Store"]
        assert result.imports[0].is_external is False


# ===================================================================
# Java
# ===================================================================

class TestJava:
    def test_modifiers_and_package_private(self, parser, require_language):
        require_language(Language.JAVA)
        source = (
            "package com.example;\n"
            "\n"
            "import java.util.List;\n"
            "\n"
            "/** Greets people. */\n"
            "public class Greeter extends Base implements Runnable {\n"
            "    public Greeter() {}\n"
            "    public static String greet(String name) { return format(name); }\n"
            "    void run() {}\n"
            "    private String format(String n) { return n; }\n"
            "}\n"
            "\n"
            "enum Mode { ON, OFF }\n"
        )
        result = parser.parse("src/com/example/Greeter.java", source)

        greeter = _symbol(result, "Greeter")
        assert greeter.kind == SymbolKind.CLASS
        assert greeter.is_exported is True
        assert greeter.bases == ["Base", "Runnable"]
        assert greeter.docstring == "Greets people."

        greet = _symbol(result, "greet")
        assert greet.is_static is True
        assert greet.is_exported is True
        assert greet.visibility == Visibility.PUBLIC

        run = [s for s in result.symbols if s.name == "run"][0]
        assert run.visibility == Visibility.INTERNAL
        assert run.is_exported is False

        mode = _symbol(result, "Mode")
        assert mode.kind == SymbolKind.ENUM
        assert mode.is_exported is False

        assert result.imports[0].source == "java.util.List"
        assert result.imports[0].imported_symbols == ["List"]
