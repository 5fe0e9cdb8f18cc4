"""
Tests for Module Signature Extraction
=====================================

Tests for the JS/TS lexer, import/export extraction and the complexity
heuristic.
"""

from forgeheal.module_signature import (
    complexity_score,
    is_script_path,
    parse_module_signature,
    tokenize,
)


# =============================================================================
# Lexer Tests
# =============================================================================

class TestTokenize:
    """Tests for the token stream."""

    def test_comments_are_dropped(self):
        """Line and block comments produce no tokens."""
        tokens = list(tokenize("// one\n/* two\nthree */ x"))
        assert [t.value for t in tokens] == ["x"]
        assert tokens[0].line == 3

    def test_string_body_without_quotes(self):
        tokens = list(tokenize("'a\\'b'"))
        assert tokens[0].kind == "string"
        assert tokens[0].value == "a\\'b"

    def test_division_is_not_a_regex(self):
        kinds = [t.kind for t in tokenize("const r = a / b / c;")]
        assert "regex" not in kinds

    def test_regex_after_assignment(self):
        tokens = list(tokenize("const r = /[/]x/g;"))
        regex = [t for t in tokens if t.kind == "regex"]
        assert len(regex) == 1
        assert regex[0].value == "/[/]x/g"

    def test_jsx_closing_tag_is_not_a_regex(self):
        """A "/" after "<" or "}" is punctuation in JSX."""
        tokens = list(tokenize("<div>{a}</div>"))
        assert all(t.kind != "regex" for t in tokens)


# =============================================================================
# Import Extraction Tests
# =============================================================================

class TestImports:
    """Tests for import detection."""

    def test_imports_in_comments_ignored(self):
        sig = parse_module_signature(
            "// import a from './a';\n"
            "/* import b from './b'; */\n"
            "import c from './c';\n"
        )
        assert sig.import_sources == ["./c"]

    def test_imports_in_strings_ignored(self):
        sig = parse_module_signature(
            "const s = \"import x from './a'\";\n"
            "import real from './real';\n"
        )
        assert sig.import_sources == ["./real"]

    def test_imports_in_templates_ignored(self):
        sig = parse_module_signature("const t = `import a from './t'`;\n")
        assert sig.import_sources == []

    def test_imports_in_regex_ignored(self):
        sig = parse_module_signature("const re = /import x from '.\\/y'/;\nexport { re };\n")
        assert sig.import_sources == []
        assert sig.exports == ["re"]

    def test_dynamic_import(self):
        sig = parse_module_signature("const mod = await import('./lazy');\n")
        assert sig.import_sources == ["./lazy"]
        assert sig.imports[0].symbols == []

    def test_require(self):
        sig = parse_module_signature("const fs = require('fs');\n")
        assert sig.import_sources == ["fs"]

    def test_side_effect_import(self):
        sig = parse_module_signature("import './globals.css';\n")
        assert sig.import_sources == ["./globals.css"]

    def test_default_named_and_type_symbols(self):
        """Default, aliased and type-only bindings are all captured."""
        sig = parse_module_signature(
            "import React, { useState as useLocal, type FC } from 'react';\n"
        )
        assert sig.imports[0].source == "react"
        assert sig.imports[0].symbols == ["default", "useState", "FC"]
        assert {"React", "useLocal", "FC"} <= set(sig.definitions)

    def test_namespace_import(self):
        sig = parse_module_signature("import * as utils from '../utils';\n")
        assert sig.imports[0].symbols == ["*"]
        assert "utils" in sig.definitions

    def test_import_after_jsx(self):
        sig = parse_module_signature(
            "export function Row() {\n"
            "  return <div className=\"row\"><span>{a / b}</span></div>;\n"
            "}\n"
            "import './side-effect';\n"
        )
        assert sig.import_sources == ["./side-effect"]
        assert sig.exports == ["Row"]


# =============================================================================
# Export Extraction Tests
# =============================================================================

class TestExports:
    """Tests for export detection."""

    def test_export_forms(self):
        sig = parse_module_signature(
            "export const A = 1;\n"
            "export function b() {}\n"
            "export default class Widget {}\n"
            "export { c as d };\n"
            "export * from './all';\n"
            "export * as ns from './ns';\n"
            "export type Props = { x: number };\n"
        )
        assert sig.exports == ["A", "b", "default", "d", "ns", "Props"]
        assert sig.import_sources == ["./all", "./ns"]
        assert sig.local_export_refs == ["c"]
        assert sig.reexport_sources == ["./all"]
        assert "Widget" in sig.definitions

    def test_reexport_records_symbols(self):
        sig = parse_module_signature("export { Button, Icon as Glyph } from './ui';\n")
        assert sig.exports == ["Button", "Glyph"]
        assert sig.imports[0].symbols == ["Button", "Icon"]
        assert sig.local_export_refs == []

    def test_export_default_identifier(self):
        sig = parse_module_signature("const Panel = () => null;\nexport default Panel;\n")
        assert sig.exports == ["default"]
        assert sig.local_export_refs == ["Panel"]
        assert "Panel" in sig.definitions

    def test_destructured_const_export(self):
        sig = parse_module_signature("export const { a, b } = config;\n")
        assert sig.exports == ["a", "b"]

    def test_empty_input(self):
        sig = parse_module_signature("")
        assert sig.imports == []
        assert sig.exports == []


# =============================================================================
# Complexity Tests
# =============================================================================

class TestComplexityScore:
    """Tests for the complexity heuristic."""

    def test_conditional_and_loop(self):
        assert complexity_score("if (a) { for (;;) {} }") == 5

    def test_arrow_and_ternary(self):
        assert complexity_score("const f = () => x ? 1 : 2;") == 3

    def test_optional_chaining_is_not_a_conditional(self):
        assert complexity_score("const v = a?.b ?? c;") == 0

    def test_iteration_calls(self):
        assert complexity_score("items.map(i => i);") == 4

    def test_keywords_in_strings_not_counted(self):
        assert complexity_score("const s = 'if (x) for (y)';") == 0

    def test_long_file_penalty(self):
        assert complexity_score("\n" * 200) == 10


class TestIsScriptPath:

    def test_script_extensions(self):
        assert is_script_path("components/a.tsx")
        assert is_script_path("lib/b.mjs")
        assert not is_script_path("styles/c.css")
        assert not is_script_path("README.md")
