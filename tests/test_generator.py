"""Tests for generator module."""

import pytest

from unmangle.core.generator import apply_renames, save_output
from unmangle.core.merger import merge
from unmangle.core.parser import parse_javascript
from unmangle.errors import ParseError
from unmangle.models import RenameSuggestion


class TestApplyRenames:
    """Tests for apply_renames function."""

    def test_simple_function(self, simple_code):
        result = apply_renames(simple_code, {"a": "increment", "b": "value"})

        assert result == "function increment(value){return value+1}"

    def test_reserved_word_suggestion_is_escaped(self):
        rename_map = merge([[RenameSuggestion(original_name="c", suggested_name="class")]])

        result = apply_renames("var c = 1; c++; log(c);", rename_map)

        assert result == "var class$ = 1; class$++; log(class$);"

    def test_strings_properties_and_comments_untouched(self, obfuscated_code):
        result = apply_renames(obfuscated_code, {"a": "count", "b": "message", "h": "index", "f": "sum"})

        assert 'var message = "a string with a in it";' in result
        assert "d.a + e" in result
        assert "/a+/.test(message)" in result
        assert "label: for (var index = 0; index < 3; index++)" in result
        assert "continue label;" in result
        assert "{ f: sum, g:" in result
        assert "console.log(c(count, 2));" in result

    def test_name_based_across_scopes(self):
        code = "function f(a){return a} function g(a){return a*2}"

        result = apply_renames(code, {"a": "input"})

        assert result == "function f(input){return input} function g(input){return input*2}"

    def test_shorthand_destructuring_keeps_property_name(self):
        result = apply_renames("const {a, b = 2} = o; use({a});", {"a": "alpha", "b": "beta"})

        assert result == "const {a: alpha, b: beta = 2} = o; use({a: alpha});"

    def test_module_names_are_preserved(self):
        code = 'import {a, b as c} from "m";\nexport {a, c as d};\nexport {e} from "n";\n'

        result = apply_renames(code, {"a": "api", "b": "bee", "c": "client", "d": "dee", "e": "eee"})

        assert result == (
            'import {a as api, b as client} from "m";\n'
            'export {api as a, client as d};\n'
            'export {e} from "n";\n'
        )

    def test_exported_declarations_keep_their_public_names(self):
        result = apply_renames("export function a(b){return b+1}", {"a": "increment", "b": "value"})

        assert result == "function increment(value){return value+1} export { increment as a };"

    def test_exported_bindings_reexported_under_old_names(self):
        code = "export const a = 1, b = 2;\nexport class C {}"

        result = apply_renames(code, {"a": "alpha", "C": "Widget"})

        assert result == "const alpha = 1, b = 2; export { alpha as a, b };\nclass Widget {} export { Widget as C };"

    def test_exported_destructuring_without_semicolon(self):
        code = "export const {a, b: [c]} = o\nuse(a)"

        result = apply_renames(code, {"a": "alpha", "c": "gamma"})

        assert result.startswith("const {a: alpha, b: [gamma]} = o")
        assert "export { alpha as a, gamma as c };" in result
        assert result.endswith("use(alpha)")
        parse_javascript(result)

    def test_default_export_renamed_in_place(self):
        result = apply_renames("export default function a(){return 1}", {"a": "main"})

        assert result == "export default function main(){return 1}"

    def test_untouched_export_is_left_alone(self):
        code = "export const x = a;"

        assert apply_renames(code, {"a": "alpha"}) == "export const x = alpha;"

    def test_exported_rename_is_idempotent(self):
        rename_map = {"a": "increment", "b": "value"}

        once = apply_renames("export function a(b){return b+1}", rename_map)

        assert apply_renames(once, rename_map) == once

    def test_template_substitutions_are_renamed(self):
        result = apply_renames("const s = `a=${a}`;", {"a": "count"})

        assert result == "const s = `a=${count}`;"

    def test_idempotent_on_renamed_source(self, simple_code):
        rename_map = {"a": "increment", "b": "value"}

        once = apply_renames(simple_code, rename_map)
        twice = apply_renames(once, rename_map)

        assert twice == once

    def test_empty_map_returns_source(self, obfuscated_code):
        assert apply_renames(obfuscated_code, {}) == obfuscated_code

    def test_invalid_source_raises(self):
        with pytest.raises(ParseError):
            apply_renames("function a( {", {"a": "broken"})

    def test_invalid_target_raises(self):
        with pytest.raises(ValueError, match="not valid identifiers"):
            apply_renames("var a;", {"a": "not valid"})


class TestSaveOutput:
    def test_creates_parent_directories(self, tmp_path):
        output = tmp_path / "nested" / "out.js"

        save_output("var a;", output)

        assert output.read_text(encoding="utf-8") == "var a;"
