"""Tests for file type detection and structural validation."""
from __future__ import annotations

import pytest

from pydantic_ai_filesystem_server import FileType, detect_file_type, validate
from pydantic_ai_filesystem_server.syntax import REMEDIATION_HINTS


class TestDetectFileType:
    """Tests for detect_file_type()."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("package.json", FileType.JSON),
            ("data.JSON", FileType.JSON),
            (".eslintrc", FileType.JSON),
            ("app.js", FileType.JAVASCRIPT),
            ("component.tsx", FileType.TYPESCRIPT),
            ("ci.yml", FileType.YAML),
            ("layout.xml", FileType.XML),
            ("index.html", FileType.HTML),
            ("Dockerfile", FileType.DOCKERFILE),
            ("Dockerfile.prod", FileType.DOCKERFILE),
            ("README.md", FileType.UNKNOWN),
            ("Makefile", FileType.UNKNOWN),
        ],
    )
    def test_detection(self, name, expected):
        """Extensions map to types; filename overrides win."""
        assert detect_file_type(f"some/dir/{name}") == expected

    def test_jsonc_not_validated_as_json(self):
        """JSON-with-comments files are not held to strict JSON."""
        assert detect_file_type("tsconfig.jsonc") == FileType.UNKNOWN
        assert validate(
            "// settings\n{\"a\": 1,}\n", detect_file_type("tsconfig.jsonc")
        ).valid


class TestValidateJson:
    """Tests for JSON validation."""

    def test_trailing_comma_rejected(self):
        """A trailing comma is a JSON parse error."""
        outcome = validate('{"a": 1,}', FileType.JSON)

        assert not outcome.valid
        assert outcome.kind == "parse_error"
        assert outcome.message
        assert outcome.line == 1

    def test_valid_json(self):
        """Well-formed JSON passes."""
        assert validate('{"a": [1, 2, {"b": null}]}', FileType.JSON).valid

    @pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_constants_rejected(self, constant):
        """NaN and Infinity are not part of JSON."""
        outcome = validate(f'{{"a": {constant}}}', FileType.JSON)

        assert not outcome.valid
        assert outcome.kind == "parse_error"
        assert constant.lstrip("-") in outcome.message

    def test_hints_attached(self):
        """Invalid outcomes carry the remediation hints for their type."""
        outcome = validate("{'a': 1}", FileType.JSON)

        assert outcome.hints == REMEDIATION_HINTS[FileType.JSON]
        assert "(line 1" in outcome.describe()


class TestValidateJavaScript:
    """Tests for JavaScript bracket balance."""

    def test_mismatched_bracket(self):
        """A '}' closing a '[' is reported as mismatched."""
        outcome = validate("function f() { return [1, 2; }", FileType.JAVASCRIPT)

        assert not outcome.valid
        assert outcome.kind == "mismatched"

    def test_unclosed_brace(self):
        """An unclosed '{' is reported at its opening position."""
        outcome = validate("if (x) {\n  y();\n", FileType.JAVASCRIPT)

        assert not outcome.valid
        assert outcome.kind == "unclosed"
        assert (outcome.line, outcome.column) == (1, 8)

    def test_unexpected_closing(self):
        """A closer with nothing open is reported."""
        outcome = validate("foo());", FileType.JAVASCRIPT)

        assert outcome.kind == "unexpected_closing"

    def test_strings_and_comments_ignored(self):
        """Brackets inside strings, comments and templates do not count."""
        content = (
            'const s = "}";\n'
            "// )\n"
            "/* ] */\n"
            "const t = `a ${b} c`;\n"
            "const u = '{';\n"
        )

        assert validate(content, FileType.JAVASCRIPT).valid

    def test_unterminated_template(self):
        """A template literal left open is reported."""
        outcome = validate("const t = `abc;\n", FileType.JAVASCRIPT)

        assert outcome.kind == "unclosed"
        assert "template" in outcome.message

    def test_regex_literals_ignored(self):
        """Quotes and brackets inside regex literals do not count."""
        content = (
            "x.replace(/\"/g, \"'\");\n"
            "if (/[)]/.test(s)) {}\n"
            "const parts = line.split(/[{}]+/);\n"
            "function f(s) { return /\\(/.test(s); }\n"
        )

        assert validate(content, FileType.JAVASCRIPT).valid

    def test_division_is_not_a_regex(self):
        """A slash after an operand is division, so brackets after it count."""
        assert validate("const r = a / b / c;\n", FileType.JAVASCRIPT).valid

        outcome = validate("const r = (a) / 2 + f(b / 2;\n", FileType.JAVASCRIPT)

        assert outcome.kind == "unclosed"


class TestValidateTypeScript:
    """Tests for TypeScript annotation and declaration checks."""

    def test_valid_typescript(self):
        """Ordinary declarations pass."""
        content = (
            "interface User {\n"
            "  name: string;\n"
            "  age?: number;\n"
            "}\n"
            "type Id = string;\n"
            "const u: User = { name: 'x', age: 1 };\n"
        )

        assert validate(content, FileType.TYPESCRIPT).valid

    def test_missing_annotation(self):
        """A ':' with no type after it is reported."""
        outcome = validate("function f(a: , b: string) {}\n", FileType.TYPESCRIPT)

        assert not outcome.valid
        assert outcome.kind == "missing_annotation"

    def test_interface_without_body(self):
        """An interface declaration needs a '{' body."""
        outcome = validate("interface User\nconst x = 1;\n", FileType.TYPESCRIPT)

        assert outcome.kind == "bad_declaration"
        assert outcome.line == 1

    def test_interface_brace_on_next_line(self):
        """The body may open on the following line."""
        content = "interface User\n{\n  id: number;\n}\n"

        assert validate(content, FileType.TYPESCRIPT).valid

    def test_brackets_checked_first(self):
        """Bracket problems are reported for TypeScript too."""
        outcome = validate("const a = (1;\n", FileType.TYPESCRIPT)

        assert outcome.kind == "unclosed"


class TestValidateYaml:
    """Tests for YAML shape checks."""

    def test_tab_indentation_rejected(self):
        """Tabs are never valid YAML indentation."""
        outcome = validate("key:\n\tvalue: 1\n", FileType.YAML)

        assert outcome.kind == "tab_indent"
        assert outcome.line == 2

    def test_missing_separator(self):
        """A bare line at mapping level lacks its ':' separator."""
        outcome = validate("name: app\nversion 1.0\n", FileType.YAML)

        assert outcome.kind == "missing_separator"
        assert outcome.line == 2

    def test_valid_document(self):
        """Lists, block scalars, flow collections and folded values pass."""
        content = (
            "# comment\n"
            "name: app\n"
            "steps:\n"
            "  - name: build\n"
            "    run: |\n"
            "      make all\n"
            "      echo done\n"
            "  - deploy\n"
            "env: {A: 1, B: 2}\n"
            "list: [a,\n"
            "  b]\n"
            "description: a long\n"
            "  folded value\n"
            "url: http://example.com\n"
            "---\n"
            "other: true\n"
        )

        assert validate(content, FileType.YAML).valid


class TestValidateMarkup:
    """Tests for XML and HTML tag balance."""

    def test_xml_mismatched(self):
        """A closing tag must match the innermost open tag."""
        outcome = validate("<root><a></b></root>", FileType.XML)

        assert outcome.kind == "mismatched"
        assert "</b>" in outcome.message

    def test_xml_unclosed_lists_tags(self):
        """Unclosed tags are listed in opening order."""
        outcome = validate("<root><child>", FileType.XML)

        assert outcome.kind == "unclosed"
        assert "<root>, <child>" in outcome.message

    def test_xml_skips_declarations_comments_and_cdata(self):
        """Prolog, comments and CDATA are not tags."""
        content = (
            "<?xml version='1.0'?>\n"
            "<!-- <x> -->\n"
            "<root a=\"1\"><![CDATA[<y>]]><empty/></root>\n"
        )

        assert validate(content, FileType.XML).valid

    def test_xml_unexpected_closing(self):
        """A closing tag with nothing open is reported."""
        outcome = validate("</root>", FileType.XML)

        assert outcome.kind == "unexpected_closing"

    def test_html_void_elements(self):
        """Void elements need no closing tag."""
        content = (
            "<!DOCTYPE html>\n"
            "<html><body><br><img src='a.png'><p>Hi</p></body></html>\n"
        )

        assert validate(content, FileType.HTML).valid

    def test_html_script_body_ignored(self):
        """Markup-like text inside <script> is not parsed."""
        content = "<div><script>if (a < b) { x('<p>'); }</script></div>"

        assert validate(content, FileType.HTML).valid

    def test_html_mismatched(self):
        """Misnested elements are reported."""
        outcome = validate("<div><span></div>", FileType.HTML)

        assert outcome.kind == "mismatched"


class TestValidateDockerfile:
    """Tests for Dockerfile instruction checks."""

    def test_valid_dockerfile(self):
        """Continuations, ARG before FROM and heredocs pass."""
        content = (
            "ARG VERSION=3.12\n"
            "FROM python:${VERSION}\n"
            "RUN pip install a \\\n"
            "    b\n"
            "RUN <<EOF\n"
            "apt-get update\n"
            "EOF\n"
            'CMD ["python"]\n'
        )

        assert validate(content, FileType.DOCKERFILE).valid

    def test_instruction_before_from(self):
        """Only ARG may precede FROM."""
        outcome = validate("RUN echo hi\nFROM x\n", FileType.DOCKERFILE)

        assert outcome.kind == "missing_from"

    def test_unknown_instruction(self):
        """Typos in instruction keywords are reported."""
        outcome = validate("FROM x\nRUNN echo\n", FileType.DOCKERFILE)

        assert outcome.kind == "unknown_instruction"
        assert outcome.line == 2


class TestValidateDispatch:
    """Tests for validate() dispatch."""

    def test_unknown_type_always_valid(self):
        """Unsupported types are not checked."""
        assert validate("{{{ <<<", FileType.UNKNOWN).valid

    def test_validation_is_deterministic(self):
        """The same input always yields the same outcome."""
        content = "<root><a></root>"

        assert validate(content, FileType.XML) == validate(content, FileType.XML)
