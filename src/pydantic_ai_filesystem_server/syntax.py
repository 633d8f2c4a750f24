"""Structural validation of edited file content.

Validators here are heuristic: they check bracket/tag balance, JSON
parseability, YAML key/value shape and TypeScript annotation shape. They are
not parsers, and a passing result only means nothing obviously broken was
found.

Usage:
    file_type = detect_file_type("src/app.ts")
    outcome = validate(content, file_type)
    if not outcome.valid:
        print(outcome.describe(), outcome.hints)
"""
from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import PurePath
from typing import Callable, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# File Types
# ---------------------------------------------------------------------------


class FileType(str, Enum):
    """File types with a structural validator."""

    JSON = "json"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    YAML = "yaml"
    XML = "xml"
    HTML = "html"
    DOCKERFILE = "dockerfile"
    UNKNOWN = "unknown"


EXTENSION_TYPES: dict[str, FileType] = {
    ".json": FileType.JSON,
    ".js": FileType.JAVASCRIPT,
    ".jsx": FileType.JAVASCRIPT,
    ".mjs": FileType.JAVASCRIPT,
    ".cjs": FileType.JAVASCRIPT,
    ".ts": FileType.TYPESCRIPT,
    ".tsx": FileType.TYPESCRIPT,
    ".mts": FileType.TYPESCRIPT,
    ".cts": FileType.TYPESCRIPT,
    ".yml": FileType.YAML,
    ".yaml": FileType.YAML,
    ".xml": FileType.XML,
    ".svg": FileType.XML,
    ".xsl": FileType.XML,
    ".xslt": FileType.XML,
    ".xhtml": FileType.XML,
    ".plist": FileType.XML,
    ".html": FileType.HTML,
    ".htm": FileType.HTML,
    ".dockerfile": FileType.DOCKERFILE,
}

JSON_FILENAMES = frozenset(
    {
        ".babelrc",
        ".eslintrc",
        ".prettierrc",
        ".jshintrc",
        ".swcrc",
        ".stylelintrc",
        "composer.lock",
        ".watchmanconfig",
    }
)
"""Config files that are JSON despite having no .json extension."""


def detect_file_type(path: str | PurePath) -> FileType:
    """Detect a file's type from its name.

    Filename overrides win over the extension mapping: anything ending in
    ``.json`` or named like a known JSON config file is JSON, and anything
    starting with ``Dockerfile`` is a Dockerfile.
    """
    name = PurePath(path).name.lower()
    if name.endswith(".json") or name in JSON_FILENAMES:
        return FileType.JSON
    if name.startswith("dockerfile"):
        return FileType.DOCKERFILE
    return EXTENSION_TYPES.get(PurePath(name).suffix, FileType.UNKNOWN)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


class ValidationOutcome(BaseModel):
    """Result of validating file content."""

    valid: bool = Field(description="True if no structural problem was found")
    message: Optional[str] = Field(default=None, description="What is wrong")
    kind: Optional[str] = Field(
        default=None, description="Machine-readable problem category"
    )
    line: Optional[int] = Field(default=None, description="1-based line number")
    column: Optional[int] = Field(default=None, description="1-based column number")
    hints: list[str] = Field(
        default_factory=list, description="Remediation hints for the file type"
    )

    @classmethod
    def ok(cls) -> "ValidationOutcome":
        return cls(valid=True)

    @classmethod
    def invalid(
        cls,
        message: str,
        kind: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> "ValidationOutcome":
        return cls(valid=False, message=message, kind=kind, line=line, column=column)

    def describe(self) -> str:
        """Message with its position, when known."""
        if self.valid:
            return "valid"
        text = self.message or "invalid content"
        if self.line is not None and self.column is not None:
            return f"{text} (line {self.line}, column {self.column})"
        if self.line is not None:
            return f"{text} (line {self.line})"
        return text


REMEDIATION_HINTS: dict[FileType, list[str]] = {
    FileType.JSON: [
        "Remove trailing commas after the last element of objects and arrays",
        "Use double quotes for keys and string values",
        "Comments are not allowed in JSON",
        "Check that every '{' and '[' has a matching '}' and ']'",
    ],
    FileType.JAVASCRIPT: [
        "Check that every '(', '[' and '{' has a matching closer",
        "Make sure string and template literals are terminated",
        "Include the full block in old_text when changing braces",
    ],
    FileType.TYPESCRIPT: [
        "Check that every '(', '[' and '{' has a matching closer",
        "Provide a type after every ':' annotation",
        "Interface declarations need a '{' body; type aliases need '='",
    ],
    FileType.YAML: [
        "Indent with spaces, never tabs",
        "Mapping entries need a ': ' between key and value",
        "Keep sibling keys at the same indentation level",
    ],
    FileType.XML: [
        "Close every opened tag, or self-close it with '/>'",
        "Closing tags must match the most recently opened tag",
        "Tag names are case-sensitive",
    ],
    FileType.HTML: [
        "Close every opened element, or self-close it with '/>'",
        "Closing tags must match the most recently opened element",
    ],
    FileType.DOCKERFILE: [
        "Start the Dockerfile with FROM (optionally preceded by ARG)",
        "Each instruction line must begin with a Dockerfile keyword",
        "End a line with '\\' to continue an instruction",
    ],
}


def _position(content: str, index: int) -> tuple[int, int]:
    line = content.count("\n", 0, index) + 1
    column = index - (content.rfind("\n", 0, index) + 1) + 1
    return line, column


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def _reject_constant(name: str) -> float:
    raise ValueError(f"Invalid JSON constant: {name}")


def validate_json(content: str) -> ValidationOutcome:
    try:
        json.loads(content, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        return ValidationOutcome.invalid(str(e), "parse_error", e.lineno, e.colno)
    except (ValueError, RecursionError) as e:
        return ValidationOutcome.invalid(str(e), "parse_error")
    return ValidationOutcome.ok()


# ---------------------------------------------------------------------------
# JavaScript / TypeScript
# ---------------------------------------------------------------------------


_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = frozenset(_OPENERS.values())
_TEMPLATE_EXPR = "${"
_REGEX_PRECEDERS = frozenset("(,=:[!&|?{};+-*%<>~^")
_REGEX_KEYWORDS = frozenset(
    {
        "return",
        "typeof",
        "instanceof",
        "case",
        "do",
        "else",
        "in",
        "of",
        "new",
        "delete",
        "void",
        "throw",
        "yield",
        "await",
    }
)


def _regex_close(line: str, start: int) -> Optional[int]:
    """Index of the slash ending a regex literal opened at start, if any."""
    in_class = False
    i = start + 1
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            return i
        i += 1
    return None


def _scan_brackets(content: str) -> tuple[ValidationOutcome, list[str]]:
    """Check bracket balance, skipping strings, templates, regexes and comments.

    Returns the outcome and a copy of the content lines with string and
    comment bodies blanked out, for follow-up checks that must not look
    inside literals.
    """
    stack: list[tuple[str, int, int]] = []
    quote: Optional[str] = None
    quote_pos = (0, 0)
    prev = ""
    prev_word = ""
    in_block_comment = False
    masked: list[str] = []

    for line_no, line in enumerate(content.split("\n"), start=1):
        out = list(line)
        n = len(line)
        i = 0
        while i < n:
            ch = line[i]
            col = i + 1

            if in_block_comment:
                out[i] = " "
                if line.startswith("*/", i):
                    out[i + 1] = " "
                    in_block_comment = False
                    i += 2
                    continue
                i += 1
                continue

            if quote is not None:
                if ch == "\\":
                    out[i] = " "
                    if i + 1 < n:
                        out[i + 1] = " "
                    i += 2
                    continue
                if quote == "`" and line.startswith(_TEMPLATE_EXPR, i):
                    stack.append((_TEMPLATE_EXPR, line_no, col))
                    quote = None
                    prev, prev_word = "{", ""
                    i += 2
                    continue
                if ch == quote:
                    quote = None
                    prev, prev_word = ch, ""
                else:
                    out[i] = " "
                i += 1
                continue

            if line.startswith("//", i):
                for j in range(i, n):
                    out[j] = " "
                break
            if line.startswith("/*", i):
                out[i] = out[i + 1] = " "
                in_block_comment = True
                i += 2
                continue
            if ch == "/" and (
                not prev or prev in _REGEX_PRECEDERS or prev_word in _REGEX_KEYWORDS
            ):
                close = _regex_close(line, i)
                if close is not None:
                    for j in range(i + 1, close):
                        out[j] = " "
                    i = close + 1
                    while i < n and line[i].isalpha():
                        i += 1
                    prev, prev_word = "/", ""
                    continue
            if ch.isalnum() or ch in "_$":
                j = i
                while j < n and (line[j].isalnum() or line[j] in "_$"):
                    j += 1
                prev, prev_word = line[j - 1], line[i:j]
                i = j
                continue
            if not ch.isspace():
                prev, prev_word = ch, ""
            if ch in "'\"`":
                quote = ch
                quote_pos = (line_no, col)
            elif ch in _OPENERS:
                stack.append((ch, line_no, col))
            elif ch in _CLOSERS:
                if not stack:
                    return (
                        ValidationOutcome.invalid(
                            f"Unexpected closing '{ch}'",
                            "unexpected_closing",
                            line_no,
                            col,
                        ),
                        masked,
                    )
                opener, open_line, open_col = stack[-1]
                expected = "}" if opener == _TEMPLATE_EXPR else _OPENERS[opener]
                if ch != expected:
                    return (
                        ValidationOutcome.invalid(
                            f"Mismatched closing '{ch}': expected '{expected}' to close "
                            f"'{opener}' opened at line {open_line}, column {open_col}",
                            "mismatched",
                            line_no,
                            col,
                        ),
                        masked,
                    )
                stack.pop()
                if opener == _TEMPLATE_EXPR:
                    quote = "`"
            i += 1

        # Plain strings end at the line break unless escaped onto the next line.
        if quote in ("'", '"') and i <= n:
            quote = None
        masked.append("".join(out))

    if quote == "`":
        line_no, col = quote_pos
        return (
            ValidationOutcome.invalid(
                "Unterminated template literal", "unclosed", line_no, col
            ),
            masked,
        )
    if stack:
        opener, line_no, col = stack[-1]
        return (
            ValidationOutcome.invalid(f"Unclosed '{opener}'", "unclosed", line_no, col),
            masked,
        )
    return ValidationOutcome.ok(), masked


def validate_javascript(content: str) -> ValidationOutcome:
    outcome, _ = _scan_brackets(content)
    return outcome


_EMPTY_ANNOTATION_RE = re.compile(r"[A-Za-z_$][\w$]*\??\s*(:)\s*(?=[,;)=])")
_DECLARATION_RE = re.compile(
    r"^\s*(?:export\s+)?(?:default\s+)?(?:declare\s+)?(interface|type)\s+[A-Za-z_$][\w$]*"
)


def validate_typescript(content: str) -> ValidationOutcome:
    outcome, masked = _scan_brackets(content)
    if not outcome.valid:
        return outcome

    for index, line in enumerate(masked):
        line_no = index + 1
        match = _EMPTY_ANNOTATION_RE.search(line)
        if match:
            return ValidationOutcome.invalid(
                "Missing type annotation after ':'",
                "missing_annotation",
                line_no,
                match.start(1) + 1,
            )

        declaration = _DECLARATION_RE.match(line)
        if declaration is None:
            continue
        rest = line[declaration.end():]
        if "{" in rest or "=" in rest:
            continue
        following = next((l for l in masked[index + 1:] if l.strip()), "")
        if following.lstrip().startswith(("{", "=")):
            continue
        keyword = declaration.group(1)
        expected = "'{'" if keyword == "interface" else "'=' or '{'"
        return ValidationOutcome.invalid(
            f"Malformed {keyword} declaration: expected {expected}",
            "bad_declaration",
            line_no,
            declaration.start(1) + 1,
        )
    return ValidationOutcome.ok()


# ---------------------------------------------------------------------------
# YAML
# ---------------------------------------------------------------------------


_BLOCK_SCALAR_RE = re.compile(r"(?:^|[:\-]\s)\s*[|>][+-]?\d*\s*(?:#.*)?$")
_KEY_SEPARATOR_RE = re.compile(r":(?:\s|$)")


def validate_yaml(content: str) -> ValidationOutcome:
    lines = content.split("\n")
    for line_no, line in enumerate(lines, start=1):
        if "\t" in line:
            return ValidationOutcome.invalid(
                "Tab character found; YAML must be indented with spaces",
                "tab_indent",
                line_no,
                line.index("\t") + 1,
            )

    block_indent: Optional[int] = None
    continuation_indent: Optional[int] = None
    flow_depth = 0

    for line_no, line in enumerate(lines, start=1):
        stripped = line.strip()
        indent = len(line) - len(line.lstrip(" "))

        if block_indent is not None:
            if not stripped or indent > block_indent:
                continue
            block_indent = None

        if not stripped or stripped.startswith("#"):
            continue
        if stripped in ("---", "...") or stripped.startswith(("--- ", "%")):
            continuation_indent = None
            continue

        if flow_depth > 0:
            flow_depth += _flow_delta(stripped)
            continue

        body = stripped
        is_item = False
        while body == "-" or body.startswith("- "):
            is_item = True
            body = body[1:].lstrip()

        if _BLOCK_SCALAR_RE.search(stripped):
            block_indent = indent

        if not body or body.startswith(("#", "&", "*", "!", "|", ">")):
            continue
        if body[0] in "[{":
            flow_depth = max(0, _flow_delta(body))
            continue
        if body[0] in "\"'" and not _KEY_SEPARATOR_RE.search(body):
            continue

        if _KEY_SEPARATOR_RE.search(body):
            value = body.split(":", 1)[1].strip()
            continuation_indent = indent if value and not value.startswith("#") else None
            if value[:1] in ("[", "{"):
                flow_depth = max(0, _flow_delta(value))
            continue
        if is_item:
            continue
        if continuation_indent is not None and indent > continuation_indent:
            # Plain scalar folded onto the next line.
            continue
        return ValidationOutcome.invalid(
            "Expected 'key: value' mapping entry (missing ':' separator)",
            "missing_separator",
            line_no,
            indent + 1,
        )
    return ValidationOutcome.ok()


def _flow_delta(text: str) -> int:
    text = re.sub(r"\"[^\"]*\"|'[^']*'", "", text)
    return text.count("[") + text.count("{") - text.count("]") - text.count("}")


# ---------------------------------------------------------------------------
# XML / HTML
# ---------------------------------------------------------------------------


_XML_SKIP_RE = re.compile(
    r"<!--.*?-->|<!\[CDATA\[.*?\]\]>|<\?.*?\?>|<![A-Za-z][^>]*>", re.DOTALL
)
_HTML_RAW_TEXT_RE = re.compile(
    r"(<(script|style)\b[^>]*>)(.*?)(</\2\s*>)", re.DOTALL | re.IGNORECASE
)
_TAG_RE = re.compile(
    r"<(/?)([A-Za-z_][\w:.\-]*)((?:[^>\"']|\"[^\"]*\"|'[^']*')*)>", re.DOTALL
)

HTML_VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "param",
        "source",
        "track",
        "wbr",
    }
)


def _blank_text(text: str) -> str:
    return re.sub(r"[^\n]", " ", text)


def _blank(match: re.Match[str]) -> str:
    return _blank_text(match.group(0))


def _check_tags(content: str, html: bool) -> ValidationOutcome:
    text = _XML_SKIP_RE.sub(_blank, content)
    if html:
        text = _HTML_RAW_TEXT_RE.sub(
            lambda m: m.group(1) + _blank_text(m.group(3)) + m.group(4), text
        )

    stack: list[tuple[str, int]] = []
    for match in _TAG_RE.finditer(text):
        closing, name, attrs = match.group(1), match.group(2), match.group(3)
        if html:
            name = name.lower()
        if attrs.rstrip().endswith("/"):
            continue
        if html and name in HTML_VOID_ELEMENTS:
            continue
        if not closing:
            stack.append((name, match.start()))
            continue

        line, column = _position(content, match.start())
        if not stack:
            return ValidationOutcome.invalid(
                f"Unexpected closing tag </{name}>", "unexpected_closing", line, column
            )
        open_name, open_index = stack[-1]
        if open_name != name:
            open_line, open_col = _position(content, open_index)
            return ValidationOutcome.invalid(
                f"Mismatched closing tag </{name}>: expected </{open_name}> "
                f"(opened at line {open_line}, column {open_col})",
                "mismatched",
                line,
                column,
            )
        stack.pop()

    if stack:
        names = ", ".join(f"<{name}>" for name, _ in stack)
        line, column = _position(content, stack[-1][1])
        return ValidationOutcome.invalid(
            f"Unclosed tags: {names}", "unclosed", line, column
        )
    return ValidationOutcome.ok()


def validate_xml(content: str) -> ValidationOutcome:
    return _check_tags(content, html=False)


def validate_html(content: str) -> ValidationOutcome:
    return _check_tags(content, html=True)


# ---------------------------------------------------------------------------
# Dockerfile
# ---------------------------------------------------------------------------


DOCKERFILE_INSTRUCTIONS = frozenset(
    {
        "ADD",
        "ARG",
        "CMD",
        "COPY",
        "ENTRYPOINT",
        "ENV",
        "EXPOSE",
        "FROM",
        "HEALTHCHECK",
        "LABEL",
        "MAINTAINER",
        "ONBUILD",
        "RUN",
        "SHELL",
        "STOPSIGNAL",
        "USER",
        "VOLUME",
        "WORKDIR",
    }
)
_HEREDOC_RE = re.compile(r"<<-?[\"']?([A-Za-z_][\w]*)[\"']?")


def validate_dockerfile(content: str) -> ValidationOutcome:
    continued = False
    heredoc: Optional[str] = None
    seen_from = False

    for line_no, line in enumerate(content.split("\n"), start=1):
        stripped = line.strip()
        if heredoc is not None:
            if stripped == heredoc:
                heredoc = None
            continue
        if continued:
            continued = stripped.endswith("\\")
            continue
        if not stripped or stripped.startswith("#"):
            continue

        keyword = stripped.split(None, 1)[0].upper()
        column = len(line) - len(line.lstrip()) + 1
        if keyword not in DOCKERFILE_INSTRUCTIONS:
            return ValidationOutcome.invalid(
                f"Unknown instruction '{stripped.split(None, 1)[0]}'",
                "unknown_instruction",
                line_no,
                column,
            )
        if not seen_from and keyword not in ("FROM", "ARG"):
            return ValidationOutcome.invalid(
                f"'{keyword}' before FROM: a Dockerfile must start with FROM",
                "missing_from",
                line_no,
                column,
            )
        if keyword == "FROM":
            seen_from = True

        continued = stripped.endswith("\\")
        heredoc_match = _HEREDOC_RE.search(stripped)
        if heredoc_match and not continued:
            heredoc = heredoc_match.group(1)

    if not seen_from:
        return ValidationOutcome.invalid(
            "No FROM instruction found", "missing_from", 1, 1
        )
    return ValidationOutcome.ok()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


VALIDATORS: dict[FileType, Callable[[str], ValidationOutcome]] = {
    FileType.JSON: validate_json,
    FileType.JAVASCRIPT: validate_javascript,
    FileType.TYPESCRIPT: validate_typescript,
    FileType.YAML: validate_yaml,
    FileType.XML: validate_xml,
    FileType.HTML: validate_html,
    FileType.DOCKERFILE: validate_dockerfile,
}


def validate(content: str, file_type: FileType) -> ValidationOutcome:
    """Validate content for a file type.

    Unsupported types are always valid. Invalid outcomes carry the
    remediation hints for their file type.
    """
    validator = VALIDATORS.get(file_type)
    if validator is None:
        return ValidationOutcome.ok()
    outcome = validator(content)
    if outcome.valid:
        return outcome
    return outcome.model_copy(update={"hints": list(REMEDIATION_HINTS.get(file_type, []))})
