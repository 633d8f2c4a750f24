"""Tests for the search/replace edit engine."""
from __future__ import annotations

import asyncio

import pytest

from pydantic_ai_filesystem_server import (
    EditError,
    EditOperation,
    SandboxError,
    ValidationFailedError,
    apply_edits,
    apply_file_edits,
    create_unified_diff,
)
from pydantic_ai_filesystem_server.editing import atomic_write, fence_diff, read_text


def _changed_lines(diff: str) -> tuple[list[str], list[str]]:
    lines = diff.splitlines()
    removed = [l for l in lines if l.startswith("-") and not l.startswith("---")]
    added = [l for l in lines if l.startswith("+") and not l.startswith("+++")]
    return removed, added


class TestApplyEdits:
    """Tests for the pure edit fold."""

    def test_exact_replacement(self):
        """An exact match is replaced verbatim."""
        content = "const port = 3000;"
        edit = EditOperation(
            old_text="const port = 3000;",
            new_text="const port = process.env.PORT || 3000;",
        )

        modified, applied = apply_edits(content, [edit], "server.js")

        assert modified == "const port = process.env.PORT || 3000;"
        assert applied[0].strategy == "exact"
        removed, added = _changed_lines(create_unified_diff(content, modified, "server.js"))
        assert removed == ["-const port = 3000;"]
        assert added == ["+const port = process.env.PORT || 3000;"]

    def test_fuzzy_match_ignores_trailing_whitespace(self):
        """Whitespace differences fall back to line matching and keep indentation."""
        content = "function f() {\n    const a = 1;\n    return a;\n}\n"
        edit = EditOperation(
            old_text="    const a = 1;  \n    return a;  ",
            new_text="    const a = 2;\n    return a * 2;",
        )

        modified, applied = apply_edits(content, [edit])

        assert modified == "function f() {\n    const a = 2;\n    return a * 2;\n}\n"
        assert applied[0].strategy == "fuzzy"
        assert applied[0].line == 2

    def test_fuzzy_match_preserves_relative_indentation(self):
        """Extra indentation in new_text is added on top of the first line's."""
        content = "def f():\n    if x:\n        y()\n"
        edit = EditOperation(
            old_text="if x: \n    y()",
            new_text="if z:\n        w()",
        )

        modified, _ = apply_edits(content, [edit])

        assert modified == "def f():\n    if z:\n        w()\n"

    def test_fuzzy_match_keeps_lines_with_unindented_counterpart(self):
        """A new line whose old_text line has no indentation is kept as written."""
        edit = EditOperation(old_text="a \nb", new_text="a\n  c")

        modified, _ = apply_edits("  a\n  b\n", [edit])

        assert modified == "  a\n  c\n"

    def test_fuzzy_match_clamps_negative_indentation(self):
        """Dedenting past the old_text line lands on the first line's indentation."""
        content = "    a\n        b\n"
        edit = EditOperation(old_text="    a  \n        b", new_text="    a\n  b")

        modified, _ = apply_edits(content, [edit])

        assert modified == "    a\n    b\n"

    def test_edits_apply_in_order(self):
        """Each edit sees the result of the previous one."""
        edits = [
            EditOperation(old_text="alpha", new_text="beta"),
            EditOperation(old_text="beta", new_text="gamma"),
        ]

        modified, applied = apply_edits("alpha", edits)

        assert modified == "gamma"
        assert [a.index for a in applied] == [1, 2]

    def test_missing_text_reports_index(self):
        """A failed edit names its position and the discarded earlier edits."""
        edits = [
            EditOperation(old_text="one", new_text="1"),
            EditOperation(old_text="missing", new_text="x"),
        ]

        with pytest.raises(EditError) as exc_info:
            apply_edits("one two", edits, "notes.txt")

        assert exc_info.value.index == 2
        assert "edit 2 of 2" in exc_info.value.message
        assert "1 earlier edit(s)" in exc_info.value.message
        assert "No changes were written" in exc_info.value.message

    def test_empty_old_text_rejected(self):
        """An empty search text is never a valid edit."""
        with pytest.raises(EditError, match="empty old_text"):
            apply_edits("abc", [EditOperation(old_text="", new_text="x")])


class TestDiffRendering:
    """Tests for diff creation and fencing."""

    def test_diff_headers(self):
        """Headers carry the path and original/modified labels."""
        diff = create_unified_diff("a\n", "b\n", "app.js")

        assert diff.startswith("--- app.js\toriginal\n+++ app.js\tmodified\n")
        assert "@@" in diff

    def test_no_change_diff_has_headers_only(self):
        """An unchanged file renders just the headers."""
        assert create_unified_diff("same\n", "same\n", "p") == "--- p\toriginal\n+++ p\tmodified\n"

    def test_default_fence(self):
        """Plain diffs use a three-backtick fence."""
        fenced = fence_diff("+a\n")

        assert fenced.startswith("```diff\n")
        assert fenced.endswith("\n```\n\n")

    def test_fence_longer_than_embedded_backticks(self):
        """The fence is one backtick longer than the longest run in the body."""
        fenced = fence_diff("+x = ````\n")

        assert fenced.startswith("`````diff\n")
        assert not fenced.startswith("``````")


class TestFileEdits:
    """Tests for apply_file_edits() on disk."""

    def test_edit_writes_file(self, tmp_path):
        """A successful edit persists the new content."""
        target = tmp_path / "server.js"
        target.write_text("const port = 3000;\n", encoding="utf-8")

        result = asyncio.run(
            apply_file_edits(
                target,
                [EditOperation(old_text="3000", new_text="8080")],
            )
        )

        assert result.persisted
        assert target.read_text(encoding="utf-8") == "const port = 8080;\n"
        assert result.report.startswith("```diff\n")

    def test_dry_run_does_not_write(self, tmp_path):
        """A dry run renders the same diff without touching the file."""
        target = tmp_path / "notes.txt"
        target.write_text("hello world\n", encoding="utf-8")
        edits = [EditOperation(old_text="world", new_text="there")]

        preview = asyncio.run(apply_file_edits(target, edits, dry_run=True))

        assert not preview.persisted
        assert target.read_text(encoding="utf-8") == "hello world\n"

        applied = asyncio.run(apply_file_edits(target, edits))

        assert applied.diff == preview.diff
        assert target.read_text(encoding="utf-8") == "hello there\n"

    def test_failed_edit_leaves_file_untouched(self, tmp_path):
        """If any edit fails, none are persisted."""
        target = tmp_path / "notes.txt"
        target.write_text("one two\n", encoding="utf-8")
        edits = [
            EditOperation(old_text="one", new_text="1"),
            EditOperation(old_text="three", new_text="3"),
        ]

        with pytest.raises(EditError):
            asyncio.run(apply_file_edits(target, edits))

        assert target.read_text(encoding="utf-8") == "one two\n"

    def test_invalid_result_not_written(self, tmp_path):
        """Edits that break JSON are rejected and nothing is written."""
        target = tmp_path / "config.json"
        target.write_text('{"a": 1}', encoding="utf-8")
        edits = [EditOperation(old_text='"a": 1', new_text='"a": 1,')]

        with pytest.raises(ValidationFailedError) as exc_info:
            asyncio.run(apply_file_edits(target, edits))

        assert target.read_text(encoding="utf-8") == '{"a": 1}'
        assert exc_info.value.file_type == "json"
        assert "Common json fixes:" in exc_info.value.message
        assert "No changes were written." in exc_info.value.message

    def test_skip_validation_writes_anyway(self, tmp_path):
        """skip_validation persists content that would fail validation."""
        target = tmp_path / "config.json"
        target.write_text('{"a": 1}', encoding="utf-8")
        edits = [EditOperation(old_text='"a": 1', new_text='"a": 1,')]

        asyncio.run(apply_file_edits(target, edits, skip_validation=True))

        assert target.read_text(encoding="utf-8") == '{"a": 1,}'

    def test_crlf_content_normalized(self, tmp_path):
        """Windows line endings match LF search text."""
        target = tmp_path / "notes.txt"
        target.write_bytes(b"a\r\nb\r\n")

        asyncio.run(apply_file_edits(target, [EditOperation(old_text="a\nb", new_text="c")]))

        assert target.read_bytes() == b"c\n"


class TestFileIO:
    """Tests for text reads and atomic writes."""

    def test_binary_file_rejected(self, tmp_path):
        """Non-UTF-8 content raises a readable error."""
        target = tmp_path / "image.bin"
        target.write_bytes(b"\xff\xfe\x00\x01")

        with pytest.raises(SandboxError, match="binary"):
            asyncio.run(read_text(target))

    def test_atomic_write_leaves_no_temp_files(self, tmp_path):
        """Only the target remains after a write."""
        target = tmp_path / "a.txt"

        asyncio.run(atomic_write(target, "content"))

        assert [p.name for p in tmp_path.iterdir()] == ["a.txt"]
        assert target.read_text(encoding="utf-8") == "content"

    def test_atomic_write_replaces_symlink(self, tmp_path):
        """A symlink at the target is replaced, not followed."""
        outside = tmp_path / "outside.txt"
        outside.write_text("original", encoding="utf-8")
        link = tmp_path / "link.txt"
        link.symlink_to(outside)

        asyncio.run(atomic_write(link, "new"))

        assert outside.read_text(encoding="utf-8") == "original"
        assert not link.is_symlink()
        assert link.read_text(encoding="utf-8") == "new"
