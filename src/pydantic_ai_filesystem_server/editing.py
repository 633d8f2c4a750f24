"""Search/replace editing with fuzzy matching, diffs and atomic writes.

Edits are applied as a pure fold over the file content: each EditOperation
maps the current content to new content, and nothing touches the disk until
every edit has matched and the result has passed structural validation.

Example:
    result = await apply_file_edits(
        resolved,
        [EditOperation(old_text="const port = 3000;", new_text="const port = 8080;")],
        dry_run=True,
    )
    print(result.report)
"""
from __future__ import annotations

import contextlib
import difflib
import logging
import secrets
from pathlib import Path
from typing import Literal, Optional, Sequence

import aiofiles
import aiofiles.os
from pydantic import BaseModel, Field

from .sandbox import EditError, SandboxError, ValidationFailedError
from .syntax import detect_file_type, validate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class EditOperation(BaseModel):
    """A single search/replace pair."""

    old_text: str = Field(
        description=(
            "Text to search for. Matched exactly first, then line by line "
            "ignoring leading/trailing whitespace"
        )
    )
    new_text: str = Field(description="Text to replace old_text with")


class AppliedEdit(BaseModel):
    """How one edit was located in the content."""

    index: int = Field(description="1-based position of the edit in the request")
    strategy: Literal["exact", "fuzzy"] = Field(description="Matching strategy used")
    line: int = Field(description="1-based line where the match started")


class EditResult(BaseModel):
    """Outcome of applying a sequence of edits to a file."""

    path: str = Field(description="Path shown in the diff headers")
    original: str = Field(description="Content before the edits")
    modified: str = Field(description="Content after the edits")
    diff: str = Field(description="Unified diff from original to modified")
    persisted: bool = Field(description="True if the file on disk was rewritten")
    applied: list[AppliedEdit] = Field(default_factory=list)

    @property
    def report(self) -> str:
        """The diff wrapped in a markdown fence that its body cannot close."""
        return fence_diff(self.diff)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n")


def _leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _replace_exact(content: str, old: str, new: str) -> Optional[tuple[str, int]]:
    index = content.find(old)
    if index < 0:
        return None
    line = content.count("\n", 0, index) + 1
    return content[:index] + new + content[index + len(old):], line


def _replace_fuzzy(content: str, old: str, new: str) -> Optional[tuple[str, int]]:
    """Find old's lines in content comparing stripped lines, then splice in new.

    The first replacement line takes the indentation of the first matched
    line. When both a later new line and its old_text counterpart are
    indented, the new line is placed at the first line's indentation plus
    the difference between the two, clamped at zero. Other lines are kept
    as written.
    """
    old_lines = old.split("\n")
    content_lines = content.split("\n")
    size = len(old_lines)

    for start in range(len(content_lines) - size + 1):
        window = content_lines[start:start + size]
        if not all(a.strip() == b.strip() for a, b in zip(old_lines, window)):
            continue

        base_indent = _leading_whitespace(content_lines[start])
        new_lines: list[str] = []
        for j, line in enumerate(new.split("\n")):
            if j == 0:
                new_lines.append(base_indent + line.lstrip())
                continue
            old_indent = _leading_whitespace(old_lines[j]) if j < size else ""
            new_indent = _leading_whitespace(line)
            if old_indent and new_indent:
                relative = max(0, len(new_indent) - len(old_indent))
                new_lines.append(base_indent + " " * relative + line.lstrip())
            else:
                new_lines.append(line)

        content_lines[start:start + size] = new_lines
        return "\n".join(content_lines), start + 1
    return None


def apply_edit(content: str, edit: EditOperation, index: int = 1) -> tuple[str, AppliedEdit]:
    """Apply one edit to content, exact match first, then fuzzy line match.

    Raises:
        LookupError: If old_text matches nowhere in content
    """
    old = normalize_line_endings(edit.old_text)
    new = normalize_line_endings(edit.new_text)

    exact = _replace_exact(content, old, new)
    if exact is not None:
        updated, line = exact
        return updated, AppliedEdit(index=index, strategy="exact", line=line)

    fuzzy = _replace_fuzzy(content, old, new)
    if fuzzy is not None:
        updated, line = fuzzy
        return updated, AppliedEdit(index=index, strategy="fuzzy", line=line)

    raise LookupError(old)


def apply_edits(
    content: str, edits: Sequence[EditOperation], path: str = "file"
) -> tuple[str, list[AppliedEdit]]:
    """Thread content through every edit in order.

    Returns:
        The final content and how each edit matched

    Raises:
        EditError: If any edit's old_text is empty or cannot be found. The
            caller's content is left as it was.
    """
    applied: list[AppliedEdit] = []
    for index, edit in enumerate(edits, start=1):
        if not edit.old_text:
            raise EditError(path, f"edit {index} has an empty old_text", "", index)
        try:
            content, record = apply_edit(content, edit, index)
        except LookupError:
            reason = f"could not find a match for edit {index} of {len(edits)}"
            if applied:
                reason += f" ({len(applied)} earlier edit(s) matched but were discarded)"
            raise EditError(path, reason, edit.old_text, index) from None
        logger.debug(
            "Edit %d matched %s at line %d in %s",
            index,
            record.strategy,
            record.line,
            path,
        )
        applied.append(record)
    return content, applied


# ---------------------------------------------------------------------------
# Diff Rendering
# ---------------------------------------------------------------------------


def create_unified_diff(original: str, modified: str, path: str = "file") -> str:
    """Render a unified diff between two versions of a file."""
    lines = list(
        difflib.unified_diff(
            normalize_line_endings(original).splitlines(),
            normalize_line_endings(modified).splitlines(),
            fromfile=path,
            tofile=path,
            fromfiledate="original",
            tofiledate="modified",
            lineterm="",
        )
    )
    if not lines:
        lines = [f"--- {path}\toriginal", f"+++ {path}\tmodified"]
    return "\n".join(lines) + "\n"


def fence_diff(diff: str) -> str:
    """Wrap a diff in a backtick fence longer than any backtick run inside it."""
    ticks = 3
    while "`" * ticks in diff:
        ticks += 1
    fence = "`" * ticks
    return f"{fence}diff\n{diff}{fence}\n\n"


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------


async def read_text(path: Path, display_path: Optional[str] = None) -> str:
    """Read a UTF-8 text file.

    Raises:
        SandboxError: If the file is not valid UTF-8
    """
    try:
        async with aiofiles.open(path, "r", encoding="utf-8", newline="") as f:
            return await f.read()
    except UnicodeDecodeError:
        raise SandboxError(
            f"Cannot read '{display_path or path}': file appears to be binary or "
            "not UTF-8 encoded.\nThis tool only reads text files."
        ) from None


async def atomic_write(path: Path, content: str) -> None:
    """Write content to a sibling temp file, then rename it over path.

    The rename replaces the directory entry itself, so a symlink planted at
    path after authorization is replaced rather than followed.
    """
    temp_path = path.with_name(f"{path.name}.{secrets.token_hex(16)}.tmp")
    try:
        async with aiofiles.open(temp_path, "w", encoding="utf-8", newline="") as f:
            await f.write(content)
        await aiofiles.os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            await aiofiles.os.remove(temp_path)
        raise


async def apply_file_edits(
    path: Path,
    edits: Sequence[EditOperation],
    *,
    dry_run: bool = False,
    skip_validation: bool = False,
    display_path: Optional[str] = None,
) -> EditResult:
    """Apply edits to an already-authorized file.

    Args:
        path: Resolved path of the file to edit
        edits: Edits to apply, left to right
        dry_run: Render the diff without writing
        skip_validation: Persist even if structural validation would fail
        display_path: Path to show in diff headers and errors (defaults to path)

    Returns:
        EditResult with the diff and whether it was persisted

    Raises:
        EditError: If an edit cannot be located
        ValidationFailedError: If the result fails structural validation
    """
    label = display_path or str(path)
    original = normalize_line_endings(await read_text(path, label))
    modified, applied = apply_edits(original, edits, label)

    if not skip_validation:
        file_type = detect_file_type(path)
        outcome = validate(modified, file_type)
        if not outcome.valid:
            logger.info("Edit to %s rejected by %s validation", label, file_type.value)
            raise ValidationFailedError(label, file_type.value, outcome)

    diff = create_unified_diff(original, modified, label)

    if not dry_run:
        await atomic_write(path, modified)
        logger.info("Applied %d edit(s) to %s", len(applied), label)

    return EditResult(
        path=label,
        original=original,
        modified=modified,
        diff=diff,
        persisted=not dry_run,
        applied=applied,
    )
