"""Recursive glob search inside the sandbox.

A single glob strategy misses matches a caller reasonably expects (``*.js``
should find ``src/app.js``; ``*pipeline*`` should find ``deploy-pipeline.yml``
at any depth), so each entry is tried against the entry name, the
root-relative path, the absolute path and finally a substring fallback.
"""
from __future__ import annotations

import functools
import logging
import os
import re
from pathlib import Path
from typing import Sequence

import aiofiles.os

from .sandbox import Sandbox, SandboxError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Glob Matching
# ---------------------------------------------------------------------------


def _find_closing_brace(pattern: str, start: int) -> int:
    depth = 0
    for index in range(start, len(pattern)):
        if pattern[index] == "{":
            depth += 1
        elif pattern[index] == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _split_alternatives(body: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current += ch
    parts.append(current)
    return parts


def _translate(pattern: str) -> str:
    """Translate a glob into a regex body.

    ``*`` and ``?`` stay within one path segment, ``**`` spans segments,
    ``**/`` may match zero directories and a trailing ``/**`` also matches
    the directory itself. ``[...]`` classes and ``{a,b}`` alternatives are
    supported.
    """
    parts: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            j = i
            while j < n and pattern[j] == "*":
                j += 1
            if j - i == 1:
                parts.append("[^/]*")
                i = j
                continue
            segment_start = i == 0 or pattern[i - 1] == "/"
            if segment_start and j < n and pattern[j] == "/":
                parts.append("(?:.*/)?")
                i = j + 1
                continue
            if segment_start and j == n and parts and parts[-1] == "/":
                parts[-1] = "(?:/.*)?"
                i = j
                continue
            parts.append(".*")
            i = j
        elif ch == "?":
            parts.append("[^/]")
            i += 1
        elif ch == "[":
            end = pattern.find("]", i + 2)
            if end < 0:
                parts.append(re.escape(ch))
                i += 1
                continue
            body = pattern[i + 1:end]
            if body.startswith("!"):
                body = "^" + body[1:]
            parts.append("[" + body.replace("\\", "\\\\") + "]")
            i = end + 1
        elif ch == "{":
            end = _find_closing_brace(pattern, i)
            if end < 0:
                parts.append(re.escape(ch))
                i += 1
                continue
            alternatives = _split_alternatives(pattern[i + 1:end])
            parts.append("(?:" + "|".join(_translate(a) for a in alternatives) + ")")
            i = end + 1
        else:
            parts.append(re.escape(ch))
            i += 1
    return "".join(parts)


@functools.lru_cache(maxsize=256)
def compile_glob(pattern: str, ignore_case: bool = True) -> re.Pattern[str]:
    flags = re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.compile(f"^{_translate(pattern)}$", flags)


def glob_match(path: str, pattern: str, ignore_case: bool = True) -> bool:
    """Match a '/'-separated path against a glob pattern. Dotfiles match '*'."""
    return compile_glob(pattern, ignore_case).match(path) is not None


def exclude_glob(pattern: str) -> str:
    """Bare names exclude that name at any depth, with everything under it."""
    if "*" in pattern:
        return pattern
    return f"**/{pattern}/**"


def matches_pattern(name: str, relative: str, full: str, pattern: str) -> bool:
    """Test one entry against the search pattern using every strategy in turn."""
    if glob_match(name, pattern):
        return True
    if glob_match(relative, pattern):
        return True
    if glob_match(full, pattern):
        return True
    if "*" in pattern:
        fragments = [p.lower() for p in pattern.split("*") if p]
        if len(fragments) > 1:
            name_lower = name.lower()
            relative_lower = relative.lower()
            return all(
                f in name_lower or f in relative_lower for f in fragments
            )
    return False


# ---------------------------------------------------------------------------
# Directory Walk
# ---------------------------------------------------------------------------


async def search_files(
    sandbox: Sandbox,
    root: Path,
    pattern: str,
    exclude_patterns: Sequence[str] = (),
) -> list[Path]:
    """Depth-first search for entries under root matching pattern.

    Entries the sandbox refuses and directories that cannot be read are
    skipped and logged. Directories are descended into whether or not they
    match; symlinked directories are not followed.

    Args:
        sandbox: Sandbox used to authorize every visited entry
        root: Authorized directory to search from
        pattern: Glob pattern, compared case-insensitively
        exclude_patterns: Globs (or bare names) of entries to skip, compared
            case-sensitively

    Returns:
        Matching paths in traversal order
    """
    excludes = [exclude_glob(p) for p in exclude_patterns]
    results: list[Path] = []
    logger.debug(
        "Searching %s for %r (excluding %s)", root, pattern, ", ".join(excludes) or "nothing"
    )

    async def walk(directory: Path) -> None:
        try:
            names = sorted(await aiofiles.os.listdir(directory))
        except OSError as e:
            logger.warning("Cannot read directory %s: %s", directory, e)
            return

        for name in names:
            full = directory / name
            try:
                sandbox.resolve(str(full))
            except SandboxError as e:
                logger.debug("Skipping %s: %s", full, e.message)
                continue

            relative = os.path.relpath(full, root).replace(os.sep, "/")
            if any(glob_match(relative, ex, ignore_case=False) for ex in excludes):
                logger.debug("Excluded %s", relative)
                continue

            if matches_pattern(name, relative, str(full), pattern):
                logger.debug("Found match: %s", full)
                results.append(full)

            if await aiofiles.os.path.isdir(full) and not await aiofiles.os.path.islink(full):
                await walk(full)

    await walk(root)
    logger.info("Search for %r under %s found %d match(es)", pattern, root, len(results))
    return results
