"""Sandbox: Allow-list path authorization with LLM-friendly errors.

This module provides the security boundary for filesystem access:
- SandboxConfig for startup configuration (allowed directories)
- Sandbox class for path resolution and containment checks
- LLM-friendly error classes shared by every operation

The Sandbox is a pure policy/validation layer - it doesn't perform file I/O
beyond stat/readlink calls. For file operations, use FileSystemToolset which
wraps a Sandbox.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from .syntax import ValidationOutcome


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


DEFAULT_COMMAND_TIMEOUT_MS = 30_000
"""Default timeout for run_command, in milliseconds."""

DEFAULT_MAX_COMMAND_OUTPUT_BYTES = 5 * 1024 * 1024
"""Per-stream capture limit for run_command output."""


def expand_home(path: str) -> str:
    """Expand a leading '~' or '~/' to the user's home directory."""
    if path == "~" or path.startswith("~/"):
        return os.path.join(os.path.expanduser("~"), path[2:])
    return path


class SandboxConfig(BaseModel):
    """Configuration for a sandbox.

    Directories are validated and symlink-resolved once, when the config is
    built. The resulting set is immutable for the lifetime of the process.
    """

    model_config = ConfigDict(frozen=True)

    allowed_directories: list[Path] = Field(
        min_length=1,
        description="Directories that every operation must stay inside",
    )
    command_timeout_ms: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT_MS,
        gt=0,
        description="Default timeout for run_command in milliseconds",
    )
    max_command_output_bytes: int = Field(
        default=DEFAULT_MAX_COMMAND_OUTPUT_BYTES,
        gt=0,
        description="Maximum bytes captured per output stream of run_command",
    )

    @field_validator("allowed_directories", mode="before")
    @classmethod
    def _coerce_directories(cls, value: object) -> object:
        if isinstance(value, (str, Path)):
            return [value]
        return value

    @field_validator("allowed_directories")
    @classmethod
    def _resolve_directories(cls, value: list[Path]) -> list[Path]:
        resolved: list[Path] = []
        for entry in value:
            expanded = Path(expand_home(str(entry)))
            absolute = os.path.abspath(expanded)
            if not os.path.exists(absolute):
                raise ValueError(f"Allowed directory does not exist: {entry}")
            if not os.path.isdir(absolute):
                raise ValueError(f"Allowed directory is not a directory: {entry}")
            real = Path(os.path.realpath(absolute))
            if real not in resolved:
                resolved.append(real)
        return resolved


# ---------------------------------------------------------------------------
# LLM-Friendly Errors
# ---------------------------------------------------------------------------


class SandboxError(Exception):
    """Base class for sandbox errors with LLM-friendly messages.

    All sandbox errors include guidance on what IS allowed,
    helping the LLM correct its behavior.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PathNotInSandboxError(SandboxError):
    """Raised when a path is outside all allowed directories."""

    def __init__(
        self,
        path: str,
        allowed_directories: list[str],
        reason: str = "path is outside allowed directories",
    ):
        self.path = path
        self.allowed_directories = allowed_directories
        self.reason = reason
        dirs_str = ", ".join(allowed_directories) if allowed_directories else "none"
        super().__init__(
            f"Access denied - {reason}: '{path}'.\n"
            f"Allowed directories: {dirs_str}"
        )


class ParentDirectoryMissingError(SandboxError, FileNotFoundError):
    """Raised when a new file's parent directory does not exist."""

    def __init__(self, path: str, parent: str):
        self.path = path
        self.parent = parent
        super().__init__(
            f"Parent directory does not exist: '{parent}'.\n"
            f"Create it with create_directory before writing '{path}'."
        )


class PathNotFoundError(SandboxError, FileNotFoundError):
    """Raised when an operation requires an existing file or directory."""

    def __init__(self, path: str, what: str = "File or directory"):
        self.path = path
        super().__init__(f"{what} does not exist: '{path}'")


class PathExistsError(SandboxError, FileExistsError):
    """Raised when a destination already exists."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"Destination already exists: '{path}'.\n"
            "Choose a different destination or delete the existing one first."
        )


class DirectoryNotEmptyError(SandboxError):
    """Raised when deleting a populated directory without recursive=True."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"Directory is not empty: '{path}'. "
            "Use recursive=true to delete non-empty directories."
        )


class EditError(SandboxError):
    """Raised when an edit's old_text cannot be located."""

    def __init__(
        self, path: str, reason: str, old_text: str, index: Optional[int] = None
    ):
        self.path = path
        self.reason = reason
        self.old_text = old_text
        self.index = index
        # Show a preview of what was being searched for
        preview = old_text[:100] + "..." if len(old_text) > 100 else old_text
        preview = preview.replace("\n", "\\n")
        super().__init__(
            f"Cannot edit '{path}': {reason}.\n"
            f"Searched for: {preview!r}\n"
            "No changes were written. Read the file again and copy the text to "
            "replace exactly."
        )


class ValidationFailedError(SandboxError):
    """Raised when an edited file fails structural validation."""

    def __init__(self, path: str, file_type: str, outcome: "ValidationOutcome"):
        self.path = path
        self.file_type = file_type
        self.outcome = outcome
        lines = [
            f"Cannot edit '{path}': the result is not valid {file_type}.",
            f"Error: {outcome.describe()}",
        ]
        if outcome.hints:
            lines.append("")
            lines.append(f"Common {file_type} fixes:")
            lines.extend(f"- {hint}" for hint in outcome.hints)
        lines.extend(
            [
                "",
                "No changes were written.",
                "- Use dry_run=true to preview the diff before applying it.",
                "- If the file is intentionally unusual, pass skip_validation=true "
                "to bypass the check.",
            ]
        )
        super().__init__("\n".join(lines))


class CommandFailedError(SandboxError):
    """Raised when a command exits non-zero or is killed by the timeout."""

    def __init__(
        self,
        command: str,
        reason: str,
        exit_code: Optional[int] = None,
        killed: bool = False,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = command
        self.reason = reason
        self.exit_code = exit_code
        self.killed = killed
        self.stdout = stdout
        self.stderr = stderr
        parts = [f"ERROR: Command failed: {command}\n{reason}"]
        if stdout:
            parts.append(f"\nSTDOUT:\n{stdout}")
        if stderr:
            parts.append(f"\nSTDERR:\n{stderr}")
        if exit_code is not None:
            parts.append(f"\nExit code: {exit_code}")
        if killed:
            parts.append("\nCommand was killed (likely due to timeout)")
        super().__init__("\n".join(parts))


# ---------------------------------------------------------------------------
# Sandbox Implementation
# ---------------------------------------------------------------------------


class Sandbox:
    """Security boundary for file access validation.

    The Sandbox is responsible for:
    - Path resolution (home expansion, relative → absolute, normalization)
    - Containment checks against the allowed directories
    - Symlink resolution, so a link inside the sandbox cannot point outside it

    This is a pure policy/validation layer - it doesn't perform file I/O.
    For file operations, use FileSystemToolset which wraps a Sandbox.

    Example:
        config = SandboxConfig(allowed_directories=["./project"])
        sandbox = Sandbox(config)

        resolved = sandbox.resolve("project/src/app.py")
        # ... perform the operation on `resolved`
    """

    def __init__(self, config: SandboxConfig, base_path: Optional[Path] = None):
        """Initialize the sandbox.

        Args:
            config: Sandbox configuration
            base_path: Base path for resolving relative request paths (defaults to cwd)
        """
        self.config = config
        self._base_path = Path(base_path) if base_path is not None else Path.cwd()
        self._roots: tuple[str, ...] = tuple(
            os.path.normpath(str(d)) for d in config.allowed_directories
        )

    @classmethod
    def from_directories(
        cls, *directories: str | Path, base_path: Optional[Path] = None
    ) -> "Sandbox":
        """Build a sandbox from directory arguments (raises if any is invalid)."""
        config = SandboxConfig(allowed_directories=[Path(d) for d in directories])
        return cls(config, base_path=base_path)

    @property
    def allowed_directories(self) -> list[str]:
        """The allowed directories, resolved, in configuration order."""
        return list(self._roots)

    @property
    def default_directory(self) -> Path:
        """First allowed directory; used as the default command cwd."""
        return Path(self._roots[0])

    # ---------------------------------------------------------------------------
    # Containment
    # ---------------------------------------------------------------------------

    def is_allowed(self, path: str | Path) -> bool:
        """Check whether an absolute, normalized path lies under any root."""
        candidate = os.path.normpath(str(path))
        return any(self._is_within(root, candidate) for root in self._roots)

    @staticmethod
    def _is_within(root: str, candidate: str) -> bool:
        try:
            relative = os.path.relpath(candidate, root)
        except ValueError:
            # Different drives on Windows.
            return False
        if relative == os.curdir:
            return True
        if os.path.isabs(relative):
            return False
        return Path(relative).parts[0] != os.pardir

    # ---------------------------------------------------------------------------
    # Path Resolution
    # ---------------------------------------------------------------------------

    def absolute(self, path: str) -> str:
        """Expand, absolutize and normalize a request path without checks."""
        expanded = expand_home(path.strip())
        return os.path.normpath(os.path.join(self._base_path, expanded))

    def resolve(self, path: str, *, allow_missing_parents: bool = False) -> Path:
        """Resolve a request path and authorize it against the allowed directories.

        Args:
            path: Relative or absolute path to resolve
            allow_missing_parents: Authorize a missing target against its nearest
                existing ancestor instead of requiring its parent to exist

        Returns:
            The real path when the target exists, otherwise the normalized
            absolute path

        Raises:
            PathNotInSandboxError: If the path, its symlink target, or its
                parent resolves outside every allowed directory
            ParentDirectoryMissingError: If the target and its parent do not exist
        """
        absolute = self.absolute(path)
        if not self.is_allowed(absolute):
            raise PathNotInSandboxError(path, self.allowed_directories)

        try:
            real = os.path.realpath(absolute, strict=True)
        except FileNotFoundError:
            return self._resolve_missing(path, absolute, allow_missing_parents)
        except OSError as e:
            raise SandboxError(f"Cannot resolve '{path}': {e.strerror or e}") from e

        if not self.is_allowed(real):
            raise PathNotInSandboxError(
                path,
                self.allowed_directories,
                reason="symlink target outside allowed directories",
            )
        return Path(real)

    def _resolve_missing(
        self, path: str, absolute: str, allow_missing_parents: bool
    ) -> Path:
        """Authorize a target that does not exist yet."""
        # A dangling symlink would redirect a later write to its destination.
        if os.path.islink(absolute):
            destination = os.path.realpath(absolute)
            if not self.is_allowed(destination):
                raise PathNotInSandboxError(
                    path,
                    self.allowed_directories,
                    reason="symlink target outside allowed directories",
                )

        parent = os.path.dirname(absolute)
        ancestor = parent
        while True:
            try:
                real_parent = os.path.realpath(ancestor, strict=True)
                break
            except FileNotFoundError:
                next_ancestor = os.path.dirname(ancestor)
                if not allow_missing_parents or next_ancestor == ancestor:
                    raise ParentDirectoryMissingError(path, parent) from None
                ancestor = next_ancestor
            except OSError as e:
                raise SandboxError(
                    f"Cannot resolve parent of '{path}': {e.strerror or e}"
                ) from e

        if not self.is_allowed(real_parent):
            raise PathNotInSandboxError(
                path,
                self.allowed_directories,
                reason="parent directory outside allowed directories",
            )
        return Path(absolute)
