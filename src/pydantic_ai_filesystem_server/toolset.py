"""FileSystemToolset: Sandboxed filesystem tools for PydanticAI agents.

This module provides the FileSystemToolset, a PydanticAI AbstractToolset that
provides file operations (read, write, edit, search, delete, move, command
execution) restricted to the sandbox's allowed directories.

The toolset uses a Sandbox for path authorization, keeping concerns cleanly
separated. Every path-taking operation resolves its path through the Sandbox
before touching the filesystem.

Example:
    from pydantic_ai_filesystem_server import FileSystemToolset, Sandbox, SandboxConfig

    # Create sandbox (policy layer)
    sandbox = Sandbox(SandboxConfig(allowed_directories=["./project"]))

    # Create toolset (file I/O layer)
    toolset = FileSystemToolset(sandbox)

    # Use with PydanticAI agent
    agent = Agent(..., toolsets=[toolset])
"""
from __future__ import annotations

import asyncio
import errno
import shutil
import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles.os
from pydantic import BaseModel, Field, TypeAdapter
from pydantic_ai import ModelRetry
from pydantic_ai.tools import RunContext, ToolDefinition
from pydantic_ai.toolsets import AbstractToolset, ToolsetTool

from . import commands
from .editing import EditOperation, EditResult, apply_file_edits, atomic_write, read_text
from .sandbox import (
    DirectoryNotEmptyError,
    PathExistsError,
    PathNotFoundError,
    Sandbox,
    SandboxConfig,
    SandboxError,
)
from .search import search_files


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


OMITTED_MARKER = "... (middle content omitted) ..."
"""Placed between head and tail lines when both are requested."""

MULTI_FILE_SEPARATOR = "\n---\n"


def slice_lines(content: str, head: Optional[int] = None, tail: Optional[int] = None) -> str:
    """Return the first `head` and/or last `tail` lines of content.

    With both, the omitted middle is replaced by OMITTED_MARKER. When head and
    tail together cover every line, the full content is returned unchanged.
    A final newline terminates the last line rather than starting another.
    """
    if head is None and tail is None:
        return content
    ending = "\n" if content.endswith("\n") else ""
    lines = content[: len(content) - len(ending)].split("\n")
    total = len(lines)
    if head is not None and tail is not None:
        if head + tail >= total:
            return content
        sliced = lines[:head] + [OMITTED_MARKER] + lines[total - tail:]
        return "\n".join(sliced) + (ending if tail else "")
    if tail is not None:
        if tail == 0:
            return ""
        return "\n".join(lines[max(0, total - tail):]) + ending
    return "\n".join(lines[:head])


class FileInfo(BaseModel):
    """Metadata for a file or directory."""

    size: int = Field(description="Size in bytes")
    created: datetime = Field(description="Creation time (ctime where birth time is unavailable)")
    modified: datetime = Field(description="Last modification time")
    accessed: datetime = Field(description="Last access time")
    is_directory: bool
    is_file: bool
    permissions: str = Field(description="Permission bits as three octal digits")

    def render(self) -> str:
        lines = []
        for key, value in self.model_dump().items():
            if isinstance(value, bool):
                value = str(value).lower()
            elif isinstance(value, datetime):
                value = value.isoformat()
            lines.append(f"{key}: {value}")
        return "\n".join(lines)


def _timestamp(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Tool Argument Models
# ---------------------------------------------------------------------------


class ReadFileArgs(BaseModel):
    """Arguments for read_file tool."""

    path: str = Field(description="Path to the file")
    head: Optional[int] = Field(
        default=None, ge=0, description="If provided, return only the first N lines"
    )
    tail: Optional[int] = Field(
        default=None, ge=0, description="If provided, return only the last N lines"
    )


class ReadMultipleFilesArgs(BaseModel):
    """Arguments for read_multiple_files tool."""

    paths: list[str] = Field(description="Paths of the files to read")


class WriteFileArgs(BaseModel):
    """Arguments for write_file tool."""

    path: str = Field(description="Path to the file")
    content: str = Field(description="Content to write to the file")


class DeleteFileArgs(BaseModel):
    """Arguments for delete_file tool."""

    path: str = Field(description="Path to the file or directory")
    recursive: bool = Field(
        default=False, description="If true, delete directories and their contents"
    )


class EditFileArgs(BaseModel):
    """Arguments for edit_file tool."""

    path: str = Field(description="Path to the file")
    edits: list[EditOperation] = Field(description="Edits to apply, in order")
    dry_run: bool = Field(
        default=False, description="Preview changes as a diff without writing"
    )
    skip_validation: bool = Field(
        default=False, description="Write even if structural validation fails"
    )


class CreateDirectoryArgs(BaseModel):
    """Arguments for create_directory tool."""

    path: str = Field(description="Directory to create, including missing parents")


class ListDirectoryArgs(BaseModel):
    """Arguments for list_directory tool."""

    path: str = Field(description="Directory to list")


class SearchFilesArgs(BaseModel):
    """Arguments for search_files tool."""

    path: str = Field(description="Directory to search from")
    pattern: str = Field(description="Glob pattern, e.g. '*pipeline*', '*.js', '**/*test*'")
    exclude_patterns: list[str] = Field(
        default_factory=list,
        description="Globs to skip; bare names (e.g. 'node_modules') match at any depth",
    )


class GetFileInfoArgs(BaseModel):
    """Arguments for get_file_info tool."""

    path: str = Field(description="Path to the file or directory")


class MoveFileArgs(BaseModel):
    """Arguments for move_file tool."""

    source: str = Field(description="Source path")
    destination: str = Field(description="Destination path (must not exist)")


class RunCommandArgs(BaseModel):
    """Arguments for run_command tool."""

    command: str = Field(description="The shell command to execute")
    working_directory: Optional[str] = Field(
        default=None,
        description="Working directory for the command (default: first allowed directory)",
    )
    timeout: Optional[int] = Field(
        default=None, gt=0, description="Timeout in milliseconds (default: 30 seconds)"
    )
    include_stderr: bool = Field(default=True, description="Include stderr in output")


class ListAllowedDirectoriesArgs(BaseModel):
    """Arguments for list_allowed_directories tool (none)."""


TOOLS: tuple[tuple[str, type[BaseModel], str], ...] = (
    (
        "read_file",
        ReadFileArgs,
        "Read the complete contents of a text file. Use 'head' to read only the "
        "first N lines, 'tail' for the last N lines, or both to see the start and "
        "end of a long file. Only works within allowed directories.",
    ),
    (
        "read_multiple_files",
        ReadMultipleFilesArgs,
        "Read several files at once. Each file's content is returned with its path; "
        "a failed read for one file does not stop the others. "
        "Only works within allowed directories.",
    ),
    (
        "write_file",
        WriteFileArgs,
        "Create a new file or completely overwrite an existing file. The parent "
        "directory must exist. Only works within allowed directories.",
    ),
    (
        "delete_file",
        DeleteFileArgs,
        "Delete a file or directory. This cannot be undone. Non-empty directories "
        "need recursive=true. Only works within allowed directories.",
    ),
    (
        "edit_file",
        EditFileArgs,
        "Edit a text file with search/replace pairs applied in order. Each old_text "
        "is matched exactly, or line by line ignoring surrounding whitespace. The "
        "result is checked for structural errors (JSON, JS/TS, YAML, XML/HTML, "
        "Dockerfile) before writing. Returns a git-style diff. Use dry_run=true to "
        "preview. Only works within allowed directories.",
    ),
    (
        "create_directory",
        CreateDirectoryArgs,
        "Create a directory, including missing parents. Succeeds silently if it "
        "already exists. Only works within allowed directories.",
    ),
    (
        "list_directory",
        ListDirectoryArgs,
        "List the entries of a directory, marked [DIR] or [FILE]. "
        "Only works within allowed directories.",
    ),
    (
        "search_files",
        SearchFilesArgs,
        "Recursively search for files and directories matching a glob pattern "
        "such as '*pipeline*', '*.js' or '**/*test*'. Case-insensitive. Returns "
        "full paths. Only searches within allowed directories.",
    ),
    (
        "get_file_info",
        GetFileInfoArgs,
        "Get size, timestamps, type and permissions of a file or directory. "
        "Only works within allowed directories.",
    ),
    (
        "move_file",
        MoveFileArgs,
        "Move or rename a file or directory. Fails if the destination exists. "
        "Both paths must be within allowed directories.",
    ),
    (
        "run_command",
        RunCommandArgs,
        "Run a shell command and return its output. The working directory must be "
        "within the allowed directories. Commands are killed after the timeout.",
    ),
    (
        "list_allowed_directories",
        ListAllowedDirectoriesArgs,
        "List the directories this server may access. Use it before trying to "
        "access files.",
    ),
)


# ---------------------------------------------------------------------------
# FileSystemToolset Implementation
# ---------------------------------------------------------------------------


class FileSystemToolset(AbstractToolset[Any]):
    """Sandboxed filesystem toolset for PydanticAI agents.

    Provides tools: read_file, read_multiple_files, write_file, delete_file,
    edit_file, create_directory, list_directory, search_files, get_file_info,
    move_file, run_command and list_allowed_directories.
    Uses a Sandbox for path authorization.

    Example:
        # Simple usage
        toolset = FileSystemToolset.create_default("./project")

        # Several allowed directories
        sandbox = Sandbox(SandboxConfig(allowed_directories=["./src", "./docs"]))
        toolset = FileSystemToolset(sandbox)
    """

    def __init__(
        self,
        sandbox: Sandbox,
        id: Optional[str] = None,
        max_retries: int = 1,
    ):
        """Initialize the file system toolset.

        Args:
            sandbox: Sandbox for path authorization
            id: Optional toolset ID for durable execution
            max_retries: Maximum number of retries for tool calls (default: 1)
        """
        self._sandbox = sandbox
        self._toolset_id = id
        self._max_retries = max_retries

    @classmethod
    def create_default(
        cls, *directories: str | Path, id: Optional[str] = None
    ) -> "FileSystemToolset":
        """Create a toolset allowing the given directories.

        Args:
            directories: One or more existing directories
            id: Optional toolset ID

        Returns:
            FileSystemToolset over a sandbox of those directories
        """
        config = SandboxConfig(allowed_directories=[Path(d) for d in directories])
        return cls(Sandbox(config), id=id)

    @property
    def sandbox(self) -> Sandbox:
        """Access the underlying sandbox for path queries."""
        return self._sandbox

    # ---------------------------------------------------------------------------
    # File Operations
    # ---------------------------------------------------------------------------

    async def _require_file(self, path: str) -> Path:
        resolved = self._sandbox.resolve(path)
        if not await aiofiles.os.path.exists(resolved):
            raise PathNotFoundError(path, "File")
        if await aiofiles.os.path.isdir(resolved):
            raise SandboxError(f"Not a file: '{path}' is a directory.")
        return resolved

    async def _require_directory(self, path: str, what: str = "Directory") -> Path:
        resolved = self._sandbox.resolve(path)
        if not await aiofiles.os.path.exists(resolved):
            raise PathNotFoundError(path, what)
        if not await aiofiles.os.path.isdir(resolved):
            raise SandboxError(f"Not a directory: '{path}'.")
        return resolved

    async def read(
        self, path: str, head: Optional[int] = None, tail: Optional[int] = None
    ) -> str:
        """Read a text file.

        Args:
            path: Path to the file
            head: Return only the first N lines
            tail: Return only the last N lines

        Returns:
            File content, or the requested lines

        Raises:
            PathNotInSandboxError: If path outside allowed directories
            PathNotFoundError: If file doesn't exist
            SandboxError: If path is a directory or not UTF-8 text
        """
        resolved = await self._require_file(path)
        content = await read_text(resolved, path)
        return slice_lines(content, head, tail)

    async def read_many(self, paths: list[str]) -> str:
        """Read several files; a failure on one path never aborts the batch."""

        async def read_one(path: str) -> str:
            try:
                content = await self.read(path)
            except SandboxError as e:
                return f"{path}: Error - {e.message}"
            except OSError as e:
                return f"{path}: Error - {e.strerror or e}"
            return f"{path}:\n{content}\n"

        results = await asyncio.gather(*(read_one(p) for p in paths))
        return MULTI_FILE_SEPARATOR.join(results)

    async def write(self, path: str, content: str) -> str:
        """Create or overwrite a text file.

        Raises:
            PathNotInSandboxError: If path outside allowed directories
            ParentDirectoryMissingError: If the parent directory doesn't exist
        """
        resolved = self._sandbox.resolve(path)
        if await aiofiles.os.path.isdir(resolved):
            raise SandboxError(f"Cannot write '{path}': it is a directory.")
        await atomic_write(resolved, content)
        return f"Successfully wrote to {path}"

    async def delete(self, path: str, recursive: bool = False) -> str:
        """Delete a file, an empty directory, or (recursive) a directory tree.

        Raises:
            PathNotInSandboxError: If path outside allowed directories
            PathNotFoundError: If nothing exists at path
            DirectoryNotEmptyError: If a populated directory is deleted without recursive
        """
        resolved = self._sandbox.resolve(path)
        try:
            info = await aiofiles.os.stat(resolved)
        except FileNotFoundError:
            raise PathNotFoundError(path) from None

        if stat.S_ISDIR(info.st_mode):
            if recursive:
                await asyncio.to_thread(shutil.rmtree, resolved)
                return f"Successfully deleted directory {path} and its contents"
            try:
                await aiofiles.os.rmdir(resolved)
            except OSError as e:
                if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                    raise DirectoryNotEmptyError(path) from e
                raise
            return f"Successfully deleted empty directory {path}"

        await aiofiles.os.remove(resolved)
        return f"Successfully deleted file {path}"

    async def edit(
        self,
        path: str,
        edits: list[EditOperation],
        dry_run: bool = False,
        skip_validation: bool = False,
    ) -> EditResult:
        """Apply search/replace edits to a file.

        Args:
            path: Path to the file
            edits: Edits applied left to right
            dry_run: Only render the diff
            skip_validation: Skip the structural check before writing

        Returns:
            EditResult; its `report` is the fenced diff

        Raises:
            PathNotInSandboxError: If path outside allowed directories
            PathNotFoundError: If file doesn't exist
            EditError: If an edit's old_text cannot be found
            ValidationFailedError: If the edited content fails validation
        """
        resolved = await self._require_file(path)
        return await apply_file_edits(
            resolved,
            edits,
            dry_run=dry_run,
            skip_validation=skip_validation,
            display_path=str(resolved),
        )

    async def create_directory(self, path: str) -> str:
        """Create a directory and any missing parents (idempotent)."""
        resolved = self._sandbox.resolve(path, allow_missing_parents=True)
        if await aiofiles.os.path.exists(resolved) and not await aiofiles.os.path.isdir(resolved):
            raise PathExistsError(path)
        await aiofiles.os.makedirs(resolved, exist_ok=True)
        return f"Successfully created directory {path}"

    async def list_directory(self, path: str) -> list[str]:
        """List a directory's entries as '[DIR] name' / '[FILE] name', sorted by name."""
        resolved = await self._require_directory(path)
        entries = []
        for name in sorted(await aiofiles.os.listdir(resolved)):
            is_dir = await aiofiles.os.path.isdir(resolved / name)
            entries.append(f"{'[DIR]' if is_dir else '[FILE]'} {name}")
        return entries

    async def search(
        self, path: str, pattern: str, exclude_patterns: Optional[list[str]] = None
    ) -> list[str]:
        """Recursively find entries under path matching a glob pattern.

        Returns:
            Full paths of matches, in depth-first order
        """
        resolved = await self._require_directory(path)
        matches = await search_files(self._sandbox, resolved, pattern, exclude_patterns or [])
        return [str(m) for m in matches]

    async def info(self, path: str) -> FileInfo:
        """Get metadata for a file or directory."""
        resolved = self._sandbox.resolve(path)
        try:
            st = await aiofiles.os.stat(resolved)
        except FileNotFoundError:
            raise PathNotFoundError(path) from None
        return FileInfo(
            size=st.st_size,
            created=_timestamp(getattr(st, "st_birthtime", st.st_ctime)),
            modified=_timestamp(st.st_mtime),
            accessed=_timestamp(st.st_atime),
            is_directory=stat.S_ISDIR(st.st_mode),
            is_file=stat.S_ISREG(st.st_mode),
            permissions=format(st.st_mode & 0o777, "03o"),
        )

    async def move(self, source: str, destination: str) -> str:
        """Move or rename a file or directory.

        Raises:
            PathNotInSandboxError: If either path is outside allowed directories
            PathNotFoundError: If source doesn't exist
            PathExistsError: If destination already exists
        """
        src_resolved = self._sandbox.resolve(source)
        if not await aiofiles.os.path.exists(src_resolved):
            raise PathNotFoundError(source, "Source")

        dst_resolved = self._sandbox.resolve(destination)
        if await aiofiles.os.path.exists(dst_resolved) or await aiofiles.os.path.islink(
            dst_resolved
        ):
            raise PathExistsError(destination)

        await aiofiles.os.rename(src_resolved, dst_resolved)
        return f"Successfully moved {source} to {destination}"

    async def run_command(
        self,
        command: str,
        working_directory: Optional[str] = None,
        timeout: Optional[int] = None,
        include_stderr: bool = True,
    ) -> str:
        """Run a shell command inside an allowed directory.

        Args:
            command: Shell command line
            working_directory: Defaults to the first allowed directory
            timeout: Milliseconds before the command is killed
            include_stderr: Include stderr in the output

        Raises:
            PathNotInSandboxError: If working_directory is outside allowed directories
            CommandFailedError: On non-zero exit or timeout
        """
        cwd = await self._require_directory(
            working_directory or str(self._sandbox.default_directory),
            "Working directory",
        )
        config = self._sandbox.config
        result = await commands.run_command(
            command,
            cwd,
            timeout_ms=timeout or config.command_timeout_ms,
            include_stderr=include_stderr,
            max_output_bytes=config.max_command_output_bytes,
        )
        return result.render(include_stderr)

    def list_allowed_directories(self) -> list[str]:
        """The directories this toolset may access."""
        return self._sandbox.allowed_directories

    # ---------------------------------------------------------------------------
    # Dispatch
    # ---------------------------------------------------------------------------

    def tool_definitions(self) -> list[ToolDefinition]:
        """Definitions of every tool, independent of any agent run."""
        return [
            ToolDefinition(
                name=name,
                description=description,
                parameters_json_schema=args_model.model_json_schema(),
            )
            for name, args_model, description in TOOLS
        ]

    async def dispatch(self, name: str, tool_args: Any) -> str:
        """Run a tool by name and render its result as text.

        Args:
            name: Tool name
            tool_args: Either a validated model instance or a dict

        Raises:
            SandboxError: For any failure the caller can correct
            ValueError: For an unknown tool name
        """
        if name == "read_file":
            args = tool_args if isinstance(tool_args, ReadFileArgs) else ReadFileArgs(**tool_args)
            return await self.read(args.path, head=args.head, tail=args.tail)

        elif name == "read_multiple_files":
            args = (
                tool_args
                if isinstance(tool_args, ReadMultipleFilesArgs)
                else ReadMultipleFilesArgs(**tool_args)
            )
            return await self.read_many(args.paths)

        elif name == "write_file":
            args = tool_args if isinstance(tool_args, WriteFileArgs) else WriteFileArgs(**tool_args)
            return await self.write(args.path, args.content)

        elif name == "delete_file":
            args = tool_args if isinstance(tool_args, DeleteFileArgs) else DeleteFileArgs(**tool_args)
            return await self.delete(args.path, recursive=args.recursive)

        elif name == "edit_file":
            args = tool_args if isinstance(tool_args, EditFileArgs) else EditFileArgs(**tool_args)
            result = await self.edit(
                args.path,
                args.edits,
                dry_run=args.dry_run,
                skip_validation=args.skip_validation,
            )
            return result.report

        elif name == "create_directory":
            args = (
                tool_args
                if isinstance(tool_args, CreateDirectoryArgs)
                else CreateDirectoryArgs(**tool_args)
            )
            return await self.create_directory(args.path)

        elif name == "list_directory":
            args = (
                tool_args
                if isinstance(tool_args, ListDirectoryArgs)
                else ListDirectoryArgs(**tool_args)
            )
            return "\n".join(await self.list_directory(args.path))

        elif name == "search_files":
            args = tool_args if isinstance(tool_args, SearchFilesArgs) else SearchFilesArgs(**tool_args)
            matches = await self.search(args.path, args.pattern, args.exclude_patterns)
            return "\n".join(matches) if matches else "No matches found"

        elif name == "get_file_info":
            args = tool_args if isinstance(tool_args, GetFileInfoArgs) else GetFileInfoArgs(**tool_args)
            return (await self.info(args.path)).render()

        elif name == "move_file":
            args = tool_args if isinstance(tool_args, MoveFileArgs) else MoveFileArgs(**tool_args)
            return await self.move(args.source, args.destination)

        elif name == "run_command":
            args = tool_args if isinstance(tool_args, RunCommandArgs) else RunCommandArgs(**tool_args)
            return await self.run_command(
                args.command,
                working_directory=args.working_directory,
                timeout=args.timeout,
                include_stderr=args.include_stderr,
            )

        elif name == "list_allowed_directories":
            dirs = self.list_allowed_directories()
            return "Allowed directories:\n" + "\n".join(f"- {d}" for d in dirs)

        else:
            raise ValueError(f"Unknown tool: {name}")

    # ---------------------------------------------------------------------------
    # AbstractToolset Implementation
    # ---------------------------------------------------------------------------

    @property
    def id(self) -> str | None:
        """Unique identifier for this toolset."""
        return self._toolset_id

    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool[Any]]:
        """Return the tools provided by this toolset."""
        models = {name: args_model for name, args_model, _ in TOOLS}
        return {
            tool_def.name: ToolsetTool(
                toolset=self,
                tool_def=tool_def,
                max_retries=self._max_retries,
                args_validator=TypeAdapter(models[tool_def.name]).validator,
            )
            for tool_def in self.tool_definitions()
        }

    async def call_tool(
        self,
        name: str,
        tool_args: Any,
        ctx: RunContext[Any],
        tool: ToolsetTool[Any],
    ) -> Any:
        """Call a tool with the given arguments.

        Sandbox errors are handed back to the model as a retry prompt carrying
        the error message, so it can correct the call. Operating-system
        failures on an authorized path are reported the same way.
        """
        try:
            return await self.dispatch(name, tool_args)
        except SandboxError as e:
            raise ModelRetry(e.message) from e
        except OSError as e:
            raise ModelRetry(f"Operation failed: {e}") from e
