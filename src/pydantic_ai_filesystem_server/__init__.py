"""Sandboxed filesystem tools for PydanticAI agents and MCP clients.

This package provides a sandboxed filesystem with:
- Sandbox: Allow-list boundary for path resolution and containment checks
- FileSystemToolset: File I/O tools (read, write, edit, search, move, run_command)
- Syntax validation that keeps structurally broken edits off disk
- An MCP stdio server exposing the same tools
- LLM-friendly error messages that guide correction

Architecture:
    Sandbox handles policy (which paths may be touched).
    FileSystemToolset handles file I/O and implements AbstractToolset.
    server.serve() publishes the toolset's tools over MCP.

Usage (simple):
    from pydantic_ai_filesystem_server import FileSystemToolset

    toolset = FileSystemToolset.create_default("./data")
    agent = Agent(..., toolsets=[toolset])

Usage (custom sandbox):
    from pydantic_ai_filesystem_server import (
        FileSystemToolset, Sandbox, SandboxConfig
    )

    config = SandboxConfig(
        allowed_directories=["./src", "./docs"],
        command_timeout_ms=10_000,
    )
    toolset = FileSystemToolset(Sandbox(config))
    agent = Agent(..., toolsets=[toolset])

Usage (MCP server):
    pydantic-ai-filesystem-server ./src ./docs --log-level INFO
"""

__version__ = "0.1.0"

from .sandbox import (
    # Configuration
    SandboxConfig,
    # Sandbox
    Sandbox,
    # Errors
    SandboxError,
    PathNotInSandboxError,
    ParentDirectoryMissingError,
    PathNotFoundError,
    PathExistsError,
    DirectoryNotEmptyError,
    EditError,
    ValidationFailedError,
    CommandFailedError,
)
from .syntax import (
    FileType,
    ValidationOutcome,
    detect_file_type,
    validate,
)
from .editing import (
    EditOperation,
    EditResult,
    apply_edits,
    apply_file_edits,
    create_unified_diff,
)
from .search import glob_match, search_files
from .commands import CommandResult, run_command
from .toolset import (
    FileSystemToolset,
    FileInfo,
    # Tool argument models
    ReadFileArgs,
    ReadMultipleFilesArgs,
    WriteFileArgs,
    DeleteFileArgs,
    EditFileArgs,
    CreateDirectoryArgs,
    ListDirectoryArgs,
    SearchFilesArgs,
    GetFileInfoArgs,
    MoveFileArgs,
    RunCommandArgs,
    ListAllowedDirectoriesArgs,
)

__all__ = [
    "__version__",
    # Configuration
    "SandboxConfig",
    # Sandbox
    "Sandbox",
    # Errors
    "SandboxError",
    "PathNotInSandboxError",
    "ParentDirectoryMissingError",
    "PathNotFoundError",
    "PathExistsError",
    "DirectoryNotEmptyError",
    "EditError",
    "ValidationFailedError",
    "CommandFailedError",
    # Validation
    "FileType",
    "ValidationOutcome",
    "detect_file_type",
    "validate",
    # Editing
    "EditOperation",
    "EditResult",
    "apply_edits",
    "apply_file_edits",
    "create_unified_diff",
    # Search and commands
    "glob_match",
    "search_files",
    "CommandResult",
    "run_command",
    # Toolset
    "FileSystemToolset",
    "FileInfo",
    "ReadFileArgs",
    "ReadMultipleFilesArgs",
    "WriteFileArgs",
    "DeleteFileArgs",
    "EditFileArgs",
    "CreateDirectoryArgs",
    "ListDirectoryArgs",
    "SearchFilesArgs",
    "GetFileInfoArgs",
    "MoveFileArgs",
    "RunCommandArgs",
    "ListAllowedDirectoriesArgs",
]
