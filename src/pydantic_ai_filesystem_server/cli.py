"""CLI entry point for the filesystem MCP server."""
from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError

from .sandbox import Sandbox, SandboxConfig
from .server import serve
from .toolset import FileSystemToolset

app = typer.Typer(help="Secure MCP filesystem server")

logger = logging.getLogger(__name__)


def _config_errors(error: ValidationError) -> list[str]:
    return [str(err["msg"]).removeprefix("Value error, ") for err in error.errors()]


@app.command()
def main(
    directories: List[Path] = typer.Argument(
        ..., help="Directories the server may access (at least one)"
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
    timeout_ms: Optional[int] = typer.Option(
        None, "--timeout-ms", help="Default run_command timeout in milliseconds"
    ),
) -> None:
    """Serve sandboxed filesystem tools over MCP stdio.

    \b
    Examples:
        pydantic-ai-filesystem-server ./project
        pydantic-ai-filesystem-server ~/code ~/notes --log-level INFO
    """
    # stdout carries the MCP transport
    logging.basicConfig(
        stream=sys.stderr,
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings: dict = {"allowed_directories": directories}
    if timeout_ms is not None:
        settings["command_timeout_ms"] = timeout_ms
    try:
        config = SandboxConfig(**settings)
    except ValidationError as e:
        for message in _config_errors(e):
            typer.echo(f"Error: {message}", err=True)
        raise typer.Exit(code=1)

    logger.info("Allowed directories: %s", ", ".join(str(d) for d in config.allowed_directories))
    toolset = FileSystemToolset(Sandbox(config))
    asyncio.run(serve(toolset))


if __name__ == "__main__":
    app()
