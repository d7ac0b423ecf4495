"""Command-line interface for running and inspecting the Discord bridge."""

from __future__ import annotations

import logging
import sys

import structlog
import typer
from rich.console import Console

from . import rich_logger
from .app import build_mcp_server
from .config import Settings, get_settings
from .gateway import quiet_discord_logging
from .registry import ServerRegistry

console = Console(stderr=True)

_LOGGING_CONFIGURED = False

app = typer.Typer(help="MCP server exposing Discord messaging tools over stdio.", invoke_without_command=True)


@app.callback()
def _app_callback(ctx: typer.Context) -> None:
    """Default to ``serve-stdio`` when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        serve_stdio()


def _configure_logging(settings: Settings) -> None:
    """Initialize structlog and stdlib logging; everything goes to stderr."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event", "level"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # stdout carries the MCP stdio stream
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    quiet_discord_logging()
    _LOGGING_CONFIGURED = True


@app.command("serve-stdio")
def serve_stdio() -> None:
    """Run the MCP server over stdio.

    The host process (e.g. an MCP-capable editor or agent) spawns this command
    and talks JSON-RPC over stdin/stdout. Discord login happens in the
    background; tool calls wait for the gateway to become ready.
    """
    settings = get_settings()
    _configure_logging(settings)
    if settings.log_rich_enabled:
        rich_logger.display_startup_banner(settings)

    server = build_mcp_server()
    server.run(transport="stdio")


@app.command("config")
def show_config() -> None:
    """Show the server registry, default channel and user mappings without connecting."""
    settings = get_settings()
    registry = ServerRegistry(settings.discord.servers)
    console.print(rich_logger.build_registry_table(settings))
    console.print(f"Default alias: [bold]{registry.default_alias}[/bold]")
    console.print(f"Default channel: {settings.discord.default_channel_id or 'none'}")
    console.print(rich_logger.build_user_mapping_table(settings))
    if not settings.discord.token:
        console.print("[yellow]DISCORD_TOKEN is not set[/yellow]")
