"""Rich-based console logging for MCP tool calls and the startup banner.

Everything prints to stderr: stdout carries the stdio MCP stream.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from rich import box
from rich.console import Console, Group, RenderableType
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

console = Console(stderr=True, soft_wrap=True)


@dataclass
class ToolCallContext:
    """Context information for a tool call."""

    tool_name: str
    kwargs: dict[str, Any]
    server: Optional[str] = None
    target: Optional[str] = None
    start_time: float = field(default_factory=time.perf_counter)
    end_time: Optional[float] = None
    result: Any = None
    error: Optional[Exception] = None
    success: bool = True
    _created_at: datetime = field(default_factory=datetime.now)

    @property
    def duration_ms(self) -> float:
        end = self.end_time if self.end_time else time.perf_counter()
        return (end - self.start_time) * 1000

    @property
    def timestamp(self) -> str:
        return self._created_at.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def _safe_json_format(data: Any, max_length: int = 2000) -> str:
    """Format data as JSON with truncation."""
    json_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    if len(json_str) > max_length:
        json_str = json_str[:max_length] + "\n... (truncated)"
    return json_str


def _syntax_panel(title: str, content: str, *, border_style: str) -> Panel:
    syntax = Syntax(content, "json", theme="monokai", line_numbers=False, word_wrap=True, background_color="default")
    return Panel(syntax, title=f"[bold]{title}[/bold]", border_style=border_style, box=box.ROUNDED, padding=(0, 1))


def _info_table(ctx: ToolCallContext) -> Table:
    table = Table(show_header=False, box=box.SIMPLE, padding=(0, 1), show_edge=False)
    table.add_column("Key", style="bold bright_yellow", width=12)
    table.add_column("Value", style="white", overflow="fold")

    table.add_row("Tool", f"[bold bright_green]{ctx.tool_name}[/bold bright_green]")
    table.add_row("Timestamp", f"[dim]{ctx.timestamp}[/dim]")
    if ctx.server:
        table.add_row("Server", f"[bright_cyan]{escape(ctx.server)}[/bright_cyan]")
    if ctx.target:
        table.add_row("Target", f"[bright_magenta]{escape(ctx.target)}[/bright_magenta]")

    if ctx.end_time:
        if ctx.duration_ms < 100:
            duration_style = "bold bright_green"
        elif ctx.duration_ms < 1000:
            duration_style = "bold yellow"
        else:
            duration_style = "bold red"
        table.add_row("Duration", f"[{duration_style}]{ctx.duration_ms:.2f}ms[/{duration_style}]")
        if ctx.success:
            table.add_row("Status", "[bold bright_green]SUCCESS[/bold bright_green]")
        else:
            table.add_row("Status", "[bold bright_red]FAILED[/bold bright_red]")
    return table


def _result_panel(ctx: ToolCallContext) -> Panel:
    if ctx.error:
        to_payload = getattr(ctx.error, "to_payload", None)
        if callable(to_payload):
            return _syntax_panel("Error Details", _safe_json_format(to_payload()), border_style="bright_red")
        error_info: dict[str, Any] = {
            "error_type": getattr(ctx.error, "error_type", type(ctx.error).__name__),
            "error_message": str(ctx.error),
        }
        if getattr(ctx.error, "data", None):
            error_info["error_data"] = ctx.error.data  # type: ignore[attr-defined]
        return _syntax_panel("Error Details", _safe_json_format(error_info), border_style="bright_red")
    return _syntax_panel("Result", _safe_json_format(ctx.result), border_style="bright_green")


def log_tool_call_start(ctx: ToolCallContext) -> None:
    """Log the start of a tool call with its arguments."""
    components: list[RenderableType] = [_info_table(ctx)]
    params = {k: v for k, v in ctx.kwargs.items() if k not in {"ctx", "context"}}
    if params:
        components.append(_syntax_panel("Input Parameters", _safe_json_format(params), border_style="bright_blue"))
    console.print(
        Panel(
            Group(*components),
            title="[bold bright_white on bright_blue]MCP TOOL CALL STARTED[/bold bright_white on bright_blue]",
            border_style="bright_blue",
            box=box.DOUBLE,
            padding=(0, 1),
        )
    )


def log_tool_call_end(ctx: ToolCallContext) -> None:
    """Log the end of a tool call with its result or error."""
    if not ctx.end_time:
        ctx.end_time = time.perf_counter()
    if ctx.success:
        title = "[bold bright_white on bright_green]MCP TOOL CALL COMPLETED[/bold bright_white on bright_green]"
        border_style = "bright_green"
    else:
        title = "[bold bright_white on bright_red]MCP TOOL CALL FAILED[/bold bright_white on bright_red]"
        border_style = "bright_red"
    console.print(
        Panel(
            Group(_info_table(ctx), _result_panel(ctx)),
            title=title,
            border_style=border_style,
            box=box.DOUBLE,
            padding=(0, 1),
        )
    )


def build_registry_table(settings: Any) -> Table:
    """Table of configured server aliases, marking the one used when no server is given."""
    from .registry import ServerRegistry

    registry = ServerRegistry(settings.discord.servers)
    table = Table(
        box=box.ROUNDED,
        border_style="bright_blue",
        header_style="bold bright_white on bright_blue",
        title="[bold bright_yellow]Server Registry[/bold bright_yellow]",
        padding=(0, 1),
    )
    table.add_column("Alias", style="bold bright_cyan")
    table.add_column("Guild ID", style="white")
    table.add_column("Default", justify="center")
    for alias, server_id in registry.items():
        table.add_row(escape(alias), server_id, "[bold bright_green]yes[/bold bright_green]" if registry.is_default(alias) else "")
    if not len(registry):
        table.add_row(f"[dim]{registry.default_alias}[/dim]", "[dim red]unset[/dim red]", "yes")
    return table


def build_user_mapping_table(settings: Any) -> Table:
    table = Table(
        box=box.ROUNDED,
        border_style="bright_magenta",
        header_style="bold bright_white on bright_magenta",
        title="[bold bright_yellow]User Mappings[/bold bright_yellow]",
        padding=(0, 1),
    )
    table.add_column("Alias", style="bold bright_cyan")
    table.add_column("User ID", style="white")
    for alias, user_id in settings.discord.user_mappings.items():
        table.add_row(escape(alias), user_id)
    return table


def display_startup_banner(settings: Any) -> None:
    """Print the bridge configuration (token masked) before the stdio loop starts."""
    console.print(Rule("[bold bright_cyan]MCP Discord Bridge[/bold bright_cyan]", style="bright_blue"))

    summary = Table(show_header=False, box=box.SIMPLE, padding=(0, 1))
    summary.add_column("Setting", style="bold bright_cyan", width=18)
    summary.add_column("Value", style="white", overflow="fold")
    summary.add_row("Environment", f"[bold bright_green]{settings.environment}[/bold bright_green]")
    summary.add_row(
        "Token",
        "[dim red]●●●●●●●●[/dim red]" if settings.discord.token else "[bold red]not set[/bold red]",
    )
    summary.add_row("Default channel", settings.discord.default_channel_id or "[dim]none[/dim]")
    summary.add_row("Ready timeout", f"{settings.discord.ready_timeout_seconds:g}s")
    summary.add_row(
        "Tool logging",
        "[bold bright_green]ENABLED[/bold bright_green]" if settings.tools_log_enabled else "[dim]disabled[/dim]",
    )

    console.print(summary)
    console.print(build_registry_table(settings))
    if settings.discord.user_mappings:
        console.print(build_user_mapping_table(settings))
    if not settings.discord.token:
        console.print(Text("DISCORD_TOKEN is not set; tool calls will time out waiting for Discord.", style="bold yellow"))
    console.print(Rule(style="bright_blue", characters="═"))
