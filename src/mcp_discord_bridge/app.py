"""Application factory for the MCP Discord bridge server."""
# ruff: noqa: A002

from __future__ import annotations

import inspect
import io
import logging
import time
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from functools import wraps
from pathlib import Path
from typing import Any, AsyncContextManager, Callable, Optional

import discord
from fastmcp import Context, FastMCP
from fastmcp.exceptions import ToolError

from . import rich_logger
from .config import Settings, get_settings
from .errors import AttachmentNotFound, BridgeError
from .gateway import DiscordGateway
from .readiness import ReadinessGate
from .registry import BridgeContext, ServerRegistry, UserMappingTable
from .resolvers import resolve_routed_channel, resolve_server, resolve_user
from .utils import (
    MESSAGE_LIMIT,
    channel_record,
    chunk_message,
    clamp_limit,
    code_attachment_name,
    dump_records,
    format_code_block,
    member_record,
    message_record,
    render_code_message,
)

logger = logging.getLogger(__name__)

TOOL_METRICS: defaultdict[str, dict[str, int]] = defaultdict(lambda: {"calls": 0, "errors": 0})

MEMBER_LIMIT_DEFAULT = 50
MEMBER_LIMIT_MAX = 100
HISTORY_LIMIT_DEFAULT = 10
HISTORY_LIMIT_MAX = 50


class ToolExecutionError(ToolError):
    """Uniform failure raised out of every tool; FastMCP reports it as an ``isError`` result."""

    def __init__(self, error_type: str, message: str, *, recoverable: bool = True, data: Optional[dict[str, Any]] = None):
        super().__init__(f"{error_type}: {message}")
        self.error_type = error_type
        self.message = message
        self.recoverable = recoverable
        self.data = data or {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": self.message,
                "recoverable": self.recoverable,
                "data": self.data,
            }
        }


def _record_tool_error(tool_name: str, exc: Exception) -> None:
    logger.warning(
        "tool_error",
        extra={
            "tool": tool_name,
            "error": type(exc).__name__,
            "error_message": str(exc),
        },
    )


def _wrap_exception(tool_name: str, exc: Exception) -> ToolExecutionError:
    if isinstance(exc, BridgeError):
        return ToolExecutionError(exc.error_type, str(exc), data={"tool": tool_name, **exc.data})
    if isinstance(exc, discord.Forbidden):
        return ToolExecutionError(
            "REMOTE_OPERATION_FAILED",
            f"Discord denied the request (missing permissions?): {exc.text or exc}",
            recoverable=False,
            data={"tool": tool_name, "status": exc.status, "code": exc.code},
        )
    if isinstance(exc, discord.HTTPException):
        return ToolExecutionError(
            "REMOTE_OPERATION_FAILED",
            f"Discord API error {exc.status}: {exc.text or exc}",
            data={"tool": tool_name, "status": exc.status, "code": exc.code},
        )
    if isinstance(exc, discord.DiscordException):
        return ToolExecutionError(
            "REMOTE_OPERATION_FAILED",
            f"Discord client error: {exc}",
            data={"tool": tool_name, "original_error": type(exc).__name__},
        )
    if isinstance(exc, ValueError):
        return ToolExecutionError(
            "INVALID_ARGUMENT",
            f"Invalid argument value: {exc}",
            data={"tool": tool_name, "error_detail": str(exc)},
        )
    if isinstance(exc, OSError):
        return ToolExecutionError(
            "OS_ERROR",
            f"OS error: {exc}",
            recoverable=False,
            data={"tool": tool_name, "errno": exc.errno, "error_detail": str(exc)},
        )
    return ToolExecutionError(
        "UNHANDLED_EXCEPTION",
        f"Unexpected error ({type(exc).__name__}): {exc}",
        recoverable=False,
        data={"tool": tool_name, "original_error": type(exc).__name__, "error_detail": str(exc)},
    )


def _instrument_tool(
    tool_name: str,
    *,
    server_arg: Optional[str] = None,
    target_arg: Optional[str] = None,
) -> Callable[[Any], Any]:
    """Single dispatch boundary: metrics, optional Rich panels, and error normalization."""

    def decorator(func: Any) -> Any:
        signature = inspect.signature(func)

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            metrics = TOOL_METRICS[tool_name]
            metrics["calls"] += 1
            bound = signature.bind_partial(*args, **kwargs)
            settings = get_settings()

            log_ctx = None
            if settings.tools_log_enabled:
                try:
                    log_ctx = rich_logger.ToolCallContext(
                        tool_name=tool_name,
                        kwargs={k: v for k, v in bound.arguments.items() if k != "ctx"},
                        server=bound.arguments.get(server_arg) if server_arg else None,
                        target=bound.arguments.get(target_arg) if target_arg else None,
                    )
                    rich_logger.log_tool_call_start(log_ctx)
                except Exception:
                    # Logging errors should not break tool execution
                    log_ctx = None

            result = None
            error: Optional[Exception] = None
            try:
                result = await func(*args, **kwargs)
            except ToolExecutionError as exc:
                metrics["errors"] += 1
                _record_tool_error(tool_name, exc)
                error = exc
                raise
            except Exception as exc:
                metrics["errors"] += 1
                _record_tool_error(tool_name, exc)
                wrapped_exc = _wrap_exception(tool_name, exc)
                error = wrapped_exc
                raise wrapped_exc from exc
            finally:
                if log_ctx is not None:
                    with suppress(Exception):
                        log_ctx.end_time = time.perf_counter()
                        log_ctx.result = result
                        log_ctx.error = error
                        log_ctx.success = error is None
                        rich_logger.log_tool_call_end(log_ctx)
            return result

        # Preserve annotations so FastMCP can infer the schema
        with suppress(Exception):
            wrapper.__annotations__ = getattr(func, "__annotations__", {})
        return wrapper

    return decorator


def _tool_metrics_snapshot() -> list[dict[str, Any]]:
    return [{"name": name, "calls": data["calls"], "errors": data["errors"]} for name, data in sorted(TOOL_METRICS.items())]


def _require_file(raw_path: str, *, kind: str = "File") -> Path:
    path = Path(raw_path).expanduser()
    if not path.is_file():
        raise AttachmentNotFound(f"{kind} not found: {raw_path}", data={"path": raw_path})
    return path


def build_context(settings: Settings) -> BridgeContext:
    """Wire a discord.py gateway, its readiness gate and the configured alias tables."""
    readiness = ReadinessGate(timeout=settings.discord.ready_timeout_seconds)
    gateway = DiscordGateway(on_ready=readiness.mark_ready)
    return BridgeContext(
        gateway=gateway,
        readiness=readiness,
        servers=ServerRegistry(settings.discord.servers),
        users=UserMappingTable(settings.discord.user_mappings),
        default_channel_id=settings.discord.default_channel_id,
    )


def _lifespan_factory(settings: Settings, bridge: BridgeContext) -> Callable[[FastMCP], AsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: FastMCP) -> AsyncIterator[None]:
        gateway = bridge.gateway
        if isinstance(gateway, DiscordGateway):
            await gateway.start(settings.discord.token)
        try:
            yield
        finally:
            if isinstance(gateway, DiscordGateway):
                await gateway.close()

    return lifespan


def build_mcp_server(context: Optional[BridgeContext] = None) -> FastMCP:
    """Create and configure the FastMCP server instance.

    Pass ``context`` to run against an already-wired gateway (tests inject a
    fake); otherwise a discord.py gateway is created and logged in during the
    server lifespan.
    """
    settings: Settings = get_settings()
    bridge = context or build_context(settings)
    lifespan = _lifespan_factory(settings, bridge)

    instructions = (
        "You are the MCP Discord bridge. Send messages, code, files, images and DMs to Discord, "
        "and list channels, members, servers and recent messages. Channels accept a name or ID; "
        "the optional `server` argument accepts a configured alias, guild ID or guild name and "
        "defaults to the configured default server."
    )

    mcp = FastMCP(name="mcp-discord-bridge", instructions=instructions, lifespan=lifespan)

    @mcp.tool(name="discord_send_message")
    @_instrument_tool("discord_send_message", server_arg="server", target_arg="channel")
    async def discord_send_message(
        ctx: Context,
        message: str,
        channel: Optional[str] = None,
        server: Optional[str] = None,
    ) -> str:
        """
        Send a text message to a Discord channel.

        Use a channel name (e.g. 'general') or channel ID. Without a channel the
        configured default channel is used. `server` is an alias, guild ID or
        guild name (defaults to the default server). Messages longer than 2000
        characters are sent as consecutive parts.
        """
        await bridge.readiness.wait()
        target = await resolve_routed_channel(bridge, channel, server)
        chunks = chunk_message(message)
        for chunk in chunks:
            await target.send(chunk)
        if len(chunks) > 1:
            return f"Message sent to #{target.name} in {len(chunks)} parts"
        return f"Message sent to #{target.name}"

    @mcp.tool(name="discord_send_code")
    @_instrument_tool("discord_send_code", server_arg="server", target_arg="channel")
    async def discord_send_code(
        ctx: Context,
        code: str,
        language: Optional[str] = None,
        title: Optional[str] = None,
        channel: Optional[str] = None,
        server: Optional[str] = None,
    ) -> str:
        """
        Send a formatted code snippet with syntax highlighting.

        Snippets that do not fit in a single message are attached as
        `code.<language>` (or `code.txt`) instead of being split.
        """
        await bridge.readiness.wait()
        target = await resolve_routed_channel(bridge, channel, server)
        rendered = render_code_message(code, language, title)
        if len(rendered) > MESSAGE_LIMIT:
            filename = code_attachment_name(language)
            attachment = discord.File(io.BytesIO(code.encode("utf-8")), filename=filename)
            await target.send(content=f"**{title}**" if title else None, file=attachment)
            return f"Code snippet sent to #{target.name} as attachment {filename}"
        await target.send(rendered)
        return f"Code snippet sent to #{target.name}"

    @mcp.tool(name="discord_send_file")
    @_instrument_tool("discord_send_file", server_arg="server", target_arg="channel")
    async def discord_send_file(
        ctx: Context,
        file_path: str,
        message: Optional[str] = None,
        channel: Optional[str] = None,
        server: Optional[str] = None,
    ) -> str:
        """Send a file from the local filesystem to a Discord channel, with an optional message."""
        await bridge.readiness.wait()
        target = await resolve_routed_channel(bridge, channel, server)
        path = _require_file(file_path)
        await target.send(content=message or None, file=discord.File(str(path), filename=path.name))
        return f'File "{path.name}" sent to #{target.name}'

    @mcp.tool(name="discord_send_image")
    @_instrument_tool("discord_send_image", server_arg="server", target_arg="channel")
    async def discord_send_image(
        ctx: Context,
        image_path: str,
        message: Optional[str] = None,
        channel: Optional[str] = None,
        server: Optional[str] = None,
    ) -> str:
        """Send a local image as an embedded picture; `message` becomes the embed title."""
        await bridge.readiness.wait()
        target = await resolve_routed_channel(bridge, channel, server)
        path = _require_file(image_path, kind="Image")
        embed = discord.Embed(title=message) if message else discord.Embed()
        embed.set_image(url=f"attachment://{path.name}")
        await target.send(embed=embed, file=discord.File(str(path), filename=path.name))
        return f'Image "{path.name}" sent to #{target.name}'

    @mcp.tool(name="discord_send_dm")
    @_instrument_tool("discord_send_dm", target_arg="user")
    async def discord_send_dm(
        ctx: Context,
        user: str,
        message: str,
        code: Optional[str] = None,
        language: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> str:
        """
        Send a direct message to a user by mapped alias, user ID, username or display name.

        Optionally append a code block and attach a local file.
        """
        await bridge.readiness.wait()
        recipient = await resolve_user(bridge, user)
        parts = [message] if message else []
        if code:
            parts.append(format_code_block(code, language))
        path = _require_file(file_path) if file_path else None
        dm_channel = await recipient.create_dm()
        # discord.File opens the path right away; send() closes it
        attachment = discord.File(str(path), filename=path.name) if path is not None else None
        await dm_channel.send(content="\n".join(parts) or None, file=attachment)
        return f"DM sent to {recipient.name} ({recipient.id})"

    @mcp.tool(name="discord_list_channels")
    @_instrument_tool("discord_list_channels", server_arg="server")
    async def discord_list_channels(ctx: Context, server: Optional[str] = None) -> str:
        """List the text channels of a server (default server unless `server` is given)."""
        await bridge.readiness.wait()
        guild = resolve_server(bridge, server)
        channels = await bridge.gateway.fetch_channels(guild)
        records = [channel_record(channel) for channel in channels if bridge.gateway.is_text_channel(channel)]
        return dump_records(records)

    @mcp.tool(name="discord_list_members")
    @_instrument_tool("discord_list_members", server_arg="server")
    async def discord_list_members(
        ctx: Context,
        server: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> str:
        """List server members (default 50, max 100). Useful for finding user IDs for DMs."""
        await bridge.readiness.wait()
        guild = resolve_server(bridge, server)
        capped = clamp_limit(limit, default=MEMBER_LIMIT_DEFAULT, maximum=MEMBER_LIMIT_MAX)
        members = await bridge.gateway.fetch_members(guild, capped)
        return dump_records(member_record(member) for member in members)

    @mcp.tool(name="discord_list_servers")
    @_instrument_tool("discord_list_servers")
    async def discord_list_servers(ctx: Context) -> str:
        """List configured server aliases, their guild IDs and whether the bot is connected."""
        await bridge.readiness.wait()
        records = []
        for alias, server_id in bridge.servers.items():
            guild = bridge.gateway.get_server(server_id)
            records.append(
                {
                    "alias": alias,
                    "id": server_id,
                    "name": guild.name if guild is not None else "not connected",
                    "isDefault": bridge.servers.is_default(alias),
                }
            )
        return dump_records(records)

    @mcp.tool(name="discord_read_messages")
    @_instrument_tool("discord_read_messages", server_arg="server", target_arg="channel")
    async def discord_read_messages(
        ctx: Context,
        channel: str,
        server: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> str:
        """Read recent messages from a channel, oldest first (default 10, max 50)."""
        await bridge.readiness.wait()
        target = await resolve_routed_channel(bridge, channel, server)
        capped = clamp_limit(limit, default=HISTORY_LIMIT_DEFAULT, maximum=HISTORY_LIMIT_MAX)
        newest_first = await bridge.gateway.fetch_history(target, capped)
        return dump_records(message_record(item) for item in reversed(list(newest_first)))

    @mcp.tool(name="discord_add_user_mapping")
    @_instrument_tool("discord_add_user_mapping", target_arg="alias")
    async def discord_add_user_mapping(ctx: Context, alias: str, user_id: str) -> str:
        """Map a friendly alias (e.g. "boss") to a Discord user ID for DMs. Lasts for this session only."""
        await bridge.readiness.wait()
        if not alias.strip() or not user_id.strip():
            raise ValueError("alias and user_id must be non-empty")
        bridge.users.add(alias.strip(), user_id)
        return f'Mapped "{alias}" -> {user_id.strip()}. Note: this mapping lasts for this session only.'

    @mcp.tool(name="health_check", description="Return readiness and routing information for the Discord bridge.")
    @_instrument_tool("health_check")
    async def health_check(ctx: Context) -> dict[str, Any]:
        """Report gateway readiness without waiting for it."""
        with suppress(Exception):
            await ctx.info("Running health check.")
        return {
            "status": "ok" if bridge.readiness.is_ready else "connecting",
            "environment": settings.environment,
            "bot_user": bridge.gateway.user_tag,
            "connected_servers": len(bridge.gateway.cached_servers()),
            "aliases": bridge.servers.aliases(),
            "default_alias": bridge.servers.default_alias,
            "default_channel_id": bridge.default_channel_id,
            "user_mappings": bridge.users.as_dict(),
            "tool_metrics": _tool_metrics_snapshot(),
        }

    return mcp
