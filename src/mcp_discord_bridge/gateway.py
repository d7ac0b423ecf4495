"""Thin adapter over the discord.py client.

Resolvers and tools only talk to the :class:`Gateway` protocol: cached
guild/channel views plus a handful of fetches that refresh them. Connection
management (login, heartbeat, reconnect) stays inside discord.py.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from typing import Any, Optional, Protocol

import discord
import structlog

log = structlog.get_logger("gateway")


class Gateway(Protocol):
    @property
    def user_tag(self) -> Optional[str]: ...

    def cached_servers(self) -> Sequence[Any]: ...

    def get_server(self, server_id: str) -> Any | None: ...

    def cached_channels(self, server: Any) -> Sequence[Any]: ...

    async def fetch_channels(self, server: Any) -> Sequence[Any]: ...

    def is_text_channel(self, channel: Any) -> bool: ...

    async def fetch_user(self, user_id: str) -> Any: ...

    async def search_members(self, server: Any, query: str, limit: int) -> Sequence[Any]: ...

    async def fetch_members(self, server: Any, limit: int) -> Sequence[Any]: ...

    async def fetch_history(self, channel: Any, limit: int) -> Sequence[Any]: ...


def _snowflake(value: str) -> Optional[int]:
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


class _BridgeClient(discord.Client):
    def __init__(self, on_ready: Callable[[], None], **options: Any) -> None:
        super().__init__(**options)
        self._ready_callback = on_ready

    async def on_ready(self) -> None:
        log.info("gateway.ready", user=str(self.user), guilds=len(self.guilds))
        self._ready_callback()


def default_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.guild_messages = True
    intents.message_content = True
    return intents


class DiscordGateway:
    """discord.py-backed :class:`Gateway` that logs in as a background task."""

    def __init__(self, on_ready: Callable[[], None], *, intents: Optional[discord.Intents] = None) -> None:
        self.client = _BridgeClient(on_ready, intents=intents or default_intents())
        self._task: Optional[asyncio.Task[None]] = None

    async def start(self, token: Optional[str]) -> None:
        """Begin connecting without blocking; failures are logged, never raised."""
        if not token:
            log.error("gateway.missing_token", hint="set DISCORD_TOKEN")
            return
        self._task = asyncio.create_task(self._run(token), name="discord-gateway")

    async def _run(self, token: str) -> None:
        try:
            await self.client.start(token)
        except discord.LoginFailure as exc:
            log.error("gateway.login_failed", error=str(exc))
        except (discord.DiscordException, OSError) as exc:
            log.error("gateway.connection_failed", error=type(exc).__name__, error_message=str(exc))

    async def close(self) -> None:
        with contextlib.suppress(discord.DiscordException, OSError):
            await self.client.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        log.info("gateway.closed")

    @property
    def user_tag(self) -> Optional[str]:
        return str(self.client.user) if self.client.user else None

    def cached_servers(self) -> Sequence[discord.Guild]:
        return list(self.client.guilds)

    def get_server(self, server_id: str) -> Optional[discord.Guild]:
        snowflake = _snowflake(server_id)
        if snowflake is None:
            return None
        return self.client.get_guild(snowflake)

    def cached_channels(self, server: discord.Guild) -> Sequence[discord.abc.GuildChannel]:
        return list(server.channels)

    async def fetch_channels(self, server: discord.Guild) -> Sequence[discord.abc.GuildChannel]:
        channels = await server.fetch_channels()
        log.debug("gateway.channels_fetched", guild=str(server.id), count=len(channels))
        return list(channels)

    def is_text_channel(self, channel: Any) -> bool:
        return isinstance(channel, discord.abc.Messageable) and not isinstance(channel, discord.Thread)

    async def fetch_user(self, user_id: str) -> discord.User:
        snowflake = _snowflake(user_id)
        if snowflake is None:
            raise ValueError(f"Invalid user ID {user_id!r}")
        return await self.client.fetch_user(snowflake)

    async def search_members(self, server: discord.Guild, query: str, limit: int) -> Sequence[discord.Member]:
        return await server.query_members(query=query, limit=limit)

    async def fetch_members(self, server: discord.Guild, limit: int) -> Sequence[discord.Member]:
        return [member async for member in server.fetch_members(limit=limit)]

    async def fetch_history(self, channel: discord.abc.Messageable, limit: int) -> Sequence[discord.Message]:
        return [message async for message in channel.history(limit=limit)]


def quiet_discord_logging(level: int = logging.WARNING) -> None:
    """discord.py logs every gateway event at INFO; keep stderr readable."""
    logging.getLogger("discord").setLevel(level)
