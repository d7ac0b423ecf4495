"""Turn loose identifiers (aliases, names, raw IDs) into live Discord objects.

Every function takes the :class:`BridgeContext` explicitly and only reads the
gateway caches or asks the gateway to fetch; nothing here mutates a cache.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Optional

from .errors import ChannelNotFound, NoChannelSpecified, ServerNotFound, UserNotFound
from .registry import BridgeContext

logger = logging.getLogger(__name__)

MEMBER_SEARCH_LIMIT = 5


def _is_raw_id(value: str) -> bool:
    return value.isascii() and value.isdigit()


def _same_id(entity: Any, identifier: str) -> bool:
    return str(getattr(entity, "id", "")) == identifier


def _known_aliases(ctx: BridgeContext) -> str:
    aliases = ctx.servers.aliases()
    return ", ".join(aliases) if aliases else "(none configured)"


# -------------------------------------------------------------------------------------------------
# Servers
# -------------------------------------------------------------------------------------------------


def resolve_server(ctx: BridgeContext, identifier: Optional[str] = None) -> Any:
    """Resolve an alias, raw guild ID or guild name to a cached guild.

    Order: registry alias, all-digit raw ID, exact case-insensitive name.
    An alias whose ID is not in the cache fails right away instead of falling
    through, so a stale configuration is reported rather than papered over.
    With no identifier the registry's default alias is used.
    """
    gateway = ctx.gateway
    query = (identifier or "").strip()

    if not query:
        alias = ctx.servers.default_alias
        server_id = ctx.servers.get(alias)
        server = gateway.get_server(server_id) if server_id else None
        if server is None:
            raise ServerNotFound(
                f'Default server "{alias}" (ID: {server_id or "unset"}) not found. '
                "Is the bot a member of that server?",
                data={"alias": alias, "server_id": server_id, "aliases": ctx.servers.aliases()},
            )
        return server

    mapped_id = ctx.servers.get(query)
    if mapped_id is not None:
        server = gateway.get_server(mapped_id)
        if server is None:
            raise ServerNotFound(
                f'Server alias "{query}" maps to ID {mapped_id}, which the bot is not connected to.',
                data={"alias": query, "server_id": mapped_id, "aliases": ctx.servers.aliases()},
            )
        return server

    if _is_raw_id(query):
        server = gateway.get_server(query)
        if server is not None:
            return server

    lowered = query.lower()
    for server in gateway.cached_servers():
        if str(getattr(server, "name", "")).lower() == lowered:
            return server

    raise ServerNotFound(
        f'Server "{query}" not found. Known aliases: {_known_aliases(ctx)}',
        data={"server": query, "aliases": ctx.servers.aliases()},
    )


# -------------------------------------------------------------------------------------------------
# Channels
# -------------------------------------------------------------------------------------------------


def _match_channel(ctx: BridgeContext, channels: Sequence[Any], identifier: str) -> Any | None:
    for channel in channels:
        if _same_id(channel, identifier):
            return channel
    wanted = {identifier.lower(), identifier.removeprefix("#").lower()}
    for channel in channels:
        name = str(getattr(channel, "name", "")).lower()
        if name in wanted and ctx.gateway.is_text_channel(channel):
            return channel
    return None


async def resolve_channel(ctx: BridgeContext, identifier: str, server: Any) -> Any:
    """Find a channel in ``server`` by ID or name, refreshing the cache once on a miss."""
    query = identifier.strip()
    channel = _match_channel(ctx, ctx.gateway.cached_channels(server), query)
    if channel is not None:
        return channel

    logger.debug("channel.cache_miss", extra={"channel": query, "server": str(getattr(server, "id", ""))})
    fetched = await ctx.gateway.fetch_channels(server)
    channel = _match_channel(ctx, fetched, query)
    if channel is not None:
        return channel

    raise ChannelNotFound(
        f'Channel "{query}" not found in server "{getattr(server, "name", "?")}"',
        data={"channel": query, "server_id": str(getattr(server, "id", ""))},
    )


def _find_default_channel(ctx: BridgeContext, channel_id: str) -> Any | None:
    for server in ctx.gateway.cached_servers():
        for channel in ctx.gateway.cached_channels(server):
            if _same_id(channel, channel_id):
                return channel
    return None


async def resolve_routed_channel(
    ctx: BridgeContext,
    channel: Optional[str] = None,
    server: Optional[str] = None,
) -> Any:
    """Pick the target channel for a send/read tool.

    The server hint (or default alias) scopes an explicit channel. Without a
    channel, the configured default channel is looked up across every cached
    server, since one notification channel serves all routing targets.
    """
    await ctx.readiness.wait()
    guild = resolve_server(ctx, server)

    if channel and channel.strip():
        return await resolve_channel(ctx, channel, guild)

    if ctx.default_channel_id:
        found = _find_default_channel(ctx, ctx.default_channel_id)
        if found is not None:
            return found
        raise ChannelNotFound(
            f'Default channel "{ctx.default_channel_id}" not found in any connected server',
            data={"channel": ctx.default_channel_id},
        )

    raise NoChannelSpecified("No channel specified and no default channel set (DISCORD_DEFAULT_CHANNEL_ID)")


# -------------------------------------------------------------------------------------------------
# Users
# -------------------------------------------------------------------------------------------------


def _member_matches(member: Any, lowered: str) -> bool:
    candidates: Iterable[Optional[str]] = (
        getattr(member, "name", None),
        getattr(member, "display_name", None),
        getattr(member, "global_name", None),
    )
    return any(value is not None and value.lower() == lowered for value in candidates)


async def resolve_user(ctx: BridgeContext, identifier: str) -> Any:
    """Resolve a mapped alias, raw user ID or member name to a user that can receive DMs."""
    await ctx.readiness.wait()
    query = identifier.strip()
    gateway = ctx.gateway

    mapped_id = ctx.users.get(query)
    if mapped_id is not None:
        try:
            return await gateway.fetch_user(mapped_id)
        except Exception as exc:
            raise UserNotFound(
                f'Mapped user "{query}" (ID: {mapped_id}) not found',
                data={"user": query, "user_id": mapped_id, "error_detail": str(exc)},
            ) from exc

    if _is_raw_id(query):
        try:
            return await gateway.fetch_user(query)
        except Exception as exc:
            raise UserNotFound(
                f"User with ID {query} not found",
                data={"user": query, "error_detail": str(exc)},
            ) from exc

    lowered = query.lower()
    for alias, server_id in ctx.servers.items():
        guild = gateway.get_server(server_id)
        if guild is None:
            logger.debug("user.search_skipped", extra={"alias": alias, "server_id": server_id})
            continue
        members = await gateway.search_members(guild, query, MEMBER_SEARCH_LIMIT)
        for member in members[:MEMBER_SEARCH_LIMIT]:
            if _member_matches(member, lowered):
                return member

    raise UserNotFound(
        f'User "{query}" not found in any configured server ({_known_aliases(ctx)})',
        data={"user": query, "aliases": ctx.servers.aliases()},
    )
