from __future__ import annotations

import pytest

from conftest import FakeChannel
from mcp_discord_bridge.errors import ChannelNotFound, NoChannelSpecified, ServerNotFound, UserNotFound
from mcp_discord_bridge.readiness import ReadinessGate
from mcp_discord_bridge.registry import BridgeContext, ServerRegistry
from mcp_discord_bridge.resolvers import (
    MEMBER_SEARCH_LIMIT,
    resolve_channel,
    resolve_routed_channel,
    resolve_server,
    resolve_user,
)

# ============================================================================
# Server resolver
# ============================================================================


@pytest.mark.parametrize("alias", ["work", "personal"])
def test_resolve_server_alias_is_case_insensitive(bridge, alias):
    assert resolve_server(bridge, alias) is resolve_server(bridge, alias.upper())


def test_resolve_server_without_identifier_uses_default_alias(bridge):
    assert bridge.servers.default_alias == "personal"
    assert resolve_server(bridge) is resolve_server(bridge, "personal")
    assert resolve_server(bridge, "   ").id == 111


def test_resolve_server_by_raw_id_and_by_name(bridge):
    assert resolve_server(bridge, "222").name == "Acme Corp"
    assert resolve_server(bridge, "acme corp").id == 222


def test_dangling_alias_fails_fast_with_alias_and_id(bridge):
    with pytest.raises(ServerNotFound) as exc:
        resolve_server(bridge, "Ghost")
    message = str(exc.value)
    assert "Ghost" in message and "999" in message


def test_unknown_server_lists_known_aliases(bridge):
    with pytest.raises(ServerNotFound) as exc:
        resolve_server(bridge, "nowhere")
    message = str(exc.value)
    assert '"nowhere"' in message
    for alias in ("work", "personal", "ghost"):
        assert alias in message
    assert exc.value.data["aliases"] == ["work", "personal", "ghost"]


def test_unknown_raw_id_falls_through_to_failure(bridge):
    with pytest.raises(ServerNotFound, match="123456"):
        resolve_server(bridge, "123456")


@pytest.mark.parametrize("identifier", ["²", "١١١", "１１１"])
def test_non_ascii_digits_are_not_raw_ids(bridge, identifier):
    with pytest.raises(ServerNotFound) as exc:
        resolve_server(bridge, identifier)
    assert identifier in str(exc.value)
    assert exc.value.data["aliases"] == ["work", "personal", "ghost"]


def test_default_alias_missing_from_cache_reports_default(gateway):
    ctx = BridgeContext(gateway=gateway, readiness=ReadinessGate(), servers=ServerRegistry({"solo": "42"}))
    with pytest.raises(ServerNotFound) as exc:
        resolve_server(ctx)
    assert "solo" in str(exc.value) and "42" in str(exc.value)


def test_empty_registry_reports_synthetic_default(gateway):
    ctx = BridgeContext(gateway=gateway, readiness=ReadinessGate())
    with pytest.raises(ServerNotFound, match='"default"'):
        resolve_server(ctx)


# ============================================================================
# Channel resolver
# ============================================================================


@pytest.mark.asyncio
async def test_resolve_channel_by_id_name_and_hash(bridge, gateway):
    home = gateway.guilds[0]
    assert (await resolve_channel(bridge, "1002", home)).name == "alerts"
    assert (await resolve_channel(bridge, "General", home)).id == 1001
    assert (await resolve_channel(bridge, "#alerts", home)).id == 1002
    assert gateway.fetch_channel_calls == 0


@pytest.mark.asyncio
async def test_resolve_channel_name_match_skips_non_text_channels(bridge, gateway):
    home = gateway.guilds[0]
    with pytest.raises(ChannelNotFound, match="lounge"):
        await resolve_channel(bridge, "lounge", home)
    # ID lookups are not restricted by channel kind
    assert (await resolve_channel(bridge, "1003", home)).name == "Lounge"


@pytest.mark.asyncio
async def test_resolve_channel_refreshes_once_on_cache_miss(bridge, gateway):
    home = gateway.guilds[0]
    gateway.pending[home.id] = [FakeChannel(1010, "fresh-channel")]

    channel = await resolve_channel(bridge, "fresh-channel", home)

    assert channel.id == 1010
    assert gateway.fetch_channel_calls == 1


@pytest.mark.asyncio
async def test_resolve_channel_miss_after_refresh_names_identifier(bridge, gateway):
    with pytest.raises(ChannelNotFound) as exc:
        await resolve_channel(bridge, "#missing", gateway.guilds[1])
    assert "#missing" in str(exc.value)
    assert "Acme Corp" in str(exc.value)
    assert gateway.fetch_channel_calls == 1


# ============================================================================
# Routing context
# ============================================================================


@pytest.mark.asyncio
async def test_routed_channel_scopes_name_to_server_hint(bridge):
    personal = await resolve_routed_channel(bridge, "general")
    work = await resolve_routed_channel(bridge, "general", "WORK")
    assert personal.id == 1001
    assert work.id == 2001


@pytest.mark.asyncio
async def test_default_channel_is_found_across_servers(bridge):
    # Default channel 2002 lives in "work" while routing defaults to "personal"
    channel = await resolve_routed_channel(bridge)
    assert channel.id == 2002
    assert channel.guild.name == "Acme Corp"


@pytest.mark.asyncio
async def test_no_channel_and_no_default_fails(bridge):
    bridge.default_channel_id = None
    with pytest.raises(NoChannelSpecified):
        await resolve_routed_channel(bridge, None, "work")


@pytest.mark.asyncio
async def test_configured_default_channel_missing_everywhere(bridge):
    bridge.default_channel_id = "7777"
    with pytest.raises(ChannelNotFound, match="7777"):
        await resolve_routed_channel(bridge)


@pytest.mark.asyncio
async def test_server_failure_propagates_before_channel_lookup(bridge, gateway):
    with pytest.raises(ServerNotFound):
        await resolve_routed_channel(bridge, "general", "nowhere")
    assert gateway.fetch_channel_calls == 0


# ============================================================================
# User resolver
# ============================================================================


@pytest.mark.asyncio
async def test_resolve_user_via_mapping_any_case(bridge):
    assert (await resolve_user(bridge, "CAROL")).id == 601


@pytest.mark.asyncio
async def test_stale_mapping_is_reported_not_bypassed(bridge, gateway):
    with pytest.raises(UserNotFound) as exc:
        await resolve_user(bridge, "stale")
    assert "stale" in str(exc.value) and "404" in str(exc.value)
    assert gateway.member_queries == []


@pytest.mark.asyncio
async def test_resolve_user_by_raw_id(bridge):
    assert (await resolve_user(bridge, "502")).name == "bob"
    with pytest.raises(UserNotFound, match="9999"):
        await resolve_user(bridge, "9999")


@pytest.mark.asyncio
async def test_member_search_walks_servers_in_registry_order(bridge, gateway):
    user = await resolve_user(bridge, "alice")

    assert user.id == 501
    # "work" is first in the registry, so it is searched before "personal"; "ghost" is skipped
    assert [query[0] for query in gateway.member_queries] == [222, 111]
    assert all(query[2] == MEMBER_SEARCH_LIMIT for query in gateway.member_queries)


@pytest.mark.asyncio
async def test_member_search_matches_display_and_global_names(bridge):
    assert (await resolve_user(bridge, "carol ops")).id == 601
    assert (await resolve_user(bridge, "ALICE")).id == 501


@pytest.mark.asyncio
async def test_member_search_requires_exact_match(bridge):
    with pytest.raises(UserNotFound, match='"ali"'):
        await resolve_user(bridge, "ali")
