from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Optional

import pytest

from mcp_discord_bridge.config import clear_settings_cache
from mcp_discord_bridge.readiness import ReadinessGate
from mcp_discord_bridge.registry import BridgeContext, ServerRegistry, UserMappingTable


class FakeChannel:
    """Stand-in for a discord.py guild or DM channel that records every send."""

    def __init__(
        self,
        id: int,
        name: str,
        *,
        text: bool = True,
        type: str = "text",
        category: Optional[str] = None,
    ) -> None:
        self.id = id
        self.name = name
        self.text = text
        self.type = type
        self.category = SimpleNamespace(name=category) if category else None
        self.guild: Any = None
        self.sent: list[dict[str, Any]] = []
        # Newest first, the way Discord returns history
        self.history: list[Any] = []

    async def send(self, content: Optional[str] = None, **kwargs: Any) -> Any:
        self.sent.append({"content": content, **kwargs})
        return SimpleNamespace(id=len(self.sent))


class FakeUser:
    def __init__(
        self,
        id: int,
        name: str,
        *,
        display_name: Optional[str] = None,
        global_name: Optional[str] = None,
        bot: bool = False,
    ) -> None:
        self.id = id
        self.name = name
        self.display_name = display_name or name
        self.global_name = global_name
        self.bot = bot
        self.dm = FakeChannel(id, f"dm-{name}")

    async def create_dm(self) -> FakeChannel:
        return self.dm


class FakeGuild:
    def __init__(self, id: int, name: str, channels: list[FakeChannel], members: Optional[list[FakeUser]] = None) -> None:
        self.id = id
        self.name = name
        self.channels = list(channels)
        self.members = list(members or [])
        for channel in self.channels:
            channel.guild = self


class FakeGateway:
    """In-memory gateway: ``pending`` channels only appear in the cache after a fetch."""

    user_tag = "bridge-bot#0001"

    def __init__(self, guilds: list[FakeGuild], users: Optional[dict[str, FakeUser]] = None) -> None:
        self.guilds = guilds
        self.users = users or {}
        self.pending: dict[int, list[FakeChannel]] = {}
        self.fetch_channel_calls = 0
        self.member_queries: list[tuple[int, str, int]] = []
        self.member_fetch_limits: list[int] = []
        self.history_limits: list[int] = []

    def cached_servers(self) -> list[FakeGuild]:
        return list(self.guilds)

    def get_server(self, server_id: str) -> Optional[FakeGuild]:
        for guild in self.guilds:
            if str(guild.id) == str(server_id):
                return guild
        return None

    def cached_channels(self, server: FakeGuild) -> list[FakeChannel]:
        return list(server.channels)

    async def fetch_channels(self, server: FakeGuild) -> list[FakeChannel]:
        self.fetch_channel_calls += 1
        for channel in self.pending.pop(server.id, []):
            channel.guild = server
            server.channels.append(channel)
        return list(server.channels)

    def is_text_channel(self, channel: FakeChannel) -> bool:
        return channel.text

    async def fetch_user(self, user_id: str) -> FakeUser:
        try:
            return self.users[str(user_id)]
        except KeyError:
            raise LookupError(f"404 Not Found (error code: 10013): Unknown User {user_id}") from None

    async def search_members(self, server: FakeGuild, query: str, limit: int) -> list[FakeUser]:
        self.member_queries.append((server.id, query, limit))
        lowered = query.lower()
        hits = [
            member
            for member in server.members
            if any((value or "").lower().startswith(lowered) for value in (member.name, member.display_name, member.global_name))
        ]
        return hits[:limit]

    async def fetch_members(self, server: FakeGuild, limit: int) -> list[FakeUser]:
        self.member_fetch_limits.append(limit)
        return server.members[:limit]

    async def fetch_history(self, channel: FakeChannel, limit: int) -> list[Any]:
        self.history_limits.append(limit)
        return channel.history[:limit]


def make_message(author: str, content: str, minutes_ago: int, attachments: tuple[str, ...] = ()) -> SimpleNamespace:
    created = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return SimpleNamespace(
        author=SimpleNamespace(name=author),
        content=content,
        created_at=created,
        attachments=[SimpleNamespace(url=url) for url in attachments],
    )


@pytest.fixture
def isolated_env(monkeypatch):
    """Clear bridge-related environment and the settings cache around each test."""
    for name in (
        "DISCORD_TOKEN",
        "DISCORD_SERVERS",
        "DISCORD_GUILD_ID",
        "DISCORD_DEFAULT_CHANNEL_ID",
        "DISCORD_USER_MAPPINGS",
        "DISCORD_READY_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.setenv("TOOLS_LOG_ENABLED", "false")
    monkeypatch.setenv("LOG_RICH_ENABLED", "false")
    clear_settings_cache()
    try:
        yield
    finally:
        clear_settings_cache()


@pytest.fixture
def gateway() -> FakeGateway:
    home = FakeGuild(
        111,
        "Home Lab",
        [
            FakeChannel(1001, "general", category="Text Channels"),
            FakeChannel(1002, "alerts"),
            FakeChannel(1003, "Lounge", text=False, type="voice"),
        ],
        members=[
            FakeUser(501, "alice", display_name="Alice A", global_name="Alice"),
            FakeUser(502, "bob"),
        ],
    )
    work = FakeGuild(
        222,
        "Acme Corp",
        [
            FakeChannel(2001, "general"),
            FakeChannel(2002, "deploys", category="Ops"),
        ],
        members=[
            FakeUser(601, "carol", display_name="Carol Ops"),
            FakeUser(602, "deploy-bot", bot=True),
        ],
    )
    users = {
        "501": home.members[0],
        "502": home.members[1],
        "601": work.members[0],
        "555": FakeUser(555, "bossman"),
    }
    return FakeGateway([home, work], users=users)


@pytest.fixture
def bridge(isolated_env, gateway: FakeGateway) -> BridgeContext:
    readiness = ReadinessGate(timeout=0.2)
    readiness.mark_ready()
    return BridgeContext(
        gateway=gateway,
        readiness=readiness,
        servers=ServerRegistry({"work": "222", "personal": "111", "ghost": "999"}),
        users=UserMappingTable({"Carol": "601", "stale": "404"}),
        default_channel_id="2002",
    )
