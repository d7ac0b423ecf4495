"""Alias tables and the per-process routing context shared by every resolver."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Optional

from .gateway import Gateway
from .readiness import ReadinessGate

PREFERRED_DEFAULT_ALIAS = "personal"
SYNTHETIC_DEFAULT_ALIAS = "default"


class ServerRegistry:
    """Alias -> guild ID table, keyed case-insensitively and kept in insertion order.

    Entries are fixed at construction; use :meth:`replace` to swap the whole table.
    """

    def __init__(self, servers: Optional[Mapping[str, str]] = None) -> None:
        self._entries: dict[str, tuple[str, str]] = {}
        self.replace(servers or {})

    def replace(self, servers: Mapping[str, str]) -> None:
        entries: dict[str, tuple[str, str]] = {}
        for alias, server_id in servers.items():
            entries[alias.lower()] = (alias, str(server_id))
        self._entries = entries

    def get(self, alias: str) -> Optional[str]:
        entry = self._entries.get(alias.lower())
        return entry[1] if entry else None

    def __len__(self) -> int:
        return len(self._entries)

    def items(self) -> Iterator[tuple[str, str]]:
        """Yield ``(alias, server_id)`` with aliases as originally configured."""
        for alias, server_id in self._entries.values():
            yield alias, server_id

    def aliases(self) -> list[str]:
        return [alias for alias, _ in self.items()]

    @property
    def default_alias(self) -> str:
        if PREFERRED_DEFAULT_ALIAS in self._entries:
            return self._entries[PREFERRED_DEFAULT_ALIAS][0]
        for alias, _ in self.items():
            return alias
        return SYNTHETIC_DEFAULT_ALIAS

    def is_default(self, alias: str) -> bool:
        return alias.lower() == self.default_alias.lower()


class UserMappingTable:
    """Friendly alias -> user ID. Keys are stored lower-cased; nothing is persisted."""

    def __init__(self, mappings: Optional[Mapping[str, str]] = None) -> None:
        self._mappings: dict[str, str] = {}
        for alias, user_id in (mappings or {}).items():
            self.add(alias, user_id)

    def add(self, alias: str, user_id: str) -> None:
        self._mappings[alias.lower()] = str(user_id).strip()

    def get(self, alias: str) -> Optional[str]:
        return self._mappings.get(alias.lower())

    def as_dict(self) -> dict[str, str]:
        return dict(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)


@dataclass
class BridgeContext:
    """State every resolver reads: the gateway, its readiness and the alias tables."""

    gateway: Gateway
    readiness: ReadinessGate
    servers: ServerRegistry = field(default_factory=ServerRegistry)
    users: UserMappingTable = field(default_factory=UserMappingTable)
    default_channel_id: Optional[str] = None
