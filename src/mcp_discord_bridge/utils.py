"""Utility helpers for shaping outbound Discord content and tool responses."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any, Optional

# Discord rejects message content longer than this many characters.
MESSAGE_LIMIT = 2000


def chunk_message(text: str, size: int = MESSAGE_LIMIT) -> list[str]:
    """Split ``text`` into consecutive fixed-size chunks; joining them restores the input."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    if len(text) <= size:
        return [text]
    return [text[start : start + size] for start in range(0, len(text), size)]


def format_code_block(code: str, language: Optional[str] = None) -> str:
    return f"```{language or ''}\n{code}\n```"


def render_code_message(code: str, language: Optional[str] = None, title: Optional[str] = None) -> str:
    block = format_code_block(code, language)
    return f"**{title}**\n{block}" if title else block


def code_attachment_name(language: Optional[str] = None) -> str:
    return f"code.{language or 'txt'}"


def clamp_limit(value: Optional[int], *, default: int, maximum: int) -> int:
    """Apply the default for missing/zero limits, then cap at ``maximum``."""
    if not value or value < 1:
        return default
    return min(int(value), maximum)


def channel_record(channel: Any) -> dict[str, Any]:
    category = getattr(channel, "category", None)
    return {
        "id": str(channel.id),
        "name": channel.name,
        "type": str(getattr(channel, "type", "unknown")),
        "category": getattr(category, "name", None) or "none",
    }


def member_record(member: Any) -> dict[str, Any]:
    return {
        "id": str(member.id),
        "username": member.name,
        "displayName": getattr(member, "display_name", member.name),
        "globalName": getattr(member, "global_name", None),
        "bot": bool(getattr(member, "bot", False)),
    }


def message_record(message: Any) -> dict[str, Any]:
    created_at = getattr(message, "created_at", None)
    return {
        "author": message.author.name,
        "content": message.content,
        "timestamp": created_at.isoformat() if created_at is not None else None,
        "attachments": [attachment.url for attachment in getattr(message, "attachments", [])],
    }


def dump_records(records: Iterable[dict[str, Any]]) -> str:
    return json.dumps(list(records), indent=2, ensure_ascii=False)
