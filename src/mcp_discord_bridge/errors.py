"""Exceptions raised while resolving identifiers and preparing Discord operations."""

from __future__ import annotations

from typing import Any, Optional


class BridgeError(Exception):
    """Base class for expected, per-call failures.

    ``error_type`` is the stable code surfaced to MCP clients; ``data`` carries
    the identifiers involved so callers can correct their arguments.
    """

    error_type = "BRIDGE_ERROR"

    def __init__(self, message: str, *, data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.data = data or {}


class ReadinessTimeout(BridgeError, TimeoutError):
    error_type = "READINESS_TIMEOUT"


class ServerNotFound(BridgeError):
    error_type = "SERVER_NOT_FOUND"


class ChannelNotFound(BridgeError):
    error_type = "CHANNEL_NOT_FOUND"


class UserNotFound(BridgeError):
    error_type = "USER_NOT_FOUND"


class NoChannelSpecified(BridgeError):
    error_type = "NO_CHANNEL_SPECIFIED"


class AttachmentNotFound(BridgeError):
    """A local file referenced by a send tool does not exist."""

    error_type = "FILE_NOT_FOUND"
