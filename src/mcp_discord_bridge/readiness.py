"""One-shot readiness signal for the Discord gateway connection."""

from __future__ import annotations

import asyncio
from typing import Optional

from .errors import ReadinessTimeout

DEFAULT_READY_TIMEOUT_SECONDS = 15.0


class ReadinessGate:
    """Tracks whether the gateway finished its initial handshake.

    The flag only ever goes from not-ready to ready. Every tool call waits on
    the same event, so any number of concurrent invocations share one signal.
    """

    def __init__(self, timeout: float = DEFAULT_READY_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout
        self._event = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self._event.is_set()

    def mark_ready(self) -> None:
        self._event.set()

    async def wait(self, timeout: Optional[float] = None) -> None:
        if self._event.is_set():
            return
        limit = self.timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._event.wait(), timeout=limit)
        except asyncio.TimeoutError as exc:
            raise ReadinessTimeout(
                f"Discord client not ready after {limit:g}s (check DISCORD_TOKEN and gateway logs)",
                data={"timeout_seconds": limit},
            ) from exc
