"""Allow `python -m mcp_discord_bridge` to run the CLI (serves stdio when no command is given)."""

from __future__ import annotations

from typing import Optional

from .cli import app


def main(argv: Optional[list[str]] = None) -> None:
    """Dispatch to the Typer CLI; ``argv`` defaults to the process arguments."""
    app(args=argv, prog_name="mcp-discord-bridge")


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
