# Copyright (c) 2025 Stephen Clau
#
# This file is part of Player Count Bots.
#
# Player Count Bots is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""Roster command: on-demand player list for one game server.

Includes the responder registered on each Discord session and the pure
formatting helpers that build the monospace player table.
"""

from typing import Any, List, Optional, Sequence, Tuple

import structlog

try:
    from ..errors import QueryError
    from ..query_client import PlayerRecord
    from ..utils.rate_limiting import CommandCooldown
except ImportError:
    from errors import QueryError  # type: ignore
    from query_client import PlayerRecord  # type: ignore
    from utils.rate_limiting import CommandCooldown  # type: ignore

logger = structlog.get_logger()

ROSTER_COMMAND_NAME = "players"
ROSTER_COMMAND_DESCRIPTION = "Show the players currently on the server"
FAILURE_MESSAGE = "Failed to get player information."
UNNAMED_PLAYER = "(connecting)"
TABLE_HEADER = ("Name", "Score", "Time")

# Discord rejects messages over 2000 characters
MESSAGE_LIMIT = 2000


# ========================================================================
# FORMATTERS
# ========================================================================

def format_play_time(total_seconds: int) -> str:
    """
    Format a session duration.

    Args:
        total_seconds: Seconds connected

    Returns:
        "Hh Mm Ss" (e.g., "1h 1m 1s", "0h 0m 59s")
    """
    total_seconds = max(0, int(total_seconds))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    return f"{hours}h {minutes}m {seconds}s"


def _display_name(name: str) -> str:
    name = name.strip().replace("`", "'")
    return name or UNNAMED_PLAYER


def _render(rows: Sequence[Tuple[str, str, str]], footer: Optional[str] = None) -> str:
    table = [TABLE_HEADER, *rows]
    widths = [max(len(row[i]) for row in table) for i in range(3)]

    def line(row: Tuple[str, str, str]) -> str:
        name, score, time = row
        return f"{name.ljust(widths[0])} | {score.rjust(widths[1])} | {time}".rstrip()

    lines = [line(TABLE_HEADER), "-+-".join("-" * w for w in widths)]
    lines.extend(line(row) for row in rows)
    if footer:
        lines.append(footer)
    return "```\n" + "\n".join(lines) + "\n```"


def format_player_table(players: Sequence[PlayerRecord], limit: int = MESSAGE_LIMIT) -> str:
    """
    Build a fixed-width player table inside a code block.

    An empty roster yields the header-only table. Rows that would push the
    message past `limit` are dropped and summarized in a footer line.
    """
    rows: List[Tuple[str, str, str]] = [
        (_display_name(p.name), str(p.score), format_play_time(p.duration_seconds))
        for p in players
    ]

    text = _render(rows)
    shown = len(rows)
    while len(text) > limit and shown > 0:
        shown -= 1
        text = _render(rows[:shown], footer=f"... and {len(rows) - shown} more")
    return text


# ========================================================================
# RESPONDER
# ========================================================================

class RosterResponder:
    """Answers the roster command for one worker's server."""

    def __init__(
        self,
        server_name: str,
        address: Tuple[str, int],
        query_client: Any,
        cooldown: Optional[CommandCooldown] = None,
    ) -> None:
        """
        Initialize responder.

        Args:
            server_name: Config name of the server (for logging)
            address: (host, port) query address
            query_client: GameQueryClient (or compatible)
            cooldown: Optional per-user rate limit, owned by this responder's worker
        """
        self.server_name = server_name
        self.address = address
        self.query_client = query_client
        self.cooldown = cooldown

    async def respond(self, user_id: int = 0) -> str:
        """Produce the reply text. Never raises on query failure."""
        if self.cooldown is not None:
            limited, retry = self.cooldown.is_rate_limited(user_id)
            if limited:
                logger.info("roster_rate_limited", server=self.server_name, user_id=user_id, retry=retry)
                return f"Slow down! Try again in {retry}s."

        try:
            players = await self.query_client.query_players(self.address)
        except QueryError as e:
            logger.warning("roster_query_failed", server=self.server_name, error=str(e))
            return FAILURE_MESSAGE

        logger.info("roster_served", server=self.server_name, user_id=user_id, players=len(players))
        return format_player_table(players)
