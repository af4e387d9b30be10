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


"""
A2S game server query client.

Stateless request/response over UDP using the a2s library. Every call is
bounded by its own timeout and any failure is surfaced as QueryError so
callers can map it to a user-visible sentinel.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Tuple

import a2s
import structlog

try:
    from .errors import QueryError
except ImportError:
    from errors import QueryError

logger = structlog.get_logger()

Address = Tuple[str, int]


@dataclass(frozen=True)
class ServerInfo:
    """Snapshot of an A2S_INFO reply."""

    player_count: int
    max_players: int
    map_name: str


@dataclass(frozen=True)
class PlayerRecord:
    """One entry of an A2S_PLAYER reply."""

    name: str
    score: int
    duration_seconds: int


class GameQueryClient:
    """Async A2S client with per-call timeouts."""

    def __init__(self, timeout: float = 3.0, encoding: str = "utf-8") -> None:
        """
        Initialize query client.

        Args:
            timeout: Socket timeout handed to a2s for each request
            encoding: String encoding of server replies
        """
        self.timeout = timeout
        self.encoding = encoding

    async def query_info(self, address: Address) -> ServerInfo:
        """
        Query player count, max players and map.

        Raises:
            QueryError: On timeout, unreachable host or malformed reply
        """
        try:
            info = await asyncio.wait_for(
                a2s.ainfo(address, timeout=self.timeout, encoding=self.encoding),
                timeout=self.timeout + 1.0,
            )
        except asyncio.TimeoutError:
            logger.debug("query_info_timeout", host=address[0], port=address[1], timeout=self.timeout)
            raise QueryError(f"Info query to {address[0]}:{address[1]} timed out")
        except Exception as e:
            logger.debug("query_info_failed", host=address[0], port=address[1], error=str(e))
            raise QueryError(f"Info query to {address[0]}:{address[1]} failed: {e}") from e

        result = ServerInfo(
            player_count=max(0, int(info.player_count)),
            max_players=max(0, int(info.max_players)),
            map_name=str(info.map_name),
        )
        logger.debug(
            "query_info_ok",
            host=address[0],
            port=address[1],
            players=result.player_count,
            max_players=result.max_players,
            map=result.map_name,
        )
        return result

    async def query_players(self, address: Address) -> List[PlayerRecord]:
        """
        Query the connected player roster.

        Raises:
            QueryError: On timeout, unreachable host or malformed reply
        """
        try:
            players = await asyncio.wait_for(
                a2s.aplayers(address, timeout=self.timeout, encoding=self.encoding),
                timeout=self.timeout + 1.0,
            )
        except asyncio.TimeoutError:
            logger.debug("query_players_timeout", host=address[0], port=address[1], timeout=self.timeout)
            raise QueryError(f"Player query to {address[0]}:{address[1]} timed out")
        except Exception as e:
            logger.debug("query_players_failed", host=address[0], port=address[1], error=str(e))
            raise QueryError(f"Player query to {address[0]}:{address[1]} failed: {e}") from e

        records = [
            PlayerRecord(
                name=str(player.name),
                score=int(player.score),
                duration_seconds=max(0, int(player.duration)),
            )
            for player in players
        ]
        logger.debug("query_players_ok", host=address[0], port=address[1], count=len(records))
        return records
