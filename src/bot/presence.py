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

"""Presence poller: mirrors a game server's player count into bot presence."""

import asyncio
from typing import Any, Optional

import structlog

try:
    from ..errors import QueryError
    from ..query_client import ServerInfo
except ImportError:
    from errors import QueryError  # type: ignore
    from query_client import ServerInfo  # type: ignore

logger = structlog.get_logger()

OFFLINE_PRESENCE = "Server Offline"


def compose_presence(info: Optional[ServerInfo]) -> str:
    """
    Build presence text from a query result.

    Args:
        info: ServerInfo, or None if the query failed

    Returns:
        "Playing {players}/{max} on map: {map}" or "Server Offline"
    """
    if info is None:
        return OFFLINE_PRESENCE
    return f"Playing {info.player_count}/{info.max_players} on map: {info.map_name}"


class PresencePoller:
    """Periodically query server info and push it as presence.

    Ticks are sequential: a query never overlaps the previous one for the same
    worker. The sleep after a tick is what remains of the interval, so a slow
    tick shortens the next wait instead of queueing extra ticks.
    """

    def __init__(self, status: Any, query_client: Any) -> None:
        """
        Initialize presence poller.

        Args:
            status: WorkerStatus of the owning worker (config, poll_interval, last_presence)
            query_client: GameQueryClient (or compatible) used for info queries
        """
        self.status = status
        self.query_client = query_client
        self.address = status.config.query_address
        self.interval = status.poll_interval

    async def poll_once(self, session: Any) -> str:
        """Run a single tick. SessionClosedError from the push propagates."""
        try:
            info = await self.query_client.query_info(self.address)
        except QueryError as e:
            logger.debug("server_query_failed", server=self.status.name, error=str(e))
            info = None

        text = compose_presence(info)
        await session.set_presence(text)

        if text != self.status.last_presence:
            logger.info("presence_updated", server=self.status.name, presence=text)
        self.status.last_presence = text
        return text

    async def run(self, session: Any) -> None:
        """Poll until cancelled or until a presence push fails."""
        loop = asyncio.get_running_loop()
        logger.info("presence_poller_started", server=self.status.name, interval=self.interval)
        try:
            while True:
                started = loop.time()
                await self.poll_once(session)
                elapsed = loop.time() - started
                await asyncio.sleep(max(0.0, self.interval - elapsed))
        except asyncio.CancelledError:
            logger.debug("presence_poller_cancelled", server=self.status.name)
            raise
        finally:
            logger.info("presence_poller_stopped", server=self.status.name)
