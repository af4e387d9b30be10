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
Server worker: one Discord session lifecycle for one game server.

State machine:
    CONNECTING -> ACTIVE -> DISCONNECTED -> CONNECTING ... | TERMINATED

While ACTIVE the presence poller and the session's gateway loop run side by
side; whichever ends first ends the session. The worker then reconnects with
capped exponential backoff, forever, until cancelled. A syntactically invalid
bot token is the only condition that stops a worker on its own.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Tuple

import structlog

try:
    from .config import ServerConfig
    from .errors import InvalidCredential, SessionClosedError
    from .query_client import GameQueryClient
    from .discord_session import ChatSession, DiscordSession, validate_token
    from .worker_state import WorkerState, WorkerStatus
    from .bot.presence import PresencePoller
    from .bot.roster import RosterResponder, ROSTER_COMMAND_NAME, ROSTER_COMMAND_DESCRIPTION
    from .utils.rate_limiting import CommandCooldown
except ImportError:
    from config import ServerConfig
    from errors import InvalidCredential, SessionClosedError
    from query_client import GameQueryClient
    from discord_session import ChatSession, DiscordSession, validate_token
    from worker_state import WorkerState, WorkerStatus
    from bot.presence import PresencePoller
    from bot.roster import RosterResponder, ROSTER_COMMAND_NAME, ROSTER_COMMAND_DESCRIPTION
    from utils.rate_limiting import CommandCooldown

logger = structlog.get_logger()

SessionFactory = Callable[..., ChatSession]


class ServerWorker:
    """Keeps one bot account's presence in sync with one game server."""

    def __init__(
        self,
        config: ServerConfig,
        poll_interval: float,
        *,
        query_client: Optional[Any] = None,
        session_factory: Optional[SessionFactory] = None,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        reconnect_backoff: float = 2.0,
    ) -> None:
        """
        Initialize worker.

        Args:
            config: This server's configuration
            poll_interval: Seconds between presence updates (copied, never re-read)
            query_client: Game query client (a fresh GameQueryClient if None)
            session_factory: Builds a session from (server_name, token, sync_commands=...)
            reconnect_delay: First delay before reconnecting
            max_reconnect_delay: Upper bound for the reconnect delay
            reconnect_backoff: Multiplier applied after each failed attempt
        """
        self.config = config
        self.status = WorkerStatus(name=config.name, config=config, poll_interval=poll_interval)
        self.query_client = query_client if query_client is not None else GameQueryClient()
        self.session_factory: SessionFactory = session_factory or DiscordSession

        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.reconnect_backoff = reconnect_backoff
        self.current_reconnect_delay = reconnect_delay
        self.commands_synced = False

        self.poller = PresencePoller(self.status, self.query_client)
        self.responder = RosterResponder(
            server_name=config.name,
            address=config.query_address,
            query_client=self.query_client,
            cooldown=CommandCooldown(rate=5, per=30.0),
        )
        self.log = logger.bind(server=config.name)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def state(self) -> WorkerState:
        return self.status.state

    async def run(self) -> None:
        """Run until cancelled, or until the token is found to be invalid."""
        self.log.info("worker_starting", address=self.config.address, poll_interval=self.status.poll_interval)
        try:
            if not validate_token(self.config.credential):
                raise InvalidCredential(self.name)

            while True:
                error, was_active = await self._run_session()

                self.status.last_error = f"{type(error).__name__}: {error}"
                if was_active:
                    self.status.restarts += 1
                    self.status.transition(WorkerState.DISCONNECTED)
                    self.log.error(
                        "worker_session_lost",
                        error=self.status.last_error,
                        restarts=self.status.restarts,
                        retry_in=self.current_reconnect_delay,
                    )
                else:
                    self.log.error(
                        "worker_connect_failed",
                        error=self.status.last_error,
                        retry_in=self.current_reconnect_delay,
                    )

                await asyncio.sleep(self.current_reconnect_delay)
                self.current_reconnect_delay = min(
                    self.current_reconnect_delay * self.reconnect_backoff,
                    self.max_reconnect_delay,
                )
        except InvalidCredential as e:
            self.status.last_error = str(e)
            self.log.error("worker_invalid_credential", error=str(e))
        except asyncio.CancelledError:
            self.log.info("worker_cancelled")
            raise
        finally:
            self.status.transition(WorkerState.TERMINATED)
            self.log.info("worker_terminated")

    async def _run_session(self) -> Tuple[BaseException, bool]:
        """
        One CONNECTING -> ACTIVE cycle.

        Returns:
            (error that ended the cycle, whether ACTIVE was reached)
        """
        self.status.transition(WorkerState.CONNECTING)
        session = self.session_factory(
            self.name,
            self.config.credential,
            sync_commands=not self.commands_synced,
        )
        self.status.session = session
        session.on_command(ROSTER_COMMAND_NAME, ROSTER_COMMAND_DESCRIPTION, self.responder.respond)

        try:
            try:
                await session.connect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                return e, False

            self.status.transition(WorkerState.ACTIVE)
            self.current_reconnect_delay = self.reconnect_delay
            # Command tree is account-wide; later sessions reuse the first sync
            self.commands_synced = self.commands_synced or session.commands_synced
            self.log.info("worker_active")

            return await self._supervise(session), True
        finally:
            await session.close()
            self.status.session = None

    async def _supervise(self, session: ChatSession) -> BaseException:
        """Run gateway loop and poller until the first of them ends."""
        gateway_task = asyncio.create_task(session.wait_closed())
        poller_task = asyncio.create_task(self.poller.run(session))
        try:
            done, _ = await asyncio.wait(
                {gateway_task, poller_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (gateway_task, poller_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(gateway_task, poller_task, return_exceptions=True)

        finished = gateway_task if gateway_task in done else poller_task
        if finished.cancelled():
            return SessionClosedError("Session task was cancelled")
        return finished.exception() or SessionClosedError("Session ended")
