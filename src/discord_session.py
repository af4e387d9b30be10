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

"""Discord session wrapper used by server workers.

One DiscordSession is one gateway connection attempt. Sessions are never
reused: a worker that loses its session builds a fresh one.

- ChatSession: the interface workers program against (fakes in tests)
- DiscordSession: discord.py implementation (presence + one slash command)
- validate_token: Discord bot token syntax check
"""

import asyncio
import base64
import binascii
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import discord
from discord import app_commands
import structlog

try:
    from .errors import SessionClosedError
except ImportError:
    from errors import SessionClosedError

logger = structlog.get_logger()

CommandHandler = Callable[[int], Awaitable[str]]


def validate_token(token: str) -> bool:
    """
    Check Discord bot token syntax.

    A token is three non-empty dot-separated segments; the first is the
    base64-encoded numeric bot user id.
    """
    if not token:
        return False

    parts = token.strip().split(".")
    if len(parts) != 3 or not all(parts):
        return False

    head = parts[0]
    try:
        decoded = base64.urlsafe_b64decode(head + "=" * (-len(head) % 4))
    except (binascii.Error, ValueError):
        return False

    return decoded.isdigit()


class ChatSession(ABC):
    """Connection to the chat platform owned by a single worker."""

    @abstractmethod
    def on_command(self, name: str, description: str, handler: CommandHandler) -> None:
        """Register a no-argument command; must be called before connect()."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Log in and wait until the session is usable."""
        pass

    @abstractmethod
    async def wait_closed(self) -> None:
        """Block while the session is alive; always ends by raising."""
        pass

    @abstractmethod
    async def set_presence(self, text: str) -> None:
        """Replace the account's presence text."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        pass

    @property
    def commands_synced(self) -> bool:
        """Whether this session published its commands to the platform."""
        return True


class _PresenceClient(discord.Client):
    """discord.Client carrying the command tree and a ready flag."""

    def __init__(
        self,
        server_name: str,
        intents: Optional[discord.Intents] = None,
        sync_commands: bool = True,
    ) -> None:
        if intents is None:
            intents = discord.Intents.default()
        super().__init__(intents=intents)
        self.server_name = server_name
        self.tree = app_commands.CommandTree(self)
        self.ready_event = asyncio.Event()
        self.sync_commands = sync_commands
        self.commands_synced = False

    async def setup_hook(self) -> None:
        """Sync slash commands unless an earlier session already did."""
        if not self.sync_commands:
            logger.debug("command_sync_skipped", server=self.server_name)
            return

        try:
            synced = await self.tree.sync()
            self.commands_synced = True
            logger.info(
                "commands_synced",
                server=self.server_name,
                commands=[cmd.name for cmd in synced],
            )
        except discord.HTTPException as e:
            logger.error("command_sync_failed", server=self.server_name, error=str(e))

    async def on_ready(self) -> None:
        """Fires when the gateway handshake completes."""
        logger.info(
            "discord_session_ready",
            server=self.server_name,
            bot_name=self.user.name if self.user else None,
            guilds=len(self.guilds),
        )
        self.ready_event.set()

    async def on_disconnect(self) -> None:
        logger.warning("discord_session_disconnected", server=self.server_name)


class DiscordSession(ChatSession):
    """One Discord bot connection for one game server."""

    def __init__(
        self,
        server_name: str,
        token: str,
        *,
        ready_timeout: float = 30.0,
        close_timeout: float = 5.0,
        intents: Optional[discord.Intents] = None,
        sync_commands: bool = True,
    ) -> None:
        """
        Initialize session.

        Args:
            server_name: Config name of the server this bot represents
            token: Discord bot token
            ready_timeout: Seconds to wait for the gateway to become ready
            close_timeout: Seconds to wait for a clean close
            intents: Discord intents (defaults if None)
            sync_commands: Publish the slash command tree during login
        """
        self.server_name = server_name
        self._token = token
        self.ready_timeout = ready_timeout
        self.close_timeout = close_timeout
        self.client = _PresenceClient(server_name, intents=intents, sync_commands=sync_commands)
        self._connection_task: Optional[asyncio.Task] = None
        self._command_lock = asyncio.Lock()

    @property
    def commands_synced(self) -> bool:
        return self.client.commands_synced

    def on_command(self, name: str, description: str, handler: CommandHandler) -> None:
        """Register a slash command whose handler returns the reply text."""
        server_name = self.server_name
        lock = self._command_lock

        async def _callback(interaction: discord.Interaction) -> None:
            await interaction.response.defer(thinking=True)
            async with lock:
                reply = await handler(interaction.user.id)
                try:
                    await interaction.followup.send(reply)
                except discord.HTTPException as e:
                    logger.warning(
                        "command_reply_failed",
                        server=server_name,
                        command=name,
                        error=str(e),
                    )

        command = app_commands.Command(name=name, description=description, callback=_callback)
        self.client.tree.add_command(command)
        logger.debug("command_registered", server=server_name, command=name)

    async def connect(self) -> None:
        """
        Log in and open the gateway.

        Raises:
            ConnectionError: Login rejected or timed out, gateway failed, or
                ready timed out
        """
        try:
            await asyncio.wait_for(self.client.login(self._token), timeout=self.ready_timeout)
        except asyncio.TimeoutError:
            raise ConnectionError(
                f"Discord login timed out after {self.ready_timeout} seconds"
            )
        except discord.LoginFailure as e:
            raise ConnectionError(f"Discord login failed: {e}") from e

        self._connection_task = asyncio.create_task(self.client.connect(reconnect=False))
        ready_task = asyncio.create_task(self.client.ready_event.wait())

        try:
            done, _ = await asyncio.wait(
                {ready_task, self._connection_task},
                timeout=self.ready_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not ready_task.done():
                ready_task.cancel()

        if ready_task in done:
            return

        if self._connection_task in done:
            error = self._connection_task.exception()
            raise ConnectionError(f"Discord gateway closed during connect: {error}")

        raise ConnectionError(
            f"Discord session not ready after {self.ready_timeout} seconds"
        )

    async def wait_closed(self) -> None:
        """
        Wait on the gateway run loop.

        Raises:
            SessionClosedError: The loop ended without an error
            Exception: Whatever ended the gateway connection
        """
        if self._connection_task is None:
            raise SessionClosedError("Session was never connected")

        await self._connection_task
        raise SessionClosedError("Discord gateway connection closed")

    async def set_presence(self, text: str) -> None:
        """Set a custom status on the bot account."""
        if self.client.is_closed() or not self.client.is_ready():
            raise SessionClosedError("Discord session is not connected")

        try:
            await self.client.change_presence(activity=discord.CustomActivity(name=text))
        except (discord.ConnectionClosed, ConnectionError) as e:
            raise SessionClosedError(f"Presence update failed: {e}") from e

    async def close(self) -> None:
        """Close the client and reap the gateway task."""
        if not self.client.is_closed():
            try:
                await asyncio.wait_for(self.client.close(), timeout=self.close_timeout)
            except asyncio.TimeoutError:
                logger.warning("discord_session_close_timeout", server=self.server_name)
            except Exception as e:
                logger.warning("discord_session_close_failed", server=self.server_name, error=str(e))

        task = self._connection_task
        if task is not None:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug("discord_gateway_task_error", server=self.server_name, error=str(e))
            elif not task.cancelled():
                task.exception()
            self._connection_task = None

        logger.debug("discord_session_closed", server=self.server_name)
