"""Shared pytest fixtures.

Provides:
- sys.path setup so tests import the flat modules under src/
- FakeQueryClient: scripted stand-in for the A2S query client
- FakeSession: in-memory ChatSession with controllable connect/drop behavior
- Server config fixtures with syntactically valid bot tokens
"""

import asyncio
import base64
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

# Add src/ to Python path for absolute imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from config import ServerConfig  # noqa: E402
from discord_session import ChatSession  # noqa: E402
from errors import QueryError, SessionClosedError  # noqa: E402
from query_client import PlayerRecord, ServerInfo  # noqa: E402


def make_token(user_id: int = 123456789012345678) -> str:
    """Build a token that passes the Discord syntax check."""
    head = base64.urlsafe_b64encode(str(user_id).encode()).decode().rstrip("=")
    return f"{head}.GhIjKl.MnOpQrStUvWxYz0123456789abcdefgh"


class FakeQueryClient:
    """Query client returning scripted results.

    Each entry of `info_results` / `player_results` is either a value to
    return or an exception instance to raise. The last entry repeats.
    """

    def __init__(
        self,
        info_results: Optional[List[Any]] = None,
        player_results: Optional[List[Any]] = None,
    ) -> None:
        self.info_results = info_results or [ServerInfo(0, 0, "none")]
        self.player_results = player_results or [[]]
        self.info_calls: List[Any] = []
        self.player_calls: List[Any] = []

    @staticmethod
    def _next(results: List[Any], calls: List[Any]) -> Any:
        index = min(len(calls) - 1, len(results) - 1)
        result = results[index]
        if isinstance(result, BaseException):
            raise result
        return result

    async def query_info(self, address: Any) -> ServerInfo:
        self.info_calls.append(address)
        return self._next(self.info_results, self.info_calls)

    async def query_players(self, address: Any) -> List[PlayerRecord]:
        self.player_calls.append(address)
        return self._next(self.player_results, self.player_calls)


class FakeSession(ChatSession):
    """In-memory chat session.

    connect_error: raised from connect() when set
    drop(): makes wait_closed() raise, simulating a gateway failure
    """

    def __init__(
        self,
        server_name: str,
        token: str,
        connect_error: Optional[BaseException] = None,
        sync_commands: bool = True,
    ) -> None:
        self.server_name = server_name
        self.token = token
        self.sync_commands = sync_commands
        self.connect_error = connect_error
        self.commands: Dict[str, Callable[[int], Any]] = {}
        self.presences: List[str] = []
        self.connected = False
        self.closed = False
        self._dropped = asyncio.Event()
        self._drop_error: BaseException = ConnectionError("gateway dropped")

    def on_command(self, name: str, description: str, handler: Callable[[int], Any]) -> None:
        self.commands[name] = handler

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    @property
    def commands_synced(self) -> bool:
        return self.sync_commands and self.connected

    async def wait_closed(self) -> None:
        await self._dropped.wait()
        raise self._drop_error

    async def set_presence(self, text: str) -> None:
        if self.closed or not self.connected:
            raise SessionClosedError("fake session closed")
        self.presences.append(text)

    async def close(self) -> None:
        self.closed = True

    def drop(self, error: Optional[BaseException] = None) -> None:
        if error is not None:
            self._drop_error = error
        self._dropped.set()


class SessionRecorder:
    """Session factory that records every session it builds."""

    def __init__(self, connect_errors: Optional[List[Optional[BaseException]]] = None) -> None:
        self.connect_errors = list(connect_errors or [])
        self.sessions: List[FakeSession] = []

    def __call__(self, server_name: str, token: str, sync_commands: bool = True) -> FakeSession:
        error = self.connect_errors.pop(0) if self.connect_errors else None
        session = FakeSession(server_name, token, connect_error=error, sync_commands=sync_commands)
        self.sessions.append(session)
        return session


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def valid_token() -> str:
    return make_token()


@pytest.fixture
def server_config(valid_token: str) -> ServerConfig:
    return ServerConfig(
        name="arena",
        address="127.0.0.1:27015",
        enabled=True,
        credential=valid_token,
    )


@pytest.fixture
def query_client() -> FakeQueryClient:
    return FakeQueryClient(
        info_results=[ServerInfo(player_count=5, max_players=10, map_name="arena")],
    )


@pytest.fixture
def session_recorder() -> SessionRecorder:
    return SessionRecorder()


@pytest.fixture
def failing_query_client() -> FakeQueryClient:
    return FakeQueryClient(
        info_results=[QueryError("timed out")],
        player_results=[QueryError("timed out")],
    )
