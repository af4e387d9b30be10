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

"""Per-worker lifecycle state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from config import ServerConfig
    from discord_session import ChatSession


class WorkerState(Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    TERMINATED = "terminated"


@dataclass
class WorkerStatus:
    """Mutable state owned by exactly one ServerWorker.

    The worker hands it by reference to its presence poller; nothing outside
    the worker writes to it. The supervisor only reads snapshots.
    """

    name: str
    config: "ServerConfig"
    poll_interval: float
    state: WorkerState = WorkerState.CONNECTING
    session: Optional["ChatSession"] = None
    last_presence: Optional[str] = None
    restarts: int = 0
    last_error: Optional[str] = None
    state_since: Optional[datetime] = None

    def transition(self, state: WorkerState) -> None:
        self.state = state
        self.state_since = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe view for the health endpoint."""
        return {
            "state": self.state.value,
            "since": self.state_since.isoformat() if self.state_since else None,
            "last_presence": self.last_presence,
            "restarts": self.restarts,
            "last_error": self.last_error,
        }
