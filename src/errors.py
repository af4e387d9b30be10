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

"""Exception hierarchy for Player Count Bots."""


class PlayerCountBotError(Exception):
    """Base class for all application errors."""


class ConfigError(PlayerCountBotError):
    """Config file exists but cannot be turned into a GlobalConfig."""


class InvalidCredential(PlayerCountBotError):
    """Bot token for a server fails Discord's token syntax rules."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Invalid Discord bot token for server '{name}'")


class QueryError(PlayerCountBotError):
    """Game server query failed (timeout, unreachable, malformed reply)."""


class SessionClosedError(PlayerCountBotError):
    """Discord session is no longer usable."""
