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
Per-user sliding-window rate limiting.

Each worker owns its own instance; cooldowns are never shared across servers.
"""

import time
from typing import Deque, Dict, Optional, Tuple
from collections import defaultdict, deque
import structlog

logger = structlog.get_logger()


class CommandCooldown:
    """Allow `rate` uses per `per` seconds for each user."""

    def __init__(self, rate: int = 5, per: float = 30.0):
        """
        Initialize cooldown manager.

        Args:
            rate: Number of uses allowed
            per: Time window in seconds
        """
        if rate < 1:
            raise ValueError(f"rate must be >= 1, got {rate}")
        if per <= 0:
            raise ValueError(f"per must be > 0, got {per}")

        self.rate = rate
        self.per = per
        self.cooldowns: Dict[int, Deque[float]] = defaultdict(lambda: deque(maxlen=rate))

    def is_rate_limited(self, user_id: int) -> Tuple[bool, Optional[int]]:
        """
        Check and record a use.

        Returns:
            (is_limited, retry_seconds); retry_seconds is None when not limited
        """
        now = time.monotonic()
        bucket = self.cooldowns[user_id]

        while bucket and bucket[0] <= now - self.per:
            bucket.popleft()

        if len(bucket) >= self.rate:
            retry_after = self.per - (now - bucket[0])
            retry_seconds = max(1, int(retry_after) + 1)
            logger.debug("rate_limited", user_id=user_id, retry_seconds=retry_seconds)
            return True, retry_seconds

        bucket.append(now)
        return False, None

    def reset(self, user_id: int) -> None:
        """Forget a user's history."""
        self.cooldowns.pop(user_id, None)

    def get_usage(self, user_id: int) -> Tuple[int, int]:
        """(uses in current window, max rate)"""
        now = time.monotonic()
        bucket = self.cooldowns.get(user_id, deque())
        current_usage = sum(1 for ts in bucket if ts > now - self.per)
        return (current_usage, self.rate)
