"""Per-session bot activities: presence polling and the roster command."""

from .presence import PresencePoller, compose_presence
from .roster import RosterResponder, format_player_table, format_play_time

__all__ = [
    "PresencePoller",
    "compose_presence",
    "RosterResponder",
    "format_player_table",
    "format_play_time",
]
