# database/queries/__init__.py
"""Database query modules for the killfeed service"""

from .cursors import CursorQueries
from .player_stats import PlayerStatQueries
from .kill_records import KillRecordQueries
from .game_servers import GameServerQueries

__all__ = [
    'CursorQueries',
    'PlayerStatQueries',
    'KillRecordQueries',
    'GameServerQueries',
]
