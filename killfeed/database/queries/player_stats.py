# database/queries/player_stats.py
"""Player stat queries for the killfeed leaderboards."""

import json
from typing import Optional

from killfeed.database.connection import use_cursor
from killfeed.services.tenant import TenantKey
import logging

logger = logging.getLogger(__name__)

# Whitelist for ORDER BY, never interpolate user input
SORTABLE_COLUMNS = {
    'kills': 'kills',
    'deaths': 'deaths',
    'suicides': 'suicides',
    'longest_kill_streak': 'longest_kill_streak',
    'longest_kill_distance': 'longest_kill_distance',
}


class PlayerStatQueries:
    """Database operations for player_stats."""

    @staticmethod
    def get(tenant: TenantKey, player_id: str, cursor=None) -> Optional[dict]:
        """Get one player's stats on one server."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """SELECT * FROM player_stats
                   WHERE guild_id = %s AND server_id = %s AND player_id = %s""",
                (tenant.guild_id, tenant.server_id, player_id)
            )
            return cur.fetchone()

    @staticmethod
    def upsert(tenant: TenantKey, player_id: str, kills: int, deaths: int, suicides: int,
               current_kill_streak: int, longest_kill_streak: int,
               longest_kill_distance: float, longest_kill_victim: Optional[str],
               longest_kill_weapon: Optional[str], weapon_kills: dict, cursor=None) -> bool:
        """Write the full stat row; the aggregator already computed the new values."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """INSERT INTO player_stats
                   (guild_id, server_id, player_id, kills, deaths, suicides,
                    current_kill_streak, longest_kill_streak, longest_kill_distance,
                    longest_kill_victim, longest_kill_weapon, weapon_kills)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   ON DUPLICATE KEY UPDATE
                       kills = VALUES(kills),
                       deaths = VALUES(deaths),
                       suicides = VALUES(suicides),
                       current_kill_streak = VALUES(current_kill_streak),
                       longest_kill_streak = VALUES(longest_kill_streak),
                       longest_kill_distance = VALUES(longest_kill_distance),
                       longest_kill_victim = VALUES(longest_kill_victim),
                       longest_kill_weapon = VALUES(longest_kill_weapon),
                       weapon_kills = VALUES(weapon_kills)""",
                (tenant.guild_id, tenant.server_id, player_id, kills, deaths, suicides,
                 current_kill_streak, longest_kill_streak, longest_kill_distance,
                 longest_kill_victim, longest_kill_weapon, json.dumps(weapon_kills or {}))
            )
            return True

    @staticmethod
    def get_ranked(tenant: TenantKey, order_by: str = 'kills', limit: Optional[int] = None,
                   cursor=None) -> list:
        """List a server's player stats, best first."""
        column = SORTABLE_COLUMNS.get(order_by)
        if column is None:
            raise ValueError(f"Cannot sort player stats by {order_by!r}")

        sql = f"""SELECT * FROM player_stats
                  WHERE guild_id = %s AND server_id = %s
                  ORDER BY {column} DESC, player_id ASC"""
        params = [tenant.guild_id, tenant.server_id]
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))

        with use_cursor(cursor) as cur:
            cur.execute(sql, tuple(params))
            return cur.fetchall() or []

    @staticmethod
    def delete_all(tenant: TenantKey, cursor=None) -> int:
        with use_cursor(cursor) as cur:
            cur.execute(
                "DELETE FROM player_stats WHERE guild_id = %s AND server_id = %s",
                (tenant.guild_id, tenant.server_id)
            )
            deleted = cur.rowcount
            logger.info(f"Deleted {deleted} player stat rows for {tenant}")
            return deleted
