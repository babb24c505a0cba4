# database/queries/game_servers.py
"""Game server configuration queries."""

from typing import Optional

from killfeed.database.connection import use_cursor
from killfeed.services.tenant import TenantKey
import logging

logger = logging.getLogger(__name__)


class GameServerQueries:
    """Database operations for game_servers."""

    @staticmethod
    def add_server(tenant: TenantKey, server_name: str, host: str, port: int,
                   username: str, password_encrypted: bytes, encryption_salt: bytes,
                   log_directory: str, deathlog_directory: Optional[str] = None,
                   log_channel_id: Optional[int] = None,
                   killfeed_channel_id: Optional[int] = None, cursor=None) -> bool:
        """Add or replace a server's configuration."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """INSERT INTO game_servers
                   (guild_id, server_id, server_name, host, port, username,
                    password_encrypted, encryption_salt, log_directory, deathlog_directory,
                    log_channel_id, killfeed_channel_id, enabled)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, TRUE)
                   ON DUPLICATE KEY UPDATE
                       server_name = VALUES(server_name),
                       host = VALUES(host),
                       port = VALUES(port),
                       username = VALUES(username),
                       password_encrypted = VALUES(password_encrypted),
                       encryption_salt = VALUES(encryption_salt),
                       log_directory = VALUES(log_directory),
                       deathlog_directory = VALUES(deathlog_directory),
                       log_channel_id = VALUES(log_channel_id),
                       killfeed_channel_id = VALUES(killfeed_channel_id),
                       enabled = TRUE""",
                (tenant.guild_id, tenant.server_id, server_name, host, port, username,
                 password_encrypted, encryption_salt, log_directory, deathlog_directory,
                 log_channel_id, killfeed_channel_id)
            )
            logger.info(f"Saved game server '{server_name}' for {tenant}")
            return True

    @staticmethod
    def get_server(tenant: TenantKey, cursor=None) -> Optional[dict]:
        with use_cursor(cursor) as cur:
            cur.execute(
                "SELECT * FROM game_servers WHERE guild_id = %s AND server_id = %s",
                (tenant.guild_id, tenant.server_id)
            )
            return cur.fetchone()

    @staticmethod
    def get_guild_servers(guild_id: int, cursor=None) -> list:
        """All servers configured in one guild."""
        with use_cursor(cursor) as cur:
            cur.execute(
                "SELECT * FROM game_servers WHERE guild_id = %s ORDER BY server_name",
                (guild_id,)
            )
            return cur.fetchall() or []

    @staticmethod
    def get_enabled_servers(cursor=None) -> list:
        """Servers to monitor at startup. Administrative, spans guilds."""
        with use_cursor(cursor) as cur:
            cur.execute(
                "SELECT * FROM game_servers WHERE enabled = TRUE ORDER BY guild_id, server_id"
            )
            return cur.fetchall() or []

    @staticmethod
    def list_tenants(cursor=None) -> list:
        """Every (guild_id, server_id) pair that owns data."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """SELECT guild_id, server_id FROM game_servers
                   UNION
                   SELECT DISTINCT guild_id, server_id FROM server_cursors
                   UNION
                   SELECT DISTINCT guild_id, server_id FROM player_stats
                   ORDER BY guild_id, server_id"""
            )
            return cur.fetchall() or []

    @staticmethod
    def set_enabled(tenant: TenantKey, enabled: bool, cursor=None) -> bool:
        with use_cursor(cursor) as cur:
            cur.execute(
                "UPDATE game_servers SET enabled = %s WHERE guild_id = %s AND server_id = %s",
                (enabled, tenant.guild_id, tenant.server_id)
            )
            return cur.rowcount > 0

    @staticmethod
    def remove_server(tenant: TenantKey, cursor=None) -> bool:
        with use_cursor(cursor) as cur:
            cur.execute(
                "DELETE FROM game_servers WHERE guild_id = %s AND server_id = %s",
                (tenant.guild_id, tenant.server_id)
            )
            if cur.rowcount > 0:
                logger.info(f"Removed game server {tenant}")
                return True
            return False
