# database/schema.py
"""Table definitions. Every table is keyed by (guild_id, server_id) first."""

import logging

from killfeed.database.connection import get_cursor

logger = logging.getLogger(__name__)

TABLES = {
    'game_servers': """
        CREATE TABLE IF NOT EXISTS game_servers (
            guild_id BIGINT NOT NULL,
            server_id VARCHAR(64) NOT NULL,
            server_name VARCHAR(100) NOT NULL,
            host VARCHAR(255) NOT NULL,
            port INT NOT NULL DEFAULT 22,
            username VARCHAR(100) NOT NULL,
            password_encrypted VARBINARY(512) NOT NULL,
            encryption_salt VARBINARY(32) NOT NULL,
            log_directory VARCHAR(255) NOT NULL,
            deathlog_directory VARCHAR(255) NULL,
            log_channel_id BIGINT NULL,
            killfeed_channel_id BIGINT NULL,
            enabled BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (guild_id, server_id)
        )
    """,
    'server_cursors': """
        CREATE TABLE IF NOT EXISTS server_cursors (
            guild_id BIGINT NOT NULL,
            server_id VARCHAR(64) NOT NULL,
            file_role VARCHAR(16) NOT NULL,
            tracked_file_name VARCHAR(255) NOT NULL,
            line_offset BIGINT NOT NULL DEFAULT 0,
            last_known_size BIGINT NOT NULL DEFAULT 0,
            last_modified DATETIME NULL,
            last_rotation_at DATETIME NULL,
            last_line_hash CHAR(32) NULL,
            byte_offset BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
            PRIMARY KEY (guild_id, server_id, file_role)
        )
    """,
    'player_stats': """
        CREATE TABLE IF NOT EXISTS player_stats (
            guild_id BIGINT NOT NULL,
            server_id VARCHAR(64) NOT NULL,
            player_id VARCHAR(100) NOT NULL,
            kills INT NOT NULL DEFAULT 0,
            deaths INT NOT NULL DEFAULT 0,
            suicides INT NOT NULL DEFAULT 0,
            current_kill_streak INT NOT NULL DEFAULT 0,
            longest_kill_streak INT NOT NULL DEFAULT 0,
            longest_kill_distance DOUBLE NOT NULL DEFAULT 0,
            longest_kill_victim VARCHAR(100) NULL,
            longest_kill_weapon VARCHAR(100) NULL,
            weapon_kills JSON NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
            PRIMARY KEY (guild_id, server_id, player_id),
            INDEX idx_kills (guild_id, server_id, kills)
        )
    """,
    'kill_records': """
        CREATE TABLE IF NOT EXISTS kill_records (
            guild_id BIGINT NOT NULL,
            server_id VARCHAR(64) NOT NULL,
            fingerprint CHAR(40) NOT NULL,
            event_type VARCHAR(16) NOT NULL,
            occurred_at DATETIME NOT NULL,
            killer VARCHAR(100) NULL,
            victim VARCHAR(100) NOT NULL,
            weapon VARCHAR(100) NULL,
            distance DOUBLE NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (guild_id, server_id, fingerprint),
            INDEX idx_occurred (guild_id, server_id, occurred_at)
        )
    """,
}


def create_tables() -> None:
    """Create all tables if they do not exist yet."""
    with get_cursor() as cursor:
        for name, ddl in TABLES.items():
            cursor.execute(ddl)
            logger.debug(f"Ensured table {name}")
    logger.info(f"Database schema ready ({len(TABLES)} tables)")
