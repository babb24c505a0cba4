# database/queries/cursors.py
"""Read cursor queries. Every statement is scoped by guild_id AND server_id."""

from datetime import datetime
from typing import Optional

from killfeed.database.connection import use_cursor
from killfeed.services.tenant import TenantKey
import logging

logger = logging.getLogger(__name__)


class CursorQueries:
    """Database operations for server_cursors."""

    @staticmethod
    def get(tenant: TenantKey, file_role: str, cursor=None) -> Optional[dict]:
        """Get the cursor row for one file role of one server."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """SELECT * FROM server_cursors
                   WHERE guild_id = %s AND server_id = %s AND file_role = %s""",
                (tenant.guild_id, tenant.server_id, file_role)
            )
            return cur.fetchone()

    @staticmethod
    def upsert(tenant: TenantKey, file_role: str, tracked_file_name: str,
               line_offset: int, last_known_size: int,
               last_modified: Optional[datetime], last_rotation_at: Optional[datetime],
               last_line_hash: Optional[str], byte_offset: int = 0, cursor=None) -> bool:
        """Insert or replace the cursor for one file role."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """INSERT INTO server_cursors
                   (guild_id, server_id, file_role, tracked_file_name, line_offset,
                    last_known_size, last_modified, last_rotation_at, last_line_hash, byte_offset)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   ON DUPLICATE KEY UPDATE
                       tracked_file_name = VALUES(tracked_file_name),
                       line_offset = VALUES(line_offset),
                       last_known_size = VALUES(last_known_size),
                       last_modified = VALUES(last_modified),
                       last_rotation_at = VALUES(last_rotation_at),
                       last_line_hash = VALUES(last_line_hash),
                       byte_offset = VALUES(byte_offset)""",
                (tenant.guild_id, tenant.server_id, file_role, tracked_file_name, line_offset,
                 last_known_size, last_modified, last_rotation_at, last_line_hash, byte_offset)
            )
            return True

    @staticmethod
    def reset_all(tenant: TenantKey, rotated_at: datetime, cursor=None) -> int:
        """Rewind every cursor of a server to offset 0."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """UPDATE server_cursors
                   SET line_offset = 0, byte_offset = 0, last_known_size = 0, last_modified = NULL,
                       last_line_hash = NULL, last_rotation_at = %s
                   WHERE guild_id = %s AND server_id = %s""",
                (rotated_at, tenant.guild_id, tenant.server_id)
            )
            return cur.rowcount

    @staticmethod
    def delete_all(tenant: TenantKey, cursor=None) -> int:
        with use_cursor(cursor) as cur:
            cur.execute(
                "DELETE FROM server_cursors WHERE guild_id = %s AND server_id = %s",
                (tenant.guild_id, tenant.server_id)
            )
            return cur.rowcount
