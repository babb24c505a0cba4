# database/queries/kill_records.py
"""Kill record queries, used to make re-reads of a log range idempotent."""

from datetime import datetime
from typing import Iterable, Optional

from killfeed.database.connection import use_cursor
from killfeed.services.tenant import TenantKey
import logging

logger = logging.getLogger(__name__)


class KillRecordQueries:
    """Database operations for kill_records."""

    @staticmethod
    def insert(tenant: TenantKey, fingerprint: str, event_type: str, occurred_at: datetime,
               victim: str, killer: Optional[str] = None, weapon: Optional[str] = None,
               distance: Optional[float] = None, cursor=None) -> bool:
        """Record one applied event. Returns False if it was already recorded."""
        with use_cursor(cursor) as cur:
            cur.execute(
                """INSERT IGNORE INTO kill_records
                   (guild_id, server_id, fingerprint, event_type, occurred_at,
                    killer, victim, weapon, distance)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
                (tenant.guild_id, tenant.server_id, fingerprint, event_type, occurred_at,
                 killer, victim, weapon, distance)
            )
            return cur.rowcount > 0

    @staticmethod
    def existing_fingerprints(tenant: TenantKey, fingerprints: Iterable[str], cursor=None) -> set:
        """Return the subset of fingerprints already recorded for this server."""
        fingerprints = list(dict.fromkeys(fingerprints))
        if not fingerprints:
            return set()

        placeholders = ", ".join(["%s"] * len(fingerprints))
        with use_cursor(cursor) as cur:
            cur.execute(
                f"""SELECT fingerprint FROM kill_records
                    WHERE guild_id = %s AND server_id = %s
                    AND fingerprint IN ({placeholders})""",
                (tenant.guild_id, tenant.server_id, *fingerprints)
            )
            return {row['fingerprint'] for row in (cur.fetchall() or [])}

    @staticmethod
    def count(tenant: TenantKey, cursor=None) -> int:
        with use_cursor(cursor) as cur:
            cur.execute(
                """SELECT COUNT(*) AS total FROM kill_records
                   WHERE guild_id = %s AND server_id = %s""",
                (tenant.guild_id, tenant.server_id)
            )
            row = cur.fetchone()
            return int(row['total']) if row else 0

    @staticmethod
    def delete_all(tenant: TenantKey, cursor=None) -> int:
        with use_cursor(cursor) as cur:
            cur.execute(
                "DELETE FROM kill_records WHERE guild_id = %s AND server_id = %s",
                (tenant.guild_id, tenant.server_id)
            )
            return cur.rowcount
