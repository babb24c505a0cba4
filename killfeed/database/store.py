# database/store.py
"""
Tenant-scoped persistence for the ingestion pipeline.

The monitor only talks to a ``TenantStore``. ``MySQLTenantStore`` is the
production implementation on top of the query classes; tests use an
in-memory one.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional, Protocol

import mysql.connector

from killfeed.database.connection import get_cursor
from killfeed.database.queries import (
    CursorQueries, GameServerQueries, KillRecordQueries, PlayerStatQueries
)
from killfeed.services.cursors import FileRole, KillRecord, ServerCursor
from killfeed.services.stats import PlayerStat
from killfeed.services.tenant import (
    TenantBoundaryViolation, TenantKey, check_row_boundary, require_tenant
)

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Reading or writing the store failed. Nothing from the failed call was committed."""
    pass


class TenantStore(Protocol):
    """Everything the pipeline needs from storage. Every call is scoped to one tenant."""

    def find_cursor(self, tenant: TenantKey, role: FileRole) -> Optional[ServerCursor]: ...

    def upsert_cursor(self, tenant: TenantKey, cursor: ServerCursor) -> None: ...

    def find_player_stat(self, tenant: TenantKey, player_id: str) -> Optional[PlayerStat]: ...

    def upsert_player_stat(self, tenant: TenantKey, stat: PlayerStat) -> None: ...

    def list_player_stats(self, tenant: TenantKey, order_by: str = 'kills',
                          limit: Optional[int] = None) -> list[PlayerStat]: ...

    def known_fingerprints(self, tenant: TenantKey, fingerprints: Iterable[str]) -> set: ...

    def commit_cycle(self, tenant: TenantKey, stats: Iterable[PlayerStat],
                     records: Iterable[KillRecord], cursor: ServerCursor) -> None: ...

    def delete_tenant_data(self, tenant: TenantKey) -> dict: ...

    def reset_tenant_stats(self, tenant: TenantKey, now: datetime) -> None: ...

    def enumerate_tenants(self) -> list[TenantKey]: ...


def ensure_owned(tenant: TenantKey, owner: TenantKey, entity: str) -> None:
    """Refuse to write an entity that belongs to another tenant."""
    if owner != tenant:
        logger.error(f"Tenant boundary violation: {entity} of {owner} written under {tenant}")
        raise TenantBoundaryViolation(f"{entity} belongs to {owner}, not {tenant}")


def stat_from_row(row: dict) -> PlayerStat:
    weapon_kills = row.get('weapon_kills') or {}
    if isinstance(weapon_kills, (bytes, bytearray)):
        weapon_kills = weapon_kills.decode('utf-8')
    if isinstance(weapon_kills, str):
        weapon_kills = json.loads(weapon_kills) if weapon_kills else {}
    return PlayerStat(
        tenant=TenantKey.from_row(row),
        player_id=row['player_id'],
        kills=int(row.get('kills') or 0),
        deaths=int(row.get('deaths') or 0),
        suicides=int(row.get('suicides') or 0),
        current_kill_streak=int(row.get('current_kill_streak') or 0),
        longest_kill_streak=int(row.get('longest_kill_streak') or 0),
        longest_kill_distance=float(row.get('longest_kill_distance') or 0.0),
        longest_kill_victim=row.get('longest_kill_victim'),
        longest_kill_weapon=row.get('longest_kill_weapon'),
        weapon_kills={str(k): int(v) for k, v in weapon_kills.items()},
    )


@contextmanager
def persistence_errors(operation: str, tenant: Optional[TenantKey] = None):
    """Translate driver errors into PersistenceError."""
    try:
        yield
    except mysql.connector.Error as e:
        logger.error(f"[{tenant}] {operation} failed: {e}")
        raise PersistenceError(f"{operation} failed: {e}") from e


class MySQLTenantStore:
    """TenantStore on MySQL. Every statement filters by guild_id and server_id."""

    def find_cursor(self, tenant: TenantKey, role: FileRole) -> Optional[ServerCursor]:
        tenant = require_tenant(tenant, "find_cursor")
        with persistence_errors("find_cursor", tenant):
            row = CursorQueries.get(tenant, role.value)
        row = check_row_boundary(tenant, row, "server_cursors")
        return ServerCursor.from_row(row) if row else None

    def upsert_cursor(self, tenant: TenantKey, cursor: ServerCursor) -> None:
        tenant = require_tenant(tenant, "upsert_cursor")
        ensure_owned(tenant, cursor.tenant, "cursor")
        with persistence_errors("upsert_cursor", tenant):
            self._write_cursor(tenant, cursor)

    def find_player_stat(self, tenant: TenantKey, player_id: str) -> Optional[PlayerStat]:
        tenant = require_tenant(tenant, "find_player_stat")
        with persistence_errors("find_player_stat", tenant):
            row = PlayerStatQueries.get(tenant, player_id)
        row = check_row_boundary(tenant, row, "player_stats")
        return stat_from_row(row) if row else None

    def upsert_player_stat(self, tenant: TenantKey, stat: PlayerStat) -> None:
        tenant = require_tenant(tenant, "upsert_player_stat")
        ensure_owned(tenant, stat.tenant, "player stat")
        with persistence_errors("upsert_player_stat", tenant):
            self._write_stat(tenant, stat)

    def list_player_stats(self, tenant: TenantKey, order_by: str = 'kills',
                          limit: Optional[int] = None) -> list[PlayerStat]:
        tenant = require_tenant(tenant, "list_player_stats")
        with persistence_errors("list_player_stats", tenant):
            rows = PlayerStatQueries.get_ranked(tenant, order_by=order_by, limit=limit)
        return [stat_from_row(check_row_boundary(tenant, row, "player_stats")) for row in rows]

    def known_fingerprints(self, tenant: TenantKey, fingerprints: Iterable[str]) -> set:
        tenant = require_tenant(tenant, "known_fingerprints")
        with persistence_errors("known_fingerprints", tenant):
            return KillRecordQueries.existing_fingerprints(tenant, fingerprints)

    def commit_cycle(self, tenant: TenantKey, stats: Iterable[PlayerStat],
                     records: Iterable[KillRecord], cursor: ServerCursor) -> None:
        """
        Write a cycle's stats, kill records and advanced cursor in one transaction.

        Either all of it lands or none of it does.
        """
        tenant = require_tenant(tenant, "commit_cycle")
        stats = list(stats)
        records = list(records)
        ensure_owned(tenant, cursor.tenant, "cursor")
        for stat in stats:
            ensure_owned(tenant, stat.tenant, "player stat")
        for record in records:
            ensure_owned(tenant, record.tenant, "kill record")

        with persistence_errors("commit_cycle", tenant):
            with get_cursor() as db:
                for record in records:
                    KillRecordQueries.insert(
                        tenant, record.fingerprint, record.event_type, record.occurred_at,
                        victim=record.victim, killer=record.killer,
                        weapon=record.weapon, distance=record.distance, cursor=db
                    )
                for stat in stats:
                    self._write_stat(tenant, stat, db)
                self._write_cursor(tenant, cursor, db)

        logger.debug(
            f"[{tenant}] Committed {len(stats)} stat(s), {len(records)} record(s), "
            f"{cursor.role.value} offset {cursor.line_offset}"
        )

    def delete_tenant_data(self, tenant: TenantKey) -> dict:
        tenant = require_tenant(tenant, "delete_tenant_data")
        with persistence_errors("delete_tenant_data", tenant):
            with get_cursor() as db:
                counts = {
                    'kill_records': KillRecordQueries.delete_all(tenant, cursor=db),
                    'player_stats': PlayerStatQueries.delete_all(tenant, cursor=db),
                    'server_cursors': CursorQueries.delete_all(tenant, cursor=db),
                }
        logger.info(f"[{tenant}] Deleted tenant data: {counts}")
        return counts

    def reset_tenant_stats(self, tenant: TenantKey, now: datetime) -> None:
        tenant = require_tenant(tenant, "reset_tenant_stats")
        with persistence_errors("reset_tenant_stats", tenant):
            with get_cursor() as db:
                KillRecordQueries.delete_all(tenant, cursor=db)
                PlayerStatQueries.delete_all(tenant, cursor=db)
                CursorQueries.reset_all(tenant, now, cursor=db)
        logger.info(f"[{tenant}] Stats wiped and cursors rewound for replay")

    def enumerate_tenants(self) -> list[TenantKey]:
        with persistence_errors("enumerate_tenants"):
            rows = GameServerQueries.list_tenants()
        return [TenantKey.from_row(row) for row in rows]

    @staticmethod
    def _write_cursor(tenant: TenantKey, cursor: ServerCursor, db=None) -> None:
        CursorQueries.upsert(
            tenant, cursor.role.value, cursor.tracked_file_name, cursor.line_offset,
            cursor.last_known_size, cursor.last_modified, cursor.last_rotation_at,
            cursor.last_line_hash, cursor.byte_offset, cursor=db
        )

    @staticmethod
    def _write_stat(tenant: TenantKey, stat: PlayerStat, db=None) -> None:
        PlayerStatQueries.upsert(
            tenant, stat.player_id, stat.kills, stat.deaths, stat.suicides,
            stat.current_kill_streak, stat.longest_kill_streak, stat.longest_kill_distance,
            stat.longest_kill_victim, stat.longest_kill_weapon, stat.weapon_kills, cursor=db
        )
