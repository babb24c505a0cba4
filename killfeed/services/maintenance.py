# services/maintenance.py
"""
Administrative operations on stored killfeed data.

Each operation works on exactly one tenant. Anything that has to touch all
servers goes through ``for_each_tenant``.
"""

import logging
from datetime import datetime
from typing import Optional

from killfeed.services.stats import RANKABLE_STATS, PlayerStat, sanitized
from killfeed.services.tenant import TenantKey, for_each_tenant, require_tenant

logger = logging.getLogger(__name__)


def sanitize_player_stats(store, tenant: TenantKey) -> int:
    """
    Clamp negative counters to zero for one server.

    Returns:
        Number of player rows that were fixed
    """
    tenant = require_tenant(tenant, "sanitize_player_stats")
    fixed = 0
    for stat in store.list_player_stats(tenant):
        clean = sanitized(stat)
        if clean != stat:
            store.upsert_player_stat(tenant, clean)
            fixed += 1
    if fixed:
        logger.info(f"[{tenant}] Sanitized {fixed} player stat row(s)")
    return fixed


def sanitize_all_player_stats(store) -> dict:
    """Run sanitize_player_stats once per tenant."""
    return for_each_tenant(store, lambda tenant: sanitize_player_stats(store, tenant))


def cleanup_server_data(store, tenant: TenantKey) -> dict:
    """Delete cursors, stats and kill records of a removed server."""
    tenant = require_tenant(tenant, "cleanup_server_data")
    counts = store.delete_tenant_data(tenant)
    logger.info(f"[{tenant}] Server data cleaned up")
    return counts


def reset_for_replay(store, tenant: TenantKey, now: Optional[datetime] = None) -> None:
    """
    Wipe a server's stats and kill records and rewind its cursors.

    The next cycle rebuilds everything from offset 0. A monitored server goes
    through ``ServerLogMonitor.replay``, which also keeps notifications off.
    """
    tenant = require_tenant(tenant, "reset_for_replay")
    store.reset_tenant_stats(tenant, now or datetime.now())


def top_players(store, tenant: TenantKey, stat: str = 'kills', limit: int = 10) -> list[PlayerStat]:
    """Leaderboard for one server."""
    tenant = require_tenant(tenant, "top_players")
    if stat not in RANKABLE_STATS:
        raise ValueError(f"Unknown stat {stat!r}, expected one of {', '.join(RANKABLE_STATS)}")
    if limit <= 0:
        return []
    return store.list_player_stats(tenant, order_by=stat, limit=limit)
