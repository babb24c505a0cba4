# services/stats.py
"""
Player statistics.

``apply_event`` is a pure function from (stat, event) to a new stat; the
aggregator walks a batch in extraction order because streaks depend on it.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from killfeed.services.events import DeathEvent, GameEvent, KillEvent, SuicideEvent
from killfeed.services.tenant import TenantBoundaryViolation, TenantKey

logger = logging.getLogger(__name__)

# Columns a leaderboard may be sorted by
RANKABLE_STATS = ("kills", "deaths", "suicides", "longest_kill_streak", "longest_kill_distance")


@dataclass(frozen=True)
class PlayerStat:
    tenant: TenantKey
    player_id: str
    kills: int = 0
    deaths: int = 0
    suicides: int = 0
    current_kill_streak: int = 0
    longest_kill_streak: int = 0
    longest_kill_distance: float = 0.0
    longest_kill_victim: Optional[str] = None
    longest_kill_weapon: Optional[str] = None
    weapon_kills: dict = field(default_factory=dict, hash=False, compare=True)

    @property
    def kd_ratio(self) -> float:
        if self.deaths == 0:
            return float(self.kills)
        return round(self.kills / self.deaths, 2)


def _as_killer(stat: PlayerStat, event: KillEvent) -> PlayerStat:
    streak = stat.current_kill_streak + 1
    weapon_kills = dict(stat.weapon_kills)
    weapon_kills[event.weapon] = weapon_kills.get(event.weapon, 0) + 1
    changes = dict(
        kills=stat.kills + 1,
        current_kill_streak=streak,
        longest_kill_streak=max(stat.longest_kill_streak, streak),
        weapon_kills=weapon_kills,
    )
    if event.distance > stat.longest_kill_distance:
        changes.update(
            longest_kill_distance=event.distance,
            longest_kill_victim=event.victim,
            longest_kill_weapon=event.weapon,
        )
    return replace(stat, **changes)


def apply_event(stat: PlayerStat, event: GameEvent) -> PlayerStat:
    """
    Apply one event to one player's stat.

    The caller passes the stat of the player the event concerns; for a kill
    that is the killer, the victim, or both when two players share a name
    (stats are keyed by name). Events that do not touch stats return the
    input unchanged.
    """
    if isinstance(event, KillEvent):
        updated = stat
        if stat.player_id == event.killer:
            updated = _as_killer(updated, event)
        if stat.player_id == event.victim:
            updated = replace(updated, deaths=updated.deaths + 1, current_kill_streak=0)
        return updated

    if isinstance(event, SuicideEvent):
        if stat.player_id != event.player:
            return stat
        return replace(stat, suicides=stat.suicides + 1, current_kill_streak=0)

    if isinstance(event, DeathEvent):
        if stat.player_id != event.player:
            return stat
        return replace(stat, deaths=stat.deaths + 1, current_kill_streak=0)

    return stat


def players_in(event: GameEvent) -> tuple[str, ...]:
    """Player ids whose stats an event changes, in application order."""
    if isinstance(event, KillEvent):
        if event.killer == event.victim:
            return (event.killer,)
        return (event.killer, event.victim)
    if isinstance(event, (SuicideEvent, DeathEvent)):
        return (event.player,)
    return ()


def sanitized(stat: PlayerStat) -> PlayerStat:
    """Clamp negative counters to zero."""
    changes = {
        name: 0 for name in ("kills", "deaths", "suicides", "current_kill_streak", "longest_kill_streak")
        if getattr(stat, name) < 0
    }
    if stat.longest_kill_distance < 0:
        changes['longest_kill_distance'] = 0.0
    weapon_kills = {w: n for w, n in stat.weapon_kills.items() if n > 0}
    if weapon_kills != stat.weapon_kills:
        changes['weapon_kills'] = weapon_kills
    return replace(stat, **changes) if changes else stat


class StatAggregator:
    """Applies a batch of events for one tenant."""

    def aggregate(self, tenant: TenantKey, events: list[GameEvent],
                  load: Callable[[TenantKey, str], Optional[PlayerStat]]) -> dict[str, PlayerStat]:
        """
        Apply events in order and return the stats that changed.

        Args:
            tenant: Tenant the whole batch belongs to
            events: Events in extraction order
            load: Callable returning the stored stat for a player (or None)

        Returns:
            Mapping of player_id -> updated PlayerStat
        """
        working: dict[str, PlayerStat] = {}
        changed: set[str] = set()

        for event in events:
            if event.tenant != tenant:
                logger.error(f"Tenant boundary violation: {event.tenant} event in batch for {tenant}")
                raise TenantBoundaryViolation(f"event for {event.tenant} aggregated under {tenant}")

            for player_id in players_in(event):
                if player_id not in working:
                    working[player_id] = load(tenant, player_id) or PlayerStat(tenant=tenant, player_id=player_id)
                updated = apply_event(working[player_id], event)
                if updated is not working[player_id]:
                    working[player_id] = updated
                    changed.add(player_id)

        return {player_id: working[player_id] for player_id in changed}
