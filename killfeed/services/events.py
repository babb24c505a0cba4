# services/events.py
"""
Typed events extracted from Deadside server logs and death logs.

Both extraction paths (line-oriented Deadside.log and the CSV death log)
produce these classes. Events are transient; only kill/death/suicide events
leave a trace in the store, as kill records.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from killfeed.services.tenant import TenantKey


class EventType(Enum):
    """Closed set of event kinds."""
    JOIN = "join"
    LEAVE = "leave"
    KILL = "kill"
    DEATH = "death"
    SUICIDE = "suicide"
    AIRDROP = "airdrop"
    HELI_CRASH = "heli_crash"
    TRADER_EVENT = "trader_event"
    MISSION = "mission"
    SERVER_RESTART = "server_restart"


# Events that change player stats and go to the killfeed channel
STAT_EVENT_TYPES = frozenset({EventType.KILL, EventType.DEATH, EventType.SUICIDE})

# Width of the player, weapon and cause columns
MAX_NAME_LENGTH = 100


def clip_name(value: Optional[str]) -> Optional[str]:
    """Strip and cut a name to what the store can hold."""
    if value is None:
        return None
    return value.strip()[:MAX_NAME_LENGTH]


@dataclass(frozen=True, kw_only=True)
class GameEvent:
    """Fields shared by every event."""
    tenant: TenantKey
    timestamp: Optional[datetime] = None
    raw_line: str = ""

    event_type: ClassVar[EventType]

    def discriminator(self) -> tuple:
        """Fields that make two events 'the same' for duplicate suppression."""
        return ()

    def dedup_key(self) -> tuple:
        return (self.tenant, self.event_type.value) + self.discriminator()

    @property
    def affects_stats(self) -> bool:
        return self.event_type in STAT_EVENT_TYPES

    def fingerprint(self) -> Optional[str]:
        """
        Stable id for a timestamped kill/death/suicide.

        Second precision so the same kill reported by Deadside.log (with
        milliseconds) and by the death log CSV (without) collapses to one record.
        Returns None for events that cannot be fingerprinted.
        """
        if not self.affects_stats or self.timestamp is None:
            return None
        parts = [
            str(self.tenant),
            self.event_type.value,
            self.timestamp.replace(microsecond=0).isoformat(),
        ] + [str(p) for p in self.discriminator()[:2]]
        return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class JoinEvent(GameEvent):
    """Player connected."""
    player: str
    event_type: ClassVar[EventType] = EventType.JOIN

    def discriminator(self) -> tuple:
        return (self.player,)


@dataclass(frozen=True)
class LeaveEvent(GameEvent):
    """Player disconnected."""
    player: str
    event_type: ClassVar[EventType] = EventType.LEAVE

    def discriminator(self) -> tuple:
        return (self.player,)


@dataclass(frozen=True)
class KillEvent(GameEvent):
    """One player killed another."""
    killer: str
    victim: str
    weapon: str
    distance: float = 0.0
    killer_id: Optional[str] = None
    victim_id: Optional[str] = None
    event_type: ClassVar[EventType] = EventType.KILL

    def discriminator(self) -> tuple:
        return (self.killer, self.victim)


@dataclass(frozen=True)
class DeathEvent(GameEvent):
    """Player died without a killer (falling, bleeding, drowning...)."""
    player: str
    cause: str
    player_id: Optional[str] = None
    event_type: ClassVar[EventType] = EventType.DEATH

    def discriminator(self) -> tuple:
        return (self.player, self.cause)


@dataclass(frozen=True)
class SuicideEvent(GameEvent):
    """Player killed themselves."""
    player: str
    cause: str
    player_id: Optional[str] = None
    event_type: ClassVar[EventType] = EventType.SUICIDE

    def discriminator(self) -> tuple:
        return (self.player, self.cause)


@dataclass(frozen=True)
class AirdropEvent(GameEvent):
    status: str
    event_type: ClassVar[EventType] = EventType.AIRDROP

    def discriminator(self) -> tuple:
        return (self.status,)


@dataclass(frozen=True)
class HeliCrashEvent(GameEvent):
    position: str
    event_type: ClassVar[EventType] = EventType.HELI_CRASH


@dataclass(frozen=True)
class TraderEvent(GameEvent):
    position: str
    event_type: ClassVar[EventType] = EventType.TRADER_EVENT


@dataclass(frozen=True)
class MissionEvent(GameEvent):
    name: str
    status: str
    event_type: ClassVar[EventType] = EventType.MISSION

    def discriminator(self) -> tuple:
        return (self.name, self.status)


@dataclass(frozen=True)
class ServerRestartEvent(GameEvent):
    event_type: ClassVar[EventType] = EventType.SERVER_RESTART
