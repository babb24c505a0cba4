# services/cursors.py
"""Persisted read positions and kill records."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from killfeed.services.events import GameEvent, KillEvent
from killfeed.services.tenant import TenantKey


class FileRole(Enum):
    """Which remote file a cursor tracks."""
    SERVER_LOG = "server_log"
    DEATH_LOG = "death_log"


@dataclass(frozen=True)
class ServerCursor:
    """
    Read position inside one remote file for one tenant.

    ``line_offset`` counts complete lines already consumed. It only grows
    within a file epoch and drops to 0 on rotation, which also stamps
    ``last_rotation_at``. ``byte_offset`` is where the next unread line
    starts, so a poll seeks there instead of downloading the whole file.
    """
    tenant: TenantKey
    role: FileRole
    tracked_file_name: str
    line_offset: int = 0
    last_known_size: int = 0
    last_modified: Optional[datetime] = None
    last_rotation_at: Optional[datetime] = None
    last_line_hash: Optional[str] = None
    byte_offset: int = 0

    def __post_init__(self):
        if self.line_offset < 0:
            raise ValueError(f"line_offset must be non-negative, got {self.line_offset}")
        if self.byte_offset < 0:
            raise ValueError(f"byte_offset must be non-negative, got {self.byte_offset}")

    @classmethod
    def from_row(cls, row: dict) -> "ServerCursor":
        return cls(
            tenant=TenantKey.from_row(row),
            role=FileRole(row['file_role']),
            tracked_file_name=row['tracked_file_name'],
            line_offset=int(row.get('line_offset') or 0),
            last_known_size=int(row.get('last_known_size') or 0),
            last_modified=row.get('last_modified'),
            last_rotation_at=row.get('last_rotation_at'),
            last_line_hash=row.get('last_line_hash'),
            byte_offset=int(row.get('byte_offset') or 0),
        )

    def rotated(self, now: datetime, tracked_file_name: Optional[str] = None) -> "ServerCursor":
        """New epoch: offset 0, rotation stamped, observation cleared."""
        return replace(
            self,
            tracked_file_name=tracked_file_name or self.tracked_file_name,
            line_offset=0,
            last_known_size=0,
            last_modified=None,
            last_rotation_at=now,
            last_line_hash=None,
            byte_offset=0,
        )

    def advanced(self, consumed: int, size: int, modified: Optional[datetime],
                 last_line_hash: Optional[str], byte_offset: Optional[int] = None) -> "ServerCursor":
        return replace(
            self,
            line_offset=self.line_offset + consumed,
            byte_offset=self.byte_offset if byte_offset is None else byte_offset,
            last_known_size=size,
            last_modified=modified,
            last_line_hash=last_line_hash if consumed else self.last_line_hash,
        )


@dataclass(frozen=True)
class KillRecord:
    """Row proving that one timestamped kill/death/suicide was applied."""
    tenant: TenantKey
    fingerprint: str
    event_type: str
    occurred_at: datetime
    victim: str
    killer: Optional[str] = None
    weapon: Optional[str] = None
    distance: Optional[float] = None

    @classmethod
    def from_event(cls, event: GameEvent) -> Optional["KillRecord"]:
        fingerprint = event.fingerprint()
        if fingerprint is None:
            return None
        if isinstance(event, KillEvent):
            return cls(event.tenant, fingerprint, event.event_type.value, event.timestamp,
                       victim=event.victim, killer=event.killer,
                       weapon=event.weapon, distance=event.distance)
        return cls(event.tenant, fingerprint, event.event_type.value, event.timestamp,
                   victim=event.player, weapon=event.cause)
