# services/log_parsers.py
"""
Parser for the Deadside server log (Deadside.log).

Lines look like:
    [2024.01.15-12.30.45:123][  7]LogSFPS: [Kill] Alice killed Bob with AK47 at distance 52

The leading timestamp token is optional; lines without one still produce
events with ``timestamp=None``.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from killfeed.services.events import (
    AirdropEvent,
    DeathEvent,
    GameEvent,
    HeliCrashEvent,
    JoinEvent,
    KillEvent,
    LeaveEvent,
    MissionEvent,
    ServerRestartEvent,
    SuicideEvent,
    TraderEvent,
    clip_name,
)
from killfeed.services.tenant import TenantKey

logger = logging.getLogger(__name__)

# Causes that mean the player killed themselves rather than died to the world
SUICIDE_CAUSES = frozenset({"suicide", "suicide_by_relocation"})

# Mission status transitions worth reporting
REPORTED_MISSION_STATUSES = frozenset({"READY", "ACTIVE", "COMPLETED", "REWARD"})

TIMESTAMP_FORMAT = "%Y.%m.%d-%H.%M.%S:%f"


def is_suicide_cause(cause: Optional[str]) -> bool:
    return bool(cause) and cause.strip().lower() in SUICIDE_CAUSES


@dataclass
class ParseResult:
    """Events from one batch plus the counters the monitor logs."""
    events: list[GameEvent] = field(default_factory=list)
    unmatched: int = 0
    blank: int = 0
    malformed: int = 0
    discarded: int = 0


class DeadsideLogParser:
    """Ordered, first-match-wins parser for Deadside.log lines."""

    TIMESTAMP_PATTERN = re.compile(
        r'^\[(?P<timestamp>\d{4}\.\d{2}\.\d{2}-\d{2}\.\d{2}\.\d{2}:\d{3})\]\[\s*\d+\]'
    )

    RESTART_PATTERN = re.compile(r'LogSFPS:\s*(?:Server restarting|Server initialization started)')

    JOIN_PATTERN = re.compile(r'LogSFPS:\s*\[Login\] Player (?P<player>.+?) connected')

    LEAVE_PATTERN = re.compile(r'LogSFPS:\s*\[Logout\] Player (?P<player>.+?) disconnected')

    KILL_PATTERN = re.compile(
        r'LogSFPS:\s*\[Kill\] (?P<killer>.+?) killed (?P<victim>.+?) '
        r'with (?P<weapon>.+?) at distance (?P<distance>\d+(?:\.\d+)?)'
    )

    DEATH_PATTERN = re.compile(r'LogSFPS:\s*\[Death\] (?P<player>.+?) died from (?P<cause>.+)')

    AIRDROP_PATTERN = re.compile(r'LogSFPS:\s*AirDrop switched to (?P<status>\w+)')

    HELI_CRASH_PATTERN = re.compile(r'LogSFPS:\s*Helicopter crash spawned at position (?P<position>.+)')

    TRADER_PATTERN = re.compile(r'LogSFPS:\s*Trader event started at (?P<position>.+)')

    MISSION_PATTERN = re.compile(r'LogSFPS:\s*Mission (?P<name>.+?) switched to (?P<status>\w+)')

    # In-band markers that only appear at the top of a fresh log file
    ROTATION_MARKER_PATTERN = re.compile(
        r'Log file .+? opened|LogSFPS:\s*Server restarting|LogSFPS:\s*Server initialization started'
    )

    def __init__(self, tenant: TenantKey):
        self.tenant = tenant
        self._matchers = [
            (self.RESTART_PATTERN, self._restart),
            (self.JOIN_PATTERN, self._join),
            (self.LEAVE_PATTERN, self._leave),
            (self.KILL_PATTERN, self._kill),
            (self.DEATH_PATTERN, self._death),
            (self.AIRDROP_PATTERN, self._airdrop),
            (self.HELI_CRASH_PATTERN, self._heli_crash),
            (self.TRADER_PATTERN, self._trader),
            (self.MISSION_PATTERN, self._mission),
        ]

    def parse_lines(self, lines: list[str]) -> ParseResult:
        """
        Parse a batch of lines in order.

        Args:
            lines: Raw lines as returned by the remote file accessor

        Returns:
            ParseResult with events in source order and per-batch counters
        """
        result = ParseResult()
        for line in lines:
            if not line or not line.strip():
                result.blank += 1
                continue
            event = self.parse_line(line, result)
            if event is not None:
                result.events.append(event)
        return result

    def parse_line(self, line: str, result: Optional[ParseResult] = None) -> Optional[GameEvent]:
        """Parse one line. Returns None for unmatched or discarded lines."""
        line = line.rstrip("\r\n")
        timestamp, body = self.split_timestamp(line)

        for pattern, build in self._matchers:
            match = pattern.search(body)
            if match:
                event = build(match, timestamp, line)
                if event is None and result is not None:
                    result.discarded += 1
                return event

        if result is not None:
            result.unmatched += 1
        logger.debug(f"[{self.tenant}] Skipped line (no match): {line[:100]}")
        return None

    @classmethod
    def split_timestamp(cls, line: str) -> tuple[Optional[datetime], str]:
        """Strip the leading ``[YYYY.MM.DD-HH.MM.SS:mmm][ nnn]`` token and parse it."""
        match = cls.TIMESTAMP_PATTERN.match(line)
        if not match:
            return None, line
        try:
            timestamp = datetime.strptime(match.group('timestamp'), TIMESTAMP_FORMAT)
        except ValueError:
            timestamp = None
        return timestamp, line[match.end():]

    @classmethod
    def contains_rotation_marker(cls, line: str) -> bool:
        return bool(cls.ROTATION_MARKER_PATTERN.search(line))

    def _restart(self, match, timestamp, line):
        return ServerRestartEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line)

    def _join(self, match, timestamp, line):
        return JoinEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                         player=clip_name(match.group('player')))

    def _leave(self, match, timestamp, line):
        return LeaveEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                          player=clip_name(match.group('player')))

    def _kill(self, match, timestamp, line):
        killer = clip_name(match.group('killer'))
        victim = clip_name(match.group('victim'))
        weapon = clip_name(match.group('weapon'))
        if killer == victim:
            return SuicideEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                                player=victim, cause=weapon)
        return KillEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                         killer=killer, victim=victim, weapon=weapon,
                         distance=float(match.group('distance')))

    def _death(self, match, timestamp, line):
        player = clip_name(match.group('player'))
        cause = clip_name(match.group('cause'))
        if is_suicide_cause(cause):
            return SuicideEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                                player=player, cause=cause)
        return DeathEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                          player=player, cause=cause)

    def _airdrop(self, match, timestamp, line):
        return AirdropEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                            status=match.group('status'))

    def _heli_crash(self, match, timestamp, line):
        return HeliCrashEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                              position=match.group('position').strip())

    def _trader(self, match, timestamp, line):
        return TraderEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                           position=match.group('position').strip())

    def _mission(self, match, timestamp, line):
        status = match.group('status').upper()
        if status not in REPORTED_MISSION_STATUSES:
            return None
        return MissionEvent(tenant=self.tenant, timestamp=timestamp, raw_line=line,
                            name=match.group('name').strip(), status=status)
