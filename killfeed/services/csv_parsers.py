# services/csv_parsers.py
"""
Parser for Deadside death log CSV files.

Two layouts are accepted:

    short (6 fields):
        timestamp;killer;victim;weapon;distance;cause
    extended (7+ fields, what the game writes):
        timestamp;killer;killer_id;victim;victim_id;weapon;distance[;...]

Every non-blank line becomes exactly one Kill, Suicide or Death. Lines that
cannot be classified are counted as malformed and skipped.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from killfeed.services.events import DeathEvent, GameEvent, KillEvent, SuicideEvent, clip_name
from killfeed.services.log_parsers import ParseResult, is_suicide_cause
from killfeed.services.tenant import TenantKey

logger = logging.getLogger(__name__)

SHORT_LAYOUT_FIELDS = 6
EXTENDED_LAYOUT_MIN_FIELDS = 7

TIMESTAMP_FORMATS = ("%Y.%m.%d-%H.%M.%S", "%Y.%m.%d-%H.%M.%S:%f")

# Killer placeholder the game writes for environmental deaths
ENVIRONMENT_KILLER = "**"


class MalformedLine(ValueError):
    """A death log line that cannot be turned into an event."""
    pass


class DeathLogParser:
    """Fixed-field parser for one tenant's death log."""

    def __init__(self, tenant: TenantKey):
        self.tenant = tenant

    def parse_lines(self, lines: list[str]) -> ParseResult:
        """
        Parse a batch of CSV lines in order.

        Malformed lines increment ``result.malformed`` and never abort the batch.
        """
        result = ParseResult()
        for line in lines:
            if not line or not line.strip():
                result.blank += 1
                continue
            try:
                result.events.append(self.parse_line(line))
            except MalformedLine as e:
                result.malformed += 1
                logger.debug(f"[{self.tenant}] Malformed death log line ({e}): {line[:100]}")
        return result

    def parse_line(self, line: str) -> GameEvent:
        raw = line.rstrip("\r\n")
        fields = self._split(raw)

        if len(fields) == SHORT_LAYOUT_FIELDS:
            timestamp, killer, victim, weapon, distance, cause = fields
            killer_id = victim_id = None
        elif len(fields) >= EXTENDED_LAYOUT_MIN_FIELDS:
            timestamp, killer, killer_id, victim, victim_id, weapon, distance = fields[:7]
            cause = weapon
        else:
            raise MalformedLine(f"expected {SHORT_LAYOUT_FIELDS} or at least "
                                f"{EXTENDED_LAYOUT_MIN_FIELDS} fields, got {len(fields)}")

        killer, victim, weapon, cause = (clip_name(v) for v in (killer, victim, weapon, cause))
        if not victim:
            raise MalformedLine("empty victim")

        distance_m = self._parse_distance(distance)
        when = self._parse_timestamp(timestamp)
        common = dict(tenant=self.tenant, timestamp=when, raw_line=raw)
        killer_id = killer_id or None
        victim_id = victim_id or None

        # Environmental death or suicide, no killer to credit
        if not killer or killer == ENVIRONMENT_KILLER:
            cause = cause or weapon
            if is_suicide_cause(cause):
                return SuicideEvent(player=victim, cause=cause, player_id=victim_id, **common)
            return DeathEvent(player=victim, cause=cause, player_id=victim_id, **common)

        same_player = killer == victim and (killer_id is None or victim_id is None or killer_id == victim_id)
        if same_player or is_suicide_cause(weapon) or is_suicide_cause(cause):
            return SuicideEvent(player=victim, cause=cause or weapon, player_id=victim_id, **common)

        return KillEvent(killer=killer, victim=victim, weapon=weapon,
                         distance=distance_m,
                         killer_id=killer_id, victim_id=victim_id, **common)

    @staticmethod
    def _split(line: str) -> list[str]:
        delimiter = ";" if ";" in line else ","
        if line.endswith(delimiter):
            line = line[:-1]
        return [f.strip() for f in line.split(delimiter)]

    @staticmethod
    def _parse_distance(value: str) -> float:
        if not value:
            return 0.0
        try:
            distance = float(value)
        except ValueError:
            raise MalformedLine(f"non-numeric distance {value!r}")
        if not math.isfinite(distance) or distance < 0:
            raise MalformedLine(f"invalid distance {value!r}")
        return distance

    @staticmethod
    def _parse_timestamp(value: str) -> Optional[datetime]:
        for fmt in TIMESTAMP_FORMATS:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
        return None
