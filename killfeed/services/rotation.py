# services/rotation.py
"""
Log rotation detection.

Deadside truncates or replaces its log on restart and the death log moves to
a new CSV per session. We only ever see the remote file through stat and
line reads, so rotation is inferred from three signals in decreasing order
of trust:

1. the file got smaller
2. an in-band marker on any of the newly read lines (only when reading
   from an offset past 0)
3. the modification time jumped by more than an hour (needs corroboration,
   done by the monitor because it requires another read)
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from killfeed.config.settings import ROTATION_MTIME_THRESHOLD_SECONDS
from killfeed.services.cursors import FileRole
from killfeed.services.log_parsers import DeadsideLogParser

logger = logging.getLogger(__name__)


class RotationVerdict(Enum):
    FIRST_OBSERVATION = "first_observation"
    NONE = "none"
    SIZE_DECREASED = "size_decreased"
    MTIME_SUSPECT = "mtime_suspect"

    @property
    def is_rotation(self) -> bool:
        return self is RotationVerdict.SIZE_DECREASED


@dataclass
class FileObservation:
    size: int
    last_modified: Optional[datetime]


def line_hash(line: str) -> str:
    """md5 of a line without its line ending, as stored in ``last_line_hash``."""
    return hashlib.md5(line.rstrip("\r\n").encode("utf-8")).hexdigest()


class RotationDetector:
    """Per-server rotation state, one observation per file role."""

    def __init__(self, name: str = "", mtime_threshold_seconds: int = ROTATION_MTIME_THRESHOLD_SECONDS):
        self.name = name
        self.mtime_threshold_seconds = mtime_threshold_seconds
        self._state: dict[FileRole, FileObservation] = {}

    def seed(self, role: FileRole, size: int, last_modified: Optional[datetime]) -> None:
        """Restore the last observation from a persisted cursor after a restart."""
        if size and size > 0:
            self._state[role] = FileObservation(size, last_modified)
        else:
            self._state.pop(role, None)

    def forget(self, role: FileRole) -> None:
        self._state.pop(role, None)

    def observation(self, role: FileRole) -> Optional[FileObservation]:
        return self._state.get(role)

    def evaluate(self, role: FileRole, current_size: int,
                 current_modified: Optional[datetime]) -> RotationVerdict:
        """
        Compare a fresh stat with the previous one.

        The new size and mtime are recorded whatever the verdict.
        """
        previous = self._state.get(role)
        self._state[role] = FileObservation(current_size, current_modified)

        if previous is None or previous.size <= 0:
            return RotationVerdict.FIRST_OBSERVATION

        if current_size < previous.size:
            logger.info(
                f"[{self.name}] {role.value} shrank from {previous.size} to {current_size} bytes, rotation detected"
            )
            return RotationVerdict.SIZE_DECREASED

        if previous.last_modified is not None and current_modified is not None:
            delta = abs((current_modified - previous.last_modified).total_seconds())
            if delta > self.mtime_threshold_seconds:
                logger.info(f"[{self.name}] {role.value} mtime jumped {delta:.0f}s, suspecting rotation")
                return RotationVerdict.MTIME_SUSPECT

        return RotationVerdict.NONE

    @staticmethod
    def scan_markers(lines: Iterable[str]) -> bool:
        """True if any line carries a 'log opened' / restart marker."""
        return any(DeadsideLogParser.contains_rotation_marker(line) for line in lines)

    @staticmethod
    def corroborate(previous_line: Optional[str], stored_hash: Optional[str]) -> bool:
        """
        Decide whether an mtime jump is a real rotation.

        ``previous_line`` is the line at ``offset - 1`` read back from the file
        (None when the file no longer has that many lines). A matching hash
        means the same file merely sat idle.
        """
        if not stored_hash:
            return True
        if previous_line is None:
            return True
        return line_hash(previous_line) != stored_hash
