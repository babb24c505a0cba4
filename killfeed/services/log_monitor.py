# services/log_monitor.py
"""
Per-server log polling.

One ``ServerLogMonitor`` per game server runs the ingestion cycle:

    stat -> rotation check -> read -> extract -> dedup -> aggregate
         -> notify -> commit

Every blocking call (SFTP and MySQL) runs in the manager's thread pool.
Remote calls are bounded by REMOTE_IO_TIMEOUT_SECONDS. The read cursor
only moves in the commit step, together with the stats it produced, so a
failed cycle is simply retried from the same offset on the next one.
"""

import asyncio
import functools
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from killfeed.config.settings import (
    DEATHLOG_EXTENSION,
    POLL_INTERVAL_SECONDS,
    PROBE_FILENAME,
    REMOTE_IO_TIMEOUT_SECONDS,
    SERVER_LOG_FILENAME,
    SFTP_PROBE_ENABLED,
)
from killfeed.database.store import PersistenceError, TenantStore
from killfeed.services.csv_parsers import DeathLogParser
from killfeed.services.cursors import FileRole, KillRecord, ServerCursor
from killfeed.services.dedup import EventDeduplicator
from killfeed.services.events import GameEvent
from killfeed.services.log_parsers import DeadsideLogParser
from killfeed.services.maintenance import reset_for_replay
from killfeed.services.rotation import RotationDetector, RotationVerdict, line_hash
from killfeed.services.sftp_logs import (
    RemoteFileAccessor,
    RemoteFileNotFound,
    RemotePermissionDenied,
    SFTPError,
    SFTPFileAccessor,
    TransientIOError,
    join_remote,
)
from killfeed.services.stats import StatAggregator
from killfeed.services.tenant import TenantBoundaryViolation, TenantKey

logger = logging.getLogger(__name__)


class CycleState(Enum):
    """Where a monitor is inside its current cycle."""
    IDLE = "idle"
    STAT_CHECKING = "stat_checking"
    ROTATION_EVALUATING = "rotation_evaluating"
    READING = "reading"
    EXTRACTING = "extracting"
    DEDUPLICATING = "deduplicating"
    AGGREGATING = "aggregating"
    NOTIFYING = "notifying"
    COMMITTING = "committing"


@dataclass(frozen=True)
class ServerConfig:
    """Everything needed to monitor one game server."""
    tenant: TenantKey
    server_name: str
    host: str
    port: int
    username: str
    password: str
    log_directory: str
    deathlog_directory: Optional[str] = None
    log_channel_id: Optional[int] = None
    killfeed_channel_id: Optional[int] = None
    enabled: bool = True
    server_log_filename: str = SERVER_LOG_FILENAME

    @classmethod
    def from_row(cls, row: dict, vault) -> "ServerConfig":
        """Build from a game_servers row, decrypting the SFTP password."""
        tenant = TenantKey.from_row(row)
        return cls(
            tenant=tenant,
            server_name=row.get('server_name') or tenant.server_id,
            host=row['host'],
            port=int(row.get('port') or 22),
            username=row['username'],
            password=vault.decrypt(row['password_encrypted'], tenant, bytes(row['encryption_salt'])),
            log_directory=row['log_directory'],
            deathlog_directory=row.get('deathlog_directory') or None,
            log_channel_id=row.get('log_channel_id'),
            killfeed_channel_id=row.get('killfeed_channel_id'),
            enabled=bool(row.get('enabled', True)),
        )

    def destination_for(self, event: GameEvent) -> Optional[int]:
        """Kills, deaths and suicides go to the kill feed; everything else to the log channel."""
        if event.affects_stats:
            return self.killfeed_channel_id or self.log_channel_id
        return self.log_channel_id


class Notifier(Protocol):
    def dispatch(self, event: GameEvent, destination_channel_id: int) -> None:
        """Fire and forget. Must not block."""
        ...


@dataclass
class CycleReport:
    """What one file poll did, for logs and the status command."""
    role: FileRole
    file_name: str
    lines_read: int = 0
    events: int = 0
    suppressed: int = 0
    already_applied: int = 0
    malformed: int = 0
    unmatched: int = 0
    stats_changed: int = 0
    notified: int = 0
    rotated: bool = False
    missing: bool = False
    backfill: bool = False
    committed_offset: Optional[int] = None
    finished_at: Optional[datetime] = None


async def run_blocking(fn: Callable, *args, timeout: Optional[float] = None,
                       executor: Optional[Executor] = None) -> Any:
    """
    Run a blocking call in a thread pool, optionally bounded by a timeout.

    A timeout becomes TransientIOError; the worker thread is left to finish
    on its own.
    """
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(executor, functools.partial(fn, *args))
    if timeout is None:
        return await future
    try:
        return await asyncio.wait_for(future, timeout=timeout)
    except asyncio.TimeoutError as e:
        name = getattr(fn, '__name__', repr(fn))
        raise TransientIOError(f"{name} timed out after {timeout}s") from e


class ServerLogMonitor:
    """
    Polls one game server's Deadside.log and death log CSVs.

    Owns all per-server state (rotation observations, dedup cache, SFTP
    connection); nothing is shared with other monitors.
    """

    def __init__(self, config: ServerConfig, accessor: RemoteFileAccessor, store: TenantStore,
                 notifier: Optional[Notifier] = None,
                 runner: Callable = run_blocking,
                 poll_interval: float = POLL_INTERVAL_SECONDS,
                 io_timeout: float = REMOTE_IO_TIMEOUT_SECONDS,
                 deduplicator: Optional[EventDeduplicator] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 probe_enabled: bool = SFTP_PROBE_ENABLED):
        self.config = config
        self.tenant = config.tenant
        self.accessor = accessor
        self.store = store
        self.notifier = notifier
        self.poll_interval = poll_interval
        self.io_timeout = io_timeout
        self.probe_enabled = probe_enabled
        self._runner = runner
        self._clock = clock

        self.detector = RotationDetector(name=str(self.tenant))
        self.deduplicator = deduplicator if deduplicator is not None else EventDeduplicator()
        self.aggregator = StatAggregator()
        self._parsers = {
            FileRole.SERVER_LOG: DeadsideLogParser(self.tenant),
            FileRole.DEATH_LOG: DeathLogParser(self.tenant),
        }

        self.state = CycleState.IDLE
        self._lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._replaying = False
        self._missing: set[FileRole] = set()

        self.cycles_completed = 0
        self.last_error: Optional[str] = None
        self.last_reports: list[CycleReport] = []

    # ==========================================
    # BLOCKING CALLS
    # ==========================================

    async def _io(self, fn: Callable, *args) -> Any:
        """Remote call, bounded by the I/O timeout."""
        return await self._runner(fn, *args, timeout=self.io_timeout)

    async def _db(self, fn: Callable, *args) -> Any:
        return await self._runner(fn, *args, timeout=None)

    # ==========================================
    # CYCLE
    # ==========================================

    async def run_cycle(self) -> list[CycleReport]:
        """
        Run one full cycle for this server. Safe to call manually; it shares
        the lock with the scheduled loop so at most one cycle is in flight.

        Expected failures (SFTP, persistence, tenant checks) end the cycle and
        are logged; the cursor stays where it was. The in-memory rotation
        observations are dropped too, so the next cycle compares against the
        persisted cursor rather than a stat it never committed.
        """
        async with self._lock:
            reports: list[CycleReport] = []
            completed = False
            try:
                reports.append(await self._poll_server_log())
                if self.config.deathlog_directory:
                    death_report = await self._poll_death_log()
                    if death_report is not None:
                        reports.append(death_report)
            except TransientIOError as e:
                self.last_error = f"Transient I/O error: {e}"
                logger.warning(f"[{self.config.server_name}] Cycle aborted, will retry: {e}")
            except RemotePermissionDenied as e:
                self.last_error = f"Permission denied: {e}"
                logger.error(f"[{self.config.server_name}] Cycle aborted: {e}")
            except SFTPError as e:
                self.last_error = f"SFTP error: {e}"
                logger.error(f"[{self.config.server_name}] Cycle aborted: {e}")
            except PersistenceError as e:
                self.last_error = f"Database error: {e}"
                logger.error(f"[{self.config.server_name}] Cycle not committed: {e}")
            except TenantBoundaryViolation as e:
                self.last_error = f"Tenant boundary violation: {e}"
                logger.error(f"[{self.config.server_name}] Cycle aborted: {e}")
            else:
                completed = True
                self.last_error = None
                self._replaying = False
                self.cycles_completed += 1
            finally:
                self.state = CycleState.IDLE
                if not completed:
                    for role in FileRole:
                        self.detector.forget(role)

            self.last_reports = reports
            return reports

    async def _poll_server_log(self) -> CycleReport:
        return await self._poll_file(
            FileRole.SERVER_LOG, self.config.log_directory, self.config.server_log_filename
        )

    async def _poll_death_log(self) -> Optional[CycleReport]:
        """
        Follow the newest death log CSV.

        The game starts a new CSV per session. When a newer file shows up the
        rest of the old one is drained and committed first, then the cursor
        moves to the new file at offset 0.
        """
        directory = self.config.deathlog_directory
        try:
            names = await self._io(self.accessor.list_files, directory)
        except RemoteFileNotFound:
            logger.warning(f"[{self.config.server_name}] Death log directory {directory} not found")
            return None

        csv_files = sorted(n for n in names if n.lower().endswith(DEATHLOG_EXTENSION))
        if not csv_files:
            logger.debug(f"[{self.config.server_name}] No death log files in {directory}")
            return None
        newest = csv_files[-1]

        cursor = await self._db(self.store.find_cursor, self.tenant, FileRole.DEATH_LOG)
        if cursor is not None and cursor.tracked_file_name != newest:
            if cursor.tracked_file_name in csv_files:
                logger.info(
                    f"[{self.config.server_name}] Draining {cursor.tracked_file_name} before switching to {newest}"
                )
                await self._poll_file(FileRole.DEATH_LOG, directory, cursor.tracked_file_name)
                cursor = await self._db(self.store.find_cursor, self.tenant, FileRole.DEATH_LOG)

            switched = cursor.rotated(self._clock(), tracked_file_name=newest)
            await self._db(self.store.upsert_cursor, self.tenant, switched)
            self.detector.forget(FileRole.DEATH_LOG)
            logger.info(f"[{self.config.server_name}] Death log switched to {newest}")

        return await self._poll_file(FileRole.DEATH_LOG, directory, newest)

    async def _poll_file(self, role: FileRole, directory: str, file_name: str) -> CycleReport:
        report = CycleReport(role=role, file_name=file_name)
        path = join_remote(directory, file_name)

        self.state = CycleState.STAT_CHECKING
        stored = await self._db(self.store.find_cursor, self.tenant, role)
        cursor = self._working_cursor(role, stored, file_name)
        report.backfill = stored is None or self._replaying

        try:
            remote = await self._io(self.accessor.stat, path)
        except RemoteFileNotFound:
            report.missing = True
            await self._handle_missing(role, cursor, stored, directory, path)
            return report
        self._missing.discard(role)

        self.state = CycleState.ROTATION_EVALUATING
        verdict = self.detector.evaluate(role, remote.size, remote.last_modified)
        prefetched: Optional[tuple[list[str], int]] = None

        if verdict is RotationVerdict.SIZE_DECREASED:
            cursor = await self._rotate(cursor, "file size decreased")
            report.rotated = True
        elif verdict is RotationVerdict.MTIME_SUSPECT and cursor.line_offset > 0:
            # Rare path: read the whole file to check the line at offset - 1
            whole, end = await self._io(self.accessor.read_new_lines, path, 0)
            previous_line = whole[cursor.line_offset - 1] if len(whole) >= cursor.line_offset else None
            if self.detector.corroborate(previous_line, cursor.last_line_hash):
                cursor = await self._rotate(cursor, "modification time jumped and last line changed")
                report.rotated = True
                prefetched = (whole, end)
            else:
                logger.debug(f"[{self.config.server_name}] mtime jump on {file_name} but same file, no rotation")
                prefetched = (whole[cursor.line_offset:], end)

        self.state = CycleState.READING
        read_from = cursor.line_offset
        if prefetched is not None:
            lines, end_byte = prefetched
        else:
            lines, end_byte = await self._read_new(path, cursor)

        if role is FileRole.SERVER_LOG and read_from > 0 and self.detector.scan_markers(lines):
            cursor = await self._rotate(cursor, "in-band rotation marker")
            report.rotated = True
            lines, end_byte = await self._io(self.accessor.read_new_lines, path, 0)

        report.lines_read = len(lines)

        self.state = CycleState.EXTRACTING
        result = self._parsers[role].parse_lines(lines)
        report.malformed = result.malformed
        report.unmatched = result.unmatched
        report.events = len(result.events)

        self.state = CycleState.DEDUPLICATING
        events = [event for event in result.events if not self.deduplicator.should_suppress(event)]
        report.suppressed = len(result.events) - len(events)
        events = await self._drop_already_applied(events, report)

        self.state = CycleState.AGGREGATING
        changed = await self._db(self.aggregator.aggregate, self.tenant, events, self.store.find_player_stat)
        records = [r for r in (KillRecord.from_event(e) for e in events) if r is not None]
        report.stats_changed = len(changed)

        self.state = CycleState.NOTIFYING
        if not report.backfill:
            report.notified = self._notify(events)

        self.state = CycleState.COMMITTING
        advanced = cursor.advanced(
            len(lines), remote.size, remote.last_modified,
            line_hash(lines[-1]) if lines else None, end_byte
        )
        if advanced != stored or changed or records:
            await self._db(self.store.commit_cycle, self.tenant, list(changed.values()), records, advanced)
        report.committed_offset = advanced.line_offset
        report.finished_at = self._clock()

        if lines:
            logger.info(
                f"[{self.config.server_name}] {role.value} {file_name}: {len(lines)} line(s), "
                f"{len(events)} event(s), {report.suppressed} suppressed, {report.already_applied} already applied, "
                f"{report.malformed} malformed, offset {advanced.line_offset}"
                + (" (backfill)" if report.backfill else "")
            )
        return report

    def _working_cursor(self, role: FileRole, stored: Optional[ServerCursor], file_name: str) -> ServerCursor:
        """Cursor to continue from. A cursor tracking another file starts a new epoch."""
        if stored is None:
            self.detector.forget(role)
            return ServerCursor(tenant=self.tenant, role=role, tracked_file_name=file_name)
        if stored.tracked_file_name != file_name:
            self.detector.forget(role)
            return stored.rotated(self._clock(), tracked_file_name=file_name)
        if self.detector.observation(role) is None:
            self.detector.seed(role, stored.last_known_size, stored.last_modified)
        return stored

    async def _read_new(self, path: str, cursor: ServerCursor) -> tuple[list[str], int]:
        """
        Lines after the cursor and the byte position just past the last one.

        Normally a seek to ``byte_offset``. A cursor that has consumed lines
        but carries no byte position is caught up by counting lines from the
        start once.
        """
        if cursor.line_offset == 0:
            return await self._io(self.accessor.read_new_lines, path, 0)
        if cursor.byte_offset > 0:
            return await self._io(self.accessor.read_new_lines, path, cursor.byte_offset)
        lines, end = await self._io(self.accessor.read_new_lines, path, 0)
        return lines[cursor.line_offset:], end

    async def _rotate(self, cursor: ServerCursor, reason: str) -> ServerCursor:
        """Reset to offset 0 and persist before re-reading."""
        rotated = cursor.rotated(self._clock())
        logger.info(
            f"[{self.config.server_name}] Rotation of {cursor.tracked_file_name} ({reason}), "
            f"offset {cursor.line_offset} -> 0"
        )
        await self._db(self.store.upsert_cursor, self.tenant, rotated)
        return rotated

    async def _handle_missing(self, role: FileRole, cursor: ServerCursor, stored: Optional[ServerCursor],
                              directory: str, path: str) -> None:
        """
        The tracked file is gone: probably mid-rotation, maybe deleted.

        Not a failure. The cursor is reset and persisted once; a probe file
        is written to check the directory is still reachable.
        """
        self.detector.forget(role)
        first_time = role not in self._missing
        self._missing.add(role)

        if stored is None or stored.line_offset > 0 or stored.last_known_size > 0:
            await self._db(self.store.upsert_cursor, self.tenant, cursor.rotated(self._clock()))

        if first_time:
            logger.warning(f"[{self.config.server_name}] {path} not found, cursor reset (rotation in progress?)")
            if self.probe_enabled:
                await self._write_probe(directory)

    async def _write_probe(self, directory: str) -> None:
        probe_path = join_remote(directory, PROBE_FILENAME)
        try:
            await self._io(self.accessor.write, probe_path, f"killfeed probe {self._clock().isoformat()}\n")
            logger.info(f"[{self.config.server_name}] Probe written to {probe_path}, directory reachable")
        except SFTPError as e:
            logger.warning(f"[{self.config.server_name}] Probe write to {probe_path} failed: {e}")

    async def _drop_already_applied(self, events: list[GameEvent], report: CycleReport) -> list[GameEvent]:
        """Skip kills/deaths whose fingerprint is already recorded (re-read ranges)."""
        fingerprints = [fp for fp in (e.fingerprint() for e in events) if fp]
        if not fingerprints:
            return events

        known = await self._db(self.store.known_fingerprints, self.tenant, fingerprints)
        fresh = []
        seen = set()
        for event in events:
            fingerprint = event.fingerprint()
            if fingerprint is not None:
                if fingerprint in known or fingerprint in seen:
                    report.already_applied += 1
                    continue
                seen.add(fingerprint)
            fresh.append(event)
        return fresh

    def _notify(self, events: list[GameEvent]) -> int:
        if self.notifier is None:
            return 0
        sent = 0
        for event in events:
            destination = self.config.destination_for(event)
            if not destination:
                continue
            try:
                self.notifier.dispatch(event, destination)
                sent += 1
            except Exception as e:
                logger.error(f"[{self.config.server_name}] Notifier error: {e}", exc_info=True)
        return sent

    # ==========================================
    # LIFECYCLE
    # ==========================================

    def begin_replay(self) -> None:
        """Next cycle reads from the persisted (rewound) cursors with notifications off."""
        self._replaying = True
        self.deduplicator.clear()
        for role in FileRole:
            self.detector.forget(role)
        logger.info(f"[{self.config.server_name}] Replay requested")

    async def replay(self) -> None:
        """
        Wipe this server's stats, rewind its cursors and flag the next cycle
        as a silent replay.

        Runs under the cycle lock: a cycle already in flight commits first and
        is then wiped, and no cycle can start between the reset and the flag.
        """
        async with self._lock:
            await self._db(reset_for_replay, self.store, self.tenant, self._clock())
            self.begin_replay()

    async def start(self) -> None:
        """Start the fixed-delay monitor loop."""
        if self.is_running:
            logger.warning(f"[{self.config.server_name}] Monitor already running")
            return

        self._stop_event = asyncio.Event()
        logger.info(f"[{self.config.server_name}] Starting log monitor, poll interval: {self.poll_interval}s")
        self._task = asyncio.create_task(self._monitor_loop())

    async def _monitor_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"[{self.config.server_name}] Error in monitor loop: {e}", exc_info=True)

            # Fixed delay: wait the full interval after each cycle, wake early on stop
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"[{self.config.server_name}] Monitor loop stopped")

    async def stop(self) -> None:
        """Stop scheduling; an in-flight cycle finishes first."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        await self._db(self.accessor.close)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> dict:
        return {
            'server_name': self.config.server_name,
            'running': self.is_running,
            'state': self.state.value,
            'cycles_completed': self.cycles_completed,
            'last_error': self.last_error,
            'reports': list(self.last_reports),
        }


class LogMonitorManager:
    """
    Manager for every server's monitor.

    Owns the thread pool the monitors run their blocking calls in; it is
    sized to the number of monitored servers.
    """

    def __init__(self, store: Optional[TenantStore] = None,
                 io_timeout: float = REMOTE_IO_TIMEOUT_SECONDS):
        self.store = store
        self.io_timeout = io_timeout
        self._monitors: dict[TenantKey, ServerLogMonitor] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

    def _ensure_executor(self) -> ThreadPoolExecutor:
        wanted = max(1, len(self._monitors))
        if self._executor is None or self._executor._max_workers < wanted:
            old = self._executor
            self._executor = ThreadPoolExecutor(max_workers=wanted, thread_name_prefix="killfeed-io")
            if old is not None:
                old.shutdown(wait=False)
            logger.debug(f"I/O pool sized to {wanted} worker(s)")
        return self._executor

    async def run_io(self, fn: Callable, *args, timeout: Optional[float] = None) -> Any:
        """Runner handed to monitors: the manager's pool plus an optional timeout."""
        return await run_blocking(fn, *args, timeout=timeout, executor=self._ensure_executor())

    def create_monitor(self, config: ServerConfig, notifier: Optional[Notifier] = None,
                       accessor: Optional[RemoteFileAccessor] = None,
                       poll_interval: float = POLL_INTERVAL_SECONDS) -> ServerLogMonitor:
        """
        Create (or replace) the monitor for a server.

        Args:
            config: Server configuration with decrypted credentials
            notifier: Where events are dispatched
            accessor: Remote file accessor; defaults to SFTP with the config's credentials
            poll_interval: Seconds between the end of one cycle and the start of the next
        """
        if self.store is None:
            raise RuntimeError("LogMonitorManager has no store configured")
        if accessor is None:
            accessor = SFTPFileAccessor(
                config.host, config.port, config.username, config.password,
                server_name=config.server_name, timeout=self.io_timeout
            )
        monitor = ServerLogMonitor(
            config, accessor, self.store, notifier,
            runner=self.run_io, poll_interval=poll_interval, io_timeout=self.io_timeout
        )
        self._monitors[config.tenant] = monitor
        self._ensure_executor()
        return monitor

    def get_monitor(self, tenant: TenantKey) -> Optional[ServerLogMonitor]:
        return self._monitors.get(tenant)

    def get_guild_monitors(self, guild_id: int) -> list[ServerLogMonitor]:
        return [m for t, m in self._monitors.items() if t.guild_id == guild_id]

    async def start_monitor(self, tenant: TenantKey) -> bool:
        monitor = self._monitors.get(tenant)
        if monitor and not monitor.is_running:
            await monitor.start()
            return True
        return False

    async def stop_monitor(self, tenant: TenantKey) -> bool:
        monitor = self._monitors.get(tenant)
        if monitor and monitor.is_running:
            await monitor.stop()
            return True
        return False

    async def remove_monitor(self, tenant: TenantKey) -> None:
        """Stop and remove a monitor."""
        await self.stop_monitor(tenant)
        self._monitors.pop(tenant, None)

    def get_active_count(self) -> int:
        return sum(1 for m in self._monitors.values() if m.is_running)

    async def stop_all(self) -> None:
        """Let every in-flight cycle finish, then shut the pool down."""
        await asyncio.gather(*(m.stop() for m in self._monitors.values() if m.is_running))
        if self._executor is not None:
            executor, self._executor = self._executor, None
            await asyncio.to_thread(executor.shutdown, True)
        logger.info("All log monitors stopped")


# Global manager instance, store attached at startup
log_monitor_manager = LogMonitorManager()
