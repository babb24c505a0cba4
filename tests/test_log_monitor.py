import asyncio
import time
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from killfeed.database.store import PersistenceError
from killfeed.services.credentials import CredentialVault
from killfeed.services.cursors import FileRole, ServerCursor
from killfeed.services.dedup import EventDeduplicator
from killfeed.services.events import JoinEvent, KillEvent, LeaveEvent
from killfeed.services.log_monitor import LogMonitorManager, ServerConfig, ServerLogMonitor, run_blocking
from killfeed.services.rotation import line_hash
from killfeed.services.sftp_logs import RemotePermissionDenied, TransientIOError
from killfeed.services.tenant import TenantKey

from tests.conftest import (
    DEATHLOG_DIR, LOG_DIR, LOG_PATH, FakeAccessor, InMemoryTenantStore, inline_runner, log_line
)

T0 = datetime(2024, 1, 15, 12, 0, 0)

JOIN = log_line("[Login] Player Alice connected", "2024.01.15-12.30.40:000")
KILL = log_line("[Kill] Alice killed Bob with AK47 at distance 52", "2024.01.15-12.30.45:123")
LEAVE = log_line("[Logout] Player Alice disconnected", "2024.01.15-12.31.00:000")


def seed_cursor(store, tenant, role=FileRole.SERVER_LOG, name="Deadside.log", **fields):
    store.upsert_cursor(tenant, ServerCursor(tenant=tenant, role=role, tracked_file_name=name, **fields))


def byte_len(*lines):
    return sum(len(line.encode()) + 1 for line in lines)


def offsets_of_zero(store):
    return [c for c in store.cursor_history if c.role is FileRole.SERVER_LOG and c.line_offset == 0]


class TestIngestionCycle:
    async def test_join_kill_leave(self, monitor, store, accessor, notifier, tenant):
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [JOIN, KILL, LEAVE], mtime=T0)

        reports = await monitor.run_cycle()

        report = reports[0]
        assert report.lines_read == 3
        assert report.events == 3
        assert report.committed_offset == 3
        assert not report.backfill
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 3

        alice = store.stats[(tenant, "Alice")]
        bob = store.stats[(tenant, "Bob")]
        assert (alice.kills, alice.deaths) == (1, 0)
        assert (bob.kills, bob.deaths) == (0, 1)
        assert len(store.records) == 1

        dispatched = [(type(e), channel) for e, channel in notifier.dispatched]
        assert dispatched == [(JoinEvent, 100), (KillEvent, 200), (LeaveEvent, 100)]
        assert monitor.cycles_completed == 1
        assert monitor.last_error is None

    async def test_offset_equals_lines_consumed(self, monitor, store, accessor, dedup_clock, tenant):
        accessor.set_file(LOG_PATH, [JOIN, KILL], mtime=T0)
        await monitor.run_cycle()

        dedup_clock.advance(10000)
        accessor.append(LOG_PATH, [LEAVE], mtime=T0 + timedelta(minutes=1))
        reports = await monitor.run_cycle()

        assert reports[0].lines_read == 1
        assert accessor.reads[-1] == (LOG_PATH, byte_len(JOIN, KILL))
        cursor = store.cursors[(tenant, FileRole.SERVER_LOG)]
        assert cursor.line_offset == 3
        assert cursor.byte_offset == byte_len(JOIN, KILL, LEAVE)
        assert cursor.last_line_hash == line_hash(LEAVE)

    async def test_unfinished_last_line_waits(self, monitor, store, accessor, tenant):
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [JOIN], mtime=T0)
        accessor.files[LOG_PATH]['content'] += KILL[:20]

        await monitor.run_cycle()
        cursor = store.cursors[(tenant, FileRole.SERVER_LOG)]
        assert cursor.line_offset == 1
        assert cursor.byte_offset == byte_len(JOIN)

    async def test_cursor_without_byte_position_catches_up(self, monitor, store, accessor, tenant):
        seed_cursor(store, tenant, line_offset=1, last_known_size=10, last_modified=T0)
        accessor.set_file(LOG_PATH, [JOIN, KILL], mtime=T0)

        reports = await monitor.run_cycle()
        assert accessor.reads == [(LOG_PATH, 0)]
        assert reports[0].lines_read == 1
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].byte_offset == byte_len(JOIN, KILL)

        accessor.append(LOG_PATH, [LEAVE])
        reports = await monitor.run_cycle()
        assert accessor.reads[-1] == (LOG_PATH, byte_len(JOIN, KILL))
        assert reports[0].lines_read == 1

    async def test_no_new_lines_commits_nothing(self, monitor, store, accessor, tenant):
        accessor.set_file(LOG_PATH, [JOIN], mtime=T0)
        await monitor.run_cycle()
        commits = store.commits

        await monitor.run_cycle()
        assert store.commits == commits
        assert monitor.cycles_completed == 2

    async def test_first_cycle_is_backfill(self, monitor, store, accessor, notifier, tenant):
        accessor.set_file(LOG_PATH, [JOIN, KILL, LEAVE], mtime=T0)

        reports = await monitor.run_cycle()

        assert reports[0].backfill
        assert notifier.dispatched == []
        assert store.stats[(tenant, "Alice")].kills == 1

    async def test_notifier_failure_does_not_abort_cycle(self, monitor, store, accessor, tenant):
        class Broken:
            def dispatch(self, event, destination_channel_id):
                raise RuntimeError("discord down")

        monitor.notifier = Broken()
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [KILL], mtime=T0)

        await monitor.run_cycle()
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 1
        assert monitor.last_error is None

    async def test_events_without_destination_are_not_sent(self, make_monitor, server_config, store,
                                                           accessor, notifier, tenant):
        monitor = make_monitor(replace(server_config, log_channel_id=None))
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [JOIN, KILL], mtime=T0)

        reports = await monitor.run_cycle()
        assert [type(e) for e, _ in notifier.dispatched] == [KillEvent]
        assert reports[0].notified == 1


class TestRotation:
    async def test_size_drop_resets_offset_once(self, monitor, store, accessor, notifier, tenant):
        seed_cursor(store, tenant, line_offset=1000, last_known_size=500000, last_modified=T0)
        accessor.set_file(LOG_PATH, [JOIN, KILL], mtime=T0, size=120)

        reports = await monitor.run_cycle()
        assert reports[0].rotated
        assert reports[0].committed_offset == 2
        assert len(offsets_of_zero(store)) == 1
        assert accessor.reads == [(LOG_PATH, 0)]
        assert len(notifier.dispatched) == 2

        reports = await monitor.run_cycle()
        assert not reports[0].rotated
        assert len(offsets_of_zero(store)) == 1
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 2

    async def test_rotation_stamps_time(self, monitor, store, accessor, tenant):
        seed_cursor(store, tenant, line_offset=10, last_known_size=5000, last_modified=T0)
        accessor.set_file(LOG_PATH, [JOIN], mtime=T0)

        await monitor.run_cycle()
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].last_rotation_at == datetime(2024, 1, 15, 13, 0, 0)

    async def test_in_band_marker_restarts_from_zero(self, monitor, store, accessor, dedup_clock, tenant):
        first = log_line("[Login] Player Zed connected", "2024.01.14-23.00.00:000")
        accessor.set_file(LOG_PATH, [first], mtime=T0)
        await monitor.run_cycle()

        dedup_clock.advance(10000)
        restart = log_line("Server initialization started", "2024.01.15-12.00.00:000")
        accessor.set_file(LOG_PATH, [log_line("Log file /Deadside.log opened", "2024.01.15-12.00.00:000"),
                                     restart, JOIN], mtime=T0 + timedelta(minutes=5))

        reports = await monitor.run_cycle()
        assert reports[0].rotated
        assert accessor.reads[-2][1] == byte_len(first)
        assert accessor.reads[-1] == (LOG_PATH, 0)
        assert reports[0].committed_offset == 3
        assert reports[0].events == 2
        assert reports[0].unmatched == 1

    async def test_marker_at_offset_zero_is_not_a_rotation(self, monitor, store, accessor, tenant):
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [log_line("Server restarting"), JOIN], mtime=T0)

        reports = await monitor.run_cycle()
        assert not reports[0].rotated
        assert reports[0].committed_offset == 2

    async def test_mtime_jump_same_file_is_not_rotation(self, monitor, store, accessor, dedup_clock, tenant):
        accessor.set_file(LOG_PATH, [JOIN, KILL], mtime=T0)
        await monitor.run_cycle()

        dedup_clock.advance(10000)
        accessor.append(LOG_PATH, [LEAVE], mtime=T0 + timedelta(hours=2))
        reports = await monitor.run_cycle()

        assert not reports[0].rotated
        assert accessor.reads[-1] == (LOG_PATH, 0)
        assert reports[0].lines_read == 1
        cursor = store.cursors[(tenant, FileRole.SERVER_LOG)]
        assert cursor.line_offset == 3
        assert cursor.byte_offset == byte_len(JOIN, KILL, LEAVE)

    async def test_mtime_jump_with_changed_line_is_rotation(self, monitor, store, accessor, dedup_clock, tenant):
        accessor.set_file(LOG_PATH, [JOIN, KILL], mtime=T0)
        await monitor.run_cycle()

        dedup_clock.advance(10000)
        fresh = [log_line(f"[Login] Player P{i} connected", "2024.01.15-14.00.00:000") for i in range(4)]
        accessor.set_file(LOG_PATH, fresh, mtime=T0 + timedelta(hours=2))
        reports = await monitor.run_cycle()

        assert reports[0].rotated
        assert accessor.reads == [(LOG_PATH, 0), (LOG_PATH, 0)]
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 4


class TestMissingFile:
    async def test_missing_file_resets_cursor_and_probes_once(self, monitor, store, accessor, tenant):
        seed_cursor(store, tenant, line_offset=5, last_known_size=800, last_modified=T0)
        history_before = len(store.cursor_history)

        reports = await monitor.run_cycle()
        assert reports[0].missing
        assert monitor.last_error is None
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 0
        assert [path for path, _ in accessor.writes] == [f"{LOG_DIR}/log_parser_probe.txt"]

        await monitor.run_cycle()
        assert len(store.cursor_history) == history_before + 1
        assert len(accessor.writes) == 1

    async def test_file_reappears(self, monitor, store, accessor, dedup_clock, tenant):
        seed_cursor(store, tenant, line_offset=5, last_known_size=800, last_modified=T0)
        await monitor.run_cycle()

        accessor.set_file(LOG_PATH, [JOIN], mtime=T0 + timedelta(minutes=2))
        reports = await monitor.run_cycle()
        assert not reports[0].missing
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 1

    async def test_probe_disabled(self, make_monitor, server_config, accessor):
        monitor = make_monitor(server_config, probe_enabled=False)
        await monitor.run_cycle()
        assert accessor.writes == []


class TestFailures:
    async def test_transient_error_leaves_cursor(self, monitor, store, accessor, dedup_clock, tenant):
        seed_cursor(store, tenant, line_offset=1, last_known_size=10, last_modified=T0)
        stored = store.cursors[(tenant, FileRole.SERVER_LOG)]
        accessor.set_file(LOG_PATH, [JOIN, KILL], mtime=T0)
        accessor.failures['read'] = TransientIOError("read timed out")

        reports = await monitor.run_cycle()
        assert reports == []
        assert monitor.last_error.startswith("Transient I/O error")
        assert store.cursors[(tenant, FileRole.SERVER_LOG)] is stored
        assert store.stats == {}
        assert monitor.cycles_completed == 0

        del accessor.failures['read']
        dedup_clock.advance(10000)
        await monitor.run_cycle()
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 2
        assert store.stats[(tenant, "Alice")].kills == 1
        assert monitor.last_error is None

    async def test_permission_denied(self, monitor, accessor):
        accessor.failures['stat'] = RemotePermissionDenied("nope")
        await monitor.run_cycle()
        assert monitor.last_error.startswith("Permission denied")

    async def test_failed_rotation_write_is_detected_again(self, monitor, store, accessor, dedup_clock, tenant):
        accessor.set_file(LOG_PATH, [log_line(f"[Login] Player P{i} connected") for i in range(10)], mtime=T0)
        await monitor.run_cycle()
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 10

        write_cursor = store.upsert_cursor
        failed = []

        def upsert_failing_once(key, cursor):
            if not failed:
                failed.append(cursor)
                raise PersistenceError("upsert_cursor failed: connection lost")
            write_cursor(key, cursor)

        store.upsert_cursor = upsert_failing_once
        accessor.set_file(LOG_PATH, [KILL], mtime=T0 + timedelta(minutes=1))

        await monitor.run_cycle()
        assert failed[0].line_offset == 0
        assert monitor.last_error.startswith("Database error")
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 10

        dedup_clock.advance(10000)
        reports = await monitor.run_cycle()
        assert reports[0].rotated
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 1
        assert store.stats[(tenant, "Alice")].kills == 1

    async def test_persistence_failure_commits_nothing(self, monitor, store, accessor, dedup_clock, tenant):
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [KILL], mtime=T0)
        store.fail_commit = True

        await monitor.run_cycle()
        assert monitor.last_error.startswith("Database error")
        assert store.records == {}
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 0

        store.fail_commit = False
        dedup_clock.advance(10000)
        await monitor.run_cycle()
        assert store.stats[(tenant, "Alice")].kills == 1
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 1


class TestDuplicates:
    async def test_duplicate_within_window_dispatched_once(self, monitor, store, accessor, notifier,
                                                           dedup_clock, tenant):
        seed_cursor(store, tenant)
        again = log_line("[Kill] Alice killed Bob with AK47 at distance 52", "2024.01.15-12.30.46:001")
        accessor.set_file(LOG_PATH, [KILL, again], mtime=T0)

        reports = await monitor.run_cycle()
        assert reports[0].suppressed == 1
        assert len(notifier.dispatched) == 1
        assert store.stats[(tenant, "Alice")].kills == 1

        dedup_clock.advance(4000)
        later = log_line("[Kill] Alice killed Bob with AK47 at distance 52", "2024.01.15-12.30.50:000")
        accessor.append(LOG_PATH, [later])
        await monitor.run_cycle()
        assert len(notifier.dispatched) == 2
        assert store.stats[(tenant, "Alice")].kills == 2

    async def test_reread_range_is_not_applied_twice(self, monitor, store, accessor, dedup_clock, tenant):
        accessor.set_file(LOG_PATH, [JOIN, KILL, LEAVE], mtime=T0)
        await monitor.run_cycle()

        # rewind without wiping stats, as after a lost cursor write
        cursor = store.cursors[(tenant, FileRole.SERVER_LOG)]
        store.cursors[(tenant, FileRole.SERVER_LOG)] = replace(cursor, line_offset=0)
        dedup_clock.advance(10000)

        reports = await monitor.run_cycle()
        assert reports[0].already_applied == 1
        assert store.stats[(tenant, "Alice")].kills == 1
        assert store.stats[(tenant, "Bob")].deaths == 1


class TestReplay:
    async def test_replay_rebuilds_stats_silently(self, monitor, store, accessor, notifier, tenant):
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [JOIN, KILL, LEAVE], mtime=T0)
        await monitor.run_cycle()
        sent = len(notifier.dispatched)

        await monitor.replay()
        assert store.stats == {}

        reports = await monitor.run_cycle()
        assert reports[0].backfill
        assert len(notifier.dispatched) == sent
        assert store.stats[(tenant, "Alice")].kills == 1
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 3

        accessor.append(LOG_PATH, [log_line("[Login] Player Bob connected", "2024.01.15-12.40.00:000")])
        reports = await monitor.run_cycle()
        assert not reports[0].backfill
        assert len(notifier.dispatched) == sent + 1

    async def test_replay_waits_for_cycle_in_flight(self, make_monitor, server_config, store, accessor,
                                                    notifier, tenant):
        committing = asyncio.Event()
        release = asyncio.Event()

        async def held_at_commit(fn, *args, timeout=None):
            if fn == store.commit_cycle:
                committing.set()
                await release.wait()
            return fn(*args)

        monitor = make_monitor(server_config, runner=held_at_commit)
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [JOIN, KILL, LEAVE], mtime=T0)

        cycle = asyncio.create_task(monitor.run_cycle())
        await committing.wait()
        replay = asyncio.create_task(monitor.replay())
        await asyncio.sleep(0)
        assert not replay.done()

        release.set()
        await cycle
        await replay
        assert store.stats == {}
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 0
        sent = len(notifier.dispatched)

        reports = await monitor.run_cycle()
        assert reports[0].backfill
        assert len(notifier.dispatched) == sent
        assert store.stats[(tenant, "Alice")].kills == 1
        assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 3


class TestDeathLog:
    OLD = f"{DEATHLOG_DIR}/2024.01.15-10.00.00.csv"
    NEW = f"{DEATHLOG_DIR}/2024.01.15-14.00.00.csv"

    @pytest.fixture
    def death_monitor(self, make_monitor, server_config):
        return make_monitor(replace(server_config, deathlog_directory=DEATHLOG_DIR))

    async def test_follows_newest_file_and_drains_old(self, death_monitor, store, accessor, notifier,
                                                      dedup_clock, tenant):
        accessor.set_file(LOG_PATH, [], mtime=T0)
        accessor.set_file(self.OLD, [
            "2024.01.15-10.05.00;Alice;1;Bob;2;AK47;52",
            "2024.01.15-10.06.00;**;;Carol;3;falling;0",
        ], mtime=T0)

        reports = await death_monitor.run_cycle()
        assert [r.role for r in reports] == [FileRole.SERVER_LOG, FileRole.DEATH_LOG]
        assert reports[1].backfill
        assert store.cursors[(tenant, FileRole.DEATH_LOG)].line_offset == 2

        dedup_clock.advance(10000)
        accessor.append(self.OLD, ["2024.01.15-10.59.00;Bob;2;Alice;1;M4;30"])
        accessor.set_file(self.NEW, ["2024.01.15-14.01.00;Alice;1;Carol;3;SVD;400"], mtime=T0)

        reports = await death_monitor.run_cycle()
        death_cursor = store.cursors[(tenant, FileRole.DEATH_LOG)]
        assert death_cursor.tracked_file_name == "2024.01.15-14.00.00.csv"
        assert death_cursor.line_offset == 1
        assert reports[-1].file_name == "2024.01.15-14.00.00.csv"

        alice = store.stats[(tenant, "Alice")]
        assert (alice.kills, alice.deaths) == (2, 1)
        assert alice.longest_kill_distance == 400.0
        assert store.stats[(tenant, "Carol")].deaths == 2
        assert [e.killer for e, _ in notifier.dispatched] == ["Bob", "Alice"]
        assert all(channel == 200 for _, channel in notifier.dispatched)

    async def test_missing_directory_is_skipped(self, death_monitor, accessor):
        accessor.set_file(LOG_PATH, [JOIN], mtime=T0)
        reports = await death_monitor.run_cycle()
        assert len(reports) == 1
        assert death_monitor.last_error is None

    async def test_same_kill_from_both_sources_counted_once(self, death_monitor, store, accessor,
                                                            dedup_clock, tenant):
        seed_cursor(store, tenant)
        accessor.set_file(LOG_PATH, [KILL], mtime=T0)
        await death_monitor.run_cycle()

        dedup_clock.advance(10000)
        accessor.set_file(self.OLD, ["2024.01.15-12.30.45;Alice;1;Bob;2;AK47;52"], mtime=T0)
        reports = await death_monitor.run_cycle()

        assert reports[1].already_applied == 1
        assert store.stats[(tenant, "Alice")].kills == 1

    async def test_malformed_lines_are_counted(self, death_monitor, store, accessor, tenant):
        accessor.set_file(LOG_PATH, [], mtime=T0)
        accessor.set_file(self.OLD, ["broken line", "2024.01.15-10.05.00;Alice;1;Bob;2;AK47;52"], mtime=T0)

        reports = await death_monitor.run_cycle()
        assert reports[1].malformed == 1
        assert store.cursors[(tenant, FileRole.DEATH_LOG)].line_offset == 2


async def test_tenants_do_not_share_stats(server_config, store):
    other_tenant = TenantKey(2, "beta")
    accessors = [FakeAccessor(), FakeAccessor()]
    for accessor in accessors:
        accessor.set_file(LOG_PATH, [KILL], mtime=T0)

    first = ServerLogMonitor(server_config, accessors[0], store, runner=inline_runner)
    second = ServerLogMonitor(replace(server_config, tenant=other_tenant), accessors[1], store,
                              runner=inline_runner)
    await first.run_cycle()
    await second.run_cycle()

    assert store.stats[(server_config.tenant, "Alice")].kills == 1
    assert store.stats[(other_tenant, "Alice")].kills == 1
    assert len(store.records) == 2


async def test_run_blocking_timeout_is_transient():
    with pytest.raises(TransientIOError):
        await run_blocking(time.sleep, 0.5, timeout=0.05)
    assert await run_blocking(sum, [1, 2, 3]) == 6


def test_destination_for(server_config, tenant):
    kill = KillEvent(tenant=tenant, killer="A", victim="B", weapon="AK47")
    join = JoinEvent(tenant=tenant, player="A")
    assert server_config.destination_for(kill) == 200
    assert server_config.destination_for(join) == 100
    assert replace(server_config, killfeed_channel_id=None).destination_for(kill) == 100


def test_server_config_from_row(tenant):
    vault = CredentialVault("master-key")
    salt = vault.generate_salt()
    row = {
        'guild_id': tenant.guild_id, 'server_id': tenant.server_id, 'server_name': "Alpha",
        'host': "h", 'port': 2222, 'username': "u",
        'password_encrypted': vault.encrypt("hunter2", tenant, salt), 'encryption_salt': salt,
        'log_directory': LOG_DIR, 'deathlog_directory': "", 'log_channel_id': 1,
        'killfeed_channel_id': None, 'enabled': 1,
    }
    config = ServerConfig.from_row(row, vault)
    assert config.password == "hunter2"
    assert config.port == 2222
    assert config.deathlog_directory is None


async def test_manager_runs_and_stops_monitors(server_config, tenant, notifier):
    store = InMemoryTenantStore()
    accessor = FakeAccessor()
    accessor.set_file(LOG_PATH, [JOIN], mtime=T0)
    manager = LogMonitorManager(store=store, io_timeout=5)

    monitor = manager.create_monitor(server_config, notifier, accessor=accessor, poll_interval=0.01)
    assert manager.get_monitor(tenant) is monitor
    assert manager.get_guild_monitors(tenant.guild_id) == [monitor]
    assert manager.get_guild_monitors(999) == []

    assert await manager.start_monitor(tenant)
    assert not await manager.start_monitor(tenant)
    await asyncio.sleep(0.1)
    assert manager.get_active_count() == 1

    await manager.stop_all()
    assert manager.get_active_count() == 0
    assert monitor.cycles_completed >= 1
    assert accessor.closed
    assert store.cursors[(tenant, FileRole.SERVER_LOG)].line_offset == 1

    await manager.remove_monitor(tenant)
    assert manager.get_monitor(tenant) is None


def test_manager_requires_store(server_config):
    with pytest.raises(RuntimeError):
        LogMonitorManager().create_monitor(server_config, accessor=FakeAccessor())


def test_injected_deduplicator_is_kept_when_empty(make_monitor, server_config):
    deduplicator = EventDeduplicator(threshold_ms=10)
    assert len(deduplicator) == 0
    assert make_monitor(server_config, deduplicator=deduplicator).deduplicator is deduplicator
