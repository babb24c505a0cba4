"""Shared fakes for the ingestion pipeline tests."""

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

import pytest

from killfeed.database.store import PersistenceError, ensure_owned
from killfeed.services.cursors import FileRole, KillRecord, ServerCursor
from killfeed.services.log_monitor import ServerConfig, ServerLogMonitor
from killfeed.services.sftp_logs import RemoteFileNotFound, RemoteStat, complete_lines_from
from killfeed.services.stats import PlayerStat
from killfeed.services.tenant import TenantKey, require_tenant


class InMemoryTenantStore:
    """TenantStore backed by dicts, with a history of cursor writes."""

    def __init__(self):
        self.cursors: dict[tuple[TenantKey, FileRole], ServerCursor] = {}
        self.stats: dict[tuple[TenantKey, str], PlayerStat] = {}
        self.records: dict[tuple[TenantKey, str], KillRecord] = {}
        self.cursor_history: list[ServerCursor] = []
        self.commits = 0
        self.fail_commit = False

    def find_cursor(self, tenant, role):
        tenant = require_tenant(tenant, "find_cursor")
        return self.cursors.get((tenant, role))

    def upsert_cursor(self, tenant, cursor):
        tenant = require_tenant(tenant, "upsert_cursor")
        ensure_owned(tenant, cursor.tenant, "cursor")
        self.cursors[(tenant, cursor.role)] = cursor
        self.cursor_history.append(cursor)

    def find_player_stat(self, tenant, player_id):
        tenant = require_tenant(tenant, "find_player_stat")
        return self.stats.get((tenant, player_id))

    def upsert_player_stat(self, tenant, stat):
        tenant = require_tenant(tenant, "upsert_player_stat")
        ensure_owned(tenant, stat.tenant, "player stat")
        self.stats[(tenant, stat.player_id)] = stat

    def list_player_stats(self, tenant, order_by='kills', limit=None):
        tenant = require_tenant(tenant, "list_player_stats")
        rows = [s for (t, _), s in self.stats.items() if t == tenant]
        rows.sort(key=lambda s: (-getattr(s, order_by), s.player_id))
        return rows[:limit] if limit is not None else rows

    def known_fingerprints(self, tenant, fingerprints: Iterable[str]):
        tenant = require_tenant(tenant, "known_fingerprints")
        return {fp for fp in fingerprints if (tenant, fp) in self.records}

    def commit_cycle(self, tenant, stats, records, cursor):
        tenant = require_tenant(tenant, "commit_cycle")
        if self.fail_commit:
            raise PersistenceError("commit_cycle failed: simulated")
        for record in records:
            ensure_owned(tenant, record.tenant, "kill record")
            self.records[(tenant, record.fingerprint)] = record
        for stat in stats:
            self.upsert_player_stat(tenant, stat)
        self.upsert_cursor(tenant, cursor)
        self.commits += 1

    def delete_tenant_data(self, tenant):
        tenant = require_tenant(tenant, "delete_tenant_data")
        counts = {}
        for name, table in (('kill_records', self.records), ('player_stats', self.stats),
                            ('server_cursors', self.cursors)):
            keys = [k for k in table if k[0] == tenant]
            for key in keys:
                del table[key]
            counts[name] = len(keys)
        return counts

    def reset_tenant_stats(self, tenant, now):
        tenant = require_tenant(tenant, "reset_tenant_stats")
        for table in (self.records, self.stats):
            for key in [k for k in table if k[0] == tenant]:
                del table[key]
        for key, cursor in list(self.cursors.items()):
            if key[0] == tenant:
                self.cursors[key] = replace(cursor, line_offset=0, byte_offset=0, last_known_size=0,
                                            last_modified=None, last_line_hash=None, last_rotation_at=now)

    def enumerate_tenants(self):
        tenants = {k[0] for k in self.cursors} | {k[0] for k in self.stats} | {k[0] for k in self.records}
        return sorted(tenants, key=lambda t: (t.guild_id, t.server_id))


class FakeAccessor:
    """In-memory remote filesystem with injectable failures."""

    def __init__(self):
        self.files: dict[str, dict] = {}
        self.failures: dict[str, Exception] = {}
        self.writes: list[tuple[str, str]] = []
        self.reads: list[tuple[str, int]] = []
        self.closed = False

    def set_file(self, path: str, lines: list[str], mtime: Optional[datetime] = None, size: Optional[int] = None):
        content = "".join(f"{line}\n" for line in lines)
        self.files[path] = {'content': content, 'mtime': mtime or datetime(2024, 1, 1, 12, 0, 0), 'size': size}

    def append(self, path: str, lines: list[str], mtime: Optional[datetime] = None):
        entry = self.files[path]
        entry['content'] += "".join(f"{line}\n" for line in lines)
        entry['size'] = None
        if mtime is not None:
            entry['mtime'] = mtime

    def remove(self, path: str):
        self.files.pop(path, None)

    def _check(self, op: str, path: str):
        error = self.failures.get(op)
        if error is not None:
            raise error
        if op != 'write' and op != 'list' and path not in self.files:
            raise RemoteFileNotFound(f"{path} not found")

    def stat(self, path):
        self._check('stat', path)
        entry = self.files[path]
        size = entry['size'] if entry['size'] is not None else len(entry['content'].encode())
        return RemoteStat(size=size, last_modified=entry['mtime'])

    def size(self, path):
        return self.stat(path).size

    def last_modified(self, path):
        return self.stat(path).last_modified

    def exists(self, path):
        return path in self.files

    def read_lines_after(self, path, from_line):
        return self.read_new_lines(path, 0)[0][from_line:]

    def read_new_lines(self, path, byte_offset):
        self._check('read', path)
        self.reads.append((path, byte_offset))
        data = self.files[path]['content'].encode()
        return complete_lines_from(data[byte_offset:], byte_offset)

    def write(self, path, content):
        self._check('write', path)
        self.writes.append((path, content))

    def list_files(self, directory):
        self._check('list', directory)
        prefix = directory.rstrip('/') + '/'
        names = [p[len(prefix):] for p in self.files if p.startswith(prefix) and '/' not in p[len(prefix):]]
        if not names and not any(p.startswith(prefix) for p in self.files):
            raise RemoteFileNotFound(f"{directory} not found")
        return sorted(names)

    def close(self):
        self.closed = True


class RecordingNotifier:
    def __init__(self):
        self.dispatched = []

    def dispatch(self, event, destination_channel_id):
        self.dispatched.append((event, destination_channel_id))


class FakeClock:
    """Millisecond clock for the deduplicator."""

    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


async def inline_runner(fn, *args, timeout=None):
    return fn(*args)


LOG_DIR = "/home/deadside/Logs"
DEATHLOG_DIR = "/home/deadside/deathlogs"
LOG_PATH = f"{LOG_DIR}/Deadside.log"


def log_line(body: str, ts: str = "2024.01.15-12.30.45:123") -> str:
    return f"[{ts}][  7]LogSFPS: {body}"


@pytest.fixture
def tenant():
    return TenantKey(1, "alpha")


@pytest.fixture
def store():
    return InMemoryTenantStore()


@pytest.fixture
def accessor():
    return FakeAccessor()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dedup_clock():
    return FakeClock()


@pytest.fixture
def server_config(tenant):
    return ServerConfig(
        tenant=tenant,
        server_name="Alpha",
        host="sftp.example.com",
        port=22,
        username="user",
        password="secret",
        log_directory=LOG_DIR,
        log_channel_id=100,
        killfeed_channel_id=200,
    )


@pytest.fixture
def make_monitor(store, accessor, notifier, dedup_clock):
    from killfeed.services.dedup import EventDeduplicator

    def _make(config, **kwargs):
        kwargs.setdefault('deduplicator', EventDeduplicator(threshold_ms=3000, clock=dedup_clock))
        kwargs.setdefault('clock', lambda: datetime(2024, 1, 15, 13, 0, 0))
        kwargs.setdefault('probe_enabled', True)
        kwargs.setdefault('runner', inline_runner)
        return ServerLogMonitor(config, accessor, store, notifier, **kwargs)

    return _make


@pytest.fixture
def monitor(make_monitor, server_config):
    return make_monitor(server_config)
