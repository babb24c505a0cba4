# services/sftp_logs.py
"""
SFTP access to Deadside server logs.

The monitor only needs a handful of primitives against one remote server
(stat, read new lines from a byte position, write, list). ``SFTPFileAccessor``
implements them with paramiko. Its methods are blocking and are meant to
run in the monitor manager's thread pool, never on the event loop.
"""

import errno
import logging
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from stat import S_ISREG
from typing import Optional, Protocol

import paramiko

from killfeed.config.settings import REMOTE_IO_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class SFTPError(Exception):
    """Base exception for SFTP errors."""
    pass


class RemoteFileNotFound(SFTPError):
    """File absent or deleted (often a rotation in progress)."""
    pass


class RemotePermissionDenied(SFTPError):
    """The server refused access to the path."""
    pass


class SFTPAuthError(RemotePermissionDenied):
    """Username/password rejected."""
    pass


class TransientIOError(SFTPError):
    """Network failure, SSH failure or timeout. Retry next cycle."""
    pass


class SFTPConnectionError(TransientIOError):
    """Could not open the SSH transport."""
    pass


@dataclass(frozen=True)
class RemoteStat:
    size: int
    last_modified: Optional[datetime]


class RemoteFileAccessor(Protocol):
    """Primitives the monitor uses against one remote server."""

    def stat(self, path: str) -> RemoteStat: ...

    def size(self, path: str) -> int: ...

    def last_modified(self, path: str) -> Optional[datetime]: ...

    def exists(self, path: str) -> bool: ...

    def read_lines_after(self, path: str, from_line: int) -> list[str]: ...

    def read_new_lines(self, path: str, byte_offset: int) -> tuple[list[str], int]: ...

    def write(self, path: str, content: str) -> None: ...

    def list_files(self, directory: str) -> list[str]: ...

    def close(self) -> None: ...


def complete_lines(content: str) -> list[str]:
    """
    Split text into lines, dropping a trailing fragment without a newline.

    The game may be in the middle of writing that line.
    """
    lines = content.splitlines(keepends=True)
    if lines and not lines[-1].endswith(("\n", "\r")):
        lines.pop()
    return [line.rstrip("\r\n") for line in lines]


def complete_lines_from(data: bytes, start: int) -> tuple[list[str], int]:
    """
    Complete lines in ``data`` read from byte ``start``, and the byte position
    just past the last newline (where the next read should seek).
    """
    end = data.rfind(b"\n") + 1
    return complete_lines(data[:end].decode('utf-8', errors='replace')), start + end


def join_remote(directory: str, name: str) -> str:
    return f"{directory.rstrip('/')}/{name}" if directory else name


class SFTPFileAccessor:
    """
    Blocking paramiko implementation of RemoteFileAccessor.

    Connects lazily and drops the connection after any transient failure,
    so the next call reconnects from scratch.
    """

    def __init__(self, host: str, port: int, username: str, password: str,
                 server_name: str = "Unknown Server",
                 timeout: float = REMOTE_IO_TIMEOUT_SECONDS):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.server_name = server_name  # For log identification
        self.timeout = timeout
        self._transport: Optional[paramiko.Transport] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        # One paramiko channel, one caller at a time
        self._lock = threading.RLock()

    def _connect(self) -> paramiko.SFTPClient:
        if self._sftp is not None and self._transport is not None and self._transport.is_active():
            return self._sftp

        self.close()
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
            transport = paramiko.Transport(sock)
            transport.banner_timeout = self.timeout
            transport.auth_timeout = self.timeout
            transport.connect(username=self.username, password=self.password)
            sftp = paramiko.SFTPClient.from_transport(transport)
            sftp.get_channel().settimeout(self.timeout)
        except paramiko.AuthenticationException as e:
            logger.error(f"[{self.server_name}] SFTP authentication failed: {e}")
            raise SFTPAuthError(f"Authentication failed: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            logger.warning(f"[{self.server_name}] SFTP connection to {self.host}:{self.port} failed: {e}")
            raise SFTPConnectionError(f"Connection failed: {e}") from e

        self._transport = transport
        self._sftp = sftp
        logger.info(f"[{self.server_name}] SFTP connected to {self.host}:{self.port}")
        return sftp

    def close(self) -> None:
        """Close the SFTP session and transport (safe to call repeatedly)."""
        sftp, transport = self._sftp, self._transport
        self._sftp = None
        self._transport = None
        if sftp is not None:
            try:
                sftp.close()
            except (paramiko.SSHException, OSError, EOFError) as e:
                logger.debug(f"[{self.server_name}] Error closing SFTP session: {e}")
        if transport is not None:
            try:
                transport.close()
            except (paramiko.SSHException, OSError, EOFError) as e:
                logger.debug(f"[{self.server_name}] Error closing SSH transport: {e}")

    def _call(self, operation: str, path: str, fn):
        """Run fn(sftp) and map paramiko/OS errors onto the SFTPError hierarchy."""
        with self._lock:
            sftp = self._connect()
            try:
                return fn(sftp)
            except FileNotFoundError as e:
                raise RemoteFileNotFound(f"{path} not found") from e
            except PermissionError as e:
                raise RemotePermissionDenied(f"Permission denied for {operation} on {path}") from e
            except (paramiko.SSHException, socket.timeout, EOFError) as e:
                self.close()
                raise TransientIOError(f"{operation} {path} failed: {e}") from e
            except OSError as e:
                if e.errno == errno.ENOENT:
                    raise RemoteFileNotFound(f"{path} not found") from e
                if e.errno in (errno.EACCES, errno.EPERM):
                    raise RemotePermissionDenied(f"Permission denied for {operation} on {path}") from e
                self.close()
                raise TransientIOError(f"{operation} {path} failed: {e}") from e

    def stat(self, path: str) -> RemoteStat:
        def _stat(sftp):
            attrs = sftp.stat(path)
            modified = datetime.fromtimestamp(int(attrs.st_mtime)) if attrs.st_mtime is not None else None
            return RemoteStat(size=attrs.st_size or 0, last_modified=modified)
        return self._call("stat", path, _stat)

    def size(self, path: str) -> int:
        return self.stat(path).size

    def last_modified(self, path: str) -> Optional[datetime]:
        return self.stat(path).last_modified

    def exists(self, path: str) -> bool:
        try:
            self.stat(path)
            return True
        except RemoteFileNotFound:
            return False

    def read_lines_after(self, path: str, from_line: int) -> list[str]:
        """
        Return the complete lines whose zero-based index is >= from_line.

        Lines come back without line endings. An unfinished last line is
        left for the next read. Downloads the whole file; the monitor uses
        ``read_new_lines`` for regular polls.
        """
        lines, _ = self.read_new_lines(path, 0)
        return lines[max(from_line, 0):]

    def read_new_lines(self, path: str, byte_offset: int) -> tuple[list[str], int]:
        """
        Read complete lines starting at a byte position.

        Args:
            path: Remote file path
            byte_offset: Position of the first unread line (0 for the whole file)

        Returns:
            Tuple of (new_lines, new_byte_offset)
        """
        start = max(byte_offset, 0)

        def _read(sftp):
            with sftp.open(path, 'rb') as f:
                f.seek(start)
                f.prefetch()
                return f.read()

        data = self._call("read", path, _read)
        return complete_lines_from(data, start)

    def write(self, path: str, content: str) -> None:
        def _write(sftp):
            with sftp.open(path, 'w') as f:
                f.write(content.encode('utf-8'))
        self._call("write", path, _write)

    def list_files(self, directory: str) -> list[str]:
        """Names of regular files in a directory."""
        def _list(sftp):
            return sorted(
                entry.filename for entry in sftp.listdir_attr(directory)
                if entry.st_mode is None or S_ISREG(entry.st_mode)
            )
        return self._call("list", directory, _list)

    def test_connection(self) -> tuple[bool, str]:
        """Test SFTP connection. Returns (success, message)."""
        try:
            with self._lock:
                self._connect()
            return True, "Connection successful"
        except SFTPAuthError as e:
            return False, f"Authentication failed: {e}"
        except SFTPError as e:
            return False, f"Connection failed: {e}"
