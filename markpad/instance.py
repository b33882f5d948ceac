"""Single-instance coordination for the Markpad server.

A JSON lock record in the working directory advertises which process owns
the server and on which port. Startup refuses to continue while that process
is alive, discards records left behind by dead processes, and only writes a
fresh record once a listening socket has been bound.

Reading and rewriting the record is not serialized across processes; two
startups racing in the same instant can both pass the check.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import socket
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from markpad.errors import CorruptLockError, InstanceRunningError, PortExhaustedError

logger = logging.getLogger(__name__)

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}
_LISTEN_BACKLOG = 2048
MAX_PORT = 65535


@dataclass(frozen=True)
class InstanceLock:
    """On-disk record of the process that owns the server."""

    pid: int
    port: int
    timestamp: int  # epoch milliseconds
    hostname: str

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000)

    @classmethod
    def for_current_process(cls, port: int) -> InstanceLock:
        return cls(
            pid=os.getpid(),
            port=port,
            timestamp=int(time.time() * 1000),
            hostname=socket.gethostname(),
        )

    @classmethod
    def from_payload(cls, payload: Any) -> InstanceLock:
        if not isinstance(payload, dict):
            raise CorruptLockError("Lock file must contain a JSON object")
        try:
            pid = payload["pid"]
            port = payload["port"]
            timestamp = payload.get("timestamp", 0)
            hostname = payload.get("hostname", "")
        except KeyError as exc:
            raise CorruptLockError(f"Lock file is missing field: {exc.args[0]}") from exc
        if not _is_int(pid) or pid <= 0:
            raise CorruptLockError(f"Lock file has invalid pid: {pid!r}")
        if not _is_int(port) or not _is_int(timestamp) or not isinstance(hostname, str):
            raise CorruptLockError("Lock file has invalid field types")
        return cls(pid=pid, port=port, timestamp=timestamp, hostname=hostname)

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    def describe(self) -> str:
        """Operator-facing description used in startup diagnostics."""
        return (
            f"PID: {self.pid}\n"
            f"Port: {self.port}\n"
            f"Started: {self.created_at:%Y-%m-%d %H:%M:%S}\n"
            f"Host: {self.hostname}"
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class LockState(str, Enum):
    """Classification of the lock record found at startup."""

    ABSENT = "absent"
    CORRUPT = "corrupt"
    STALE = "stale"
    LIVE = "live"


@dataclass(frozen=True)
class LockInspection:
    """Result of reading and classifying the lock record."""

    state: LockState
    lock: InstanceLock | None = None
    error: str | None = None


@dataclass(frozen=True)
class LockHandle:
    """Ownership token returned by acquisition and consumed by ``release``."""

    path: Path
    pid: int
    port: int


def is_process_running(pid: int) -> bool:
    """Probe ``pid`` with signal 0; a process we may not signal still counts."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except OverflowError:
        # Larger than any pid the kernel can hand out.
        return False
    except PermissionError:
        return True
    except OSError:
        # Unknown failure: refuse to assume the owner is gone.
        return True
    return True


def read_lock(path: Path) -> InstanceLock | None:
    """Read the lock record, returning None when it does not exist."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise CorruptLockError(f"Lock file is not valid UTF-8: {exc.reason}") from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CorruptLockError(f"Lock file is not valid JSON: {exc}") from exc
    return InstanceLock.from_payload(payload)


def inspect_lock(
    path: Path, is_running: Callable[[int], bool] | None = None
) -> LockInspection:
    """Classify the lock record at ``path`` as absent, corrupt, stale or live."""
    try:
        lock = read_lock(path)
    except CorruptLockError as exc:
        return LockInspection(LockState.CORRUPT, error=str(exc))
    if lock is None:
        return LockInspection(LockState.ABSENT)
    probe = is_running or is_process_running
    if probe(lock.pid):
        return LockInspection(LockState.LIVE, lock=lock)
    return LockInspection(LockState.STALE, lock=lock)


def ensure_no_live_instance(
    path: Path, is_running: Callable[[int], bool] | None = None
) -> LockInspection:
    """Raise InstanceRunningError if a live process holds the lock.

    Stale records are removed. Corrupt records are left for the next write
    to overwrite.
    """
    inspection = inspect_lock(path, is_running)
    if inspection.state is LockState.LIVE:
        assert inspection.lock is not None
        raise InstanceRunningError(inspection.lock)
    if inspection.state is LockState.STALE:
        assert inspection.lock is not None
        logger.info("Cleaning up stale lock file from PID %s", inspection.lock.pid)
        _unlink_quietly(path)
    elif inspection.state is LockState.CORRUPT:
        logger.warning("Invalid lock file detected, will overwrite: %s", inspection.error)
    return inspection


def bind_socket(host: str, port: int) -> socket.socket:
    """Create a listening TCP socket on ``host:port``."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(_LISTEN_BACKLOG)
    except BaseException:
        sock.close()
        raise
    return sock


def bind_available_port(
    host: str, preferred_port: int, max_attempts: int = 10
) -> tuple[socket.socket, int]:
    """Bind the first free port in ``preferred_port .. preferred_port + max_attempts - 1``.

    Only "address in use" advances to the next port; any other bind failure
    is raised immediately. Candidates above MAX_PORT are never tried.
    """
    last_port = min(preferred_port + max_attempts - 1, MAX_PORT)
    for port in range(preferred_port, last_port + 1):
        try:
            sock = bind_socket(host, port)
        except OSError as exc:
            if exc.errno not in _ADDR_IN_USE:
                raise
            if port < last_port:
                logger.info("Port %s is in use, trying %s...", port, port + 1)
            continue
        return sock, sock.getsockname()[1]
    raise PortExhaustedError(preferred_port, max_attempts)


def write_lock(path: Path, port: int) -> LockHandle:
    """Write a lock record for the current process."""
    lock = InstanceLock.for_current_process(port)
    tmp_path = path.with_name(f"{path.name}.{lock.pid}.tmp")
    tmp_path.write_text(lock.to_json(), encoding="utf-8")
    os.replace(tmp_path, path)
    logger.info("Lock file created (PID: %s)", lock.pid)
    return LockHandle(path=path, pid=lock.pid, port=port)


def acquire_exclusive_startup(
    lock_path: Path,
    *,
    host: str,
    preferred_port: int,
    max_attempts: int = 10,
    is_running: Callable[[int], bool] | None = None,
) -> tuple[int, LockHandle, socket.socket]:
    """Check the lock, bind a port, then record ownership.

    Returns the bound port, the lock handle and the listening socket.
    """
    ensure_no_live_instance(lock_path, is_running)
    sock, port = bind_available_port(host, preferred_port, max_attempts)
    try:
        handle = write_lock(lock_path, port)
    except BaseException:
        sock.close()
        raise
    return port, handle, sock


def release(handle: LockHandle) -> None:
    """Delete the lock record if it still belongs to ``handle``'s process.

    Never raises; failures are logged so shutdown always completes.
    """
    try:
        current = read_lock(handle.path)
    except CorruptLockError:
        logger.warning("Lock file is unreadable; leaving it in place")
        return
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read lock file during release: %s", exc)
        return
    if current is None:
        return
    if current.pid != handle.pid:
        logger.info("Lock file now belongs to PID %s; not removing", current.pid)
        return
    if _unlink_quietly(handle.path):
        logger.info("Lock file removed")


def _unlink_quietly(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Failed to remove lock file: %s", exc)
        return False
    return True


@contextmanager
def exclusive_instance(
    lock_path: Path,
    *,
    host: str,
    preferred_port: int,
    max_attempts: int = 10,
) -> Iterator[tuple[int, LockHandle, socket.socket]]:
    """Hold the instance lock and listening socket for the duration of the block."""
    port, handle, sock = acquire_exclusive_startup(
        lock_path, host=host, preferred_port=preferred_port, max_attempts=max_attempts
    )
    try:
        yield port, handle, sock
    finally:
        sock.close()
        release(handle)
