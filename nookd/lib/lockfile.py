# nookd
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Single-instance lock and daemonization.

The lock file holds nothing but the decimal pid of the running daemon.
Starting a new daemon takes over: the previous owner is sent SIGTERM and the
file is rewritten with the new pid.  The new owner does not wait for the old
one to exit.

A new lock file is published with the pid already in it (written to a
private file, then hard-linked into place).  Every later read-modify-write
happens under an exclusive flock on the file itself, and the old owner only
deletes the file if it still names it.  That way a slow shutdown of the
previous daemon cannot remove the record the new daemon has just written.

Usage:
    lock = SingletonLock("/tmp/nookd.lock")
    daemonize(lock)            # parent exits here; child owns the lock
    ...
    ok = lock.release()        # on SIGTERM/SIGINT
"""

import errno
import fcntl
import logging
import os
import signal
import sys

log = logging.getLogger(__name__)

LOCK_PATH = "/tmp/nookd.lock"

_READY = b"ok"


class LockError(RuntimeError):
    """The lock file could not be claimed."""


def _parse_pid(raw: str) -> int | None:
    text = raw.strip()
    if not text.isdigit():
        return None
    pid = int(text)
    # 0 and negatives would signal whole process groups
    return pid if pid > 0 else None


class SingletonLock:
    def __init__(self, path: str = LOCK_PATH, pid: int | None = None, kill=os.kill):
        self.path = os.path.abspath(path)
        self._pid = pid
        self._kill = kill
        self.previous: int | None = None

    @property
    def pid(self) -> int:
        # Resolved lazily: the pid changes across daemonize()'s fork
        return self._pid if self._pid is not None else os.getpid()

    # ── Claim ──

    def claim(self) -> int | None:
        """Become the owner.  Returns the pid that was told to stop, if any.

        Raises LockError if the file is unreadable, holds something other
        than a pid, the previous owner cannot be signalled, or our pid cannot
        be written.
        """
        while True:
            try:
                self._publish()
                break
            except FileExistsError:
                pass
            try:
                return self._take_over()
            except FileNotFoundError:
                # Previous owner released it in the meantime
                continue
        log.info("Lock %s claimed (pid %d)", self.path, self.pid)
        return None

    def _publish(self):
        """Create the lock file already holding our pid, or raise FileExistsError.

        The pid goes into a private file first, which is then hard-linked onto
        the lock path, so nobody ever sees the lock file empty.
        """
        directory, name = os.path.split(self.path)
        staging = os.path.join(directory, f".{name}.{self.pid}")
        try:
            fd = os.open(staging, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            try:
                self._write_pid(fd)
            finally:
                os.close(fd)
            os.link(staging, self.path)
        except FileExistsError:
            raise
        except OSError as e:
            raise LockError(f"cannot create {self.path}: {e}") from e
        finally:
            try:
                os.unlink(staging)
            except FileNotFoundError:
                pass

    def _take_over(self) -> int | None:
        self.previous = None
        fd = self._open_locked()
        try:
            raw = self._read(fd)
            previous = _parse_pid(raw)
            if previous is None:
                raise LockError(f"{self.path} does not hold a pid: {raw!r}")
            if previous != self.pid and self._stop_previous(previous):
                self.previous = previous
            self._write_pid(fd)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        log.info("Lock %s claimed (pid %d)", self.path, self.pid)
        return self.previous

    def _stop_previous(self, previous: int) -> bool:
        """SIGTERM the previous owner.  False if it was already gone."""
        try:
            self._kill(previous, signal.SIGTERM)
        except ProcessLookupError:
            # Left behind by a crash
            log.warning("Previous owner %d is not running, taking over stale lock", previous)
            return False
        except OSError as e:
            raise LockError(f"cannot signal previous owner {previous}: {e}") from e
        log.info("Sent SIGTERM to previous owner %d", previous)
        return True

    # ── Release ──

    def release(self) -> bool:
        """Delete the lock file if we still own it.

        Returns True when the file was removed or another instance has since
        taken it over; False if it could not be removed.
        """
        try:
            fd = self._open_locked()
        except (OSError, LockError) as e:
            log.error("Cannot release %s: %s", self.path, e)
            return False
        try:
            owner = self._read(fd).strip()
            if owner != str(self.pid):
                log.info("Lock %s now belongs to %s, leaving it", self.path, owner or "nobody")
                return True
            os.unlink(self.path)
        except (OSError, LockError) as e:
            log.error("Cannot remove %s: %s", self.path, e)
            return False
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        log.info("Lock %s released", self.path)
        return True

    # ── Helpers ──

    def _open_locked(self) -> int:
        """Open and flock the file currently at self.path.

        Raises FileNotFoundError if there is no file, or if it was unlinked
        while we waited for the flock (the descriptor would point at a dead
        inode).
        """
        try:
            fd = os.open(self.path, os.O_RDWR)
        except FileNotFoundError:
            raise
        except OSError as e:
            raise LockError(f"cannot open {self.path}: {e}") from e
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            same = os.stat(self.path).st_ino == os.fstat(fd).st_ino
        except FileNotFoundError:
            same = False
        if same:
            return fd
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        raise FileNotFoundError(errno.ENOENT, "lock file vanished", self.path)

    def _read(self, fd: int) -> str:
        os.lseek(fd, 0, os.SEEK_SET)
        chunks = []
        while True:
            chunk = os.read(fd, 64)
            if not chunk:
                break
            chunks.append(chunk)
        try:
            return b"".join(chunks).decode("ascii")
        except UnicodeDecodeError:
            raise LockError(f"{self.path} does not hold a pid") from None

    def _write_pid(self, fd: int):
        try:
            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, str(self.pid).encode())
            os.fsync(fd)
        except OSError as e:
            raise LockError(f"failed to write pid to {self.path}: {e}") from e


def daemonize(lock: SingletonLock):
    """Detach from the terminal and claim *lock* in the detached child.

    The parent waits for the child to report whether the claim succeeded and
    exits 0 (claimed) or 1 (diagnostic printed).  Only the child returns.
    """
    sys.stdout.flush()
    sys.stderr.flush()
    read_fd, write_fd = os.pipe()
    pid = os.fork()
    if pid > 0:
        os.close(write_fd)
        with os.fdopen(read_fd, "rb") as pipe:
            report = pipe.read()
        if report == _READY:
            os._exit(0)
        print(f"nookd: {report.decode(errors='replace') or 'daemon exited during startup'}",
              file=sys.stderr, flush=True)
        os._exit(1)

    os.close(read_fd)
    os.setsid()
    try:
        os.chdir("/")
    except OSError as e:
        log.warning("Cannot chdir to /: %s", e)
    # The terminal belongs to the parent; log.file is the only place logs go now
    sys.stdout.flush()
    sys.stderr.flush()
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    os.close(devnull)

    try:
        lock.claim()
    except LockError as e:
        os.write(write_fd, str(e).encode())
        os.close(write_fd)
        os._exit(1)
    os.write(write_fd, _READY)
    os.close(write_fd)
    log.info("Detached as pid %d", os.getpid())
