"""
Cross-process cache lock — an OS advisory lock on ``<root>/.lock``.

The lock itself is a kernel file lock taken through ``filelock``
(``flock`` on POSIX, ``msvcrt.locking`` on Windows).  The kernel drops
it when the holding process exits, however it exits, so a crashed
install can never wedge the cache and no liveness guessing is needed.

While held, a sidecar ``<root>/.lock.holder`` names the holder::

    {"pid": 4242, "host": "buildbox", "acquired_at": "2024-05-01T10:00:00+00:00"}

The sidecar is informational only (it feeds the ``LockTimeout``
message); it is never consulted to decide who owns the lock.

Usage::

    with CacheLock(root / ".lock", timeout=300):
        ...
"""

from __future__ import annotations

import logging
import os
import socket
from datetime import UTC, datetime
from pathlib import Path

from filelock import FileLock, Timeout

from cargo_wasix.core.errors import LockTimeout
from cargo_wasix.core.persistence.atomic import atomic_write_json, read_json

logger = logging.getLogger(__name__)

LOCK_FILE = ".lock"
HOLDER_SUFFIX = ".holder"

_POLL_INTERVAL = 0.1


class CacheLock:
    """Exclusive, kernel-backed lock over a cache root.

    Re-entrant for the instance that holds it: every ``acquire`` needs a
    matching ``release``.

    Args:
        path: Lock file path (normally ``<root>/.lock``).
        timeout: Maximum seconds to wait in ``acquire``.
        poll_interval: Seconds between attempts while waiting.
    """

    def __init__(self, path: Path, *, timeout: float = 300.0, poll_interval: float = _POLL_INTERVAL):
        self.path = Path(path)
        self.holder_path = self.path.with_name(self.path.name + HOLDER_SUFFIX)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._lock = FileLock(str(self.path))
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    def holder(self) -> dict | None:
        """Who last announced holding the lock, if anyone."""
        record = read_json(self.holder_path)
        return record if isinstance(record, dict) else None

    def acquire(self) -> CacheLock:
        """Block until the lock is held or ``timeout`` elapses.

        Raises:
            LockTimeout: Another live process kept the lock too long.
        """
        if self._depth:
            self._depth += 1
            return self

        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire(timeout=0)
        except Timeout:
            holder = self.holder() or {}
            logger.info(
                "Waiting for cache lock %s (held by pid %s on %s)",
                self.path,
                holder.get("pid", "?"),
                holder.get("host", "?"),
            )
            try:
                self._lock.acquire(timeout=self.timeout, poll_interval=self.poll_interval)
            except Timeout:
                raise LockTimeout(str(self.path), self.timeout, self.holder()) from None

        self._depth = 1
        atomic_write_json(self.holder_path, {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "acquired_at": datetime.now(UTC).isoformat(),
        })
        logger.debug("Acquired cache lock %s", self.path)
        return self

    def release(self) -> None:
        """Undo one ``acquire``; the last one unlocks."""
        if not self._depth:
            return
        self._depth -= 1
        if self._depth:
            return
        self.holder_path.unlink(missing_ok=True)
        self._lock.release()
        logger.debug("Released cache lock %s", self.path)

    def __enter__(self) -> CacheLock:
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()
