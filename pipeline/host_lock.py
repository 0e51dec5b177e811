"""pipeline.host_lock

Exclusive ownership of a benchmark host.

Benchmark numbers are only comparable when nothing else runs on the host, so
at most one comparison may run per host at a time. A run takes the lock before
its first checkout and releases it after Cleanup; a second run queues instead
of interleaving.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from pipeline.cancel import CancelToken
from pipeline.errors import HostBusyError


@contextlib.contextmanager
def host_lock(
    lock_path: Path,
    *,
    owner: str = "",
    timeout_seconds: Optional[float] = None,
    poll_seconds: float = 1.0,
    cancel: Optional[CancelToken] = None,
) -> Iterator[Path]:
    """Hold an exclusive ``flock`` on ``lock_path`` for the duration of the block.

    ``timeout_seconds=None`` waits indefinitely (queueing behind the current
    owner); otherwise :class:`HostBusyError` is raised when it expires.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fh = lock_path.open("a+")
    try:
        start = time.monotonic()
        announced = False
        while True:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if not announced:
                    print(f"⏳ Benchmark host busy ({lock_path}); waiting for exclusive ownership ...")
                    announced = True
                if cancel is not None:
                    cancel.raise_if_cancelled("host lock")
                if timeout_seconds is not None and time.monotonic() - start >= timeout_seconds:
                    raise HostBusyError(f"Benchmark host still busy after {timeout_seconds:.0f}s: {lock_path}")
                time.sleep(poll_seconds)

        # Only the owner rewrites the file, so holders are always visible.
        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()}\nowner={owner}\nsince={datetime.now(timezone.utc).isoformat()}\n")
        fh.flush()
        try:
            yield lock_path
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)
    finally:
        fh.close()
