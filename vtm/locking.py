"""
Advisory locking for manifest read-modify-write spans.

The atomic rename in the writer prevents torn files but not lost updates:
two processes that both reload, mutate and rename will silently drop one
change. Every mutating path holds an exclusive flock on `<manifest>.lock`
for its whole span, so cooperating processes serialise.
"""

import fcntl
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path

from .errors import LockTimeout

logger = logging.getLogger("vtm.locking")

POLL_INTERVAL = 0.05

# flock is per open file description, so a nested acquire on a fresh fd
# would deadlock against ourselves. Track depth per thread and lock path.
_local = threading.local()


def lock_path_for(manifest_path: Path) -> Path:
    return manifest_path.with_name(manifest_path.name + ".lock")


def _depths() -> dict:
    if not hasattr(_local, "depths"):
        _local.depths = {}
    return _local.depths


@contextmanager
def manifest_lock(manifest_path: Path, timeout: float = 10.0):
    """
    Hold an exclusive lock for the manifest, yield, release on exit.

    Re-entrant within a thread. Raises LockTimeout if another holder keeps
    the lock for longer than `timeout` seconds.
    """
    lock_file = lock_path_for(Path(manifest_path))
    key = str(lock_file.resolve())
    depths = _depths()

    if depths.get(key):
        depths[key] += 1
        try:
            yield
        finally:
            depths[key] -= 1
        return

    lock_file.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o644)
    start = time.monotonic()

    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start > timeout:
                    raise LockTimeout(f"Could not acquire lock on {manifest_path} within {timeout}s")
                time.sleep(POLL_INTERVAL)
    except BaseException:
        os.close(fd)
        raise

    logger.debug(f"Acquired manifest lock {lock_file}")
    depths[key] = 1
    try:
        yield
    finally:
        depths.pop(key, None)
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        logger.debug(f"Released manifest lock {lock_file}")
