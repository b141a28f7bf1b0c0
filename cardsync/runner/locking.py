"""
Lock management for cardsync.

One flock per card ID serializes reconciliation passes for that card.
Passes for different cards use different lock files and never block
each other.
"""

import atexit
import fcntl
import logging
import os
import signal
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2


class LockTimeout(Exception):
    """Lock acquisition timed out."""

    def __init__(self, card_id: str, timeout: float):
        self.card_id = card_id
        self.timeout = timeout
        super().__init__(
            f"Another reconciliation pass holds the lock for {card_id} "
            f"(waited {timeout}s)"
        )


def lock_path(lock_dir: Path, card_id: str) -> Path:
    return lock_dir / f"{card_id}.lock"


def is_locked(lock_dir: Path, card_id: str) -> bool:
    """True if some process currently holds the lock for card_id."""
    path = lock_path(lock_dir, card_id)
    if not path.exists():
        return False
    try:
        with open(path, 'r') as fd:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
    except OSError:
        return False


@contextmanager
def card_lock(lock_dir: Path, card_id: str, timeout: float = 30):
    """
    Acquire the lock for one card, yield, release on exit.

    Lock files are never deleted. Deleting them would let two processes
    hold "exclusive" locks on different inodes with the same path.

    Raises:
        LockTimeout: if the lock isn't free within `timeout` seconds
    """
    path = lock_path(lock_dir, card_id)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = open(path, 'a')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start >= timeout:
                fd.close()
                raise LockTimeout(card_id, timeout) from None
            time.sleep(POLL_INTERVAL)

    logger.debug(f"[LOCK] acquired {path}")

    def cleanup():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            fd.close()
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)

    # Signal handlers can only be installed from the main thread
    in_main_thread = threading.current_thread() is threading.main_thread()
    if in_main_thread:
        original_sigterm = signal.signal(signal.SIGTERM, lambda *_: sys.exit(1))

    try:
        fd.truncate(0)
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(cleanup)
        if in_main_thread:
            signal.signal(signal.SIGTERM, original_sigterm)
        cleanup()
        logger.debug(f"[LOCK] released {path}")
