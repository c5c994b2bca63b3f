"""
Per-project advisory locks held for the duration of an update pass.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from .models import SubmoduleError


logger = logging.getLogger(__name__)


class ProjectLockManager:
    """Hands out one lock per project name."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock(self, project: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(project)
            if lock is None:
                lock = self._locks[project] = threading.Lock()
            return lock

    @contextmanager
    def acquire(self, projects: Iterable[str], timeout: Optional[float] = None) -> Iterator[List[str]]:
        """Hold the locks of all ``projects`` inside the ``with`` block.

        Locks are taken in sorted order and released on every exit path.

        Raises:
            SubmoduleError: if a lock is not obtained within ``timeout`` seconds
        """
        names = sorted(set(projects))
        held: List[threading.Lock] = []
        try:
            for name in names:
                lock = self.lock(name)
                acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
                if not acquired:
                    raise SubmoduleError(f"Timed out waiting for the lock of project {name}")
                held.append(lock)
                logger.debug(f"Locked project {name}")
            yield names
        finally:
            for lock in reversed(held):
                lock.release()
            if held:
                logger.debug(f"Released {len(held)} project locks")
