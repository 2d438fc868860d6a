# services/claims/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Set


class RefreshLockRegistry:
    """
    Per-key "refresh in progress" flags.

    acquire() is non-blocking: it returns False when the key is already held,
    and the caller is expected to skip its refresh rather than wait. The set
    is guarded by a threading lock so the registry is safe to share between
    the event loop and worker threads.
    """

    def __init__(self) -> None:
        self._held: Set[str] = set()
        self._mu = threading.Lock()

    def acquire(self, key: str) -> bool:
        with self._mu:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._mu:
            self._held.discard(key)

    def is_held(self, key: str) -> bool:
        with self._mu:
            return key in self._held

    @contextmanager
    def hold(self, key: str) -> Iterator[bool]:
        """Yields whether the key was acquired; releases only what it acquired."""
        got = self.acquire(key)
        try:
            yield got
        finally:
            if got:
                self.release(key)


__all__ = ["RefreshLockRegistry"]
