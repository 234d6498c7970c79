"""
Per-key mutual exclusion.
"""

import threading


class KeyedLock:
    """Non-blocking lock per key (one fetch per user at a time).

    Keys are independent: holding "alice" never blocks "bob".
    Thread-safe for synchronous usage.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        """Acquire key if free. Returns False immediately if it is held."""
        with self._lock:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._held.discard(key)

    def is_held(self, key: str) -> bool:
        with self._lock:
            return key in self._held
