"""Change tracking: has the store been mutated since the last flush?"""

from __future__ import annotations

import threading


class ChangeTracker:
    """Generation counter behind the store's dirty flag.

    Every mutation bumps the generation. A flush snapshots the generation
    before writing and clears only that generation afterwards, so a mutation
    that races with the write keeps the tracker dirty.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generation = 0
        self._flushed = 0

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._generation != self._flushed

    def mark(self) -> int:
        """Record a mutation. Returns the new generation."""
        with self._lock:
            self._generation += 1
            return self._generation

    def snapshot(self) -> int:
        with self._lock:
            return self._generation

    def clear(self, generation: int) -> None:
        """Record that everything up to ``generation`` is on disk."""
        with self._lock:
            if generation > self._flushed:
                self._flushed = generation
