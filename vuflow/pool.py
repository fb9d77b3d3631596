"""Shared state pool read and written by workload steps across all VUs."""

import random
import threading
from typing import Dict, Hashable, List, Optional


class SharedStatePool:
    """A set of identifiers with uniform random sampling.

    Members live in a list with an index map beside it so ``sample`` is O(1).
    One lock covers every operation; ``sample`` never removes the member it
    returns.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._items: List[Hashable] = []
        self._index: Dict[Hashable, int] = {}

    def insert(self, item: Hashable) -> bool:
        """Add ``item``; returns False if it was already a member."""
        with self._lock:
            if item in self._index:
                return False
            self._index[item] = len(self._items)
            self._items.append(item)
            return True

    def sample(self, rng: Optional[random.Random] = None) -> Optional[Hashable]:
        """Return a uniformly chosen member, or None if the pool is empty."""
        rng = rng or random
        with self._lock:
            if not self._items:
                return None
            return self._items[rng.randrange(len(self._items))]

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def snapshot(self) -> List[Hashable]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, item: Hashable) -> bool:
        with self._lock:
            return item in self._index
