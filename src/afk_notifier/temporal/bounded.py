"""
Insertion-ordered collection with "drop oldest under pressure" helpers.

Shared by the approval registry (evict the oldest pending request at
capacity) and the batch queue (discard stale messages, enforce the queue
bound). Entries are stamped with the time they were pushed; timestamps are
expected to be non-decreasing, so insertion order is also age order.
"""
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Iterator, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedAgeQueue(Generic[K, V]):
    """
    Ordered mapping of ``key -> item`` that remembers when each key arrived.

    Attributes:
        max_size: Optional bound; ``push`` evicts the oldest entries to stay
                  within it
    """

    def __init__(self, max_size: Optional[int] = None):
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._entries: OrderedDict[K, tuple[float, V]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[V]:
        return (item for _, item in self._entries.values())

    def keys(self) -> list[K]:
        return list(self._entries.keys())

    def items(self) -> list[tuple[K, V]]:
        return [(key, item) for key, (_, item) in self._entries.items()]

    @property
    def is_full(self) -> bool:
        return self.max_size is not None and len(self._entries) >= self.max_size

    def push(self, key: K, item: V, at: float) -> list[V]:
        """
        Insert an entry, evicting the oldest ones if the bound requires it.

        Returns:
            Items evicted to make room (oldest first)
        """
        if key in self._entries:
            raise KeyError(f"Duplicate key {key!r}")
        evicted = []
        while self.is_full:
            evicted.append(self._entries.popitem(last=False)[1][1])
        self._entries[key] = (at, item)
        return evicted

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def pushed_at(self, key: K) -> Optional[float]:
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def pop(self, key: K) -> Optional[V]:
        entry = self._entries.pop(key, None)
        return entry[1] if entry else None

    def count(self, where: Optional[Callable[[V], bool]] = None) -> int:
        if where is None:
            return len(self._entries)
        return sum(1 for _, item in self._entries.values() if where(item))

    def oldest(self, where: Optional[Callable[[V], bool]] = None) -> Optional[tuple[K, V]]:
        """Oldest entry, optionally the oldest one matching ``where``."""
        for key, (_, item) in self._entries.items():
            if where is None or where(item):
                return key, item
        return None

    def evict_oldest(self, where: Optional[Callable[[V], bool]] = None) -> Optional[V]:
        """Remove and return the oldest (matching) entry."""
        found = self.oldest(where)
        if found is None:
            return None
        return self.pop(found[0])

    def evict_until(self, cutoff: float) -> list[V]:
        """Remove every entry pushed at or before ``cutoff``."""
        evicted = []
        while self._entries:
            key, (at, item) = next(iter(self._entries.items()))
            if at > cutoff:
                break
            del self._entries[key]
            evicted.append(item)
        return evicted

    def drain(self) -> list[V]:
        """Remove and return all items in insertion order."""
        items = [item for _, item in self._entries.values()]
        self._entries.clear()
        return items

    def __repr__(self) -> str:
        return f"BoundedAgeQueue(size={len(self._entries)}, max_size={self.max_size})"
