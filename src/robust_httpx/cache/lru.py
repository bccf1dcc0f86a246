"""
Bounded LRU cache.

Hash map plus doubly linked list: O(1) get, set and delete, with the least
recently used entry evicted when a new key arrives at capacity.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Iterator

K = TypeVar("K")
V = TypeVar("V")


class _Node(Generic[K, V]):
    """Doubly linked list node."""

    __slots__ = ("key", "next", "prev", "value")

    def __init__(self, key: K, value: V) -> None:
        self.key = key
        self.value = value
        self.prev: _Node[K, V] | None = None
        self.next: _Node[K, V] | None = None


class LRUCache(Generic[K, V]):
    """Least-recently-used cache with a fixed capacity.

    The head of the list is the most recently used entry, the tail the
    least recently used one.

    Example:
        >>> cache: LRUCache[str, int] = LRUCache(capacity=2)
        >>> cache.set("a", 1)
        >>> cache.set("b", 2)
        >>> cache.get("a")
        1
        >>> cache.set("c", 3)  # returns the evicted key
        'b'
        >>> "b" in cache
        False
    """

    def __init__(self, capacity: int) -> None:
        """Initialize cache.

        Args:
            capacity: Maximum number of entries (at least 1)
        """
        self._capacity = max(1, capacity)
        self._nodes: dict[K, _Node[K, V]] = {}
        self._head: _Node[K, V] | None = None
        self._tail: _Node[K, V] | None = None

    @property
    def capacity(self) -> int:
        """Maximum number of entries."""
        return self._capacity

    def get(self, key: K) -> V | None:
        """Get a value and mark it as most recently used.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        node = self._nodes.get(key)
        if node is None:
            return None
        self._move_to_front(node)
        return node.value

    def peek(self, key: K) -> V | None:
        """Get a value without touching recency."""
        node = self._nodes.get(key)
        return node.value if node is not None else None

    def set(self, key: K, value: V) -> K | None:
        """Insert or update a value as most recently used.

        Args:
            key: Cache key
            value: Value to store

        Returns:
            The evicted key, if inserting required an eviction
        """
        node = self._nodes.get(key)
        if node is not None:
            node.value = value
            self._move_to_front(node)
            return None

        evicted: K | None = None
        if len(self._nodes) >= self._capacity:
            evicted = self._evict_lru()

        node = _Node(key, value)
        self._nodes[key] = node
        self._push_front(node)
        return evicted

    def delete(self, key: K) -> bool:
        """Delete an entry.

        Returns:
            True if deleted, False if not found
        """
        node = self._nodes.pop(key, None)
        if node is None:
            return False
        self._unlink(node)
        return True

    def clear(self) -> None:
        """Remove every entry."""
        self._nodes.clear()
        self._head = None
        self._tail = None

    @property
    def lru_key(self) -> K | None:
        """Key of the least recently used entry."""
        return self._tail.key if self._tail is not None else None

    def keys(self) -> list[K]:
        """Keys from most to least recently used."""
        return [node.key for node in self._iter_nodes()]

    def items(self) -> list[tuple[K, V]]:
        """Entries from most to least recently used."""
        return [(node.key, node.value) for node in self._iter_nodes()]

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())

    def _iter_nodes(self) -> Iterator[_Node[K, V]]:
        node = self._head
        while node is not None:
            yield node
            node = node.next

    def _evict_lru(self) -> K | None:
        tail = self._tail
        if tail is None:
            return None
        self._unlink(tail)
        del self._nodes[tail.key]
        return tail.key

    def _move_to_front(self, node: _Node[K, V]) -> None:
        if node is self._head:
            return
        self._unlink(node)
        self._push_front(node)

    def _push_front(self, node: _Node[K, V]) -> None:
        node.prev = None
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        self._head = node
        if self._tail is None:
            self._tail = node

    def _unlink(self, node: _Node[K, V]) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        else:
            self._head = node.next
        if node.next is not None:
            node.next.prev = node.prev
        else:
            self._tail = node.prev
        node.prev = None
        node.next = None

    def __repr__(self) -> str:
        return f"LRUCache(size={len(self)}, capacity={self._capacity})"
