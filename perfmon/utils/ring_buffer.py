"""
Fixed-capacity circular buffer.

PATTERN RECOGNITION: A ring buffer is the classic way to keep "the last N
things" without ever growing. Writes land at the tail; once the buffer is
full every new write also pushes the head forward, so the oldest element is
overwritten in O(1) with no shifting or reallocation.
"""

from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Circular storage with overwrite-oldest eviction.

    Args:
        capacity: Maximum number of elements held (fixed for the buffer's life)
    """

    def __init__(self, capacity: int) -> None:
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"capacity must be a positive integer, got {capacity!r}")
        self._capacity = capacity
        self._buffer: List[Optional[T]] = [None] * capacity
        self._head = 0
        self._tail = 0
        self._size = 0

    def add(self, item: T) -> None:
        """Insert *item*, evicting the logically oldest element when full."""
        self._buffer[self._tail] = item
        self._tail = (self._tail + 1) % self._capacity

        if self._size < self._capacity:
            self._size += 1
        else:
            self._head = (self._head + 1) % self._capacity

    def to_list(self) -> List[T]:
        """Return the elements oldest first, newest last."""
        return [
            self._buffer[(self._head + i) % self._capacity]
            for i in range(self._size)
        ]

    def clear(self) -> None:
        """Reset to empty and drop every reference held by the backing store."""
        self._buffer = [None] * self._capacity
        self._head = 0
        self._tail = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_empty(self) -> bool:
        return self._size == 0

    @property
    def is_full(self) -> bool:
        return self._size == self._capacity

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self._capacity}, size={self._size})"
