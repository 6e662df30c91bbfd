"""Fixed-capacity ring buffer for recent history."""

from __future__ import annotations

from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class CircularBuffer(Generic[T]):
    """Keeps the last ``capacity`` items pushed, oldest first when read."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("CircularBuffer capacity must be > 0")
        self._capacity = capacity
        self._items: list[T | None] = [None] * capacity
        self._head = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, item: T) -> None:
        self._items[self._head] = item
        self._head = (self._head + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1

    def to_list(self) -> list[T]:
        start = (self._head - self._size) % self._capacity
        return [
            self._items[(start + offset) % self._capacity]  # type: ignore[misc]
            for offset in range(self._size)
        ]

    def get_recent(self, count: int) -> list[T]:
        if count <= 0:
            return []
        return self.to_list()[-count:]

    def clear(self) -> None:
        self._items = [None] * self._capacity
        self._head = 0
        self._size = 0

    def is_full(self) -> bool:
        return self._size == self._capacity

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[T]:
        return iter(self.to_list())


__all__ = ["CircularBuffer"]
