"""Interval index for overlap queries over file time spans."""

from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class IntervalIndex(Generic[T]):
    """
    Closed-interval overlap index.

    A session holds tens of files, so a linear scan over an insertion-ordered
    list is sufficient. Query results keep insertion order, which the
    reconciler relies on for first-inserted-wins tie breaking.
    """

    def __init__(self) -> None:
        self._entries: list[tuple[int, int, T]] = []

    def insert(self, start: int, end: int, item: T) -> None:
        """Add an item spanning [start, end]."""
        if end < start:
            raise ValueError(f"Interval end {end} precedes start {start}")
        self._entries.append((start, end, item))

    def search(self, start: int, end: int) -> list[T]:
        """Items whose span overlaps [start, end], endpoints included."""
        return [
            item
            for item_start, item_end, item in self._entries
            if item_start <= end and item_end >= start
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return (item for _, _, item in self._entries)
