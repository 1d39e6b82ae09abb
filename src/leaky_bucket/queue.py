"""Admission queue -- ordered waiting list of not yet granted requests."""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterator


@dataclass
class QueueEntry:
    """A pending request for *cost* units.

    ``future`` resolves with ``None`` when the request is granted and fails
    with :class:`~leaky_bucket.errors.CapacityExceededError` when it is
    dropped. Pause entries are synthetic delays and are never dropped.
    """
    cost: float
    future: asyncio.Future
    is_pause: bool = False


class AdmissionQueue:
    """FIFO queue with head insertion for pauses."""

    def __init__(self) -> None:
        self._entries: deque[QueueEntry] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(self._entries)

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def append(self, entry: QueueEntry) -> None:
        self._entries.append(entry)

    def appendleft(self, entry: QueueEntry) -> None:
        self._entries.appendleft(entry)

    def peek(self) -> QueueEntry | None:
        return self._entries[0] if self._entries else None

    def popleft(self) -> QueueEntry:
        return self._entries.popleft()

    def remove_from(
        self,
        index: int,
        keep: Callable[[QueueEntry], bool] | None = None,
    ) -> list[QueueEntry]:
        """Remove every entry at or past *index* unless *keep* says otherwise.

        Kept entries stay in their original order. Returns the removed
        entries in queue order.
        """
        head = list(self._entries)[:index]
        removed: list[QueueEntry] = []
        for entry in list(self._entries)[index:]:
            if keep is not None and keep(entry):
                head.append(entry)
            else:
                removed.append(entry)
        self._entries = deque(head)
        return removed

    def clear(self) -> list[QueueEntry]:
        """Drop all entries and return them."""
        entries = list(self._entries)
        self._entries.clear()
        return entries
