"""
store.py - In-memory, append-only event store for a single run.
"""

from __future__ import annotations

from typing import Iterator, List

from edrtest.events import Event


class EventStore:
    """Ordered list of events in insertion order.

    No deduplication and no indexing.  The only way to remove events is
    :meth:`clear`, which is reserved for repeated-run test scenarios.
    """

    def __init__(self) -> None:
        self._events: List[Event] = []

    def append(self, event: Event) -> None:
        self._events.append(event)

    def of_kind(self, kind: str) -> List[Event]:
        kind = str(kind)
        return [event for event in self._events if event.kind == kind]

    def clear(self) -> None:
        self._events.clear()

    def snapshot(self) -> List[Event]:
        return list(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)
