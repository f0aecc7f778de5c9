"""In-memory event store, used as the test double and for demo deployments."""

import threading
from bisect import bisect_left, bisect_right, insort
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..models import Event, now_ms
from ..ports import Dimension


class InMemoryEventStore:
    """Keeps events sorted by ``(timestamp, id)`` and scans them page by page."""

    def __init__(self, clock: Callable[[], int] = now_ms, page_size: int = 500):
        self.clock = clock
        self.page_size = page_size
        self._keys: List[Tuple[int, str]] = []
        self._events: Dict[str, Event] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: Event) -> None:
        with self._lock:
            if event.id in self._events:
                return
            self._events[event.id] = event
            insort(self._keys, (event.timestamp, event.id))

    def scan_by_time_range(self, start: int, end: int) -> Iterator[Event]:
        return self._scan(start, end, lambda event: True)

    def scan_by_dimension(
        self,
        dimension: Dimension,
        value: str,
        start: int,
        end: int,
    ) -> Iterator[Event]:
        dimension = Dimension(dimension)
        return self._scan(start, end, lambda event: _dimension_value(event, dimension) == value)

    def purge_expired(self, now: Optional[int] = None) -> int:
        if now is None:
            now = self.clock()
        with self._lock:
            expired = [event_id for event_id, event in self._events.items() if event.is_expired(now)]
            for event_id in expired:
                del self._events[event_id]
            if expired:
                self._keys = sorted((event.timestamp, event.id) for event in self._events.values())
        return len(expired)

    def _scan(self, start: int, end: int, predicate: Callable[[Event], bool]) -> Iterator[Event]:
        now = self.clock()
        cursor: Optional[Tuple[int, str]] = None
        while True:
            with self._lock:
                if cursor is None:
                    index = bisect_left(self._keys, (start, ""))
                else:
                    index = bisect_right(self._keys, cursor)
                page = [self._events[key[1]] for key in self._keys[index : index + self.page_size]]

            for event in page:
                if event.timestamp > end:
                    return
                if not event.is_expired(now) and predicate(event):
                    yield event

            if len(page) < self.page_size:
                return
            cursor = (page[-1].timestamp, page[-1].id)


def _dimension_value(event: Event, dimension: Dimension) -> Optional[str]:
    if dimension is Dimension.TYPE:
        return event.type.value
    return getattr(event, dimension.value, None)
