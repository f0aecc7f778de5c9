"""Port definitions for persisting and scanning usage events on any backend."""

from enum import Enum
from typing import Iterator, Optional, Protocol

from .models import Event


class Dimension(str, Enum):
    """Secondary keys an event store can range-scan on."""

    TYPE = "type"
    COMMAND = "command"
    USER_ID = "user_id"


class EventStore(Protocol):
    """Append-only event log that adapters can implement for any backend.

    Scans yield non-expired events with ``start <= timestamp <= end`` in
    ascending ``(timestamp, id)`` order, a page at a time, and keep no cursor
    state between calls. Failures surface as ``StoreUnavailable``.
    """

    def append(self, event: Event) -> None:
        """Persist one event; appending an already stored id is a no-op."""

    def scan_by_time_range(self, start: int, end: int) -> Iterator[Event]:
        """Yield every live event in the window."""

    def scan_by_dimension(
        self,
        dimension: Dimension,
        value: str,
        start: int,
        end: int,
    ) -> Iterator[Event]:
        """Yield live events in the window whose ``dimension`` equals ``value``."""

    def purge_expired(self, now: Optional[int] = None) -> int:
        """Physically delete expired events and return how many were removed."""
