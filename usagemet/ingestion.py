"""Best-effort ingestion of usage events.

``IngestionService.track`` is called from inside the handling of a user
interaction. It stamps the event, hands the store write to a bounded
background pool and returns immediately. No failure (bad input, full queue,
unavailable store) is ever raised back to the caller; all of them end up in
the log.
"""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Mapping, Optional, Set

from .config import Settings
from .errors import StoreUnavailable, ValidationError
from .logger import truncate_payload
from .models import Event, EventInput, EventType, MetadataValue, build_event, now_ms
from .ports import EventStore

logger = logging.getLogger(__name__)


def new_event_id() -> str:
    return uuid.uuid4().hex


class IngestionService:
    """Validates events and writes them to an ``EventStore`` in the background."""

    def __init__(
        self,
        store: EventStore,
        *,
        max_workers: int = 4,
        max_pending: int = 1000,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = new_event_id,
    ):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="usagemet-ingest",
        )
        self._slots = threading.BoundedSemaphore(max_pending)
        self._pending: Set[Future] = set()
        self._idle = threading.Condition()

    @classmethod
    def from_settings(cls, store: EventStore, settings: Settings) -> "IngestionService":
        return cls(
            store,
            max_workers=settings.ingestion_max_workers,
            max_pending=settings.ingestion_max_pending,
        )

    def __enter__(self) -> "IngestionService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)

    @property
    def pending_count(self) -> int:
        with self._idle:
            return len(self._pending)

    def track(self, event_input: EventInput) -> None:
        """Record one event without blocking on, or failing because of, the store."""
        try:
            self._submit(event_input)
        except Exception:
            logger.exception(
                "Unexpected failure tracking analytics event type=%s payload=%s",
                getattr(event_input, "type", None),
                truncate_payload(event_input),
            )

    def track_message(
        self,
        user_id: str,
        conversation_id: Optional[str] = None,
        metadata: Optional[Mapping[str, MetadataValue]] = None,
    ) -> None:
        self.track(
            EventInput(
                type=EventType.MESSAGE_SENT.value,
                user_id=user_id,
                conversation_id=conversation_id,
                metadata=metadata or {},
            )
        )

    def track_command_execution(
        self,
        user_id: str,
        command: str,
        success: bool,
        duration_ms: Optional[float] = None,
        conversation_id: Optional[str] = None,
        metadata: Optional[Mapping[str, MetadataValue]] = None,
    ) -> None:
        self.track(
            EventInput(
                type=EventType.ACTION_EXECUTED.value,
                user_id=user_id,
                command=command,
                success=success,
                duration_ms=duration_ms,
                conversation_id=conversation_id,
                metadata=metadata or {},
            )
        )

    def track_error(
        self,
        user_id: Optional[str],
        error_type: str,
        error_message: str,
        conversation_id: Optional[str] = None,
        metadata: Optional[Mapping[str, MetadataValue]] = None,
    ) -> None:
        self.track(
            EventInput(
                type=EventType.ERROR_OCCURRED.value,
                user_id=user_id,
                error_type=error_type,
                error_message=error_message,
                conversation_id=conversation_id,
                metadata=metadata or {},
            )
        )

    def track_connection_opened(self, user_id: Optional[str], connection_id: Optional[str] = None) -> None:
        self.track(
            EventInput(
                type=EventType.CONNECTION_OPENED.value,
                user_id=user_id,
                connection_id=connection_id,
            )
        )

    def track_connection_closed(self, user_id: Optional[str], connection_id: Optional[str] = None) -> None:
        self.track(
            EventInput(
                type=EventType.CONNECTION_CLOSED.value,
                user_id=user_id,
                connection_id=connection_id,
            )
        )

    def track_streaming(self, user_id: str, phase: str, conversation_id: Optional[str] = None) -> None:
        self.track(
            EventInput(
                type=EventType.STREAMING_EVENT.value,
                user_id=user_id,
                phase=phase,
                conversation_id=conversation_id,
            )
        )

    def track_multi_step(
        self,
        user_id: str,
        phase: str,
        step_count: Optional[int] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        self.track(
            EventInput(
                type=EventType.MULTI_STEP_EXECUTION.value,
                user_id=user_id,
                phase=phase,
                step_count=step_count,
                conversation_id=conversation_id,
            )
        )

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted writes to settle; False if ``timeout`` ran out first."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._pending, timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _submit(self, event_input: EventInput) -> None:
        timestamp = event_input.timestamp if event_input.timestamp is not None else self.clock()
        try:
            event = build_event(event_input, event_id=self.id_factory(), timestamp=timestamp)
        except ValidationError as exc:
            logger.warning(
                "Rejected analytics event type=%s timestamp=%s: %s payload=%s",
                event_input.type,
                timestamp,
                exc,
                truncate_payload(event_input),
            )
            return

        if not self._slots.acquire(blocking=False):
            logger.warning(
                "Ingestion queue full, dropped analytics event type=%s timestamp=%s",
                event.type.value,
                event.timestamp,
            )
            return

        try:
            future = self._executor.submit(self._write, event)
        except RuntimeError:
            self._slots.release()
            logger.error(
                "Ingestion pool is shut down, dropped analytics event type=%s timestamp=%s",
                event.type.value,
                event.timestamp,
            )
            return

        with self._idle:
            self._pending.add(future)
        future.add_done_callback(self._settle)

    def _settle(self, future: Future) -> None:
        with self._idle:
            self._pending.discard(future)
            self._slots.release()
            self._idle.notify_all()

    def _write(self, event: Event) -> None:
        try:
            self.store.append(event)
        except StoreUnavailable as exc:
            logger.error(
                "Failed to store analytics event type=%s timestamp=%s: %s payload=%s",
                event.type.value,
                event.timestamp,
                exc,
                truncate_payload(event),
            )
            return
        except Exception:
            logger.exception(
                "Unexpected error storing analytics event type=%s timestamp=%s payload=%s",
                event.type.value,
                event.timestamp,
                truncate_payload(event),
            )
            return
        logger.debug("Analytics event tracked type=%s user_id=%s", event.type.value, event.user_id)
