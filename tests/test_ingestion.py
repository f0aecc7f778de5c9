import itertools
import logging
import threading

from usagemet.adapters import InMemoryEventStore
from usagemet.errors import StoreUnavailable
from usagemet.ingestion import IngestionService
from usagemet.models import RETENTION_MS, ActionExecuted, EventInput, ErrorOccurred

NOW = 1_767_225_600_000  # 2026-01-01T00:00:00Z


class FailingStore:
    def __init__(self, error):
        self.error = error
        self.attempts = 0

    def append(self, event):
        self.attempts += 1
        raise self.error


class BlockingStore(InMemoryEventStore):
    def __init__(self):
        super().__init__(clock=lambda: NOW)
        self.release = threading.Event()

    def append(self, event):
        self.release.wait(timeout=5)
        super().append(event)


def _sequential_ids():
    counter = itertools.count(1)
    return lambda: f"evt-{next(counter)}"


def test_track_assigns_id_timestamp_and_expiry():
    store = InMemoryEventStore(clock=lambda: NOW)
    with IngestionService(store, clock=lambda: NOW, id_factory=_sequential_ids()) as ingestion:
        ingestion.track(EventInput(type="action_executed", user_id="u1", command="help", success=True))
        assert ingestion.flush(timeout=5)

    [event] = list(store.scan_by_time_range(NOW - 1, NOW + 1))
    assert isinstance(event, ActionExecuted)
    assert event.id == "evt-1"
    assert event.timestamp == NOW
    assert event.expires_at == NOW + RETENTION_MS


def test_track_keeps_explicit_timestamp():
    store = InMemoryEventStore(clock=lambda: NOW)
    with IngestionService(store, clock=lambda: NOW) as ingestion:
        ingestion.track(EventInput(type="message_sent", timestamp=NOW - 5000))
        ingestion.flush(timeout=5)

    assert [event.timestamp for event in store.scan_by_time_range(0, NOW)] == [NOW - 5000]


def test_track_never_raises_when_store_fails(caplog):
    caplog.set_level(logging.ERROR, logger="usagemet.ingestion")
    store = FailingStore(StoreUnavailable("connection refused"))

    with IngestionService(store, clock=lambda: NOW) as ingestion:
        ingestion.track_command_execution("u1", "add-supplier", True, 120)
        ingestion.track_error("u1", "BedrockError", "throttled")
        assert ingestion.flush(timeout=5)

    assert store.attempts == 2
    messages = [record.getMessage() for record in caplog.records]
    assert any("Failed to store analytics event type=action_executed" in message for message in messages)


def test_track_swallows_unexpected_store_errors(caplog):
    caplog.set_level(logging.ERROR, logger="usagemet.ingestion")
    store = FailingStore(RuntimeError("driver bug"))

    with IngestionService(store) as ingestion:
        ingestion.track_message("u1")
        ingestion.flush(timeout=5)

    assert any(record.exc_info for record in caplog.records)


def test_unknown_event_type_is_logged_not_raised(caplog):
    caplog.set_level(logging.WARNING, logger="usagemet.ingestion")
    store = InMemoryEventStore(clock=lambda: NOW)

    with IngestionService(store) as ingestion:
        ingestion.track(EventInput(type="intent_classified", user_id="u1"))
        ingestion.track(EventInput(type="action_executed", user_id="u1"))
        ingestion.flush(timeout=5)

    assert len(store) == 0
    assert sum("Rejected analytics event" in record.getMessage() for record in caplog.records) == 2


def test_track_drops_events_when_queue_is_full(caplog):
    caplog.set_level(logging.WARNING, logger="usagemet.ingestion")
    store = BlockingStore()
    ingestion = IngestionService(store, max_workers=1, max_pending=1, clock=lambda: NOW)

    ingestion.track_message("u1")
    ingestion.track_message("u2")
    assert ingestion.pending_count == 1

    store.release.set()
    assert ingestion.flush(timeout=5)
    ingestion.shutdown()

    assert len(store) == 1
    assert any("queue full" in record.getMessage() for record in caplog.records)


def test_track_after_shutdown_does_not_raise():
    store = InMemoryEventStore(clock=lambda: NOW)
    ingestion = IngestionService(store)
    ingestion.shutdown()

    ingestion.track_connection_opened("u1", "conn-1")

    assert len(store) == 0


def test_duplicate_ids_are_stored_once():
    store = InMemoryEventStore(clock=lambda: NOW)
    with IngestionService(store, clock=lambda: NOW, id_factory=lambda: "same-id") as ingestion:
        ingestion.track_error("u1", "WebSocketError", "reset")
        ingestion.track_error("u1", "WebSocketError", "reset")
        ingestion.flush(timeout=5)

    [event] = list(store.scan_by_time_range(0, NOW))
    assert isinstance(event, ErrorOccurred)


def test_concurrent_tracking_from_many_threads():
    store = InMemoryEventStore(clock=lambda: NOW)
    with IngestionService(store, max_workers=4, clock=lambda: NOW) as ingestion:

        def worker(user_id):
            for _ in range(25):
                ingestion.track_command_execution(user_id, "scan-anomalies", True, 10)

        threads = [threading.Thread(target=worker, args=(f"u{idx}",)) for idx in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert ingestion.flush(timeout=10)

    assert len(store) == 200
