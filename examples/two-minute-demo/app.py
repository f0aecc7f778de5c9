"""Two-minute UsageMet demo: the analytics API over a seeded in-memory store."""

from random import Random

from usagemet.adapters import InMemoryEventStore
from usagemet.api import create_app
from usagemet.config import Settings
from usagemet.ingestion import IngestionService
from usagemet.models import EventInput, EventType, now_ms
from usagemet.service import AnalyticsService

RNG = Random(42)
MINUTE_MS = 60 * 1000

COMMANDS = [
    "add-supplier",
    "connect-nodes",
    "scan-anomalies",
    "run-simulation",
    "get-network-summary",
    "help",
]
ERRORS = [
    ("ValidationError", "Missing required parameter: nodeId"),
    ("ActionExecutionError", "Simulation timed out"),
    ("WebSocketError", "Connection reset by peer"),
]


def _seed(ingestion: IngestionService) -> None:
    now = now_ms()
    users = [f"user-{idx}" for idx in range(8)]

    for idx in range(400):
        timestamp = now - idx * 7 * MINUTE_MS
        user_id = users[idx % len(users)]
        ingestion.track(
            EventInput(type=EventType.MESSAGE_SENT.value, user_id=user_id, timestamp=timestamp)
        )

        command = COMMANDS[min(int(RNG.expovariate(0.8)), len(COMMANDS) - 1)]
        success = RNG.random() > 0.12
        ingestion.track(
            EventInput(
                type=EventType.ACTION_EXECUTED.value,
                user_id=user_id,
                command=command,
                success=success,
                duration_ms=max(20, int(RNG.gauss(350, 120))),
                timestamp=timestamp + 1,
            )
        )

        if not success:
            error_type, error_message = ERRORS[idx % len(ERRORS)]
            ingestion.track(
                EventInput(
                    type=EventType.ERROR_OCCURRED.value,
                    user_id=user_id,
                    error_type=error_type,
                    error_message=error_message,
                    metadata={"command": command},
                    timestamp=timestamp + 2,
                )
            )

    ingestion.flush()


STORE = InMemoryEventStore()
with IngestionService(STORE) as demo_ingestion:
    _seed(demo_ingestion)

app = create_app(settings=Settings(demo_mode=True), service=AnalyticsService(STORE))
