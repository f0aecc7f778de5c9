"""Core domain models: usage events and the aggregates derived from them."""

import math
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import ClassVar, Dict, List, Mapping, Optional, Union

from .errors import ValidationError

RETENTION_DAYS = 90
RETENTION_MS = RETENTION_DAYS * 24 * 60 * 60 * 1000

ALL_TIME_START = 0
ALL_TIME_END = 253402300799999  # 9999-12-31T23:59:59.999Z

MetadataValue = Union[str, int, float, bool]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class EventType(str, Enum):
    MESSAGE_SENT = "message_sent"
    ACTION_EXECUTED = "action_executed"
    ERROR_OCCURRED = "error_occurred"
    CONNECTION_OPENED = "connection_opened"
    CONNECTION_CLOSED = "connection_closed"
    STREAMING_EVENT = "streaming_event"
    MULTI_STEP_EXECUTION = "multi_step_execution"


@dataclass(frozen=True, kw_only=True)
class Event:
    """Fields shared by every usage event.

    Events are immutable once built, metadata included: it is copied into a
    read-only mapping. ``expires_at`` is derived from ``timestamp`` so the
    retention window can never drift from it.
    """

    type: ClassVar[EventType]

    id: str
    timestamp: int
    user_id: Optional[str] = None
    metadata: Mapping[str, MetadataValue] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def expires_at(self) -> int:
        return self.timestamp + RETENTION_MS

    def is_expired(self, now: int) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True, kw_only=True)
class MessageSent(Event):
    """A user message received by the assistant."""

    type: ClassVar[EventType] = EventType.MESSAGE_SENT

    conversation_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ActionExecuted(Event):
    """A command run to completion, successfully or not."""

    type: ClassVar[EventType] = EventType.ACTION_EXECUTED

    command: str
    success: bool
    duration_ms: Optional[float] = None
    conversation_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ErrorOccurred(Event):
    """An error raised while handling a user interaction."""

    type: ClassVar[EventType] = EventType.ERROR_OCCURRED

    error_type: str
    error_message: str
    conversation_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ConnectionOpened(Event):
    type: ClassVar[EventType] = EventType.CONNECTION_OPENED

    connection_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ConnectionClosed(Event):
    type: ClassVar[EventType] = EventType.CONNECTION_CLOSED

    connection_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class StreamingEvent(Event):
    """Streaming response lifecycle (started, completed, interrupted)."""

    type: ClassVar[EventType] = EventType.STREAMING_EVENT

    phase: Optional[str] = None
    conversation_id: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class MultiStepExecution(Event):
    """Multi-step plan lifecycle (started, completed, failed)."""

    type: ClassVar[EventType] = EventType.MULTI_STEP_EXECUTION

    phase: Optional[str] = None
    step_count: Optional[int] = None
    conversation_id: Optional[str] = None


EVENT_CLASSES: Dict[EventType, type] = {
    cls.type: cls
    for cls in (
        MessageSent,
        ActionExecuted,
        ErrorOccurred,
        ConnectionOpened,
        ConnectionClosed,
        StreamingEvent,
        MultiStepExecution,
    )
}


@dataclass(frozen=True)
class EventInput:
    """Caller-supplied description of an event, before id/timestamp assignment."""

    type: str
    user_id: Optional[str] = None
    command: Optional[str] = None
    success: Optional[bool] = None
    duration_ms: Optional[float] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    conversation_id: Optional[str] = None
    connection_id: Optional[str] = None
    phase: Optional[str] = None
    step_count: Optional[int] = None
    metadata: Mapping[str, MetadataValue] = field(default_factory=dict)
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class CommandStat:
    """Usage of one command over a time window."""

    command: str
    execution_count: int
    success_count: int
    failure_count: int
    success_rate: float
    avg_duration_ms: float
    last_used_at: Optional[int]


@dataclass(frozen=True)
class ErrorPattern:
    """Errors sharing one (error_type, error_message) pair over a time window."""

    error_type: str
    error_message: str
    occurrence_count: int
    first_seen_at: int
    last_seen_at: int
    affected_user_count: int


@dataclass(frozen=True)
class DashboardSummary:
    total_executions: int
    success_rate: float
    avg_duration_ms: float
    total_errors: int
    unique_error_types: int


@dataclass(frozen=True)
class UserActivitySummary:
    """Per-user rollup of messages, actions and errors."""

    user_id: str
    total_messages: int
    total_actions: int
    successful_actions: int
    failed_actions: int
    total_errors: int
    top_commands: List[str]
    first_seen_at: Optional[int]
    last_seen_at: Optional[int]
    avg_duration_ms: float


@dataclass(frozen=True)
class DailyMetrics:
    """Activity counts for one UTC day."""

    date: str
    total_messages: int
    total_actions: int
    successful_actions: int
    failed_actions: int
    total_errors: int
    unique_users: int


@dataclass(frozen=True)
class Period:
    start: int
    end: int


@dataclass(frozen=True)
class DashboardReport:
    period: Period
    summary: DashboardSummary
    popular_commands: List[CommandStat]
    top_errors: List[ErrorPattern]


@dataclass(frozen=True)
class AnalyticsExport:
    exported_at: int
    period: Period
    commands: List[CommandStat]
    errors: List[ErrorPattern]


def build_event(event_input: EventInput, *, event_id: str, timestamp: int) -> Event:
    """Validate an ``EventInput`` and build the matching event variant."""
    try:
        event_type = EventType(event_input.type)
    except ValueError:
        raise ValidationError(f"unknown event type: {event_input.type!r}") from None

    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
        raise ValidationError(f"timestamp must be a non-negative integer, got {timestamp!r}")

    common = {
        "id": event_id,
        "timestamp": timestamp,
        "user_id": _optional_str("user_id", event_input.user_id),
        "metadata": _validate_metadata(event_input.metadata),
    }

    if event_type is EventType.MESSAGE_SENT:
        return MessageSent(
            conversation_id=_optional_str("conversation_id", event_input.conversation_id),
            **common,
        )
    if event_type is EventType.ACTION_EXECUTED:
        if not isinstance(event_input.command, str) or not event_input.command:
            raise ValidationError("action_executed events require a command name")
        if not isinstance(event_input.success, bool):
            raise ValidationError("action_executed events require a boolean success flag")
        return ActionExecuted(
            command=event_input.command,
            success=event_input.success,
            duration_ms=_optional_duration(event_input.duration_ms),
            conversation_id=_optional_str("conversation_id", event_input.conversation_id),
            **common,
        )
    if event_type is EventType.ERROR_OCCURRED:
        if not isinstance(event_input.error_type, str) or not event_input.error_type:
            raise ValidationError("error_occurred events require an error_type")
        if not isinstance(event_input.error_message, str):
            raise ValidationError("error_occurred events require an error_message")
        return ErrorOccurred(
            error_type=event_input.error_type,
            error_message=event_input.error_message,
            conversation_id=_optional_str("conversation_id", event_input.conversation_id),
            **common,
        )
    if event_type is EventType.CONNECTION_OPENED:
        return ConnectionOpened(
            connection_id=_optional_str("connection_id", event_input.connection_id),
            **common,
        )
    if event_type is EventType.CONNECTION_CLOSED:
        return ConnectionClosed(
            connection_id=_optional_str("connection_id", event_input.connection_id),
            **common,
        )
    if event_type is EventType.STREAMING_EVENT:
        return StreamingEvent(
            phase=_optional_str("phase", event_input.phase),
            conversation_id=_optional_str("conversation_id", event_input.conversation_id),
            **common,
        )
    step_count = event_input.step_count
    if step_count is not None and (isinstance(step_count, bool) or not isinstance(step_count, int)):
        raise ValidationError(f"step_count must be an integer, got {step_count!r}")
    return MultiStepExecution(
        phase=_optional_str("phase", event_input.phase),
        step_count=step_count,
        conversation_id=_optional_str("conversation_id", event_input.conversation_id),
        **common,
    )


def event_to_dict(event: Event) -> Dict:
    """Serialize an event to a plain dict holding only its variant's fields."""
    data = {"type": event.type.value}
    for item in fields(event):
        value = getattr(event, item.name)
        data[item.name] = dict(value) if item.name == "metadata" else value
    data["expires_at"] = event.expires_at
    return data


def event_from_dict(data: Mapping) -> Event:
    """Inverse of ``event_to_dict``; ``expires_at`` is re-derived, not read."""
    try:
        cls = EVENT_CLASSES[EventType(data["type"])]
    except (KeyError, ValueError):
        raise ValidationError(f"unknown event type: {data.get('type')!r}") from None
    kwargs = {item.name: data[item.name] for item in fields(cls) if item.name in data}
    kwargs["metadata"] = dict(kwargs.get("metadata") or {})
    return cls(**kwargs)


def _validate_metadata(metadata: Optional[Mapping]) -> Dict[str, MetadataValue]:
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise ValidationError("metadata must be a mapping")
    result: Dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationError(f"metadata keys must be strings, got {key!r}")
        if not isinstance(value, (str, int, float, bool)):
            raise ValidationError(
                f"metadata value for {key!r} must be a string, number or boolean"
            )
        result[key] = value
    return result


def _optional_str(name: str, value) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise ValidationError(f"{name} must be a string, got {type(value).__name__}")


def _optional_duration(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"duration_ms must be a finite non-negative number, got {value!r}")
    if not math.isfinite(value) or value < 0:
        raise ValidationError(f"duration_ms must be a finite non-negative number, got {value!r}")
    return float(value)
