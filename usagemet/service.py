"""Application service orchestrating event store scans and pure analytics."""

from itertools import chain
from typing import Callable, List, Optional, Tuple

from .analytics import (
    compute_command_stats,
    compute_daily_metrics,
    compute_error_patterns,
    compute_summary,
    compute_user_activity_summary,
    rank_popular_commands,
)
from .errors import ValidationError
from .models import (
    ALL_TIME_END,
    ALL_TIME_START,
    AnalyticsExport,
    CommandStat,
    DailyMetrics,
    DashboardReport,
    DashboardSummary,
    ErrorPattern,
    Event,
    EventType,
    Period,
    UserActivitySummary,
    now_ms,
)
from .ports import Dimension, EventStore

DEFAULT_COMMAND_LIMIT = 10
DEFAULT_ERROR_LIMIT = 20
DASHBOARD_TOP_N = 5
EXPORT_LIMIT = 50


class AnalyticsService:
    """Facade exposing time-bounded usage aggregates, independent of web frameworks.

    Every query takes an inclusive ``[start, end]`` window in epoch
    milliseconds; an omitted bound means "all time". Store failures propagate
    as ``StoreUnavailable``.
    """

    def __init__(self, store: EventStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    def summary(self, start: Optional[int] = None, end: Optional[int] = None) -> DashboardSummary:
        start, end = _normalize_period(start, end)
        events = chain(
            self._scan_type(EventType.ACTION_EXECUTED, start, end),
            self._scan_type(EventType.ERROR_OCCURRED, start, end),
        )
        return compute_summary(events)

    def command_stats(
        self,
        command: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> CommandStat:
        _require_name("command", command)
        start, end = _normalize_period(start, end)
        events = self.store.scan_by_dimension(Dimension.COMMAND, command, start, end)
        return compute_command_stats(command, events)

    def popular_commands(
        self,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = DEFAULT_COMMAND_LIMIT,
    ) -> List[CommandStat]:
        start, end = _normalize_period(start, end)
        _validate_limit(limit)
        events = self._scan_type(EventType.ACTION_EXECUTED, start, end)
        return rank_popular_commands(events, limit)

    def error_patterns(
        self,
        error_type: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = DEFAULT_ERROR_LIMIT,
    ) -> List[ErrorPattern]:
        start, end = _normalize_period(start, end)
        _validate_limit(limit)
        events = self._scan_type(EventType.ERROR_OCCURRED, start, end)
        return compute_error_patterns(events, error_type=error_type, limit=limit)

    def user_activity(
        self,
        user_id: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List[Event]:
        """Return the user's raw events in ascending timestamp order."""
        _require_name("user_id", user_id)
        start, end = _normalize_period(start, end)
        return list(self.store.scan_by_dimension(Dimension.USER_ID, user_id, start, end))

    def user_activity_summary(
        self,
        user_id: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> UserActivitySummary:
        _require_name("user_id", user_id)
        start, end = _normalize_period(start, end)
        events = self.store.scan_by_dimension(Dimension.USER_ID, user_id, start, end)
        return compute_user_activity_summary(user_id, events)

    def daily_metrics(
        self,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List[DailyMetrics]:
        start, end = _normalize_period(start, end)
        return compute_daily_metrics(self.store.scan_by_time_range(start, end))

    def dashboard(self, start: Optional[int] = None, end: Optional[int] = None) -> DashboardReport:
        """Summary plus the top commands and error patterns for one window."""
        start, end = _normalize_period(start, end)
        return DashboardReport(
            period=Period(start=start, end=end),
            summary=self.summary(start, end),
            popular_commands=self.popular_commands(start, end, DASHBOARD_TOP_N),
            top_errors=self.error_patterns(None, start, end, DASHBOARD_TOP_N),
        )

    def export_report(self, start: Optional[int] = None, end: Optional[int] = None) -> AnalyticsExport:
        start, end = _normalize_period(start, end)
        return AnalyticsExport(
            exported_at=self.clock(),
            period=Period(start=start, end=end),
            commands=self.popular_commands(start, end, EXPORT_LIMIT),
            errors=self.error_patterns(None, start, end, EXPORT_LIMIT),
        )

    def _scan_type(self, event_type: EventType, start: int, end: int):
        return self.store.scan_by_dimension(Dimension.TYPE, event_type.value, start, end)


def _normalize_period(start: Optional[int], end: Optional[int]) -> Tuple[int, int]:
    if start is None:
        start = ALL_TIME_START
    if end is None:
        end = ALL_TIME_END
    for name, value in (("start", start), ("end", end)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be epoch milliseconds, got {value!r}")
    if start > end:
        raise ValidationError(f"start ({start}) is after end ({end})")
    return start, end


def _validate_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValidationError(f"limit must be a positive integer, got {limit!r}")


def _require_name(name: str, value: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{name} must be a non-empty string")
