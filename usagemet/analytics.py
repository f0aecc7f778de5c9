"""Pure analytics functions that work on usage event streams."""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .models import (
    ActionExecuted,
    CommandStat,
    DailyMetrics,
    DashboardSummary,
    ErrorOccurred,
    ErrorPattern,
    Event,
    MessageSent,
    UserActivitySummary,
)

USER_TOP_COMMANDS = 5


def compute_summary(events: Iterable[Event]) -> DashboardSummary:
    """Compute the dashboard summary from action and error events."""
    total_executions = 0
    success_count = 0
    durations: List[float] = []
    total_errors = 0
    error_types = set()

    for event in events:
        if isinstance(event, ActionExecuted):
            total_executions += 1
            if event.success:
                success_count += 1
            if event.duration_ms is not None:
                durations.append(event.duration_ms)
        elif isinstance(event, ErrorOccurred):
            total_errors += 1
            error_types.add(event.error_type)

    if total_executions == 0 and total_errors == 0:
        return empty_summary()

    return DashboardSummary(
        total_executions=total_executions,
        success_rate=success_count / total_executions if total_executions > 0 else 0.0,
        avg_duration_ms=_mean(durations),
        total_errors=total_errors,
        unique_error_types=len(error_types),
    )


def compute_command_stats(command: str, events: Iterable[Event]) -> CommandStat:
    """Compute usage statistics for one command."""
    executions = [
        event for event in events if isinstance(event, ActionExecuted) and event.command == command
    ]
    return _command_stat(command, executions)


def rank_popular_commands(events: Iterable[Event], limit: Optional[int] = None) -> List[CommandStat]:
    """Rank commands by execution count, then by name, and keep the top ``limit``."""
    by_command: Dict[str, List[ActionExecuted]] = {}
    for event in events:
        if isinstance(event, ActionExecuted):
            by_command.setdefault(event.command, []).append(event)

    stats = [_command_stat(command, executions) for command, executions in by_command.items()]
    stats.sort(key=lambda stat: (-stat.execution_count, stat.command))
    return stats if limit is None else stats[:limit]


def compute_error_patterns(
    events: Iterable[Event],
    error_type: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[ErrorPattern]:
    """
    Group errors by (error_type, error_message) and rank the groups.

    Groups are ordered by occurrence count, then most recent occurrence, both
    descending; type and message break any remaining ties.
    """
    groups: Dict[Tuple[str, str], Dict] = {}
    for event in events:
        if not isinstance(event, ErrorOccurred):
            continue
        if error_type is not None and event.error_type != error_type:
            continue

        key = (event.error_type, event.error_message)
        if key not in groups:
            groups[key] = {
                "count": 0,
                "first_seen_at": event.timestamp,
                "last_seen_at": event.timestamp,
                "users": set(),
            }
        group = groups[key]
        group["count"] += 1
        group["first_seen_at"] = min(group["first_seen_at"], event.timestamp)
        group["last_seen_at"] = max(group["last_seen_at"], event.timestamp)
        if event.user_id is not None:
            group["users"].add(event.user_id)

    patterns = [
        ErrorPattern(
            error_type=key[0],
            error_message=key[1],
            occurrence_count=group["count"],
            first_seen_at=group["first_seen_at"],
            last_seen_at=group["last_seen_at"],
            affected_user_count=len(group["users"]),
        )
        for key, group in groups.items()
    ]
    patterns.sort(
        key=lambda pattern: (
            -pattern.occurrence_count,
            -pattern.last_seen_at,
            pattern.error_type,
            pattern.error_message,
        )
    )
    return patterns if limit is None else patterns[:limit]


def compute_user_activity_summary(user_id: str, events: Iterable[Event]) -> UserActivitySummary:
    """Roll up one user's events into activity counts."""
    total_messages = 0
    successful_actions = 0
    failed_actions = 0
    total_errors = 0
    durations: List[float] = []
    actions: List[ActionExecuted] = []
    first_seen_at: Optional[int] = None
    last_seen_at: Optional[int] = None

    for event in events:
        if first_seen_at is None or event.timestamp < first_seen_at:
            first_seen_at = event.timestamp
        if last_seen_at is None or event.timestamp > last_seen_at:
            last_seen_at = event.timestamp

        if isinstance(event, MessageSent):
            total_messages += 1
        elif isinstance(event, ActionExecuted):
            actions.append(event)
            if event.success:
                successful_actions += 1
            else:
                failed_actions += 1
            if event.duration_ms is not None:
                durations.append(event.duration_ms)
        elif isinstance(event, ErrorOccurred):
            total_errors += 1

    top_commands = [stat.command for stat in rank_popular_commands(actions, USER_TOP_COMMANDS)]

    return UserActivitySummary(
        user_id=user_id,
        total_messages=total_messages,
        total_actions=successful_actions + failed_actions,
        successful_actions=successful_actions,
        failed_actions=failed_actions,
        total_errors=total_errors,
        top_commands=top_commands,
        first_seen_at=first_seen_at,
        last_seen_at=last_seen_at,
        avg_duration_ms=_mean(durations),
    )


def compute_daily_metrics(events: Iterable[Event]) -> List[DailyMetrics]:
    """Bucket events by UTC day; days without events are omitted."""
    by_day: Dict[str, Dict] = {}
    for event in events:
        day = _utc_date(event.timestamp)
        if day not in by_day:
            by_day[day] = {
                "messages": 0,
                "successful": 0,
                "failed": 0,
                "errors": 0,
                "users": set(),
            }
        bucket = by_day[day]
        if event.user_id is not None:
            bucket["users"].add(event.user_id)

        if isinstance(event, MessageSent):
            bucket["messages"] += 1
        elif isinstance(event, ActionExecuted):
            bucket["successful" if event.success else "failed"] += 1
        elif isinstance(event, ErrorOccurred):
            bucket["errors"] += 1

    return [
        DailyMetrics(
            date=day,
            total_messages=bucket["messages"],
            total_actions=bucket["successful"] + bucket["failed"],
            successful_actions=bucket["successful"],
            failed_actions=bucket["failed"],
            total_errors=bucket["errors"],
            unique_users=len(bucket["users"]),
        )
        for day, bucket in sorted(by_day.items())
    ]


def empty_summary() -> DashboardSummary:
    """Return the zeroed dashboard summary."""
    return DashboardSummary(
        total_executions=0,
        success_rate=0.0,
        avg_duration_ms=0.0,
        total_errors=0,
        unique_error_types=0,
    )


def empty_command_stat(command: str) -> CommandStat:
    """Return the zeroed statistics record for a command with no executions."""
    return CommandStat(
        command=command,
        execution_count=0,
        success_count=0,
        failure_count=0,
        success_rate=0.0,
        avg_duration_ms=0.0,
        last_used_at=None,
    )


def _command_stat(command: str, executions: List[ActionExecuted]) -> CommandStat:
    if not executions:
        return empty_command_stat(command)

    execution_count = len(executions)
    success_count = sum(1 for event in executions if event.success)
    durations = [event.duration_ms for event in executions if event.duration_ms is not None]

    return CommandStat(
        command=command,
        execution_count=execution_count,
        success_count=success_count,
        failure_count=execution_count - success_count,
        success_rate=success_count / execution_count,
        avg_duration_ms=_mean(durations),
        last_used_at=max(event.timestamp for event in executions),
    )


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _utc_date(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()
