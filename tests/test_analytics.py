import pytest

from usagemet.analytics import (
    compute_command_stats,
    compute_daily_metrics,
    compute_error_patterns,
    compute_summary,
    compute_user_activity_summary,
    rank_popular_commands,
)
from usagemet.models import ActionExecuted, ErrorOccurred, MessageSent

NOW = 1_767_225_600_000  # 2026-01-01T00:00:00Z
DAY_MS = 24 * 60 * 60 * 1000


def _action(event_id, command, success=True, duration_ms=None, timestamp=NOW, user_id="u1"):
    return ActionExecuted(
        id=event_id,
        timestamp=timestamp,
        user_id=user_id,
        command=command,
        success=success,
        duration_ms=duration_ms,
    )


def _error(event_id, error_type, message, timestamp=NOW, user_id="u1"):
    return ErrorOccurred(
        id=event_id,
        timestamp=timestamp,
        user_id=user_id,
        error_type=error_type,
        error_message=message,
    )


def test_compute_command_stats_add_supplier_scenario():
    events = [
        _action("a1", "add-supplier", True, 100, timestamp=NOW),
        _action("a2", "add-supplier", True, 200, timestamp=NOW + 10),
        _action("a3", "add-supplier", False, 300, timestamp=NOW + 20),
        _action("a4", "help", True, 5),
    ]

    stat = compute_command_stats("add-supplier", events)

    assert stat.execution_count == 3
    assert stat.success_count == 2
    assert stat.failure_count == 1
    assert stat.success_rate == pytest.approx(0.667, abs=1e-3)
    assert stat.avg_duration_ms == 200
    assert stat.last_used_at == NOW + 20


def test_compute_command_stats_without_executions_is_zeroed():
    stat = compute_command_stats("run-simulation", [_action("a1", "help")])

    assert stat.execution_count == 0
    assert stat.success_rate == 0
    assert stat.avg_duration_ms == 0
    assert stat.last_used_at is None


def test_avg_duration_ignores_executions_without_duration():
    events = [_action("a1", "help", duration_ms=40), _action("a2", "help", duration_ms=None)]

    assert compute_command_stats("help", events).avg_duration_ms == 40


def test_rank_popular_commands_orders_by_count_then_name():
    events = [
        _action("a1", "scan-anomalies"),
        _action("a2", "connect-nodes"),
        _action("a3", "add-supplier"),
        _action("a4", "add-supplier"),
        _action("a5", "connect-nodes"),
        _action("a6", "help"),
    ]

    ranked = rank_popular_commands(events)

    assert [stat.command for stat in ranked] == [
        "add-supplier",
        "connect-nodes",
        "help",
        "scan-anomalies",
    ]
    assert [stat.command for stat in rank_popular_commands(events, limit=3)] == [
        "add-supplier",
        "connect-nodes",
        "help",
    ]


def test_compute_error_patterns_groups_by_type_and_message():
    events = [
        _error("e1", "BedrockError", "throttled", timestamp=NOW, user_id="u1"),
        _error("e2", "BedrockError", "throttled", timestamp=NOW + 50, user_id="u2"),
        _error("e3", "BedrockError", "model not found", timestamp=NOW + 5),
        _error("e4", "ValidationError", "missing nodeId", timestamp=NOW + 60),
    ]

    patterns = compute_error_patterns(events)

    top = patterns[0]
    assert (top.error_type, top.error_message) == ("BedrockError", "throttled")
    assert top.occurrence_count == 2
    assert top.first_seen_at == NOW
    assert top.last_seen_at == NOW + 50
    assert top.affected_user_count == 2
    # Equal counts fall back to the most recent occurrence.
    assert [p.error_message for p in patterns[1:]] == ["missing nodeId", "model not found"]


def test_compute_error_patterns_filters_type_and_counts_distinct_users():
    events = [
        _error("e1", "WebSocketError", "reset", user_id="u1"),
        _error("e2", "WebSocketError", "reset", user_id="u1"),
        _error("e3", "BedrockError", "throttled"),
    ]

    patterns = compute_error_patterns(events, error_type="WebSocketError", limit=5)

    assert len(patterns) == 1
    assert patterns[0].occurrence_count == 2
    assert patterns[0].affected_user_count == 1


def test_compute_summary_basic():
    events = [
        _action("a1", "help", True, 100),
        _action("a2", "help", False, 300),
        _action("a3", "add-supplier", True),
        _error("e1", "BedrockError", "throttled"),
        _error("e2", "ValidationError", "bad input"),
        _error("e3", "BedrockError", "timeout"),
        MessageSent(id="m1", timestamp=NOW),
    ]

    summary = compute_summary(events)

    assert summary.total_executions == 3
    assert summary.success_rate == pytest.approx(2 / 3)
    assert summary.avg_duration_ms == 200
    assert summary.total_errors == 3
    assert summary.unique_error_types == 2


def test_compute_summary_empty():
    summary = compute_summary([])

    assert summary.total_executions == 0
    assert summary.success_rate == 0
    assert summary.avg_duration_ms == 0
    assert summary.total_errors == 0


def test_compute_user_activity_summary():
    events = [
        MessageSent(id="m1", timestamp=NOW, user_id="u1"),
        _action("a1", "help", True, 10, timestamp=NOW + 1),
        _action("a2", "add-supplier", False, 30, timestamp=NOW + 2),
        _action("a3", "add-supplier", True, None, timestamp=NOW + 3),
        _error("e1", "ActionExecutionError", "boom", timestamp=NOW + 4),
    ]

    summary = compute_user_activity_summary("u1", events)

    assert summary.total_messages == 1
    assert summary.total_actions == 3
    assert summary.successful_actions == 2
    assert summary.failed_actions == 1
    assert summary.total_errors == 1
    assert summary.top_commands == ["add-supplier", "help"]
    assert summary.first_seen_at == NOW
    assert summary.last_seen_at == NOW + 4
    assert summary.avg_duration_ms == 20


def test_compute_daily_metrics_buckets_by_utc_day():
    events = [
        MessageSent(id="m1", timestamp=NOW, user_id="u1"),
        _action("a1", "help", True, timestamp=NOW + 1000, user_id="u2"),
        _action("a2", "help", False, timestamp=NOW + DAY_MS, user_id="u1"),
        _error("e1", "BedrockError", "throttled", timestamp=NOW + DAY_MS + 1, user_id="u1"),
    ]

    days = compute_daily_metrics(events)

    assert [day.date for day in days] == ["2026-01-01", "2026-01-02"]
    assert days[0].total_messages == 1
    assert days[0].successful_actions == 1
    assert days[0].unique_users == 2
    assert days[1].failed_actions == 1
    assert days[1].total_errors == 1
    assert days[1].unique_users == 1
