import json
from dataclasses import asdict, fields

import pytest

from usagemet.errors import ValidationError
from usagemet.export import content_type, format_result, read_csv_sections, to_serializable
from usagemet.models import (
    ActionExecuted,
    AnalyticsExport,
    CommandStat,
    DashboardReport,
    DashboardSummary,
    ErrorPattern,
    MessageSent,
    Period,
)

NOW = 1_767_225_600_000  # 2026-01-01T00:00:00Z

COMMANDS = [
    CommandStat("add-supplier", 3, 2, 1, 2 / 3, 200.0, NOW),
    CommandStat("help", 1, 1, 0, 1.0, 0.0, NOW - 10),
]
ERRORS = [
    ErrorPattern("ValidationError", "Missing nodeId, expected string", 2, NOW - 50, NOW, 2),
]


def test_json_export_is_structurally_lossless():
    report = DashboardReport(
        period=Period(start=NOW - 1000, end=NOW),
        summary=DashboardSummary(4, 0.75, 150.0, 2, 1),
        popular_commands=COMMANDS,
        top_errors=ERRORS,
    )

    parsed = json.loads(format_result(report, "json"))

    assert parsed == asdict(report)
    assert parsed["popular_commands"][0]["command"] == "add-supplier"


def test_json_export_of_events_includes_type_and_expiry():
    event = ActionExecuted(id="a1", timestamp=NOW, command="help", success=True, metadata={"retry": 1})

    parsed = json.loads(format_result([event], "json"))

    assert parsed == [to_serializable(event)]
    assert parsed[0]["type"] == "action_executed"
    assert parsed[0]["metadata"] == {"retry": 1}


def test_csv_export_has_one_row_per_record():
    data = format_result(COMMANDS, "csv")

    sections = read_csv_sections(data)
    rows = sections[""]

    assert len(rows) == len(COMMANDS)
    assert list(rows[0]) == [item.name for item in fields(CommandStat)]
    assert rows[0]["command"] == "add-supplier"
    assert rows[1]["success_rate"] == "1.0"
    assert rows[1]["avg_duration_ms"] == "0.0"


def test_csv_export_quotes_messages_with_commas():
    rows = read_csv_sections(format_result(ERRORS, "csv"))[""]

    assert rows[0]["error_message"] == "Missing nodeId, expected string"
    assert rows[0]["occurrence_count"] == "2"


def test_csv_export_of_composite_report_has_section_per_kind():
    report = AnalyticsExport(
        exported_at=NOW,
        period=Period(start=NOW - 1000, end=NOW),
        commands=COMMANDS,
        errors=[],
    )

    sections = read_csv_sections(format_result(report, "csv"))

    assert list(sections) == ["ANALYTICS_EXPORT", "PERIOD", "COMMANDS", "ERRORS"]
    assert sections["ANALYTICS_EXPORT"] == [{"exported_at": str(NOW)}]
    assert len(sections["COMMANDS"]) == 2
    assert sections["ERRORS"] == []
    assert "error_type" not in sections["COMMANDS"][0]


def test_csv_export_splits_mixed_events_by_type():
    events = [
        MessageSent(id="m1", timestamp=NOW, user_id="u1"),
        ActionExecuted(id="a1", timestamp=NOW + 1, user_id="u1", command="help", success=False),
        MessageSent(id="m2", timestamp=NOW + 2, user_id="u1", metadata={"channel": "voice"}),
    ]

    sections = read_csv_sections(format_result(events, "csv"))

    assert len(sections["MESSAGE_SENT"]) == 2
    assert sections["ACTION_EXECUTED"][0]["success"] == "false"
    assert "command" not in sections["MESSAGE_SENT"][0]
    assert json.loads(sections["MESSAGE_SENT"][1]["metadata"]) == {"channel": "voice"}


def test_csv_export_of_single_record():
    rows = read_csv_sections(format_result(DashboardSummary(0, 0.0, 0.0, 0, 0), "csv"))[""]

    assert rows == [
        {
            "total_executions": "0",
            "success_rate": "0.0",
            "avg_duration_ms": "0.0",
            "total_errors": "0",
            "unique_error_types": "0",
        }
    ]


def test_unsupported_export_kind_is_rejected():
    with pytest.raises(ValidationError):
        format_result(COMMANDS, "xml")
    with pytest.raises(ValidationError):
        content_type("yaml")


def test_content_types():
    assert content_type("json") == "application/json"
    assert content_type("csv").startswith("text/csv")


def test_empty_csv_export_still_has_header():
    data = format_result([], "csv", record_type=CommandStat)

    assert data.decode("utf-8").splitlines() == [",".join(item.name for item in fields(CommandStat))]
    assert read_csv_sections(data) == {"": []}


def test_empty_event_list_header_includes_type_and_expiry():
    header = format_result([], "csv", record_type=MessageSent).decode("utf-8").splitlines()[0].split(",")

    assert header[0] == "type"
    assert header[-1] == "expires_at"
    assert "conversation_id" in header
