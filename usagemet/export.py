"""Serialize query results as JSON trees or flat CSV tables."""

import csv
import io
import json
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union, get_args, get_type_hints

from .errors import ValidationError
from .models import Event, event_to_dict


class ExportKind(str, Enum):
    JSON = "json"
    CSV = "csv"


CONTENT_TYPES = {
    ExportKind.JSON: "application/json",
    ExportKind.CSV: "text/csv; charset=utf-8",
}

Section = Tuple[str, List[str], List[Dict[str, Any]]]


def parse_export_kind(kind: Union[str, ExportKind]) -> ExportKind:
    try:
        return ExportKind(kind)
    except ValueError:
        raise ValidationError(f"unsupported export format: {kind!r} (expected json or csv)") from None


def content_type(kind: Union[str, ExportKind]) -> str:
    return CONTENT_TYPES[parse_export_kind(kind)]


def format_result(result: Any, kind: Union[str, ExportKind], record_type: Optional[type] = None) -> bytes:
    """
    Serialize an aggregate result.

    ``json`` keeps the nested structure. ``csv`` emits one row per leaf record;
    results holding several record kinds (dashboards, exports, event lists of
    mixed types) get one titled section per kind, each closed by a blank line.

    ``record_type`` names the record class of a list result so that an empty
    list still exports its CSV header.
    """
    kind = parse_export_kind(kind)
    if kind is ExportKind.JSON:
        return json.dumps(to_serializable(result), indent=2).encode("utf-8")
    return _to_csv(result, record_type).encode("utf-8")


def to_serializable(value: Any) -> Any:
    """Convert events, aggregate dataclasses and containers into plain JSON types."""
    if isinstance(value, Event):
        return event_to_dict(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_serializable(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_serializable(item) for item in value]
    return value


def read_csv_sections(data: Union[bytes, str]) -> Dict[str, List[Dict[str, str]]]:
    """Parse CSV produced by ``format_result`` back into rows per section.

    A single-table export is returned under the empty-string key.
    """
    text = data.decode("utf-8") if isinstance(data, bytes) else data
    rows = list(csv.reader(io.StringIO(text)))
    if not rows:
        return {"": []}
    if all(rows):
        header = rows[0]
        return {"": [dict(zip(header, row)) for row in rows[1:]]}

    sections: Dict[str, List[Dict[str, str]]] = {}
    index = 0
    while index < len(rows):
        if not rows[index]:
            index += 1
            continue
        title = rows[index][0]
        header = rows[index + 1] if index + 1 < len(rows) else []
        index += 2
        records = []
        while index < len(rows) and rows[index]:
            records.append(dict(zip(header, rows[index])))
            index += 1
        sections[title] = records
    return sections


def _to_csv(result: Any, record_type: Optional[type] = None) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    sections = _sections(result, record_type)

    if len(sections) == 1 and not sections[0][0]:
        _, header, records = sections[0]
        if header:
            writer.writerow(header)
        for record in records:
            writer.writerow([_stringify(record.get(column)) for column in header])
        return output.getvalue()

    for title, header, records in sections:
        writer.writerow([title])
        writer.writerow(header)
        for record in records:
            writer.writerow([_stringify(record.get(column)) for column in header])
        writer.writerow([])
    return output.getvalue()


def _sections(result: Any, record_type: Optional[type] = None) -> List[Section]:
    if isinstance(result, (list, tuple)):
        return _list_sections(list(result), record_type)
    if isinstance(result, Event) or (is_dataclass(result) and _is_leaf(result)):
        return _list_sections([result], item_type=None)
    if is_dataclass(result):
        return _composite_sections(result)
    raise ValidationError(f"cannot export a {type(result).__name__} as csv")


def _composite_sections(result: Any) -> List[Section]:
    hints = get_type_hints(type(result))
    scalars: Dict[str, Any] = {}
    sections: List[Section] = []

    for item in fields(result):
        value = getattr(result, item.name)
        title = item.name.upper()
        if isinstance(value, (list, tuple)):
            item_args = get_args(hints.get(item.name))
            item_type = item_args[0] if item_args else None
            for _, header, records in _list_sections(list(value), item_type):
                sections.append((title, header, records))
        elif is_dataclass(value):
            header, record = _flatten(value)
            sections.append((title, header, [record]))
        else:
            scalars[item.name] = value

    if scalars:
        title = _snake_upper(type(result).__name__)
        sections.insert(0, (title, list(scalars), [scalars]))
    return sections


def _list_sections(records: List[Any], item_type) -> List[Section]:
    if records and all(isinstance(record, Event) for record in records):
        by_type: Dict[str, List[Dict[str, Any]]] = {}
        for record in records:
            by_type.setdefault(record.type.value, []).append(event_to_dict(record))
        if len(by_type) == 1:
            rows = next(iter(by_type.values()))
            return [("", list(rows[0]), rows)]
        return [(event_type.upper(), list(rows[0]), rows) for event_type, rows in by_type.items()]

    if not records:
        return [("", _record_header(item_type), [])]

    header, _ = _flatten(records[0])
    return [("", header, [_flatten(record)[1] for record in records])]


def _record_header(record_type) -> List[str]:
    if not is_dataclass(record_type):
        return []
    names = [item.name for item in fields(record_type)]
    if isinstance(record_type, type) and issubclass(record_type, Event):
        return ["type", *names, "expires_at"]
    return names


def _flatten(record: Any) -> Tuple[List[str], Dict[str, Any]]:
    data = {item.name: getattr(record, item.name) for item in fields(record)}
    return list(data), data


def _is_leaf(record: Any) -> bool:
    for item in fields(record):
        value = getattr(record, item.name)
        if is_dataclass(value):
            return False
        if isinstance(value, (list, tuple)) and any(is_dataclass(element) for element in value):
            return False
    return True


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(to_serializable(value), separators=(",", ":"))
    return str(value)


def _snake_upper(name: str) -> str:
    chars = []
    for index, char in enumerate(name):
        if char.isupper() and index > 0:
            chars.append("_")
        chars.append(char.upper())
    return "".join(chars)
