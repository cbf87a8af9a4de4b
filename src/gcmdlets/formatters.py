"""
Display formatting utilities for the gcmdlets CLI.

This module turns resource dicts into JSON lines, names, or rich tables.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from rich.table import Table

Column = Tuple[str, str]

# Columns shown by the table format, per resource kind. Each column is
# (header, dotted path into the resource dict).
COLUMNS: Dict[str, List[Column]] = {
    "dataset": [
        ("DATASET", "datasetReference.datasetId"),
        ("PROJECT", "datasetReference.projectId"),
        ("LOCATION", "location"),
        ("NAME", "friendlyName"),
    ],
    "table": [
        ("TABLE", "tableReference.tableId"),
        ("DATASET", "tableReference.datasetId"),
        ("TYPE", "type"),
        ("ROWS", "numRows"),
    ],
    "job": [
        ("JOB", "jobReference.jobId"),
        ("TYPE", "configuration.jobType"),
        ("STATE", "status.state"),
        ("USER", "user_email"),
    ],
    "topic": [("NAME", "name")],
    "subscription": [
        ("NAME", "name"),
        ("TOPIC", "topic"),
        ("ACK DEADLINE", "ackDeadlineSeconds"),
    ],
    "message": [("MESSAGE ID", "messageId"), ("ATTRIBUTES", "attributes")],
    "entry": [
        ("TIMESTAMP", "timestamp"),
        ("SEVERITY", "severity"),
        ("LOG", "logName"),
        ("PAYLOAD", "textPayload"),
    ],
    "log": [("NAME", "")],
    "sink": [("NAME", "name"), ("DESTINATION", "destination"), ("FILTER", "filter")],
    "metric": [("NAME", "name"), ("FILTER", "filter"), ("DESCRIPTION", "description")],
    "resource-type": [("TYPE", "type"), ("NAME", "displayName")],
    "bucket": [
        ("NAME", "name"),
        ("LOCATION", "location"),
        ("CLASS", "storageClass"),
        ("CREATED", "timeCreated"),
    ],
    "object": [
        ("NAME", "name"),
        ("SIZE", "size"),
        ("TYPE", "contentType"),
        ("UPDATED", "updated"),
    ],
}

# Field holding the short name of each resource kind, for the name format.
NAME_FIELDS: Dict[str, str] = {
    "dataset": "datasetReference.datasetId",
    "table": "tableReference.tableId",
    "job": "jobReference.jobId",
    "entry": "insertId",
    "message": "messageId",
    "resource-type": "type",
}


def get_field(item: Any, path: str) -> Any:
    """Look up a dotted path such as ``status.state`` in nested dicts.

    An empty path returns the item itself (for plain string items such as
    log names).
    """
    if not path:
        return item
    value = item
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def format_json(item: Any) -> str:
    """Serialize one resource as a single JSON line."""
    return json.dumps(item, sort_keys=True, default=str)


def format_name(item: Any, kind: Optional[str] = None) -> str:
    """Short name of a resource.

    Args:
        item: The resource dict, or a plain string.
        kind: Resource kind, used to find where the name lives.

    Returns:
        The name, or an empty string if none can be found.
    """
    if isinstance(item, str):
        return item
    value = get_field(item, NAME_FIELDS.get(kind or "", "name"))
    if value is None:
        value = item.get("name") or item.get("id")
    return "" if value is None else str(value)


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def build_table(
    items: Iterable[Any],
    kind: Optional[str] = None,
    columns: Optional[Sequence[Column]] = None,
) -> Table:
    """Build a rich Table for a list of resources.

    Args:
        items: Resources to display.
        kind: Resource kind, selecting the default columns.
        columns: Explicit (header, path) columns, overriding ``kind``.

    Returns:
        A Table with one row per item.
    """
    items = list(items)
    if columns is None:
        columns = COLUMNS.get(kind or "")
    if columns is None:
        # Unknown kind: show the union of top-level scalar keys.
        keys: List[str] = []
        for item in items:
            if isinstance(item, dict):
                keys.extend(k for k in item if k not in keys)
        columns = [(k.upper(), k) for k in keys] or [("VALUE", "")]

    table = Table(show_header=True, header_style="bold")
    for header, _ in columns:
        table.add_column(header)
    for item in items:
        table.add_row(*(format_cell(get_field(item, path)) for _, path in columns))
    return table
