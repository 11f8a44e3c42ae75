#!/usr/bin/env python3
"""
Serialization helpers shared by the query runner and the formatters.

Query results leave the runner as strings so that every output format
renders the same cell text. The helpers here decide how database values
(Decimal, timestamps, intervals, bytea, ...) become that text.
"""

import json
from decimal import Decimal
from datetime import date, datetime, timedelta


def cell_to_text(value):
    """
    Convert a single database value to its report text.

    Args:
        value: A value as returned by the database driver.

    Returns:
        str: The text shown in the report. NULL becomes an empty string.
    """
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, Decimal):
        # str() keeps the scale chosen by round(..., 2) in the query
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode('utf-8', errors='replace')
    if isinstance(value, (list, tuple, set, frozenset)):
        return '{' + ','.join(cell_to_text(item) for item in value) + '}'
    return str(value)


def row_to_text(row):
    """Stringify every cell of a database row, keeping column order."""
    return tuple(cell_to_text(value) for value in row)


def safe_json_dumps(obj, **kwargs):
    """
    Serialize an object to a JSON string with the report's defaults.

    Non-ASCII text is escaped so the output is valid in any encoding, and
    anything the standard encoder cannot handle goes through cell_to_text.

    Args:
        obj: Any Python object to serialize
        **kwargs: Additional arguments passed to json.dumps()

    Returns:
        str: JSON string representation of the object
    """
    kwargs.setdefault('ensure_ascii', True)
    kwargs.setdefault('default', cell_to_text)
    return json.dumps(obj, **kwargs)
