"""Result set and type normalization shared by the executor and the introspector."""

import base64
import datetime
import decimal
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import ColumnMeta

logger = logging.getLogger(__name__)

# Common type taxonomy
INTEGER = "integer"
FLOAT = "float"
TEXT = "text"
BOOLEAN = "boolean"
DATETIME = "datetime"
JSON = "json"
BINARY = "binary"
UNKNOWN = "unknown"
COMMON_TYPES = [INTEGER, FLOAT, TEXT, BOOLEAN, DATETIME, JSON, BINARY, UNKNOWN]

_WRAPPER = re.compile(r'^(nullable|lowcardinality)\((.*)\)$')
_INTEGER = re.compile(r'^u?int\d*$')

_INTEGER_TYPES = {
    "integer", "int", "smallint", "bigint", "tinyint", "mediumint", "serial", "bigserial",
    "smallserial", "long", "short", "rowid",
}
_FLOAT_TYPES = {
    "float", "double", "double precision", "real", "numeric", "decimal", "number", "money",
    "smallmoney", "binary_float", "binary_double", "fixed",
}
_BOOLEAN_TYPES = {"boolean", "bool", "bit"}
_DATETIME_TYPES = {
    "date", "time", "datetime", "datetime2", "datetimeoffset", "smalldatetime", "timestamp",
    "timestamptz", "timetz", "interval", "year", "timestamp_ntz", "timestamp_ltz", "timestamp_tz",
    "datetime64", "date32",
}
_JSON_TYPES = {"json", "jsonb", "variant", "object", "array", "map", "tuple", "hstore", "xml"}
_BINARY_TYPES = {
    "blob", "bytea", "binary", "varbinary", "raw", "long raw", "image", "tinyblob",
    "mediumblob", "longblob", "bytes",
}
_TEXT_TYPES = {
    "text", "char", "varchar", "nchar", "nvarchar", "character", "character varying", "string",
    "clob", "nclob", "tinytext", "mediumtext", "longtext", "uuid", "uniqueidentifier", "enum",
    "set", "citext", "name", "varchar2", "nvarchar2", "fixedstring", "ntext", "inet", "cidr",
}


def normalize_type_name(native_type: Optional[str]) -> str:
    """Map a native engine type name onto the common type taxonomy.

    Handles parameterized names (``VARCHAR(255)``, ``NUMERIC(10, 2)``), array
    suffixes, ``UNSIGNED`` modifiers and ClickHouse ``Nullable(...)`` /
    ``LowCardinality(...)`` wrappers.
    """
    if not native_type:
        return UNKNOWN
    name = " ".join(str(native_type).strip().lower().split())

    wrapped = _WRAPPER.match(name)
    while wrapped:
        name = wrapped.group(2).strip()
        wrapped = _WRAPPER.match(name)

    if name.endswith("[]") or name.startswith(("array(", "map(", "tuple(", "nested(")):
        return JSON

    base = name.split("(", 1)[0].strip()
    for modifier in (" unsigned", " signed", " zerofill", " with time zone", " without time zone"):
        base = base.replace(modifier, "")
    base = base.strip()

    if base in ("tinyint",) and "(1)" in name:
        # MySQL convention for booleans
        return BOOLEAN
    if base in _INTEGER_TYPES or _INTEGER.match(base):
        return INTEGER
    if base in _BOOLEAN_TYPES:
        return BOOLEAN
    if base in _FLOAT_TYPES or base.startswith(("float", "decimal")):
        return FLOAT
    if base in _DATETIME_TYPES or base.startswith(("timestamp", "datetime")):
        return DATETIME
    if base in _JSON_TYPES:
        return JSON
    if base in _BINARY_TYPES:
        return BINARY
    if base in _TEXT_TYPES or "char" in base or "text" in base or base.startswith("enum"):
        return TEXT
    return UNKNOWN


def infer_value_type(value: Any) -> Optional[str]:
    """Common type of a Python value, or None for NULL."""
    if value is None:
        return None
    # bool first, it is a subclass of int
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return INTEGER
    if isinstance(value, (float, decimal.Decimal)):
        return FLOAT
    if isinstance(value, (datetime.date, datetime.time, datetime.timedelta)):
        return DATETIME
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BINARY
    if isinstance(value, (dict, list, tuple)):
        return JSON
    if isinstance(value, (str, uuid.UUID)):
        return TEXT
    return UNKNOWN


def serialize_value(value: Any) -> Any:
    """Convert a driver value into a JSON-serializable one."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value
    if isinstance(value, decimal.Decimal):  # decimal/numeric types
        return float(value)
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if hasattr(value, 'isoformat'):  # datetime/date/time objects
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):  # binary data
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict):  # JSON types
        return {str(key): serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):  # arrays
        return [serialize_value(item) for item in value]
    return str(value)


def unique_column_names(names: Sequence[str]) -> List[str]:
    """Make column names usable as row keys: ``id, id`` becomes ``id, id_2``."""
    seen: Dict[str, int] = {}
    taken = set(names)
    result = []
    for raw in names:
        name = raw if raw else "?column?"
        if name not in seen:
            seen[name] = 1
            result.append(name)
            continue
        counter = seen[name]
        candidate = f"{name}_{counter + 1}"
        while candidate in taken or candidate in seen:
            counter += 1
            candidate = f"{name}_{counter + 1}"
        seen[name] = counter + 1
        seen[candidate] = 1
        result.append(candidate)
    return result


def normalize_result(
    column_names: Sequence[str],
    native_types: Sequence[Optional[str]],
    rows: Sequence[Sequence[Any]],
) -> Tuple[List[ColumnMeta], List[Dict[str, Any]]]:
    """Normalize a raw result set.

    Args:
        column_names: Column labels as reported by the cursor
        native_types: Native type name per column, None where the driver did not say
        rows: Row tuples in cursor order

    Returns:
        Tuple of (columns, rows) where columns is a list of ColumnMeta and rows is a
        list of ordered dicts keyed by the (de-duplicated) column name
    """
    names = unique_column_names(list(column_names))
    columns: List[ColumnMeta] = []
    for index, name in enumerate(names):
        native = native_types[index] if index < len(native_types) else None
        common = normalize_type_name(native) if native else UNKNOWN
        if common == UNKNOWN:
            # Fall back to the first non-NULL value in the column
            for row in rows:
                inferred = infer_value_type(row[index])
                if inferred is not None:
                    common = inferred
                    break
        columns.append(ColumnMeta(name=name, type=common, native_type=native))

    normalized_rows = [
        {name: serialize_value(row[index]) for index, name in enumerate(names)}
        for row in rows
    ]
    return columns, normalized_rows
