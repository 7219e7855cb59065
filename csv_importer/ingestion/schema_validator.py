"""Column mapping validation between the staging and destination tables.

Introspects both tables through SQLAlchemy's inspector and reports which
columns match by name, which exist on only one side, and which matched
columns have incompatible data types.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from csv_importer.utils.db_client import split_table_name

log = logging.getLogger(__name__)


class SchemaValidationError(Exception):
    """Raised when a table's columns cannot be introspected."""


_TEXT_TYPES = frozenset({"varchar", "nvarchar", "char", "nchar", "text", "ntext", "clob", "string"})

# Source base type -> destination base types it can be written to.
COMPATIBLE_TYPES: Mapping[str, frozenset] = {
    "varchar": _TEXT_TYPES,
    "nvarchar": _TEXT_TYPES,
    "char": _TEXT_TYPES,
    "nchar": _TEXT_TYPES,
    "text": _TEXT_TYPES,
    "string": _TEXT_TYPES,
    "int": frozenset({"int", "integer", "bigint", "decimal", "numeric"}),
    "integer": frozenset({"int", "integer", "bigint", "decimal", "numeric"}),
    "smallint": frozenset({"smallint", "int", "integer", "bigint", "decimal", "numeric"}),
    "bigint": frozenset({"bigint", "decimal", "numeric"}),
    "decimal": frozenset({"decimal", "numeric", "float", "real", "double", "double_precision"}),
    "numeric": frozenset({"decimal", "numeric", "float", "real", "double", "double_precision"}),
    "date": frozenset({"date", "datetime", "datetime2", "smalldatetime", "timestamp"}),
    "datetime": frozenset({"datetime", "datetime2", "smalldatetime", "date", "timestamp"}),
    "timestamp": frozenset({"datetime", "datetime2", "smalldatetime", "date", "timestamp"}),
}


@dataclass(frozen=True)
class ColumnDescriptor:
    """One introspected column."""

    name: str
    data_type: str
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None

    @property
    def base_type(self) -> str:
        return self.data_type.split("(")[0].strip().lower()

    @property
    def description(self) -> str:
        """Type with size, e.g. ``VARCHAR(4000)``, ``VARCHAR(MAX)`` or ``NUMERIC(10,2)``."""
        base = self.base_type
        if base in _TEXT_TYPES and self.length is not None:
            size = "MAX" if self.length == -1 else str(self.length)
            return f"{self.data_type}({size})"
        if base in ("decimal", "numeric") and self.precision is not None and self.scale is not None:
            return f"{self.data_type}({self.precision},{self.scale})"
        return self.data_type


@dataclass(frozen=True)
class ColumnMappingResult:
    """Outcome of comparing a source table's columns with a destination's."""

    source_columns: Tuple[ColumnDescriptor, ...] = ()
    destination_columns: Tuple[ColumnDescriptor, ...] = ()
    matched_columns: Tuple[str, ...] = ()
    unmatched_source_columns: Tuple[str, ...] = ()
    unmatched_dest_columns: Tuple[str, ...] = ()
    type_mismatches: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_fully_matched(self) -> bool:
        return not self.unmatched_source_columns


def are_compatible_types(source_type: str, dest_type: str) -> bool:
    """Return True if a value of ``source_type`` can be stored in ``dest_type``."""
    if source_type == dest_type:
        return True
    source_base = source_type.split("(")[0].strip().lower()
    dest_base = dest_type.split("(")[0].strip().lower()
    if source_base == dest_base:
        return True
    return dest_base in COMPATIBLE_TYPES.get(source_base, frozenset())


def _describe(col: Dict) -> ColumnDescriptor:
    col_type = col["type"]
    return ColumnDescriptor(
        name=col["name"],
        data_type=getattr(col_type, "__visit_name__", type(col_type).__name__).upper(),
        length=getattr(col_type, "length", None),
        precision=getattr(col_type, "precision", None),
        scale=getattr(col_type, "scale", None),
    )


def get_column_descriptors(connection: Connection, table_name: str) -> List[ColumnDescriptor]:
    """Introspect ``table_name`` and return its columns in declaration order.

    Raises:
        SchemaValidationError: If the table does not exist or cannot be read.
    """
    schema, name = split_table_name(table_name)
    try:
        columns = inspect(connection).get_columns(name, schema=schema)
    except Exception as exc:
        raise SchemaValidationError(
            f"Failed to read columns of table '{table_name}': {exc}"
        ) from exc
    if not columns:
        raise SchemaValidationError(f"Table '{table_name}' not found or has no columns")
    return [_describe(c) for c in columns]


def compare_columns(
    source_columns: List[ColumnDescriptor],
    destination_columns: List[ColumnDescriptor],
) -> ColumnMappingResult:
    """Match columns by exact name and flag incompatible types."""
    dest_by_name = {c.name: c for c in destination_columns}
    matched: List[str] = []
    unmatched_source: List[str] = []
    mismatches: Dict[str, str] = {}

    for src in source_columns:
        dest = dest_by_name.get(src.name)
        if dest is None:
            unmatched_source.append(src.name)
            continue
        matched.append(src.name)
        if not are_compatible_types(src.description, dest.description):
            mismatches[src.name] = (
                f"Data type mismatch: Source={src.description}, Destination={dest.description}"
            )

    matched_set = set(matched)
    unmatched_dest = [c.name for c in destination_columns if c.name not in matched_set]

    return ColumnMappingResult(
        source_columns=tuple(source_columns),
        destination_columns=tuple(destination_columns),
        matched_columns=tuple(matched),
        unmatched_source_columns=tuple(unmatched_source),
        unmatched_dest_columns=tuple(unmatched_dest),
        type_mismatches=mismatches,
    )


def validate_column_mapping(
    connection: Connection,
    source_table: str,
    destination_table: str,
) -> ColumnMappingResult:
    """Compare the columns of ``source_table`` with ``destination_table``.

    Args:
        connection: Open connection; no transaction is required.
        source_table: Table holding the staged rows.
        destination_table: Table the rows are moved into.

    Returns:
        ColumnMappingResult with matched and unmatched column names and
        any type mismatches among matched columns.

    Raises:
        SchemaValidationError: If either table cannot be introspected.
    """
    result = compare_columns(
        get_column_descriptors(connection, source_table),
        get_column_descriptors(connection, destination_table),
    )
    log.info(
        "Column mapping %s -> %s: matched=%d unmatched_source=%d unmatched_dest=%d mismatched_types=%d",
        source_table, destination_table,
        len(result.matched_columns), len(result.unmatched_source_columns),
        len(result.unmatched_dest_columns), len(result.type_mismatches),
    )
    for column_name, detail in result.type_mismatches.items():
        log.warning("Column '%s': %s", column_name, detail)
    return result


def build_column_mismatch_message(result: ColumnMappingResult) -> str:
    """Render the unmatched source columns, one per line."""
    if not result.unmatched_source_columns:
        return ""
    lines = ["Source columns not found in destination table:"]
    lines.extend(f" - {name}" for name in result.unmatched_source_columns)
    return "\n".join(lines) + "\n"
