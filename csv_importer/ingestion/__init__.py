"""CSV ingestion modules for the importer.

Turns raw CSV files into typed batches and records what happened to them.

Modules:
    line_parser: Split a raw line into fields, honouring double quotes.
    value_typer: Classify and normalise field values (dates, numbers, codes).
    batcher: Stream a file into fixed-size typed batches.
    schema_validator: Compare staging and destination table columns.
    audit_logger: Append error and success rows to the audit tables.
"""

from .line_parser import parse_csv_line
from .value_typer import (
    TypingSession,
    parse_date,
    parse_decimal,
    type_value,
)
from .batcher import (
    Batch,
    BatchStats,
    load_csv_in_batches,
    CsvParsingError,
)
from .schema_validator import (
    ColumnDescriptor,
    ColumnMappingResult,
    validate_column_mapping,
    build_column_mismatch_message,
    SchemaValidationError,
)
from .audit_logger import (
    ensure_audit_tables,
    log_error,
    log_success,
)

__all__ = [
    # Line parsing
    "parse_csv_line",
    # Value typing
    "TypingSession",
    "parse_date",
    "parse_decimal",
    "type_value",
    # Batching
    "Batch",
    "BatchStats",
    "load_csv_in_batches",
    "CsvParsingError",
    # Schema validation
    "ColumnDescriptor",
    "ColumnMappingResult",
    "validate_column_mapping",
    "build_column_mismatch_message",
    "SchemaValidationError",
    # Audit logging
    "ensure_audit_tables",
    "log_error",
    "log_success",
]
