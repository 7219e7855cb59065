"""Audit logging for CSV imports.

Writes append-only rows to an error log table and a success log table.
Rows are never updated or deleted; each one records a fact about a past
import attempt.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Connection

from csv_importer.utils.db_client import split_table_name

log = logging.getLogger(__name__)


def _error_table(name: str, metadata: Optional[MetaData] = None) -> Table:
    schema, table_name = split_table_name(name)
    return Table(
        table_name,
        metadata or MetaData(),
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("file_name", Text),
        Column("column_name", Text),
        Column("error_type", String(100)),
        Column("reason", Text),
        Column("source_value", Text),
        Column("destination_value", Text),
        Column("logged_at", DateTime(timezone=True), nullable=False),
        schema=schema,
    )


def _success_table(name: str, metadata: Optional[MetaData] = None) -> Table:
    schema, table_name = split_table_name(name)
    return Table(
        table_name,
        metadata or MetaData(),
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("message", Text),
        Column("total_rows", BigInteger),
        Column("source_columns", Integer),
        Column("destination_columns", Integer),
        Column("matched_columns", Integer),
        Column("processing_time_seconds", Numeric(18, 2)),
        Column("rows_per_second", Integer),
        Column("logged_at", DateTime(timezone=True), nullable=False),
        schema=schema,
    )


def ensure_audit_tables(connection: Connection, error_table_name: str, success_table_name: str) -> None:
    """Create the error and success log tables if they do not exist."""
    metadata = MetaData()
    _error_table(error_table_name, metadata)
    _success_table(success_table_name, metadata)
    try:
        metadata.create_all(connection, checkfirst=True)
        connection.commit()
        log.info("Ensured audit tables '%s' and '%s' exist", error_table_name, success_table_name)
    except Exception as exc:
        log.error("Failed to create audit tables: %s", exc)
        raise


def log_error(
    connection: Connection,
    error_table_name: str,
    file_name: Optional[str],
    column_name: Optional[str],
    error_type: Optional[str],
    reason: Optional[str],
) -> None:
    """Append one row to the error log table.

    The row is written on ``connection``; the caller decides whether that
    is the file's working connection or an independent one.
    """
    connection.execute(
        _error_table(error_table_name).insert().values(
            file_name=file_name,
            column_name=column_name,
            error_type=error_type,
            reason=reason,
            logged_at=datetime.now(timezone.utc),
        )
    )
    log.warning("Import error logged: file='%s' column='%s' type='%s' reason='%s'",
                file_name, column_name, error_type, reason)


def build_success_message(
    file_name: str,
    rows_transferred: int,
    matched_columns: int,
    unmatched_source_columns: int,
    unmatched_dest_columns: int,
    elapsed_seconds: float,
    rows_per_second: float,
) -> str:
    return (
        f"File: {file_name} - Transferred: {rows_transferred:,} rows, "
        f"Matched columns: {matched_columns}, "
        f"Unmatched source: {unmatched_source_columns}, "
        f"Unmatched dest: {unmatched_dest_columns}, "
        f"Time: {elapsed_seconds:.2f} s, Rate: {rows_per_second:,.0f} rows/sec"
    )


def log_success(
    connection: Connection,
    success_table_name: str,
    file_name: str,
    rows_transferred: int,
    matched_columns: int,
    unmatched_source_columns: int,
    unmatched_dest_columns: int,
    elapsed_seconds: float,
) -> None:
    """Append one row to the success log table.

    Args:
        connection: Connection carrying the transfer transaction; the row
            commits or rolls back together with the transferred data.
        success_table_name: Success log table.
        file_name: Imported file name.
        rows_transferred: Rows appended to the destination table.
        matched_columns: Columns present in both staging and destination.
        unmatched_source_columns: Staging columns missing in destination.
        unmatched_dest_columns: Destination columns missing in staging.
        elapsed_seconds: Duration of the move.
    """
    rows_per_second = rows_transferred / elapsed_seconds if elapsed_seconds > 0 else 0.0
    message = build_success_message(
        file_name,
        rows_transferred,
        matched_columns,
        unmatched_source_columns,
        unmatched_dest_columns,
        elapsed_seconds,
        rows_per_second,
    )
    connection.execute(
        _success_table(success_table_name).insert().values(
            message=message,
            total_rows=rows_transferred,
            source_columns=matched_columns + unmatched_source_columns,
            destination_columns=matched_columns + unmatched_dest_columns,
            matched_columns=matched_columns,
            processing_time_seconds=round(elapsed_seconds, 2),
            rows_per_second=int(rows_per_second),
            logged_at=datetime.now(timezone.utc),
        )
    )
    log.info(message)
