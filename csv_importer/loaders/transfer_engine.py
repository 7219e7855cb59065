"""Transactional transfer of staged CSV rows into the destination table.

The staging table holds one file's rows as wide text columns. A transfer
validates the column mapping, opens a transaction, truncates the
destination for the first file of a run, copies the matched columns,
reconciles row counts and writes a success log row before committing.
Every failure after the transaction opens rolls it back, so the
destination is never left partially moved. Failure audit rows are
written on an independent connection and survive the rollback.

Usage:
    from csv_importer.loaders.transfer_engine import TransferSettings, transfer_to_destination

    result = transfer_to_destination(conn, settings, "customers.csv", is_first_file=True)
    if result.succeeded:
        ...
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import Column, MetaData, String, Table, delete, table
from sqlalchemy.engine import Connection

from csv_importer.ingestion.audit_logger import log_error, log_success
from csv_importer.ingestion.schema_validator import (
    ColumnMappingResult,
    build_column_mismatch_message,
    validate_column_mapping,
)
from csv_importer.utils.db_client import (
    independent_connection,
    quote_identifier,
    split_table_name,
    table_row_count,
)

from .bulk_loader import BulkLoader

log = logging.getLogger(__name__)

# Staging columns are wide text so the load never fails on type coercion.
STAGING_COLUMN_LENGTH = 4000


class DataTransferError(Exception):
    """Raised inside a transfer when the moved rows do not reconcile."""


class TransferStatus(enum.Enum):
    SUCCESS = "success"
    VALIDATION_FAILED = "validation_failed"
    TRANSFER_FAILED = "transfer_failed"
    PROCESS_ERROR = "process_error"


@dataclass(frozen=True)
class TransferResult:
    """Outcome of moving one file's staged rows to the destination."""

    status: TransferStatus
    rows_transferred: int = 0
    validation: Optional[ColumnMappingResult] = None
    elapsed_seconds: float = 0.0
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is TransferStatus.SUCCESS


@dataclass
class TransferSettings:
    """Tables and policy for a transfer."""

    staging_table_name: str
    destination_table_name: str
    error_table_name: str
    success_log_table_name: str
    strict_column_validation: bool = True


def drop_and_create_staging_table(connection: Connection, table_name: str, columns: List[str]) -> None:
    """Replace the staging table with one text column per header field.

    The change is committed on ``connection``.
    """
    if not columns:
        raise ValueError("Staging table needs at least one column")

    schema, name = split_table_name(table_name)
    staging = Table(
        name,
        MetaData(),
        *[Column(c, String(STAGING_COLUMN_LENGTH)) for c in columns],
        schema=schema,
    )
    staging.drop(connection, checkfirst=True)
    staging.create(connection)
    connection.commit()
    log.info("Created staging table '%s' with %d columns", table_name, len(columns))


def drop_staging_table(connection: Connection, table_name: str) -> None:
    """Drop the staging table if it exists and commit."""
    schema, name = split_table_name(table_name)
    try:
        Table(name, MetaData(), schema=schema).drop(connection, checkfirst=True)
        connection.commit()
        log.info("Staging table '%s' has been dropped", table_name)
    except Exception as exc:
        log.error("Error dropping staging table '%s': %s", table_name, exc)
        raise


def truncate_table(connection: Connection, table_name: str) -> None:
    """Remove every row of ``table_name`` inside the current transaction."""
    schema, name = split_table_name(table_name)
    if connection.dialect.name == "sqlite":
        connection.execute(delete(table(name, schema=schema)))
    else:
        qualified = quote_identifier(connection, name)
        if schema:
            qualified = f"{quote_identifier(connection, schema)}.{qualified}"
        connection.exec_driver_sql(f"TRUNCATE TABLE {qualified}")
    log.info("Destination table '%s' truncated for the first file", table_name)


def _log_failure(connection: Connection, settings: TransferSettings, file_name: str,
                 column_name: str, error_type: str, reason: str) -> None:
    with independent_connection(connection) as audit_conn:
        log_error(audit_conn, settings.error_table_name, file_name, column_name, error_type, reason)


def _end_implicit_transaction(connection: Connection, commit: bool = True) -> None:
    # Introspection autobegins a transaction that wrote nothing.
    if connection.in_transaction():
        if commit:
            connection.commit()
        else:
            connection.rollback()


def _move_rows(
    connection: Connection,
    settings: TransferSettings,
    file_name: str,
    is_first_file: bool,
    validation: ColumnMappingResult,
    loader: BulkLoader,
) -> TransferResult:
    started = time.perf_counter()
    with connection.begin():
        if is_first_file:
            truncate_table(connection, settings.destination_table_name)

        initial_count = table_row_count(connection, settings.destination_table_name)
        loader.copy_table(
            connection,
            settings.staging_table_name,
            settings.destination_table_name,
            list(validation.matched_columns),
        )
        final_count = table_row_count(connection, settings.destination_table_name)
        rows_transferred = final_count - initial_count
        staged_count = table_row_count(connection, settings.staging_table_name)

        if rows_transferred != staged_count:
            raise DataTransferError(
                f"Row count mismatch. Source: {staged_count}, Transferred: {rows_transferred}"
            )

        elapsed = time.perf_counter() - started
        log_success(
            connection,
            settings.success_log_table_name,
            file_name,
            rows_transferred,
            len(validation.matched_columns),
            len(validation.unmatched_source_columns),
            len(validation.unmatched_dest_columns),
            elapsed,
        )

    return TransferResult(
        status=TransferStatus.SUCCESS,
        rows_transferred=rows_transferred,
        validation=validation,
        elapsed_seconds=elapsed,
        message=f"Transferred {rows_transferred} rows",
    )


def transfer_to_destination(
    connection: Connection,
    settings: TransferSettings,
    file_name: str,
    is_first_file: bool,
    bulk_loader: Optional[BulkLoader] = None,
) -> TransferResult:
    """Validate and move the staged rows of one file into the destination.

    Args:
        connection: Connection holding the staged rows; must not have a
            write transaction in progress.
        settings: Tables and strict-validation policy.
        file_name: File name recorded in audit rows.
        is_first_file: Truncate the destination inside the transaction
            before moving rows.
        bulk_loader: Loader used for the copy; a default one is created
            when omitted.

    Returns:
        TransferResult whose status tells the caller what happened. The
        destination table is unchanged unless the status is SUCCESS.
    """
    loader = bulk_loader or BulkLoader()
    started = time.perf_counter()

    try:
        validation = validate_column_mapping(
            connection, settings.staging_table_name, settings.destination_table_name
        )
        _end_implicit_transaction(connection)
    except Exception as exc:
        log.error("Error processing file '%s': %s", file_name, exc)
        _end_implicit_transaction(connection, commit=False)
        _log_failure(connection, settings, file_name, "Process Error", type(exc).__name__, str(exc))
        return TransferResult(
            status=TransferStatus.PROCESS_ERROR,
            elapsed_seconds=time.perf_counter() - started,
            message=str(exc),
        )

    if settings.strict_column_validation and validation.unmatched_source_columns:
        mismatch = build_column_mismatch_message(validation)
        _log_failure(connection, settings, file_name, "Column Validation", "ColumnMismatchError", mismatch)
        message = (
            f"Column validation failed for file {file_name}. "
            f"Some CSV columns are missing in destination table.\n{mismatch}"
        )
        log.warning(message)
        return TransferResult(
            status=TransferStatus.VALIDATION_FAILED,
            validation=validation,
            elapsed_seconds=time.perf_counter() - started,
            message=message,
        )

    if not validation.matched_columns:
        message = f"No columns of file {file_name} match destination table {settings.destination_table_name}"
        _log_failure(connection, settings, file_name, "Column Validation", "ColumnMismatchError", message)
        log.warning(message)
        return TransferResult(
            status=TransferStatus.VALIDATION_FAILED,
            validation=validation,
            elapsed_seconds=time.perf_counter() - started,
            message=message,
        )

    if is_first_file:
        log.info("Destination table '%s' will be truncated for the first file",
                 settings.destination_table_name)

    try:
        result = _move_rows(connection, settings, file_name, is_first_file, validation, loader)
    except DataTransferError as exc:
        log.error("Transfer of '%s' rolled back: %s", file_name, exc)
        _log_failure(connection, settings, file_name, "Data Transfer", "RowCountMismatch", str(exc))
        return TransferResult(
            status=TransferStatus.TRANSFER_FAILED,
            validation=validation,
            elapsed_seconds=time.perf_counter() - started,
            message=str(exc),
        )
    except Exception as exc:
        log.error("Transfer of '%s' rolled back: %s", file_name, exc)
        _log_failure(connection, settings, file_name, "Data Transfer", "TransferError", str(exc))
        return TransferResult(
            status=TransferStatus.TRANSFER_FAILED,
            validation=validation,
            elapsed_seconds=time.perf_counter() - started,
            message=str(exc),
        )

    log.info("Transferred %d rows from '%s' into '%s'",
             result.rows_transferred, file_name, settings.destination_table_name)
    return result
