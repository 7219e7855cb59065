"""Run loop for importing a folder of CSV files.

Files are processed one at a time in sorted filename order on a single
connection. Each file is batched into the staging table and then moved
into the destination table by the transfer engine. A failure in one file
is recorded and the next file still runs. The staging table is dropped
once every file has been attempted.
"""

import glob as globmod
import logging
import os
import time
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from csv_importer.config.importer_config import ImporterConfig, ProcessConfig
from csv_importer.ingestion.audit_logger import ensure_audit_tables, log_error
from csv_importer.ingestion.batcher import BatchStats, load_csv_in_batches
from csv_importer.loaders.bulk_loader import BulkLoader
from csv_importer.loaders.transfer_engine import (
    TransferSettings,
    TransferStatus,
    drop_and_create_staging_table,
    drop_staging_table,
    transfer_to_destination,
)
from csv_importer.utils.db_client import independent_connection
from csv_importer.utils.logging_config import file_logging_context

log = logging.getLogger(__name__)


@dataclass
class FileProcessingStats:
    """Outcome of importing one file."""

    file_name: str
    rows_read: int = 0
    rows_rejected: int = 0
    rows_transferred: int = 0
    column_count: int = 0
    processing_seconds: float = 0.0
    status: Optional[TransferStatus] = None
    was_successful: bool = False
    message: str = ""

    @property
    def rows_per_second(self) -> float:
        if self.processing_seconds <= 0:
            return 0.0
        return self.rows_read / self.processing_seconds


@dataclass
class ExecutionSummary:
    """Totals for one run across all files."""

    total_files_processed: int = 0
    total_rows_read: int = 0
    total_rows_transferred: int = 0
    total_errors: int = 0
    total_warnings: int = 0
    total_processing_seconds: float = 0.0
    file_stats: List[FileProcessingStats] = field(default_factory=list)

    def add(self, stats: FileProcessingStats) -> None:
        self.file_stats.append(stats)
        self.total_files_processed += 1
        self.total_rows_read += stats.rows_read
        self.total_rows_transferred += stats.rows_transferred
        if stats.status is TransferStatus.VALIDATION_FAILED:
            self.total_warnings += 1
        elif not stats.was_successful:
            self.total_errors += 1

    @property
    def failed_files(self) -> List[str]:
        return [s.file_name for s in self.file_stats if not s.was_successful]


def ensure_csv_folder(folder: str) -> None:
    """Create the CSV folder if it does not exist."""
    if os.path.isdir(folder):
        log.info("CSV folder exists: %s", folder)
        return
    os.makedirs(folder, exist_ok=True)
    log.info("Created CSV folder: %s", folder)


def list_csv_files(folder: str) -> List[str]:
    """Return the ``*.csv`` files of ``folder`` in lexicographic order.

    Raises:
        FileNotFoundError: If the folder does not exist.
    """
    if not os.path.isdir(folder):
        raise FileNotFoundError(f"CSV folder not found: {folder}")
    return sorted(globmod.glob(os.path.join(folder, "*.csv")))


def check_connection(engine: Engine) -> None:
    """Open a connection, run ``SELECT 1`` and log the server version."""
    log.info("Testing database connection...")
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        version = getattr(conn.dialect, "server_version_info", None)
    log.info("Database connection successful (dialect=%s, server_version=%s)",
             engine.dialect.name, version)


def _settings(config: ProcessConfig) -> TransferSettings:
    return TransferSettings(
        staging_table_name=config.staging_table_name,
        destination_table_name=config.destination_table_name,
        error_table_name=config.error_table_name,
        success_log_table_name=config.success_log_table_name,
        strict_column_validation=config.validate_column_mapping,
    )


def load_and_process_csv_file(
    connection: Connection,
    file_path: str,
    config: ProcessConfig,
    is_first_file: bool,
    bulk_loader: Optional[BulkLoader] = None,
) -> FileProcessingStats:
    """Batch one file into the staging table and transfer it.

    Args:
        connection: Working connection for batching, staging and transfer.
        file_path: CSV file to import.
        config: Process configuration (tables, batch size, typing policy).
        is_first_file: Whether this is the first file of the run; the
            destination is truncated inside its transfer.
        bulk_loader: Loader for staging loads and the transfer copy.

    Returns:
        FileProcessingStats for the file. Failures are recorded in the
        stats and the error log table rather than raised.
    """
    loader = bulk_loader or BulkLoader()
    file_name = os.path.basename(file_path)
    stats = FileProcessingStats(file_name=file_name)
    batch_stats = BatchStats()
    rows_loaded = 0
    started = time.perf_counter()

    log.info("Starting to read and load data from file: %s", file_name)
    try:
        with open(file_path, "r", encoding="utf-8-sig") as handle:
            for batch in load_csv_in_batches(
                handle,
                connection,
                config.error_table_name,
                config.batch_size,
                config.preserve_leading_zeros,
                file_name=file_name,
                stats=batch_stats,
            ):
                if batch.is_first_batch:
                    drop_and_create_staging_table(
                        connection, config.staging_table_name, batch.column_names
                    )
                loader.load_frame(connection, config.staging_table_name, batch.data)
                connection.commit()
                rows_loaded += batch.row_count
                log.info("Processing... total rows so far: %d (%.2f s elapsed)",
                         rows_loaded, time.perf_counter() - started)

                if batch.is_last_batch:
                    log.info("Starting data transfer to destination table for file: %s", file_name)
                    result = transfer_to_destination(
                        connection, _settings(config), file_name, is_first_file, loader
                    )
                    stats.status = result.status
                    stats.rows_transferred = result.rows_transferred
                    stats.was_successful = result.succeeded
                    stats.message = result.message

        if stats.status is None:
            connection.commit()
            stats.was_successful = True
            stats.message = "No data rows"
            log.warning("File %s has no data rows; nothing transferred", file_name)
    except Exception as exc:
        if connection.in_transaction():
            connection.rollback()
        log.error("Error processing file %s: %s", file_name, exc, exc_info=True)
        with independent_connection(connection) as audit_conn:
            log_error(audit_conn, config.error_table_name, file_name,
                      "Process Error", type(exc).__name__, str(exc))
        stats.status = TransferStatus.PROCESS_ERROR
        stats.rows_transferred = 0
        stats.was_successful = False
        stats.message = str(exc)
    finally:
        stats.rows_read = batch_stats.rows_read
        stats.rows_rejected = batch_stats.rows_rejected
        stats.column_count = batch_stats.column_count
        stats.processing_seconds = time.perf_counter() - started

    if stats.was_successful:
        log.info("Completed processing %s - rows: %d, columns: %d, time: %.2f s",
                 file_name, stats.rows_read, stats.column_count, stats.processing_seconds)
    return stats


def process_files(
    engine: Engine,
    config: ImporterConfig,
    bulk_loader: Optional[BulkLoader] = None,
) -> ExecutionSummary:
    """Import every CSV file of the configured folder.

    Args:
        engine: Engine for the destination database.
        config: Importer configuration.
        bulk_loader: Optional loader; built from ``config.bulk_load`` when
            omitted.

    Returns:
        ExecutionSummary with per-file stats in processing order.
    """
    process = config.process
    loader = bulk_loader or BulkLoader(config.bulk_load)
    summary = ExecutionSummary()
    started = time.perf_counter()

    files = list_csv_files(process.csv_folder_path)
    if not files:
        log.warning("No CSV files found in '%s'", process.csv_folder_path)
        return summary
    log.info("Found %d CSV files to process", len(files))

    with engine.connect() as connection:
        ensure_audit_tables(connection, process.error_table_name, process.success_log_table_name)
        try:
            for index, file_path in enumerate(files):
                file_name = os.path.basename(file_path)
                log.info("Processing file %d of %d: %s", index + 1, len(files), file_name)
                with file_logging_context(file_name):
                    stats = load_and_process_csv_file(
                        connection, file_path, process, index == 0, loader
                    )
                summary.add(stats)
        finally:
            log.info("Cleaning up staging table...")
            try:
                drop_staging_table(connection, process.staging_table_name)
            except Exception as exc:
                log.warning("Failed to drop staging table: %s", exc)
                summary.total_warnings += 1
            summary.total_processing_seconds = time.perf_counter() - started

    return summary


def format_execution_summary(summary: ExecutionSummary) -> List[str]:
    """Render the run totals and per-file details as log lines."""
    lines = [
        "EXECUTION SUMMARY",
        f"Total Files Processed: {summary.total_files_processed}",
        f"Total Rows Read: {summary.total_rows_read:,}",
        f"Total Rows Transferred: {summary.total_rows_transferred:,}",
    ]
    if summary.total_errors:
        lines.append(f"Total Errors: {summary.total_errors}")
    if summary.total_warnings:
        lines.append(f"Total Warnings: {summary.total_warnings}")

    seconds = summary.total_processing_seconds
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    lines.append(f"Total Execution Time: {int(hours):02d}:{int(minutes):02d}:{secs:06.3f}")
    rate = summary.total_rows_read / seconds if seconds > 0 else 0.0
    lines.append(f"Average Performance: {rate:,.0f} rows/second")

    for stats in summary.file_stats:
        status = "OK" if stats.was_successful else "FAILED"
        lines.append(f"[{status}] {stats.file_name}:")
        lines.append(
            f"   Rows: {stats.rows_read:,}, Rejected: {stats.rows_rejected:,}, "
            f"Transferred: {stats.rows_transferred:,}, Columns: {stats.column_count}"
        )
        lines.append(f"   Processing Time: {stats.processing_seconds:.2f} seconds")
        lines.append(f"   Performance: {stats.rows_per_second:,.0f} rows/second")
        if not stats.was_successful and stats.message:
            lines.append(f"   Reason: {stats.message.strip()}")
    return lines
