"""Streaming CSV batcher.

Reads a comma-delimited file, types every field and yields fixed-size
batches ready for the staging load. Rows whose field count does not match
the header are written to the error log table and skipped.
"""

import logging
from dataclasses import dataclass
from itertools import islice
from typing import IO, Iterator, List, Optional

import pandas as pd
from sqlalchemy.engine import Connection

from csv_importer.utils.db_client import independent_connection

from .audit_logger import log_error
from .line_parser import parse_csv_line
from .value_typer import TypingSession, type_value

log = logging.getLogger(__name__)

# Lines read from the file per chunk; independent of the batch size.
READ_CHUNK_LINES = 5000


class CsvParsingError(Exception):
    """Raised when a CSV file cannot be parsed at all."""


@dataclass
class Batch:
    """A group of typed rows from one file, with its position in the stream."""

    data: pd.DataFrame
    is_first_batch: bool = False
    is_last_batch: bool = False

    @property
    def row_count(self) -> int:
        return len(self.data)

    @property
    def column_count(self) -> int:
        return len(self.data.columns)

    @property
    def column_names(self) -> List[str]:
        return [str(c) for c in self.data.columns]


@dataclass
class BatchStats:
    """Row accounting for one file: ``rows_read == rows_batched + rows_rejected``."""

    rows_read: int = 0
    rows_batched: int = 0
    rows_rejected: int = 0
    column_count: int = 0


def _read_chunks(handle: IO[str]) -> Iterator[List[str]]:
    while True:
        chunk = list(islice(handle, READ_CHUNK_LINES))
        if not chunk:
            return
        yield chunk


def _log_rejected_row(connection: Connection, error_table_name: str, file_name: str,
                      column_name: str, error_type: str, reason: str) -> None:
    # Commits on its own; a rollback of ``connection`` keeps the row.
    with independent_connection(connection) as audit_conn:
        log_error(audit_conn, error_table_name, file_name, column_name, error_type, reason)


def _typed_row_groups(
    handle: IO[str],
    headers: List[str],
    connection: Connection,
    error_table_name: str,
    file_name: str,
    batch_size: int,
    preserve_leading_zeros: bool,
    session: TypingSession,
    stats: BatchStats,
) -> Iterator[List[List[Optional[str]]]]:
    """Yield lists of typed rows, each exactly ``batch_size`` long except the last."""
    rows: List[List[Optional[str]]] = []
    expected = len(headers)

    for chunk in _read_chunks(handle):
        for raw_line in chunk:
            line = raw_line.rstrip("\r\n")
            if not line.strip():
                continue
            stats.rows_read += 1

            try:
                values = parse_csv_line(line)
                if len(values) != expected:
                    stats.rows_rejected += 1
                    _log_rejected_row(
                        connection, error_table_name, file_name,
                        "Row Structure", "CSV Parsing Error",
                        f"Row has {len(values)} columns but header has {expected} "
                        f"columns in file {file_name}",
                    )
                    continue
                row = [type_value(v.strip(), preserve_leading_zeros, session) for v in values]
            except (ValueError, ArithmeticError) as exc:
                stats.rows_rejected += 1
                _log_rejected_row(connection, error_table_name, file_name,
                                  "Data Processing", "ProcessError", str(exc))
                continue

            rows.append(row)
            stats.rows_batched += 1
            if len(rows) >= batch_size:
                yield rows
                rows = []

    if rows:
        yield rows


def load_csv_in_batches(
    handle: IO[str],
    connection: Connection,
    error_table_name: str,
    batch_size: int,
    preserve_leading_zeros: bool,
    file_name: Optional[str] = None,
    stats: Optional[BatchStats] = None,
) -> Iterator[Batch]:
    """Yield the rows of an open CSV file as typed batches.

    The first line is the header. Every following non-blank line is parsed,
    checked against the header's field count and typed. Batches hold
    ``batch_size`` rows except the last; the first batch is tagged
    ``is_first_batch`` and the last ``is_last_batch`` (a single batch is
    both). Malformed rows are logged to ``error_table_name`` as they are
    found, each committed on a connection independent of ``connection``.

    Args:
        handle: Text file handle positioned at the header line.
        connection: Working connection; its engine writes the error log rows.
        error_table_name: Error log table.
        batch_size: Rows per batch.
        preserve_leading_zeros: Keep values such as ``00123`` verbatim.
        file_name: Name recorded in error rows; defaults to ``handle.name``.
        stats: Optional BatchStats updated while the file is read.

    Raises:
        CsvParsingError: If the file has no header line.
        ValueError: If ``batch_size`` is not positive.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if stats is None:
        stats = BatchStats()
    if file_name is None:
        file_name = getattr(handle, "name", "<stream>")

    header_line = handle.readline().rstrip("\r\n")
    if not header_line:
        raise CsvParsingError("CSV file is empty.")

    headers = [h.strip() for h in parse_csv_line(header_line)]
    stats.column_count = len(headers)
    log.info("Reading '%s' with %d columns", file_name, len(headers))

    session = TypingSession()
    groups = _typed_row_groups(
        handle, headers, connection, error_table_name, file_name,
        batch_size, preserve_leading_zeros, session, stats,
    )
    try:
        pending = next(groups, None)
        is_first = True
        while pending is not None:
            following = next(groups, None)
            yield Batch(
                data=pd.DataFrame(pending, columns=headers, dtype=object),
                is_first_batch=is_first,
                is_last_batch=following is None,
            )
            is_first = False
            pending = following
    finally:
        log.debug("Clearing %d cached conversions for '%s'", len(session), file_name)
        session.clear()

    log.info("Finished reading '%s': read=%d batched=%d rejected=%d",
             file_name, stats.rows_read, stats.rows_batched, stats.rows_rejected)
