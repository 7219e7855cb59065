"""Bulk-load primitive used for staging loads and staging-to-destination copies.

Usage:
    from csv_importer.loaders.bulk_loader import BulkLoadConfig, BulkLoader

    loader = BulkLoader(BulkLoadConfig(batch_size=50000))
    loader.load_frame(conn, "import_staging", batch.data)
    loader.copy_table(conn, "import_staging", "customers", ["id", "name"])
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import pandas as pd
from sqlalchemy import MetaData, Table, cast, column, insert, select, table
from sqlalchemy.sql.expression import ColumnElement
from sqlalchemy.types import String
from sqlalchemy.engine import Connection

from csv_importer.utils.db_client import split_table_name

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50000


@dataclass
class BulkLoadConfig:
    """Settings for the bulk-load primitive.

    ``batch_size`` of ``0`` and ``timeout_seconds`` of ``None`` fall back to
    ``IMPORTER_BULK_BATCH_SIZE`` and ``IMPORTER_BULK_TIMEOUT_SECONDS``.
    A timeout of ``None`` or ``0`` means no statement timeout.
    ``max_parameters`` caps the bind parameters of a single multi-row
    INSERT so wide files stay under driver limits.
    """

    batch_size: int = 0
    timeout_seconds: Optional[int] = None
    max_parameters: int = 2000

    def __post_init__(self):
        self.batch_size = int(
            self.batch_size or os.environ.get("IMPORTER_BULK_BATCH_SIZE", DEFAULT_BATCH_SIZE)
        )
        env_timeout = os.environ.get("IMPORTER_BULK_TIMEOUT_SECONDS")
        if self.timeout_seconds is None and env_timeout:
            self.timeout_seconds = int(env_timeout)


class BulkLoader:
    """Stream rows into tables on a caller-supplied connection."""

    def __init__(self, config: Optional[BulkLoadConfig] = None):
        self.config = config or BulkLoadConfig()

    def _apply_timeout(self, connection: Connection) -> None:
        timeout = self.config.timeout_seconds
        if not timeout:
            return
        if connection.dialect.name == "postgresql":
            connection.exec_driver_sql(f"SET LOCAL statement_timeout = {int(timeout) * 1000}")
        else:
            log.debug("Statement timeout not supported for dialect '%s'", connection.dialect.name)

    def rows_per_statement(self, column_count: int) -> int:
        """Rows per INSERT so that rows * columns stays within ``max_parameters``."""
        by_params = max(1, self.config.max_parameters // max(1, column_count))
        return max(1, min(self.config.batch_size, by_params))

    def load_frame(self, connection: Connection, table_name: str, frame: pd.DataFrame) -> int:
        """Append a DataFrame to an existing table.

        The caller owns the transaction on ``connection`` and commits it.

        Returns:
            Number of rows written.
        """
        if frame.empty:
            return 0

        schema, name = split_table_name(table_name)
        self._apply_timeout(connection)
        frame.to_sql(
            name=name,
            con=connection,
            schema=schema,
            if_exists="append",
            index=False,
            method="multi",
            chunksize=self.rows_per_statement(len(frame.columns)),
        )
        log.info("Loaded %d rows into %s", len(frame), table_name)
        return len(frame)

    def build_copy_statement(
        self,
        source_table: str,
        destination: Table,
        columns: List[str],
        dialect_name: str,
    ):
        """``INSERT ... SELECT`` of ``columns`` with casts to the destination types.

        Staging columns are text, so every non-text destination column gets
        an explicit ``CAST``. SQLite is left to its type affinity, where a
        ``CAST`` to ``DATE`` would turn ``2024-01-31`` into ``2024``.
        """
        src_schema, src_name = split_table_name(source_table)
        source = table(src_name, *[column(c) for c in columns], schema=src_schema)
        selected: List[ColumnElement] = []
        for name in columns:
            dest_type = destination.c[name].type
            if dialect_name == "sqlite" or isinstance(dest_type, String):
                selected.append(source.c[name])
            else:
                selected.append(cast(source.c[name], dest_type))
        return insert(destination).from_select(columns, select(*selected))

    def copy_table(
        self,
        connection: Connection,
        source_table: str,
        destination_table: str,
        columns: List[str],
    ) -> None:
        """Append ``columns`` of ``source_table`` to ``destination_table``.

        The destination is reflected so text values are converted to its
        column types. Runs as a single ``INSERT ... SELECT`` inside whatever
        transaction is open on ``connection``.
        """
        if not columns:
            raise ValueError("copy_table requires at least one column")

        dst_schema, dst_name = split_table_name(destination_table)
        destination = Table(dst_name, MetaData(), schema=dst_schema, autoload_with=connection)

        self._apply_timeout(connection)
        stmt = self.build_copy_statement(source_table, destination, columns, connection.dialect.name)
        connection.execute(stmt)
        log.info(
            "Copied %d columns from %s to %s",
            len(columns),
            source_table,
            destination_table,
        )
