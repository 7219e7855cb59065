"""Shared utility functions for the CSV importer."""

from csv_importer.utils.db_client import get_engine, independent_connection, split_table_name, table_row_count
from csv_importer.utils.logging_config import file_logging_context, get_logger, setup_logging

__all__ = [
    "get_engine",
    "independent_connection",
    "split_table_name",
    "table_row_count",
    "file_logging_context",
    "get_logger",
    "setup_logging",
]
