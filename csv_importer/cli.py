"""Command line entry point for the CSV importer.

Usage:
    csv-importer --config config.json
    python -m csv_importer --csv-folder ./data --destination-table customers
"""

import argparse
import logging
import sys
from typing import List, Optional

from csv_importer.config.importer_config import ConfigurationError, find_config_path, load_config
from csv_importer.runner import check_connection, ensure_csv_folder, format_execution_summary, process_files
from csv_importer.utils.db_client import get_engine
from csv_importer.utils.logging_config import setup_logging

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="csv-importer",
        description="Load a folder of CSV files into a database table",
    )
    parser.add_argument(
        "--config",
        help="Path to config.json (defaults to ./config.json or ./configuration/config.json)",
    )
    parser.add_argument("--csv-folder", help="Folder containing the CSV files")
    parser.add_argument("--destination-table", help="Destination table name")
    parser.add_argument("--db-url", help="SQLAlchemy database URL")
    parser.add_argument("--batch-size", type=int, help="Rows per staging batch")
    parser.add_argument(
        "--no-strict",
        action="store_true",
        help="Transfer matched columns even when some CSV columns are missing in the destination",
    )
    parser.add_argument(
        "--no-preserve-leading-zeros",
        action="store_true",
        help="Normalise values such as 00123 to numbers",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def _overrides(args: argparse.Namespace) -> dict:
    process = {
        "csv_folder_path": args.csv_folder,
        "destination_table_name": args.destination_table,
        "batch_size": args.batch_size,
    }
    if args.no_strict:
        process["validate_column_mapping"] = False
    if args.no_preserve_leading_zeros:
        process["preserve_leading_zeros"] = False
    return {
        "database": {"url": args.db_url},
        "process": process,
        "logging": {"level": args.log_level},
    }


def main(argv: Optional[List[str]] = None) -> int:
    """Run an import; returns 0 when every file succeeded, 1 otherwise."""
    args = build_parser().parse_args(argv)

    try:
        config_path = args.config or find_config_path()
        config = load_config(config_path, overrides=_overrides(args))
    except ConfigurationError as exc:
        setup_logging(args.log_level)
        log.error("%s", exc)
        return 1

    setup_logging(
        config.logging.level,
        config.logging.log_folder_path if config.logging.enable_file_logging else None,
        error_folder=config.logging.error_log_folder,
        success_folder=config.logging.success_log_folder,
        console_folder=config.logging.console_log_folder,
    )
    if config_path:
        log.info("Using configuration file: %s", config_path)
    log.info(
        "Configuration: folder=%s destination=%s batch_size=%d strict=%s preserve_leading_zeros=%s",
        config.process.csv_folder_path,
        config.process.destination_table_name,
        config.process.batch_size,
        config.process.validate_column_mapping,
        config.process.preserve_leading_zeros,
    )

    engine = get_engine(config.database.connection_string)
    try:
        check_connection(engine)
        ensure_csv_folder(config.process.csv_folder_path)
        summary = process_files(engine, config)
    except Exception:
        log.exception("Import failed")
        return 1
    finally:
        engine.dispose()

    for line in format_execution_summary(summary):
        log.info(line)

    if summary.failed_files:
        log.warning("Files with errors: %s", ", ".join(summary.failed_files))
        return 1
    log.info("Process completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
