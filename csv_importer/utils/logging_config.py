"""Structured logging configuration for the CSV importer."""

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    """Log formatter that outputs JSON-structured log lines."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Per-file import context, when present
        if hasattr(record, "file_name"):
            log_entry["file_name"] = record.file_name
        if hasattr(record, "run_id"):
            log_entry["run_id"] = record.run_id

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class _BelowLevelFilter(logging.Filter):
    """Pass only records strictly below ``level``."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno < self.level


def _file_handler(path: str, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(
    level: str = None,
    log_folder: str = None,
    error_folder: str = "Errors",
    success_folder: str = "Success",
    console_folder: str = "Console",
):
    """Configure structured logging for the importer.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
            Defaults to IMPORTER_LOG_LEVEL env var or INFO.
        log_folder: Optional base folder for log files. When given, a
            timestamped console log, error log (ERROR and above) and
            success log (below ERROR) are written to sub-folders.
        error_folder: Sub-folder name for error logs.
        success_folder: Sub-folder name for success logs.
        console_folder: Sub-folder name for the full console log.

    Returns:
        List of log file paths that were created (empty without a folder).
    """
    if level is None:
        level = os.environ.get("IMPORTER_LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Configure console handler with JSON formatting
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(JSONFormatter())

    # Avoid adding duplicate handlers
    if not any(
        type(h) is logging.StreamHandler for h in root_logger.handlers
    ):
        root_logger.addHandler(console_handler)

    if not log_folder:
        return []

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    paths = {}
    for kind, folder in (
        ("error", error_folder),
        ("success", success_folder),
        ("console", console_folder),
    ):
        directory = os.path.join(log_folder, folder)
        os.makedirs(directory, exist_ok=True)
        paths[kind] = os.path.join(directory, f"{kind}_{timestamp}.log")

    root_logger.addHandler(_file_handler(paths["console"], log_level))
    root_logger.addHandler(_file_handler(paths["error"], logging.ERROR))
    success_handler = _file_handler(paths["success"], log_level)
    success_handler.addFilter(_BelowLevelFilter(logging.ERROR))
    root_logger.addHandler(success_handler)

    return [paths["console"], paths["error"], paths["success"]]


def get_logger(name: str, file_name: str = None, run_id: str = None) -> logging.Logger:
    """Get a logger with optional per-file context.

    Args:
        name: Logger name (typically __name__).
        file_name: Optional CSV file name for context.
        run_id: Optional run identifier for context.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)

    if file_name or run_id:
        adapter_extra = {}
        if file_name:
            adapter_extra["file_name"] = file_name
        if run_id:
            adapter_extra["run_id"] = run_id
        return logging.LoggerAdapter(logger, adapter_extra)

    return logger


@contextmanager
def file_logging_context(file_name: str, run_id: str = None):
    """Context manager that adds the current CSV file to all log messages.

    Args:
        file_name: Name of the file being imported.
        run_id: Optional run identifier.

    Usage:
        with file_logging_context("customers_2024.csv"):
            log.info("This message includes the file name")
    """
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.file_name = file_name
        if run_id:
            record.run_id = run_id
        return record

    logging.setLogRecordFactory(record_factory)
    try:
        yield
    finally:
        logging.setLogRecordFactory(old_factory)
