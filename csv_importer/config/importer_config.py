"""Configuration management for the CSV importer.

Provides typed configuration classes that load values from a JSON file
and fall back to environment variables.
"""

import json
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from csv_importer.loaders.bulk_loader import BulkLoadConfig

CONFIG_FILE_NAME = "config.json"


class ConfigurationError(ValueError):
    """Raised when the importer configuration is missing or invalid."""


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    A full SQLAlchemy ``url`` wins over the individual fields.
    """

    url: str = ""
    driver: str = "postgresql+psycopg2"
    host: str = ""
    port: int = 5432
    user: str = ""
    password: str = ""
    database: str = ""

    def __post_init__(self):
        self.url = self.url or os.environ.get("IMPORTER_DB_URL", "")
        self.host = self.host or os.environ.get("POSTGRES_HOST", "localhost")
        self.port = int(os.environ.get("POSTGRES_PORT", str(self.port)))
        self.user = self.user or os.environ.get("POSTGRES_USER", "importer")
        self.password = self.password or os.environ.get("POSTGRES_PASSWORD", "importer")
        self.database = self.database or os.environ.get("POSTGRES_DB", "importer")

    @property
    def connection_string(self) -> str:
        if self.url:
            return self.url
        return f"{self.driver}://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class ProcessConfig:
    """Which files to import and where their rows go."""

    csv_folder_path: str = ""
    staging_table_name: str = "csv_import_staging"
    destination_table_name: str = ""
    error_table_name: str = "csv_import_errors"
    success_log_table_name: str = "csv_import_success"
    batch_size: int = 100000
    validate_column_mapping: bool = True
    preserve_leading_zeros: bool = True

    def __post_init__(self):
        self.csv_folder_path = self.csv_folder_path or os.environ.get("IMPORTER_CSV_FOLDER", "")
        self.destination_table_name = (
            self.destination_table_name or os.environ.get("IMPORTER_DESTINATION_TABLE", "")
        )
        self.batch_size = int(self.batch_size)


@dataclass
class LoggingConfig:
    """Log level and optional log-file folders."""

    level: str = ""
    log_folder_path: str = ""
    enable_file_logging: bool = False
    error_log_folder: str = "Errors"
    success_log_folder: str = "Success"
    console_log_folder: str = "Console"

    def __post_init__(self):
        self.level = self.level or os.environ.get("IMPORTER_LOG_LEVEL", "INFO")


@dataclass
class ImporterConfig:
    """Top-level importer configuration combining all sub-configs."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    bulk_load: BulkLoadConfig = field(default_factory=BulkLoadConfig)

    def validate(self) -> List[str]:
        """Validate required configuration parameters.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if not self.database.connection_string:
            errors.append("Database connection is required")
        if not self.process.csv_folder_path:
            errors.append("CSV folder path is required")
        if not self.process.destination_table_name:
            errors.append("Destination table name is required")
        if not self.process.staging_table_name:
            errors.append("Staging table name is required")
        if self.process.staging_table_name == self.process.destination_table_name:
            errors.append("Staging and destination tables must differ")
        if not self.process.error_table_name or not self.process.success_log_table_name:
            errors.append("Error and success log table names are required")
        if self.process.batch_size < 1:
            errors.append("Batch size must be a positive integer")
        if self.bulk_load.batch_size < 1:
            errors.append("Bulk load batch size must be a positive integer")
        if self.logging.enable_file_logging and not self.logging.log_folder_path:
            errors.append("Log folder path is required when file logging is enabled")

        return errors


def _section(cls, values: Optional[Dict[str, Any]]):
    """Build a config dataclass from a dict, rejecting unknown keys."""
    values = dict(values or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} settings: {', '.join(unknown)}"
        )
    return cls(**values)


def find_config_path(base_dir: Optional[str] = None) -> Optional[str]:
    """Locate ``config.json`` in ``base_dir`` or its ``configuration/`` folder."""
    base_dir = base_dir or os.getcwd()
    for candidate in (
        os.path.join(base_dir, CONFIG_FILE_NAME),
        os.path.join(base_dir, "configuration", CONFIG_FILE_NAME),
    ):
        if os.path.isfile(candidate):
            return candidate
    return None


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> ImporterConfig:
    """Create and validate the importer configuration.

    Args:
        path: Optional JSON config file with ``database``, ``process``,
            ``logging`` and ``bulk_load`` sections. Environment variables
            fill any values the file leaves empty.
        overrides: Optional per-section values applied on top of the file
            (used by the command line).

    Returns:
        Validated ImporterConfig instance.

    Raises:
        ConfigurationError: If the file is unreadable or required
            configuration is missing.
    """
    raw: Dict[str, Any] = {}
    if path:
        if not os.path.isfile(path):
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Failed to load configuration from {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Configuration in {path} must be a JSON object")

    for section, values in (overrides or {}).items():
        merged = dict(raw.get(section) or {})
        merged.update({k: v for k, v in values.items() if v is not None})
        raw[section] = merged

    config = ImporterConfig(
        database=_section(DatabaseConfig, raw.get("database")),
        process=_section(ProcessConfig, raw.get("process")),
        logging=_section(LoggingConfig, raw.get("logging")),
        bulk_load=_section(BulkLoadConfig, raw.get("bulk_load")),
    )
    errors = config.validate()
    if errors:
        raise ConfigurationError(f"Configuration errors: {'; '.join(errors)}")
    return config
