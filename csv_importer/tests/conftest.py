"""Pytest configuration and shared fixtures for importer tests."""

import os
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import Column, Date, Integer, MetaData, Numeric, String, Table, create_engine, select

from csv_importer.ingestion.audit_logger import ensure_audit_tables
from csv_importer.loaders.bulk_loader import BulkLoadConfig, BulkLoader
from csv_importer.loaders.transfer_engine import TransferSettings

ERROR_TABLE = "csv_import_errors"
SUCCESS_TABLE = "csv_import_success"
STAGING_TABLE = "csv_import_staging"
DESTINATION_TABLE = "customers"

_IMPORTER_ENV = (
    "IMPORTER_DB_URL",
    "IMPORTER_CSV_FOLDER",
    "IMPORTER_DESTINATION_TABLE",
    "IMPORTER_LOG_LEVEL",
    "IMPORTER_BULK_BATCH_SIZE",
    "IMPORTER_BULK_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_importer_env(monkeypatch):
    """Keep host environment variables out of config defaults."""
    for name in _IMPORTER_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db_url(tmp_path):
    """File-backed SQLite URL so separate connections see committed data."""
    return f"sqlite:///{tmp_path / 'importer.db'}"


@pytest.fixture
def engine(db_url):
    eng = create_engine(db_url)
    yield eng
    eng.dispose()


@pytest.fixture
def connection(engine):
    with engine.connect() as conn:
        ensure_audit_tables(conn, ERROR_TABLE, SUCCESS_TABLE)
        yield conn


@pytest.fixture
def destination_table(engine):
    """Create the ``customers`` destination table (id, name, joined)."""
    table = Table(
        DESTINATION_TABLE,
        MetaData(),
        Column("id", String(50)),
        Column("name", String(200)),
        Column("joined", String(10)),
    )
    table.create(engine)
    return table


@pytest.fixture
def typed_destination(engine):
    """Create an ``orders`` table with integer, numeric, date and text columns."""
    table = Table(
        "orders",
        MetaData(),
        Column("id", Integer),
        Column("amount", Numeric(10, 2)),
        Column("ordered_on", Date),
        Column("note", String(50)),
    )
    table.create(engine)
    return table


@pytest.fixture
def bulk_loader():
    # Stay under the bind-parameter limit of older SQLite builds
    return BulkLoader(BulkLoadConfig(batch_size=1000, max_parameters=500))


@pytest.fixture
def transfer_settings():
    return TransferSettings(
        staging_table_name=STAGING_TABLE,
        destination_table_name=DESTINATION_TABLE,
        error_table_name=ERROR_TABLE,
        success_log_table_name=SUCCESS_TABLE,
    )


@pytest.fixture
def csv_folder(tmp_path):
    folder = tmp_path / "input"
    folder.mkdir()
    return folder


@pytest.fixture
def write_csv(csv_folder):
    """Write a CSV file into the input folder and return its path."""

    def _write(name, content):
        path = csv_folder / name
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def fetch_rows(engine):
    """Return a reader for the rows of a table, ordered by the selected columns."""

    def _fetch(table_name, *columns):
        table = Table(table_name, MetaData(), autoload_with=engine)
        cols = [table.c[c] for c in columns] if columns else list(table.c)
        with engine.connect() as conn:
            return [tuple(r) for r in conn.execute(select(*cols).order_by(*cols))]

    return _fetch


@pytest.fixture
def mock_airflow_context():
    """Create a mock Airflow task context."""
    ti = MagicMock()
    ti.xcom_pull.return_value = None
    ti.xcom_push.return_value = None

    return {
        "ds": "2024-01-01",
        "ds_nodash": "20240101",
        "execution_date": "2024-01-01T00:00:00+00:00",
        "dag": MagicMock(dag_id="test_dag"),
        "task_instance": ti,
        "ti": ti,
        "params": {},
    }


@pytest.fixture
def postgres_env():
    """Set PostgreSQL environment variables for testing."""
    env_vars = {
        "POSTGRES_USER": "test-user",
        "POSTGRES_PASSWORD": "test-password",
        "POSTGRES_HOST": "localhost",
        "POSTGRES_PORT": "5432",
        "POSTGRES_DB": "test-db",
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars
