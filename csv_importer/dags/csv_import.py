"""Daily CSV import DAG.

1. Ensures the error and success audit tables exist
2. Imports every CSV file of the input folder into the destination table
   (batch -> staging -> validated, reconciled transfer)

Connection and table names come from config.json / environment variables
(``IMPORTER_DB_URL``, ``IMPORTER_CSV_FOLDER``, ``IMPORTER_DESTINATION_TABLE``).
"""

import os
from datetime import datetime, timedelta

from airflow import DAG
from airflow.operators.python import PythonOperator

from csv_importer.operators.csv_import_operator import CsvImportOperator

default_args = {
    "owner": "data-platform",
    "retries": 1,
    "retry_delay": timedelta(minutes=5),
}

INPUT_DIR = os.environ.get("IMPORTER_CSV_FOLDER", "/opt/airflow/data/input")
DESTINATION_TABLE = os.environ.get("IMPORTER_DESTINATION_TABLE", "imported_rows")
CONFIG_PATH = os.environ.get("IMPORTER_CONFIG_PATH")


def _on_failure_callback(context):
    """Log failure details for alerting."""
    dag_id = context["dag"].dag_id
    task_id = context["task_instance"].task_id
    print(f"ALERT: Task {task_id} in DAG {dag_id} failed at {context['ts']}")


def _setup_audit_tables(**context):
    """Ensure the import audit tables exist."""
    from csv_importer.config.importer_config import load_config
    from csv_importer.ingestion.audit_logger import ensure_audit_tables
    from csv_importer.utils.db_client import get_engine

    config = load_config(
        CONFIG_PATH,
        overrides={"process": {
            "csv_folder_path": INPUT_DIR,
            "destination_table_name": DESTINATION_TABLE,
        }},
    )
    engine = get_engine(config.database.connection_string)
    try:
        with engine.connect() as conn:
            ensure_audit_tables(
                conn, config.process.error_table_name, config.process.success_log_table_name
            )
    finally:
        engine.dispose()
    print("Audit tables are ready")


with DAG(
    dag_id="csv_import",
    default_args=default_args,
    description="Import CSV files into the destination table with validated, reconciled transfers",
    schedule="@daily",
    start_date=datetime(2024, 1, 1),
    catchup=False,
    tags=["ingestion", "csv"],
    on_failure_callback=_on_failure_callback,
) as dag:

    setup_audit_tables = PythonOperator(
        task_id="setup_audit_tables",
        python_callable=_setup_audit_tables,
    )

    import_csv_files = CsvImportOperator(
        task_id="import_csv_files",
        csv_folder_path=INPUT_DIR,
        destination_table_name=DESTINATION_TABLE,
        config_path=CONFIG_PATH,
    )

    setup_audit_tables >> import_csv_files
