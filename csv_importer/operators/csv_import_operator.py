"""Airflow operator for importing a folder of CSV files into a database table."""

import logging

from airflow.exceptions import AirflowException
from airflow.models import BaseOperator

log = logging.getLogger(__name__)


class CsvImportOperator(BaseOperator):
    """Import every CSV file of a folder into a destination table.

    Runs the same batch, stage, validate and transfer loop as the
    ``csv-importer`` command and pushes the run totals to XCom.

    Args:
        csv_folder_path: Folder holding the CSV files.
        destination_table_name: Table the rows are appended to. It is
            truncated inside the first file's transfer.
        config_path: Optional config.json; explicit arguments win over it.
        db_url: Optional SQLAlchemy URL; defaults to the config / env.
        validate_column_mapping: Abort a file whose columns are missing in
            the destination.
        fail_on_file_error: Fail the task if any file failed.
    """

    template_fields = ("csv_folder_path", "destination_table_name", "config_path")

    def __init__(
        self,
        csv_folder_path: str,
        destination_table_name: str,
        config_path: str = None,
        db_url: str = None,
        validate_column_mapping: bool = True,
        fail_on_file_error: bool = True,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.csv_folder_path = csv_folder_path
        self.destination_table_name = destination_table_name
        self.config_path = config_path
        self.db_url = db_url
        self.validate_column_mapping = validate_column_mapping
        self.fail_on_file_error = fail_on_file_error

    def execute(self, context):
        from csv_importer.config.importer_config import load_config
        from csv_importer.runner import format_execution_summary, process_files
        from csv_importer.utils.db_client import get_engine
        from csv_importer.utils.logging_config import get_logger

        run_log = get_logger(__name__, run_id=context.get("run_id"))

        config = load_config(
            self.config_path,
            overrides={
                "database": {"url": self.db_url},
                "process": {
                    "csv_folder_path": self.csv_folder_path,
                    "destination_table_name": self.destination_table_name,
                    "validate_column_mapping": self.validate_column_mapping,
                },
            },
        )
        log.info("Importing CSV files from %s into %s",
                 config.process.csv_folder_path, config.process.destination_table_name)
        engine = get_engine(config.database.connection_string)
        try:
            summary = process_files(engine, config)
        finally:
            engine.dispose()

        for line in format_execution_summary(summary):
            run_log.info(line)

        ti = context["ti"]
        ti.xcom_push(key="files_processed", value=summary.total_files_processed)
        ti.xcom_push(key="rows_transferred", value=summary.total_rows_transferred)
        ti.xcom_push(key="failed_files", value=summary.failed_files)

        if summary.failed_files and self.fail_on_file_error:
            raise AirflowException(
                f"{len(summary.failed_files)} file(s) failed to import: "
                f"{', '.join(summary.failed_files)}"
            )
        return summary.total_rows_transferred
