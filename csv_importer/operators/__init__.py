"""Custom Airflow operators for the CSV importer."""

from csv_importer.operators.csv_import_operator import CsvImportOperator

__all__ = [
    "CsvImportOperator",
]
