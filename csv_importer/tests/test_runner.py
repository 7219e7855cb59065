"""End-to-end tests for the folder import run loop."""

import os
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import inspect

from csv_importer.config.importer_config import DatabaseConfig, ImporterConfig, ProcessConfig
from csv_importer.loaders.bulk_loader import BulkLoadConfig, BulkLoader
from csv_importer.loaders.transfer_engine import TransferStatus
from csv_importer.runner import (
    ExecutionSummary,
    FileProcessingStats,
    ensure_csv_folder,
    format_execution_summary,
    list_csv_files,
    process_files,
)


class _FailingLoader(BulkLoader):
    """Raises on the n-th staging load."""

    def __init__(self, config, fail_on_call):
        super().__init__(config)
        self.fail_on_call = fail_on_call
        self.calls = 0

    def load_frame(self, connection, table_name, frame):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise RuntimeError("staging load failed")
        return super().load_frame(connection, table_name, frame)


@pytest.fixture
def config(db_url, csv_folder):
    return ImporterConfig(
        database=DatabaseConfig(url=db_url),
        process=ProcessConfig(
            csv_folder_path=str(csv_folder),
            destination_table_name="customers",
            batch_size=2,
        ),
        bulk_load=BulkLoadConfig(max_parameters=500),
    )


@pytest.fixture
def seeded_destination(engine, destination_table):
    with engine.begin() as conn:
        conn.execute(destination_table.insert(), [{"id": "old", "name": "Old", "joined": None}])
    return destination_table


class TestListCsvFiles:
    """Tests for list_csv_files and ensure_csv_folder."""

    def test_sorted_and_filtered(self, csv_folder, write_csv):
        write_csv("b.csv", "id\n")
        write_csv("a.csv", "id\n")
        write_csv("notes.txt", "x\n")
        names = [os.path.basename(p) for p in list_csv_files(str(csv_folder))]
        assert names == ["a.csv", "b.csv"]

    def test_missing_folder_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list_csv_files(str(tmp_path / "missing"))

    def test_ensure_creates_folder(self, tmp_path):
        folder = tmp_path / "new" / "input"
        ensure_csv_folder(str(folder))
        assert folder.is_dir()


class TestProcessFiles:
    """Tests for process_files against a SQLite database."""

    def test_imports_all_files_truncating_once(self, engine, config, seeded_destination,
                                               write_csv, fetch_rows):
        write_csv("a.csv", "id,name,joined\n1,Alice,31-01-2024\n2,Bob,\n3,Carol,01/15/2023\n")
        write_csv("b.csv", "id,name,joined\n4,Dan,2022-06-30\n")

        summary = process_files(engine, config)

        assert summary.total_files_processed == 2
        assert summary.total_rows_read == 4
        assert summary.total_rows_transferred == 4
        assert summary.failed_files == []
        assert fetch_rows("customers") == [
            ("1", "Alice", "2024-01-31"),
            ("2", "Bob", None),
            ("3", "Carol", "2023-01-15"),
            ("4", "Dan", "2022-06-30"),
        ]
        assert fetch_rows("csv_import_success", "total_rows") == [(1,), (3,)]

    def test_staging_table_is_dropped(self, engine, config, destination_table, write_csv):
        write_csv("a.csv", "id,name,joined\n1,Alice,\n")
        process_files(engine, config)
        assert "csv_import_staging" not in inspect(engine).get_table_names()

    def test_leading_zeros_reach_destination(self, engine, config, destination_table,
                                             write_csv, fetch_rows):
        write_csv("a.csv", "id,name,joined\n00042,Alice,\n")
        process_files(engine, config)
        assert fetch_rows("customers", "id") == [("00042",)]

    def test_malformed_rows_are_skipped_and_logged(self, engine, config, destination_table,
                                                   write_csv, fetch_rows):
        write_csv("a.csv", "id,name,joined\n1,Alice,\n2,Bob\n3,Carol,\n")

        summary = process_files(engine, config)

        stats = summary.file_stats[0]
        assert stats.was_successful
        assert (stats.rows_read, stats.rows_rejected, stats.rows_transferred) == (3, 1, 2)
        assert fetch_rows("customers", "id") == [("1",), ("3",)]
        assert fetch_rows("csv_import_errors", "error_type", "reason") == [
            ("CSV Parsing Error", "Row has 2 columns but header has 3 columns in file a.csv")
        ]

    def test_failed_file_does_not_stop_the_run(self, engine, config, seeded_destination,
                                               write_csv, fetch_rows):
        write_csv("a.csv", "id,name,joined\n1,Alice,\n")
        write_csv("b.csv", "id,name,unknown\n2,Bob,x\n")
        write_csv("c.csv", "id,name,joined\n3,Carol,\n")

        summary = process_files(engine, config)

        assert summary.failed_files == ["b.csv"]
        assert summary.file_stats[1].status is TransferStatus.VALIDATION_FAILED
        assert summary.total_warnings == 1
        assert summary.total_errors == 0
        assert fetch_rows("customers", "id") == [("1",), ("3",)]

    def test_header_only_first_file_keeps_destination(self, engine, config, seeded_destination,
                                                      write_csv, fetch_rows):
        write_csv("a.csv", "id,name,joined\n")

        summary = process_files(engine, config)

        stats = summary.file_stats[0]
        assert stats.was_successful
        assert stats.message == "No data rows"
        assert fetch_rows("customers", "id") == [("old",)]

    def test_empty_file_is_process_error(self, engine, config, destination_table,
                                         write_csv, fetch_rows):
        write_csv("a.csv", "")
        write_csv("b.csv", "id,name,joined\n1,Alice,\n")

        summary = process_files(engine, config)

        assert summary.file_stats[0].status is TransferStatus.PROCESS_ERROR
        assert summary.total_errors == 1
        assert fetch_rows("csv_import_errors", "column_name", "error_type", "reason") == [
            ("Process Error", "CsvParsingError", "CSV file is empty.")
        ]
        # b.csv is not the first file, so nothing was truncated either way
        assert fetch_rows("customers", "id") == [("1",)]

    def test_empty_folder_returns_empty_summary(self, engine, config, destination_table):
        summary = process_files(engine, config)
        assert summary.total_files_processed == 0
        assert summary.file_stats == []

    def test_utf8_bom_is_ignored(self, engine, config, destination_table, csv_folder, fetch_rows):
        (csv_folder / "a.csv").write_bytes("\ufeffid,name,joined\n1,Zoë,\n".encode("utf-8"))

        summary = process_files(engine, config)

        assert summary.failed_files == []
        assert fetch_rows("customers", "id", "name") == [("1", "Zoë")]


    def test_typed_destination_receives_converted_values(self, engine, config, typed_destination,
                                                         write_csv, fetch_rows):
        config.process.destination_table_name = "orders"
        write_csv("a.csv", "id,amount,ordered_on,note\n42,\"1,234.50\",31-01-2024,first\n7,(3),01/15/2023,\n")

        summary = process_files(engine, config)

        assert summary.failed_files == []
        assert fetch_rows("orders") == [
            (7, Decimal("-3.00"), date(2023, 1, 15), None),
            (42, Decimal("1234.50"), date(2024, 1, 31), "first"),
        ]

    def test_rejected_row_audit_survives_failed_load(self, engine, config, destination_table,
                                                     write_csv, fetch_rows):
        config.process.batch_size = 1
        write_csv("a.csv", "id,name,joined\n1,A,\n2,B,\nbad\n3,C,\n")
        loader = _FailingLoader(BulkLoadConfig(max_parameters=500), fail_on_call=2)

        summary = process_files(engine, config, loader)

        stats = summary.file_stats[0]
        assert stats.status is TransferStatus.PROCESS_ERROR
        assert stats.rows_rejected == 1
        assert fetch_rows("csv_import_errors", "column_name", "error_type") == [
            ("Process Error", "RuntimeError"),
            ("Row Structure", "CSV Parsing Error"),
        ]
        assert fetch_rows("customers") == []


class TestExecutionSummary:
    """Tests for summary accounting and rendering."""

    def test_add_counts_errors_and_warnings(self):
        summary = ExecutionSummary()
        summary.add(FileProcessingStats("a.csv", rows_read=10, rows_transferred=10,
                                        status=TransferStatus.SUCCESS, was_successful=True))
        summary.add(FileProcessingStats("b.csv", rows_read=5, status=TransferStatus.VALIDATION_FAILED))
        summary.add(FileProcessingStats("c.csv", rows_read=1, status=TransferStatus.TRANSFER_FAILED))

        assert summary.total_files_processed == 3
        assert summary.total_rows_read == 16
        assert summary.total_rows_transferred == 10
        assert summary.total_warnings == 1
        assert summary.total_errors == 1
        assert summary.failed_files == ["b.csv", "c.csv"]

    def test_rows_per_second(self):
        assert FileProcessingStats("a.csv", rows_read=100, processing_seconds=4).rows_per_second == 25
        assert FileProcessingStats("a.csv", rows_read=100).rows_per_second == 0.0

    def test_format_lines(self):
        summary = ExecutionSummary(total_processing_seconds=3661.5)
        summary.add(FileProcessingStats("a.csv", rows_read=1200, rows_transferred=1200,
                                        processing_seconds=2.0, was_successful=True))
        summary.add(FileProcessingStats("b.csv", message="Row count mismatch\n"))

        lines = format_execution_summary(summary)

        assert "Total Rows Read: 1,200" in lines
        assert "Total Errors: 1" in lines
        assert "Total Execution Time: 01:01:01.500" in lines
        assert "[OK] a.csv:" in lines
        assert "[FAILED] b.csv:" in lines
        assert "   Reason: Row count mismatch" in lines
        assert "   Performance: 600 rows/second" in lines
