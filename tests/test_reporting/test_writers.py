"""
Tests for report writing and reading.

Test Coverage:
    - Report file naming, side views and path overrides
    - Header-only reports for empty inputs
    - CSV and JSON read-back
"""

import csv
import json

from azure_resource_auditor.core.models import OrphanFinding, ResourceRecord
from azure_resource_auditor.reporting.writers import ReportWriter, read_records, read_rows

from conftest import REPORT_DATE, make_record


class TestReportPaths:
    """Tests for ReportWriter.path_for."""

    def test_default_naming(self, tmp_path):
        """Reports share the run prefix and report date."""
        writer = ReportWriter(str(tmp_path), REPORT_DATE)

        assert writer.path_for("inventory").name == f"azure-audit-{REPORT_DATE}-inventory.csv"
        assert writer.path_for("costs", "breakdown").name == f"azure-audit-{REPORT_DATE}-costs-breakdown.csv"
        assert writer.path_for("cleanup", "script", ".sh").name == f"azure-audit-{REPORT_DATE}-cleanup-script.sh"

    def test_json_extension(self, tmp_path):
        """The output format decides the extension."""
        writer = ReportWriter(str(tmp_path), REPORT_DATE, output_format="json")
        assert writer.path_for("orphans").suffix == ".json"

    def test_override_and_side_views(self, tmp_path):
        """Side reports of an overridden view are written beside it."""
        target = tmp_path / "custom" / "my-costs.csv"
        writer = ReportWriter(str(tmp_path), REPORT_DATE, overrides={"costs": str(target)})

        assert writer.path_for("costs") == target
        assert writer.path_for("costs", "breakdown") == target.with_name("my-costs-breakdown.csv")
        assert writer.path_for("orphans").parent == tmp_path


class TestReportWriting:
    """Tests for writing and reading records."""

    def test_empty_report_keeps_header(self, tmp_path):
        """An empty result still produces a report with its header."""
        writer = ReportWriter(str(tmp_path), REPORT_DATE)
        report = writer.write_records("orphans", OrphanFinding, [])

        assert report.record_count == 0
        with open(report.path, newline='') as f:
            header = next(csv.reader(f))
        assert tuple(header) == OrphanFinding.CSV_HEADERS

    def test_csv_round_trip(self, tmp_path):
        """Inventory written as CSV reads back into equal records."""
        records = [make_record("vm01", tags={"Owner": "alice"}), make_record("vm02", power_state="VM deallocated")]
        writer = ReportWriter(str(tmp_path), REPORT_DATE)
        report = writer.write_records("inventory", ResourceRecord, records)

        assert report.record_count == 2
        assert report.view == "inventory"
        assert read_records(writer.path_for("inventory"), ResourceRecord.from_row) == records

    def test_json_output(self, tmp_path):
        """JSON reports hold one object per record with every header."""
        writer = ReportWriter(str(tmp_path), REPORT_DATE, output_format="json")
        report = writer.write_records("inventory", ResourceRecord, [make_record("vm01")])

        with open(report.path) as f:
            data = json.load(f)
        assert len(data) == 1
        assert set(data[0]) == set(ResourceRecord.CSV_HEADERS)
        assert read_rows(writer.path_for("inventory"))[0]["Name"] == "vm01"

    def test_side_view_name(self, tmp_path):
        """Side reports carry the combined view name."""
        writer = ReportWriter(str(tmp_path), REPORT_DATE)
        report = writer.write_records("orphans", OrphanFinding, [], side="stopped-vms")
        assert report.view == "orphans-stopped-vms"

    def test_write_text_creates_directories(self, tmp_path):
        """Text reports create missing parent directories."""
        writer = ReportWriter(str(tmp_path / "nested"), REPORT_DATE)
        path = writer.path_for("summary", extension=".txt")

        report = writer.write_text(path, "hello")

        assert path.read_text() == "hello"
        assert report.record_count == 0
