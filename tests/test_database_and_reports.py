"""Tests for audit run persistence, report files and console tables."""

import csv
import json

import pytest

from ipaudit.auditor import AuditResult, summarize
from ipaudit.correlation import CorrelationResult, MergedCase
from ipaudit.database import DatabaseManager
from ipaudit.report_generator import (
    EXPORT_COLUMNS,
    ReportGenerator,
    export_results_csv,
    field_status,
    format_correlation_table,
    format_summary,
    score_band,
)

from conftest import audit_payload


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(str(tmp_path / "audit.db"))


@pytest.fixture
def results():
    return [
        AuditResult.from_response("16/123,456", audit_payload(score=90)),
        AuditResult.from_response("17/999,999", audit_payload(score=60, accuracy="Miss", source="Argument Only")),
    ]


@pytest.fixture
def stored_run(db, results):
    run_id = db.start_run("gemini", "gemini-2.5-pro", strategies_file="strategies.json",
                          ground_truth_file="granted.csv", cases_total=3, cases_matched=2)
    for result in results:
        db.store_result(run_id, result)
    db.finish_run(run_id, "completed", errors=[("18/000,001", "upstream 500")])
    return run_id


class TestDatabaseManager:

    def test_results_come_back_in_audit_order(self, db, stored_run, results):
        assert db.get_results(stored_run) == results

    def test_run_metadata(self, db, stored_run):
        run = db.get_run(stored_run)
        assert run["status"] == "completed"
        assert run["cases_total"] == 3
        assert run["cases_matched"] == 2
        assert run["results"] == 2
        assert run["errors"] == [("18/000,001", "upstream 500")]
        assert run["end_time"] is not None

    def test_list_runs(self, db, stored_run):
        second = db.start_run("claude", "claude-sonnet-4-5")
        runs = db.list_runs()
        assert {r["id"] for r in runs} == {stored_run, second}
        assert next(r for r in runs if r["id"] == second)["status"] == "running"

    def test_halted_run_keeps_reason(self, db):
        run_id = db.start_run("gemini", "gemini-2.5-pro")
        db.finish_run(run_id, "halted", halt_reason="Select a valid API key")
        run = db.get_run(run_id)
        assert run["status"] == "halted"
        assert run["halt_reason"] == "Select a valid API key"
        assert run["errors"] == []

    def test_unknown_run(self, db):
        assert db.get_run("missing") is None
        assert db.get_results("missing") == []
        with pytest.raises(ValueError):
            db.finish_run("missing", "completed")


class TestExport:

    def test_csv_columns_and_values(self, tmp_path, results):
        path = export_results_csv(results, tmp_path / "export.csv")
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

        assert list(rows[0].keys()) == EXPORT_COLUMNS
        assert rows[0]["Application ID"] == "16/123,456"
        assert rows[0]["Audit Score"] == "90"
        assert rows[0]["Winning Limitation"] == "wherein the sensor is optical"
        assert rows[0]["Specification Reference"] == "[0042]"
        assert rows[1]["Accuracy Level"] == "Miss"

    def test_empty_export_has_header_only(self, tmp_path):
        path = export_results_csv([], tmp_path / "empty.csv")
        assert path.read_text(encoding="utf-8").strip() == ",".join(EXPORT_COLUMNS)


class TestReportGenerator:

    def test_generates_all_formats(self, db, stored_run, tmp_path):
        files = ReportGenerator(db, str(tmp_path / "reports")).generate_report(stored_run)
        assert set(files) == {"csv", "markdown", "json"}

        markdown = open(files["markdown"], encoding="utf-8").read()
        assert "# Intelligence Performance Report" in markdown
        assert "$4,500" in markdown
        assert "| Miss | 1 |" in markdown
        assert "`18/000,001`: upstream 500" in markdown

        data = json.loads(open(files["json"], encoding="utf-8").read())
        assert data["summary"]["total_apps"] == 2
        assert [r["appNumber"] for r in data["results"]] == ["16/123,456", "17/999,999"]

    def test_csv_only(self, db, stored_run, tmp_path):
        files = ReportGenerator(db, str(tmp_path)).generate_report(stored_run, format="csv")
        assert "markdown" not in files
        assert "csv" in files

    def test_unknown_run(self, db, tmp_path):
        with pytest.raises(ValueError):
            ReportGenerator(db, str(tmp_path)).generate_report("missing")


class TestConsoleFormatting:

    def test_correlation_table(self):
        result = CorrelationResult(cases=[
            MergedCase(app_number="16/123,456", original_claims="1. A device comprising a sensor.",
                       granted_claims="1. Granted.", match_type="exact"),
            MergedCase(app_number="2016123457", granted_claims="1. Granted.", match_type="suffix"),
            MergedCase(app_number="Unknown"),
        ])
        table = format_correlation_table(result)
        lines = table.splitlines()

        assert lines[0] == "Data Map: 2 Matches / 3 JSON Records"
        assert "CONNECTED" in lines[3] and "Populated" in lines[3]
        assert "CONNECTED (suffix)" in lines[4]
        assert "NO CSV MATCH" in lines[5]

    def test_field_status(self):
        assert field_status("short") == "Empty"
        assert field_status("   ") == "Empty"
        assert field_status("a claim long enough") == "Populated"

    def test_summary_text(self, results):
        text = format_summary(summarize(results))
        assert "Audited Total:         2" in text
        assert "Average Quality:       75.0%" in text
        assert "Value Created:         $4,500" in text
        assert "Attorney Productivity: 15 hrs" in text

    @pytest.mark.parametrize("score,band", [(100, "high"), (85, "high"), (70, "medium"), (69, "low")])
    def test_score_band(self, score, band):
        assert score_band(score) == band
