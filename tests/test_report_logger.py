import json
from datetime import datetime
from decimal import Decimal

from sql_snitch.report_logger import ReportLogger


def test_write_table_renders_and_keeps_rows(console):
    report = ReportLogger(console=console)

    report.write_table([{"name": "deadlocks", "Status": "Running"}], "Extended Events sessions")

    assert "🔍 Extended Events sessions:" in console.text()
    assert "deadlocks" in console.text()
    assert report.rows == [{"name": "deadlocks", "Status": "Running"}]


def test_write_table_without_rows(console):
    report = ReportLogger(console=console)
    report.write_table([])
    assert console.lines == ["(no rows)"]


def test_exports(tmp_path, console):
    report = ReportLogger(console=console)
    report.success("sql01: 1 rows")
    report.write_table([{"start_time": datetime(2026, 10, 19, 8, 30), "cpu": Decimal("1.50")}])

    md = tmp_path / "report.md"
    js = tmp_path / "report.json"
    report.export(str(md))
    report.export_json(str(js))

    assert "✅ sql01: 1 rows" in md.read_text(encoding="utf-8")
    data = json.loads(js.read_text(encoding="utf-8"))
    assert data["rows"] == [{"start_time": "2026-10-19 08:30:00", "cpu": "1.50"}]
    assert data["report"][0] == "✅ sql01: 1 rows"


def test_print_summary_counts(console):
    report = ReportLogger(console=console)
    report.success("one")
    report.warning("two")
    report.failure("three")

    report.print_summary()

    assert " - ✅ Successes: 1" in console.lines
    assert " - ⚠️ Warnings: 2" in console.lines
