from io import StringIO
import json

from tabulate import tabulate


class ReportLogger:
    def __init__(self, console=print, tablefmt="grid"):
        self.console = console
        self.tablefmt = tablefmt
        self.buffer = StringIO()
        self.rows = []

    def write(self, msg):
        self.console(msg)
        self.buffer.write(msg + "\n")

    def success(self, msg):
        self.write(f"✅ {msg}")

    def warning(self, msg):
        self.write(f"⚠️ {msg}")

    def failure(self, msg):
        self.write(f"❌ {msg}")

    def write_table(self, rows, title=None):
        #"""Render result rows as a table and keep them for the JSON export."""
        if title:
            self.write(f"\n🔍 {title}:")
        if not rows:
            self.write("(no rows)")
            return
        self.rows.extend(rows)
        self.write(tabulate(rows, headers="keys", tablefmt=self.tablefmt))

    def export(self, filename="sql_snitch.md"):
        with open(filename, "w", encoding="utf-8") as f:
            f.write(self.buffer.getvalue())
        self.console(f"\n📄 Markdown report saved to: {filename}")

    def export_json(self, filename="sql_snitch.json"):
        #"""Export the report lines plus every result row. Non-JSON values (datetimes, decimals) become strings."""
        lines = self.buffer.getvalue().splitlines()
        report = {"report": lines, "rows": self.rows}
        with open(filename, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, default=str)
        self.console(f"\n📄 JSON report saved to: {filename}")

    def summary(self):
        lines = self.buffer.getvalue().splitlines()
        warnings = [line for line in lines if "⚠️" in line or "❌" in line]
        successes = [line for line in lines if "✅" in line]
        return successes, warnings

    def print_summary(self):
        #"""Prints a basic summary of how many checks passed or raised warnings/errors."""
        successes, warnings = self.summary()

        self.console("\n📋 Summary:")
        self.console(f" - ✅ Successes: {len(successes)}")
        self.console(f" - ⚠️ Warnings: {len(warnings)}")
        if warnings:
            self.console(" - Highlighted Issues:")
            for line in warnings[:5]:
                self.console(f"   {line}")
