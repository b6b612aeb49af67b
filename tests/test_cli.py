from __future__ import annotations

import importlib.util
import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

import openpyxl

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "invoice_checker.cli"]
FIXED_STAMP = "20260301T010203Z"
GENERATOR_PATH = ROOT / "sample-data" / "generate_samples.py"


def load_module(path: Path, module_name: str):
    spec = importlib.util.spec_from_file_location(module_name, path)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = {key: value for key, value in os.environ.items() if "_SHOPIFY_" not in key}
    merged_env["INVOICE_CHECKER_OUTPUT_STAMP"] = FIXED_STAMP
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


class InvoiceCheckerCliTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.generator = load_module(GENERATOR_PATH, "invoice_checker_samples_for_cli")

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self.tmp.name)
        self.paths = {role: str(path) for role, path in self.generator.generate(self.tmpdir / "inputs").items()}
        self.orders_arg = f"bloomommy={self.paths['orders']}"

    def tearDown(self):
        self.tmp.cleanup()

    def check(self, *extra: str) -> subprocess.CompletedProcess[str]:
        return run_cli("check", self.paths["ledger"], self.paths["quotation"], "--orders", self.orders_arg, *extra)

    def test_check_with_mismatches_returns_exit_3_and_writes_report(self):
        out_dir = self.tmpdir / "out"
        proc = self.check("--out", str(out_dir))

        self.assertEqual(proc.returncode, 3, proc.stderr)
        self.assertIn("Total mismatches: 2", proc.stderr)
        self.assertIn("Report written:", proc.stderr)
        report = json.loads((out_dir / "report.json").read_text(encoding="utf-8"))
        self.assertEqual(report["contract"]["name"], "invoice_checker.check")
        self.assertEqual(report["ledger"], "ledger.xlsx")
        self.assertEqual(report["run_summary"]["generated_at"], "1970-01-01T00:00:00Z")
        self.assertEqual(len(report["results"]), 6)

    def test_check_json_stdout_contains_only_json(self):
        proc = self.check("--out", str(self.tmpdir / "out"), "--json", "--sort", "desc")

        self.assertEqual(proc.returncode, 3, proc.stderr)
        report = json.loads(proc.stdout)
        self.assertEqual(report["results"][0]["order"], "#1006")
        self.assertEqual(proc.stderr.strip(), "")

    def test_check_refuses_to_overwrite_existing_report(self):
        existing = self.tmpdir / "report.json"
        existing.write_text("{}", encoding="utf-8")
        proc = self.check("--output", str(existing))

        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite", proc.stderr)
        self.assertEqual(existing.read_text(encoding="utf-8"), "{}")

    def test_missing_input_returns_exit_1(self):
        proc = run_cli("check", str(self.tmpdir / "missing.xlsx"), self.paths["quotation"], "--out", str(self.tmpdir / "out"))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_unreadable_ledger_returns_exit_2(self):
        corrupt = self.tmpdir / "corrupt.xlsx"
        corrupt.write_bytes(b"not a zip archive")
        proc = run_cli("check", str(corrupt), self.paths["quotation"], "--out", str(self.tmpdir / "out"))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Could not read corrupt.xlsx", proc.stderr)

    def test_bad_orders_argument_returns_exit_1(self):
        proc = run_cli(
            "check", self.paths["ledger"], self.paths["quotation"], "--orders", "no-equals-sign", "--out", str(self.tmpdir / "out")
        )
        self.assertEqual(proc.returncode, 1)
        self.assertIn("--orders expects STORE=PATH", proc.stderr)

    def test_failed_fetch_returns_exit_6(self):
        out_dir = self.tmpdir / "out"
        proc = self.check("--fetch", "yuma", "--out", str(out_dir))

        self.assertEqual(proc.returncode, 6, proc.stderr)
        report = json.loads((out_dir / "report.json").read_text(encoding="utf-8"))
        self.assertEqual(report["run_summary"]["metrics"]["stores_failed"], ["yuma"])
        self.assertTrue(any("YUMA_SHOPIFY_STORE_DOMAIN" in warning for warning in report["run_summary"]["warnings"]))

    def test_correct_writes_patched_copy_and_summary(self):
        out_dir = self.tmpdir / "out"
        proc = run_cli(
            "correct", self.paths["ledger"], self.paths["quotation"], "--orders", self.orders_arg, "--out", str(out_dir)
        )

        self.assertEqual(proc.returncode, 0, proc.stderr)
        corrected = out_dir / "ledger-corrected.xlsx"
        self.assertEqual(openpyxl.load_workbook(corrected)["Trackings"]["K4"].value, 40)
        self.assertEqual(openpyxl.load_workbook(self.paths["ledger"])["Trackings"]["K4"].value, 50)
        summary = json.loads((out_dir / "corrections.json").read_text(encoding="utf-8"))
        self.assertEqual(summary["contract"]["name"], "invoice_checker.corrections")
        self.assertEqual([item["cell"] for item in summary["corrections"]], ["K4"])

    def test_correct_dry_run_writes_nothing(self):
        out_dir = self.tmpdir / "out"
        proc = run_cli(
            "correct",
            self.paths["ledger"],
            self.paths["quotation"],
            "--orders",
            self.orders_arg,
            "--out",
            str(out_dir),
            "--dry-run",
        )

        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Trackings!K4 (#1002): 50 -> 40.0", proc.stderr)
        self.assertIn("Dry run: no files written", proc.stderr)
        self.assertFalse(out_dir.exists())

    def test_correct_rejects_text_ledgers(self):
        csv_ledger = self.tmpdir / "ledger.csv"
        csv_ledger.write_text("Order#,Cost,Upsell,Total\n#1,10,0,12\n", encoding="utf-8")
        proc = run_cli("correct", str(csv_ledger), self.paths["quotation"], "--out", str(self.tmpdir / "out"))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Corrections can only be written", proc.stderr)

    def test_explain_known_and_unknown_rules(self):
        proc = run_cli("explain", "total_mismatch")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Rule: total_mismatch", proc.stdout)

        proc = run_cli("explain", "match_source_error", "--json")
        self.assertEqual(json.loads(proc.stdout)["rule_id"], "match_source_error")

        proc = run_cli("explain", "nope")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown rule id", proc.stderr)

    def test_version_and_usage_errors(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertRegex(proc.stdout.strip(), r"^\d+\.\d+\.\d+$")

        proc = run_cli("check")
        self.assertEqual(proc.returncode, 1)


if __name__ == "__main__":
    unittest.main()
