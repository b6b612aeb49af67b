from __future__ import annotations

import io
import math
import tempfile
import unittest
from pathlib import Path

import openpyxl

from invoice_checker.corrections import (
    CellCorrection,
    apply_corrections,
    correction_for,
    plan_corrections,
    should_correct,
    write_corrected_workbook,
)
from invoice_checker.errors import ParseError
from invoice_checker.grouping import group_by_order
from invoice_checker.reconcile import ResultDraft, reconcile_totals
from invoice_checker.workbook import normalize_sheet

HEADERS = ["Order#", "Item", "QTY", "Cost", "Upsell", "Total"]


def group_for(*data_rows):
    sheet = normalize_sheet("Trackings", [HEADERS, *data_rows], header_row=1, first_column=1)
    grouping = group_by_order(sheet.rows)
    return next(iter(grouping.groups.values()))


def result_for(group):
    totals = reconcile_totals(group, 0.01)
    return ResultDraft(group=group, totals=totals, store="bloomommy").freeze()


def workbook_bytes(rows) -> bytes:
    book = openpyxl.Workbook()
    sheet = book.active
    sheet.title = "Trackings"
    sheet.append(HEADERS)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    book.save(buffer)
    return buffer.getvalue()


class ShouldCorrectTests(unittest.TestCase):
    def test_only_finite_mismatches_with_price_data_are_corrected(self):
        mismatch = result_for(group_for(["#1", "CE001", 1, 40, 0, 50]))
        self.assertTrue(should_correct(mismatch))

        ok = result_for(group_for(["#1", "CE001", 1, 40, 0, 40]))
        self.assertFalse(should_correct(ok))

        missing_prices = result_for(group_for(["#1", "CE001", 1, 0, 0, 25]))
        self.assertEqual(missing_prices.status, "mismatch")
        self.assertFalse(should_correct(missing_prices))

    def test_zero_reported_total_has_nothing_to_patch(self):
        result = result_for(group_for(["#1", "CE001", 1, 40, 0, 0]))
        self.assertFalse(math.isfinite(result.reported_total))
        self.assertFalse(should_correct(result))


class CorrectionForTests(unittest.TestCase):
    def test_targets_first_row_with_a_total(self):
        group = group_for(
            ["#1002", "CE001", 1, 20, 0, None],
            ["#1002", "CE002", 1, 20, 0, 50],
        )
        correction = correction_for(group, result_for(group))
        self.assertIsNotNone(correction)
        self.assertEqual(correction.cell, "F3")
        self.assertEqual(correction.old_value, 50)
        self.assertEqual(correction.new_value, 40.0)
        self.assertEqual(correction.order, "#1002")
        self.assertEqual(correction.column, "Total")
        self.assertEqual(correction.row_index, 1)

    def test_plan_pairs_groups_with_results(self):
        sheet = normalize_sheet(
            "Trackings",
            [HEADERS, ["#1", "CE001", 1, 20, 0, 20], ["#2", "CE001", 1, 20, 0, 30]],
        )
        grouping = group_by_order(sheet.rows)
        results = [result_for(group) for group in grouping.groups.values()]
        corrections = plan_corrections(grouping.groups.values(), results)
        self.assertEqual([item.cell for item in corrections], ["F3"])

    def test_to_dict_is_json_friendly(self):
        correction = CellCorrection("Trackings", "F2", math.nan, 40.0, "#1", "Total", 0)
        self.assertIsNone(correction.to_dict()["old_value"])
        correction = CellCorrection("Trackings", "F2", object(), 40.0, "#1", "Total", 0)
        self.assertIsInstance(correction.to_dict()["old_value"], str)


class ApplyCorrectionsTests(unittest.TestCase):
    def test_only_target_cell_changes(self):
        data = workbook_bytes([["#1", "CE001", 1, 40, 0, 50], ["#2", "CE001", 1, 20, 0, 20]])
        correction = CellCorrection("Trackings", "F2", 50, 40.0, "#1", "Total", 0)
        patched = openpyxl.load_workbook(io.BytesIO(apply_corrections(data, "ledger.xlsx", [correction])))
        original = openpyxl.load_workbook(io.BytesIO(data))

        for row_new, row_old in zip(patched["Trackings"].iter_rows(values_only=True), original["Trackings"].iter_rows(values_only=True)):
            if row_old[0] == "#1":
                self.assertEqual(row_new[:5], row_old[:5])
                self.assertEqual(row_new[5], 40.0)
            else:
                self.assertEqual(row_new, row_old)

    def test_non_ooxml_and_unknown_sheet_are_rejected(self):
        correction = CellCorrection("Trackings", "F2", 50, 40.0, "#1", "Total", 0)
        with self.assertRaises(ParseError):
            apply_corrections(b"Order#,Total\n#1,50\n", "ledger.csv", [correction])
        data = workbook_bytes([["#1", "CE001", 1, 40, 0, 50]])
        with self.assertRaises(ParseError):
            apply_corrections(data, "ledger.xlsx", [CellCorrection("Other", "F2", 50, 40.0, "#1", "Total", 0)])

    def test_write_corrected_workbook_writes_a_new_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "ledger.xlsx"
            source.write_bytes(workbook_bytes([["#1", "CE001", 1, 40, 0, 50]]))
            output = Path(tmpdir) / "out" / "ledger-corrected.xlsx"
            correction = CellCorrection("Trackings", "F2", 50, 40.0, "#1", "Total", 0)

            written = write_corrected_workbook(source, output, [correction])

            self.assertEqual(written, output)
            self.assertEqual(openpyxl.load_workbook(output)["Trackings"]["F2"].value, 40)
            self.assertEqual(openpyxl.load_workbook(source)["Trackings"]["F2"].value, 50)
            self.assertEqual(sorted(path.name for path in output.parent.iterdir()), ["ledger-corrected.xlsx"])


if __name__ == "__main__":
    unittest.main()
