from __future__ import annotations

import io
import unittest

from openpyxl import Workbook

from invoice_checker.errors import MissingColumnError, ParseError
from invoice_checker.workbook import (
    describe_columns,
    normalize_headers,
    normalize_sheet,
    read_workbook,
)


def xlsx_bytes(build) -> bytes:
    book = Workbook()
    build(book)
    buffer = io.BytesIO()
    book.save(buffer)
    return buffer.getvalue()


class NormalizeTests(unittest.TestCase):
    def test_blank_and_duplicate_headers_are_named(self):
        self.assertEqual(normalize_headers(["SKU", "Item", "SKU"]), ["SKU", "Item", "SKU.1"])
        self.assertEqual(normalize_headers(["Order#", None, "  "]), ["Order#", "Column 2", "Column 3"])

    def test_duplicate_suffix_avoids_existing_header(self):
        self.assertEqual(
            normalize_headers(["SKU", "SKU", "SKU.1"]),
            ["SKU", "SKU.2", "SKU.1"],
        )

    def test_blank_rows_are_dropped_but_keep_physical_index(self):
        sheet = normalize_sheet(
            "Trackings",
            [
                ["Order#", "Total"],
                ["#1", 10],
                [None, "   "],
                ["#2", 20],
            ],
        )
        self.assertEqual([row.row_index for row in sheet.rows], [0, 2])
        self.assertEqual(sheet.rows[1].cell_address("Total"), "B4")
        self.assertEqual(sheet.rows[1].sheet, "Trackings")

    def test_short_rows_are_padded_with_none(self):
        sheet = normalize_sheet("S", [["Order#", "Total", "Cost"], ["#1", 5]])
        self.assertIsNone(sheet.rows[0].values["Cost"])


class CanonicalRowTests(unittest.TestCase):
    def setUp(self):
        self.row = normalize_sheet("S", [["Order #", "Total"], ["#7", 12]]).rows[0]

    def test_lookup_fails_closed(self):
        self.assertEqual(self.row.lookup("Total"), 12)
        with self.assertRaises(MissingColumnError) as ctx:
            self.row.lookup("Cost")
        self.assertEqual(ctx.exception.column, "Cost")
        self.assertEqual(ctx.exception.sheet, "S")
        with self.assertRaises(MissingColumnError):
            self.row.cell_address("Cost")

    def test_get_is_lenient(self):
        self.assertEqual(self.row.get("Cost", 0), 0)
        self.assertEqual(self.row.get(None, "x"), "x")

    def test_roles_resolve_through_aliases(self):
        self.assertEqual(self.row.column("order"), "Order #")
        self.assertEqual(self.row.value("order"), "#7")
        self.assertEqual(self.row.require("total"), "Total")
        with self.assertRaises(MissingColumnError):
            self.row.require("cost")

    def test_rows_are_read_only(self):
        with self.assertRaises(TypeError):
            self.row.values["Total"] = 99

    def test_cell_address_honours_used_range_offset(self):
        sheet = normalize_sheet("S", [["Order#", "Total"], ["#1", 5]], header_row=3, first_column=2)
        self.assertEqual(sheet.rows[0].cell_address("Total"), "C4")


class ReadWorkbookTests(unittest.TestCase):
    def test_xlsx_reads_every_non_empty_sheet(self):
        def build(book):
            first = book.active
            first.title = "Trackings"
            first.append(["Order#", "Total"])
            first.append(["#1", 35])
            book.create_sheet("Empty")
            second = book.create_sheet("Archive")
            second.append(["Order#", "Total"])
            second.append(["#2", 10])

        workbook = read_workbook(xlsx_bytes(build), "ledger.xlsx")
        self.assertEqual(workbook.sheet_names, ["Trackings", "Empty", "Archive"])
        self.assertEqual([sheet.name for sheet in workbook.sheets], ["Trackings", "Archive"])
        self.assertEqual([row.value("order") for row in workbook.rows()], ["#1", "#2"])
        self.assertIs(workbook.sheet("archive"), workbook.sheets[1])
        self.assertEqual(workbook.errors, [])

    def test_xlsx_used_range_offset_is_kept_for_addresses(self):
        def build(book):
            ws = book.active
            ws.title = "Offset"
            ws.cell(row=3, column=2, value="Order#")
            ws.cell(row=3, column=3, value="Total")
            ws.cell(row=4, column=2, value="#5")
            ws.cell(row=4, column=3, value=12)

        workbook = read_workbook(xlsx_bytes(build), "offset.xlsx")
        row = next(workbook.rows())
        self.assertEqual(row.cell_address("Total"), "C4")

    def test_csv_is_decoded_and_delimiter_sniffed(self):
        data = "Order#;Country;Total\n#1;FR;35\n#2;DE;10\n".encode("utf-8")
        workbook = read_workbook(data, "export.csv")
        self.assertEqual(workbook.sheet_names, ["export"])
        rows = list(workbook.rows())
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0].value("total"), "35")
        self.assertEqual(rows[1].value("country"), "DE")

    def test_csv_blank_lines_keep_physical_row_addresses(self):
        workbook = read_workbook(b"Order#,Total\n#1,5\n\n#2,7\n", "ledger.csv")
        rows = list(workbook.rows())
        self.assertEqual([row.value("order") for row in rows], ["#1", "#2"])
        self.assertEqual(rows[0].cell_address("Total"), "B2")
        self.assertEqual(rows[1].cell_address("Total"), "B4")

    def test_csv_leading_blank_lines_move_the_header_down(self):
        workbook = read_workbook(b"\n\nOrder#,Total\n#1,5\n", "ledger.csv")
        row = next(workbook.rows())
        self.assertEqual(row.value("order"), "#1")
        self.assertEqual(row.cell_address("Total"), "B4")

    def test_unsupported_empty_and_corrupt_inputs_raise_parse_error(self):
        with self.assertRaises(ParseError):
            read_workbook(b"data", "notes.pdf")
        with self.assertRaises(ParseError):
            read_workbook(b"", "ledger.xlsx")
        with self.assertRaises(ParseError) as ctx:
            read_workbook(b"not a zip file", "ledger.xlsx")
        self.assertIn("Could not read ledger.xlsx", str(ctx.exception))

    def test_describe_columns_reports_resolved_roles(self):
        sheet = normalize_sheet("S", [["Order#", "QTY", "SKU", "Total"], ["#1", 1, "CE001", 5]])
        roles = describe_columns(sheet)
        self.assertEqual(roles["order"], "Order#")
        self.assertEqual(roles["item"], "SKU")
        self.assertIsNone(roles["cost"])


if __name__ == "__main__":
    unittest.main()
