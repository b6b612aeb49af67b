#!/usr/bin/env python3
"""
workbook.py: workbook ingestion and the canonical row model

Supports: .xlsx .xlsm (openpyxl), .xls .ods (pandas), .csv .tsv .txt (chardet + pandas)

Public API:
    book = read_workbook(raw_bytes, "trackings.xlsx")
    for row in book.rows():
        row.lookup("Total")          # raises MissingColumnError if absent
        row.cell_address("Total")    # "H7"

Every worksheet is parsed independently. A worksheet that fails to parse is
recorded in ``book.errors`` and the remaining worksheets are still returned;
only bytes that cannot be opened as a workbook at all raise ParseError.
"""

from __future__ import annotations

import csv
import io
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Sequence

from openpyxl.utils import get_column_letter

from invoice_checker.canonical import find_column, is_blank
from invoice_checker.config import COLUMN_ALIASES
from invoice_checker.errors import MissingColumnError, ParseError

OOXML_FORMATS = {".xlsx", ".xlsm"}
LEGACY_FORMATS = {".xls", ".ods"}
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
ALL_FORMATS = OOXML_FORMATS | LEGACY_FORMATS | TEXT_FORMATS


# ══════════════════════════════════════════════════════════════════════════════
# ROW MODEL
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SheetLayout:
    """Header order of one worksheet and where the header sits in the grid."""

    name: str
    headers: tuple[str, ...]
    header_row: int = 1
    first_column: int = 1
    positions: Mapping[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "positions",
            MappingProxyType({header: idx for idx, header in enumerate(self.headers)}),
        )

    def find(self, role: str) -> str | None:
        return find_column(self.headers, COLUMN_ALIASES[role])


@dataclass(frozen=True)
class CanonicalRow:
    layout: SheetLayout
    row_index: int
    values: Mapping[str, Any]

    @property
    def sheet(self) -> str:
        return self.layout.name

    @property
    def headers(self) -> tuple[str, ...]:
        return self.layout.headers

    def has(self, column: str) -> bool:
        return column in self.layout.positions

    def lookup(self, column: str) -> Any:
        if column not in self.layout.positions:
            raise MissingColumnError(column, self.sheet)
        return self.values.get(column)

    def get(self, column: str | None, default: Any = None) -> Any:
        if column is None or column not in self.layout.positions:
            return default
        value = self.values.get(column)
        return default if value is None else value

    def column(self, role: str) -> str | None:
        return self.layout.find(role)

    def require(self, role: str) -> str:
        found = self.layout.find(role)
        if found is None:
            raise MissingColumnError(COLUMN_ALIASES[role][0], self.sheet)
        return found

    def value(self, role: str, default: Any = None) -> Any:
        return self.get(self.column(role), default)

    def cell_address(self, column: str) -> str:
        if column not in self.layout.positions:
            raise MissingColumnError(column, self.sheet)
        col = self.layout.first_column + self.layout.positions[column]
        row = self.layout.header_row + 1 + self.row_index
        return f"{get_column_letter(col)}{row}"


@dataclass
class Sheet:
    layout: SheetLayout
    rows: list[CanonicalRow]

    @property
    def name(self) -> str:
        return self.layout.name


@dataclass
class Workbook:
    source: str
    file_format: str
    sheets: list[Sheet]
    sheet_names: list[str]
    errors: list[ParseError] = field(default_factory=list)

    def rows(self) -> Iterator[CanonicalRow]:
        for sheet in self.sheets:
            yield from sheet.rows

    def sheet(self, wanted: str) -> Sheet | None:
        key = wanted.strip().lower()
        for sheet in self.sheets:
            if sheet.name.strip().lower() == key:
                return sheet
        return None

    @property
    def warnings(self) -> list[str]:
        return [str(error) for error in self.errors]


# ══════════════════════════════════════════════════════════════════════════════
# NORMALIZATION
# ══════════════════════════════════════════════════════════════════════════════

def normalize_headers(raw_headers: Sequence[Any]) -> list[str]:
    """Name blank headers ``Column N`` and suffix repeats ``.1``, ``.2``…"""
    names = []
    for index, raw in enumerate(raw_headers, start=1):
        header = "" if is_blank(raw) else str(raw).strip()
        names.append(header or f"Column {index}")

    counts: Counter[str] = Counter()
    taken = set(names)
    unique = []
    for name in names:
        seen = counts[name]
        counts[name] += 1
        if seen == 0:
            unique.append(name)
            continue
        candidate = f"{name}.{seen}"
        while candidate in taken:
            seen += 1
            candidate = f"{name}.{seen}"
        counts[name] = seen + 1
        taken.add(candidate)
        unique.append(candidate)
    return unique


def normalize_sheet(
    name: str,
    matrix: Sequence[Sequence[Any]],
    *,
    header_row: int = 1,
    first_column: int = 1,
) -> Sheet:
    """Turn a header row plus data rows into CanonicalRows, dropping blank rows."""
    if not matrix:
        return Sheet(layout=SheetLayout(name=name, headers=()), rows=[])

    headers = normalize_headers(matrix[0])
    layout = SheetLayout(
        name=name,
        headers=tuple(headers),
        header_row=header_row,
        first_column=first_column,
    )
    rows = []
    for row_index, raw in enumerate(matrix[1:]):
        cells = list(raw)
        if all(is_blank(cell) for cell in cells):
            continue
        values = {
            header: (cells[idx] if idx < len(cells) else None)
            for idx, header in enumerate(headers)
        }
        rows.append(CanonicalRow(layout=layout, row_index=row_index, values=MappingProxyType(values)))
    return Sheet(layout=layout, rows=rows)


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT READERS
# ══════════════════════════════════════════════════════════════════════════════

def _read_ooxml(data: bytes, source: str, suffix: str) -> Workbook:
    from openpyxl import load_workbook

    try:
        book = load_workbook(io.BytesIO(data), data_only=True, keep_vba=suffix == ".xlsm")
    except Exception as exc:
        raise ParseError(source, str(exc)) from exc

    sheets: list[Sheet] = []
    errors: list[ParseError] = []
    for ws in book.worksheets:
        try:
            matrix = [
                list(values)
                for values in ws.iter_rows(
                    min_row=ws.min_row,
                    max_row=ws.max_row,
                    min_col=ws.min_column,
                    max_col=ws.max_column,
                    values_only=True,
                )
            ]
            if not matrix or all(is_blank(value) for row in matrix for value in row):
                continue
            sheets.append(normalize_sheet(ws.title, matrix, header_row=ws.min_row, first_column=ws.min_column))
        except Exception as exc:
            errors.append(ParseError(f"sheet '{ws.title}' of {source}", str(exc)))
    return Workbook(
        source=source,
        file_format=suffix.lstrip("."),
        sheets=sheets,
        sheet_names=list(book.sheetnames),
        errors=errors,
    )


def _frame_matrix(df) -> list[list[Any]]:
    frame = df.astype(object).where(df.notna(), None)
    return frame.values.tolist()


def _read_legacy(data: bytes, source: str, suffix: str) -> Workbook:
    import pandas as pd

    if suffix == ".xls":
        engine = "xlrd"
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd. Install it with: pip install xlrd")
    else:
        engine = "odf"
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy. Install it with: pip install odfpy")

    try:
        xf = pd.ExcelFile(io.BytesIO(data), engine=engine)
    except Exception as exc:
        raise ParseError(source, str(exc)) from exc

    sheets: list[Sheet] = []
    errors: list[ParseError] = []
    with xf:
        names = [str(name) for name in xf.sheet_names]
        for name in names:
            try:
                df = xf.parse(name, header=None, dtype=object)
            except Exception as exc:
                errors.append(ParseError(f"sheet '{name}' of {source}", str(exc)))
                continue
            matrix = _frame_matrix(df)
            if not matrix:
                continue
            sheets.append(normalize_sheet(name, matrix))
    return Workbook(source=source, file_format=suffix.lstrip("."), sheets=sheets, sheet_names=names, errors=errors)


def _detect_encoding(raw: bytes) -> str:
    import chardet

    detected = chardet.detect(raw).get("encoding") or "utf-8"
    try:
        "".encode(detected)
    except LookupError:
        return "utf-8"
    return detected


def _detect_delimiter(text_value: str, suffix: str) -> str:
    if suffix == ".tsv":
        return "\t"
    sample = "\n".join([line for line in text_value.splitlines() if line.strip()][:25])
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
    except csv.Error:
        return ","


def _read_text(data: bytes, source: str, suffix: str) -> Workbook:
    import pandas as pd

    encoding = _detect_encoding(data)
    decoded = data.decode(encoding, errors="replace").replace("\x00", "")
    delimiter = _detect_delimiter(decoded, suffix)
    # Blank lines are kept so row indexes match physical lines; leading ones move the header down.
    lines = decoded.splitlines(keepends=True)
    leading = 0
    while leading < len(lines) and not lines[leading].strip():
        leading += 1
    body = "".join(lines[leading:])
    name = Path(source).stem or "Sheet1"
    if not body:
        return Workbook(source=source, file_format=suffix.lstrip("."), sheets=[], sheet_names=[name])
    try:
        df = pd.read_csv(
            io.StringIO(body),
            header=None,
            dtype=str,
            keep_default_na=False,
            sep=delimiter,
            engine="python",
            skip_blank_lines=False,
        )
    except Exception as exc:
        raise ParseError(source, str(exc)) from exc

    matrix = _frame_matrix(df)
    sheets = [normalize_sheet(name, matrix, header_row=leading + 1)] if matrix else []
    return Workbook(source=source, file_format=suffix.lstrip("."), sheets=sheets, sheet_names=[name])


def read_workbook(data: bytes, filename: str) -> Workbook:
    suffix = Path(filename).suffix.lower()
    source = Path(filename).name or filename
    if suffix not in ALL_FORMATS:
        raise ParseError(
            source,
            f"unsupported file type '{suffix or '[missing extension]'}'. Supported: {', '.join(sorted(ALL_FORMATS))}",
        )
    if not data:
        raise ParseError(source, "file is empty")
    if suffix in OOXML_FORMATS:
        return _read_ooxml(data, source, suffix)
    if suffix in LEGACY_FORMATS:
        return _read_legacy(data, source, suffix)
    return _read_text(data, source, suffix)


def load_workbook_file(path: Path) -> Workbook:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return read_workbook(path.read_bytes(), path.name)


def describe_columns(sheet: Sheet) -> dict[str, str | None]:
    """Resolved column name per role, for reports and the web app."""
    return {role: sheet.layout.find(role) for role in COLUMN_ALIASES}

