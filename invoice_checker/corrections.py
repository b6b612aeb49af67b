"""
Correction emitter and OOXML write-back.

At most one cell is patched per order: the Total cell of the first row that has
one. Write-back reopens the original workbook bytes with openpyxl and touches
only those cells.
"""

from __future__ import annotations

import io
import math
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

from invoice_checker.canonical import is_blank
from invoice_checker.config import CORRECTION_DECIMALS
from invoice_checker.errors import ParseError
from invoice_checker.grouping import OrderGroup
from invoice_checker.reconcile import STATUS_MISMATCH, ReconciliationResult
from invoice_checker.workbook import OOXML_FORMATS


@dataclass(frozen=True)
class CellCorrection:
    sheet: str
    cell: str
    old_value: Any
    new_value: float
    order: str
    column: str
    row_index: int

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        old = payload["old_value"]
        if old is not None and not isinstance(old, (str, int, float, bool)):
            payload["old_value"] = str(old)
        elif isinstance(old, float) and not math.isfinite(old):
            payload["old_value"] = None
        return payload


def should_correct(result: ReconciliationResult) -> bool:
    expected = result.expected_total
    reported = result.reported_total
    if result.status != STATUS_MISMATCH or not math.isfinite(expected):
        return False
    # A zero expected total usually means missing price data.
    if expected == 0 and math.isfinite(reported) and reported != 0:
        return False
    return True


def correction_for(group: OrderGroup, result: ReconciliationResult) -> CellCorrection | None:
    if not should_correct(result):
        return None
    for row in group.rows:
        column = row.column("total")
        if column is None or is_blank(row.get(column)):
            continue
        return CellCorrection(
            sheet=row.sheet,
            cell=row.cell_address(column),
            old_value=row.get(column),
            new_value=round(result.expected_total, CORRECTION_DECIMALS),
            order=result.order,
            column=column,
            row_index=row.row_index,
        )
    return None


def plan_corrections(
    groups: Iterable[OrderGroup],
    results: Sequence[ReconciliationResult],
) -> list[CellCorrection]:
    """Pair groups with results by order key, in result order."""
    by_key = {group.key: group for group in groups}
    corrections = []
    for result in results:
        group = by_key.get(result.order_key)
        if group is None:
            continue
        correction = correction_for(group, result)
        if correction is not None:
            corrections.append(correction)
    return corrections


def apply_corrections(data: bytes, filename: str, corrections: Iterable[CellCorrection]) -> bytes:
    """Return new workbook bytes with only the corrected cells rewritten."""
    from openpyxl import load_workbook

    suffix = Path(filename).suffix.lower()
    if suffix not in OOXML_FORMATS:
        raise ParseError(filename, f"write-back supports {', '.join(sorted(OOXML_FORMATS))} only, not '{suffix}'")
    try:
        book = load_workbook(io.BytesIO(data), keep_vba=suffix == ".xlsm")
    except Exception as exc:
        raise ParseError(filename, str(exc)) from exc

    for correction in corrections:
        if correction.sheet not in book.sheetnames:
            raise ParseError(filename, f"sheet '{correction.sheet}' not found for cell {correction.cell}")
        book[correction.sheet][correction.cell].value = correction.new_value

    buffer = io.BytesIO()
    book.save(buffer)
    return buffer.getvalue()


def write_corrected_workbook(
    source_path: Path,
    output_path: Path,
    corrections: Iterable[CellCorrection],
) -> Path:
    source_path = Path(source_path)
    output_path = Path(output_path)
    patched = apply_corrections(source_path.read_bytes(), source_path.name, corrections)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.stem}.", suffix=output_path.suffix, dir=str(output_path.parent))
    os.close(fd)
    temp_path = Path(tmp_name)
    try:
        temp_path.write_bytes(patched)
        os.replace(temp_path, output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
    return output_path
