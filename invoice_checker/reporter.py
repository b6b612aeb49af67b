"""
Report payloads and renderings for a reconciliation run.

    build_check_report(run, ...)         → dict for report.json (contract invoice_checker.check)
    build_corrections_summary(run, ...)  → dict for corrections.json
    results_frame(results)               → pandas DataFrame for tables
    render_text(payload)                 → plain-text summary for the terminal
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Iterable, Sequence

import pandas as pd

from invoice_checker import __version__ as TOOL_VERSION
from invoice_checker.canonical import order_key
from invoice_checker.contracts import build_contract, build_run_summary
from invoice_checker.corrections import CellCorrection
from invoice_checker.pipeline import RunReport
from invoice_checker.reconcile import ReconciliationResult

RESULT_COLUMNS = [
    "order",
    "store",
    "country",
    "base_total",
    "upsell_total",
    "expected_total",
    "reported_total",
    "difference",
    "status",
    "items_compared",
    "match_status",
    "quoted_total",
]

MAX_TEXT_ROWS = 25


def _order_number(result: ReconciliationResult) -> int:
    key = result.order_key or order_key(result.order)
    return int(key) if key else 0


def sort_results(results: Iterable[ReconciliationResult], direction: str = "asc") -> list[ReconciliationResult]:
    """Sort by numeric order number; orders without digits sort as 0."""
    if direction not in {"asc", "desc"}:
        raise ValueError(f"Unknown sort direction: {direction}")
    return sorted(results, key=_order_number, reverse=direction == "desc")


def results_frame(results: Sequence[ReconciliationResult]) -> pd.DataFrame:
    frame = pd.DataFrame([result.to_dict() for result in results], columns=RESULT_COLUMNS + ["pricing_detail", "warnings"])
    frame["pricing_detail"] = frame["pricing_detail"].apply(lambda notes: "; ".join(notes or []))
    frame["warnings"] = frame["warnings"].apply(lambda notes: "; ".join(notes or []))
    return frame


def corrections_frame(corrections: Sequence[CellCorrection]) -> pd.DataFrame:
    return pd.DataFrame(
        [correction.to_dict() for correction in corrections],
        columns=["order", "sheet", "cell", "column", "old_value", "new_value", "row_index"],
    )


def run_status(run: RunReport) -> str:
    if run.partial and run.store_failures:
        return "partial"
    if run.mismatches:
        return "mismatches_found"
    return "ok"


def build_check_report(
    run: RunReport,
    *,
    ledger_path: Path,
    quotation_path: Path,
    output_path: Path | None = None,
    sort: str = "asc",
) -> dict[str, Any]:
    contract = build_contract("invoice_checker.check")
    results = sort_results(run.results, sort)
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "ledger": Path(ledger_path).name,
        "quotation": Path(quotation_path).name,
        "results": [result.to_dict() for result in results],
        "corrections": [correction.to_dict() for correction in run.corrections],
        "run_summary": build_run_summary(
            tool="invoice-checker",
            command="check",
            input_paths={"ledger": ledger_path, "quotation": quotation_path},
            status=run_status(run),
            output_path=output_path,
            metrics=run.metrics(),
            warnings=run.warnings,
        ),
    }


def build_corrections_summary(
    run: RunReport,
    *,
    ledger_path: Path,
    quotation_path: Path,
    output_path: Path | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    contract = build_contract("invoice_checker.corrections")
    metrics = run.metrics()
    metrics["dry_run"] = dry_run
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "ledger": Path(ledger_path).name,
        "corrections": [correction.to_dict() for correction in run.corrections],
        "run_summary": build_run_summary(
            tool="invoice-checker",
            command="correct",
            input_paths={"ledger": ledger_path, "quotation": quotation_path},
            status=run_status(run),
            output_path=None if dry_run else output_path,
            metrics=metrics,
            warnings=run.warnings,
        ),
    }


def _money(value) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "-"
    return f"{value:.2f}"


def render_text(payload: dict[str, Any]) -> str:
    summary = payload.get("run_summary", {})
    metrics = summary.get("metrics", {})
    lines = [
        "invoice-checker check",
        f"Ledger: {payload.get('ledger', '[unknown]')}",
        f"Quotation: {payload.get('quotation', '[unknown]')}",
        f"Status: {summary.get('status', '[unknown]')}",
        f"Orders checked: {metrics.get('orders_checked', 0)}",
        f"Total mismatches: {metrics.get('total_mismatches', 0)}",
        f"Corrections proposed: {metrics.get('corrections', 0)}",
    ]
    match_counts = metrics.get("match_status") or {}
    if match_counts:
        lines.append("Order match: " + ", ".join(f"{status}={count}" for status, count in match_counts.items()))

    mismatched = [result for result in payload.get("results", []) if result.get("status") == "mismatch"]
    if mismatched:
        lines.append("")
        lines.append("Mismatched totals:")
        for result in mismatched[:MAX_TEXT_ROWS]:
            lines.append(
                f"  {result['order']}: expected {_money(result['expected_total'])}, "
                f"reported {_money(result['reported_total'])}, "
                f"difference {_money(result['difference'])} [{result['match_status']}]"
            )
        if len(mismatched) > MAX_TEXT_ROWS:
            lines.append(f"  ... {len(mismatched) - MAX_TEXT_ROWS} more")

    warnings = summary.get("warnings") or []
    if warnings:
        lines.append("")
        lines.append(f"Warnings ({len(warnings)}):")
        lines.extend(f"  - {warning}" for warning in warnings[:MAX_TEXT_ROWS])
        if len(warnings) > MAX_TEXT_ROWS:
            lines.append(f"  ... {len(warnings) - MAX_TEXT_ROWS} more")
    return "\n".join(lines)
