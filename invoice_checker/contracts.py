"""
Shared versioned contracts for invoice-checker outputs.

Each contract names the list its payload carries and the fields of one record
in that list, so consumers can check a report before reading it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

CONTRACT_VERSIONS = {
    "invoice_checker.check": "1.0.0",
    "invoice_checker.corrections": "1.0.0",
    "invoice_checker.orders": "1.0.0",
}

RESULT_FIELDS = (
    "order",
    "order_key",
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
    "pricing_detail",
    "warnings",
)

CORRECTION_FIELDS = ("sheet", "cell", "old_value", "new_value", "order", "column", "row_index")

# Remote orders are passed through as fetched; only these keys are relied on.
ORDER_FIELDS = ("name", "lineItems")

CONTRACT_SCHEMAS = {
    "invoice_checker.check": {
        "description": "Per-order total and line-item reconciliation of a ledger workbook.",
        "records": "results",
        "fields": RESULT_FIELDS,
    },
    "invoice_checker.corrections": {
        "description": "Total cells to overwrite with the expected order total.",
        "records": "corrections",
        "fields": CORRECTION_FIELDS,
    },
    "invoice_checker.orders": {
        "description": "Remote store orders cached for offline matching.",
        "records": "orders",
        "fields": ORDER_FIELDS,
    },
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, Any]:
    version = CONTRACT_VERSIONS[name]
    schema = CONTRACT_SCHEMAS[name]
    return {
        "name": name,
        "version": version,
        "description": schema["description"],
        "records": schema["records"],
        "record_fields": list(schema["fields"]),
    }


def missing_record_fields(name: str, records: Iterable[Mapping[str, Any]]) -> list[str]:
    """Contract fields absent from at least one record, in contract order."""
    fields = CONTRACT_SCHEMAS[name]["fields"]
    missing = {key for record in records for key in fields if key not in record}
    return [key for key in fields if key in missing]


def build_run_summary(
    *,
    tool: str,
    command: str,
    input_paths: dict[str, Path | str | None],
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": tool,
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_files": {role: (str(path) if path else None) for role, path in input_paths.items()},
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
