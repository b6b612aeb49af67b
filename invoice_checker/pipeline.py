"""
Reconciliation run: ledger workbook + price book + remote catalog → report.

``run_reconciliation`` is pure over its inputs. Anything that touches the
filesystem or the network happens before it, in ``load_inputs`` and the
catalog builders.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from invoice_checker.config import ReconConfig
from invoice_checker.corrections import CellCorrection, plan_corrections
from invoice_checker.errors import MissingColumnError, ParseError
from invoice_checker.grouping import OrderGroup, group_by_order
from invoice_checker.matching import SOURCE_ERROR, RemoteCatalog, match_order, route_store
from invoice_checker.quotation import PriceBook, build_price_book, country_column_warnings, quote_order
from invoice_checker.reconcile import (
    STATUS_MISMATCH,
    ReconciliationResult,
    ResultDraft,
    order_country,
    reconcile_totals,
)
from invoice_checker.remote import load_orders_file
from invoice_checker.workbook import Workbook, load_workbook_file


@dataclass
class RunReport:
    results: list[ReconciliationResult]
    corrections: list[CellCorrection]
    groups: dict[str, OrderGroup] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    store_failures: dict[str, str] = field(default_factory=dict)
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def mismatches(self) -> list[ReconciliationResult]:
        return [result for result in self.results if result.status == STATUS_MISMATCH]

    @property
    def partial(self) -> bool:
        return any(result.match_status == SOURCE_ERROR for result in self.results)

    def metrics(self) -> dict[str, Any]:
        match_counts = Counter(result.match_status for result in self.results)
        return {
            **self.stats,
            "orders_checked": len(self.results),
            "total_mismatches": len(self.mismatches),
            "match_status": dict(sorted(match_counts.items())),
            "corrections": len(self.corrections),
            "warnings": len(self.warnings),
            "stores_failed": sorted(self.store_failures),
        }


def run_reconciliation(
    ledger: Workbook,
    price_book: PriceBook,
    catalog: RemoteCatalog | None = None,
    config: ReconConfig | None = None,
) -> RunReport:
    config = config or ReconConfig()
    catalog = catalog or RemoteCatalog()
    warnings = list(ledger.warnings) + list(price_book.warnings)

    grouping = group_by_order(ledger.rows())
    warnings.extend(grouping.warnings)

    results: list[ReconciliationResult] = []
    countries: list[str] = []
    unloaded: list[str] = []
    skipped = 0
    for group in grouping.groups.values():
        try:
            totals = reconcile_totals(group, config.tolerance)
        except MissingColumnError as exc:
            warnings.append(f"Order {group.label}: {exc}; order skipped")
            skipped += 1
            continue

        draft = ResultDraft(group=group, totals=totals)
        draft.warnings.extend(totals.warnings)
        warnings.extend(f"Order {group.label}: {warning}" for warning in totals.warnings)
        draft.store = route_store(group.rows, config.default_store)
        outcome = match_order(group.rows, group.key, draft.store, catalog, price_book.sku_names)
        draft.match_status = outcome.status
        draft.items_compared = outcome.items_compared
        if outcome.status == SOURCE_ERROR:
            failure = catalog.failures.get(draft.store)
            if failure:
                draft.warnings.append(failure)
            else:
                draft.warnings.append(f"No orders loaded for store '{draft.store}'")
                if draft.store not in unloaded:
                    unloaded.append(draft.store)

        country = order_country(group.rows)
        if country and country not in countries:
            countries.append(country)
        quoted, notes = quote_order(group.rows, price_book, country)
        draft.quoted_total = quoted
        draft.pricing_detail.extend(notes)
        results.append(draft.freeze())

    warnings.extend(f"No orders loaded for store '{store}'" for store in unloaded)
    warnings.extend(catalog.failures[store] for store in sorted(catalog.failures))
    warnings.extend(country_column_warnings(price_book.country_columns, countries))

    return RunReport(
        results=results,
        corrections=plan_corrections(grouping.groups.values(), results),
        groups=grouping.groups,
        warnings=warnings,
        store_failures=dict(catalog.failures),
        stats={
            "ledger_rows": sum(len(sheet.rows) for sheet in ledger.sheets),
            "orders_found": len(grouping.groups),
            "orders_skipped": skipped,
            "duplicate_rows_removed": grouping.duplicates_removed,
            "rows_without_order": grouping.rows_without_order,
        },
    )


def load_ledger(path: Path) -> Workbook:
    ledger = load_workbook_file(path)
    if not ledger.sheets:
        detail = "; ".join(ledger.warnings) or "no readable worksheets"
        raise ParseError(Path(path).name, detail)
    return ledger


def load_inputs(
    ledger_path: Path,
    quotation_path: Path,
    config: ReconConfig | None = None,
) -> tuple[Workbook, PriceBook]:
    ledger = load_ledger(ledger_path)
    quotation = load_workbook_file(quotation_path)
    if not quotation.sheets:
        detail = "; ".join(quotation.warnings) or "no readable worksheets"
        raise ParseError(Path(quotation_path).name, detail)
    return ledger, build_price_book(quotation, config)


def catalog_from_files(order_files: Mapping[str, Path], catalog: RemoteCatalog | None = None) -> RemoteCatalog:
    catalog = catalog or RemoteCatalog()
    for store, path in order_files.items():
        catalog.add_orders(store, load_orders_file(path))
    return catalog
