from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from invoice_checker import __version__ as TOOL_VERSION
from invoice_checker.config import DEFAULT_STORE, AMOUNT_TOLERANCE, ReconConfig, output_stamp
from invoice_checker.contracts import build_contract, utc_now_iso
from invoice_checker.corrections import write_corrected_workbook
from invoice_checker.grouping import group_by_order
from invoice_checker.matching import RemoteCatalog, routed_stores
from invoice_checker.pipeline import RunReport, catalog_from_files, load_inputs, run_reconciliation
from invoice_checker.remote import ShopifyOrderSource, fetch_catalog
from invoice_checker.reporter import build_check_report, build_corrections_summary, render_text
from invoice_checker.workbook import OOXML_FORMATS, Workbook

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_MISMATCHES = 3
EXIT_PARTIAL = 6

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class InvoiceCheckerArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def timestamp_token() -> str:
    override = output_stamp()
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(stem: str) -> Path:
    return Path.cwd() / "invoice-checker-output" / f"{stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, stem: str) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(stem)


def write_text(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: ("1970-01-01T00:00:00Z" if key == "generated_at" else remove_generated_at(item))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def normalize_report_for_cli(payload: Any) -> Any:
    return remove_generated_at(payload)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def safe_output_path(explicit: Path | None, default_path: Path) -> Path:
    path = explicit or default_path
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.INFO
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


EXPLAIN_RULES = {
    "total_mismatch": {
        "description": "The order's reported Total differs from Cost + Upsell by more than 0.01.",
        "evidence": "Sum of positive Cost and Upsell cells across the order's rows vs. the resolved Total.",
        "auto_fixable": True,
        "disable_hint": "Fix the Cost/Upsell cells instead if the Total is the correct figure.",
    },
    "ambiguous_total": {
        "description": "An order's Total cells disagree, so the reported total had to be chosen.",
        "evidence": "An order warning tagged [ambiguous_total] lists the disagreeing Total cells and the value reported as closest to the expected total.",
        "auto_fixable": False,
        "disable_hint": "Repeat the order total on every row, or keep per-line totals only.",
    },
    "match_mismatch": {
        "description": "Ledger items and Shopify line items differ by product or quantity.",
        "evidence": "Sorted 'name||quantity' signatures from both sides are not equal.",
        "auto_fixable": False,
        "disable_hint": "Add an 'Item name' for the SKU in the quotation workbook if names differ only in wording.",
    },
    "match_not_found": {
        "description": "No Shopify order with the same order number exists in the routed store.",
        "evidence": "The first digit run of Order# matched no order name in the fetched orders.",
        "auto_fixable": False,
        "disable_hint": "Check the Store column routing or fetch more pages of orders.",
    },
    "match_source_error": {
        "description": "Orders for the routed store could not be fetched or were never loaded.",
        "evidence": "The remote fetch failed, or no --orders/--fetch input covered the store.",
        "auto_fixable": False,
        "disable_hint": "Provide --orders STORE=PATH or set the store's SHOPIFY credentials.",
    },
    "correction_skipped_zero_expected": {
        "description": "A mismatch was found but no correction is proposed because the expected total is 0.",
        "evidence": "Cost and Upsell are blank or zero while Total holds a non-zero amount.",
        "auto_fixable": False,
        "disable_hint": "Fill in the missing Cost/Upsell amounts; the Total is left untouched.",
    },
    "shared_quotation_column": {
        "description": "A destination country reads another country's quotation column.",
        "evidence": "Two country codes map to the same 'Total to' or 'Upsell to' header.",
        "auto_fixable": False,
        "disable_hint": "Add dedicated 'Total to <CC>' / 'Upsell to <CC>' columns to the quotation sheet.",
    },
    "duplicate_rows": {
        "description": "Identical ledger rows were counted once.",
        "evidence": "A run warning tagged [duplicate_rows] counts ledger rows identical on every dedupe column.",
        "auto_fixable": True,
        "disable_hint": "Remove repeated sheets or rows from the ledger export.",
    },
}


def add_input_arguments(command: argparse.ArgumentParser) -> None:
    command.add_argument("ledger", help="Ledger workbook (.xlsx, .xlsm, .xls, .ods, .csv, .tsv)")
    command.add_argument("quotation", help="Quotation workbook")
    command.add_argument("--orders", action="append", default=[], metavar="STORE=PATH", help="Orders JSON for a store (repeatable)")
    command.add_argument("--fetch", action="append", default=[], metavar="STORE", help="Fetch a store's orders from Shopify (repeatable)")
    command.add_argument("--fetch-routed", action="store_true", help="Fetch every store the ledger routes orders to")
    command.add_argument("--limit", type=int, default=0, help="Max orders per fetched store (0 = all)")
    command.add_argument("--max-pages", type=int, default=0, help="Max pages per fetched store (0 = all)")
    command.add_argument("--store", default=DEFAULT_STORE, help="Store for rows whose Store column does not route")
    command.add_argument("--tolerance", type=float, default=AMOUNT_TOLERANCE, help="Allowed total difference")
    command.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    command.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    command.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    command.add_argument("-v", "--verbose", action="store_true", help="More human logs")


def build_parser() -> argparse.ArgumentParser:
    parser = InvoiceCheckerArgumentParser(
        prog="invoice-checker",
        description="Reconcile ledger totals and items against quotations and Shopify orders.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Reconcile a ledger and write a report.")
    add_input_arguments(check)
    check.add_argument("--output", help="Explicit report output path")
    check.add_argument("--sort", choices=["asc", "desc"], default="asc", help="Order number sort direction")

    correct = subparsers.add_parser("correct", help="Write a copy of the ledger with corrected totals.")
    add_input_arguments(correct)
    correct.add_argument("--output", help="Explicit corrected workbook path")
    correct.add_argument("--json-summary", dest="json_summary", help="Explicit corrections summary path")
    correct.add_argument("--dry-run", action="store_true", help="Plan corrections without writing the workbook")

    orders = subparsers.add_parser("orders", help="Fetch a store's orders and save them as JSON.")
    orders.add_argument("store", help="Store key, e.g. bloomommy or cellumove_de")
    orders.add_argument("--limit", type=int, default=0, help="Max orders (0 = all)")
    orders.add_argument("--max-pages", type=int, default=0, help="Max pages (0 = all)")
    orders.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    orders.add_argument("--output", help="Explicit orders output path")
    orders.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    orders.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    orders.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    explain = subparsers.add_parser("explain", help="Explain a stable rule id.")
    explain.add_argument("rule_id", help="Rule identifier")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def parse_order_files(values: list[str]) -> dict[str, Path]:
    files: dict[str, Path] = {}
    for value in values:
        store, sep, raw_path = value.partition("=")
        if not sep or not store.strip() or not raw_path.strip():
            raise CliError(f"--orders expects STORE=PATH, got '{value}'", EXIT_COMMAND_ERROR)
        path = Path(raw_path.strip())
        if not path.exists():
            raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)
        files[store.strip().lower()] = path
    return files


def stores_to_fetch(args: argparse.Namespace, ledger: Workbook, loaded: list[str]) -> list[str]:
    stores = [store.strip().lower() for store in args.fetch if store.strip()]
    if args.fetch_routed:
        groups = group_by_order(ledger.rows()).groups.values()
        stores.extend(routed_stores((group.rows for group in groups), args.store))
    unique: list[str] = []
    for store in stores:
        if store not in unique and store not in loaded:
            unique.append(store)
    return unique


def prepare_run(args: argparse.Namespace) -> tuple[Path, Path, RunReport]:
    ledger_path = Path(args.ledger)
    quotation_path = Path(args.quotation)
    for path in (ledger_path, quotation_path):
        if not path.exists():
            raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)

    config = ReconConfig(tolerance=args.tolerance, default_store=args.store.strip().lower())
    ledger, price_book = load_inputs(ledger_path, quotation_path, config)
    order_files = parse_order_files(args.orders)
    catalog = catalog_from_files(order_files, RemoteCatalog())

    fetch = stores_to_fetch(args, ledger, list(order_files))
    if fetch:
        emit_human(f"Fetching orders for: {', '.join(fetch)}", quiet=args.quiet or args.json)
        fetch_catalog(ShopifyOrderSource(), fetch, catalog=catalog, limit=args.limit, max_pages=args.max_pages)

    return ledger_path, quotation_path, run_reconciliation(ledger, price_book, catalog, config)


def exit_code_for_run(run: RunReport, *, mismatches_fail: bool = True) -> int:
    if run.store_failures:
        return EXIT_PARTIAL
    if mismatches_fail and run.mismatches:
        return EXIT_MISMATCHES
    return EXIT_SUCCESS


def run_check(args: argparse.Namespace) -> int:
    try:
        ledger_path = Path(args.ledger)
        out_dir = determine_output_dir(args, ledger_path.stem)
        report_path = safe_output_path(Path(args.output) if args.output else None, out_dir / "report.json")
        ledger_path, quotation_path, run = prepare_run(args)
        payload = build_check_report(
            run,
            ledger_path=ledger_path,
            quotation_path=quotation_path,
            output_path=report_path,
            sort=args.sort,
        )
        payload = normalize_report_for_cli(payload)
        write_json(report_path, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_text(payload), quiet=args.quiet)
            emit_human(f"Report written: {report_path}", quiet=args.quiet)
        return exit_code_for_run(run)
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_correct(args: argparse.Namespace) -> int:
    try:
        ledger_path = Path(args.ledger)
        if ledger_path.suffix.lower() not in OOXML_FORMATS:
            raise CliError(
                f"Corrections can only be written to {', '.join(sorted(OOXML_FORMATS))} ledgers.",
                EXIT_COMMAND_ERROR,
            )
        out_dir = determine_output_dir(args, ledger_path.stem)
        default_output = out_dir / f"{ledger_path.stem}-corrected{ledger_path.suffix}"
        output_path = Path(args.output) if args.output else default_output
        summary_path = Path(args.json_summary) if args.json_summary else out_dir / "corrections.json"
        if not args.dry_run:
            safe_output_path(None, output_path)
            safe_output_path(None, summary_path)

        ledger_path, quotation_path, run = prepare_run(args)
        if not args.dry_run:
            write_corrected_workbook(ledger_path, output_path, run.corrections)
        summary = build_corrections_summary(
            run,
            ledger_path=ledger_path,
            quotation_path=quotation_path,
            output_path=output_path,
            dry_run=args.dry_run,
        )
        summary = normalize_report_for_cli(summary)
        if not args.dry_run:
            write_json(summary_path, summary)

        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(f"Corrections planned: {len(run.corrections)}", quiet=args.quiet)
            for correction in run.corrections:
                emit_human(
                    f"  {correction.sheet}!{correction.cell} ({correction.order}): "
                    f"{correction.old_value} -> {correction.new_value}",
                    quiet=args.quiet,
                )
            if args.dry_run:
                emit_human("Dry run: no files written", quiet=args.quiet)
            else:
                emit_human(f"Corrected workbook written: {output_path}", quiet=args.quiet)
                emit_human(f"Summary written: {summary_path}", quiet=args.quiet)
        return exit_code_for_run(run, mismatches_fail=False)
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_orders(args: argparse.Namespace) -> int:
    try:
        store = args.store.strip().lower()
        out_dir = determine_output_dir(args, f"orders-{store}")
        output_path = safe_output_path(Path(args.output) if args.output else None, out_dir / "orders.json")
        orders = ShopifyOrderSource().fetch_orders(store, limit=args.limit, max_pages=args.max_pages)
        payload = {
            "contract": build_contract("invoice_checker.orders"),
            "store": store,
            "count": len(orders),
            "generated_at": utc_now_iso(),
            "orders": orders,
        }
        payload = normalize_report_for_cli(payload)
        write_json(output_path, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(f"Fetched {len(orders)} orders for {store}", quiet=args.quiet)
            emit_human(f"Orders written: {output_path}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_explain(args: argparse.Namespace) -> int:
    rule = EXPLAIN_RULES.get(args.rule_id)
    if rule is None:
        eprint(f"Unknown rule id: {args.rule_id}")
        return EXIT_COMMAND_ERROR
    payload = {"rule_id": args.rule_id, **rule}
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Rule: {args.rule_id}",
                    f"What it does: {payload['description']}",
                    f"What triggers it: {payload['evidence']}",
                    f"Auto-fixable: {'yes' if payload['auto_fixable'] else 'no'}",
                    f"How to avoid it: {payload['disable_hint']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "check":
            return run_check(args)
        if args.command == "correct":
            return run_correct(args)
        if args.command == "orders":
            return run_orders(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
