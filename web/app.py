#!/usr/bin/env python3
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st

from invoice_checker.config import DEFAULT_STORE, KNOWN_STORES, STORE_ROUTING, ReconConfig
from invoice_checker.corrections import apply_corrections
from invoice_checker.errors import InvoiceCheckerError
from invoice_checker.grouping import group_by_order
from invoice_checker.matching import RemoteCatalog, routed_stores
from invoice_checker.pipeline import RunReport, run_reconciliation
from invoice_checker.quotation import build_price_book
from invoice_checker.remote import ShopifyOrderSource, fetch_catalog, orders_from_payload
from invoice_checker.reporter import corrections_frame, results_frame, sort_results
from invoice_checker.workbook import ALL_FORMATS, OOXML_FORMATS, read_workbook

UPLOAD_TYPES = sorted(ext.lstrip(".") for ext in ALL_FORMATS)
STORE_OPTIONS = list(KNOWN_STORES) + sorted(set(STORE_ROUTING.values()) - set(KNOWN_STORES))
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def ensure_state() -> None:
    st.session_state.setdefault("run", None)
    st.session_state.setdefault("ledger_name", None)
    st.session_state.setdefault("ledger_bytes", None)
    st.session_state.setdefault("messages", [])


@st.cache_resource(show_spinner=False)
def order_source() -> ShopifyOrderSource:
    return ShopifyOrderSource()


def store_from_filename(name: str) -> Optional[str]:
    """``orders-cellumove_de.json`` → ``cellumove_de``."""
    stem = Path(name).stem.lower()
    if stem.startswith("orders-"):
        stem = stem[len("orders-"):]
    return stem if stem in STORE_OPTIONS else None


def catalog_from_uploads(uploads, messages: list[str]) -> RemoteCatalog:
    catalog = RemoteCatalog()
    for upload in uploads or []:
        store = store_from_filename(upload.name)
        try:
            payload = json.loads(upload.getvalue().decode("utf-8"))
            if store is None and isinstance(payload, dict):
                store = str(payload.get("store") or "").strip().lower() or None
            if store is None:
                messages.append(f"{upload.name}: name the file orders-<store>.json so its store is known")
                continue
            catalog.add_orders(store, orders_from_payload(payload, upload.name))
        except (UnicodeDecodeError, json.JSONDecodeError, InvoiceCheckerError) as exc:
            messages.append(f"{upload.name}: {exc}")
    return catalog


def execute_run(ledger_upload, quotation_upload, order_uploads, default_store: str, live_fetch: bool) -> None:
    messages: list[str] = []
    config = ReconConfig(default_store=default_store)
    try:
        ledger = read_workbook(ledger_upload.getvalue(), ledger_upload.name)
        quotation = read_workbook(quotation_upload.getvalue(), quotation_upload.name)
    except (InvoiceCheckerError, ImportError) as exc:
        st.session_state["run"] = None
        st.session_state["messages"] = [str(exc)]
        return

    catalog = catalog_from_uploads(order_uploads, messages)
    if live_fetch:
        groups = group_by_order(ledger.rows()).groups.values()
        wanted = [store for store in routed_stores((group.rows for group in groups), default_store) if store not in catalog.orders]
        if wanted:
            with st.spinner(f"Fetching Shopify orders for {', '.join(wanted)}"):
                fetch_catalog(order_source(), wanted, catalog=catalog)

    st.session_state["run"] = run_reconciliation(ledger, build_price_book(quotation, config), catalog, config)
    st.session_state["ledger_name"] = ledger_upload.name
    st.session_state["ledger_bytes"] = ledger_upload.getvalue()
    st.session_state["messages"] = messages


def filter_by_order(frame: pd.DataFrame, query: str) -> pd.DataFrame:
    digits = "".join(ch for ch in query if ch.isdigit())
    if not digits:
        return frame
    return frame[frame["order"].astype(str).str.contains(digits, regex=False)]


def render_order_rows(run: RunReport, order_label: str) -> None:
    result = next((item for item in run.results if item.order == order_label), None)
    if result is None:
        return
    group = run.groups.get(result.order_key)
    if group is None:
        return
    corrected = {(c.sheet, c.row_index): c for c in run.corrections if c.order == result.order}
    original_rows = []
    corrected_rows = []
    for row in group.rows:
        values = {"sheet": row.sheet, "row": row.row_index, **row.values}
        original_rows.append(values)
        patched = dict(values)
        correction = corrected.get((row.sheet, row.row_index))
        if correction is not None:
            patched[correction.column] = correction.new_value
        corrected_rows.append(patched)

    left, right = st.columns(2)
    with left:
        st.caption("Original rows")
        st.dataframe(pd.DataFrame(original_rows).astype(str), width="stretch", hide_index=True)
    with right:
        st.caption("Corrected rows")
        st.dataframe(pd.DataFrame(corrected_rows).astype(str), width="stretch", hide_index=True)
    if result.pricing_detail:
        st.info("Price list: " + "; ".join(result.pricing_detail))
    for warning in result.warnings:
        st.warning(warning)


def render_run(run: RunReport) -> None:
    metrics = st.columns(4)
    metrics[0].metric("Orders checked", len(run.results))
    metrics[1].metric("Total mismatches", len(run.mismatches))
    metrics[2].metric("Shopify matches", sum(1 for item in run.results if item.match_status == "match"))
    metrics[3].metric("Corrections", len(run.corrections))

    for warning in run.warnings:
        st.warning(warning)

    direction = st.radio("Sort by order number", options=["asc", "desc"], horizontal=True, key="sort_input")
    query = st.text_input("Search order number", key="search_input")
    frame = filter_by_order(results_frame(sort_results(run.results, direction)), query)
    st.subheader("Results")
    st.dataframe(frame, width="stretch", hide_index=True)

    if not frame.empty:
        selected = st.selectbox("Inspect order", options=list(frame["order"]), key="inspect_input")
        if selected:
            render_order_rows(run, selected)

    st.subheader("Cell corrections")
    if not run.corrections:
        st.info("No corrections proposed.")
        return
    st.dataframe(corrections_frame(run.corrections), width="stretch", hide_index=True)

    ledger_name = st.session_state.get("ledger_name") or "ledger.xlsx"
    if Path(ledger_name).suffix.lower() not in OOXML_FORMATS:
        st.caption("Corrected workbooks can only be downloaded for .xlsx/.xlsm ledgers.")
        return
    try:
        patched = apply_corrections(st.session_state["ledger_bytes"], ledger_name, run.corrections)
    except InvoiceCheckerError as exc:
        st.error(str(exc))
        return
    st.download_button(
        "Download corrected workbook",
        data=patched,
        file_name=f"{Path(ledger_name).stem}-corrected{Path(ledger_name).suffix}",
        mime=XLSX_MIME,
        width="stretch",
    )


def main() -> None:
    st.set_page_config(page_title="invoice-checker", layout="wide", initial_sidebar_state="collapsed")
    ensure_state()

    st.title("invoice-checker")
    st.caption("Upload the supplier ledger and the quotation workbook, add Shopify orders, and review totals and items per order.")

    left, right = st.columns(2)
    with left:
        ledger_upload = st.file_uploader("Ledger workbook", type=UPLOAD_TYPES, key="ledger_input")
        quotation_upload = st.file_uploader("Quotation workbook", type=UPLOAD_TYPES, key="quotation_input")
    with right:
        order_uploads = st.file_uploader(
            "Shopify orders JSON (orders-<store>.json)",
            type=["json"],
            accept_multiple_files=True,
            key="orders_input",
        )
        default_store = st.selectbox(
            "Default store",
            options=STORE_OPTIONS,
            index=STORE_OPTIONS.index(DEFAULT_STORE),
            key="store_input",
        )
        live_fetch = st.checkbox("Fetch missing stores from Shopify", key="fetch_input")

    submit = st.button("Run check", type="primary", width="stretch", disabled=not (ledger_upload and quotation_upload))
    if submit and ledger_upload and quotation_upload:
        execute_run(ledger_upload, quotation_upload, order_uploads, default_store, live_fetch)

    for message in st.session_state.get("messages") or []:
        st.error(message)

    run = st.session_state.get("run")
    if run is None:
        st.info("Supported here: " + " ".join(f".{ext}" for ext in UPLOAD_TYPES))
        return
    render_run(run)


if __name__ == "__main__":
    main()
