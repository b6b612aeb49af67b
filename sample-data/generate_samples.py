#!/usr/bin/env python3
"""
Generates a matching set of sample inputs for invoice-checker.

Run from the repo root:
    python sample-data/generate_samples.py [OUTPUT_DIR]

Files written (default: sample-data/):
  ledger.xlsx
    Sheet "Trackings"
      - #1001 two rows, Total repeated on both rows (ok, matches Shopify)
      - #1002 Total 50 vs Cost 40 (mismatch, correction to 40 at K4)
      - #1003 ok total, Shopify has 2 leggings instead of 1 (item mismatch)
      - #1004 no Cost/Upsell but Total 25 (mismatch, no correction)
      - #1005 ok total, missing from Shopify (not-found)
    Sheet "Archive"
      - exact copy of the first #1001 row (collapsed as a duplicate)
      - #1006 for "Cellumove (DE)" (routes to cellumove_de, never loaded)
  quotation.xlsx
    Sheet "Quotation" and "QTY=1-5" with per-country Total/Upsell columns,
    one header carrying a line break ("Total to\\nFR")
  orders-bloomommy.json
    Shopify orders for #1001-#1004, with an e-book add-on and a removed line
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import openpyxl

DEFAULT_OUTPUT = Path(__file__).parent

LEDGER_HEADERS = ["Store", "Order#", "Country", "Tracking", "Carrier", "SKU", "Item", "QTY", "Cost", "Upsell", "Total"]

LEDGER_ROWS = [
    ["Bloomommy", "#1001", "FR", "LX100FR", "La Poste", "CE001", "CE001-BLACK/M", 1, 20, 0, 35],
    ["Bloomommy", "#1001", "FR", "LX100FR", "La Poste", "CE002", "CE002-NUDE/S", 1, 0, 15, 35],
    ["Bloomommy", "#1002", "DE", "LX200DE", "DHL", "CE001", "CE001-BLACK/L", 2, 40, 0, 50],
    ["Bloomommy", "#1003", "GB", "LX300GB", "Royal Mail", "CE001", "CE001-GREY/M", 1, 20, 0, 20],
    ["Bloomommy", "#1004", "ES", "LX400ES", "Correos", "CE002", "CE002-NUDE/M", 1, 0, 0, 25],
    ["Bloomommy", "#1005", "FR", "LX500FR", "La Poste", "CE001", "CE001-BLACK/S", 1, 20, 0, 20],
]

ARCHIVE_ROWS = [
    LEDGER_ROWS[0],
    ["Cellumove (DE)", "#1006", "DE", "LX600DE", "DHL", "CE002", "CE002-NUDE/L", 1, 0, 15, 15],
]

QUOTATION_HEADERS = [
    "SKU",
    "Item name",
    "QTY",
    "Total to\nFR",
    "Upsell to FR",
    "Total to DE",
    "Upsell to DE",
    "Total to GB",
    "Upsell to GB",
    "Total to ES",
    "Upsell to ES",
]

QUOTATION_ROWS = [
    ["CE001", "Sculpt Legging", 1, 20, 8, 20, 8, 20, 8, 20, 8],
    ["CE001", "Sculpt Legging", 2, 40, 16, 40, 16, 40, 16, 40, 16],
    ["CE002", "Comfort Sleeves", 1, 15, 15, 15, 15, 15, 15, 15, 15],
]

TIER_ROWS = [
    ["CE001", "Sculpt Legging", 1, 20, 8, 20, 8, 20, 8, 20, 8],
    ["CE001", "Sculpt Legging", 2, 40, 16, 40, 16, 40, 16, 40, 16],
]

ORDERS = [
    {
        "name": "#1001",
        "billingAddress": {"country": "France"},
        "customer": {"firstName": "Ana", "lastName": "Petit"},
        "lineItems": {
            "edges": [
                {"node": {"title": "Sculpt Leggings – Bloomommy", "quantity": 1, "fulfillmentStatus": "FULFILLED", "fulfillableQuantity": 0}},
                {"node": {"title": "Comfort Sleeve", "quantity": 1, "fulfillmentStatus": "FULFILLED", "fulfillableQuantity": 0}},
            ]
        },
    },
    {
        "name": "#1002",
        "billingAddress": {"country": "Germany"},
        "customer": {"firstName": "Jonas", "lastName": "Weber"},
        "lineItems": [
            {"title": "Sculpt Leggings", "quantity": 2},
            {"title": "Postpartum E-book", "quantity": 1},
        ],
    },
    {
        "name": "#1003",
        "billingAddress": {"country": "United Kingdom"},
        "customer": {"firstName": "Emma", "lastName": "Hall"},
        "lineItems": [
            {"title": "Sculpt Leggings", "quantity": 2, "fulfillmentStatus": "FULFILLED", "fulfillableQuantity": 0},
            {"title": "Comfort Sleeves", "quantity": 1, "currentQuantity": 0},
        ],
    },
    {
        "name": "#1004",
        "billingAddress": {"country": "Spain"},
        "customer": {"firstName": "Lucia", "lastName": "Diaz"},
        "lineItems": [{"title": "Comfort Sleeves", "quantity": 1}],
    },
]


def write_sheet(ws, headers: list, rows: list) -> None:
    ws.append(headers)
    for row in rows:
        ws.append(row)


def generate(output_dir: Path = DEFAULT_OUTPUT) -> dict[str, Path]:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "ledger": output_dir / "ledger.xlsx",
        "quotation": output_dir / "quotation.xlsx",
        "orders": output_dir / "orders-bloomommy.json",
    }

    ledger = openpyxl.Workbook()
    trackings = ledger.active
    trackings.title = "Trackings"
    write_sheet(trackings, LEDGER_HEADERS, LEDGER_ROWS)
    write_sheet(ledger.create_sheet("Archive"), LEDGER_HEADERS, ARCHIVE_ROWS)
    ledger.save(paths["ledger"])

    quotation = openpyxl.Workbook()
    default_sheet = quotation.active
    default_sheet.title = "Quotation"
    write_sheet(default_sheet, QUOTATION_HEADERS, QUOTATION_ROWS)
    write_sheet(quotation.create_sheet("QTY=1-5"), QUOTATION_HEADERS, TIER_ROWS)
    quotation.save(paths["quotation"])

    paths["orders"].write_text(
        json.dumps({"store": "bloomommy", "orders": ORDERS}, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    return paths


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_OUTPUT
    for role, path in generate(target).items():
        print(f"Created {role}: {path}")
