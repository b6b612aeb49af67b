"""Order reconciliation for ledger, quotation and Shopify order data."""

__version__ = "0.1.0"
