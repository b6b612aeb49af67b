"""Error taxonomy shared by the engine, the remote order source and the CLI."""

from __future__ import annotations


class InvoiceCheckerError(ValueError):
    pass


class ParseError(InvoiceCheckerError):
    """A workbook or one of its worksheets could not be read."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"Could not read {source}: {message}")
        self.source = source


class MissingColumnError(InvoiceCheckerError):
    def __init__(self, column: str, sheet: str | None = None) -> None:
        where = f" in sheet '{sheet}'" if sheet else ""
        super().__init__(f"Column '{column}' not found{where}")
        self.column = column
        self.sheet = sheet


class RemoteLookupError(InvoiceCheckerError):
    def __init__(self, store: str, message: str, status: int | None = None) -> None:
        suffix = f" (HTTP {status})" if status else ""
        super().__init__(f"Remote orders for store '{store}' unavailable: {message}{suffix}")
        self.store = store
        self.status = status
