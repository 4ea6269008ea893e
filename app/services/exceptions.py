"""Errors raised by the stock ledger.

Each error carries the HTTP status the API answers with, so routers can let
them propagate to the handler registered in ``app.main``.
"""


class StockLedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(StockLedgerError):
    """A required inventory row or stock transfer does not exist."""

    status_code = 404


class InsufficientStockError(StockLedgerError):
    """Requested quantity exceeds what is on hand at the location."""

    status_code = 409

    def __init__(self, message: str, available: int = 0, requested: int = 0):
        super().__init__(message)
        self.available = available
        self.requested = requested


class ValidationError(StockLedgerError):
    status_code = 422


class PersistenceError(StockLedgerError):
    """Wraps a database failure that is not one of the above."""

    status_code = 500
