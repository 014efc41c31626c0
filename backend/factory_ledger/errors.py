# Overview: Domain error taxonomy shared by the stock, sales, and sync services.

"""
Every error raised by the ledger core carries a stable machine code and the
HTTP status the boundary layer maps it to. Routes serialize them with
to_dict(); services never catch them just to re-raise.
"""

from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for all business-rule failures."""
    code = "ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class InsufficientStock(StockLedgerError):
    """A movement or sale would drive a balance below zero."""
    code = "INSUFFICIENT_STOCK"
    http_status = 422


class PriceNotAllowed(StockLedgerError):
    """The price offer is not usable by this role in this channel."""
    code = "PRICE_NOT_ALLOWED"
    http_status = 403


class ValidationError(StockLedgerError):
    """Structural problem with a request (bad pairing, missing field, ...)."""
    code = "VALIDATION_ERROR"
    http_status = 422


class AlreadyCancelled(StockLedgerError):
    code = "ALREADY_CANCELLED"
    http_status = 409


class ConflictDetected(StockLedgerError):
    """Offline transaction could not be reconciled and was queued for review."""
    code = "CONFLICT_DETECTED"
    http_status = 409

    def __init__(self, message: str, queue_id: int | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.queue_id = queue_id


class PermissionDenied(StockLedgerError):
    code = "FORBIDDEN"
    http_status = 403


class NotFound(StockLedgerError):
    code = "NOT_FOUND"
    http_status = 404
