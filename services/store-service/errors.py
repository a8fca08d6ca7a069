"""Domain errors raised by the store services."""
from typing import Optional
from fastapi import HTTPException


class StoreError(Exception):
    """Base class for store domain errors."""


class NotFoundError(StoreError):
    """A product, variant or order does not exist."""


class ValidationError(StoreError):
    """Malformed or disallowed input."""


class InsufficientStockError(StoreError):
    """Requested quantity exceeds the stock available."""

    def __init__(self, message: str, variant_id: Optional[int] = None):
        super().__init__(message)
        self.variant_id = variant_id


class InvalidSignatureError(StoreError):
    """Payment provider signature did not verify."""


class ConcurrencyConflictError(StoreError):
    """A conditional stock update lost a race with another writer."""

    def __init__(self, message: str, variant_id: Optional[int] = None):
        super().__init__(message)
        self.variant_id = variant_id


STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 400,
    InsufficientStockError: 400,
    InvalidSignatureError: 400,
    ConcurrencyConflictError: 409,
}


def to_http_exception(error: StoreError) -> HTTPException:
    """Translate a domain error into the HTTP error returned to clients."""
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail="Internal error")
