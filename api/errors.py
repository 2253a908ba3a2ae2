"""
Translation of order workflow errors into HTTP responses.

Buyers get plain-language messages; configuration and feed failures are
phrased generically for them. Admin endpoints pass the full error text
(product ids, quantities, upstream messages) through.
"""

import logging

from fastapi import HTTPException

from domain.errors import (
    ConfigurationError,
    DeliveryNotAvailableError,
    InsufficientStockError,
    InvalidStateTransitionError,
    OrderCodeConflictError,
    OrderNotFoundError,
    OrderSystemError,
    ResponseFormatError,
    StockUnavailableError,
    StorageError,
    UpstreamConnectivityError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (OrderNotFoundError, 404),
    (StockUnavailableError, 409),
    (InsufficientStockError, 409),
    (InvalidStateTransitionError, 409),
    (OrderCodeConflictError, 409),
    (DeliveryNotAvailableError, 409),
    (UpstreamConnectivityError, 502),
    (ResponseFormatError, 502),
    (ConfigurationError, 503),
    (StorageError, 503),
)

_BUYER_MESSAGES = {
    ConfigurationError: "The payment system is temporarily unavailable. Please try again later.",
    StorageError: "We could not save your request. Please try again.",
    UpstreamConnectivityError: "Could not reach the payment system. Please try again in a moment.",
    ResponseFormatError: "Could not reach the payment system. Please try again in a moment.",
}


def to_http_error(error: Exception, *, admin: bool = False) -> HTTPException:
    """Map a domain error (or ValueError) to an HTTPException."""

    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))

    if not isinstance(error, OrderSystemError):
        raise TypeError(f"Unsupported error type: {type(error).__name__}") from error

    status_code = 500
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error("Order request failed", extra={"error_type": type(error).__name__, "error": str(error)})

    if admin:
        return HTTPException(status_code=status_code, detail=str(error))

    for error_type, message in _BUYER_MESSAGES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=message)
    return HTTPException(status_code=status_code, detail=str(error))
