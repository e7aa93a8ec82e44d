from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orderdesk.services.exceptions import (
    AccessDenied,
    BusinessRuleViolation,
    ConcurrencyConflict,
    DuplicateSku,
    InsufficientStock,
    InvalidTransition,
    NegativeStockRejected,
    OrderDeskError,
    OrderNotFound,
    ProductLocked,
    ProductNotFound,
)

logger = logging.getLogger(__name__)

# premier match gagne
STATUS_BY_ERROR: tuple[tuple[type[OrderDeskError], int], ...] = (
    (OrderNotFound, 404),
    (ProductNotFound, 404),
    (AccessDenied, 403),
    (InvalidTransition, 409),
    (ConcurrencyConflict, 409),
    (DuplicateSku, 409),
    (ProductLocked, 409),
)


def status_for(exc: OrderDeskError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _str(value) -> str:
    return str(getattr(value, "value", value))


def error_body(exc: OrderDeskError) -> dict:
    body = {
        "error": type(exc).__name__,
        "detail": exc.message,
        "retryable": exc.retryable,
    }
    if isinstance(exc, InsufficientStock):
        body.update(product_id=exc.product_id, available=str(exc.available), required=str(exc.required))
    elif isinstance(exc, NegativeStockRejected):
        body.update(product_id=exc.product_id, current=str(exc.current), delta=str(exc.delta))
    elif isinstance(exc, InvalidTransition):
        body.update(current=_str(exc.current), attempted=_str(exc.attempted))
    elif isinstance(exc, BusinessRuleViolation):
        body.update(issues=exc.issues)
    return body


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OrderDeskError)
    async def orderdesk_error_handler(request: Request, exc: OrderDeskError):
        status_code = status_for(exc)
        logger.warning("%s %s -> %s %s", request.method, request.url.path, status_code, exc.message)
        return JSONResponse(content=error_body(exc), status_code=status_code)
