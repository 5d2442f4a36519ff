"""Map settlement and protean errors onto HTTP responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, TransactionError, ValidationError

from settlement.exceptions import (
    Contention,
    InsufficientStock,
    InvalidTransition,
    InvalidVariant,
    LedgerIntegrityError,
    PaymentPending,
    RuleNotFound,
    SettlementError,
)

logger = structlog.get_logger(__name__)

_STATUS_CODES = {
    InvalidVariant: 422,
    InsufficientStock: 409,
    InvalidTransition: 409,
    PaymentPending: 409,
    Contention: 503,
    RuleNotFound: 503,
    LedgerIntegrityError: 500,
}


def status_code_for(exc: SettlementError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in _STATUS_CODES:
            return _STATUS_CODES[error_type]
    return 400


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500 and not exc.retryable:
        logger.error("Request failed", path=request.url.path, error=type(exc).__name__, **exc.context)
    else:
        logger.info("Request rejected", path=request.url.path, error=type(exc).__name__, status_code=status_code)

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("Request rejected", path=request.url.path, error="ValidationError", status_code=422)
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "message": "Invalid request", "context": exc.messages},
    )


async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    message = exc.args[0] if exc.args else "Not found"
    return JSONResponse(status_code=404, content={"error": "NotFound", "message": str(message)})


async def version_conflict_handler(request: Request, exc: ExpectedVersionError) -> JSONResponse:
    logger.warning("Concurrent update conflict", path=request.url.path, detail=str(exc))
    return JSONResponse(
        status_code=503,
        content={"error": "Contention", "message": "Concurrent update, retry the request", "retryable": True},
        headers={"Retry-After": "1"},
    )


async def transaction_error_handler(request: Request, exc: TransactionError) -> JSONResponse:
    logger.error("Transaction failed", path=request.url.path, detail=str(exc))
    return JSONResponse(status_code=500, content={"error": "TransactionError", "message": "Transaction failed"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SettlementError, settlement_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)
    app.add_exception_handler(ExpectedVersionError, version_conflict_handler)
    app.add_exception_handler(TransactionError, transaction_error_handler)
