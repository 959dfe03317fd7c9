"""Exception taxonomy for the exchange-rate engine and its HTTP mapping.

Resolution and validation errors propagate to callers as typed failures;
``LedgerWriteError`` is raised by the data layer and swallowed (after logging)
by the conversion engine.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette import status
import logging

logger = logging.getLogger("payroll_fx.errors")


class CurrencyError(Exception):
    """Base class for all engine errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "currency_error"


class ValidationError(CurrencyError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class RateConflictError(ValidationError):
    status_code = status.HTTP_409_CONFLICT
    code = "rate_conflict"


class RateNotFoundError(CurrencyError):
    """No direct, inverse or triangulated rate exists. Not retryable."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "rate_not_found"

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(
            f"Exchange rate not found for {from_currency} to {to_currency}"
        )


class RateRecordNotFoundError(CurrencyError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, rate_id: int):
        self.rate_id = rate_id
        super().__init__(f"Exchange rate {rate_id} not found")


class ConfigurationError(CurrencyError):
    code = "configuration_error"


class LedgerWriteError(CurrencyError):
    code = "ledger_write_failed"


def currency_error_handler(request: Request, exc: CurrencyError):  # type: ignore
    if exc.status_code >= 500:
        logger.error("currency error", exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": str(exc)},
    )


def http_error_handler(request: Request, exc):  # type: ignore
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "not_found",
                "detail": f"No route for {request.method} {request.url.path}",
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "http_error", "detail": exc.detail},
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "detail": "An unexpected error occurred.",
        },
    )
