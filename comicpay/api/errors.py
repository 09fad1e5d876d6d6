"""
Maps core errors to HTTP responses. Bodies are flat: {"error": <code>, ...}.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse

from comicpay.errors import (
    AccountNotFound,
    AuthError,
    CatalogUnavailable,
    ContentNotFound,
    CoreError,
    InsufficientCredits,
    InvalidAddress,
    InvalidAmount,
    MalformedMessage,
    RoleChangeForbidden,
    SessionInvalid,
    TxNotFound,
    VerificationError,
)

logger = logging.getLogger(__name__)

TX_RETRY_AFTER_SECONDS = 15


def error_status(exc: CoreError) -> int:
    if isinstance(exc, (MalformedMessage, InvalidAddress)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (AuthError, SessionInvalid)):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, TxNotFound):
        return status.HTTP_202_ACCEPTED
    if isinstance(exc, VerificationError):
        return 422
    if isinstance(exc, InsufficientCredits):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, (ContentNotFound, AccountNotFound)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (InvalidAmount, RoleChangeForbidden)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, CatalogUnavailable):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(exc: CoreError) -> JSONResponse:
    body = exc.to_dict()
    headers = None
    if isinstance(exc, TxNotFound):
        body["retryable"] = True
        headers = {"Retry-After": str(TX_RETRY_AFTER_SECONDS)}
    return JSONResponse(status_code=error_status(exc), content=body, headers=headers)


async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    logger.info(
        "request_failed",
        extra={"path": request.url.path, "method": request.method, "error": exc.code},
    )
    return error_response(exc)


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # dict details are already {"error": ...}; plain strings get wrapped
    content = exc.detail if isinstance(exc.detail, dict) else {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CoreError, core_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
