"""
Error taxonomy for the SMS relay and the FastAPI handlers that render it.

Every domain error carries an HTTP status, a short user-facing message and an
optional ``detail`` holding the raw provider/payload data for diagnosis.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from smsrelay.schemas import ErrorResponse

logger = logging.getLogger(__name__)


class SmsRelayError(Exception):
    """Base exception for the SMS relay."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[Any] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ValidationError(SmsRelayError):
    """Caller input is incomplete or sender configuration is missing."""

    status_code = 400


class GatewayError(SmsRelayError):
    """The carrier rejected the submission or could not be reached."""

    status_code = 500

    def __init__(self, detail: Optional[Any] = None, message: str = "Failed to send"):
        super().__init__(message, detail)


class StorageError(SmsRelayError):
    """The persistence layer is unavailable or rejected a write."""

    status_code = 500


class MalformedWebhookError(SmsRelayError):
    status_code = 400

    def __init__(self, detail: Optional[Any] = None):
        super().__init__("Invalid webhook payload", detail)


class SignatureVerificationError(SmsRelayError):
    status_code = 401

    def __init__(self, detail: Optional[Any] = None):
        super().__init__("Invalid webhook signature", detail)


def add_exception_handlers(app: FastAPI) -> None:
    """Register handlers that turn domain errors into ``{error, detail}`` bodies."""

    @app.exception_handler(SmsRelayError)
    async def sms_relay_exception_handler(request: Request, exc: SmsRelayError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{type(exc).__name__}: {exc.message}",
            extra={"path": request.url.path, "detail": exc.detail},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message, detail=exc.detail).model_dump(exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error="Input validation failed",
                detail=jsonable_encoder(exc.errors()),
            ).model_dump(exclude_none=True),
        )
