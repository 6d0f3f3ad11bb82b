"""Application-level exceptions and FastAPI exception handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orderdesk.core.config import get_settings

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: str | None = None, code: str = "NOT_FOUND"):
        msg = f"{entity} not found" if not entity_id else f"{entity} '{entity_id}' not found"
        super().__init__(msg, status_code=404, code=code)


class ForbiddenError(AppException):
    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status_code=403, code="FORBIDDEN")


class UnauthorizedError(AppException):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=401, code="UNAUTHORIZED")


class ConflictError(AppException):
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, status_code=409, code=code)


class ValidationError(AppException):
    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(message, status_code=422, code=code)


class PaymentError(AppException):
    """Raised when the payment adapter declines or fails a charge."""

    def __init__(self, message: str, code: str = "PAYMENT_FAILED"):
        super().__init__(message, status_code=402, code=code)


class SubscriptionLimitError(AppException):
    def __init__(self, message: str = "Monthly revenue limit reached for the current plan"):
        super().__init__(message, status_code=402, code="REVENUE_LIMIT_REACHED")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _error_body(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        else:
            logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")
        settings = get_settings()
        detail = str(exc) if settings.debug and not settings.is_production else "An unexpected error occurred"
        return JSONResponse(
            status_code=500,
            content=_error_body("INTERNAL_ERROR", detail),
        )
