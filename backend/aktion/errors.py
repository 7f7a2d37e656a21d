"""Error responses: every failure leaves the API as {"error": "..."}"""

import logging

import stripe
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Domain error carrying the HTTP status it should be reported with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _validation_message(exc: RequestValidationError) -> str:
    missing = []
    for err in exc.errors():
        if err.get("type") in ("missing", "string_too_short"):
            missing.append(str(err["loc"][-1]))
    if missing:
        return f"Missing required fields: {', '.join(missing)}"

    first = exc.errors()[0]
    return f"Invalid value for {first['loc'][-1]}: {first['msg']}"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        return error_response(400, _validation_message(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path}: {exc.message}")
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(stripe.StripeError)
    async def stripe_error_handler(request: Request, exc: stripe.StripeError):
        message = exc.user_message or str(exc) or "Payment provider error"
        logger.error(f"Stripe error on {request.url.path}: {message}")
        return error_response(500, message)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return error_response(500, "Internal server error")
