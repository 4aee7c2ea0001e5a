"""
Global exception handlers:
  MusicNetError          → {"error": {...}} with the error's own HTTP status
  RequestValidationError → 400 with field-level details
  Exception (catch-all)  → 500, internal details never leak
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from musicnet.errors import ErrorCategory, MusicNetError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MusicNetError)
    async def musicnet_error_handler(request: Request, exc: MusicNetError):
        log = logger.error if exc.http_status >= 500 else logger.info
        log("%s on %s: %s", exc.code, request.url.path, exc.details or exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info("Validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": {
                    "code": "VALIDATION_FAILED",
                    "message": "Invalid request data",
                    "category": ErrorCategory.VALIDATION.value,
                    "details": [
                        {
                            "field": ".".join(str(loc) for loc in e["loc"]),
                            "message": e["msg"],
                        }
                        for e in exc.errors()
                    ],
                }
            },
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "category": ErrorCategory.INFRASTRUCTURE.value,
                }
            },
        )
