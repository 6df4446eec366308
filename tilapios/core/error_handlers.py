"""Global exception handlers for FastAPI application."""

from typing import TYPE_CHECKING, cast

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from tilapios.core.exceptions import (
    AppError,
    ConflictError,
    DomainRuleError,
    ErrorDetails,
    ForbiddenError,
    InternalError,
    NotFoundError,
    OfflineError,
    RemoteStoreError,
    StorageError,
    ValidationError,
)

if TYPE_CHECKING:
    type ErrorPayload = dict[str, dict[str, str | ErrorDetails]]


def _error_payload(
    code: str,
    message: str,
    details: ErrorDetails | None = None,
) -> "ErrorPayload":
    """Build consistent error response payload."""
    return {"error": {"code": code, "message": message, "details": details or {}}}


def _respond(status_code: int, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(exc.code, exc.message, exc.details),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on the FastAPI app.

    Note: The nested handler functions are registered via decorators and used by FastAPI
    at runtime, but static analysis tools cannot detect this usage pattern.
    """

    @app.exception_handler(NotFoundError)
    def not_found_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: NotFoundError
    ) -> JSONResponse:
        logger.debug(f"NotFoundError: {exc.message}")
        return _respond(404, exc)

    @app.exception_handler(ValidationError)
    def validation_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: ValidationError
    ) -> JSONResponse:
        logger.warning(f"ValidationError: {exc.message}")
        return _respond(422, exc)

    @app.exception_handler(ConflictError)
    def conflict_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: ConflictError
    ) -> JSONResponse:
        logger.warning(f"ConflictError: {exc.message}")
        return _respond(409, exc)

    @app.exception_handler(DomainRuleError)
    def domain_rule_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: DomainRuleError
    ) -> JSONResponse:
        logger.warning(f"DomainRuleError: {exc.message}")
        return _respond(409, exc)

    @app.exception_handler(ForbiddenError)
    def forbidden_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: ForbiddenError
    ) -> JSONResponse:
        logger.warning(f"ForbiddenError: {exc.message}")
        return _respond(403, exc)

    @app.exception_handler(OfflineError)
    def offline_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: OfflineError
    ) -> JSONResponse:
        logger.info(f"OfflineError: {exc.message}")
        return _respond(503, exc)

    @app.exception_handler(RemoteStoreError)
    def remote_store_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: RemoteStoreError
    ) -> JSONResponse:
        details: ErrorDetails = {**exc.details, "kind": exc.kind.value}
        if exc.recoverable:
            logger.warning(f"RemoteStoreError ({exc.kind.value}): {exc.message}")
            status_code = 503
        else:
            logger.error(f"RemoteStoreError ({exc.kind.value}): {exc.message}")
            status_code = 500
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(exc.code, exc.message, details),
        )

    @app.exception_handler(StorageError)
    def storage_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: StorageError
    ) -> JSONResponse:
        logger.error(f"StorageError: {exc.message}")
        return _respond(500, exc)

    @app.exception_handler(InternalError)
    def internal_error_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: InternalError
    ) -> JSONResponse:
        logger.error(f"InternalError: {exc.message}")
        return _respond(500, exc)

    @app.exception_handler(AppError)
    def app_error_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: AppError
    ) -> JSONResponse:
        logger.warning(f"AppError: {exc.message}")
        return _respond(400, exc)

    @app.exception_handler(RequestValidationError)
    def request_validation_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug(f"Request validation failed: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "request_validation_error",
                "Request validation failed",
                cast("ErrorDetails", {"errors": exc.errors()}),
            ),
        )

    @app.exception_handler(Exception)
    def unhandled_handler(  # pyright: ignore[reportUnusedFunction]
        _: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error"),
        )
