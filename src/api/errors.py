import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.domain.exceptions import ErrorKind, FlightBookingError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.EXTERNAL_PROVIDER: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.IDEMPOTENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.AUTHENTICITY: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.DATABASE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_body(kind: ErrorKind, message: str, details: dict | None = None) -> dict:
    return {
        "error": True,
        "code": kind.value,
        "message": message,
        "details": jsonable_encoder(details or {}),
    }


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(FlightBookingError)
    async def handle_booking_error(request: Request, exc: FlightBookingError) -> JSONResponse:
        status_code = STATUS_BY_KIND[exc.kind]
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=status_code,
            content=error_body(exc.kind, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(
                ErrorKind.VALIDATION,
                "Invalid request",
                {"errors": exc.errors()},
            ),
        )

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(ErrorKind.DATABASE, "Database error"),
        )
