"""Render every failure as ``{"message": ...}`` with the matching status code."""

from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from models.errors import (
    AlreadyClosed,
    AuctionClosed,
    AuctionError,
    BidTooLow,
    Forbidden,
    InvalidAmount,
    NotFound,
    StorageError,
    ValidationError,
)
from utils import log

logger = log.get_logger(__name__)

STATUS_CODES: Dict[Type[AuctionError], int] = {
    InvalidAmount: 400,
    ValidationError: 400,
    BidTooLow: 400,
    AuctionClosed: 400,
    AlreadyClosed: 400,
    NotFound: 404,
    Forbidden: 403,
    StorageError: 503,
}


def status_code_for(exc: AuctionError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


async def auction_error_handler(request: Request, exc: AuctionError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body = {"message": exc.message}
    if isinstance(exc, BidTooLow):
        body["currentPrice"] = exc.current_price
    return JSONResponse(status_code=status_code, content=body)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"message": "Invalid request body"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuctionError, auction_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
