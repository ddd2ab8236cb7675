"""Translate domain errors into HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from coincatalog.core.errors import FeedError, InvalidQuery, NotFound, ServiceUnavailable
from coincatalog.core.logging import get_logger

log = get_logger("api.errors")

_STATUS_CODES = {
    NotFound: 404,
    InvalidQuery: 400,
    ServiceUnavailable: 503,
    FeedError: 502,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exc_class, status_code in _STATUS_CODES.items():
        app.add_exception_handler(exc_class, _handler(status_code))


def _handler(status_code: int):
    async def handle(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            log.error(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handle
