from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.requests import ClientDisconnect

from blobgate.storage import RangeNotSatisfiable, StoreError

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    status_code = 400
    message = "bad request"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None) -> None:
        super().__init__(message or self.message)
        self.headers = headers


class Unauthorized(GatewayError):
    status_code = 401
    message = "Unauthorized"


class EmptyBody(GatewayError):
    message = "Empty body"


class MissingPartNumber(GatewayError):
    message = "missing_part_number"


class InvalidPartNumber(GatewayError):
    message = "invalid_part_number"


class MissingBody(GatewayError):
    message = "missing_body"


class MissingParts(GatewayError):
    message = "missing_parts"


class InvalidParts(GatewayError):
    message = "invalid_parts"


async def gateway_error_handler(request: Request, exc: GatewayError) -> PlainTextResponse:
    return PlainTextResponse(str(exc), status_code=exc.status_code, headers=exc.headers)


async def range_not_satisfiable_handler(request: Request, exc: RangeNotSatisfiable) -> PlainTextResponse:
    return PlainTextResponse(
        "range not satisfiable",
        status_code=416,
        headers={"content-range": f"bytes */{exc.size}", "accept-ranges": "bytes"},
    )


async def store_error_handler(request: Request, exc: StoreError) -> PlainTextResponse:
    logger.error(
        "store operation failed",
        exc_info=exc,
        extra={"extra": {"method": request.method, "path": request.url.path}},
    )
    return PlainTextResponse(str(exc), status_code=500)


async def client_disconnect_handler(request: Request, exc: ClientDisconnect) -> PlainTextResponse:
    # nobody is listening for this response any more
    logger.info(
        "client disconnected mid-request",
        extra={"extra": {"method": request.method, "path": request.url.path}},
    )
    return PlainTextResponse("client disconnected", status_code=400)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)  # type: ignore
    app.add_exception_handler(RangeNotSatisfiable, range_not_satisfiable_handler)  # type: ignore
    app.add_exception_handler(StoreError, store_error_handler)  # type: ignore
    app.add_exception_handler(ClientDisconnect, client_disconnect_handler)  # type: ignore
