"""GatewayError -> HTTP 响应

错误体: {"error": {"kind", "message", "http_status", "details"}}
CIRCUIT_OPEN 附带 Retry-After（秒，向上取整）。
"""

import math

import structlog
from aigateway.provider import ErrorKind, GatewayError
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()


def error_body(error: GatewayError) -> dict:
    return {"error": error.to_dict()}


def error_response(error: GatewayError) -> JSONResponse:
    headers = {}
    if error.kind == ErrorKind.CIRCUIT_OPEN and error.retry_after_ms is not None:
        headers["Retry-After"] = str(max(math.ceil(error.retry_after_ms / 1000), 1))
    return JSONResponse(status_code=error.http_status, content=error_body(error), headers=headers)


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    log.warning(
        "request_failed",
        kind=exc.kind.value,
        error=exc.message,
        http_status=exc.http_status,
    )
    return error_response(exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)
