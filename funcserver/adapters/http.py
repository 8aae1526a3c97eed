"""Adapter for plain HTTP functions."""

from typing import Any, Optional

from aiohttp import web
from pydantic import BaseModel

from funcframework.interfaces import RegisteredFunction
from funcserver.adapters.invocation import (
    Handler,
    call_user_function,
    function_label,
    request_handler,
)
from funcserver.responses import error_logger, panic_response


def make_response(result: Any) -> web.StreamResponse:
    """Turn the value returned by an HTTP function into a response.

    Accepts a response object, ``str``, ``bytes``, a ``dict`` or ``list``
    (sent as JSON), a pydantic model, ``None`` (empty 200), or a
    ``(body, status)`` / ``(body, status, headers)`` tuple of those.

    Raises:
        TypeError: If the value cannot be sent
    """
    if isinstance(result, web.StreamResponse):
        return result

    if isinstance(result, tuple) and len(result) in (2, 3):
        response = make_response(result[0])
        response.set_status(int(result[1]))
        if len(result) == 3:
            response.headers.update(result[2])
        return response

    if result is None:
        return web.Response()
    if isinstance(result, str):
        return web.Response(text=result)
    if isinstance(result, (bytes, bytearray)):
        return web.Response(body=bytes(result))
    if isinstance(result, (dict, list)):
        return web.json_response(result)
    if isinstance(result, BaseModel):
        return web.Response(text=result.model_dump_json(), content_type="application/json")

    raise TypeError(
        f"HTTP function returned unsupported value of type {type(result).__name__}"
    )


def http_handler(function: RegisteredFunction, timeout: Optional[float] = None) -> Handler:
    """Create the aiohttp handler invoking an HTTP function.

    The user function receives the aiohttp request; its body has already
    been read and is also available as ``request["body"]``, and the
    invocation Context as ``request["context"]``.
    """
    fn = function.http_fn
    label = function_label(function)

    @request_handler(function, timeout)
    async def handle(request: web.Request) -> web.StreamResponse:
        try:
            return make_response(await call_user_function(fn, request))
        except web.HTTPException:
            # aiohttp turns these into regular responses
            raise
        except Exception:
            error_logger.exception(f"Panic in HTTP function {label}")
            return panic_response()

    return handle
