"""Adapter for typed functions: ``fn(data)`` with up to two return values."""

import logging
from typing import Any, Optional, Tuple

from aiohttp import web
from pydantic import ConfigDict, TypeAdapter

from funcframework.interfaces import RegisteredFunction
from funcframework.signatures import validate_typed_function
from funcserver.adapters.invocation import (
    BODY_KEY,
    Handler,
    argument_decoder,
    call_user_function,
    function_label,
    request_handler,
)
from funcserver.responses import (
    crash_response,
    error_logger,
    function_error_response,
    panic_response,
)

logger = logging.getLogger(__name__)

_RESULT_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any, config=ConfigDict(ser_json_bytes="base64"))


def split_result(result: Any, return_count: Optional[int]) -> Tuple[Any, Optional[BaseException]]:
    """Split a typed function's return value into (value, error).

    ``return_count`` comes from the return annotation. Without one the shape
    is inferred: an exception is an error, a pair whose last item is None or
    an exception is ``(value, error)``, anything else is a value.

    Raises:
        TypeError: If the value does not have the annotated shape
    """
    if return_count == 0:
        return None, None
    if return_count == 1:
        return None, result
    if return_count == 2:
        if not (isinstance(result, tuple) and len(result) == 2):
            raise TypeError(f"expected a (value, error) pair, got {type(result).__name__}")
        return result[0], result[1]

    if isinstance(result, BaseException):
        return None, result
    if (
        isinstance(result, tuple)
        and len(result) == 2
        and (result[1] is None or isinstance(result[1], BaseException))
    ):
        return result[0], result[1]
    return result, None


def typed_handler(function: RegisteredFunction, timeout: Optional[float] = None) -> Handler:
    """Create the aiohttp handler invoking a typed function.

    The body is decoded into the function's parameter type; a returned value
    is JSON-encoded into the response body.

    Raises:
        SignatureError: If the function does not have the typed shape
    """
    fn = function.typed_fn
    signature = validate_typed_function(fn)
    decode = argument_decoder(signature.data_type)
    label = function_label(function)

    @request_handler(function, timeout)
    async def handle(request: web.Request) -> web.StreamResponse:
        body = request[BODY_KEY]

        try:
            argument = decode(body)
        except ValueError as e:
            return crash_response(
                f"Error: {e}, while converting input data: {body.decode('utf-8', 'replace')}"
            )

        try:
            result = await call_user_function(fn, argument)
            value, error = split_result(result, signature.return_count)
        except Exception:
            error_logger.exception(f"Panic in typed function {label}")
            return panic_response()

        if error is not None:
            if not isinstance(error, BaseException):
                logger.error(f"Typed function {label} returned non-error {error!r} as its error")
                return panic_response()
            return function_error_response(error)

        if value is None:
            return web.Response()

        try:
            encoded = _RESULT_ADAPTER.dump_json(value)
        except ValueError as e:
            return crash_response(f"Error: {e}, while converting output data", 500)
        return web.Response(body=encoded, content_type="application/json")

    return handle
