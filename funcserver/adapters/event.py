"""Adapter for background event functions: ``fn(context, data)``.

A request may carry a background event envelope, a CloudEvent (converted
back to the background shape first) or bare JSON data. When an envelope is
found its metadata goes into the Context and only its data is decoded into
the function's second parameter; otherwise the whole body is.
"""

from typing import Optional

from aiohttp import web

from funcframework.events import (
    convert_cloud_event_to_background_request,
    encode_data,
    get_background_event,
)
from funcframework.exceptions import EventConversionError
from funcframework.interfaces import RegisteredFunction
from funcframework.signatures import validate_event_function
from funcserver.adapters.invocation import (
    BODY_KEY,
    CONTEXT_KEY,
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


def _text(body: bytes) -> str:
    return body.decode("utf-8", "replace")


def event_handler(function: RegisteredFunction, timeout: Optional[float] = None) -> Handler:
    """Create the aiohttp handler invoking an event function.

    Raises:
        SignatureError: If the function does not have the event shape
    """
    fn = function.event_fn
    signature = validate_event_function(fn)
    decode = argument_decoder(signature.data_type)
    label = function_label(function)

    @request_handler(function, timeout)
    async def handle(request: web.Request) -> web.StreamResponse:
        body = request[BODY_KEY]
        context = request[CONTEXT_KEY]

        try:
            converted = convert_cloud_event_to_background_request(body, request.headers)
        except EventConversionError as e:
            return crash_response(
                f"Error: {e}, converting CloudEvent to background event: {_text(body)}",
                e.status_code,
            )
        if converted is not None:
            body = converted

        try:
            metadata, data = get_background_event(body, request.path_qs)
        except ValueError as e:
            return crash_response(f"Error: {e}, parsing background event: {_text(body)}")

        encoded = body
        if metadata is not None and data is not None:
            context = context.with_metadata(metadata)
            encoded = encode_data(data)

        try:
            argument = decode(encoded)
        except ValueError as e:
            return crash_response(
                f"Error: {e}, while converting event data: {_text(encoded)}"
            )

        try:
            result = await call_user_function(fn, context, argument)
        except Exception:
            error_logger.exception(f"Panic in event function {label}")
            return panic_response()

        if isinstance(result, BaseException):
            return function_error_response(result)
        return web.Response()

    return handle
