"""Adapter for CloudEvent functions: ``fn(context, event)``.

Requests that are not already CloudEvents are treated as background events
and converted to the equivalent structured CloudEvent before parsing, so a
CloudEvent function can be triggered by legacy event sources unchanged.

Unlike event and typed functions, an error returned by a CloudEvent
function is only logged; the response body stays empty.
"""

from typing import Optional

import cloudevents.exceptions as cloud_exceptions
from aiohttp import web
from cloudevents.http import from_http

from funcframework.events import (
    convert_background_to_cloud_event_request,
    looks_like_cloud_event,
)
from funcframework.exceptions import EventConversionError
from funcframework.interfaces import RegisteredFunction
from funcframework.signatures import validate_cloud_event_function
from funcserver.adapters.invocation import (
    BODY_KEY,
    CONTEXT_KEY,
    Handler,
    call_user_function,
    function_label,
    request_handler,
)
from funcserver.responses import (
    ERROR_STATUS,
    FUNCTION_STATUS_HEADER,
    crash_response,
    error_logger,
    panic_response,
)


def cloud_event_handler(
    function: RegisteredFunction, timeout: Optional[float] = None
) -> Handler:
    """Create the aiohttp handler invoking a CloudEvent function.

    Raises:
        SignatureError: If the function does not take ``(context, event)``
    """
    fn = function.cloud_event_fn
    validate_cloud_event_function(fn)
    label = function_label(function)

    @request_handler(function, timeout)
    async def handle(request: web.Request) -> web.StreamResponse:
        body = request[BODY_KEY]
        headers = dict(request.headers)

        if not looks_like_cloud_event(headers):
            try:
                body, headers = convert_background_to_cloud_event_request(
                    body, headers, request.path_qs
                )
            except EventConversionError as e:
                return crash_response(
                    f"Error: {e}, converting background event to CloudEvent",
                    e.status_code,
                )

        try:
            event = from_http({k.lower(): v for k, v in headers.items()}, body)
        except cloud_exceptions.GenericException as e:
            return crash_response(f"Error: {e}, parsing CloudEvent")

        try:
            result = await call_user_function(fn, request[CONTEXT_KEY], event)
        except Exception:
            error_logger.exception(f"Panic in CloudEvent function {label}")
            return panic_response()

        if isinstance(result, BaseException):
            error_logger.error(f"Function error: {result}", extra={"function_status": ERROR_STATUS})
            return web.Response(status=500, headers={FUNCTION_STATUS_HEADER: ERROR_STATUS})
        return web.Response()

    return handle
