"""Response writing shared by every invocation adapter.

The invoking platform reads the outcome of a call from the status code and
the ``X-Google-Status`` header:

    ===========================  ======  =============
    Outcome                      Status  Status header
    ===========================  ======  =============
    success                      200     (absent)
    argument decode failure      400     crash
    panic in the user function   500     crash
    user function returned error 500     error
    ===========================  ======  =============
"""

import logging

from aiohttp import web

# Error stream shared by the adapters.
error_logger = logging.getLogger("funcframework")

FUNCTION_STATUS_HEADER = "X-Google-Status"
CRASH_STATUS = "crash"
ERROR_STATUS = "error"

PANIC_MESSAGE = "A panic occurred during user function execution. Please see logs for more details."


def write_error_response(status_code: int, status: str, message: str) -> web.Response:
    """Build an error response and copy its message to the error log.

    The message is newline-terminated so that log collectors reading the
    body line by line group it as one entry.

    Args:
        status_code: HTTP status code
        status: Value of the status header (``crash`` or ``error``)
        message: Response body

    Returns:
        aiohttp response ready to be returned from a handler
    """
    if not message.endswith("\n"):
        message += "\n"
    error_logger.error(message.rstrip("\n"), extra={"function_status": status})
    return web.Response(
        status=status_code,
        text=message,
        headers={FUNCTION_STATUS_HEADER: status},
    )


def crash_response(message: str, status_code: int = 400) -> web.Response:
    """Response for a request that could not be turned into function arguments."""
    return write_error_response(status_code, CRASH_STATUS, message)


def panic_response() -> web.Response:
    """Response for an exception raised by user code; details stay in the logs."""
    return write_error_response(500, CRASH_STATUS, PANIC_MESSAGE)


def function_error_response(error: BaseException) -> web.Response:
    """Response for an error returned by an event or typed function."""
    return write_error_response(500, ERROR_STATUS, f"Function error: {error}")
