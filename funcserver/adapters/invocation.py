"""Helpers shared by the invocation adapters.

Every adapter handler is wrapped by ``request_handler``, which reads the
body, binds the request's logging identifiers, builds the per-invocation
Context and logs a request/response summary. The adapters then only decode
arguments, call the user function and map its outcome to a response.
"""

import asyncio
import functools
import inspect
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web
from pydantic import PydanticSchemaGenerationError, TypeAdapter

from funcframework.context import Context
from funcframework.exceptions import SignatureError
from funcframework.interfaces import RegisteredFunction
from funcframework.logging_utils import (
    format_request_log,
    format_response_log,
    logging_ids_from_headers,
    reset_logging_ids,
    set_logging_ids,
)
from funcserver.responses import FUNCTION_STATUS_HEADER

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

BODY_KEY = "body"
CONTEXT_KEY = "context"


def _is_coroutine_callable(fn: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


async def call_user_function(fn: Callable[..., Any], *args: Any) -> Any:
    """Call user code without blocking the event loop.

    Coroutine functions are awaited directly; anything else runs in a worker
    thread, which inherits the caller's context variables.
    """
    if _is_coroutine_callable(fn):
        return await fn(*args)

    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


def argument_decoder(annotation: Any) -> Callable[[bytes], Any]:
    """Build a JSON decoder producing values of the annotated parameter type.

    Args:
        annotation: Parameter annotation, ``inspect.Parameter.empty`` if none

    Returns:
        Callable turning raw JSON into the argument value

    Raises:
        SignatureError: If pydantic cannot build a validator for the type
    """
    if annotation is inspect.Parameter.empty or annotation is Any:
        return json.loads

    try:
        adapter = TypeAdapter(annotation)
    except PydanticSchemaGenerationError as e:
        raise SignatureError(f"unsupported parameter type {annotation!r}: {e}") from e
    return adapter.validate_json


def function_label(function: RegisteredFunction) -> str:
    return function.name or function.path


def request_handler(
    function: RegisteredFunction, timeout: Optional[float] = None
) -> Callable[[Handler], Handler]:
    """Wrap an adapter handler with the request-scoped setup.

    Before the adapter runs, the full body is stored in ``request["body"]``
    and a Context carrying the logging identifiers and optional deadline in
    ``request["context"]``.

    Args:
        function: Function the handler invokes
        timeout: Per-request deadline in seconds, None for no deadline

    Returns:
        Decorator for an aiohttp handler
    """
    label = function_label(function)

    def decorator(invoke: Handler) -> Handler:
        @functools.wraps(invoke)
        async def handler(request: web.Request) -> web.StreamResponse:
            start_time = time.perf_counter()
            body = await request.read()
            logging_ids = logging_ids_from_headers(request.headers)
            token = set_logging_ids(logging_ids)
            try:
                request[BODY_KEY] = body
                request[CONTEXT_KEY] = Context.with_timeout(
                    timeout, logging_ids=logging_ids, request=request
                )
                logger.debug(
                    "Incoming function request",
                    extra=format_request_log(
                        function_name=label,
                        http_method=request.method,
                        request_path=request.path,
                        headers=request.headers,
                        body_size=len(body),
                    ),
                )

                response = await invoke(request)

                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.info(
                    "Function request processed",
                    extra=format_response_log(
                        function_name=label,
                        status_code=response.status,
                        function_status=response.headers.get(FUNCTION_STATUS_HEADER, ""),
                        duration_ms=duration_ms,
                    ),
                )
                return response
            finally:
                reset_logging_ids(token)

        return handler

    return decorator
