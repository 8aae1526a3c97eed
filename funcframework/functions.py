"""Declarative registration against the default registry.

Each helper works as a plain call or as a decorator::

    functions.http("hello", hello)

    @functions.cloud_event("on_upload")
    def on_upload(context, event):
        ...

Registration failures are logged and raised so that a broken function stops
the process at import time rather than at the first request.
"""

import logging
from typing import Any, Callable, Optional

from funcframework import registry
from funcframework.exceptions import RegistrationError

logger = logging.getLogger(__name__)

Func = Callable[..., Any]


def _declare(
    register: Callable[..., Any], name: str, fn: Optional[Func], path: str
) -> Any:
    def decorator(func: Func) -> Func:
        try:
            register(func, name=name, path=path)
        except RegistrationError as e:
            logger.error(f"Failed to register function {name or path!r}: {e}")
            raise
        return func

    if fn is None:
        return decorator
    return decorator(fn)


def http(name: str, fn: Optional[Func] = None, *, path: str = "") -> Any:
    """Register an HTTP function with the default registry."""
    return _declare(registry.default().register_http, name, fn, path)


def cloud_event(name: str, fn: Optional[Func] = None, *, path: str = "") -> Any:
    """Register a CloudEvent function with the default registry."""
    return _declare(registry.default().register_cloud_event, name, fn, path)


def event(name: str, fn: Optional[Func] = None, *, path: str = "") -> Any:
    """Register a background event function with the default registry."""
    return _declare(registry.default().register_event, name, fn, path)


def typed(name: str, fn: Optional[Func] = None, *, path: str = "") -> Any:
    """Register a typed function with the default registry."""
    return _declare(registry.default().register_typed, name, fn, path)
