"""Invocation adapters for the functions framework.

This package contains one adapter per function kind. Each adapter turns a
registered user function into an aiohttp handler that:
- Decodes the request body into the function's argument(s)
- Calls the function, catching anything it raises
- Maps the outcome to a status code and the X-Google-Status header
"""

from .cloudevent import cloud_event_handler
from .event import event_handler
from .http import http_handler
from .typed import typed_handler

__all__ = ["cloud_event_handler", "event_handler", "http_handler", "typed_handler"]
