"""Request dispatcher for the functions framework.

Builds the aiohttp application serving registered functions. With a
function target configured, that single function answers every path;
otherwise each registered function is served at its own path.
"""

import logging
from typing import Callable, Dict, Optional

from aiohttp import web

from funcframework import registry as funcregistry
from funcframework.config import (
    ConfigurationError,
    FrameworkConfig,
    load_config,
    parse_timeout,
)
from funcframework.interfaces import FunctionKind, RegisteredFunction
from funcframework.registry import Registry
from funcserver.adapters import (
    cloud_event_handler,
    event_handler,
    http_handler,
    typed_handler,
)
from funcserver.adapters.invocation import Handler

logger = logging.getLogger(__name__)

ROOT_PATH = "/"

ADAPTERS: Dict[FunctionKind, Callable[[RegisteredFunction, Optional[float]], Handler]] = {
    FunctionKind.HTTP: http_handler,
    FunctionKind.CLOUD_EVENT: cloud_event_handler,
    FunctionKind.EVENT: event_handler,
    FunctionKind.TYPED: typed_handler,
}


def resolve_target(registry: Registry, target: str) -> RegisteredFunction:
    """Find the function to serve for a configured target name.

    Falls back to the last function registered without a name.

    Raises:
        ConfigurationError: If neither exists
    """
    function, found = registry.get_registered_function(target)
    if found:
        return function

    function = registry.get_last_function_without_name()
    if function is not None:
        logger.info(
            f"No function named {target!r}, serving unnamed function at {function.path}"
        )
        return function

    raise ConfigurationError(f'no matching function found with name: "{target}"')


def wrap_function(function: RegisteredFunction, timeout: Optional[float] = None) -> Handler:
    """Create the adapter handler for a registered function."""
    return ADAPTERS[function.kind](function, timeout)


def _bind(app: web.Application, path: str, handler: Handler) -> None:
    if not path.startswith("/"):
        path = "/" + path

    try:
        app.router.add_route("*", path, handler)
        # A trailing slash serves the whole subtree.
        if path.endswith("/"):
            app.router.add_route("*", path + "{tail:.*}", handler)
    except (RuntimeError, ValueError) as e:
        raise ConfigurationError(f"unable to serve a function at {path!r}: {e}") from e


def init_server(
    registry: Optional[Registry] = None,
    config: Optional[FrameworkConfig] = None,
) -> web.Application:
    """Build the application serving registered functions.

    Args:
        registry: Function registry, the default registry when omitted
        config: Framework configuration, loaded from the environment when omitted

    Returns:
        aiohttp application ready to run

    Raises:
        ConfigurationError: If the configured target cannot be resolved
        SignatureError: If a function's signature does not fit its kind
    """
    if registry is None:
        registry = funcregistry.default()
    if config is None:
        config = load_config()
    timeout = parse_timeout(config.timeout_seconds)

    app = web.Application()

    if config.function_target:
        function = resolve_target(registry, config.function_target)
        _bind(app, ROOT_PATH, wrap_function(function, timeout))
        logger.info(
            f"Serving {function.kind.value} function "
            f"{function.name or function.path!r} at {ROOT_PATH}"
        )
        return app

    bound = set()
    for function in registry.get_all_functions():
        if function.path in bound:
            raise ConfigurationError(
                f"more than one function registered at path {function.path!r}"
            )
        bound.add(function.path)
        _bind(app, function.path, wrap_function(function, timeout))
        logger.info(
            f"Serving {function.kind.value} function "
            f"{function.name or function.path!r} at {function.path}"
        )

    return app
