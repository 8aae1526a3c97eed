"""Function registry for the functions framework.

Holds the user callbacks registered at process start. Registration happens
before the server binds; during serving the registry is only read.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from funcframework.exceptions import RegistrationError
from funcframework.interfaces import RegisteredFunction
from funcframework.signatures import (
    validate_cloud_event_function,
    validate_event_function,
    validate_typed_function,
)

logger = logging.getLogger(__name__)


class Registry:
    """Table of registered functions.

    Named functions are looked up by name. Functions registered with only a
    path go to an ordered list instead; the last of them is the fallback
    when no function matches the configured target.
    """

    def __init__(self) -> None:
        self.functions: Dict[str, RegisteredFunction] = {}
        self.functions_without_name: List[RegisteredFunction] = []

    def register_http(
        self, fn: Callable[..., Any], *, name: str = "", path: str = ""
    ) -> RegisteredFunction:
        """Register an HTTP function.

        Args:
            fn: Callable taking the aiohttp request
            name: Optional function name
            path: Optional serving path, defaults to ``/<name>``

        Returns:
            The registered function

        Raises:
            RegistrationError: If neither name nor path is given, or the name is taken
        """
        return self._register(RegisteredFunction(http_fn=fn), name, path)

    def register_cloud_event(
        self, fn: Callable[..., Any], *, name: str = "", path: str = ""
    ) -> RegisteredFunction:
        """Register a CloudEvent function taking ``(context, event)``.

        Raises:
            SignatureError: If ``fn`` does not take exactly two parameters
            RegistrationError: If neither name nor path is given, or the name is taken
        """
        validate_cloud_event_function(fn)
        return self._register(RegisteredFunction(cloud_event_fn=fn), name, path)

    def register_event(
        self, fn: Callable[..., Any], *, name: str = "", path: str = ""
    ) -> RegisteredFunction:
        """Register an event function taking ``(context, data)``.

        Raises:
            SignatureError: If ``fn`` has the wrong shape for an event function
            RegistrationError: If neither name nor path is given, or the name is taken
        """
        validate_event_function(fn)
        return self._register(RegisteredFunction(event_fn=fn), name, path)

    def register_typed(
        self, fn: Callable[..., Any], *, name: str = "", path: str = ""
    ) -> RegisteredFunction:
        """Register a typed function taking one decoded input.

        Raises:
            SignatureError: If ``fn`` has the wrong shape for a typed function
            RegistrationError: If neither name nor path is given, or the name is taken
        """
        validate_typed_function(fn)
        return self._register(RegisteredFunction(typed_fn=fn), name, path)

    def _register(
        self, function: RegisteredFunction, name: str, path: str
    ) -> RegisteredFunction:
        if not name and not path:
            raise RegistrationError("either path or name required")

        if not name:
            function = function.model_copy(update={"path": path})
            self.functions_without_name.append(function)
            logger.debug(f"Registered {function.kind.value} function at {path}")
            return function

        if name in self.functions:
            raise RegistrationError(f"function name already registered: {name}")

        function = function.model_copy(update={"name": name, "path": path or f"/{name}"})
        self.functions[name] = function
        logger.debug(
            f"Registered {function.kind.value} function {name} at {function.path}"
        )
        return function

    def get_registered_function(
        self, name: str
    ) -> Tuple[Optional[RegisteredFunction], bool]:
        """Look up a function by name.

        Returns:
            Tuple of (function, found)
        """
        function = self.functions.get(name)
        return function, function is not None

    def get_all_functions(self) -> List[RegisteredFunction]:
        """Return every registered function, named ones first."""
        return list(self.functions.values()) + list(self.functions_without_name)

    def get_last_function_without_name(self) -> Optional[RegisteredFunction]:
        """Return the most recently registered unnamed function, if any."""
        if not self.functions_without_name:
            return None
        return self.functions_without_name[-1]

    def reset(self) -> None:
        """Forget every registered function."""
        self.functions.clear()
        self.functions_without_name.clear()


_default_registry = Registry()


def default() -> Registry:
    """Return the process-wide registry used by the declarative helpers."""
    return _default_registry
