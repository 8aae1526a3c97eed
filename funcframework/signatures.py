"""Signature validation for user callbacks.

Callbacks are inspected once, at registration time, so that a function whose
shape does not fit its kind is rejected before any request is served.
Annotations are optional; when present they must agree with the kind.
"""

import inspect
import types
import typing
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from funcframework.context import Context
from funcframework.exceptions import SignatureError

_EMPTY = inspect.Parameter.empty
_POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


class FunctionSignature(BaseModel):
    """What the invocation adapters need to know about a validated callback."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    data_type: Any = _EMPTY
    return_count: Optional[int] = None  # None when the return is not annotated


def _positional_parameters(fn: Callable[..., Any]) -> List[inspect.Parameter]:
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError) as e:
        raise SignatureError(f"unable to inspect signature of {fn!r}: {e}") from e

    params = []
    for param in signature.parameters.values():
        if param.kind in _POSITIONAL_KINDS:
            params.append(param)
        elif param.kind is inspect.Parameter.VAR_POSITIONAL:
            raise SignatureError(
                f"expected fixed parameters, found variadic *{param.name}"
            )
        elif param.kind is inspect.Parameter.KEYWORD_ONLY and param.default is _EMPTY:
            raise SignatureError(
                f"unexpected required keyword-only parameter {param.name!r}"
            )
    return params


def _type_hints(fn: Callable[..., Any]) -> Dict[str, Any]:
    target = fn
    if not (inspect.isfunction(fn) or inspect.ismethod(fn)):
        target = getattr(fn, "__call__", fn)
    try:
        return typing.get_type_hints(target)
    except (NameError, TypeError):
        # Unresolvable forward references: fall back to the raw annotations.
        return dict(getattr(target, "__annotations__", {}))


def _union_args(tp: Any) -> Optional[tuple]:
    origin = typing.get_origin(tp)
    if origin is typing.Union or origin is types.UnionType:
        return typing.get_args(tp)
    return None


def is_error_type(tp: Any) -> bool:
    """True if a value of type ``tp`` can stand for an error result.

    ``None`` counts, standing for "no error".
    """
    if tp is None or tp is type(None):
        return True
    if isinstance(tp, type) and issubclass(tp, BaseException):
        return True
    args = _union_args(tp)
    if args is not None:
        return all(is_error_type(arg) for arg in args)
    return False


def accepts_context(tp: Any) -> bool:
    """True if a parameter annotated ``tp`` accepts a Context."""
    if tp is _EMPTY or tp is Any or tp is object:
        return True
    if isinstance(tp, type):
        return issubclass(Context, tp)
    args = _union_args(tp)
    if args is not None:
        return any(accepts_context(arg) for arg in args)
    return False


def return_types(annotation: Any) -> List[Any]:
    """Expand a return annotation into the list of returned value types."""
    if annotation is None or annotation is type(None):
        return []
    if typing.get_origin(annotation) is tuple:
        args = typing.get_args(annotation)
        if Ellipsis in args:
            raise SignatureError("expected a fixed number of return values")
        return list(args)
    return [annotation]


def validate_event_function(fn: Callable[..., Any]) -> FunctionSignature:
    """Validate an event function: ``fn(context, data) -> error``.

    Args:
        fn: User callback

    Returns:
        FunctionSignature with the declared data type

    Raises:
        SignatureError: If the callback has the wrong shape
    """
    params = _positional_parameters(fn)
    if len(params) != 2:
        raise SignatureError(
            f"expected function to have two parameters, found {len(params)}"
        )

    hints = _type_hints(fn)
    if "return" in hints:
        outs = return_types(hints["return"])
        if len(outs) > 1 or (outs and not is_error_type(outs[0])):
            raise SignatureError("expected function to return only an error")

    if not accepts_context(hints.get(params[0].name, _EMPTY)):
        raise SignatureError("expected first parameter to accept a Context")

    return FunctionSignature(data_type=hints.get(params[1].name, _EMPTY))


def validate_cloud_event_function(fn: Callable[..., Any]) -> FunctionSignature:
    """Validate a CloudEvent function: ``fn(context, event) -> error``."""
    return validate_event_function(fn)


def validate_typed_function(fn: Callable[..., Any]) -> FunctionSignature:
    """Validate a typed function: ``fn(data)`` returning up to two values.

    When there are return values the last one must be an error.

    Args:
        fn: User callback

    Returns:
        FunctionSignature with the input type and declared return count

    Raises:
        SignatureError: If the callback has the wrong shape
    """
    params = _positional_parameters(fn)
    if len(params) != 1:
        raise SignatureError(
            f"expected function to have one parameter, found {len(params)}"
        )

    hints = _type_hints(fn)
    return_count = None
    if "return" in hints:
        outs = return_types(hints["return"])
        if len(outs) > 2:
            raise SignatureError(
                f"expected function to have maximum two return values, found {len(outs)}"
            )
        if outs and not is_error_type(outs[-1]):
            raise SignatureError("expected last return type to be an error")
        return_count = len(outs)

    return FunctionSignature(
        data_type=hints.get(params[0].name, _EMPTY),
        return_count=return_count,
    )
