"""Tests for the function registry and declarative registration helpers."""

import logging
from typing import Optional

import pytest

from funcframework import functions, registry
from funcframework.exceptions import (
    FunctionsFrameworkError,
    RegistrationError,
    SignatureError,
)
from funcframework.interfaces import FunctionKind, RegisteredFunction
from funcframework.registry import Registry


def hello(request):
    return "hello"


def goodbye(request):
    return "goodbye"


def on_event(context, data) -> Optional[Exception]:
    return None


def double(data: int):
    return data * 2


@pytest.fixture
def default_registry():
    """The process-wide registry, emptied around each test."""
    registry.default().reset()
    yield registry.default()
    registry.default().reset()


class TestRegistration:
    """Test registration rules."""

    def test_named_function_defaults_path_to_name(self):
        """A function registered by name is served at /<name>."""
        reg = Registry()
        function = reg.register_http(hello, name="hello")

        assert function.name == "hello"
        assert function.path == "/hello"
        assert function.kind == FunctionKind.HTTP
        assert reg.get_registered_function("hello") == (function, True)

    def test_explicit_path_is_kept(self):
        """An explicit path overrides the default."""
        reg = Registry()
        function = reg.register_http(hello, name="hello", path="/greetings/")

        assert function.path == "/greetings/"

    def test_duplicate_name_fails_and_keeps_first(self):
        """Registering a taken name fails without touching the first entry."""
        reg = Registry()
        reg.register_http(hello, name="hello")

        with pytest.raises(RegistrationError, match="function name already registered: hello"):
            reg.register_http(goodbye, name="hello")

        function, found = reg.get_registered_function("hello")
        assert found
        assert function.http_fn is hello

    def test_name_or_path_required(self):
        """Either a name or a path must be given."""
        reg = Registry()

        with pytest.raises(RegistrationError, match="either path or name required"):
            reg.register_http(hello)

    def test_path_only_goes_to_unnamed_list(self):
        """Functions without a name are kept in registration order."""
        reg = Registry()
        first = reg.register_http(hello, path="/first")
        second = reg.register_http(goodbye, path="/second")

        assert reg.functions == {}
        assert reg.functions_without_name == [first, second]
        assert reg.get_last_function_without_name() == second

    def test_unnamed_paths_are_not_deduplicated(self):
        """There is no duplicate check for unnamed functions."""
        reg = Registry()
        reg.register_http(hello, path="/same")
        reg.register_http(goodbye, path="/same")

        assert len(reg.functions_without_name) == 2

    def test_lookup_of_unknown_name(self):
        """Looking up an unknown name reports not found."""
        reg = Registry()

        assert reg.get_registered_function("missing") == (None, False)
        assert reg.get_last_function_without_name() is None

    def test_get_all_functions_lists_named_then_unnamed(self):
        """All functions are returned, named ones first."""
        reg = Registry()
        unnamed = reg.register_http(goodbye, path="/bye")
        named = reg.register_http(hello, name="hello")

        assert reg.get_all_functions() == [named, unnamed]

    def test_reset_clears_everything(self):
        """Reset forgets named and unnamed functions."""
        reg = Registry()
        reg.register_http(hello, name="hello")
        reg.register_http(goodbye, path="/bye")

        reg.reset()

        assert reg.get_all_functions() == []

    def test_each_kind_is_tagged(self):
        """Each register call tags the function with its kind."""
        reg = Registry()

        assert reg.register_http(hello, name="a").kind == FunctionKind.HTTP
        assert reg.register_event(on_event, name="b").kind == FunctionKind.EVENT
        assert reg.register_cloud_event(on_event, name="c").kind == FunctionKind.CLOUD_EVENT
        assert reg.register_typed(double, name="d").kind == FunctionKind.TYPED

    def test_invalid_signature_is_rejected_eagerly(self):
        """Event functions are validated when registered."""
        reg = Registry()

        def one_param(context):
            return None

        with pytest.raises(SignatureError):
            reg.register_event(one_param, name="bad")

        assert reg.get_registered_function("bad") == (None, False)

    def test_signature_error_is_a_registration_error(self):
        """Callers can catch every registration failure with one type."""
        assert issubclass(SignatureError, RegistrationError)


class TestRegisteredFunction:
    """Test the registered function record."""

    def test_kind_requires_exactly_one_callback(self):
        """A record with no callback has no kind."""
        with pytest.raises(FunctionsFrameworkError, match="missing function entry"):
            RegisteredFunction(name="empty").kind

    def test_kind_rejects_several_callbacks(self):
        """A record with two callbacks has no kind either."""
        function = RegisteredFunction(name="both", http_fn=hello, event_fn=on_event)

        with pytest.raises(FunctionsFrameworkError):
            function.kind

    def test_callback_returns_the_set_function(self):
        """The callback property returns whichever callback is set."""
        function = RegisteredFunction(name="typed", typed_fn=double)

        assert function.callback is double


class TestDeclarativeRegistration:
    """Test the helpers bound to the default registry."""

    def test_default_is_a_singleton(self):
        """The default registry is the same object every time."""
        assert registry.default() is registry.default()

    def test_decorator_registers_and_returns_function(self, default_registry):
        """Used as a decorator, the helper returns the function unchanged."""

        @functions.http("decorated")
        def decorated(request):
            return "ok"

        function, found = default_registry.get_registered_function("decorated")
        assert found
        assert function.http_fn is decorated
        assert decorated(None) == "ok"

    def test_plain_call_registers(self, default_registry):
        """Called with the function, the helper registers it directly."""
        functions.typed("double", double)
        functions.event("on_event", on_event)
        functions.cloud_event("on_cloud_event", on_event, path="/ce")

        assert default_registry.get_registered_function("double")[1]
        assert default_registry.get_registered_function("on_event")[0].kind == FunctionKind.EVENT
        assert default_registry.get_registered_function("on_cloud_event")[0].path == "/ce"

    def test_failure_is_logged_and_raised(self, default_registry, caplog):
        """A registration failure is logged before it propagates."""
        functions.http("dup", hello)

        with caplog.at_level(logging.ERROR, logger="funcframework.functions"):
            with pytest.raises(RegistrationError):
                functions.http("dup", goodbye)

        assert "Failed to register function 'dup'" in caplog.text
