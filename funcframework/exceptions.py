"""Exception types raised by the functions framework core."""

from typing import Optional


class FunctionsFrameworkError(Exception):
    """Base class for all framework errors."""

    pass


class RegistrationError(FunctionsFrameworkError):
    """Raised when a function cannot be registered."""

    pass


class SignatureError(RegistrationError):
    """Raised when a callback's signature does not fit its function kind."""

    pass


class EventConversionError(FunctionsFrameworkError):
    """Raised when a request cannot be converted between event encodings.

    Carries the HTTP status code the adapter should answer with.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code or 415
