"""
Exception classes for the owot client library.

Provides a hierarchy of exceptions for different error conditions:
- OwotError: Base exception for all client errors
- ValidationError: Invalid arguments, rejected before anything is sent
- ProtocolError: Malformed or unknown message from the server
- RequestTimeoutError: No correlated response within the request timeout
- AuthenticationError: Uvias login failed
- DisconnectedError: The connection closed before the session started
"""

from typing import Any, Optional


class OwotError(Exception):
    """
    Base exception for all owot client errors.

    Attributes:
        message: Human-readable error message
        response: Raw frame or response body for debugging
    """

    def __init__(self, message: str, response: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.response = response


class ValidationError(OwotError):
    """
    Raised when a call is given arguments the server would refuse.

    This includes:
    - Fetch rectangles covering more than 2500 tiles
    - Rectangles whose max corner lies before the min corner
    - Unknown protection levels
    """

    def __init__(self, message: str = "Validation error"):
        super().__init__(message)


class ProtocolError(OwotError):
    """Raised when an incoming frame cannot be decoded."""

    def __init__(self, message: str = "Protocol error", response: Optional[Any] = None):
        super().__init__(message, response=response)


class RequestTimeoutError(OwotError):
    """Raised when a ping, stats or fetch request is not answered in time."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)


class AuthenticationError(OwotError):
    """
    Raised when logging in to Uvias fails.

    This includes:
    - No Set-Cookie header in the login response
    - A cookie without a uviastoken
    - Transport errors talking to the login endpoint
    """

    def __init__(
        self,
        message: str = "Authentication failed",
        status_code: Optional[int] = None,
        response: Optional[Any] = None,
    ):
        super().__init__(message, response)
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class DisconnectedError(OwotError):
    """Raised when the connection closes before the session was established."""

    def __init__(self, message: str = "Disconnected"):
        super().__init__(message)
