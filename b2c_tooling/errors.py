"""Exception types raised by b2c_tooling clients and operations."""

from __future__ import annotations

import httpx


class B2CError(Exception):
    """Base class for all b2c_tooling errors."""


class ConfigurationError(B2CError):
    """Raised when instance configuration is missing or inconsistent."""


class AuthenticationError(B2CError):
    """Raised when the OAuth token endpoint rejects a request."""


class CodeVersionError(B2CError):
    """Raised when a code version operation cannot be carried out."""


class WatchError(B2CError):
    """Raised when a watch session cannot be started."""


class HTTPError(B2CError):
    """Non-2xx response from a B2C API.

    The response is kept so callers can inspect status and body.
    """

    def __init__(self, message: str, response: httpx.Response, method: str):
        super().__init__(message)
        self.response = response
        self.method = method

    @property
    def status_code(self) -> int:
        return self.response.status_code
