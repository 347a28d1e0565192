"""
Birdwatcher - Custom Exceptions

Startup failures (configuration, TLS material, listener) are fatal and end
the process. Request-time failures carry the HTTP status code the endpoint
layer answers with.
"""

from typing import Optional


class BirdwatcherError(Exception):
    """
    Base exception for all birdwatcher errors.

    Catch this for broad handling; the subclasses below describe the
    specific failure.
    """

    pass


class ConfigError(BirdwatcherError):
    """Raised when configuration cannot be loaded or validated."""


class StartupError(BirdwatcherError):
    """
    Raised when a startup gate fails.

    Attributes:
        gate: Name of the startup state that was being entered

    Example:
        >>> raise StartupError(
        ...     "You have enabled TLS support but not specified both a crt and a key file",
        ...     gate="tls_validated",
        ... )
    """

    def __init__(self, message: str, gate: Optional[str] = None):
        super().__init__(message)
        self.gate = gate


class RequestError(BirdwatcherError):
    """
    Base class for errors answered to the HTTP client.

    Attributes:
        status_code: HTTP status code of the error response
    """

    status_code: int = 500


class InvalidParameter(RequestError):
    """Raised when a path or query parameter fails validation."""

    status_code = 400

    def __init__(self, name: str, value: Optional[str]):
        super().__init__(f"Invalid value for parameter '{name}': {value!r}")
        self.name = name
        self.value = value


class AccessDenied(RequestError):
    """Raised when the client address is not in the `allow_from` list."""

    status_code = 403

    def __init__(self, client: str):
        super().__init__(f"Access denied for {client}")
        self.client = client


class RateLimitExceeded(RequestError):
    """Raised when the backend query budget for the current minute is spent."""

    status_code = 429


class BackendError(RequestError):
    """
    Raised when the `birdc` command fails.

    Attributes:
        command: The query that was sent to the daemon
        returncode: Exit status of the backend process, if it ran

    Example:
        >>> raise BackendError(
        ...     "birdc exited with status 1",
        ...     command="show protocols all",
        ...     returncode=1,
        ... )
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        command: str,
        returncode: Optional[int] = None,
    ):
        super().__init__(message)
        self.command = command
        self.returncode = returncode


__all__ = [
    "AccessDenied",
    "BackendError",
    "BirdwatcherError",
    "ConfigError",
    "InvalidParameter",
    "RateLimitExceeded",
    "RequestError",
    "StartupError",
]
