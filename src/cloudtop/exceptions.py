"""Exception hierarchy for cloudtop.

All exceptions inherit from :class:`CloudtopError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`cloudtop.exit_codes`.
The top-level error handler in :func:`cloudtop.app.main` catches
``CloudtopError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    CloudtopError (exit 1)
    +-- InvalidUsageError          (exit 2)
    +-- AuthError                  (exit 3)
    |   +-- OAuthError
    |   |   +-- AuthorizationDeniedError
    |   |   +-- AuthorizationExpiredError
    |   +-- CredentialNotFoundError
    +-- NotFoundError              (exit 4)
    +-- ServerError                (exit 5)
    +-- ConnectionError_           (exit 6)
    |   +-- DeviceFlowTransportError
    +-- ConfigError                (exit 1)
"""

from __future__ import annotations

from cloudtop.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class CloudtopError(Exception):
    """Base exception for all cloudtop errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`cloudtop.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(CloudtopError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(CloudtopError):
    """Raised when authentication or authorisation fails."""

    exit_code = EXIT_AUTH_FAILURE


class OAuthError(AuthError):
    """A structured error body returned by the authorization server.

    The server answers failed requests with ``{"error": ..., "error_description": ...}``
    (some providers use ``description``).  Both fields are kept so callers
    can match on :attr:`error` instead of parsing the message.

    Args:
        error: The machine-readable error code, e.g. ``"access_denied"``.
        description: Optional human-readable description.
        status_code: HTTP status of the response that carried the error.
    """

    def __init__(
        self,
        error: str,
        description: str = "",
        status_code: int | None = None,
    ):
        self.error = error
        self.description = description
        self.status_code = status_code
        message = f"{error}: {description}" if description else error
        super().__init__(message)


class AuthorizationDeniedError(OAuthError):
    """The user declined the device authorization request."""

    def __init__(self, description: str = "authorization denied by user"):
        super().__init__("access_denied", description)


class AuthorizationExpiredError(OAuthError):
    """The device code expired before the user approved it."""

    def __init__(self, description: str = "device code expired, please try again"):
        super().__init__("expired_token", description)


class CredentialNotFoundError(AuthError):
    """No credential is stored under the requested key."""


class NotFoundError(CloudtopError):
    """Raised when the API returns HTTP 404 (resource not found)."""

    exit_code = EXIT_NOT_FOUND


class ServerError(CloudtopError):
    """Raised when the API returns an HTTP 5xx server error."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(CloudtopError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class DeviceFlowTransportError(ConnectionError_):
    """The authorization server could not be reached or sent an unreadable body."""


class ConfigError(CloudtopError):
    """Raised for configuration problems (invalid JSON, bad URLs, missing client id)."""

    exit_code = EXIT_GENERIC_FAILURE
