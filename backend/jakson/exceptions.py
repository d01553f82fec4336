"""
Jakson — Exception Hierarchy
==============================

What:  Errors raised by the framework and by application code running inside it.
How:   Every error carries a message, an optional context dict and an optional
       cause. Errors that map to an HTTP response carry their own status code
       and the stable `error` tag that goes into the response body.
Who:   HttpError subclasses are raised by handlers and services and mapped by
       Action.handle_error(). The lifecycle errors are raised by Application and
       reach the embedding program unmapped.

Exception Hierarchy:
    JaksonError (base)
    ├── HttpError                → status + error tag
    │   ├── ValidationError      → 400 "Validation"
    │   ├── NotFoundError        → 404 "NotFound"
    │   ├── UnauthorizedError    → 401 "Unauthorized"
    │   ├── ForbiddenError       → 403 "Forbidden"
    │   └── ConflictError        → 409 "Conflict"
    ├── InvalidOutputError       → 500 "Internal" (handler returned a non-DTO)
    ├── ConfigurationError       (fatal, configure())
    ├── NotConfiguredError       (fatal, start() before configure())
    └── ServerError              (fatal, listening socket could not be opened)
"""

from typing import Any, Dict, List, Optional


class JaksonError(Exception):
    """
    Base exception for all Jakson errors.

    Attributes:
        message:  Human-readable description. Never sent to clients for 5xx errors.
        context:  Additional debug info, logged but never part of a response.
        cause:    The underlying exception, if any. Also set as __cause__ so
                  tracebacks show the chain.
    """

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        if message is None:
            message = str(cause) if cause is not None else ""
        self.message = message
        self.context = context or {}
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def response(self) -> Any:
        """The HTTP response of the cause, when the cause is an HTTP client error."""
        return getattr(self.cause, "response", None)

    @property
    def response_data(self) -> Any:
        """
        Decoded body of `response`, or None.

        JSON bodies are decoded; anything else is returned as text.
        """
        response = self.response
        if response is None:
            return None
        try:
            return response.json()
        except ValueError:
            return getattr(response, "text", None)


# ══════════════════════════════════════════════════════════════════════════
# Errors mapped to HTTP responses
# ══════════════════════════════════════════════════════════════════════════


class HttpError(JaksonError):
    """
    An error with a fixed HTTP status and response body tag.

    Subclasses only set `status` and `error`. Action.handle_error() turns any
    HttpError into Result(status, {"error": error}).
    """

    status: int = 500
    error: str = "Internal"

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error}


class ValidationError(HttpError):
    """
    Raised when request input fails its JSON Schema.

    `errors` is the list of violations in the wire format
    ({keyword, dataPath, schemaPath, params, message}) and is part of the
    response body.
    """

    status = 400
    error = "Validation"

    def __init__(
        self,
        errors: Optional[List[Dict[str, Any]]] = None,
        message: str = "Validation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.errors = errors or []

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "errors": self.errors}


class NotFoundError(HttpError):
    """Raised when a requested resource does not exist."""

    status = 404
    error = "NotFound"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id is not None:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id is not None:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx, cause=cause)


class UnauthorizedError(HttpError):
    """Raised when credentials are missing or invalid."""

    status = 401
    error = "Unauthorized"


class ForbiddenError(HttpError):
    """Raised when the caller is authenticated but not allowed to do this."""

    status = 403
    error = "Forbidden"


class ConflictError(HttpError):
    """Raised when the request conflicts with the current state of a resource."""

    status = 409
    error = "Conflict"


# ══════════════════════════════════════════════════════════════════════════
# Programming and lifecycle errors
# ══════════════════════════════════════════════════════════════════════════


class InvalidOutputError(JaksonError):
    """
    Raised when an action's handle() returns something that is not a plain DTO.

    Answered with 500 "Internal"; handlers must return dicts, lists and
    primitives, not models or ORM objects.
    """

    def __init__(self, output: Any = None, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["output_type"] = type(output).__name__
        super().__init__(message="always return plain objects (DTOs)", context=ctx)


class ConfigurationError(JaksonError):
    """Raised by Application.configure() when the service factory graph is invalid."""


class NotConfiguredError(JaksonError):
    """Raised by Application.start() when configure() has not completed."""

    def __init__(self, message: str = "run `await app.configure()` before `await app.start()`"):
        super().__init__(message=message)


class ServerError(JaksonError):
    """Raised by Application.start() when the HTTP server fails to start listening."""
