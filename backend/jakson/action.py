"""
Jakson — Actions
==================

What:  An Action instance handles exactly one HTTP request: it validates the
       input, runs the handler logic with the request's services and writes
       the response.
How:   Action.create_handler(app) returns a Starlette endpoint. For each
       request the endpoint creates a fresh services map, instantiates the
       Action subclass and awaits run(). Errors raised while creating the
       services are mapped by handle_error() like any other.

           router.add_route("/users/{id}", GetUserAction.create_handler(self), methods=["GET"])

Request lifecycle (run):
    ┌──────────────┐   ┌──────────┐   ┌──────────┐   ┌───────────────────────┐
    │ start        │──▶│ validate │──▶│ parse    │──▶│ before_handle/handle/ │
    │ services     │   │ b→p→q    │   │ input    │   │ after_handle          │
    └──────────────┘   └──────────┘   └──────────┘   └───────────────────────┘
           │ any error ─────┴──────────────┴──────────────────┘
           ▼
    ┌──────────────┐   ┌──────────┐   ┌──────────────────────────────────────┐
    │ handle_error │──▶│ respond  │──▶│ before_stop_services → stop services │
    └──────────────┘   └──────────┘   │ → after_stop_services   (always)     │
                                      └──────────────────────────────────────┘

Error mapping (handle_error):
    ValidationError   → 400 {"error": "Validation", "errors": [...]}
    NotFoundError     → 404 {"error": "NotFound"}
    UnauthorizedError → 401 {"error": "Unauthorized"}
    ForbiddenError    → 403 {"error": "Forbidden"}
    ConflictError     → 409 {"error": "Conflict"}
    anything else     → 500 {"error": "Internal"} (logged with traceback)
"""

import inspect
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Coroutine, Dict, Generic, Optional, TypeVar

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from jakson.exceptions import HttpError, InvalidOutputError, ValidationError
from jakson.result import Result, is_plain_dto
from jakson.validation import Schemas, ValidatorCache, Validators

if TYPE_CHECKING:
    from jakson.application import Application

AppT = TypeVar("AppT", bound="Application")
InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")

RouteHandler = Callable[[Request], Coroutine[Any, Any, Response]]

# Compiled validators for every Action subclass, filled on first use.
validator_cache = ValidatorCache()


class Action(ABC, Generic[AppT, InputT, OutputT]):
    """
    Base class for actions.

    Subclasses declare `schemas`, parse their typed input from the request in
    parse_input() and implement handle(). handle() never sees the request and
    must return a plain DTO (dicts, lists, primitives).

    Example:
        class GetUserAction(Action["App", dict, dict]):
            schemas = Schemas(
                params={
                    "type": "object",
                    "required": ["id"],
                    "properties": {"id": {"type": "integer"}},
                },
            )

            def parse_input(self, request):
                return {"id": int(request.path_params["id"])}

            async def handle(self, input):
                return await self.services["user"].get_user(input["id"])
    """

    # JSON schemas for the request body, route params and query string.
    schemas: ClassVar[Schemas] = Schemas()

    def __init__(self, app: AppT, services: Dict[str, Any]):
        self.app = app
        self.services = services
        self.validators = self._ensure_validators_created()

    @classmethod
    def create_handler(cls, app: AppT) -> RouteHandler:
        """Return a Starlette endpoint that runs a new instance of this action per request."""

        async def handler(request: Request) -> Response:
            try:
                services = await app.create_service_instances("action", request)
            except Exception as e:
                # No service was started yet, so there is nothing to stop.
                result = cls(app, {}).handle_error(e)
                return JSONResponse(status_code=result.status, content=result.body)

            action = cls(app, services)
            return await action.run(request)

        handler.__name__ = cls.__name__
        return handler

    # ══════════════════════════════════════════════════════════════════════
    # Overridable steps
    # ══════════════════════════════════════════════════════════════════════

    def parse_input(self, request: Request) -> InputT:
        """
        Parse the typed input of handle() from the request.

        handle() does not get the request, so route params, query params and
        the body (request.state.body) have to be picked up here. May also be
        a coroutine function. Returns {} by default.
        """
        return {}  # type: ignore[return-value]

    @abstractmethod
    async def handle(self, input: InputT) -> OutputT:
        """Handle the request and return the response body."""

    async def before_handle(self, input: InputT) -> InputT:
        return input

    async def after_handle(self, input: InputT, output: OutputT) -> OutputT:
        return output

    async def before_stop_services(self) -> None:
        pass

    async def after_stop_services(self) -> None:
        pass

    def respond(self, request: Request, result: Result) -> Response:
        """
        Build the response of a successful request.

        The default sends result.body as JSON with result.status. Only used for
        2xx results; error results are always sent as they are.
        """
        return JSONResponse(status_code=result.status, content=result.body)

    async def validate(self, request: Request) -> Optional[Result]:
        """
        Validate body, params and query, in that order.

        Returns the 400 Result of the first failing part, or None when
        everything is valid or the action declares no schemas.
        """
        for validator in self.validators:
            errors = validator.validate(request)
            if errors:
                return self.handle_error(ValidationError(errors))
        return None

    def handle_error(self, error: BaseException) -> Result:
        if isinstance(error, HttpError):
            return Result(status=error.status, body=error.to_body())

        self.log("error", {"error": error})
        return Result(status=500, body={"error": "Internal"})

    def log(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.app.log(message, data)

    # ══════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ══════════════════════════════════════════════════════════════════════

    async def run(self, request: Request) -> Response:
        request_start_time = time.perf_counter()
        result = Result(status=500, body={"error": "Internal"})

        try:
            await self.app.start_service_instances(self.services)

            # Logged only after the services are started so that an
            # overridden log() can use them.
            self.log("request started", {"method": request.method, "path": request.url.path})

            result = await self._process(request)
        except Exception as e:
            result = self.handle_error(e)
        finally:
            try:
                response = self._handle_result(request, result)
            except Exception as e:
                response = self._handle_result(request, self.handle_error(e))

            # Logged before the services are stopped so that an overridden
            # log() can still use them.
            self.log(
                "request ended",
                {
                    "status": response.status_code,
                    "requestTime": round((time.perf_counter() - request_start_time) * 1000),
                },
            )

            await self.before_stop_services()
            await self.app.stop_service_instances(self.services)
            await self.after_stop_services()

        return response

    async def _process(self, request: Request) -> Result:
        validation_result = await self.validate(request)
        if validation_result is not None:
            return validation_result

        # Always parsed from the request again; validation only checked the shape.
        input = await _maybe_await(self.parse_input(request))
        input = await self.before_handle(input)

        output = await self.handle(input)
        output = await self.after_handle(input, output)

        if output is not None and not is_plain_dto(output):
            raise InvalidOutputError(output)

        return Result(status=200, body=output)

    def _handle_result(self, request: Request, result: Result) -> Response:
        if 200 <= result.status < 300:
            return self.respond(request, result)
        return JSONResponse(status_code=result.status, content=result.body)

    def _ensure_validators_created(self) -> Validators:
        return validator_cache.get(type(self), type(self).schemas)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
