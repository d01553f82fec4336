"""
Jakson — Application
======================

What:  The top-level object that owns the service factories, the route table
       and the HTTP server of one application.
How:   Subclasses implement create_service_factories() and register_routes().
       The embedding program then drives the lifecycle:

           app = App(Config(type="production", port=8080))
           await app.configure()   # factories + routes + FastAPI app
           await app.start()       # factories started, socket open
           ...
           await app.stop()        # socket closed, factories stopped

Who:   Action.create_handler() asks the application for a fresh set of
       services for every request; tests and background tasks use
       service_scope().

Lifecycle:
    configure():
        1. create_service_factories(), checked to only hold ServiceFactory values
        2. register_routes(router)
        3. FastAPI app: before_fastapi_configured → BodyParser →
           after_body_parser_added → router → after_fastapi_configured
    start():
        1. every factory's start(), in map order
        2. uvicorn server listening on config.host:config.port
    stop():
        1. server closed (if running)
        2. every factory's stop(), in map order, also when start() never ran

Per unit of work:
    create_service_instances() → start_service_instances() → ... →
    stop_service_instances()
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Mapping,
    Optional,
    Type,
    TypeVar,
)

import uvicorn
from fastapi import APIRouter, FastAPI
from starlette.middleware import Middleware
from starlette.requests import Request

from jakson.config import Config
from jakson.exceptions import ConfigurationError, NotConfiguredError, ServerError
from jakson.logger import create_logger
from jakson.middleware.body_parser import BodyParserMiddleware
from jakson.service import Service, ServiceContext
from jakson.service_factory import ServiceFactory

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT", bound=Config)

Services = Dict[str, Service]


class Application(ABC, Generic[ConfigT]):
    """
    Base class for applications.

    Example:
        class App(Application[Config]):
            async def create_service_factories(self):
                return {
                    "fetch": FetchServiceFactory(self),
                    "user": UserServiceFactory(self),
                }

            async def register_routes(self, router):
                router.add_route("/users/{id}", GetUserAction.create_handler(self), methods=["GET"])
    """

    # Name of the logger behind the default log() implementation.
    log_tag = "jakson"

    def __init__(self, config: ConfigT):
        self.config = config
        self.router = APIRouter()

        # These exist after configure() has run.
        self.fastapi: Optional[FastAPI] = None
        self.service_factories: Optional[Dict[str, ServiceFactory]] = None

        # These exist while the app is started.
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None
        self._factories_stopped = False

        self._log = create_logger(self.log_tag)

    # ══════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ══════════════════════════════════════════════════════════════════════

    async def configure(self) -> None:
        """Build the service factories, register routes and create the FastAPI app."""
        self.service_factories = dict(await self.create_service_factories())
        self._check_service_factories()

        await self.register_routes(self.router)
        self.fastapi = await self.create_fastapi()

    async def start(self) -> None:
        """
        Start every service factory, then start listening on config.port.

        Raises:
            NotConfiguredError: configure() has not completed.
            ServerError: the server could not start listening.
        """
        if self.fastapi is None or self.service_factories is None:
            raise NotConfiguredError()

        self._factories_stopped = False
        await self._start_service_factories()
        self._server = await self.start_server(self.fastapi)
        logger.info("%s listening on %s:%s", type(self).__name__, self.config.host, self.port)

    async def stop(self) -> None:
        """
        Close the server if it is open, then stop the service factories.

        Safe to call before start(): only the socket close is skipped. Safe to
        call repeatedly: a second stop() without a start() in between does
        nothing. Before configure() there is nothing to stop.
        """
        if self._server is not None:
            server, self._server = self._server, None
            await self.stop_server(server)

        if self.service_factories is not None and not self._factories_stopped:
            self._factories_stopped = True
            await self._stop_service_factories()

    @property
    def port(self) -> Optional[int]:
        """The port the server is bound to, or None when it is not running."""
        if self._server is None or not self._server.servers:
            return None
        for server in self._server.servers:
            for sock in server.sockets:
                return sock.getsockname()[1]
        return None

    # ══════════════════════════════════════════════════════════════════════
    # Per unit of work
    # ══════════════════════════════════════════════════════════════════════

    async def create_service_instances(self, type: str, request: Optional[Request] = None) -> Services:
        """
        Create one service instance per factory for a new unit of work.

        The services dict in the context is filled in factory order, so a
        service can see the siblings created before it, but not the ones
        created after it.
        """
        services: Services = {}
        ctx = await self.create_service_context(type, services, request)

        async def create(name: str, factory: ServiceFactory) -> None:
            services[name] = await factory.create_service(ctx)

        await self.for_each_service_factory(create)
        return services

    async def start_service_instances(self, services: Services) -> None:
        await self.for_each_service(services, lambda _, service: service.start())

    async def stop_service_instances(self, services: Services) -> None:
        # Fail-fast: a stop() that raises leaves the remaining services unstopped.
        await self.for_each_service(services, lambda _, service: service.stop())

    @asynccontextmanager
    async def service_scope(self, type: str = "task") -> AsyncIterator[Services]:
        """
        Started services for a unit of work outside of an HTTP request.

            async with app.service_scope("task") as services:
                await services["mailer"].send_reminders()

        The services are stopped when the block exits, whether or not it raised.
        """
        services = await self.create_service_instances(type)
        try:
            await self.start_service_instances(services)
            yield services
        finally:
            await self.stop_service_instances(services)

    async def for_each_service_factory(
        self, callback: Callable[[str, ServiceFactory], Awaitable[Any]]
    ) -> None:
        for name, factory in self._factories().items():
            await callback(name, factory)

    async def for_each_service(
        self, services: Services, callback: Callable[[str, Service], Awaitable[Any]]
    ) -> None:
        for name, service in list(services.items()):
            await callback(name, service)

    # ══════════════════════════════════════════════════════════════════════
    # Subclass API
    # ══════════════════════════════════════════════════════════════════════

    @abstractmethod
    async def create_service_factories(self) -> Mapping[str, ServiceFactory]:
        """Return the service factories, keyed by the name services are looked up by."""

    @abstractmethod
    async def register_routes(self, router: APIRouter) -> None:
        """Register the application's routes, usually Action.create_handler(self) endpoints."""

    def log(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Log a message with structured data.

        Override to enrich entries, e.g. with a correlation id from a service.
        During a request this is only called while the request's services are
        started.
        """
        self._log(message, data)

    def use(self, app: FastAPI, middleware_class: Type[Any], **options: Any) -> None:
        """
        Add middleware to `app` after everything added so far.

        Middleware added earlier runs first (outermost), so calling this from
        one of the configuration hooks installs the middleware at exactly that
        point of the chain.
        """
        if app.middleware_stack is not None:
            raise RuntimeError("Cannot add middleware after an application has started")
        app.user_middleware.append(Middleware(middleware_class, **options))

    async def before_fastapi_configured(self, app: FastAPI) -> None:
        """Called before any middleware is added. Does nothing by default."""

    async def after_body_parser_added(self, app: FastAPI) -> None:
        """Called right after the body parser is added. Does nothing by default."""

    async def after_fastapi_configured(self, app: FastAPI) -> None:
        """Called after the router is mounted. Does nothing by default."""

    # ══════════════════════════════════════════════════════════════════════
    # Internals (overridable)
    # ══════════════════════════════════════════════════════════════════════

    async def create_fastapi(self) -> FastAPI:
        app = FastAPI(
            title=type(self).__name__,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        app.state.application = self

        await self.before_fastapi_configured(app)

        self.use(app, BodyParserMiddleware)

        await self.after_body_parser_added(app)

        app.include_router(self.router)

        await self.after_fastapi_configured(app)

        return app

    async def create_service_context(
        self, type: str, services: Services, request: Optional[Request] = None
    ) -> ServiceContext:
        return ServiceContext(
            app=self,
            services=services,
            uid=str(uuid.uuid4())[:8],
            type=type,
        )

    async def start_server(self, app: FastAPI) -> uvicorn.Server:
        config = uvicorn.Config(
            app,
            host=self.config.host,
            port=self.config.port,
            lifespan="off",
            log_config=None,
            access_log=False,
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(self._serve(server))

        while not server.started:
            if task.done():
                task.result()
                raise ServerError(f"server on port {self.config.port} exited during startup")
            await asyncio.sleep(0.01)

        self._server_task = task
        return server

    async def stop_server(self, server: uvicorn.Server) -> None:
        server.should_exit = True
        task, self._server_task = self._server_task, None
        if task is not None:
            await task

    # ══════════════════════════════════════════════════════════════════════
    # Private
    # ══════════════════════════════════════════════════════════════════════

    async def _serve(self, server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind.
            raise ServerError(
                f"could not listen on {self.config.host}:{self.config.port}",
                cause=e,
            ) from e

    def _factories(self) -> Dict[str, ServiceFactory]:
        if self.service_factories is None:
            raise NotConfiguredError("run `await app.configure()` first")
        return self.service_factories

    def _check_service_factories(self) -> None:
        for name, factory in self._factories().items():
            if not isinstance(factory, ServiceFactory):
                raise ConfigurationError(
                    f"{name} is not an instance of ServiceFactory",
                    context={"name": name, "type": type(factory).__name__},
                )

    async def _start_service_factories(self) -> None:
        await self.for_each_service_factory(lambda _, factory: factory.start())

    async def _stop_service_factories(self) -> None:
        await self.for_each_service_factory(lambda _, factory: factory.stop())
