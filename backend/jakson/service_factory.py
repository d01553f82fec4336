"""
Jakson — Service Factories
============================

What:  A ServiceFactory lives as long as the application and creates one
       Service instance for each request, task or test.
How:   Application.configure() builds the factories map; Application.start()
       and stop() call each factory's start()/stop() exactly once. Any heavy
       initialization, or anything that should only happen once (connection
       pools, clients, caches), belongs in the factory.
Who:   Subclassed by applications; see Application.create_service_factories().

Test sessions:
    Each factory also owns a ServiceTestSession whose hooks the test harness
    (jakson.testing.TestSession) calls around the tested application's
    lifecycle. Factories override create_test_session() to seed or reset
    shared fixtures, e.g. truncate database tables before each test.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

from jakson.service import Service, ServiceContext

if TYPE_CHECKING:
    from jakson.application import Application

AppT = TypeVar("AppT", bound="Application")
ServiceT = TypeVar("ServiceT", bound=Service)


class ServiceTestSession:
    """
    Test-time hooks of one service factory. All hooks are no-ops by default.

    Call order, driven by jakson.testing.TestSession:
        before_start_app → app.start() → after_start_app
        before_each_test → (test) → after_each_test      (per test)
        before_stop_app  → app.stop()  → after_stop_app
    """

    async def before_start_app(self) -> None:
        pass

    async def after_start_app(self) -> None:
        pass

    async def before_each_test(self) -> None:
        pass

    async def after_each_test(self) -> None:
        pass

    async def before_stop_app(self) -> None:
        pass

    async def after_stop_app(self) -> None:
        pass


class ServiceFactory(ABC, Generic[AppT, ServiceT]):
    """
    Base class for service factories.

    Example:
        class UserServiceFactory(ServiceFactory["App", UserService]):
            async def create_service(self, ctx: ServiceContext) -> UserService:
                return UserService(ctx)
    """

    def __init__(self, app: AppT):
        self.app = app
        self._test_session: Optional[ServiceTestSession] = None

    @property
    def test_session(self) -> ServiceTestSession:
        """The factory's test session, created on first access."""
        if self._test_session is None:
            self._test_session = self.create_test_session()
        return self._test_session

    async def start(self) -> None:
        """Called once when the app is started."""

    async def stop(self) -> None:
        """Called once when the app is stopped."""

    @abstractmethod
    async def create_service(self, ctx: ServiceContext[AppT]) -> ServiceT:
        """Create a new service instance. Called for each request, task or test."""

    def create_test_session(self) -> ServiceTestSession:
        """Create the test session. Only used by tests."""
        return ServiceTestSession()
