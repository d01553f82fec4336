"""
Jakson — Test Harness
=======================

What:  Runs an application under test and calls every service factory's test
       session hooks at the right points of its lifecycle.
How:   A project's conftest.py wraps its app in a TestSession and calls
       start()/stop() from a session fixture and the per-test hooks from an
       autouse fixture:

           @pytest_asyncio.fixture(scope="session")
           async def session():
               session = TestSession(App(test_config))
               await session.start()
               yield session
               await session.stop()

           @pytest_asyncio.fixture(autouse=True)
           async def each_test(session):
               async with session.test():
                   yield

Hook order:
    configure → before_start_app → start → after_start_app
    (per test) before_each_test → test → after_each_test
    before_stop_app → stop → after_stop_app
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx

from jakson.application import Application
from jakson.service import Service


class TestSession:
    """Drives an Application and its factories' ServiceTestSessions through a test run."""

    __test__ = False  # not a pytest test class

    def __init__(self, app: Application, host: str = "127.0.0.1"):
        self.app = app
        self.host = host

    async def start(self) -> None:
        await self.app.configure()
        await self._call_hooks("before_start_app")
        await self.app.start()
        await self._call_hooks("after_start_app")

    async def stop(self) -> None:
        await self._call_hooks("before_stop_app")
        await self.app.stop()
        await self._call_hooks("after_stop_app")

    async def before_each_test(self) -> None:
        await self._call_hooks("before_each_test")

    async def after_each_test(self) -> None:
        await self._call_hooks("after_each_test")

    @asynccontextmanager
    async def test(self) -> AsyncIterator[None]:
        """Wrap one test in before_each_test/after_each_test."""
        await self.before_each_test()
        try:
            yield
        finally:
            await self.after_each_test()

    @asynccontextmanager
    async def services(self, type: str = "test") -> AsyncIterator[Dict[str, Service]]:
        """Started services for calling service methods directly from a test."""
        async with self.app.service_scope(type) as services:
            yield services

    @property
    def base_url(self) -> Optional[str]:
        port = self.app.port
        if port is None:
            return None
        return f"http://{self.host}:{port}"

    def client(self, **kwargs) -> httpx.AsyncClient:
        """
        An httpx client for the running app.

        Talks to the real socket when the app is started, otherwise calls the
        ASGI app in-process. Never raises for 4xx/5xx statuses.
        """
        if self.base_url is not None:
            return httpx.AsyncClient(base_url=self.base_url, **kwargs)
        if self.app.fastapi is None:
            raise RuntimeError("start the test session before creating a client")
        transport = httpx.ASGITransport(app=self.app.fastapi)
        return httpx.AsyncClient(transport=transport, base_url="http://test", **kwargs)

    async def _call_hooks(self, hook: str) -> None:
        async def call(_, factory) -> None:
            await getattr(factory.test_session, hook)()

        await self.app.for_each_service_factory(call)
