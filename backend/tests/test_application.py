"""
Jakson — Application Tests
============================

What:  Tests for the Application lifecycle, the per-unit-of-work service
       helpers and the middleware configuration hooks.
How:   Most tests use the configured users app from conftest.py. Lifecycle
       tests start the real uvicorn server on an ephemeral loopback port.

What we test:
    ✅ configure / start / stop, including misuse (start before configure,
       stop before start, stop twice)
    ✅ Factories started and stopped exactly once
    ✅ Service instances see only the siblings created before them
    ✅ service_scope() always stops its services
    ✅ Middleware hooks run in chain order around the body parser
    ✅ A port that is already taken surfaces as ServerError
"""

import socket
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import APIRouter
from httpx import ASGITransport, AsyncClient

from jakson import (
    Application,
    ConfigurationError,
    NotConfiguredError,
    ServerError,
    Service,
    ServiceContext,
    ServiceFactory,
)

from conftest import App


class CountingServiceFactory(ServiceFactory):
    """Counts lifecycle calls and snapshots the siblings each service sees."""

    def __init__(self, app, name: str, log: List[Any]):
        super().__init__(app)
        self.name = name
        self.log = log

    async def start(self) -> None:
        self.log.append(("factory.start", self.name))

    async def stop(self) -> None:
        self.log.append(("factory.stop", self.name))

    async def create_service(self, ctx: ServiceContext) -> Service:
        self.log.append(("create", self.name, sorted(ctx.services), ctx.type))
        return Service(ctx)


class CountingApp(Application):
    def __init__(self, config):
        super().__init__(config)
        self.calls: List[Any] = []

    async def create_service_factories(self):
        return {
            "a": CountingServiceFactory(self, "a", self.calls),
            "b": CountingServiceFactory(self, "b", self.calls),
            "c": CountingServiceFactory(self, "c", self.calls),
        }

    async def register_routes(self, router: APIRouter) -> None:
        pass


# ══════════════════════════════════════════════════════════════════════════
# Lifecycle
# ══════════════════════════════════════════════════════════════════════════


class TestConfigure:

    @pytest.mark.asyncio
    async def test_configure_builds_factories_and_fastapi(self, config):
        app = App(config)
        assert app.fastapi is None

        await app.configure()

        assert list(app.service_factories) == ["fetch", "user"]
        assert app.fastapi is not None
        assert app.fastapi.state.application is app

    @pytest.mark.asyncio
    async def test_non_factory_value_is_rejected(self, config):
        class BrokenApp(App):
            async def create_service_factories(self):
                return {"fetch": object()}

        with pytest.raises(ConfigurationError) as exc_info:
            await BrokenApp(config).configure()

        assert "fetch is not an instance of ServiceFactory" in str(exc_info.value)
        assert exc_info.value.context == {"name": "fetch", "type": "object"}

    @pytest.mark.asyncio
    async def test_start_before_configure_raises(self, config):
        app = App(config)

        with pytest.raises(NotConfiguredError, match="configure"):
            await app.start()

    @pytest.mark.asyncio
    async def test_stop_before_start_stops_factories(self, config):
        """Without start() only the socket close is skipped."""
        app = CountingApp(config)
        await app.configure()

        await app.stop()
        await app.stop()

        assert app.calls == [
            ("factory.stop", "a"),
            ("factory.stop", "b"),
            ("factory.stop", "c"),
        ]

    @pytest.mark.asyncio
    async def test_stop_after_service_scope_only(self, config):
        """A program that never starts the server still releases its factories."""
        app = CountingApp(config)
        await app.configure()

        async with app.service_scope("task"):
            pass
        await app.stop()

        assert [call for call in app.calls if call[0] == "factory.stop"] == [
            ("factory.stop", "a"),
            ("factory.stop", "b"),
            ("factory.stop", "c"),
        ]

    @pytest.mark.asyncio
    async def test_stop_before_configure_is_noop(self, config):
        app = CountingApp(config)

        await app.stop()

        assert app.calls == []


class TestStartStop:

    @pytest.mark.asyncio
    async def test_serves_requests_on_real_socket(self, app):
        await app.start()
        assert app.port not in (None, 0)

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{app.port}") as client:
            res = await client.get("/users/1")

        assert res.status_code == 200
        assert res.json() == {"id": 1, "username": "jakso"}

    @pytest.mark.asyncio
    async def test_stop_closes_socket(self, app):
        await app.start()
        port = app.port

        await app.stop()

        assert app.port is None
        with pytest.raises(httpx.ConnectError):
            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
                await client.get("/users/1")

    @pytest.mark.asyncio
    async def test_factories_started_and_stopped_once(self, config):
        app = CountingApp(config)
        await app.configure()

        await app.start()
        await app.stop()
        await app.stop()

        assert app.calls == [
            ("factory.start", "a"),
            ("factory.start", "b"),
            ("factory.start", "c"),
            ("factory.stop", "a"),
            ("factory.stop", "b"),
            ("factory.stop", "c"),
        ]

    @pytest.mark.asyncio
    async def test_port_in_use_raises_server_error(self, config):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen()
            port = taken.getsockname()[1]

            app = App(config.model_copy(update={"port": port}))
            await app.configure()
            try:
                with pytest.raises(ServerError):
                    await app.start()
            finally:
                await app.stop()


# ══════════════════════════════════════════════════════════════════════════
# Service instances
# ══════════════════════════════════════════════════════════════════════════


class TestServiceInstances:

    @pytest.mark.asyncio
    async def test_services_see_earlier_siblings_only(self, config):
        app = CountingApp(config)
        await app.configure()

        services = await app.create_service_instances("task")

        assert list(services) == ["a", "b", "c"]
        assert app.calls == [
            ("create", "a", [], "task"),
            ("create", "b", ["a"], "task"),
            ("create", "c", ["a", "b"], "task"),
        ]
        # The context's map is the returned map, so every sibling is visible later.
        assert services["a"].services is services

    @pytest.mark.asyncio
    async def test_instance_id_shared_within_unit_of_work(self, app):
        first = await app.create_service_instances("task")
        second = await app.create_service_instances("task")

        assert first["fetch"].instance_id == first["user"].instance_id
        assert len(first["fetch"].instance_id) == 8
        assert first["fetch"].instance_id != second["fetch"].instance_id
        assert first["user"].unit_of_work_type == "task"

    @pytest.mark.asyncio
    async def test_stop_is_fail_fast(self, app):
        services: Dict[str, Any] = {"first": AsyncMock(), "second": AsyncMock()}
        services["first"].stop.side_effect = RuntimeError("stop failed")

        with pytest.raises(RuntimeError, match="stop failed"):
            await app.stop_service_instances(services)

        services["second"].stop.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_scope_starts_and_stops(self, app):
        async with app.service_scope() as services:
            user = await services["user"].get_user(7)

        assert user == {"id": 7, "username": "jakso"}
        assert [event[:2] for event in app.events if event[0] != "create"] == [
            ("start", "fetch"),
            ("start", "user"),
            ("stop", "fetch"),
            ("stop", "user"),
        ]

    @pytest.mark.asyncio
    async def test_service_scope_stops_on_error(self, app):
        with pytest.raises(ValueError):
            async with app.service_scope("task"):
                raise ValueError("boom")

        assert [event[0] for event in app.events].count("stop") == 2


# ══════════════════════════════════════════════════════════════════════════
# Middleware hooks
# ══════════════════════════════════════════════════════════════════════════


class TagMiddleware:
    """Records its name, and whether the body was parsed yet, on every request."""

    def __init__(self, app, name: str, seen: List[Any]):
        self.app = app
        self.name = name
        self.seen = seen

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            self.seen.append((self.name, "body" in scope.get("state", {})))
        await self.app(scope, receive, send)


class HookedApp(App):
    def __init__(self, config):
        super().__init__(config)
        self.seen: List[Any] = []

    async def before_fastapi_configured(self, app):
        self.use(app, TagMiddleware, name="before", seen=self.seen)

    async def after_body_parser_added(self, app):
        self.use(app, TagMiddleware, name="after", seen=self.seen)

    async def after_fastapi_configured(self, app):
        self.use(app, TagMiddleware, name="last", seen=self.seen)


class TestMiddlewareHooks:

    @pytest.mark.asyncio
    async def test_hooks_run_in_chain_order(self, config):
        app = HookedApp(config)
        await app.configure()

        transport = ASGITransport(app=app.fastapi)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            res = await client.post("/users", json={"id": 1, "username": "a"})

        assert res.status_code == 200
        assert app.seen == [("before", False), ("after", True), ("last", True)]

    @pytest.mark.asyncio
    async def test_use_after_first_request_raises(self, app, client):
        await client.get("/users/1")

        with pytest.raises(RuntimeError):
            app.use(app.fastapi, TagMiddleware, name="late", seen=[])
