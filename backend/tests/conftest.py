"""
Jakson — Test Configuration (conftest.py)
===========================================

What:  Shared pytest fixtures and a small users application the tests run
       requests against.
How:   The application is configured but not started for most tests; requests
       go through httpx's ASGITransport straight into the FastAPI app. Tests
       that need the real socket start it on port 0.

Test application:
    Services:  fetch (FetchService)  ← user (UserService) uses it
    Routes:    GET  /users/{id}   GetUserAction     (params + query schemas)
               POST /users        CreateUserAction  (body schema)

Fixture Hierarchy (all function-scoped):
    ├── config:  Config(type="test", host=127.0.0.1, port=0)
    ├── app:     configured App, stopped after the test
    └── client:  httpx AsyncClient bound to app.fastapi
"""

import asyncio
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from fastapi import APIRouter
from httpx import ASGITransport, AsyncClient

from jakson import (
    Action,
    Application,
    Config,
    NotFoundError,
    Schemas,
    Service,
    ServiceContext,
    ServiceFactory,
)


# ══════════════════════════════════════════════════════════════════════════
# Test application
# ══════════════════════════════════════════════════════════════════════════


class FetchService(Service["App"]):
    async def fetch_user(self, user_id: int) -> Dict[str, Any]:
        # Simulate some kind of async fetch from somewhere.
        await asyncio.sleep(0.01)

        if user_id == 404:
            return None
        return {"id": user_id, "username": "jakso"}

    async def start(self) -> None:
        self.app.events.append(("start", "fetch", self.instance_id))

    async def stop(self) -> None:
        self.app.events.append(("stop", "fetch", self.instance_id))


class UserService(Service["App"]):
    async def get_user(self, user_id: int) -> Dict[str, Any]:
        user = await self.services["fetch"].fetch_user(user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=user_id)
        return user

    async def create_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return user

    async def start(self) -> None:
        self.app.events.append(("start", "user", self.instance_id))

    async def stop(self) -> None:
        self.app.events.append(("stop", "user", self.instance_id))


class FetchServiceFactory(ServiceFactory["App", FetchService]):
    async def create_service(self, ctx: ServiceContext) -> FetchService:
        self.app.events.append(("create", "fetch", ctx.uid))
        return FetchService(ctx)


class UserServiceFactory(ServiceFactory["App", UserService]):
    async def create_service(self, ctx: ServiceContext) -> UserService:
        self.app.events.append(("create", "user", ctx.uid))
        return UserService(ctx)


class GetUserAction(Action["App", Dict[str, Any], Dict[str, Any]]):
    schemas = Schemas(
        params={
            "type": "object",
            "required": ["id"],
            "properties": {
                "id": {"type": "integer"},
            },
        },
        query={
            "type": "object",
            "properties": {
                "withRoles": {"type": "boolean"},
            },
        },
    )

    def parse_input(self, request) -> Dict[str, Any]:
        return {"id": int(request.path_params["id"])}

    async def handle(self, input: Dict[str, Any]) -> Dict[str, Any]:
        return await self.services["user"].get_user(input["id"])


class CreateUserAction(Action["App", Dict[str, Any], Dict[str, Any]]):
    schemas = Schemas(
        body={
            "type": "object",
            "required": ["id", "username"],
            "properties": {
                "id": {"type": "integer"},
                "username": {"type": "string"},
            },
        },
    )

    def parse_input(self, request) -> Dict[str, Any]:
        body = request.state.body
        return {"id": body["id"], "username": body["username"]}

    async def handle(self, input: Dict[str, Any]) -> Dict[str, Any]:
        return await self.services["user"].create_user(input)


class App(Application[Config]):
    def __init__(self, config: Config):
        super().__init__(config)
        self.events: List[tuple] = []

    async def create_service_factories(self):
        return {
            "fetch": FetchServiceFactory(self),
            "user": UserServiceFactory(self),
        }

    async def register_routes(self, router: APIRouter) -> None:
        router.add_route("/users/{id}", GetUserAction.create_handler(self), methods=["GET"])
        router.add_route("/users", CreateUserAction.create_handler(self), methods=["POST"])


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def config() -> Config:
    """Test config on an ephemeral loopback port."""
    return Config(type="test", host="127.0.0.1", port=0)


@pytest_asyncio.fixture
async def app(config):
    """
    A configured (not started) App.

    Stopped on teardown so tests that start it never leak a server.
    """
    app = App(config)
    await app.configure()
    yield app
    await app.stop()


@pytest_asyncio.fixture
async def client(app):
    """
    HTTPX AsyncClient that sends requests straight into app.fastapi.

    Usage:
        async def test_get_user(client):
            res = await client.get("/users/1")
            assert res.status_code == 200
    """
    transport = ASGITransport(app=app.fastapi)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
