"""
Jakson — Body Parser Tests
============================

What:  Tests for BodyParserMiddleware: what ends up in request.state.body for
       each content type, and the 400 answer to malformed bodies.
How:   A bare Starlette app with the middleware and an echo endpoint.
"""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.applications import Starlette
from starlette.datastructures import FormData
from starlette.middleware import Middleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from jakson.middleware import BodyParserMiddleware
from jakson.middleware.body_parser import form_dict


async def echo(request):
    return JSONResponse({"body": request.state.body})


async def raw(request):
    return JSONResponse({"body": request.state.body, "raw": (await request.body()).decode()})


@pytest_asyncio.fixture
async def echo_client():
    app = Starlette(
        routes=[
            Route("/echo", echo, methods=["GET", "POST", "PUT"]),
            Route("/raw", raw, methods=["POST"]),
        ],
        middleware=[Middleware(BodyParserMiddleware)],
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestBodyParser:

    @pytest.mark.asyncio
    async def test_json_body(self, echo_client):
        res = await echo_client.post("/echo", json={"id": 1, "tags": ["a"]})

        assert res.json() == {"body": {"id": 1, "tags": ["a"]}}

    @pytest.mark.asyncio
    async def test_json_suffix_content_type(self, echo_client):
        res = await echo_client.put(
            "/echo",
            content=b'{"id": 1}',
            headers={"content-type": "application/merge-patch+json"},
        )

        assert res.json() == {"body": {"id": 1}}

    @pytest.mark.asyncio
    async def test_json_with_charset_parameter(self, echo_client):
        res = await echo_client.post(
            "/echo",
            content='{"name": "jäkso"}'.encode("utf-8"),
            headers={"content-type": "application/json; charset=utf-8"},
        )

        assert res.json() == {"body": {"name": "jäkso"}}

    @pytest.mark.asyncio
    async def test_form_body(self, echo_client):
        res = await echo_client.post("/echo", data={"name": "jakso", "tag": ["a", "b"]})

        assert res.json() == {"body": {"name": "jakso", "tag": ["a", "b"]}}

    @pytest.mark.asyncio
    async def test_no_body(self, echo_client):
        res = await echo_client.get("/echo")

        assert res.json() == {"body": {}}

    @pytest.mark.asyncio
    async def test_empty_json_body(self, echo_client):
        res = await echo_client.post(
            "/echo", content=b"", headers={"content-type": "application/json"}
        )

        assert res.json() == {"body": {}}

    @pytest.mark.asyncio
    async def test_other_content_type_ignored(self, echo_client):
        res = await echo_client.post(
            "/echo", content=b"plain text", headers={"content-type": "text/plain"}
        )

        assert res.json() == {"body": {}}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content,content_type",
        [
            (b'{"id": ', "application/json"),
            (b"[1, 2", "application/vnd.api+json"),
            (b"\xff\xfe", "application/json"),
        ],
    )
    async def test_malformed_body_rejected(self, echo_client, content, content_type):
        res = await echo_client.post("/echo", content=content, headers={"content-type": content_type})

        assert res.status_code == 400
        assert res.json() == {"error": "InvalidBody"}

    @pytest.mark.asyncio
    async def test_endpoint_can_still_read_raw_form(self, echo_client):
        res = await echo_client.post("/raw", data={"name": "jakso"})

        assert res.json() == {"body": {"name": "jakso"}, "raw": "name=jakso"}

    @pytest.mark.asyncio
    async def test_endpoint_can_still_read_raw_json(self, echo_client):
        res = await echo_client.post("/raw", json={"id": 1})

        assert res.json()["body"] == {"id": 1}
        assert json.loads(res.json()["raw"]) == {"id": 1}


class TestFormDict:

    def test_single_and_repeated_keys(self):
        form = FormData([("name", "jakso"), ("tag", "a"), ("tag", "b"), ("tag", "c")])

        assert form_dict(form) == {"name": "jakso", "tag": ["a", "b", "c"]}

    def test_blank_values_kept(self):
        assert form_dict(FormData([("note", "")])) == {"note": ""}
