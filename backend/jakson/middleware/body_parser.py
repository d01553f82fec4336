"""
Jakson — Body Parser Middleware
=================================

What:  Parses the request body once, before routing, into `request.state.body`.
How:   Starlette does the parsing: request.json() for JSON bodies,
       request.form() (python-multipart) for url-encoded forms, where repeated
       keys become lists. Any other content type, and an empty body, leaves
       `request.state.body` as {}.
Who:   Installed by Application.configure() between the
       before_fastapi_configured and after_body_parser_added hooks.

Malformed JSON never reaches the router; the client gets:
    400 {"error": "InvalidBody"}
"""

import logging
from typing import Any, Dict

from starlette.datastructures import FormData
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

JSON_TYPES = ("application/json", "application/vnd.api+json", "application/csp-report")
FORM_TYPES = ("application/x-www-form-urlencoded",)


class BodyParserMiddleware(BaseHTTPMiddleware):
    """Stores the parsed request body on `request.state.body`."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

        try:
            request.state.body = await self._parse(request, content_type)
        except ValueError as e:
            logger.warning("Rejected unparsable %s body on %s: %s", content_type, request.url.path, e)
            return JSONResponse(status_code=400, content={"error": "InvalidBody"})

        return await call_next(request)

    async def _parse(self, request: Request, content_type: str) -> Any:
        # Reading body() first caches it, so json()/form() and the endpoint
        # all see the same bytes.
        raw = await request.body()
        if not raw.strip():
            return {}

        if content_type in JSON_TYPES or content_type.endswith("+json"):
            return await request.json()

        if content_type in FORM_TYPES:
            return form_dict(await request.form())

        return {}


def form_dict(form: FormData) -> Dict[str, Any]:
    """Form fields as a dict; repeated keys become lists of values."""
    fields: Dict[str, Any] = {}
    for key, value in form.multi_items():
        if key not in fields:
            fields[key] = value
        elif isinstance(fields[key], list):
            fields[key].append(value)
        else:
            fields[key] = [fields[key], value]
    return fields
