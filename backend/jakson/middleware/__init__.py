# Middleware package init
"""
Jakson — Middleware Package
=============================

What:  ASGI middleware installed by Application.configure().

Middleware chain, outermost first:
    [before_fastapi_configured hooks] → [BodyParser] → [after_body_parser_added hooks]
    → Router → Action
"""

from jakson.middleware.body_parser import BodyParserMiddleware

__all__ = ["BodyParserMiddleware"]
