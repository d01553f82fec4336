"""
Jakson — HTTP Application Framework
=====================================

What: Composes an HTTP service from three parts:

    ┌─────────────────────────────────────┐
    │   Application (lifecycle, routes)   │  ← configure / start / stop
    ├─────────────────────────────────────┤
    │   Actions (one per request)         │  ← validate → handle → respond
    ├─────────────────────────────────────┤
    │   Services (one set per request)    │  ← business logic
    ├─────────────────────────────────────┤
    │   ServiceFactories (one per app)    │  ← pools, clients, shared state
    └─────────────────────────────────────┘

The FastAPI/Starlette app, the uvicorn server and jsonschema do the HTTP and
validation work underneath.
"""

from jakson.action import Action
from jakson.application import Application
from jakson.config import Config, ConfigType
from jakson.exceptions import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    HttpError,
    InvalidOutputError,
    JaksonError,
    NotConfiguredError,
    NotFoundError,
    ServerError,
    UnauthorizedError,
    ValidationError,
)
from jakson.logger import create_logger, setup_logging
from jakson.result import Result, is_plain_dto
from jakson.service import Service, ServiceContext
from jakson.service_factory import ServiceFactory, ServiceTestSession
from jakson.validation import Schemas

__version__ = "0.1.2"

__all__ = [
    "Action",
    "Application",
    "Config",
    "ConfigType",
    "ConfigurationError",
    "ConflictError",
    "ForbiddenError",
    "HttpError",
    "InvalidOutputError",
    "JaksonError",
    "NotConfiguredError",
    "NotFoundError",
    "Result",
    "Schemas",
    "ServerError",
    "Service",
    "ServiceContext",
    "ServiceFactory",
    "ServiceTestSession",
    "UnauthorizedError",
    "ValidationError",
    "create_logger",
    "is_plain_dto",
    "setup_logging",
]
