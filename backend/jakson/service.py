"""
Jakson — Services
===================

What:  A Service is one unit of business logic scoped to one unit of work
       (an HTTP request, a background task or a test).
How:   Every ServiceFactory creates a fresh Service for each unit of work and
       hands it a ServiceContext. The context carries the services map being
       populated for that unit of work, so a service reaches its siblings by
       name through `self.services`.
Who:   Created by Application.create_service_instances(); started and stopped
       by Application.start_service_instances()/stop_service_instances().

Lifecycle per instance:
    created → start() → (used) → stop()
    start() and stop() are each called exactly once, in that order.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Generic, TypeVar

if TYPE_CHECKING:
    from jakson.application import Application

AppT = TypeVar("AppT", bound="Application")


@dataclass(frozen=True)
class ServiceContext(Generic[AppT]):
    """
    The bundle a ServiceFactory receives when creating a service instance.

    Attributes:
        app:       The application.
        services:  The services map of this unit of work. It is filled in
                   factory order, so it only holds the siblings created so far
                   when a given service is constructed.
        uid:       Random 8-character token, unique per unit of work.
        type:      What kind of unit of work this is: "action", "test", "task"...
    """

    app: AppT
    services: Dict[str, Any]
    uid: str
    type: str


class Service(Generic[AppT]):
    """
    Base class for services.

    Subclasses add business methods and may override start()/stop() to
    acquire and release per-unit-of-work resources (a transaction, a client
    session...). Shared, expensive resources belong to the ServiceFactory.

    Example:
        class UserService(Service["App"]):
            async def get_user(self, user_id: int) -> dict:
                return await self.services["fetch"].fetch_user(user_id)
    """

    def __init__(self, ctx: ServiceContext[AppT]):
        self.app = ctx.app
        self.services = ctx.services
        self.instance_id = ctx.uid
        self.unit_of_work_type = ctx.type

    async def start(self) -> None:
        """Called once when this instance is created for a request, task or test."""

    async def stop(self) -> None:
        """Called once when the request, task or test is done with this instance."""
