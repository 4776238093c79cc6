"""Event plumbing between the resource watchers and the route controller.

The dispatcher pulls tagged events from a rate-limited queue, runs the
matching :class:`~nextgen_routes.controller.RouteController` handler and,
whenever the queue drains with a changed configuration, hands a
:class:`~nextgen_routes.controller.ConfigRequest` to the registered agents.
"""

from .dispatcher import EventDispatcher  # noqa: F401
from .events import (  # noqa: F401
    ConfigMapEvent,
    EndpointsEvent,
    NamespaceEvent,
    RouteEvent,
    ServiceEvent,
    Verb,
)
from .registry import AgentRegistry  # noqa: F401
from .workqueue import RateLimitingQueue  # noqa: F401

__all__ = [
    "AgentRegistry",
    "ConfigMapEvent",
    "EndpointsEvent",
    "EventDispatcher",
    "NamespaceEvent",
    "RateLimitingQueue",
    "RouteEvent",
    "ServiceEvent",
    "Verb",
]
