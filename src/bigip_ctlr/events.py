"""Tagged resource events consumed by the :class:`EventDispatcher`."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from nextgen_routes.resources import ConfigMap, Endpoints, Namespace, Route, Service


class Verb(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class RouteEvent:
    """A route was created, changed or removed.

    Events carry the resource as observed so that deletes can still be
    resolved after the object has left the cache.
    """

    verb: Verb
    route: Route


@dataclass(frozen=True)
class ServiceEvent:
    verb: Verb
    service: Service


@dataclass(frozen=True)
class EndpointsEvent:
    verb: Verb
    endpoints: Endpoints


@dataclass(frozen=True)
class ConfigMapEvent:
    verb: Verb
    config_map: ConfigMap


@dataclass(frozen=True)
class NamespaceEvent:
    verb: Verb
    namespace: Namespace


ResourceEvent = Union[RouteEvent, ServiceEvent, EndpointsEvent, ConfigMapEvent, NamespaceEvent]


def event_for(verb: Verb, resource) -> ResourceEvent:
    """Wrap ``resource`` in the event type matching its kind."""

    if isinstance(resource, Route):
        return RouteEvent(verb, resource)
    if isinstance(resource, Service):
        return ServiceEvent(verb, resource)
    if isinstance(resource, Endpoints):
        return EndpointsEvent(verb, resource)
    if isinstance(resource, ConfigMap):
        return ConfigMapEvent(verb, resource)
    if isinstance(resource, Namespace):
        return NamespaceEvent(verb, resource)
    raise TypeError(f"Unsupported resource type: {type(resource)!r}")
