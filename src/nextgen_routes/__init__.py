"""Reconciliation core for next-generation route groups.

Routes, services and the extended route spec ConfigMaps are reconciled into
virtual server configurations for a BIG-IP style load balancer:

* :mod:`nextgen_routes.resolver` groups routes, orders them and settles
  host+path ownership;
* :mod:`nextgen_routes.builder` synthesizes one virtual server per protocol
  with its pools, monitors, policies and TLS bindings;
* :mod:`nextgen_routes.extended_spec` applies global and per-namespace
  extended spec documents; and
* :mod:`nextgen_routes.controller` exposes one handler per resource kind for
  the event dispatcher.

Everything is pure Python and runs against the in-process
:class:`~nextgen_routes.cache.ResourceCache`, so the core can be exercised in
unit tests without a cluster.
"""

from .cache import ResourceCache  # noqa: F401
from .config import ControllerSettings  # noqa: F401
from .controller import ConfigRequest, RouteController  # noqa: F401
from .store import ResourceStore  # noqa: F401

__all__ = [
    "ConfigRequest",
    "ControllerSettings",
    "ResourceCache",
    "ResourceStore",
    "RouteController",
]
