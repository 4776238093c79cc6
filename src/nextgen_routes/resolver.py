"""Route grouping, ordering and host+path conflict resolution."""

from __future__ import annotations

import functools
import logging
from typing import Dict, List, Optional, Tuple

from .cache import ResourceCache
from .claims import host_path_key
from .config import ExtendedRouteGroupSpec, TLSReference
from .errors import AdmissionRejection
from .resources import Route, Termination
from .rules import is_root_path
from .status import STATUS_FALSE, StatusWriter
from .store import ResourceStore
from .tls import check_certificate_host, route_reference

LOG = logging.getLogger(__name__)


def _cmp(left, right) -> int:
    return (left > right) - (left < right)


def compare_routes(a: Route, b: Route) -> int:
    """Host ascending; root paths by age, other paths by path then age."""

    if a.host != b.host:
        return _cmp(a.host, b.host)
    if is_root_path(a.path) or is_root_path(b.path):
        order = _cmp(a.creation_timestamp, b.creation_timestamp)
    else:
        order = _cmp(a.path, b.path) or _cmp(a.creation_timestamp, b.creation_timestamp)
    return order or _cmp(a.key, b.key)


class RouteGroupResolver:
    def __init__(
        self,
        store: ResourceStore,
        cache: ResourceCache,
        status: Optional[StatusWriter] = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._status = status

    def get_ordered_routes(self, namespace: str = "") -> List[Route]:
        return sorted(self._cache.routes(namespace), key=functools.cmp_to_key(compare_routes))

    def get_service_port(self, route: Route) -> int:
        """Port of the route's primary backend service."""

        service = self._cache.get_service(route.namespace, route.to.name)
        if service is None:
            raise AdmissionRejection(
                AdmissionRejection.SERVICE_NOT_FOUND,
                f"Discarding route {route.name} as service associated with it doesn't exist",
            )
        target = route.port.target_port if route.port is not None else None
        if isinstance(target, int):
            return target
        if target:
            port = service.port_named(target)
            if port is None:
                raise AdmissionRejection(
                    AdmissionRejection.SERVICE_NOT_FOUND,
                    f"Discarding route {route.name} as service {service.name} has no port named {target}",
                )
            return port.port
        if not service.ports:
            raise AdmissionRejection(
                AdmissionRejection.SERVICE_NOT_FOUND,
                f"Discarding route {route.name} as service {service.name} exposes no ports",
            )
        return service.ports[0].port

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_route(self, route: Route, spec: Optional[ExtendedRouteGroupSpec]) -> None:
        """Raise :class:`AdmissionRejection` unless ``route`` may join its group."""

        key = host_path_key(route.host, route.path)
        claim = self._store.claims.conflicting_claim(key, route.key, route.creation_timestamp)
        if claim is not None:
            raise AdmissionRejection(
                AdmissionRejection.HOST_ALREADY_CLAIMED,
                f"Discarding route {route.name} as other route already exposes URI "
                f"{route.host}{route.path} and is older",
            )

        tls = route.tls
        if tls is not None and tls.termination != Termination.PASSTHROUGH:
            if route_reference(spec) == TLSReference.BIGIP:
                if not spec.tls.client_ssl:
                    raise AdmissionRejection(
                        AdmissionRejection.EXTENDED_VALIDATION_FAILED,
                        "Missing BigIP client SSL profile reference in the ConfigMap",
                    )
                if tls.termination == Termination.REENCRYPT and not spec.tls.server_ssl:
                    raise AdmissionRejection(
                        AdmissionRejection.EXTENDED_VALIDATION_FAILED,
                        "Missing BigIP server SSL profile reference in the ConfigMap",
                    )
            elif tls.certificate and not check_certificate_host(tls.certificate, tls.key, route.host):
                raise AdmissionRejection(
                    AdmissionRejection.EXTENDED_VALIDATION_FAILED,
                    f"Invalid certificate and key for route: {route.name}",
                )

        self.get_service_port(route)

    def check_valid_route(self, route: Route, spec: Optional[ExtendedRouteGroupSpec]) -> bool:
        try:
            self.validate_route(route, spec)
        except AdmissionRejection as rejection:
            LOG.warning("Route %s rejected (%s): %s", route.key, rejection.reason, rejection.message)
            if self._status is not None:
                self._status.submit(route.key, rejection.reason, rejection.message, STATUS_FALSE)
            return False

        self._store.claims.claim(
            host_path_key(route.host, route.path), route.key, route.creation_timestamp
        )
        return True

    def group_routes(self, group_key: str, spec: Optional[ExtendedRouteGroupSpec]) -> List[Route]:
        namespaces = self._store.group_namespaces(group_key)
        ordered: Dict[str, List[Route]] = {ns: self.get_ordered_routes(ns) for ns in namespaces}

        live: Dict[str, Tuple] = {
            route.key: (route.creation_timestamp, host_path_key(route.host, route.path))
            for routes in ordered.values()
            for route in routes
        }
        self._store.claims.prune(namespaces, live)

        accepted = []
        for namespace in namespaces:
            for route in ordered[namespace]:
                if self.check_valid_route(route, spec):
                    accepted.append(route)
        LOG.debug("Route group %s admitted %d routes", group_key, len(accepted))
        return accepted
