"""In-process source-of-truth cache of cluster resources.

The cache plays the role of the informer indexers: watchers write into it
before enqueueing events and the reconciliation components read from it.
It also implements the small client surfaces the core needs from the cluster
(secret lookup and route status write-back) so the controller can run
entirely in-process.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from threading import RLock
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Type

from .errors import SecretNotFound, TransientInfraError
from .resources import (
    ConfigMap,
    Endpoints,
    Namespace,
    Resource,
    Route,
    RouteIngress,
    Secret,
    Service,
)

LOG = logging.getLogger(__name__)

_SET_TERM = re.compile(r"^\s*([\w./-]+)\s+(in|notin)\s+\(([^)]*)\)\s*$")


def _split_selector(selector: str) -> List[str]:
    terms, depth, current = [], 0, []
    for char in selector:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            terms.append("".join(current))
            current = []
            continue
        current.append(char)
    terms.append("".join(current))
    return [t.strip() for t in terms if t.strip()]


def match_labels(selector: str, labels: Mapping[str, str]) -> bool:
    """Evaluate a Kubernetes label selector string against ``labels``.

    Supports equality (``k=v``, ``k==v``, ``k!=v``), existence (``k``,
    ``!k``) and set-based (``k in (a,b)``, ``k notin (a,b)``) terms.
    An empty selector matches everything.
    """

    for term in _split_selector(selector or ""):
        set_match = _SET_TERM.match(term)
        if set_match:
            key, op, values = set_match.groups()
            options = {v.strip() for v in values.split(",") if v.strip()}
            present = key in labels and labels[key] in options
            if (op == "in") != present:
                return False
        elif "!=" in term:
            key, value = (p.strip() for p in term.split("!=", 1))
            if labels.get(key) == value:
                return False
        elif "=" in term:
            key, value = (p.strip() for p in term.replace("==", "=").split("=", 1))
            if labels.get(key) != value:
                return False
        elif term.startswith("!"):
            if term[1:].strip() in labels:
                return False
        elif term not in labels:
            return False
    return True


class ResourceCache:
    """Thread-safe store of the resources observed by the watchers."""

    _KINDS: Tuple[Type, ...] = (Route, Service, Endpoints, ConfigMap, Namespace, Secret)

    def __init__(self, resources: Iterable[Resource] = ()) -> None:
        self._lock = RLock()
        self._items: Dict[Type, Dict[str, Resource]] = {kind: {} for kind in self._KINDS}
        for resource in resources:
            self.upsert(resource)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def upsert(self, resource: Resource) -> Optional[Resource]:
        """Store ``resource`` and return the previous version, if any."""

        with self._lock:
            bucket = self._items[type(resource)]
            previous = bucket.get(resource.metadata.key)
            bucket[resource.metadata.key] = resource
            return previous

    def remove(self, resource: Resource) -> Optional[Resource]:
        with self._lock:
            return self._items[type(resource)].pop(resource.metadata.key, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def _list(self, kind: Type, namespace: str = "") -> list:
        with self._lock:
            items = list(self._items[kind].values())
        if namespace:
            items = [i for i in items if i.metadata.namespace == namespace]
        return items

    def _get(self, kind: Type, namespace: str, name: str):
        key = f"{namespace}/{name}" if namespace else name
        with self._lock:
            return self._items[kind].get(key)

    def routes(self, namespace: str = "") -> List[Route]:
        return self._list(Route, namespace)

    def get_route(self, key: str) -> Optional[Route]:
        with self._lock:
            return self._items[Route].get(key)

    def services(self, namespace: str = "") -> List[Service]:
        return self._list(Service, namespace)

    def get_service(self, namespace: str, name: str) -> Optional[Service]:
        return self._get(Service, namespace, name)

    def get_endpoints(self, namespace: str, name: str) -> Optional[Endpoints]:
        return self._get(Endpoints, namespace, name)

    def config_maps(self, namespace: str = "") -> List[ConfigMap]:
        return self._list(ConfigMap, namespace)

    def get_config_map(self, key: str) -> Optional[ConfigMap]:
        with self._lock:
            return self._items[ConfigMap].get(key)

    def namespaces(self) -> List[Namespace]:
        return self._list(Namespace)

    def get_namespace(self, name: str) -> Optional[Namespace]:
        return self._get(Namespace, "", name)

    def namespaces_matching(self, selector: str) -> List[str]:
        return sorted(
            ns.name for ns in self.namespaces() if match_labels(selector, ns.labels)
        )

    def get_secret(self, namespace: str, name: str) -> Secret:
        secret = self._get(Secret, namespace, name)
        if secret is None:
            raise SecretNotFound(namespace, name)
        return secret

    # ------------------------------------------------------------------
    # Route status client
    # ------------------------------------------------------------------
    def update_route_status(self, route: Route, ingress: Tuple[RouteIngress, ...]) -> Route:
        """Replace the status of ``route``; stale copies lose the race."""

        with self._lock:
            current = self._items[Route].get(route.key)
            if current is None:
                raise LookupError(f"route {route.key} no longer exists")
            if current.metadata.resource_version != route.metadata.resource_version:
                raise TransientInfraError(
                    f"conflict updating status of route {route.key}: object has been modified"
                )
            updated = dataclasses.replace(current, ingress=ingress)
            self._items[Route][route.key] = updated
            return updated

    def unmonitored_routes(self, route_label: str) -> List[Route]:
        """Routes outside the controller's label scope."""

        if not route_label:
            return []
        routes = self.routes()
        return [r for r in routes if not match_labels(route_label, r.metadata.labels)]
