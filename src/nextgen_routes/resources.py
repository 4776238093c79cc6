"""Cluster resource models consumed by the reconciliation core.

Only the fields the controller actually reads are modelled.  Every model is a
frozen dataclass so resources can be carried inside queue events and compared
cheaply; mapping fields (labels, annotations, configmap data) are excluded
from equality and hashing and identity is carried by ``namespace``, ``name``
and ``resource_version``.

``from_manifest`` converts Kubernetes-style dictionaries (as produced by
``kubectl get -o yaml``) into these models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Termination(str, Enum):
    EDGE = "edge"
    REENCRYPT = "reencrypt"
    PASSTHROUGH = "passthrough"


class InsecurePolicy(str, Enum):
    """Route ``insecureEdgeTerminationPolicy`` values (lowercase)."""

    ALLOW = "allow"
    NONE = "none"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class ObjectMeta:
    namespace: str
    name: str
    creation_timestamp: datetime = EPOCH
    resource_version: str = ""
    labels: Mapping[str, str] = field(default_factory=dict, compare=False)
    annotations: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def key(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class RouteTarget:
    name: str
    weight: Optional[int] = None
    kind: str = "Service"


@dataclass(frozen=True)
class RoutePort:
    target_port: Union[int, str]


@dataclass(frozen=True)
class RouteTLS:
    termination: Termination
    certificate: str = ""
    key: str = ""
    ca_certificate: str = ""
    destination_ca_certificate: str = ""
    insecure_edge_termination_policy: str = ""

    @property
    def http_traffic(self) -> str:
        return self.insecure_edge_termination_policy.lower()


@dataclass(frozen=True)
class RouteCondition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None


@dataclass(frozen=True)
class RouteIngress:
    router_name: str
    host: str
    conditions: Tuple[RouteCondition, ...] = ()


@dataclass(frozen=True)
class Route:
    metadata: ObjectMeta
    host: str
    to: RouteTarget
    path: str = ""
    alternate_backends: Tuple[RouteTarget, ...] = ()
    port: Optional[RoutePort] = None
    tls: Optional[RouteTLS] = None
    ingress: Tuple[RouteIngress, ...] = field(default=(), compare=False)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def key(self) -> str:
        return self.metadata.key

    @property
    def creation_timestamp(self) -> datetime:
        return self.metadata.creation_timestamp

    @property
    def annotations(self) -> Mapping[str, str]:
        return self.metadata.annotations

    def is_secure(self) -> bool:
        return self.tls is not None

    def is_passthrough(self) -> bool:
        return self.tls is not None and self.tls.termination == Termination.PASSTHROUGH

    def is_ab_deployment(self) -> bool:
        return bool(self.alternate_backends)

    def backends(self) -> Tuple[RouteTarget, ...]:
        return (self.to, *self.alternate_backends)


@dataclass(frozen=True)
class ServicePort:
    port: int
    name: str = ""
    target_port: Union[int, str, None] = None
    node_port: int = 0
    protocol: str = "TCP"


@dataclass(frozen=True)
class Service:
    metadata: ObjectMeta
    ports: Tuple[ServicePort, ...] = ()
    type: str = "ClusterIP"

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name

    def port_named(self, name: str) -> Optional[ServicePort]:
        return next((p for p in self.ports if p.name == name), None)

    def port_numbered(self, port: int) -> Optional[ServicePort]:
        return next((p for p in self.ports if p.port == port), None)


@dataclass(frozen=True)
class EndpointPort:
    port: int
    name: str = ""


@dataclass(frozen=True)
class EndpointSubset:
    addresses: Tuple[str, ...] = ()
    ports: Tuple[EndpointPort, ...] = ()


@dataclass(frozen=True)
class Endpoints:
    metadata: ObjectMeta
    subsets: Tuple[EndpointSubset, ...] = ()

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name


@dataclass(frozen=True)
class ConfigMap:
    metadata: ObjectMeta
    data: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def key(self) -> str:
        return self.metadata.key


@dataclass(frozen=True)
class Namespace:
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def labels(self) -> Mapping[str, str]:
        return self.metadata.labels


@dataclass(frozen=True)
class Secret:
    metadata: ObjectMeta
    data: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name


Resource = Union[Route, Service, Endpoints, ConfigMap, Namespace, Secret]


# ----------------------------------------------------------------------
# Manifest decoding
# ----------------------------------------------------------------------
def parse_timestamp(value: Any) -> datetime:
    if value is None or value == "":
        return EPOCH
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _meta(entry: Mapping[str, Any]) -> ObjectMeta:
    meta = entry.get("metadata") or {}
    if "name" not in meta:
        raise ValueError("resource metadata missing 'name'")
    return ObjectMeta(
        namespace=str(meta.get("namespace", "")),
        name=str(meta["name"]),
        creation_timestamp=parse_timestamp(meta.get("creationTimestamp")),
        resource_version=str(meta.get("resourceVersion", "")),
        labels=dict(meta.get("labels") or {}),
        annotations=dict(meta.get("annotations") or {}),
    )


def _int_or_str(value: Any) -> Union[int, str]:
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text) if text.isdigit() else text


def _target(entry: Mapping[str, Any]) -> RouteTarget:
    weight = entry.get("weight")
    return RouteTarget(
        name=str(entry["name"]),
        weight=int(weight) if weight is not None else None,
        kind=str(entry.get("kind", "Service")),
    )


def _route(entry: Mapping[str, Any]) -> Route:
    spec = entry.get("spec") or {}
    tls_section = spec.get("tls")
    tls = None
    if tls_section:
        tls = RouteTLS(
            termination=Termination(str(tls_section.get("termination", "edge")).lower()),
            certificate=tls_section.get("certificate", ""),
            key=tls_section.get("key", ""),
            ca_certificate=tls_section.get("caCertificate", ""),
            destination_ca_certificate=tls_section.get("destinationCACertificate", ""),
            insecure_edge_termination_policy=tls_section.get(
                "insecureEdgeTerminationPolicy", ""
            ),
        )
    port = None
    if spec.get("port") and spec["port"].get("targetPort") is not None:
        port = RoutePort(target_port=_int_or_str(spec["port"]["targetPort"]))

    ingress = []
    for item in (entry.get("status") or {}).get("ingress") or []:
        conditions = tuple(
            RouteCondition(
                type=c.get("type", ""),
                status=c.get("status", ""),
                reason=c.get("reason", ""),
                message=c.get("message", ""),
                last_transition_time=parse_timestamp(c["lastTransitionTime"])
                if c.get("lastTransitionTime")
                else None,
            )
            for c in item.get("conditions") or []
        )
        ingress.append(
            RouteIngress(
                router_name=item.get("routerName", ""),
                host=item.get("host", ""),
                conditions=conditions,
            )
        )

    return Route(
        metadata=_meta(entry),
        host=str(spec.get("host", "")),
        path=str(spec.get("path", "") or ""),
        to=_target(spec["to"]),
        alternate_backends=tuple(_target(b) for b in spec.get("alternateBackends") or []),
        port=port,
        tls=tls,
        ingress=tuple(ingress),
    )


def _service(entry: Mapping[str, Any]) -> Service:
    spec = entry.get("spec") or {}
    ports = tuple(
        ServicePort(
            port=int(p["port"]),
            name=str(p.get("name", "")),
            target_port=_int_or_str(p["targetPort"]) if "targetPort" in p else None,
            node_port=int(p.get("nodePort", 0)),
            protocol=str(p.get("protocol", "TCP")),
        )
        for p in spec.get("ports") or []
    )
    return Service(metadata=_meta(entry), ports=ports, type=str(spec.get("type", "ClusterIP")))


def _endpoints(entry: Mapping[str, Any]) -> Endpoints:
    subsets = tuple(
        EndpointSubset(
            addresses=tuple(str(a["ip"]) for a in s.get("addresses") or []),
            ports=tuple(
                EndpointPort(port=int(p["port"]), name=str(p.get("name", "")))
                for p in s.get("ports") or []
            ),
        )
        for s in entry.get("subsets") or []
    )
    return Endpoints(metadata=_meta(entry), subsets=subsets)


_DECODERS = {
    "Route": _route,
    "Service": _service,
    "Endpoints": _endpoints,
    "ConfigMap": lambda e: ConfigMap(metadata=_meta(e), data=dict(e.get("data") or {})),
    "Namespace": lambda e: Namespace(metadata=_meta(e)),
    "Secret": lambda e: Secret(metadata=_meta(e), data=dict(e.get("data") or {})),
}


def from_manifest(entry: Mapping[str, Any]) -> Resource:
    """Decode one Kubernetes-style object into a resource model."""

    kind = entry.get("kind")
    decoder = _DECODERS.get(str(kind))
    if decoder is None:
        raise ValueError(f"Unsupported resource kind '{kind}'")
    return decoder(entry)


def from_manifests(entries: Sequence[Mapping[str, Any]]) -> Dict[Tuple[str, str], Resource]:
    """Decode a list of objects keyed by ``(kind, namespace/name)``."""

    resources: Dict[Tuple[str, str], Resource] = {}
    for entry in entries:
        resource = from_manifest(entry)
        resources[(str(entry["kind"]), resource.metadata.key)] = resource
    return resources
