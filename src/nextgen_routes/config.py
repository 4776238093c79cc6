"""Configuration data structures for the route controller.

``ControllerSettings`` carries the process-wide knobs (normally built from
oslo.config options, see :mod:`bigip_ctlr.opts`).  The remaining dataclasses
describe the extended route spec document: the cluster-wide base settings and
the per route group entries that the global and local ConfigMaps carry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

DEFAULT_HTTP_PORT = 80
DEFAULT_HTTPS_PORT = 443
DEFAULT_SNAT = "auto"
DEFAULT_MONITOR_TYPE = "http"
DEFAULT_TLS_VERSION = "1.2"
DEFAULT_CIPHERS = "DEFAULT"
DEFAULT_CIPHER_GROUP = "/Common/f5-default"


class PoolMemberType(str, Enum):
    CLUSTER = "cluster"
    NODEPORT = "nodeport"


class TLSReference(str, Enum):
    """Where the TLS material of a virtual server comes from."""

    BIGIP = "bigip"
    SECRET = "secret"
    CERTIFICATE = "certificate"


@dataclass(frozen=True)
class ControllerSettings:
    partition: str = "k8s"
    route_spec_configmap: str = "kube-system/extended-route-spec"
    namespace_label: str = ""
    route_label: str = ""
    pool_member_type: PoolMemberType = PoolMemberType.CLUSTER
    node_addresses: Sequence[str] = ()
    share_nodes: bool = False
    default_route_domain: int = 0
    router_name: str = "F5 BIG-IP"
    http_port: int = DEFAULT_HTTP_PORT
    https_port: int = DEFAULT_HTTPS_PORT
    status_update_retries: int = 3
    secret_fetch_retries: int = 3

    @property
    def route_spec_namespace(self) -> str:
        return self.route_spec_configmap.split("/", 1)[0]


@dataclass(frozen=True)
class TLSCipher:
    tls_version: str = DEFAULT_TLS_VERSION
    ciphers: str = DEFAULT_CIPHERS
    cipher_group: str = DEFAULT_CIPHER_GROUP


@dataclass(frozen=True)
class BaseRouteConfig:
    tls_cipher: TLSCipher = TLSCipher()


@dataclass(frozen=True)
class HealthMonitorSpec:
    path: str
    type: str = DEFAULT_MONITOR_TYPE
    send: str = ""
    recv: str = ""
    interval: int = 0
    timeout: int = 0


@dataclass(frozen=True)
class TLSSpec:
    reference: str = ""
    client_ssl: str = ""
    server_ssl: str = ""

    def is_empty(self) -> bool:
        return not (self.reference or self.client_ssl or self.server_ssl)


@dataclass(frozen=True)
class ExtendedRouteGroupSpec:
    """One ``extendedRouteSpec`` entry (minus its namespace selector)."""

    vserver_addr: str = ""
    vserver_name: str = ""
    allow_override: bool = False
    snat: str = ""
    waf: str = ""
    irules: Tuple[str, ...] = ()
    allow_source_range: Tuple[str, ...] = ()
    tls: TLSSpec = TLSSpec()
    health_monitors: Tuple[HealthMonitorSpec, ...] = ()
    depends_on_tls_cipher: bool = field(default=False, compare=False)

    def identity(self) -> Tuple[str, str]:
        return self.vserver_name, self.vserver_addr


@dataclass(frozen=True)
class ExtendedRouteGroupConfig:
    namespace: str = ""
    namespace_label: str = ""
    bigip_partition: str = ""
    spec: ExtendedRouteGroupSpec = ExtendedRouteGroupSpec()

    @property
    def route_group(self) -> str:
        return self.namespace_label or self.namespace


@dataclass(frozen=True)
class ExtendedSpecDocument:
    base_route_config: Optional[BaseRouteConfig] = None
    groups: Tuple[ExtendedRouteGroupConfig, ...] = ()


@dataclass
class ExtendedParsedSpec:
    """Cached global/local state for one route group."""

    override: bool = False
    local: Optional[ExtendedRouteGroupSpec] = None
    global_: Optional[ExtendedRouteGroupSpec] = None
    namespaces: Sequence[str] = ()
    partition: str = ""

    def effective(self) -> Optional[ExtendedRouteGroupSpec]:
        if self.override and self.local is not None:
            return self.local
        return self.global_

    def same_global_state(self, other: "ExtendedParsedSpec") -> bool:
        return (
            self.override == other.override
            and self.global_ == other.global_
            and list(self.namespaces) == list(other.namespaces)
            and self.partition == other.partition
        )
