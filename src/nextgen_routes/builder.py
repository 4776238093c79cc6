"""Virtual server synthesis for route groups.

A route group build produces up to two virtual servers (HTTP and HTTPS).  The
build works on fresh :class:`VirtualServerConfig` objects and only touches the
store once every port built cleanly, so a failing route never leaves a half
built group behind.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import irules
from .cache import ResourceCache
from .config import DEFAULT_SNAT, ExtendedRouteGroupSpec, PoolMemberType
from .errors import ResolutionError
from .ltm import (
    Monitor,
    Pool,
    PoolMember,
    Virtual,
    VirtualServerConfig,
)
from .naming import (
    format_monitor_name,
    format_policy_name,
    format_pool_name,
    frame_route_vs_name,
    join_bigip_path,
    resource_name,
)
from .resolver import RouteGroupResolver
from .resources import InsecurePolicy, Route, RouteTarget
from .rules import RuleEngine
from .status import STATUS_TRUE, StatusWriter
from .store import ResourceStore
from .tls import PoolPathRef, TLSResolver

LOG = logging.getLogger(__name__)

BALANCE_ANNOTATION = "virtual-server.f5.com/balance"
DEFAULT_BALANCE = "round-robin"
DEFAULT_BACKEND_WEIGHT = 100

HTTP = "http"
HTTPS = "https"


def routes_handle_http(routes: Iterable[Route]) -> bool:
    """True when at least one route still serves plain HTTP traffic."""

    for route in routes:
        if not route.is_secure():
            return True
        if route.tls.http_traffic in (InsecurePolicy.ALLOW.value, InsecurePolicy.REDIRECT.value):
            return True
    return False


class ConfigBuilder:
    def __init__(
        self,
        store: ResourceStore,
        cache: ResourceCache,
        resolver: RouteGroupResolver,
        rules: RuleEngine,
        tls: TLSResolver,
        status: Optional[StatusWriter] = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._resolver = resolver
        self._rules = rules
        self._tls = tls
        self._status = status

    # ------------------------------------------------------------------
    # Ports
    # ------------------------------------------------------------------
    def basic_virtual_ports(self) -> List[Tuple[str, int]]:
        settings = self._store.settings
        return [(HTTP, settings.http_port), (HTTPS, settings.https_port)]

    def virtual_ports(self, routes: Sequence[Route]) -> List[Tuple[str, int]]:
        if any(route.is_secure() for route in routes):
            return self.basic_virtual_ports()
        return self.basic_virtual_ports()[:1]

    # ------------------------------------------------------------------
    # Group processing
    # ------------------------------------------------------------------
    def process_route_group(self, group_key: str, trigger_delete: bool = False) -> None:
        """Rebuild every virtual server of ``group_key``.

        Raises :class:`ResolutionError` when the group cannot be built; the
        store is left untouched in that case.
        """

        start = time.monotonic()
        try:
            self._process_route_group(group_key, trigger_delete)
        finally:
            LOG.debug(
                "Finished syncing RouteGroup %s (%.3fs)", group_key, time.monotonic() - start
            )

    def _process_route_group(self, group_key: str, trigger_delete: bool) -> None:
        spec = self._store.effective_spec(group_key)
        if spec is None:
            raise ResolutionError(f"extended route spec not available for route group {group_key}")
        partition = self._store.group_partition(group_key)
        self._tls.base_route_config = self._store.base_route_config

        routes = [] if trigger_delete else self._resolver.group_routes(group_key, spec)
        if not routes:
            self.delete_group_virtuals(spec, partition)
            return

        built: Dict[str, VirtualServerConfig] = {}
        ports = self.virtual_ports(routes)
        # Ports no route needs any more lose their virtual server.
        stale: List[str] = [
            frame_route_vs_name(spec.vserver_name, spec.vserver_addr, port)
            for protocol, port in self.basic_virtual_ports()
            if (protocol, port) not in ports
        ]
        for protocol, port in ports:
            name = frame_route_vs_name(spec.vserver_name, spec.vserver_addr, port)
            if protocol == HTTP and not routes_handle_http(routes):
                stale.append(name)
                continue
            built[name] = self.build_virtual_server(group_key, spec, partition, routes, protocol, port)

        self._store.config.ensure_partition(partition)
        for name in stale:
            self._store.config.delete(partition, name)
        for rs_cfg in built.values():
            self._store.config.set(rs_cfg)

        for route in routes:
            self._store.mark_processed(route.key)
            if self._status is not None:
                self._status.submit(route.key, status=STATUS_TRUE)
        LOG.debug("Route group %s synthesized virtual servers %s", group_key, sorted(built))

    def delete_group_virtuals(self, spec: ExtendedRouteGroupSpec, partition: str) -> List[str]:
        removed = []
        self._store.config.ensure_partition(partition)
        for _, port in self.basic_virtual_ports():
            name = frame_route_vs_name(spec.vserver_name, spec.vserver_addr, port)
            if self._store.config.delete(partition, name):
                LOG.info("Removed virtual server /%s/%s", partition, name)
                removed.append(name)
        return removed

    # ------------------------------------------------------------------
    # Virtual server assembly
    # ------------------------------------------------------------------
    def build_virtual_server(
        self,
        group_key: str,
        spec: ExtendedRouteGroupSpec,
        partition: str,
        routes: Sequence[Route],
        protocol: str,
        port: int,
    ) -> VirtualServerConfig:
        name = frame_route_vs_name(spec.vserver_name, spec.vserver_addr, port)
        virtual = Virtual(name=name, partition=partition)
        virtual.set_virtual_address(spec.vserver_addr, port)
        virtual.allow_source_range = list(spec.allow_source_range)
        rs_cfg = VirtualServerConfig(virtual=virtual)
        rs_cfg.metadata.protocol = protocol

        self.apply_group_spec(rs_cfg, spec)
        for route in routes:
            rs_cfg.metadata.base_resources[route.key] = "Route"
            service_port = self._resolver.get_service_port(route)
            self.add_route(rs_cfg, route, service_port, protocol, spec, group_key)

        self.remove_unused_monitors(rs_cfg)
        self.update_pool_members(rs_cfg, self._store.group_namespaces(group_key))
        return rs_cfg

    def apply_group_spec(self, rs_cfg: VirtualServerConfig, spec: ExtendedRouteGroupSpec) -> None:
        rs_cfg.virtual.snat = spec.snat or DEFAULT_SNAT
        rs_cfg.virtual.waf = spec.waf
        rs_cfg.virtual.irules = list(spec.irules)
        for hm in spec.health_monitors:
            rs_cfg.monitors.append(
                Monitor(
                    name=format_monitor_name(hm.path),
                    partition=rs_cfg.partition,
                    type=hm.type or "http",
                    path=hm.path,
                    interval=hm.interval,
                    timeout=hm.timeout,
                    send=hm.send,
                    recv=hm.recv,
                )
            )

    def _backend_port(self, route: Route, backend: RouteTarget, primary_port: int) -> int:
        if backend.name == route.to.name:
            return primary_port
        service = self._cache.get_service(route.namespace, backend.name)
        if service is None:
            return primary_port
        target = route.port.target_port if route.port is not None else None
        if isinstance(target, str) and target:
            named = service.port_named(target)
            return named.port if named is not None else primary_port
        if target is None and service.ports:
            return service.ports[0].port
        return primary_port

    def add_route(
        self,
        rs_cfg: VirtualServerConfig,
        route: Route,
        service_port: int,
        protocol: str,
        spec: ExtendedRouteGroupSpec,
        route_group: str = "",
    ) -> None:
        if protocol == HTTP and route.is_secure() and route.tls.http_traffic in (
            "",
            InsecurePolicy.NONE.value,
        ):
            return

        rs_cfg.metadata.hosts.append(route.host)
        balance = route.annotations.get(BALANCE_ANNOTATION) or DEFAULT_BALANCE
        pool_names = []
        for backend in route.backends():
            port = self._backend_port(route, backend, service_port)
            pool_name = format_pool_name(route.namespace, backend.name, port, route_group)
            pool_names.append((pool_name, backend))
            if rs_cfg.find_pool(pool_name) is not None:
                continue
            pool = Pool(
                name=pool_name,
                partition=rs_cfg.partition,
                service_name=backend.name,
                service_namespace=route.namespace,
                service_port=port,
                balance=balance,
            )
            for monitor in rs_cfg.monitors:
                if monitor.path.startswith(route.host + route.path):
                    monitor.in_use = True
                    pool.monitor_names.append(join_bigip_path(monitor.partition, monitor.name))
                    break
            rs_cfg.pools.append(pool)

        primary_pool = pool_names[0][0]
        if not route.is_passthrough():
            rules = self._rules.build_rules(route, primary_pool, rs_cfg.virtual.allow_source_range)
            policy_name = format_policy_name(route.host, route.namespace, rs_cfg.name)
            self._rules.add_rule_to_policy(rs_cfg, policy_name, rules)

        if route.is_ab_deployment():
            self._add_ab_deployment(rs_cfg, route, pool_names)

        if route.is_secure():
            ctx = self._tls.route_context(
                route,
                spec,
                [PoolPathRef(route.path, primary_pool)],
                https_port=self._store.settings.https_port,
            )
            self._tls.handle_tls(rs_cfg, ctx)
            LOG.debug("Updated route %s with TLS settings", route.key)

    def _add_ab_deployment(
        self, rs_cfg: VirtualServerConfig, route: Route, pools: Sequence[Tuple[str, RouteTarget]]
    ) -> None:
        weights = ",".join(
            f"{name}:{DEFAULT_BACKEND_WEIGHT if backend.weight is None else backend.weight}"
            for name, backend in pools
        )
        datagroup = rs_cfg.add_internal_data_group(
            resource_name(rs_cfg.name, irules.AB_DEPLOYMENT_DG), rs_cfg.partition
        )
        datagroup.add_or_update_record((route.host + route.path).rstrip("/"), weights)
        rule_name = resource_name(rs_cfg.name, irules.AB_DEPLOYMENT_IRULE)
        rs_cfg.add_irule(rule_name, rs_cfg.partition, irules.ab_deployment_irule(rs_cfg.name, rs_cfg.partition))
        rs_cfg.virtual.add_irule(join_bigip_path(rs_cfg.partition, rule_name))

    @staticmethod
    def remove_unused_monitors(rs_cfg: VirtualServerConfig) -> None:
        kept = []
        for monitor in rs_cfg.monitors:
            if monitor.in_use:
                kept.append(monitor)
            else:
                LOG.warning("Discarding monitor %s with path %s as it is unused", monitor.name, monitor.path)
        rs_cfg.monitors = kept

    # ------------------------------------------------------------------
    # Pool members
    # ------------------------------------------------------------------
    def pool_members(self, pool: Pool) -> List[PoolMember]:
        settings = self._store.settings
        service = self._cache.get_service(pool.service_namespace, pool.service_name)
        if service is None:
            return []
        service_port = service.port_numbered(pool.service_port)

        members = set()
        if settings.pool_member_type == PoolMemberType.NODEPORT:
            if service_port is None or not service_port.node_port:
                return []
            members = {(addr, service_port.node_port) for addr in settings.node_addresses}
        else:
            endpoints = self._cache.get_endpoints(pool.service_namespace, pool.service_name)
            if endpoints is None:
                return []
            for subset in endpoints.subsets:
                port = None
                for candidate in subset.ports:
                    if service_port is None or not service_port.name or candidate.name == service_port.name:
                        port = candidate.port
                        break
                if port is None:
                    continue
                members.update((address, port) for address in subset.addresses)
        return [PoolMember(address=a, port=p) for a, p in sorted(members)]

    def update_pool_members(self, rs_cfg: VirtualServerConfig, namespaces: Iterable[str]) -> None:
        namespaces = set(namespaces)
        for pool in rs_cfg.pools:
            if pool.service_namespace in namespaces:
                pool.members = self.pool_members(pool)

    def update_pool_members_for_routes(self, namespace: str) -> List[str]:
        """Refresh pool members of the group serving ``namespace``."""

        group_key = self._store.group_for_namespace(namespace)
        if group_key is None:
            return []
        spec = self._store.effective_spec(group_key)
        if spec is None:
            return []
        partition = self._store.group_partition(group_key)
        updated = []
        for _, port in self.basic_virtual_ports():
            name = frame_route_vs_name(spec.vserver_name, spec.vserver_addr, port)
            current = self._store.config.get(partition, name)
            if current is None:
                continue
            fresh = current.copy()
            self.update_pool_members(fresh, self._store.group_namespaces(group_key))
            self._store.config.set(fresh)
            updated.append(name)
        return updated
