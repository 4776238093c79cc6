"""Per-kind change handlers wiring the reconciliation components together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .builder import ConfigBuilder
from .cache import ResourceCache
from .claims import host_path_key
from .config import ControllerSettings
from .errors import ValidationError
from .extended_spec import EXTENDED_SPEC_KEY, ExtendedSpecReconciler
from .ltm import VirtualServerConfig
from .resolver import RouteGroupResolver
from .resources import ConfigMap, Endpoints, Namespace, Route, Service
from .rules import RuleEngine
from .status import StatusWriter
from .store import ResourceStore
from .tls import SecretCache, TLSResolver

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigRequest:
    """One configuration transaction for the downstream agent."""

    req_id: int
    ltm_config: Dict[str, Dict[str, VirtualServerConfig]]
    gtm_config: Dict[str, Any] = field(default_factory=dict)
    share_nodes: bool = False
    default_route_domain: int = 0
    digest: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reqId": self.req_id,
            "ltmConfig": {
                partition: {name: vs.to_dict() for name, vs in sorted(vss.items())}
                for partition, vss in sorted(self.ltm_config.items())
            },
            "gtmConfig": self.gtm_config,
            "shareNodes": self.share_nodes,
            "defaultRouteDomain": self.default_route_domain,
        }


class RouteController:
    def __init__(
        self,
        settings: ControllerSettings,
        cache: ResourceCache,
        store: Optional[ResourceStore] = None,
        status: Optional[StatusWriter] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.store = store or ResourceStore(settings)
        self.status = status or StatusWriter(
            cache,
            router_name=settings.router_name,
            retries=settings.status_update_retries,
            route_label=settings.route_label,
            claims=self.store.claims,
        )
        self.secrets = SecretCache(cache, retries=settings.secret_fetch_retries)
        self.tls = TLSResolver(self.secrets, self.store.base_route_config)
        self.rules = RuleEngine()
        self.resolver = RouteGroupResolver(self.store, cache, self.status)
        self.builder = ConfigBuilder(
            self.store, cache, self.resolver, self.rules, self.tls, self.status
        )
        self.reconciler = ExtendedSpecReconciler(self.store, cache, self.builder)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    def initial_service_count(self) -> int:
        return len(self.cache.services())

    def process_global_extended_route_config(self, init_state: bool = True) -> bool:
        """Load the global extended spec before any other resource.

        Returns False when the ConfigMap does not exist yet.  A malformed
        document raises :class:`ValidationError`.
        """

        cm = self.cache.get_config_map(self.settings.route_spec_configmap)
        if cm is None:
            LOG.error(
                "Unable to get extended route spec configmap %s", self.settings.route_spec_configmap
            )
            return False
        self.reconciler.process_global(cm, init_state=init_state)
        return True

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def on_route(self, route: Route, created: bool = False, deleted: bool = False) -> None:
        group_key = self.store.group_for_namespace(route.namespace)
        if group_key is None:
            LOG.debug("Route %s is not part of any route group", route.key)
            return
        if self.store.effective_spec(group_key) is None:
            LOG.debug("Route group %s has no extended spec yet", group_key)
            return
        if created and self.store.is_processed(route.key):
            LOG.debug("Route %s already processed", route.key)
            return
        if deleted:
            self.store.unmark_processed(route.key)
            self.store.claims.release(
                host_path_key(route.host, route.path), route.key, route.creation_timestamp
            )
        self.builder.process_route_group(group_key)

    def on_service(self, service: Service, deleted: bool = False) -> None:
        group_key = self.store.group_for_namespace(service.namespace)
        if group_key is None:
            return
        if self.store.effective_spec(group_key) is None:
            LOG.debug("Route group %s has no extended spec yet", group_key)
            return
        self.builder.process_route_group(group_key)

    def on_endpoints(self, endpoints: Endpoints, deleted: bool = False) -> List[str]:
        return self.builder.update_pool_members_for_routes(endpoints.namespace)

    def on_config_map(self, cm: ConfigMap, deleted: bool = False, init_state: bool = False) -> None:
        if not self.reconciler.is_global(cm) and EXTENDED_SPEC_KEY not in cm.data:
            return
        try:
            self.reconciler.process_config_map(cm, is_delete=deleted, init_state=init_state)
        except ValidationError:
            LOG.error("Rejected extended route spec in configmap %s", cm.key)
            raise

    def on_namespace(self, namespace: Namespace, deleted: bool = False) -> None:
        if self.store.namespace_label_mode:
            for key in self.reconciler.refresh_namespaces():
                if self.store.effective_spec(key) is not None:
                    self.builder.process_route_group(key)
            return
        group_key = self.store.group_for_namespace(namespace.name)
        if group_key is None or self.store.effective_spec(group_key) is None:
            return
        self.builder.process_route_group(group_key, trigger_delete=deleted)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def build_config_request(self, req_id: int) -> ConfigRequest:
        return ConfigRequest(
            req_id=req_id,
            ltm_config=self.store.config.ltm_snapshot(),
            gtm_config=self.store.config.gtm_snapshot(),
            share_nodes=self.settings.share_nodes,
            default_route_domain=self.settings.default_route_domain,
            digest=self.store.config.digest(),
        )
