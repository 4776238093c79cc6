"""Generated configuration storage and the reconciliation aggregate root."""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from threading import RLock
from typing import Any, Dict, List, Optional, Set

from .claims import HostPathClaims, RouteGroupIndex
from .config import (
    BaseRouteConfig,
    ControllerSettings,
    ExtendedParsedSpec,
    ExtendedRouteGroupSpec,
)
from .ltm import VirtualServerConfig

LOG = logging.getLogger(__name__)


class ConfigStore:
    """Virtual server configurations keyed by ``partition -> name``.

    Configurations are replaced wholesale.  Change detection compares a
    content digest of the whole store against the digest recorded at the last
    publish.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._ltm: Dict[str, Dict[str, VirtualServerConfig]] = {}
        self._gtm: Dict[str, Any] = {}
        # An empty store counts as published.
        self._published_digest: Optional[str] = self.digest()

    # ------------------------------------------------------------------
    # Virtual servers
    # ------------------------------------------------------------------
    def get(self, partition: str, name: str) -> Optional[VirtualServerConfig]:
        with self._lock:
            return self._ltm.get(partition, {}).get(name)

    def set(self, config: VirtualServerConfig) -> None:
        with self._lock:
            self._ltm.setdefault(config.partition, {})[config.name] = config

    def delete(self, partition: str, name: str) -> bool:
        with self._lock:
            # The partition map stays so the agent clears its contents.
            removed = self._ltm.get(partition, {}).pop(name, None)
        if removed is not None:
            LOG.debug("Deleted virtual server /%s/%s", partition, name)
        return removed is not None

    def ensure_partition(self, partition: str) -> None:
        with self._lock:
            self._ltm.setdefault(partition, {})

    def partitions(self) -> List[str]:
        with self._lock:
            return sorted(self._ltm)

    def virtual_servers(self, partition: str = "") -> List[VirtualServerConfig]:
        with self._lock:
            if partition:
                return list(self._ltm.get(partition, {}).values())
            return [vs for vss in self._ltm.values() for vs in vss.values()]

    def set_gtm(self, gtm: Dict[str, Any]) -> None:
        with self._lock:
            self._gtm = dict(gtm)

    # ------------------------------------------------------------------
    # Snapshots / change detection
    # ------------------------------------------------------------------
    def ltm_snapshot(self) -> Dict[str, Dict[str, VirtualServerConfig]]:
        with self._lock:
            return copy.deepcopy(self._ltm)

    def gtm_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._gtm)

    def digest(self) -> str:
        with self._lock:
            state = {
                "ltm": {
                    partition: {name: vs.digest() for name, vs in sorted(vss.items())}
                    for partition, vss in sorted(self._ltm.items())
                },
                "gtm": self._gtm,
            }
        payload = json.dumps(state, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def is_updated(self) -> bool:
        return self.digest() != self._published_digest

    def mark_published(self, digest: str) -> None:
        self._published_digest = digest

    @property
    def published_digest(self) -> Optional[str]:
        return self._published_digest


class ResourceStore:
    """Everything the reconciliation components share between events."""

    def __init__(self, settings: Optional[ControllerSettings] = None) -> None:
        self.settings = settings or ControllerSettings()
        self.config = ConfigStore()
        self.claims = HostPathClaims()
        self.route_groups = RouteGroupIndex()
        self.extd_spec_map: Dict[str, ExtendedParsedSpec] = {}
        self.base_route_config = BaseRouteConfig()
        self.namespace_label_mode = False
        self._processed_lock = RLock()
        self._processed_routes: Set[str] = set()

    # ------------------------------------------------------------------
    # Route groups
    # ------------------------------------------------------------------
    def group_for_namespace(self, namespace: str) -> Optional[str]:
        return self.route_groups.lookup(namespace)

    def effective_spec(self, group_key: str) -> Optional[ExtendedRouteGroupSpec]:
        parsed = self.extd_spec_map.get(group_key)
        if parsed is None:
            return None
        return parsed.effective()

    def group_partition(self, group_key: str) -> str:
        parsed = self.extd_spec_map.get(group_key)
        if parsed is not None and parsed.partition:
            return parsed.partition
        return self.settings.partition

    def group_namespaces(self, group_key: str) -> List[str]:
        parsed = self.extd_spec_map.get(group_key)
        if parsed is not None and parsed.namespaces:
            return list(parsed.namespaces)
        return self.route_groups.namespaces_of(group_key)

    # ------------------------------------------------------------------
    # Processed routes
    # ------------------------------------------------------------------
    def mark_processed(self, route_key: str) -> None:
        with self._processed_lock:
            self._processed_routes.add(route_key)

    def unmark_processed(self, route_key: str) -> None:
        with self._processed_lock:
            self._processed_routes.discard(route_key)

    def is_processed(self, route_key: str) -> bool:
        with self._processed_lock:
            return route_key in self._processed_routes
