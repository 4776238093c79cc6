"""Host+path ownership claims and the namespace to route group index."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Tuple

LOG = logging.getLogger(__name__)


def host_path_key(host: str, path: str) -> str:
    if not path or path == "/":
        return host + "/"
    return host + path


@dataclass(frozen=True)
class Claim:
    timestamp: datetime
    owner: str

    @property
    def namespace(self) -> str:
        return self.owner.split("/", 1)[0]


class HostPathClaims:
    """Which route currently owns each ``host + path`` key.

    The oldest route wins a key.  Two distinct routes created at the same
    instant cannot be ordered by timestamp; the one observed first keeps the
    claim.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._claims: Dict[str, Claim] = {}

    def lookup(self, key: str) -> Optional[Claim]:
        with self._lock:
            return self._claims.get(key)

    def conflicting_claim(self, key: str, owner: str, timestamp: datetime) -> Optional[Claim]:
        """Return the claim that blocks ``owner`` from ``key``, if any."""

        with self._lock:
            claim = self._claims.get(key)
        if claim is None or claim.owner == owner:
            return None
        if claim.timestamp <= timestamp:
            return claim
        return None

    def claim(self, key: str, owner: str, timestamp: datetime) -> None:
        with self._lock:
            for other_key, existing in list(self._claims.items()):
                if other_key != key and existing.owner == owner:
                    LOG.debug("Releasing stale claim %s held by %s", other_key, owner)
                    del self._claims[other_key]
            self._claims[key] = Claim(timestamp=timestamp, owner=owner)

    def release(self, key: str, owner: str, timestamp: Optional[datetime] = None) -> bool:
        with self._lock:
            claim = self._claims.get(key)
            if claim is None or claim.owner != owner:
                return False
            if timestamp is not None and claim.timestamp != timestamp:
                return False
            del self._claims[key]
            return True

    def prune(
        self, namespaces: Collection[str], live: Mapping[str, Tuple[datetime, str]]
    ) -> List[str]:
        """Drop claims in ``namespaces`` no live route still backs.

        ``live`` maps each live route key to its creation timestamp and current
        claim key; a recreated route or one whose host/path moved loses its
        old claim.
        """

        released = []
        with self._lock:
            for key, claim in list(self._claims.items()):
                if claim.namespace not in namespaces:
                    continue
                if live.get(claim.owner) != (claim.timestamp, key):
                    del self._claims[key]
                    released.append(key)
        if released:
            LOG.debug("Released stale host-path claims: %s", released)
        return released

    def snapshot(self) -> Dict[str, Claim]:
        with self._lock:
            return dict(self._claims)

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)


class RouteGroupIndex:
    """Reverse index from a namespace to the route group it belongs to."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._groups: Dict[str, str] = {}

    def assign(self, namespaces: Iterable[str], group_key: str) -> None:
        with self._lock:
            for namespace in namespaces:
                self._groups[namespace] = group_key

    def lookup(self, namespace: str) -> Optional[str]:
        with self._lock:
            return self._groups.get(namespace)

    def remove(self, namespace: str) -> Optional[str]:
        with self._lock:
            return self._groups.pop(namespace, None)

    def namespaces_of(self, group_key: str) -> List[str]:
        with self._lock:
            return sorted(ns for ns, group in self._groups.items() if group == group_key)
