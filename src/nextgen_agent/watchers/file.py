"""File-based resource watcher."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Event, Thread
from typing import Any, Dict, Mapping, Tuple

import yaml

from bigip_ctlr import EventDispatcher
from bigip_ctlr.events import Verb, event_for
from nextgen_routes.cache import ResourceCache
from nextgen_routes.resources import Resource, Secret, from_manifest

LOG = logging.getLogger(__name__)

# Events are emitted in this order so that route groups exist before routes.
_KIND_ORDER = ("Namespace", "ConfigMap", "Secret", "Service", "Endpoints", "Route")

StateKey = Tuple[str, str]


def _sort_key(key: StateKey) -> Tuple[int, str]:
    kind, name = key
    return (_KIND_ORDER.index(kind) if kind in _KIND_ORDER else len(_KIND_ORDER), name)


def _extract_state(payload: Any) -> Dict[StateKey, Tuple[Mapping[str, Any], Resource]]:
    if not isinstance(payload, dict) or "items" not in payload:
        raise ValueError("manifest file missing 'items' key")
    items = payload["items"] or []
    if not isinstance(items, list):
        raise ValueError("'items' must be a list")

    state: Dict[StateKey, Tuple[Mapping[str, Any], Resource]] = {}
    for entry in items:
        if not isinstance(entry, dict):
            raise ValueError("manifest items must be mappings")
        try:
            resource = from_manifest(entry)
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed {entry.get('kind')} object: {exc}") from None
        state[(str(entry["kind"]), resource.metadata.key)] = (entry, resource)
    return state


class FileManifestWatcher(Thread):
    """Poll a YAML/JSON manifest, update the cache and queue resource events.

    The manifest holds a Kubernetes style ``items:`` list.  Every poll
    diffs the objects against the previous poll; Secrets only refresh the
    cache since nothing reacts to them directly.
    """

    def __init__(
        self,
        cache: ResourceCache,
        dispatcher: EventDispatcher,
        path: Path,
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(daemon=True)
        self._cache = cache
        self._dispatcher = dispatcher
        self._path = Path(path)
        self._interval = interval
        self._stop_event = stop_event
        self._state: Dict[StateKey, Tuple[Mapping[str, Any], Resource]] = {}

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("manifest watcher encountered an error")
            self._stop_event.wait(self._interval)

    def _emit(self, verb: Verb, resource: Resource) -> None:
        if isinstance(resource, Secret):
            return
        self._dispatcher.enqueue(event_for(verb, resource))

    def poll(self) -> int:
        """Apply the manifest once; return the number of changed objects."""

        if not self._path.exists():
            LOG.debug("manifest file %s does not exist yet", self._path)
            return 0

        try:
            payload = yaml.safe_load(self._path.read_text())
        except yaml.YAMLError as exc:
            LOG.warning("failed to parse manifest file %s: %s", self._path, exc)
            return 0

        try:
            desired = _extract_state(payload)
        except ValueError as exc:
            LOG.warning("invalid manifest file %s: %s", self._path, exc)
            return 0

        changed = 0
        for key in sorted(desired, key=_sort_key):
            entry, resource = desired[key]
            previous = self._state.get(key)
            if previous is not None and previous[0] == entry:
                continue
            self._cache.upsert(resource)
            verb = Verb.CREATE if previous is None else Verb.UPDATE
            LOG.debug("%s %s %s", verb.value, key[0], key[1])
            self._emit(verb, resource)
            changed += 1

        for key in sorted(set(self._state) - set(desired), key=_sort_key, reverse=True):
            _, resource = self._state[key]
            self._cache.remove(resource)
            LOG.debug("delete %s %s", key[0], key[1])
            self._emit(Verb.DELETE, resource)
            changed += 1

        self._state = desired
        return changed
