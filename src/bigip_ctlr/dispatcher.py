"""Single-consumer event loop driving the route controller."""

from __future__ import annotations

import logging
import time
from threading import Event
from typing import List, Optional, Set, Tuple

from nextgen_routes.controller import ConfigRequest, RouteController
from nextgen_routes.errors import UnknownEventError, ValidationError

from .drivers import PostResult
from .events import (
    ConfigMapEvent,
    EndpointsEvent,
    NamespaceEvent,
    ResourceEvent,
    RouteEvent,
    ServiceEvent,
    Verb,
)
from .registry import AgentRegistry
from .workqueue import RateLimitingQueue

LOG = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 15


class EventDispatcher:
    """Dequeue resource events, run the matching handler and publish.

    While ``init_state`` is set only Service and Namespace events are
    handled; everything else is pushed back with backoff until every
    Service known at startup has been seen or a configuration has been
    published.
    """

    def __init__(
        self,
        controller: RouteController,
        agents: AgentRegistry,
        queue: Optional[RateLimitingQueue] = None,
        *,
        init_state: bool = True,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_service_count: Optional[int] = None,
    ) -> None:
        self._controller = controller
        self._agents = agents
        self._queue = queue if queue is not None else RateLimitingQueue()
        self._max_retries = max_retries
        self.init_state = init_state
        self.initial_service_count: Optional[int] = None
        if initial_service_count is not None:
            self.set_initial_service_count(initial_service_count)
        self._req_id = 0
        self._stop_event = Event()
        # Events requeued while waiting for the initial load.
        self._held: Set[ResourceEvent] = set()
        self.last_request: Optional[ConfigRequest] = None

    def set_initial_service_count(self, count: Optional[int] = None) -> None:
        """Number of Service events to handle before leaving init state.

        Defaults to the Services present in the cache, so it must be called
        once the watchers performed their first listing.
        """

        if count is None:
            count = self._controller.initial_service_count()
        self.initial_service_count = count
        if count <= 0:
            self.init_state = False

    @property
    def queue(self) -> RateLimitingQueue:
        return self._queue

    # ------------------------------------------------------------------
    # Queue plumbing
    # ------------------------------------------------------------------
    def enqueue(self, event: ResourceEvent) -> None:
        self._queue.add(event)

    def dequeue(self, timeout: Optional[float] = None) -> Tuple[Optional[ResourceEvent], bool]:
        return self._queue.get(timeout)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def dispatch(self, event: ResourceEvent) -> None:
        deleted = getattr(event, "verb", None) == Verb.DELETE
        if isinstance(event, RouteEvent):
            self._controller.on_route(
                event.route, created=event.verb == Verb.CREATE, deleted=deleted
            )
        elif isinstance(event, ServiceEvent):
            self._controller.on_service(event.service, deleted=deleted)
        elif isinstance(event, EndpointsEvent):
            self._controller.on_endpoints(event.endpoints, deleted=deleted)
        elif isinstance(event, ConfigMapEvent):
            self._controller.on_config_map(
                event.config_map, deleted=deleted, init_state=self.init_state
            )
        elif isinstance(event, NamespaceEvent):
            self._controller.on_namespace(event.namespace, deleted=deleted)
        else:
            raise UnknownEventError(f"Unsupported event type: {type(event)!r}")

    def _hold_during_init(self, event: ResourceEvent) -> bool:
        """Return True when ``event`` must wait for the initial load."""

        if not self.init_state or isinstance(event, NamespaceEvent):
            return False
        if self.initial_service_count is None:
            self.set_initial_service_count()
            if not self.init_state:
                return False
        if not isinstance(event, ServiceEvent):
            return True
        self.initial_service_count -= 1
        if self.initial_service_count <= 0:
            LOG.info("Initial service load complete")
            self.init_state = False
        return False

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Handle at most one event; return False once the queue shut down."""

        event, shutdown = self.dequeue(timeout)
        if shutdown:
            LOG.debug("Resource queue shut down")
            return False
        if event is None:
            return True

        try:
            LOG.debug("Processing event: %s", event)
            if self._hold_during_init(event):
                self._held.add(event)
                self._queue.add_rate_limited(event)
                return True
            if event in self._held:
                # Holding is not a failure; retries start from zero.
                self._held.discard(event)
                self._queue.forget(event)
            # pool members are captured by the cache during the initial load
            if self.init_state and isinstance(event, ServiceEvent):
                self._queue.forget(event)
                handled = True
            else:
                handled = self._handle(event)
            if handled and len(self._queue) == 0:
                self.publish_if_changed()
        finally:
            self._queue.done(event)
        return True

    def _handle(self, event: ResourceEvent) -> bool:
        """Run ``event``; return False when it was requeued for a retry."""

        started = time.monotonic()
        try:
            self.dispatch(event)
        except UnknownEventError:
            LOG.error("Dropping unknown event %r", event)
            self._queue.forget(event)
        except ValidationError as exc:
            LOG.error("Sync %s failed with %s", event, exc)
            self._queue.forget(event)
        except Exception:
            LOG.exception("Sync %s failed", event)
            if self._queue.num_requeues(event) < self._max_retries:
                self._queue.add_rate_limited(event)
                return False
            LOG.error("Dropping %s after %d retries", event, self._queue.num_requeues(event))
            self._queue.forget(event)
        else:
            self._queue.forget(event)
        finally:
            LOG.debug(
                "Finished processing event in %.3fms", (time.monotonic() - started) * 1000
            )
        return True

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish_if_changed(self) -> Optional[List[PostResult]]:
        store = self._controller.store.config
        if not store.is_updated():
            return None
        self._req_id += 1
        request = self._controller.build_config_request(self._req_id)
        LOG.info("Posting config request %d", request.req_id)
        results = self._agents.post_config(request)
        store.mark_published(request.digest)
        self.last_request = request
        self.init_state = False
        return results

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def run(self, poll_interval: float = 1.0) -> None:
        LOG.debug("Starting resource worker")
        if self.initial_service_count is None:
            self.set_initial_service_count()
        try:
            self._controller.process_global_extended_route_config()
        except ValidationError as exc:
            LOG.error("Invalid global extended route spec: %s", exc)
        while not self._stop_event.is_set():
            if not self.process_next(timeout=poll_interval):
                break
        LOG.info("Resource worker stopped")

    def stop(self) -> None:
        self._stop_event.set()
        self._queue.shut_down()
