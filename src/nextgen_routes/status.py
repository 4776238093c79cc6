"""Best-effort route admission status write-back.

Handlers never wait on the cluster: they submit a task and continue.  A worker
thread (or an explicit :meth:`StatusWriter.drain` in tests and single-threaded
runs) applies the tasks with a bounded number of attempts.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Event, Thread
from typing import Callable, Optional

from .claims import HostPathClaims, host_path_key
from .errors import TransientInfraError
from .resources import Route, RouteCondition, RouteIngress

LOG = logging.getLogger(__name__)

ADMITTED = "Admitted"
STATUS_TRUE = "True"
STATUS_FALSE = "False"


@dataclass(frozen=True)
class StatusTask:
    route_key: str
    reason: str
    message: str
    status: str


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class StatusWriter:
    """Queue of admission status updates applied off the reconciliation loop."""

    def __init__(
        self,
        client,
        router_name: str = "F5 BIG-IP",
        retries: int = 3,
        route_label: str = "",
        claims: Optional[HostPathClaims] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._client = client
        self._router_name = router_name
        self._retries = max(1, retries)
        self._route_label = route_label
        self._claims = claims
        self._clock = clock
        self._tasks: "queue.Queue[StatusTask]" = queue.Queue()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    # ------------------------------------------------------------------
    # Submission / workers
    # ------------------------------------------------------------------
    def submit(self, route_key: str, reason: str = "", message: str = "", status: str = STATUS_TRUE) -> None:
        self._tasks.put(StatusTask(route_key, reason, message, status))

    def pending(self) -> int:
        return self._tasks.qsize()

    def drain(self) -> int:
        """Apply every queued task on the calling thread."""

        processed = 0
        while True:
            try:
                task = self._tasks.get_nowait()
            except queue.Empty:
                return processed
            try:
                self.update_admit_status(task)
            finally:
                self._tasks.task_done()
            processed += 1

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._run, name="route-status-writer", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                task = self._tasks.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self.update_admit_status(task)
            except Exception:  # pragma: no cover - logged below
                LOG.exception("status writer failed for route %s", task.route_key)
            finally:
                self._tasks.task_done()

    # ------------------------------------------------------------------
    # Status updates
    # ------------------------------------------------------------------
    def _own_ingress(self, route: Route) -> Optional[RouteIngress]:
        return next((i for i in route.ingress if i.router_name == self._router_name), None)

    def update_admit_status(self, task: StatusTask) -> bool:
        """Write ``task`` to its route; return True once the status is current."""

        for attempt in range(1, self._retries + 1):
            route = self._client.get_route(task.route_key)
            if route is None:
                LOG.debug("Route %s vanished before its status was written", task.route_key)
                return True

            current = self._own_ingress(route)
            if current is not None and any(
                c.type == ADMITTED and c.status == task.status and c.reason == task.reason
                for c in current.conditions
            ):
                return True

            condition = RouteCondition(
                type=ADMITTED,
                status=task.status,
                reason=task.reason,
                message=task.message,
                last_transition_time=self._clock(),
            )
            ingress = tuple(i for i in route.ingress if i.router_name != self._router_name)
            ingress += (
                RouteIngress(router_name=self._router_name, host=route.host, conditions=(condition,)),
            )
            try:
                self._client.update_route_status(route, ingress)
            except TransientInfraError as exc:
                LOG.warning(
                    "Attempt %d/%d updating status of route %s failed: %s",
                    attempt,
                    self._retries,
                    task.route_key,
                    exc,
                )
                continue
            except LookupError:
                return True
            LOG.debug("Route %s admit status set to %s", task.route_key, task.status)
            return True

        LOG.error("Giving up on admit status of route %s", task.route_key)
        self.erase_all_admit_status()
        return False

    def erase_admit_status(self, route_key: str) -> bool:
        for _ in range(self._retries):
            route = self._client.get_route(route_key)
            if route is None or self._own_ingress(route) is None:
                return True
            ingress = tuple(i for i in route.ingress if i.router_name != self._router_name)
            try:
                self._client.update_route_status(route, ingress)
            except TransientInfraError as exc:
                LOG.warning("Error erasing admit status of route %s: %s", route_key, exc)
                continue
            except LookupError:
                return True
            LOG.debug("Admit status erased for route %s", route_key)
            return True
        return False

    def erase_all_admit_status(self) -> None:
        """Clear status of routes the controller no longer watches."""

        for route in self._client.unmonitored_routes(self._route_label):
            self.erase_admit_status(route.key)
            if self._claims is not None:
                self._claims.release(
                    host_path_key(route.host, route.path), route.key, route.creation_timestamp
                )
