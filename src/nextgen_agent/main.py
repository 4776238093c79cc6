"""Entry point for the standalone route controller agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event, Thread

from bigip_ctlr import AgentRegistry, EventDispatcher, RateLimitingQueue
from bigip_ctlr.drivers import FileConfigAgent
from nextgen_routes import ResourceCache, RouteController

from .config import load_config
from .watchers import FileManifestWatcher

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the next-gen routes controller")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/nextgen-routes/agent.yaml"),
        help="Path to the agent configuration file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config)

    cache = ResourceCache()
    controller = RouteController(config.settings, cache)
    registry = AgentRegistry()
    registry.register(
        "file", FileConfigAgent(config.agent.output_dir, pretty=config.agent.pretty)
    )
    queue = RateLimitingQueue(
        base_delay=config.queue.base_delay, max_delay=config.queue.max_delay
    )

    dispatcher = EventDispatcher(
        controller, registry, queue, max_retries=config.queue.max_retries
    )

    stop_event = Event()

    watchers = []
    for watcher_cfg in config.watchers:
        if watcher_cfg.type == "file":
            watcher = FileManifestWatcher(
                cache=cache,
                dispatcher=dispatcher,
                path=watcher_cfg.path,
                interval=watcher_cfg.interval,
                stop_event=stop_event,
            )
        else:
            raise ValueError(f"unsupported watcher type '{watcher_cfg.type}'")
        # The initial listing fills the cache before the worker counts services
        try:
            watcher.poll()
        except Exception:  # pragma: no cover - logged inside watcher
            LOG.exception("initial poll failed for watcher %s", watcher_cfg.path)
        watchers.append(watcher)

    if not watchers:
        LOG.warning("no watchers configured; controller will idle")

    controller.status.start()
    worker = Thread(target=dispatcher.run, name="resource-worker", daemon=True)
    worker.start()
    for watcher in watchers:
        watcher.start()

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    for watcher in watchers:
        watcher.join()
    dispatcher.stop()
    worker.join()
    controller.status.stop()

    LOG.info("route controller stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
