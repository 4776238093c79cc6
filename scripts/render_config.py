#!/usr/bin/env python3
"""Render BIG-IP configuration for a cluster manifest without running the agent."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from bigip_ctlr.drivers import FileConfigAgent  # noqa: E402
from nextgen_agent.config import load_config  # noqa: E402
from nextgen_routes.cache import ResourceCache  # noqa: E402
from nextgen_routes.config import ControllerSettings  # noqa: E402
from nextgen_routes.controller import RouteController  # noqa: E402
from nextgen_routes.errors import ControllerError  # noqa: E402
from nextgen_routes.resources import from_manifest  # noqa: E402


LOG = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--manifest",
        type=Path,
        default=Path("deploy/cluster.yaml"),
        help="YAML/JSON file with an 'items' list of cluster objects",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Agent configuration providing the controller options",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("deploy/bigip"),
        help="Directory where ltm-config.json will be written",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args()


def load_manifest(path: Path) -> Dict[str, Any]:
    with path.open() as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise ValueError(f"{path} must hold an 'items' list")
    return data


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    settings = load_config(args.config).settings if args.config else ControllerSettings()
    manifest = load_manifest(args.manifest)
    cache = ResourceCache(from_manifest(item) for item in manifest["items"])
    controller = RouteController(settings, cache)

    try:
        if not controller.process_global_extended_route_config(init_state=False):
            return 1
    except ControllerError as exc:
        LOG.error("Failed to render route groups: %s", exc)
        return 1
    controller.status.drain()

    for route in cache.routes():
        for ingress in route.ingress:
            for condition in ingress.conditions:
                LOG.info(
                    "Route %s: %s=%s %s", route.key, condition.type, condition.status, condition.reason
                )

    request = controller.build_config_request(1)
    if not any(request.ltm_config.values()):
        LOG.warning("No virtual server was rendered (check the extended route spec)")
    result = FileConfigAgent(args.output_dir).post_config(request)
    LOG.info("Rendered config written to %s", result.output_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
