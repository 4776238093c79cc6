"""Agent that renders configuration requests to a JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from nextgen_routes.controller import ConfigRequest

from .base import ConfigAgent, PostResult

LOG = logging.getLogger(__name__)

LTM_CONFIG_FILE = "ltm-config.json"


class FileConfigAgent(ConfigAgent):
    """Write every posted request to ``<output_dir>/ltm-config.json``.

    The file always holds the latest request.  It is written to a sibling
    temporary file first and renamed into place so readers never observe a
    partial document.
    """

    name = "file"

    def __init__(self, output_dir: Path, *, pretty: bool = True) -> None:
        self._output_dir = Path(output_dir)
        self._pretty = pretty
        self.posted = 0

    @property
    def output_path(self) -> Path:
        return self._output_dir / LTM_CONFIG_FILE

    def post_config(self, request: ConfigRequest) -> PostResult:
        body = json.dumps(
            request.to_dict(),
            indent=2 if self._pretty else None,
            sort_keys=True,
        )
        self._output_dir.mkdir(parents=True, exist_ok=True)
        staging = self.output_path.with_suffix(".json.tmp")
        staging.write_text(body + "\n")
        staging.replace(self.output_path)
        self.posted += 1
        LOG.info("Wrote config request %d to %s", request.req_id, self.output_path)
        return PostResult(req_id=request.req_id, agent=self.name, output_path=self.output_path)
