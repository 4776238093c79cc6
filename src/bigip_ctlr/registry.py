"""Named registry of downstream configuration agents."""

from __future__ import annotations

import logging
from typing import Dict, List

from nextgen_routes.controller import ConfigRequest

from .drivers import ConfigAgent, PostResult

LOG = logging.getLogger(__name__)


class AgentRegistry:
    """Fan published configuration requests out to every registered agent."""

    def __init__(self) -> None:
        self._agents: Dict[str, ConfigAgent] = {}

    def register(self, name: str, agent: ConfigAgent) -> None:
        if name in self._agents:
            raise ValueError(f"agent '{name}' already registered")
        self._agents[name] = agent

    def unregister(self, name: str) -> None:
        self._agents.pop(name, None)

    def names(self) -> List[str]:
        return sorted(self._agents)

    def __len__(self) -> int:
        return len(self._agents)

    def post_config(self, request: ConfigRequest) -> List[PostResult]:
        if not self._agents:
            LOG.warning("No agent registered; config request %d dropped", request.req_id)
        return [agent.post_config(request) for agent in self._agents.values()]
