"""Abstract interface for downstream configuration agents."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from nextgen_routes.controller import ConfigRequest


@dataclass(frozen=True)
class PostResult:
    """Outcome of handing one :class:`ConfigRequest` to an agent."""

    req_id: int
    agent: str
    output_path: Optional[Path] = None


class ConfigAgent(ABC):
    """Base class for agents managed by :class:`~bigip_ctlr.registry.AgentRegistry`."""

    name = "agent"

    @abstractmethod
    def post_config(self, request: ConfigRequest) -> PostResult:
        """Deliver ``request`` to the load balancer (or its stand-in)."""
