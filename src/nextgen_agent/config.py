"""YAML configuration loader for the route controller agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import yaml
from oslo_config import cfg

from bigip_ctlr.opts import GROUP, register_controller_opts, settings_from_conf
from nextgen_routes.config import ControllerSettings


@dataclass
class QueueConfig:
    base_delay: float
    max_delay: float
    max_retries: int


@dataclass
class OutputConfig:
    output_dir: Path = Path("/var/lib/nextgen-routes")
    pretty: bool = True


@dataclass
class WatcherConfig:
    type: str
    path: Path
    interval: float = 5.0
    options: dict = field(default_factory=dict)


@dataclass
class AgentConfig:
    settings: ControllerSettings
    queue: QueueConfig
    agent: OutputConfig = field(default_factory=OutputConfig)
    watchers: Sequence[WatcherConfig] = field(default_factory=list)


def _new_conf() -> cfg.ConfigOpts:
    conf = cfg.ConfigOpts()
    register_controller_opts(conf)
    conf(args=[], default_config_files=[], default_config_dirs=[])
    return conf


def _apply_overrides(conf: cfg.ConfigOpts, section: dict) -> None:
    for name, value in section.items():
        try:
            conf.set_override(name, value, group=GROUP)
        except cfg.NoSuchOptError:
            raise ValueError(f"unknown controller option '{name}'") from None
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid value for controller option '{name}': {exc}") from None


def _parse_agent(section: dict) -> OutputConfig:
    if not isinstance(section, dict):
        raise ValueError("'agent' section must be a mapping")
    return OutputConfig(
        output_dir=Path(section.get("output_dir", OutputConfig.output_dir)),
        pretty=bool(section.get("pretty", True)),
    )


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        if not isinstance(entry, dict) or "type" not in entry:
            raise ValueError("each watcher needs a 'type'")
        options = entry.get("options", {})
        if not isinstance(options, dict):
            raise ValueError("watcher 'options' must be a mapping if provided")
        watchers.append(
            WatcherConfig(
                type=str(entry["type"]),
                path=Path(entry.get("path", ".")),
                interval=float(entry.get("interval", entry.get("poll_interval", 5.0))),
                options=options,
            )
        )
    return watchers


def load_config(path: Path, conf: Optional[cfg.ConfigOpts] = None) -> AgentConfig:
    """Load the agent file at ``path``.

    Options of the ``controller`` section override the values registered in
    ``conf`` (a private :class:`cfg.ConfigOpts` when omitted).
    """

    data = yaml.safe_load(Path(path).read_text())
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")

    if conf is None:
        conf = _new_conf()
    else:
        register_controller_opts(conf)
    controller_section = data.get("controller", {}) or {}
    if not isinstance(controller_section, dict):
        raise ValueError("'controller' section must be a mapping")
    _apply_overrides(conf, controller_section)
    group = getattr(conf, GROUP)

    watchers_section = data.get("watchers", [])
    if not isinstance(watchers_section, list):
        raise ValueError("'watchers' section must be a list")

    return AgentConfig(
        settings=settings_from_conf(conf),
        queue=QueueConfig(
            base_delay=group.queue_base_delay,
            max_delay=group.queue_max_delay,
            max_retries=group.queue_max_retries,
        ),
        agent=_parse_agent(data.get("agent", {}) or {}),
        watchers=_parse_watchers(watchers_section),
    )
