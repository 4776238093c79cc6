from pathlib import Path

import pytest
from oslo_config import cfg

from nextgen_agent.config import load_config
from nextgen_routes.config import PoolMemberType


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(
        """
controller:
  bigip_partition: tenants
  route_spec_configmap: kube-system/global-cm
  pool_member_type: nodeport
  node_addresses: [10.0.0.1, 10.0.0.2]
  router_name: edge
  queue_max_retries: 4
agent:
  output_dir: /var/lib/bigip
  pretty: false
watchers:
  - type: file
    path: /etc/nextgen-routes/cluster.yaml
    interval: 2
  - type: file
    path: /etc/nextgen-routes/extra.json
    options:
      label: extra
"""
    )

    agent_cfg = load_config(config_path)

    settings = agent_cfg.settings
    assert settings.partition == "tenants"
    assert settings.route_spec_configmap == "kube-system/global-cm"
    assert settings.pool_member_type is PoolMemberType.NODEPORT
    assert settings.node_addresses == ("10.0.0.1", "10.0.0.2")
    assert settings.router_name == "edge"
    assert agent_cfg.queue.max_retries == 4
    assert agent_cfg.queue.base_delay == pytest.approx(0.005)
    assert agent_cfg.agent.output_dir == Path("/var/lib/bigip")
    assert agent_cfg.agent.pretty is False

    assert len(agent_cfg.watchers) == 2
    watcher = agent_cfg.watchers[0]
    assert watcher.type == "file"
    assert watcher.path == Path("/etc/nextgen-routes/cluster.yaml")
    assert watcher.interval == pytest.approx(2.0)
    assert watcher.options == {}
    assert agent_cfg.watchers[1].interval == pytest.approx(5.0)
    assert agent_cfg.watchers[1].options == {"label": "extra"}


def test_empty_file_uses_defaults(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text("")

    agent_cfg = load_config(config_path)

    assert agent_cfg.settings.partition == "k8s"
    assert agent_cfg.agent.output_dir == Path("/var/lib/nextgen-routes")
    assert agent_cfg.watchers == []


def test_overrides_apply_to_given_conf(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text("controller:\n  namespace_label: routegroup\n")
    conf = cfg.ConfigOpts()
    conf(args=[], default_config_files=[], default_config_dirs=[])

    load_config(config_path, conf)

    assert conf.controller.namespace_label == "routegroup"


@pytest.mark.parametrize(
    "text",
    [
        "- not a mapping\n",
        "controller: [a]\n",
        "controller:\n  no_such_option: 1\n",
        "controller:\n  pool_member_type: loadbalancer\n",
        "controller:\n  status_update_retries: 0\n",
        "watchers: {}\n",
        "watchers:\n  - path: /tmp/x\n",
        "watchers:\n  - type: file\n    options: [1]\n",
        "agent: [1]\n",
    ],
)
def test_invalid_configs_are_rejected(tmp_path: Path, text):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(text)

    with pytest.raises(ValueError):
        load_config(config_path)
