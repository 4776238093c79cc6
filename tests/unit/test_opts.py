from oslo_config import cfg

from bigip_ctlr.opts import GROUP, controller_opts, list_opts, register_controller_opts, settings_from_conf
from nextgen_routes.config import ControllerSettings, PoolMemberType


def make_conf(**overrides) -> cfg.ConfigOpts:
    conf = cfg.ConfigOpts()
    register_controller_opts(conf)
    conf(args=[], default_config_files=[], default_config_dirs=[])
    for name, value in overrides.items():
        conf.set_override(name, value, group=GROUP)
    return conf


def test_defaults_match_controller_settings():
    assert settings_from_conf(make_conf()) == ControllerSettings()


def test_overrides_reach_settings():
    conf = make_conf(
        bigip_partition="tenants",
        namespace_label="routegroup",
        pool_member_type="nodeport",
        node_addresses=["10.0.0.1", "10.0.0.2"],
        share_nodes=True,
    )

    settings = settings_from_conf(conf)

    assert settings.partition == "tenants"
    assert settings.namespace_label == "routegroup"
    assert settings.pool_member_type is PoolMemberType.NODEPORT
    assert settings.node_addresses == ("10.0.0.1", "10.0.0.2")
    assert settings.share_nodes is True


def test_registration_is_idempotent():
    conf = make_conf()
    register_controller_opts(conf)

    assert conf.controller.bigip_partition == "k8s"


def test_list_opts_returns_copies():
    ((group, opts),) = list_opts()

    assert group == GROUP
    assert [o.name for o in opts] == [o.name for o in controller_opts]
    assert all(a is not b for a, b in zip(opts, controller_opts))
