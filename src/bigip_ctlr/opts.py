"""oslo.config options for the route controller.

All options live in the ``[controller]`` group.  ``list_opts`` follows the
oslo-config-generator entry point contract so a sample file can be produced
from it.
"""

from __future__ import annotations

import copy

from oslo_config import cfg

from nextgen_routes.config import ControllerSettings, PoolMemberType

from .workqueue import DEFAULT_BASE_DELAY, DEFAULT_MAX_DELAY

GROUP = "controller"

controller_opts = [
    cfg.StrOpt('bigip_partition',
               default='k8s',
               help='BIG-IP partition that receives route group virtual servers '
                    'unless the extended spec names another one.'),
    cfg.StrOpt('route_spec_configmap',
               default='kube-system/extended-route-spec',
               help='namespace/name of the global extended route spec ConfigMap.'),
    cfg.StrOpt('namespace_label',
               default='',
               help='Label selector that scopes namespaces when route groups '
                    'are defined by namespace labels.'),
    cfg.StrOpt('route_label',
               default='',
               help='Label selector for the routes this controller monitors. '
                    'Admit status is erased from routes outside of it.'),
    cfg.StrOpt('pool_member_type',
               default='cluster',
               choices=[member.value for member in PoolMemberType],
               help='Populate pools with endpoint addresses (cluster) or with '
                    'node addresses and node ports (nodeport).'),
    cfg.ListOpt('node_addresses',
                default=[],
                help='Node addresses used as pool members in nodeport mode.'),
    cfg.BoolOpt('share_nodes',
                default=False,
                help='Create pool member nodes in the Common partition.'),
    cfg.IntOpt('default_route_domain',
               default=0,
               min=0,
               help='Route domain appended to virtual addresses without one.'),
    cfg.StrOpt('router_name',
               default='F5 BIG-IP',
               help='Router name written to route ingress status.'),
    cfg.IntOpt('status_update_retries',
               default=3,
               min=1,
               help='Attempts made to write a route status before giving up.'),
    cfg.IntOpt('secret_fetch_retries',
               default=3,
               min=1,
               help='Attempts made to fetch a TLS secret before failing the group.'),
    cfg.FloatOpt('queue_base_delay',
                 default=DEFAULT_BASE_DELAY,
                 help='Initial retry delay in seconds for failed events.'),
    cfg.FloatOpt('queue_max_delay',
                 default=DEFAULT_MAX_DELAY,
                 help='Upper bound in seconds of the retry delay.'),
    cfg.IntOpt('queue_max_retries',
               default=15,
               min=0,
               help='Retries of a failing event before it is dropped.'),
]


def register_controller_opts(conf: cfg.ConfigOpts = cfg.CONF) -> None:
    """Register the controller options under the ``[controller]`` group."""

    conf.register_opts(controller_opts, group=GROUP)


def list_opts():
    return [(GROUP, copy.deepcopy(controller_opts))]


def settings_from_conf(conf: cfg.ConfigOpts = cfg.CONF) -> ControllerSettings:
    group = getattr(conf, GROUP)
    return ControllerSettings(
        partition=group.bigip_partition,
        route_spec_configmap=group.route_spec_configmap,
        namespace_label=group.namespace_label,
        route_label=group.route_label,
        pool_member_type=PoolMemberType(group.pool_member_type),
        node_addresses=tuple(group.node_addresses),
        share_nodes=group.share_nodes,
        default_route_domain=group.default_route_domain,
        router_name=group.router_name,
        status_update_retries=group.status_update_retries,
        secret_fetch_retries=group.secret_fetch_retries,
    )
